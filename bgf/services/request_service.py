"""
Request Store — owns grant request records.

Ticket numbers are sequential and zero-padded: ``BGF-000001``. The sequence
is derived from the highest existing ticket; a concurrent insert that takes
the same number fails on the unique constraint and is retried.

``status`` is never written here directly by callers: the workflow engine
calls ``set_request_status`` inside its own transaction.
"""

import logging
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from bgf.auth import Actor
from bgf.core.exceptions import (
    InvalidStageError,
    NotFoundError,
    UnauthorizedActorError,
    ValidationError,
)
from bgf.models import db
from bgf.models.audit import write_audit
from bgf.models.notification import Notification
from bgf.models.request import GrantRequest, RequestStatus, RequestType
from bgf.models.user import Role
from bgf.models.workflow import WorkflowStage
from bgf.services.notification import NotificationService

logger = logging.getLogger(__name__)

_TICKET_ATTEMPTS = 3
_EDITABLE_FIELDS = ("title", "description", "request_type", "amount")


# ── Ticket numbers ──────────────────────────────────────────────────────────

def generate_ticket_number() -> str:
    """Next ticket: ``{TICKET_PREFIX}-{seq:06d}``. Longer numbers sort above shorter ones."""
    prefix = current_app.config.get("TICKET_PREFIX", "BGF")
    last = db.session.execute(
        select(GrantRequest.ticket_number)
        .where(GrantRequest.ticket_number.like(f"{prefix}-%"))
        .order_by(func.length(GrantRequest.ticket_number).desc(), GrantRequest.ticket_number.desc())
        .limit(1)
    ).scalar_one_or_none()
    seq = 1
    if last:
        try:
            seq = int(last.rsplit("-", 1)[1]) + 1
        except (IndexError, ValueError):
            seq = 1
    return f"{prefix}-{seq:06d}"


# ── Validation ──────────────────────────────────────────────────────────────

def _clean_fields(data: dict, partial: bool = False) -> dict:
    errors = {}
    cleaned = {}

    if "title" in data or not partial:
        title = (data.get("title") or "").strip()
        if not title:
            errors["title"] = "title is required"
        elif len(title) > 300:
            errors["title"] = "title must be at most 300 characters"
        cleaned["title"] = title

    if "description" in data or not partial:
        cleaned["description"] = (data.get("description") or "").strip()

    if "request_type" in data or not partial:
        try:
            cleaned["request_type"] = RequestType(data.get("request_type"))
        except ValueError:
            errors["request_type"] = f"Must be one of: {', '.join(t.value for t in RequestType)}"

    if "amount" in data or not partial:
        raw = data.get("amount")
        if raw is None or raw == "":
            cleaned["amount"] = None
        else:
            try:
                amount = Decimal(str(raw)).quantize(Decimal("0.01"))
            except (InvalidOperation, ValueError):
                errors["amount"] = "amount must be a number"
            else:
                if amount < 0:
                    errors["amount"] = "amount must not be negative"
                elif amount >= Decimal("10000000000"):
                    errors["amount"] = "amount is too large"
                cleaned["amount"] = amount

    if errors:
        raise ValidationError("Invalid request", details=errors)
    return cleaned


# ── Commands ────────────────────────────────────────────────────────────────

def create_request(requester: Actor, data: dict) -> GrantRequest:
    """
    Create a request together with its workflow, in one transaction.

    The head of programs auto-assigned by ``initialize_workflow`` and the
    requester are notified after commit.
    """
    from bgf.services import workflow_engine

    fields = _clean_fields(data)

    for attempt in range(1, _TICKET_ATTEMPTS + 1):
        req = GrantRequest(
            ticket_number=generate_ticket_number(),
            requester_id=requester.id,
            status=RequestStatus.SUBMITTED,
            **fields,
        )
        db.session.add(req)
        try:
            db.session.flush()
            workflow = workflow_engine.initialize_workflow(req.id)
            db.session.commit()
            break
        except IntegrityError:
            db.session.rollback()
            if attempt == _TICKET_ATTEMPTS:
                raise
            logger.warning("Ticket number collision, retrying", extra={"attempt": attempt})
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Request %s created", req.ticket_number,
        extra={"grant_request_id": req.id, "actor_id": requester.id},
    )

    NotificationService.dispatch_many([
        (
            requester.id,
            "Request Submitted",
            f"Your request {req.ticket_number} has been submitted successfully.",
            req.id,
            "success",
        ),
        (
            workflow.head_of_programs_id,
            "New Request Submitted",
            f"Request {req.ticket_number} is awaiting your initial review.",
            req.id,
            "info",
        ),
    ])
    return req


def update_request(request_id: int, actor: Actor, data: dict) -> GrantRequest:
    """Requester edits title/description/type/amount while still at submission."""
    req = get_request(request_id)
    if req.requester_id != actor.id:
        raise UnauthorizedActorError(request_id, "update", actor.id, "only the requester may edit a request")
    stage = req.workflow.current_stage if req.workflow else WorkflowStage.SUBMISSION
    if stage is not WorkflowStage.SUBMISSION:
        raise InvalidStageError(request_id, "update", stage, WorkflowStage.SUBMISSION)

    fields = _clean_fields({k: v for k, v in data.items() if k in _EDITABLE_FIELDS}, partial=True)
    diff = {}
    for key, value in fields.items():
        old = getattr(req, key)
        if old != value:
            diff[key] = {"old": old, "new": value}
            setattr(req, key, value)

    if diff:
        write_audit(
            entity_type="request",
            entity_id=req.id,
            action="request.update",
            actor_user_id=actor.id,
            actor_role=actor.role,
            diff=diff,
        )
    db.session.commit()
    return req


def delete_request(request_id: int, actor: Actor) -> None:
    """
    Delete a request with its workflow and comments.

    The requester may delete while the request is still at submission; an
    admin may delete at any stage. The request's notifications go with it,
    its audit trail stays.
    """
    req = get_request(request_id)
    is_admin = actor.role is Role.ADMIN
    if req.requester_id != actor.id and not is_admin:
        raise UnauthorizedActorError(
            request_id, "delete", actor.id, "only the requester or an admin may delete a request",
        )
    stage = req.workflow.current_stage if req.workflow else WorkflowStage.SUBMISSION
    if not is_admin and stage is not WorkflowStage.SUBMISSION:
        raise InvalidStageError(request_id, "delete", stage, WorkflowStage.SUBMISSION)

    ticket = req.ticket_number
    try:
        db.session.execute(
            delete(Notification).where(
                Notification.related_entity_type == "request",
                Notification.related_entity_id == request_id,
            )
        )
        db.session.delete(req)
        write_audit(
            entity_type="request",
            entity_id=request_id,
            action="request.delete",
            actor_user_id=actor.id,
            actor_role=actor.role,
            diff={"ticket_number": {"old": ticket, "new": None},
                  "current_stage": {"old": stage, "new": None}},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Request %s deleted", ticket,
        extra={"grant_request_id": request_id, "stage": str(stage), "actor_id": actor.id},
    )


def set_request_status(req: GrantRequest, status: RequestStatus) -> None:
    """Mirror the workflow-derived status onto the request. Flush only."""
    if req.status != status:
        req.status = status
        db.session.flush()


# ── Queries ─────────────────────────────────────────────────────────────────

def get_request(request_id: int) -> GrantRequest:
    req = db.session.get(GrantRequest, request_id)
    if req is None:
        raise NotFoundError(resource="Request", resource_id=request_id)
    return req


def get_request_by_ticket(ticket_number: str) -> GrantRequest:
    req = db.session.execute(
        select(GrantRequest).where(GrantRequest.ticket_number == ticket_number.strip().upper())
    ).scalar_one_or_none()
    if req is None:
        raise NotFoundError(resource="Request", resource_id=ticket_number)
    return req


def list_requests(
    actor: Actor,
    status: RequestStatus | None = None,
    request_type: RequestType | None = None,
) -> list[GrantRequest]:
    """Applicants see their own requests; staff see every request. Newest first."""
    stmt = select(GrantRequest).order_by(GrantRequest.created_at.desc(), GrantRequest.id.desc())
    if actor.role is Role.USER:
        stmt = stmt.where(GrantRequest.requester_id == actor.id)
    if status is not None:
        stmt = stmt.where(GrantRequest.status == status)
    if request_type is not None:
        stmt = stmt.where(GrantRequest.request_type == request_type)
    return list(db.session.execute(stmt).scalars().unique())


def can_view(actor: Actor, req: GrantRequest) -> bool:
    return actor.role is not Role.USER or req.requester_id == actor.id
