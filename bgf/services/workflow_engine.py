"""
Stage Transition Engine — moves a grant request through its approval chain.

Stages (fixed forward order):
    submission → hop_review → officer_assignment → officer_review →
    hop_final_review → director_review → executive_approval → completed

Every mutating operation runs through ``_transition``:
  1. lock and (re)load the workflow row (``SELECT … FOR UPDATE``)
  2. check the completed flag, required stage and the actor
  3. apply the mutation
  4. mirror the derived status onto the request, append an audit row
  5. commit; the ``version_id`` check turns a lost race into
     ``StaleDataError`` and the whole operation is re-evaluated
  6. dispatch notifications (best effort, after commit)

Any ``WorkflowError`` rolls the session back, so a refused call never
leaves partial state behind.

Usage:
    from bgf.services import workflow_engine

    workflow = workflow_engine.assign_to_officer(
        request_id=7, actor=actor, officer_id=12, officer_type="project_manager",
    )
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError

from bgf.auth import Actor
from bgf.core.exceptions import (
    ConflictError,
    InvalidAssignmentError,
    InvalidStageError,
    NotFoundError,
    PersistenceConflictError,
    UnauthorizedActorError,
)
from bgf.models import db
from bgf.models.audit import AuditLog, write_audit
from bgf.models.request import GrantRequest, RequestStatus
from bgf.models.user import EXECUTIVE_ROLES, OFFICER_ROLES, Role
from bgf.models.workflow import Disposition, RequestWorkflow, WorkflowStage
from bgf.services import identity
from bgf.services.notification import NotificationService
from bgf.services.request_service import set_request_status

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

# Request status shown while a workflow sits at each stage
STAGE_STATUS = {
    WorkflowStage.SUBMISSION: RequestStatus.UNDER_REVIEW,
    WorkflowStage.HOP_REVIEW: RequestStatus.UNDER_REVIEW,
    WorkflowStage.OFFICER_ASSIGNMENT: RequestStatus.UNDER_REVIEW,
    WorkflowStage.OFFICER_REVIEW: RequestStatus.OFFICER_REVIEWED,
    WorkflowStage.HOP_FINAL_REVIEW: RequestStatus.HOP_REVIEWED,
    WorkflowStage.DIRECTOR_REVIEW: RequestStatus.UNDER_REVIEW,
    WorkflowStage.EXECUTIVE_APPROVAL: RequestStatus.DIRECTOR_REVIEWED,
}

# Column holding the assignee for each officer role
_OFFICER_FIELD = {
    Role.ASSISTANT_PROJECT_OFFICER: "assistant_project_officer_id",
    Role.PROJECT_MANAGER: "project_manager_id",
}

_EXECUTIVE_FIELDS = {
    Role.CEO: ("ceo_id", "ceo_approved", "ceo_notes"),
    Role.PATRON: ("patron_id", "patron_approved", "patron_notes"),
}

# Column the workflow list is filtered on for each role
_ASSIGNEE_FIELD = {
    Role.HEAD_OF_PROGRAMS: "head_of_programs_id",
    Role.ASSISTANT_PROJECT_OFFICER: "assistant_project_officer_id",
    Role.PROJECT_MANAGER: "project_manager_id",
    Role.DIRECTOR: "director_id",
    Role.CEO: "ceo_id",
    Role.PATRON: "patron_id",
}

_AUDIT_IGNORED = frozenset({"updated_at", "version", "created_at"})

# (user_id, title, message, request_id, type)
Notice = tuple[int | None, str, str, int, str]


def _now():
    return datetime.now(UTC)


def derived_status(workflow: RequestWorkflow) -> RequestStatus:
    """Request status implied by the workflow's stage and disposition."""
    if workflow.current_stage is WorkflowStage.COMPLETED:
        if workflow.disposition is Disposition.APPROVED:
            return RequestStatus.APPROVED
        return RequestStatus.REJECTED
    return STAGE_STATUS[workflow.current_stage]


# ═══════════════════════════════════════════════════════════════
# Transaction plumbing
# ═══════════════════════════════════════════════════════════════

def _load_for_update(request_id: int) -> RequestWorkflow:
    """Lock the workflow row and refresh it from the database."""
    workflow = db.session.execute(
        select(RequestWorkflow)
        .where(RequestWorkflow.request_id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if workflow is None:
        if db.session.get(GrantRequest, request_id) is None:
            raise NotFoundError(resource="Request", resource_id=request_id)
        raise NotFoundError(resource="Workflow", resource_id=request_id)
    return workflow


def _snapshot(workflow: RequestWorkflow) -> dict:
    return {k: v for k, v in workflow.to_dict().items() if k not in _AUDIT_IGNORED}


def _diff(before: dict, after: dict) -> dict:
    return {
        key: {"old": before.get(key), "new": value}
        for key, value in after.items()
        if before.get(key) != value
    }


def _transition(
    request_id: int,
    actor: Actor,
    action: str,
    mutate: Callable[[RequestWorkflow], list[Notice]],
) -> RequestWorkflow:
    """
    Run ``mutate`` under the row lock, commit, then notify.

    ``mutate`` validates and changes the workflow and returns the notices to
    send once the change is durable. It is re-run from scratch on a fresh
    row whenever a concurrent writer committed first.
    """
    max_attempts = current_app.config.get("WORKFLOW_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)

    for attempt in range(1, max_attempts + 1):
        try:
            workflow = _load_for_update(request_id)
            before = _snapshot(workflow)
            notices = mutate(workflow)
            set_request_status(workflow.request, derived_status(workflow))
            write_audit(
                entity_type="workflow",
                entity_id=request_id,
                action=f"workflow.{action}",
                actor_user_id=actor.id,
                actor_role=actor.role,
                diff=_diff(before, _snapshot(workflow)),
            )
            db.session.commit()
        except StaleDataError:
            db.session.rollback()
            logger.warning(
                "Lost race on request %s during '%s' (attempt %d/%d)",
                request_id, action, attempt, max_attempts,
                extra={"grant_request_id": request_id, "action": action, "attempt": attempt},
            )
            continue
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "Workflow %s: request %s now at '%s'",
            action, request_id, workflow.current_stage,
            extra={
                "grant_request_id": request_id,
                "stage": str(workflow.current_stage),
                "action": action,
                "actor_id": actor.id,
                "actor_role": str(actor.role),
            },
        )
        NotificationService.dispatch_many(notices)
        return workflow

    raise PersistenceConflictError(request_id, action, max_attempts)


# ═══════════════════════════════════════════════════════════════
# Guards
# ═══════════════════════════════════════════════════════════════

def _require_stage(workflow: RequestWorkflow, action: str, required: WorkflowStage) -> None:
    if workflow.completed or workflow.current_stage is not required:
        raise InvalidStageError(workflow.request_id, action, workflow.current_stage, required)


def _require_assignee(workflow: RequestWorkflow, actor: Actor, action: str, field: str) -> None:
    assignee = getattr(workflow, field)
    if assignee is None:
        raise UnauthorizedActorError(
            workflow.request_id, action, actor.id, f"no {field.removesuffix('_id')} is assigned",
        )
    if actor.id != assignee:
        raise UnauthorizedActorError(
            workflow.request_id, action, actor.id, f"only the assigned {field.removesuffix('_id')} may act",
        )


def _require_target_role(workflow: RequestWorkflow, target_id: int, expected: Role) -> None:
    try:
        target = identity.resolve_user(target_id)
    except NotFoundError:
        raise InvalidAssignmentError(
            f"User {target_id} does not exist or is inactive", workflow.request_id, target_id,
        ) from None
    if target.role is not expected:
        raise InvalidAssignmentError(
            f"User {target_id} has role '{target.role}', expected '{expected}'",
            workflow.request_id, target_id,
        )


def _officer_role(workflow: RequestWorkflow, officer_type: str) -> Role:
    try:
        role = Role(officer_type)
    except ValueError:
        role = None
    if role not in OFFICER_ROLES:
        raise InvalidAssignmentError(
            f"officer_type must be one of: {', '.join(sorted(OFFICER_ROLES))}",
            workflow.request_id,
        )
    return role


def _ticket(workflow: RequestWorkflow) -> str:
    return workflow.request.ticket_number


# ═══════════════════════════════════════════════════════════════
# Operations
# ═══════════════════════════════════════════════════════════════

def initialize_workflow(request_id: int) -> RequestWorkflow:
    """
    Create the workflow of a freshly inserted request.

    Flush only: ``request_service.create_request`` commits the request and
    the workflow together.
    """
    req = db.session.get(GrantRequest, request_id)
    if req is None:
        raise NotFoundError(resource="Request", resource_id=request_id)
    existing = db.session.execute(
        select(RequestWorkflow.id).where(RequestWorkflow.request_id == request_id)
    ).first()
    if existing:
        raise ConflictError(resource="Workflow", field="request_id", value=str(request_id))

    hop = identity.find_one_by_role(Role.HEAD_OF_PROGRAMS)
    if hop is None:
        logger.warning(
            "No active head of programs; request %s starts unassigned", request_id,
            extra={"grant_request_id": request_id},
        )

    workflow = RequestWorkflow(
        request_id=request_id,
        current_stage=WorkflowStage.SUBMISSION,
        head_of_programs_id=hop.id if hop else None,
        submission_date=_now(),
    )
    db.session.add(workflow)
    db.session.flush()
    req.workflow = workflow

    set_request_status(req, derived_status(workflow))
    write_audit(
        entity_type="workflow",
        entity_id=request_id,
        action="workflow.initialize",
        actor_user_id=req.requester_id,
        diff={"current_stage": {"old": None, "new": WorkflowStage.SUBMISSION},
              "head_of_programs_id": {"old": None, "new": workflow.head_of_programs_id}},
    )
    return workflow


def submit_hop_initial_review(request_id: int, actor: Actor, notes: str | None = None) -> RequestWorkflow:
    action = "hop_initial_review"

    def mutate(workflow):
        _require_stage(workflow, action, WorkflowStage.SUBMISSION)
        _require_assignee(workflow, actor, action, "head_of_programs_id")
        workflow.current_stage = WorkflowStage.HOP_REVIEW
        workflow.hop_review_date = _now()
        workflow.hop_review_notes = notes
        return []

    return _transition(request_id, actor, action, mutate)


def assign_to_officer(request_id: int, actor: Actor, officer_id: int, officer_type: str) -> RequestWorkflow:
    action = "assign_officer"

    def mutate(workflow):
        _require_stage(workflow, action, WorkflowStage.HOP_REVIEW)
        _require_assignee(workflow, actor, action, "head_of_programs_id")
        role = _officer_role(workflow, officer_type)
        _require_target_role(workflow, officer_id, role)

        setattr(workflow, _OFFICER_FIELD[role], officer_id)
        workflow.officer_assignment_date = _now()
        workflow.current_stage = WorkflowStage.OFFICER_ASSIGNMENT

        ticket = _ticket(workflow)
        return [
            (officer_id, "New Request Assigned",
             f"Request {ticket} has been assigned to you for review.", request_id, "info"),
            (workflow.request.requester_id, "Request Under Review",
             f"Your request {ticket} has been assigned to an officer for review.", request_id, "info"),
        ]

    return _transition(request_id, actor, action, mutate)


def reassign_officer(request_id: int, actor: Actor, officer_id: int, officer_type: str) -> RequestWorkflow:
    """Replace the assigned officer before they have submitted their review."""
    action = "reassign_officer"

    def mutate(workflow):
        _require_stage(workflow, action, WorkflowStage.OFFICER_ASSIGNMENT)
        _require_assignee(workflow, actor, action, "head_of_programs_id")
        role = _officer_role(workflow, officer_type)
        _require_target_role(workflow, officer_id, role)
        if workflow.officer_id == officer_id and workflow.officer_type == role:
            raise InvalidAssignmentError(
                f"User {officer_id} is already the assigned officer", request_id, officer_id,
            )

        workflow.assistant_project_officer_id = None
        workflow.project_manager_id = None
        setattr(workflow, _OFFICER_FIELD[role], officer_id)
        workflow.officer_assignment_date = _now()

        return [
            (officer_id, "New Request Assigned",
             f"Request {_ticket(workflow)} has been reassigned to you for review.", request_id, "info"),
        ]

    return _transition(request_id, actor, action, mutate)


def submit_officer_review(request_id: int, actor: Actor, notes: str | None = None) -> RequestWorkflow:
    action = "officer_review"

    def mutate(workflow):
        _require_stage(workflow, action, WorkflowStage.OFFICER_ASSIGNMENT)
        if actor.role not in OFFICER_ROLES:
            raise UnauthorizedActorError(request_id, action, actor.id, f"role '{actor.role}' is not an officer role")
        _require_assignee(workflow, actor, action, _OFFICER_FIELD[actor.role])

        workflow.current_stage = WorkflowStage.OFFICER_REVIEW
        workflow.officer_review_date = _now()
        workflow.officer_review_notes = notes

        ticket = _ticket(workflow)
        return [
            (workflow.head_of_programs_id, "Officer Review Submitted",
             f"The officer review for request {ticket} is ready for your final review.", request_id, "info"),
            (workflow.request.requester_id, "Request Review Update",
             f"Your request {ticket} has been reviewed by an officer.", request_id, "info"),
        ]

    return _transition(request_id, actor, action, mutate)


def submit_hop_final_review(request_id: int, actor: Actor, notes: str | None = None) -> RequestWorkflow:
    action = "hop_final_review"

    def mutate(workflow):
        _require_stage(workflow, action, WorkflowStage.OFFICER_REVIEW)
        _require_assignee(workflow, actor, action, "head_of_programs_id")
        workflow.current_stage = WorkflowStage.HOP_FINAL_REVIEW
        workflow.hop_final_review_date = _now()
        workflow.hop_final_review_notes = notes
        return []

    return _transition(request_id, actor, action, mutate)


def assign_to_director(request_id: int, actor: Actor, director_id: int) -> RequestWorkflow:
    action = "assign_director"

    def mutate(workflow):
        _require_stage(workflow, action, WorkflowStage.HOP_FINAL_REVIEW)
        _require_assignee(workflow, actor, action, "head_of_programs_id")
        _require_target_role(workflow, director_id, Role.DIRECTOR)

        workflow.director_id = director_id
        workflow.director_assignment_date = _now()
        workflow.current_stage = WorkflowStage.DIRECTOR_REVIEW

        return [
            (director_id, "Request Awaiting Director Review",
             f"Request {_ticket(workflow)} has been forwarded to you for review.", request_id, "info"),
        ]

    return _transition(request_id, actor, action, mutate)


def reassign_director(request_id: int, actor: Actor, director_id: int) -> RequestWorkflow:
    """Replace the assigned director before they have submitted their review."""
    action = "reassign_director"

    def mutate(workflow):
        _require_stage(workflow, action, WorkflowStage.DIRECTOR_REVIEW)
        _require_assignee(workflow, actor, action, "head_of_programs_id")
        _require_target_role(workflow, director_id, Role.DIRECTOR)
        if workflow.director_id == director_id:
            raise InvalidAssignmentError(
                f"User {director_id} is already the assigned director", request_id, director_id,
            )

        workflow.director_id = director_id
        workflow.director_assignment_date = _now()

        return [
            (director_id, "Request Awaiting Director Review",
             f"Request {_ticket(workflow)} has been reassigned to you for review.", request_id, "info"),
        ]

    return _transition(request_id, actor, action, mutate)


def submit_director_review(request_id: int, actor: Actor, notes: str | None = None) -> RequestWorkflow:
    action = "director_review"

    def mutate(workflow):
        _require_stage(workflow, action, WorkflowStage.DIRECTOR_REVIEW)
        _require_assignee(workflow, actor, action, "director_id")

        ceo = identity.find_one_by_role(Role.CEO)
        patron = identity.find_one_by_role(Role.PATRON)
        workflow.ceo_id = ceo.id if ceo else None
        workflow.patron_id = patron.id if patron else None
        workflow.director_review_date = _now()
        workflow.director_review_notes = notes
        workflow.current_stage = WorkflowStage.EXECUTIVE_APPROVAL

        ticket = _ticket(workflow)
        message = f"Request {ticket} is awaiting your executive approval."
        return [
            (workflow.ceo_id, "Request Awaiting Executive Approval", message, request_id, "info"),
            (workflow.patron_id, "Request Awaiting Executive Approval", message, request_id, "info"),
        ]

    return _transition(request_id, actor, action, mutate)


def submit_executive_approval(
    request_id: int,
    actor: Actor,
    approved: bool,
    notes: str | None = None,
) -> RequestWorkflow:
    """
    Record the CEO's or Patron's decision.

    Completes the workflow when both have approved, or at once when this
    actor rejects: a single rejection is final whatever the other
    executive decided before.
    """
    action = "executive_approval"

    def mutate(workflow):
        _require_stage(workflow, action, WorkflowStage.EXECUTIVE_APPROVAL)
        if actor.role not in EXECUTIVE_ROLES:
            raise UnauthorizedActorError(request_id, action, actor.id, f"role '{actor.role}' is not an executive role")
        id_field, flag_field, notes_field = _EXECUTIVE_FIELDS[actor.role]
        _require_assignee(workflow, actor, action, id_field)

        setattr(workflow, flag_field, bool(approved))
        setattr(workflow, notes_field, notes)

        both_approved = workflow.ceo_approved is True and workflow.patron_approved is True
        ticket = _ticket(workflow)

        if not (both_approved or not approved):
            other_role = Role.PATRON if actor.role is Role.CEO else Role.CEO
            other_id = getattr(workflow, _EXECUTIVE_FIELDS[other_role][0])
            return [
                (other_id, "Executive Approval Recorded",
                 f"The {actor.role.replace('_', ' ')} has approved request {ticket}; your decision is pending.",
                 request_id, "info"),
            ]

        workflow.completed = True
        workflow.current_stage = WorkflowStage.COMPLETED
        workflow.executive_approval_date = _now()
        # the deciding executive's notes
        workflow.executive_approval_notes = notes
        workflow.disposition = Disposition.APPROVED if both_approved else Disposition.REJECTED

        if both_approved:
            title, message, kind = "Request Approved", f"Your request {ticket} has been approved.", "success"
        else:
            title, message, kind = "Request Rejected", f"Your request {ticket} has been rejected.", "error"
        return [(workflow.request.requester_id, title, message, request_id, kind)]

    return _transition(request_id, actor, action, mutate)


def assign_head_of_programs(request_id: int, actor: Actor, hop_id: int) -> RequestWorkflow:
    """Admin fills in a missing head of programs (none existed at submission)."""
    action = "assign_head_of_programs"

    def mutate(workflow):
        if workflow.completed:
            raise InvalidStageError(request_id, action, workflow.current_stage)
        if actor.role is not Role.ADMIN:
            raise UnauthorizedActorError(request_id, action, actor.id, "only an admin may assign a head of programs")
        if workflow.head_of_programs_id is not None:
            raise InvalidAssignmentError(
                "A head of programs is already assigned; it cannot be overwritten", request_id, hop_id,
            )
        _require_target_role(workflow, hop_id, Role.HEAD_OF_PROGRAMS)
        workflow.head_of_programs_id = hop_id
        return [
            (hop_id, "New Request Submitted",
             f"Request {_ticket(workflow)} is awaiting your review.", request_id, "info"),
        ]

    return _transition(request_id, actor, action, mutate)


def assign_executive(request_id: int, actor: Actor, role: str, user_id: int) -> RequestWorkflow:
    """Admin fills in a CEO or Patron that did not exist when the director signed off."""
    action = "assign_executive"

    def mutate(workflow):
        _require_stage(workflow, action, WorkflowStage.EXECUTIVE_APPROVAL)
        if actor.role is not Role.ADMIN:
            raise UnauthorizedActorError(request_id, action, actor.id, "only an admin may assign an executive")
        try:
            executive = Role(role)
        except ValueError:
            executive = None
        if executive not in EXECUTIVE_ROLES:
            raise InvalidAssignmentError(
                f"role must be one of: {', '.join(sorted(EXECUTIVE_ROLES))}", request_id, user_id,
            )
        id_field = _EXECUTIVE_FIELDS[executive][0]
        if getattr(workflow, id_field) is not None:
            raise InvalidAssignmentError(
                f"A {executive} is already assigned; it cannot be overwritten", request_id, user_id,
            )
        _require_target_role(workflow, user_id, executive)
        setattr(workflow, id_field, user_id)
        return [
            (user_id, "Request Awaiting Executive Approval",
             f"Request {_ticket(workflow)} is awaiting your executive approval.", request_id, "info"),
        ]

    return _transition(request_id, actor, action, mutate)


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════

def get_workflow(request_id: int) -> RequestWorkflow:
    workflow = db.session.execute(
        select(RequestWorkflow).where(RequestWorkflow.request_id == request_id)
    ).scalar_one_or_none()
    if workflow is None:
        raise NotFoundError(resource="Workflow", resource_id=request_id)
    return workflow


def list_workflows(actor: Actor, stage: WorkflowStage | None = None) -> list[RequestWorkflow]:
    """
    Workflows visible to ``actor``, most recently updated first.

    Admins see all; staff see the ones they are assigned to in their role's
    column; applicants see the workflows of their own requests.
    """
    stmt = select(RequestWorkflow).order_by(RequestWorkflow.updated_at.desc(), RequestWorkflow.id.desc())
    if actor.role is Role.USER:
        stmt = stmt.join(GrantRequest, GrantRequest.id == RequestWorkflow.request_id).where(
            GrantRequest.requester_id == actor.id
        )
    elif actor.role is not Role.ADMIN:
        stmt = stmt.where(getattr(RequestWorkflow, _ASSIGNEE_FIELD[actor.role]) == actor.id)
    if stage is not None:
        stmt = stmt.where(RequestWorkflow.current_stage == stage)
    return list(db.session.execute(stmt).scalars())


def get_history(request_id: int) -> list[AuditLog]:
    """Audit trail of a workflow, oldest first."""
    get_workflow(request_id)
    return list(db.session.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == "workflow", AuditLog.entity_id == str(request_id))
        .order_by(AuditLog.timestamp, AuditLog.id)
    ).scalars())
