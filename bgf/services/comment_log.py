"""
Comment Log — append-only discussion thread per workflow.

Comments are allowed at every stage, including after completion. There is
no edit or delete.
"""

import logging

from sqlalchemy import select

from bgf.core.exceptions import NotFoundError, ValidationError
from bgf.models import db
from bgf.models.workflow import RequestWorkflow, WorkflowComment

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 5000


def _get_workflow(workflow_id: int) -> RequestWorkflow:
    workflow = db.session.get(RequestWorkflow, workflow_id)
    if workflow is None:
        raise NotFoundError(resource="Workflow", resource_id=workflow_id)
    return workflow


def add_comment(workflow_id: int, user_id: int, text: str) -> WorkflowComment:
    """Append a comment with a server-assigned timestamp."""
    _get_workflow(workflow_id)
    text = (text or "").strip()
    if not text:
        raise ValidationError("Comment text is required", details={"comment": "must not be empty"})
    if len(text) > MAX_COMMENT_LENGTH:
        raise ValidationError(
            "Comment is too long",
            details={"comment": f"must be at most {MAX_COMMENT_LENGTH} characters"},
        )

    comment = WorkflowComment(workflow_id=workflow_id, user_id=user_id, comment=text)
    db.session.add(comment)
    db.session.commit()
    logger.info("Comment %s added to workflow %s", comment.id, workflow_id, extra={"actor_id": user_id})
    return comment


def list_comments(workflow_id: int) -> list[WorkflowComment]:
    """Comments oldest first; insertion order breaks timestamp ties."""
    _get_workflow(workflow_id)
    return list(db.session.execute(
        select(WorkflowComment)
        .where(WorkflowComment.workflow_id == workflow_id)
        .order_by(WorkflowComment.created_at, WorkflowComment.id)
    ).scalars())
