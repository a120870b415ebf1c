"""
Approval Workflow Blueprint.

One endpoint per stage transition, plus read endpoints and the comment
thread. Every route is keyed by the grant request id.

Endpoints:
    GET    /api/v1/workflows                                   ?stage=
    GET    /api/v1/workflows/<rid>
    GET    /api/v1/workflows/<rid>/history
    POST   /api/v1/workflows/<rid>/hop-initial-review          { notes }
    POST   /api/v1/workflows/<rid>/assign-officer              { officer_id, officer_type }
    POST   /api/v1/workflows/<rid>/reassign-officer            { officer_id, officer_type }
    POST   /api/v1/workflows/<rid>/officer-review              { notes }
    POST   /api/v1/workflows/<rid>/hop-final-review            { notes }
    POST   /api/v1/workflows/<rid>/assign-director             { director_id }
    POST   /api/v1/workflows/<rid>/reassign-director           { director_id }
    POST   /api/v1/workflows/<rid>/director-review             { notes }
    POST   /api/v1/workflows/<rid>/executive-approval          { approved, notes }
    POST   /api/v1/workflows/<rid>/assign-head-of-programs     { head_of_programs_id }
    POST   /api/v1/workflows/<rid>/assign-executive            { role, user_id }
    GET    /api/v1/workflows/<rid>/comments
    POST   /api/v1/workflows/<rid>/comments                    { comment }

Layer contract:
    - Blueprint: coarse role gate, parse + validate input, call the engine,
      return JSON. Engine errors are mapped to HTTP by the app-level handlers.
    - NO db.session calls here; services own all writes.
"""

import logging

from flask import Blueprint, jsonify, request

from bgf.auth import current_actor, require_roles
from bgf.models.user import EXECUTIVE_ROLES, OFFICER_ROLES, Role
from bgf.models.workflow import WorkflowStage
from bgf.services import comment_log, request_service, workflow_engine
from bgf.utils.errors import E, api_error
from bgf.utils.helpers import optional_text, require_bool, require_int

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow_bp", __name__, url_prefix="/api/v1/workflows")


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _notes():
    return optional_text(_body(), "notes")


def _done(workflow, message: str):
    return jsonify({"message": message, "workflow": workflow.to_dict()}), 200


def _check_visible(request_id: int):
    """Applicants may only read the workflow of their own requests."""
    req = request_service.get_request(request_id)
    if not request_service.can_view(current_actor(), req):
        return api_error(E.FORBIDDEN, "Insufficient permissions")
    return None


# ── Read ───────────────────────────────────────────────────────────────────────


@workflow_bp.route("", methods=["GET"])
@require_roles()
def list_workflows():
    stage = request.args.get("stage")
    if stage:
        try:
            stage = WorkflowStage(stage)
        except ValueError:
            return api_error(
                E.VALIDATION_INVALID,
                f"stage must be one of: {', '.join(s.value for s in WorkflowStage)}",
            )
    workflows = workflow_engine.list_workflows(current_actor(), stage or None)
    return jsonify({
        "items": [
            {**w.to_dict(), "request": w.request.to_dict() if w.request else None}
            for w in workflows
        ],
        "total": len(workflows),
    })


@workflow_bp.route("/<int:request_id>", methods=["GET"])
@require_roles()
def get_workflow(request_id):
    err = _check_visible(request_id)
    if err:
        return err
    return jsonify(workflow_engine.get_workflow(request_id).to_dict())


@workflow_bp.route("/<int:request_id>/history", methods=["GET"])
@require_roles()
def get_history(request_id):
    err = _check_visible(request_id)
    if err:
        return err
    return jsonify({"items": [a.to_dict() for a in workflow_engine.get_history(request_id)]})


# ── Transitions ────────────────────────────────────────────────────────────────


@workflow_bp.route("/<int:request_id>/hop-initial-review", methods=["POST"])
@require_roles(Role.HEAD_OF_PROGRAMS)
def hop_initial_review(request_id):
    notes, err = _notes()
    if err:
        return err
    wf = workflow_engine.submit_hop_initial_review(request_id, current_actor(), notes)
    return _done(wf, "Initial review submitted")


@workflow_bp.route("/<int:request_id>/assign-officer", methods=["POST"])
@require_roles(Role.HEAD_OF_PROGRAMS)
def assign_officer(request_id):
    data = _body()
    officer_id, err = require_int(data, "officer_id")
    if err:
        return err
    officer_type = data.get("officer_type")
    if not officer_type:
        return api_error(E.VALIDATION_REQUIRED, "officer_type is required")
    wf = workflow_engine.assign_to_officer(request_id, current_actor(), officer_id, officer_type)
    return _done(wf, "Officer assigned")


@workflow_bp.route("/<int:request_id>/reassign-officer", methods=["POST"])
@require_roles(Role.HEAD_OF_PROGRAMS)
def reassign_officer(request_id):
    data = _body()
    officer_id, err = require_int(data, "officer_id")
    if err:
        return err
    officer_type = data.get("officer_type")
    if not officer_type:
        return api_error(E.VALIDATION_REQUIRED, "officer_type is required")
    wf = workflow_engine.reassign_officer(request_id, current_actor(), officer_id, officer_type)
    return _done(wf, "Officer reassigned")


@workflow_bp.route("/<int:request_id>/officer-review", methods=["POST"])
@require_roles(*OFFICER_ROLES)
def officer_review(request_id):
    notes, err = _notes()
    if err:
        return err
    wf = workflow_engine.submit_officer_review(request_id, current_actor(), notes)
    return _done(wf, "Officer review submitted")


@workflow_bp.route("/<int:request_id>/hop-final-review", methods=["POST"])
@require_roles(Role.HEAD_OF_PROGRAMS)
def hop_final_review(request_id):
    notes, err = _notes()
    if err:
        return err
    wf = workflow_engine.submit_hop_final_review(request_id, current_actor(), notes)
    return _done(wf, "Final review submitted")


@workflow_bp.route("/<int:request_id>/assign-director", methods=["POST"])
@require_roles(Role.HEAD_OF_PROGRAMS)
def assign_director(request_id):
    director_id, err = require_int(_body(), "director_id")
    if err:
        return err
    wf = workflow_engine.assign_to_director(request_id, current_actor(), director_id)
    return _done(wf, "Director assigned")


@workflow_bp.route("/<int:request_id>/reassign-director", methods=["POST"])
@require_roles(Role.HEAD_OF_PROGRAMS)
def reassign_director(request_id):
    director_id, err = require_int(_body(), "director_id")
    if err:
        return err
    wf = workflow_engine.reassign_director(request_id, current_actor(), director_id)
    return _done(wf, "Director reassigned")


@workflow_bp.route("/<int:request_id>/director-review", methods=["POST"])
@require_roles(Role.DIRECTOR)
def director_review(request_id):
    notes, err = _notes()
    if err:
        return err
    wf = workflow_engine.submit_director_review(request_id, current_actor(), notes)
    return _done(wf, "Director review submitted")


@workflow_bp.route("/<int:request_id>/executive-approval", methods=["POST"])
@require_roles(*EXECUTIVE_ROLES)
def executive_approval(request_id):
    data = _body()
    approved, err = require_bool(data, "approved")
    if err:
        return err
    notes, err = optional_text(data, "notes")
    if err:
        return err
    wf = workflow_engine.submit_executive_approval(request_id, current_actor(), approved, notes)
    if wf.completed:
        message = f"Request {wf.disposition}"
    else:
        message = "Approval recorded; awaiting the other executive"
    return _done(wf, message)


@workflow_bp.route("/<int:request_id>/assign-head-of-programs", methods=["POST"])
@require_roles(Role.ADMIN)
def assign_head_of_programs(request_id):
    hop_id, err = require_int(_body(), "head_of_programs_id")
    if err:
        return err
    wf = workflow_engine.assign_head_of_programs(request_id, current_actor(), hop_id)
    return _done(wf, "Head of programs assigned")


@workflow_bp.route("/<int:request_id>/assign-executive", methods=["POST"])
@require_roles(Role.ADMIN)
def assign_executive(request_id):
    data = _body()
    role = data.get("role")
    if not role:
        return api_error(E.VALIDATION_REQUIRED, "role is required")
    if not isinstance(role, str):
        return api_error(E.VALIDATION_INVALID, "role must be a string")
    user_id, err = require_int(data, "user_id")
    if err:
        return err
    wf = workflow_engine.assign_executive(request_id, current_actor(), role, user_id)
    return _done(wf, "Executive assigned")


# ── Comments ───────────────────────────────────────────────────────────────────


@workflow_bp.route("/<int:request_id>/comments", methods=["GET"])
@require_roles()
def list_comments(request_id):
    err = _check_visible(request_id)
    if err:
        return err
    workflow = workflow_engine.get_workflow(request_id)
    comments = comment_log.list_comments(workflow.id)
    return jsonify({"items": [c.to_dict() for c in comments], "total": len(comments)})


@workflow_bp.route("/<int:request_id>/comments", methods=["POST"])
@require_roles()
def add_comment(request_id):
    err = _check_visible(request_id)
    if err:
        return err
    text = _body().get("comment")
    if text is not None and not isinstance(text, str):
        return api_error(E.VALIDATION_INVALID, "comment must be a string")
    workflow = workflow_engine.get_workflow(request_id)
    comment = comment_log.add_comment(workflow.id, current_actor().id, text)
    return jsonify(comment.to_dict()), 201
