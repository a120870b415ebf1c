"""
Tests: concurrent transitions and notification isolation.

A second database session commits between the engine's load and its commit,
which is exactly the interleaving two simultaneous requests produce. Runs
against a file-backed SQLite database so the two sessions use separate
connections.
"""

import logging

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from bgf import create_app
from bgf.auth import Actor
from bgf.core.exceptions import InvalidStageError, PersistenceConflictError
from bgf.models import db as _db
from bgf.models.audit import AuditLog
from bgf.models.request import RequestStatus
from bgf.models.user import Role
from bgf.models.workflow import Disposition, RequestWorkflow, WorkflowStage
from bgf.services import request_service
from bgf.services import workflow_engine as engine
from bgf.services.notification import NotificationService


@pytest.fixture()
def file_app(tmp_path):
    application = create_app("testing", overrides={
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 30}},
        "WORKFLOW_MAX_ATTEMPTS": 3,
    })
    with application.app_context():
        _db.create_all()
        yield application
        _db.session.remove()
        _db.drop_all()
        _db.engine.dispose()


def _a(user) -> Actor:
    return Actor(id=user.id, role=user.role)


@pytest.fixture()
def at_executive_approval(file_app, make_user):
    """A request waiting on the CEO and the Patron, in the file database."""
    hop = make_user(Role.HEAD_OF_PROGRAMS)
    pm = make_user(Role.PROJECT_MANAGER)
    director = make_user(Role.DIRECTOR)
    ceo = make_user(Role.CEO)
    patron = make_user(Role.PATRON)
    applicant = make_user(Role.USER)

    req = request_service.create_request(_a(applicant), {"title": "Water tank", "request_type": "wash"})
    engine.submit_hop_initial_review(req.id, _a(hop))
    engine.assign_to_officer(req.id, _a(hop), pm.id, "project_manager")
    engine.submit_officer_review(req.id, _a(pm))
    engine.submit_hop_final_review(req.id, _a(hop))
    engine.assign_to_director(req.id, _a(hop), director.id)
    engine.submit_director_review(req.id, _a(director))
    return req.id, ceo, patron


def _competing_write(request_id, **changes):
    """Commit ``changes`` to the workflow from an independent session."""
    with Session(_db.engine) as other:
        workflow = other.execute(
            select(RequestWorkflow).where(RequestWorkflow.request_id == request_id)
        ).scalar_one()
        for key, value in changes.items():
            setattr(workflow, key, value)
        other.commit()


def _interleave(monkeypatch, request_id, times, **changes):
    """Patch the engine loader so a competitor commits right after each of the first ``times`` loads."""
    original = engine._load_for_update
    calls = []

    def racing_load(rid):
        workflow = original(rid)
        calls.append(workflow.version_id)
        if len(calls) <= times:
            _competing_write(request_id, **changes)
        return workflow

    monkeypatch.setattr(engine, "_load_for_update", racing_load)
    return calls


# ═════════════════════════════════════════════════════════════════════════════
# LOST RACES
# ═════════════════════════════════════════════════════════════════════════════


class TestLostRace:
    def test_loser_retries_on_fresh_state_and_completes(self, monkeypatch, at_executive_approval):
        request_id, ceo, patron = at_executive_approval
        calls = _interleave(monkeypatch, request_id, 1, patron_approved=True)

        wf = engine.submit_executive_approval(request_id, _a(ceo), True, "go ahead")

        assert len(calls) == 2
        assert calls[1] == calls[0] + 1
        assert wf.completed is True
        assert wf.disposition is Disposition.APPROVED
        assert wf.request.status is RequestStatus.APPROVED
        assert wf.ceo_approved is True
        assert wf.patron_approved is True

    def test_retry_sees_completion_and_refuses(self, monkeypatch, at_executive_approval):
        request_id, ceo, _ = at_executive_approval
        _interleave(
            monkeypatch, request_id, 1,
            patron_approved=False,
            completed=True,
            current_stage=WorkflowStage.COMPLETED,
            disposition=Disposition.REJECTED,
        )

        with pytest.raises(InvalidStageError):
            engine.submit_executive_approval(request_id, _a(ceo), True)

        _db.session.expire_all()
        wf = engine.get_workflow(request_id)
        assert wf.ceo_approved is None
        assert wf.disposition is Disposition.REJECTED

    def test_gives_up_after_max_attempts(self, monkeypatch, at_executive_approval):
        request_id, ceo, _ = at_executive_approval
        calls = _interleave(monkeypatch, request_id, 99, patron_notes="still thinking")

        with pytest.raises(PersistenceConflictError) as exc:
            engine.submit_executive_approval(request_id, _a(ceo), True)

        assert exc.value.code == "ERR_PERSISTENCE_CONFLICT"
        assert len(calls) == 3
        _db.session.expire_all()
        wf = engine.get_workflow(request_id)
        assert wf.ceo_approved is None
        assert wf.completed is False
        approvals = _db.session.execute(
            select(AuditLog).where(AuditLog.action == "workflow.executive_approval")
        ).scalars().all()
        assert approvals == []

    def test_lost_race_is_logged(self, monkeypatch, caplog, at_executive_approval):
        request_id, ceo, _ = at_executive_approval
        _interleave(monkeypatch, request_id, 1, patron_notes="reading")

        with caplog.at_level(logging.WARNING, logger="bgf.services.workflow_engine"):
            engine.submit_executive_approval(request_id, _a(ceo), True)

        assert any("Lost race" in r.getMessage() for r in caplog.records)


# ═════════════════════════════════════════════════════════════════════════════
# NOTIFICATION FAILURE
# ═════════════════════════════════════════════════════════════════════════════


class TestNotificationIsolation:
    def test_failed_delivery_does_not_undo_transition(self, monkeypatch, caplog, cast, new_request):
        req = new_request()

        def broken(*args, **kwargs):
            raise RuntimeError("mail relay down")

        monkeypatch.setattr(NotificationService, "_deliver", staticmethod(broken))

        with caplog.at_level(logging.WARNING, logger="bgf.services.notification"):
            engine.submit_hop_initial_review(req.id, _a(cast.hop))
            wf = engine.assign_to_officer(req.id, _a(cast.hop), cast.pm.id, "project_manager")

        assert wf.current_stage is WorkflowStage.OFFICER_ASSIGNMENT
        _db.session.expire_all()
        assert engine.get_workflow(req.id).project_manager_id == cast.pm.id
        assert any("mail relay down" in r.getMessage() for r in caplog.records)

    def test_unassigned_recipient_is_skipped(self):
        assert NotificationService.dispatch(None, "Nobody home") is None
