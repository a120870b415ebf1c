"""
Tests: Comment Log + Notification Dispatcher.
"""

import pytest

from bgf.core.exceptions import InvalidAssignmentError, NotFoundError, ValidationError
from bgf.models.notification import Notification
from bgf.models.user import Role
from bgf.services import comment_log
from bgf.services import workflow_engine as engine
from bgf.services.notification import NotificationService


def _titles(user):
    items, _ = NotificationService.list_for_user(user.id)
    return [n.title for n in items]


# ═════════════════════════════════════════════════════════════════════════════
# COMMENTS
# ═════════════════════════════════════════════════════════════════════════════


class TestComments:
    def test_comments_come_back_in_posting_order(self, cast, new_request):
        req = new_request()
        wf = engine.get_workflow(req.id)
        for author, text in ((cast.hop, "first"), (cast.applicant, "second"), (cast.hop, "third")):
            comment_log.add_comment(wf.id, author.id, text)

        comments = comment_log.list_comments(wf.id)
        assert [c.comment for c in comments] == ["first", "second", "third"]
        assert comments[1].user_id == cast.applicant.id

    def test_text_is_stripped(self, cast, new_request):
        wf = engine.get_workflow(new_request().id)
        comment = comment_log.add_comment(wf.id, cast.hop.id, "  spaced out \n")
        assert comment.comment == "spaced out"

    @pytest.mark.parametrize("text", ["", "   ", None, "x" * 5001])
    def test_rejected_text(self, cast, new_request, text):
        wf = engine.get_workflow(new_request().id)
        with pytest.raises(ValidationError):
            comment_log.add_comment(wf.id, cast.hop.id, text)
        assert comment_log.list_comments(wf.id) == []

    def test_allowed_after_completion(self, cast, new_request, actor_of):
        req = new_request()
        engine.submit_hop_initial_review(req.id, actor_of(cast.hop))
        engine.assign_to_officer(req.id, actor_of(cast.hop), cast.pm.id, "project_manager")
        engine.submit_officer_review(req.id, actor_of(cast.pm))
        engine.submit_hop_final_review(req.id, actor_of(cast.hop))
        engine.assign_to_director(req.id, actor_of(cast.hop), cast.director.id)
        engine.submit_director_review(req.id, actor_of(cast.director))
        wf = engine.submit_executive_approval(req.id, actor_of(cast.ceo), False, "budget exhausted")
        assert wf.completed

        comment_log.add_comment(wf.id, cast.applicant.id, "Can I reapply next year?")
        assert len(comment_log.list_comments(wf.id)) == 1

    def test_unknown_workflow(self, cast):
        with pytest.raises(NotFoundError):
            comment_log.add_comment(404, cast.hop.id, "hello")


# ═════════════════════════════════════════════════════════════════════════════
# NOTIFICATIONS FROM TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionNotifications:
    def test_officer_assignment_notifies_officer_and_requester(self, cast, new_request, actor_of):
        req = new_request()
        engine.submit_hop_initial_review(req.id, actor_of(cast.hop))
        engine.assign_to_officer(req.id, actor_of(cast.hop), cast.apo.id, "assistant_project_officer")

        assert _titles(cast.apo) == ["New Request Assigned"]
        assert "Request Under Review" in _titles(cast.applicant)

    def test_director_review_notifies_both_executives(self, cast, new_request, actor_of):
        req = new_request()
        engine.submit_hop_initial_review(req.id, actor_of(cast.hop))
        engine.assign_to_officer(req.id, actor_of(cast.hop), cast.pm.id, "project_manager")
        engine.submit_officer_review(req.id, actor_of(cast.pm))
        engine.submit_hop_final_review(req.id, actor_of(cast.hop))
        engine.assign_to_director(req.id, actor_of(cast.hop), cast.director.id)

        assert _titles(cast.director) == ["Request Awaiting Director Review"]
        assert "Officer Review Submitted" in _titles(cast.hop)

        engine.submit_director_review(req.id, actor_of(cast.director))
        assert _titles(cast.ceo) == ["Request Awaiting Executive Approval"]
        assert _titles(cast.patron) == ["Request Awaiting Executive Approval"]

        engine.submit_executive_approval(req.id, actor_of(cast.ceo), True)
        assert _titles(cast.patron)[0] == "Executive Approval Recorded"

        engine.submit_executive_approval(req.id, actor_of(cast.patron), True)
        items, _ = NotificationService.list_for_user(cast.applicant.id)
        assert items[0].title == "Request Approved"
        assert items[0].type == "success"
        assert items[0].related_entity_id == req.id

    def test_refused_transition_sends_nothing(self, cast, new_request, actor_of):
        req = new_request()
        before = NotificationService.unread_count(cast.pm.id)
        engine.submit_hop_initial_review(req.id, actor_of(cast.hop))
        with pytest.raises(InvalidAssignmentError):
            engine.assign_to_officer(req.id, actor_of(cast.hop), cast.pm.id, "field_officer")
        assert NotificationService.unread_count(cast.pm.id) == before


# ═════════════════════════════════════════════════════════════════════════════
# INBOX
# ═════════════════════════════════════════════════════════════════════════════


class TestInbox:
    def test_unknown_type_falls_back_to_info(self, cast):
        n = NotificationService.dispatch(cast.pm.id, "Heads up", type="urgent")
        assert n.type == "info"

    def test_mark_read_and_unread_count(self, cast):
        a = NotificationService.dispatch(cast.pm.id, "One")
        NotificationService.dispatch(cast.pm.id, "Two")
        assert NotificationService.unread_count(cast.pm.id) == 2

        NotificationService.mark_read(a.id, cast.pm.id)
        assert NotificationService.unread_count(cast.pm.id) == 1
        items, total = NotificationService.list_for_user(cast.pm.id, unread_only=True)
        assert total == 1
        assert items[0].title == "Two"

    def test_cannot_mark_someone_elses(self, cast):
        n = NotificationService.dispatch(cast.pm.id, "Private")
        with pytest.raises(NotFoundError):
            NotificationService.mark_read(n.id, cast.apo.id)

    def test_mark_all_read(self, cast):
        for title in ("a", "b", "c"):
            NotificationService.dispatch(cast.pm.id, title)
        NotificationService.dispatch(cast.apo.id, "untouched")

        assert NotificationService.mark_all_read(cast.pm.id) == 3
        assert NotificationService.unread_count(cast.pm.id) == 0
        assert NotificationService.unread_count(cast.apo.id) == 1

    def test_delete_own_only(self, cast):
        mine = NotificationService.dispatch(cast.pm.id, "Mine")
        theirs = NotificationService.dispatch(cast.apo.id, "Theirs")

        with pytest.raises(NotFoundError):
            NotificationService.delete(theirs.id, cast.pm.id)
        NotificationService.delete(mine.id, cast.pm.id)

        assert NotificationService.list_for_user(cast.pm.id)[1] == 0
        assert NotificationService.list_for_user(cast.apo.id)[1] == 1


class TestInboxApi:
    def test_list_and_read(self, client, cast, auth_headers):
        n = NotificationService.dispatch(cast.director.id, "Ping", "body")
        headers = auth_headers(cast.director)

        res = client.get("/api/v1/notifications", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["total"] == 1

        res = client.post(f"/api/v1/notifications/{n.id}/read", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True

        res = client.get("/api/v1/notifications/unread-count", headers=headers)
        assert res.get_json()["unread_count"] == 0

    def test_other_users_notification_is_404(self, client, cast, auth_headers):
        n = NotificationService.dispatch(cast.director.id, "Ping")
        res = client.post(f"/api/v1/notifications/{n.id}/read", headers=auth_headers(cast.ceo))
        assert res.status_code == 404

    def test_read_all(self, client, cast, auth_headers, make_user):
        user = make_user(Role.USER)
        NotificationService.dispatch(user.id, "a")
        NotificationService.dispatch(user.id, "b")
        res = client.post("/api/v1/notifications/read-all", headers=auth_headers(user))
        assert res.get_json()["marked_read"] == 2
        assert Notification.query.filter_by(user_id=user.id, is_read=False).count() == 0

    def test_delete_endpoint(self, client, cast, auth_headers):
        n = NotificationService.dispatch(cast.director.id, "Old news")
        assert client.delete(f"/api/v1/notifications/{n.id}", headers=auth_headers(cast.ceo)).status_code == 404
        res = client.delete(f"/api/v1/notifications/{n.id}", headers=auth_headers(cast.director))
        assert res.status_code == 200
        assert NotificationService.unread_count(cast.director.id) == 0
