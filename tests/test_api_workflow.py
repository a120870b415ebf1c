"""
Tests: Approval Workflow API (/api/v1/workflows).

Covers:
  - full approval chain over HTTP
  - 401 / 403 role gates
  - engine error → HTTP status mapping
  - malformed bodies rejected with 400 before reaching the engine
  - visibility of workflows, history and comments
"""

import pytest

from bgf.models.user import Role

BASE = "/api/v1/workflows"


def _post(client, headers, rid, action, body=None):
    return client.post(f"{BASE}/{rid}/{action}", json=body or {}, headers=headers)


def _submit(client, auth_headers, cast):
    res = client.post(
        "/api/v1/requests",
        json={"title": "Solar panels for clinic", "request_type": "health_wellness", "amount": 12000},
        headers=auth_headers(cast.applicant),
    )
    assert res.status_code == 201
    return res.get_json()["id"]


def _to_executive(client, auth_headers, cast, rid):
    h = auth_headers
    assert _post(client, h(cast.hop), rid, "hop-initial-review", {"notes": "ok"}).status_code == 200
    assert _post(client, h(cast.hop), rid, "assign-officer",
                 {"officer_id": cast.apo.id, "officer_type": "assistant_project_officer"}).status_code == 200
    assert _post(client, h(cast.apo), rid, "officer-review", {"notes": "visited"}).status_code == 200
    assert _post(client, h(cast.hop), rid, "hop-final-review").status_code == 200
    assert _post(client, h(cast.hop), rid, "assign-director", {"director_id": cast.director.id}).status_code == 200
    assert _post(client, h(cast.director), rid, "director-review", {"notes": "fine"}).status_code == 200


# ═════════════════════════════════════════════════════════════════════════════
# HAPPY PATH
# ═════════════════════════════════════════════════════════════════════════════


class TestFullFlow:
    def test_request_reaches_approval(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        _to_executive(client, auth_headers, cast, rid)

        res = _post(client, auth_headers(cast.ceo), rid, "executive-approval", {"approved": True, "notes": "yes"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["workflow"]["completed"] is False
        assert body["workflow"]["ceo_approved"] is True

        res = _post(client, auth_headers(cast.patron), rid, "executive-approval", {"approved": True})
        body = res.get_json()
        assert res.status_code == 200
        assert body["message"] == "Request approved"
        assert body["workflow"]["current_stage"] == "completed"
        assert body["workflow"]["disposition"] == "approved"

        req = client.get(f"/api/v1/requests/{rid}", headers=auth_headers(cast.applicant)).get_json()
        assert req["status"] == "approved"
        assert req["workflow"]["completed"] is True

    def test_single_rejection_completes(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        _to_executive(client, auth_headers, cast, rid)

        res = _post(client, auth_headers(cast.patron), rid, "executive-approval", {"approved": False, "notes": "no"})
        assert res.status_code == 200
        assert res.get_json()["workflow"]["disposition"] == "rejected"

        res = _post(client, auth_headers(cast.ceo), rid, "executive-approval", {"approved": True})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_STAGE"
        assert res.get_json()["details"]["current_stage"] == "completed"

    def test_history_lists_transitions(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        _post(client, auth_headers(cast.hop), rid, "hop-initial-review")

        res = client.get(f"{BASE}/{rid}/history", headers=auth_headers(cast.admin))
        assert res.status_code == 200
        actions = [item["action"] for item in res.get_json()["items"]]
        assert actions == ["workflow.initialize", "workflow.hop_initial_review"]


# ═════════════════════════════════════════════════════════════════════════════
# AUTH GATES
# ═════════════════════════════════════════════════════════════════════════════


class TestAuthGates:
    def test_missing_token_is_401(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        res = client.post(f"{BASE}/{rid}/hop-initial-review", json={})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_bad_token_is_401(self, client):
        res = client.get(BASE, headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid token"

    @pytest.mark.parametrize("action", [
        "hop-initial-review", "assign-officer", "hop-final-review", "assign-director",
    ])
    def test_hop_only_routes_refuse_applicant(self, client, cast, auth_headers, action):
        rid = _submit(client, auth_headers, cast)
        res = _post(client, auth_headers(cast.applicant), rid, action)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_director_route_refuses_ceo(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        assert _post(client, auth_headers(cast.ceo), rid, "director-review").status_code == 403

    def test_assign_hop_is_admin_only(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        res = _post(client, auth_headers(cast.hop), rid, "assign-head-of-programs",
                    {"head_of_programs_id": cast.hop.id})
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# ERROR MAPPING
# ═════════════════════════════════════════════════════════════════════════════


class TestErrorMapping:
    def test_wrong_stage_is_400(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        res = _post(client, auth_headers(cast.hop), rid, "hop-final-review")
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_STAGE"
        assert body["details"]["current_stage"] == "submission"

    def test_wrong_assignee_is_403(self, client, cast, auth_headers, make_user):
        rid = _submit(client, auth_headers, cast)
        other_hop = make_user(Role.HEAD_OF_PROGRAMS)
        res = _post(client, auth_headers(other_hop), rid, "hop-initial-review")
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED_ACTOR"

    def test_role_mismatch_assignment_is_400(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        _post(client, auth_headers(cast.hop), rid, "hop-initial-review")
        res = _post(client, auth_headers(cast.hop), rid, "assign-officer",
                    {"officer_id": cast.director.id, "officer_type": "project_manager"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_ASSIGNMENT"

    def test_unknown_request_is_404(self, client, cast, auth_headers):
        res = _post(client, auth_headers(cast.hop), 9999, "hop-initial-review")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_assign_missing_executive(self, client, cast, auth_headers, make_user):
        from bgf.models import db

        cast.ceo.is_active = False
        db.session.commit()
        rid = _submit(client, auth_headers, cast)
        _to_executive(client, auth_headers, cast, rid)
        late_ceo = make_user(Role.CEO)

        res = _post(client, auth_headers(late_ceo), rid, "executive-approval", {"approved": True})
        assert res.status_code == 403

        body = {"role": "ceo", "user_id": late_ceo.id}
        assert _post(client, auth_headers(cast.hop), rid, "assign-executive", body).status_code == 403
        res = _post(client, auth_headers(cast.admin), rid, "assign-executive", body)
        assert res.status_code == 200
        assert res.get_json()["workflow"]["ceo_id"] == late_ceo.id
        # the seat is filled now
        res = _post(client, auth_headers(cast.admin), rid, "assign-executive", body)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_ASSIGNMENT"

        assert _post(client, auth_headers(late_ceo), rid, "executive-approval", {"approved": True}).status_code == 200
        res = _post(client, auth_headers(cast.patron), rid, "executive-approval", {"approved": True})
        assert res.get_json()["workflow"]["completed"] is True

    @pytest.mark.parametrize("body", [{"user_id": 5}, {"role": 3, "user_id": 5}, {"role": "ceo"}])
    def test_assign_executive_malformed_is_400(self, client, cast, auth_headers, body):
        res = _post(client, auth_headers(cast.admin), 1, "assign-executive", body)
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# MALFORMED INPUT
# ═════════════════════════════════════════════════════════════════════════════


class TestMalformedInput:
    def test_assign_officer_requires_officer_id(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        _post(client, auth_headers(cast.hop), rid, "hop-initial-review")
        res = _post(client, auth_headers(cast.hop), rid, "assign-officer", {"officer_type": "project_manager"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_assign_officer_requires_officer_type(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        _post(client, auth_headers(cast.hop), rid, "hop-initial-review")
        res = _post(client, auth_headers(cast.hop), rid, "assign-officer", {"officer_id": cast.pm.id})
        assert res.status_code == 400

    def test_non_integer_director_id(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        res = _post(client, auth_headers(cast.hop), rid, "assign-director", {"director_id": "abc"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    @pytest.mark.parametrize("approved", [None, "true", 1])
    def test_executive_approval_needs_json_boolean(self, client, cast, auth_headers, approved):
        rid = _submit(client, auth_headers, cast)
        body = {} if approved is None else {"approved": approved}
        res = _post(client, auth_headers(cast.ceo), rid, "executive-approval", body)
        assert res.status_code == 400

    def test_notes_must_be_text(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        res = _post(client, auth_headers(cast.hop), rid, "hop-initial-review", {"notes": ["a", "b"]})
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# VISIBILITY
# ═════════════════════════════════════════════════════════════════════════════


class TestVisibility:
    def test_applicant_cannot_read_others_workflow(self, client, cast, auth_headers, make_user):
        rid = _submit(client, auth_headers, cast)
        stranger = make_user(Role.USER)
        assert client.get(f"{BASE}/{rid}", headers=auth_headers(stranger)).status_code == 403
        assert client.get(f"{BASE}/{rid}", headers=auth_headers(cast.applicant)).status_code == 200

    def test_list_is_scoped_to_assignee(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        _submit(client, auth_headers, cast)

        res = client.get(BASE, headers=auth_headers(cast.director))
        assert res.get_json()["total"] == 0

        res = client.get(BASE, headers=auth_headers(cast.hop))
        assert res.get_json()["total"] == 2

        res = client.get(f"{BASE}?stage=submission", headers=auth_headers(cast.admin))
        items = res.get_json()["items"]
        assert {i["request_id"] for i in items} >= {rid}
        assert all(i["request"]["ticket_number"].startswith("BGF-") for i in items)

    def test_unknown_stage_filter(self, client, cast, auth_headers):
        res = client.get(f"{BASE}?stage=limbo", headers=auth_headers(cast.admin))
        assert res.status_code == 400

    def test_comments_thread(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        res = client.post(f"{BASE}/{rid}/comments", json={"comment": "Please attach receipts"},
                          headers=auth_headers(cast.hop))
        assert res.status_code == 201
        client.post(f"{BASE}/{rid}/comments", json={"comment": "Attached."},
                    headers=auth_headers(cast.applicant))

        res = client.get(f"{BASE}/{rid}/comments", headers=auth_headers(cast.applicant))
        items = res.get_json()["items"]
        assert [c["comment"] for c in items] == ["Please attach receipts", "Attached."]
        assert items[0]["user_role"] == "head_of_programs"

    def test_empty_comment_is_422(self, client, cast, auth_headers):
        rid = _submit(client, auth_headers, cast)
        res = client.post(f"{BASE}/{rid}/comments", json={"comment": "   "}, headers=auth_headers(cast.hop))
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_BUSINESS"
