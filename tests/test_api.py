"""
HTTP API Tests — projects, workflow, versions, feedback, modifications.

Runs against the testing app (SQL revision store + audit sink), so every
lifecycle event also lands in the audit_logs table.
"""

import pytest

from designflow.models.audit import AuditLog


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _create_project(client, **overrides):
    payload = {
        "client_id": "client-1",
        "designer_id": "designer-1",
        "name": "Brand kit",
        "final_deadline": "2026-12-01",
    }
    payload.update(overrides)
    res = client.post("/api/v1/projects", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _transition(client, pid, target, role, **body):
    return client.post(
        f"/api/v1/projects/{pid}/transition",
        json={"target_status": target, "acting_role": role, **body},
    )


def _upload(client, pid, *names):
    files = [{"name": n, "type": "image/png", "size": 2048, "url": f"/files/{n}"} for n in names or ("a.png",)]
    res = client.post(f"/api/v1/projects/{pid}/versions", json={"files": files},
                      headers={"X-User": "designer-1"})
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _to_in_progress(client, pid):
    for target, role in (("review_requested", "designer"), ("client_review_pending", "designer"),
                         ("in_progress", "client")):
        res = _transition(client, pid, target, role)
        assert res.status_code == 200, res.get_json()


def _to_feedback_period(client, pid):
    _to_in_progress(client, pid)
    _upload(client, pid)
    res = _transition(client, pid, "feedback_period", "designer")
    assert res.status_code == 200, res.get_json()


# ═══════════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════════


class TestHealth:

    def test_ready(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        data = res.get_json()
        assert data["checks"]["database"]["status"] == "ok"
        assert data["checks"]["revision_store"]["type"] == "SqlRevisionStore"


# ═══════════════════════════════════════════════════════════════════════════
# Projects
# ═══════════════════════════════════════════════════════════════════════════


class TestProjects:

    def test_create(self, client):
        data = _create_project(client)
        assert data["status"] == "creation_pending"
        assert data["total_modification_count"] == 3
        assert data["remaining_modification_count"] == 3
        assert data["final_deadline"] == "2026-12-01"
        assert data["revision"] == 1
        assert data["progress"] == 5
        assert data["status_info"]["status"] == "creation_pending"

    def test_create_requires_parties(self, client):
        res = client.post("/api/v1/projects", json={"name": "x"})
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert set(body["details"]) == {"client_id", "designer_id"}

    def test_create_negative_quota(self, client):
        res = client.post("/api/v1/projects", json={
            "client_id": "c", "designer_id": "d", "total_modification_count": -1,
        })
        assert res.status_code == 400

    def test_get_and_list(self, client):
        p = _create_project(client)
        _create_project(client, client_id="client-2")
        assert client.get(f"/api/v1/projects/{p['id']}").get_json()["id"] == p["id"]
        listed = client.get("/api/v1/projects?client_id=client-1").get_json()
        assert listed["total"] == 1

    def test_list_unknown_status(self, client):
        assert client.get("/api/v1/projects?status=bogus").status_code == 400

    def test_not_found(self, client):
        res = client.get("/api/v1/projects/missing")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_non_json_body_rejected(self, client):
        res = client.post("/api/v1/projects", data="client_id=c", content_type="text/plain")
        assert res.status_code == 415


# ═══════════════════════════════════════════════════════════════════════════
# Workflow over HTTP
# ═══════════════════════════════════════════════════════════════════════════


class TestWorkflowApi:

    def test_transition(self, client):
        p = _create_project(client)
        res = _transition(client, p["id"], "review_requested", "designer")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "review_requested"
        assert data["revision"] == 2
        assert data["progress"] == 10

    def test_role_header(self, client):
        p = _create_project(client)
        res = client.post(f"/api/v1/projects/{p['id']}/transition",
                          json={"target_status": "review_requested"},
                          headers={"X-Role": "designer"})
        assert res.status_code == 200

    def test_missing_role(self, client):
        p = _create_project(client)
        res = client.post(f"/api/v1/projects/{p['id']}/transition", json={"target_status": "review_requested"})
        assert res.status_code == 400

    def test_undeclared_edge_is_409(self, client):
        p = _create_project(client)
        res = _transition(client, p["id"], "completed", "client")
        assert res.status_code == 409
        assert res.get_json()["code"] == "TRANSITION_INVALID"

    def test_wrong_role_is_403(self, client):
        p = _create_project(client)
        res = _transition(client, p["id"], "review_requested", "client")
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "ERR_FORBIDDEN"
        assert body["details"]["required_role"] == "designer"

    def test_failed_rule_is_422(self, client):
        p = _create_project(client)
        _to_in_progress(client, p["id"])
        res = _transition(client, p["id"], "feedback_period", "designer",
                          validation_context={"has_draft_files": True})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "TRANSITION_RULES_FAILED"
        assert body["details"]["failed_rules"] == ["draft_files_required"]
        assert client.get(f"/api/v1/projects/{p['id']}").get_json()["status"] == "in_progress"

    def test_stale_revision_is_409(self, client):
        p = _create_project(client)
        _transition(client, p["id"], "review_requested", "designer")
        res = _transition(client, p["id"], "client_review_pending", "designer", expected_revision=1)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STALE"

    def test_expected_revision_must_be_int(self, client):
        p = _create_project(client)
        res = _transition(client, p["id"], "review_requested", "designer", expected_revision="1")
        assert res.status_code == 400

    def test_check_is_a_dry_run(self, client):
        p = _create_project(client)
        _to_in_progress(client, p["id"])
        res = client.post(f"/api/v1/projects/{p['id']}/transition/check",
                          json={"target_status": "feedback_period", "acting_role": "designer"})
        data = res.get_json()
        assert data["valid"] is False
        assert data["failed_rules"] == ["draft_files_required"]
        assert client.get(f"/api/v1/projects/{p['id']}").get_json()["status"] == "in_progress"

    def test_actions(self, client):
        p = _create_project(client)
        data = client.get(f"/api/v1/projects/{p['id']}/actions?role=designer").get_json()
        assert {a["target_status"] for a in data["actions"]} == {"review_requested", "cancelled"}
        data = client.get(f"/api/v1/projects/{p['id']}/actions?role=client").get_json()
        assert [a["target_status"] for a in data["actions"]] == ["cancelled"]

    def test_progress(self, client):
        p = _create_project(client)
        data = client.get(f"/api/v1/projects/{p['id']}/progress").get_json()
        assert data["progress"] == 5

    def test_progress_with_milestones(self, client):
        p = _create_project(client)
        _to_in_progress(client, p["id"])
        url = f"/api/v1/projects/{p['id']}/progress"
        assert client.get(f"{url}?completed_milestones=1&total_milestones=2").get_json()["progress"] == 45
        assert client.get(f"{url}?milestonesCompleted=1&totalMilestones=2").get_json()["progress"] == 45

    def test_transition_table(self, client):
        data = client.get("/api/v1/workflow/transitions").get_json()
        assert len(data["transitions"]) == 15
        assert "designer_review_pending" in data["statuses"]

    def test_status_info(self, client):
        data = client.get("/api/v1/workflow/statuses/completed").get_json()
        assert data["progress"] == 100

    def test_completion_round_trip(self, client):
        p = _create_project(client)
        _to_in_progress(client, p["id"])
        _upload(client, p["id"])
        res = _transition(client, p["id"], "completion_requested", "designer",
                          completion_note="All done", final_deliverables=["/files/final.zip"])
        assert res.status_code == 200
        data = res.get_json()
        assert data["completion_note"] == "All done"
        assert data["completion_requested_at"]
        res = _transition(client, p["id"], "completed", "client")
        assert res.get_json()["completed_at"]
        res = _transition(client, p["id"], "archived", "client")
        assert res.get_json()["status"] == "archived"


# ═══════════════════════════════════════════════════════════════════════════
# Versions over HTTP
# ═══════════════════════════════════════════════════════════════════════════


class TestVersionsApi:

    def test_create_and_list(self, client):
        p = _create_project(client)
        v1 = _upload(client, p["id"], "a.png", "b.png")
        assert v1["version_number"] == 1
        assert v1["created_by"] == "designer-1"
        _upload(client, p["id"])
        data = client.get(f"/api/v1/projects/{p['id']}/versions").get_json()
        assert [v["version_number"] for v in data["items"]] == [1, 2]

    def test_empty_files_is_400(self, client):
        p = _create_project(client)
        res = client.post(f"/api/v1/projects/{p['id']}/versions", json={"files": []})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_EMPTY_INPUT"

    def test_unknown_project(self, client):
        res = client.post("/api/v1/projects/missing/versions", json={"files": [{"name": "a.png"}]})
        assert res.status_code == 404

    def test_current_approve_set_current_delete(self, client):
        p = _create_project(client)
        v1 = _upload(client, p["id"])
        v2 = _upload(client, p["id"])
        current = client.get(f"/api/v1/projects/{p['id']}/versions/current").get_json()
        assert current["version"]["id"] == v2["id"]

        res = client.post(f"/api/v1/versions/{v1['id']}/approve", json={}, headers={"X-User": "client-1"})
        assert res.get_json()["approved_by"] == "client-1"

        res = client.post(f"/api/v1/versions/{v1['id']}/set-current", json={})
        assert res.get_json()["is_current"] is True

        res = client.delete(f"/api/v1/versions/{v1['id']}")
        assert res.get_json() == {"deleted": True, "id": v1["id"]}
        assert client.get(f"/api/v1/versions/{v2['id']}").get_json()["is_current"] is True
        assert client.delete(f"/api/v1/versions/{v1['id']}").status_code == 404

    def test_compare(self, client):
        p = _create_project(client)
        v1 = _upload(client, p["id"])
        v2 = _upload(client, p["id"])
        data = client.get(f"/api/v1/versions/compare?a={v1['id']}&b={v2['id']}").get_json()
        assert data["comparison_mode"] == "side-by-side"
        assert client.get("/api/v1/versions/compare?a=x").status_code == 400

    def test_stats(self, client):
        p = _create_project(client)
        _upload(client, p["id"], "a.png", "b.png")
        data = client.get(f"/api/v1/projects/{p['id']}/versions/stats").get_json()
        assert data["total_files"] == 2


# ═══════════════════════════════════════════════════════════════════════════
# Feedback over HTTP
# ═══════════════════════════════════════════════════════════════════════════


class TestFeedbackApi:

    def _submit(self, client, pid, **fields):
        payload = {"content": "Make the logo bigger", "priority": "medium", "client_id": "client-1"}
        payload.update(fields)
        res = client.post(f"/api/v1/projects/{pid}/feedback", json=payload, headers={"X-User": "client-1"})
        assert res.status_code == 201, res.get_json()
        return res.get_json()

    def test_submit(self, client):
        p = _create_project(client)
        history = self._submit(client, p["id"])
        assert history["current_version"] == 1
        assert history["project_id"] == p["id"]

    def test_update_compare_rollback(self, client):
        p = _create_project(client)
        fid = self._submit(client, p["id"])["feedback_id"]

        res = client.patch(f"/api/v1/feedback/{fid}", json={"updates": {"priority": "high"}})
        assert res.get_json()["current_version"] == 2

        data = client.get(f"/api/v1/feedback/{fid}/compare?v1=1&v2=2").get_json()
        assert data["summary"] == "Modified: Priority"

        res = client.post(f"/api/v1/feedback/{fid}/rollback", json={"target_version": 1})
        assert res.get_json()["current_version"] == 3

        snap = client.get(f"/api/v1/feedback/{fid}/versions/3").get_json()
        assert snap["feedback"]["priority"] == "medium"

    def test_no_op_patch(self, client):
        p = _create_project(client)
        fid = self._submit(client, p["id"])["feedback_id"]
        res = client.patch(f"/api/v1/feedback/{fid}", json={"priority": "medium"})
        assert res.get_json()["current_version"] == 1

    def test_rollback_needs_int(self, client):
        p = _create_project(client)
        fid = self._submit(client, p["id"])["feedback_id"]
        assert client.post(f"/api/v1/feedback/{fid}/rollback", json={"target_version": "1"}).status_code == 400

    def test_unknown_version(self, client):
        p = _create_project(client)
        fid = self._submit(client, p["id"])["feedback_id"]
        assert client.get(f"/api/v1/feedback/{fid}/versions/5").status_code == 404

    def test_list_and_statistics(self, client):
        p = _create_project(client)
        self._submit(client, p["id"])
        self._submit(client, p["id"], content="Different palette")
        assert client.get(f"/api/v1/projects/{p['id']}/feedback").get_json()["total"] == 2
        stats = client.get(f"/api/v1/projects/{p['id']}/feedback/statistics").get_json()
        assert stats["total_feedbacks"] == 2

    def test_feedback_unlocks_start_modification(self, client):
        p = _create_project(client)
        _to_feedback_period(client, p["id"])
        assert _transition(client, p["id"], "modification_in_progress", "designer").status_code == 422
        self._submit(client, p["id"])
        assert _transition(client, p["id"], "modification_in_progress", "designer").status_code == 200


# ═══════════════════════════════════════════════════════════════════════════
# Modifications over HTTP
# ═══════════════════════════════════════════════════════════════════════════


class TestModificationsApi:

    def _file(self, client, pid, **body):
        payload = {"description": "Change the headline font"}
        payload.update(body)
        return client.post(f"/api/v1/projects/{pid}/modifications", json=payload,
                           headers={"X-User": "client-1"})

    def test_rejected_outside_feedback_statuses(self, client):
        p = _create_project(client)
        assert self._file(client, p["id"]).status_code == 409

    def test_full_request_lifecycle(self, client):
        p = _create_project(client, total_modification_count=1)
        pid = p["id"]
        _to_feedback_period(client, pid)

        res = self._file(client, pid)
        assert res.status_code == 201
        rid = res.get_json()["id"]
        base = f"/api/v1/projects/{pid}/modifications/{rid}"

        assert client.post(f"{base}/approve", json={}).get_json()["status"] == "approved"
        assert client.post(f"{base}/start", json={}).get_json()["status"] == "in_progress"
        done = client.post(f"{base}/complete", json={"actual_completion_date": "2026-11-02"}).get_json()
        assert done["actual_completion_date"] == "2026-11-02"

        quota = client.get(f"/api/v1/projects/{pid}/modifications/quota").get_json()
        assert (quota["used"], quota["remaining"]) == (1, 0)
        assert quota["is_limit_exceeded"] is False
        quota = client.get(f"/api/v1/projects/{pid}/modifications/quota?attempting_new_request=true").get_json()
        assert quota["is_limit_exceeded"] is True

        project = client.get(f"/api/v1/projects/{pid}").get_json()
        assert project["remaining_modification_count"] == 0

        cost = client.get(f"/api/v1/projects/{pid}/modifications/cost?urgency=urgent").get_json()
        assert cost == {"is_additional_cost": True, "amount": 150000, "urgency": "urgent"}

    def test_invalid_move_is_409(self, client):
        p = _create_project(client)
        _to_feedback_period(client, p["id"])
        rid = self._file(client, p["id"]).get_json()["id"]
        res = client.post(f"/api/v1/projects/{p['id']}/modifications/{rid}/start", json={})
        assert res.status_code == 409

    def test_reject_needs_reason(self, client):
        p = _create_project(client)
        _to_feedback_period(client, p["id"])
        rid = self._file(client, p["id"]).get_json()["id"]
        res = client.post(f"/api/v1/projects/{p['id']}/modifications/{rid}/reject", json={})
        assert res.status_code == 400
        res = client.post(f"/api/v1/projects/{p['id']}/modifications/{rid}/reject",
                          json={"rejection_reason": "Out of scope"})
        assert res.get_json()["status"] == "rejected"

    def test_list_and_statistics(self, client):
        p = _create_project(client)
        _to_feedback_period(client, p["id"])
        self._file(client, p["id"])
        self._file(client, p["id"], urgency="urgent")
        data = client.get(f"/api/v1/projects/{p['id']}/modifications?status=pending").get_json()
        assert [r["request_number"] for r in data["items"]] == [1, 2]
        stats = client.get(f"/api/v1/projects/{p['id']}/modifications/statistics").get_json()
        assert stats["urgent_requests"] == 1

    def test_unknown_request(self, client):
        p = _create_project(client)
        assert client.get(f"/api/v1/projects/{p['id']}/modifications/missing").status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Audit trail
# ═══════════════════════════════════════════════════════════════════════════


class TestAuditTrail:

    def test_lifecycle_events_are_audited(self, client):
        p = _create_project(client, actor="designer-1")
        _transition(client, p["id"], "review_requested", "designer", actor="designer-1")
        _upload(client, p["id"])

        rows = AuditLog.query.filter_by(project_id=p["id"]).order_by(AuditLog.id).all()
        assert [r.action for r in rows] == [
            "project.create", "project.transition", "design_version.create",
        ]
        transition = rows[1]
        assert transition.actor == "designer-1"
        assert transition.diff["status"] == {"old": "creation_pending", "new": "review_requested"}

    def test_rejected_transition_is_not_audited(self, client):
        p = _create_project(client)
        _transition(client, p["id"], "completed", "client")
        assert AuditLog.query.filter_by(action="project.transition").count() == 0

    def test_audit_endpoint(self, client):
        p = _create_project(client)
        _transition(client, p["id"], "review_requested", "designer")
        data = client.get(f"/api/v1/projects/{p['id']}/audit").get_json()
        assert data["total"] == 2
        assert data["items"][0]["action"] == "project.transition"

    def test_audit_filter_by_entity(self, client):
        p = _create_project(client)
        _upload(client, p["id"])
        data = client.get(f"/api/v1/projects/{p['id']}/audit?entity_type=design_version").get_json()
        assert [i["action"] for i in data["items"]] == ["design_version.create"]


@pytest.mark.parametrize("path", [
    "/api/v1/projects/missing/versions",
    "/api/v1/projects/missing/feedback",
    "/api/v1/projects/missing/modifications",
    "/api/v1/projects/missing/audit",
])
def test_project_scoped_listings_404_for_unknown_project(client, path):
    assert client.get(path).status_code == 404
