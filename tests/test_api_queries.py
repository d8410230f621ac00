"""
Tests: /api/queries — raise groups, list with filters, stats, report and
single reads over HTTP.
"""

import pytest

from query_workflow.services import thread_ledger
from query_workflow.services.action_processor import submit_action


def _raise(client, **overrides):
    body = {
        "appNo": "APP123",
        "queries": ["Missing KYC doc", "Income proof unclear"],
        "sendTo": "Sales",
        "submittedBy": "ops.user",
    }
    body.update(overrides)
    return client.post("/api/queries", json=body)


class TestRaiseQueries:
    def test_create_group(self, client, application):
        res = _raise(client)
        assert res.status_code == 201
        body = res.get_json()
        assert body["success"] is True
        data = body["data"]
        assert data["appNo"] == "APP123"
        assert data["customerName"] == "Asha Traders"
        assert data["branchCode"] == "MUM"
        assert data["sendTo"] == ["sales"]
        assert data["sendToSales"] is True
        assert data["sendToCredit"] is False
        assert data["pendingCount"] == 2
        assert [q["status"] for q in data["queries"]] == ["pending", "pending"]
        assert "2 queries raised" in body["message"]

    def test_unknown_application(self, client, application):
        res = _raise(client, appNo="APP999")
        assert res.status_code == 404
        assert res.get_json()["applied"] is False

    @pytest.mark.parametrize("overrides,field", [
        ({"appNo": ""}, "appNo"),
        ({"queries": []}, "queries"),
    ])
    def test_missing_fields(self, client, application, overrides, field):
        res = _raise(client, **overrides)
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_REQUIRED"
        assert field in body["details"]

    def test_numeric_fields_are_coerced(self, client, register_app):
        register_app("123", "Numeric Pvt")
        res = _raise(client, appNo=123, submittedBy=7)
        assert res.status_code == 201
        data = res.get_json()["data"]
        assert data["appNo"] == "123"
        assert data["submittedBy"] == "7"

    def test_numeric_unknown_app_number(self, client, application):
        res = _raise(client, appNo=999)
        assert res.status_code == 404

    def test_overlong_submitter(self, client, application):
        res = _raise(client, submittedBy="o" * 151)
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert "submittedBy" in body["details"]
        assert client.get("/api/queries").get_json()["data"] == []

    def test_bad_send_to(self, client, application):
        res = _raise(client, sendTo="Legal")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_non_json_body(self, client, application):
        res = client.post("/api/queries", data="appNo=APP123", content_type="text/plain")
        assert res.status_code == 415

    def test_non_object_body(self, client, application):
        res = client.post("/api/queries", json=["APP123"])
        assert res.status_code == 400


class TestListQueries:
    def test_list_for_team(self, client, application):
        _raise(client, sendTo="Sales")
        _raise(client, sendTo="Credit", queries=["Bank statement"])

        res = client.get("/api/queries?team=credit")
        assert res.status_code == 200
        body = res.get_json()
        assert body["count"] == 1
        assert body["filters"]["team"] == "credit"
        assert [q["text"] for q in body["data"][0]["queries"]] == ["Bank statement"]

    def test_team_header(self, client, application):
        _raise(client, sendTo="Credit")
        res = client.get("/api/queries", headers={"X-Team": "Sales"})
        assert res.get_json()["count"] == 0

    def test_status_filter(self, client, application):
        group = _raise(client).get_json()["data"]
        submit_action(group["queries"][0]["id"], "approve", "r.verma", "sales")

        pending = client.get("/api/queries?status=pending").get_json()["data"]
        resolved = client.get("/api/queries?status=resolved").get_json()["data"]
        assert [q["text"] for q in pending[0]["queries"]] == ["Income proof unclear"]
        assert [q["text"] for q in resolved[0]["queries"]] == ["Missing KYC doc"]

    def test_unknown_team(self, client, application):
        res = client.get("/api/queries?team=legal")
        assert res.status_code == 400

    def test_unknown_status(self, client, application):
        res = client.get("/api/queries?status=closed")
        assert res.status_code == 400

    def test_poll_interval_header(self, client, application):
        res = client.get("/api/queries")
        assert res.headers["X-Poll-Interval"] == "20"
        assert res.headers["X-Request-ID"]

    def test_stats(self, client, application):
        group = _raise(client, sendTo="Sales,Credit").get_json()["data"]
        submit_action(group["queries"][0]["id"], "otc", "k.iyer", "credit", assigned_to="Sumit Khari")

        data = client.get("/api/queries?stats=true").get_json()["data"]
        assert data["total"] == 2
        assert data["pending"] == 1
        assert data["resolved"] == 1
        assert data["byStatus"]["otc"] == 1
        assert data["byTeam"]["both"] == 2
        assert data["groups"] == 1


class TestReport:
    def test_rows(self, client, application):
        group = _raise(client).get_json()["data"]
        first_id = group["queries"][0]["id"]
        submit_action(first_id, "deferral", "r.verma", "sales", assigned_to="Punit Chadha")

        res = client.get("/api/queries/report?status=deferred")
        assert res.status_code == 200
        rows = res.get_json()["data"]
        assert len(rows) == 1
        row = rows[0]
        assert row["itemId"] == first_id
        assert row["appNo"] == "APP123"
        assert row["assignedTo"] == "Punit Chadha"
        assert row["isAuthorizedAssignee"] is True
        assert row["resolvedBy"] == "r.verma"
        assert row["lastAction"]["action"] == "defer"

    def test_bad_date(self, client, application):
        res = client.get("/api/queries/report?from=yesterday")
        assert res.status_code == 400
        assert "from" in res.get_json()["details"]

    def test_bad_status(self, client, application):
        res = client.get("/api/queries/report?status=closed")
        assert res.status_code == 400


class TestSingleReads:
    def test_get_group(self, client, application):
        group = _raise(client).get_json()["data"]
        res = client.get(f"/api/queries/{group['id']}?team=sales")
        assert res.status_code == 200
        assert res.get_json()["data"]["totalCount"] == 2

    def test_get_group_invisible_to_team(self, client, application):
        group = _raise(client, sendTo="Sales").get_json()["data"]
        res = client.get(f"/api/queries/{group['id']}?team=credit")
        assert res.status_code == 404

    def test_get_item(self, client, application):
        item_id = _raise(client).get_json()["data"]["queries"][0]["id"]
        res = client.get(f"/api/queries/items/{item_id}?team=sales")
        data = res.get_json()["data"]
        assert data["appNo"] == "APP123"
        assert data["customerName"] == "Asha Traders"
        assert data["availableActions"] == ["approve", "defer", "otc"]

    def test_get_item_forbidden(self, client, application):
        item_id = _raise(client).get_json()["data"]["queries"][0]["id"]
        res = client.get(f"/api/queries/items/{item_id}?team=credit")
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_get_item_missing(self, client, application):
        res = client.get("/api/queries/items/missing")
        assert res.status_code == 404


class TestApplications:
    def test_lookup(self, client, application):
        res = client.get("/api/applications/app123")
        assert res.status_code == 200
        assert res.get_json()["data"]["customerName"] == "Asha Traders"

    def test_unknown(self, client, application):
        assert client.get("/api/applications/APP999").status_code == 404


def test_unknown_route_uses_error_envelope(client):
    res = client.get("/api/nope")
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_method_not_allowed(client):
    res = client.delete("/api/queries")
    assert res.status_code == 405
    assert res.get_json()["applied"] is False


def test_thread_ledger_untouched_by_reads(client, application):
    item_id = _raise(client).get_json()["data"]["queries"][0]["id"]
    client.get(f"/api/queries/items/{item_id}")
    assert thread_ledger.history(item_id) == []
