"""
Tests: Action Processor — per-item state machine, assignee rules, revert,
conditional-update conflicts, idempotent replay and storage failures.

State machine (ITEM_TRANSITIONS):
    pending  -> approved | deferred | otc
    approved | deferred | otc -> pending   (revert)

Starting states are set directly on the row, bypassing the processor, so
every edge can be exercised on its own.
"""

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from query_workflow.core.exceptions import (
    ConflictError,
    NotFoundError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from query_workflow.models import db as _db
from query_workflow.models.query import ITEM_STATUSES, ITEM_TRANSITIONS, NAME_MAX_LENGTH, QueryItem
from query_workflow.models.thread import REQUEST_ID_MAX_LENGTH, ThreadEntry
from query_workflow.services import action_processor, thread_ledger
from query_workflow.services.action_processor import (
    ApproveRequest,
    DeferRequest,
    MessageRequest,
    OtcRequest,
    RevertRequest,
    parse_action_payload,
    submit_action,
    submit_message,
)


def _force_status(item_id: str, status: str) -> None:
    """Put an item straight into ``status`` (assignee set when required)."""
    assignee = "Sumit Khari" if status in ("deferred", "otc") else None
    _db.session.execute(
        update(QueryItem).where(QueryItem.id == item_id).values(status=status, assigned_to=assignee)
    )
    _db.session.commit()


def _extra_args(action: str) -> dict:
    if action in ("defer", "otc"):
        return {"assigned_to": "Sumit Khari"}
    if action == "revert":
        return {"remarks": "Document was wrong"}
    return {}


def _entries(item_id: str) -> list[ThreadEntry]:
    return thread_ledger.history(item_id)


@pytest.fixture()
def item(make_group):
    return make_group(send_to="Sales,Credit").items[0]


# ═════════════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════════════

VALID_EDGES = [
    (source, action, rule["to"])
    for action, rule in ITEM_TRANSITIONS.items()
    for source in rule["from"]
]
INVALID_EDGES = [
    (source, action)
    for action, rule in ITEM_TRANSITIONS.items()
    for source in ITEM_STATUSES
    if source not in rule["from"]
]


class TestTransitions:
    @pytest.mark.parametrize("source,action,target", VALID_EDGES)
    def test_valid_edge(self, item, source, action, target):
        _force_status(item.id, source)

        result = submit_action(item.id, action, "r.verma", "sales", **_extra_args(action))

        assert result.item.status == target
        assert result.entry.action == action
        assert result.entry.from_status == source
        assert result.entry.to_status == target
        assert result.replayed is False

    @pytest.mark.parametrize("source,action", INVALID_EDGES)
    def test_invalid_edge_conflicts(self, item, source, action):
        _force_status(item.id, source)
        version_before = _db.session.get(QueryItem, item.id).version

        with pytest.raises(ConflictError) as exc:
            submit_action(item.id, action, "r.verma", "sales", **_extra_args(action))

        assert exc.value.current_status == source
        refreshed = _db.session.get(QueryItem, item.id)
        assert refreshed.status == source
        assert refreshed.version == version_before
        assert _entries(item.id) == []

    def test_wire_alias_deferral(self, item):
        result = submit_action(item.id, "deferral", "r.verma", "sales", assigned_to="Sumit Khari")
        assert result.item.status == "deferred"
        assert result.entry.action == "defer"

    def test_unknown_action_rejected(self, item):
        with pytest.raises(ValidationError):
            submit_action(item.id, "escalate", "r.verma", "sales")


# ═════════════════════════════════════════════════════════════════════════════
# Assignee invariant and resolution fields
# ═════════════════════════════════════════════════════════════════════════════


class TestAssignee:
    @pytest.mark.parametrize("action", ["defer", "otc"])
    def test_assignee_required(self, item, action):
        with pytest.raises(ValidationError) as exc:
            submit_action(item.id, action, "r.verma", "sales")
        assert "assignedTo" in exc.value.details
        assert _db.session.get(QueryItem, item.id).status == "pending"

    @pytest.mark.parametrize("action", ["defer", "otc"])
    def test_assignee_must_be_on_roster(self, item, action):
        with pytest.raises(ValidationError):
            submit_action(item.id, action, "r.verma", "sales", assigned_to="Someone Else")

    def test_roster_match_is_case_insensitive_and_canonical(self, item):
        result = submit_action(item.id, "otc", "r.verma", "sales", assigned_to="  sumit   KHARI ")
        assert result.item.assigned_to == "Sumit Khari"
        assert result.entry.assigned_to == "Sumit Khari"

    def test_assigned_iff_deferred_or_otc(self, item):
        checks = []
        for action, kwargs in [
            ("defer", {"assigned_to": "Punit Chadha"}),
            ("revert", {"remarks": "Wrong person"}),
            ("approve", {}),
            ("revert", {"remarks": "Reopen"}),
            ("otc", {"assigned_to": "Aarti Pujara"}),
        ]:
            result = submit_action(item.id, action, "r.verma", "credit", **kwargs)
            row = result.item
            checks.append((row.status, row.assigned_to))
            assert bool(row.assigned_to) == (row.status in ("deferred", "otc"))

        assert checks == [
            ("deferred", "Punit Chadha"),
            ("pending", None),
            ("approved", None),
            ("pending", None),
            ("otc", "Aarti Pujara"),
        ]

    def test_resolution_fields(self, item):
        result = submit_action(item.id, "approve", "r.verma", "sales", remarks="KYC received")
        row = result.item
        assert row.resolved_by == "r.verma"
        assert row.resolved_at is not None
        assert row.resolution_reason == "KYC received"


# ═════════════════════════════════════════════════════════════════════════════
# Revert
# ═════════════════════════════════════════════════════════════════════════════


class TestRevert:
    @pytest.mark.parametrize("resolved", ["approved", "deferred", "otc"])
    def test_revert_reaches_pending_from_every_resolved_state(self, item, resolved):
        _force_status(item.id, resolved)
        result = submit_action(item.id, "revert", "r.verma", "sales", remarks="Reopening")
        row = result.item
        assert row.status == "pending"
        assert row.assigned_to is None
        assert row.resolved_by is None
        assert row.resolved_at is None
        assert row.reverted_by == "r.verma"
        assert row.revert_reason == "Reopening"

    def test_revert_requires_remarks(self, item):
        _force_status(item.id, "approved")
        with pytest.raises(ValidationError) as exc:
            submit_action(item.id, "revert", "r.verma", "sales", remarks="  ")
        assert "remarks" in exc.value.details

    def test_operations_cannot_revert(self, item):
        _force_status(item.id, "approved")
        with pytest.raises(UnauthorizedError):
            submit_action(item.id, "revert", "ops.user", "operations", remarks="Reopen")

    def test_item_can_be_resolved_again_after_revert(self, item):
        submit_action(item.id, "approve", "r.verma", "sales")
        submit_action(item.id, "revert", "r.verma", "sales", remarks="Reopen")
        result = submit_action(item.id, "approve", "k.iyer", "credit")
        assert result.item.status == "approved"
        assert [e.action for e in _entries(item.id)] == ["approve", "revert", "approve"]


# ═════════════════════════════════════════════════════════════════════════════
# Authorization and validation
# ═════════════════════════════════════════════════════════════════════════════


class TestAuthorization:
    @pytest.mark.parametrize("kind,start", [
        ("message", "pending"),
        ("approve", "pending"),
        ("defer", "pending"),
        ("otc", "pending"),
        ("revert", "approved"),
    ])
    def test_unrouted_team_rejected_and_nothing_written(self, make_group, kind, start):
        item = make_group(send_to="Sales").items[0]
        _force_status(item.id, start)

        with pytest.raises(UnauthorizedError) as exc:
            if kind == "message":
                submit_message(item.id, "credit", "k.iyer", "Looking into it")
            else:
                submit_action(item.id, kind, "k.iyer", "credit", **_extra_args(kind))

        assert exc.value.team == "credit"
        row = _db.session.get(QueryItem, item.id)
        assert row.status == start
        assert row.version == 0
        assert _entries(item.id) == []

    @pytest.mark.parametrize("action", ["approve", "defer", "otc"])
    def test_operations_may_resolve(self, item, action):
        result = submit_action(item.id, action, "ops.user", "operations", **_extra_args(action))
        assert result.entry.actor_team == "operations"

    def test_empty_actor_rejected(self, item):
        with pytest.raises(ValidationError):
            submit_action(item.id, "approve", "   ", "sales")

    def test_overlong_actor_rejected_before_write(self, item):
        with pytest.raises(ValidationError) as exc:
            submit_action(item.id, "approve", "a" * (NAME_MAX_LENGTH + 1), "sales")
        assert "addedBy" in exc.value.details
        with pytest.raises(ValidationError):
            submit_message(item.id, "sales", "a" * (NAME_MAX_LENGTH + 1), "Uploaded")

        assert _db.session.get(QueryItem, item.id).version == 0
        assert _entries(item.id) == []

    def test_overlong_request_id_rejected_before_write(self, item):
        long_id = "r" * (REQUEST_ID_MAX_LENGTH + 1)
        with pytest.raises(ValidationError) as exc:
            submit_action(item.id, "approve", "r.verma", "sales", client_request_id=long_id)
        assert "clientRequestId" in exc.value.details
        with pytest.raises(ValidationError):
            submit_message(item.id, "sales", "r.verma", "Uploaded", client_request_id=long_id)
        assert _entries(item.id) == []

    def test_longest_allowed_values_accepted(self, item):
        result = submit_action(
            item.id, "approve", "a" * NAME_MAX_LENGTH, "sales",
            client_request_id="r" * REQUEST_ID_MAX_LENGTH,
        )
        assert len(result.entry.actor) == NAME_MAX_LENGTH

    def test_unknown_item(self, application):
        with pytest.raises(NotFoundError):
            submit_action("missing", "approve", "r.verma", "sales")


# ═════════════════════════════════════════════════════════════════════════════
# Concurrency: conditional update, idempotent replay
# ═════════════════════════════════════════════════════════════════════════════


class TestConcurrency:
    def test_second_approve_conflicts_and_writes_nothing(self, item):
        submit_action(item.id, "approve", "r.verma", "sales")
        with pytest.raises(ConflictError) as exc:
            submit_action(item.id, "approve", "k.iyer", "credit")

        assert exc.value.current_status == "approved"
        assert len(_entries(item.id)) == 1
        assert _db.session.get(QueryItem, item.id).resolved_by == "r.verma"

    def test_lost_race_on_conditional_update(self, item, monkeypatch):
        """Another team commits between our status read and our UPDATE."""
        real_claim = thread_ledger.claim_seq

        def _racing_claim(item_id, expected_status=None, changes=None):
            _db.session.execute(
                update(QueryItem).where(QueryItem.id == item_id)
                .values(status="deferred", assigned_to="Mohan Keswani", version=QueryItem.version + 1)
            )
            _db.session.commit()
            return real_claim(item_id, expected_status=expected_status, changes=changes)

        monkeypatch.setattr(thread_ledger, "claim_seq", _racing_claim)

        with pytest.raises(ConflictError) as exc:
            submit_action(item.id, "approve", "r.verma", "sales")

        assert exc.value.current_status == "deferred"
        row = _db.session.get(QueryItem, item.id)
        assert row.status == "deferred"
        assert row.assigned_to == "Mohan Keswani"
        assert _entries(item.id) == []

    def test_seq_follows_commit_order(self, item):
        submit_message(item.id, "sales", "r.verma", "Checking")
        submit_action(item.id, "approve", "r.verma", "sales")
        submit_message(item.id, "operations", "ops.user", "Thanks")

        entries = _entries(item.id)
        assert [e.seq for e in entries] == [1, 2, 3]
        assert _db.session.get(QueryItem, item.id).version == 3

    def test_replay_by_client_request_id(self, item):
        first = submit_action(item.id, "approve", "r.verma", "sales", client_request_id="req-1")
        again = submit_action(item.id, "approve", "r.verma", "sales", client_request_id="req-1")

        assert again.replayed is True
        assert again.entry.id == first.entry.id
        assert len(_entries(item.id)) == 1

    def test_replay_after_unique_violation_at_commit(self, item, monkeypatch):
        """Two deliveries of one message race past the pre-check; the loser replays."""
        submit_message(item.id, "sales", "r.verma", "Uploaded", client_request_id="req-7")

        real_find = thread_ledger.find_by_request_id
        calls = {"n": 0}

        def _miss_once(item_id, client_request_id):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return real_find(item_id, client_request_id)

        monkeypatch.setattr(thread_ledger, "find_by_request_id", _miss_once)

        result = submit_message(item.id, "sales", "r.verma", "Uploaded", client_request_id="req-7")

        assert result.replayed is True
        assert len(_entries(item.id)) == 1


# ═════════════════════════════════════════════════════════════════════════════
# Storage failures
# ═════════════════════════════════════════════════════════════════════════════


class TestStorageFailure:
    def test_commit_failure_raises_storage_error_and_writes_nothing(self, item, monkeypatch):
        def _boom():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(_db.session, "commit", _boom)

        with pytest.raises(StorageError) as exc:
            submit_action(item.id, "approve", "r.verma", "sales")
        assert exc.value.retryable is True

        monkeypatch.undo()
        row = _db.session.get(QueryItem, item.id)
        assert row.status == "pending"
        assert row.version == 0
        assert _entries(item.id) == []


# ═════════════════════════════════════════════════════════════════════════════
# Payload parsing (tagged union)
# ═════════════════════════════════════════════════════════════════════════════


def _payload(**overrides):
    body = {"type": "action", "queryId": "q-1", "action": "approve", "addedBy": "r.verma", "team": "Sales"}
    body.update(overrides)
    return body


class TestParsePayload:
    @pytest.mark.parametrize("action,variant", [
        ("approve", ApproveRequest),
        ("deferral", DeferRequest),
        ("defer", DeferRequest),
        ("otc", OtcRequest),
        ("revert", RevertRequest),
    ])
    def test_action_variants(self, action, variant):
        parsed = parse_action_payload(_payload(action=action, assignedTo="Sumit Khari"))
        assert isinstance(parsed, variant)
        assert parsed.team == "sales"

    def test_assignee_carried_only_on_assignment_variants(self):
        parsed = parse_action_payload(_payload(action="otc", assignedTo="Sumit Khari"))
        assert parsed.assigned_to == "Sumit Khari"
        assert not hasattr(parse_action_payload(_payload()), "assigned_to")

    def test_message_variant(self):
        parsed = parse_action_payload(_payload(type="message", message="Uploaded", refersTo="e-1"))
        assert isinstance(parsed, MessageRequest)
        assert parsed.body == "Uploaded"
        assert parsed.refers_to == "e-1"

    @pytest.mark.parametrize("overrides", [
        {"type": "comment"},
        {"action": "escalate"},
        {"action": ""},
        {"team": "legal"},
        {"queryId": ""},
        {"addedBy": ""},
        {"type": "message", "message": ""},
        {"addedBy": "a" * (NAME_MAX_LENGTH + 1)},
        {"clientRequestId": "r" * (REQUEST_ID_MAX_LENGTH + 1)},
    ])
    def test_rejected_at_boundary(self, overrides):
        with pytest.raises(ValidationError):
            parse_action_payload(_payload(**overrides))

    def test_non_string_fields_coerced(self):
        parsed = parse_action_payload(_payload(addedBy=42, clientRequestId=7))
        assert parsed.actor == "42"
        assert parsed.client_request_id == "7"

    def test_non_object_rejected(self):
        with pytest.raises(ValidationError):
            parse_action_payload(["approve"])

    def test_submit_dispatches(self, item):
        result = action_processor.submit(parse_action_payload(
            _payload(queryId=item.id, action="deferral", assignedTo="vikram diwan")
        ))
        assert result.item.status == "deferred"
        assert result.item.assigned_to == "Vikram Diwan"
