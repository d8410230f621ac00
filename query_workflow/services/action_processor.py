"""
Action Processor — validates and applies actions and messages on query items.

Transitions (see ITEM_TRANSITIONS):
    pending  → approved | deferred | otc     (approve / defer / otc)
    approved | deferred | otc → pending      (revert)
    any      → unchanged                     (message)

Every accepted request writes the item change and exactly one ThreadEntry
in a single transaction.  The item UPDATE is conditional on the status the
decision was made against, so the loser of a same-item race gets a
ConflictError instead of a second transition.  Nothing is retried here.

Usage:
    from query_workflow.services.action_processor import parse_action_payload, submit

    request = parse_action_payload(request.get_json())
    result = submit(request)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

from flask import current_app
from sqlalchemy.exc import IntegrityError

from query_workflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from query_workflow.models import db
from query_workflow.models.query import (
    ASSIGNMENT_ACTIONS,
    ITEM_TRANSITIONS,
    NAME_MAX_LENGTH,
    QueryItem,
    validate_item_transition,
)
from query_workflow.models.thread import KIND_ACTION, KIND_MESSAGE, REQUEST_ID_MAX_LENGTH, ThreadEntry
from query_workflow.services import routing, thread_ledger
from query_workflow.utils.helpers import bounded_text, commit_or_raise, storage_guard

logger = logging.getLogger(__name__)

# Wire names accepted for each stored action
ACTION_ALIASES = {
    "approve": "approve",
    "deferral": "defer",
    "defer": "defer",
    "otc": "otc",
    "revert": "revert",
}


# ── Request variants ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MessageRequest:
    item_id: str
    actor: str
    team: str
    body: str
    refers_to: str | None = None
    client_request_id: str | None = None


@dataclass(frozen=True)
class _ActionRequest:
    item_id: str
    actor: str
    team: str
    remarks: str = ""
    client_request_id: str | None = None

    action = ""


@dataclass(frozen=True)
class ApproveRequest(_ActionRequest):
    action = "approve"


@dataclass(frozen=True)
class DeferRequest(_ActionRequest):
    assigned_to: str | None = None
    action = "defer"


@dataclass(frozen=True)
class OtcRequest(_ActionRequest):
    assigned_to: str | None = None
    action = "otc"


@dataclass(frozen=True)
class RevertRequest(_ActionRequest):
    action = "revert"


ActionRequest = Union[MessageRequest, ApproveRequest, DeferRequest, OtcRequest, RevertRequest]

_ACTION_VARIANTS = {
    "approve": ApproveRequest,
    "defer": DeferRequest,
    "otc": OtcRequest,
    "revert": RevertRequest,
}


@dataclass
class ActionResult:
    item: QueryItem
    entry: ThreadEntry
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "item": self.item.to_dict(),
            "entry": self.entry.to_dict(),
            "replayed": self.replayed,
        }


# ── Boundary parsing ──────────────────────────────────────────────────────────


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    return str(value).strip() if value is not None else ""


def normalise_action(value: str | None) -> str:
    action = ACTION_ALIASES.get((value or "").strip().lower())
    if not action:
        raise ValidationError(
            f"Unknown action '{value}'",
            details={"action": "must be one of approve, deferral, otc, revert"},
        )
    return action


def parse_action_payload(payload: dict | None) -> ActionRequest:
    """Turn the single wire shape of POST /query-actions into a request variant.

    Raises:
        ValidationError: unknown ``type``/``action`` or missing required fields.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    missing = {f: "required" for f in ("type", "queryId", "addedBy", "team") if not _text(payload, f)}
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", details=missing)

    kind = _text(payload, "type").lower()
    item_id = _text(payload, "queryId")
    actor = _require_actor(payload.get("addedBy"))
    team = routing.normalise_team(_text(payload, "team"))
    client_request_id = _request_id(payload.get("clientRequestId"))

    if kind == KIND_MESSAGE:
        body = _text(payload, "message") or _text(payload, "remarks")
        if not body:
            raise ValidationError("Message text is required", details={"message": "required"})
        return MessageRequest(
            item_id=item_id,
            actor=actor,
            team=team,
            body=body,
            refers_to=_text(payload, "refersTo") or None,
            client_request_id=client_request_id,
        )

    if kind != KIND_ACTION:
        raise ValidationError(
            f"Unknown request type '{kind}'",
            details={"type": "must be 'action' or 'message'"},
        )

    action = normalise_action(_text(payload, "action"))
    fields = {
        "item_id": item_id,
        "actor": actor,
        "team": team,
        "remarks": _text(payload, "remarks"),
        "client_request_id": client_request_id,
    }
    if action in ASSIGNMENT_ACTIONS:
        fields["assigned_to"] = _text(payload, "assignedTo") or None
    return _ACTION_VARIANTS[action](**fields)


def submit(request: ActionRequest) -> ActionResult:
    """Dispatch a parsed request to the matching operation."""
    if isinstance(request, MessageRequest):
        return submit_message(
            request.item_id,
            request.team,
            request.actor,
            request.body,
            refers_to=request.refers_to,
            client_request_id=request.client_request_id,
        )
    return submit_action(
        request.item_id,
        request.action,
        request.actor,
        request.team,
        request.remarks,
        assigned_to=getattr(request, "assigned_to", None),
        client_request_id=request.client_request_id,
    )


# ── Roster ────────────────────────────────────────────────────────────────────


def assignee_roster() -> tuple[str, ...]:
    return tuple(current_app.config.get("ASSIGNEE_ROSTER") or ())


def resolve_assignee(name: str | None) -> str:
    """Match ``name`` case-insensitively against the roster; return its canonical spelling."""
    wanted = " ".join((name or "").split()).lower()
    if not wanted:
        raise ValidationError("assignedTo is required", details={"assignedTo": "required"})
    for person in assignee_roster():
        if person.lower() == wanted:
            return person
    raise ValidationError(
        f"'{name}' is not on the assignee roster",
        details={"assignedTo": "must be a rostered person"},
    )


# ── Operations ────────────────────────────────────────────────────────────────


def _load_item(item_id: str) -> QueryItem:
    item = db.session.get(QueryItem, item_id) if item_id else None
    if item is None:
        raise NotFoundError("QueryItem", item_id)
    return item


def _require_actor(actor) -> str:
    actor = bounded_text(actor, "addedBy", NAME_MAX_LENGTH)
    if not actor:
        raise ValidationError("addedBy is required", details={"addedBy": "required"})
    return actor


def _request_id(value) -> str | None:
    return bounded_text(value, "clientRequestId", REQUEST_ID_MAX_LENGTH) or None


def _transition_changes(action: str, actor: str, remarks: str | None, assignee: str | None) -> dict:
    now = datetime.now(timezone.utc)
    target = ITEM_TRANSITIONS[action]["to"]
    changes = {"status": target, "remarks": remarks, "updated_at": now}
    if action == "revert":
        changes.update(
            assigned_to=None,
            resolved_by=None,
            resolved_at=None,
            resolution_reason=None,
            reverted_by=actor,
            reverted_at=now,
            revert_reason=remarks,
        )
    else:
        changes.update(
            assigned_to=assignee,
            resolved_by=actor,
            resolved_at=now,
            resolution_reason=remarks,
        )
    return changes


def _replay_or_conflict(item_id: str, client_request_id: str | None) -> ActionResult:
    """After a unique-constraint failure: the same request already committed, or a racing writer won."""
    existing = thread_ledger.find_by_request_id(item_id, client_request_id)
    if existing is not None:
        logger.info(
            "Replayed request after concurrent commit",
            extra={"item_id": item_id, "request_id": client_request_id},
        )
        return ActionResult(item=_load_item(item_id), entry=existing, replayed=True)
    item = _load_item(item_id)
    raise ConflictError("Query changed concurrently; re-fetch and retry", current_status=item.status)


def submit_action(
    item_id: str,
    action: str,
    actor: str,
    team: str,
    remarks: str | None = None,
    assigned_to: str | None = None,
    client_request_id: str | None = None,
) -> ActionResult:
    """Apply approve / defer / otc / revert to one item.

    Raises:
        NotFoundError: unknown item.
        UnauthorizedError: ``team`` is not routed to the item, or Operations
                           attempted a revert.
        ValidationError: empty actor, missing or unknown assignee on
                         defer/otc, revert without remarks.
        ConflictError: the action is not legal from the item's current
                       status (including a lost same-item race).
        StorageError: the store failed; the outcome is unknown.
    """
    action = normalise_action(action)
    actor = _require_actor(actor)
    client_request_id = _request_id(client_request_id)
    team = routing.normalise_team(team)
    remarks = (remarks or "").strip() or None

    with storage_guard("submit_action"):
        item = _load_item(item_id)
        routing.authorize(team, item, action)

        replay = thread_ledger.find_by_request_id(item.id, client_request_id)
        if replay is not None:
            return ActionResult(item=item, entry=replay, replayed=True)

        if action == "revert" and not remarks:
            raise ValidationError("Remarks are required to revert a query", details={"remarks": "required"})
        assignee = resolve_assignee(assigned_to) if action in ASSIGNMENT_ACTIONS else None

        current = item.status
        check = validate_item_transition(current, action)
        if not check["valid"]:
            raise ConflictError(check["reason"], current_status=current)

        seq = thread_ledger.claim_seq(
            item.id,
            expected_status=current,
            changes=_transition_changes(action, actor, remarks, assignee),
        )
        if seq is None:
            db.session.rollback()
            item = db.session.get(QueryItem, item_id, populate_existing=True)
            if item is None:
                raise NotFoundError("QueryItem", item_id)
            raise ConflictError(
                f"Cannot '{action}' a query in status '{item.status}'",
                current_status=item.status,
            )

        entry = thread_ledger.append_entry(
            item.id, seq,
            kind=KIND_ACTION,
            action=action,
            actor=actor,
            actor_team=team,
            body=remarks,
            assigned_to=assignee,
            from_status=current,
            to_status=check["to"],
            client_request_id=client_request_id,
        )

    try:
        commit_or_raise("submit_action")
    except IntegrityError:
        return _replay_or_conflict(item_id, client_request_id)

    logger.info(
        "Query %s: %s -> %s by %s",
        action, current, check["to"], actor,
        extra={"item_id": item_id, "team": team, "action": action, "seq": seq},
    )
    return ActionResult(item=item, entry=entry)


def submit_message(
    item_id: str,
    team: str,
    actor: str,
    body: str,
    refers_to: str | None = None,
    client_request_id: str | None = None,
) -> ActionResult:
    """Append a message to an item's thread.  Status is never touched."""
    actor = _require_actor(actor)
    client_request_id = _request_id(client_request_id)
    team = routing.normalise_team(team)
    body = (body or "").strip()
    if not body:
        raise ValidationError("Message text is required", details={"message": "required"})

    with storage_guard("submit_message"):
        item = _load_item(item_id)
        routing.authorize(team, item, KIND_MESSAGE)

        replay = thread_ledger.find_by_request_id(item.id, client_request_id)
        if replay is not None:
            return ActionResult(item=item, entry=replay, replayed=True)

        thread_ledger.check_refers_to(item.id, refers_to)

        seq = thread_ledger.claim_seq(item.id)
        if seq is None:
            db.session.rollback()
            raise NotFoundError("QueryItem", item_id)

        entry = thread_ledger.append_entry(
            item.id, seq,
            kind=KIND_MESSAGE,
            actor=actor,
            actor_team=team,
            body=body,
            refers_to=refers_to,
            client_request_id=client_request_id,
        )

    try:
        commit_or_raise("submit_message")
    except IntegrityError:
        return _replay_or_conflict(item_id, client_request_id)

    logger.info(
        "Message posted by %s",
        actor,
        extra={"item_id": item_id, "team": team, "seq": seq},
    )
    return ActionResult(item=item, entry=entry)
