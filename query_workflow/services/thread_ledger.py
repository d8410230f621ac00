"""
Thread Ledger — append-only history of messages and actions per query item.

Appending is the only mutation.  Every append first claims the next sequence
number from the owning item (``version = version + 1`` on the item row), so
the entry and the item change commit together and the ledger order per item
equals commit order.  The caller commits.

Usage:
    from query_workflow.services import thread_ledger

    entries = thread_ledger.history(item_id)
    thread_ledger.post_notice(item_id, "Bureau report refreshed")
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from query_workflow.core.exceptions import NotFoundError, ValidationError
from query_workflow.models import db
from query_workflow.models.query import NAME_MAX_LENGTH, QueryItem
from query_workflow.models.thread import (
    ENTRY_ACTIONS,
    ENTRY_KINDS,
    KIND_ACTION,
    KIND_SYSTEM_NOTICE,
    ThreadEntry,
)
from query_workflow.utils.helpers import bounded_text, commit_or_raise

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
SYSTEM_TEAM = "system"


# ── Write path ────────────────────────────────────────────────────────────────


def claim_seq(item_id: str, expected_status: str | None = None, changes: dict | None = None) -> int | None:
    """Bump the item's version and return it as the next entry ``seq``.

    The UPDATE is conditional on ``expected_status`` when given, which makes
    it the compare-and-set for state transitions.  ``changes`` are applied to
    the item row in the same statement.

    Returns:
        The new version, or None when no row matched (unknown item, or the
        status moved since the caller read it).
    """
    values = dict(changes or {})
    values.setdefault("updated_at", datetime.now(timezone.utc))
    values["version"] = QueryItem.version + 1

    stmt = update(QueryItem).where(QueryItem.id == item_id)
    if expected_status is not None:
        stmt = stmt.where(QueryItem.status == expected_status)
    stmt = stmt.values(**values).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    if result.rowcount == 0:
        return None
    return db.session.execute(
        select(QueryItem.version).where(QueryItem.id == item_id)
    ).scalar_one()


def append_entry(item_id: str, seq: int, *, kind: str, actor: str, actor_team: str, **fields) -> ThreadEntry:
    """Stage one entry in the current transaction.  Does not commit."""
    if kind not in ENTRY_KINDS:
        raise ValidationError(f"Unknown entry kind '{kind}'", details={"kind": kind})
    if (kind == KIND_ACTION) != (fields.get("action") in ENTRY_ACTIONS):
        raise ValidationError(
            "Action entries carry exactly one of approve, defer, otc, revert",
            details={"action": fields.get("action")},
        )
    entry = ThreadEntry(
        item_id=item_id,
        seq=seq,
        kind=kind,
        actor=actor,
        actor_team=actor_team,
        timestamp=datetime.now(timezone.utc),
        **fields,
    )
    db.session.add(entry)
    return entry


def check_refers_to(item_id: str, refers_to: str | None) -> None:
    """A correction must point at an existing entry of the same item."""
    if not refers_to:
        return
    target = db.session.get(ThreadEntry, refers_to)
    if target is None or target.item_id != item_id:
        raise ValidationError(
            "refersTo must name an entry on the same query",
            details={"refersTo": refers_to},
        )


def post_notice(item_id: str, body: str, actor: str = SYSTEM_ACTOR) -> ThreadEntry:
    """Append a ``system_notice`` entry.  The item's status is left alone."""
    body = (body or "").strip()
    if not body:
        raise ValidationError("Notice text is required", details={"body": "required"})
    actor = bounded_text(actor, "actor", NAME_MAX_LENGTH) or SYSTEM_ACTOR

    seq = claim_seq(item_id)
    if seq is None:
        db.session.rollback()
        raise NotFoundError("QueryItem", item_id)

    entry = append_entry(
        item_id, seq,
        kind=KIND_SYSTEM_NOTICE,
        actor=actor,
        actor_team=SYSTEM_TEAM,
        body=body,
    )
    try:
        commit_or_raise("post_notice")
    except IntegrityError as exc:
        raise ValidationError("Notice could not be recorded") from exc

    logger.info("System notice posted", extra={"item_id": item_id, "seq": seq})
    return entry


# ── Read path ─────────────────────────────────────────────────────────────────


def _kinds(kind) -> list[str] | None:
    if kind is None:
        return None
    wanted = [kind] if isinstance(kind, str) else list(kind)
    unknown = [k for k in wanted if k not in ENTRY_KINDS]
    if unknown:
        raise ValidationError(
            f"Unknown entry kind '{unknown[0]}'",
            details={"kind": "must be message, action or system_notice"},
        )
    return wanted


def history(item_id: str, kind: str | Iterable[str] | None = None) -> list[ThreadEntry]:
    """Entries for one item, oldest first; ``seq`` breaks timestamp ties."""
    if db.session.get(QueryItem, item_id) is None:
        raise NotFoundError("QueryItem", item_id)

    stmt = select(ThreadEntry).where(ThreadEntry.item_id == item_id)
    kinds = _kinds(kind)
    if kinds:
        stmt = stmt.where(ThreadEntry.kind.in_(kinds))
    stmt = stmt.order_by(ThreadEntry.timestamp.asc(), ThreadEntry.seq.asc())
    return list(db.session.execute(stmt).scalars())


def action_log(item_ids: Iterable[str] | None = None) -> list[ThreadEntry]:
    """Action entries across items, oldest first."""
    stmt = select(ThreadEntry).where(ThreadEntry.kind == KIND_ACTION)
    if item_ids is not None:
        ids = list(item_ids)
        if not ids:
            return []
        stmt = stmt.where(ThreadEntry.item_id.in_(ids))
    stmt = stmt.order_by(ThreadEntry.timestamp.asc(), ThreadEntry.seq.asc())
    return list(db.session.execute(stmt).scalars())


def find_by_request_id(item_id: str, client_request_id: str | None) -> ThreadEntry | None:
    if not client_request_id:
        return None
    return db.session.execute(
        select(ThreadEntry).where(
            ThreadEntry.item_id == item_id,
            ThreadEntry.client_request_id == client_request_id,
        )
    ).scalar_one_or_none()
