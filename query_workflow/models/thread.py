"""
Thread Ledger — ThreadEntry model.

One row per accepted action or message on a QueryItem.  Rows are never
updated or deleted: a correction is a new message whose ``refers_to`` names
the entry it corrects.

Ordering:
    Entries for one item sort by ``timestamp`` ascending with ``seq`` as the
    tie-break.  ``seq`` is taken from the item's ``version`` inside the same
    transaction that commits the entry, so it follows commit order even when
    two entries share a timestamp at polling resolution.
"""

import uuid
from datetime import datetime, timezone

from query_workflow.models import db
from query_workflow.models.query import NAME_MAX_LENGTH, iso

# ── Constants ─────────────────────────────────────────────────────────────────

KIND_MESSAGE = "message"
KIND_ACTION = "action"
KIND_SYSTEM_NOTICE = "system_notice"

ENTRY_KINDS = frozenset({KIND_MESSAGE, KIND_ACTION, KIND_SYSTEM_NOTICE})
ENTRY_ACTIONS = frozenset({"approve", "defer", "otc", "revert"})

REQUEST_ID_MAX_LENGTH = 64


class ThreadEntry(db.Model):
    """Immutable record of one message or action on a query item."""

    __tablename__ = "thread_entries"
    __table_args__ = (
        db.UniqueConstraint("item_id", "seq", name="uq_thread_entries_item_seq"),
        db.UniqueConstraint("item_id", "client_request_id", name="uq_thread_entries_item_request"),
        db.Index("ix_thread_entries_item_ts", "item_id", "timestamp", "seq"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    item_id = db.Column(
        db.String(36),
        db.ForeignKey("query_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    seq = db.Column(db.Integer, nullable=False, comment="Per-item commit sequence")

    kind = db.Column(db.String(16), nullable=False, comment="message | action | system_notice")
    action = db.Column(db.String(10), nullable=True, comment="approve | defer | otc | revert")

    actor = db.Column(db.String(NAME_MAX_LENGTH), nullable=False)
    actor_team = db.Column(db.String(16), nullable=False)
    body = db.Column(db.Text, nullable=True, comment="Remarks for actions, text for messages")

    assigned_to = db.Column(db.String(NAME_MAX_LENGTH), nullable=True)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=True)

    refers_to = db.Column(db.String(36), nullable=True, comment="Entry this message corrects")
    client_request_id = db.Column(
        db.String(REQUEST_ID_MAX_LENGTH),
        nullable=True,
        comment="Caller-supplied idempotency key; a retry with the same key replays",
    )

    timestamp = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_system(self) -> bool:
        return self.kind != KIND_MESSAGE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "queryId": self.item_id,
            "seq": self.seq,
            "kind": self.kind,
            "action": self.action,
            "actor": self.actor,
            "team": self.actor_team,
            "remarks": self.body,
            "assignedTo": self.assigned_to,
            "fromStatus": self.from_status,
            "toStatus": self.to_status,
            "refersTo": self.refers_to,
            "clientRequestId": self.client_request_id,
            "isSystemMessage": self.is_system,
            "timestamp": iso(self.timestamp),
        }

    def __repr__(self) -> str:
        label = self.action or self.kind
        return f"<ThreadEntry {self.item_id}#{self.seq} {label}>"
