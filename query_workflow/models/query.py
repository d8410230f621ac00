"""
Query Workflow — QueryGroup and QueryItem models.

A QueryGroup is one batch of queries raised by Operations against a single
loan application.  It exclusively owns its QueryItems: items are created with
the group, never move between groups and are never appended afterwards.
Later changes mutate the existing item rows in place.

Each QueryItem carries its own status, independent of its siblings.  Group
level figures (pending count, last activity, overall status) are derived from
the items on read and never stored, so there is no second copy to go stale.
"""

import uuid
from datetime import datetime, timezone

from query_workflow.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

TEAM_SALES = "sales"
TEAM_CREDIT = "credit"
TEAM_OPERATIONS = "operations"

HANDLING_TEAMS = (TEAM_SALES, TEAM_CREDIT)

# Column size for person names (submitter, actor, assignee)
NAME_MAX_LENGTH = 150

MARK_BOTH = "both"

STATUS_PENDING = "pending"
ITEM_STATUSES = ("pending", "approved", "deferred", "otc")
RESOLVED_STATUSES = frozenset({"approved", "deferred", "otc"})

# Item transition rules: action -> allowed source statuses + target status
ITEM_TRANSITIONS = {
    "approve": {"from": ["pending"], "to": "approved"},
    "defer":   {"from": ["pending"], "to": "deferred"},
    "otc":     {"from": ["pending"], "to": "otc"},
    "revert":  {"from": ["approved", "deferred", "otc"], "to": "pending"},
}

# Actions that hand the item to a named person from the roster
ASSIGNMENT_ACTIONS = frozenset({"defer", "otc"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def iso(value: datetime | None) -> str | None:
    """ISO-8601 in UTC; SQLite hands back naive datetimes."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def validate_item_transition(status: str, action: str) -> dict:
    """Validate whether ``action`` is legal for an item in ``status``."""
    rule = ITEM_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": status, "to": None,
                "reason": f"Unknown action: {action}"}

    if status not in rule["from"]:
        return {"valid": False, "from": status, "to": rule["to"],
                "reason": f"Cannot '{action}' a query in status '{status}'"}

    return {"valid": True, "from": status, "to": rule["to"], "reason": None}


def available_actions(status: str) -> list[str]:
    """Actions legal from ``status`` (message is always allowed)."""
    return [action for action, rule in ITEM_TRANSITIONS.items() if status in rule["from"]]


# ── QueryGroup ────────────────────────────────────────────────────────────────


class QueryGroup(db.Model):
    """One raised batch of query items against one loan application."""

    __tablename__ = "query_groups"
    __table_args__ = (
        db.Index("ix_query_groups_app_submitted", "app_number", "submitted_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    app_number = db.Column(db.String(64), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False)
    branch = db.Column(db.String(120), nullable=True)
    branch_code = db.Column(db.String(10), nullable=False, default="DEF")

    submitted_by = db.Column(db.String(NAME_MAX_LENGTH), nullable=False, default="Operations Team")
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    target_teams = db.Column(
        db.String(32),
        nullable=False,
        comment="Comma-joined subset of: sales, credit",
    )

    items = db.relationship(
        "QueryItem",
        back_populates="group",
        order_by="QueryItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # ── Derived (computed from items on read) ─────────────────────────────

    @property
    def target_team_set(self) -> set[str]:
        return {t for t in (self.target_teams or "").split(",") if t}

    @property
    def pending_count(self) -> int:
        return sum(1 for item in self.items if item.status == STATUS_PENDING)

    @property
    def resolved_count(self) -> int:
        return sum(1 for item in self.items if item.status in RESOLVED_STATUSES)

    @property
    def status(self) -> str:
        return "pending" if self.pending_count else "resolved"

    @property
    def last_updated(self) -> datetime:
        stamps = [self.submitted_at] + [item.updated_at for item in self.items if item.updated_at]
        return max(_aware(s) for s in stamps if s is not None)

    def to_dict(self, items: list | None = None) -> dict:
        """Serialize; ``items`` narrows the embedded list for filtered views."""
        shown = self.items if items is None else items
        return {
            "id": self.id,
            "appNo": self.app_number,
            "customerName": self.customer_name,
            "branch": self.branch,
            "branchCode": self.branch_code,
            "submittedBy": self.submitted_by,
            "submittedAt": iso(self.submitted_at),
            "sendTo": sorted(self.target_team_set),
            "sendToSales": TEAM_SALES in self.target_team_set,
            "sendToCredit": TEAM_CREDIT in self.target_team_set,
            "status": self.status,
            "pendingCount": self.pending_count,
            "resolvedCount": self.resolved_count,
            "totalCount": len(self.items),
            "lastUpdated": iso(self.last_updated),
            "queries": [item.to_dict() for item in shown],
        }

    def __repr__(self) -> str:
        return f"<QueryGroup {self.id} app={self.app_number} items={len(self.items)}>"


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# ── QueryItem ─────────────────────────────────────────────────────────────────


class QueryItem(db.Model):
    """
    The unit of workflow.

    Business rules:
    - ``text`` is immutable once created.
    - ``assigned_to`` is set iff status is deferred or otc.
    - ``resolved_*`` fields are set with any transition away from pending and
      cleared by a revert.
    - ``version`` increments on every committed action or message and is the
      source of the ledger's per-item sequence numbers.
    """

    __tablename__ = "query_items"
    __table_args__ = (
        db.UniqueConstraint("group_id", "position", name="uq_query_items_group_position"),
        db.Index("ix_query_items_status_team", "status", "marked_for_team"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    group_id = db.Column(
        db.String(36),
        db.ForeignKey("query_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = db.Column(db.Integer, nullable=False, comment="Display order within the group")
    text = db.Column(db.Text, nullable=False)

    status = db.Column(
        db.String(16),
        nullable=False,
        default=STATUS_PENDING,
        comment="pending | approved | deferred | otc",
    )
    marked_for_team = db.Column(
        db.String(8),
        nullable=False,
        comment="sales | credit | both",
    )

    assigned_to = db.Column(db.String(NAME_MAX_LENGTH), nullable=True)
    remarks = db.Column(db.Text, nullable=True)

    resolved_by = db.Column(db.String(NAME_MAX_LENGTH), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolution_reason = db.Column(db.Text, nullable=True)

    reverted_by = db.Column(db.String(NAME_MAX_LENGTH), nullable=True)
    reverted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revert_reason = db.Column(db.Text, nullable=True)

    version = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    group = db.relationship("QueryGroup", back_populates="items")

    @property
    def is_resolved(self) -> bool:
        return self.status in RESOLVED_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "groupId": self.group_id,
            "position": self.position,
            "text": self.text,
            "status": self.status,
            "markedForTeam": self.marked_for_team,
            "assignedTo": self.assigned_to,
            "remarks": self.remarks,
            "resolvedBy": self.resolved_by,
            "resolvedAt": iso(self.resolved_at),
            "resolutionReason": self.resolution_reason,
            "revertedBy": self.reverted_by,
            "revertedAt": iso(self.reverted_at),
            "revertReason": self.revert_reason,
            "isResolved": self.is_resolved,
            "availableActions": available_actions(self.status),
            "version": self.version,
            "lastUpdated": iso(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<QueryItem {self.id} {self.status} team={self.marked_for_team}>"
