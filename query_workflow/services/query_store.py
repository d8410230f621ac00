"""
Query Store — create and read Query Groups and their items.

Writes here are limited to group creation.  Item transitions live in the
Action Processor, which updates one item row at a time so that two teams
acting on two items of the same group never contend.

Usage:
    from query_workflow.services.query_store import create_group, list_groups

    group = create_group("APP123", ["Missing KYC doc"], "Sales", submitted_by="ops.user")
    views = list_groups(team="sales", status="pending")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import and_, or_

from query_workflow.core.exceptions import NotFoundError, ValidationError
from query_workflow.models import db
from query_workflow.models.application import find_application
from query_workflow.models.query import (
    MARK_BOTH,
    NAME_MAX_LENGTH,
    RESOLVED_STATUSES,
    STATUS_PENDING,
    TEAM_OPERATIONS,
    QueryGroup,
    QueryItem,
)
from query_workflow.services import routing
from query_workflow.utils.helpers import bounded_text, commit_or_raise

logger = logging.getLogger(__name__)

STATUS_FILTERS = ("pending", "resolved", "all")
DEFAULT_SUBMITTER = "Operations Team"


@dataclass
class GroupView:
    """A group as seen by one caller: only the items that passed the filters."""

    group: QueryGroup
    items: list[QueryItem]

    def to_dict(self) -> dict:
        return self.group.to_dict(items=self.items)


# ── Create ────────────────────────────────────────────────────────────────────


def _normalise_items(raw_items, group_teams: set[str] | None) -> list[tuple[str, set[str]]]:
    """Turn the ``queries`` payload into (text, teams) pairs, dropping blanks."""
    if not isinstance(raw_items, (list, tuple)):
        raise ValidationError("queries must be a list", details={"queries": "must be a list"})

    normalised = []
    for raw in raw_items:
        if isinstance(raw, dict):
            text = str(raw.get("text") or "").strip()
            override = raw.get("sendTo")
            teams = routing.parse_send_to(override) if override else group_teams
        else:
            text = str(raw or "").strip()
            teams = group_teams
        if not text:
            continue
        if not teams:
            raise ValidationError(
                "sendTo is required for every query",
                details={"sendTo": "required"},
            )
        normalised.append((text, teams))

    if not normalised:
        raise ValidationError(
            "At least one query must be provided",
            details={"queries": "must contain a non-empty query"},
        )
    return normalised


def create_group(
    app_number: str,
    items,
    send_to,
    submitted_by: str | None = None,
) -> QueryGroup:
    """Raise a new batch of queries against an application.

    Args:
        app_number: App.No; must resolve in the Application Registry.
        items: Query texts, or ``{"text", "sendTo"}`` objects for per-item routing.
        send_to: Group-level team declaration ("Sales", "Sales,Credit", "both").
                 May be empty only when every item carries its own ``sendTo``.
        submitted_by: Operations user raising the queries.

    Returns:
        The committed QueryGroup with every item ``pending``.

    Raises:
        NotFoundError: unknown application.
        ValidationError: no usable items, or no valid team routing.
    """
    app_number = "" if app_number is None else str(app_number).strip()
    submitted_by = bounded_text(submitted_by, "submittedBy", NAME_MAX_LENGTH)
    if not app_number:
        raise ValidationError("appNo is required", details={"appNo": "required"})

    group_teams = routing.parse_send_to(send_to) if send_to else None
    normalised = _normalise_items(items, group_teams)

    application = find_application(app_number)
    if application is None:
        raise NotFoundError("Application", app_number)

    target: set[str] = set()
    for _text, teams in normalised:
        target |= teams

    now = datetime.now(timezone.utc)
    group = QueryGroup(
        app_number=application.app_number,
        customer_name=application.customer_name,
        branch=application.branch or "Default Branch",
        branch_code=application.branch_code,
        submitted_by=submitted_by or DEFAULT_SUBMITTER,
        target_teams=",".join(sorted(target)),
        submitted_at=now,
    )
    for position, (text, teams) in enumerate(normalised, 1):
        group.items.append(QueryItem(
            position=position,
            text=text,
            status=STATUS_PENDING,
            marked_for_team=routing.marked_for(teams),
            created_at=now,
            updated_at=now,
        ))

    db.session.add(group)
    commit_or_raise("create_group")

    logger.info(
        "Query group raised: app=%s items=%d teams=%s",
        group.app_number, len(group.items), group.target_teams,
        extra={"group_id": group.id},
    )
    return group


# ── Read ──────────────────────────────────────────────────────────────────────


def _item_matches(item: QueryItem, team: str | None, status: str) -> bool:
    if status == "pending" and item.status != STATUS_PENDING:
        return False
    if status == "resolved" and item.status not in RESOLVED_STATUSES:
        return False
    if team and not routing.can_view(team, item.marked_for_team):
        return False
    return True


def _normalise_filters(team: str | None, status: str | None) -> tuple[str | None, str]:
    status = (status or "all").strip().lower()
    if status not in STATUS_FILTERS:
        raise ValidationError(
            f"Unknown status filter '{status}'",
            details={"status": f"must be one of {', '.join(STATUS_FILTERS)}"},
        )
    if team and team.strip().lower() != "all":
        team = routing.normalise_team(team)
    else:
        team = None
    return team, status


def list_groups(
    team: str | None = None,
    status: str | None = "all",
    app_number: str | None = None,
) -> list[GroupView]:
    """List groups with items narrowed to the caller's team and status filter.

    ``status="resolved"`` is a query-time alias for "any non-pending status";
    it is never a stored state.  Groups left with no matching item are
    dropped.  Newest activity first.
    """
    team, status = _normalise_filters(team, status)

    item_conditions = []
    if status == "pending":
        item_conditions.append(QueryItem.status == STATUS_PENDING)
    elif status == "resolved":
        item_conditions.append(QueryItem.status.in_(RESOLVED_STATUSES))
    if team and team != TEAM_OPERATIONS:
        item_conditions.append(or_(
            QueryItem.marked_for_team == team,
            QueryItem.marked_for_team == MARK_BOTH,
        ))

    q = QueryGroup.query
    if item_conditions:
        q = q.filter(QueryGroup.items.any(and_(*item_conditions)))
    if app_number and app_number.strip():
        q = q.filter(QueryGroup.app_number.ilike(f"%{app_number.strip()}%"))

    views = []
    for group in q.all():
        items = [item for item in group.items if _item_matches(item, team, status)]
        if items:
            views.append(GroupView(group=group, items=items))

    views.sort(key=lambda v: v.group.last_updated, reverse=True)
    return views


def get_group(group_id: str, team: str | None = None) -> GroupView:
    """Fetch one group; with ``team``, only the items routed to that team."""
    group = db.session.get(QueryGroup, group_id)
    if group is None:
        raise NotFoundError("QueryGroup", group_id)
    if not team:
        return GroupView(group=group, items=list(group.items))

    team = routing.normalise_team(team)
    items = [item for item in group.items if routing.can_view(team, item.marked_for_team)]
    if not items:
        # A group with nothing routed to this team is indistinguishable from a missing one
        raise NotFoundError("QueryGroup", group_id)
    return GroupView(group=group, items=items)


def get_item(item_id: str, team: str | None = None) -> QueryItem:
    """Fetch one item, enforcing read routing when ``team`` is given."""
    item = db.session.get(QueryItem, str(item_id))
    if item is None:
        raise NotFoundError("QueryItem", item_id)
    if team:
        routing.authorize_read(routing.normalise_team(team), item)
    return item
