"""
Reporting — dashboard stats and flattened per-item report rows.

Both are computed from QueryItem rows on every call; nothing is cached or
stored.  Export formatting (CSV, spreadsheets) is left to consumers.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone

from sqlalchemy import select

from query_workflow.core.exceptions import ValidationError
from query_workflow.models import db
from query_workflow.models.query import (
    ITEM_STATUSES,
    MARK_BOTH,
    RESOLVED_STATUSES,
    STATUS_PENDING,
    TEAM_CREDIT,
    TEAM_SALES,
    QueryGroup,
    QueryItem,
    iso,
)
from query_workflow.services import routing, thread_ledger
from query_workflow.services.action_processor import assignee_roster

logger = logging.getLogger(__name__)

REPORT_STATUS_FILTERS = ("all", "pending", "resolved") + ITEM_STATUSES[1:]


def _visible_items(team: str | None):
    stmt = select(QueryItem).join(QueryGroup)
    items = list(db.session.execute(stmt).scalars())
    if team:
        items = [i for i in items if routing.can_view(team, i.marked_for_team)]
    return items


def _team_filter(team: str | None) -> str | None:
    if not team or team.strip().lower() == "all":
        return None
    return routing.normalise_team(team)


def compute_stats(team: str | None = None) -> dict:
    """Counts by status and by routing, narrowed to what ``team`` can see."""
    team = _team_filter(team)
    items = _visible_items(team)

    by_status = Counter({status: 0 for status in ITEM_STATUSES})
    by_status.update(item.status for item in items)
    by_team = Counter({TEAM_SALES: 0, TEAM_CREDIT: 0, MARK_BOTH: 0})
    by_team.update(item.marked_for_team for item in items)

    return {
        "total": len(items),
        "pending": by_status[STATUS_PENDING],
        "resolved": sum(by_status[s] for s in RESOLVED_STATUSES),
        "byStatus": dict(by_status),
        "byTeam": dict(by_team),
        "groups": len({item.group_id for item in items}),
        "timestamp": iso(datetime.now(timezone.utc)),
    }


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _resolve_hours(item: QueryItem) -> float | None:
    if not item.resolved_at:
        return None
    delta = _aware(item.resolved_at) - _aware(item.group.submitted_at)
    return round(delta.total_seconds() / 3600, 1)


def _status_matches(item: QueryItem, status: str) -> bool:
    if status == "all":
        return True
    if status == "resolved":
        return item.status in RESOLVED_STATUSES
    return item.status == status


def build_report(
    status: str | None = "all",
    team: str | None = None,
    submitted_by: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> list[dict]:
    """One row per item, newest submission first.

    Args:
        status: all | pending | resolved | approved | deferred | otc.
        team: Narrow to items visible to this team.
        submitted_by: Case-insensitive substring of the submitter.
        date_from / date_to: Inclusive bounds on the group's submission time.
    """
    status = (status or "all").strip().lower()
    if status not in REPORT_STATUS_FILTERS:
        raise ValidationError(
            f"Unknown status filter '{status}'",
            details={"status": f"must be one of {', '.join(REPORT_STATUS_FILTERS)}"},
        )
    team = _team_filter(team)
    needle = (submitted_by or "").strip().lower()

    rows_items = []
    for item in _visible_items(team):
        group = item.group
        submitted = _aware(group.submitted_at)
        if not _status_matches(item, status):
            continue
        if needle and needle not in (group.submitted_by or "").lower():
            continue
        if date_from and submitted < date_from:
            continue
        if date_to and submitted > date_to:
            continue
        rows_items.append(item)

    last_actions = {}
    for entry in thread_ledger.action_log([i.id for i in rows_items]):
        last_actions[entry.item_id] = entry

    roster = {name.lower() for name in assignee_roster()}
    rows = []
    for item in rows_items:
        group = item.group
        last = last_actions.get(item.id)
        rows.append({
            "itemId": item.id,
            "groupId": group.id,
            "position": item.position,
            "appNo": group.app_number,
            "customerName": group.customer_name,
            "branch": group.branch,
            "branchCode": group.branch_code,
            "text": item.text,
            "markedForTeam": item.marked_for_team,
            "teams": sorted(routing.visible_teams(item.marked_for_team)),
            "status": item.status,
            "assignedTo": item.assigned_to,
            "isAuthorizedAssignee": bool(item.assigned_to) and item.assigned_to.lower() in roster,
            "submittedBy": group.submitted_by,
            "submittedAt": iso(group.submitted_at),
            "resolvedBy": item.resolved_by,
            "resolvedAt": iso(item.resolved_at),
            "resolveHours": _resolve_hours(item),
            "lastAction": last.to_dict() if last else None,
            "lastUpdated": iso(item.updated_at),
        })

    rows.sort(key=lambda r: (r["submittedAt"] or "", -r["position"]), reverse=True)
    logger.debug("Report built: %d rows", len(rows), extra={"team": team})
    return rows
