"""
Routing Resolver — which teams may see and act on a query item.

Pure functions, no state.  The same answer drives both the read path (list
filtering) and the write path (action / message authorization).

Rules:
    marked_for_team = "both"    -> {sales, credit}
    marked_for_team = "sales"   -> {sales}
    marked_for_team = "credit"  -> {credit}

Operations raised every query, so it may read all of them, post messages on
all of them and take the resolving actions (approve / defer / otc).  Revert is
not available to Operations: Sales or Credit issue it to hand a resolved item
back.
"""

from __future__ import annotations

from query_workflow.core.exceptions import UnauthorizedError, ValidationError
from query_workflow.models.query import (
    HANDLING_TEAMS,
    MARK_BOTH,
    TEAM_CREDIT,
    TEAM_OPERATIONS,
    TEAM_SALES,
)

_TEAM_ALIASES = {
    "sales": TEAM_SALES,
    "sales team": TEAM_SALES,
    "credit": TEAM_CREDIT,
    "credit team": TEAM_CREDIT,
    "operations": TEAM_OPERATIONS,
    "operations team": TEAM_OPERATIONS,
    "ops": TEAM_OPERATIONS,
}

_OPERATIONS_ACTIONS = frozenset({"message", "approve", "defer", "otc"})


def normalise_team(value: str | None) -> str:
    """Map a caller-supplied team name to its canonical lower-case form.

    Raises:
        ValidationError: empty or unknown team.
    """
    key = (value or "").strip().lower()
    if not key:
        raise ValidationError("team is required", details={"team": "required"})
    team = _TEAM_ALIASES.get(key)
    if not team:
        raise ValidationError(
            f"Unknown team '{value}'",
            details={"team": "must be one of sales, credit, operations"},
        )
    return team


def parse_send_to(value) -> set[str]:
    """Parse a ``sendTo`` declaration into a set of handling teams.

    Accepts "Sales", "Credit", "Sales,Credit", "both" or a list of names.
    """
    if isinstance(value, (list, tuple, set)):
        parts = [str(v) for v in value]
    else:
        parts = str(value or "").split(",")

    teams: set[str] = set()
    for part in parts:
        key = part.strip().lower()
        if not key:
            continue
        if key == MARK_BOTH:
            teams.update(HANDLING_TEAMS)
            continue
        team = _TEAM_ALIASES.get(key)
        if team not in HANDLING_TEAMS:
            raise ValidationError(
                f"Cannot send a query to '{part.strip()}'",
                details={"sendTo": "must name Sales, Credit or both"},
            )
        teams.add(team)

    if not teams:
        raise ValidationError("sendTo is required", details={"sendTo": "required"})
    return teams


def marked_for(teams: set[str]) -> str:
    """Collapse a team set to the stored marking (sales | credit | both)."""
    if teams >= set(HANDLING_TEAMS):
        return MARK_BOTH
    (team,) = tuple(teams)
    return team


def visible_teams(marked_for_team: str) -> set[str]:
    """Teams routed to an item with the given marking."""
    if marked_for_team == MARK_BOTH:
        return set(HANDLING_TEAMS)
    return {marked_for_team}


def can_view(team: str, marked_for_team: str) -> bool:
    return team == TEAM_OPERATIONS or team in visible_teams(marked_for_team)


def can_act(team: str, marked_for_team: str, action: str) -> bool:
    """Write access for ``action`` ("message" included)."""
    if team == TEAM_OPERATIONS:
        return action in _OPERATIONS_ACTIONS
    return team in visible_teams(marked_for_team)


def authorize(team: str, item, action: str) -> None:
    """Raise ``UnauthorizedError`` unless ``team`` may perform ``action`` on ``item``."""
    if not can_act(team, item.marked_for_team, action):
        raise UnauthorizedError(team, item_id=item.id, action=action)


def authorize_read(team: str, item) -> None:
    if not can_view(team, item.marked_for_team):
        raise UnauthorizedError(team, item_id=item.id)
