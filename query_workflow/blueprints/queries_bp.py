"""
Queries Blueprint — raise query groups and read them back.

Routes:
  POST   /api/queries                    – raise a group of queries against an App.No
  GET    /api/queries                    – list groups (?status, ?team, ?appNo) or stats (?stats=true)
  GET    /api/queries/report             – flattened per-item report rows
  GET    /api/queries/<group_id>         – one group (?team narrows items)
  GET    /api/queries/items/<item_id>    – one item (?team enforces routing)
"""

import logging

from flask import Blueprint, request

from query_workflow.blueprints import request_team, success
from query_workflow.core.exceptions import ValidationError
from query_workflow.services import query_store, reporting
from query_workflow.utils.errors import register_error_handlers
from query_workflow.utils.helpers import parse_bool_arg, parse_datetime

logger = logging.getLogger(__name__)

queries_bp = Blueprint("queries", __name__, url_prefix="/api")
register_error_handlers(queries_bp)


@queries_bp.route("/queries", methods=["POST"])
def create_queries():
    """Raise a new query group.

    Body: { appNo, queries: [str | {text, sendTo}], sendTo, submittedBy? }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    missing = {}
    if not str(data.get("appNo") or "").strip():
        missing["appNo"] = "required"
    if not data.get("queries"):
        missing["queries"] = "required"
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", details=missing)

    group = query_store.create_group(
        data["appNo"],
        data["queries"],
        data.get("sendTo"),
        submitted_by=data.get("submittedBy"),
    )
    return success(
        group.to_dict(),
        201,
        message=f"{len(group.items)} queries raised for {group.app_number}",
    )


@queries_bp.route("/queries", methods=["GET"])
def list_queries():
    """List groups filtered by status / team / App.No, or dashboard stats."""
    team = request_team()
    if parse_bool_arg(request.args.get("stats")):
        return success(reporting.compute_stats(team=team))

    status = request.args.get("status", "all")
    app_number = request.args.get("appNo")
    views = query_store.list_groups(team=team, status=status, app_number=app_number)
    return success(
        [view.to_dict() for view in views],
        count=len(views),
        filters={"status": status, "team": team or "all", "appNo": app_number},
    )


@queries_bp.route("/queries/report", methods=["GET"])
def query_report():
    """Per-item report rows.

    Query params: status, team, submittedBy, from (ISO date), to (ISO date)
    """
    raw_from, raw_to = request.args.get("from"), request.args.get("to")
    date_from = parse_datetime(raw_from)
    date_to = parse_datetime(raw_to, end_of_day=True)
    bad = {k: "must be an ISO date" for k, raw, parsed in
           (("from", raw_from, date_from), ("to", raw_to, date_to)) if raw and parsed is None}
    if bad:
        raise ValidationError("Invalid date filter", details=bad)

    rows = reporting.build_report(
        status=request.args.get("status", "all"),
        team=request_team(),
        submitted_by=request.args.get("submittedBy"),
        date_from=date_from,
        date_to=date_to,
    )
    return success(rows, count=len(rows))


@queries_bp.route("/queries/<group_id>", methods=["GET"])
def get_query_group(group_id):
    view = query_store.get_group(group_id, team=request_team())
    return success(view.to_dict())


@queries_bp.route("/queries/items/<item_id>", methods=["GET"])
def get_query_item(item_id):
    item = query_store.get_item(item_id, team=request_team())
    data = item.to_dict()
    data["appNo"] = item.group.app_number
    data["customerName"] = item.group.customer_name
    return success(data)
