"""
Query Actions Blueprint — act on a query item and read its thread.

Routes:
  POST   /api/query-actions              – action (approve / deferral / otc / revert) or message
  GET    /api/query-actions?queryId=     – thread entries, oldest first (?type, ?team)

A rejected request answers with ``applied: false`` and leaves the item and
its thread untouched.  A 503 means the outcome is unknown: re-fetch the
item before retrying, and reuse the same ``clientRequestId``.
"""

import logging

from flask import Blueprint, request

from query_workflow.blueprints import request_team, success
from query_workflow.core.exceptions import ValidationError
from query_workflow.models.thread import KIND_ACTION, KIND_MESSAGE, KIND_SYSTEM_NOTICE
from query_workflow.services import action_processor, query_store, thread_ledger
from query_workflow.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

query_actions_bp = Blueprint("query_actions", __name__, url_prefix="/api")
register_error_handlers(query_actions_bp)

# ?type= values for the thread read
_THREAD_FILTERS = {
    "messages": (KIND_MESSAGE, KIND_SYSTEM_NOTICE),
    "actions": (KIND_ACTION,),
    "both": None,
    "all": None,
}


@query_actions_bp.route("/query-actions", methods=["POST"])
def submit_query_action():
    """Apply an action or post a message.

    Body: { type: "action" | "message", queryId, action?, remarks?, assignedTo?,
            message?, addedBy, team, refersTo?, clientRequestId? }
    """
    parsed = action_processor.parse_action_payload(request.get_json(silent=True))
    result = action_processor.submit(parsed)
    return success(result.to_dict(), 200 if result.replayed else 201)


@query_actions_bp.route("/query-actions", methods=["GET"])
def list_query_actions():
    """Thread for one item, ascending by timestamp then seq."""
    item_id = (request.args.get("queryId") or "").strip()
    if not item_id:
        raise ValidationError("queryId is required", details={"queryId": "required"})

    kind_filter = (request.args.get("type") or "both").strip().lower()
    if kind_filter not in _THREAD_FILTERS:
        raise ValidationError(
            f"Unknown type filter '{kind_filter}'",
            details={"type": "must be messages, actions or both"},
        )

    query_store.get_item(item_id, team=request_team())
    entries = thread_ledger.history(item_id, kind=_THREAD_FILTERS[kind_filter])
    return success([entry.to_dict() for entry in entries], count=len(entries))
