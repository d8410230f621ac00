"""
Sync Blueprint — serves the polling contract.

Routes:
  GET    /api/sync/contract              – list / thread poll intervals and staleness bounds
"""

from flask import Blueprint

from query_workflow.blueprints import success
from query_workflow.services.sync import polling_contract

sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.route("/contract", methods=["GET"])
def contract():
    return success(polling_contract())
