"""
Applications Blueprint — read-only lookup in the application registry.

Routes:
  GET    /api/applications/<app_no>      – one application (case-insensitive App.No)
"""

from flask import Blueprint

from query_workflow.blueprints import success
from query_workflow.core.exceptions import NotFoundError
from query_workflow.models.application import find_application
from query_workflow.utils.errors import register_error_handlers

applications_bp = Blueprint("applications", __name__, url_prefix="/api")
register_error_handlers(applications_bp)


@applications_bp.route("/applications/<path:app_no>", methods=["GET"])
def get_application(app_no):
    application = find_application(app_no)
    if application is None:
        raise NotFoundError("Application", app_no)
    return success(application.to_dict())
