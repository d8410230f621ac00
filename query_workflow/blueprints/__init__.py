"""
Loan Query Workflow
Blueprint helpers.
"""

from flask import jsonify, request


def success(data, status=200, **extra):
    """Standard ``{"success": true, "data": ...}`` envelope."""
    body = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status


def request_team():
    """Caller's team from ``?team=`` or the ``X-Team`` header (None if absent)."""
    return (request.args.get("team") or request.headers.get("X-Team") or "").strip() or None
