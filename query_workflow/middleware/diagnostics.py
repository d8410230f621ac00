"""
Startup diagnostics — runs once when the Flask app starts.

Checks critical dependencies and logs a summary banner.
"""

import logging
import sys

import redis
from flask import Flask
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError

from query_workflow.models import db
from query_workflow.services import sync

logger = logging.getLogger(__name__)


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return

    issues: list[str] = []

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        try:
            db.session.execute(db.text("SELECT 1"))
        except SQLAlchemyError as exc:
            db_status = "FAILED"
            issues.append(f"Database unreachable: {exc}")

        # ── Workflow tables ──────────────────────────────────────────
        try:
            tables = set(sa_inspect(db.engine).get_table_names())
            missing = {"applications", "query_groups", "query_items", "thread_entries"} - tables
            table_status = "ok" if not missing else f"missing {', '.join(sorted(missing))}"
            if missing:
                issues.append("Workflow tables missing; run 'flask db upgrade'")
        except SQLAlchemyError:
            table_status = "check failed"

        # ── Redis (rate-limit storage) ───────────────────────────────
        redis_url = app.config.get("REDIS_URL", "")
        redis_status = "not configured"
        if redis_url and "redis" in redis_url:
            try:
                redis.from_url(redis_url, socket_timeout=2).ping()
                redis_status = "ok"
            except redis.RedisError:
                redis_status = "unreachable"
                issues.append("Redis unreachable; rate limiter may not work")

        # ── Workflow settings ────────────────────────────────────────
        roster = app.config.get("ASSIGNEE_ROSTER") or ()
        if not roster:
            issues.append("ASSIGNEE_ROSTER is empty; deferral and OTC will be rejected")
        configured_list = int(app.config.get("LIST_POLL_INTERVAL_SECONDS", sync.DEFAULT_LIST_INTERVAL))
        low, high = sync.LIST_INTERVAL_BOUNDS
        if not low <= configured_list <= high:
            issues.append(
                f"LIST_POLL_INTERVAL_SECONDS={configured_list} outside {low}-{high}s; "
                f"clamped to {sync.list_interval(app.config)}s"
            )
        polling = f"list {sync.list_interval(app.config)}s / thread {sync.thread_interval(app.config)}s"

        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  Loan Query Workflow — Startup Diagnostics                   ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {f'{db_type} ({db_status})':<46s}║
║  Tables      : {table_status:<46s}║
║  Redis       : {redis_status:<46s}║
║  Roster      : {f'{len(roster)} people':<46s}║
║  Polling     : {polling:<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("✅ All startup checks passed")
