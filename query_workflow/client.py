"""
HTTP client for the Loan Query Workflow API.

Caller obligations built in:
  - Every write carries a ``clientRequestId`` (generated when not given), so
    a retry of the same request is replayed by the server, never re-applied.
  - A 503 or a transport timeout means the outcome is unknown.  The client
    re-fetches the item, then retries the same request after a backoff.
  - Caller errors (400 / 403 / 404 / 409) are raised immediately and never
    retried.

Constants:
  timeout    = 10 s
  backoff    = [1, 2, 4] seconds before retry 1, 2 and 3

Usage:
    client = QueryWorkflowClient("http://localhost:5000", team="sales", actor="r.verma")
    client.submit_action(item_id, "approve", remarks="KYC received")
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable

import requests

from query_workflow.core.exceptions import (
    ConflictError,
    NotFoundError,
    StorageError,
    UnauthorizedError,
    ValidationError,
    WorkflowError,
)

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10
_RETRY_BACKOFF_SECONDS = (1, 2, 4)


class UnknownOutcomeError(StorageError):
    """The write may or may not have committed; re-fetch before acting on it."""


def _raise_for_payload(status: int, payload: dict) -> None:
    """Translate an error envelope back into the workflow exception it came from."""
    message = payload.get("error") or f"HTTP {status}"
    details = payload.get("details") or {}
    if status == 400:
        raise ValidationError(message, details=details)
    if status == 403:
        raise UnauthorizedError(team="", message=message)
    if status == 404:
        raise NotFoundError("Resource", message=message)
    if status == 409:
        raise ConflictError(message, current_status=details.get("currentStatus"))
    if status == 503:
        raise UnknownOutcomeError(message)
    raise WorkflowError(message)


class QueryWorkflowClient:
    """Thin typed wrapper over the JSON API.

    Args:
        base_url: Service root, e.g. ``http://localhost:5000``.
        team / actor: Defaults for writes and team-scoped reads.
        session: Injected ``requests.Session`` (tests pass a stand-in).
        sleep: Injected sleep for backoff (tests pass a no-op).
    """

    def __init__(
        self,
        base_url: str,
        *,
        team: str | None = None,
        actor: str | None = None,
        session: requests.Session | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        backoff: tuple[float, ...] = _RETRY_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.team = team
        self.actor = actor
        self.session = session or requests.Session()
        self.timeout = timeout
        self.backoff = tuple(backoff)
        self._sleep = sleep

    # ── Transport ─────────────────────────────────────────────────────────────

    def _request(self, method: str, path: str, *, params: dict | None = None, json_body: dict | None = None) -> dict:
        url = f"{self.base_url}{path}"
        kwargs: dict[str, Any] = {"timeout": self.timeout}
        if params:
            kwargs["params"] = {k: v for k, v in params.items() if v is not None}
        if json_body is not None:
            kwargs["json"] = json_body

        try:
            resp = self.session.request(method, url, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise UnknownOutcomeError(f"{method} {path}: {exc}") from exc

        try:
            payload = resp.json() if resp.content else {}
        except ValueError:
            payload = {}

        if resp.status_code >= 400:
            _raise_for_payload(resp.status_code, payload)
        return payload

    def _get(self, path: str, **params) -> dict:
        return self._request("GET", path, params=params)

    def _team(self, team: str | None) -> str | None:
        return team or self.team

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get_application(self, app_no: str) -> dict:
        return self._get(f"/api/applications/{app_no}")["data"]

    def list_queries(self, status: str = "all", team: str | None = None, app_no: str | None = None) -> list[dict]:
        return self._get("/api/queries", status=status, team=self._team(team), appNo=app_no)["data"]

    def stats(self, team: str | None = None) -> dict:
        return self._get("/api/queries", stats="true", team=self._team(team))["data"]

    def report(self, **filters) -> list[dict]:
        return self._get("/api/queries/report", **filters)["data"]

    def get_group(self, group_id: str, team: str | None = None) -> dict:
        return self._get(f"/api/queries/{group_id}", team=self._team(team))["data"]

    def get_item(self, item_id: str, team: str | None = None) -> dict:
        return self._get(f"/api/queries/items/{item_id}", team=self._team(team))["data"]

    def thread(self, item_id: str, kind: str = "both", team: str | None = None) -> list[dict]:
        return self._get("/api/query-actions", queryId=item_id, type=kind, team=self._team(team))["data"]

    def polling_contract(self) -> dict:
        return self._get("/api/sync/contract")["data"]

    # ── Writes ────────────────────────────────────────────────────────────────

    def raise_queries(self, app_no: str, queries: list, send_to, submitted_by: str | None = None) -> dict:
        """Create a query group.  Not retried: a repeat would raise a second group."""
        body = {"appNo": app_no, "queries": queries, "sendTo": send_to,
                "submittedBy": submitted_by or self.actor}
        return self._request("POST", "/api/queries", json_body=body)["data"]

    def submit_action(
        self,
        item_id: str,
        action: str,
        *,
        remarks: str | None = None,
        assigned_to: str | None = None,
        actor: str | None = None,
        team: str | None = None,
        client_request_id: str | None = None,
    ) -> dict:
        """Apply approve / deferral / otc / revert.  Returns ``{item, entry, replayed}``."""
        body = {
            "type": "action",
            "queryId": item_id,
            "action": action,
            "remarks": remarks,
            "assignedTo": assigned_to,
            "addedBy": actor or self.actor,
            "team": self._team(team),
        }
        return self._write(item_id, body, client_request_id, team)

    def post_message(
        self,
        item_id: str,
        message: str,
        *,
        refers_to: str | None = None,
        actor: str | None = None,
        team: str | None = None,
        client_request_id: str | None = None,
    ) -> dict:
        body = {
            "type": "message",
            "queryId": item_id,
            "message": message,
            "refersTo": refers_to,
            "addedBy": actor or self.actor,
            "team": self._team(team),
        }
        return self._write(item_id, body, client_request_id, team)

    def _write(self, item_id: str, body: dict, client_request_id: str | None, team: str | None) -> dict:
        """POST with idempotent retry on unknown outcome.

        Re-fetches the item before every retry; the replayed response tells
        the caller whether the first attempt had already landed.
        """
        body["clientRequestId"] = client_request_id or uuid.uuid4().hex
        body = {k: v for k, v in body.items() if v is not None}

        for attempt in range(len(self.backoff) + 1):
            try:
                return self._request("POST", "/api/query-actions", json_body=body)["data"]
            except UnknownOutcomeError as exc:
                if attempt >= len(self.backoff):
                    raise
                delay = self.backoff[attempt]
                logger.warning(
                    "Outcome unknown (attempt %d/%d), retrying in %ss: %s",
                    attempt + 1, len(self.backoff) + 1, delay, exc,
                    extra={"item_id": item_id, "request_id": body["clientRequestId"]},
                )
                self._sleep(delay)
                try:
                    current = self.get_item(item_id, team=team)
                    logger.info(
                        "Re-fetched query before retry: status=%s version=%s",
                        current.get("status"), current.get("version"),
                        extra={"item_id": item_id},
                    )
                except UnknownOutcomeError:
                    logger.warning("Re-fetch failed; retrying anyway", extra={"item_id": item_id})
