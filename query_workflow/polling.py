"""
Client-side polling tasks bound to a view's lifetime.

A PollingTask re-fetches on a fixed interval until cancelled.  Requests may
overlap when one is slow; every request takes a sequence number and a
response older than the newest one already applied is discarded, so a view
never moves backwards.

Usage:
    with list_view_poller(client, render, team="sales") as task:
        ...                       # view open; task polls every 20 s
    # leaving the block cancels the task

Tests drive ``poll_once()`` directly instead of starting the timer thread.
"""

from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from query_workflow.core.exceptions import WorkflowError
from query_workflow.services.sync import DEFAULT_LIST_INTERVAL, DEFAULT_THREAD_INTERVAL

logger = logging.getLogger(__name__)


class PollingTask:
    """Cancellable periodic fetch with stale-response discard.

    Args:
        fetch: Zero-argument callable returning the latest view payload.
        on_update: Called with each accepted payload.
        interval: Seconds between polls.
        on_error: Optional callback for a failed fetch or update; the task keeps polling.
        max_in_flight: Requests allowed to overlap.
    """

    def __init__(
        self,
        fetch: Callable[[], Any],
        on_update: Callable[[Any], None],
        interval: float,
        *,
        on_error: Callable[[Exception], None] | None = None,
        max_in_flight: int = 2,
        name: str = "poll",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.fetch = fetch
        self.on_update = on_update
        self.interval = interval
        self.on_error = on_error
        self.name = name
        self.max_in_flight = max_in_flight

        self._seq = itertools.count(1)
        self._applied_seq = 0
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None

    # ── Sequencing ────────────────────────────────────────────────────────────

    @property
    def applied_seq(self) -> int:
        return self._applied_seq

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def next_seq(self) -> int:
        with self._lock:
            return next(self._seq)

    def accept(self, seq: int, payload: Any) -> bool:
        """Apply ``payload`` unless a newer response was already applied."""
        with self._lock:
            if self._stop.is_set() or seq <= self._applied_seq:
                logger.debug("%s: discarded stale response #%d (applied #%d)",
                             self.name, seq, self._applied_seq)
                return False
            self._applied_seq = seq
            self.on_update(payload)
            return True

    def poll_once(self) -> bool:
        """Fetch and apply one response.  Returns False if it was discarded or failed."""
        seq = self.next_seq()
        try:
            return self.accept(seq, self.fetch())
        except WorkflowError as exc:
            logger.warning("%s: poll #%d failed: %s", self.name, seq, exc)
            if self.on_error:
                self.on_error(exc)
            return False
        except Exception as exc:
            # Runs on an executor thread whose future nobody reads
            logger.exception("%s: poll #%d crashed: %s", self.name, seq, exc)
            if self.on_error:
                self.on_error(exc)
            return False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> "PollingTask":
        if self._thread is not None:
            return self
        self._executor = ThreadPoolExecutor(max_workers=self.max_in_flight,
                                            thread_name_prefix=self.name)
        self._thread = threading.Thread(target=self._run, name=f"{self.name}-timer", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._executor.submit(self.poll_once)
            except RuntimeError:
                # executor shut down by cancel()
                break
            if self._stop.wait(self.interval):
                break

    def cancel(self) -> None:
        """Stop polling.  In-flight responses arriving afterwards are dropped."""
        self._stop.set()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval)

    def __enter__(self) -> "PollingTask":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()


# ── View helpers ──────────────────────────────────────────────────────────────


def _contract_interval(client, key: str, default: int) -> int:
    try:
        return int(client.polling_contract()[key])
    except WorkflowError:
        logger.warning("Polling contract unavailable; using %ss", default)
        return default


def list_view_poller(client, on_update, *, team=None, status="pending", app_no=None, interval=None) -> PollingTask:
    """Poll a team's query list at the served list interval."""
    if interval is None:
        interval = _contract_interval(client, "listIntervalSeconds", DEFAULT_LIST_INTERVAL)
    return PollingTask(
        lambda: client.list_queries(status=status, team=team, app_no=app_no),
        on_update,
        interval,
        name=f"list-{team or 'all'}",
    )


def thread_view_poller(client, item_id, on_update, *, team=None, interval=None) -> PollingTask:
    """Poll one open thread at the served thread interval."""
    if interval is None:
        interval = _contract_interval(client, "threadIntervalSeconds", DEFAULT_THREAD_INTERVAL)
    return PollingTask(
        lambda: client.thread(item_id, team=team),
        on_update,
        interval,
        name=f"thread-{item_id}",
    )
