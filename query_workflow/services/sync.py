"""
Synchronization contract — how often clients poll and how stale a view may be.

There is no push channel.  List views re-fetch every LIST interval, open
threads every THREAD interval.  A change is visible to another team within
one interval plus request latency.
"""

from __future__ import annotations

from flask import current_app

LIST_INTERVAL_BOUNDS = (15, 30)
DEFAULT_LIST_INTERVAL = 20
DEFAULT_THREAD_INTERVAL = 5


def list_interval(config=None) -> int:
    """Configured list-view interval, clamped to the supported range."""
    config = config if config is not None else current_app.config
    low, high = LIST_INTERVAL_BOUNDS
    value = int(config.get("LIST_POLL_INTERVAL_SECONDS", DEFAULT_LIST_INTERVAL))
    return min(max(value, low), high)


def thread_interval(config=None) -> int:
    config = config if config is not None else current_app.config
    return max(1, int(config.get("THREAD_POLL_INTERVAL_SECONDS", DEFAULT_THREAD_INTERVAL)))


def polling_contract(config=None) -> dict:
    """The contract served at /api/sync/contract."""
    lists = list_interval(config)
    threads = thread_interval(config)
    return {
        "listIntervalSeconds": lists,
        "listIntervalBounds": list(LIST_INTERVAL_BOUNDS),
        "threadIntervalSeconds": threads,
        "maxStalenessSeconds": {"list": lists, "thread": threads},
        "transport": "polling",
        "staleResponsePolicy": "discard responses older than the newest applied request",
    }
