# ===========================================
# file: centinela/obs/metrics.py
# ===========================================
from __future__ import annotations

import os

from loguru import logger
from prometheus_client import Counter, Gauge, Histogram, start_http_server

# ---------- Feed (WS) ----------
feed_msgs_total = Counter(
    "centinela_feed_msgs_total", "Feed messages received", ["pipeline"]
)
feed_malformed_total = Counter(
    "centinela_feed_malformed_total", "Feed messages dropped as malformed", ["pipeline"]
)
feed_state = Gauge(
    "centinela_feed_state",
    "Feed connection state (1 on the current state, 0 elsewhere)",
    ["pipeline", "state"],
)
feed_reconnects_total = Counter(
    "centinela_feed_reconnects_total", "Scheduled feed reconnects", ["pipeline", "reason"]
)
feed_matches_total = Counter(
    "centinela_feed_matches_total", "Feed events matching the watch registry", ["pipeline"]
)

# ---------- Registry ----------
registry_size = Gauge(
    "centinela_registry_size", "Identifiers in the in-memory watch registry", ["pipeline"]
)
registry_refresh_total = Counter(
    "centinela_registry_refresh_total", "Registry refreshes by result", ["pipeline", "result"]
)

# ---------- Queue ----------
queue_enqueued_total = Counter(
    "centinela_queue_enqueued_total", "Entries pushed to the alert queue", ["pipeline"]
)
queue_enqueue_fail_total = Counter(
    "centinela_queue_enqueue_fail_total", "Failed enqueues (entry lost)", ["pipeline", "kind"]
)
queue_dequeued_total = Counter(
    "centinela_queue_dequeued_total", "Entries popped from the alert queue", ["pipeline"]
)
queue_depth = Gauge(
    "centinela_queue_depth", "Alert queue length as last observed", ["pipeline"]
)
queue_time_seconds = Histogram(
    "centinela_queue_time_seconds",
    "Time entries spend in the alert queue",
    ["pipeline"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
)
alerts_discarded_total = Counter(
    "centinela_alerts_discarded_total", "Queue entries discarded by cause", ["pipeline", "cause"]
)
alerts_matched_total = Counter(
    "centinela_alerts_matched_total", "Watcher filter matches", ["pipeline"]
)

# ---------- Dispatch (Telegram) ----------
dispatch_attempts_total = Counter(
    "centinela_dispatch_attempts_total", "Dispatch attempts", ["channel"]
)
dispatch_success_total = Counter(
    "centinela_dispatch_success_total", "Successful dispatches", ["channel"]
)
dispatch_fail_total = Counter(
    "centinela_dispatch_fail_total", "Failed dispatches", ["channel", "kind"]
)
dispatch_dropped_total = Counter(
    "centinela_dispatch_dropped_total", "Dropped dispatches", ["channel", "reason"]
)

_exporter_running = False


def run_exporter(port: int = 9000) -> None:
    """Idempotente: solo arranca una vez."""
    global _exporter_running
    if _exporter_running:
        return
    env_port = os.getenv("CENTINELA_METRICS_PORT")
    if env_port:
        try:
            port = int(env_port)
        except ValueError:
            logger.warning(
                f"[metrics] Invalid CENTINELA_METRICS_PORT={env_port!r}, using default {port}"
            )
    try:
        start_http_server(port)
        _exporter_running = True
        logger.info(f"[metrics] Exporter started on port {port}")
    except OSError as e:
        logger.error(f"[metrics] Failed to start exporter on port {port}: {e!s}")
