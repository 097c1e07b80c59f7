"""Metric definitions for the realtime chat core."""

from __future__ import annotations

import time

from .registry import registry


realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of open websocket connections handled by this process.",
    label_names=("scope",),
)

realtime_online_users = registry.gauge(
    "realtime_online_users",
    "Number of users with an authenticated websocket session.",
)

realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of websocket frames processed by the chat session.",
    label_names=("topic", "direction", "action"),
)

realtime_rejected_frames_total = registry.counter(
    "realtime_rejected_frames_total",
    "Inbound frames answered with an error frame.",
    label_names=("reason",),
)

chat_dispatch_total = registry.counter(
    "chat_dispatch_total",
    "Outcome of chat message dispatches.",
    label_names=("outcome",),
)

chat_push_failures_total = registry.counter(
    "chat_push_failures_total",
    "Pushes to a member connection that could not be delivered.",
    label_names=("frame",),
)

ephemeral_sweep_deleted_total = registry.counter(
    "ephemeral_sweep_deleted_total",
    "Expired ephemeral messages removed by the sweeper.",
)

ephemeral_sweep_failures_total = registry.counter(
    "ephemeral_sweep_failures_total",
    "Sweeper ticks that ended with an error.",
)

ephemeral_sweep_last_run_timestamp = registry.gauge(
    "ephemeral_sweep_last_run_timestamp",
    "Unix timestamp of the last successful expiry sweep.",
)


def mark_sweep_completed(deleted: int) -> None:
    """Record the outcome of a successful sweep tick."""

    if deleted:
        ephemeral_sweep_deleted_total.inc(amount=float(deleted))
    ephemeral_sweep_last_run_timestamp.set(time.time())
