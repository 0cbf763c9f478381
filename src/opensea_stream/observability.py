"""Prometheus metrics and per-client counters for the stream client."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from prometheus_client import Counter, Gauge

from .config import get_settings

_FRAMES = Counter(
    "opensea_stream_frames_total",
    "Inbound frames read from the socket.",
)
_DROPPED = Counter(
    "opensea_stream_frames_dropped_total",
    "Inbound frames dropped before dispatch.",
    ["reason"],
)
_DISPATCH = Counter(
    "opensea_stream_dispatch_total",
    "Event dispatch outcomes.",
    ["result"],
)
_RECONNECTS = Counter(
    "opensea_stream_reconnects_total",
    "Transitions into the reconnecting state.",
)
_STATE = Gauge(
    "opensea_stream_connection_state",
    "1 for the state the client is currently in, 0 otherwise.",
    ["state"],
)


def metrics_enabled() -> bool:
    return get_settings().metrics_enabled


@dataclass
class ClientStats:
    """Counters kept per client instance; mirrored to Prometheus when enabled."""

    metrics: bool = field(default_factory=metrics_enabled, repr=False)
    frames_received: int = 0
    frames_dropped: dict[str, int] = field(default_factory=dict)
    events_delivered: int = 0
    events_unrouted: int = 0
    events_unrecognized: int = 0
    handler_errors: int = 0
    reconnects: int = 0
    subscribes_sent: int = 0
    unsubscribes_sent: int = 0
    heartbeats_sent: int = 0
    last_error: Optional[str] = None

    def record_frame(self) -> None:
        self.frames_received += 1
        if self.metrics:
            _FRAMES.inc()

    def record_drop(self, reason: str) -> None:
        self.frames_dropped[reason] = self.frames_dropped.get(reason, 0) + 1
        if self.metrics:
            _DROPPED.labels(reason=reason).inc()

    def record_dispatch(self, result: str) -> None:
        if result == "delivered":
            self.events_delivered += 1
        elif result == "unrouted":
            self.events_unrouted += 1
        elif result == "failed":
            self.handler_errors += 1
        if self.metrics:
            _DISPATCH.labels(result=result).inc()

    def record_reconnect(self, error: Optional[BaseException] = None) -> None:
        self.reconnects += 1
        if error is not None:
            self.last_error = f"{type(error).__name__}: {error}"
        if self.metrics:
            _RECONNECTS.inc()

    def record_state(self, previous: Optional[str], current: str) -> None:
        if not self.metrics:
            return
        if previous is not None:
            _STATE.labels(state=previous).set(0)
        _STATE.labels(state=current).set(1)

    @property
    def dropped_total(self) -> int:
        return sum(self.frames_dropped.values())

    def snapshot(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("metrics", None)
        data["frames_dropped"] = dict(self.frames_dropped)
        return data
