"""Metrics for the transport.

Two layers live here:

- ``StatsdSink``: the optional per-queue/per-topic sink configured through
  ``statsd_addr``. Every reported stat honours the configured sample rate.
  Without an address it reports nothing, but ``time`` still runs its body.
- Prometheus counters for process-level visibility (poll cycles, discards,
  publish/delete outcomes). Call ``start_metrics_server(port)`` once in a
  process to expose /metrics.
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import statsd
from prometheus_client import Counter, Histogram, start_http_server

from snssqs_transport.config import Settings, parse_statsd_addr


T = TypeVar("T")


# Consumption
POLL_CYCLES_TOTAL = Counter(
    "snssqs_poll_cycles_total", "Total poll cycles completed by the consumption loop"
)
MESSAGES_RECEIVED_TOTAL = Counter(
    "snssqs_messages_received_total", "Total messages received from the consuming queue"
)
MESSAGES_DISCARDED_TOTAL = Counter(
    "snssqs_messages_discarded_total", "Total received messages discarded before dispatch", ["reason"]
)
RECEIVE_ERRORS_TOTAL = Counter(
    "snssqs_receive_errors_total", "Total failed receive calls against the consuming queue"
)
DISPATCH_TOTAL = Counter(
    "snssqs_dispatch_total", "Total messages handed to subscription callbacks", ["channel", "status"]
)
DISPATCH_LATENCY_SECONDS = Histogram(
    "snssqs_dispatch_latency_seconds", "Time spent in a subscription callback", buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5)
)

# Publisher
PUBLISH_ATTEMPT_TOTAL = Counter(
    "snssqs_publish_attempt_total", "Total publish attempts against the topic", ["result"]
)
PUBLISH_FAILED_TOTAL = Counter(
    "snssqs_publish_failed_total", "Total publishes that exhausted every attempt", ["reason"]
)

# Acknowledger
DELETE_TOTAL = Counter(
    "snssqs_delete_total", "Total delete calls against the consuming queue", ["result"]
)


def start_metrics_server(port: int = 9000) -> None:
    start_http_server(port)


class StatsdSink:
    """Counters and timers around named operations.

    Example:
        >>> sink = StatsdSink()          # unconfigured: no-op reporting
        >>> sink.increment("sqs.q.message.deleted")
        >>> sink.time("sqs.q.process_timing", lambda: 42)
        42
    """

    def __init__(self, client: Optional[Any] = None, sample_rate: float = 1.0) -> None:
        self.client = client
        self.sample_rate = sample_rate

    @classmethod
    def from_settings(cls, settings: Settings) -> "StatsdSink":
        """Build a sink from settings; unconfigured when ``statsd_addr`` is empty."""
        if not settings.is_statsd_configured():
            return cls()
        host, port = parse_statsd_addr(settings.statsd_addr)
        client = statsd.StatsClient(host, port, prefix=settings.statsd_namespace or None)
        return cls(client, settings.statsd_sample_rate)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def increment(self, stat: str) -> None:
        if self.client is None:
            return
        self.client.incr(stat, rate=self.sample_rate)

    def timing(self, stat: str, elapsed_ms: float) -> None:
        if self.client is None:
            return
        self.client.timing(stat, round(elapsed_ms, 5), rate=self.sample_rate)

    def time(self, stat: str, body: Callable[[], T]) -> T:
        """Run ``body`` and return its result, reporting its duration if enabled."""
        start = time.perf_counter()
        result = body()
        self.timing(stat, (time.perf_counter() - start) * 1000)
        return result

    async def time_async(self, stat: str, body: Callable[[], Awaitable[T]]) -> T:
        """Coroutine flavour of ``time`` for awaitable bodies."""
        start = time.perf_counter()
        result = await body()
        self.timing(stat, (time.perf_counter() - start) * 1000)
        return result
