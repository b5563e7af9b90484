import asyncio
import json
import threading
import time
from typing import Any, Callable

import pytest

from snssqs_transport import SNSSQSTransport
from snssqs_transport.config import Settings
from snssqs_transport.metrics import StatsdSink


QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/sensu-server"
TOPIC_ARN = "arn:aws:sns:us-east-1:123456789012:sensu"


def raw_message(body: str, pipe: str | None = None, message_id: str = "m1", receipt: str = "r1") -> dict:
    """A receive_message entry as delivered with raw SNS delivery."""
    msg: dict[str, Any] = {"MessageId": message_id, "ReceiptHandle": receipt, "Body": body}
    if pipe is not None:
        msg["MessageAttributes"] = {"pipe": {"DataType": "String", "StringValue": pipe}}
    return msg


def envelope_message(payload: str | None, attributes: dict | None, message_id: str = "m2", receipt: str = "r2") -> dict:
    """A receive_message entry carrying an SNS JSON envelope."""
    envelope: dict[str, Any] = {"Type": "Notification", "TopicArn": TOPIC_ARN}
    if payload is not None:
        envelope["Message"] = payload
    if attributes is not None:
        envelope["MessageAttributes"] = {k: {"Type": "String", "Value": v} for k, v in attributes.items()}
    return {"MessageId": message_id, "ReceiptHandle": receipt, "Body": json.dumps(envelope)}


class FakeSQS:
    """Serves queued batches, then empty long-polls."""

    def __init__(self, batches: list | None = None, poll_sleep: float = 0.005):
        self.batches = list(batches or [])
        self.poll_sleep = poll_sleep
        self.receive_calls: list[dict] = []
        self.delete_calls: list[dict] = []
        self.delete_error: Exception | None = None
        self._lock = threading.Lock()

    def receive_message(self, **kwargs):
        with self._lock:
            self.receive_calls.append(kwargs)
            batch = self.batches.pop(0) if self.batches else None
        if isinstance(batch, Exception):
            raise batch
        if batch is None:
            time.sleep(self.poll_sleep)
            return {}
        return {"Messages": batch}

    def delete_message(self, **kwargs):
        with self._lock:
            self.delete_calls.append(kwargs)
        if self.delete_error is not None:
            raise self.delete_error
        return {}


class FakeSNS:
    """Fails the first ``failures`` publish calls, then succeeds."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.publish_calls: list[dict] = []
        self.call_times: list[float] = []

    def publish(self, **kwargs):
        self.publish_calls.append(kwargs)
        self.call_times.append(time.monotonic())
        if len(self.publish_calls) <= self.failures:
            raise RuntimeError(f"publish failure #{len(self.publish_calls)}")
        return {"MessageId": f"sns-{len(self.publish_calls)}"}


class FakeStatsClient:
    def __init__(self):
        self.increments: list[tuple[str, float]] = []
        self.timings: list[tuple[str, float, float]] = []

    def incr(self, stat, count=1, rate=1):
        self.increments.append((stat, rate))

    def timing(self, stat, delta, rate=1):
        self.timings.append((stat, delta, rate))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        region="us-east-1",
        consuming_sqs_queue_url=QUEUE_URL,
        publishing_sns_topic_arn=TOPIC_ARN,
        wait_time_seconds=0,
        max_number_of_messages=10,
        publish_retry_sleep_seconds=0.05,
        statsd_addr="",
    )


@pytest.fixture
def stats() -> FakeStatsClient:
    return FakeStatsClient()


@pytest.fixture
def make_transport(settings, stats) -> Callable[..., SNSSQSTransport]:
    def _make(sqs: FakeSQS | None = None, sns: FakeSNS | None = None, **overrides) -> SNSSQSTransport:
        transport = SNSSQSTransport()
        transport.connect(
            settings.model_copy(update=overrides),
            sqs_client=sqs or FakeSQS(),
            sns_client=sns or FakeSNS(),
            metrics=StatsdSink(stats, sample_rate=1.0),
        )
        return transport

    return _make


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


async def stop_consumer(transport: SNSSQSTransport) -> None:
    task = transport._consumer_task
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
