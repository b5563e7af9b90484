"""
SNS/SQS transport session.

- Publishes classified messages to one SNS topic, with bounded retries
- Consumes one SQS queue (subscribed to that topic) in a perpetual poll loop
- Routes each received message to the keepalive or the results callback
- Deletes consumed messages on explicit acknowledgment
"""

import asyncio
import concurrent.futures
import functools
import inspect
import json
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Set, Union

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from snssqs_transport.config import Settings, load_settings
from snssqs_transport.constants import (
    FANOUT_TYPE,
    KEEPALIVES_PIPE,
    PIPE_ATTR,
    RECEIVE_ATTRIBUTE_NAMES,
    STAT_MESSAGE_DELETED,
    STAT_MESSAGE_PUBLISHED,
    STAT_PROCESS_TIMING,
    TYPE_ATTR,
)
from snssqs_transport.envelope import normalize_batch
from snssqs_transport.errors import (
    AcknowledgeError,
    ConfigurationError,
    NotConnectedError,
    PublishError,
)
from snssqs_transport.metrics import (
    DELETE_TOTAL,
    DISPATCH_LATENCY_SECONDS,
    DISPATCH_TOTAL,
    MESSAGES_RECEIVED_TOTAL,
    POLL_CYCLES_TOTAL,
    PUBLISH_ATTEMPT_TOTAL,
    PUBLISH_FAILED_TOTAL,
    RECEIVE_ERRORS_TOTAL,
    StatsdSink,
)
from snssqs_transport.models import QueueMessage, string_attribute
from snssqs_transport.retry import RetryPolicy, with_retries
from snssqs_transport.tracing import get_tracer


Callback = Callable[..., Any]

# asyncio.Task when called on the loop, concurrent Future from other threads
Pending = Union[asyncio.Task, concurrent.futures.Future]


def _noop(*_args: Any) -> None:
    return None


async def _invoke(callback: Callback, *args: Any) -> Any:
    """Call a plain or coroutine callback and return its result.

    Coroutine functions run on the loop; plain callables run in a worker
    thread so a blocking callback never stalls the loop.
    """
    if inspect.iscoroutinefunction(callback):
        return await callback(*args)
    result = await asyncio.to_thread(callback, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


def build_attributes(
    type: str,
    pipe: str,
    options: Optional[Mapping[Any, Any]] = None,
) -> dict[str, dict[str, str]]:
    """Build the SNS message attributes for an outbound message.

    ``type`` and ``pipe`` become attributes of the same name; every option is
    stringified and added on top, so an option may override either of them.

    Example:
        >>> build_attributes("direct", "results", {"ttl": 30})["ttl"]
        {'DataType': 'String', 'StringValue': '30'}
    """
    if not type or not isinstance(type, str):
        raise ValueError("publish: type must be a non-empty string")
    if not pipe or not isinstance(pipe, str):
        raise ValueError("publish: pipe must be a non-empty string")
    attributes = {
        TYPE_ATTR: string_attribute(type),
        PIPE_ATTR: string_attribute(pipe),
    }
    for key, value in (options or {}).items():
        attributes[str(key)] = string_attribute(value)
    return attributes


def encode_body(message: Any) -> str:
    """Return the SNS message body for a payload (JSON for non-strings)."""
    if isinstance(message, str):
        return message
    if isinstance(message, bytes):
        return message.decode("utf-8")
    return json.dumps(message, separators=(",", ":"))


class SNSSQSTransport:
    """Publish/subscribe channel over one SNS topic and one SQS queue.

    Purpose:
    - ``publish`` sends to the topic; every queue subscribed to it (including
      the one this transport consumes) receives a copy
    - ``subscribe`` starts polling the consuming queue and registers the
      callback for the keepalive or the results channel
    - ``acknowledge`` deletes a consumed message; unacknowledged messages
      reappear after the queue's visibility timeout

    Concurrency model:
    - All units of work (poll cycles, dispatches, publishes, deletes) run as
      tasks on the event loop bound at connect/subscribe time; blocking boto3
      calls go through ``asyncio.to_thread``
    - Plain (non-coroutine) callbacks run in worker threads and may call
      ``publish``/``acknowledge`` from there
    - A poll cycle dispatches its batch with at most ``max_concurrency``
      callbacks in flight and waits for the whole batch before the next receive
    - No ordering is guaranteed between messages of a batch, nor between
      concurrent publish or acknowledge calls

    Example:
    ```python
    transport = SNSSQSTransport()
    transport.connect({"consuming_sqs_queue_url": url, "publishing_sns_topic_arn": arn})
    transport.subscribe("direct", "keepalives", callback=on_keepalive)
    transport.subscribe("direct", "results", callback=on_result)
    await transport.publish("direct", "results", '{"check": {}}')
    ```
    Properties:
    - `logger`: replaceable by the hosting process after construction
    - `metrics`: the statsd sink built at connect time
    - `settings`: validated ``Settings`` once connected
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.settings: Optional[Settings] = None
        self.sqs: Any = None
        self.sns: Any = None
        self.metrics = StatsdSink()
        self._connected = False
        self._subscribing = False
        self._keepalives_callback: Callback = _noop
        self._results_callback: Callback = _noop
        self._consumer_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # Strong references so pending tasks are not garbage collected
        self._tasks: Set[Pending] = set()
        self._tasks_lock = threading.Lock()
        self._tracer = get_tracer("snssqs-transport")

    # --- connection ---

    @property
    def connected(self) -> bool:
        return self._connected

    def is_connected(self) -> bool:
        return self._connected

    def connect(
        self,
        settings: "Settings | Mapping[str, Any] | None" = None,
        *,
        sqs_client: Any = None,
        sns_client: Any = None,
        metrics: Optional[StatsdSink] = None,
    ) -> None:
        """Validate settings and build the SQS/SNS clients and metrics sink.

        Clients and the metrics sink can be injected (tests, shared clients);
        otherwise they are built from ``settings``. Both callback slots are
        reset to no-ops.
        """
        self.settings = load_settings(settings)
        self._bind_running_loop()
        self._keepalives_callback = _noop
        self._results_callback = _noop

        client_kwargs = self.settings.aws_client_kwargs()
        if sqs_client is None:
            # Read timeout must outlast the long-poll wait
            sqs_client = boto3.client(
                "sqs",
                config=Config(read_timeout=max(60, self.settings.wait_time_seconds + 10)),
                **client_kwargs,
            )
        if sns_client is None:
            sns_client = boto3.client("sns", **client_kwargs)
        self.sqs = sqs_client
        self.sns = sns_client
        self.metrics = metrics if metrics is not None else StatsdSink.from_settings(self.settings)

        self._connected = True
        self.logger.info(
            "connected: queue=%s topic=%s statsd=%s",
            self.settings.consuming_sqs_queue_url,
            self.settings.publishing_sns_topic_arn,
            "on" if self.metrics.enabled else "off",
        )

    def _require_settings(self) -> Settings:
        if not self._connected or self.settings is None:
            raise NotConnectedError("transport is not connected; call connect() first")
        return self.settings

    @property
    def queue_url(self) -> str:
        settings = self._require_settings()
        if not settings.consuming_sqs_queue_url:
            raise ConfigurationError("consuming_sqs_queue_url is not configured")
        return settings.consuming_sqs_queue_url

    @property
    def topic_arn(self) -> str:
        settings = self._require_settings()
        if not settings.publishing_sns_topic_arn:
            raise ConfigurationError("publishing_sns_topic_arn is not configured")
        return settings.publishing_sns_topic_arn

    # --- background tasks ---

    def _bind_running_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        """Remember the running loop, if any, as the home of background work."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        self._loop = loop
        return loop

    def _spawn(self, coro: Awaitable[Any], name: Optional[str] = None) -> Pending:
        """Schedule ``coro`` on the transport's loop.

        On the loop thread this returns an ``asyncio.Task``. From any other
        thread (a plain dispatch callback runs in one) the coroutine is handed
        to the bound loop and a ``concurrent.futures.Future`` is returned.
        """
        running = self._bind_running_loop()
        if running is not None:
            pending: Pending = running.create_task(coro, name=name)
        elif self._loop is not None and not self._loop.is_closed():
            pending = asyncio.run_coroutine_threadsafe(coro, self._loop)
        else:
            if inspect.iscoroutine(coro):
                coro.close()
            raise NotConnectedError("no event loop bound; connect or subscribe from a running loop first")
        with self._tasks_lock:
            self._tasks.add(pending)
        pending.add_done_callback(functools.partial(self._on_task_done, name or "background task"))
        return pending

    def _on_task_done(self, name: str, pending: Pending) -> None:
        with self._tasks_lock:
            self._tasks.discard(pending)
        if pending.cancelled():
            return
        exc = pending.exception()
        if exc is not None:
            # Callers see the error when they await the task
            self.logger.debug("%s failed: %s", name, exc)

    # --- subscribe / consume ---

    def subscribe(
        self,
        type: str,
        pipe: str,
        funnel: Optional[str] = None,
        options: Optional[Mapping[str, Any]] = None,
        callback: Optional[Callback] = None,
    ) -> None:
        """Register ``callback`` for ``pipe`` and start polling the queue.

        Callbacks are called with ``(message, body)``. ``keepalives`` uses
        the keepalive slot, any other pipe the results slot; a later call for
        the same slot replaces the callback. Fan-out subscriptions are not
        supported by this transport and are ignored. ``funnel`` and
        ``options`` are ignored.

        Must be called from a running event loop: the first non fan-out
        subscription starts the consumption loop as a background task.
        """
        if type == FANOUT_TYPE:
            self.logger.debug(
                "skipping unsupported fanout subscription type=%s, pipe=%s, funnel=%s", type, pipe, funnel
            )
            return

        queue_url = self.queue_url
        self.logger.info("subscribing to type=%s, pipe=%s, funnel=%s", type, pipe, funnel)

        if pipe == KEEPALIVES_PIPE:
            self._keepalives_callback = callback or _noop
        else:
            self._results_callback = callback or _noop

        if not self._subscribing:
            self._consumer_task = self._spawn(self._consume_forever(), name=f"consume {queue_url}")
            self._subscribing = True

    async def _consume_forever(self) -> None:
        """Run poll cycles back to back until the process exits.

        A failed cycle is logged and the next one starts anyway.
        """
        while True:
            try:
                await self._poll_once()
            except Exception:
                self.logger.exception("poll cycle failed; continuing")
            POLL_CYCLES_TOTAL.inc()
            # Yield so an empty or failed cycle cannot starve the loop
            await asyncio.sleep(0)

    async def _poll_once(self) -> int:
        """Receive one batch, normalize it and dispatch the survivors.

        Returns the number of messages dispatched.
        """
        settings = self._require_settings()
        received = await self._receive_messages()
        messages = normalize_batch(received, self.logger)
        if not messages:
            return 0
        sem = asyncio.Semaphore(settings.max_concurrency)
        await asyncio.gather(*(self._dispatch(message, sem) for message in messages))
        return len(messages)

    async def _receive_messages(self) -> list[QueueMessage]:
        """Long-poll the queue for one batch; broker errors yield an empty batch."""
        settings = self._require_settings()
        try:
            resp = await asyncio.to_thread(
                self.sqs.receive_message,
                MessageAttributeNames=RECEIVE_ATTRIBUTE_NAMES,
                QueueUrl=self.queue_url,
                WaitTimeSeconds=settings.wait_time_seconds,
                MaxNumberOfMessages=settings.max_number_of_messages,
            )
        except (BotoCoreError, ClientError) as exc:
            self.logger.info("receive from %s failed: %s", settings.consuming_sqs_queue_url, exc)
            RECEIVE_ERRORS_TOTAL.inc()
            return []

        messages: list[QueueMessage] = []
        for raw in resp.get("Messages") or []:
            try:
                messages.append(QueueMessage.from_sqs(raw))
            except (KeyError, ValidationError) as exc:
                self.logger.info("discarding unreadable queue entry: %s", exc)
        MESSAGES_RECEIVED_TOTAL.inc(len(messages))
        return messages

    async def _dispatch(self, message: QueueMessage, sem: asyncio.Semaphore) -> None:
        """Hand one message to the callback registered for its pipe.

        The callback is looked up when the dispatch starts, so a concurrent
        subscribe may or may not be seen by this message.
        """
        async with sem:
            pipe = message.pipe
            if pipe == KEEPALIVES_PIPE:
                channel, callback = KEEPALIVES_PIPE, self._keepalives_callback
            else:
                channel, callback = "results", self._results_callback

            stat = STAT_PROCESS_TIMING.format(queue=self.queue_url)
            start_ts = time.perf_counter()
            with self._tracer.start_as_current_span("sqs.dispatch") as span:
                span.set_attribute("messaging.destination", self.queue_url)
                span.set_attribute("pipe", pipe or "")
                if message.message_id:
                    span.set_attribute("message_id", message.message_id)
                try:
                    await self.metrics.time_async(stat, lambda: _invoke(callback, message, message.body))
                except Exception as exc:  # noqa: BLE001
                    # A failing callback must not take the batch down with it
                    self.logger.exception("%s callback failed for message %s", channel, message.message_id)
                    span.record_exception(exc)
                    DISPATCH_TOTAL.labels(channel=channel, status="error").inc()
                else:
                    DISPATCH_TOTAL.labels(channel=channel, status="success").inc()
                finally:
                    DISPATCH_LATENCY_SECONDS.observe(time.perf_counter() - start_ts)

    # --- acknowledge ---

    def acknowledge(self, message: QueueMessage, callback: Optional[Callback] = None) -> Pending:
        """Delete ``message`` from the queue in the background.

        Returns the task (a ``concurrent.futures.Future`` when called from a
        plain callback's worker thread); awaiting it raises
        ``AcknowledgeError`` if the delete failed. ``callback`` receives the
        original message on success.
        """
        queue_url = self.queue_url
        return self._spawn(self._delete_message(message, callback), name=f"acknowledge {queue_url}")

    async def _delete_message(self, message: QueueMessage, callback: Optional[Callback]) -> None:
        queue_url = self.queue_url
        try:
            await asyncio.to_thread(
                self.sqs.delete_message,
                QueueUrl=queue_url,
                ReceiptHandle=message.receipt_handle,
            )
        except Exception as exc:
            DELETE_TOTAL.labels(result="error").inc()
            raise AcknowledgeError(queue_url, message.receipt_handle) from exc
        DELETE_TOTAL.labels(result="ok").inc()
        self.metrics.increment(STAT_MESSAGE_DELETED.format(queue=queue_url))
        if callback is not None:
            await _invoke(callback, message)

    # --- publish ---

    def publish(
        self,
        type: str,
        pipe: str,
        message: Any,
        options: Optional[Mapping[Any, Any]] = None,
        callback: Optional[Callback] = None,
    ) -> Pending:
        """Publish ``message`` to the topic in the background.

        ``type``, ``pipe`` and every option become string message attributes.
        Returns the task; awaiting it yields the SNS response, or raises
        ``PublishError`` once every attempt failed (``callback`` is then not
        called). On success ``callback`` receives ``{"response": resp}``.
        """
        topic_arn = self.topic_arn
        attributes = build_attributes(type, pipe, options)
        return self._spawn(self._send_message(message, attributes, callback), name=f"publish {topic_arn}")

    async def _send_message(
        self,
        message: Any,
        attributes: dict[str, dict[str, str]],
        callback: Optional[Callback],
    ) -> Any:
        settings = self._require_settings()
        topic_arn = self.topic_arn
        body = encode_body(message)
        policy = RetryPolicy(
            max_tries=settings.publish_max_tries,
            base_sleep_seconds=settings.publish_retry_sleep_seconds,
        )

        async def attempt() -> Any:
            try:
                resp = await asyncio.to_thread(
                    self.sns.publish,
                    TargetArn=topic_arn,
                    Message=body,
                    MessageAttributes=attributes,
                )
            except Exception:
                PUBLISH_ATTEMPT_TOTAL.labels(result="error").inc()
                raise
            PUBLISH_ATTEMPT_TOTAL.labels(result="ok").inc()
            return resp

        def on_retry(attempt_no: int, exc: BaseException, delay: float) -> None:
            self.logger.warning(
                "publish to %s failed (attempt %d/%d): %s; retrying in %.1fs",
                topic_arn, attempt_no, policy.max_tries, exc, delay,
            )

        with self._tracer.start_as_current_span("sns.publish") as span:
            span.set_attribute("messaging.destination", topic_arn)
            span.set_attribute("pipe", attributes[PIPE_ATTR]["StringValue"])
            try:
                resp = await with_retries(attempt, policy, on_retry=on_retry)
            except Exception as exc:
                PUBLISH_FAILED_TOTAL.labels(reason=exc.__class__.__name__).inc()
                span.record_exception(exc)
                span.set_attribute("error", True)
                raise PublishError(topic_arn, policy.max_tries) from exc

        self.metrics.increment(STAT_MESSAGE_PUBLISHED.format(topic=topic_arn))
        if callback is not None:
            await _invoke(callback, {"response": resp})
        return resp
