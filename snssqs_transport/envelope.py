"""Envelope normalization for messages received from the consuming queue.

SNS delivers to SQS in one of two shapes:

- raw delivery: the SNS attributes are copied onto the SQS message and the
  body is the published payload; nothing to do.
- encapsulated delivery: the SQS body is a JSON document written by SNS with
  the payload under ``Message`` and the attributes under
  ``MessageAttributes`` as ``{name: {"Type": "String", "Value": v}}``.

``normalize_message`` turns either shape into the raw one, raising
``MalformedMessageError`` when the body cannot be unwrapped.
``normalize_batch`` applies it to a whole receive batch, dropping (and
logging) every message that fails so the rest of the batch still dispatches.

Examples
--------
>>> import json
>>> envelope = {
...     "Message": "check result",
...     "MessageAttributes": {"pipe": {"Type": "String", "Value": "results"}},
... }
>>> msg = QueueMessage(receipt_handle="r1", body=json.dumps(envelope))
>>> normalized = normalize_message(msg)
>>> (normalized.body, normalized.attributes)
('check result', {'pipe': 'results'})
"""
from __future__ import annotations

import json
import logging
from typing import Iterable, List, Optional

from snssqs_transport.constants import (
    DISCARD_EMPTY_BODY,
    DISCARD_INVALID_JSON,
    DISCARD_NO_ATTRIBUTES,
    DISCARD_NO_MESSAGE,
    DISCARD_NO_PIPE,
    ENVELOPE_ATTRIBUTES,
    ENVELOPE_MESSAGE,
    ENVELOPE_VALUE,
)
from snssqs_transport.errors import MalformedMessageError
from snssqs_transport.metrics import MESSAGES_DISCARDED_TOTAL
from snssqs_transport.models import QueueMessage


logger = logging.getLogger(__name__)


def normalize_message(message: QueueMessage) -> QueueMessage:
    """Return ``message`` in the raw-delivery shape.

    A message that already carries an attribute map is returned unchanged.
    Otherwise the body must be an SNS envelope with both ``Message`` and
    ``MessageAttributes``; the returned copy has the envelope's payload as
    its body and the envelope attribute values as string attributes.

    Raises
    ------
    MalformedMessageError
        If the body is not JSON, or is missing ``Message`` or
        ``MessageAttributes``. ``reason`` carries the discard reason.
    """
    if message.attributes is not None:
        return message

    try:
        envelope = json.loads(message.body)
    except (TypeError, ValueError) as exc:
        raise MalformedMessageError(DISCARD_INVALID_JSON, str(exc)) from exc
    logger.debug("message %s parsed from JSON", message.message_id)

    # Without Message this is not an SNS envelope at all
    if not isinstance(envelope, dict) or ENVELOPE_MESSAGE not in envelope:
        raise MalformedMessageError(DISCARD_NO_MESSAGE, "body without SNS Message")

    # Without attributes the message cannot be routed
    raw_attributes = envelope.get(ENVELOPE_ATTRIBUTES)
    if ENVELOPE_ATTRIBUTES not in envelope or not isinstance(raw_attributes, dict):
        raise MalformedMessageError(DISCARD_NO_ATTRIBUTES, "body without SNS MessageAttributes")

    attributes: dict[str, str] = {}
    for name, value in raw_attributes.items():
        if not isinstance(value, dict) or ENVELOPE_VALUE not in value:
            logger.debug("message %s: skipping attribute %r without Value", message.message_id, name)
            continue
        raw_value = value[ENVELOPE_VALUE]
        attributes[str(name)] = "" if raw_value is None else str(raw_value)

    body = envelope[ENVELOPE_MESSAGE]
    if not isinstance(body, str):
        body = "" if body is None else json.dumps(body, separators=(",", ":"))

    return message.model_copy(update={"body": body, "attributes": attributes})


def ensure_dispatchable(message: QueueMessage) -> QueueMessage:
    """Reject messages without a body or a ``pipe`` attribute."""
    if not message.body:
        raise MalformedMessageError(DISCARD_EMPTY_BODY, "message body is empty")
    if message.pipe is None:
        raise MalformedMessageError(DISCARD_NO_PIPE, "message has no pipe attribute")
    return message


def normalize_batch(
    messages: Iterable[QueueMessage],
    log: Optional[logging.Logger] = None,
) -> List[QueueMessage]:
    """Normalize every message of a receive batch, dropping the malformed ones.

    Discards are logged and counted per reason; they never raise.
    """
    log = log or logger
    survivors: List[QueueMessage] = []
    for message in messages:
        try:
            log.debug("message %s parse start", message.message_id)
            survivors.append(ensure_dispatchable(normalize_message(message)))
            log.debug("message %s parsed successfully", message.message_id)
        except MalformedMessageError as exc:
            log.info("discarding message %s: %s", message.message_id, exc)
            MESSAGES_DISCARDED_TOTAL.labels(reason=exc.reason).inc()
    return survivors
