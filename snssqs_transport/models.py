"""Pydantic models for messages received from the consuming queue.

``QueueMessage`` is the Python representation of one SQS receive entry. The
transport hands it to dispatch callbacks and expects it back in
``acknowledge``.

Examples
--------
>>> raw = {
...     "MessageId": "m1",
...     "ReceiptHandle": "r1",
...     "Body": "{}",
...     "MessageAttributes": {"pipe": {"DataType": "String", "StringValue": "results"}},
... }
>>> msg = QueueMessage.from_sqs(raw)
>>> (msg.body, msg.pipe, msg.receipt_handle)
('{}', 'results', 'r1')
>>> string_attribute("keepalives")
{'DataType': 'String', 'StringValue': 'keepalives'}
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from snssqs_transport.constants import PIPE_ATTR, STRING_DATA_TYPE


def string_attribute(value: Any) -> dict[str, str]:
    """Return an SNS/SQS message attribute typed as ``String`` (``None`` is empty)."""
    return {"DataType": STRING_DATA_TYPE, "StringValue": "" if value is None else str(value)}


class QueueMessage(BaseModel):
    """One message as received from the consuming queue.

    ``attributes`` is ``None`` when SQS delivered no attribute map at all,
    which is how an SNS envelope (raw delivery disabled) arrives.
    """
    model_config = ConfigDict(extra="allow")

    message_id: Optional[str] = None
    receipt_handle: str
    body: str = ""
    attributes: Optional[dict[str, str]] = None

    @classmethod
    def from_sqs(cls, raw: Mapping[str, Any]) -> "QueueMessage":
        """Build a ``QueueMessage`` from a boto3 ``receive_message`` entry."""
        attributes: Optional[dict[str, str]] = None
        raw_attributes = raw.get("MessageAttributes")
        if raw_attributes is not None:
            attributes = {}
            for name, value in raw_attributes.items():
                if isinstance(value, Mapping):
                    attributes[str(name)] = str(value.get("StringValue", ""))
                else:
                    attributes[str(name)] = str(value)
        return cls(
            message_id=raw.get("MessageId"),
            receipt_handle=raw["ReceiptHandle"],
            body=raw.get("Body") or "",
            attributes=attributes,
        )

    @property
    def pipe(self) -> Optional[str]:
        if not self.attributes:
            return None
        return self.attributes.get(PIPE_ATTR) or None
