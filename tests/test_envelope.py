import json

import pytest

from conftest import envelope_message, raw_message
from snssqs_transport.envelope import ensure_dispatchable, normalize_batch, normalize_message
from snssqs_transport.errors import MalformedMessageError
from snssqs_transport.models import QueueMessage


def test_raw_message_returned_unchanged():
    msg = QueueMessage.from_sqs(raw_message('{"check": {}}', pipe="results"))
    assert normalize_message(msg) is msg


def test_raw_message_with_empty_attribute_map_is_raw_shaped():
    msg = QueueMessage(receipt_handle="r", body="not json", attributes={})
    assert normalize_message(msg) is msg


def test_from_sqs_without_attributes_has_none():
    msg = QueueMessage.from_sqs(raw_message("body"))
    assert msg.attributes is None
    assert msg.pipe is None
    assert msg.receipt_handle == "r1"


def test_envelope_is_unwrapped():
    raw = envelope_message('{"client": "web-1"}', {"pipe": "keepalives", "type": "direct"})
    msg = normalize_message(QueueMessage.from_sqs(raw))
    assert msg.body == '{"client": "web-1"}'
    assert msg.attributes == {"pipe": "keepalives", "type": "direct"}
    assert msg.pipe == "keepalives"
    # receipt handle survives so the message can still be acknowledged
    assert msg.receipt_handle == "r2"


def test_envelope_attribute_values_are_stringified():
    body = json.dumps({"Message": "x", "MessageAttributes": {"ttl": {"Type": "Number", "Value": 30}}})
    msg = normalize_message(QueueMessage(receipt_handle="r", body=body))
    assert msg.attributes == {"ttl": "30"}


def test_envelope_null_attribute_value_becomes_empty_string():
    body = json.dumps({"Message": "x", "MessageAttributes": {"pipe": {"Value": "results"}, "client": {"Value": None}}})
    msg = normalize_message(QueueMessage(receipt_handle="r", body=body))
    assert msg.attributes == {"pipe": "results", "client": ""}


def test_envelope_attribute_without_value_is_skipped():
    body = json.dumps({"Message": "x", "MessageAttributes": {"pipe": {"Value": "results"}, "bad": {"Type": "String"}}})
    msg = normalize_message(QueueMessage(receipt_handle="r", body=body))
    assert msg.attributes == {"pipe": "results"}


@pytest.mark.parametrize(
    "body,reason",
    [
        ("{not json", "invalid_json"),
        (json.dumps({"MessageAttributes": {}}), "no_message"),
        (json.dumps(["Message"]), "no_message"),
        (json.dumps({"Message": "payload"}), "no_attributes"),
    ],
)
def test_malformed_envelopes_raise(body, reason):
    with pytest.raises(MalformedMessageError) as excinfo:
        normalize_message(QueueMessage(receipt_handle="r", body=body))
    assert excinfo.value.reason == reason


def test_ensure_dispatchable_requires_body_and_pipe():
    with pytest.raises(MalformedMessageError) as excinfo:
        ensure_dispatchable(QueueMessage(receipt_handle="r", body="", attributes={"pipe": "results"}))
    assert excinfo.value.reason == "empty_body"
    with pytest.raises(MalformedMessageError) as excinfo:
        ensure_dispatchable(QueueMessage(receipt_handle="r", body="x", attributes={"type": "direct"}))
    assert excinfo.value.reason == "no_pipe"


def test_normalize_batch_isolates_failures():
    batch = [
        QueueMessage.from_sqs(raw_message("result", pipe="results", message_id="a")),
        QueueMessage.from_sqs(envelope_message(None, {"pipe": "results"}, message_id="b")),
        QueueMessage(message_id="c", receipt_handle="r", body="{broken"),
        QueueMessage.from_sqs(envelope_message("keepalive", {"pipe": "keepalives"}, message_id="d")),
        QueueMessage.from_sqs(raw_message("no pipe", pipe=None, message_id="e")),
    ]
    survivors = normalize_batch(batch)
    assert [m.message_id for m in survivors] == ["a", "d"]
    assert [m.body for m in survivors] == ["result", "keepalive"]
