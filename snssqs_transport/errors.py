"""Exception types raised by the transport."""


class TransportError(Exception):
    """Base class for all transport errors."""


class ConfigurationError(TransportError):
    """Settings are missing or malformed."""


class NotConnectedError(TransportError):
    """An operation was attempted before ``connect``."""


class PublishError(TransportError):
    """Publishing to the topic failed after every attempt."""

    def __init__(self, topic: str, attempts: int):
        self.topic = topic
        self.attempts = attempts
        super().__init__(f"publish to {topic} failed after {attempts} attempt(s)")


class AcknowledgeError(TransportError):
    """Deleting a message from the queue failed."""

    def __init__(self, queue: str, receipt_handle: str):
        self.queue = queue
        self.receipt_handle = receipt_handle
        super().__init__(f"delete from {queue} failed for receipt {receipt_handle[:16]}...")


class MalformedMessageError(TransportError):
    """A received message cannot be dispatched and must be discarded."""

    def __init__(self, reason: str, detail: str = ""):
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}" if detail else reason)
