"""SNS/SQS transport for a monitoring event pipeline.

Modules include configuration, the envelope normalizer, the statsd metrics
sink and prometheus counters, the publish retry policy, tracing helpers and
the transport session itself.
"""

from snssqs_transport.errors import (
    AcknowledgeError,
    ConfigurationError,
    MalformedMessageError,
    NotConnectedError,
    PublishError,
    TransportError,
)
from snssqs_transport.models import QueueMessage
from snssqs_transport.transport import SNSSQSTransport

__all__ = [
    "AcknowledgeError",
    "ConfigurationError",
    "MalformedMessageError",
    "NotConnectedError",
    "PublishError",
    "QueueMessage",
    "SNSSQSTransport",
    "TransportError",
]
