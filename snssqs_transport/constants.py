"""Shared constants for attribute names, pipes and stat name templates.

Attribute names:
- ``pipe``: logical sub-channel of a message; the only attribute requested
  from the queue on receive and the one used for dispatch routing.
- ``type``: classification supplied by the publisher; carried opaquely.

Pipes:
- ``keepalives`` routes to the keepalive callback; every other value routes
  to the default (results) callback.

Stat templates are formatted with the queue URL or topic ARN so that each
queue/topic reports under its own stat names.
"""

STRING_DATA_TYPE = "String"

PIPE_ATTR = "pipe"
TYPE_ATTR = "type"

KEEPALIVES_PIPE = "keepalives"

# Subscription type the consumer side ignores
FANOUT_TYPE = "fanout"

# Envelope fields written by SNS when raw delivery is disabled
ENVELOPE_MESSAGE = "Message"
ENVELOPE_ATTRIBUTES = "MessageAttributes"
ENVELOPE_VALUE = "Value"

RECEIVE_ATTRIBUTE_NAMES = [PIPE_ATTR]

DEFAULT_MAX_CONCURRENCY = 10
DEFAULT_PUBLISH_MAX_TRIES = 2
DEFAULT_PUBLISH_RETRY_SLEEP_SECONDS = 5.0

# Stat names
STAT_PROCESS_TIMING = "sqs.{queue}.process_timing"
STAT_MESSAGE_DELETED = "sqs.{queue}.message.deleted"
STAT_MESSAGE_PUBLISHED = "sns.{topic}.message.published"

# Discard reasons (prometheus label values)
DISCARD_INVALID_JSON = "invalid_json"
DISCARD_NO_MESSAGE = "no_message"
DISCARD_NO_ATTRIBUTES = "no_attributes"
DISCARD_NO_PIPE = "no_pipe"
DISCARD_EMPTY_BODY = "empty_body"
