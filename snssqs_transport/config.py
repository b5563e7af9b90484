import os
from typing import Any, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from snssqs_transport.constants import (
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_PUBLISH_MAX_TRIES,
    DEFAULT_PUBLISH_RETRY_SLEEP_SECONDS,
)
from snssqs_transport.errors import ConfigurationError


# AWS connection settings
AWS_REGION: str = os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1"))
AWS_ACCESS_KEY_ID: str = os.getenv("AWS_ACCESS_KEY_ID", "")
AWS_SECRET_ACCESS_KEY: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")

# Queue consumed by subscribe(); topic written by publish()
CONSUMING_QUEUE_URL: str = os.getenv("SNSSQS_CONSUMING_QUEUE_URL", "")
PUBLISHING_TOPIC_ARN: str = os.getenv("SNSSQS_PUBLISHING_TOPIC_ARN", "")

# Statsd sink (disabled when the address is empty)
STATSD_ADDR: str = os.getenv("STATSD_ADDR", "")
STATSD_NAMESPACE: str = os.getenv("STATSD_NAMESPACE", "")


def parse_statsd_addr(addr: str) -> Tuple[str, int]:
    """Split a ``host:port`` statsd address.

    >>> parse_statsd_addr("localhost:8125")
    ('localhost', 8125)
    """
    host, sep, port = addr.strip().rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ConfigurationError(f"statsd_addr must be host:port, got {addr!r}")
    return host, int(port)


class Settings(BaseModel):
    """Typed configuration for the SNS/SQS transport.

    Why this exists:
    - One place for the queue/topic identifiers, long-poll tuning and the
      optional statsd sink, validated before any client is built
    - Field names match the keys the monitoring server passes to
      ``connect()``, so a plain mapping validates into this model

    How to use:
    - Instantiate with explicit values, or let the environment fill defaults
    - Pass to ``SNSSQSTransport.connect``

    Examples:
    - Consume from one queue and publish to one topic:
      ```bash
      export SNSSQS_CONSUMING_QUEUE_URL=https://sqs.us-east-1.amazonaws.com/123/sensu
      export SNSSQS_PUBLISHING_TOPIC_ARN=arn:aws:sns:us-east-1:123:sensu
      export SNSSQS_WAIT_TIME_SECONDS=20     # long-poll up to 20s per receive
      ```
    - Report per-queue timings to statsd:
      ```bash
      export STATSD_ADDR=localhost:8125
      export STATSD_NAMESPACE=sensu.transport
      export STATSD_SAMPLE_RATE=0.5
      ```
    """
    model_config = ConfigDict(extra="ignore")

    region: str = AWS_REGION
    access_key_id: Optional[str] = AWS_ACCESS_KEY_ID or None
    secret_access_key: Optional[str] = AWS_SECRET_ACCESS_KEY or None

    consuming_sqs_queue_url: str = CONSUMING_QUEUE_URL
    publishing_sns_topic_arn: str = PUBLISHING_TOPIC_ARN

    # SQS caps long-poll waits at 20s and batches at 10 messages
    wait_time_seconds: int = Field(default=int(os.getenv("SNSSQS_WAIT_TIME_SECONDS", "2")), ge=0, le=20)
    max_number_of_messages: int = Field(
        default=int(os.getenv("SNSSQS_MAX_NUMBER_OF_MESSAGES", "10")), ge=1, le=10
    )
    max_concurrency: int = Field(
        default=int(os.getenv("SNSSQS_MAX_CONCURRENCY", str(DEFAULT_MAX_CONCURRENCY))), ge=1
    )

    publish_max_tries: int = Field(
        default=int(os.getenv("SNSSQS_PUBLISH_MAX_TRIES", str(DEFAULT_PUBLISH_MAX_TRIES))), ge=1
    )
    publish_retry_sleep_seconds: float = Field(
        default=float(os.getenv("SNSSQS_PUBLISH_RETRY_SLEEP_SECONDS", str(DEFAULT_PUBLISH_RETRY_SLEEP_SECONDS))),
        ge=0,
    )

    statsd_addr: str = STATSD_ADDR
    statsd_namespace: str = STATSD_NAMESPACE
    statsd_sample_rate: float = Field(default=float(os.getenv("STATSD_SAMPLE_RATE", "1.0")), ge=0, le=1)

    metrics_port: int = int(os.getenv("METRICS_PORT", "9000"))

    def is_statsd_configured(self) -> bool:
        return bool(self.statsd_addr and self.statsd_addr.strip())

    def aws_client_kwargs(self) -> dict[str, Any]:
        """Return keyword arguments for ``boto3.client``.

        Explicit credentials are only passed when an access key id is set,
        otherwise boto3 falls back to its default credential chain.
        """
        kwargs: dict[str, Any] = {"region_name": self.region}
        if self.access_key_id:
            kwargs["aws_access_key_id"] = self.access_key_id
            kwargs["aws_secret_access_key"] = self.secret_access_key
        return kwargs


def load_settings(settings: "Settings | Mapping[str, Any] | None" = None) -> Settings:
    """Coerce ``settings`` into a validated ``Settings`` instance.

    Accepts an existing instance (returned as-is), a mapping of setting keys
    (validated, unknown keys ignored) or ``None`` (environment defaults).
    """
    if settings is None:
        return Settings()
    if isinstance(settings, Settings):
        return settings
    data = {str(k): v for k, v in settings.items() if v is not None}
    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid transport settings: {exc}") from exc
