"""
Demo producer.

- Connects the transport from environment settings
- Publishes one message with TYPE/PIPE/BODY taken from the environment
- Prints the SNS publish response
"""

import asyncio
import json
import os

from snssqs_transport import SNSSQSTransport
from snssqs_transport.config import Settings
from snssqs_transport.log import setup_logging


async def main() -> None:
    """Publish a single demo message and wait for the response."""
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    msg_type = os.getenv("TYPE", "direct")
    pipe = os.getenv("PIPE", "results")
    body = os.getenv("BODY", json.dumps({"client": "demo", "check": {"name": "demo", "status": 0}}))

    transport = SNSSQSTransport()
    transport.connect(Settings())

    def on_published(info: dict) -> None:
        print(f"published: {info['response'].get('MessageId')}")

    await transport.publish(msg_type, pipe, body, {"source": "producer"}, on_published)


if __name__ == "__main__":
    asyncio.run(main())
