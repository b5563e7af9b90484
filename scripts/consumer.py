"""
Demo consumer.

- Connects the transport from environment settings
- Subscribes the keepalive and results channels
- Logs every message and acknowledges it
- Exposes prometheus metrics on METRICS_PORT
"""

import asyncio
import os
import signal

from snssqs_transport import QueueMessage, SNSSQSTransport
from snssqs_transport.config import Settings
from snssqs_transport.log import get_logger, setup_logging
from snssqs_transport.metrics import start_metrics_server
from snssqs_transport.tracing import start_tracing


logger = get_logger("snssqs.consumer")


async def main() -> None:
    """Consume until SIGINT/SIGTERM."""
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    start_tracing("snssqs-consumer")
    settings = Settings()
    try:
        start_metrics_server(settings.metrics_port)
        logger.info("metrics server listening on :%d /metrics", settings.metrics_port)
    except OSError:
        # Already started in this process
        pass

    transport = SNSSQSTransport(logger=get_logger("snssqs.transport"))
    transport.connect(settings)

    async def on_message(message: QueueMessage, body: str) -> None:
        logger.info("[%s] %s", message.pipe, body)
        await transport.acknowledge(message)

    transport.subscribe("direct", "keepalives", callback=on_message)
    transport.subscribe("direct", "results", callback=on_message)

    stopping = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stopping.set)
    await stopping.wait()


if __name__ == "__main__":
    asyncio.run(main())
