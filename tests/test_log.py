import logging
import sys

from snssqs_transport.log import get_logger, setup_logging


def test_setup_logging_configures_root_and_quiets_boto():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging("debug")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        handler = root.handlers[0]
        assert isinstance(handler, logging.StreamHandler)
        assert handler.stream is sys.stdout
        for name in ("botocore", "boto3", "urllib3"):
            assert logging.getLogger(name).level == logging.WARNING
        assert get_logger("snssqs.consumer") is logging.getLogger("snssqs.consumer")
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
