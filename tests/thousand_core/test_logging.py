"""Unit tests for loguru logging setup."""

import logging

from loguru import logger

from thousand_core.logging import NOISY_LOGGERS, InterceptHandler, setup_logging


class TestSetupLogging:
    def test_routes_driver_loggers_through_loguru(self):
        setup_logging("DEBUG")

        for name in NOISY_LOGGERS:
            handlers = logging.getLogger(name).handlers
            assert len(handlers) == 1
            assert isinstance(handlers[0], InterceptHandler)
            assert logging.getLogger(name).propagate is False

    def test_botocore_is_quieted(self):
        setup_logging("DEBUG")

        assert logging.getLogger("botocore").level == logging.WARNING

    def test_stdlib_records_reach_loguru(self):
        setup_logging("DEBUG")
        messages = []
        sink_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
        try:
            logging.getLogger("psycopg.pool").warning("pool exhausted")
        finally:
            logger.remove(sink_id)

        assert "pool exhausted" in messages
