"""
Unit tests for logging setup.
"""

import json
import logging

import json_log_formatter
import pytest

from couchbind_sdk import Settings
from couchbind_sdk.logs import setup_logging


@pytest.fixture
def root_logger():
    """Restore the root logger after the test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    def test_json_format(self, root_logger):
        setup_logging(Settings(log_level="debug"))

        assert root_logger.level == logging.DEBUG
        assert isinstance(root_logger.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_text_format(self, root_logger):
        setup_logging(Settings(log_format="text"))

        formatter = root_logger.handlers[0].formatter
        assert not isinstance(formatter, json_log_formatter.JSONFormatter)
        assert root_logger.level == logging.INFO

    def test_json_record_carries_context(self, root_logger, capsys):
        setup_logging(Settings(log_level="info"))

        logging.getLogger("couchbind_sdk.changes").info(
            "Change feed connected", extra={"database": "tasks", "since": "3-abc"}
        )

        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["message"] == "Change feed connected"
        assert record["level"] == "INFO"
        assert record["logger"] == "couchbind_sdk.changes"
        assert record["database"] == "tasks"
        assert record["since"] == "3-abc"

    def test_text_record_appends_context(self, root_logger, capsys):
        setup_logging(Settings(log_format="text"))

        logging.getLogger("couchbind_sdk.documents").warning(
            "Document request rejected", extra={"status": 409}
        )
        logging.getLogger("couchbind_sdk.documents").warning("No context")

        lines = capsys.readouterr().err.strip().splitlines()
        assert lines[-2].endswith("Document request rejected [status=409]")
        assert lines[-1].endswith("No context")

    def test_stdout_stays_clean(self, root_logger, capsys):
        setup_logging(Settings())

        logging.getLogger("couchbind_sdk").error("Change feed stopped")

        assert capsys.readouterr().out == ""
