import json
import logging

from ghostline.logging_config import (
    REDACTED,
    JSONFormatter,
    StructuredLogger,
    TokenRedactingFilter,
    get_logger,
    redact,
)

from conftest import TEST_TOKEN


def make_record(msg, *args):
    return logging.LogRecord("ghostline.test", logging.INFO, __file__, 1, msg, args, None)


class TestRedaction:
    def test_redacts_token_in_url(self):
        url = f"https://api.telegram.org/bot{TEST_TOKEN}/getUpdates"
        assert redact(url) == f"https://api.telegram.org/bot{REDACTED}/getUpdates"

    def test_leaves_other_text(self):
        assert redact("chat 42 sent /status") == "chat 42 sent /status"

    def test_filter_rewrites_formatted_message(self):
        record = make_record("HTTP Request: POST %s", f"https://api.telegram.org/bot{TEST_TOKEN}/getMe")
        assert TokenRedactingFilter().filter(record)
        assert TEST_TOKEN not in record.getMessage()
        assert REDACTED in record.getMessage()


class TestStructuredLogging:
    def test_get_logger_is_structured(self):
        assert isinstance(get_logger("ghostline.test.structured"), StructuredLogger)

    def test_fields_reach_json_output(self, caplog):
        logger = get_logger("ghostline.test.fields")
        with caplog.at_level(logging.INFO, logger="ghostline.test.fields"):
            logger.info_with("Dispatching action", action="status", chat_id="42")

        record = caplog.records[-1]
        assert record.getMessage() == "Dispatching action | action=status chat_id=42"
        entry = json.loads(JSONFormatter().format(record))
        assert entry["action"] == "status"
        assert entry["chat_id"] == "42"
        assert entry["level"] == "info"

    def test_disabled_level_is_skipped(self, caplog):
        logger = get_logger("ghostline.test.quiet")
        with caplog.at_level(logging.WARNING, logger="ghostline.test.quiet"):
            logger.debug_with("noise", n=1)
        assert caplog.records == []
