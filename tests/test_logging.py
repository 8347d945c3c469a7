"""Tests for log formatting and context fields."""

import json
import logging
import sys

from mlstack.utils.logging import (
    ConsoleFormatter,
    JSONFormatter,
    LogContext,
    redaction_filter,
    setup_logging,
)


def make_record(message="Creating bucket", **fields):
    record = logging.LogRecord("mlstack.test", logging.INFO, __file__, 1, message, None, None)
    record.__dict__.update(fields)
    return record


class TestFormatters:
    """Tests for console and JSON output."""

    def test_json_includes_structured_fields(self):
        record = make_record(resource_id="mlflow-artifacts", operation="create", duration=1.23456)

        entry = json.loads(JSONFormatter().format(record))

        assert entry["msg"] == "Creating bucket"
        assert entry["level"] == "info"
        assert entry["resource_id"] == "mlflow-artifacts"
        assert entry["duration"] == 1.235
        assert "command" not in entry

    def test_console_prefixes_resource(self):
        record = make_record(resource_id="mlflow-db", operation="update")

        line = ConsoleFormatter(use_color=False).format(record)

        assert line.endswith("info    mlflow-db/update: Creating bucket")

    def test_console_without_resource(self):
        line = ConsoleFormatter(use_color=False).format(make_record("Plan created"))
        assert line.endswith("info    Plan created")

    def test_tracebacks_redacted(self):
        redaction_filter.add_secret("tb-secret-value")
        try:
            raise RuntimeError("connect failed for tb-secret-value")
        except RuntimeError:
            record = make_record("Apply failed", exc_info=sys.exc_info())

        entry = json.loads(JSONFormatter().format(record))
        line = ConsoleFormatter(use_color=False).format(record)

        assert "RuntimeError" in entry["exc"]
        assert "tb-secret-value" not in entry["exc"]
        assert "tb-secret-value" not in line


class TestLogContext:
    """Tests for LogContext."""

    def test_fields_only_inside_block(self, caplog):
        logger = logging.getLogger("mlstack.test.context")

        with caplog.at_level(logging.INFO, logger="mlstack.test.context"):
            with LogContext(logger, command="apply"):
                logger.info("inside")
            logger.info("outside")

        inside, outside = caplog.records
        assert inside.command == "apply"
        assert not hasattr(outside, "command")


class TestSetupLogging:
    """Tests for handler installation."""

    def test_writes_json_log_file(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging("warning", str(tmp_path))
            logging.getLogger("mlstack.test.setup").debug("debug goes to file only")
            for handler in root.handlers:
                handler.flush()

            [log_file] = list(tmp_path.glob("mlstack-*.jsonl"))
            assert "debug goes to file only" in log_file.read_text()
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
            for handler in saved_handlers:
                root.addHandler(handler)
            root.setLevel(saved_level)
