"""Tests for logging and console helpers."""

import json
import logging

from kforge.utils import StructuredFormatter, ask_for_confirmation, format_duration, setup_logging


class TestStructuredFormatter:
    def test_includes_stage_fields(self):
        record = logging.LogRecord("kforge", logging.INFO, __file__, 1, "Stage finished", None, None)
        record.stage = "verify-cluster"
        record.event = "stage_completed"
        record.metadata = {"duration_seconds": 1.5}

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "Stage finished"
        assert data["stage"] == "verify-cluster"
        assert data["event"] == "stage_completed"
        assert data["metadata"] == {"duration_seconds": 1.5}

    def test_plain_record(self):
        record = logging.LogRecord("kforge", logging.WARNING, __file__, 1, "careful", None, None)

        data = json.loads(StructuredFormatter().format(record))

        assert data["level"] == "WARNING"
        assert "stage" not in data


class TestSetupLogging:
    def test_log_file_gets_json(self, tmp_path):
        log_file = tmp_path / "logs" / "kforge.jsonl"

        logger = setup_logging(log_level="DEBUG", log_file=log_file, console_output=False)
        logging.getLogger("kforge.test").info("hello", extra={"stage": "initialize"})
        for handler in logger.handlers:
            handler.flush()

        data = json.loads(log_file.read_text().splitlines()[-1])
        assert data["message"] == "hello"
        assert data["stage"] == "initialize"

        for handler in logger.handlers:
            handler.close()
        logger.handlers = []


class TestConfirmation:
    def test_only_yes_confirms(self):
        assert ask_for_confirmation("Proceed?", lambda prompt: "yes")
        assert not ask_for_confirmation("Proceed?", lambda prompt: "y")
        assert not ask_for_confirmation("Proceed?", lambda prompt: "")

    def test_end_of_input_declines(self):
        def closed(prompt):
            raise EOFError

        assert not ask_for_confirmation("Proceed?", closed)


class TestFormatDuration:
    def test_formats(self):
        assert format_duration(45) == "45s"
        assert format_duration(83) == "1m 23s"
        assert format_duration(3725) == "1h 2m 5s"
