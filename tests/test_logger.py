"""Tests for the JSON log format and StructuredLogger handler setup."""

import io
import json
import logging
import sys

from vitalsync_auth.logger import JSONFormatter, StructuredLogger


def _record(**extra: object) -> logging.LogRecord:
    record = logging.makeLogRecord(
        {"name": "vitalsync.test", "levelno": logging.INFO, "levelname": "INFO", "msg": "hello %s", "args": ("ann",)},
    )
    record.__dict__.update(extra)
    return record


class TestJSONFormatter:
    """Tests for the rendered entry."""

    def test_base_fields(self) -> None:
        entry = json.loads(JSONFormatter().format(_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "vitalsync.test"
        assert entry["msg"] == "hello ann"
        assert entry["ts"].endswith("+00:00")
        assert "context" not in entry

    def test_session_fields_are_top_level(self) -> None:
        entry = json.loads(
            JSONFormatter().format(
                _record(event="LOGIN", account_id="acct-1", error_code="INVALID_CREDENTIALS"),
            ),
        )

        assert entry["event"] == "LOGIN"
        assert entry["account_id"] == "acct-1"
        assert entry["error_code"] == "INVALID_CREDENTIALS"
        assert "context" not in entry

    def test_other_extras_go_under_context(self) -> None:
        entry = json.loads(JSONFormatter().format(_record(event="LOGIN", attempt=3)))

        assert entry["event"] == "LOGIN"
        assert entry["context"] == {"attempt": "3"}

    def test_exception_is_rendered(self) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        entry = json.loads(JSONFormatter().format(record))

        assert "ValueError: boom" in entry["exception"]


class TestStructuredLogger:
    """Tests for handler installation."""

    def test_writes_one_json_line_per_record(self) -> None:
        stream = io.StringIO()
        log = StructuredLogger(name="vitalsync.test.lines", level=logging.DEBUG, stream=stream, log_file="")

        log.info("Session restored.", extra={"event": "SESSION_RESTORED", "account_id": "acct-1"})
        log.debug("detail")

        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert [line["msg"] for line in lines] == ["Session restored.", "detail"]
        assert lines[0]["account_id"] == "acct-1"

    def test_rebuilding_for_the_same_name_does_not_duplicate_output(self) -> None:
        first, second = io.StringIO(), io.StringIO()
        StructuredLogger(name="vitalsync.test.rebuild", level=logging.INFO, stream=first, log_file="")
        log = StructuredLogger(name="vitalsync.test.rebuild", level=logging.INFO, stream=second, log_file="")

        log.info("once")

        assert first.getvalue() == ""
        assert len(second.getvalue().splitlines()) == 1

    def test_level_filters_records(self) -> None:
        stream = io.StringIO()
        log = StructuredLogger(name="vitalsync.test.level", level=logging.WARNING, stream=stream, log_file="")

        log.info("hidden")
        log.warning("shown")

        assert [json.loads(line)["msg"] for line in stream.getvalue().splitlines()] == ["shown"]

    def test_log_file_receives_entries(self, tmp_path) -> None:
        path = tmp_path / "logs" / "auth.log"
        log = StructuredLogger(
            name="vitalsync.test.file", level=logging.INFO, stream=io.StringIO(), log_file=str(path),
        )

        log.error("failed", extra={"event": "LOGOUT_FAILED"})

        assert json.loads(path.read_text(encoding="utf-8").splitlines()[0])["event"] == "LOGOUT_FAILED"
