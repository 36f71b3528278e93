"""logging_config モジュールのテスト"""

import json
import logging
import os
import sys
from unittest.mock import patch

import pytest

from wedfin.logging_config import (
    CloudLoggingFormatter,
    ContextFilter,
    ContextTextFormatter,
    current_context,
    log_context,
    setup_logging,
)


def _make_record(
    message: str = "test message", level: int = logging.INFO, exc_info=None
) -> logging.LogRecord:
    """テスト用の LogRecord を生成するヘルパー"""
    return logging.LogRecord(
        name="test.logger",
        level=level,
        pathname="",
        lineno=0,
        msg=message,
        args=(),
        exc_info=exc_info,
    )


class TestCloudLoggingFormatter:
    """CloudLoggingFormatter の単体テスト"""

    def test_format_returns_valid_json(self):
        """フォーマット結果が有効なJSONであること"""
        parsed = json.loads(CloudLoggingFormatter().format(_make_record("hello world")))

        assert parsed["message"] == "hello world"
        assert parsed["logger"] == "test.logger"
        assert "timestamp" in parsed

    @pytest.mark.parametrize(
        "level, severity",
        [
            (logging.DEBUG, "DEBUG"),
            (logging.INFO, "INFO"),
            (logging.WARNING, "WARNING"),
            (logging.ERROR, "ERROR"),
            (logging.CRITICAL, "CRITICAL"),
        ],
    )
    def test_severity(self, level, severity):
        parsed = json.loads(CloudLoggingFormatter().format(_make_record(level=level)))
        assert parsed["severity"] == severity

    def test_exception_info_included(self):
        """例外情報が exception フィールドとして含まれること"""
        try:
            raise ValueError("test error")
        except ValueError:
            exc_info = sys.exc_info()

        parsed = json.loads(CloudLoggingFormatter().format(_make_record(exc_info=exc_info)))

        assert "ValueError" in parsed["exception"]
        assert "test error" in parsed["exception"]

    def test_no_exception_field_when_no_exception(self):
        parsed = json.loads(CloudLoggingFormatter().format(_make_record()))
        assert "exception" not in parsed

    def test_extra_fields_are_flattened(self):
        """extra_fields の値がトップレベルに出力されること"""
        record = _make_record()
        record.extra_fields = {"workspace_id": "ws-1", "uid": "uid-owner"}

        parsed = json.loads(CloudLoggingFormatter().format(record))

        assert parsed["workspace_id"] == "ws-1"
        assert parsed["uid"] == "uid-owner"

    def test_japanese_message_encoded_correctly(self):
        """日本語メッセージがそのまま出力されること"""
        output = CloudLoggingFormatter().format(_make_record("招待を送信しました"))

        # ensure_ascii=False なので日本語がそのまま含まれる
        assert "招待を送信しました" in output

    def test_context_fields_are_included(self):
        record = _make_record()
        with log_context(workspace_id="ws-1"):
            ContextFilter().filter(record)

        parsed = json.loads(CloudLoggingFormatter().format(record))

        assert parsed["workspace_id"] == "ws-1"

    def test_context_does_not_override_standard_fields(self):
        record = _make_record("hello")
        record.extra_fields = {"message": "spoofed"}

        parsed = json.loads(CloudLoggingFormatter().format(record))

        assert parsed["message"] == "hello"


class TestLogContext:
    """log_context() / ContextFilter / ContextTextFormatter のテスト"""

    def test_context_is_scoped(self):
        with log_context(uid="uid-owner"):
            assert current_context() == {"uid": "uid-owner"}
        assert current_context() == {}

    def test_nested_context_merges(self):
        with log_context(uid="uid-owner", workspace_id="ws-1"):
            with log_context(workspace_id="ws-2"):
                assert current_context() == {"uid": "uid-owner", "workspace_id": "ws-2"}
            assert current_context()["workspace_id"] == "ws-1"

    def test_context_reset_on_error(self):
        with pytest.raises(RuntimeError):
            with log_context(uid="uid-owner"):
                raise RuntimeError("boom")
        assert current_context() == {}

    def test_filter_copies_context(self):
        record = _make_record()
        with log_context(uid="uid-owner"):
            assert ContextFilter().filter(record) is True

        assert record.context == {"uid": "uid-owner"}

    def test_text_formatter_appends_fields(self):
        record = _make_record("Purged expenses")
        record.context = {"workspace_id": "ws-1", "uid": "uid-owner"}

        output = ContextTextFormatter().format(record)

        assert output.endswith("test.logger: Purged expenses [uid=uid-owner workspace_id=ws-1]")

    def test_text_formatter_without_fields(self):
        output = ContextTextFormatter().format(_make_record("plain"))
        assert output.endswith("test.logger: plain")


class TestSetupLogging:
    """setup_logging() の動作テスト"""

    @pytest.mark.parametrize(
        "env", [{"K_SERVICE": "wedfin-api"}, {"CLOUD_RUN_JOB": "wedfin-cleanup"}]
    )
    def test_uses_json_formatter_on_cloud_run(self, env):
        with patch.dict("os.environ", env, clear=False):
            setup_logging()

        root_logger = logging.getLogger()
        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, CloudLoggingFormatter)

    def test_uses_text_formatter_in_local_env(self):
        env_without_cloud = {
            k: v for k, v in os.environ.items() if k not in ("K_SERVICE", "CLOUD_RUN_JOB")
        }
        with patch.dict("os.environ", env_without_cloud, clear=True):
            setup_logging()

        root_logger = logging.getLogger()
        assert isinstance(root_logger.handlers[0].formatter, ContextTextFormatter)

    def test_log_level_respected(self):
        with patch.dict("os.environ", {"LOG_LEVEL": "debug"}, clear=False):
            setup_logging()

        assert logging.getLogger().level == logging.DEBUG

    def test_noisy_loggers_are_quieted(self):
        setup_logging()
        assert logging.getLogger("google.api_core").level == logging.WARNING

    def test_handlers_cleared_on_reinitialize(self):
        """setup_logging() を複数回呼んでもハンドラが重複しないこと"""
        setup_logging()
        setup_logging()

        assert len(logging.getLogger().handlers) == 1
