"""ロギング設定モジュール

Cloud Run / Cloud Logging 環境ではJSON形式、ローカルではテキスト形式でログを出力する。
log_context() で束ねた workspace_id / uid などのフィールドは、その間に出力される
全てのログレコードに付与される（JSON ではトップレベル、テキストでは末尾の key=value）。

使い方:
    from wedfin.logging_config import log_context, setup_logging
    setup_logging()

    with log_context(workspace_id=workspace_id):
        logger.info("Purging collection: %s", job)

環境変数:
    LOG_LEVEL: ログレベル (DEBUG, INFO, WARNING, ERROR, CRITICAL) デフォルト: INFO
    K_SERVICE / CLOUD_RUN_JOB: Cloud Run 環境判定（自動設定される）
"""

import contextlib
import contextvars
import datetime
import json
import logging
import os
from collections.abc import Iterator

_context: contextvars.ContextVar[dict] = contextvars.ContextVar(
    "wedfin_log_context", default={}
)

# google 系クライアントの DEBUG ログは量が多い
_NOISY_LOGGERS = ("google.api_core", "google.auth", "urllib3", "python_http_client")


@contextlib.contextmanager
def log_context(**fields) -> Iterator[None]:
    """with ブロック内のログに fields を付与する（ネスト時は内側が優先）"""
    token = _context.set({**_context.get(), **fields})
    try:
        yield
    finally:
        _context.reset(token)


def current_context() -> dict:
    return dict(_context.get())


class ContextFilter(logging.Filter):
    """log_context() のフィールドを record.context に写す"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = current_context()
        return True


def _record_fields(record: logging.LogRecord) -> dict:
    fields = dict(getattr(record, "context", None) or {})
    fields.update(getattr(record, "extra_fields", None) or {})
    return fields


class CloudLoggingFormatter(logging.Formatter):
    """Cloud Logging互換のJSONフォーマッタ

    `severity` フィールドを含めることで Cloud Logging 側のログレベルに
    正しくマッピングされる。log_context() の値と
    `extra={"extra_fields": {...}}` で渡した値はトップレベルに出力する。
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict = {
            "severity": record.levelname if record.levelno else "DEFAULT",
            "message": record.getMessage(),
            "logger": record.name,
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, datetime.UTC
            ).isoformat(timespec="milliseconds"),
        }
        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key, value in _record_fields(record).items():
            log_entry.setdefault(key, value)
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ContextTextFormatter(logging.Formatter):
    """ローカル用テキストフォーマッタ。付与フィールドを末尾に key=value で並べる"""

    def __init__(self) -> None:
        super().__init__(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        fields = _record_fields(record)
        if not fields:
            return text
        suffix = " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
        first, sep, rest = text.partition("\n")
        return f"{first} [{suffix}]{sep}{rest}"


def setup_logging() -> None:
    """ログ設定を初期化する

    Cloud Run 環境では JSON、ローカルではテキスト形式。
    ルートロガーのハンドラは1つに置き換える（複数回呼んでも重複しない）。
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    # K_SERVICE: Cloud Run Services, CLOUD_RUN_JOB: Cloud Run Jobs
    is_cloud = bool(os.getenv("K_SERVICE") or os.getenv("CLOUD_RUN_JOB"))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    handler = logging.StreamHandler()
    handler.addFilter(ContextFilter())
    handler.setFormatter(CloudLoggingFormatter() if is_cloud else ContextTextFormatter())

    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)
