"""로깅 설정.

텍스트 포맷은 수동 실행 시 터미널 출력용, JSON 포맷(--json-log)은 cron 로그 수집용.
로그 호출의 extra로 넘긴 수집 소스, event_code, 레코드 식별자는 두 포맷 모두에 남는다.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import orjson

_CONTEXT_KEYS = ("source", "event_code", "record_id", "page_id", "repository", "date", "counts", "duration_ms")
_TAG_KEYS = ("source", "event_code")

# 요청마다 INFO 로그를 남기는 라이브러리 로거
_NOISY_LOGGERS = ("httpx", "httpcore", "googleapiclient.discovery", "googleapiclient.discovery_cache")


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key in _CONTEXT_KEYS if (value := getattr(record, key, None)) is not None}


class JsonFormatter(logging.Formatter):
    """레코드 하나를 JSON 한 줄로 직렬화한다."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(entry, default=str).decode()


class TextFormatter(logging.Formatter):
    """'12:00:01 INFO    activity_sync.collector: ... [oura STORE_FAILED]'."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s", datefmt="%H:%M:%S")

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        tags = [str(value) for key in _TAG_KEYS if (value := getattr(record, key, None))]
        return f"{line} [{' '.join(tags)}]" if tags else line


def setup_logging(*, json_format: bool = True, level: int = logging.INFO) -> None:
    """activity_sync 로거에 핸들러 하나를 설정한다. 반복 호출해도 핸들러는 하나."""
    root = logging.getLogger("activity_sync")
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter() if json_format else TextFormatter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
