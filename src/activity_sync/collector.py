"""날짜 범위 단위 수집.

- GitHub: 커밋 집계 → Notion 적재 (Unique ID 중복 제거)
- 벤더: RecordSource가 만든 PendingRecord → Notion 적재 (벤더별 ID 속성 중복 제거)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

from notion_client.errors import HTTPResponseError, RequestTimeoutError

from activity_sync.aggregator import CommitAggregator
from activity_sync.dates import DateWindow
from activity_sync.models import Activity, PendingRecord
from activity_sync.notion_store import NotionActivityStore, NotionRecordStore

logger = logging.getLogger(__name__)


@dataclass
class CollectSummary:
    """단일 window 수집 결과."""

    label: str
    activities: list[Activity] = field(default_factory=list)
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    out_of_window: int = 0
    duration_ms: float = 0.0


def collect_window(
    aggregator: CommitAggregator,
    store: NotionActivityStore | None,
    window: DateWindow,
    *,
    dry_run: bool = False,
) -> CollectSummary:
    """window의 활동을 집계해 저장소에 적재한다.

    검색 API는 하루 단위로 걸러지므로 로컬 날짜가 window 밖인 활동은 버린다.
    적재 실패는 활동 단위로 기록하고 다음 활동으로 넘어간다.
    """
    start = time.monotonic()
    summary = CollectSummary(label=window.label)

    activities = aggregator.get_activities(window.start_utc, window.end_utc)
    in_window = [a for a in activities if window.contains(a.date)]
    summary.out_of_window = len(activities) - len(in_window)
    summary.activities = in_window

    if summary.out_of_window:
        logger.info("Filtered %d activities outside %s", summary.out_of_window, window.label)

    if dry_run or store is None:
        summary.duration_ms = (time.monotonic() - start) * 1000
        return summary

    for activity in in_window:
        try:
            result = store.create_activity(activity)
        except (HTTPResponseError, RequestTimeoutError) as exc:
            summary.failed += 1
            logger.error(
                "Failed to save %s: %s",
                activity.name,
                exc,
                extra={"event_code": "STORE_FAILED", "source": "github", "record_id": activity.unique_id, "date": activity.date},
            )
            continue

        if result.skipped:
            summary.skipped += 1
        else:
            summary.saved += 1

    summary.duration_ms = (time.monotonic() - start) * 1000
    logger.info(
        "Collected %s: %d saved, %d skipped, %d failed",
        window.label,
        summary.saved,
        summary.skipped,
        summary.failed,
        extra={
            "counts": {"saved": summary.saved, "skipped": summary.skipped, "failed": summary.failed},
            "duration_ms": round(summary.duration_ms, 1),
        },
    )
    return summary


class RecordSource(Protocol):
    source: str

    def fetch_records(self, window: DateWindow) -> list[PendingRecord]: ...


@dataclass
class RecordCollectSummary:
    """벤더 단일 window 수집 결과."""

    source: str
    label: str
    records: list[PendingRecord] = field(default_factory=list)
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    out_of_window: int = 0
    duration_ms: float = 0.0


def collect_records(
    source: RecordSource,
    store: NotionRecordStore | None,
    window: DateWindow,
    *,
    dry_run: bool = False,
) -> RecordCollectSummary:
    """벤더 기록을 조회해 저장소에 적재한다.

    벤더 API 실패(VendorApiError)는 호출자에게 전파되고,
    적재 실패는 레코드 단위로 기록한 뒤 다음 레코드로 넘어간다.
    """
    start = time.monotonic()
    summary = RecordCollectSummary(source=source.source, label=window.label)

    records = source.fetch_records(window)
    summary.records = [r for r in records if window.contains(r.date)]
    summary.out_of_window = len(records) - len(summary.records)

    if dry_run or store is None:
        summary.duration_ms = (time.monotonic() - start) * 1000
        return summary

    for record in summary.records:
        try:
            result = store.create_page(record.record_id, record.properties, label=record.label)
        except (HTTPResponseError, RequestTimeoutError) as exc:
            summary.failed += 1
            logger.error(
                "Failed to save %s: %s",
                record.label,
                exc,
                extra={
                    "event_code": "STORE_FAILED",
                    "source": record.source,
                    "record_id": record.record_id,
                    "date": record.date,
                },
            )
            continue

        if result.skipped:
            summary.skipped += 1
        else:
            summary.saved += 1

    summary.duration_ms = (time.monotonic() - start) * 1000
    logger.info(
        "Collected %s %s: %d saved, %d skipped, %d failed",
        summary.source,
        window.label,
        summary.saved,
        summary.skipped,
        summary.failed,
        extra={
            "source": summary.source,
            "counts": {"saved": summary.saved, "skipped": summary.skipped, "failed": summary.failed},
            "duration_ms": round(summary.duration_ms, 1),
        },
    )
    return summary
