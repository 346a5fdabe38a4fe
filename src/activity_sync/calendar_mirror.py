"""Notion 레코드 → Google Calendar 일정 반영.

캘린더 미반영(Calendar Created = false) 레코드를 읽어 일정을 만들고,
레코드를 반영 완료로 표시한다.
- GitHub 활동: 프로젝트 유형(Personal/Work)에 맞는 계정의 종일 일정
- 벤더 기록: personal 계정에서 기록 종류별 캘린더(fitness, sleep_in, ...)에 일정
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from notion_client.errors import HTTPResponseError, RequestTimeoutError

from activity_sync.dates import DateWindow
from activity_sync.google_calendar import GoogleCalendarError, build_all_day_event, format_event_title
from activity_sync.notion_store import NotionActivityStore, NotionRecordStore

logger = logging.getLogger(__name__)

PROJECT_TYPES = ("Personal", "Work")


class EventSink(Protocol):
    def insert_event(self, event: dict, calendar_id: str | None = None) -> dict: ...


@dataclass
class MirrorSummary:
    """캘린더 반영 요약."""

    created: int = 0
    failed: int = 0
    skipped_no_calendar: int = 0
    dry_run: bool = False
    titles: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CalendarEntry:
    """벤더 레코드 페이지 하나에 대응하는 일정.

    calendar는 CalendarConfig의 '<calendar>_calendar_id' 키 (예: 'fitness').
    """

    page_id: str
    calendar: str
    label: str
    event: dict[str, Any]


def mirror_activities(
    store: NotionActivityStore,
    calendars: Mapping[str, EventSink],
    window: DateWindow,
    *,
    project_type: str | None = None,
    dry_run: bool = False,
) -> MirrorSummary:
    """window 범위의 미반영 GitHub 활동을 캘린더에 반영한다.

    Args:
        store: Notion 저장소
        calendars: 프로젝트 유형("Personal"/"Work") → 캘린더 클라이언트
        window: 대상 로컬 날짜 범위
        project_type: 특정 유형만 반영 (None이면 전체)
        dry_run: True이면 일정 생성/표시 없이 대상만 집계
    """
    summary = MirrorSummary(dry_run=dry_run)
    records = store.query_unsynced(window.start_date, window.end_date)
    if project_type is not None:
        records = [r for r in records if r.project_type == project_type]

    logger.info("Found %d activities to mirror (%s)", len(records), project_type or "all")

    for record in records:
        title = format_event_title(record)
        if dry_run:
            summary.created += 1
            summary.titles.append(title)
            continue

        calendar = calendars.get(record.project_type)
        if calendar is None:
            logger.warning("No calendar configured for %s, skipping %s", record.project_type, title)
            summary.skipped_no_calendar += 1
            continue

        try:
            event = build_all_day_event(record)
        except ValueError as exc:
            _log_sync_failed(record.name, exc, {"source": "github", "repository": record.repository})
            summary.failed += 1
            continue

        extra = {"source": "github", "repository": record.repository, "date": record.date}
        if _insert_and_mark(store, calendar, event, None, record.page_id, record.name, extra):
            summary.created += 1
            summary.titles.append(title)
        else:
            summary.failed += 1

    return summary


def mirror_records(
    store: NotionRecordStore,
    calendar: EventSink | None,
    calendar_ids: Mapping[str, str],
    window: DateWindow,
    to_entry: Callable[[dict[str, Any]], CalendarEntry],
    *,
    dry_run: bool = False,
) -> MirrorSummary:
    """window 범위의 미반영 벤더 기록을 기록 종류별 캘린더에 반영한다.

    페이지 → 일정 변환에 실패한 레코드(시각 누락 등)는 failed로 세고 넘어간다.
    """
    summary = MirrorSummary(dry_run=dry_run)
    pages = store.query_unsynced_pages(window.start_date, window.end_date)
    logger.info("Found %d %s records to mirror", len(pages), store.source, extra={"source": store.source})

    for page in pages:
        try:
            entry = to_entry(page)
        except ValueError as exc:
            _log_sync_failed(page.get("id", "?"), exc, {"source": store.source, "page_id": page.get("id")})
            summary.failed += 1
            continue

        title = entry.event["summary"]
        if dry_run:
            summary.created += 1
            summary.titles.append(title)
            continue

        calendar_id = calendar_ids.get(entry.calendar)
        if calendar is None or not calendar_id:
            logger.warning(
                "No %s calendar configured, skipping %s",
                entry.calendar,
                title,
                extra={"source": store.source},
            )
            summary.skipped_no_calendar += 1
            continue

        extra = {"source": store.source, "page_id": entry.page_id}
        if _insert_and_mark(store, calendar, entry.event, calendar_id, entry.page_id, entry.label, extra):
            summary.created += 1
            summary.titles.append(title)
        else:
            summary.failed += 1

    return summary


def _log_sync_failed(label: str, exc: Exception, extra: dict[str, Any]) -> None:
    logger.error(
        "Failed to create event for %s: %s",
        label,
        exc,
        extra={"event_code": "CALENDAR_SYNC_FAILED", **extra},
    )


def _insert_and_mark(
    store: NotionRecordStore,
    calendar: EventSink,
    event: dict[str, Any],
    calendar_id: str | None,
    page_id: str,
    label: str,
    extra: dict[str, Any],
) -> bool:
    try:
        if calendar_id is None:
            calendar.insert_event(event)
        else:
            calendar.insert_event(event, calendar_id)
    except GoogleCalendarError as exc:
        _log_sync_failed(label, exc, extra)
        return False

    try:
        store.mark_calendar_created(page_id)
    except (HTTPResponseError, RequestTimeoutError) as exc:
        # 일정은 이미 생성됨: 다음 실행에서 중복 생성될 수 있다
        logger.error(
            "Event created but failed to mark %s as synced: %s",
            label,
            exc,
            extra={"event_code": "CALENDAR_MARK_FAILED", **extra},
        )
        return False
    logger.info("Synced: %s", label, extra=extra)
    return True
