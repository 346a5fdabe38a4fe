"""Oura Ring 수면 기록.

Oura는 기상한 날(day)로 수면을 기록한다. 잠든 밤(Night of)은 day - 1이고
수집 window도 Night of 기준이므로 API 조회 범위는 하루씩 뒤로 민다.
기상 시각에 따라 'Normal Wake Up' 또는 'Sleep In' 캘린더로 나눈다.
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime, timedelta, tzinfo
from typing import Any

from pydantic import BaseModel, field_validator

from activity_sync.calendar_mirror import CalendarEntry
from activity_sync.config import OuraConfig
from activity_sync.dates import DateWindow, format_long_date, to_local
from activity_sync.google_calendar import format_number, timed_event
from activity_sync.models import PendingRecord
from activity_sync.notion_store import (
    date_prop,
    date_value,
    float_value,
    rich_text,
    select,
    select_value,
    text_value,
    title,
)
from activity_sync.vendor_http import VendorApiError, VendorClient

logger = logging.getLogger(__name__)

SOURCE = "oura"
ID_PROPERTY = "Sleep ID"
DATE_PROPERTY = "Night of Date"
NORMAL_WAKE_UP = "Normal Wake Up"
SLEEP_IN = "Sleep In"


class SleepSession(BaseModel):
    """/usercollection/sleep 항목 중 사용하는 필드."""

    id: str
    day: date
    bedtime_start: datetime
    bedtime_end: datetime
    type: str = ""
    total_sleep_duration: int = 0
    deep_sleep_duration: int = 0
    rem_sleep_duration: int = 0
    light_sleep_duration: int = 0
    awake_time: int = 0
    efficiency: int = 0
    average_heart_rate: float = 0
    lowest_heart_rate: int = 0
    average_hrv: float = 0
    average_breath: float = 0

    @field_validator(
        "total_sleep_duration",
        "deep_sleep_duration",
        "rem_sleep_duration",
        "light_sleep_duration",
        "awake_time",
        "efficiency",
        "average_heart_rate",
        "lowest_heart_rate",
        "average_hrv",
        "average_breath",
        mode="before",
    )
    @classmethod
    def none_as_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("type", mode="before")
    @classmethod
    def none_as_empty(cls, v: str | None) -> str:
        return v or ""

    @property
    def night_of(self) -> date:
        return self.day - timedelta(days=1)


def wake_calendar(wake_time: datetime, tz: tzinfo, normal_wake_up_hour: int = 7) -> str:
    """로컬 기상 시각이 normal_wake_up_hour 이전이면 Normal Wake Up."""
    return NORMAL_WAKE_UP if to_local(wake_time, tz).hour < normal_wake_up_hour else SLEEP_IN


def sleep_to_properties(session: SleepSession, calendar: str) -> dict[str, Any]:
    """SleepSession → Notion 페이지 속성. 단계별 시간은 분, 총 수면은 시간(소수 1자리)."""
    return {
        "Night of": title(format_long_date(session.night_of)),
        "Night of Date": date_prop(session.night_of.isoformat()),
        "Oura Date": date_prop(session.day.isoformat()),
        "Bedtime": rich_text(session.bedtime_start.isoformat()),
        "Wake Time": rich_text(session.bedtime_end.isoformat()),
        "Sleep Duration": {"number": round(session.total_sleep_duration / 3600, 1)},
        "Deep Sleep": {"number": round(session.deep_sleep_duration / 60)},
        "REM Sleep": {"number": round(session.rem_sleep_duration / 60)},
        "Light Sleep": {"number": round(session.light_sleep_duration / 60)},
        "Awake Time": {"number": round(session.awake_time / 60)},
        "Heart Rate Avg": {"number": session.average_heart_rate},
        "Heart Rate Low": {"number": session.lowest_heart_rate},
        "HRV": {"number": session.average_hrv},
        "Respiratory Rate": {"number": session.average_breath},
        "Google Calendar": select(calendar),
        "Sleep ID": rich_text(session.id),
        "Calendar Created": {"checkbox": False},
        "Type": rich_text(session.type),
        "Efficiency": {"number": session.efficiency},
    }


class OuraClient(VendorClient):
    """Oura API v2 클라이언트 (Personal Access Token)."""

    source = SOURCE

    def __init__(self, config: OuraConfig, tz: tzinfo, token: str | None = None) -> None:
        token = token or os.environ.get(config.token_env_var, "")
        if not token:
            raise RuntimeError(f"환경변수 {config.token_env_var}이 설정되지 않았습니다")
        super().__init__(config)
        self._token = token
        self._tz = tz
        self._normal_wake_up_hour = config.normal_wake_up_hour

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def test_connection(self) -> bool:
        try:
            info = self._request_json("GET", "/usercollection/personal_info")
        except VendorApiError as exc:
            logger.error("Oura connection failed: %s", exc, extra={"source": SOURCE})
            return False
        logger.info("Oura connection successful: %s", info.get("email") or info.get("id"), extra={"source": SOURCE})
        return True

    def get_sleep_sessions(self, start: date, end: date) -> list[SleepSession]:
        """Oura day 기준 [start, end] 수면 세션. next_token으로 이어받는다."""
        params: dict[str, Any] = {"start_date": start.isoformat(), "end_date": end.isoformat()}
        sessions: list[SleepSession] = []
        while True:
            data = self._request_json("GET", "/usercollection/sleep", params=params)
            sessions.extend(SleepSession.model_validate(item) for item in data.get("data") or [])
            next_token = data.get("next_token")
            if not next_token:
                break
            params = {**params, "next_token": next_token}
        logger.info("Fetched %d sleep sessions", len(sessions), extra={"source": SOURCE})
        return sessions

    def fetch_records(self, window: DateWindow) -> list[PendingRecord]:
        """window의 밤들에 해당하는 수면 기록. Oura day = Night of + 1."""
        one_day = timedelta(days=1)
        sessions = self.get_sleep_sessions(window.start_date + one_day, window.end_date + one_day)
        records = []
        for session in sessions:
            calendar = wake_calendar(session.bedtime_end, self._tz, self._normal_wake_up_hour)
            records.append(
                PendingRecord(
                    source=SOURCE,
                    record_id=session.id,
                    date=session.night_of.isoformat(),
                    label=f"Night of {format_long_date(session.night_of)}",
                    properties=sleep_to_properties(session, calendar),
                    payload=session.model_dump(mode="json"),
                )
            )
        return records


# ── 캘린더 ─────────────────────────────────────────────


def sleep_event_title(duration_hours: float, efficiency: float) -> str:
    return f"Sleep - {format_number(duration_hours)}hrs ({format_number(efficiency)}% efficiency)"


def sleep_event_description(props: dict[str, Any]) -> str:
    duration = format_number(float_value(props.get("Sleep Duration")) or 0)
    efficiency = format_number(float_value(props.get("Efficiency")) or 0)
    return "\n".join(
        [
            f"😴 {text_value(props.get('Night of'), 'title')}",
            f"⏱️ Duration: {duration} hours",
            f"📊 Efficiency: {efficiency}%",
            "",
            "🛌 Sleep Stages:",
            f"• Deep Sleep: {format_number(float_value(props.get('Deep Sleep')) or 0)} min",
            f"• REM Sleep: {format_number(float_value(props.get('REM Sleep')) or 0)} min",
            f"• Light Sleep: {format_number(float_value(props.get('Light Sleep')) or 0)} min",
        ]
    )


def page_to_entry(page: dict[str, Any]) -> CalendarEntry:
    """수면 페이지 → 취침~기상 시간 일정. 기상 분류에 따라 캘린더를 고른다.

    Raises:
        ValueError: Bedtime/Wake Time이 비어 있거나 ISO 형식이 아닌 경우
    """
    props = page.get("properties") or {}
    bedtime = datetime.fromisoformat(text_value(props.get("Bedtime"), "rich_text"))
    wake_time = datetime.fromisoformat(text_value(props.get("Wake Time"), "rich_text"))
    calendar = "normal_wake_up" if select_value(props.get("Google Calendar")) == NORMAL_WAKE_UP else "sleep_in"

    summary = sleep_event_title(
        float_value(props.get("Sleep Duration")) or 0,
        float_value(props.get("Efficiency")) or 0,
    )
    return CalendarEntry(
        page_id=page["id"],
        calendar=calendar,
        label=f"{summary} ({date_value(props.get(DATE_PROPERTY))})",
        event=timed_event(summary, sleep_event_description(props), bedtime, wake_time),
    )
