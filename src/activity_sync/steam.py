"""Steam 플레이 기록.

STEAM_URL 엔드포인트는 '?date=YYYY-MM-DD' 하루치 게임별 플레이 시간과 세션을 돌려준다.
하루 한 게임이 레코드 하나이고, ID는 '<게임명 영숫자 외 '-'>-<날짜>'.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any

from pydantic import BaseModel, Field, field_validator

from activity_sync.calendar_mirror import CalendarEntry
from activity_sync.config import SteamConfig
from activity_sync.dates import DateWindow, iter_dates
from activity_sync.google_calendar import timed_event
from activity_sync.models import PendingRecord
from activity_sync.notion_store import (
    date_prop,
    date_value,
    int_value,
    rich_text,
    select,
    select_value,
    text_value,
    title,
)
from activity_sync.vendor_http import VendorApiError, VendorClient

logger = logging.getLogger(__name__)

SOURCE = "steam"
ID_PROPERTY = "Activity ID"
DATE_PROPERTY = "Date"
PLATFORM = "Steam"

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")
_DEFAULT_START = time(19, 0)


class GameSession(BaseModel):
    start_time: str
    end_time: str
    duration_minutes: int = 0


class GamePlay(BaseModel):
    name: str
    hours: int = 0
    minutes: int = 0
    sessions: list[GameSession] = Field(default_factory=list)

    @field_validator("hours", "minutes", mode="before")
    @classmethod
    def none_as_zero(cls, v: int | None) -> int:
        return v or 0

    @field_validator("sessions", mode="before")
    @classmethod
    def none_as_empty(cls, v: list | None) -> list:
        return v or []


class DailyPlaytime(BaseModel):
    """엔드포인트 하루치 응답."""

    total_hours: float = 0
    game_count: int = 0
    games: list[GamePlay] = Field(default_factory=list)

    @field_validator("games", mode="before")
    @classmethod
    def none_as_empty(cls, v: list | None) -> list:
        return v or []


def activity_id(game_name: str, day: date) -> str:
    return f"{_NON_ALNUM.sub('-', game_name)}-{day.isoformat()}"


def session_details(sessions: list[GameSession]) -> str:
    """'19:00-20:30 (90min), 22:00-22:45 (45min)'."""
    return ", ".join(f"{s.start_time}-{s.end_time} ({s.duration_minutes}min)" for s in sessions)


def _local_iso(day: date, clock: str, tz: tzinfo) -> str:
    return datetime.combine(day, time.fromisoformat(clock), tzinfo=tz).isoformat()


def game_to_properties(game: GamePlay, day: date, tz: tzinfo) -> dict[str, Any]:
    """하루 한 게임 → Notion 페이지 속성. Start/End Time은 첫 세션 시작, 마지막 세션 종료."""
    start_time = _local_iso(day, game.sessions[0].start_time, tz) if game.sessions else ""
    end_time = _local_iso(day, game.sessions[-1].end_time, tz) if game.sessions else ""
    return {
        "Game Name": title(game.name or "Unknown Game"),
        "Date": date_prop(day.isoformat()),
        "Hours Played": {"number": game.hours},
        "Minutes Played": {"number": game.minutes},
        "Session Count": {"number": len(game.sessions)},
        "Session Details": rich_text(session_details(game.sessions)),
        "Start Time": rich_text(start_time),
        "End Time": rich_text(end_time),
        "Platform": select(PLATFORM),
        "Calendar Created": {"checkbox": False},
        "Activity ID": rich_text(activity_id(game.name, day)),
    }


class SteamClient(VendorClient):
    """일자별 Steam 플레이 기록 엔드포인트 클라이언트."""

    source = SOURCE

    def __init__(self, config: SteamConfig, tz: tzinfo) -> None:
        if not config.base_url:
            raise RuntimeError("Steam 엔드포인트가 설정되지 않았습니다 (STEAM_URL)")
        # 엔드포인트 자체가 전체 URL이라 base_url 없이 절대 URL로 요청한다
        super().__init__(config, base_url="")
        self._url = config.base_url
        self._tz = tz

    def get_day(self, day: date) -> DailyPlaytime:
        data = self._request_json("GET", self._url, params={"date": day.isoformat()})
        return DailyPlaytime.model_validate(data or {})

    def test_connection(self) -> bool:
        try:
            today = self.get_day(datetime.now(self._tz).date())
        except VendorApiError as exc:
            logger.error("Steam connection failed: %s", exc, extra={"source": SOURCE})
            return False
        logger.info("Steam connection successful: %d games played today", today.game_count, extra={"source": SOURCE})
        return True

    def fetch_records(self, window: DateWindow) -> list[PendingRecord]:
        """window의 날짜마다 조회한다. 실패한 날은 경고 후 건너뛴다."""
        records: list[PendingRecord] = []
        for day in iter_dates(window.start_date, window.end_date):
            try:
                playtime = self.get_day(day)
            except VendorApiError as exc:
                logger.warning(
                    "Failed to fetch playtime for %s: %s",
                    day,
                    exc,
                    extra={"source": SOURCE, "event_code": "FETCH_DAY_FAILED", "date": day.isoformat()},
                )
                continue
            if playtime.total_hours <= 0:
                continue
            logger.info(
                "%s: %d games, %.1f hours", day, playtime.game_count, playtime.total_hours, extra={"source": SOURCE}
            )
            for game in playtime.games:
                records.append(
                    PendingRecord(
                        source=SOURCE,
                        record_id=activity_id(game.name, day),
                        date=day.isoformat(),
                        label=f"{game.name} ({day.isoformat()})",
                        properties=game_to_properties(game, day, self._tz),
                        payload={"date": day.isoformat(), **game.model_dump(mode="json")},
                    )
                )
        return records


# ── 캘린더 ─────────────────────────────────────────────


def game_event_title(game_name: str, hours: int, minutes: int) -> str:
    duration = f"{hours}h {minutes}m" if hours > 0 else f"{minutes}m"
    return f"🎮 {game_name} - {duration}"


def game_event_description(
    game_name: str,
    hours: int,
    minutes: int,
    session_count: int,
    platform: str,
    details: str,
    record_id: str,
) -> str:
    lines = [
        f"🎮 {game_name}",
        f"⏱️ Duration: {hours}h {minutes}m",
        f"🎯 Sessions: {session_count}",
        f"🖥️ Platform: {platform}",
    ]
    if details.strip():
        lines += ["", "📝 Session Details:", details]
    if record_id:
        lines += ["", f"🔗 Activity ID: {record_id}"]
    return "\n".join(lines)


def _event_times(day: date, start: str, end: str, total_minutes: int, tz: tzinfo) -> tuple[datetime, datetime]:
    """ISO 시각이면 그대로, 'HH:MM'이면 날짜와 결합, 없으면 19:00부터 플레이 시간만큼."""
    if start and end:
        if "T" in start and "T" in end:
            return datetime.fromisoformat(start), datetime.fromisoformat(end)
        return (
            datetime.combine(day, time.fromisoformat(start), tzinfo=tz),
            datetime.combine(day, time.fromisoformat(end), tzinfo=tz),
        )
    begin = datetime.combine(day, _DEFAULT_START, tzinfo=tz)
    return begin, begin + timedelta(minutes=total_minutes)


def page_to_entry(page: dict[str, Any], tz: tzinfo) -> CalendarEntry:
    """게임 페이지 → video_games 캘린더 시간 일정.

    Raises:
        ValueError: Date가 비어 있거나 시각 형식이 잘못된 경우
    """
    props = page.get("properties") or {}
    day = date.fromisoformat(date_value(props.get("Date")))
    game_name = text_value(props.get("Game Name"), "title") or "Unknown Game"
    hours = int_value(props.get("Hours Played"))
    minutes = int_value(props.get("Minutes Played"))
    start, end = _event_times(
        day,
        text_value(props.get("Start Time"), "rich_text"),
        text_value(props.get("End Time"), "rich_text"),
        hours * 60 + minutes,
        tz,
    )
    summary = game_event_title(game_name, hours, minutes)
    description = game_event_description(
        game_name,
        hours,
        minutes,
        int_value(props.get("Session Count")) or 1,
        select_value(props.get("Platform")) or PLATFORM,
        text_value(props.get("Session Details"), "rich_text"),
        text_value(props.get("Activity ID"), "rich_text"),
    )
    return CalendarEntry(
        page_id=page["id"],
        calendar="video_games",
        label=f"{game_name} ({day.isoformat()})",
        event=timed_event(summary, description, start, end),
    )
