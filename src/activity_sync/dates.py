"""로컬 날짜/주 경계 계산.

- 로컬 타임존: 고정 UTC 오프셋(기본 -5h) 또는 IANA 타임존
- 주: 일요일~토요일, 1월 1일이 속한 주가 1주차
- 모든 UTC 구간은 [start, end) 반열림 구간
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from activity_sync.config import TimezoneConfig

_DD_MM_YY = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{2})$")
_YYYY_MM_DD = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
_MONTHS = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


@dataclass(frozen=True)
class DateWindow:
    """로컬 날짜 범위와 대응하는 UTC 구간."""

    start_date: date
    end_date: date
    start_utc: datetime
    end_utc: datetime
    label: str

    def contains(self, local_date: str | date) -> bool:
        """로컬 날짜(YYYY-MM-DD 또는 date)가 범위 안에 있는지 확인한다."""
        if isinstance(local_date, str):
            local_date = date.fromisoformat(local_date)
        return self.start_date <= local_date <= self.end_date


def local_timezone(config: TimezoneConfig) -> tzinfo:
    """설정에 맞는 로컬 타임존을 반환한다."""
    if config.name:
        return ZoneInfo(config.name)
    return timezone(timedelta(hours=config.utc_offset_hours))


def to_local(value: datetime, tz: tzinfo) -> datetime:
    """UTC(또는 aware) 시각을 로컬 시각으로 변환한다. naive 값은 UTC로 간주."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(tz)


def local_date_key(value: datetime, tz: tzinfo) -> str:
    return to_local(value, tz).strftime("%Y-%m-%d")


def local_midnight(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def date_range_window(start: date, end: date, tz: tzinfo, *, label: str | None = None) -> DateWindow:
    """로컬 날짜 범위 [start, end]의 UTC 구간을 계산한다."""
    if start > end:
        raise ValueError(f"start date {start} is after end date {end}")
    start_utc = local_midnight(start, tz).astimezone(UTC)
    end_utc = local_midnight(end + timedelta(days=1), tz).astimezone(UTC)
    if label is None:
        label = start.isoformat() if start == end else f"{start.isoformat()} ~ {end.isoformat()}"
    return DateWindow(start_date=start, end_date=end, start_utc=start_utc, end_utc=end_utc, label=label)


def day_window(day: date, tz: tzinfo) -> DateWindow:
    return date_range_window(day, day, tz, label=f"Date: {day.isoformat()}")


def iter_dates(start: date, end: date) -> list[date]:
    """[start, end] 범위의 날짜 목록."""
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def format_long_date(day: date) -> str:
    """'Monday, March 10, 2025' (로케일과 무관한 영어 표기)."""
    return f"{_WEEKDAYS[day.weekday()]}, {_MONTHS[day.month - 1]} {day.day}, {day.year}"


# ── 주 계산 ─────────────────────────────────────────────


def _first_week_start(year: int) -> date:
    """1주차 시작 일요일 (1월 1일 당일 또는 그 이전)."""
    jan1 = date(year, 1, 1)
    # date.weekday(): 월=0 ... 일=6
    return jan1 - timedelta(days=(jan1.weekday() + 1) % 7)


def weeks_in_year(year: int) -> int:
    """12월 31일이 속한 주차 번호."""
    return (date(year, 12, 31) - _first_week_start(year)).days // 7 + 1


def week_boundaries(year: int, week: int) -> tuple[date, date]:
    """주차의 (일요일, 토요일) 날짜를 반환한다."""
    last_week = weeks_in_year(year)
    if not 1 <= week <= last_week:
        raise ValueError(f"week must be between 1 and {last_week} for {year}: {week}")
    start = _first_week_start(year) + timedelta(weeks=week - 1)
    return start, start + timedelta(days=6)


def week_window(year: int, week: int, tz: tzinfo) -> DateWindow:
    start, end = week_boundaries(year, week)
    return date_range_window(start, end, tz, label=f"Week {week}")


def week_options(year: int) -> list[str]:
    """주차 선택 목록 라벨 (예: 'Week 01 (Dec 29 - Jan 04)')."""
    options = []
    for week in range(1, weeks_in_year(year) + 1):
        start, end = week_boundaries(year, week)
        options.append(f"Week {week:02d} ({start:%b %d} - {end:%b %d})")
    return options


# ── 입력 파싱 ───────────────────────────────────────────


def parse_date_input(text: str, today: date) -> date:
    """날짜 입력을 파싱한다.

    지원 형식: today / yesterday / tomorrow, DD-MM-YY, YYYY-MM-DD
    """
    value = text.strip().lower()
    shortcuts = {
        "today": today,
        "yesterday": today - timedelta(days=1),
        "tomorrow": today + timedelta(days=1),
    }
    if value in shortcuts:
        return shortcuts[value]

    if match := _DD_MM_YY.match(value):
        day, month, year = (int(part) for part in match.groups())
        try:
            return date(2000 + year, month, day)
        except ValueError as exc:
            raise ValueError(f"Invalid date: {text} ({exc})") from exc

    if _YYYY_MM_DD.match(value):
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise ValueError(f"Invalid date: {text} ({exc})") from exc

    raise ValueError(f"Invalid format: {text} (use DD-MM-YY, YYYY-MM-DD, today, yesterday or tomorrow)")


def parse_week_numbers(text: str) -> list[int]:
    """'1, 10, 11' 형태의 주차 입력을 파싱한다."""
    weeks = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise ValueError(f"Invalid week number: {part}")
        weeks.append(int(part))
    if not weeks:
        raise ValueError("No week numbers given")
    return weeks
