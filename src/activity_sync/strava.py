"""Strava 운동 기록.

access token이 만료되어 401이 오면 refresh token으로 한 번 갱신 후 재요청한다.
거리는 마일, 시간은 분 단위로 적재하고 시작 시각은 로컬 타임존 ISO 문자열로 남긴다.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any

from pydantic import BaseModel, field_validator

from activity_sync.calendar_mirror import CalendarEntry
from activity_sync.config import StravaConfig
from activity_sync.dates import DateWindow, to_local
from activity_sync.google_calendar import format_number, timed_event
from activity_sync.models import PendingRecord
from activity_sync.notion_store import (
    date_prop,
    date_value,
    float_value,
    int_value,
    rich_text,
    select,
    select_value,
    text_value,
    title,
)
from activity_sync.vendor_http import VendorApiError, VendorClient

logger = logging.getLogger(__name__)

SOURCE = "strava"
ID_PROPERTY = "Activity ID"
DATE_PROPERTY = "Date"

METERS_PER_MILE = 1609.344
DEFAULT_DURATION_MINUTES = 30
_DEFAULT_START = time(12, 0)


class StravaActivity(BaseModel):
    """/athlete/activities 항목 중 사용하는 필드."""

    id: int
    name: str = ""
    type: str = "Workout"
    start_date: datetime
    distance: float = 0
    moving_time: int = 0
    elapsed_time: int = 0

    @field_validator("distance", "moving_time", "elapsed_time", mode="before")
    @classmethod
    def none_as_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("type", mode="before")
    @classmethod
    def none_as_workout(cls, v: str | None) -> str:
        return v or "Workout"

    @property
    def distance_miles(self) -> float:
        return round(self.distance / METERS_PER_MILE, 2)

    @property
    def duration_minutes(self) -> int:
        """이동 시간 기준. 이동 시간이 없으면 경과 시간."""
        return round((self.moving_time or self.elapsed_time) / 60)


def activity_to_properties(activity: StravaActivity, tz: tzinfo) -> dict[str, Any]:
    local_start = to_local(activity.start_date, tz)
    name = activity.name.strip() or f"{activity.type} - {local_start.date().isoformat()}"
    return {
        "Activity Name": title(name),
        "Date": date_prop(local_start.date().isoformat()),
        "Activity Type": select(activity.type),
        "Start Time": rich_text(local_start.isoformat()),
        "Duration": {"number": activity.duration_minutes},
        "Distance": {"number": activity.distance_miles},
        "Activity ID": rich_text(str(activity.id)),
        "Calendar Created": {"checkbox": False},
    }


class StravaClient(VendorClient):
    """Strava API v3 클라이언트 (OAuth refresh token)."""

    source = SOURCE

    def __init__(self, config: StravaConfig, tz: tzinfo) -> None:
        can_refresh = bool(config.client_id and config.client_secret and config.refresh_token)
        if not (config.access_token or can_refresh):
            raise RuntimeError(
                "Strava 자격 증명이 설정되지 않았습니다 "
                "(STRAVA_ACCESS_TOKEN 또는 STRAVA_CLIENT_ID/SECRET/REFRESH_TOKEN)"
            )
        super().__init__(config)
        self._strava = config
        self._access_token = config.access_token
        self._refresh_token = config.refresh_token
        self._can_refresh = can_refresh
        self._tz = tz

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    def _refresh_access_token(self) -> bool:
        if not self._can_refresh:
            return False
        logger.info("Refreshing Strava access token", extra={"source": SOURCE})
        try:
            data = self._request_json(
                "POST",
                self._strava.token_url,
                json={
                    "client_id": self._strava.client_id,
                    "client_secret": self._strava.client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": self._refresh_token,
                },
                authenticated=False,
            )
        except VendorApiError as exc:
            logger.error(
                "Strava token refresh failed: %s", exc, extra={"source": SOURCE, "event_code": "TOKEN_REFRESH_FAILED"}
            )
            return False
        if not data.get("access_token"):
            logger.error("Strava token response has no access_token", extra={"source": SOURCE})
            return False
        self._access_token = data["access_token"]
        # Strava는 refresh token을 교체할 수 있다
        self._refresh_token = data.get("refresh_token") or self._refresh_token
        logger.info("Strava access token refreshed", extra={"source": SOURCE, "event_code": "TOKEN_REFRESHED"})
        return True

    def test_connection(self) -> bool:
        try:
            athlete = self._request_json("GET", "/athlete")
        except VendorApiError as exc:
            logger.error("Strava connection failed: %s", exc, extra={"source": SOURCE})
            return False
        name = f"{athlete.get('firstname', '')} {athlete.get('lastname', '')}".strip()
        logger.info("Strava connection successful: %s", name or athlete.get("id"), extra={"source": SOURCE})
        return True

    def get_activities(self, after: datetime, before: datetime) -> list[StravaActivity]:
        """[after, before) 구간에 시작한 활동. 페이지가 per_page보다 작으면 끝."""
        per_page = self._strava.per_page
        params: dict[str, Any] = {
            "after": int(after.timestamp()),
            "before": int(before.timestamp()),
            "per_page": per_page,
        }
        activities: list[StravaActivity] = []
        page = 1
        while True:
            items = self._request_json("GET", "/athlete/activities", params={**params, "page": page}) or []
            activities.extend(StravaActivity.model_validate(item) for item in items)
            if len(items) < per_page:
                break
            page += 1
        logger.info("Fetched %d activities", len(activities), extra={"source": SOURCE})
        return activities

    def fetch_records(self, window: DateWindow) -> list[PendingRecord]:
        records = []
        for activity in self.get_activities(window.start_utc, window.end_utc):
            properties = activity_to_properties(activity, self._tz)
            records.append(
                PendingRecord(
                    source=SOURCE,
                    record_id=str(activity.id),
                    date=to_local(activity.start_date, self._tz).date().isoformat(),
                    label=f"{activity.name.strip() or activity.type} ({activity.type})",
                    properties=properties,
                    payload=activity.model_dump(mode="json"),
                )
            )
        return records


# ── 캘린더 ─────────────────────────────────────────────


def workout_event_title(activity_name: str, activity_type: str, distance: float) -> str:
    if distance > 0:
        return f"{activity_type} - {format_number(distance)} miles"
    return activity_name


def workout_event_description(activity_name: str, activity_type: str, duration: int, distance: float) -> str:
    lines = [f"🏃‍♂️ {activity_name}", f"⏱️ Duration: {duration} minutes"]
    if distance > 0:
        lines.append(f"📏 Distance: {format_number(distance)} miles")
    lines.append(f"📊 Activity Type: {activity_type}")
    return "\n".join(lines)


def page_to_entry(page: dict[str, Any], tz: tzinfo) -> CalendarEntry:
    """운동 페이지 → fitness 캘린더 시간 일정.

    Start Time이 ISO 시각이 아니면 날짜 정오에 시작하고, 시간이 없으면 30분 일정.

    Raises:
        ValueError: Date와 Start Time이 모두 없거나 형식이 잘못된 경우
    """
    props = page.get("properties") or {}
    start_text = text_value(props.get("Start Time"), "rich_text")
    if "T" in start_text:
        start = datetime.fromisoformat(start_text)
    else:
        start = datetime.combine(date.fromisoformat(date_value(props.get("Date"))), _DEFAULT_START, tzinfo=tz)

    activity_name = text_value(props.get("Activity Name"), "title") or "Workout"
    activity_type = select_value(props.get("Activity Type")) or "Workout"
    duration = int_value(props.get("Duration"))
    distance = float_value(props.get("Distance")) or 0.0
    end = start + timedelta(minutes=duration or DEFAULT_DURATION_MINUTES)

    summary = workout_event_title(activity_name, activity_type, distance)
    return CalendarEntry(
        page_id=page["id"],
        calendar="fitness",
        label=f"{activity_name} ({start.date().isoformat()})",
        event=timed_event(
            summary, workout_event_description(activity_name, activity_type, duration, distance), start, end
        ),
    )
