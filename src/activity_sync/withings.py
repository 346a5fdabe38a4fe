"""Withings 체성분 측정 기록.

Withings API는 HTTP 200 응답 본문의 status로 결과를 알린다 (0 성공, 401/2555 토큰 만료).
토큰이 만료되면 refresh token으로 갱신하고 새 토큰을 .env에 기록한다.
측정값은 value * 10^unit이고, 질량 항목은 kg → lbs로 변환한다.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, date, datetime, tzinfo
from pathlib import Path
from typing import Any

import httpx
from dotenv import set_key
from pydantic import BaseModel, Field, field_validator

from activity_sync.calendar_mirror import CalendarEntry
from activity_sync.config import WithingsConfig
from activity_sync.dates import DateWindow, format_long_date, to_local
from activity_sync.google_calendar import all_day_event, format_number
from activity_sync.models import PendingRecord
from activity_sync.notion_store import date_prop, date_value, float_value, rich_text, text_value, title
from activity_sync.vendor_http import VendorApiError, VendorClient

logger = logging.getLogger(__name__)

SOURCE = "withings"
ID_PROPERTY = "Measurement ID"
DATE_PROPERTY = "Date"
WEIGHT_UNIT = "lbs"

KG_TO_LBS = 2.20462
# Weight, Fat Free Mass, Fat Ratio, Fat Mass, Muscle Mass, Hydration, Bone Mass
MEASURE_TYPES = "1,5,6,8,76,77,88"
_TOKEN_EXPIRED = (401, 2555)

# meastype → (필드, kg 여부)
_MEASURE_FIELDS: dict[int, tuple[str, bool]] = {
    1: ("weight", True),
    5: ("fat_free_mass", True),
    6: ("fat_percentage", False),
    8: ("fat_mass", True),
    76: ("muscle_mass", True),
    77: ("body_water_percentage", False),
    88: ("bone_mass", True),
}


class Measure(BaseModel):
    value: int
    unit: int
    type: int

    @property
    def real_value(self) -> float:
        return self.value * 10**self.unit


class MeasureGroup(BaseModel):
    """getmeas 응답의 measuregrps 항목."""

    grpid: int
    date: int
    model: str = "Unknown"
    measures: list[Measure] = Field(default_factory=list)

    @field_validator("model", mode="before")
    @classmethod
    def model_as_text(cls, v: Any) -> str:
        return str(v) if v not in (None, "") else "Unknown"

    @property
    def measured_at(self) -> datetime:
        return datetime.fromtimestamp(self.date, tz=UTC)


class BodyMeasurement(BaseModel):
    """측정 그룹 하나를 풀어낸 값. 질량은 lbs."""

    id: int
    measured_at: datetime
    device_model: str = "Unknown"
    weight: float | None = None
    weight_kg: float | None = None
    fat_free_mass: float | None = None
    fat_percentage: float | None = None
    fat_mass: float | None = None
    muscle_mass: float | None = None
    body_water_percentage: float | None = None
    bone_mass: float | None = None


def parse_measure_group(group: MeasureGroup) -> BodyMeasurement:
    values: dict[str, float] = {}
    for measure in group.measures:
        if measure.type not in _MEASURE_FIELDS:
            continue
        field_name, is_mass = _MEASURE_FIELDS[measure.type]
        value = measure.real_value
        values[field_name] = value * KG_TO_LBS if is_mass else value
        if measure.type == 1:
            values["weight_kg"] = value
    return BodyMeasurement(id=group.grpid, measured_at=group.measured_at, device_model=group.model, **values)


def _rounded(value: float | None) -> float | None:
    """소수 1자리. 값이 없거나 0이면 None (Notion 빈 칸)."""
    if not value:
        return None
    return round(value, 1)


def measurement_to_properties(measurement: BodyMeasurement, tz: tzinfo) -> dict[str, Any]:
    local_time = to_local(measurement.measured_at, tz)
    return {
        "Name": title(f"Body Weight - {format_long_date(local_time.date())}"),
        "Date": date_prop(local_time.date().isoformat()),
        "Weight": {"number": _rounded(measurement.weight)},
        "Fat Free Mass": {"number": _rounded(measurement.fat_free_mass)},
        "Fat Percentage": {"number": _rounded(measurement.fat_percentage)},
        "Fat Mass": {"number": _rounded(measurement.fat_mass)},
        "Muscle Mass": {"number": _rounded(measurement.muscle_mass)},
        "Body Water Percentage": {"number": _rounded(measurement.body_water_percentage)},
        "Bone Mass": {"number": _rounded(measurement.bone_mass)},
        "Measurement Time": rich_text(local_time.isoformat()),
        "Device Model": rich_text(measurement.device_model),
        "Measurement ID": rich_text(str(measurement.id)),
        "Calendar Created": {"checkbox": False},
    }


class WithingsClient(VendorClient):
    """Withings Public API 클라이언트.

    Args:
        config: Withings 설정 (client_id/secret, 토큰)
        tz: 로컬 타임존
        env_file: 갱신된 토큰을 기록할 .env 경로. 파일이 없으면 메모리에만 유지
    """

    source = SOURCE

    def __init__(self, config: WithingsConfig, tz: tzinfo, *, env_file: Path | None = None) -> None:
        if not (config.client_id and config.client_secret):
            raise RuntimeError("Withings 자격 증명이 설정되지 않았습니다 (WITHINGS_CLIENT_ID/SECRET)")
        super().__init__(config)
        self._withings = config
        self._access_token = config.access_token
        self._refresh_token = config.refresh_token
        self._tz = tz
        self._env_file = env_file

    @property
    def tokens(self) -> dict[str, str]:
        """.env 항목 이름 → 현재 토큰."""
        return {"WITHINGS_ACCESS_TOKEN": self._access_token, "WITHINGS_REFRESH_TOKEN": self._refresh_token}

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    # ── OAuth ──────────────────────────────────────────

    def authorization_url(self, state: str = "init") -> str:
        """사용자가 브라우저에서 열 동의 화면 URL."""
        params = {
            "response_type": "code",
            "client_id": self._withings.client_id,
            "redirect_uri": self._withings.redirect_uri,
            "scope": "user.metrics",
            "state": state,
        }
        return str(httpx.URL(self._withings.authorize_url, params=params))

    def exchange_code(self, code: str) -> None:
        """authorization code를 토큰으로 교환하고 저장한다."""
        self._request_tokens(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": self._withings.redirect_uri}
        )

    def _request_tokens(self, grant: dict[str, str]) -> None:
        data = self._request_json(
            "POST",
            "/v2/oauth2",
            data={
                "action": "requesttoken",
                "client_id": self._withings.client_id,
                "client_secret": self._withings.client_secret,
                **grant,
            },
            authenticated=False,
        )
        if data.get("status") != 0:
            raise VendorApiError(SOURCE, int(data.get("status") or 0), str(data.get("error") or "token request failed"))
        body = data.get("body") or {}
        if not body.get("access_token"):
            raise VendorApiError(SOURCE, 0, "token response has no access_token")
        self._access_token = body["access_token"]
        self._refresh_token = body.get("refresh_token") or self._refresh_token
        self._save_tokens()

    def _refresh_access_token(self) -> bool:
        if not self._refresh_token:
            return False
        logger.info("Refreshing Withings access token", extra={"source": SOURCE})
        try:
            self._request_tokens({"grant_type": "refresh_token", "refresh_token": self._refresh_token})
        except VendorApiError as exc:
            logger.error(
                "Withings token refresh failed: %s",
                exc,
                extra={"source": SOURCE, "event_code": "TOKEN_REFRESH_FAILED"},
            )
            return False
        logger.info("Withings access token refreshed", extra={"source": SOURCE, "event_code": "TOKEN_REFRESHED"})
        return True

    def _save_tokens(self) -> None:
        os.environ.update(self.tokens)
        if self._env_file is None or not self._env_file.exists():
            logger.warning(".env file not found, tokens will only persist for this session", extra={"source": SOURCE})
            return
        for key, value in self.tokens.items():
            set_key(self._env_file, key, value)

    # ── 측정 ───────────────────────────────────────────

    def _call(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        """본문 status를 확인한다. 토큰 만료(401/2555)면 한 번 갱신 후 재요청."""
        refreshed = False
        while True:
            data = self._request_json("GET", path, params=params)
            status = data.get("status")
            if status == 0:
                return data.get("body") or {}
            if status in _TOKEN_EXPIRED and not refreshed:
                refreshed = True
                if self._refresh_access_token():
                    continue
            raise VendorApiError(SOURCE, int(status or 0), str(data.get("error") or "unexpected status"))

    def test_connection(self) -> bool:
        try:
            body = self._call("/measure", {"action": "getmeas", "meastype": 1, "lastupdate": 0, "limit": 1})
        except VendorApiError as exc:
            logger.error("Withings connection failed: %s", exc, extra={"source": SOURCE})
            return False
        logger.info("Withings connection successful: %s", body.get("timezone", ""), extra={"source": SOURCE})
        return True

    def get_measure_groups(self, start: datetime, end: datetime) -> list[MeasureGroup]:
        """[start, end] 구간 측정 그룹. body.more가 있으면 offset으로 이어받는다."""
        params: dict[str, Any] = {
            "action": "getmeas",
            "meastypes": MEASURE_TYPES,
            "startdate": int(start.timestamp()),
            "enddate": int(end.timestamp()),
        }
        groups: list[MeasureGroup] = []
        while True:
            body = self._call("/measure", params)
            groups.extend(MeasureGroup.model_validate(item) for item in body.get("measuregrps") or [])
            if not body.get("more"):
                break
            params = {**params, "offset": body.get("offset")}
        logger.info("Fetched %d measurement groups", len(groups), extra={"source": SOURCE})
        return groups

    def fetch_records(self, window: DateWindow) -> list[PendingRecord]:
        records = []
        for group in self.get_measure_groups(window.start_utc, window.end_utc):
            measurement = parse_measure_group(group)
            local_day = to_local(measurement.measured_at, self._tz).date()
            records.append(
                PendingRecord(
                    source=SOURCE,
                    record_id=str(measurement.id),
                    date=local_day.isoformat(),
                    label=f"Body Weight ({local_day.isoformat()})",
                    properties=measurement_to_properties(measurement, self._tz),
                    payload=measurement.model_dump(mode="json"),
                )
            )
        return records


# ── 캘린더 ─────────────────────────────────────────────


def weight_event_title(weight: float) -> str:
    return f"Weight: {format_number(weight)} {WEIGHT_UNIT}"


def weight_event_description(weight: float, measurement_time: str) -> str:
    lines = ["⚖️ Body Weight Measurement", f"📊 Weight: {format_number(weight)} {WEIGHT_UNIT}"]
    if measurement_time:
        lines.append(f"⏰ Time: {measurement_time}")
    lines.append("🔗 Source: Withings")
    return "\n".join(lines)


def page_to_entry(page: dict[str, Any]) -> CalendarEntry:
    """측정 페이지 → body_weight 캘린더 종일 일정.

    Raises:
        ValueError: Date가 비어 있거나 Weight가 없는 경우
    """
    props = page.get("properties") or {}
    day = date.fromisoformat(date_value(props.get("Date")))
    weight = float_value(props.get("Weight"))
    if weight is None:
        raise ValueError(f"no weight recorded for {day.isoformat()}")

    summary = weight_event_title(weight)
    description = weight_event_description(weight, text_value(props.get("Measurement Time"), "rich_text"))
    return CalendarEntry(
        page_id=page["id"],
        calendar="body_weight",
        label=f"{summary} ({day.isoformat()})",
        event=all_day_event(summary, description, day),
    )
