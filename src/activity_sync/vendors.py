"""벤더 수집 소스 레지스트리.

CLI는 소스 이름('oura', 'steam', 'strava', 'withings')으로
API 클라이언트, Notion 저장소, 페이지 → 일정 변환을 찾는다.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import tzinfo
from pathlib import Path
from typing import Any

from notion_client import Client

from activity_sync import oura, steam, strava, withings
from activity_sync.calendar_mirror import CalendarEntry
from activity_sync.config import AppConfig, NotionConfig
from activity_sync.notion_store import NotionRecordStore
from activity_sync.vendor_http import VendorClient


@dataclass(frozen=True)
class VendorSpec:
    name: str
    description: str
    id_property: str
    date_property: str
    notion: Callable[[AppConfig], NotionConfig]
    client: Callable[[AppConfig, tzinfo, Path | None], VendorClient]
    to_entry: Callable[[dict[str, Any], tzinfo], CalendarEntry]

    def make_store(self, config: AppConfig, *, client: Client | None = None) -> NotionRecordStore:
        return NotionRecordStore(
            self.notion(config),
            id_property=self.id_property,
            date_property=self.date_property,
            source=self.name,
            client=client,
        )


def _oura_client(config: AppConfig, tz: tzinfo, env_file: Path | None) -> VendorClient:
    return oura.OuraClient(config.oura, tz)


def _steam_client(config: AppConfig, tz: tzinfo, env_file: Path | None) -> VendorClient:
    return steam.SteamClient(config.steam, tz)


def _strava_client(config: AppConfig, tz: tzinfo, env_file: Path | None) -> VendorClient:
    return strava.StravaClient(config.strava, tz)


def _withings_client(config: AppConfig, tz: tzinfo, env_file: Path | None) -> VendorClient:
    return withings.WithingsClient(config.withings, tz, env_file=env_file)


def _oura_entry(page: dict[str, Any], tz: tzinfo) -> CalendarEntry:
    return oura.page_to_entry(page)


def _withings_entry(page: dict[str, Any], tz: tzinfo) -> CalendarEntry:
    return withings.page_to_entry(page)


VENDORS: dict[str, VendorSpec] = {
    spec.name: spec
    for spec in (
        VendorSpec(
            name=oura.SOURCE,
            description="Oura sleep",
            id_property=oura.ID_PROPERTY,
            date_property=oura.DATE_PROPERTY,
            notion=lambda config: config.oura.notion,
            client=_oura_client,
            to_entry=_oura_entry,
        ),
        VendorSpec(
            name=steam.SOURCE,
            description="Steam gaming",
            id_property=steam.ID_PROPERTY,
            date_property=steam.DATE_PROPERTY,
            notion=lambda config: config.steam.notion,
            client=_steam_client,
            to_entry=steam.page_to_entry,
        ),
        VendorSpec(
            name=strava.SOURCE,
            description="Strava workouts",
            id_property=strava.ID_PROPERTY,
            date_property=strava.DATE_PROPERTY,
            notion=lambda config: config.strava.notion,
            client=_strava_client,
            to_entry=strava.page_to_entry,
        ),
        VendorSpec(
            name=withings.SOURCE,
            description="Withings body weight",
            id_property=withings.ID_PROPERTY,
            date_property=withings.DATE_PROPERTY,
            notion=lambda config: config.withings.notion,
            client=_withings_client,
            to_entry=_withings_entry,
        ),
    )
}


def calendar_ids(config: AppConfig) -> dict[str, str]:
    """CalendarEntry.calendar 키 → personal 계정의 캘린더 ID."""
    cal = config.calendar
    return {
        "fitness": cal.fitness_calendar_id,
        "normal_wake_up": cal.normal_wake_up_calendar_id,
        "sleep_in": cal.sleep_in_calendar_id,
        "body_weight": cal.body_weight_calendar_id,
        "video_games": cal.video_games_calendar_id,
    }
