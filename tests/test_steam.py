"""Steam 플레이 기록 테스트."""

from __future__ import annotations

import logging
from datetime import date

import pytest
from pytest_httpx import HTTPXMock

from activity_sync.config import SteamConfig
from activity_sync.dates import date_range_window, day_window
from activity_sync.steam import (
    GamePlay,
    SteamClient,
    activity_id,
    game_event_title,
    game_to_properties,
    page_to_entry,
)

URL = "https://steam.example.com/playtime"


def _day(games: list[dict] | None = None, total_hours: float = 2.5) -> dict:
    if games is None:
        games = [
            {
                "name": "Half-Life 2",
                "hours": 2,
                "minutes": 30,
                "sessions": [
                    {"start_time": "19:00", "end_time": "20:00", "duration_minutes": 60},
                    {"start_time": "21:00", "end_time": "22:30", "duration_minutes": 90},
                ],
            }
        ]
    return {"total_hours": total_hours, "game_count": len(games), "games": games}


def _rich(value: str) -> dict:
    return {"rich_text": [{"plain_text": value}]}


@pytest.fixture()
def client(tz) -> SteamClient:
    c = SteamClient(SteamConfig(base_url=URL, max_retries=0), tz)
    yield c
    c.close()


def test_activity_id() -> None:
    assert activity_id("Half-Life 2: Episode One", date(2025, 3, 10)) == "Half-Life-2--Episode-One-2025-03-10"


class TestGameToProperties:
    def test_session_times(self, tz) -> None:
        game = GamePlay.model_validate(_day()["games"][0])
        props = game_to_properties(game, date(2025, 3, 10), tz)

        assert props["Game Name"]["title"][0]["text"]["content"] == "Half-Life 2"
        assert props["Hours Played"] == {"number": 2}
        assert props["Minutes Played"] == {"number": 30}
        assert props["Session Count"] == {"number": 2}
        assert props["Session Details"]["rich_text"][0]["text"]["content"] == (
            "19:00-20:00 (60min), 21:00-22:30 (90min)"
        )
        assert props["Start Time"]["rich_text"][0]["text"]["content"] == "2025-03-10T19:00:00-05:00"
        assert props["End Time"]["rich_text"][0]["text"]["content"] == "2025-03-10T22:30:00-05:00"
        assert props["Platform"] == {"select": {"name": "Steam"}}
        assert props["Activity ID"]["rich_text"][0]["text"]["content"] == "Half-Life-2-2025-03-10"

    def test_no_sessions(self, tz) -> None:
        game = GamePlay.model_validate({"name": "Portal", "hours": None, "minutes": 45, "sessions": None})
        props = game_to_properties(game, date(2025, 3, 10), tz)

        assert props["Hours Played"] == {"number": 0}
        assert props["Session Count"] == {"number": 0}
        assert props["Start Time"]["rich_text"][0]["text"]["content"] == ""


class TestSteamClient:
    def test_missing_url(self, tz) -> None:
        with pytest.raises(RuntimeError, match="STEAM_URL"):
            SteamClient(SteamConfig(), tz)

    def test_fetch_day(self, client: SteamClient, httpx_mock: HTTPXMock, tz) -> None:
        httpx_mock.add_response(url=f"{URL}?date=2025-03-10", json=_day())

        records = client.fetch_records(day_window(date(2025, 3, 10), tz))

        assert len(records) == 1
        record = records[0]
        assert record.source == "steam"
        assert record.record_id == "Half-Life-2-2025-03-10"
        assert record.date == "2025-03-10"
        assert record.payload["date"] == "2025-03-10"
        assert record.payload["name"] == "Half-Life 2"

    def test_no_playtime_skipped(self, client: SteamClient, httpx_mock: HTTPXMock, tz) -> None:
        httpx_mock.add_response(url=f"{URL}?date=2025-03-10", json=_day(games=[], total_hours=0))

        assert client.fetch_records(day_window(date(2025, 3, 10), tz)) == []

    def test_failed_day_skipped(
        self, client: SteamClient, httpx_mock: HTTPXMock, tz, caplog: pytest.LogCaptureFixture
    ) -> None:
        httpx_mock.add_response(url=f"{URL}?date=2025-03-10", json=_day())
        httpx_mock.add_response(url=f"{URL}?date=2025-03-11", status_code=500, text="boom")

        with caplog.at_level(logging.WARNING, logger="activity_sync.steam"):
            records = client.fetch_records(date_range_window(date(2025, 3, 10), date(2025, 3, 11), tz))

        assert [r.date for r in records] == ["2025-03-10"]
        failed = [r for r in caplog.records if getattr(r, "event_code", None) == "FETCH_DAY_FAILED"]
        assert len(failed) == 1
        assert failed[0].date == "2025-03-11"

    def test_connection(self, client: SteamClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(json=_day())
        assert client.test_connection() is True


class TestPageToEntry:
    def _page(self, **overrides) -> dict:
        props = {
            "Game Name": {"title": [{"plain_text": "Half-Life 2"}]},
            "Date": {"date": {"start": "2025-03-10"}},
            "Hours Played": {"number": 2},
            "Minutes Played": {"number": 30},
            "Session Count": {"number": 2},
            "Session Details": _rich("19:00-20:00 (60min), 21:00-22:30 (90min)"),
            "Start Time": _rich("2025-03-10T19:00:00-05:00"),
            "End Time": _rich("2025-03-10T22:30:00-05:00"),
            "Platform": {"select": {"name": "Steam"}},
            "Activity ID": _rich("Half-Life-2-2025-03-10"),
        }
        props.update(overrides)
        return {"id": "page-9", "properties": props}

    def test_iso_times(self, tz) -> None:
        entry = page_to_entry(self._page(), tz)

        assert entry.calendar == "video_games"
        assert entry.event["summary"] == "🎮 Half-Life 2 - 2h 30m"
        assert entry.event["start"] == {"dateTime": "2025-03-10T19:00:00-05:00"}
        assert entry.event["end"] == {"dateTime": "2025-03-10T22:30:00-05:00"}
        assert "🎯 Sessions: 2" in entry.event["description"]
        assert "🔗 Activity ID: Half-Life-2-2025-03-10" in entry.event["description"]

    def test_clock_times(self, tz) -> None:
        entry = page_to_entry(self._page(**{"Start Time": _rich("18:15"), "End Time": _rich("19:05")}), tz)

        assert entry.event["start"] == {"dateTime": "2025-03-10T18:15:00-05:00"}
        assert entry.event["end"] == {"dateTime": "2025-03-10T19:05:00-05:00"}

    def test_missing_times_default_evening(self, tz) -> None:
        entry = page_to_entry(self._page(**{"Start Time": _rich(""), "End Time": _rich("")}), tz)

        assert entry.event["start"] == {"dateTime": "2025-03-10T19:00:00-05:00"}
        assert entry.event["end"] == {"dateTime": "2025-03-10T21:30:00-05:00"}

    def test_missing_date(self, tz) -> None:
        with pytest.raises(ValueError):
            page_to_entry(self._page(Date={"date": None}), tz)


def test_minutes_only_title() -> None:
    assert game_event_title("Celeste", 0, 45) == "🎮 Celeste - 45m"
