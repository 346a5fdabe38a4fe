"""Google Calendar 클라이언트 테스트."""

from __future__ import annotations

from datetime import UTC, date, datetime
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httplib2
import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from activity_sync.config import CalendarAccountConfig
from activity_sync.google_calendar import (
    TOKEN_URI,
    GoogleCalendarClient,
    GoogleCalendarError,
    all_day_event,
    build_all_day_event,
    format_event_description,
    format_event_title,
    obtain_refresh_token,
    timed_event,
)


def _activity(**overrides) -> SimpleNamespace:
    values = {
        "repository": "acme/app",
        "date": "2025-03-10",
        "commits_count": 3,
        "total_lines_added": 10,
        "total_lines_deleted": 2,
        "total_changes": 12,
        "pr_titles": "Add login (#7)",
        "commit_messages": "a (10:00:00), b (10:30:00)",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _http_error(status: int, message: str = "boom") -> HttpError:
    body = f'{{"error": {{"code": {status}, "message": "{message}"}}}}'.encode()
    return HttpError(httplib2.Response({"status": status}), body, uri="https://www.googleapis.com/calendar/v3")


@pytest.fixture()
def account() -> CalendarAccountConfig:
    return CalendarAccountConfig(
        client_id="cid",
        client_secret="secret",
        refresh_token="refresh",
        calendar_id="work@group.calendar.google.com",
    )


@pytest.fixture()
def mock_build():
    with patch("activity_sync.google_calendar.build") as mock:
        yield mock


@pytest.fixture()
def calendar(account: CalendarAccountConfig, mock_build: MagicMock) -> GoogleCalendarClient:
    client = GoogleCalendarClient(account, timeout=5, num_retries=3)
    yield client
    client.close()


class TestEventFormatting:
    def test_title(self) -> None:
        assert format_event_title(_activity()) == "app: 3 commits (+10/-2 lines)"

    def test_title_without_changes(self) -> None:
        assert format_event_title(_activity(total_changes=0)) == "app: 3 commits"

    def test_description(self) -> None:
        lines = format_event_description(_activity()).split("\n")
        assert lines[0] == "💻 acme/app"
        assert "📈 +10/-2 lines" in lines
        assert "🔀 PR: Add login (#7)" in lines
        assert lines[-1] == "a (10:00:00), b (10:30:00)"

    def test_description_without_pr(self) -> None:
        assert "🔀 PR: None" in format_event_description(_activity(pr_titles=""))

    def test_all_day_event_end_is_exclusive(self) -> None:
        event = build_all_day_event(_activity(date="2025-03-31"))
        assert event["start"] == {"date": "2025-03-31"}
        assert event["end"] == {"date": "2025-04-01"}

    def test_all_day_event_helper(self) -> None:
        event = all_day_event("Weight: 180.2 lbs", "desc", date(2025, 12, 31))
        assert event["end"] == {"date": "2026-01-01"}

    def test_timed_event(self) -> None:
        start = datetime(2025, 3, 10, 3, tzinfo=UTC)
        event = timed_event("Sleep", "desc", start, datetime(2025, 3, 10, 11, tzinfo=UTC))
        assert event["start"] == {"dateTime": "2025-03-10T03:00:00+00:00"}
        assert event["end"] == {"dateTime": "2025-03-10T11:00:00+00:00"}

    def test_timed_event_requires_tz(self) -> None:
        with pytest.raises(ValueError, match="timezone-aware"):
            timed_event("x", "", datetime(2025, 3, 10, 3), datetime(2025, 3, 10, 4))


class TestGoogleCalendarClient:
    def test_missing_credentials(self) -> None:
        with pytest.raises(RuntimeError, match="자격 증명"):
            GoogleCalendarClient(CalendarAccountConfig(client_id="cid"))

    def test_service_built_with_refresh_token_credentials(
        self, calendar: GoogleCalendarClient, mock_build: MagicMock
    ) -> None:
        assert mock_build.call_args.args == ("calendar", "v3")
        credentials = mock_build.call_args.kwargs["http"].credentials
        assert credentials.token is None
        assert credentials.refresh_token == "refresh"
        assert credentials.client_id == "cid"
        assert credentials.token_uri == TOKEN_URI

    def test_insert_event(self, calendar: GoogleCalendarClient, mock_build: MagicMock) -> None:
        service = mock_build.return_value
        service.events.return_value.insert.return_value.execute.return_value = {"id": "evt-1"}

        created = calendar.insert_event({"summary": "x"})

        assert created == {"id": "evt-1"}
        service.events.return_value.insert.assert_called_once_with(
            calendarId="work@group.calendar.google.com", body={"summary": "x"}
        )
        service.events.return_value.insert.return_value.execute.assert_called_once_with(num_retries=3)

    def test_insert_event_explicit_calendar(self, calendar: GoogleCalendarClient, mock_build: MagicMock) -> None:
        calendar.insert_event({"summary": "x"}, calendar_id="fitness@group.calendar.google.com")
        kwargs = mock_build.return_value.events.return_value.insert.call_args.kwargs
        assert kwargs["calendarId"] == "fitness@group.calendar.google.com"

    def test_http_error_mapped(self, calendar: GoogleCalendarClient, mock_build: MagicMock) -> None:
        execute = mock_build.return_value.events.return_value.insert.return_value.execute
        execute.side_effect = _http_error(403, "Forbidden")

        with pytest.raises(GoogleCalendarError, match="Forbidden") as exc_info:
            calendar.insert_event({"summary": "x"})
        assert exc_info.value.status_code == 403

    def test_refresh_error_mapped(self, calendar: GoogleCalendarClient, mock_build: MagicMock) -> None:
        execute = mock_build.return_value.events.return_value.insert.return_value.execute
        execute.side_effect = RefreshError("invalid_grant: Token has been expired or revoked.")

        with pytest.raises(GoogleCalendarError, match="Token refresh failed") as exc_info:
            calendar.insert_event({"summary": "x"})
        assert exc_info.value.status_code == 401

    def test_missing_calendar_id(self, mock_build: MagicMock) -> None:
        client = GoogleCalendarClient(
            CalendarAccountConfig(client_id="cid", client_secret="s", refresh_token="r")
        )
        with pytest.raises(GoogleCalendarError, match="calendar_id"):
            client.insert_event({"summary": "x"})
        mock_build.return_value.events.assert_not_called()

    def test_connection(self, calendar: GoogleCalendarClient, mock_build: MagicMock) -> None:
        mock_build.return_value.calendarList.return_value.list.return_value.execute.return_value = {
            "items": [{"id": "a"}]
        }
        assert calendar.test_connection() is True

    def test_connection_failure(self, calendar: GoogleCalendarClient, mock_build: MagicMock) -> None:
        mock_build.return_value.calendarList.return_value.list.return_value.execute.side_effect = _http_error(401)
        assert calendar.test_connection() is False

    def test_close_closes_service(self, account: CalendarAccountConfig, mock_build: MagicMock) -> None:
        with GoogleCalendarClient(account):
            pass
        mock_build.return_value.close.assert_called_once()


class TestObtainRefreshToken:
    @patch("activity_sync.google_calendar.InstalledAppFlow")
    def test_returns_refresh_token(self, mock_flow_cls: MagicMock) -> None:
        flow = mock_flow_cls.from_client_config.return_value
        flow.run_local_server.return_value = SimpleNamespace(refresh_token="1//rt")

        assert obtain_refresh_token("cid", "secret") == "1//rt"
        client_config = mock_flow_cls.from_client_config.call_args.args[0]
        assert client_config["installed"]["client_id"] == "cid"
        assert flow.run_local_server.call_args.kwargs["prompt"] == "consent"
        assert flow.run_local_server.call_args.kwargs["access_type"] == "offline"

    @patch("activity_sync.google_calendar.InstalledAppFlow")
    def test_missing_refresh_token(self, mock_flow_cls: MagicMock) -> None:
        mock_flow_cls.from_client_config.return_value.run_local_server.return_value = SimpleNamespace(
            refresh_token=None
        )
        with pytest.raises(GoogleCalendarError, match="refresh token"):
            obtain_refresh_token("cid", "secret")
