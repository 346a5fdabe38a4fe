"""Google Calendar API 클라이언트.

- google-auth Credentials(refresh token)로 인증: access token은 라이브러리가 만료 시 갱신
- googleapiclient discovery 서비스로 일정 생성 (5xx/429는 execute(num_retries)로 재시도)
- HttpError/인증 오류는 GoogleCalendarError(status_code)로 변환
- Activity/StoredActivity를 종일 일정으로 변환, 벤더 기록용 시간 일정 body 생성
- 최초 refresh token 발급 (InstalledAppFlow 로컬 리다이렉트)
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Protocol

import httplib2
from google.auth.exceptions import GoogleAuthError, RefreshError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from activity_sync.config import CalendarAccountConfig

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


class GoogleCalendarError(Exception):
    """OAuth 토큰 갱신 또는 Calendar API 호출 실패."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Google Calendar error {status_code}: {message}")


class CalendarActivity(Protocol):
    """일정 생성에 필요한 활동 필드."""

    repository: str
    date: str
    commits_count: int
    total_lines_added: int
    total_lines_deleted: int
    total_changes: int
    pr_titles: str
    commit_messages: str


def format_event_title(activity: CalendarActivity) -> str:
    """'repo: 3 commits (+10/-2 lines)'. 변경 라인이 없으면 괄호 부분 생략."""
    repo_name = activity.repository.split("/", 1)[1] if "/" in activity.repository else activity.repository
    lines_info = (
        f" (+{activity.total_lines_added}/-{activity.total_lines_deleted} lines)"
        if activity.total_changes > 0
        else ""
    )
    return f"{repo_name}: {activity.commits_count} commits{lines_info}"


def format_event_description(activity: CalendarActivity) -> str:
    lines = [
        f"💻 {activity.repository}",
        f"📊 {activity.commits_count} commits",
    ]
    if activity.total_changes > 0:
        lines.append(f"📈 +{activity.total_lines_added}/-{activity.total_lines_deleted} lines")
    pr_titles = activity.pr_titles.strip() if activity.pr_titles else ""
    lines.append(f"🔀 PR: {pr_titles or 'None'}")
    lines.append("")
    lines.append("📝 Commits:")
    lines.append(activity.commit_messages)
    return "\n".join(lines)


def format_number(value: float) -> str:
    """일정 문구용 숫자. 정수 값은 소수점 없이 (7.0 → '7')."""
    return str(int(value)) if float(value).is_integer() else str(value)


def all_day_event(summary: str, description: str, day: date) -> dict[str, Any]:
    """종일 일정 body. end.date는 다음 날 (exclusive)."""
    return {
        "summary": summary,
        "description": description,
        "start": {"date": day.isoformat()},
        "end": {"date": (day + timedelta(days=1)).isoformat()},
    }


def timed_event(summary: str, description: str, start: datetime, end: datetime) -> dict[str, Any]:
    """시간 지정 일정 body. start/end는 tz-aware여야 한다."""
    if start.tzinfo is None or end.tzinfo is None:
        raise ValueError("event times must be timezone-aware")
    return {
        "summary": summary,
        "description": description,
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
    }


def build_all_day_event(activity: CalendarActivity) -> dict[str, Any]:
    """GitHub 활동 날짜의 종일 일정."""
    return all_day_event(
        format_event_title(activity),
        format_event_description(activity),
        date.fromisoformat(activity.date),
    )


class GoogleCalendarClient:
    """단일 Google 계정의 Calendar API 클라이언트."""

    def __init__(self, account: CalendarAccountConfig, *, timeout: float = 30.0, num_retries: int = 2) -> None:
        if not (account.client_id and account.client_secret and account.refresh_token):
            raise RuntimeError("Google OAuth 자격 증명(client_id, client_secret, refresh_token)이 설정되지 않았습니다")
        self._account = account
        self._num_retries = num_retries
        # token=None: 첫 요청 전에 refresh token으로 access token을 발급받는다
        self._credentials = Credentials(
            token=None,
            refresh_token=account.refresh_token,
            client_id=account.client_id,
            client_secret=account.client_secret,
            token_uri=TOKEN_URI,
            scopes=SCOPES,
        )
        http = AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=timeout))
        self._service = build("calendar", "v3", http=http, cache_discovery=False)

    @property
    def calendar_id(self) -> str:
        return self._account.calendar_id

    def _execute(self, request: Any, action: str) -> dict[str, Any]:
        try:
            return request.execute(num_retries=self._num_retries) or {}
        except HttpError as exc:
            raise GoogleCalendarError(exc.resp.status, f"{action} failed: {exc.reason}") from exc
        except RefreshError as exc:
            raise GoogleCalendarError(401, f"Token refresh failed: {exc}") from exc
        except (GoogleAuthError, httplib2.HttpLib2Error, OSError) as exc:
            raise GoogleCalendarError(0, f"{action} failed: {exc}") from exc

    def test_connection(self) -> bool:
        try:
            data = self._execute(self._service.calendarList().list(), "calendarList.list")
        except GoogleCalendarError as exc:
            logger.error("Calendar connection failed: %s", exc)
            return False
        logger.info("Calendar connection successful: %d calendars", len(data.get("items") or []))
        return True

    def insert_event(self, event: dict[str, Any], calendar_id: str | None = None) -> dict[str, Any]:
        """events.insert. calendar_id가 없으면 계정 기본 캘린더."""
        target = calendar_id or self.calendar_id
        if not target:
            raise GoogleCalendarError(0, "calendar_id is not configured")
        return self._execute(
            self._service.events().insert(calendarId=target, body=event),
            f"events.insert({target})",
        )

    def close(self) -> None:
        self._service.close()

    def __enter__(self) -> GoogleCalendarClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def obtain_refresh_token(client_id: str, client_secret: str, *, port: int = 0) -> str:
    """브라우저 동의 화면을 열고 로컬 리다이렉트로 refresh token을 받는다.

    prompt=consent로 매번 refresh token이 발급되도록 강제한다.
    """
    flow = InstalledAppFlow.from_client_config(
        {
            "installed": {
                "client_id": client_id,
                "client_secret": client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": ["http://localhost"],
            }
        },
        scopes=SCOPES,
    )
    credentials = flow.run_local_server(port=port, access_type="offline", prompt="consent")
    if not credentials.refresh_token:
        raise GoogleCalendarError(0, "authorization completed without a refresh token")
    return credentials.refresh_token
