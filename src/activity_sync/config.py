"""YAML 설정 로딩 + Pydantic 모델."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config.yaml"


# ── 설정 모델 ──────────────────────────────────────────


class GitHubApiConfig(BaseModel):
    base_url: str = "https://api.github.com"
    token_env_var: str = "GITHUB_TOKEN"
    username: str = ""
    work_repos: list[str] = Field(default_factory=list)
    work_owners: list[str] = Field(default_factory=list)
    request_timeout_sec: int = 30
    max_retries: int = 3
    backoff_factor: float = 2.0
    rate_limit_buffer: int = 10
    per_page: int = Field(default=100, ge=1, le=100)
    max_search_pages: int = Field(default=10, ge=1, le=10)  # search API는 최대 1000건

    @field_validator("work_repos")
    @classmethod
    def work_repos_full_name(cls, v: list[str]) -> list[str]:
        for repo in v:
            owner, _, name = repo.partition("/")
            if not owner or not name:
                raise ValueError(f"work_repos must use 'owner/name' format: {repo}")
        return v


class TimezoneConfig(BaseModel):
    """로컬 날짜 계산 기준.

    name이 비어 있으면 utc_offset_hours 고정 오프셋을 사용한다 (기존 레코드의 uniqueId 호환).
    """

    utc_offset_hours: float = Field(default=-5, ge=-14, le=14)
    name: str | None = None


class NotionConfig(BaseModel):
    token_env_var: str = "NOTION_TOKEN"
    data_source_id: str = ""


class CalendarAccountConfig(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    refresh_token: str = ""
    calendar_id: str = ""


class CalendarConfig(BaseModel):
    """Google Calendar 계정과 벤더 기록용 캘린더.

    벤더 기록(운동, 수면, 체중, 게임)은 모두 personal 계정에 생성한다.
    """

    personal: CalendarAccountConfig = Field(default_factory=CalendarAccountConfig)
    work: CalendarAccountConfig = Field(default_factory=CalendarAccountConfig)
    request_timeout_sec: int = 30
    fitness_calendar_id: str = ""
    normal_wake_up_calendar_id: str = ""
    sleep_in_calendar_id: str = ""
    body_weight_calendar_id: str = ""
    video_games_calendar_id: str = ""


class VendorApiConfig(BaseModel):
    """벤더 HTTP API 공통 설정."""

    base_url: str = ""
    request_timeout_sec: int = 30
    max_retries: int = 3
    backoff_factor: float = 2.0


class OuraConfig(VendorApiConfig):
    base_url: str = "https://api.ouraring.com/v2"
    token_env_var: str = "OURA_ACCESS_TOKEN"
    normal_wake_up_hour: int = Field(default=7, ge=0, le=23)
    notion: NotionConfig = Field(default_factory=lambda: NotionConfig(token_env_var="OURA_NOTION_TOKEN"))


class SteamConfig(VendorApiConfig):
    """일자별 플레이 기록을 돌려주는 사용자 엔드포인트 (STEAM_URL)."""

    notion: NotionConfig = Field(default_factory=lambda: NotionConfig(token_env_var="STEAM_NOTION_TOKEN"))


class StravaConfig(VendorApiConfig):
    base_url: str = "https://www.strava.com/api/v3"
    token_url: str = "https://www.strava.com/oauth/token"
    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    refresh_token: str = ""
    per_page: int = Field(default=50, ge=1, le=200)
    notion: NotionConfig = Field(default_factory=lambda: NotionConfig(token_env_var="STRAVA_NOTION_TOKEN"))


class WithingsConfig(VendorApiConfig):
    base_url: str = "https://wbsapi.withings.net"
    authorize_url: str = "https://account.withings.com/oauth2_user/authorize2"
    redirect_uri: str = "http://localhost:3000/callback"
    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""
    refresh_token: str = ""
    notion: NotionConfig = Field(default_factory=lambda: NotionConfig(token_env_var="WITHINGS_NOTION_TOKEN"))


class AppConfig(BaseModel):
    """애플리케이션 전체 설정."""

    github: GitHubApiConfig = Field(default_factory=GitHubApiConfig)
    timezone: TimezoneConfig = Field(default_factory=TimezoneConfig)
    notion: NotionConfig = Field(default_factory=NotionConfig)
    calendar: CalendarConfig = Field(default_factory=CalendarConfig)
    oura: OuraConfig = Field(default_factory=OuraConfig)
    steam: SteamConfig = Field(default_factory=SteamConfig)
    strava: StravaConfig = Field(default_factory=StravaConfig)
    withings: WithingsConfig = Field(default_factory=WithingsConfig)


# ── 로딩 ───────────────────────────────────────────────

# (환경변수, 설정 섹션 경로, 키)
_ENV_OVERRIDES: tuple[tuple[str, tuple[str, ...], str], ...] = (
    ("GITHUB_USERNAME", ("github",), "username"),
    ("NOTION_DATA_SOURCE_ID", ("notion",), "data_source_id"),
    ("PERSONAL_GOOGLE_CLIENT_ID", ("calendar", "personal"), "client_id"),
    ("PERSONAL_GOOGLE_CLIENT_SECRET", ("calendar", "personal"), "client_secret"),
    ("PERSONAL_GOOGLE_REFRESH_TOKEN", ("calendar", "personal"), "refresh_token"),
    ("PRS_PERSONAL_CALENDAR_ID", ("calendar", "personal"), "calendar_id"),
    ("WORK_GOOGLE_CLIENT_ID", ("calendar", "work"), "client_id"),
    ("WORK_GOOGLE_CLIENT_SECRET", ("calendar", "work"), "client_secret"),
    ("WORK_GOOGLE_REFRESH_TOKEN", ("calendar", "work"), "refresh_token"),
    ("PRS_WORK_CALENDAR_ID", ("calendar", "work"), "calendar_id"),
    ("FITNESS_CALENDAR_ID", ("calendar",), "fitness_calendar_id"),
    ("NORMAL_WAKE_UP_CALENDAR_ID", ("calendar",), "normal_wake_up_calendar_id"),
    ("SLEEP_IN_CALENDAR_ID", ("calendar",), "sleep_in_calendar_id"),
    ("BODY_WEIGHT_CALENDAR_ID", ("calendar",), "body_weight_calendar_id"),
    ("VIDEO_GAMES_CALENDAR_ID", ("calendar",), "video_games_calendar_id"),
    ("OURA_NOTION_DATA_SOURCE_ID", ("oura", "notion"), "data_source_id"),
    ("STEAM_URL", ("steam",), "base_url"),
    ("STEAM_NOTION_DATA_SOURCE_ID", ("steam", "notion"), "data_source_id"),
    ("STRAVA_CLIENT_ID", ("strava",), "client_id"),
    ("STRAVA_CLIENT_SECRET", ("strava",), "client_secret"),
    ("STRAVA_ACCESS_TOKEN", ("strava",), "access_token"),
    ("STRAVA_REFRESH_TOKEN", ("strava",), "refresh_token"),
    ("STRAVA_NOTION_DATA_SOURCE_ID", ("strava", "notion"), "data_source_id"),
    ("WITHINGS_CLIENT_ID", ("withings",), "client_id"),
    ("WITHINGS_CLIENT_SECRET", ("withings",), "client_secret"),
    ("WITHINGS_ACCESS_TOKEN", ("withings",), "access_token"),
    ("WITHINGS_REFRESH_TOKEN", ("withings",), "refresh_token"),
    ("WITHINGS_NOTION_DATA_SOURCE_ID", ("withings", "notion"), "data_source_id"),
)


def dotenv_path(config_path: Path | None = None) -> Path:
    """설정 파일과 같은 디렉터리의 .env 경로."""
    return (config_path or _DEFAULT_CONFIG_PATH).parent / ".env"


def load_config(path: Path | None = None) -> AppConfig:
    """YAML 설정 파일을 로딩하고 Pydantic 모델로 검증한다.

    환경변수 우선순위: 시스템 환경변수 > .env 파일 > config.yaml 기본값
    """
    config_path = path or _DEFAULT_CONFIG_PATH

    load_dotenv(dotenv_path=dotenv_path(config_path), override=False)

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raise ValueError(f"Empty config file: {config_path}")

    # 환경변수 오버라이드
    for env_name, section_path, key in _ENV_OVERRIDES:
        if value := os.environ.get(env_name):
            _section(raw, section_path)[key] = value

    return AppConfig.model_validate(raw)


def _section(raw: dict, path: tuple[str, ...]) -> dict:
    """중첩 섹션 dict를 반환한다 (없거나 null이면 생성)."""
    section = raw
    for part in path:
        if not isinstance(section.get(part), dict):
            section[part] = {}
        section = section[part]
    return section
