"""공통 fixture."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
import yaml

from activity_sync.models import CommitStats, PullRequestRef, RawCommit

_ENV_VARS = (
    "GITHUB_USERNAME",
    "NOTION_DATA_SOURCE_ID",
    "PERSONAL_GOOGLE_CLIENT_ID",
    "PERSONAL_GOOGLE_CLIENT_SECRET",
    "PERSONAL_GOOGLE_REFRESH_TOKEN",
    "PRS_PERSONAL_CALENDAR_ID",
    "WORK_GOOGLE_CLIENT_ID",
    "WORK_GOOGLE_CLIENT_SECRET",
    "WORK_GOOGLE_REFRESH_TOKEN",
    "PRS_WORK_CALENDAR_ID",
    "FITNESS_CALENDAR_ID",
    "NORMAL_WAKE_UP_CALENDAR_ID",
    "SLEEP_IN_CALENDAR_ID",
    "BODY_WEIGHT_CALENDAR_ID",
    "VIDEO_GAMES_CALENDAR_ID",
    "OURA_NOTION_DATA_SOURCE_ID",
    "STEAM_URL",
    "STEAM_NOTION_DATA_SOURCE_ID",
    "STRAVA_CLIENT_ID",
    "STRAVA_CLIENT_SECRET",
    "STRAVA_ACCESS_TOKEN",
    "STRAVA_REFRESH_TOKEN",
    "STRAVA_NOTION_DATA_SOURCE_ID",
    "WITHINGS_CLIENT_ID",
    "WITHINGS_CLIENT_SECRET",
    "WITHINGS_ACCESS_TOKEN",
    "WITHINGS_REFRESH_TOKEN",
    "WITHINGS_NOTION_DATA_SOURCE_ID",
    "OURA_ACCESS_TOKEN",
    "OURA_NOTION_TOKEN",
    "STEAM_NOTION_TOKEN",
    "STRAVA_NOTION_TOKEN",
    "WITHINGS_NOTION_TOKEN",
)

EST = timezone(timedelta(hours=-5))


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """실행 환경의 설정 오버라이드 환경변수가 테스트에 섞이지 않도록 제거."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def tz() -> timezone:
    return EST


@pytest.fixture()
def sample_config_data() -> dict[str, Any]:
    """테스트용 config dict."""
    return {
        "github": {
            "username": "octocat",
            "work_repos": ["acme/app"],
            "work_owners": ["acme"],
        },
        "timezone": {"utc_offset_hours": -5},
        "notion": {"data_source_id": "ds-123"},
        "calendar": {
            "personal": {"calendar_id": "personal@group.calendar.google.com"},
            "work": {"calendar_id": "work@group.calendar.google.com"},
        },
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, sample_config_data: dict[str, Any]) -> Path:
    """임시 YAML 설정 파일."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.dump(sample_config_data), encoding="utf-8")
    return config_path


@pytest.fixture()
def make_commit() -> Callable[..., RawCommit]:
    """RawCommit 팩토리. committer_date 기본값은 author_date."""

    def _make(
        sha: str,
        *,
        repository: str = "org/repo",
        message: str = "commit",
        author_date: str = "2025-03-10T15:00:00Z",
        committer_date: str | None = None,
        additions: int = 0,
        deletions: int = 0,
        total: int | None = None,
        files: list[str] | None = None,
        pull_requests: list[PullRequestRef] | None = None,
    ) -> RawCommit:
        return RawCommit(
            sha=sha,
            message=message,
            author_date=author_date,
            committer_date=committer_date or author_date,
            stats=CommitStats(additions=additions, deletions=deletions, total=total),
            files=files or [],
            repository=repository,
            pull_requests=pull_requests or [],
        )

    return _make
