"""Notion 데이터베이스 저장소 어댑터.

GitHub 활동과 벤더 기록을 Notion 페이지로 적재하고, 캘린더 미반영 레코드를 조회한다.
- 레코드 ID 속성(GitHub은 Unique ID) 기준 중복 적재 방지 (이미 있으면 skipped)
- 텍스트 속성은 Notion 제한(2000자)에 맞춰 자른다
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import date
from typing import Any

from notion_client import Client
from notion_client.errors import HTTPResponseError, RequestTimeoutError
from notion_client.helpers import collect_paginated_api

from activity_sync.config import NotionConfig
from activity_sync.models import Activity

logger = logging.getLogger(__name__)

NOTION_TEXT_LIMIT = 2000

_PR_NAME_PATTERN = re.compile(r"^(.+?) - (.+?) \(#(\d+)\)$")


@dataclass
class StoreResult:
    """적재 결과. 중복이면 skipped=True, page_id=None."""

    unique_id: str
    page_id: str | None = None
    skipped: bool = False


@dataclass
class StoredActivity:
    """캘린더 동기화를 위해 Notion에서 읽어온 레코드."""

    page_id: str
    name: str
    repository: str
    date: str
    commits_count: int = 0
    project_type: str = "Personal"
    commit_messages: str = ""
    pr_titles: str = ""
    pull_requests_count: int = 0
    files_changed: int = 0
    total_lines_added: int = 0
    total_lines_deleted: int = 0
    total_changes: int = 0
    unique_id: str = ""
    pr_number: int | None = None
    pr_title: str = ""

    @property
    def is_pr_record(self) -> bool:
        return self.pr_number is not None


def truncate_for_notion(text: str | None, max_length: int = NOTION_TEXT_LIMIT) -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def title(content: str | None) -> dict[str, Any]:
    return {"title": [{"text": {"content": truncate_for_notion(content)}}]}


def rich_text(content: str | None) -> dict[str, Any]:
    return {"rich_text": [{"text": {"content": truncate_for_notion(content)}}]}


def select(name: str) -> dict[str, Any]:
    return {"select": {"name": name}}


def date_prop(value: str | None) -> dict[str, Any]:
    return {"date": {"start": value} if value else None}


def activity_to_properties(activity: Activity) -> dict[str, Any]:
    """Activity → Notion 페이지 속성."""
    return {
        "Repository": title(activity.name or activity.repository),
        "Date": date_prop(activity.date),
        "Commits Count": {"number": activity.commits_count},
        "Commit Messages": rich_text(activity.commit_messages),
        "PR Titles": rich_text(activity.pr_titles),
        "PRs Count": {"number": activity.pull_requests_count},
        "Files Changed": {"number": activity.files_changed},
        "Files List": rich_text(activity.files_changed_list),
        "Lines Added": {"number": activity.total_lines_added},
        "Lines Deleted": {"number": activity.total_lines_deleted},
        "Total Changes": {"number": activity.total_changes},
        "Project Type": select(activity.project_type or "Personal"),
        "Calendar Created": {"checkbox": False},
        "Unique ID": rich_text(activity.unique_id),
    }


def text_value(prop: dict[str, Any] | None, kind: str) -> str:
    parts = (prop or {}).get(kind) or []
    return "".join(part.get("plain_text", "") for part in parts)


def int_value(prop: dict[str, Any] | None) -> int:
    value = (prop or {}).get("number")
    return int(value) if value is not None else 0


def float_value(prop: dict[str, Any] | None) -> float | None:
    value = (prop or {}).get("number")
    return float(value) if value is not None else None


def date_value(prop: dict[str, Any] | None) -> str:
    return ((prop or {}).get("date") or {}).get("start") or ""


def select_value(prop: dict[str, Any] | None) -> str:
    return ((prop or {}).get("select") or {}).get("name") or ""


def page_to_stored_activity(page: dict[str, Any]) -> StoredActivity:
    """Notion 페이지 → StoredActivity. 'repo - PR 제목 (#n)' 이름에서 PR 정보를 복원한다."""
    props = page.get("properties") or {}
    name = text_value(props.get("Repository"), "title") or "Unknown Repository"

    repository, pr_title, pr_number = name, "", None
    if match := _PR_NAME_PATTERN.match(name):
        repository, pr_title, pr_number = match.group(1), match.group(2), int(match.group(3))

    return StoredActivity(
        page_id=page["id"],
        name=name,
        repository=repository,
        date=date_value(props.get("Date")),
        commits_count=int_value(props.get("Commits Count")),
        project_type=select_value(props.get("Project Type")) or "Personal",
        commit_messages=text_value(props.get("Commit Messages"), "rich_text"),
        pr_titles=text_value(props.get("PR Titles"), "rich_text"),
        pull_requests_count=int_value(props.get("PRs Count")),
        files_changed=int_value(props.get("Files Changed")),
        total_lines_added=int_value(props.get("Lines Added")),
        total_lines_deleted=int_value(props.get("Lines Deleted")),
        total_changes=int_value(props.get("Total Changes")),
        unique_id=text_value(props.get("Unique ID"), "rich_text"),
        pr_number=pr_number,
        pr_title=pr_title,
    )


class NotionRecordStore:
    """Notion 데이터 소스 공통 어댑터.

    id_property(rich_text) 값으로 중복을 판정하고, date_property와
    'Calendar Created' 체크박스로 캘린더 미반영 레코드를 조회한다.
    """

    def __init__(
        self,
        config: NotionConfig,
        *,
        id_property: str,
        date_property: str = "Date",
        source: str = "notion",
        client: Client | None = None,
    ) -> None:
        self.source = source
        if not config.data_source_id:
            raise RuntimeError(f"{self.source} Notion data_source_id가 설정되지 않았습니다")
        if client is None:
            token = os.environ.get(config.token_env_var, "")
            if not token:
                raise RuntimeError(f"환경변수 {config.token_env_var}이 설정되지 않았습니다")
            client = Client(auth=token)

        self._client = client
        self._data_source_id = config.data_source_id
        self.id_property = id_property
        self.date_property = date_property

    def test_connection(self) -> bool:
        try:
            info = self._client.data_sources.retrieve(data_source_id=self._data_source_id)
        except (HTTPResponseError, RequestTimeoutError) as exc:
            logger.error("Notion connection failed: %s", exc, extra={"source": self.source})
            return False
        name = "".join(part.get("plain_text", "") for part in info.get("title") or [])
        logger.info("Notion connection successful: %s", name or self._data_source_id, extra={"source": self.source})
        return True

    def exists(self, record_id: str) -> bool:
        """id_property 값이 같은 페이지가 있는지 조회한다."""
        response = self._client.data_sources.query(
            data_source_id=self._data_source_id,
            filter={"property": self.id_property, "rich_text": {"equals": record_id}},
            page_size=1,
        )
        return bool(response.get("results"))

    def create_page(self, record_id: str, properties: dict[str, Any], *, label: str) -> StoreResult:
        """중복이 아니면 페이지를 만든다. 조회/생성 실패는 그대로 전파된다."""
        if self.exists(record_id):
            logger.info(
                "Skipping duplicate record: %s (%s)",
                label,
                record_id,
                extra={"source": self.source, "record_id": record_id},
            )
            return StoreResult(unique_id=record_id, skipped=True)

        page = self._client.pages.create(
            parent={"type": "data_source_id", "data_source_id": self._data_source_id},
            properties=properties,
        )
        logger.info(
            "Created record: %s",
            label,
            extra={"source": self.source, "record_id": record_id, "page_id": page.get("id")},
        )
        return StoreResult(unique_id=record_id, page_id=page.get("id"))

    def query_unsynced_pages(self, start_date: date, end_date: date) -> list[dict[str, Any]]:
        """[start_date, end_date] 범위에서 캘린더 미반영 페이지를 날짜순으로 조회한다."""
        prop = self.date_property
        pages = collect_paginated_api(
            self._client.data_sources.query,
            data_source_id=self._data_source_id,
            filter={
                "and": [
                    {"property": prop, "date": {"on_or_after": start_date.isoformat()}},
                    {"property": prop, "date": {"on_or_before": end_date.isoformat()}},
                    {"property": "Calendar Created", "checkbox": {"equals": False}},
                ]
            },
            sorts=[{"property": prop, "direction": "ascending"}],
        )
        logger.info("Found %d records without calendar events", len(pages), extra={"source": self.source})
        return pages

    def mark_calendar_created(self, page_id: str) -> None:
        self._client.pages.update(
            page_id=page_id,
            properties={"Calendar Created": {"checkbox": True}},
        )


class NotionActivityStore(NotionRecordStore):
    """GitHub 활동용 Notion 데이터 소스 어댑터 (Unique ID 기준 중복 판정)."""

    def __init__(self, config: NotionConfig, *, client: Client | None = None) -> None:
        super().__init__(config, id_property="Unique ID", source="github", client=client)

    def create_activity(self, activity: Activity) -> StoreResult:
        return self.create_page(activity.unique_id, activity_to_properties(activity), label=activity.name)

    def query_unsynced(self, start_date: date, end_date: date) -> list[StoredActivity]:
        return [page_to_stored_activity(page) for page in self.query_unsynced_pages(start_date, end_date)]
