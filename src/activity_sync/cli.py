"""click CLI 엔트리포인트.

activity-sync collect --date yesterday
activity-sync collect --source strava --week 10 --week 11 --year 2025
activity-sync collect-day yesterday
activity-sync sync-calendar --week 10 --project-type work --dry-run
activity-sync sync-calendar --source all --date yesterday
activity-sync setup-oauth --account personal
activity-sync withings-auth
activity-sync check
activity-sync weeks --year 2025
"""

from __future__ import annotations

import functools
import logging
import sys
from datetime import date, datetime, tzinfo
from pathlib import Path

import click
import orjson

from activity_sync import __version__
from activity_sync.aggregator import CommitAggregator
from activity_sync.calendar_mirror import MirrorSummary, mirror_activities, mirror_records
from activity_sync.collector import CollectSummary, RecordCollectSummary, collect_records, collect_window
from activity_sync.config import AppConfig, dotenv_path, load_config
from activity_sync.dates import (
    DateWindow,
    day_window,
    local_timezone,
    parse_date_input,
    parse_week_numbers,
    week_options,
    week_window,
)
from activity_sync.github_api import GitHubApiClient, GitHubApiError
from activity_sync.google_calendar import GoogleCalendarClient, GoogleCalendarError, obtain_refresh_token
from activity_sync.logging_config import setup_logging
from activity_sync.notion_store import NotionActivityStore
from activity_sync.vendor_http import VendorApiError
from activity_sync.vendors import VENDORS, VendorSpec, calendar_ids
from activity_sync.withings import WithingsClient

logger = logging.getLogger(__name__)

_PROJECT_TYPE_CHOICES = {"personal": "Personal", "work": "Work", "all": None}
_SOURCES = ["github", *VENDORS]


@click.group()
@click.version_option(version=__version__, prog_name="activity-sync")
def main() -> None:
    """GitHub 커밋 활동과 Oura, Steam, Strava, Withings 기록을 Notion과 Google Calendar로 동기화합니다."""


# ── 날짜 범위 결정 ──────────────────────────────────────


def _resolve_windows(
    single_date: str | None,
    weeks: tuple[int, ...],
    year: int | None,
    tz: tzinfo,
) -> tuple[list[DateWindow], bool]:
    """옵션 또는 대화형 입력으로 대상 window 목록을 만든다.

    Returns:
        (windows, prompted) 튜플. prompted는 대화형 입력 여부
    """
    if single_date and weeks:
        raise click.UsageError("--date와 --week는 동시에 사용할 수 없습니다")

    today = datetime.now(tz).date()
    year = year or today.year

    if single_date:
        try:
            return [day_window(parse_date_input(single_date, today), tz)], False
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--date") from exc

    if weeks:
        try:
            return [week_window(year, week, tz) for week in weeks], False
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--week") from exc

    return _prompt_windows(year, today, tz), True


def _prompt_windows(year: int, today: date, tz: tzinfo) -> list[DateWindow]:
    click.echo("📅 Choose your selection method:")
    click.echo("  1. Enter a specific date (DD-MM-YY, YYYY-MM-DD, today, yesterday, tomorrow)")
    click.echo("  2. Select by week number")
    option = click.prompt("Choose option", type=click.Choice(["1", "2"]))

    if option == "1":
        while True:
            text = click.prompt("Enter date")
            try:
                return [day_window(parse_date_input(text, today), tz)]
            except ValueError as exc:
                click.echo(f"❌ {exc}", err=True)

    options = week_options(year)
    click.echo(f"\n📅 Available weeks ({year}):")
    for label in options[:5]:
        click.echo(f"  {label}")
    click.echo("  ...")
    click.echo(f"  {options[-1]}\n")
    while True:
        text = click.prompt("Which week(s)? (e.g. '1, 10, 11')")
        try:
            return [week_window(year, week, tz) for week in parse_week_numbers(text)]
        except ValueError as exc:
            click.echo(f"❌ {exc}", err=True)


def _echo_window(window: DateWindow) -> None:
    click.echo(f"🔍 {window.label}: {window.start_date.isoformat()} ~ {window.end_date.isoformat()}")
    click.echo(f"   UTC search range: {window.start_utc.isoformat()} to {window.end_utc.isoformat()}")



def _config_option(func):
    return click.option(
        "--config",
        "config_path",
        default=None,
        type=click.Path(exists=True, path_type=Path),
        help="설정 파일 경로 (기본: config.yaml)",
    )(func)


# ── collect ────────────────────────────────────────────


def _collect_github(
    config: AppConfig,
    tz: tzinfo,
    windows: list[DateWindow],
    *,
    dry_run: bool,
) -> list[CollectSummary]:
    try:
        github = GitHubApiClient(config.github)
        store = None if dry_run else NotionActivityStore(config.notion)
    except RuntimeError as exc:
        raise click.ClickException(str(exc)) from exc

    aggregator = CommitAggregator(
        github,
        tz,
        work_repos=config.github.work_repos,
        work_owners=config.github.work_owners,
    )

    summaries: list[CollectSummary] = []
    with github:
        for window in windows:
            click.echo(f"\n🔄 Collecting {window.label}...")
            try:
                summary = collect_window(aggregator, store, window, dry_run=dry_run)
            except GitHubApiError as exc:
                click.echo(f"❌ {window.label}: {exc}", err=True)
                summary = CollectSummary(label=window.label, failed=1)
            else:
                _echo_collect_summary(summary, dry_run=dry_run)
            summaries.append(summary)
    return summaries


def _collect_vendor(
    spec: VendorSpec,
    config: AppConfig,
    tz: tzinfo,
    windows: list[DateWindow],
    *,
    dry_run: bool,
    env_file: Path,
) -> list[RecordCollectSummary]:
    try:
        client = spec.client(config, tz, env_file)
        store = None if dry_run else spec.make_store(config)
    except RuntimeError as exc:
        raise click.ClickException(str(exc)) from exc

    summaries: list[RecordCollectSummary] = []
    with client:
        for window in windows:
            click.echo(f"\n🔄 Collecting {spec.description} for {window.label}...")
            try:
                summary = collect_records(client, store, window, dry_run=dry_run)
            except VendorApiError as exc:
                click.echo(f"❌ {window.label}: {exc}", err=True)
                summary = RecordCollectSummary(source=spec.name, label=window.label, failed=1)
            else:
                _echo_record_summary(summary, spec, dry_run=dry_run)
            summaries.append(summary)
    return summaries


@main.command()
@click.option(
    "--source",
    type=click.Choice(_SOURCES),
    default="github",
    help="수집할 소스 (기본: github)",
)
@click.option("--date", "single_date", default=None, help="수집 대상 날짜 (DD-MM-YY, YYYY-MM-DD, today, yesterday)")
@click.option("--week", "weeks", type=int, multiple=True, help="수집 대상 주차 (반복 지정 가능)")
@click.option("--year", type=int, default=None, help="주차 기준 연도 (기본: 올해)")
@click.option("--dry-run", is_flag=True, help="Notion 적재 없이 집계 결과만 출력")
@click.option(
    "--output-jsonl",
    default=None,
    type=click.Path(path_type=Path),
    help="집계된 레코드를 JSONL 파일로 출력",
)
@click.option("--yes", "-y", is_flag=True, help="확인 프롬프트 생략")
@_config_option
@click.option("--json-log/--no-json-log", default=False, help="JSON 형태 로그 출력 (기본: 텍스트)")
def collect(
    source: str,
    single_date: str | None,
    weeks: tuple[int, ...],
    year: int | None,
    dry_run: bool,
    output_jsonl: Path | None,
    yes: bool,
    config_path: Path | None,
    json_log: bool,
) -> None:
    """GitHub 커밋 활동 또는 벤더 기록을 조회해 Notion에 적재합니다."""
    setup_logging(json_format=json_log)

    config = load_config(config_path)
    tz = local_timezone(config.timezone)
    windows, prompted = _resolve_windows(single_date, weeks, year, tz)

    for window in windows:
        _echo_window(window)
    if prompted and not yes:
        what = "GitHub activity" if source == "github" else VENDORS[source].description
        click.confirm(f"Proceed with collecting {what} for this period?", abort=True)

    summaries: list[CollectSummary] | list[RecordCollectSummary]
    if source == "github":
        summaries = _collect_github(config, tz, windows, dry_run=dry_run)
    else:
        summaries = _collect_vendor(
            VENDORS[source], config, tz, windows, dry_run=dry_run, env_file=dotenv_path(config_path)
        )

    if output_jsonl:
        _write_jsonl(output_jsonl, summaries)

    if any(s.failed for s in summaries):
        sys.exit(1)


def _echo_collect_summary(summary: CollectSummary, *, dry_run: bool) -> None:
    if not summary.activities:
        click.echo(f"📭 No GitHub activity found for {summary.label}")
        return

    for activity in summary.activities:
        click.echo(
            f"   {activity.date} {activity.name} | "
            f"{activity.commits_count} commits | {activity.total_changes} changes"
        )
    if dry_run:
        click.echo(f"🧪 Would save {len(summary.activities)} activities for {summary.label}")
    else:
        click.echo(
            f"📊 {summary.label}: {summary.saved} new records created, "
            f"{summary.skipped} duplicates skipped, {summary.failed} failed"
        )


def _echo_record_summary(summary: RecordCollectSummary, spec: VendorSpec, *, dry_run: bool) -> None:
    if not summary.records:
        click.echo(f"📭 No {spec.description} records found for {summary.label}")
        return

    for record in summary.records:
        click.echo(f"   {record.date} {record.label}")
    if dry_run:
        click.echo(f"🧪 Would save {len(summary.records)} records for {summary.label}")
    else:
        click.echo(
            f"📊 {summary.label}: {summary.saved} new records created, "
            f"{summary.skipped} duplicates skipped, {summary.failed} failed"
        )


def _write_jsonl(path: Path, summaries: list[CollectSummary] | list[RecordCollectSummary]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with open(path, "wb") as f:
        for summary in summaries:
            if isinstance(summary, CollectSummary):
                rows = [activity.model_dump(mode="json") for activity in summary.activities]
            else:
                rows = [{"source": r.source, "record_id": r.record_id, **r.payload} for r in summary.records]
            for row in rows:
                f.write(orjson.dumps(row))
                f.write(b"\n")
                count += 1
    click.echo(f"💾 Wrote {count} records to {path}")


@main.command("collect-day")
@click.argument("day", required=False, default="yesterday")
@click.option(
    "--source",
    "sources",
    type=click.Choice(_SOURCES),
    multiple=True,
    help="수집할 소스 (반복 지정 가능, 기본: 전체)",
)
@click.option("--dry-run", is_flag=True, help="Notion 적재 없이 조회 결과만 출력")
@_config_option
@click.option("--json-log/--no-json-log", default=False, help="JSON 형태 로그 출력 (기본: 텍스트)")
def collect_day(
    day: str,
    sources: tuple[str, ...],
    dry_run: bool,
    config_path: Path | None,
    json_log: bool,
) -> None:
    """하루치 기록을 모든 소스에서 차례로 수집합니다 (기본: 어제).

    설정되지 않은 소스는 건너뛰고, 하나라도 실패하면 종료 코드 1.
    """
    setup_logging(json_format=json_log)

    config = load_config(config_path)
    tz = local_timezone(config.timezone)
    try:
        window = day_window(parse_date_input(day, datetime.now(tz).date()), tz)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="DAY") from exc
    _echo_window(window)

    results: dict[str, str] = {}
    for source in sources or _SOURCES:
        try:
            if source == "github":
                summaries = _collect_github(config, tz, [window], dry_run=dry_run)
            else:
                summaries = _collect_vendor(
                    VENDORS[source], config, tz, [window], dry_run=dry_run, env_file=dotenv_path(config_path)
                )
        except click.ClickException as exc:
            click.echo(f"⏭️  {source}: {exc.message}")
            results[source] = "skipped"
            continue
        results[source] = "failed" if any(s.failed for s in summaries) else "ok"

    click.echo(f"\n📋 {window.label}")
    icons = {"ok": "✅", "failed": "❌", "skipped": "⏭️ "}
    for source, status in results.items():
        click.echo(f"{icons[status]} {source}: {status}")

    if "failed" in results.values():
        sys.exit(1)


# ── sync-calendar ──────────────────────────────────────


def _build_calendars(config: AppConfig, project_type: str | None) -> dict[str, GoogleCalendarClient]:
    """자격 증명이 설정된 계정만 캘린더 클라이언트로 만든다."""
    accounts = {"Personal": config.calendar.personal, "Work": config.calendar.work}
    calendars: dict[str, GoogleCalendarClient] = {}
    for name, account in accounts.items():
        if project_type is not None and name != project_type:
            continue
        try:
            calendars[name] = GoogleCalendarClient(account, timeout=config.calendar.request_timeout_sec)
        except RuntimeError as exc:
            logger.warning("%s calendar disabled: %s", name, exc)
    return calendars


def _echo_mirror_summary(window: DateWindow, summary: MirrorSummary, what: str) -> None:
    for title in summary.titles:
        click.echo(f"   {'🧪 Would create' if summary.dry_run else '✅ Created'}: {title}")
    action = "Would sync" if summary.dry_run else "Synced"
    click.echo(
        f"📅 {window.label}: {action} {summary.created} {what} "
        f"({summary.failed} failed, {summary.skipped_no_calendar} without calendar)"
    )


def _sync_github(
    config: AppConfig,
    windows: list[DateWindow],
    project_type: str | None,
    *,
    dry_run: bool,
) -> int:
    try:
        store = NotionActivityStore(config.notion)
    except RuntimeError as exc:
        raise click.ClickException(str(exc)) from exc

    calendars = {} if dry_run else _build_calendars(config, project_type)
    if not dry_run and not calendars:
        raise click.ClickException("설정된 Google Calendar 계정이 없습니다")

    failed = 0
    try:
        for window in windows:
            _echo_window(window)
            summary = mirror_activities(store, calendars, window, project_type=project_type, dry_run=dry_run)
            _echo_mirror_summary(window, summary, "activities")
            failed += summary.failed
    finally:
        for calendar in calendars.values():
            calendar.close()
    return failed


def _sync_vendor(
    spec: VendorSpec,
    config: AppConfig,
    tz: tzinfo,
    windows: list[DateWindow],
    *,
    dry_run: bool,
) -> int:
    try:
        store = spec.make_store(config)
        calendar = None
        if not dry_run:
            calendar = GoogleCalendarClient(config.calendar.personal, timeout=config.calendar.request_timeout_sec)
    except RuntimeError as exc:
        raise click.ClickException(f"{spec.name}: {exc}") from exc

    to_entry = functools.partial(spec.to_entry, tz=tz)
    ids = calendar_ids(config)
    failed = 0
    try:
        for window in windows:
            _echo_window(window)
            summary = mirror_records(store, calendar, ids, window, to_entry, dry_run=dry_run)
            _echo_mirror_summary(window, summary, f"{spec.description} records")
            failed += summary.failed
    finally:
        if calendar is not None:
            calendar.close()
    return failed


@main.command("sync-calendar")
@click.option(
    "--source",
    type=click.Choice([*_SOURCES, "all"]),
    default="github",
    help="반영할 소스 (기본: github, all이면 설정된 소스 전체)",
)
@click.option("--date", "single_date", default=None, help="대상 날짜 (DD-MM-YY, YYYY-MM-DD, today, yesterday)")
@click.option("--week", "weeks", type=int, multiple=True, help="대상 주차 (반복 지정 가능)")
@click.option("--year", type=int, default=None, help="주차 기준 연도 (기본: 올해)")
@click.option(
    "--project-type",
    type=click.Choice(list(_PROJECT_TYPE_CHOICES)),
    default="all",
    help="반영할 GitHub 프로젝트 유형 (기본: all)",
)
@click.option("--dry-run", is_flag=True, help="일정 생성 없이 대상만 출력")
@_config_option
@click.option("--json-log/--no-json-log", default=False, help="JSON 형태 로그 출력 (기본: 텍스트)")
def sync_calendar(
    source: str,
    single_date: str | None,
    weeks: tuple[int, ...],
    year: int | None,
    project_type: str,
    dry_run: bool,
    config_path: Path | None,
    json_log: bool,
) -> None:
    """Notion의 캘린더 미반영 레코드를 Google Calendar 일정으로 만듭니다."""
    setup_logging(json_format=json_log)

    config = load_config(config_path)
    tz = local_timezone(config.timezone)
    windows, _ = _resolve_windows(single_date, weeks, year, tz)

    failed = 0
    for name in _SOURCES if source == "all" else [source]:
        try:
            if name == "github":
                failed += _sync_github(config, windows, _PROJECT_TYPE_CHOICES[project_type], dry_run=dry_run)
            else:
                failed += _sync_vendor(VENDORS[name], config, tz, windows, dry_run=dry_run)
        except click.ClickException as exc:
            if source != "all":
                raise
            click.echo(f"⏭️  {name}: {exc.message}")

    if failed:
        sys.exit(1)


# ── OAuth 설정 ─────────────────────────────────────────


@main.command("setup-oauth")
@click.option(
    "--account",
    type=click.Choice(["personal", "work", "both"]),
    default="both",
    help="refresh token을 발급할 Google 계정 (기본: both)",
)
@click.option("--port", type=int, default=0, help="로컬 리다이렉트 포트 (기본: 임의)")
@_config_option
def setup_oauth(account: str, port: int, config_path: Path | None) -> None:
    """브라우저 동의로 Google Calendar refresh token을 발급받아 .env 항목을 출력합니다."""
    setup_logging(json_format=False)
    config = load_config(config_path)

    lines: list[str] = []
    for name in ["personal", "work"] if account == "both" else [account]:
        current = getattr(config.calendar, name)
        prefix = name.upper()
        click.echo(f"\n🔐 {name.title()} Google account")
        client_id = click.prompt("Client ID", default=current.client_id or None)
        client_secret = click.prompt("Client secret", default=current.client_secret or None, hide_input=True)
        try:
            refresh_token = obtain_refresh_token(client_id, client_secret, port=port)
        except GoogleCalendarError as exc:
            raise click.ClickException(str(exc)) from exc
        lines += [
            f"{prefix}_GOOGLE_CLIENT_ID={client_id}",
            f"{prefix}_GOOGLE_CLIENT_SECRET={client_secret}",
            f"{prefix}_GOOGLE_REFRESH_TOKEN={refresh_token}",
        ]

    click.echo("\n📋 Add these lines to your .env file:\n")
    for line in lines:
        click.echo(line)


@main.command("withings-auth")
@_config_option
def withings_auth(config_path: Path | None) -> None:
    """Withings 동의 화면의 code로 토큰을 발급받아 .env에 저장합니다."""
    setup_logging(json_format=False)
    config = load_config(config_path)
    env_file = dotenv_path(config_path)

    try:
        client = WithingsClient(config.withings, local_timezone(config.timezone), env_file=env_file)
    except RuntimeError as exc:
        raise click.ClickException(str(exc)) from exc

    with client:
        click.echo("🔗 Open this URL in your browser and approve access:")
        click.echo(client.authorization_url())
        code = click.prompt("Paste the 'code' parameter from the redirect URL").strip()
        try:
            client.exchange_code(code)
        except VendorApiError as exc:
            raise click.ClickException(str(exc)) from exc

        if env_file.exists():
            click.echo(f"✅ Withings tokens saved to {env_file}")
        else:
            click.echo("✅ Withings tokens issued. Add these lines to your .env file:\n")
            for key, value in client.tokens.items():
                click.echo(f"{key}={value}")


# ── check / weeks ──────────────────────────────────────


@main.command()
@_config_option
def check(config_path: Path | None) -> None:
    """GitHub, 벤더 API, Notion, Google Calendar 연결을 확인합니다.

    설정되지 않은 벤더는 건너뛴다.
    """
    setup_logging(json_format=False)
    config = load_config(config_path)
    tz = local_timezone(config.timezone)

    results: dict[str, bool] = {}
    try:
        with GitHubApiClient(config.github) as github:
            results["github"] = github.test_connection()
    except RuntimeError as exc:
        click.echo(f"❌ github: {exc}", err=True)
        results["github"] = False

    try:
        results["notion"] = NotionActivityStore(config.notion).test_connection()
    except RuntimeError as exc:
        click.echo(f"❌ notion: {exc}", err=True)
        results["notion"] = False

    env_file = dotenv_path(config_path)
    for name, spec in VENDORS.items():
        try:
            client = spec.client(config, tz, env_file)
        except RuntimeError as exc:
            click.echo(f"⏭️  {name}: not configured ({exc})")
            continue
        with client:
            results[name] = client.test_connection()
        try:
            results[f"notion:{name}"] = spec.make_store(config).test_connection()
        except RuntimeError as exc:
            click.echo(f"❌ notion:{name}: {exc}", err=True)
            results[f"notion:{name}"] = False

    for name, calendar in _build_calendars(config, None).items():
        with calendar:
            results[f"calendar:{name.lower()}"] = calendar.test_connection()

    for name, ok in results.items():
        click.echo(f"{'✅' if ok else '❌'} {name}")

    if not all(results.values()):
        click.echo("❌ Connection failed. Please check your .env file.", err=True)
        sys.exit(1)


@main.command()
@click.option("--year", type=int, default=None, help="연도 (기본: 올해)")
def weeks(year: int | None) -> None:
    """일요일 시작 주차 목록을 출력합니다."""
    for label in week_options(year or datetime.now().year):
        click.echo(label)
