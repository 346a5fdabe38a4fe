"""Withings 체성분 측정 테스트."""

from __future__ import annotations

import os
import re
from datetime import UTC, date, datetime
from pathlib import Path

import httpx
import pytest
from dotenv import dotenv_values
from pytest_httpx import HTTPXMock

from activity_sync.config import WithingsConfig
from activity_sync.dates import day_window
from activity_sync.vendor_http import VendorApiError
from activity_sync.withings import (
    MEASURE_TYPES,
    BodyMeasurement,
    MeasureGroup,
    WithingsClient,
    measurement_to_properties,
    page_to_entry,
    parse_measure_group,
)

BASE = "https://wbsapi.withings.net"
MEASURE_URL = re.compile(rf"{re.escape(BASE)}/measure\?action=getmeas.*")
TOKEN_URL = f"{BASE}/v2/oauth2"

# 2025-03-10 14:00 UTC = 09:00 EST
MEASURED_AT = 1741615200


def _group(**overrides) -> dict:
    values = {
        "grpid": 555,
        "date": MEASURED_AT,
        "model": "Body+",
        "measures": [
            {"value": 81650, "unit": -3, "type": 1},
            {"value": 2250, "unit": -2, "type": 6},
            {"value": 18370, "unit": -3, "type": 8},
            {"value": 70, "unit": 0, "type": 11},
        ],
    }
    values.update(overrides)
    return values


def _form(request: httpx.Request) -> dict[str, str]:
    return dict(httpx.QueryParams(request.content.decode()))


@pytest.fixture(autouse=True)
def _restore_token_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """토큰 갱신이 os.environ에 쓴 값을 테스트 후 되돌린다."""
    monkeypatch.setenv("WITHINGS_ACCESS_TOKEN", "")
    monkeypatch.setenv("WITHINGS_REFRESH_TOKEN", "")


@pytest.fixture()
def config() -> WithingsConfig:
    return WithingsConfig(
        client_id="client-1",
        client_secret="secret-1",
        access_token="access-1",
        refresh_token="refresh-1",
        max_retries=0,
    )


@pytest.fixture()
def env_file(tmp_path: Path) -> Path:
    path = tmp_path / ".env"
    path.write_text("WITHINGS_ACCESS_TOKEN=access-1\nWITHINGS_REFRESH_TOKEN=refresh-1\nOTHER=keep\n", encoding="utf-8")
    return path


class TestParseMeasureGroup:
    def test_units_and_conversion(self) -> None:
        measurement = parse_measure_group(MeasureGroup.model_validate(_group()))

        assert measurement.id == 555
        assert measurement.measured_at == datetime(2025, 3, 10, 14, tzinfo=UTC)
        assert measurement.device_model == "Body+"
        assert measurement.weight_kg == pytest.approx(81.65)
        assert measurement.weight == pytest.approx(180.007, abs=0.001)
        assert measurement.fat_percentage == pytest.approx(22.5)
        assert measurement.fat_mass == pytest.approx(40.499, abs=0.001)
        assert measurement.muscle_mass is None

    def test_missing_model(self) -> None:
        group = MeasureGroup.model_validate(_group(model=None))
        assert group.model == "Unknown"


class TestMeasurementToProperties:
    def test_properties(self, tz) -> None:
        measurement = parse_measure_group(MeasureGroup.model_validate(_group()))
        props = measurement_to_properties(measurement, tz)

        assert props["Name"]["title"][0]["text"]["content"] == "Body Weight - Monday, March 10, 2025"
        assert props["Date"] == {"date": {"start": "2025-03-10"}}
        assert props["Weight"] == {"number": 180.0}
        assert props["Fat Percentage"] == {"number": 22.5}
        assert props["Fat Mass"] == {"number": 40.5}
        assert props["Muscle Mass"] == {"number": None}
        assert props["Measurement Time"]["rich_text"][0]["text"]["content"] == "2025-03-10T09:00:00-05:00"
        assert props["Measurement ID"]["rich_text"][0]["text"]["content"] == "555"

    def test_zero_is_empty(self, tz) -> None:
        measurement = BodyMeasurement(id=1, measured_at=datetime(2025, 3, 10, 14, tzinfo=UTC), weight=0.0)
        assert measurement_to_properties(measurement, tz)["Weight"] == {"number": None}


class TestWithingsClient:
    def test_not_configured(self, tz) -> None:
        with pytest.raises(RuntimeError, match="WITHINGS_CLIENT_ID"):
            WithingsClient(WithingsConfig(), tz)

    def test_authorization_url(self, config: WithingsConfig, tz) -> None:
        with WithingsClient(config, tz) as client:
            url = httpx.URL(client.authorization_url("abc"))

        assert url.host == "account.withings.com"
        assert url.params["client_id"] == "client-1"
        assert url.params["redirect_uri"] == "http://localhost:3000/callback"
        assert url.params["scope"] == "user.metrics"
        assert url.params["state"] == "abc"
        assert url.params["response_type"] == "code"

    def test_fetch_records(self, config: WithingsConfig, httpx_mock: HTTPXMock, tz) -> None:
        httpx_mock.add_response(url=MEASURE_URL, json={"status": 0, "body": {"measuregrps": [_group()], "more": 0}})
        window = day_window(date(2025, 3, 10), tz)

        with WithingsClient(config, tz) as client:
            records = client.fetch_records(window)

        assert len(records) == 1
        assert records[0].record_id == "555"
        assert records[0].date == "2025-03-10"
        assert records[0].label == "Body Weight (2025-03-10)"
        request = httpx_mock.get_requests()[0]
        assert request.headers["Authorization"] == "Bearer access-1"
        assert request.url.params["meastypes"] == MEASURE_TYPES
        assert request.url.params["startdate"] == str(int(window.start_utc.timestamp()))
        assert request.url.params["enddate"] == str(int(window.end_utc.timestamp()))

    def test_more_follows_offset(self, config: WithingsConfig, httpx_mock: HTTPXMock, tz) -> None:
        httpx_mock.add_response(
            url=MEASURE_URL, json={"status": 0, "body": {"measuregrps": [_group()], "more": 1, "offset": 10}}
        )
        httpx_mock.add_response(
            url=MEASURE_URL, json={"status": 0, "body": {"measuregrps": [_group(grpid=556)], "more": 0}}
        )

        with WithingsClient(config, tz) as client:
            groups = client.get_measure_groups(datetime(2025, 3, 10, tzinfo=UTC), datetime(2025, 3, 11, tzinfo=UTC))

        assert [g.grpid for g in groups] == [555, 556]
        assert httpx_mock.get_requests()[1].url.params["offset"] == "10"

    def test_expired_token_refreshed_and_saved(
        self, config: WithingsConfig, env_file: Path, httpx_mock: HTTPXMock, tz
    ) -> None:
        httpx_mock.add_response(url=MEASURE_URL, json={"status": 2555, "error": "invalid token"})
        httpx_mock.add_response(
            url=TOKEN_URL,
            method="POST",
            json={"status": 0, "body": {"access_token": "access-2", "refresh_token": "refresh-2"}},
        )
        httpx_mock.add_response(url=MEASURE_URL, json={"status": 0, "body": {"measuregrps": []}})

        with WithingsClient(config, tz, env_file=env_file) as client:
            assert client.get_measure_groups(datetime(2025, 3, 10, tzinfo=UTC), datetime(2025, 3, 11, tzinfo=UTC)) == []
            assert client.tokens == {"WITHINGS_ACCESS_TOKEN": "access-2", "WITHINGS_REFRESH_TOKEN": "refresh-2"}

        _, refresh, retry = httpx_mock.get_requests()
        assert _form(refresh) == {
            "action": "requesttoken",
            "client_id": "client-1",
            "client_secret": "secret-1",
            "grant_type": "refresh_token",
            "refresh_token": "refresh-1",
        }
        assert retry.headers["Authorization"] == "Bearer access-2"
        saved = dotenv_values(env_file)
        assert saved["WITHINGS_ACCESS_TOKEN"] == "access-2"
        assert saved["WITHINGS_REFRESH_TOKEN"] == "refresh-2"
        assert saved["OTHER"] == "keep"
        assert os.environ["WITHINGS_ACCESS_TOKEN"] == "access-2"

    def test_refresh_without_env_file(self, config: WithingsConfig, tmp_path: Path, httpx_mock: HTTPXMock, tz) -> None:
        httpx_mock.add_response(url=MEASURE_URL, json={"status": 401})
        httpx_mock.add_response(
            url=TOKEN_URL, method="POST", json={"status": 0, "body": {"access_token": "access-2"}}
        )
        httpx_mock.add_response(url=MEASURE_URL, json={"status": 0, "body": {}})

        with WithingsClient(config, tz, env_file=tmp_path / "missing.env") as client:
            client.get_measure_groups(datetime(2025, 3, 10, tzinfo=UTC), datetime(2025, 3, 11, tzinfo=UTC))
            assert client.tokens["WITHINGS_REFRESH_TOKEN"] == "refresh-1"

        assert not (tmp_path / "missing.env").exists()
        assert os.environ["WITHINGS_ACCESS_TOKEN"] == "access-2"

    def test_refresh_failure_raises(self, config: WithingsConfig, httpx_mock: HTTPXMock, tz) -> None:
        httpx_mock.add_response(url=MEASURE_URL, json={"status": 2555, "error": "invalid token"})
        httpx_mock.add_response(url=TOKEN_URL, method="POST", json={"status": 503, "error": "invalid refresh"})

        with WithingsClient(config, tz) as client:
            with pytest.raises(VendorApiError, match="withings API error 2555"):
                client.get_measure_groups(datetime(2025, 3, 10, tzinfo=UTC), datetime(2025, 3, 11, tzinfo=UTC))

    def test_other_status_raises(self, config: WithingsConfig, httpx_mock: HTTPXMock, tz) -> None:
        httpx_mock.add_response(url=MEASURE_URL, json={"status": 503, "error": "invalid params"})

        with WithingsClient(config, tz) as client:
            assert client.test_connection() is False

    def test_exchange_code(self, config: WithingsConfig, env_file: Path, httpx_mock: HTTPXMock, tz) -> None:
        httpx_mock.add_response(
            url=TOKEN_URL,
            method="POST",
            json={"status": 0, "body": {"access_token": "access-9", "refresh_token": "refresh-9"}},
        )

        with WithingsClient(config, tz, env_file=env_file) as client:
            client.exchange_code("code-1")

        form = _form(httpx_mock.get_requests()[0])
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "code-1"
        assert form["redirect_uri"] == "http://localhost:3000/callback"
        assert dotenv_values(env_file)["WITHINGS_REFRESH_TOKEN"] == "refresh-9"

    def test_token_response_without_access_token(self, config: WithingsConfig, httpx_mock: HTTPXMock, tz) -> None:
        httpx_mock.add_response(url=TOKEN_URL, method="POST", json={"status": 0, "body": {}})

        with WithingsClient(config, tz) as client:
            with pytest.raises(VendorApiError, match="no access_token"):
                client.exchange_code("code-1")


class TestPageToEntry:
    def _page(self, **overrides) -> dict:
        props = {
            "Date": {"date": {"start": "2025-03-10"}},
            "Weight": {"number": 180.0},
            "Measurement Time": {"rich_text": [{"plain_text": "2025-03-10T09:00:00-05:00"}]},
        }
        props.update(overrides)
        return {"id": "page-5", "properties": props}

    def test_all_day_event(self) -> None:
        entry = page_to_entry(self._page())

        assert entry.calendar == "body_weight"
        assert entry.event["summary"] == "Weight: 180 lbs"
        assert entry.event["start"] == {"date": "2025-03-10"}
        assert entry.event["end"] == {"date": "2025-03-11"}
        assert "⏰ Time: 2025-03-10T09:00:00-05:00" in entry.event["description"]

    def test_missing_weight(self) -> None:
        with pytest.raises(ValueError, match="no weight"):
            page_to_entry(self._page(Weight={"number": None}))
