"""Pytest configuration and shared fixtures for tests."""

import asyncio
from datetime import date

import httpx
import pytest
from fastapi.testclient import TestClient

from oura_proxy.main import app, get_resolver
from oura_proxy.oura_client import OuraClient
from oura_proxy.resolver import MetricResolver

REQUESTED_DATE = date(2025, 11, 20)
PREVIOUS_DATE = date(2025, 11, 19)


def run_async(coro):
    """Helper to run async code in tests."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class FakeOura:
    """Stub of the Oura usercollection API, keyed by (collection, day).

    Days without records answer 200 with an empty data list, like Oura does.
    """

    def __init__(self):
        self.records: dict[tuple[str, str], list[dict]] = {}
        self.statuses: dict[tuple[str, str], int] = {}
        self.timeouts: set[str] = set()
        self.unparseable: set[str] = set()
        self.requests: list[httpx.Request] = []

    def add(self, collection: str, day: date, *records: dict) -> None:
        self.records.setdefault((collection, str(day)), []).extend(records)

    def set_status(self, collection: str, day: date, status_code: int) -> None:
        self.statuses[(collection, str(day))] = status_code

    @property
    def calls(self) -> list[tuple[str, str]]:
        """(collection, day) for every request received, in order."""
        return [self._key(request) for request in self.requests]

    @staticmethod
    def _key(request: httpx.Request) -> tuple[str, str]:
        collection = request.url.path.rsplit("/", 1)[-1]
        params = request.url.params
        day = params.get("start_date") or params.get("start_datetime", "")[:10]
        return collection, day

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = self._key(request)
        collection, _ = key

        if collection in self.timeouts:
            raise httpx.ReadTimeout("timed out", request=request)
        if key in self.statuses:
            return httpx.Response(self.statuses[key], json={"detail": "error"})
        if collection in self.unparseable:
            return httpx.Response(200, text="<html>not json</html>")
        return httpx.Response(200, json={"data": self.records.get(key, []), "next_token": None})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_oura() -> FakeOura:
    return FakeOura()


@pytest.fixture
def oura_client(fake_oura: FakeOura) -> OuraClient:
    return OuraClient(transport=fake_oura.transport)


@pytest.fixture
def resolver(oura_client: OuraClient) -> MetricResolver:
    return MetricResolver(oura_client)


@pytest.fixture
def api_client(resolver: MetricResolver):
    """TestClient whose resolver talks to the fake Oura API."""
    app.dependency_overrides[get_resolver] = lambda: resolver
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def daily_sleep(day: date, score=82, total_sleep=76, **extra) -> dict:
    return {"id": f"ds-{day}", "day": str(day), "score": score, "contributors": {"total_sleep": total_sleep}, **extra}


def daily_readiness(day: date, score=79, previous_day_activity=88, **extra) -> dict:
    return {
        "id": f"dr-{day}",
        "day": str(day),
        "score": score,
        "contributors": {"previous_day_activity": previous_day_activity},
        **extra,
    }


def daily_activity(day: date, steps=8421, active_calories=412, **extra) -> dict:
    return {"id": f"da-{day}", "day": str(day), "steps": steps, "active_calories": active_calories, **extra}


def sleep_session(day: date, total_sleep_duration=27000, type="long_sleep", **extra) -> dict:
    return {"id": f"s-{day}-{type}", "day": str(day), "type": type, "total_sleep_duration": total_sleep_duration, **extra}


def hr_sample(bpm, source: str, timestamp: str = "2025-11-19T03:00:00+00:00") -> dict:
    return {"bpm": bpm, "source": source, "timestamp": timestamp}


@pytest.fixture
def full_day(fake_oura: FakeOura):
    """Populate every family on both REQUESTED_DATE and PREVIOUS_DATE with distinguishable values."""
    for day, offset in ((PREVIOUS_DATE, 0), (REQUESTED_DATE, 10)):
        fake_oura.add("daily_sleep", day, daily_sleep(day, score=70 + offset))
        fake_oura.add("daily_readiness", day, daily_readiness(day, score=71 + offset))
        fake_oura.add("daily_activity", day, daily_activity(day, steps=5000 + offset))
        fake_oura.add("sleep", day, sleep_session(day, total_sleep_duration=25200 + offset * 360))
        fake_oura.add("heartrate", day, hr_sample(50 + offset, "sleep"), hr_sample(45, "awake"))
    return fake_oura
