from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Optional, Sequence
import asyncio
import logging
import math

import httpx

from oura_proxy.config import OURA_API_BASE, OURA_REQUEST_TIMEOUT, OURA_SANDBOX_BASE

logger = logging.getLogger(__name__)


class DataSource(str, Enum):
    """Data source options for Oura API."""
    USER = "user"  # User's actual data
    SANDBOX = "sandbox"  # Oura sandbox API, accepts any token


class MetricFamily(str, Enum):
    """Oura metric families, valued by their usercollection path."""
    SLEEP_SCORE = "daily_sleep"
    READINESS_SCORE = "daily_readiness"
    ACTIVITY = "daily_activity"
    SLEEP_SESSION = "sleep"
    HEART_RATE = "heartrate"


SCORE_FAMILIES = (MetricFamily.SLEEP_SCORE, MetricFamily.READINESS_SCORE)

# Known field names per logical field, in precedence order. Oura has renamed
# fields across API versions; the first numeric match wins. Nested fields are
# given as key paths.
FIELD_VARIANTS: dict[str, tuple[tuple[str, ...], ...]] = {
    "score": (("score",),),
    "total_sleep_contributor": (("contributors", "total_sleep"),),
    "previous_day_activity_contributor": (("contributors", "previous_day_activity"),),
    "session_duration": (("total_sleep_duration",),),
    "daily_sleep_duration": (("total_sleep_duration",), ("sleep_duration",)),
    "steps": (("steps",), ("step_count",)),
    "active_calories": (("active_calories",), ("cal_active",)),
    "bpm": (("bpm",), ("heart_rate",)),
}


def as_number(value: Any) -> Optional[float]:
    """Return value if it is a finite int/float, else None. Never coerces."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


def _lookup(record: dict, path: tuple[str, ...]) -> Any:
    current: Any = record
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_number(record: Optional[dict], logical_field: str) -> Optional[float]:
    """Read a logical field, trying each known field name in order."""
    if not isinstance(record, dict):
        return None
    for path in FIELD_VARIANTS[logical_field]:
        value = as_number(_lookup(record, path))
        if value is not None:
            return value
    return None


@dataclass
class DailySleepRecord:
    day: str
    score: Optional[float]
    total_sleep: Optional[float]
    sleep_duration: Optional[float]


@dataclass
class DailyReadinessRecord:
    day: str
    score: Optional[float]
    previous_day_activity: Optional[float]


@dataclass
class DailyActivityRecord:
    day: str
    steps: Optional[float]
    active_calories: Optional[float]


@dataclass
class SleepSessionRecord:
    day: str
    type: str
    total_sleep_duration: Optional[float]


@dataclass
class HeartRateSample:
    bpm: Optional[float]
    source: str
    timestamp: str


def _parse_daily_sleep(data: dict) -> DailySleepRecord:
    return DailySleepRecord(
        day=data.get("day", ""),
        score=first_number(data, "score"),
        total_sleep=first_number(data, "total_sleep_contributor"),
        sleep_duration=first_number(data, "daily_sleep_duration"),
    )


def _parse_daily_readiness(data: dict) -> DailyReadinessRecord:
    return DailyReadinessRecord(
        day=data.get("day", ""),
        score=first_number(data, "score"),
        previous_day_activity=first_number(data, "previous_day_activity_contributor"),
    )


def _parse_daily_activity(data: dict) -> DailyActivityRecord:
    return DailyActivityRecord(
        day=data.get("day", ""),
        steps=first_number(data, "steps"),
        active_calories=first_number(data, "active_calories"),
    )


def _parse_sleep_session(data: dict) -> SleepSessionRecord:
    return SleepSessionRecord(
        day=data.get("day", ""),
        type=data.get("type", ""),
        total_sleep_duration=first_number(data, "session_duration"),
    )


def _parse_heartrate_sample(data: dict) -> HeartRateSample:
    return HeartRateSample(
        bpm=first_number(data, "bpm"),
        source=data.get("source", ""),
        timestamp=data.get("timestamp", ""),
    )


@dataclass(frozen=True)
class MetricQuery:
    """One vendor call: a metric family for a single calendar day."""
    family: MetricFamily
    day: date


@dataclass
class FamilyResult:
    """Outcome of one MetricQuery.

    `raw` holds the vendor `data` records, or None when the family had nothing
    for the day. `error` is only set for transport failures and unparseable
    success bodies; a 404 or other non-success status is plain "no data".
    """
    query: MetricQuery
    raw: Optional[list[dict]] = None
    error: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def present(self) -> bool:
        return bool(self.records())

    @property
    def failed(self) -> bool:
        return self.error is not None

    def records(self) -> list[dict]:
        return [item for item in (self.raw or []) if isinstance(item, dict)]


def first_daily_sleep(result: Optional[FamilyResult]) -> Optional[DailySleepRecord]:
    records = result.records() if result else []
    return _parse_daily_sleep(records[0]) if records else None


def first_daily_readiness(result: Optional[FamilyResult]) -> Optional[DailyReadinessRecord]:
    records = result.records() if result else []
    return _parse_daily_readiness(records[0]) if records else None


def first_daily_activity(result: Optional[FamilyResult]) -> Optional[DailyActivityRecord]:
    records = result.records() if result else []
    return _parse_daily_activity(records[0]) if records else None


def sleep_sessions(result: Optional[FamilyResult]) -> list[SleepSessionRecord]:
    return [_parse_sleep_session(item) for item in (result.records() if result else [])]


def heartrate_samples(result: Optional[FamilyResult]) -> list[HeartRateSample]:
    return [_parse_heartrate_sample(item) for item in (result.records() if result else [])]


class OuraClient:
    """
    Oura API client for single-day, per-family reads.

    The client holds no credentials: the caller's bearer token is passed
    through on every call. Failures are reported per family on the returned
    FamilyResult instead of raised, so one unreachable family never takes the
    others down with it.
    """

    def __init__(
        self,
        data_source: DataSource = DataSource.USER,
        timeout: float = OURA_REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            data_source: Whether to talk to the real API or the Oura sandbox
            timeout: Per-request transport timeout in seconds
            transport: Optional httpx transport (used by tests to stub Oura)
        """
        self._data_source = data_source
        self._timeout = timeout
        self._transport = transport

    @property
    def data_source(self) -> DataSource:
        """Get the configured data source."""
        return self._data_source

    def _get_base_url(self) -> str:
        """Get the API base URL based on data source."""
        if self._data_source == DataSource.USER:
            return OURA_API_BASE
        return OURA_SANDBOX_BASE

    def _new_http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._get_base_url(),
            timeout=self._timeout,
            transport=self._transport,
        )

    @staticmethod
    def _params_for(query: MetricQuery) -> dict[str, str]:
        # The heartrate collection is addressed by datetime, everything else by day
        if query.family == MetricFamily.HEART_RATE:
            return {
                "start_datetime": f"{query.day}T00:00:00",
                "end_datetime": f"{query.day}T23:59:59",
            }
        return {"start_date": str(query.day), "end_date": str(query.day)}

    async def fetch_family(
        self,
        client: httpx.AsyncClient,
        query: MetricQuery,
        token: str,
    ) -> FamilyResult:
        """
        Fetch one metric family for one day.

        Args:
            client: Open httpx client shared by the current fan-out
            query: Family and day to fetch
            token: Caller's Oura bearer token

        Returns:
            FamilyResult, never raises for HTTP or transport errors
        """
        url = f"/usercollection/{query.family.value}"
        headers = {"Authorization": f"Bearer {token}"}

        try:
            response = await client.get(url, params=self._params_for(query), headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Oura {query.family.value} request for {query.day} failed: {e!r}")
            return FamilyResult(query=query, error=f"{type(e).__name__}: {e}")

        if response.status_code == 404:
            logger.debug(f"Oura {query.family.value} has no data for {query.day}")
            return FamilyResult(query=query, status_code=404)

        if not response.is_success:
            logger.warning(
                f"Oura {query.family.value} API error for {query.day}: "
                f"{response.status_code} {response.text[:200]}"
            )
            return FamilyResult(query=query, status_code=response.status_code)

        try:
            json_data = response.json()
        except ValueError as e:
            logger.warning(f"Oura {query.family.value} returned an unparseable body for {query.day}: {e}")
            return FamilyResult(query=query, error="unparseable response body", status_code=response.status_code)

        data = json_data.get("data") if isinstance(json_data, dict) else None
        if not isinstance(data, list):
            logger.warning(f"Oura {query.family.value} response for {query.day} has no data list")
            return FamilyResult(query=query, error="response body has no data list", status_code=response.status_code)

        return FamilyResult(query=query, raw=data or None, status_code=response.status_code)

    async def fetch_all(self, queries: Sequence[MetricQuery], token: str) -> dict[MetricFamily, FamilyResult]:
        """
        Fetch several families concurrently and wait for all of them.

        Returns:
            Mapping of family to its FamilyResult, one entry per query
        """
        async with self._new_http_client() as client:
            results = await asyncio.gather(
                *(self.fetch_family(client, query, token) for query in queries)
            )
        return {result.query.family: result for result in results}
