"""Metric resolution: which Oura family to read for which day, and what to do when a day is empty."""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
import logging

from oura_proxy.errors import UpstreamUnavailableError
from oura_proxy.oura_client import (
    SCORE_FAMILIES,
    FamilyResult,
    HeartRateSample,
    MetricFamily,
    MetricQuery,
    OuraClient,
    SleepSessionRecord,
    first_daily_activity,
    first_daily_readiness,
    first_daily_sleep,
    heartrate_samples,
    sleep_sessions,
)

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    """Check-in flow the metrics are requested for."""
    SINGLE_DATE = "single-date"
    MORNING = "morning"
    EVENING = "evening"


class FallbackTrigger(str, Enum):
    """When the score families are retried on the adjacent date."""
    BOTH_ABSENT = "both_absent"  # sleep and readiness both missing
    EITHER_ABSENT = "either_absent"  # sleep or readiness missing
    NO_DAILY_DATA = "no_daily_data"  # sleep, readiness and activity all missing


# Day offset from the requested date for each family, per mode.
# Oura dates sleep/readiness scores to the morning they are computed, while
# raw sleep sessions and heart rate belong to the night that just ended.
# Activity accumulates through the requested day in every mode.
DATE_OFFSETS: dict[Mode, dict[MetricFamily, int]] = {
    Mode.SINGLE_DATE: {
        MetricFamily.SLEEP_SCORE: 0,
        MetricFamily.READINESS_SCORE: 0,
        MetricFamily.SLEEP_SESSION: 0,
        MetricFamily.HEART_RATE: 0,
        MetricFamily.ACTIVITY: 0,
    },
    Mode.MORNING: {
        MetricFamily.SLEEP_SCORE: -1,
        MetricFamily.READINESS_SCORE: -1,
        MetricFamily.SLEEP_SESSION: -1,
        MetricFamily.HEART_RATE: -1,
        MetricFamily.ACTIVITY: 0,
    },
    Mode.EVENING: {
        MetricFamily.SLEEP_SCORE: 0,
        MetricFamily.READINESS_SCORE: 0,
        MetricFamily.SLEEP_SESSION: -1,
        MetricFamily.HEART_RATE: -1,
        MetricFamily.ACTIVITY: 0,
    },
}

# Day offset of the single fallback attempt for the score families: the one
# adjacent date the primary pass did not try.
FALLBACK_OFFSETS: dict[Mode, int] = {
    Mode.SINGLE_DATE: -1,
    Mode.MORNING: 0,
    Mode.EVENING: -1,
}

RESTING_HR_SOURCES = frozenset({"sleep", "rest", "session"})

# Sleep session type that represents the main overnight sleep
NIGHT_SLEEP_SESSION_TYPE = "long_sleep"


@dataclass(frozen=True)
class ResolutionPlan:
    """Family -> date mappings for the primary pass and the fallback pass."""
    mode: Mode
    requested_date: date
    primary: dict[MetricFamily, date]
    fallback: dict[MetricFamily, date]

    @property
    def attempts(self) -> list[dict[MetricFamily, date]]:
        return [self.primary, self.fallback]

    @property
    def score_date(self) -> date:
        return self.primary[MetricFamily.SLEEP_SCORE]

    @property
    def fallback_date(self) -> date:
        return self.fallback[MetricFamily.SLEEP_SCORE]

    @property
    def activity_date(self) -> date:
        return self.primary[MetricFamily.ACTIVITY]

    def primary_queries(self) -> list[MetricQuery]:
        return [MetricQuery(family, day) for family, day in self.primary.items()]

    def fallback_queries(self) -> list[MetricQuery]:
        return [MetricQuery(family, day) for family, day in self.fallback.items()]


def resolution_policy(mode: Mode, requested_date: date) -> ResolutionPlan:
    """Build the ordered query plan for a mode and requested date."""
    offsets = DATE_OFFSETS[mode]
    primary = {
        family: requested_date + timedelta(days=offset)
        for family, offset in offsets.items()
    }
    fallback_day = requested_date + timedelta(days=FALLBACK_OFFSETS[mode])
    fallback = {family: fallback_day for family in SCORE_FAMILIES}
    return ResolutionPlan(mode=mode, requested_date=requested_date, primary=primary, fallback=fallback)


@dataclass
class ResolvedMetrics:
    """Flat, null-safe metric bundle for one check-in."""
    sleep_score: Optional[float]
    total_sleep: Optional[float]
    readiness_score: Optional[float]
    previous_day_activity: Optional[float]
    sleep_duration: Optional[float]
    sleep_hours: Optional[float]
    steps: Optional[float]
    active_calories: Optional[float]
    lowest_resting_hr: Optional[float]
    data_date: date
    activity_date: date
    note: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        """True when Oura had nothing recorded yet for any metric."""
        return all(
            value is None
            for value in (
                self.sleep_score,
                self.total_sleep,
                self.readiness_score,
                self.previous_day_activity,
                self.sleep_duration,
                self.steps,
                self.active_calories,
                self.lowest_resting_hr,
            )
        )


def seconds_to_hours(seconds: Optional[float]) -> Optional[float]:
    """Convert a duration in seconds to hours, rounded half-up to one decimal."""
    if seconds is None:
        return None
    hours = Decimal(str(seconds)) / 3600
    return float(hours.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def lowest_resting_heart_rate(samples: list[HeartRateSample]) -> Optional[float]:
    """Minimum bpm among sleep/rest/session samples, None if none qualifies."""
    resting = [
        sample.bpm
        for sample in samples
        if sample.source in RESTING_HR_SOURCES and sample.bpm is not None
    ]
    return min(resting) if resting else None


def _session_duration(sessions: list[SleepSessionRecord]) -> Optional[float]:
    """Duration of the overnight session, else of the first session that has one."""
    timed = [session for session in sessions if session.total_sleep_duration is not None]
    for session in timed:
        if session.type == NIGHT_SLEEP_SESSION_TYPE:
            return session.total_sleep_duration
    return timed[0].total_sleep_duration if timed else None


def extract_metrics(
    results: dict[MetricFamily, FamilyResult],
    data_date: date,
    activity_date: date,
    note: Optional[str] = None,
) -> ResolvedMetrics:
    """Pull one scalar per output field out of the per-family results."""
    daily_sleep = first_daily_sleep(results.get(MetricFamily.SLEEP_SCORE))
    readiness = first_daily_readiness(results.get(MetricFamily.READINESS_SCORE))
    activity = first_daily_activity(results.get(MetricFamily.ACTIVITY))
    sessions = sleep_sessions(results.get(MetricFamily.SLEEP_SESSION))
    samples = heartrate_samples(results.get(MetricFamily.HEART_RATE))

    sleep_duration = _session_duration(sessions)
    if sleep_duration is None and daily_sleep is not None:
        sleep_duration = daily_sleep.sleep_duration

    return ResolvedMetrics(
        sleep_score=daily_sleep.score if daily_sleep else None,
        total_sleep=daily_sleep.total_sleep if daily_sleep else None,
        readiness_score=readiness.score if readiness else None,
        previous_day_activity=readiness.previous_day_activity if readiness else None,
        sleep_duration=sleep_duration,
        sleep_hours=seconds_to_hours(sleep_duration),
        steps=activity.steps if activity else None,
        active_calories=activity.active_calories if activity else None,
        lowest_resting_hr=lowest_resting_heart_rate(samples),
        data_date=data_date,
        activity_date=activity_date,
        note=note,
    )


def _present_score_families(results: dict[MetricFamily, FamilyResult]) -> int:
    return sum(1 for family in SCORE_FAMILIES if family in results and results[family].present)


def should_fall_back(results: dict[MetricFamily, FamilyResult], trigger: FallbackTrigger) -> bool:
    """Decide from the primary pass whether the score families need a second date."""
    def present(family: MetricFamily) -> bool:
        return family in results and results[family].present

    if trigger == FallbackTrigger.BOTH_ABSENT:
        return not present(MetricFamily.SLEEP_SCORE) and not present(MetricFamily.READINESS_SCORE)
    if trigger == FallbackTrigger.EITHER_ABSENT:
        return not (present(MetricFamily.SLEEP_SCORE) and present(MetricFamily.READINESS_SCORE))
    return not any(
        present(family)
        for family in (MetricFamily.SLEEP_SCORE, MetricFamily.READINESS_SCORE, MetricFamily.ACTIVITY)
    )


class MetricResolver:
    """
    Resolves the check-in metrics for one request.

    Runs the primary pass as a concurrent fan-out over all families, then, only
    if the fallback trigger fires, a second fan-out over the score families on
    the adjacent date.
    """

    def __init__(self, client: OuraClient, fallback_trigger: FallbackTrigger = FallbackTrigger.BOTH_ABSENT):
        self._client = client
        self._fallback_trigger = fallback_trigger

    @property
    def client(self) -> OuraClient:
        return self._client

    @property
    def fallback_trigger(self) -> FallbackTrigger:
        return self._fallback_trigger

    async def resolve(self, token: str, mode: Mode, requested_date: date) -> ResolvedMetrics:
        """
        Fetch and normalize the metrics for a check-in.

        Args:
            token: Caller's Oura bearer token
            mode: Check-in flow deciding the per-family dates
            requested_date: Calendar date of the check-in

        Returns:
            ResolvedMetrics; all-null when Oura has nothing yet

        Raises:
            UpstreamUnavailableError: If every primary query failed at transport
                level or returned an unparseable body
        """
        plan = resolution_policy(mode, requested_date)
        primary_queries = plan.primary_queries()
        results = await self._client.fetch_all(primary_queries, token)

        failed = [results[query.family] for query in primary_queries if results[query.family].failed]
        if len(failed) == len(primary_queries):
            first = failed[0]
            logger.error(f"All Oura queries failed for {requested_date} ({mode.value}); first: {first.query.family.value}")
            raise UpstreamUnavailableError(
                family=first.query.family.value,
                message=f"Oura API unavailable: {first.query.family.value} {first.error}",
            )

        if not should_fall_back(results, self._fallback_trigger):
            return extract_metrics(results, plan.score_date, plan.activity_date)

        logger.info(
            f"No score data for {plan.score_date} ({mode.value}), trying {plan.fallback_date}"
        )
        fallback_results = await self._client.fetch_all(plan.fallback_queries(), token)

        if all(result.failed for result in fallback_results.values()):
            logger.warning(f"Fallback to {plan.fallback_date} failed, keeping {plan.score_date}")
            note = f"Oura data for {plan.score_date} not available; fallback to {plan.fallback_date} failed"
            return extract_metrics(results, plan.score_date, plan.activity_date, note)

        if _present_score_families(fallback_results) > _present_score_families(results):
            merged = {**results, **fallback_results}
            note = f"Oura data for {plan.score_date} not available yet; using {plan.fallback_date}"
            return extract_metrics(merged, plan.fallback_date, plan.activity_date, note)

        note = f"No further Oura sleep or readiness data on {plan.fallback_date}; showing {plan.score_date}"
        return extract_metrics(results, plan.score_date, plan.activity_date, note)
