from oura_proxy.resolver import ResolvedMetrics


def assemble_response(metrics: ResolvedMetrics) -> dict:
    """Shape resolved metrics into the journal's JSON reply."""
    return {
        "sleepScore": metrics.sleep_score,
        "totalSleep": metrics.total_sleep,
        "readinessScore": metrics.readiness_score,
        "previousDayActivity": metrics.previous_day_activity,
        "sleepDuration": metrics.sleep_duration,
        "sleepHours": metrics.sleep_hours,
        "steps": metrics.steps,
        "activeCalories": metrics.active_calories,
        "lowestRestingHR": metrics.lowest_resting_hr,
        "dataDate": str(metrics.data_date),
        "activityDate": str(metrics.activity_date),
        "note": metrics.note,
    }
