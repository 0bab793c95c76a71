"""DORA (DevOps Research and Assessment) performance bands.

The four key DORA metrics are:

* **Deployment Frequency**: successful production deployments per day.
* **Lead Time for Changes**: hours from commit to running in production.
* **Change Failure Rate**: percentage of deployments that caused a failure.
* **Time to Restore Service**: hours to recover from a production failure.

Each metric is rated ``elite``, ``high``, ``medium`` or ``low`` by comparing
its value with the thresholds below.  A calculator that had no samples to
work with reports ``unknown`` instead of any of the four bands.
"""

from __future__ import annotations

from collections.abc import Mapping

from eventmetrics.models.enums import DoraRating

DORA_LEVELS: dict[str, dict[str, str]] = {
    "elite": {
        "deployment_frequency": "On-demand (at least once per day)",
        "lead_time": "Less than one day",
        "change_failure_rate": "0-5%",
        "time_to_restore": "Less than one hour",
    },
    "high": {
        "deployment_frequency": "Between once per day and once per week",
        "lead_time": "Between one day and one week",
        "change_failure_rate": "5-10%",
        "time_to_restore": "Less than one day",
    },
    "medium": {
        "deployment_frequency": "Between once per week and once per month",
        "lead_time": "Between one week and one month",
        "change_failure_rate": "10-15%",
        "time_to_restore": "Between one day and one week",
    },
    "low": {
        "deployment_frequency": "Less than once per month",
        "lead_time": "More than one month",
        "change_failure_rate": "Above 15%",
        "time_to_restore": "More than one week",
    },
}

# Deployments per day; a value at or above the threshold earns the band.
DEPLOYMENT_FREQUENCY_THRESHOLDS: dict[str, float] = {
    "elite": 1.0,
    "high": 1.0 / 7,
    "medium": 1.0 / 30,
}

# Hours; a value strictly below the threshold earns the band.
LEAD_TIME_THRESHOLDS: dict[str, float] = {
    "elite": 24.0,
    "high": 168.0,
    "medium": 720.0,
}

TIME_TO_RESTORE_THRESHOLDS: dict[str, float] = {
    "elite": 1.0,
    "high": 24.0,
    "medium": 168.0,
}

# Percent; a value strictly below the threshold earns the band.
CHANGE_FAILURE_RATE_THRESHOLDS: dict[str, float] = {
    "elite": 5.0,
    "high": 10.0,
    "medium": 15.0,
}

# Process stages a lead-time sample may be broken down into, in hours.
LEAD_TIME_STAGES: tuple[str, ...] = (
    "code_review_hours",
    "ci_hours",
    "qa_hours",
    "approval_hours",
    "deployment_hours",
)

RATING_SCORES: dict[DoraRating, int] = {
    DoraRating.elite: 4,
    DoraRating.high: 3,
    DoraRating.medium: 2,
    DoraRating.low: 1,
}

_BANDS = (DoraRating.elite, DoraRating.high, DoraRating.medium)


def rate_at_least(value: float, thresholds: Mapping[str, float]) -> DoraRating:
    """Rate a higher-is-better metric such as deployment frequency.

    Examples:
        >>> rate_at_least(1.5, DEPLOYMENT_FREQUENCY_THRESHOLDS)
        <DoraRating.elite: 'elite'>
        >>> rate_at_least(0.01, DEPLOYMENT_FREQUENCY_THRESHOLDS)
        <DoraRating.low: 'low'>
    """
    for band in _BANDS:
        if value >= thresholds[band.value]:
            return band
    return DoraRating.low


def rate_below(value: float, thresholds: Mapping[str, float]) -> DoraRating:
    """Rate a lower-is-better metric (lead time, restore time, failure rate).

    Examples:
        >>> rate_below(3.0, LEAD_TIME_THRESHOLDS)
        <DoraRating.elite: 'elite'>
        >>> rate_below(24.0, LEAD_TIME_THRESHOLDS)
        <DoraRating.high: 'high'>
    """
    for band in _BANDS:
        if value < thresholds[band.value]:
            return band
    return DoraRating.low


def classify_dora_level(ratings: list[DoraRating]) -> tuple[DoraRating, float]:
    """Blend several per-metric ratings into one overall level.

    ``unknown`` ratings are ignored.  The remaining ratings are scored
    (elite 4, high 3, medium 2, low 1) and averaged.

    Args:
        ratings: The individual metric ratings.

    Returns:
        ``(level, average_score)``; ``(DoraRating.unknown, 0.0)`` when no
        rating is known.

    Examples:
        >>> classify_dora_level([DoraRating.elite, DoraRating.high])
        (<DoraRating.elite: 'elite'>, 3.5)
        >>> classify_dora_level([DoraRating.unknown])
        (<DoraRating.unknown: 'unknown'>, 0.0)
    """
    scores = [RATING_SCORES[r] for r in ratings if r in RATING_SCORES]
    if not scores:
        return DoraRating.unknown, 0.0
    average = sum(scores) / len(scores)
    if average >= 3.5:
        return DoraRating.elite, average
    if average >= 2.5:
        return DoraRating.high, average
    if average >= 1.5:
        return DoraRating.medium, average
    return DoraRating.low, average
