"""
Threshold Evaluator.

Compares forecast points against a location's return-period thresholds and
produces alerts. Pure: no I/O, and identical inputs (including
``triggered_at``) give identical output.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional

import structlog

from flowwatch.schemas import (
    Alert,
    ForecastPoint,
    ForecastRange,
    Severity,
    ThresholdSet,
    convert_flow,
)

logger = structlog.get_logger(__name__)

# (minimum return years, severity), highest first
SEVERITY_BANDS: list[tuple[int, Severity]] = [
    (50, Severity.EXTREME),
    (25, Severity.SEVERE),
    (10, Severity.MAJOR),
    (5, Severity.SIGNIFICANT),
]


def severity_of(return_years: int) -> Severity:
    for minimum, severity in SEVERITY_BANDS:
        if return_years >= minimum:
            return severity
    return Severity.MODERATE


def make_alert_id(location_id: str, return_years: int, valid_time: datetime) -> str:
    """Deterministic id: ``<location>_<years>yr_<epoch ms of forecast time>``."""
    epoch_ms = int(valid_time.timestamp() * 1000)
    return f"{location_id}_{return_years}yr_{epoch_ms}"


def ordered_thresholds(thresholds: ThresholdSet) -> list[tuple[int, float]]:
    """Threshold entries by flow descending; ties go to the larger return period."""
    return sorted(
        thresholds.thresholds.items(),
        key=lambda item: (item[1], item[0]),
        reverse=True,
    )


def match_threshold(
    flow: float, ordered: list[tuple[int, float]]
) -> Optional[tuple[int, float]]:
    """
    The largest return period whose flow is met or exceeded, if any.

    On a set whose flows rise with the return period this is the first hit
    of the flow-descending scan. A non-monotonic set still never reports a
    lower return period than one the flow meets.
    """
    met = [(years, threshold_flow) for years, threshold_flow in ordered if flow >= threshold_flow]
    if not met:
        return None
    return max(met, key=lambda item: item[0])


def evaluate(
    points: Iterable[ForecastPoint],
    thresholds: ThresholdSet,
    user_id: str,
    location_id: str,
    location_name: str,
    ranges: set[ForecastRange],
    triggered_at: Optional[datetime] = None,
) -> list[Alert]:
    """
    Produce at most one alert per forecast point.

    Points whose range is not in ``ranges`` are ignored, as are points at or
    before ``triggered_at`` (a cached series can outlive its first hours).
    Flows are converted into the threshold set's unit before comparison and
    reported in it.
    """
    triggered_at = triggered_at or datetime.now(timezone.utc)
    ordered = ordered_thresholds(thresholds)
    if not ordered:
        return []

    selected = sorted(
        (p for p in points if p.range in ranges and p.valid_time > triggered_at),
        key=lambda p: p.valid_time,
    )

    alerts: list[Alert] = []
    for point in selected:
        flow = convert_flow(point.flow, point.unit, thresholds.unit)
        matched = match_threshold(flow, ordered)
        if matched is None:
            continue
        years, threshold_flow = matched
        alerts.append(
            Alert(
                alert_id=make_alert_id(location_id, years, point.valid_time),
                user_id=user_id,
                location_id=location_id,
                location_name=location_name,
                forecasted_flow=flow,
                unit=thresholds.unit,
                return_years=years,
                threshold_flow=threshold_flow,
                range=point.range,
                forecast_time=point.valid_time,
                triggered_at=triggered_at,
                severity=severity_of(years),
            )
        )

    if alerts:
        logger.debug(
            "thresholds_exceeded",
            user_id=user_id,
            location_id=location_id,
            points=len(selected),
            alerts=len(alerts),
        )
    return alerts
