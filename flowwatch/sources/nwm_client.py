"""
National Water Model clients: streamflow forecasts and return-period flows.

Both services are external. Transport failures (timeouts, HTTP errors,
unreadable bodies) are raised as UpstreamError so the cache providers can
decide what to serve instead. Decoding of successful responses is tolerant:
unknown fields are ignored and malformed points are dropped.
"""

import asyncio
import math
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx
import structlog

from flowwatch.config import settings
from flowwatch.exceptions import UpstreamError
from flowwatch.schemas import (
    FlowUnit,
    ForecastPoint,
    ForecastRange,
    ForecastSeries,
    ThresholdSet,
)
from flowwatch.sources.locations import LocationDirectory, resolve_location

logger = structlog.get_logger(__name__)

# Query value and response key per range
_RANGE_PARAMS = {
    ForecastRange.SHORT: ("short_range", "shortRange"),
    ForecastRange.MEDIUM: ("medium_range", "mediumRange"),
}

RETURN_PERIOD_YEARS = (2, 5, 10, 25, 50, 100)

_UNIT_ALIASES = {
    "cfs": FlowUnit.CFS,
    "ft³/s": FlowUnit.CFS,
    "ft3/s": FlowUnit.CFS,
    "cms": FlowUnit.CMS,
    "m³/s": FlowUnit.CMS,
    "m3/s": FlowUnit.CMS,
}


def parse_unit(raw: Any, default: FlowUnit = FlowUnit.CFS) -> FlowUnit:
    """Map an upstream units string onto FlowUnit (missing/unknown → default)."""
    if not isinstance(raw, str):
        return default
    return _UNIT_ALIASES.get(raw.strip().lower(), default)


def _parse_time(raw: Any) -> Optional[datetime]:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_flow(raw: Any) -> Optional[float]:
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _series_block(range_block: dict) -> Optional[dict]:
    """
    Pick the series to read from a range block.

    The mean ``series`` is preferred; when it has no data the first
    ensemble member (``member1``, ``member2``, ...) that does is used.
    """
    series = range_block.get("series")
    if isinstance(series, dict) and series.get("data"):
        return series
    members = sorted(
        k for k in range_block if k.startswith("member") and isinstance(range_block[k], dict)
    )
    for key in members:
        if range_block[key].get("data"):
            return range_block[key]
    return None


def decode_forecast(
    body: Any,
    forecast_range: ForecastRange,
    now: datetime,
) -> list[ForecastPoint]:
    """Decode a streamflow response into future forecast points."""
    if not isinstance(body, dict):
        return []
    _, response_key = _RANGE_PARAMS[forecast_range]
    range_block = body.get(response_key)
    if not isinstance(range_block, dict):
        return []
    series = _series_block(range_block)
    if series is None:
        return []

    unit = parse_unit(series.get("units"))
    points: list[ForecastPoint] = []
    dropped = 0
    for item in series.get("data") or []:
        if not isinstance(item, dict):
            dropped += 1
            continue
        valid_time = _parse_time(item.get("validTime"))
        flow = _parse_flow(item.get("flow"))
        if valid_time is None or flow is None:
            dropped += 1
            continue
        if valid_time <= now:
            continue
        points.append(
            ForecastPoint(valid_time=valid_time, flow=flow, unit=unit, range=forecast_range)
        )
    if dropped:
        logger.debug("forecast_points_dropped", range=forecast_range.value, dropped=dropped)
    points.sort(key=lambda p: p.valid_time)
    return points


def decode_return_periods(
    body: Any, location_id: str, unit: FlowUnit
) -> Optional[ThresholdSet]:
    """Decode a return-period response; None when it carries no years at all."""
    if isinstance(body, dict):
        records = [body]
    elif isinstance(body, list):
        records = [r for r in body if isinstance(r, dict)]
    else:
        return None
    if not records:
        return None

    record = records[0]
    thresholds: dict[int, float] = {}
    for years in RETURN_PERIOD_YEARS:
        flow = _parse_flow(record.get(f"return_period_{years}"))
        if flow is not None:
            thresholds[years] = flow
    if not thresholds:
        return None
    return ThresholdSet(location_id=location_id, thresholds=thresholds, unit=unit)


class _HttpSource:
    service = "upstream"

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        locations: Optional[LocationDirectory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.external_timeout_seconds
        self.locations = locations
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
        )

    async def _upstream_id(self, location_id: str) -> str:
        location = await resolve_location(self.locations, location_id)
        return location.upstream_id

    async def _get_json(self, url: str, params: dict) -> Any:
        try:
            async with self._client() as client:
                resp = await client.get(url, params=params)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                self.service, f"HTTP {e.response.status_code}", e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(self.service, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise UpstreamError(self.service, "response body is not valid JSON") from e


class ForecastClient(_HttpSource):
    """Streamflow forecasts: ``GET /reaches/{reach}/streamflow?series=...``."""

    service = "forecast"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        locations: Optional[LocationDirectory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(base_url or settings.forecast_base_url, timeout, locations, transport)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_forecast(
        self, location_id: str, forecast_range: ForecastRange
    ) -> list[ForecastPoint]:
        """Fetch one range for a location. Only points after now are returned."""
        reach_id = await self._upstream_id(location_id)
        series_param, _ = _RANGE_PARAMS[forecast_range]
        body = await self._get_json(
            f"{self.base_url}/reaches/{reach_id}/streamflow",
            {"series": series_param},
        )
        points = decode_forecast(body, forecast_range, self.clock())
        logger.debug(
            "forecast_fetched",
            location_id=location_id,
            reach_id=reach_id,
            range=forecast_range.value,
            points=len(points),
        )
        return points

    async def get_series(self, location_id: str) -> Optional[ForecastSeries]:
        """
        Fetch short and medium range concurrently.

        One failing range still yields the other. Raises UpstreamError only
        when both fail; returns None when both succeed but are empty.
        """
        ranges = [ForecastRange.SHORT, ForecastRange.MEDIUM]
        results = await asyncio.gather(
            *(self.get_forecast(location_id, r) for r in ranges),
            return_exceptions=True,
        )

        points: list[ForecastPoint] = []
        errors: list[BaseException] = []
        for forecast_range, result in zip(ranges, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "forecast_range_failed",
                    location_id=location_id,
                    range=forecast_range.value,
                    error=str(result),
                )
                errors.append(result)
            else:
                points.extend(result)

        if len(errors) == len(ranges):
            raise UpstreamError(self.service, f"all ranges failed for {location_id}")
        if not points:
            return None
        return ForecastSeries(location_id=location_id, points=points, fetched_at=self.clock())


class ReturnPeriodClient(_HttpSource):
    """Return-period flows: ``GET /return-period?comids=...&key=...``."""

    service = "return_period"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        unit: FlowUnit | str | None = None,
        timeout: float | None = None,
        locations: Optional[LocationDirectory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            base_url or settings.return_period_base_url, timeout, locations, transport
        )
        self.api_key = api_key if api_key is not None else settings.return_period_api_key
        self.unit = FlowUnit(unit or settings.return_period_unit)

    async def get_return_periods(self, location_id: str) -> Optional[ThresholdSet]:
        reach_id = await self._upstream_id(location_id)
        params = {"comids": reach_id}
        if self.api_key:
            params["key"] = self.api_key
        body = await self._get_json(f"{self.base_url}/return-period", params)
        thresholds = decode_return_periods(body, location_id, self.unit)
        if thresholds is None:
            logger.info("return_periods_empty", location_id=location_id, reach_id=reach_id)
        return thresholds
