"""
Read-through cache providers for forecasts and return-period thresholds.

Both providers follow the same policy: a fresh entry is returned without
touching the upstream; otherwise the upstream is fetched and the result is
stored with the current timestamp. They differ only in what happens when
the fetch fails:

- forecasts go stale fast, so a failed refresh yields None;
- thresholds barely change, so a failed refresh or an answer with no
  years falls back to the stale entry (optionally bounded by
  ``max_stale_seconds``).
"""

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

import structlog

from flowwatch.cache.store import KeyValueStore, forecast_key, thresholds_key
from flowwatch.config import settings
from flowwatch.exceptions import MissingDataError
from flowwatch.schemas import ForecastSeries, ThresholdSet

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]
ForecastFetcher = Callable[[str], Awaitable[Optional[ForecastSeries]]]
ThresholdFetcher = Callable[[str], Awaitable[Optional[ThresholdSet]]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_stamp(raw: object) -> Optional[datetime]:
    if not isinstance(raw, str):
        return None
    try:
        stamp = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


class _CachedEntry:
    """A decoded ``{"last_updated": ..., "value": ...}`` envelope."""

    def __init__(self, last_updated: datetime, value: dict):
        self.last_updated = last_updated
        self.value = value

    def age(self, now: datetime) -> timedelta:
        return now - self.last_updated

    @classmethod
    def decode(cls, raw: Optional[dict]) -> Optional["_CachedEntry"]:
        if not raw:
            return None
        stamp = _parse_stamp(raw.get("last_updated"))
        value = raw.get("value")
        if stamp is None or not isinstance(value, dict):
            return None
        return cls(stamp, value)


class _ReadThroughProvider:
    kind = "entry"

    def __init__(self, store: KeyValueStore, ttl: timedelta, clock: Clock = utc_now):
        self.store = store
        self.ttl = ttl
        self.clock = clock

    def _key(self, location_id: str) -> str:
        raise NotImplementedError

    async def _read(self, location_id: str) -> Optional[_CachedEntry]:
        try:
            raw = await self.store.get(self._key(location_id))
        except Exception as e:
            logger.warning(
                "cache_read_failed", kind=self.kind, location_id=location_id, error=str(e)
            )
            return None
        return _CachedEntry.decode(raw)

    async def _write(self, location_id: str, value: dict, now: datetime) -> None:
        try:
            await self.store.set(
                self._key(location_id),
                {"last_updated": now.isoformat(), "value": value},
            )
        except Exception as e:
            logger.warning(
                "cache_write_failed", kind=self.kind, location_id=location_id, error=str(e)
            )

    def _is_fresh(self, entry: _CachedEntry, now: datetime) -> bool:
        return entry.age(now) < self.ttl


class ForecastCacheProvider(_ReadThroughProvider):
    """Forecast series per location, TTL 30 minutes by default."""

    kind = "forecast"

    def __init__(
        self,
        store: KeyValueStore,
        fetcher: ForecastFetcher,
        ttl: timedelta | None = None,
        clock: Clock = utc_now,
    ):
        super().__init__(
            store,
            ttl if ttl is not None else timedelta(seconds=settings.forecast_cache_ttl_seconds),
            clock,
        )
        self.fetcher = fetcher

    def _key(self, location_id: str) -> str:
        return forecast_key(location_id)

    async def get(self, location_id: str) -> Optional[ForecastSeries]:
        now = self.clock()
        entry = await self._read(location_id)
        if entry is not None and self._is_fresh(entry, now):
            try:
                return ForecastSeries.model_validate(entry.value)
            except ValueError as e:
                logger.warning("forecast_cache_corrupt", location_id=location_id, error=str(e))

        try:
            series = await self.fetcher(location_id)
        except Exception as e:
            logger.warning("forecast_fetch_failed", location_id=location_id, error=str(e))
            return None

        if series is None or not series.points:
            logger.info("forecast_unavailable", location_id=location_id)
            return None

        await self._write(location_id, series.model_dump(mode="json"), now)
        logger.debug("forecast_cached", location_id=location_id, points=len(series.points))
        return series


class ThresholdCacheProvider(_ReadThroughProvider):
    """Return-period thresholds per location, TTL 7 days by default."""

    kind = "thresholds"

    def __init__(
        self,
        store: KeyValueStore,
        fetcher: ThresholdFetcher,
        ttl: timedelta | None = None,
        max_stale: timedelta | None = None,
        clock: Clock = utc_now,
    ):
        super().__init__(
            store,
            ttl if ttl is not None else timedelta(seconds=settings.threshold_cache_ttl_seconds),
            clock,
        )
        self.fetcher = fetcher
        if max_stale is None and settings.threshold_max_stale_seconds is not None:
            max_stale = timedelta(seconds=settings.threshold_max_stale_seconds)
        self.max_stale = max_stale

    def _key(self, location_id: str) -> str:
        return thresholds_key(location_id)

    def _decode(self, entry: _CachedEntry, location_id: str) -> Optional[ThresholdSet]:
        try:
            return ThresholdSet.model_validate(entry.value)
        except ValueError as e:
            logger.warning("thresholds_cache_corrupt", location_id=location_id, error=str(e))
            return None

    async def get(self, location_id: str) -> Optional[ThresholdSet]:
        now = self.clock()
        entry = await self._read(location_id)
        if entry is not None and self._is_fresh(entry, now):
            cached = self._decode(entry, location_id)
            if cached is not None:
                return cached

        try:
            thresholds = await self.fetcher(location_id)
            if thresholds is None or not thresholds.thresholds:
                raise MissingDataError(location_id, "thresholds")
        except Exception as e:
            return self._stale_fallback(entry, location_id, now, e)

        await self._write(location_id, thresholds.model_dump(mode="json"), now)
        logger.debug("thresholds_cached", location_id=location_id, years=sorted(thresholds.thresholds))
        return thresholds

    def _stale_fallback(
        self,
        entry: Optional[_CachedEntry],
        location_id: str,
        now: datetime,
        error: Exception,
    ) -> Optional[ThresholdSet]:
        if entry is None:
            logger.warning("thresholds_fetch_failed", location_id=location_id, error=str(error))
            return None
        age = entry.age(now)
        if self.max_stale is not None and age > self.max_stale:
            logger.warning(
                "thresholds_fetch_failed_stale_too_old",
                location_id=location_id,
                age_seconds=int(age.total_seconds()),
                error=str(error),
            )
            return None
        logger.warning(
            "thresholds_serving_stale",
            location_id=location_id,
            age_seconds=int(age.total_seconds()),
            error=str(error),
        )
        return self._decode(entry, location_id)
