"""
Notification Preference Resolver.

Decides which users are monitored at all and whether a user may be notified
right now (quiet hours). Preferences are owned by the settings UI and only
read here.
"""

from datetime import datetime, timezone, tzinfo
from typing import Optional, Protocol
from zoneinfo import ZoneInfo

import structlog
from pydantic import ValidationError

from flowwatch.config import settings
from flowwatch.exceptions import ResolutionError
from flowwatch.schemas import NotificationPreferences

logger = structlog.get_logger(__name__)


class PreferenceStore(Protocol):
    """Raw preference records, one dict per user."""

    async def list_enabled(self) -> list[dict]: ...

    async def get(self, user_id: str) -> Optional[dict]: ...


class InMemoryPreferenceStore:
    def __init__(self, records: list[dict] | None = None):
        self._records = {r["user_id"]: r for r in records or []}

    def put(self, record: dict) -> None:
        self._records[record["user_id"]] = record

    async def list_enabled(self) -> list[dict]:
        return [r for r in self._records.values() if r.get("enabled")]

    async def get(self, user_id: str) -> Optional[dict]:
        return self._records.get(user_id)


def _zone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def in_quiet_hours(prefs: NotificationPreferences, current_minutes: int) -> bool:
    """True when ``current_minutes`` (since midnight) falls in the quiet window."""
    if not prefs.quiet_hours_enabled:
        return False
    start = prefs.quiet_start.minutes
    end = prefs.quiet_end.minutes
    if start == end:
        return False
    if start > end:
        # Window wraps midnight, e.g. 22:00–07:00
        return current_minutes >= start or current_minutes < end
    return start <= current_minutes < end


class PreferenceResolver:
    """Resolves candidate users from the preference store."""

    def __init__(self, store: PreferenceStore, timezone_name: str | None = None):
        self.store = store
        self.tz = _zone(timezone_name or settings.quiet_hours_timezone)

    def _parse(self, record: dict) -> Optional[NotificationPreferences]:
        try:
            return NotificationPreferences.model_validate(record)
        except ValidationError as e:
            logger.warning(
                "preferences_invalid",
                user_id=record.get("user_id", "?"),
                errors=e.error_count(),
            )
            return None

    async def active_users(self, now: datetime | None = None) -> list[NotificationPreferences]:
        """Users that are enabled, monitor something and are outside quiet hours."""
        try:
            records = await self.store.list_enabled()
        except Exception as e:
            logger.error("preferences_unavailable", error=str(e))
            raise ResolutionError(f"Cannot enumerate users: {e}") from e

        active = []
        for record in records:
            prefs = self._parse(record)
            if prefs is not None and self.is_candidate(prefs, now):
                active.append(prefs)
        logger.info("active_users_resolved", enabled=len(records), active=len(active))
        return active

    async def get(self, user_id: str) -> Optional[NotificationPreferences]:
        try:
            record = await self.store.get(user_id)
        except Exception as e:
            logger.error("preferences_unavailable", user_id=user_id, error=str(e))
            raise ResolutionError(f"Cannot load preferences for {user_id}: {e}") from e
        if record is None:
            return None
        return self._parse(record)

    def is_candidate(self, prefs: NotificationPreferences, now: datetime | None = None) -> bool:
        if not prefs.enabled or not prefs.monitored_location_ids:
            return False
        return self.should_deliver_now(prefs, now)

    def should_deliver_now(
        self, prefs: NotificationPreferences, now: datetime | None = None
    ) -> bool:
        if not prefs.quiet_hours_enabled:
            return True
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(self.tz)
        return not in_quiet_hours(prefs, local.hour * 60 + local.minute)
