"""
FlowWatch SQLAlchemy Models.

Preferences, locations and push tokens are written by the app's settings
surfaces and only read by the monitoring pipeline. Alert history is written
by the dispatcher and kept permanently.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from flowwatch.db.compat import JSONType, UTCDateTime
from flowwatch.db.engine import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationPreferenceRow(Base):
    """Per-user notification settings."""

    __tablename__ = "flowwatch_notification_preferences"
    __table_args__ = (Index("ix_fw_prefs_enabled", "enabled"),)

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    monitored_location_ids: Mapped[list] = mapped_column(JSONType(), default=list, nullable=False)
    include_short_range: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    include_medium_range: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    quiet_hours_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    quiet_start_hour: Mapped[int] = mapped_column(Integer, default=22, nullable=False)
    quiet_start_minute: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quiet_end_hour: Mapped[int] = mapped_column(Integer, default=7, nullable=False)
    quiet_end_minute: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)

    def to_record(self) -> dict:
        return {
            "user_id": self.user_id,
            "enabled": self.enabled,
            "monitored_location_ids": list(self.monitored_location_ids or []),
            "include_short_range": self.include_short_range,
            "include_medium_range": self.include_medium_range,
            "quiet_hours_enabled": self.quiet_hours_enabled,
            "quiet_start": {"hour": self.quiet_start_hour, "minute": self.quiet_start_minute},
            "quiet_end": {"hour": self.quiet_end_hour, "minute": self.quiet_end_minute},
        }


class LocationRow(Base):
    """Directory of monitored river locations."""

    __tablename__ = "flowwatch_locations"

    location_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    reach_id: Mapped[Optional[str]] = mapped_column(String(64))


class PushTokenRow(Base):
    """Device push token per user (latest registration wins)."""

    __tablename__ = "flowwatch_push_tokens"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    token: Mapped[str] = mapped_column(String(512), nullable=False)
    platform: Mapped[Optional[str]] = mapped_column(String(20))
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)


class AlertHistoryRow(Base):
    """
    Every alert that reached the dispatcher past dedupe, sent or not.

    ``alert_id`` is shared by all users watching the same location, so rows
    are unique per (user_id, alert_id).
    """

    __tablename__ = "flowwatch_alert_history"
    __table_args__ = (
        UniqueConstraint("user_id", "alert_id", name="uq_fw_history_user_alert"),
        Index(
            "ix_fw_history_dedupe",
            "user_id", "location_id", "return_years", "triggered_at",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    alert_id: Mapped[str] = mapped_column(String(160), nullable=False)
    location_id: Mapped[str] = mapped_column(String(64), nullable=False)
    location_name: Mapped[str] = mapped_column(String(255), nullable=False)
    forecasted_flow: Mapped[float] = mapped_column(Float, nullable=False)
    threshold_flow: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(8), nullable=False)
    return_years: Mapped[int] = mapped_column(Integer, nullable=False)
    range: Mapped[str] = mapped_column(String(16), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    forecast_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
