"""
FlowWatch Schemas.

Domain models shared by the caches, evaluator, dispatcher and orchestrator.
"""

from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ── Enums ──────────────────────────────────────────────────────────────


class FlowUnit(StrEnum):
    CFS = "cfs"     # cubic feet per second
    CMS = "cms"     # cubic metres per second


class ForecastRange(StrEnum):
    SHORT = "short"     # hourly, ~3 days
    MEDIUM = "medium"   # 3-hourly/daily, ~10 days


class Severity(StrEnum):
    MODERATE = "moderate"
    SIGNIFICANT = "significant"
    MAJOR = "major"
    SEVERE = "severe"
    EXTREME = "extreme"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


_SEVERITY_ORDER = [
    Severity.MODERATE,
    Severity.SIGNIFICANT,
    Severity.MAJOR,
    Severity.SEVERE,
    Severity.EXTREME,
]

CMS_TO_CFS = 35.3147
CFS_TO_CMS = 0.0283168


def convert_flow(value: float, from_unit: FlowUnit, to_unit: FlowUnit) -> float:
    """Convert a flow value between the two supported units."""
    if from_unit == to_unit:
        return value
    if from_unit == FlowUnit.CFS:
        return value * CFS_TO_CMS
    return value * CMS_TO_CFS


# ── Preferences ────────────────────────────────────────────────────────


class QuietTime(BaseModel):
    """A wall-clock boundary of the quiet-hours window."""
    model_config = ConfigDict(frozen=True)

    hour: int = Field(ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)

    @property
    def minutes(self) -> int:
        return self.hour * 60 + self.minute

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


class NotificationPreferences(BaseModel):
    """
    Per-user notification settings.

    Owned by the settings UI; read-only here. A user with no monitored
    locations is inert regardless of ``enabled``.
    """
    user_id: str
    enabled: bool = False
    monitored_location_ids: set[str] = Field(default_factory=set)
    include_short_range: bool = True
    include_medium_range: bool = True
    quiet_hours_enabled: bool = False
    quiet_start: QuietTime = QuietTime(hour=22, minute=0)
    quiet_end: QuietTime = QuietTime(hour=7, minute=0)

    @property
    def ranges(self) -> set[ForecastRange]:
        out: set[ForecastRange] = set()
        if self.include_short_range:
            out.add(ForecastRange.SHORT)
        if self.include_medium_range:
            out.add(ForecastRange.MEDIUM)
        return out


# ── Locations ──────────────────────────────────────────────────────────


class LocationInfo(BaseModel):
    """Directory entry for a monitored river location."""
    location_id: str
    name: Optional[str] = None
    reach_id: Optional[str] = None     # Upstream id, when it differs

    @property
    def display_name(self) -> str:
        return self.name or f"River {self.location_id}"

    @property
    def upstream_id(self) -> str:
        return self.reach_id or self.location_id


# ── Forecasts & thresholds ─────────────────────────────────────────────


class ForecastPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid_time: datetime
    flow: float
    unit: FlowUnit = FlowUnit.CFS
    range: ForecastRange


class ForecastSeries(BaseModel):
    """Everything the forecast API returned for one location."""
    location_id: str
    points: list[ForecastPoint] = Field(default_factory=list)
    fetched_at: Optional[datetime] = None

    def for_range(self, forecast_range: ForecastRange) -> list[ForecastPoint]:
        return [p for p in self.points if p.range == forecast_range]


class ThresholdSet(BaseModel):
    """
    Return-period flows for a location (return years → flow).

    Flows are expected to increase with return years but this is not
    enforced; a malformed set is evaluated as given.
    """
    location_id: str
    thresholds: dict[int, float] = Field(default_factory=dict)
    unit: FlowUnit = FlowUnit.CMS


# ── Alerts ─────────────────────────────────────────────────────────────


class Alert(BaseModel):
    """
    A triggered alert.

    ``alert_id`` is derived from (location, return years, forecast time) so
    recomputing the same condition yields the same id.
    """
    alert_id: str
    user_id: str
    location_id: str
    location_name: str
    forecasted_flow: float
    unit: FlowUnit
    return_years: int
    threshold_flow: float
    range: ForecastRange
    forecast_time: datetime
    triggered_at: datetime
    severity: Severity
    sent: bool = False
    sent_at: Optional[datetime] = None

    @property
    def dedupe_key(self) -> tuple[str, str, int]:
        return (self.user_id, self.location_id, self.return_years)


class DeliveryStatus(StrEnum):
    SENT = "sent"
    FAILED = "failed"
    NO_ADDRESS = "no_address"
    SUPPRESSED = "suppressed"       # Duplicate within the dedup window


# ── Run results ────────────────────────────────────────────────────────


class UnitStatus(StrEnum):
    OK = "ok"
    SKIPPED = "skipped"     # Missing forecast / thresholds
    FAILED = "failed"       # Unexpected error inside the unit


class UnitResult(BaseModel):
    """Outcome of evaluating one (user, location) unit."""
    user_id: str
    location_id: str
    status: UnitStatus
    alerts_found: int = 0
    detail: str = ""


class UserResult(BaseModel):
    user_id: str
    units: list[UnitResult] = Field(default_factory=list)
    alerts_generated: int = 0
    sent: int = 0
    suppressed: int = 0
    failed: int = 0

    @computed_field
    @property
    def status(self) -> str:
        if any(u.status == UnitStatus.FAILED for u in self.units):
            return "partial_failure"
        return "ok"


class RunSummary(BaseModel):
    target: str
    users_processed: int = 0
    results: list[UserResult] = Field(default_factory=list)
    alerts_generated: int = 0
    notifications_sent: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
