"""
Notification Dispatcher.

For each alert:
1. Suppress it if the user already has one for the same location and
   return period inside the dedup window (nothing is recorded then).
2. Look up the user's push token; none means the alert is recorded unsent.
3. Render and send the notification.
4. Record the alert with its delivery outcome, success or not.

No retries. Failed sends are recorded too, so the dedup window covers them.
"""

import math
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

import structlog

from flowwatch.alerting.history import AlertHistoryStore
from flowwatch.alerting.push import PushMessage, PushSender
from flowwatch.config import settings
from flowwatch.schemas import Alert, DeliveryStatus, Severity

logger = structlog.get_logger(__name__)

SEVERITY_COLORS: dict[Severity, str] = {
    Severity.MODERATE: "#2196F3",
    Severity.SIGNIFICANT: "#FF9800",
    Severity.MAJOR: "#FF5722",
    Severity.SEVERE: "#F44336",
    Severity.EXTREME: "#9C27B0",
}

HIGH_PRIORITY = {Severity.SEVERE, Severity.EXTREME}


class PushTokenStore(Protocol):
    async def get_token(self, user_id: str) -> Optional[str]: ...


class InMemoryPushTokenStore:
    def __init__(self, tokens: dict[str, str] | None = None):
        self._tokens = dict(tokens or {})

    def put(self, user_id: str, token: str) -> None:
        self._tokens[user_id] = token

    async def get_token(self, user_id: str) -> Optional[str]:
        return self._tokens.get(user_id)


# ── Rendering ────────────────────────────────────────────────────────────


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_forecast_date(forecast_time: datetime, now: datetime) -> str:
    """Relative day label: Today, Tomorrow, In N days, or M/D beyond a week."""
    diff_days = math.ceil((forecast_time - now).total_seconds() / 86400)
    if diff_days <= 0:
        return "Today"
    if diff_days == 1:
        return "Tomorrow"
    if diff_days <= 7:
        return f"In {diff_days} days"
    return f"{forecast_time.month}/{forecast_time.day}"


def format_title(alert: Alert) -> str:
    return f"{alert.severity.display_name} Flow Alert: {alert.location_name}"


def format_body(alert: Alert, now: datetime) -> str:
    unit = alert.unit.value
    return (
        f"Forecasted flow: {_round_half_up(alert.forecasted_flow)} {unit} "
        f"({format_forecast_date(alert.forecast_time, now)})\n"
        f"Matches {alert.return_years}-year return period "
        f"({_round_half_up(alert.threshold_flow)} {unit})"
    )


def build_message(alert: Alert, token: str, now: datetime) -> PushMessage:
    return PushMessage(
        token=token,
        title=format_title(alert),
        body=format_body(alert, now),
        data={
            "type": "flow_alert",
            "location_id": alert.location_id,
            "location_name": alert.location_name,
            "severity": alert.severity.value,
            "return_years": str(alert.return_years),
            "alert_id": alert.alert_id,
            "forecast_time": alert.forecast_time.isoformat(),
        },
        color=SEVERITY_COLORS[alert.severity],
        high_priority=alert.severity in HIGH_PRIORITY,
    )


# ── Dispatcher ───────────────────────────────────────────────────────────


class NotificationDispatcher:
    def __init__(
        self,
        history: AlertHistoryStore,
        tokens: PushTokenStore,
        sender: PushSender,
        dedup_window_hours: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.history = history
        self.tokens = tokens
        self.sender = sender
        self.dedup_window_hours = (
            dedup_window_hours if dedup_window_hours is not None else settings.dedup_window_hours
        )
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def dispatch(self, alert: Alert) -> bool:
        """Deliver an alert. True exactly when a notification was sent."""
        return await self.deliver(alert) == DeliveryStatus.SENT

    async def deliver(self, alert: Alert) -> DeliveryStatus:
        log = logger.bind(user_id=alert.user_id, alert_id=alert.alert_id)

        if await self._is_duplicate(alert):
            log.info("alert_suppressed_duplicate", return_years=alert.return_years)
            return DeliveryStatus.SUPPRESSED

        token = await self.tokens.get_token(alert.user_id)
        if not token:
            log.warning("alert_no_push_token")
            await self._record(alert, sent=False)
            return DeliveryStatus.NO_ADDRESS

        now = self.clock()
        try:
            sent = await self.sender.send(build_message(alert, token, now))
        except Exception as e:
            log.error("push_send_error", error=str(e))
            sent = False

        await self._record(alert, sent=sent, sent_at=now if sent else None)
        if sent:
            log.info("alert_sent", severity=alert.severity.value, location_id=alert.location_id)
            return DeliveryStatus.SENT
        log.warning("alert_send_failed")
        return DeliveryStatus.FAILED

    async def _is_duplicate(self, alert: Alert) -> bool:
        try:
            return await self.history.exists(
                alert.user_id,
                alert.location_id,
                alert.return_years,
                within_hours=self.dedup_window_hours,
            )
        except Exception as e:
            # History unreadable: deliver rather than silently drop
            logger.warning("dedupe_check_failed", alert_id=alert.alert_id, error=str(e))
            return False

    async def _record(
        self, alert: Alert, sent: bool, sent_at: Optional[datetime] = None
    ) -> None:
        try:
            await self.history.record(alert.model_copy(update={"sent": sent, "sent_at": sent_at}))
        except Exception as e:
            logger.error("alert_record_failed", alert_id=alert.alert_id, error=str(e))
