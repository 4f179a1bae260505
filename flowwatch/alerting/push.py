"""
Push senders that deliver a rendered notification to one device.

Each sender is independent and reports success as a bool. Raising is
allowed; the dispatcher counts any exception as a failed delivery.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Protocol

import google.auth
import google.auth.transport.requests

import httpx
import structlog
from google.oauth2 import service_account
from pydantic import BaseModel, Field

from flowwatch.config import settings
from flowwatch.exceptions import FlowWatchError

logger = structlog.get_logger(__name__)


class PushMessage(BaseModel):
    """A rendered notification addressed to one device token."""
    token: str
    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)
    color: Optional[str] = None
    high_priority: bool = False


class PushSender(Protocol):
    """Protocol for push transports."""

    async def send(self, message: PushMessage) -> bool: ...


class LogPushSender:
    """Development sender: logs the notification and reports success."""

    async def send(self, message: PushMessage) -> bool:
        logger.info(
            "push_logged",
            title=message.title,
            body=message.body,
            alert_id=message.data.get("alert_id"),
            high_priority=message.high_priority,
        )
        return True


FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"

TokenProvider = Callable[[], Awaitable[str]]


class GoogleAccessToken:
    """
    OAuth2 bearer tokens for the FCM v1 API.

    Credentials come from a service-account JSON file when one is given,
    otherwise from Application Default Credentials. google-auth refreshes
    synchronously, so refreshes run in a worker thread.
    """

    def __init__(self, credentials_file: str | None = None):
        self.credentials_file = credentials_file
        self.project_id: Optional[str] = None
        self._credentials = None

    def _load(self) -> None:
        if self.credentials_file:
            credentials = service_account.Credentials.from_service_account_file(
                self.credentials_file, scopes=[FCM_SCOPE]
            )
            project_id = credentials.project_id
        else:
            credentials, project_id = google.auth.default(scopes=[FCM_SCOPE])
        self._credentials = credentials
        self.project_id = project_id

    def _token(self) -> str:
        if self._credentials is None:
            self._load()
        if not self._credentials.valid:
            self._credentials.refresh(google.auth.transport.requests.Request())
            logger.debug("fcm_token_refreshed", project_id=self.project_id)
        return self._credentials.token

    async def __call__(self) -> str:
        return await asyncio.to_thread(self._token)


class FcmPushSender:
    """
    Firebase Cloud Messaging over the HTTP v1 API
    (``POST /v1/projects/{project_id}/messages:send``).

    One message per token. Any 4xx/5xx response counts as not delivered;
    the FCM error status (``UNREGISTERED``, ``INVALID_ARGUMENT``, ...) is logged.
    """

    def __init__(
        self,
        project_id: str | None = None,
        credentials_file: str | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        token_provider: Optional[TokenProvider] = None,
    ):
        self.project_id = project_id or settings.fcm_project_id or None
        self.endpoint = endpoint or settings.fcm_endpoint
        self.timeout = timeout or settings.external_timeout_seconds
        self.transport = transport
        self.token_provider = token_provider or GoogleAccessToken(
            credentials_file or settings.fcm_credentials_file or None
        )

    @staticmethod
    def build_payload(message: PushMessage) -> dict:
        android_notification: dict = {
            "sound": "default",
            "notification_priority": (
                "PRIORITY_HIGH" if message.high_priority else "PRIORITY_DEFAULT"
            ),
        }
        if message.color:
            android_notification["color"] = message.color
        return {
            "message": {
                "token": message.token,
                "notification": {"title": message.title, "body": message.body},
                "data": message.data,
                "android": {"priority": "HIGH", "notification": android_notification},
                "apns": {"payload": {"aps": {"sound": "default"}}},
            }
        }

    def _url(self) -> str:
        project_id = self.project_id or getattr(self.token_provider, "project_id", None)
        if not project_id:
            raise FlowWatchError("FCM project id is not configured (FCM_PROJECT_ID)")
        return self.endpoint.format(project_id=project_id)

    async def send(self, message: PushMessage) -> bool:
        access_token = await self.token_provider()
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json; UTF-8",
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                self._url(), json=self.build_payload(message), headers=headers
            )

        alert_id = message.data.get("alert_id")
        if response.status_code >= 400:
            try:
                error = response.json().get("error", {})
            except (ValueError, AttributeError):
                error = {}
            logger.warning(
                "fcm_send_failed",
                alert_id=alert_id,
                status=response.status_code,
                fcm_status=error.get("status") if isinstance(error, dict) else None,
            )
            return False

        try:
            name = response.json().get("name")
        except (ValueError, AttributeError):
            name = None
        logger.info("fcm_sent", alert_id=alert_id, message_name=name)
        return True


def build_push_sender() -> PushSender:
    """Create the sender selected by PUSH_BACKEND."""
    if settings.push_backend.lower() == "fcm":
        return FcmPushSender()
    return LogPushSender()
