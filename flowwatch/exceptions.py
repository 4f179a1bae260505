"""
FlowWatch exception hierarchy.

Only ResolutionError is allowed to escape a monitoring run. Everything else
is caught at the (user, location) unit boundary and turned into a skipped
or failed unit result.
"""


class FlowWatchError(Exception):
    """Base class for all FlowWatch errors."""


class UpstreamError(FlowWatchError):
    """An external API call failed (timeout, 5xx, unreadable body)."""

    def __init__(self, service: str, detail: str, status_code: int | None = None):
        self.service = service
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"{service}: {detail}")


class MissingDataError(FlowWatchError):
    """Forecast or threshold data is unavailable for a location."""

    def __init__(self, location_id: str, what: str):
        self.location_id = location_id
        self.what = what
        super().__init__(f"No {what} available for location {location_id}")


class ResolutionError(FlowWatchError):
    """The set of users to monitor could not be resolved at all."""
