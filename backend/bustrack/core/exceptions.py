"""Exception hierarchy for the tracker."""


class BusTrackError(Exception):
    """Base exception for all tracker errors."""


class NetworkFailure(BusTrackError):
    """Request rejected by the transport or answered with a non-OK status."""

    def __init__(self, message: str, *, status_code: int | None = None, endpoint: str = "") -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class MalformedPayload(BusTrackError):
    """Upstream payload had an unexpected shape."""


class UnresolvedPosition(BusTrackError):
    """No stop list to derive a vehicle's current stop from."""


class RenderSurfaceUnavailable(BusTrackError):
    """The map render surface could not be mounted."""
