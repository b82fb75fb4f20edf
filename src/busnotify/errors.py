"""Error taxonomy shared by the socket handlers and the HTTP API.

Every error carries a client-safe ``message`` (sent verbatim in a
``socketError`` event or an HTTP ``detail``) and the HTTP status the API
layer maps it to. Only AuthenticationError ends a live connection.
"""


class BusNotifyError(Exception):
    """Base class for expected, client-visible failures."""

    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ─── Connection-level ─────────────────────────────────────


class AuthenticationError(BusNotifyError):
    """Handshake credential missing, invalid, expired or unknown user."""

    status_code = 401
    default_message = "Authentication error: Invalid token"


class NotAuthenticatedError(BusNotifyError):
    """Command arrived on a connection without an authenticated session."""

    status_code = 401
    default_message = "Not authenticated"


class InvalidPayloadError(BusNotifyError):
    """Inbound payload failed shape validation."""

    status_code = 422
    default_message = "Invalid payload"


# ─── Lookups ──────────────────────────────────────────────


class NotFoundError(BusNotifyError):
    status_code = 404
    default_message = "Not found"


class RouteNotFoundError(NotFoundError):
    default_message = "Route not found"


class BusNotFoundError(NotFoundError):
    default_message = "Bus not found"


class DriverNotFoundError(NotFoundError):
    default_message = "Driver not found"


class NotificationNotFoundError(NotFoundError):
    default_message = "Notification not found"


# ─── Driver authorization ─────────────────────────────────


class AuthorizationError(BusNotifyError):
    status_code = 403
    default_message = "Not authorized"


class NotDriverOfBusError(AuthorizationError):
    default_message = "This bus is assigned to a different driver"


class RouteMismatchError(AuthorizationError):
    default_message = "Route mismatch for this bus"


# ─── Admin send path ──────────────────────────────────────


class InvalidTargetError(BusNotifyError):
    default_message = "Invalid route or bus selection"


class NoTargetsFoundError(BusNotifyError):
    default_message = "No routes found for this selection"


class NoRecipientsFoundError(BusNotifyError):
    default_message = "No users found for this route"


# ─── Everything else ──────────────────────────────────────


class InternalError(BusNotifyError):
    status_code = 500
    default_message = "Internal server error"
