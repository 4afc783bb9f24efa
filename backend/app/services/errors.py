"""
Error taxonomy shared by the routing, storage, oracle and relay services.

Every error carries a machine-readable ``error_code`` so routers can turn it
into a structured HTTP ``detail`` payload without inspecting message text.

Quarantine is NOT an error: a quarantined message is a successful routing
outcome and is reported through RoutingResult.status == "quarantined".
"""


class RoutingError(Exception):
    """Base class for all failures surfaced by the mail engine."""

    error_code = "routing_error"

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


# ---------------------------------------------------------------------------
# Client-facing outcomes
# ---------------------------------------------------------------------------

class InvalidAddressError(RoutingError):
    """The recipient address is not a valid mailbox in the mail domain."""
    error_code = "invalid_address"


class IdentityNotFoundError(RoutingError):
    """Identity could not be resolved on either the store or the chain path."""
    error_code = "identity_not_found"


class ForbiddenAddressError(RoutingError):
    """The agent suffix convention was violated in either direction."""
    error_code = "forbidden"


class EventNotFoundError(RoutingError):
    """No calendar event is stored under the requested id."""
    error_code = "event_not_found"


class InvalidTransitionError(RoutingError):
    """A calendar event status change that the lifecycle does not allow."""
    error_code = "invalid_transition"


# ---------------------------------------------------------------------------
# Collaborator failures
# ---------------------------------------------------------------------------

class UnconfiguredError(RoutingError):
    """A required collaborator (store, oracle, relay) has no configuration."""
    error_code = "unconfigured"


class OracleTransportError(RoutingError):
    """The blockchain RPC call failed. Never coerced into a default value."""
    error_code = "oracle_unavailable"


class RelayTransportError(RoutingError):
    """The hosted mail provider call failed (auth, network, or 5xx)."""
    error_code = "relay_unavailable"


class RelayNotFoundError(RoutingError):
    """The hosted mail provider reported that the mailbox does not exist."""
    error_code = "relay_not_found"


# HTTP status for each error class. Looked up along the MRO so subclasses
# inherit their parent's status.
HTTP_STATUS_BY_ERROR: dict[type, int] = {
    InvalidAddressError: 400,
    ForbiddenAddressError: 403,
    IdentityNotFoundError: 404,
    EventNotFoundError: 404,
    RelayNotFoundError: 404,
    InvalidTransitionError: 409,
    OracleTransportError: 502,
    RelayTransportError: 502,
    UnconfiguredError: 503,
    RoutingError: 500,
}


def http_status_for(exc: RoutingError) -> int:
    """Return the HTTP status code that represents ``exc``."""
    for klass in type(exc).__mro__:
        if klass in HTTP_STATUS_BY_ERROR:
            return HTTP_STATUS_BY_ERROR[klass]
    return 500
