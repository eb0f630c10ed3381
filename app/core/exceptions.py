"""Error taxonomy for inbox processing and the HTTP handlers that render it.

Domain code raises these; ``register_exception_handlers`` turns them into
JSON responses so route handlers never have to catch them.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import ORJSONResponse

logger = logging.getLogger(__name__)


class FederationError(Exception):
    """Base class for every error raised by the follow relationship core."""

    status_code = status.HTTP_400_BAD_REQUEST
    title = "Federation Error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MalformedActivity(FederationError):
    """Raised when an activity is structurally invalid or of an unsupported kind."""

    status_code = status.HTTP_400_BAD_REQUEST
    title = "Malformed Activity"


class WrongRecipient(FederationError):
    """Raised when an activity targets an actor other than the local user.

    Args:
        target: The actor URI the activity was addressed to.
        local_actor_id: The local user's actor URI.
    """

    status_code = status.HTTP_404_NOT_FOUND
    title = "Wrong Recipient"

    def __init__(self, target: str, local_actor_id: str):
        self.target = target
        self.local_actor_id = local_actor_id
        super().__init__(f"Activity targets {target!r}, not the local actor")


class LateOrUnknownReply(FederationError):
    """An Accept or Reject with no matching outgoing follow.

    Only ever logged; reconciliation reports it as an ignored activity.
    """

    title = "Late Or Unknown Reply"


class StoreUnavailable(FederationError):
    """Raised when the data service cannot be reached; callers should retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    title = "Store Unavailable"


class AccountNotConfigured(FederationError):
    """Raised when an operation needs the local user before setup has run."""

    status_code = status.HTTP_404_NOT_FOUND
    title = "Account Not Configured"

    def __init__(self, message: str = "The local account has not been set up"):
        super().__init__(message)


class AccountAlreadyExists(FederationError):
    """Raised by a second attempt at the one-time account setup."""

    status_code = status.HTTP_409_CONFLICT
    title = "Account Already Exists"

    def __init__(self, message: str = "The local account already exists"):
        super().__init__(message)


async def federation_error_handler(request: Request, exc: FederationError):
    """Render a FederationError as a JSON error body."""
    headers = None
    if isinstance(exc, StoreUnavailable):
        logger.error("Store unavailable while handling %s: %s", request.url.path, exc.message)
        headers = {"Retry-After": "30"}
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"error": exc.title, "detail": exc.message},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FederationError, federation_error_handler)
