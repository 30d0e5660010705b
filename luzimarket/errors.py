"""
errors.py: Domain exceptions shared by the server routes, the coordinator
and the API client.

Credential failures all collapse into one Unauthorized with a fixed message so
callers cannot tell a malformed token from an expired or replayed one.
Preference failures carry a specific, user-facing message.
"""


class LuzimarketError(Exception):
    """Base class for all Luzimarket domain errors."""

    code = "LUZIMARKET_ERROR"
    default_message = "Unexpected error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(LuzimarketError):
    code = "UNAUTHORIZED"
    default_message = "Invalid or expired credentials"

    def __init__(self) -> None:
        # Never accept a caller-supplied message: the failure mode must not leak.
        super().__init__(self.default_message)


class NoActiveSession(LuzimarketError):
    code = "NO_ACTIVE_SESSION"
    default_message = "No active session. Please reload the page."


class InvalidSelection(LuzimarketError):
    code = "INVALID_SELECTION"
    default_message = "Delivery zone not found. Please select a valid location."


class TransientFetchFailure(LuzimarketError):
    code = "TRANSIENT_FETCH_FAILURE"
    default_message = "Could not load delivery locations. Please try again."


class DuplicateAccount(LuzimarketError):
    code = "CONFLICT"
    default_message = "User already exists"
