"""
All booking lifecycle exceptions
"""

from collections.abc import Iterable


class VoyagezError(Exception):
    """Base booking error"""


class ValidationError(VoyagezError):
    """Missing or malformed wizard step data"""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class DraftNotFoundError(VoyagezError):
    """No draft matches the given draft id or provider session"""

    def __init__(self, draft_id: str | None = None, provider_session_id: str | None = None):
        self.draft_id = draft_id
        self.provider_session_id = provider_session_id
        if provider_session_id:
            message = f"No draft found for provider session {provider_session_id}"
        else:
            message = f"Draft {draft_id} not found"
        super().__init__(message)


class BookingNotFoundError(VoyagezError):
    """No confirmed booking with the given id"""

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class InvalidStateError(VoyagezError):
    """
    Operation attempted against a draft in the wrong lifecycle state.

    Surfaced to the client, never retried automatically.
    """

    def __init__(self, draft_id: str, current, expected: Iterable | None = None):
        self.draft_id = draft_id
        self.current = current
        self.expected = tuple(expected or ())
        current_value = getattr(current, "value", current)
        if self.expected:
            expected_values = ", ".join(getattr(s, "value", str(s)) for s in self.expected)
            message = f"Draft {draft_id} is {current_value}, expected one of: {expected_values}"
        else:
            message = f"Draft {draft_id} is {current_value}"
        super().__init__(message)


class InvalidStateTransitionError(VoyagezError):
    """Raised when an illegal draft state transition is attempted."""

    def __init__(self, draft_id: str, from_status, to_status):
        self.draft_id = draft_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for draft {draft_id}: {from_status.value} → {to_status.value}"
        )


class ProviderUnavailableError(VoyagezError):
    """Outbound call to the payment provider failed or timed out"""

    def __init__(self, message: str, provider: str | None = None, cause: Exception | None = None):
        self.provider = provider
        self.cause = cause
        super().__init__(message)


class PromotionConflictError(VoyagezError):
    """
    Storage uniqueness violation on ``source_draft_id``.

    Raised by storage when a concurrent promotion already created the
    booking. The reconciler recovers by fetching the winning booking.
    """

    def __init__(self, source_draft_id: str):
        self.source_draft_id = source_draft_id
        super().__init__(f"Draft {source_draft_id} was already promoted")


class PromotionFailedError(VoyagezError):
    """Promotion could not be written after all storage retries"""

    def __init__(self, draft_id: str, attempts: int, cause: Exception | None = None):
        self.draft_id = draft_id
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Promotion of draft {draft_id} failed after {attempts} attempts: {cause}"
        )


class SignatureError(VoyagezError):
    """Inbound webhook signature is missing or does not match"""


class MissingDependencyError(VoyagezError):
    """
    Raised when an optional dependency is not installed.

    This exception provides clear installation instructions to help users
    quickly resolve missing package issues.
    """

    INSTALL_COMMANDS = {
        "asyncpg": "pip install asyncpg",
        "aiosqlite": "pip install aiosqlite",
        "uvicorn": "pip install uvicorn",
    }

    def __init__(self, package: str, feature: str | None = None):
        self.package = package
        self.feature = feature

        install_cmd = self.INSTALL_COMMANDS.get(package, f"pip install {package}")

        if feature:
            message = (
                f"\n╔══════════════════════════════════════════════════════════════╗\n"
                f"║  Missing Dependency: {package:<40} ║\n"
                f"╠══════════════════════════════════════════════════════════════╣\n"
                f"║  Required for: {feature:<45} ║\n"
                f"║  Install with: {install_cmd:<45} ║\n"
                f"╚══════════════════════════════════════════════════════════════╝"
            )
        else:
            message = (
                f"\n╔══════════════════════════════════════════════════════════════╗\n"
                f"║  Missing Dependency: {package:<40} ║\n"
                f"╠══════════════════════════════════════════════════════════════╣\n"
                f"║  Install with: {install_cmd:<45} ║\n"
                f"╚══════════════════════════════════════════════════════════════╝"
            )

        super().__init__(message)
