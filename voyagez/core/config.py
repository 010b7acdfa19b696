"""
Unified configuration for the booking lifecycle.

Provides a single BookingConfig dataclass carrying storage, provider, timing
and retry settings for every component (wizard, handoff, reconciler, sweeper).

Example:
    >>> from voyagez.core.config import BookingConfig, configure
    >>>
    >>> config = BookingConfig(
    ...     storage_url="sqlite:///bookings.db",
    ...     hold_window_seconds=6 * 3600,
    ... )
    >>> configure(config)

    # Or from environment variables / .env
    >>> config = BookingConfig.from_env()
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import timedelta
from decimal import Decimal

from voyagez.core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_HOLD_WINDOW_SECONDS = 24 * 60 * 60


@dataclass
class BookingConfig:
    """
    Configuration for the booking lifecycle.

    Attributes:
        storage_url: Backend connection string (memory://, sqlite://, postgresql://)
        hold_window_seconds: Age after which an unconfirmed draft expires
        sweep_interval_seconds: Seconds between expiry sweeps
        sweep_batch_size: Maximum drafts expired per sweep
        sweep_cancel_sessions: Cancel provider sessions of expired drafts
        provider_timeout_seconds: Timeout for outbound provider calls
        storage_timeout_seconds: Timeout for one promotion storage transaction
        promotion_max_retries: Attempts for the promotion transaction
        retry_backoff_seconds: Initial delay between promotion attempts
        retry_backoff_max_seconds: Upper bound for the promotion retry delay
        wizard_max_retries: Attempts for a wizard merge under concurrent edits
        poll_attempts: Client poll bound before reporting a delayed confirmation
        poll_interval_seconds: Delay between client polls
        verify_on_poll: Ask the provider for session status on pending polls
    """

    storage_url: str = "memory://"

    hold_window_seconds: float = DEFAULT_HOLD_WINDOW_SECONDS
    sweep_interval_seconds: float = 300.0
    sweep_batch_size: int = 100
    sweep_cancel_sessions: bool = True

    provider_timeout_seconds: float = 10.0
    storage_timeout_seconds: float = 5.0
    promotion_max_retries: int = 3
    retry_backoff_seconds: float = 0.1
    retry_backoff_max_seconds: float = 2.0
    wizard_max_retries: int = 3

    poll_attempts: int = 10
    poll_interval_seconds: float = 3.0
    verify_on_poll: bool = False

    provider_name: str = "tamara"
    provider_base_url: str = "https://api-sandbox.tamara.co"
    provider_api_token: str | None = field(default=None, repr=False)
    provider_notification_token: str | None = field(default=None, repr=False)
    merchant_base_url: str = "http://localhost:8000"
    country_code: str = "SA"
    currency: str = "SAR"

    child_rate_share: Decimal = Decimal("0.7")
    infant_rate_share: Decimal = Decimal("0.1")

    def __post_init__(self):
        if self.hold_window_seconds <= 0:
            msg = "hold_window_seconds must be positive"
            raise ValueError(msg)
        if self.promotion_max_retries < 1:
            msg = "promotion_max_retries must be at least 1"
            raise ValueError(msg)
        if self.poll_attempts < 1:
            msg = "poll_attempts must be at least 1"
            raise ValueError(msg)

    @property
    def hold_window(self) -> timedelta:
        return timedelta(seconds=self.hold_window_seconds)

    def backoff_for(self, attempt: int) -> float:
        """Exponential delay before retry number ``attempt`` (1-based)."""
        delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
        return min(delay, self.retry_backoff_max_seconds)

    def with_storage(self, storage_url: str) -> BookingConfig:
        """Create a new config with a different storage URL (immutable update)."""
        return replace(self, storage_url=storage_url)

    @classmethod
    def from_env(cls, load_dotenv: bool = True) -> BookingConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            VOYAGEZ_STORAGE_URL: Storage connection string
            VOYAGEZ_HOLD_WINDOW: Draft hold window, e.g. "24h" (or VOYAGEZ_HOLD_WINDOW_SECONDS)
            VOYAGEZ_SWEEP_INTERVAL / VOYAGEZ_SWEEP_BATCH_SIZE: Sweeper cadence
            VOYAGEZ_PROVIDER_TIMEOUT / VOYAGEZ_STORAGE_TIMEOUT: Await timeouts
            VOYAGEZ_PROMOTION_MAX_RETRIES: Promotion attempts
            VOYAGEZ_POLL_ATTEMPTS / VOYAGEZ_POLL_INTERVAL: Client polling bound
            VOYAGEZ_VERIFY_ON_POLL: Server-side provider check on pending polls
            VOYAGEZ_PROVIDER_URL / VOYAGEZ_PROVIDER_TOKEN: Provider API access
            VOYAGEZ_NOTIFICATION_TOKEN: Webhook signing key
            VOYAGEZ_MERCHANT_URL: Public base URL for redirect targets
            VOYAGEZ_CHILD_RATE_SHARE / VOYAGEZ_INFANT_RATE_SHARE: Default rate shares

        Args:
            load_dotenv: If True, loads .env file before reading variables
        """
        from voyagez.core.env import get_env

        env = get_env()
        if load_dotenv:
            env.load()

        defaults = cls()
        hold_window = env.get_duration("HOLD_WINDOW", defaults.hold_window_seconds)
        return cls(
            storage_url=env.get("STORAGE_URL", defaults.storage_url),
            hold_window_seconds=env.get_float("HOLD_WINDOW_SECONDS", hold_window),
            sweep_interval_seconds=env.get_duration(
                "SWEEP_INTERVAL", defaults.sweep_interval_seconds
            ),
            sweep_batch_size=env.get_int("SWEEP_BATCH_SIZE", defaults.sweep_batch_size),
            sweep_cancel_sessions=env.get_bool(
                "SWEEP_CANCEL_SESSIONS", defaults.sweep_cancel_sessions
            ),
            provider_timeout_seconds=env.get_duration(
                "PROVIDER_TIMEOUT", defaults.provider_timeout_seconds
            ),
            storage_timeout_seconds=env.get_duration(
                "STORAGE_TIMEOUT", defaults.storage_timeout_seconds
            ),
            promotion_max_retries=env.get_int(
                "PROMOTION_MAX_RETRIES", defaults.promotion_max_retries
            ),
            poll_attempts=env.get_int("POLL_ATTEMPTS", defaults.poll_attempts),
            poll_interval_seconds=env.get_duration(
                "POLL_INTERVAL", defaults.poll_interval_seconds
            ),
            verify_on_poll=env.get_bool("VERIFY_ON_POLL", defaults.verify_on_poll),
            provider_name=env.get("PROVIDER", defaults.provider_name),
            provider_base_url=env.get("PROVIDER_URL", defaults.provider_base_url),
            provider_api_token=env.get("PROVIDER_TOKEN"),
            provider_notification_token=env.get("NOTIFICATION_TOKEN"),
            merchant_base_url=env.get("MERCHANT_URL", defaults.merchant_base_url),
            country_code=env.get("COUNTRY_CODE", defaults.country_code),
            currency=env.get("CURRENCY", defaults.currency),
            child_rate_share=env.get_decimal("CHILD_RATE_SHARE", defaults.child_rate_share),
            infant_rate_share=env.get_decimal("INFANT_RATE_SHARE", defaults.infant_rate_share),
        )


# Global configuration instance
_global_config: BookingConfig | None = None


def get_config() -> BookingConfig:
    """Get the global booking configuration."""
    global _global_config
    if _global_config is None:
        _global_config = BookingConfig()
    return _global_config


def configure(config: BookingConfig) -> None:
    """Set the global booking configuration."""
    global _global_config
    _global_config = config
    logger.info(
        f"Booking configured: storage={config.storage_url.split('://')[0]}, "
        f"hold_window={config.hold_window_seconds}s"
    )
