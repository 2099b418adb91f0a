"""
Retry backoff configuration for failed work units.

The number of retries lives on each WorkUnit (``max_attempts``). RetryPolicy
only decides how long a retried unit waits before it is ready again.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, cast


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for retry backoff.

    Examples:
        # 1s, 2s, 4s, ... capped at 30s
        policy = RetryPolicy.STANDARD

        # Fixed delay between attempts
        policy = RetryPolicy.fixed(500)

        # Custom backoff
        policy = RetryPolicy(
            initial_delay_ms=1000,
            max_delay_ms=30000,
            backoff_multiplier=2.0
        )
    """

    initial_delay_ms: int
    """Delay before the first retry in milliseconds."""

    max_delay_ms: int
    """Maximum delay between retries in milliseconds (caps exponential backoff)."""

    backoff_multiplier: float
    """Multiplier for exponential backoff.

    Each retry delay is calculated as:
    min(initial_delay * backoff_multiplier^(attempt-1), max_delay)

    A multiplier of 1.0 gives a fixed delay.
    """

    # =========================================================================
    # Predefined Policies
    # =========================================================================

    if TYPE_CHECKING:
        NONE: RetryPolicy
        STANDARD: RetryPolicy
        AGGRESSIVE: RetryPolicy
    else:
        # Set after class definition
        NONE = cast("RetryPolicy", None)
        STANDARD = cast("RetryPolicy", None)
        AGGRESSIVE = cast("RetryPolicy", None)

    @classmethod
    def fixed(cls, delay_ms: int) -> RetryPolicy:
        """
        Create a policy that waits the same delay before every retry.

        Args:
            delay_ms: Delay in milliseconds

        Returns:
            RetryPolicy with multiplier 1.0
        """
        return cls(initial_delay_ms=delay_ms, max_delay_ms=delay_ms, backoff_multiplier=1.0)

    def delay_for_attempt(self, attempt: int) -> int:
        """
        Calculate the delay before retry number ``attempt``.

        Args:
            attempt: The retry number (1-indexed)

        Returns:
            Delay in milliseconds

        Example:
            policy = RetryPolicy.STANDARD
            policy.delay_for_attempt(1)  # 1000
            policy.delay_for_attempt(2)  # 2000
            policy.delay_for_attempt(3)  # 4000
        """
        if attempt < 1:
            attempt = 1

        exponent = attempt - 1
        delay_ms = self.initial_delay_ms * (self.backoff_multiplier**exponent)

        return int(min(delay_ms, self.max_delay_ms))

    def delay_seconds(self, attempt: int) -> float:
        """Same as delay_for_attempt() but in seconds."""
        return self.delay_for_attempt(attempt) / 1000.0

    def to_dict(self) -> dict:
        return {
            "initial_delay_ms": self.initial_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "backoff_multiplier": self.backoff_multiplier,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RetryPolicy:
        return cls(
            initial_delay_ms=int(data["initial_delay_ms"]),
            max_delay_ms=int(data["max_delay_ms"]),
            backoff_multiplier=float(data["backoff_multiplier"]),
        )

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(initial_delay_ms={self.initial_delay_ms}, "
            f"max_delay_ms={self.max_delay_ms}, "
            f"backoff_multiplier={self.backoff_multiplier})"
        )


# Named policies
RetryPolicy.NONE = RetryPolicy(initial_delay_ms=0, max_delay_ms=0, backoff_multiplier=1.0)

RetryPolicy.STANDARD = RetryPolicy(
    initial_delay_ms=1000,
    max_delay_ms=30000,
    backoff_multiplier=2.0,
)

RetryPolicy.AGGRESSIVE = RetryPolicy(
    initial_delay_ms=100,
    max_delay_ms=10000,
    backoff_multiplier=1.5,
)


class RetryableError(Exception):
    """
    Base class for executor errors that can say whether they should be retried.

    Errors that do not derive from this class are always retried while the
    unit has retries left.

    Example:
        class DeployError(RetryableError):
            def __init__(self, message: str, is_retryable: bool = True):
                super().__init__(message)
                self._retryable = is_retryable

            def is_retryable(self) -> bool:
                return self._retryable

        # Registry hiccup, worth another attempt
        raise DeployError("Registry timeout", is_retryable=True)

        # Permanent error - fail the unit immediately
        raise DeployError("Manifest is invalid", is_retryable=False)
    """

    def is_retryable(self) -> bool:
        """False fails the unit at once, whatever retries it has left."""
        return True
