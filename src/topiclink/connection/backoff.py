"""Exponential backoff policy for reconnection delays."""

import math
import random
from typing import Optional

from topiclink.domain.errors import ConfigurationError

DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 60.0
DEFAULT_MULTIPLIER = 2.0


def next_delay(
    attempt: int,
    max_delay: float,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    multiplier: float = DEFAULT_MULTIPLIER,
) -> float:
    """
    Compute the delay before reconnection attempt ``attempt``.

    The delay is ``initial_delay * multiplier ** attempt`` clamped to
    ``max_delay``.

    Args:
        attempt: Zero-based attempt number
        max_delay: Ceiling for the delay (seconds)
        initial_delay: Delay for attempt 0 (seconds)
        multiplier: Growth factor per attempt

    Returns:
        Delay in seconds
    """
    return BackoffPolicy(initial_delay=initial_delay, max_delay=max_delay, multiplier=multiplier).next_delay(attempt)


class BackoffPolicy:
    """Capped exponential backoff with optional jitter.

    Without jitter the delay is monotonically non-decreasing in the attempt
    number. Jitter scales a delay into [(1 - jitter) * delay, delay], so the cap
    always holds and no retry follows its predecessor immediately.
    """

    def __init__(
        self,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        multiplier: float = DEFAULT_MULTIPLIER,
        jitter: float = 0.0,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the policy.

        Args:
            initial_delay: Delay for attempt 0 (seconds)
            max_delay: Ceiling for any delay (seconds)
            multiplier: Growth factor per attempt
            jitter: Fraction in [0, 1) by which a delay may be randomly reduced
            rng: Random source used for jitter

        Raises:
            ConfigurationError: If any parameter is out of range
        """
        if not max_delay > 0:
            raise ConfigurationError(f"max_delay must be positive, got {max_delay}")
        if not initial_delay > 0:
            raise ConfigurationError(f"initial_delay must be positive, got {initial_delay}")
        if not multiplier >= 1.0:
            raise ConfigurationError(f"multiplier must be at least 1.0, got {multiplier}")
        if not 0.0 <= jitter < 1.0:
            raise ConfigurationError(f"jitter must be within [0, 1), got {jitter}")

        self._initial_delay = float(initial_delay)
        self._max_delay = float(max_delay)
        self._multiplier = float(multiplier)
        self._jitter = float(jitter)
        self._rng = rng or random.Random()

        # First attempt whose raw delay reaches the cap; powers are never
        # computed beyond it.
        if self._initial_delay >= self._max_delay:
            self._saturation_attempt = 0.0
        elif self._multiplier == 1.0:
            self._saturation_attempt = math.inf
        else:
            ratio = self._max_delay / self._initial_delay
            self._saturation_attempt = math.ceil(math.log(ratio, self._multiplier))

    @classmethod
    def from_settings(cls, settings, rng: Optional[random.Random] = None) -> "BackoffPolicy":
        """Build a policy from ``BackoffSettings``."""
        return cls(
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            multiplier=settings.multiplier,
            jitter=settings.jitter,
            rng=rng,
        )

    @property
    def initial_delay(self) -> float:
        return self._initial_delay

    @property
    def max_delay(self) -> float:
        return self._max_delay

    @property
    def multiplier(self) -> float:
        return self._multiplier

    @property
    def jitter(self) -> float:
        return self._jitter

    def next_delay(self, attempt: int) -> float:
        """
        Compute the delay for a zero-based attempt number.

        Raises:
            ConfigurationError: If attempt is negative
        """
        if attempt < 0:
            raise ConfigurationError(f"attempt must be non-negative, got {attempt}")

        if attempt >= self._saturation_attempt:
            delay = self._max_delay
        else:
            delay = min(self._initial_delay * self._multiplier**attempt, self._max_delay)

        if self._jitter:
            delay *= 1.0 - self._jitter * self._rng.random()
        return delay
