# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scienting Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


from typing_extensions import override

import random
from abc import ABC, abstractmethod


class BackoffStrategy(ABC):
    """Decides how long to wait before a retry.

    `attempt` is 1 for the first retry, 2 for the second, and so on.
    """

    @abstractmethod
    def delay(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt`."""


class ExponentialBackoff(BackoffStrategy):
    r"""Exponential backoff with additive jitter, capped at `max_delay`.

    $$
    d = \min\left(b \cdot 2^{a - 1} + U(0, j), d_\text{max}\right)
    $$

    With the defaults the first retry round waits between one and two
    seconds and no round waits longer than thirty.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 1.0,
        rng: random.Random | None = None,
    ) -> None:
        if base_delay < 0 or max_delay < 0 or jitter < 0:
            raise ValueError("backoff delays must be >= 0")
        self.base_delay: float = base_delay
        self.max_delay: float = max_delay
        self.jitter: float = jitter
        self.rng: random.Random = rng or random.Random()

    @override
    def delay(self, attempt: int) -> float:
        exponential = self.base_delay * 2 ** max(attempt - 1, 0)
        return min(exponential + self.rng.uniform(0, self.jitter), self.max_delay)


class FullJitterBackoff(BackoffStrategy):
    """
    "Full jitter" backoff: a uniform draw between zero and the capped
    exponential delay. Spreads out clients hammering a throttled API.
    """

    def __init__(
        self,
        base_delay: float = 0.1,
        max_delay: float = 20.0,
        rng: random.Random | None = None,
    ) -> None:
        if base_delay < 0 or max_delay < 0:
            raise ValueError("backoff delays must be >= 0")
        self.base_delay: float = base_delay
        self.max_delay: float = max_delay
        self.rng: random.Random = rng or random.Random()

    @override
    def delay(self, attempt: int) -> float:
        capped = min(self.base_delay * 2**attempt, self.max_delay)
        return self.rng.uniform(0, capped)


class ConstantBackoff(BackoffStrategy):
    def __init__(self, delay: float) -> None:
        if delay < 0:
            raise ValueError("backoff delays must be >= 0")
        self.seconds: float = delay

    @override
    def delay(self, attempt: int) -> float:
        return self.seconds


class NoBackoff(BackoffStrategy):
    """Retry immediately. Mostly useful in tests."""

    @override
    def delay(self, attempt: int) -> float:
        return 0.0
