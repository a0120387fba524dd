# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scienting Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


from typing import Any

from collections.abc import Mapping
from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict

from batchwise.exceptions import BatchConfigError

_KEY_ALIASES = {
    "batchSize": "batch_size",
    "maxConcurrency": "max_concurrency",
    "maxRetries": "max_retries",
}


def _as_int(name: str, value: object) -> int:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise BatchConfigError(f"{name} must be an int, got {value!r}")
    return value


@dataclass(frozen=True)
class BatchConfig:
    """Validated settings for [`BatchProcessor`][processor.BatchProcessor].

    Out-of-range values raise
    [`BatchConfigError`][exceptions.BatchConfigError] immediately, so a bad
    flag is reported before any remote call is made.
    """

    batch_size: int = 10
    """
    Items per operation invocation. Must not exceed what the remote API
    accepts (10 for message-queue batch calls, 25 for table batch writes).
    """

    max_concurrency: int = 10
    """Maximum number of invocations in flight at once."""

    max_retries: int = 3
    """
    Additional attempts an item gets after its first rejection. An item that is
    rejected `max_retries + 1` times is permanently failed.
    """

    verbose: bool = False
    """Report per-batch and per-item progress, not just round summaries."""

    def __post_init__(self) -> None:
        # Frozen, so normalized values go through object.__setattr__.
        object.__setattr__(self, "batch_size", _as_int("batch_size", self.batch_size))
        object.__setattr__(
            self, "max_concurrency", _as_int("max_concurrency", self.max_concurrency)
        )
        object.__setattr__(self, "max_retries", _as_int("max_retries", self.max_retries))
        object.__setattr__(self, "verbose", bool(self.verbose))

        if self.batch_size < 1:
            raise BatchConfigError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_concurrency < 1:
            raise BatchConfigError(
                f"max_concurrency must be >= 1, got {self.max_concurrency}"
            )
        if self.max_retries < 0:
            raise BatchConfigError(f"max_retries must be >= 0, got {self.max_retries}")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "BatchConfig":
        """Build a config from parsed CLI input.

        Accepts snake_case keys as well as the camelCase keys used by command
        schemas (`batchSize`, `maxConcurrency`, `maxRetries`). Unknown keys are
        ignored and missing keys keep their defaults.
        """
        kwargs: dict[str, Any] = {}
        for key, value in values.items():
            name = _KEY_ALIASES.get(key, key)
            if name in cls.__dataclass_fields__ and value is not None:
                kwargs[name] = value
        return cls(**kwargs)


class BatchSettings(BaseSettings):
    """Defaults read from `BATCHWISE_*` environment variables or a `.env` file."""

    model_config = SettingsConfigDict(
        env_prefix="BATCHWISE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    batch_size: int = 10
    max_concurrency: int = 10
    max_retries: int = 3
    verbose: bool = False

    def to_config(self, **overrides: Any) -> BatchConfig:
        """Convert to a validated [`BatchConfig`][config.BatchConfig].

        `overrides` that are not `None` take precedence, so CLI flags can be
        passed straight through.
        """
        values = self.model_dump()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return BatchConfig.from_mapping(values)
