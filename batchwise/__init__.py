# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scienting Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.

"""Bounded-concurrency batch processing with per-entry retries"""

from typing import Any

import sys

from loguru import logger

from .exceptions import (
    BatchwiseError,
    BatchConfigError,
    OutcomeContractError,
    EntryRejectedError,
    BatchCancelledError,
)
from .batch import Batch, batch_generator, partition
from .backoff import (
    BackoffStrategy,
    ExponentialBackoff,
    FullJitterBackoff,
    ConstantBackoff,
    NoBackoff,
)
from .config import BatchConfig, BatchSettings
from .reporter import Reporter, CallbackReporter, LoguruReporter, NullReporter
from .results import (
    AggregateResult,
    FailedItem,
    ProcessingOutcome,
    OutcomeHandler,
    OutcomeCollector,
    OrderedOutcomeCollector,
)
from .schedulers import Scheduler, LocalScheduler, RayScheduler
from .operation import BatchOperation
from .entries import (
    build_entries,
    entry_id,
    outcome_from_failed_ids,
    outcome_from_response,
    outcome_from_unprocessed,
)
from .retry import is_retryable_error, retry_with_backoff
from .processor import BatchProcessor, process

__all__ = [
    "BatchwiseError",
    "BatchConfigError",
    "OutcomeContractError",
    "EntryRejectedError",
    "BatchCancelledError",
    "Batch",
    "batch_generator",
    "partition",
    "BackoffStrategy",
    "ExponentialBackoff",
    "FullJitterBackoff",
    "ConstantBackoff",
    "NoBackoff",
    "BatchConfig",
    "BatchSettings",
    "Reporter",
    "CallbackReporter",
    "LoguruReporter",
    "NullReporter",
    "AggregateResult",
    "FailedItem",
    "ProcessingOutcome",
    "OutcomeHandler",
    "OutcomeCollector",
    "OrderedOutcomeCollector",
    "Scheduler",
    "LocalScheduler",
    "RayScheduler",
    "BatchOperation",
    "build_entries",
    "entry_id",
    "outcome_from_failed_ids",
    "outcome_from_response",
    "outcome_from_unprocessed",
    "is_retryable_error",
    "retry_with_backoff",
    "BatchProcessor",
    "process",
    "enable_logging",
]

logger.disable("batchwise")

LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def enable_logging(
    level_set: int | str = 20,
    stdout_set: bool = True,
    file_path: str | None = None,
    log_format: str = LOG_FORMAT,
) -> dict[str, Any]:
    """Turn on `batchwise` logging, which is disabled on import.

    Args:
        level_set: Minimum level, e.g. `10` for debug or `"INFO"`.
        stdout_set: Log to standard output.
        file_path: Also log to this file.
        log_format: loguru format string for every sink.

    Returns:
        The configuration passed to `logger.configure`.
    """
    logger.enable("batchwise")
    config: dict[str, Any] = {"handlers": []}
    if stdout_set:
        config["handlers"].append(
            {"sink": sys.stdout, "level": level_set, "format": log_format}
        )
    if isinstance(file_path, str):
        config["handlers"].append(
            {"sink": file_path, "level": level_set, "format": log_format}
        )
    logger.configure(**config)
    return config
