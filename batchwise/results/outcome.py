# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scientific Computing Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


from typing import Any, Generic

from collections.abc import Mapping
from dataclasses import dataclass, field

from batchwise.dtypes import ItemType
from batchwise.exceptions import OutcomeContractError


@dataclass
class ProcessingOutcome(Generic[ItemType]):
    """Result of one operation invocation.

    Every item of the submitted batch should appear in exactly one of
    `processed` or `unprocessed`.
    """

    processed: list[ItemType] = field(default_factory=list)
    """Items the remote system accepted."""

    unprocessed: list[ItemType] = field(default_factory=list)
    """Items the remote system rejected; these are retried."""

    error: BaseException | None = None
    """Why `unprocessed` items were rejected, if the operation knows."""

    metadata: dict[str, Any] = field(default_factory=dict)
    """Free-form data about the call (request ids, consumed capacity, ...)."""


@dataclass
class FailedItem(Generic[ItemType]):
    item: ItemType
    """The payload that could not be processed."""

    error: BaseException | None = None
    """Error recorded on the final attempt."""

    attempts: int = 0
    """Number of invocations that left this item unprocessed."""


@dataclass
class RetryRecord(Generic[ItemType]):
    """Bookkeeping for an item that is currently unprocessed."""

    item: ItemType
    attempts: int = 0
    last_error: BaseException | None = None


@dataclass
class AggregateResult(Generic[ItemType]):
    """Terminal tally of one [`process`][processor.BatchProcessor.process] call.

    `len(processed) + len(failed)` always equals the number of input items.
    Neither list is guaranteed to follow input order once any retry happened
    unless an [`OrderedOutcomeCollector`][results.ordered.OrderedOutcomeCollector]
    was used.
    """

    processed: list[ItemType] = field(default_factory=list)
    failed: list[FailedItem[ItemType]] = field(default_factory=list)

    total_batches: int = 0
    """Batches submitted in the first round."""

    rounds: int = 0
    """Rounds run, including the first one."""

    invocations: int = 0
    """Operation invocations across all rounds."""

    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def failed_items(self) -> list[ItemType]:
        return [f.item for f in self.failed]

    def __len__(self) -> int:
        return len(self.processed) + len(self.failed)

    def summary(self) -> str:
        return f"{len(self.processed)} processed, {len(self.failed)} failed"


def coerce_outcome(value: object) -> ProcessingOutcome[Any]:
    """Accept a `ProcessingOutcome`, a `{"processed", "unprocessed"}` mapping or
    a `(processed, unprocessed)` pair.

    Raises:
        OutcomeContractError: For anything else.
    """
    if isinstance(value, ProcessingOutcome):
        return value
    if isinstance(value, Mapping):
        if "processed" in value or "unprocessed" in value:
            return ProcessingOutcome(
                processed=list(value.get("processed") or []),
                unprocessed=list(value.get("unprocessed") or []),
                error=value.get("error"),
                metadata=dict(value.get("metadata") or {}),
            )
    elif isinstance(value, tuple) and len(value) == 2:
        processed, unprocessed = value
        return ProcessingOutcome(processed=list(processed), unprocessed=list(unprocessed))
    raise OutcomeContractError(
        f"operation returned {type(value).__name__}, expected ProcessingOutcome"
    )
