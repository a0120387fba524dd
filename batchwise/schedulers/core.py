# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scienting Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


from typing import Any, Generic

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from loguru import logger

from batchwise.batch import Batch
from batchwise.dtypes import ItemType, Operation
from batchwise.exceptions import (
    BatchCancelledError,
    BatchConfigError,
    OutcomeContractError,
)
from batchwise.results import ProcessingOutcome, coerce_outcome


@dataclass
class BatchReport(Generic[ItemType]):
    """What happened to one batch handed to a [`Scheduler`][schedulers.core.Scheduler]."""

    batch: Batch[ItemType]

    outcome: ProcessingOutcome[ItemType] | None = None
    """Well-formed outcome, or `None` when the invocation failed."""

    error: BaseException | None = None
    """Invocation error; the whole batch counts as unprocessed."""

    submitted: bool = True
    """`False` if the run was cancelled before this batch was admitted."""


class Scheduler(ABC):
    """Runs batches through an operation with bounded concurrency.

    The admission loop is greedy: at most
    [`max_concurrency`][schedulers.core.Scheduler.max_concurrency] invocations
    are pending at any instant, and the moment one of them completes the next
    queued batch is submitted. Batches are submitted in the order given;
    reports come back in completion order.

    Subclasses only decide how a single invocation is started by implementing
    [`_start`][schedulers.core.Scheduler._start].
    """

    def __init__(self, max_concurrency: int = 10) -> None:
        if isinstance(max_concurrency, float) and max_concurrency.is_integer():
            max_concurrency = int(max_concurrency)
        if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int):
            raise BatchConfigError(
                f"max_concurrency must be an int, got {max_concurrency!r}"
            )
        if max_concurrency < 1:
            raise BatchConfigError(f"max_concurrency must be >= 1, got {max_concurrency}")

        self.max_concurrency: int = max_concurrency
        """
        Maximum number of operation invocations in flight at once. This is the
        only backpressure applied; queued batches are held in memory.
        """

    @abstractmethod
    def _start(self, batch: Batch[ItemType], op: Operation) -> Awaitable[Any]:
        """Begin one invocation of `op` on `batch` and return something awaitable."""

    def check_operation(self, op: Operation) -> None:
        """Raise `TypeError` if this scheduler cannot run `op`."""
        if not callable(op):
            raise TypeError(f"operation must be callable, got {type(op).__name__}")

    def prepare(self) -> None:
        """Hook run once before the first round."""

    def _unwrap_error(self, exc: BaseException) -> BaseException:
        return exc

    def _cancel(self, future: "asyncio.Future[Any]") -> None:
        """Stop an in-flight invocation when the run is abandoned."""
        future.cancel()

    def _report(
        self, batch: Batch[ItemType], future: "asyncio.Future[Any]"
    ) -> BatchReport[ItemType]:
        if future.cancelled():
            return BatchReport(batch, error=BatchCancelledError("invocation cancelled"))
        exc = future.exception()
        if exc is not None:
            exc = self._unwrap_error(exc)
            logger.debug(f"Batch {batch.number} raised {type(exc).__name__}: {exc}")
            return BatchReport(batch, error=exc)
        try:
            outcome = coerce_outcome(future.result())
        except OutcomeContractError as contract_error:
            logger.warning(f"Batch {batch.number}: {contract_error}")
            return BatchReport(batch, error=contract_error)
        logger.debug(
            f"Batch {batch.number} completed: {len(outcome.processed)} processed, "
            f"{len(outcome.unprocessed)} unprocessed"
        )
        return BatchReport(batch, outcome=outcome)

    async def run(
        self,
        batches: Sequence[Batch[ItemType]],
        op: Operation,
        *,
        cancel_event: asyncio.Event | None = None,
        on_submit: Callable[[Batch[ItemType]], None] | None = None,
    ) -> list[BatchReport[ItemType]]:
        """Submit every batch and wait for all of them.

        Exceptions raised by `op` never escape; they become reports with
        `error` set. If `cancel_event` is set, no further batches are admitted
        and the remaining ones are reported with `submitted=False`. If the
        task awaiting this coroutine is cancelled, in-flight invocations are
        cancelled as well.

        Args:
            batches: Batches in submission order.
            op: Operation to invoke once per batch.
            cancel_event: Stop admitting new batches once set.
            on_submit: Called with each batch right before it is submitted.

        Returns:
            One report per batch, in completion order, followed by the batches
                that were never submitted.
        """
        queue: deque[Batch[ItemType]] = deque(batches)
        pending: dict[asyncio.Future[Any], Batch[ItemType]] = {}
        reports: list[BatchReport[ItemType]] = []

        try:
            while queue or pending:
                # Admit queued batches while there are free slots.
                while queue and len(pending) < self.max_concurrency:
                    if cancel_event is not None and cancel_event.is_set():
                        break
                    batch = queue.popleft()
                    if on_submit is not None:
                        on_submit(batch)
                    logger.debug(f"Submitting batch {batch.number} of {len(batch)} items")
                    future = asyncio.ensure_future(self._start(batch, op))
                    pending[future] = batch

                if not pending:
                    break

                done, _ = await asyncio.wait(
                    pending.keys(), return_when=asyncio.FIRST_COMPLETED
                )
                for future in done:
                    reports.append(self._report(pending.pop(future), future))
        finally:
            for future in pending:
                self._cancel(future)

        if queue:
            logger.info(f"Cancelled with {len(queue)} batches not submitted")
        for batch in queue:
            reports.append(
                BatchReport(
                    batch,
                    error=BatchCancelledError("run cancelled before batch was submitted"),
                    submitted=False,
                )
            )
        return reports
