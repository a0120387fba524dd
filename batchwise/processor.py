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
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

from loguru import logger

from batchwise.backoff import BackoffStrategy, ExponentialBackoff
from batchwise.batch import Batch, make_batches
from batchwise.config import BatchConfig
from batchwise.dtypes import ItemType, Operation
from batchwise.exceptions import (
    BatchCancelledError,
    BatchConfigError,
    BatchwiseError,
    OutcomeContractError,
)
from batchwise.reporter import Reporter, as_reporter
from batchwise.results import (
    AggregateResult,
    FailedItem,
    OutcomeCollector,
    OutcomeHandler,
    ProcessingOutcome,
    RetryRecord,
)
from batchwise.schedulers import BatchReport, LocalScheduler, Scheduler


def same_payload(candidate: object, item: object) -> bool:
    """Equality test for payloads that never raises.

    Values that cannot be compared with `==` (an `__eq__` that raises or
    returns something other than a `bool`, as numpy arrays do) or that are
    not equal to themselves (NaN) are compared by type and `repr` instead.
    """
    try:
        equal = candidate == item
        if isinstance(equal, bool) and equal:
            return True
        self_equal = candidate == candidate
        comparable = isinstance(equal, bool) and isinstance(self_equal, bool) and self_equal
    except Exception:
        comparable = False
    if comparable:
        return False
    try:
        return type(candidate) is type(item) and repr(candidate) == repr(item)
    except Exception:
        return False


def match_outcome(
    batch: Batch[ItemType], outcome: ProcessingOutcome[ItemType]
) -> tuple[list[int], list[int], list[int]]:
    """Map the items of `outcome` back to positions in `batch`.

    Items are matched by identity first and
    [`same_payload`][processor.same_payload] second, and each batch
    position can be claimed once, so duplicate payloads are handled. Processed
    items claim their positions before unprocessed ones.

    Returns:
        Positions that were processed, positions that were rejected, and
            positions the operation did not mention at all.
    """
    claimed = [False] * len(batch.items)

    def claim(item: object) -> int | None:
        for pos, candidate in enumerate(batch.items):
            if not claimed[pos] and candidate is item:
                claimed[pos] = True
                return pos
        for pos, candidate in enumerate(batch.items):
            if not claimed[pos] and same_payload(candidate, item):
                claimed[pos] = True
                return pos
        return None

    processed: list[int] = []
    rejected: list[int] = []
    unknown = 0
    for bucket, items in ((processed, outcome.processed), (rejected, outcome.unprocessed)):
        for item in items:
            pos = claim(item)
            if pos is None:
                unknown += 1
            else:
                bucket.append(pos)

    if unknown:
        logger.warning(f"Batch {batch.number}: ignoring {unknown} items that were not submitted")
    rejected.sort()
    dropped = [pos for pos, was_claimed in enumerate(claimed) if not was_claimed]
    return sorted(processed), rejected, dropped


@dataclass
class _Run(Generic[ItemType]):
    """State of one `process` call. Items are referred to by their index in `backing`."""

    backing: list[ItemType]
    handler: OutcomeHandler[ItemType]
    records: dict[int, RetryRecord[ItemType]] = field(default_factory=dict)
    round_number: int = 0
    round_batches: int = 0
    total_batches: int = 0
    invocations: int = 0
    cancelled: bool = False


class BatchProcessor(Generic[ItemType]):
    """
    Pushes an item collection through a remote batch API with bounded
    concurrency, retrying only the entries the API rejected.

    A run proceeds in rounds. The first round partitions every item into
    batches of [`batch_size`][config.BatchConfig.batch_size] and hands them
    to the [`Scheduler`][schedulers.core.Scheduler]. Items an invocation left
    unprocessed (or all of its items, if it raised) have their attempt counter
    incremented; those past
    [`max_retries`][config.BatchConfig.max_retries] are permanently failed,
    the rest are re-partitioned and resubmitted in the next round after a
    [backoff][backoff.BackoffStrategy] delay. The loop ends when nothing is
    left to retry.

    Business-level failures never escape
    [`process`][processor.BatchProcessor.process]; check
    [`AggregateResult.ok`][results.outcome.AggregateResult.ok] instead. Only
    configuration errors raise, and they do so here in the constructor.

    Example:
        ```python
        async def send(batch):
            response = await sqs.send_message_batch(
                QueueUrl=url, Entries=build_entries(batch, to_entry)
            )
            return outcome_from_response(batch, response)


        processor = BatchProcessor(BatchConfig(batch_size=10, max_concurrency=5), print)
        result = await processor.process(messages, send)
        print(f"Batch send complete: {result.summary()}")
        ```
    """

    def __init__(
        self,
        config: BatchConfig | Mapping[str, Any] | None = None,
        reporter: Reporter | Callable[[str], None] | None = None,
        *,
        scheduler: Scheduler | None = None,
        backoff: BackoffStrategy | None = None,
        handler_cls: type[OutcomeHandler[ItemType]] = OutcomeCollector,
    ) -> None:
        """
        Args:
            config: Engine settings, or a mapping accepted by
                [`BatchConfig.from_mapping`][config.BatchConfig.from_mapping].
            reporter: Receives progress lines. Either a
                [`Reporter`][reporter.Reporter] or a plain callable.
            scheduler: How invocations are executed. Defaults to a
                [`LocalScheduler`][schedulers.local.LocalScheduler] bounded by
                `config.max_concurrency`.
            backoff: Delay between retry rounds. Defaults to
                [`ExponentialBackoff`][backoff.ExponentialBackoff].
            handler_cls: Aggregator class; use
                [`OrderedOutcomeCollector`][results.ordered.OrderedOutcomeCollector]
                when results must follow input order.

        Raises:
            BatchConfigError: If any setting is out of range.
        """
        if config is None:
            config = BatchConfig()
        elif isinstance(config, Mapping):
            config = BatchConfig.from_mapping(config)
        elif not isinstance(config, BatchConfig):
            raise BatchConfigError(f"config must be a BatchConfig, got {type(config).__name__}")
        self.config: BatchConfig = config

        if scheduler is None:
            scheduler = LocalScheduler(max_concurrency=config.max_concurrency)
        elif scheduler.max_concurrency != config.max_concurrency:
            raise BatchConfigError(
                f"scheduler max_concurrency ({scheduler.max_concurrency}) does not "
                f"match config max_concurrency ({config.max_concurrency})"
            )
        self.scheduler: Scheduler = scheduler

        self.backoff: BackoffStrategy = backoff or ExponentialBackoff()
        self.handler_cls: type[OutcomeHandler[ItemType]] = handler_cls
        self.reporter: Reporter = as_reporter(reporter)

    def _report(self, message: str, verbose_only: bool = False) -> None:
        if verbose_only and not self.config.verbose:
            return
        self.reporter.report(message)

    async def process(
        self,
        items: Iterable[ItemType],
        op: Operation,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AggregateResult[ItemType]:
        """Process every item and wait until each one is terminal.

        Args:
            items: Items to process. Read once, up front.
            op: Performs one remote batch call and returns a
                [`ProcessingOutcome`][results.outcome.ProcessingOutcome].
            cancel_event: Once set, no further batches are submitted and no
                further rounds start; items that are not terminal yet are
                failed with [`BatchCancelledError`][exceptions.BatchCancelledError].

        Returns:
            Processed and permanently failed items. Their counts always add up
                to the number of input items.
        """
        self.scheduler.check_operation(op)
        run: _Run[ItemType] = _Run(backing=list(items), handler=self.handler_cls())
        retryable: list[int] = list(range(len(run.backing)))
        if retryable:
            self.scheduler.prepare()

        logger.info(f"Processing {len(run.backing)} items")
        while retryable:
            if run.round_number > 0 and not await self._wait_before_retry(
                run.round_number, cancel_event
            ):
                run.cancelled = True
                break

            batches = make_batches(retryable, run.backing, self.config.batch_size)
            run.round_batches = len(batches)
            if run.round_number == 0:
                run.total_batches = len(batches)
                self._report(
                    f"Processing {len(batches)} batches of up to "
                    f"{self.config.batch_size} items each..."
                )
            else:
                self._report(
                    f"Retry {run.round_number}/{self.config.max_retries}: resubmitting "
                    f"{len(retryable)} items in {len(batches)} batches..."
                )

            reports = await self.scheduler.run(
                batches,
                op,
                cancel_event=cancel_event,
                on_submit=lambda batch: self._on_submit(run, batch),
            )

            retryable = []
            settled_before = run.handler.n_terminal
            for report in reports:
                if not report.submitted:
                    run.cancelled = True
                    retryable.extend(report.batch.keys)
                    continue
                run.invocations += 1
                retryable.extend(self._settle(run, report))

            self._report(
                f"Round {run.round_number + 1} complete: "
                f"{run.handler.n_terminal - settled_before} items settled, "
                f"{len(retryable)} to retry"
            )
            run.round_number += 1
            if run.cancelled:
                break

        if run.cancelled:
            self._cancel_remaining(run, retryable)

        run.handler.finalize()
        result = run.handler.get()
        result.total_batches = run.total_batches
        result.rounds = run.round_number
        result.invocations = run.invocations
        result.cancelled = run.cancelled
        if len(result) != len(run.backing):
            raise BatchwiseError(
                f"{type(run.handler).__name__} returned {len(result)} terminal items "
                f"for {len(run.backing)} inputs"
            )

        self._report(f"Batch processing complete: {result.summary()}")
        logger.info(
            f"Finished {len(run.backing)} items in {run.round_number} rounds and "
            f"{run.invocations} invocations: {result.summary()}"
        )
        return result

    def process_sync(
        self,
        items: Iterable[ItemType],
        op: Operation,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AggregateResult[ItemType]:
        """Run [`process`][processor.BatchProcessor.process] on a fresh event loop.

        For synchronous command code. Must not be called from a running loop.
        """
        return asyncio.run(self.process(items, op, cancel_event=cancel_event))

    def _on_submit(self, run: _Run[ItemType], batch: Batch[ItemType]) -> None:
        self._report(
            f"Submitting batch {batch.number}/{run.round_batches} ({len(batch)} items)",
            verbose_only=True,
        )

    def _settle(self, run: _Run[ItemType], report: BatchReport[ItemType]) -> list[int]:
        """Apply one report to the run and return the keys to retry."""
        batch = report.batch
        label = f"Batch {batch.number}/{run.round_batches}"

        rejected: list[tuple[int, BaseException | None]]
        if report.outcome is None:
            self._report(f"{label} failed: {report.error}", verbose_only=True)
            rejected = [(key, report.error) for key in batch.keys]
        else:
            processed, unprocessed, dropped = match_outcome(batch, report.outcome)
            for pos in processed:
                key = batch.keys[pos]
                run.records.pop(key, None)
                run.handler.add_processed(key, run.backing[key])
            errors: dict[int, BaseException | None] = dict.fromkeys(
                unprocessed, report.outcome.error
            )
            if dropped:
                contract_error = OutcomeContractError(
                    f"operation did not account for {len(dropped)} of {len(batch)} items"
                )
                logger.warning(f"{label}: {contract_error}")
                errors.update(dict.fromkeys(dropped, contract_error))
            rejected = [(batch.keys[pos], errors[pos]) for pos in sorted(errors)]
            self._report(
                f"{label}: processed {len(processed)}/{len(batch)} items",
                verbose_only=True,
            )

        retry: list[int] = []
        for key, error in rejected:
            record = run.records.get(key)
            if record is None:
                record = run.records[key] = RetryRecord(item=run.backing[key])
            record.attempts += 1
            record.last_error = error

            if record.attempts > self.config.max_retries:
                del run.records[key]
                run.handler.add_failed(
                    key,
                    FailedItem(record.item, error=record.last_error, attempts=record.attempts),
                )
                self._report(
                    f"Item {key} failed after {record.attempts} attempts: {error}",
                    verbose_only=True,
                )
            else:
                retry.append(key)
        return retry

    async def _wait_before_retry(
        self, retry_round: int, cancel_event: asyncio.Event | None
    ) -> bool:
        """Sleep for the backoff delay. Returns `False` if cancelled meanwhile."""
        if cancel_event is not None and cancel_event.is_set():
            return False

        delay = self.backoff.delay(retry_round)
        logger.debug(f"Waiting {delay:.2f}s before retry round {retry_round}")
        if delay <= 0:
            return True
        self._report(f"Waiting {delay:.1f}s before retrying...", verbose_only=True)

        if cancel_event is None:
            await asyncio.sleep(delay)
            return True
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except TimeoutError:
            return True
        return False

    def _cancel_remaining(self, run: _Run[ItemType], keys: list[int]) -> None:
        logger.info(f"Run cancelled with {len(keys)} items outstanding")
        for key in keys:
            record = run.records.pop(key, None)
            run.handler.add_failed(
                key,
                FailedItem(
                    run.backing[key],
                    error=BatchCancelledError("run cancelled"),
                    attempts=record.attempts if record else 0,
                ),
            )
        self._report(f"Cancelled: {len(keys)} items were not processed")


async def process(
    items: Iterable[ItemType],
    op: Operation,
    config: BatchConfig | Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> AggregateResult[ItemType]:
    """One-shot helper: build a [`BatchProcessor`][processor.BatchProcessor] and run it.

    `kwargs` go to the processor constructor (`reporter`, `scheduler`,
    `backoff`, `handler_cls`).
    """
    return await BatchProcessor(config, **kwargs).process(items, op)
