# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scientific Computing Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.

import asyncio
import random

import pytest

from batchwise import (
    BatchCancelledError,
    BatchConfig,
    BatchOperation,
    BatchProcessor,
    BatchwiseError,
    ConstantBackoff,
    OrderedOutcomeCollector,
    OutcomeCollector,
    OutcomeContractError,
    ProcessingOutcome,
    process,
)


def _processor(no_backoff, reporter=None, **config):
    return BatchProcessor(BatchConfig(**config), reporter, backoff=no_backoff)


@pytest.mark.asyncio
async def test_all_succeed_in_three_batches(make_op, no_backoff):
    op = make_op()
    processor = _processor(no_backoff, batch_size=10, max_concurrency=3)

    result = await processor.process(list(range(25)), op)

    assert [len(call) for call in op.calls] == [10, 10, 5]
    assert len(result.processed) == 25
    assert result.failed == []
    assert result.total_batches == 3
    assert result.rounds == 1
    assert result.invocations == 3
    assert result.ok


@pytest.mark.asyncio
async def test_partial_rejection_retries_only_rejected(make_op, no_backoff):
    items = list(range(10))
    op = make_op(reject=lambda call, batch: batch[-2:] if call == 0 else [])
    processor = _processor(no_backoff, batch_size=10, max_retries=3)

    result = await processor.process(items, op)

    assert len(op.calls) == 2
    assert op.calls[1] == [8, 9]
    assert sorted(result.processed) == items
    assert result.failed == []
    assert result.rounds == 2


@pytest.mark.asyncio
async def test_outage_fails_every_item_after_budget(make_op, no_backoff):
    items = list(range(25))
    op = make_op(fail=lambda call, batch: True)
    processor = _processor(no_backoff, batch_size=10, max_retries=2)

    result = await processor.process(items, op)

    assert result.processed == []
    assert sorted(result.failed_items) == items
    assert all(f.attempts == 3 for f in result.failed)
    assert all(isinstance(f.error, RuntimeError) for f in result.failed)
    for item in items:
        assert sum(item in call for call in op.calls) == 3


@pytest.mark.asyncio
async def test_concurrency_high_water_mark(make_op, no_backoff):
    op = make_op(delay=0.01)
    processor = _processor(no_backoff, batch_size=10, max_concurrency=5)

    result = await processor.process(list(range(50)), op)

    assert op.high_water <= 5
    assert len(result.processed) == 50


@pytest.mark.asyncio
async def test_single_slot_never_overlaps(make_op, no_backoff):
    op = make_op(delay=0.002, reject=lambda call, batch: batch[:1] if call < 2 else [])
    processor = _processor(no_backoff, batch_size=3, max_concurrency=1)

    await processor.process(list(range(9)), op)

    starts_and_ends = [kind for kind, _ in op.events]
    assert starts_and_ends == ["start", "end"] * len(op.calls)


@pytest.mark.asyncio
async def test_last_error_is_from_final_attempt(no_backoff):
    errors = []

    async def op(batch):
        errors.append(ConnectionError(f"attempt {len(errors)}"))
        raise errors[-1]

    result = await _processor(no_backoff, max_retries=4).process(["a", "b"], op)

    assert len(errors) == 5
    assert [f.attempts for f in result.failed] == [5, 5]
    assert all(f.error is errors[-1] for f in result.failed)


@pytest.mark.asyncio
async def test_rejection_error_is_recorded(no_backoff):
    rejection = RuntimeError("entry rejected")

    async def op(batch):
        return ProcessingOutcome(
            processed=[i for i in batch if i != "bad"],
            unprocessed=[i for i in batch if i == "bad"],
            error=rejection,
        )

    result = await _processor(no_backoff, max_retries=1).process(["ok", "bad"], op)

    assert result.processed == ["ok"]
    assert result.failed[0].item == "bad"
    assert result.failed[0].error is rejection
    assert result.failed[0].attempts == 2


@pytest.mark.asyncio
async def test_zero_retries_fails_on_first_rejection(make_op, no_backoff):
    op = make_op(reject=lambda call, batch: batch)
    result = await _processor(no_backoff, max_retries=0).process([1, 2, 3], op)

    assert len(op.calls) == 1
    assert [f.attempts for f in result.failed] == [1, 1, 1]


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(20))
async def test_counts_always_add_up(seed, no_backoff):
    rng = random.Random(seed)
    n_items = rng.randint(0, 60)

    async def op(batch):
        await asyncio.sleep(rng.random() / 1000)
        roll = rng.random()
        if roll < 0.2:
            raise TimeoutError("network")
        rejected = [item for item in batch if rng.random() < 0.3]
        return ProcessingOutcome(
            processed=[item for item in batch if item not in rejected],
            unprocessed=rejected,
        )

    processor = _processor(
        no_backoff,
        batch_size=rng.randint(1, 12),
        max_concurrency=rng.randint(1, 6),
        max_retries=rng.randint(0, 4),
    )
    result = await processor.process(list(range(n_items)), op)

    processed = set(result.processed)
    failed = set(result.failed_items)
    assert len(result.processed) + len(result.failed) == n_items
    assert processed.isdisjoint(failed)
    assert processed | failed == set(range(n_items))
    assert all(f.attempts == processor.config.max_retries + 1 for f in result.failed)


@pytest.mark.asyncio
async def test_retry_changes_result_order(make_op, no_backoff):
    op = make_op(reject=lambda call, batch: [0] if call == 0 else [])
    result = await _processor(no_backoff, batch_size=10).process(list(range(20)), op)

    assert sorted(result.processed) == list(range(20))
    assert result.processed[-1] == 0


@pytest.mark.asyncio
async def test_ordered_collector_restores_input_order(make_op, no_backoff):
    op = make_op(reject=lambda call, batch: [0, 15] if call < 2 else [])
    processor = BatchProcessor(
        BatchConfig(batch_size=10),
        backoff=no_backoff,
        handler_cls=OrderedOutcomeCollector,
    )

    result = await processor.process(list(range(20)), op)

    assert result.processed == list(range(20))


@pytest.mark.asyncio
async def test_retry_batches_are_repartitioned(make_op, no_backoff):
    op = make_op(reject=lambda call, batch: [i for i in batch if i % 2] if call < 3 else [])
    processor = _processor(no_backoff, batch_size=4, max_concurrency=1)

    await processor.process(list(range(12)), op)

    # 6 odd items from 3 batches are regrouped into batches of 4 and 2
    assert [len(c) for c in op.calls[3:]] == [4, 2]
    assert op.calls[3] == [1, 3, 5, 7]


@pytest.mark.asyncio
async def test_dropped_items_are_retried_as_contract_errors(no_backoff):
    async def op(batch):
        # Silently drops the last item of every batch.
        return ProcessingOutcome(processed=batch[:-1])

    result = await _processor(no_backoff, max_retries=1).process([1, 2, 3], op)

    assert sorted(result.processed) == [1, 2]
    assert result.failed_items == [3]
    assert isinstance(result.failed[0].error, OutcomeContractError)
    assert result.failed[0].attempts == 2


@pytest.mark.asyncio
async def test_malformed_return_retries_batch(no_backoff):
    calls = []

    async def op(batch):
        calls.append(batch)
        if len(calls) == 1:
            return "sent"
        return {"processed": batch, "unprocessed": []}

    result = await _processor(no_backoff).process(["x", "y"], op)

    assert len(calls) == 2
    assert sorted(result.processed) == ["x", "y"]


@pytest.mark.asyncio
async def test_foreign_and_duplicate_items_are_not_counted(no_backoff):
    async def op(batch):
        return ProcessingOutcome(processed=batch + ["stranger"], unprocessed=batch[:1])

    result = await _processor(no_backoff).process(["a", "b"], op)

    assert sorted(result.processed) == ["a", "b"]
    assert result.failed == []


@pytest.mark.asyncio
async def test_unhashable_duplicate_payloads(no_backoff):
    items = [{"id": 1}, {"id": 1}, {"id": 2}]
    calls = []

    async def op(batch):
        calls.append(batch)
        if len(calls) == 1:
            return ProcessingOutcome(processed=batch[1:], unprocessed=batch[:1])
        return ProcessingOutcome(processed=batch)

    result = await _processor(no_backoff).process(items, op)

    assert len(result.processed) == 3
    assert calls[1] == [{"id": 1}]


class Reading:
    """Payload whose equality is ambiguous, like a numpy array."""

    def __init__(self, value):
        self.value = value

    def __eq__(self, other):
        raise ValueError("truth value of an array is ambiguous")

    __hash__ = None

    def __repr__(self):
        return f"Reading({self.value})"


@pytest.mark.asyncio
async def test_rebuilt_payloads_with_ambiguous_equality(no_backoff):
    calls = []

    async def op(batch):
        calls.append(batch)
        # Reading(2) is rejected on the first call only.
        first_call = len(calls) == 1
        rebuilt = [Reading(r.value) for r in batch]
        return ProcessingOutcome(
            processed=[r for r in rebuilt if not (first_call and r.value == 2)],
            unprocessed=[r for r in rebuilt if first_call and r.value == 2],
        )

    items = [Reading(1), Reading(2), Reading(3)]
    result = await _processor(no_backoff).process(items, op)

    assert len(calls) == 2
    assert [r.value for r in calls[1]] == [2]
    assert {id(r) for r in result.processed} == {id(r) for r in items}
    assert result.ok


@pytest.mark.asyncio
async def test_rebuilt_nan_payloads_count_as_processed(no_backoff):
    calls = []

    async def op(batch):
        calls.append(batch)
        return ProcessingOutcome(processed=[float(repr(x)) for x in batch])

    items = [float("nan"), 1.5]
    result = await _processor(no_backoff).process(items, op)

    assert len(calls) == 1
    assert result.ok
    assert len(result.processed) == 2


@pytest.mark.asyncio
async def test_lost_items_raise_batchwise_error(make_op, no_backoff):
    class LossyCollector(OutcomeCollector):
        def get(self):
            result = super().get()
            result.processed.pop()
            return result

    processor = BatchProcessor(
        BatchConfig(), backoff=no_backoff, handler_cls=LossyCollector
    )
    with pytest.raises(BatchwiseError, match="2 terminal items for 3 inputs"):
        await processor.process([1, 2, 3], make_op())


@pytest.mark.asyncio
async def test_empty_input(make_op, no_backoff):
    op = make_op()
    result = await _processor(no_backoff).process([], op)

    assert op.calls == []
    assert len(result) == 0
    assert result.rounds == 0


@pytest.mark.asyncio
async def test_generator_input_is_read_once(make_op, no_backoff):
    op = make_op()
    result = await _processor(no_backoff, batch_size=3).process((i for i in range(7)), op)
    assert sorted(result.processed) == list(range(7))


@pytest.mark.asyncio
async def test_cancel_between_batches(no_backoff):
    cancel = asyncio.Event()

    async def op(batch):
        cancel.set()
        return ProcessingOutcome(processed=batch)

    processor = _processor(no_backoff, batch_size=10, max_concurrency=1)
    result = await processor.process(list(range(30)), op, cancel_event=cancel)

    assert result.cancelled
    assert result.processed == list(range(10))
    assert sorted(result.failed_items) == list(range(10, 30))
    assert all(isinstance(f.error, BatchCancelledError) for f in result.failed)
    assert all(f.attempts == 0 for f in result.failed)


@pytest.mark.asyncio
async def test_cancel_during_backoff(make_op):
    cancel = asyncio.Event()
    op = make_op(reject=lambda call, batch: batch)
    processor = BatchProcessor(BatchConfig(max_retries=5), backoff=ConstantBackoff(30))

    asyncio.get_running_loop().call_later(0.05, cancel.set)
    result = await asyncio.wait_for(
        processor.process([1, 2], op, cancel_event=cancel), timeout=5
    )

    assert len(op.calls) == 1
    assert result.cancelled
    assert [f.attempts for f in result.failed] == [1, 1]
    assert all(isinstance(f.error, BatchCancelledError) for f in result.failed)


@pytest.mark.asyncio
async def test_backoff_between_rounds(make_op):
    class RecordingBackoff(ConstantBackoff):
        def __init__(self):
            super().__init__(0)
            self.rounds = []

        def delay(self, attempt):
            self.rounds.append(attempt)
            return 0.0

    backoff = RecordingBackoff()
    op = make_op(reject=lambda call, batch: batch)
    await BatchProcessor(BatchConfig(max_retries=3), backoff=backoff).process([1], op)

    assert backoff.rounds == [1, 2, 3]


@pytest.mark.asyncio
async def test_class_based_operation(no_backoff):
    class Acknowledge(BatchOperation):
        def __init__(self):
            self.seen = []

        async def do(self, batch):
            self.seen.extend(batch)
            return ProcessingOutcome(processed=batch)

    op = Acknowledge()
    result = await _processor(no_backoff, batch_size=2).process(["a", "b", "c"], op)

    assert sorted(op.seen) == ["a", "b", "c"]
    assert result.ok


@pytest.mark.asyncio
async def test_module_level_process(make_op, no_backoff):
    result = await process(list(range(5)), make_op(), {"batchSize": 2}, backoff=no_backoff)
    assert result.total_batches == 3


def test_process_sync_with_blocking_operation(no_backoff):
    def op(batch):
        return ProcessingOutcome(processed=batch[1:], unprocessed=batch[:1])

    processor = _processor(no_backoff, batch_size=5, max_retries=0)
    result = processor.process_sync(list(range(10)), op)

    assert sorted(result.processed) == [1, 2, 3, 4, 6, 7, 8, 9]
    assert sorted(result.failed_items) == [0, 5]


@pytest.mark.asyncio
async def test_reporter_quiet_by_default(make_op, no_backoff, reporter):
    op = make_op(reject=lambda call, batch: batch[:1] if call == 0 else [])
    await _processor(no_backoff, reporter, batch_size=5).process(list(range(10)), op)

    assert reporter.messages[0] == "Processing 2 batches of up to 5 items each..."
    assert any(m.startswith("Round 1 complete") for m in reporter.messages)
    assert any(m.startswith("Retry 1/3") for m in reporter.messages)
    assert reporter.messages[-1] == "Batch processing complete: 10 processed, 0 failed"
    assert not any(m.startswith("Submitting") for m in reporter.messages)


@pytest.mark.asyncio
async def test_reporter_verbose(make_op, no_backoff, reporter):
    op = make_op(fail=lambda call, batch: True)
    processor = _processor(no_backoff, reporter, batch_size=5, max_retries=0, verbose=True)

    await processor.process(list(range(5)), op)

    assert "Submitting batch 1/1 (5 items)" in reporter.messages
    assert any(m.startswith("Batch 1/1 failed: outage") for m in reporter.messages)
    assert sum(m.startswith("Item ") for m in reporter.messages) == 5


@pytest.mark.asyncio
async def test_failing_reporter_does_not_break_run(make_op, no_backoff):
    def reporter(message):
        raise BrokenPipeError

    result = await _processor(no_backoff, reporter).process([1, 2], make_op())
    assert result.ok
