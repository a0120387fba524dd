# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scientific Computing Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.

import asyncio
import time

import pytest

from batchwise import BatchConfig, BatchProcessor, NoBackoff, ProcessingOutcome, RayScheduler
from batchwise.batch import make_batches

ray = pytest.importorskip("ray")


@pytest.fixture(scope="module", autouse=True)
def ray_cluster():
    ray.init(runtime_env={}, num_cpus=4, ignore_reinit_error=True)
    yield
    ray.shutdown()


def _processor(max_concurrency=2, **kwargs):
    return BatchProcessor(
        BatchConfig(batch_size=10, max_concurrency=max_concurrency, **kwargs),
        scheduler=RayScheduler(max_concurrency=max_concurrency),
        backoff=NoBackoff(),
    )


@pytest.mark.asyncio
async def test_ray_processes_all_items():
    def accept_all(batch):
        return ProcessingOutcome(processed=batch)

    result = await _processor().process(list(range(25)), accept_all)

    assert sorted(result.processed) == list(range(25))
    assert result.total_batches == 3
    assert result.ok


@pytest.mark.asyncio
async def test_ray_worker_errors_fail_items():
    def outage(batch):
        raise ValueError("boom")

    result = await _processor(max_retries=1).process(list(range(5)), outage)

    assert len(result.failed) == 5
    assert all(f.attempts == 2 for f in result.failed)
    assert all("boom" in str(f.error) for f in result.failed)


@pytest.mark.asyncio
async def test_ray_rejects_async_operations():
    async def op(batch):
        return ProcessingOutcome(processed=batch)

    with pytest.raises(TypeError):
        await _processor().process([1, 2], op)


def test_ray_scheduler_core_options():
    scheduler = RayScheduler(max_concurrency=3, n_cores_worker=2.0)
    assert scheduler.n_cores_worker == 2
    assert scheduler.max_concurrency == 3


@pytest.mark.asyncio
async def test_cancelling_run_cancels_ray_tasks():
    def stall(batch):
        time.sleep(60)
        return ProcessingOutcome(processed=batch)

    scheduler = RayScheduler(max_concurrency=2)
    batches = make_batches([0, 1, 2], ["a", "b", "c"], 1)
    task = asyncio.create_task(scheduler.run(batches, stall))
    while len(scheduler.refs) < 2:
        await asyncio.sleep(0.05)
    refs = list(scheduler.refs.values())

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert scheduler.refs == {}
    for ref in refs:
        with pytest.raises(ray.exceptions.TaskCancelledError):
            ray.get(ref, timeout=30)
