# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scienting Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


from typing import Any
from typing_extensions import override

import asyncio
from collections.abc import Mapping

from loguru import logger

from batchwise.batch import Batch
from batchwise.dtypes import ItemType, Operation
from batchwise.schedulers.core import Scheduler
from batchwise.schedulers.local import is_async_operation

try:
    import ray

    has_ray = True
except ImportError:
    has_ray = False


if has_ray:

    @ray.remote
    def ray_batch_worker(op: Operation, items: list[Any]) -> Any:
        """
        Remote Ray function that invokes `op` on one batch of items.

        The return value is shipped back to the driver and checked there, so
        it must be picklable like `op` itself.
        """
        return op(items)


class RayScheduler(Scheduler):
    """
    Scheduler that executes each invocation as a Ray remote task.

    Meant for synchronous, picklable operations whose per-batch work is CPU
    heavy enough to be worth spreading over cores or machines. Admission
    follows the same greedy loop as every scheduler; completion is awaited
    through the object refs' futures so the event loop never blocks.

    Example:
        ```python
        processor = BatchProcessor(
            BatchConfig(batch_size=25, max_concurrency=8),
            scheduler=RayScheduler(max_concurrency=8, n_cores_worker=1),
        )
        ```
    """

    def __init__(
        self,
        max_concurrency: int = 10,
        n_cores_worker: int = 1,
        kwargs_remote: Mapping[str, object] | None = None,
    ) -> None:
        """
        Args:
            max_concurrency: Maximum number of Ray tasks in flight.
            n_cores_worker: CPUs reserved for each Ray task.
            kwargs_remote: Extra Ray remote options such as `num_gpus` or
                `resources`. Do not include `num_cpus`; use `n_cores_worker`.
        """
        if not has_ray:
            raise ImportError("Requested to use ray, but ray is not installed.")
        super().__init__(max_concurrency)

        if isinstance(n_cores_worker, float):
            n_cores_worker = int(n_cores_worker)
        assert isinstance(n_cores_worker, int), "n_cores_worker must be an int"
        self.n_cores_worker: int = n_cores_worker
        """The number of CPU cores allocated to each Ray task."""

        self.kwargs_remote: dict[str, object] = dict(kwargs_remote or {})

        self.refs: dict[asyncio.Future[Any], Any] = {}
        """Object refs of the Ray tasks that are still in flight."""

    @override
    def check_operation(self, op: Operation) -> None:
        super().check_operation(op)
        if is_async_operation(op):
            raise TypeError("RayScheduler requires a synchronous operation")

    @override
    def prepare(self) -> None:
        if not ray.is_initialized():
            logger.info("Initializing Ray.")
            ray.init()

    @override
    def _start(self, batch: Batch[ItemType], op: Operation) -> "asyncio.Future[Any]":
        ref = ray_batch_worker.options(
            num_cpus=self.n_cores_worker, **self.kwargs_remote
        ).remote(op, list(batch.items))
        future = asyncio.wrap_future(ref.future())
        self.refs[future] = ref
        future.add_done_callback(lambda done: self.refs.pop(done, None))
        return future

    @override
    def _cancel(self, future: "asyncio.Future[Any]") -> None:
        # Cancelling the wrapper alone leaves the Ray task running.
        ref = self.refs.pop(future, None)
        if ref is not None:
            try:
                ray.cancel(ref)
            except Exception as exc:
                logger.warning(f"Could not cancel Ray task {ref}: {exc}")
        future.cancel()

    @override
    def _unwrap_error(self, exc: BaseException) -> BaseException:
        # RayTaskError wraps the exception raised inside the worker.
        if isinstance(exc, ray.exceptions.RayTaskError):
            cause = getattr(exc, "cause", None)
            if isinstance(cause, BaseException):
                return cause
        return exc
