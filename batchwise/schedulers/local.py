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
import inspect

from batchwise.batch import Batch
from batchwise.dtypes import ItemType, Operation
from batchwise.schedulers.core import Scheduler


def is_async_operation(op: Operation) -> bool:
    """`True` for coroutine functions and objects with an `async def __call__`."""
    if inspect.iscoroutinefunction(op):
        return True
    return inspect.iscoroutinefunction(getattr(op, "__call__", None))


class LocalScheduler(Scheduler):
    """
    Event-loop scheduler for I/O bound operations, usually one remote batch API
    call per invocation.

    Coroutine operations run directly on the event loop. Plain callables are
    run in a worker thread so a blocking SDK call does not stall the loop.
    """

    def __init__(self, max_concurrency: int = 10, in_thread: bool = True) -> None:
        """
        Args:
            max_concurrency: Maximum number of invocations in flight.
            in_thread: Run plain callables with `asyncio.to_thread`. When
                `False` they are called inline, which serializes them.
        """
        super().__init__(max_concurrency)
        self.in_thread: bool = in_thread

    @override
    def _start(self, batch: Batch[ItemType], op: Operation) -> Any:
        return self._invoke(list(batch.items), op)

    async def _invoke(self, items: list[ItemType], op: Operation) -> Any:
        if is_async_operation(op):
            return await op(items)
        if self.in_thread:
            result = await asyncio.to_thread(op, items)
        else:
            result = op(items)
        if inspect.isawaitable(result):
            result = await result
        return result
