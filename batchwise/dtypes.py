from typing import Any, TypeAlias, TypeVar

from collections.abc import Callable

ItemType = TypeVar("ItemType")
"""
A single work item (message body, receipt handle, table row, ...). The engine
never inspects it; it only routes whole items between states.
"""

Operation: TypeAlias = Callable[[list[Any]], Any]
"""
Caller supplied routine that performs the remote call for one batch and returns
a [`ProcessingOutcome`][results.outcome.ProcessingOutcome]. Either a coroutine
function or a plain callable.
"""
