# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scienting Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


from typing import Generic

from collections.abc import Generator, Iterable, Sequence
from dataclasses import dataclass, field
from itertools import islice

from batchwise.dtypes import ItemType
from batchwise.exceptions import BatchConfigError


@dataclass(slots=True)
class Batch(Generic[ItemType]):
    """One chunk of work handed to a single operation invocation."""

    number: int
    """1-based position of this batch within its round."""

    keys: list[int]
    """Positions of `items` in the processor's backing list."""

    items: list[ItemType] = field(default_factory=list)
    """Payloads passed to the operation, aligned with `keys`."""

    def __len__(self) -> int:
        return len(self.keys)


def _check_batch_size(batch_size: int) -> None:
    if isinstance(batch_size, bool) or not isinstance(batch_size, int):
        raise BatchConfigError(f"batch_size must be an int, got {batch_size!r}")
    if batch_size < 1:
        raise BatchConfigError(f"batch_size must be >= 1, got {batch_size}")


def partition(items: Sequence[ItemType], batch_size: int) -> list[list[ItemType]]:
    """Split `items` into consecutive chunks of at most `batch_size`.

    Order is preserved within and across chunks, and only the last chunk may be
    shorter. Producing `ceil(len(items) / batch_size)` chunks, this is a pure
    function that is safe to call again for every retry round.

    Args:
        items: Ordered items to split.
        batch_size: Maximum number of items per chunk.

    Returns:
        List of non-empty chunks; empty when `items` is empty.

    Raises:
        BatchConfigError: If `batch_size` is not a positive int.

    Example:
        ```python
        partition(list(range(25)), 10)  # [[0..9], [10..19], [20..24]]
        ```
    """
    _check_batch_size(batch_size)
    return [list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)]


def batch_generator(
    items: Iterable[ItemType],
    batch_size: int = 1,
) -> Generator[tuple[int, list[ItemType]], None, None]:
    """
    Lazily yields `(batch_index, chunk)` where each chunk holds up to
    `batch_size` items pulled from `items`.

    Unlike [`partition`][batch.partition], `items` may be any iterable,
    including one that can only be consumed once.
    """
    _check_batch_size(batch_size)

    it = iter(items)
    idx = 0
    while True:
        chunk = list(islice(it, batch_size))
        if not chunk:
            return
        yield idx, chunk
        idx += 1


def make_batches(
    keys: Sequence[int], backing: Sequence[ItemType], batch_size: int
) -> list[Batch[ItemType]]:
    """Partition arena `keys` and attach the payloads they point to."""
    return [
        Batch(number=n, keys=chunk, items=[backing[k] for k in chunk])
        for n, chunk in enumerate(partition(keys, batch_size), start=1)
    ]
