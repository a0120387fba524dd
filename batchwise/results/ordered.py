# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scientific Computing Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


from typing import Generic, TypeVar
from typing_extensions import override

from bisect import bisect_right
from collections.abc import MutableSequence
from dataclasses import dataclass, field

from batchwise.dtypes import ItemType
from batchwise.results.handler import OutcomeHandler
from batchwise.results.outcome import AggregateResult, FailedItem

T = TypeVar("T")


@dataclass
class KeyedBuffer(Generic[T]):
    keys: MutableSequence[int] = field(default_factory=list)
    values: MutableSequence[T] = field(default_factory=list)

    def insert(self, key: int, value: T) -> None:
        # Find where to insert so that keys stays sorted
        pos = bisect_right(self.keys, key)
        self.keys.insert(pos, key)
        self.values.insert(pos, value)


class OrderedOutcomeCollector(OutcomeHandler[ItemType]):
    """
    Handler that keeps `processed` and `failed` sorted by each item's position
    in the input collection, regardless of completion order or retries.

    Use it when a consumer needs the aggregate to line up with the input, for
    example when rendering a per-row report next to the source file.
    """

    def __init__(self) -> None:
        self.processed: KeyedBuffer[ItemType] = KeyedBuffer()
        self.failed: KeyedBuffer[FailedItem[ItemType]] = KeyedBuffer()
        super().__init__()

    @override
    def add_processed(self, key: int, item: ItemType) -> None:
        self._claim(key)
        self.processed.insert(key, item)

    @override
    def add_failed(self, key: int, failed: FailedItem[ItemType]) -> None:
        self._claim(key)
        self.failed.insert(key, failed)

    @override
    def get(self) -> AggregateResult[ItemType]:
        return AggregateResult(
            processed=list(self.processed.values), failed=list(self.failed.values)
        )
