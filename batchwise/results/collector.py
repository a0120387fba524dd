# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scientific Computing Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


from typing_extensions import override

from batchwise.dtypes import ItemType
from batchwise.results.handler import OutcomeHandler
from batchwise.results.outcome import AggregateResult, FailedItem


class OutcomeCollector(OutcomeHandler[ItemType]):
    """
    Handler that keeps terminal outcomes in the order they became terminal.

    Completion order across concurrent invocations is unspecified, so once
    an item has been retried its position in `processed` or `failed` says
    nothing about its position in the input.
    """

    def __init__(self) -> None:
        self.processed: list[ItemType] = []
        self.failed: list[FailedItem[ItemType]] = []
        super().__init__()

    @override
    def add_processed(self, key: int, item: ItemType) -> None:
        self._claim(key)
        self.processed.append(item)

    @override
    def add_failed(self, key: int, failed: FailedItem[ItemType]) -> None:
        self._claim(key)
        self.failed.append(failed)

    @override
    def get(self) -> AggregateResult[ItemType]:
        return AggregateResult(processed=list(self.processed), failed=list(self.failed))
