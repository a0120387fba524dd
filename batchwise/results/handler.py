# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scienting Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


from typing import Generic

from abc import ABC, abstractmethod

from loguru import logger

from batchwise.dtypes import ItemType
from batchwise.results.outcome import AggregateResult, FailedItem


class OutcomeHandler(ABC, Generic[ItemType]):
    """
    Abstract base class for accumulating terminal outcomes produced by
    [`BatchProcessor`][processor.BatchProcessor].

    Items are identified by their `key`, the position of the item in the input
    collection. A key can become terminal exactly once, which keeps
    `processed` and `failed` disjoint and their sizes summing to the input
    count no matter how many retry rounds an item went through.
    """

    def __init__(self) -> None:
        self.terminal_keys: set[int] = set()
        """Keys that already have a terminal outcome."""

    def _claim(self, key: int) -> None:
        if key in self.terminal_keys:
            raise ValueError(f"Key {key} already has a terminal outcome")
        self.terminal_keys.add(key)

    @property
    def n_terminal(self) -> int:
        return len(self.terminal_keys)

    @abstractmethod
    def add_processed(self, key: int, item: ItemType) -> None:
        """
        Records an item the remote system accepted. Called as soon as the
        invocation that processed it completes, in any round.

        Args:
            key: Position of `item` in the input collection.
            item: The processed payload.
        """

    @abstractmethod
    def add_failed(self, key: int, failed: FailedItem[ItemType]) -> None:
        """
        Records an item that exhausted its retry budget or was cancelled.

        Args:
            key: Position of the item in the input collection.
            failed: The item with its last error and attempt count.
        """

    @abstractmethod
    def get(self) -> AggregateResult[ItemType]:
        """Get the aggregate result"""

    def finalize(self) -> None:
        """Finish up any handling"""
        logger.debug(f"{type(self).__name__} finalized with {self.n_terminal} items")
