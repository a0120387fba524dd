# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scienting Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


class BatchwiseError(Exception):
    """Base class for every error raised or recorded by `batchwise`."""


class BatchConfigError(BatchwiseError, ValueError):
    """Invalid engine configuration.

    This is the only error [`BatchProcessor`][processor.BatchProcessor] lets
    escape, and it is raised at construction time before any operation is
    invoked.
    """


class OutcomeContractError(BatchwiseError):
    """An operation returned something that does not account for its batch.

    Recorded as the `last_error` of every item the operation dropped, or of the
    whole batch when the return value was not an outcome at all.
    """


class EntryRejectedError(BatchwiseError):
    """The remote API accepted a batch call but rejected some of its entries."""

    def __init__(self, message: str, failures: list[dict[str, object]] | None = None):
        super().__init__(message)
        self.failures: list[dict[str, object]] = failures or []
        """Raw failure entries as returned by the remote API."""


class BatchCancelledError(BatchwiseError):
    """The run was cancelled before the item reached a terminal state."""
