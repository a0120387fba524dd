# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scienting Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.

"""Helpers for remote batch APIs that identify entries by an `Id`.

Message-queue batch calls (send, delete, change visibility) take a list of
entries each carrying a caller-chosen `Id` and answer with `Successful` and
`Failed` lists keyed by that `Id`. These helpers translate such a response
into a [`ProcessingOutcome`][results.outcome.ProcessingOutcome].
"""

from typing import Any

from collections.abc import Callable, Collection, Iterable, Mapping, Sequence

from loguru import logger

from batchwise.dtypes import ItemType
from batchwise.exceptions import EntryRejectedError
from batchwise.results import ProcessingOutcome


def entry_id(index: int) -> str:
    """Entry `Id` for the item at `index` within its batch."""
    return f"msg-{index}"


def build_entries(
    batch: Sequence[ItemType],
    make_entry: Callable[[ItemType], Mapping[str, Any]],
    id_for: Callable[[int], str] = entry_id,
) -> list[dict[str, Any]]:
    """Build request entries for `batch`, each tagged with its entry `Id`."""
    return [{"Id": id_for(i), **make_entry(item)} for i, item in enumerate(batch)]


def outcome_from_failed_ids(
    batch: Sequence[ItemType],
    failed_ids: Iterable[str],
    *,
    id_for: Callable[[int], str] = entry_id,
    error: BaseException | None = None,
) -> ProcessingOutcome[ItemType]:
    """Split `batch` by the entry ids the remote API reported as failed.

    Every item whose id is not in `failed_ids` counts as processed.
    """
    failed: Collection[str] = set(failed_ids)
    outcome: ProcessingOutcome[ItemType] = ProcessingOutcome(error=error)
    for i, item in enumerate(batch):
        if id_for(i) in failed:
            outcome.unprocessed.append(item)
        else:
            outcome.processed.append(item)
    return outcome


def outcome_from_response(
    batch: Sequence[ItemType],
    response: Mapping[str, Any],
    *,
    id_for: Callable[[int], str] = entry_id,
) -> ProcessingOutcome[ItemType]:
    """Read a `{"Successful": [...], "Failed": [...]}` batch response.

    Failed entries are summarized in an
    [`EntryRejectedError`][exceptions.EntryRejectedError] attached to the
    outcome, so items that end up permanently failed carry the remote error
    codes.
    """
    failures: list[dict[str, Any]] = [dict(f) for f in response.get("Failed") or []]
    known = {id_for(i) for i in range(len(batch))}
    unknown = [f.get("Id") for f in failures if f.get("Id") not in known]
    if unknown:
        logger.warning(f"Response lists unknown entry ids {unknown}")

    error = None
    if failures:
        codes = sorted({str(f.get("Code", "Unknown")) for f in failures})
        message = f"{len(failures)} entries rejected ({', '.join(codes)})"
        if failures[0].get("Message"):
            message += f": {failures[0]['Message']}"
        error = EntryRejectedError(message, failures=failures)
    outcome = outcome_from_failed_ids(
        batch, (f.get("Id") for f in failures), id_for=id_for, error=error
    )
    outcome.metadata["successful"] = len(response.get("Successful") or [])
    return outcome


def outcome_from_unprocessed(
    batch: Sequence[ItemType],
    unprocessed: Sequence[ItemType],
    *,
    error: BaseException | None = None,
) -> ProcessingOutcome[ItemType]:
    """Build an outcome when the API hands back the rejected payloads themselves.

    Table batch writes return `UnprocessedItems` rather than ids. Items are
    matched by equality, each returned payload accounting for one batch item.
    """
    remaining = list(unprocessed)
    outcome: ProcessingOutcome[ItemType] = ProcessingOutcome(error=error)
    for item in batch:
        for pos, candidate in enumerate(remaining):
            if candidate == item:
                del remaining[pos]
                outcome.unprocessed.append(item)
                break
        else:
            outcome.processed.append(item)
    if remaining:
        logger.warning(f"{len(remaining)} unprocessed payloads did not match the batch")
    return outcome
