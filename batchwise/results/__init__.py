from .outcome import (
    AggregateResult,
    FailedItem,
    ProcessingOutcome,
    RetryRecord,
    coerce_outcome,
)
from .handler import OutcomeHandler
from .collector import OutcomeCollector
from .ordered import OrderedOutcomeCollector

__all__ = [
    "AggregateResult",
    "FailedItem",
    "ProcessingOutcome",
    "RetryRecord",
    "coerce_outcome",
    "OutcomeHandler",
    "OutcomeCollector",
    "OrderedOutcomeCollector",
]
