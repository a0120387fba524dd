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

from batchwise.dtypes import ItemType
from batchwise.results import ProcessingOutcome


class BatchOperation(ABC, Generic[ItemType]):
    """Class-based operation for commands that need state across batches.

    The only required implementation is [`do`][operation.BatchOperation.do],
    which performs one remote batch call. Instances are callable, so they can
    be passed anywhere a plain operation function is accepted.

    ```python
    class SendMessages(BatchOperation[dict]):
        def __init__(self, client, queue_url):
            self.client = client
            self.queue_url = queue_url

        async def do(self, batch):
            entries = build_entries(batch, lambda m: {"MessageBody": m["body"]})
            response = await self.client.send_message_batch(
                QueueUrl=self.queue_url, Entries=entries
            )
            return outcome_from_response(batch, response)


    result = await processor.process(messages, SendMessages(client, url))
    ```
    """

    @abstractmethod
    async def do(self, batch: list[ItemType]) -> ProcessingOutcome[ItemType]:
        """Process one batch.

        Args:
            batch: Up to `batch_size` items.

        Returns:
            Which items the remote system accepted and which it rejected.
                Raising is also fine: the whole batch is then retried.
        """

    async def __call__(self, batch: list[ItemType]) -> ProcessingOutcome[ItemType]:
        return await self.do(batch)
