# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scientific Computing Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.

import asyncio

import pytest

from batchwise import NoBackoff, ProcessingOutcome, enable_logging


@pytest.fixture(scope="session", autouse=True)
def setup_tests():
    enable_logging(10)
    yield


class RecordingReporter:
    """Reporter stub that keeps every message."""

    def __init__(self):
        self.messages = []

    def report(self, message):
        self.messages.append(message)


class InstrumentedOperation:
    """Async operation that records calls and the concurrent-call high-water mark.

    `reject` decides, per call number and batch, which items come back
    unprocessed; `fail` decides whether the call raises instead.
    """

    def __init__(self, reject=None, fail=None, delay=0.0):
        self.reject = reject
        self.fail = fail
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.high_water = 0
        self.events = []

    async def __call__(self, batch):
        call_number = len(self.calls)
        self.calls.append(list(batch))
        self.in_flight += 1
        self.high_water = max(self.high_water, self.in_flight)
        self.events.append(("start", call_number))
        try:
            await asyncio.sleep(self.delay)
            if self.fail is not None and self.fail(call_number, batch):
                raise RuntimeError(f"outage on call {call_number}")
            to_reject = list(self.reject(call_number, batch)) if self.reject else []
            rejected = [item for item in batch if item in to_reject]
            return ProcessingOutcome(
                processed=[item for item in batch if item not in rejected],
                unprocessed=rejected,
            )
        finally:
            self.in_flight -= 1
            self.events.append(("end", call_number))


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def no_backoff():
    return NoBackoff()


@pytest.fixture
def make_op():
    return InstrumentedOperation
