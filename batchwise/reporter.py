# This file is licensed under the Prosperity Public License 3.0.0.
# You may use, copy, and share it for noncommercial purposes.
# Commercial use is allowed for a 30-day trial only.
#
# Contributor: Scienting Studio
# Source Code: https://github.com/scienting/simlify
#
# See the LICENSE.md file for full license terms.


from typing import Protocol, runtime_checkable
from typing_extensions import override

from collections.abc import Callable

from loguru import logger


@runtime_checkable
class Reporter(Protocol):
    """Sink for human-readable progress lines.

    Owned by the caller; a CLI command usually forwards to its own output
    so messages respect `--quiet`/`--verbose` and the chosen stream.
    """

    def report(self, message: str) -> None: ...


class CallbackReporter:
    """Adapts a single-argument callable such as `print` or `click.echo`."""

    def __init__(self, callback: Callable[[str], None]) -> None:
        self.callback: Callable[[str], None] = callback

    def report(self, message: str) -> None:
        self.callback(message)


class LoguruReporter:
    """Forwards progress lines to the `batchwise` logger.

    The package logger is disabled on import, so nothing reaches a loguru
    sink until [`enable_logging`][enable_logging] (or
    `logger.enable("batchwise")`) has been called. Use a
    [`CallbackReporter`][reporter.CallbackReporter] to show progress without
    turning on the library's own logging.
    """

    def __init__(self, level: str = "INFO") -> None:
        self.level: str = level

    def report(self, message: str) -> None:
        logger.log(self.level, message)


class NullReporter:
    def report(self, message: str) -> None:
        pass


class SafeReporter:
    """Wraps another reporter so a failing sink cannot abort a run."""

    def __init__(self, inner: Reporter) -> None:
        self.inner: Reporter = inner

    def report(self, message: str) -> None:
        try:
            self.inner.report(message)
        except Exception as exc:
            logger.warning(f"Reporter {self.inner!r} failed: {exc}")

    @override
    def __repr__(self) -> str:
        return f"<SafeReporter inner={self.inner!r}>"


def as_reporter(sink: Reporter | Callable[[str], None] | None) -> Reporter:
    """Normalize whatever the caller passed into a [`Reporter`][reporter.Reporter]."""
    if sink is None:
        return NullReporter()
    if isinstance(sink, Reporter):
        return SafeReporter(sink)
    if callable(sink):
        return SafeReporter(CallbackReporter(sink))
    raise TypeError(f"reporter must be callable or have report(), got {sink!r}")
