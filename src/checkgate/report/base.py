"""Report sink interface."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from checkgate.core.log import logger
from checkgate.core.result import FinalVerdict


@runtime_checkable
class ReportSink(Protocol):
    """Destination for a finished verdict (status API, artifact, ...)."""

    def publish(self, verdict: FinalVerdict) -> None:
        """Deliver the verdict.

        Raises:
            ReportError: If delivery failed
        """
        ...


def publish_all(verdict: FinalVerdict, sinks: Iterable[ReportSink]) -> int:
    """Publish to every sink, logging failures instead of raising.

    The verdict is already final; a sink that fails cannot change it.

    Returns:
        Number of sinks that failed
    """
    failures = 0
    for sink in sinks:
        name = type(sink).__name__
        try:
            sink.publish(verdict)
        except Exception as e:
            failures += 1
            logger.error(f"Report sink {name} failed: {e}", sink=name)
        else:
            logger.debug(f"Report sink {name} published", sink=name)
    return failures


__all__ = ["ReportSink", "publish_all"]
