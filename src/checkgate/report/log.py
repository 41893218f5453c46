"""Report sink that writes the verdict to the log."""

from __future__ import annotations

from checkgate.core.log import logger
from checkgate.core.result import FinalVerdict, Verdict


class LogReportSink:
    """Summarize a verdict through the logger.

    One line per check, the output tail of every failing check, then
    the overall verdict and the checks responsible for a failure.
    """

    def __init__(self, tail_lines: int = 20):
        self.tail_lines = tail_lines

    def publish(self, verdict: FinalVerdict) -> None:
        for name, result in verdict.results.items():
            kind = "blocking" if result.blocking else "advisory"
            status = str(result.final_status)
            if result.cancel_reason is not None:
                status = f"{status} ({result.cancel_reason})"
            line = (
                f"{name}: {status} [{kind}, {len(result.attempts)} "
                f"attempt(s), {result.total_duration:.1f}s]"
            )
            if result.failed:
                logger.error(line, check=name)
                tail = result.output_tail(self.tail_lines)
                if tail:
                    logger.error(
                        "{check} output (last {count} lines):\n{tail}",
                        check=name,
                        count=self.tail_lines,
                        tail=tail,
                    )
            else:
                logger.info(line, check=name)

        if verdict.overall is Verdict.FAIL:
            logger.error(
                f"Overall: FAIL (blocking failures: "
                f"{', '.join(verdict.blocking_failures)})"
            )
        elif verdict.overall is Verdict.INCOMPLETE:
            logger.warn("Overall: INCOMPLETE (evaluation was cut short)")
        else:
            logger.info("Overall: PASS")
        if verdict.advisory_failures:
            logger.warn(
                f"Advisory failures: {', '.join(verdict.advisory_failures)}"
            )


__all__ = ["LogReportSink"]
