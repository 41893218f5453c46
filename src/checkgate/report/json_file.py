"""Report sink that stores the verdict as a JSON document."""

from __future__ import annotations

from pathlib import Path

from checkgate.core.errors import ReportError
from checkgate.core.result import FinalVerdict


class JsonReportSink:
    """Write the verdict to a JSON file, e.g. for a CI artifact upload."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def publish(self, verdict: FinalVerdict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                verdict.model_dump_json(indent=2), encoding="utf-8"
            )
        except OSError as e:
            raise ReportError(f"Cannot write {self.path}: {e}") from e


__all__ = ["JsonReportSink"]
