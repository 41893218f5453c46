"""Report sinks for finished verdicts."""

from checkgate.report.base import ReportSink, publish_all
from checkgate.report.command import CommandReportSink
from checkgate.report.json_file import JsonReportSink
from checkgate.report.log import LogReportSink

__all__ = [
    "CommandReportSink",
    "JsonReportSink",
    "LogReportSink",
    "ReportSink",
    "publish_all",
]
