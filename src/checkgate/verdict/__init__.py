"""Verdict aggregation."""

from checkgate.verdict.aggregate import aggregate

__all__ = ["aggregate"]
