"""Exception types raised by checkgate."""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum


class CheckgateError(Exception):
    """Base class for all checkgate errors."""


class ConfigErrorKind(StrEnum):
    """Reason a check configuration was rejected."""

    CYCLIC_DEPENDENCY = "cyclic_dependency"
    UNKNOWN_DEPENDENCY = "unknown_dependency"
    INVALID_FIELD = "invalid_field"
    DUPLICATE_NAME = "duplicate_name"
    UNKNOWN_CHECK = "unknown_check"


class ConfigError(CheckgateError):
    """Check configuration is invalid.

    Raised while loading the registry, before any check runs.

    Attributes:
        kind: Which validation failed
        names: Check names involved (cycle members, unknown names,
            duplicates), in a stable order
    """

    def __init__(
        self,
        kind: ConfigErrorKind,
        message: str,
        names: Iterable[str] = (),
    ):
        super().__init__(message)
        self.kind = kind
        self.names = tuple(names)

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.args[0]}"


class ReportError(CheckgateError):
    """A report sink could not publish a verdict."""


__all__ = ["CheckgateError", "ConfigError", "ConfigErrorKind", "ReportError"]
