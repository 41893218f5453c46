"""Check descriptor registry."""

from checkgate.registry.catalog import Batch, Registry
from checkgate.registry.descriptor import (
    BackoffPolicy,
    CheckDescriptor,
    CommandSpec,
)

__all__ = [
    "BackoffPolicy",
    "Batch",
    "CheckDescriptor",
    "CommandSpec",
    "Registry",
]
