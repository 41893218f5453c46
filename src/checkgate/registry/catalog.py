"""Registry of available checks and their dependency layering."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from pydantic import ValidationError

from checkgate.core.errors import ConfigError, ConfigErrorKind
from checkgate.core.log import logger
from checkgate.registry.descriptor import CheckDescriptor

Batch = tuple[CheckDescriptor, ...]


class Registry:
    """Immutable catalog of check descriptors.

    Descriptors live in an arena (a tuple in declaration order) and
    dependencies are stored as arena indices, so layering never has
    to walk linked objects. The registry is read-only after
    construction and safe to share between concurrent runners.
    """

    def __init__(self, descriptors: Iterable[CheckDescriptor]):
        """Build and validate a registry.

        Args:
            descriptors: Check descriptors in declaration order

        Raises:
            ConfigError: On duplicate names, unknown dependencies or
                a dependency cycle
        """
        self._descriptors: tuple[CheckDescriptor, ...] = tuple(descriptors)
        self._index: dict[str, int] = {}

        duplicates = []
        for position, descriptor in enumerate(self._descriptors):
            if descriptor.name in self._index:
                duplicates.append(descriptor.name)
            self._index[descriptor.name] = position
        if duplicates:
            raise ConfigError(
                ConfigErrorKind.DUPLICATE_NAME,
                f"Duplicate check names: {', '.join(sorted(duplicates))}",
                sorted(duplicates),
            )

        unknown = sorted(
            f"{descriptor.name} -> {dependency}"
            for descriptor in self._descriptors
            for dependency in descriptor.depends_on
            if dependency not in self._index
        )
        if unknown:
            raise ConfigError(
                ConfigErrorKind.UNKNOWN_DEPENDENCY,
                f"Unknown dependencies: {', '.join(unknown)}",
                [entry.split(" -> ")[1] for entry in unknown],
            )

        self._dependencies: tuple[frozenset[int], ...] = tuple(
            frozenset(self._index[name] for name in descriptor.depends_on)
            for descriptor in self._descriptors
        )

        # Layering the full graph doubles as cycle detection
        self._layer(range(len(self._descriptors)))

    @classmethod
    def load(cls, source: Any) -> Registry:
        """Load a registry from configuration.

        Args:
            source: A list of descriptor mappings or CheckDescriptor
                objects, or an object with a ``checks`` attribute
                holding such a list

        Returns:
            Validated Registry

        Raises:
            ConfigError: If any descriptor is malformed or the set as a
                whole is inconsistent
        """
        entries = getattr(source, "checks", source)
        if entries is None:
            entries = []
        if isinstance(entries, Mapping) or isinstance(entries, (str, bytes)):
            raise ConfigError(
                ConfigErrorKind.INVALID_FIELD,
                "Checks must be a list of check definitions",
            )

        descriptors = []
        for position, entry in enumerate(entries):
            if isinstance(entry, CheckDescriptor):
                descriptors.append(entry)
                continue
            try:
                descriptors.append(CheckDescriptor.model_validate(entry))
            except ValidationError as e:
                name = (
                    entry.get("name") if isinstance(entry, Mapping) else None
                ) or f"#{position + 1}"
                problems = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc']) or 'check'}: "
                    f"{err['msg']}"
                    for err in e.errors()
                )
                raise ConfigError(
                    ConfigErrorKind.INVALID_FIELD,
                    f"Invalid check '{name}': {problems}",
                    [str(name)],
                ) from e

        registry = cls(descriptors)
        logger.debug(
            f"Loaded {len(registry)} checks",
            checks=list(registry.names),
        )
        return registry

    # Catalog access

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(d.name for d in self._descriptors)

    def get(self, name: str) -> CheckDescriptor:
        """Retrieve a descriptor by name.

        Raises:
            KeyError: If no check has that name
        """
        return self._descriptors[self._index[name]]

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __iter__(self) -> Iterator[CheckDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    # Dependency resolution

    def closure(self, selected: Iterable[str]) -> list[str]:
        """Return selected names plus their transitive dependencies.

        Names come back in registry order.

        Raises:
            ConfigError: If a selected name is not registered
        """
        selected = list(selected)
        unknown = sorted({name for name in selected if name not in self})
        if unknown:
            raise ConfigError(
                ConfigErrorKind.UNKNOWN_CHECK,
                f"Unknown checks selected: {', '.join(unknown)}",
                unknown,
            )
        return [
            self._descriptors[i].name
            for i in sorted(self._closure_indices(selected))
        ]

    def resolve_execution_order(
        self, selected: Iterable[str] | None = None
    ) -> list[Batch]:
        """Group checks into batches that can run concurrently.

        Each batch contains the checks whose dependencies all sit in
        earlier batches. Within a batch, checks keep registry order.

        Args:
            selected: Names to run; their transitive dependencies are
                added. None runs every registered check.

        Returns:
            Ordered list of batches

        Raises:
            ConfigError: If a selected name is not registered
        """
        if selected is None:
            members: Iterable[int] = range(len(self._descriptors))
        else:
            selected = list(selected)
            self.closure(selected)
            members = self._closure_indices(selected)
        return [
            tuple(self._descriptors[i] for i in batch)
            for batch in self._layer(members)
        ]

    def _closure_indices(self, selected: Iterable[str]) -> set[int]:
        pending = [self._index[name] for name in selected]
        members: set[int] = set()
        while pending:
            index = pending.pop()
            if index in members:
                continue
            members.add(index)
            pending.extend(self._dependencies[index])
        return members

    def _layer(self, members: Iterable[int]) -> list[tuple[int, ...]]:
        """Kahn's algorithm, emitting one layer per round."""
        members = set(members)
        remaining = {
            index: set(self._dependencies[index] & members)
            for index in sorted(members)
        }
        layers = []
        while remaining:
            ready = tuple(i for i, deps in remaining.items() if not deps)
            if not ready:
                cycle = self._find_cycle(remaining)
                raise ConfigError(
                    ConfigErrorKind.CYCLIC_DEPENDENCY,
                    f"Dependency cycle: {' -> '.join(cycle + cycle[:1])}",
                    cycle,
                )
            layers.append(ready)
            for index in ready:
                del remaining[index]
            for deps in remaining.values():
                deps.difference_update(ready)
        return layers

    def _find_cycle(self, remaining: dict[int, set[int]]) -> list[str]:
        """Follow unresolved dependencies until a node repeats."""
        path: list[int] = []
        seen: dict[int, int] = {}
        index = next(iter(remaining))
        while index not in seen:
            seen[index] = len(path)
            path.append(index)
            index = min(remaining[index])
        return [self._descriptors[i].name for i in path[seen[index]:]]


__all__ = ["Batch", "Registry"]
