"""Orchestrator: run a check selection batch by batch."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from checkgate.core.log import logger
from checkgate.core.result import (
    CancelReason,
    CheckResult,
    CheckStatus,
    FinalVerdict,
)
from checkgate.registry.catalog import Registry
from checkgate.registry.descriptor import CheckDescriptor
from checkgate.runner.check import CheckRunner
from checkgate.verdict.aggregate import aggregate

DEFAULT_CONCURRENCY = 4


class Orchestrator:
    """Evaluate checks from a registry and produce a FinalVerdict.

    Batches from ``Registry.resolve_execution_order`` run in order;
    checks inside a batch run concurrently, at most
    ``concurrency_limit`` at a time. A batch finishes completely
    before the next one starts.

    Only the evaluating coroutine writes to the results map, one
    entry per check.
    """

    def __init__(
        self,
        registry: Registry,
        runner: CheckRunner | None = None,
        concurrency_limit: int = DEFAULT_CONCURRENCY,
    ):
        self.registry = registry
        self.runner = runner or CheckRunner()
        self.concurrency_limit = concurrency_limit
        self._cancel: asyncio.Event | None = None

    def abort(self) -> None:
        """Cancel the running evaluation.

        Running checks are stopped, pending checks never start, and
        the verdict comes back INCOMPLETE. Safe to call when nothing
        is running.
        """
        if self._cancel is not None and not self._cancel.is_set():
            logger.warn("Evaluation aborted")
            self._cancel.set()

    async def evaluate(
        self,
        selected_checks: Iterable[str] | None = None,
        concurrency_limit: int | None = None,
        overall_deadline: float | None = None,
    ) -> FinalVerdict:
        """Run the selected checks and aggregate their results.

        Args:
            selected_checks: Names to run, plus their transitive
                dependencies; None runs everything
            concurrency_limit: Maximum checks running at once; defaults
                to the orchestrator's limit
            overall_deadline: Seconds after which everything still
                running or pending is cancelled

        Returns:
            FinalVerdict over every check in the selection

        Raises:
            ConfigError: If a selected name is not registered
            ValueError: If the concurrency limit is below 1
        """
        limit = (
            self.concurrency_limit if concurrency_limit is None
            else concurrency_limit
        )
        if limit < 1:
            raise ValueError(f"Concurrency limit must be >= 1, got {limit}")

        batches = self.registry.resolve_execution_order(
            None if selected_checks is None else list(selected_checks)
        )
        cancel = asyncio.Event()
        self._cancel = cancel
        semaphore = asyncio.Semaphore(limit)
        results: dict[str, CheckResult] = {}

        deadline = None
        if overall_deadline is not None:
            deadline = asyncio.get_running_loop().call_later(
                overall_deadline, self._expire, cancel, overall_deadline
            )

        try:
            with logger.span(
                "Evaluation",
                checks=sum(len(batch) for batch in batches),
                batches=len(batches),
                concurrency=limit,
            ):
                for number, batch in enumerate(batches, start=1):
                    if cancel.is_set():
                        break
                    logger.debug(
                        f"Batch {number}/{len(batches)}: "
                        f"{', '.join(d.name for d in batch)}"
                    )
                    await self._run_batch(
                        batch, results, semaphore, cancel
                    )
        finally:
            if deadline is not None:
                deadline.cancel()
            self._cancel = None

        for batch in batches:
            for descriptor in batch:
                if descriptor.name not in results:
                    results[descriptor.name] = CheckResult(
                        descriptor_name=descriptor.name,
                        final_status=CheckStatus.CANCELLED,
                        blocking=descriptor.blocking,
                        cancel_reason=CancelReason.ABORTED,
                    )

        verdict = aggregate(results)
        logger.info(
            f"Verdict: {verdict.overall}",
            overall=str(verdict.overall),
            blocking_failures=list(verdict.blocking_failures),
            advisory_failures=list(verdict.advisory_failures),
        )
        return verdict

    async def _run_batch(
        self,
        batch: tuple[CheckDescriptor, ...],
        results: dict[str, CheckResult],
        semaphore: asyncio.Semaphore,
        cancel: asyncio.Event,
    ) -> None:
        """Run one batch and wait for all of it (the batch barrier)."""
        runnable = []
        for descriptor in batch:
            failed = self._unsuccessful_dependencies(descriptor, results)
            if failed and descriptor.blocking:
                logger.warn(
                    f"Skipping '{descriptor.name}': "
                    f"dependencies did not succeed: {', '.join(failed)}",
                    check=descriptor.name,
                )
                results[descriptor.name] = CheckResult(
                    descriptor_name=descriptor.name,
                    final_status=CheckStatus.CANCELLED,
                    blocking=descriptor.blocking,
                    cancel_reason=CancelReason.DEPENDENCY,
                )
            else:
                runnable.append(descriptor)

        # Tasks are created in registry order and the semaphore wakes
        # waiters first-in first-out, so queued checks start in order.
        tasks = [
            asyncio.create_task(self._admit(descriptor, semaphore, cancel))
            for descriptor in runnable
        ]
        for descriptor, result in zip(
            runnable, await asyncio.gather(*tasks), strict=True
        ):
            results[descriptor.name] = result

    async def _admit(
        self,
        descriptor: CheckDescriptor,
        semaphore: asyncio.Semaphore,
        cancel: asyncio.Event,
    ) -> CheckResult:
        async with semaphore:
            return await self.runner.run_check(descriptor, cancel=cancel)

    @staticmethod
    def _unsuccessful_dependencies(
        descriptor: CheckDescriptor, results: dict[str, CheckResult]
    ) -> list[str]:
        """Dependencies that did not succeed.

        Any of them cancels a blocking dependent; advisory dependents
        run regardless.
        """
        return sorted(
            name for name in descriptor.depends_on
            if not results[name].succeeded
        )

    @staticmethod
    def _expire(cancel: asyncio.Event, seconds: float) -> None:
        if not cancel.is_set():
            logger.warn(f"Overall deadline of {seconds}s elapsed")
            cancel.set()


__all__ = ["DEFAULT_CONCURRENCY", "Orchestrator"]
