"""Model-assisted retry of failed commands.

Each attempt asks a FixPlanner for a corrective plan per failing command,
validates that plan exactly like an original one, runs it, and merges the
outcome back into the original Results.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Protocol

from lucicodex.core.config import Config
from lucicodex.core.context import ExecContext
from lucicodex.core.executor import Executor
from lucicodex.core.models import Plan, PolicyError, Results
from lucicodex.core.policy import PolicyEngine
from lucicodex.core.utils import format_command

logger = logging.getLogger(__name__)

# Upper bound for a single fix-generation call.
FIX_TIMEOUT_SECONDS = 30.0


class FixPlanner(Protocol):
    """Produces a corrective plan for a failed command.

    Raising (any Exception) or returning a plan with no commands means
    "no fix available this attempt".
    """

    def generate_error_fix(
        self, original_command: str, error_output: str, attempt: int, ctx: ExecContext
    ) -> Plan: ...


class NoFixAvailable(LookupError):
    """StaticFixPlanner has no entry for a command."""

    pass


class StaticFixPlanner:
    """FixPlanner backed by a fixed table: rendered command -> fix plan."""

    def __init__(self, fixes: Mapping[str, Plan]):
        self.fixes = dict(fixes)
        self.calls: list[tuple[str, int]] = []

    def generate_error_fix(
        self, original_command: str, error_output: str, attempt: int, ctx: ExecContext
    ) -> Plan:
        self.calls.append((original_command, attempt))
        try:
            return self.fixes[original_command]
        except KeyError:
            raise NoFixAvailable(f"no fix registered for {original_command!r}") from None


class AutoRetry:
    """Bounded fix-and-rerun loop over an Executor's results."""

    def __init__(
        self,
        executor: Executor,
        planner: FixPlanner,
        policy: PolicyEngine | None = None,
        config: Config | None = None,
        log: Callable[[str], None] | None = None,
    ):
        self.executor = executor
        self.planner = planner
        self.policy = policy
        self.config = config or executor.config
        self.log = log

    def _emit(self, message: str) -> None:
        logger.info(message)
        if self.log is not None:
            self.log(message)

    def run(self, results: Results, ctx: ExecContext | None = None) -> Results:
        """Try to fix every failed result, at most max_retries times each.

        Mutates and returns ``results``. Fix results are appended for audit
        and count towards ``results.failed`` like any other item, but only
        the items present on entry are retried.
        """
        max_retries = self.config.max_retries
        if not self.config.auto_retry or max_retries <= 0 or results.failed == 0:
            return results

        ctx = ctx or ExecContext.background()
        planned = len(results.items)
        for attempt in range(1, max_retries + 1):
            # Snapshot so fixes appended during this attempt are not retried in it.
            failing = self.unresolved(results, planned)
            if not failing:
                break
            for idx in failing:
                if ctx.cancelled:
                    return results
                self._retry_one(results, idx, attempt, ctx)
        return results

    @staticmethod
    def unresolved(results: Results, planned: int) -> list[int]:
        """Indices among the first ``planned`` items that still carry an error."""
        return [i for i in results.failed_indices() if i < planned]

    def _retry_one(self, results: Results, idx: int, attempt: int, ctx: ExecContext) -> None:
        item = results.items[idx]
        original = format_command(item.command)
        self._emit(f"Command failed: {original}: {item.err}")
        self._emit(
            f"Attempting automatic fix (attempt {attempt}/{self.config.max_retries})..."
        )

        fix_ctx = ctx.with_timeout(FIX_TIMEOUT_SECONDS)
        try:
            fix_plan = self.planner.generate_error_fix(original, item.output, attempt, fix_ctx)
        except Exception as e:
            # Any planner failure just means no fix this attempt.
            logger.warning(f"Failed to generate fix for {original!r}: {e}")
            self._emit(f"Failed to generate fix: {e}")
            return
        if not fix_plan.commands:
            self._emit("No fix commands generated")
            return
        if self.config.max_commands > 0 and len(fix_plan.commands) > self.config.max_commands:
            self._emit(
                f"Fix plan truncated from {len(fix_plan.commands)} to "
                f"{self.config.max_commands} commands"
            )
            fix_plan = fix_plan.truncated(self.config.max_commands)

        if self.policy is not None:
            try:
                self.policy.validate_plan(fix_plan)
            except PolicyError as e:
                logger.warning(f"Fix plan for {original!r} rejected by policy: {e}")
                self._emit(f"Fix plan rejected by policy: {e}")
                return

        if fix_plan.summary:
            self._emit(f"Fix plan: {fix_plan.summary}")
        for command in fix_plan.commands:
            self._emit(f"  > {format_command(command.command)}")

        fix_results = self.executor.run_plan(fix_plan, ctx)
        if fix_results.failed == 0:
            results.clear_error(idx)
            self._emit("Fix successful!")
        else:
            first_failure = next(r for r in fix_results.items if r.err is not None)
            results.replace_failure(idx, first_failure.output, first_failure.err)
            self._emit("Fix attempt failed")
        results.extend(fix_results)


def auto_retry(
    executor: Executor,
    planner: FixPlanner,
    policy: PolicyEngine | None,
    results: Results,
    ctx: ExecContext | None = None,
    log: Callable[[str], None] | None = None,
) -> Results:
    """Convenience wrapper around :class:`AutoRetry`."""
    return AutoRetry(executor, planner, policy, log=log).run(results, ctx)
