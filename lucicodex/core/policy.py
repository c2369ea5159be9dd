"""Allow/deny policy for model-generated plans.

Patterns are regular expressions matched (re.search) against the canonical
rendering of each command. Deny always wins and is checked before allow. An
empty allowlist permits everything the denylist and structural checks let
through; interactive confirmation is then the deployment's safety gate.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from lucicodex.core.config import Config
from lucicodex.core.models import Plan, PlannedCommand, PolicyError
from lucicodex.core.utils import format_command

logger = logging.getLogger(__name__)

SHELL_METACHARACTERS = frozenset("|&;<>`$")


def _compile_patterns(patterns: Iterable[str], kind: str) -> list[re.Pattern[str]]:
    compiled: list[re.Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            logger.warning(f"Dropping invalid {kind} pattern {pattern!r}: {e}")
    return compiled


class PolicyEngine:
    """Validate plans against structural rules and allow/deny patterns.

    Compiled patterns are read-only after construction, so one engine can be
    shared across threads and reused for every retry-generated fix plan.
    """

    def __init__(
        self,
        allowlist: Iterable[str] = (),
        denylist: Iterable[str] = (),
    ) -> None:
        self._allow = _compile_patterns(allowlist, "allowlist")
        self._deny = _compile_patterns(denylist, "denylist")

    @classmethod
    def from_config(cls, config: Config) -> PolicyEngine:
        return cls(allowlist=config.allowlist, denylist=config.denylist)

    @property
    def allow_patterns(self) -> list[str]:
        return [p.pattern for p in self._allow]

    @property
    def deny_patterns(self) -> list[str]:
        return [p.pattern for p in self._deny]

    def validate_plan(self, plan: Plan) -> None:
        """Raise PolicyError for the first command that may not run."""
        for i, command in enumerate(plan.commands):
            self.validate_command(i, command)

    def validate_command(self, index: int, command: PlannedCommand) -> None:
        argv = command.command
        if not argv:
            raise PolicyError(index, "is empty")

        for j, arg in enumerate(argv):
            if not arg.strip():
                raise PolicyError(index, f"arg {j} is empty")
            if "\x00" in arg:
                raise PolicyError(index, f"arg {j} contains NUL")

        # No shell runs these, so a metacharacter in the executable name means
        # the model output was built for one.
        if any(ch in SHELL_METACHARACTERS for ch in argv[0]):
            raise PolicyError(index, "contains shell metacharacters in argv[0]")

        rendered = format_command(argv)
        for pattern in self._deny:
            if pattern.search(rendered):
                raise PolicyError(index, f"blocked by denylist: {rendered}")

        if self._allow and not any(p.search(rendered) for p in self._allow):
            raise PolicyError(index, f"not permitted by allowlist: {rendered}")

    def is_allowed(self, plan: Plan) -> bool:
        try:
            self.validate_plan(plan)
        except PolicyError:
            return False
        return True
