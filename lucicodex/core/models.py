"""Data models and exceptions for plan execution.

Plans come from an external model client and are schema-enforced with Pydantic.
Execution results are plain dataclasses because they carry live exception objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

# --- Exceptions ---


class LuciCodexError(Exception):
    """Base error for the execution core."""

    pass


class PolicyError(LuciCodexError):
    """A plan was rejected before any process ran."""

    def __init__(self, index: int, reason: str):
        self.index = index
        self.reason = reason
        super().__init__(f"command {index} {reason}")


class CommandError(LuciCodexError):
    """A single command failed. Stored in Result.err, never raised across a plan."""

    pass


class EmptyCommandError(CommandError):
    """Command had no argv. No process was spawned."""

    def __init__(self) -> None:
        super().__init__("empty command")


class CommandStartError(CommandError):
    """The process could not be started (missing binary, permissions)."""

    pass


class CommandFailedError(CommandError):
    """The process exited with a non-zero status or was killed by a signal."""

    def __init__(self, returncode: int):
        self.returncode = returncode
        if returncode < 0:
            message = f"signal: {-returncode}"
        else:
            message = f"exit status {returncode}"
        super().__init__(message)


class CommandTimeoutError(CommandError):
    """The per-command deadline passed before the process exited."""

    pass


class CommandCancelledError(CommandError):
    """The caller cancelled the execution context."""

    pass


class ResourceLimitExceeded(CommandError):
    """A sandboxed process exceeded its execution time or memory ceiling."""

    pass


# --- Plan Models ---


class PlannedCommand(BaseModel):
    """A single argv-style command proposed by the model."""

    model_config = ConfigDict(frozen=True)

    # May be empty on input; policy and executor reject it explicitly.
    command: list[str] = Field(default_factory=list)
    description: str = ""
    needs_root: bool = False


class Plan(BaseModel):
    """Structured response expected from the model."""

    model_config = ConfigDict(frozen=True)

    summary: str = ""
    commands: list[PlannedCommand] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def truncated(self, max_commands: int) -> Plan:
        """Return a copy holding at most ``max_commands`` commands (no-op if <= 0)."""
        if max_commands <= 0 or len(self.commands) <= max_commands:
            return self
        return self.model_copy(update={"commands": self.commands[:max_commands]})


class ResourceLimits(BaseModel):
    """Limits for the sandboxed execution path.

    Memory and CPU are polled, not kernel-enforced. Zero means unbounded.
    """

    max_execution_time: float = Field(default=30.0, gt=0)
    max_memory_mb: int = Field(default=0, ge=0)
    max_cpu_percent: int = Field(default=0, ge=0)


# --- Execution Results ---


@dataclass
class Result:
    """Outcome of running one PlannedCommand."""

    index: int
    command: list[str]
    output: str = ""
    err: Exception | None = None
    elapsed: float = 0.0
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.err is None


@dataclass
class Results:
    """Ordered results of a plan run.

    ``failed`` always equals the number of items whose ``err`` is set; use the
    mutation helpers below rather than editing items directly.
    """

    items: list[Result] = field(default_factory=list)
    failed: int = 0

    def append(self, result: Result) -> None:
        self.items.append(result)
        if result.err is not None:
            self.failed += 1

    def extend(self, results: Results) -> None:
        for result in results.items:
            self.append(result)

    def clear_error(self, idx: int) -> None:
        """Mark item ``idx`` as fixed."""
        if self.items[idx].err is not None:
            self.items[idx].err = None
            self.failed -= 1

    def replace_failure(self, idx: int, output: str, err: Exception) -> None:
        """Overwrite the failure of item ``idx`` with a newer one."""
        item = self.items[idx]
        if item.err is None:
            self.failed += 1
        item.output = output
        item.err = err

    def failed_indices(self) -> list[int]:
        return [i for i, item in enumerate(self.items) if item.err is not None]

    @property
    def ok(self) -> bool:
        return self.failed == 0
