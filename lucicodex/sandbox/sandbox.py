"""Scratch-directory sandbox for commands that need stronger isolation.

Isolation is ordinary OS machinery: a private working directory, a PATH/HOME
only environment, and a fresh process group so the command and everything it
spawns can be killed together. No namespaces or cgroups.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from lucicodex.core.config import Config
from lucicodex.core.models import (
    EmptyCommandError,
    LuciCodexError,
    PlannedCommand,
    ResourceLimits,
)
from lucicodex.core.utils import minimal_env

logger = logging.getLogger(__name__)

DEFAULT_SANDBOX_DIR = Path(tempfile.gettempdir()) / "lucicodex-sandbox"

# Scratch entries older than this are removed before each new command.
CLEANUP_MAX_AGE = timedelta(hours=1)


class SandboxError(LuciCodexError):
    """The sandbox environment could not be prepared."""

    pass


class SandboxPolicyError(SandboxError):
    """Command contains sequences the sandbox refuses to run."""

    pass


@dataclass
class ProcessSpec:
    """A fully described but not yet started process."""

    argv: list[str]
    cwd: Path
    env: dict[str, str] = field(default_factory=dict)
    start_new_session: bool = True

    def popen(
        self,
        stdout: int | None = subprocess.PIPE,
        stderr: int | None = subprocess.STDOUT,
    ) -> subprocess.Popen:
        return subprocess.Popen(
            self.argv,
            cwd=self.cwd,
            env=self.env,
            stdin=subprocess.DEVNULL,
            stdout=stdout,
            stderr=stderr,
            start_new_session=self.start_new_session,
            close_fds=True,
        )


class Sandbox:
    """Per-instance scratch directory, limits and restricted environment.

    Not meant for concurrent commands: use one Sandbox per concurrent
    execution so cleanup passes do not race.
    """

    # Chaining and filesystem-escape sequences, checked in every argument
    # even though no shell interprets them.
    DANGEROUS_PATTERNS = ("&&", "|", "`", "$(", "../", "/dev/", "/proc/", "/sys/", "<", ">")

    def __init__(self, config: Config | None = None, tmp_dir: Path | str | None = None):
        config = config or Config()
        if tmp_dir is None:
            tmp_dir = config.sandbox_dir or DEFAULT_SANDBOX_DIR
        self.tmp_dir = Path(tmp_dir)
        self.limits: ResourceLimits = config.sandbox

    def set_limits(self, limits: ResourceLimits) -> None:
        self.limits = limits

    def validate_command(self, command: PlannedCommand) -> None:
        """Stricter pre-execution check than the policy engine."""
        if not command.command:
            raise SandboxPolicyError("empty command")
        for i, arg in enumerate(command.command):
            for pattern in self.DANGEROUS_PATTERNS:
                if pattern in arg:
                    raise SandboxPolicyError(
                        f"argument {i} contains dangerous pattern {pattern!r}: {arg!r}"
                    )

    def restricted_env(self) -> dict[str, str]:
        env = minimal_env()
        env["HOME"] = str(self.tmp_dir)
        return env

    def execute_command(self, command: PlannedCommand) -> ProcessSpec:
        """Prepare the scratch directory and describe the process to start."""
        if not command.command:
            raise EmptyCommandError()
        self._setup_environment()
        return ProcessSpec(
            argv=list(command.command),
            cwd=self.tmp_dir,
            env=self.restricted_env(),
            start_new_session=True,
        )

    def _setup_environment(self) -> None:
        if self.tmp_dir.exists() and not self.tmp_dir.is_dir():
            raise SandboxError(f"Sandbox path is not a directory: {self.tmp_dir}")
        try:
            self.tmp_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            self.cleanup()
        except OSError as e:
            raise SandboxError(f"Cannot prepare sandbox directory {self.tmp_dir}: {e}") from e

    def cleanup(self) -> int:
        """Remove scratch entries older than CLEANUP_MAX_AGE; return how many.

        Fresher entries are kept so a recent command's artifacts can still be
        inspected. Raises OSError if the directory cannot be listed.
        """
        if not self.tmp_dir.exists():
            return 0

        cutoff = datetime.now() - CLEANUP_MAX_AGE
        deleted = 0
        for entry in list(self.tmp_dir.iterdir()):
            try:
                mtime = datetime.fromtimestamp(entry.lstat().st_mtime)
                if mtime >= cutoff:
                    continue
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
                deleted += 1
            except OSError as e:
                logger.warning(f"Sandbox cleanup could not remove {entry}: {e}")

        if deleted:
            logger.debug(f"Sandbox cleanup removed {deleted} stale entries from {self.tmp_dir}")
        return deleted
