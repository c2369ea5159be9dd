"""Command runner that routes Executor commands through the sandbox."""

from __future__ import annotations

import logging
import subprocess

from lucicodex.core.context import ExecContext
from lucicodex.core.models import PlannedCommand
from lucicodex.core.process import ProcessHandle
from lucicodex.core.utils import format_command
from lucicodex.sandbox.monitor import Monitor
from lucicodex.sandbox.sandbox import Sandbox

logger = logging.getLogger(__name__)


class SandboxRunner:
    """Stricter drop-in for the Executor's direct runner.

    Every command is checked by ``Sandbox.validate_command``, started in the
    scratch directory in its own process group, and watched by a Monitor.
    """

    def __init__(self, sandbox: Sandbox):
        self.sandbox = sandbox

    def prepare(self, argv: list[str]) -> Monitor:
        command = PlannedCommand(command=argv)
        self.sandbox.validate_command(command)
        spec = self.sandbox.execute_command(command)
        logger.debug(f"Sandboxing {format_command(argv)} in {spec.cwd}")
        return Monitor(spec, self.sandbox.limits)

    def spawn(self, argv: list[str], merge_stderr: bool = False) -> ProcessHandle:
        monitor = self.prepare(argv)
        if merge_stderr:
            return monitor.start()
        return monitor.start(stderr=subprocess.PIPE)

    def __call__(self, ctx: ExecContext, argv: list[str]) -> tuple[str, Exception | None]:
        monitor = self.prepare(argv)
        monitor.start(ctx)
        out, err = monitor.communicate()
        return out.decode("utf-8", errors="replace"), err
