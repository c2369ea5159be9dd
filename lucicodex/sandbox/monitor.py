"""Resource watching for sandboxed processes.

The wall-clock ceiling is enforced by killing the whole process group. Memory
and CPU are sampled with psutil: resident memory above the limit kills the
group, CPU above the limit is only reported.
"""

from __future__ import annotations

import logging
import subprocess
import threading
import time

import psutil

from lucicodex.core.context import ExecContext
from lucicodex.core.models import (
    CommandStartError,
    CommandError,
    ResourceLimitExceeded,
    ResourceLimits,
)
from lucicodex.core.process import POLL_INTERVAL, ProcessHandle, communicate
from lucicodex.sandbox.sandbox import ProcessSpec

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


class Monitor:
    """Start a ProcessSpec and enforce ResourceLimits on it from a watch thread."""

    SAMPLE_INTERVAL = 0.5

    def __init__(self, spec: ProcessSpec, limits: ResourceLimits):
        self.spec = spec
        self.limits = limits
        self.handle: ProcessHandle | None = None
        self._ctx = ExecContext.background()
        self._started_at = 0.0
        self._watcher: threading.Thread | None = None

    def start(
        self,
        ctx: ExecContext | None = None,
        stdout: int | None = subprocess.PIPE,
        stderr: int | None = subprocess.STDOUT,
    ) -> ProcessHandle:
        if ctx is not None:
            self._ctx = ctx
        try:
            proc = self.spec.popen(stdout=stdout, stderr=stderr)
        except (OSError, ValueError) as e:
            raise CommandStartError(str(e)) from e

        self.handle = ProcessHandle(proc, group=self.spec.start_new_session)
        self._started_at = time.monotonic()
        logger.debug(f"Sandboxed pid {proc.pid} started in {self.spec.cwd}")
        self._watcher = threading.Thread(
            target=self.watch, name=f"monitor-{proc.pid}", daemon=True
        )
        self._watcher.start()
        return self.handle

    def wait(self) -> None:
        """Block until exit; raise the limit, cancel or exit-status error if any."""
        if self.handle is None:
            raise CommandStartError("process not started")
        self.handle.wait()
        self._join_watcher()
        err = self.handle.error()
        if err is not None:
            raise err

    def communicate(self) -> tuple[bytes, CommandError | None]:
        """Collect output until exit without raising; returns (output, error)."""
        if self.handle is None:
            return b"", CommandStartError("process not started")
        out, err = communicate(self.handle, self._ctx)
        self._join_watcher()
        return out, err

    def watch(self) -> None:
        """Poll until the process exits or a limit is crossed.

        Returns immediately when the process was never started.
        """
        handle = self.handle
        if handle is None:
            return

        try:
            ps: psutil.Process | None = psutil.Process(handle.pid)
        except psutil.Error:
            ps = None
        next_sample = 0.0
        cpu_reported = False

        while handle.poll() is None:
            now = time.monotonic()
            if now - self._started_at > self.limits.max_execution_time:
                logger.warning(
                    f"Sandboxed pid {handle.pid} exceeded {self.limits.max_execution_time:g}s, "
                    "killing process group"
                )
                handle.kill(
                    ResourceLimitExceeded(
                        f"execution time limit of {self.limits.max_execution_time:g}s exceeded"
                    )
                )
                return

            err = self._ctx.error()
            if err is not None:
                handle.kill(err)
                return

            if ps is not None and now >= next_sample:
                next_sample = now + self.SAMPLE_INTERVAL
                usage = self._sample(ps)
                if usage is not None:
                    rss_mb, cpu = usage
                    if self.limits.max_memory_mb and rss_mb > self.limits.max_memory_mb:
                        logger.warning(
                            f"Sandboxed pid {handle.pid} uses {rss_mb:.0f} MB "
                            f"(limit {self.limits.max_memory_mb} MB), killing process group"
                        )
                        handle.kill(
                            ResourceLimitExceeded(
                                f"memory limit exceeded: {rss_mb:.0f} MB > "
                                f"{self.limits.max_memory_mb} MB"
                            )
                        )
                        return
                    if (
                        self.limits.max_cpu_percent
                        and cpu > self.limits.max_cpu_percent
                        and not cpu_reported
                    ):
                        logger.warning(
                            f"Sandboxed pid {handle.pid} at {cpu:.0f}% CPU "
                            f"(advisory limit {self.limits.max_cpu_percent}%)"
                        )
                        cpu_reported = True

            time.sleep(POLL_INTERVAL)

    def _sample(self, ps: psutil.Process) -> tuple[float, float] | None:
        """Resident memory (MB) of the process tree and CPU percent of the leader."""
        try:
            members = [ps, *ps.children(recursive=True)]
            cpu = ps.cpu_percent(interval=None)
        except psutil.Error:
            return None
        rss = 0
        for member in members:
            try:
                rss += member.memory_info().rss
            except psutil.Error:
                continue
        return rss / _MB, cpu

    def _join_watcher(self) -> None:
        if self._watcher is not None:
            self._watcher.join(timeout=POLL_INTERVAL * 4)
