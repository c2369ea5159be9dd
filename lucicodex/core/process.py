"""Process handles shared by the direct and sandboxed execution paths."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading

from lucicodex.core.context import ExecContext
from lucicodex.core.models import CommandError, CommandFailedError

logger = logging.getLogger(__name__)

# How often blocking loops wake up to check deadlines and cancellation.
POLL_INTERVAL = 0.05
# How long to keep draining pipes after a kill before giving up on them.
KILL_GRACE_PERIOD = 2.0


class ProcessHandle:
    """A started process plus the reason we stopped it, if we did.

    ``kill()`` is safe to call from watcher threads; the first recorded reason
    wins so a timeout is not later reported as a plain signal exit.
    """

    def __init__(self, proc: subprocess.Popen, group: bool = False):
        self.proc = proc
        self.group = group
        self.stop_reason: CommandError | None = None
        self._lock = threading.Lock()

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def stdout(self):
        return self.proc.stdout

    @property
    def stderr(self):
        return self.proc.stderr

    @property
    def returncode(self) -> int | None:
        return self.proc.returncode

    def poll(self) -> int | None:
        return self.proc.poll()

    def wait(self, timeout: float | None = None) -> int:
        return self.proc.wait(timeout=timeout)

    def kill(self, reason: CommandError | None = None) -> None:
        with self._lock:
            if self.stop_reason is None and reason is not None:
                self.stop_reason = reason
        kill_process(self.proc, group=self.group)

    def error(self) -> CommandError | None:
        """Error for the finished process: stop reason first, then exit status."""
        if self.stop_reason is not None:
            return self.stop_reason
        if self.proc.returncode:
            return CommandFailedError(self.proc.returncode)
        return None


def kill_process(proc: subprocess.Popen, group: bool = False) -> None:
    """SIGKILL a process, or its whole process group when it leads one."""
    try:
        if group:
            os.killpg(proc.pid, signal.SIGKILL)
        elif proc.poll() is None:
            proc.kill()
    except ProcessLookupError:
        pass
    except PermissionError as e:
        logger.warning(f"Cannot kill process {proc.pid}: {e}")


def wait(handle: ProcessHandle, ctx: ExecContext) -> int:
    """Wait for exit, killing the process once ctx is done."""
    while True:
        try:
            return handle.wait(timeout=POLL_INTERVAL)
        except subprocess.TimeoutExpired:
            err = ctx.error()
            if err is not None:
                handle.kill(err)
                return handle.wait()


def communicate(handle: ProcessHandle, ctx: ExecContext) -> tuple[bytes, CommandError | None]:
    """Collect a process's stdout until exit, killing it when ctx is done.

    Returns the raw output and the error describing how the process ended
    (None on a zero exit).
    """
    while True:
        try:
            out, _ = handle.proc.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            err = ctx.error()
            if err is not None:
                logger.debug(f"Stopping process {handle.pid}: {err}")
                handle.kill(err)
                try:
                    out, _ = handle.proc.communicate(timeout=KILL_GRACE_PERIOD)
                except subprocess.TimeoutExpired:
                    # A surviving descendant still holds the pipe open.
                    logger.warning(f"Output of process {handle.pid} abandoned after kill")
                    handle.proc.wait()
                    out = b""
                break
    return out or b"", handle.error()
