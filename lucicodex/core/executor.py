"""Direct execution of planned commands.

Commands are exec'd from their argv (never through a shell) with a PATH-only
environment, one at a time and in plan order. A failing command is recorded in
its Result and never stops the commands after it.

Streaming mode reads stdout and stderr on two reader threads that post line
events to a queue; the calling thread is the only consumer, so it alone owns
the output accumulator and the sink.
"""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time
from typing import IO, Protocol

from lucicodex.core.config import Config
from lucicodex.core.context import ExecContext
from lucicodex.core.models import (
    CommandStartError,
    EmptyCommandError,
    LuciCodexError,
    Plan,
    PlannedCommand,
    Result,
    Results,
)
from lucicodex.core.process import (
    KILL_GRACE_PERIOD,
    POLL_INTERVAL,
    ProcessHandle,
    communicate,
    wait,
)
from lucicodex.core.utils import (
    OutputBuffer,
    elevation_prefix,
    format_command,
    minimal_env,
    truncate_output,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30

# Upper bound for a single streamed line, in bytes.
LINE_LIMIT = 64 * 1024

STDOUT = "stdout"
STDERR = "stderr"
_READ_ERROR = "error"

# ANSI styling for the streaming sink
_BOLD = "\033[1m"
_YELLOW = "\033[33m"
_RED = "\033[31m"
_GREEN = "\033[32m"
_RESET = "\033[0m"


class CommandRunner(Protocol):
    """Runs argv under a context and returns (combined output, error)."""

    def __call__(self, ctx: ExecContext, argv: list[str]) -> tuple[str, Exception | None]: ...


class OutputSink(Protocol):
    def write(self, text: str, /) -> object: ...


class SubprocessRunner:
    """Default runner: a real OS process started straight from argv."""

    def spawn(self, argv: list[str], merge_stderr: bool = False) -> ProcessHandle:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
            env=minimal_env(),
            close_fds=True,
        )
        logger.debug(f"Started pid {proc.pid}: {format_command(argv)}")
        return ProcessHandle(proc)

    def __call__(self, ctx: ExecContext, argv: list[str]) -> tuple[str, Exception | None]:
        try:
            handle = self.spawn(argv, merge_stderr=True)
        except (OSError, ValueError) as e:
            return "", CommandStartError(str(e))
        out, err = communicate(handle, ctx)
        return out.decode("utf-8", errors="replace"), err


def _read_lines(name: str, pipe: IO[bytes], events: queue.Queue) -> None:
    # Longer lines arrive as several events.
    try:
        for raw in iter(lambda: pipe.readline(LINE_LIMIT), b""):
            line = raw.decode("utf-8", errors="replace").rstrip("\n").rstrip("\r")
            events.put((name, line))
    except (OSError, ValueError) as e:
        events.put((_READ_ERROR, f"{name}: {e}"))
    finally:
        events.put((name, None))


class Executor:
    """Run single commands or whole plans and report structured results.

    Holds no state between calls; safe to share across threads for
    independent plans.
    """

    def __init__(self, config: Config | None = None, runner: CommandRunner | None = None):
        self.config = config or Config()
        self.runner: CommandRunner = runner or SubprocessRunner()

    def command_timeout(self) -> float:
        if self.config.timeout_seconds <= 0:
            return float(DEFAULT_TIMEOUT_SECONDS)
        return float(self.config.timeout_seconds)

    def build_argv(self, command: PlannedCommand) -> list[str]:
        """argv to exec, with elevation tokens prepended for needs_root commands."""
        argv = list(command.command)
        if command.needs_root and self.config.elevate_command.strip():
            argv = elevation_prefix(self.config.elevate_command) + argv
        return argv

    # --- Non-streaming ---

    def run_command(
        self, index: int, command: PlannedCommand, ctx: ExecContext | None = None
    ) -> Result:
        """Run one command, capturing combined output up to the size cap."""
        result = Result(index=index, command=list(command.command))
        if not command.command:
            result.err = EmptyCommandError()
            return result

        cctx = (ctx or ExecContext.background()).with_timeout(self.command_timeout())
        argv = self.build_argv(command)
        logger.debug(f"Running command {index}: {format_command(argv)}")

        start = time.monotonic()
        output, err = self._call_runner(cctx, argv)
        result.elapsed = time.monotonic() - start
        result.output, result.truncated = truncate_output(output)
        result.err = err
        if err is not None:
            logger.debug(f"Command {index} failed: {err}")
        return result

    def run_plan(self, plan: Plan, ctx: ExecContext | None = None) -> Results:
        """Run every command in order; failures do not stop later commands."""
        results = Results()
        for i, command in enumerate(plan.commands):
            results.append(self.run_command(i, command, ctx))
        return results

    def _call_runner(self, ctx: ExecContext, argv: list[str]) -> tuple[str, Exception | None]:
        err = ctx.error()
        if err is not None:
            return "", err
        try:
            return self.runner(ctx, argv)
        except (OSError, ValueError) as e:
            return "", CommandStartError(str(e))
        except LuciCodexError as e:
            return "", e

    # --- Streaming ---

    def run_plan_streaming(
        self, plan: Plan, sink: OutputSink, ctx: ExecContext | None = None
    ) -> Results:
        """Run a plan, writing each output line to ``sink`` as it arrives.

        stderr lines are shown in yellow. Ordering is kept within a stream,
        not across stdout and stderr.
        """
        results = Results()
        for i, command in enumerate(plan.commands):
            results.append(self._run_one_streaming(i, command, sink, ctx))
        return results

    def _run_one_streaming(
        self,
        index: int,
        command: PlannedCommand,
        sink: OutputSink,
        ctx: ExecContext | None,
    ) -> Result:
        result = Result(index=index, command=list(command.command))
        if not command.command:
            result.err = EmptyCommandError()
            return result

        sink.write(f"\n{_BOLD}[{index + 1}] Executing:{_RESET} {format_command(command.command)}\n")

        cctx = (ctx or ExecContext.background()).with_timeout(self.command_timeout())
        argv = self.build_argv(command)
        spawn = getattr(self.runner, "spawn", None)

        start = time.monotonic()
        if spawn is None:
            # Runner cannot hand out live pipes; replay its captured output.
            output, err = self._call_runner(cctx, argv)
            for line in output.splitlines():
                sink.write(f"  {line}\n")
            result.output, result.truncated = truncate_output(output)
        else:
            err = cctx.error()
            handle = None
            if err is None:
                try:
                    handle = spawn(argv)
                except (OSError, ValueError) as e:
                    err = CommandStartError(str(e))
                except LuciCodexError as e:
                    err = e
            if handle is not None:
                buffer, err = self._stream(handle, cctx, sink)
                result.output = buffer.getvalue()
                result.truncated = buffer.truncated
        result.elapsed = time.monotonic() - start
        result.err = err

        if err is not None:
            sink.write(f"  {_RED}✗ Failed{_RESET} ({result.elapsed:.2f}s): {err}\n")
        else:
            sink.write(f"  {_GREEN}✓ Done{_RESET} ({result.elapsed:.2f}s)\n")
        return result

    def _stream(
        self, handle: ProcessHandle, ctx: ExecContext, sink: OutputSink
    ) -> tuple[OutputBuffer, Exception | None]:
        events: queue.Queue[tuple[str, str | None]] = queue.Queue()
        readers = [
            threading.Thread(target=_read_lines, args=(STDOUT, handle.stdout, events), daemon=True),
            threading.Thread(target=_read_lines, args=(STDERR, handle.stderr, events), daemon=True),
        ]
        for reader in readers:
            reader.start()

        buffer = OutputBuffer()
        open_streams = len(readers)
        killed_at: float | None = None
        while open_streams:
            if killed_at is None:
                err = ctx.error()
                if err is not None:
                    logger.debug(f"Stopping process {handle.pid}: {err}")
                    handle.kill(err)
                    killed_at = time.monotonic()
            elif time.monotonic() - killed_at > KILL_GRACE_PERIOD:
                logger.warning(f"Output of process {handle.pid} abandoned after kill")
                break

            try:
                stream, line = events.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue
            if line is None:
                open_streams -= 1
            elif stream == _READ_ERROR:
                buffer.append_line(f"[read error: {line}]")
            else:
                buffer.append_line(line)
                if stream == STDERR:
                    sink.write(f"  {_YELLOW}{line}{_RESET}\n")
                else:
                    sink.write(f"  {line}\n")

        wait(handle, ctx)
        return buffer, handle.error()
