"""CLI entry point for LuciCodex.

Commands:
- lucicodex validate: Check a plan against the command policy
- lucicodex run: Validate and execute a plan, retrying failures with fixes
- lucicodex cleanup: Prune stale entries from the sandbox directory
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from lucicodex import __version__
from lucicodex.core.config import Config, ConfigError, ConfigLoader
from lucicodex.core.context import ExecContext
from lucicodex.core.executor import Executor
from lucicodex.core.models import Plan, PolicyError, Results
from lucicodex.core.parser import PlanParseError, parse_plan
from lucicodex.core.policy import PolicyEngine
from lucicodex.core.retry import AutoRetry, StaticFixPlanner
from lucicodex.core.utils import format_command
from lucicodex.sandbox import Sandbox, SandboxRunner

console = Console()

EXIT_FAILED = 1
EXIT_POLICY = 2

# Characters of output shown per command in the results table
OUTPUT_PREVIEW = 200


class EchoSink:
    """Streaming sink that writes through click (ANSI stripped when not a tty)."""

    def write(self, text: str) -> None:
        click.echo(text, nl=False)


def _setup(config_path: str | None, verbose: bool) -> Config:
    try:
        config = ConfigLoader().load(config_path)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(EXIT_FAILED)

    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        filename=config.log_file,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


def _load_plan(plan_file: str, max_commands: int) -> Plan:
    try:
        plan = parse_plan(Path(plan_file).read_text(encoding="utf-8"), max_commands)
    except (OSError, PlanParseError) as e:
        console.print(f"[red]Error loading plan '{escape(plan_file)}':[/red] {escape(str(e))}")
        sys.exit(EXIT_FAILED)
    for warning in plan.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    return plan


def _load_fixes(fixes_file: str) -> dict[str, Plan]:
    """Read a YAML mapping of rendered command -> fix plan."""
    try:
        with open(fixes_file, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError("fixes file must contain a mapping")
        return {str(cmd): Plan.model_validate(plan) for cmd, plan in data.items()}
    except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
        console.print(f"[red]Error loading fixes '{escape(fixes_file)}':[/red] {escape(str(e))}")
        sys.exit(EXIT_FAILED)


def _plan_table(plan: Plan) -> Table:
    table = Table(title=plan.summary or "Plan")
    table.add_column("#", justify="right")
    table.add_column("Command")
    table.add_column("Root")
    table.add_column("Description")
    for i, command in enumerate(plan.commands, start=1):
        table.add_row(
            str(i),
            escape(format_command(command.command)),
            "yes" if command.needs_root else "",
            escape(command.description),
        )
    return table


def _results_table(results: Results) -> Table:
    table = Table(title="Results")
    table.add_column("#", justify="right")
    table.add_column("Command")
    table.add_column("Status")
    table.add_column("Time", justify="right")
    table.add_column("Output")
    for i, item in enumerate(results.items, start=1):
        if item.err is None:
            status = "[green]ok[/green]"
        else:
            status = f"[red]{escape(str(item.err))}[/red]"
        output = item.output.strip()
        if len(output) > OUTPUT_PREVIEW:
            output = output[:OUTPUT_PREVIEW] + "..."
        output = escape(output)
        if item.truncated:
            output += " [dim](truncated)[/dim]"
        table.add_row(
            str(i),
            escape(format_command(item.command)),
            status,
            f"{item.elapsed:.2f}s",
            output,
        )
    return table


def _validate_or_exit(policy: PolicyEngine, plan: Plan) -> None:
    try:
        policy.validate_plan(plan)
    except PolicyError as e:
        console.print(f"[red]Policy rejected plan:[/red] {escape(str(e))}")
        sys.exit(EXIT_POLICY)


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """LuciCodex - safe execution of model-generated router commands.

    Plans are validated against an allow/deny policy, executed without a
    shell, and failed commands can be retried with corrective plans.
    """
    pass


@main.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def validate(plan_file: str, config_path: str | None, verbose: bool) -> None:
    """Check a plan against the command policy without running it."""
    config = _setup(config_path, verbose)
    plan = _load_plan(plan_file, config.max_commands)
    console.print(_plan_table(plan))
    _validate_or_exit(PolicyEngine.from_config(config), plan)
    console.print("[green]✓ Plan is permitted by policy[/green]")


@main.command()
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--stream/--no-stream", default=True, help="Print output as it arrives")
@click.option("--sandbox", is_flag=True, help="Run commands in the scratch sandbox")
@click.option(
    "--fixes",
    "fixes_file",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML mapping of failed command -> fix plan, used for auto-retry",
)
@click.option("--dry-run", is_flag=True, help="Validate and show the plan without executing")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def run(
    plan_file: str,
    stream: bool,
    sandbox: bool,
    fixes_file: str | None,
    dry_run: bool,
    config_path: str | None,
    verbose: bool,
) -> None:
    """Validate and execute a plan."""
    config = _setup(config_path, verbose)
    plan = _load_plan(plan_file, config.max_commands)
    policy = PolicyEngine.from_config(config)
    _validate_or_exit(policy, plan)

    if dry_run or config.dry_run:
        console.print(_plan_table(plan))
        console.print("[yellow]Dry run - no commands executed[/yellow]")
        return

    fixes = _load_fixes(fixes_file) if fixes_file else None
    runner = SandboxRunner(Sandbox(config)) if sandbox else None
    executor = Executor(config, runner)
    ctx = ExecContext.background()

    if stream:
        results = executor.run_plan_streaming(plan, EchoSink(), ctx)
    else:
        results = executor.run_plan(plan, ctx)

    planned = len(results.items)
    if results.failed and fixes is not None:
        retry = AutoRetry(
            executor,
            StaticFixPlanner(fixes),
            policy,
            config,
            log=lambda message: console.print(f"[dim]{escape(message)}[/dim]"),
        )
        retry.run(results, ctx)

    console.print(_results_table(results))
    # Failed fix attempts stay in the table but only planned commands decide the status.
    remaining = AutoRetry.unresolved(results, planned)
    if remaining:
        console.print(f"[red]{len(remaining)} command(s) failed[/red]")
        sys.exit(EXIT_FAILED)
    console.print("[green]All commands succeeded[/green]")


@main.command()
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cleanup(config_path: str | None, verbose: bool) -> None:
    """Remove sandbox entries older than one hour."""
    config = _setup(config_path, verbose)
    box = Sandbox(config)
    try:
        removed = box.cleanup()
    except OSError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(EXIT_FAILED)
    console.print(f"Removed {removed} stale entries from {escape(str(box.tmp_dir))}")


if __name__ == "__main__":
    main()
