# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the LuciCodex test suite.

This module provides foundational fixtures used across all test modules:
- Configurations with open or restrictive policies
- A scripted command runner that never spawns processes
- Plan builders and a sandbox rooted in a temporary directory
"""

from __future__ import annotations

from pathlib import Path

import pytest

from lucicodex.core.config import Config
from lucicodex.core.context import ExecContext
from lucicodex.core.models import CommandFailedError, Plan, PlannedCommand, ResourceLimits
from lucicodex.sandbox import Sandbox


# =============================================================================
# Plan Helpers
# =============================================================================


def make_plan(*argvs: list[str], summary: str = "") -> Plan:
    """Build a Plan from bare argv lists."""
    return Plan(summary=summary, commands=[PlannedCommand(command=list(a)) for a in argvs])


class ScriptedRunner:
    """CommandRunner that answers from a table instead of spawning processes.

    Commands whose argv[0] starts with ``bad`` fail with exit status 1 and the
    output ``"<argv0> failed"``; everything else succeeds with ``"ran <argv0>"``.
    ``outputs`` overrides the output for a given argv[0].
    """

    def __init__(self, outputs: dict[str, str] | None = None):
        self.outputs = outputs or {}
        self.calls: list[list[str]] = []

    def __call__(self, ctx: ExecContext, argv: list[str]):
        self.calls.append(list(argv))
        name = argv[0]
        if name.startswith("bad"):
            return self.outputs.get(name, f"{name} failed"), CommandFailedError(1)
        return self.outputs.get(name, f"ran {name}"), None


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def open_config() -> Config:
    """Config with empty allow/deny lists and fast timeouts."""
    return Config(allowlist=[], denylist=[], timeout_seconds=5)


@pytest.fixture
def default_config() -> Config:
    """Config with the shipped allow/deny lists."""
    return Config()


@pytest.fixture
def scripted_runner() -> ScriptedRunner:
    return ScriptedRunner()


# =============================================================================
# Sandbox Fixtures
# =============================================================================


@pytest.fixture
def sandbox_dir(tmp_path: Path) -> Path:
    return tmp_path / "sandbox"


@pytest.fixture
def sandbox(sandbox_dir: Path) -> Sandbox:
    """Sandbox in a temp directory with a short execution ceiling."""
    box = Sandbox(tmp_dir=sandbox_dir)
    box.set_limits(ResourceLimits(max_execution_time=5))
    return box


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
