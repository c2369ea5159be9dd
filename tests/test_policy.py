"""Tests for the command policy engine.

Covers structural checks, denylist precedence, allowlist behaviour and the
shipped default patterns.
"""

from __future__ import annotations

import logging

import pytest
from conftest import make_plan

from lucicodex.core.models import Plan, PlannedCommand, PolicyError
from lucicodex.core.policy import PolicyEngine


# =============================================================================
# Structural Checks
# =============================================================================


class TestStructuralChecks:
    """Malformed argv is rejected before patterns are consulted."""

    @pytest.fixture
    def engine(self) -> PolicyEngine:
        return PolicyEngine()

    def test_empty_command_rejected(self, engine):
        with pytest.raises(PolicyError, match="command 0 is empty"):
            engine.validate_plan(Plan(commands=[PlannedCommand(command=[])]))

    def test_blank_argument_rejected(self, engine):
        with pytest.raises(PolicyError, match="arg 1 is empty"):
            engine.validate_plan(make_plan(["echo", "   "]))

    def test_nul_byte_rejected(self, engine):
        with pytest.raises(PolicyError, match="arg 1 contains NUL"):
            engine.validate_plan(make_plan(["cat", "/etc/passwd\x00"]))

    @pytest.mark.parametrize("argv0", ["ls;rm", "cat|sh", "a&&b", "$(id)", "`id`", "x>y"])
    def test_shell_metacharacters_in_executable(self, engine, argv0):
        with pytest.raises(PolicyError, match="shell metacharacters"):
            engine.validate_plan(make_plan([argv0]))

    def test_metacharacters_allowed_in_later_args(self, engine):
        """Arguments are never shell-interpreted, so only argv[0] is checked."""
        engine.validate_plan(make_plan(["grep", "a|b", "/var/log/messages"]))

    def test_error_reports_first_bad_index(self, engine):
        plan = make_plan(["echo", "ok"], ["echo", "ok"], [])
        with pytest.raises(PolicyError) as exc_info:
            engine.validate_plan(plan)
        assert exc_info.value.index == 2
        assert exc_info.value.reason == "is empty"


# =============================================================================
# Allow / Deny Patterns
# =============================================================================


class TestPatterns:
    """Regex allow/deny matching against the rendered command."""

    def test_empty_allowlist_permits_everything_not_denied(self):
        engine = PolicyEngine(allowlist=[], denylist=[r"^rm(\s|$)"])
        engine.validate_plan(make_plan(["anything", "goes"]))

    def test_deny_takes_precedence_over_allow(self):
        engine = PolicyEngine(allowlist=[r"^rm(\s|$)"], denylist=[r"^rm\s+-rf"])
        with pytest.raises(PolicyError, match="blocked by denylist: rm -rf /tmp/x"):
            engine.validate_plan(make_plan(["rm", "-rf", "/tmp/x"]))
        engine.validate_plan(make_plan(["rm", "/tmp/x"]))

    def test_allowlist_rejects_unmatched(self):
        engine = PolicyEngine(allowlist=[r"^uci(\s|$)"])
        with pytest.raises(PolicyError, match="not permitted by allowlist: reboot"):
            engine.validate_plan(make_plan(["reboot"]))

    def test_patterns_match_quoted_rendering(self):
        """Arguments with spaces are matched in their double-quoted form."""
        engine = PolicyEngine(denylist=[r'"hello world"'])
        with pytest.raises(PolicyError):
            engine.validate_plan(make_plan(["echo", "hello world"]))

    def test_invalid_pattern_dropped_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="lucicodex.core.policy"):
            engine = PolicyEngine(allowlist=["(unclosed", r"^ok$"])
        assert engine.allow_patterns == [r"^ok$"]
        assert "Dropping invalid allowlist pattern" in caplog.text
        engine.validate_plan(make_plan(["ok"]))

    def test_validation_is_idempotent(self):
        engine = PolicyEngine(allowlist=[r"^uci(\s|$)"])
        plan = make_plan(["uci", "show"], ["reboot"])
        outcomes = []
        for _ in range(3):
            with pytest.raises(PolicyError) as exc_info:
                engine.validate_plan(plan)
            outcomes.append(str(exc_info.value))
        assert len(set(outcomes)) == 1

    def test_is_allowed(self):
        engine = PolicyEngine(denylist=[r"^dd(\s|$)"])
        assert engine.is_allowed(make_plan(["echo", "hi"]))
        assert not engine.is_allowed(make_plan(["dd", "if=/dev/zero"]))


# =============================================================================
# Shipped Defaults
# =============================================================================


class TestDefaultPolicy:
    """The default configuration allows router tooling and blocks destructive commands."""

    @pytest.fixture
    def engine(self, default_config) -> PolicyEngine:
        return PolicyEngine.from_config(default_config)

    def test_uci_show_allowed(self, engine):
        engine.validate_plan(make_plan(["uci", "show", "wireless"]))

    def test_opkg_install_allowed(self, engine):
        engine.validate_plan(make_plan(["opkg", "install", "luci"]))

    def test_init_script_allowed(self, engine):
        engine.validate_plan(make_plan(["/etc/init.d/network", "restart"]))

    def test_rm_rf_root_denied(self, engine):
        with pytest.raises(PolicyError, match="blocked by denylist"):
            engine.validate_plan(make_plan(["rm", "-rf", "/"]))

    def test_mkfs_denied(self, engine):
        with pytest.raises(PolicyError, match="blocked by denylist"):
            engine.validate_plan(make_plan(["mkfs", "/dev/sda1"]))

    def test_unknown_command_not_allowed(self, engine):
        with pytest.raises(PolicyError, match="not permitted by allowlist"):
            engine.validate_plan(make_plan(["curl", "http://example.com"]))

    def test_opkg_unknown_subcommand_not_allowed(self, engine):
        with pytest.raises(PolicyError, match="not permitted by allowlist"):
            engine.validate_plan(make_plan(["opkg", "flash"]))
