"""Safety and execution core: policy, executor and auto-retry."""

from lucicodex.core.config import Config, ConfigError, ConfigLoader, load_config
from lucicodex.core.context import ExecContext
from lucicodex.core.executor import Executor, SubprocessRunner
from lucicodex.core.models import (
    CommandError,
    LuciCodexError,
    Plan,
    PlannedCommand,
    PolicyError,
    ResourceLimits,
    Result,
    Results,
)
from lucicodex.core.parser import PlanParseError, parse_plan
from lucicodex.core.policy import PolicyEngine
from lucicodex.core.retry import AutoRetry, FixPlanner, StaticFixPlanner, auto_retry

__all__ = [
    "AutoRetry",
    "CommandError",
    "Config",
    "ConfigError",
    "ConfigLoader",
    "ExecContext",
    "Executor",
    "FixPlanner",
    "LuciCodexError",
    "Plan",
    "PlanParseError",
    "PlannedCommand",
    "PolicyEngine",
    "PolicyError",
    "ResourceLimits",
    "Result",
    "Results",
    "StaticFixPlanner",
    "SubprocessRunner",
    "auto_retry",
    "load_config",
]
