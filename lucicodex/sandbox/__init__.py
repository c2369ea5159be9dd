"""Sandbox module for isolated execution of untrusted commands."""

from lucicodex.sandbox.monitor import Monitor
from lucicodex.sandbox.runner import SandboxRunner
from lucicodex.sandbox.sandbox import (
    ProcessSpec,
    Sandbox,
    SandboxError,
    SandboxPolicyError,
)

__all__ = [
    "Monitor",
    "ProcessSpec",
    "Sandbox",
    "SandboxError",
    "SandboxPolicyError",
    "SandboxRunner",
]
