"""LuciCodex - safe execution core for model-planned router commands.

Validates argv-style plans against operator policy, runs them without a shell,
bounds their output and run time, and drives model-assisted fix retries.
"""

__version__ = "0.1.0"
