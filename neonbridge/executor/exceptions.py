"""Executor subsystem exceptions."""


class ExecutorError(Exception):
    """Base class for agent execution errors."""


class PreflightError(ExecutorError):
    """The agent binary is missing or does not run."""


class SpawnError(ExecutorError):
    """The operating system failed to start the agent process."""
