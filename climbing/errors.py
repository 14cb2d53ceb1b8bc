"""
Exception types raised by the climbing training core.
"""


class ClimbingError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(ClimbingError, ValueError):
    """Invalid sizes, reward-weight keys or configuration values."""


class ShapeMismatchError(ClimbingError, ValueError):
    """An observation does not have the length the agent was built for."""

    def __init__(self, expected, actual, name='state'):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Invalid {name}: expected length {expected}, got {actual}")


class InvalidActionError(ClimbingError, ValueError):
    """Action index outside [0, action_count)."""


class TrainingStateError(ClimbingError, RuntimeError):
    """An operation was requested in a training state that does not allow it."""
