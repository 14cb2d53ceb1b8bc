"""
Abstract base class for all brain implementations.
"""
from abc import ABC, abstractmethod

import numpy as np

from climbing.errors import ShapeMismatchError, InvalidActionError


class BrainBase(ABC):
    """
    Base class for all neural network brains.
    Defines the interface that the orchestrator relies on for every agent kind.
    """

    # Tag used in checkpoints and metadata ('DQN' or 'PPO')
    kind = None

    def __init__(self, state_size, action_size):
        if int(state_size) <= 0:
            raise ValueError(f"state_size must be positive, got {state_size}")
        if int(action_size) <= 1:
            raise ValueError(f"action_size must be at least 2, got {action_size}")
        self.state_size = int(state_size)
        self.action_size = int(action_size)

    @abstractmethod
    def select_action(self, state, *args, **kwargs):
        """
        Select an action based on input state.

        Returns:
            Action index, or a richer result for policy brains
        """
        pass

    @abstractmethod
    def save_model(self, path):
        """
        Save brain weights to file.

        Args:
            path: File path to save to

        Returns:
            dict: Metadata describing the saved model
        """
        pass

    @abstractmethod
    def load_model(self, path):
        """
        Load brain weights from file.

        Args:
            path: File path to load from

        Returns:
            dict: Metadata stored alongside the weights
        """
        pass

    @abstractmethod
    def dispose(self):
        """
        Release buffers and optimizer state held by the brain.
        """
        pass

    def validate_state(self, state, name='state'):
        """
        Convert a state to a float32 vector, checking its length.

        Raises:
            ShapeMismatchError: If the state is missing or has the wrong length
        """
        if state is None:
            raise ShapeMismatchError(self.state_size, None, name)
        array = np.asarray(state, dtype=np.float32).reshape(-1)
        if array.shape[0] != self.state_size:
            raise ShapeMismatchError(self.state_size, array.shape[0], name)
        return array

    def validate_action(self, action):
        """Return action as int, raising if it is outside the action space."""
        if isinstance(action, (bool, np.bool_)) or not isinstance(action, (int, np.integer)):
            raise InvalidActionError(f"Invalid action: expected integer, got {action!r}")
        if not 0 <= int(action) < self.action_size:
            raise InvalidActionError(
                f"Invalid action: expected integer in [0, {self.action_size - 1}], got {action}"
            )
        return int(action)
