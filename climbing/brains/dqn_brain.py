"""
Deep Q-Network (DQN) brain with experience replay.
"""
import os
import math
import random
import logging
from collections import namedtuple, deque
from datetime import datetime, timezone

import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim

from .base import BrainBase
from .networks import MLP
from climbing.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Experience tuple for replay memory
Experience = namedtuple('Experience', ('state', 'action', 'reward', 'next_state', 'done'))


class ReplayMemory:
    """
    Experience replay buffer for DQN training.
    Oldest experiences are evicted first once capacity is reached.
    """

    def __init__(self, capacity, rng=None):
        if capacity <= 0:
            raise ConfigurationError(f"Replay memory capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.memory = deque([], maxlen=capacity)
        self.rng = rng or random.Random()

    def push(self, *args):
        """Save an experience."""
        self.memory.append(Experience(*args))

    def sample(self, batch_size):
        """Sample a random batch (uniform, without replacement)."""
        return self.rng.sample(self.memory, batch_size)

    def clear(self):
        self.memory.clear()

    def __len__(self):
        return len(self.memory)


class DQNBrain(BrainBase):
    """
    Deep Q-Learning brain with experience replay and target network.
    """

    kind = 'DQN'

    def __init__(self, state_size, action_size, hidden_layers=(64, 64), lr=3e-4, mem_size=10000,
                 batch_size=32, gamma=0.99, epsilon=1.0, epsilon_min=0.01, epsilon_decay=0.995,
                 max_grad_norm=1.0, device='cpu', seed=None):
        """
        Initialize DQN brain.

        Args:
            state_size: State input size
            action_size: Number of actions
            hidden_layers: List of hidden layer sizes
            lr: Learning rate
            mem_size: Replay memory size
            batch_size: Default training batch size
            gamma: Discount factor
            epsilon: Starting epsilon for exploration
            epsilon_min: Floor for epsilon decay
            epsilon_decay: Multiplicative epsilon decay per decay_epsilon() call
            max_grad_norm: Gradient clipping norm (None disables clipping)
            device: 'cuda' or 'cpu'
            seed: Optional seed for sampling and weight initialization
        """
        super().__init__(state_size, action_size)
        if not 0.0 <= gamma <= 1.0:
            raise ConfigurationError(f"gamma must be in [0, 1], got {gamma}")
        if not 0.0 < epsilon_decay <= 1.0:
            raise ConfigurationError(f"epsilon_decay must be in (0, 1], got {epsilon_decay}")
        if batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {batch_size}")

        self.hidden_layers = list(hidden_layers)
        self.learning_rate = lr
        self.batch_size = batch_size
        self.gamma = gamma
        self.epsilon_min = epsilon_min
        self.epsilon = max(epsilon, epsilon_min)
        self.epsilon_decay = epsilon_decay
        self.max_grad_norm = max_grad_norm
        self.device = device

        self.rng = random.Random(seed)
        if seed is not None:
            torch.manual_seed(seed)

        # Online and target networks
        self.policy_net = MLP(state_size, self.hidden_layers, action_size).to(device)
        self.target_net = MLP(state_size, self.hidden_layers, action_size).to(device)
        self.target_net.load_state_dict(self.policy_net.state_dict())
        self.target_net.eval()

        # Optimizer and memory
        self.optimizer = optim.Adam(self.policy_net.parameters(), lr=lr)
        self.memory = ReplayMemory(mem_size, rng=self.rng)
        self.train_steps = 0

    @classmethod
    def from_config(cls, state_size, action_size, config, device='cpu', seed=None):
        """Build a brain from the 'dqn' section of a configuration."""
        return cls(
            state_size, action_size,
            hidden_layers=config.get('hidden_layers', [64, 64]),
            lr=config.get('learning_rate', 3e-4),
            mem_size=config.get('memory_size', 10000),
            batch_size=config.get('batch_size', 32),
            gamma=config.get('gamma', 0.99),
            epsilon=config.get('epsilon', 1.0),
            epsilon_min=config.get('epsilon_min', 0.01),
            epsilon_decay=config.get('epsilon_decay', 0.995),
            max_grad_norm=config.get('max_grad_norm', 1.0),
            device=device,
            seed=seed
        )

    def _to_tensor(self, array):
        return torch.as_tensor(np.asarray(array), dtype=torch.float32, device=self.device)

    def select_action(self, state, epsilon=None):
        """
        Select action using epsilon-greedy policy.

        Args:
            state: Current state array
            epsilon: Exploration rate, defaults to the brain's current epsilon

        Returns:
            int: Action index
        """
        state = self.validate_state(state)
        if epsilon is None:
            epsilon = self.epsilon

        if self.rng.random() < epsilon:
            # Explore: random action
            return self.rng.randrange(self.action_size)

        # Exploit: choose best action (argmax keeps the first maximum)
        q_values = self.get_q_values(state)
        return int(np.argmax(q_values))

    def get_q_values(self, state):
        """
        Q-values of every action for a state.

        Returns:
            np.ndarray: Array of shape (action_size,)
        """
        state = self.validate_state(state)
        with torch.no_grad():
            q_values = self.policy_net(self._to_tensor(state).unsqueeze(0))
        return q_values.squeeze(0).cpu().numpy()

    def remember(self, state, action, reward, next_state, done):
        """Store an experience in replay memory."""
        state = self.validate_state(state)
        next_state = self.validate_state(next_state, name='next_state')
        action = self.validate_action(action)
        if not math.isfinite(reward):
            raise ValueError(f"Invalid reward: expected finite number, got {reward}")
        self.memory.push(state, action, float(reward), next_state, bool(done))

    @property
    def memory_size(self):
        return len(self.memory)

    def can_train(self, min_size=None):
        """Check whether memory holds enough experiences for a batch."""
        if min_size is None:
            min_size = self.batch_size
        return len(self.memory) >= min_size

    def clear_memory(self):
        self.memory.clear()

    def train(self, batch_size=None):
        """
        Perform one step of optimization on a batch from memory.

        Returns:
            dict: loss, batch_size, epsilon, ready and has_nan flags.
            When memory holds fewer than batch_size experiences the result
            has ready=False and a zero loss.
        """
        if batch_size is None:
            batch_size = self.batch_size

        if not self.can_train(batch_size):
            return {'loss': 0.0, 'batch_size': 0, 'epsilon': self.epsilon,
                    'ready': False, 'has_nan': False}

        # Sample batch
        experiences = self.memory.sample(batch_size)
        batch = Experience(*zip(*experiences))

        # Convert to tensors
        state_batch = self._to_tensor(np.stack(batch.state))
        action_batch = torch.as_tensor(batch.action, dtype=torch.long, device=self.device).unsqueeze(1)
        reward_batch = self._to_tensor(batch.reward)
        next_state_batch = self._to_tensor(np.stack(batch.next_state))
        done_batch = self._to_tensor(batch.done)

        # Compute Q(s, a)
        state_action_values = self.policy_net(state_batch).gather(1, action_batch)

        # Compute V(s') = max_a Q_target(s', a)
        with torch.no_grad():
            next_state_values = self.target_net(next_state_batch).max(1)[0]

        # Compute expected Q values
        expected_state_action_values = reward_batch + self.gamma * next_state_values * (1.0 - done_batch)

        # Compute loss
        criterion = nn.SmoothL1Loss()
        loss = criterion(state_action_values, expected_state_action_values.unsqueeze(1))

        if not torch.isfinite(loss):
            logger.warning("Non-finite DQN loss, skipping update")
            return {'loss': float('nan'), 'batch_size': batch_size, 'epsilon': self.epsilon,
                    'ready': True, 'has_nan': True}

        # Optimize
        self.optimizer.zero_grad()
        loss.backward()
        if self.max_grad_norm:
            torch.nn.utils.clip_grad_norm_(self.policy_net.parameters(), self.max_grad_norm)
        self.optimizer.step()
        self.train_steps += 1

        return {'loss': loss.item(), 'batch_size': batch_size, 'epsilon': self.epsilon,
                'ready': True, 'has_nan': False}

    def update_target_network(self):
        """Copy weights from policy network to target network."""
        self.target_net.load_state_dict(self.policy_net.state_dict())

    def decay_epsilon(self):
        """Multiply epsilon by the decay rate, never going below epsilon_min."""
        self.epsilon = max(self.epsilon_min, self.epsilon * self.epsilon_decay)
        return self.epsilon

    def set_epsilon(self, epsilon):
        self.epsilon = max(epsilon, self.epsilon_min)

    def set_learning_rate(self, lr):
        self.learning_rate = lr
        for group in self.optimizer.param_groups:
            group['lr'] = lr

    def get_hyperparameters(self):
        return {
            'gamma': self.gamma,
            'epsilon': self.epsilon,
            'epsilon_min': self.epsilon_min,
            'epsilon_decay': self.epsilon_decay,
            'learning_rate': self.learning_rate,
            'memory_size': self.memory.capacity,
            'batch_size': self.batch_size,
            'hidden_layers': self.hidden_layers,
        }

    def save_model(self, path):
        """
        Save DQN brain to file.

        Args:
            path: File path (should end with .pth)

        Returns:
            dict: Metadata saved with the weights
        """
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        metadata = {
            'kind': self.kind,
            'state_size': self.state_size,
            'action_size': self.action_size,
            'train_steps': self.train_steps,
            'memory_size': len(self.memory),
            'timestamp': datetime.now(timezone.utc).isoformat(),
            **self.get_hyperparameters()
        }
        torch.save({
            'policy_net': self.policy_net.state_dict(),
            'target_net': self.target_net.state_dict(),
            'optimizer': self.optimizer.state_dict(),
            'metadata': metadata
        }, path)
        return metadata

    def load_model(self, path):
        """
        Load DQN brain from file.

        Args:
            path: File path to load from

        Returns:
            dict: Metadata stored with the checkpoint
        """
        checkpoint = torch.load(path, map_location=self.device)
        metadata = checkpoint.get('metadata', {})
        if metadata.get('kind', self.kind) != self.kind:
            raise ConfigurationError(f"Checkpoint holds a {metadata['kind']} model, not {self.kind}")
        if (metadata.get('state_size', self.state_size) != self.state_size or
                metadata.get('action_size', self.action_size) != self.action_size):
            raise ConfigurationError(
                f"Checkpoint dimensions {metadata.get('state_size')}x{metadata.get('action_size')} "
                f"do not match brain {self.state_size}x{self.action_size}"
            )

        self.policy_net.load_state_dict(checkpoint['policy_net'])
        self.target_net.load_state_dict(checkpoint['target_net'])
        self.optimizer.load_state_dict(checkpoint['optimizer'])
        self.epsilon = max(metadata.get('epsilon', self.epsilon), self.epsilon_min)
        self.train_steps = metadata.get('train_steps', 0)
        return metadata

    def dispose(self):
        """Drop replay memory and optimizer state."""
        self.memory.clear()
        self.optimizer.state.clear()
