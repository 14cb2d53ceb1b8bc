"""
Proximal Policy Optimization (PPO) brain with separate actor and critic networks.
"""
import os
import logging
from collections import namedtuple
from datetime import datetime, timezone

import numpy as np
import torch
import torch.optim as optim
from torch.distributions import Categorical

from .base import BrainBase
from .networks import MLP
from climbing.errors import ConfigurationError, ShapeMismatchError

logger = logging.getLogger(__name__)

# Result of a policy query: chosen action, its log-probability and the critic's value
PolicyOutput = namedtuple('PolicyOutput', ('action', 'log_prob', 'value'))


class TrajectoryBuffer:
    """
    On-policy storage for the steps collected since the last training call.
    """

    def __init__(self):
        self.states = []
        self.actions = []
        self.rewards = []
        self.next_states = []
        self.dones = []
        self.log_probs = []
        self.values = []

    def add(self, state, action, reward, next_state, done, log_prob, value):
        self.states.append(state)
        self.actions.append(action)
        self.rewards.append(reward)
        self.next_states.append(next_state)
        self.dones.append(done)
        self.log_probs.append(log_prob)
        self.values.append(value)

    def clear(self):
        self.states.clear()
        self.actions.clear()
        self.rewards.clear()
        self.next_states.clear()
        self.dones.clear()
        self.log_probs.clear()
        self.values.clear()

    def __len__(self):
        return len(self.actions)


class PPOBrain(BrainBase):
    """
    Actor-critic brain trained with GAE and the clipped surrogate objective.
    """

    kind = 'PPO'

    def __init__(self, state_size, action_size, hidden_layers=(64, 64), lr=3e-4, gamma=0.99,
                 gae_lambda=0.95, clip_epsilon=0.2, entropy_coef=0.01, epochs=10,
                 max_grad_norm=0.5, device='cpu', seed=None):
        """
        Initialize PPO brain.

        Args:
            state_size: State input size
            action_size: Number of actions
            hidden_layers: Hidden layer sizes for both actor and critic
            lr: Learning rate of both optimizers
            gamma: Discount factor
            gae_lambda: GAE bias/variance trade-off
            clip_epsilon: Half-width of the probability ratio clipping band
            entropy_coef: Weight of the entropy bonus in the actor loss
            epochs: Optimization epochs per train() call
            max_grad_norm: Gradient clipping norm (None disables clipping)
            device: 'cuda' or 'cpu'
            seed: Optional seed for sampling and weight initialization
        """
        super().__init__(state_size, action_size)
        if not 0.0 <= gamma <= 1.0:
            raise ConfigurationError(f"gamma must be in [0, 1], got {gamma}")
        if not 0.0 <= gae_lambda <= 1.0:
            raise ConfigurationError(f"gae_lambda must be in [0, 1], got {gae_lambda}")
        if not 0.0 < clip_epsilon < 1.0:
            raise ConfigurationError(f"clip_epsilon must be in (0, 1), got {clip_epsilon}")
        if epochs <= 0:
            raise ConfigurationError(f"epochs must be positive, got {epochs}")

        self.hidden_layers = list(hidden_layers)
        self.learning_rate = lr
        self.gamma = gamma
        self.gae_lambda = gae_lambda
        self.clip_epsilon = clip_epsilon
        self.entropy_coef = entropy_coef
        self.epochs = epochs
        self.max_grad_norm = max_grad_norm
        self.device = device

        self.generator = torch.Generator(device='cpu')
        if seed is not None:
            torch.manual_seed(seed)
            self.generator.manual_seed(seed)
        else:
            self.generator.seed()

        self.actor_net = MLP(state_size, self.hidden_layers, action_size, init='glorot').to(device)
        self.critic_net = MLP(state_size, self.hidden_layers, 1, init='glorot').to(device)

        # Actor and critic are updated independently
        self.actor_optimizer = optim.Adam(self.actor_net.parameters(), lr=lr)
        self.critic_optimizer = optim.Adam(self.critic_net.parameters(), lr=lr)

        self.trajectory = TrajectoryBuffer()
        self.train_calls = 0

    @classmethod
    def from_config(cls, state_size, action_size, config, device='cpu', seed=None):
        """Build a brain from the 'ppo' section of a configuration."""
        return cls(
            state_size, action_size,
            hidden_layers=config.get('hidden_layers', [64, 64]),
            lr=config.get('learning_rate', 3e-4),
            gamma=config.get('gamma', 0.99),
            gae_lambda=config.get('gae_lambda', 0.95),
            clip_epsilon=config.get('clip_epsilon', 0.2),
            entropy_coef=config.get('entropy_coef', 0.01),
            epochs=config.get('epochs', 10),
            max_grad_norm=config.get('max_grad_norm', 0.5),
            device=device,
            seed=seed
        )

    def _to_tensor(self, array, dtype=torch.float32):
        return torch.as_tensor(np.asarray(array), dtype=dtype, device=self.device)

    def _distribution(self, states):
        return Categorical(logits=self.actor_net(states))

    def select_action(self, state, training=True):
        """
        Choose an action for a state.

        Args:
            state: Current state array
            training: Sample from the policy if True, take its mode otherwise

        Returns:
            PolicyOutput: (action, log_prob, value)
        """
        state = self.validate_state(state)
        with torch.no_grad():
            state_tensor = self._to_tensor(state).unsqueeze(0)
            dist = self._distribution(state_tensor)
            if training:
                probs = dist.probs.squeeze(0).cpu()
                action = torch.multinomial(probs, 1, generator=self.generator)
            else:
                action = torch.argmax(dist.probs, dim=1)
            action = action.to(self.device)
            log_prob = dist.log_prob(action.view(1))
            value = self.critic_net(state_tensor).squeeze()

        return PolicyOutput(int(action.item()), float(log_prob.item()), float(value.item()))

    def get_action_probabilities(self, state):
        state = self.validate_state(state)
        with torch.no_grad():
            probs = self._distribution(self._to_tensor(state).unsqueeze(0)).probs
        return probs.squeeze(0).cpu().numpy()

    def get_value(self, state):
        """Critic estimate for a single state."""
        state = self.validate_state(state)
        with torch.no_grad():
            value = self.critic_net(self._to_tensor(state).unsqueeze(0))
        return float(value.item())

    def store_transition(self, state, action, reward, next_state, done, log_prob, value):
        """Append one on-policy step to the trajectory buffer."""
        state = self.validate_state(state)
        next_state = self.validate_state(next_state, name='next_state')
        action = self.validate_action(action)
        self.trajectory.add(state, action, float(reward), next_state, bool(done),
                            float(log_prob), float(value))

    @property
    def trajectory_length(self):
        return len(self.trajectory)

    def clear_trajectory(self):
        self.trajectory.clear()

    def compute_advantages(self, rewards, values, dones, last_value=0.0):
        """
        Generalized Advantage Estimation over a trajectory.

        The value after the final step is last_value (0 for a finished episode);
        any step flagged done bootstraps from 0.

        Returns:
            tuple: (advantages, returns) as float32 arrays in trajectory order
        """
        length = len(rewards)
        if len(values) != length or len(dones) != length:
            raise ValueError(
                f"rewards, values and dones must have the same length, "
                f"got {length}, {len(values)}, {len(dones)}"
            )

        advantages = np.zeros(length, dtype=np.float32)
        gae = 0.0
        for t in reversed(range(length)):
            next_value = last_value if t == length - 1 else values[t + 1]
            not_done = 0.0 if dones[t] else 1.0
            delta = rewards[t] + self.gamma * next_value * not_done - values[t]
            gae = delta + self.gamma * self.gae_lambda * gae * not_done
            advantages[t] = gae

        returns = advantages + np.asarray(values, dtype=np.float32)
        return advantages, returns

    @staticmethod
    def normalize_advantages(advantages):
        """Shift to zero mean and scale to unit variance."""
        advantages = np.asarray(advantages, dtype=np.float32)
        if advantages.size == 0:
            return advantages
        std = max(float(advantages.std()), 1e-8)
        return (advantages - advantages.mean()) / std

    def build_batch(self, last_value=0.0):
        """
        Turn the trajectory buffer into a training batch.

        Returns:
            dict or None: states, actions, old_log_probs, advantages, returns
        """
        if len(self.trajectory) == 0:
            return None
        advantages, returns = self.compute_advantages(
            self.trajectory.rewards, self.trajectory.values, self.trajectory.dones, last_value
        )
        return {
            'states': np.stack(self.trajectory.states),
            'actions': np.asarray(self.trajectory.actions, dtype=np.int64),
            'old_log_probs': np.asarray(self.trajectory.log_probs, dtype=np.float32),
            'advantages': self.normalize_advantages(advantages),
            'returns': returns,
        }

    def train(self, trajectory=None, last_value=0.0):
        """
        Run PPO updates on a trajectory batch.

        Args:
            trajectory: dict with states, actions, old_log_probs, advantages
                (already normalized) and returns. Uses the internal buffer when None.
            last_value: Bootstrap value for the buffer's final step

        Returns:
            dict: actor_loss, critic_loss, entropy (means over epochs), epochs, ready
        """
        if trajectory is None:
            trajectory = self.build_batch(last_value)

        try:
            if not trajectory or len(trajectory['actions']) == 0:
                return {'actor_loss': 0.0, 'critic_loss': 0.0, 'entropy': 0.0,
                        'epochs': 0, 'ready': False}
            return self._optimize(trajectory)
        finally:
            self.trajectory.clear()

    def _optimize(self, trajectory):
        states = self._to_tensor(trajectory['states'])
        if states.dim() != 2 or states.shape[1] != self.state_size:
            width = states.shape[-1] if states.dim() else None
            raise ShapeMismatchError(self.state_size, width, 'states')
        actions = self._to_tensor(trajectory['actions'], dtype=torch.long)
        old_log_probs = self._to_tensor(trajectory['old_log_probs'])
        advantages = self._to_tensor(trajectory['advantages'])
        returns = self._to_tensor(trajectory['returns'])

        batch_size = states.shape[0]
        for name, column in (('actions', actions), ('old_log_probs', old_log_probs),
                             ('advantages', advantages), ('returns', returns)):
            if column.dim() != 1 or column.shape[0] != batch_size:
                raise ShapeMismatchError(batch_size, tuple(column.shape), name)

        total_actor_loss = 0.0
        total_critic_loss = 0.0
        total_entropy = 0.0

        for _ in range(self.epochs):
            # Actor: clipped surrogate objective with entropy bonus
            dist = self._distribution(states)
            new_log_probs = dist.log_prob(actions)
            entropy = dist.entropy().mean()
            ratios = torch.exp(new_log_probs - old_log_probs)
            clipped = torch.clamp(ratios, 1.0 - self.clip_epsilon, 1.0 + self.clip_epsilon)
            surrogate = torch.min(ratios * advantages, clipped * advantages)
            actor_loss = -surrogate.mean() - self.entropy_coef * entropy

            self.actor_optimizer.zero_grad()
            actor_loss.backward()
            if self.max_grad_norm:
                torch.nn.utils.clip_grad_norm_(self.actor_net.parameters(), self.max_grad_norm)
            self.actor_optimizer.step()

            # Critic: MSE against returns
            values = self.critic_net(states).squeeze(-1)
            critic_loss = ((values - returns) ** 2).mean()

            self.critic_optimizer.zero_grad()
            critic_loss.backward()
            if self.max_grad_norm:
                torch.nn.utils.clip_grad_norm_(self.critic_net.parameters(), self.max_grad_norm)
            self.critic_optimizer.step()

            total_actor_loss += actor_loss.item()
            total_critic_loss += critic_loss.item()
            total_entropy += entropy.item()

        self.train_calls += 1
        return {
            'actor_loss': total_actor_loss / self.epochs,
            'critic_loss': total_critic_loss / self.epochs,
            'entropy': total_entropy / self.epochs,
            'epochs': self.epochs,
            'ready': True,
        }

    def get_hyperparameters(self):
        return {
            'gamma': self.gamma,
            'gae_lambda': self.gae_lambda,
            'clip_epsilon': self.clip_epsilon,
            'entropy_coef': self.entropy_coef,
            'learning_rate': self.learning_rate,
            'epochs': self.epochs,
            'hidden_layers': self.hidden_layers,
        }

    def save_model(self, path):
        """
        Save actor, critic and both optimizers to one file.

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
            'train_calls': self.train_calls,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            **self.get_hyperparameters()
        }
        torch.save({
            'actor_net': self.actor_net.state_dict(),
            'critic_net': self.critic_net.state_dict(),
            'actor_optimizer': self.actor_optimizer.state_dict(),
            'critic_optimizer': self.critic_optimizer.state_dict(),
            'metadata': metadata
        }, path)
        return metadata

    def load_model(self, path):
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

        self.actor_net.load_state_dict(checkpoint['actor_net'])
        self.critic_net.load_state_dict(checkpoint['critic_net'])
        self.actor_optimizer.load_state_dict(checkpoint['actor_optimizer'])
        self.critic_optimizer.load_state_dict(checkpoint['critic_optimizer'])
        self.train_calls = metadata.get('train_calls', 0)
        return metadata

    def dispose(self):
        self.trajectory.clear()
        self.actor_optimizer.state.clear()
        self.critic_optimizer.state.clear()
