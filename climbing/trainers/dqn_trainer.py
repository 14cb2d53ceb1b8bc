"""
DQN Trainer: experience replay with per-step optimization.
"""
import logging
from typing import Dict, Any

from .base import TrainerBase

logger = logging.getLogger(__name__)


class DQNTrainer(TrainerBase):
    """
    Trainer for DQNBrain.
    Stores every transition, trains once memory holds a batch, decays epsilon
    after each episode and syncs the target network on an episode cadence.
    """

    def __init__(self, env, agent, config=None):
        super().__init__(env, agent, config)
        self.batch_size = self.config.get('batch_size', agent.batch_size)
        self.train_frequency = max(1, int(self.config.get('train_frequency', 1)))
        self.target_update_freq = max(1, int(self.config.get('target_update_freq', 10)))

        self.episode_losses = []
        self.observed_steps = 0
        self.nan_losses = 0

    def begin_episode(self):
        self.episode_losses = []

    def act(self, state):
        return self.agent.select_action(state), None

    def observe(self, state, action, reward, next_state, terminal, extra):
        self.agent.remember(state, action, reward, next_state, terminal)

        # Optimize
        self.observed_steps += 1
        if self.observed_steps % self.train_frequency == 0:
            if self.agent.can_train(self.batch_size):
                result = self.agent.train(self.batch_size)
                if result['has_nan']:
                    self.nan_losses += 1
                elif result['ready']:
                    self.episode_losses.append(result['loss'])

    def finish_episode(self, last_state, terminal, interrupted) -> Dict[str, Any]:
        losses = self.episode_losses
        return {
            'loss': sum(losses) / len(losses) if losses else 0.0,
            'train_steps': len(losses),
            'epsilon': self.agent.epsilon,
        }

    def end_episode(self, episode: int):
        """Decay epsilon; update target network every target_update_freq episodes."""
        self.agent.decay_epsilon()
        if episode % self.target_update_freq == 0:
            self.agent.update_target_network()
            logger.debug("Target network updated at episode %d", episode)
