"""
PPO Trainer: collect one on-policy episode, then update actor and critic.
"""
import logging
from typing import Dict, Any

from .base import TrainerBase

logger = logging.getLogger(__name__)


class PPOTrainer(TrainerBase):
    """
    Trainer for PPOBrain.
    Every episode (finished, timed out or interrupted) is one training batch.
    """

    def act(self, state):
        output = self.agent.select_action(state, training=True)
        return output.action, output

    def observe(self, state, action, reward, next_state, terminal, extra):
        self.agent.store_transition(state, action, reward, next_state, terminal,
                                    extra.log_prob, extra.value)

    def finish_episode(self, last_state, terminal, interrupted) -> Dict[str, Any]:
        """Train on the collected trajectory, bootstrapping unfinished episodes from the critic."""
        if self.agent.trajectory_length == 0:
            self.agent.clear_trajectory()
            return {'actor_loss': 0.0, 'critic_loss': 0.0, 'entropy': 0.0}

        last_value = 0.0 if terminal else self.agent.get_value(last_state)
        result = self.agent.train(last_value=last_value)
        if interrupted:
            logger.debug("Trained on interrupted trajectory (bootstrap value %.3f)", last_value)
        return {
            'actor_loss': result['actor_loss'],
            'critic_loss': result['critic_loss'],
            'entropy': result['entropy'],
        }
