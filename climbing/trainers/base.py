"""
Abstract base class for all trainers.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, Callable, Optional

from climbing.errors import ConfigurationError

logger = logging.getLogger(__name__)


class TrainerBase(ABC):
    """
    Runs episodes of one environment with one agent.
    Subclasses implement the agent-specific hooks: how to act, what to do with
    each transition, and what to learn at the end of an episode.
    """

    def __init__(self, env, agent, config=None):
        """
        Initialize trainer.

        Args:
            env: ClimbingEnvironment instance
            agent: Brain matching the trainer kind
            config: 'training' section of the configuration
        """
        if env.state_space_size != agent.state_size:
            raise ConfigurationError(
                f"Environment observation size {env.state_space_size} does not match "
                f"agent state size {agent.state_size}"
            )
        if env.action_space_size != agent.action_size:
            raise ConfigurationError(
                f"Environment action count {env.action_space_size} does not match "
                f"agent action size {agent.action_size}"
            )

        self.env = env
        self.agent = agent
        self.config = config or {}
        self.total_steps = 0

        # Early stopping
        self.best_metric_value = -float('inf')
        self.steps_without_improvement = 0
        self.early_stopping_triggered = False

    def run_episode(self, should_continue: Optional[Callable[[], bool]] = None) -> Dict[str, Any]:
        """
        Play one episode, learning along the way.

        Args:
            should_continue: Called before every step. May block (pause) and
                returns False once the episode must be abandoned (stop).

        Returns:
            dict: total_reward, steps, success, highest_surface, termination_reason,
            interrupted, plus the learning metrics of the subclass
        """
        state = self.env.reset()
        self.begin_episode()

        total_reward = 0.0
        steps = 0
        done = False
        terminal = False
        interrupted = False
        info = {}

        while not done and steps < self.env.max_steps:
            if should_continue is not None and not should_continue():
                interrupted = True
                break

            action, extra = self.act(state)
            result = self.env.step(action)
            info = result.info

            # Timeouts are not terminal for bootstrapping purposes
            terminal = result.done and not info.get('truncated', False)
            self.observe(state, action, result.reward, result.observation, terminal, extra)

            state = result.observation
            total_reward += result.reward
            done = result.done
            steps += 1

        self.total_steps += steps
        metrics = self.finish_episode(state, terminal, interrupted)

        episode_result = {
            'total_reward': total_reward,
            'steps': steps,
            'success': self.env.is_goal_reached(),
            'highest_surface': self.env.highest_surface,
            'termination_reason': info.get('termination_reason'),
            'interrupted': interrupted,
        }
        episode_result.update(metrics)
        return episode_result

    def begin_episode(self):
        """Hook called after reset, before the first step."""
        pass

    @abstractmethod
    def act(self, state):
        """
        Choose an action.

        Returns:
            tuple: (action index, extra data passed back to observe())
        """
        pass

    @abstractmethod
    def observe(self, state, action, reward, next_state, terminal, extra):
        """Handle one transition."""
        pass

    @abstractmethod
    def finish_episode(self, last_state, terminal, interrupted) -> Dict[str, Any]:
        """
        Learn from the episode that just ended (or was interrupted).

        Returns:
            dict: Learning metrics merged into the episode result
        """
        pass

    def end_episode(self, episode: int):
        """
        Agent-specific bookkeeping after a recorded episode.

        Args:
            episode: 1-based number of the episode just recorded
        """
        pass

    def reset(self):
        """Reset trainer counters and early stopping."""
        self.total_steps = 0
        self.best_metric_value = -float('inf')
        self.steps_without_improvement = 0
        self.early_stopping_triggered = False

    def check_early_stopping(self, current_metric: float, method_config: dict) -> bool:
        """
        Check if early stopping criteria is met.

        Args:
            current_metric: Current metric value to track (higher is better)
            method_config: Training config with early_stopping_enabled / early_stopping_patience

        Returns:
            bool: True if early stopping triggered
        """
        if not method_config.get('early_stopping_enabled', False):
            return False

        patience = method_config.get('early_stopping_patience', 50)

        # Check if we have improvement
        if current_metric > self.best_metric_value:
            self.best_metric_value = current_metric
            self.steps_without_improvement = 0
            return False
        else:
            self.steps_without_improvement += 1

        # Check if patience exceeded
        if self.steps_without_improvement >= patience:
            self.early_stopping_triggered = True
            logger.info("Early stopping: no improvement in %d episodes", patience)
            return True

        return False
