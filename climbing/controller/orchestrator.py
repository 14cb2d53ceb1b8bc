"""
Training orchestrator: episode loop, statistics, listeners and checkpoints.
"""
import time
import logging
import threading
from typing import Callable, Dict, Any, Optional

from climbing.errors import TrainingStateError
from climbing.trainers.factory import make_trainer

logger = logging.getLogger(__name__)

STATE_IDLE = 'idle'
STATE_TRAINING = 'training'
STATE_PAUSED = 'paused'
STATE_STOPPED = 'stopped'
STATE_COMPLETED = 'completed'

DEFAULT_TRAINING_CONFIG = {
    'num_episodes': 1000,
    'save_interval': 10,
    'log_interval': 10,
    'stats_window': 100,
    'step_delay': 0.0,
    'target_update_freq': 10,
    'train_frequency': 1,
    'early_stopping_enabled': False,
    'early_stopping_patience': 50,
}


class TrainingOrchestrator:
    """
    Drives episodes of an environment with a DQN or PPO agent.

    States: idle -> training <-> paused -> stopped | completed.
    A completed run can be followed by another start_training() call that keeps
    counting episodes; a stopped orchestrator cannot be restarted.

    The loop runs on the calling thread. pause_training(), resume_training()
    and stop_training() may be called from any thread and are observed between
    environment steps.
    """

    def __init__(self, env, agent, config: Optional[Dict[str, Any]] = None, trainer=None):
        """
        Args:
            env: ClimbingEnvironment
            agent: DQNBrain or PPOBrain
            config: 'training' configuration section
            trainer: Prebuilt trainer; chosen from the agent kind when None
        """
        self.env = env
        self.agent = agent
        self.config = {**DEFAULT_TRAINING_CONFIG, **(config or {})}
        self.trainer = trainer or make_trainer(env, agent, self.config)

        self.stats_window = int(self.config['stats_window'])
        if self.stats_window <= 0:
            raise ValueError(f"stats_window must be positive, got {self.stats_window}")
        self.step_delay = 0.0
        self.set_step_delay(self.config['step_delay'])

        self.state = STATE_IDLE
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._resume_event = threading.Event()
        self._resume_event.set()

        self.current_episode = 0
        self.target_episodes = 0
        self.total_steps = 0
        self.reward_history = []
        self.success_history = []
        self.last_episode_result = None
        self._last_saved_episode = 0
        self._steps_at_last_save = 0

        self.episode_complete_callbacks = []
        self.training_complete_callbacks = []
        self.model_manager = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def set_model_manager(self, model_manager):
        """Attach the persistence collaborator (or None to detach)."""
        self.model_manager = model_manager

    def set_step_delay(self, seconds):
        """Pause inserted after each environment step (0 runs at full speed)."""
        if seconds < 0:
            raise ValueError(f"step_delay must be >= 0, got {seconds}")
        self.step_delay = float(seconds)

    def on_episode_complete(self, callback: Callable):
        """Register callback(stats, episode_result). Returns the callback."""
        if not callable(callback):
            raise TypeError(f"Episode listener must be callable, got {callback!r}")
        self.episode_complete_callbacks.append(callback)
        return callback

    def on_training_complete(self, callback: Callable):
        """Register callback(stats). Returns the callback."""
        if not callable(callback):
            raise TypeError(f"Training listener must be callable, got {callback!r}")
        self.training_complete_callbacks.append(callback)
        return callback

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    @property
    def is_training(self):
        return self.state in (STATE_TRAINING, STATE_PAUSED)

    @property
    def is_paused(self):
        return self.state == STATE_PAUSED

    @property
    def is_stopped(self):
        return self.state == STATE_STOPPED

    def start_training(self, num_episodes: Optional[int] = None):
        """
        Run up to num_episodes episodes on the calling thread.

        Args:
            num_episodes: Episodes to run in this call (config num_episodes when None)

        Returns:
            dict: Final training statistics

        Raises:
            TrainingStateError: If already running or stopped
        """
        if num_episodes is None:
            num_episodes = self.config['num_episodes']
        if num_episodes <= 0:
            raise ValueError(f"num_episodes must be positive, got {num_episodes}")

        with self._lock:
            if self.state == STATE_STOPPED or self._stop_event.is_set():
                raise TrainingStateError("Training was stopped; create a new orchestrator to train again")
            if self.state in (STATE_TRAINING, STATE_PAUSED):
                raise TrainingStateError("Training is already running")
            self.state = STATE_TRAINING
            self._resume_event.set()

        self.target_episodes = self.current_episode + num_episodes
        logger.info("Starting %s training for %d episodes", self.agent.kind, num_episodes)

        try:
            self._run(num_episodes)
        except Exception:
            logger.exception("Training loop failed at episode %d", self.current_episode + 1)
            with self._lock:
                self.state = STATE_IDLE
            raise

        with self._lock:
            self.state = STATE_STOPPED if self._stop_event.is_set() else STATE_COMPLETED

        self._final_save()

        stats = self.get_training_stats()
        logger.info(
            "Training %s after %d episodes (avg reward %.2f, success %.1f%%)",
            self.state, self.current_episode, stats['average_reward'], stats['success_rate'] * 100
        )
        self._notify(self.training_complete_callbacks, stats)
        return stats

    def _run(self, num_episodes):
        log_interval = max(1, int(self.config['log_interval']))

        for _ in range(num_episodes):
            if self._stop_event.is_set():
                break

            result = self.trainer.run_episode(self._between_steps)
            if result['interrupted']:
                logger.info("Episode %d interrupted after %d steps, not recorded",
                            self.current_episode + 1, result['steps'])
                break

            self._record_episode(result)
            self.trainer.end_episode(self.current_episode)

            stats = self.get_training_stats()
            self._notify(self.episode_complete_callbacks, stats, result)

            if self.current_episode % log_interval == 0:
                self._log_progress(stats, result)

            # Checkpoint between episodes only
            if self.model_manager is not None and self.model_manager.should_save(self.current_episode):
                self._save_model()

            if self.trainer.check_early_stopping(stats['average_reward'], self.config):
                logger.info("Early stopping at episode %d", self.current_episode)
                break

    def _between_steps(self):
        """Yield, block while paused, and report whether to keep going."""
        time.sleep(self.step_delay)
        if not self._resume_event.is_set():
            self._resume_event.wait()
        return not self._stop_event.is_set()

    def pause_training(self):
        """Suspend the loop before the next environment step."""
        with self._lock:
            if self.state == STATE_PAUSED:
                return
            if self.state != STATE_TRAINING:
                raise TrainingStateError(f"Cannot pause while {self.state}")
            self._resume_event.clear()
            self.state = STATE_PAUSED
        logger.info("Training paused at episode %d", self.current_episode + 1)

    def resume_training(self):
        """Continue a paused loop exactly where it stopped."""
        with self._lock:
            if self.state == STATE_TRAINING:
                return
            if self.state != STATE_PAUSED:
                raise TrainingStateError(f"Cannot resume while {self.state}")
            self.state = STATE_TRAINING
            self._resume_event.set()
        logger.info("Training resumed")

    def stop_training(self):
        """
        End the loop after the current step. The interrupted episode is not
        recorded. Stopping is final for this orchestrator.
        """
        with self._lock:
            self._stop_event.set()
            # Wake a paused loop so it can exit
            self._resume_event.set()
            if self.state not in (STATE_TRAINING, STATE_PAUSED):
                self.state = STATE_STOPPED
        logger.info("Stop requested")

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _record_episode(self, result):
        self.current_episode += 1
        self.total_steps += result['steps']
        self.reward_history.append(result['total_reward'])
        self.success_history.append(bool(result['success']))
        result['episode'] = self.current_episode
        self.last_episode_result = result

    def get_average_reward(self, n: Optional[int] = None) -> float:
        """Mean reward of the last n episodes (stats window by default)."""
        window = self.reward_history[-(n or self.stats_window):]
        return sum(window) / len(window) if window else 0.0

    def get_success_rate(self, n: Optional[int] = None) -> float:
        window = self.success_history[-(n or self.stats_window):]
        return sum(window) / len(window) if window else 0.0

    def get_training_stats(self) -> Dict[str, Any]:
        """Snapshot of counters, flags, rolling averages and full histories."""
        return {
            'state': self.state,
            'agent': self.agent.kind,
            'current_episode': self.current_episode,
            'total_episodes': self.target_episodes,
            'total_steps': self.total_steps,
            'is_training': self.is_training,
            'is_paused': self.is_paused,
            'is_stopped': self.is_stopped,
            'average_reward': self.get_average_reward(),
            'success_rate': self.get_success_rate(),
            'best_reward': max(self.reward_history) if self.reward_history else 0.0,
            'last_reward': self.reward_history[-1] if self.reward_history else 0.0,
            'stats_window': self.stats_window,
            'reward_history': list(self.reward_history),
            'success_history': list(self.success_history),
        }

    def reset_stats(self):
        """
        Clear histories and counters.

        Raises:
            TrainingStateError: While training or paused
        """
        with self._lock:
            if self.state in (STATE_TRAINING, STATE_PAUSED):
                raise TrainingStateError("Stop training before resetting statistics")
            self.current_episode = 0
            self.target_episodes = 0
            self.total_steps = 0
            self.reward_history = []
            self.success_history = []
            self.last_episode_result = None
            self._last_saved_episode = 0
            self._steps_at_last_save = 0
            self.trainer.reset()
            if self.state == STATE_COMPLETED:
                self.state = STATE_IDLE

    # ------------------------------------------------------------------
    # Listeners and persistence
    # ------------------------------------------------------------------

    def _notify(self, callbacks, *args):
        for callback in list(callbacks):
            try:
                callback(*args)
            except Exception:
                logger.exception("Listener %r failed", callback)

    def _log_progress(self, stats, result):
        logger.info(
            "Episode %d | reward %.2f | avg %.2f | success %.1f%% | steps %d | highest surface %d",
            self.current_episode, result['total_reward'], stats['average_reward'],
            stats['success_rate'] * 100, result['steps'], result['highest_surface']
        )

    def _save_model(self):
        stats = {
            'episode': self.current_episode,
            'episodes_since_save': self.current_episode - self._last_saved_episode,
            'steps_since_save': self.total_steps - self._steps_at_last_save,
            'avg_reward': self.get_average_reward(),
            'success_rate': self.get_success_rate(),
        }
        try:
            self.model_manager.save_model(stats)
        except Exception:
            logger.exception("Saving model at episode %d failed", self.current_episode)
            return False
        self._last_saved_episode = self.current_episode
        self._steps_at_last_save = self.total_steps
        return True

    def _final_save(self):
        if self.model_manager is None or self.current_episode == self._last_saved_episode:
            return
        if self._save_model():
            logger.info("Final model saved at episode %d", self.current_episode)
