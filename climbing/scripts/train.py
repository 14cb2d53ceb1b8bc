# climbing/scripts/train.py
# Headless training from the terminal: builds physics, scene, environment,
# agent and orchestrator, then trains with checkpoints and trajectory logs.

import argparse
import csv
import logging
import os
import signal
import sys
import time

import numpy as np
import torch

from climbing.brains.dqn_brain import DQNBrain
from climbing.brains.ppo_brain import PPOBrain
from climbing.config.config_manager import ConfigManager
from climbing.controller.orchestrator import TrainingOrchestrator
from climbing.errors import ClimbingError
from climbing.simulation.environment import ClimbingEnvironment, STATE_SIZE, ACTIONS
from climbing.simulation.physics import BoxPhysics
from climbing.simulation.scenes import build_scene, available_scenes
from climbing.storage.model_manager import ModelManager
from climbing.storage.trajectory_storage import TrajectoryStorage
from climbing.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

BRAINS = {
    'DQN': DQNBrain,
    'PPO': PPOBrain,
}

CSV_FIELDS = ['episode', 'total_reward', 'steps', 'success', 'highest_surface',
              'termination_reason', 'average_reward', 'success_rate', 'elapsed']


class HeadlessTrainer:
    """
    Composition point for terminal training.
    Every collaborator is created here and passed explicitly to its users.
    """

    def __init__(self, config, record_trajectories=True, episode_log=None, load_existing=True):
        """
        Args:
            config: Full configuration (see ConfigManager)
            record_trajectories: Save every episode trajectory to disk
            episode_log: Optional CSV file receiving one row per episode
            load_existing: Continue from the latest saved model if one exists
        """
        self.config = config
        self.method = config['method'].upper()
        self.record_trajectories = record_trajectories
        self.episode_log = episode_log
        self.load_existing = load_existing

        self.physics = None
        self.scene = None
        self.environment = None
        self.agent = None
        self.orchestrator = None
        self.model_manager = None
        self.trajectory_storage = None

        self.start_time = None
        self._csv_file = None
        self._csv_writer = None

    def init(self):
        """Create and wire all components."""
        seed = self.config.get('seed')
        if seed is not None:
            np.random.seed(seed)
            torch.manual_seed(seed)

        env_config = dict(self.config['environment'])
        scene_name = env_config.pop('scene', 'staircase')

        self.physics = BoxPhysics()
        self.scene = build_scene(self.physics, scene_name)
        self.environment = ClimbingEnvironment(self.physics, scene=self.scene, config=env_config)
        self.environment.set_trajectory_recording(self.record_trajectories)

        device = self.config.get('device') or ('cuda' if torch.cuda.is_available() else 'cpu')
        brain_cls = BRAINS[self.method]
        self.agent = brain_cls.from_config(
            STATE_SIZE, len(ACTIONS), self.config[self.method.lower()], device=device, seed=seed
        )
        logger.info("%s agent on %s: %s", self.method, device, self.agent.get_hyperparameters())

        training = self.config['training']
        self.orchestrator = TrainingOrchestrator(self.environment, self.agent, training)

        storage = self.config.get('storage', {})
        self.model_manager = ModelManager(
            self.agent,
            model_path=storage.get('model_path', 'training-data/models'),
            save_interval=max(1, training.get('save_interval', 10)),
            auto_save=training.get('save_interval', 10) > 0
        )
        self.model_manager.init(load_model=self.load_existing)
        self.orchestrator.set_model_manager(self.model_manager)

        if self.record_trajectories:
            self.trajectory_storage = TrajectoryStorage(
                storage.get('trajectory_path', 'training-data/trajectories'),
                max_trajectories=storage.get('max_trajectories', 10000)
            )
            self.trajectory_storage.init()

        self.orchestrator.on_episode_complete(self._on_episode_complete)
        logger.info("Headless trainer ready (scene '%s')", self.scene.name)

    def _on_episode_complete(self, stats, result):
        if self.trajectory_storage is not None:
            trajectory = self.environment.get_last_trajectory()
            if trajectory is not None:
                self.trajectory_storage.save_trajectory(trajectory, episode=stats['current_episode'])

        if self._csv_writer is not None:
            self._csv_writer.writerow({
                'episode': stats['current_episode'],
                'total_reward': round(result['total_reward'], 4),
                'steps': result['steps'],
                'success': int(result['success']),
                'highest_surface': result['highest_surface'],
                'termination_reason': result['termination_reason'],
                'average_reward': round(stats['average_reward'], 4),
                'success_rate': round(stats['success_rate'], 4),
                'elapsed': round(time.time() - self.start_time, 2)
            })
            self._csv_file.flush()

    def _open_episode_log(self):
        if not self.episode_log:
            return
        directory = os.path.dirname(self.episode_log)
        if directory:
            os.makedirs(directory, exist_ok=True)
        new_file = not os.path.exists(self.episode_log)
        self._csv_file = open(self.episode_log, 'a', newline='')
        self._csv_writer = csv.DictWriter(self._csv_file, fieldnames=CSV_FIELDS)
        if new_file:
            self._csv_writer.writeheader()

    def train(self, num_episodes=None):
        """
        Run training until done or stopped.

        Returns:
            dict: Final training statistics
        """
        if self.orchestrator is None:
            self.init()

        self.start_time = time.time()
        self._open_episode_log()
        try:
            stats = self.orchestrator.start_training(num_episodes)
        finally:
            if self._csv_file is not None:
                self._csv_file.close()
                self._csv_file = None
                self._csv_writer = None

        self.log_final_summary(stats)
        return stats

    def stop(self):
        if self.orchestrator is not None:
            self.orchestrator.stop_training()

    def log_final_summary(self, stats):
        elapsed = time.time() - self.start_time
        logger.info("=" * 60)
        logger.info("Training %s", stats['state'])
        logger.info("  Episodes:      %d", stats['current_episode'])
        logger.info("  Total steps:   %d", stats['total_steps'])
        logger.info("  Avg reward:    %.2f (last %d)", stats['average_reward'], stats['stats_window'])
        logger.info("  Best reward:   %.2f", stats['best_reward'])
        logger.info("  Success rate:  %.1f%%", stats['success_rate'] * 100)
        logger.info("  Elapsed:       %.1f min", elapsed / 60)
        if self.trajectory_storage is not None:
            logger.info("  Trajectories:  %d stored", self.trajectory_storage.get_trajectory_count())
        logger.info("=" * 60)


def build_parser():
    parser = argparse.ArgumentParser(description="Train the climbing agent in headless mode")
    parser.add_argument("-e", "--episodes", type=int, default=None,
                        help="Number of episodes to train (config default: 1000)")
    parser.add_argument("-a", "--agent", type=str.upper, choices=sorted(BRAINS), default=None,
                        help="Agent type")
    parser.add_argument("--scene", type=str, choices=available_scenes(), default=None,
                        help="Training scene")
    parser.add_argument("--config", type=str, default=None,
                        help="JSON file merged over the default configuration")
    parser.add_argument("--no-trajectories", action="store_true",
                        help="Disable trajectory recording")
    parser.add_argument("--save-interval", type=int, default=None,
                        help="Model save interval in episodes (0 disables periodic saves)")
    parser.add_argument("--log-interval", type=int, default=None,
                        help="Progress log interval in episodes")
    parser.add_argument("--model-path", type=str, default=None, help="Model storage directory")
    parser.add_argument("--trajectory-path", type=str, default=None, help="Trajectory storage directory")
    parser.add_argument("--episode-log", type=str, default=None, help="CSV file with one row per episode")
    parser.add_argument("--fresh", action="store_true", help="Ignore any previously saved model")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--log-level", type=str, default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", type=str, default=None, help="Also log to this file")
    return parser


def config_from_args(args, config_manager=None):
    """Default config for the chosen agent, merged with --config and CLI overrides."""
    config_manager = config_manager or ConfigManager()
    config = config_manager.load(args.config, method=args.agent)

    overrides = {'environment': {}, 'training': {}, 'storage': {}}
    if args.scene:
        overrides['environment']['scene'] = args.scene
    if args.episodes is not None:
        overrides['training']['num_episodes'] = args.episodes
    if args.save_interval is not None:
        overrides['training']['save_interval'] = args.save_interval
    if args.log_interval is not None:
        overrides['training']['log_interval'] = args.log_interval
    if args.model_path:
        overrides['storage']['model_path'] = args.model_path
    if args.trajectory_path:
        overrides['storage']['trajectory_path'] = args.trajectory_path
    if args.no_trajectories:
        overrides['storage']['record_trajectories'] = False
    if args.seed is not None:
        overrides['seed'] = args.seed

    config = config_manager.merge(config, overrides)
    errors = config_manager.validate(config)
    if errors:
        raise ClimbingError("Invalid configuration:\n  " + "\n  ".join(errors))
    return config


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        config = config_from_args(args)
    except (ClimbingError, OSError, ValueError) as e:
        logger.error("%s", e)
        return 1

    trainer = HeadlessTrainer(
        config,
        record_trajectories=config['storage'].get('record_trajectories', True),
        episode_log=args.episode_log,
        load_existing=not args.fresh
    )
    trainer.init()

    # Ctrl+C finishes the current step, saves and exits
    def _handle_signal(signum, frame):
        logger.warning("Signal %d received, stopping after the current step", signum)
        trainer.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("Training %s on '%s' for %d episodes", config['method'],
                config['environment'].get('scene', 'staircase'), config['training']['num_episodes'])
    trainer.train()
    return 0


if __name__ == "__main__":
    sys.exit(main())
