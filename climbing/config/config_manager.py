"""
Configuration management system.
Handles loading, saving, and validation of configurations.
"""
import copy
import json
import math
import os
from typing import Dict, Any
from pathlib import Path

from climbing.errors import ConfigurationError
from climbing.simulation.environment import RewardWeights
from climbing.simulation.scenes import available_scenes

METHODS = ('DQN', 'PPO')


class ConfigManager:
    """
    Manages configurations for both agent kinds.
    Handles JSON load/save and validation.
    """

    def __init__(self):
        self.config_dir = Path(__file__).parent / 'defaults'
        self.current_config = None

    def load_default(self, method: str) -> Dict[str, Any]:
        """
        Load default configuration for a method.

        Args:
            method: 'DQN' or 'PPO'

        Returns:
            dict: Configuration dictionary
        """
        method = method.lower()
        config_file = self.config_dir / f"{method}_default.json"

        if not config_file.exists():
            raise FileNotFoundError(f"Default config for {method} not found: {config_file}")

        with open(config_file, 'r') as f:
            config = json.load(f)

        self.current_config = config
        return config

    def load_from_file(self, path: str) -> Dict[str, Any]:
        """
        Load configuration from a JSON file.

        Args:
            path: Path to JSON file

        Returns:
            dict: Configuration dictionary
        """
        with open(path, 'r') as f:
            config = json.load(f)

        self.current_config = config
        return config

    def load(self, path: str = None, method: str = None) -> Dict[str, Any]:
        """
        Load a user file merged over the defaults of its method, then validate.

        Args:
            path: Optional JSON file with overrides
            method: Method to use when the file does not name one (default DQN)

        Raises:
            ConfigurationError: If the merged configuration is invalid
        """
        overrides = self.load_from_file(path) if path else {}
        method = (method or overrides.get('method') or 'DQN').upper()
        if method not in METHODS:
            raise ConfigurationError(f"Invalid method: {method}. Must be DQN or PPO")

        config = self.merge(self.load_default(method), overrides)
        config['method'] = method
        errors = self.validate(config)
        if errors:
            raise ConfigurationError("Invalid configuration:\n  " + "\n  ".join(errors))

        self.current_config = config
        return config

    def save_to_file(self, config: Dict[str, Any], path: str):
        """
        Save configuration to a JSON file.

        Args:
            config: Configuration dictionary
            path: Path to save to
        """
        # Ensure directory exists
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, 'w') as f:
            json.dump(config, f, indent=2)

    def merge(self, base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge configuration dictionaries (deep merge).

        Args:
            base: Base configuration
            overrides: Override values

        Returns:
            dict: Merged configuration
        """
        result = copy.deepcopy(base)

        for key, value in overrides.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self.merge(result[key], value)
            else:
                result[key] = copy.deepcopy(value)

        return result

    def validate(self, config: Dict[str, Any]) -> list:
        """
        Validate configuration.

        Args:
            config: Configuration to validate

        Returns:
            list: List of error messages (empty if valid)
        """
        errors = []

        # Check required top-level keys
        required_keys = ['method', 'environment', 'training']
        for key in required_keys:
            if key not in config:
                errors.append(f"Missing required key: {key}")

        # Validate method
        if 'method' in config:
            method = str(config['method']).upper()
            if method not in METHODS:
                errors.append(f"Invalid method: {method}. Must be DQN or PPO")
            elif method.lower() not in config:
                errors.append(f"Missing configuration for method: {method}")
            else:
                errors.extend(self._validate_method(method, config[method.lower()]))

        if 'environment' in config:
            errors.extend(self._validate_environment(config['environment']))

        if 'training' in config:
            training = config['training']
            for key in ('num_episodes', 'stats_window', 'log_interval'):
                if key in training and not self._positive_int(training[key]):
                    errors.append(f"training.{key} must be a positive integer")
            if 'save_interval' in training and not (isinstance(training['save_interval'], int)
                                                    and training['save_interval'] >= 0):
                errors.append("training.save_interval must be a non-negative integer")
            if training.get('step_delay', 0) < 0:
                errors.append("training.step_delay must be >= 0")

        return errors

    @staticmethod
    def _positive_int(value):
        return isinstance(value, int) and not isinstance(value, bool) and value > 0

    def _validate_method(self, method, section):
        errors = []
        gamma = section.get('gamma', 0.99)
        if not 0.0 <= gamma <= 1.0:
            errors.append(f"{method.lower()}.gamma must be in [0, 1]")
        if section.get('learning_rate', 1e-3) <= 0:
            errors.append(f"{method.lower()}.learning_rate must be positive")
        layers = section.get('hidden_layers', [64, 64])
        if not layers or not all(self._positive_int(size) for size in layers):
            errors.append(f"{method.lower()}.hidden_layers must be a list of positive integers")

        if method == 'DQN':
            for key in ('batch_size', 'memory_size'):
                if key in section and not self._positive_int(section[key]):
                    errors.append(f"dqn.{key} must be a positive integer")
            if section.get('batch_size', 32) > section.get('memory_size', 10000):
                errors.append("dqn.batch_size cannot exceed dqn.memory_size")
            if not 0.0 < section.get('epsilon_decay', 0.995) <= 1.0:
                errors.append("dqn.epsilon_decay must be in (0, 1]")
            if section.get('epsilon_min', 0.01) > section.get('epsilon', 1.0):
                errors.append("dqn.epsilon_min cannot exceed dqn.epsilon")
        else:
            if not 0.0 <= section.get('gae_lambda', 0.95) <= 1.0:
                errors.append("ppo.gae_lambda must be in [0, 1]")
            if not 0.0 < section.get('clip_epsilon', 0.2) < 1.0:
                errors.append("ppo.clip_epsilon must be in (0, 1)")
            if 'epochs' in section and not self._positive_int(section['epochs']):
                errors.append("ppo.epochs must be a positive integer")
        return errors

    def _validate_environment(self, env):
        errors = []
        if env.get('scene', 'staircase') not in available_scenes():
            errors.append(f"Unknown scene: {env.get('scene')}. Available: {', '.join(available_scenes())}")
        if 'max_steps' in env and not self._positive_int(env['max_steps']):
            errors.append("environment.max_steps must be a positive integer")

        weights = env.get('reward_weights', {})
        for key, value in weights.items():
            if key not in RewardWeights._fields:
                errors.append(f"Unknown reward weight: {key}")
            elif isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                errors.append(f"Reward weight {key} must be a finite number")

        agent = env.get('agent', {})
        for key in ('mass', 'size'):
            if key in agent and agent[key] <= 0:
                errors.append(f"environment.agent.{key} must be positive")
        return errors

    def get_method(self, config: Dict[str, Any]) -> str:
        """
        Get method from config.

        Args:
            config: Configuration dictionary

        Returns:
            str: Method name (DQN or PPO)
        """
        return config.get('method', 'DQN').upper()

    def create_default_config(self, method: str) -> Dict[str, Any]:
        """
        Create a default configuration programmatically.

        Args:
            method: 'DQN' or 'PPO'

        Returns:
            dict: Default configuration
        """
        method = method.upper()
        if method not in METHODS:
            raise ConfigurationError(f"Invalid method: {method}. Must be DQN or PPO")

        base_config = {
            "version": "1.0",
            "method": method,
            "seed": None,
            "device": "cpu",
            "environment": {
                "scene": "staircase",
                "max_steps": 500,
                "fall_threshold": -2.0,
                "agent": {"mass": 1.0, "size": 0.5},
                "action_forces": {"move": 5.0, "jump": 8.0, "grab": 5.0},
                "reward_weights": dict(RewardWeights(
                    height_gain=1.0,
                    goal_reached=100.0,
                    survival=0.05,
                    time_penalty=-0.1,
                    fall=-50.0,
                    surface_reached=10.0,
                    surface_regression=-5.0,
                    out_of_bounds=-1.0
                )._asdict())
            },
            "training": {
                "num_episodes": 1000,
                "save_interval": 10,
                "log_interval": 10,
                "stats_window": 100,
                "step_delay": 0.0,
                "early_stopping_enabled": False,
                "early_stopping_patience": 50
            },
            "storage": {
                "model_path": "training-data/models",
                "trajectory_path": "training-data/trajectories",
                "max_trajectories": 10000,
                "record_trajectories": True
            }
        }

        if method == "DQN":
            base_config["dqn"] = {
                "hidden_layers": [64, 64],
                "learning_rate": 0.0003,
                "memory_size": 10000,
                "batch_size": 32,
                "gamma": 0.99,
                "epsilon": 1.0,
                "epsilon_min": 0.01,
                "epsilon_decay": 0.995,
                "max_grad_norm": 1.0
            }
            base_config["training"]["target_update_freq"] = 10
            base_config["training"]["train_frequency"] = 1
        elif method == "PPO":
            base_config["ppo"] = {
                "hidden_layers": [64, 64],
                "learning_rate": 0.0003,
                "gamma": 0.99,
                "gae_lambda": 0.95,
                "clip_epsilon": 0.2,
                "entropy_coef": 0.01,
                "epochs": 10,
                "max_grad_norm": 0.5
            }

        return base_config
