# env_gym.py
# Gymnasium wrapper for the climbing environment

import gymnasium as gym

from .physics import BoxPhysics
from .scenes import build_scene
from .environment import ClimbingEnvironment, ACTIONS


class ClimbingGymEnv(gym.Env):
    """
    Gymnasium environment for the climbing course

    Observation Space:
        - Box(13,) float32 in [-1, 1] (see ClimbingEnvironment)

    Action Space:
        - Discrete(6): Forward, Backward, Left, Right, Jump, Grab

    Episode Termination:
        - Agent reaches the goal height or falls below the threshold (terminated)
        - Maximum steps reached (truncated)
    """

    metadata = {
        "render_modes": ["ansi"],
        "render_fps": 60
    }

    def __init__(
            self,
            scene: str = "staircase",
            max_steps: int = 500,
            config: dict | None = None,
            render_mode: str | None = None,
            environment: ClimbingEnvironment | None = None
    ):
        """
        Initialize environment

        Args:
            scene: Scene name used when building a fresh BoxPhysics world
            max_steps: Maximum steps per episode
            config: Extra environment configuration
            render_mode: 'ansi' for a text status line
            environment: Existing ClimbingEnvironment to wrap instead of building one
        """
        super().__init__()

        if environment is None:
            physics = BoxPhysics()
            built = build_scene(physics, scene)
            env_config = dict(config or {})
            env_config["max_steps"] = max_steps
            environment = ClimbingEnvironment(physics, scene=built, config=env_config)
        self.env = environment
        self.render_mode = render_mode

        self.observation_space = self.env.observation_space
        self.action_space = self.env.action_space

    def reset(
            self,
            *,
            seed: int | None = None,
            options: dict | None = None
    ):
        """
        Reset environment to initial state

        Returns:
            observation: Initial observation
            info: Additional information dictionary
        """
        super().reset(seed=seed)
        obs = self.env.reset()
        info = {
            "step": 0,
            "current_surface": self.env.current_surface,
            "highest_surface": self.env.highest_surface,
        }
        return obs, info

    def step(self, action):
        """
        Execute one environment step

        Returns:
            observation, reward, terminated, truncated, info
        """
        result = self.env.step(int(action))
        info = dict(result.info)
        truncated = bool(info.get("truncated", False))
        terminated = bool(result.done) and not truncated
        return result.observation, float(result.reward), terminated, truncated, info

    def render(self):
        if self.render_mode == "ansi":
            pos = self.env.agent_position
            return (f"step={self.env.current_step} pos=({pos.x:.2f}, {pos.y:.2f}, {pos.z:.2f}) "
                    f"surface={self.env.current_surface} highest={self.env.highest_surface} "
                    f"reward={self.env.total_reward:.2f}")
        return None

    def close(self):
        """Clean up resources"""
        pass

    @staticmethod
    def action_names():
        return list(ACTIONS)


def make_env(scene="staircase", max_steps=500, config=None):
    def _thunk():
        return ClimbingGymEnv(scene=scene, max_steps=max_steps, config=config)

    return _thunk


__all__ = ["ClimbingGymEnv", "make_env"]
