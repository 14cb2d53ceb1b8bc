"""
Climbing environment: observation, action effects, shaped reward and termination.
"""
import math
import time
import logging
from collections import namedtuple, deque

import numpy as np
from gymnasium import spaces

from .physics import Vec3, as_vec3, GROUND_ID
from .scenes import Scene, get_scene
from climbing.errors import ConfigurationError, InvalidActionError, TrainingStateError

logger = logging.getLogger(__name__)

STATE_SIZE = 13

FORWARD, BACKWARD, LEFT, RIGHT, JUMP, GRAB = range(6)
ACTIONS = ('FORWARD', 'BACKWARD', 'LEFT', 'RIGHT', 'JUMP', 'GRAB')

StepResult = namedtuple('StepResult', ('observation', 'reward', 'done', 'info'))

RewardWeights = namedtuple('RewardWeights', (
    'height_gain', 'goal_reached', 'survival', 'time_penalty', 'fall',
    'surface_reached', 'surface_regression', 'out_of_bounds'
))

DEFAULT_REWARD_WEIGHTS = RewardWeights(
    height_gain=1.0,
    goal_reached=100.0,
    survival=0.05,
    time_penalty=-0.1,
    fall=-50.0,
    surface_reached=10.0,
    surface_regression=-5.0,
    out_of_bounds=-1.0
)

DEFAULT_CONFIG = {
    'max_steps': 500,
    'fall_threshold': -2.0,
    'position_scale': [10.0, 15.0, 25.0],
    'velocity_scale': 20.0,
    'distance_scale': 30.0,
    'surface_distance_scale': 15.0,
    'surface_tolerance': 0.15,
    'grab_range': 0.75,
    'grab_reach': 1.5,
    'agent': {'mass': 1.0, 'size': 0.5},
    'action_forces': {'move': 5.0, 'jump': 8.0, 'grab': 5.0},
    'reward_weights': {},
    'max_trajectories': 100,
}

TERMINATION_GOAL = 'goal_reached'
TERMINATION_FALL = 'fallen'
TERMINATION_TIMEOUT = 'max_steps'


def _is_number(value):
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool)


def validate_reward_weights(weights):
    """
    Check a partial reward-weight mapping.

    Raises:
        ConfigurationError: On unknown keys or non-finite values
    """
    if not isinstance(weights, dict):
        raise ConfigurationError(f"Reward weights must be a mapping, got {type(weights).__name__}")
    unknown = set(weights) - set(RewardWeights._fields)
    if unknown:
        raise ConfigurationError(
            f"Unknown reward weight(s): {', '.join(sorted(unknown))}. "
            f"Valid keys: {', '.join(RewardWeights._fields)}"
        )
    for key, value in weights.items():
        if not _is_number(value) or not math.isfinite(value):
            raise ConfigurationError(f"Reward weight '{key}' must be a finite number, got {value!r}")
    return {key: float(value) for key, value in weights.items()}


def validate_max_steps(max_steps):
    if not isinstance(max_steps, (int, np.integer)) or isinstance(max_steps, bool) or max_steps <= 0:
        raise ConfigurationError(f"max_steps must be a positive integer, got {max_steps!r}")
    return int(max_steps)


class ClimbingEnvironment:
    """
    RL interface over a physics collaborator.

    Observation (13 floats):
        0-2   position / position_scale
        3-5   velocity / velocity_scale
        6     distance to goal
        7     distance to nearest climbable surface
        8     episode progress (step / max_steps)
        9     current surface, (index + 1) / num_surfaces, 0 on ground or in the air
        10    highest surface reached this episode, same encoding
        11    grounded flag
        12    grabbing flag (grab succeeded on this step)

    Configuration changes (max steps, reward weights) are validated when set
    and take effect at the next reset().
    """

    def __init__(self, physics, scene=None, config=None):
        """
        Args:
            physics: Object implementing PhysicsProtocol
            scene: Scene, scene name, or None for the staircase
            config: Environment configuration overriding DEFAULT_CONFIG
        """
        if physics is None:
            raise ConfigurationError("A physics collaborator is required")
        self.physics = physics

        if scene is None:
            scene = get_scene('staircase')
        elif isinstance(scene, str):
            scene = get_scene(scene)
        elif not isinstance(scene, Scene):
            raise ConfigurationError(f"Invalid scene: {scene!r}")
        self.scene = scene

        self.config = self._merge_config(config or {})
        self.surfaces = scene.surfaces
        self.goal_position = as_vec3(self.config.get('goal_position', scene.goal_position))
        self.goal_height = float(self.config.get('goal_height', scene.goal_height))
        self.start_position = as_vec3(self.config.get('start_position', scene.start_position))
        self.fall_threshold = float(self.config['fall_threshold'])
        if self.fall_threshold >= self.goal_height:
            raise ConfigurationError("fall_threshold must be below goal_height")

        self.position_scale = np.array(self.config['position_scale'], dtype=np.float64)
        if self.position_scale.shape != (3,) or np.any(self.position_scale <= 0):
            raise ConfigurationError("position_scale must be three positive numbers")
        # Heights and bounds are read back from the clipped observation
        scale_x, scale_y, scale_z = self.position_scale
        if self.goal_height >= scale_y:
            raise ConfigurationError(
                f"goal_height {self.goal_height} is not observable with position_scale y={scale_y}"
            )
        if self.fall_threshold <= -scale_y:
            raise ConfigurationError(
                f"fall_threshold {self.fall_threshold} is not observable with position_scale y={scale_y}"
            )
        x_min, x_max = scene.bounds['x']
        z_min, z_max = scene.bounds['z']
        if max(abs(x_min), abs(x_max)) >= scale_x or max(abs(z_min), abs(z_max)) >= scale_z:
            raise ConfigurationError(
                f"Scene bounds {dict(scene.bounds)} exceed position_scale {self.position_scale.tolist()}"
            )
        self.velocity_scale = float(self.config['velocity_scale'])
        self.distance_scale = float(self.config['distance_scale'])
        self.surface_distance_scale = float(self.config['surface_distance_scale'])
        self.action_forces = dict(self.config['action_forces'])

        agent = self.config['agent']
        self.agent_half_size = float(agent['size']) / 2.0
        self.agent_body = physics.create_agent_body(self.start_position, agent['mass'], agent['size'], 'box')

        # Active values and the ones waiting for the next reset
        self.max_steps = validate_max_steps(self.config['max_steps'])
        self.reward_weights = DEFAULT_REWARD_WEIGHTS._replace(
            **validate_reward_weights(self.config['reward_weights'])
        )
        self._pending_max_steps = self.max_steps
        self._pending_reward_weights = self.reward_weights

        self.action_space = spaces.Discrete(len(ACTIONS))
        self.observation_space = spaces.Box(low=-1.0, high=1.0, shape=(STATE_SIZE,), dtype=np.float32)

        # Trajectory recording
        self.record_trajectories = False
        self.current_trajectory = []
        self.trajectory_history = deque(maxlen=int(self.config['max_trajectories']))
        self._recorded_episodes = 0

        self._observation = None
        self._clear_episode_state()

    def _merge_config(self, overrides):
        config = dict(DEFAULT_CONFIG)
        for key, value in overrides.items():
            if key in ('agent', 'action_forces') and isinstance(value, dict):
                config[key] = {**DEFAULT_CONFIG[key], **value}
            else:
                config[key] = value
        return config

    def _clear_episode_state(self):
        self.current_step = 0
        self.total_reward = 0.0
        self.done = False
        self.termination_reason = None
        self.current_surface = -1
        self.highest_surface = -1
        self.credited_surfaces = set()
        self.goal_awarded = False
        self.grabbing = False
        self.grounded = True
        self._last_level = -1
        self._position = self.start_position
        self._velocity = Vec3(0.0, 0.0, 0.0)
        self._episode_start = time.time()

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    @property
    def action_space_size(self):
        return len(ACTIONS)

    @property
    def state_space_size(self):
        return STATE_SIZE

    def get_action_space(self):
        return len(ACTIONS)

    def get_state_space(self):
        return STATE_SIZE

    @property
    def episode_step_count(self):
        return self.current_step

    @property
    def agent_position(self):
        """Agent position as of the last reset() or step()."""
        return self._position

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_max_steps(self, max_steps):
        """Validate now, apply at the next reset()."""
        self._pending_max_steps = validate_max_steps(max_steps)

    def set_reward_weights(self, weights):
        """Validate a partial mapping now, apply the merged weights at the next reset()."""
        self._pending_reward_weights = self._pending_reward_weights._replace(
            **validate_reward_weights(weights)
        )

    def set_trajectory_recording(self, enabled):
        self.record_trajectories = bool(enabled)
        logger.info("Trajectory recording %s", "enabled" if enabled else "disabled")

    # ------------------------------------------------------------------
    # Episode control
    # ------------------------------------------------------------------

    def reset(self):
        """
        Start a new episode at the configured start pose.

        Returns:
            np.ndarray: Initial observation
        """
        self.max_steps = self._pending_max_steps
        self.reward_weights = self._pending_reward_weights
        self._clear_episode_state()

        self.physics.set_body_position(self.agent_body, self.start_position)
        self.physics.set_body_velocity(self.agent_body, Vec3(0.0, 0.0, 0.0))

        # Physics reads may be stale until the next step, so build from the known pose
        self.current_surface = self._detect_surface(self.start_position)
        self.highest_surface = self.current_surface
        self.grounded = self._is_grounded(self.start_position, ())
        self._last_level = self.current_surface
        self._observation = self._build_observation(self.start_position, self._velocity)

        if self.record_trajectories:
            self.current_trajectory = [{
                'step': 0,
                'position': list(self.start_position),
                'action': None,
                'reward': 0.0,
                'timestamp': time.time()
            }]

        return self._observation.copy()

    def step(self, action):
        """
        Apply an action and advance physics by one step.

        Returns:
            StepResult: (observation, reward, done, info)

        Raises:
            InvalidActionError: If action is not an integer in [0, 6)
            TrainingStateError: If reset() has not been called yet
        """
        action = self._validate_action(action)
        if self._observation is None:
            raise TrainingStateError("reset() must be called before step()")

        prev_observation = self._observation
        self.grabbing = self._apply_action(action)
        self.physics.step()
        self.current_step += 1

        position = as_vec3(self.physics.get_body_position(self.agent_body))
        velocity = as_vec3(self.physics.get_body_velocity(self.agent_body))
        contacts = self.physics.get_colliding_bodies(self.agent_body) or ()
        self._position = position
        self._velocity = velocity

        self.current_surface = self._detect_surface(position)
        self.highest_surface = max(self.highest_surface, self.current_surface)
        self.grounded = self._is_grounded(position, contacts)
        observation = self._build_observation(position, velocity)

        reward = self.calculate_reward(prev_observation, action, observation)
        self._update_progress(observation)
        self._observation = observation
        self.total_reward += reward

        done = self.is_terminal()
        info = {
            'step': self.current_step,
            'total_reward': self.total_reward,
            'agent_position': position,
            'action': action,
            'action_name': ACTIONS[action],
            'current_surface': self.current_surface,
            'highest_surface': self.highest_surface,
            'grabbing': self.grabbing,
        }
        if done:
            self.done = True
            self.termination_reason = self._termination_reason()
            info['termination_reason'] = self.termination_reason
            info['truncated'] = self.termination_reason == TERMINATION_TIMEOUT

        if self.record_trajectories:
            self._record_step(position, action, reward, done)

        return StepResult(observation.copy(), reward, done, info)

    def _validate_action(self, action):
        if isinstance(action, (bool, np.bool_)) or not isinstance(action, (int, np.integer)):
            raise InvalidActionError(f"Invalid action: expected integer, got {action!r}")
        if not 0 <= action < len(ACTIONS):
            raise InvalidActionError(
                f"Invalid action: expected integer in [0, {len(ACTIONS) - 1}], got {action}"
            )
        return int(action)

    def _apply_action(self, action):
        """Send the physics command for an action. Returns True for a successful grab."""
        move = self.action_forces['move']
        if action == FORWARD:
            self.physics.apply_force(self.agent_body, Vec3(0.0, 0.0, -move))
        elif action == BACKWARD:
            self.physics.apply_force(self.agent_body, Vec3(0.0, 0.0, move))
        elif action == LEFT:
            self.physics.apply_force(self.agent_body, Vec3(-move, 0.0, 0.0))
        elif action == RIGHT:
            self.physics.apply_force(self.agent_body, Vec3(move, 0.0, 0.0))
        elif action == JUMP:
            # Jumping needs something to push off from
            if self.grounded:
                self.physics.apply_impulse(self.agent_body, Vec3(0.0, self.action_forces['jump'], 0.0))
        elif action == GRAB:
            return self._attempt_grab()
        return False

    def _attempt_grab(self):
        """Pull up towards the nearest surface edge within reach."""
        target = self._grab_target(self._position)
        if target is None:
            return False

        surface, (dx, dz) = target
        pull = self.action_forces['grab']
        norm = math.hypot(dx, dz)
        if norm > 0:
            dx, dz = dx / norm, dz / norm
        self.physics.apply_impulse(self.agent_body, Vec3(0.25 * pull * dx, pull, 0.25 * pull * dz))
        logger.debug("Grabbed %s at step %d", surface.body_id, self.current_step)
        return True

    def _grab_target(self, position):
        bottom = position.y - self.agent_half_size
        reach = float(self.config['grab_reach'])
        grab_range = float(self.config['grab_range']) + self.agent_half_size
        tolerance = float(self.config['surface_tolerance'])

        best = None
        for surface in self.surfaces:
            top = surface.position.y + surface.size.y / 2.0
            # Edge must be above the feet but within arm's reach
            if not bottom + tolerance < top <= position.y + reach:
                continue
            dx, dz = self._horizontal_offset(position, surface)
            distance = math.hypot(dx, dz)
            if distance <= grab_range and (best is None or distance < best[0]):
                best = (distance, surface, (dx, dz))
        if best is None:
            return None
        return best[1], best[2]

    @staticmethod
    def _horizontal_offset(position, surface):
        """Vector from the agent to the closest point of a surface footprint."""
        half_x = surface.size.x / 2.0
        half_z = surface.size.z / 2.0
        closest_x = min(max(position.x, surface.position.x - half_x), surface.position.x + half_x)
        closest_z = min(max(position.z, surface.position.z - half_z), surface.position.z + half_z)
        return closest_x - position.x, closest_z - position.z

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def _detect_surface(self, position):
        """Index of the surface the agent stands on, -1 if none."""
        bottom = position.y - self.agent_half_size
        tolerance = float(self.config['surface_tolerance'])
        for index, surface in enumerate(self.surfaces):
            top = surface.position.y + surface.size.y / 2.0
            if abs(bottom - top) > tolerance:
                continue
            if (abs(position.x - surface.position.x) <= surface.size.x / 2.0 + self.agent_half_size and
                    abs(position.z - surface.position.z) <= surface.size.z / 2.0 + self.agent_half_size):
                return index
        return -1

    def _is_grounded(self, position, contacts):
        if self.current_surface >= 0 or GROUND_ID in contacts:
            return True
        return position.y - self.agent_half_size <= float(self.config['surface_tolerance'])

    def _nearest_surface_distance(self, position):
        if not self.surfaces:
            return self.surface_distance_scale
        best = math.inf
        for surface in self.surfaces:
            dx, dz = self._horizontal_offset(position, surface)
            half_y = surface.size.y / 2.0
            dy = min(max(position.y, surface.position.y - half_y), surface.position.y + half_y) - position.y
            best = min(best, math.sqrt(dx * dx + dy * dy + dz * dz))
        return best

    def _encode_surface(self, index):
        return (index + 1) / max(len(self.surfaces), 1)

    def _build_observation(self, position, velocity):
        pos = np.array(position, dtype=np.float64)
        vel = np.array(velocity, dtype=np.float64)
        goal = np.array(self.goal_position, dtype=np.float64)

        state = np.zeros(STATE_SIZE, dtype=np.float32)
        state[0:3] = np.clip(pos / self.position_scale, -1.0, 1.0)
        state[3:6] = np.clip(vel / self.velocity_scale, -1.0, 1.0)
        state[6] = np.clip(np.linalg.norm(pos - goal) / self.distance_scale, 0.0, 1.0)
        state[7] = np.clip(self._nearest_surface_distance(position) / self.surface_distance_scale, 0.0, 1.0)
        state[8] = np.clip(self.current_step / self.max_steps, 0.0, 1.0)
        state[9] = self._encode_surface(self.current_surface)
        state[10] = self._encode_surface(self.highest_surface)
        state[11] = 1.0 if self.grounded else 0.0
        state[12] = 1.0 if self.grabbing else 0.0
        return state

    def get_state(self):
        """Current observation (a copy), or None before the first reset."""
        return None if self._observation is None else self._observation.copy()

    # ------------------------------------------------------------------
    # Reward and termination
    # ------------------------------------------------------------------

    def _decode(self, observation):
        """Observation as a float64 vector, or None if it is missing or malformed."""
        if observation is None:
            return None
        try:
            array = np.asarray(observation, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError):
            return None
        if array.shape[0] != STATE_SIZE or not np.all(np.isfinite(array)):
            return None
        return array

    def _height(self, observation):
        return float(observation[1]) * self.position_scale[1]

    def _level(self, observation):
        """Surface index, -1 on the ground, None in the air."""
        index = int(round(float(observation[9]) * max(len(self.surfaces), 1))) - 1
        if index >= 0:
            return index
        return -1 if observation[11] >= 0.5 else None

    def _out_of_bounds(self, observation):
        bounds = self.scene.bounds
        x = float(observation[0]) * self.position_scale[0]
        z = float(observation[2]) * self.position_scale[2]
        x_min, x_max = bounds['x']
        z_min, z_max = bounds['z']
        return not (x_min <= x <= x_max and z_min <= z <= z_max)

    def calculate_reward(self, prev_state, action, new_state):
        """
        Shaped reward for one transition. Never raises.

        Falling gives exactly the fall weight and reaching the goal gives
        exactly the goal weight (once per episode). Otherwise the reward is
        survival + time penalty + height gain + first-landing bonus +
        regression penalty + out-of-bounds penalty.
        """
        weights = self.reward_weights
        baseline = weights.survival + weights.time_penalty

        new = self._decode(new_state)
        if new is None:
            return float(baseline)

        height = self._height(new)
        if height < self.fall_threshold:
            return float(weights.fall)
        if height >= self.goal_height and not self.goal_awarded:
            return float(weights.goal_reached)

        reward = baseline
        prev = self._decode(prev_state)
        if prev is not None:
            gain = height - self._height(prev)
            if gain > 0:
                reward += weights.height_gain * gain

        level = self._level(new)
        if level is not None:
            if level >= 0 and level not in self.credited_surfaces:
                reward += weights.surface_reached
            if level < self._last_level:
                reward += weights.surface_regression * (self._last_level - level)

        if self._out_of_bounds(new):
            reward += weights.out_of_bounds

        return float(reward) if math.isfinite(reward) else float(baseline)

    def _update_progress(self, observation):
        level = self._level(observation)
        if level is not None:
            if level >= 0:
                self.credited_surfaces.add(level)
            self._last_level = level
        if self._height(observation) >= self.goal_height:
            self.goal_awarded = True

    def _termination_reason(self):
        height = self._height(self._observation)
        if height < self.fall_threshold:
            return TERMINATION_FALL
        if self.goal_awarded:
            return TERMINATION_GOAL
        if self.current_step >= self.max_steps:
            return TERMINATION_TIMEOUT
        return None

    def is_terminal(self):
        """Goal reached, fallen below the threshold, or out of steps."""
        if self._observation is None:
            return False
        return self._termination_reason() is not None

    def is_goal_reached(self):
        return self.goal_awarded

    def get_episode_stats(self):
        return {
            'steps': self.current_step,
            'total_reward': self.total_reward,
            'success': self.goal_awarded
        }

    # ------------------------------------------------------------------
    # Trajectories
    # ------------------------------------------------------------------

    def _record_step(self, position, action, reward, done):
        self.current_trajectory.append({
            'step': self.current_step,
            'position': list(position),
            'action': action,
            'action_name': ACTIONS[action],
            'reward': reward,
            'total_reward': self.total_reward,
            'timestamp': time.time()
        })
        if done:
            self._recorded_episodes += 1
            self.trajectory_history.append({
                'episode': self._recorded_episodes,
                'trajectory': list(self.current_trajectory),
                'success': self.goal_awarded,
                'total_reward': self.total_reward,
                'steps': self.current_step,
                'highest_surface': self.highest_surface,
                'termination_reason': self.termination_reason,
                'duration': time.time() - self._episode_start
            })

    def get_current_trajectory(self):
        return list(self.current_trajectory)

    def get_trajectory_history(self):
        return list(self.trajectory_history)

    def get_last_trajectory(self):
        return self.trajectory_history[-1] if self.trajectory_history else None

    def clear_trajectory_history(self):
        self.trajectory_history.clear()
        self.current_trajectory = []

    def get_trajectory_stats(self):
        """Aggregate statistics over the recorded trajectory history."""
        history = self.trajectory_history
        if not history:
            return {'total_episodes': 0, 'successful_episodes': 0, 'success_rate': 0.0}
        successful = sum(1 for t in history if t['success'])
        return {
            'total_episodes': len(history),
            'successful_episodes': successful,
            'success_rate': successful / len(history),
            'avg_steps': sum(t['steps'] for t in history) / len(history),
            'avg_reward': sum(t['total_reward'] for t in history) / len(history)
        }
