import numpy as np
import pytest

from climbing.errors import ConfigurationError, InvalidActionError, TrainingStateError
from climbing.simulation.environment import (
    ClimbingEnvironment, STATE_SIZE, FORWARD, BACKWARD, LEFT, JUMP, GRAB,
    TERMINATION_GOAL, TERMINATION_FALL, TERMINATION_TIMEOUT,
)
from climbing.simulation.physics import Vec3

from conftest import FakePhysics, GROUND, ON_STEP, one_step_scene

BASELINE = 0.05 - 0.1


def test_reset_returns_full_observation(env):
    obs = env.reset()
    assert obs.shape == (STATE_SIZE,)
    assert obs.dtype == np.float32
    assert np.all(obs >= -1.0) and np.all(obs <= 1.0)
    # Standing on the ground at the start
    assert obs[11] == 1.0
    assert obs[12] == 0.0
    assert env.episode_step_count == 0


def test_step_before_reset_raises(env):
    with pytest.raises(TrainingStateError):
        env.step(FORWARD)


@pytest.mark.parametrize("action", [-1, 6, 1.5, "JUMP", None, True])
def test_invalid_action_raises(env, action):
    env.reset()
    with pytest.raises(InvalidActionError):
        env.step(action)


def test_step_counter_increases_by_one(env):
    env.reset()
    for expected in range(1, 6):
        result = env.step(FORWARD)
        assert result.info['step'] == expected
        assert env.episode_step_count == expected
    env.reset()
    assert env.episode_step_count == 0


def test_move_actions_push_the_agent(env, physics):
    env.reset()
    env.step(FORWARD)
    env.step(BACKWARD)
    env.step(LEFT)
    assert physics.forces == [Vec3(0.0, 0.0, -5.0), Vec3(0.0, 0.0, 5.0), Vec3(-5.0, 0.0, 0.0)]


def test_jump_needs_ground(env, physics):
    env.reset()
    env.step(JUMP)
    assert physics.impulses == [Vec3(0.0, 8.0, 0.0)]

    physics.push((0.0, 3.0, 0.0))
    env.step(FORWARD)
    assert not env.grounded
    env.step(JUMP)
    assert len(physics.impulses) == 1


def test_grab_pulls_towards_nearby_edge(env, physics):
    physics.push((0.0, 0.25, -0.5))
    env.reset()
    env.step(FORWARD)

    result = env.step(GRAB)
    assert result.info['grabbing'] is True
    assert result.observation[12] == 1.0
    impulse = physics.impulses[-1]
    assert impulse.y == pytest.approx(5.0)
    assert impulse.z == pytest.approx(-1.25)

    result = env.step(FORWARD)
    assert result.info['grabbing'] is False


def test_grab_out_of_reach_does_nothing(env, physics):
    env.reset()
    physics.push((0.0, 0.25, 3.0))
    env.step(LEFT)
    result = env.step(GRAB)
    assert result.info['grabbing'] is False
    assert physics.impulses == []


def test_idle_step_reward_is_survival_plus_time_penalty(env):
    env.reset()
    result = env.step(LEFT)
    assert result.reward == pytest.approx(BASELINE, abs=1e-5)
    assert not result.done


def test_landing_on_new_surface_pays_bonus(env, physics):
    env.reset()
    physics.push(ON_STEP)
    result = env.step(FORWARD)
    assert env.current_surface == 0
    # height gain 1.0 + first landing 10 + baseline
    assert result.reward == pytest.approx(1.0 + 10.0 + BASELINE, abs=1e-4)


def test_new_surface_beats_revisited_surface(env, physics):
    env.reset()
    physics.push(ON_STEP, GROUND, ON_STEP)
    first = env.step(FORWARD).reward
    dropped = env.step(BACKWARD).reward
    second = env.step(FORWARD).reward

    assert first > second
    assert second == pytest.approx(1.0 + BASELINE, abs=1e-4)
    assert dropped == pytest.approx(-5.0 + BASELINE, abs=1e-4)


def test_goal_reward_is_exactly_goal_weight(env, physics):
    env.reset()
    physics.push((0.0, 5.5, -4.0))
    result = env.step(JUMP)
    assert result.reward == 100.0
    assert result.done
    assert result.info['termination_reason'] == TERMINATION_GOAL
    assert result.info['truncated'] is False
    assert env.get_episode_stats()['success'] is True


def test_goal_reward_is_paid_once(env, physics):
    prev = env.reset()
    physics.push((0.0, 5.5, -4.0))
    result = env.step(JUMP)
    assert env.calculate_reward(prev, JUMP, result.observation) != 100.0


def test_fall_reward_is_exactly_fall_weight(env, physics):
    env.reset()
    physics.push((0.0, -3.0, 0.0))
    result = env.step(FORWARD)
    assert result.reward == -50.0
    assert result.done
    assert result.info['termination_reason'] == TERMINATION_FALL
    assert env.get_episode_stats()['success'] is False


def test_calculate_reward_never_raises(env):
    good = env.reset()
    assert env.calculate_reward(None, 0, good) == pytest.approx(BASELINE, abs=1e-5)
    assert env.calculate_reward(good[:5], 0, good) == pytest.approx(BASELINE, abs=1e-5)
    assert env.calculate_reward(good, 0, None) == pytest.approx(BASELINE)
    assert env.calculate_reward(good, 0, [np.nan] * STATE_SIZE) == pytest.approx(BASELINE)
    assert env.calculate_reward("garbage", 0, good) == pytest.approx(BASELINE, abs=1e-5)


def test_out_of_bounds_penalty(env, physics):
    env.reset()
    physics.push((0.0, 0.25, 7.0))
    result = env.step(BACKWARD)
    assert result.reward == pytest.approx(BASELINE - 1.0, abs=1e-5)


def test_max_steps_truncates(env):
    env.set_max_steps(3)
    env.reset()
    results = [env.step(LEFT) for _ in range(3)]
    assert [r.done for r in results] == [False, False, True]
    assert results[-1].info['termination_reason'] == TERMINATION_TIMEOUT
    assert results[-1].info['truncated'] is True


def test_pending_config_applies_at_reset(env):
    env.reset()
    env.set_max_steps(2)
    env.set_reward_weights({'survival': 1.0})
    result = env.step(LEFT)
    assert env.max_steps == 50
    assert result.reward == pytest.approx(BASELINE, abs=1e-5)

    env.reset()
    assert env.max_steps == 2
    result = env.step(LEFT)
    assert result.reward == pytest.approx(1.0 - 0.1, abs=1e-5)
    assert env.reward_weights.goal_reached == 100.0


def test_unknown_reward_weight_raises(env):
    with pytest.raises(ConfigurationError):
        env.set_reward_weights({'teleport': 5.0})
    with pytest.raises(ConfigurationError):
        env.set_reward_weights({'fall': float('inf')})


@pytest.mark.parametrize("value", [0, -5, 2.5, True])
def test_invalid_max_steps_raises(env, value):
    with pytest.raises(ConfigurationError):
        env.set_max_steps(value)


def test_constructor_rejects_bad_config():
    with pytest.raises(ConfigurationError):
        ClimbingEnvironment(None)
    with pytest.raises(ConfigurationError):
        ClimbingEnvironment(FakePhysics(), scene=one_step_scene(), config={'reward_weights': {'bogus': 1.0}})
    with pytest.raises(ConfigurationError):
        ClimbingEnvironment(FakePhysics(), scene=one_step_scene(), config={'fall_threshold': 10.0})


@pytest.mark.parametrize("config", [
    {'goal_height': 20.0},
    {'goal_height': 15.0},
    {'fall_threshold': -15.0},
    {'position_scale': [5.0, 15.0, 25.0]},
    {'position_scale': [10.0, 15.0, 10.0]},
])
def test_constructor_rejects_unobservable_thresholds(config):
    with pytest.raises(ConfigurationError):
        ClimbingEnvironment(FakePhysics(), scene=one_step_scene(), config=config)


def test_constructor_rejects_bounds_beyond_position_scale():
    scene = one_step_scene()._replace(bounds={'x': (-20.0, 20.0), 'z': (-10.0, 6.0)})
    with pytest.raises(ConfigurationError):
        ClimbingEnvironment(FakePhysics(), scene=scene)


def test_high_goal_is_reachable_with_wider_scale():
    physics = FakePhysics()
    env = ClimbingEnvironment(physics, scene=one_step_scene(),
                              config={'goal_height': 20.0, 'position_scale': [10.0, 30.0, 25.0]})
    env.reset()
    physics.push((0.0, 25.0, -4.0))
    result = env.step(JUMP)
    assert result.reward == 100.0
    assert result.info['termination_reason'] == TERMINATION_GOAL


def test_trajectory_recording(env, physics):
    env.set_trajectory_recording(True)
    env.set_max_steps(3)
    env.reset()
    physics.push(ON_STEP)
    for _ in range(3):
        env.step(FORWARD)

    last = env.get_last_trajectory()
    assert last['steps'] == 3
    assert len(last['trajectory']) == 4
    assert last['trajectory'][1]['action_name'] == 'FORWARD'
    assert last['highest_surface'] == 0
    assert last['termination_reason'] == TERMINATION_TIMEOUT
    assert env.get_trajectory_stats()['total_episodes'] == 1

    env.clear_trajectory_history()
    assert env.get_last_trajectory() is None
    assert env.get_trajectory_stats()['total_episodes'] == 0


def test_no_trajectories_when_recording_disabled(env):
    env.set_max_steps(2)
    env.reset()
    env.step(LEFT)
    env.step(LEFT)
    assert env.get_trajectory_history() == []
