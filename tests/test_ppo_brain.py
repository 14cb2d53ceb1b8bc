import numpy as np
import pytest
import torch
from torch.distributions import Categorical

from climbing.brains.ppo_brain import PPOBrain, PolicyOutput
from climbing.errors import ConfigurationError, ShapeMismatchError
from climbing.simulation.environment import STATE_SIZE, ACTIONS


def make_brain(**kwargs):
    params = {'hidden_layers': [16], 'epochs': 2, 'seed': 0}
    params.update(kwargs)
    return PPOBrain(STATE_SIZE, len(ACTIONS), **params)


def fill_trajectory(agent, steps=8, seed=0):
    rng = np.random.default_rng(seed)
    state = rng.uniform(-1, 1, STATE_SIZE).astype(np.float32)
    for i in range(steps):
        output = agent.select_action(state)
        next_state = rng.uniform(-1, 1, STATE_SIZE).astype(np.float32)
        agent.store_transition(state, output.action, float(rng.normal()), next_state,
                               i == steps - 1, output.log_prob, output.value)
        state = next_state


def test_select_action_returns_policy_output(ppo_agent):
    output = ppo_agent.select_action(np.zeros(STATE_SIZE, dtype=np.float32))
    assert isinstance(output, PolicyOutput)
    assert 0 <= output.action < len(ACTIONS)
    assert output.log_prob <= 0.0
    assert np.isfinite(output.value)


def test_greedy_selection_takes_most_likely_action(ppo_agent):
    state = np.linspace(-1, 1, STATE_SIZE, dtype=np.float32)
    probs = ppo_agent.get_action_probabilities(state)
    assert probs.sum() == pytest.approx(1.0, abs=1e-5)
    output = ppo_agent.select_action(state, training=False)
    assert output.action == int(np.argmax(probs))
    assert output.log_prob == pytest.approx(float(np.log(probs[output.action])), abs=1e-5)


def test_seeded_sampling_is_reproducible():
    state = np.full(STATE_SIZE, 0.1, dtype=np.float32)
    a, b = make_brain(seed=3), make_brain(seed=3)
    assert [a.select_action(state).action for _ in range(10)] == [b.select_action(state).action for _ in range(10)]


def test_wrong_state_length_raises(ppo_agent):
    with pytest.raises(ShapeMismatchError):
        ppo_agent.select_action(np.zeros(STATE_SIZE - 1))
    with pytest.raises(ShapeMismatchError):
        ppo_agent.get_value([0.0] * 3)


def test_gae_without_discount_is_reward_minus_value():
    agent = make_brain(gamma=0.0, gae_lambda=0.0)
    rewards = [1.0, -2.0, 0.5]
    values = [0.3, 0.1, -0.4]
    advantages, returns = agent.compute_advantages(rewards, values, [False, False, False], last_value=5.0)
    assert np.allclose(advantages, np.array(rewards) - np.array(values))
    assert np.allclose(returns, rewards)


def test_done_zeroes_bootstrap():
    agent = make_brain(gamma=1.0, gae_lambda=1.0)
    advantages, _ = agent.compute_advantages([1.0], [0.0], [True], last_value=10.0)
    assert advantages[0] == pytest.approx(1.0)
    advantages, _ = agent.compute_advantages([1.0], [0.0], [False], last_value=10.0)
    assert advantages[0] == pytest.approx(11.0)


def test_gae_accumulates_backwards():
    agent = make_brain(gamma=0.5, gae_lambda=1.0)
    advantages, returns = agent.compute_advantages([1.0, 1.0], [0.0, 0.0], [False, True])
    # delta_1 = 1, delta_0 = 1 + 0.5 * 0 = 1, gae_0 = 1 + 0.5 * 1
    assert np.allclose(advantages, [1.5, 1.0])
    assert np.allclose(returns, [1.5, 1.0])


def test_gae_rejects_mismatched_lengths(ppo_agent):
    with pytest.raises(ValueError):
        ppo_agent.compute_advantages([1.0, 2.0], [0.0], [False, False])


def test_normalize_advantages():
    normalized = PPOBrain.normalize_advantages([1.0, 2.0, 3.0, 4.0])
    assert normalized.mean() == pytest.approx(0.0, abs=1e-6)
    assert normalized.std() == pytest.approx(1.0, abs=1e-5)
    assert PPOBrain.normalize_advantages([]).size == 0
    constant = PPOBrain.normalize_advantages([2.0, 2.0])
    assert np.all(np.isfinite(constant))


def test_train_on_empty_trajectory_is_not_ready(ppo_agent):
    result = ppo_agent.train()
    assert result['ready'] is False
    assert result['epochs'] == 0
    assert ppo_agent.train_calls == 0


def test_train_clears_trajectory(ppo_agent):
    fill_trajectory(ppo_agent)
    assert ppo_agent.trajectory_length == 8
    result = ppo_agent.train()
    assert result['ready'] is True
    assert result['epochs'] == 2
    assert np.isfinite(result['actor_loss'])
    assert result['critic_loss'] >= 0.0
    assert result['entropy'] > 0.0
    assert ppo_agent.trajectory_length == 0
    assert ppo_agent.train_calls == 1


def test_train_changes_policy(ppo_agent):
    state = np.full(STATE_SIZE, 0.2, dtype=np.float32)
    before = ppo_agent.get_action_probabilities(state)
    value_before = ppo_agent.get_value(state)
    fill_trajectory(ppo_agent, steps=16)
    ppo_agent.train()
    assert not np.allclose(before, ppo_agent.get_action_probabilities(state))
    assert ppo_agent.get_value(state) != value_before


def test_train_accepts_explicit_batch(ppo_agent):
    fill_trajectory(ppo_agent)
    batch = ppo_agent.build_batch()
    ppo_agent.clear_trajectory()
    assert ppo_agent.build_batch() is None
    result = ppo_agent.train(batch)
    assert result['ready'] is True


def test_save_and_load_roundtrip(tmp_path, ppo_agent):
    fill_trajectory(ppo_agent)
    ppo_agent.train()
    path = str(tmp_path / "ppo.pth")
    metadata = ppo_agent.save_model(path)
    assert metadata['kind'] == 'PPO'

    restored = make_brain(seed=1)
    restored.load_model(path)
    state = np.linspace(-1, 1, STATE_SIZE, dtype=np.float32)
    assert np.allclose(restored.get_action_probabilities(state), ppo_agent.get_action_probabilities(state))
    assert restored.get_value(state) == pytest.approx(ppo_agent.get_value(state))
    assert restored.train_calls == 1


def test_load_rejects_dqn_checkpoint(tmp_path, dqn_agent, ppo_agent):
    path = str(tmp_path / "dqn.pth")
    dqn_agent.save_model(path)
    with pytest.raises(ConfigurationError):
        ppo_agent.load_model(path)


@pytest.mark.parametrize("kwargs", [
    {'gae_lambda': 1.5},
    {'clip_epsilon': 0.0},
    {'epochs': 0},
])
def test_invalid_hyperparameters_raise(kwargs):
    with pytest.raises(ConfigurationError):
        make_brain(**kwargs)


def batch_for(agent, size=6, seed=0):
    rng = np.random.default_rng(seed)
    states = rng.uniform(-1, 1, (size, STATE_SIZE)).astype(np.float32)
    actions = rng.integers(0, len(ACTIONS), size)
    with torch.no_grad():
        dist = Categorical(logits=agent.actor_net(torch.as_tensor(states)))
        log_probs = dist.log_prob(torch.as_tensor(actions)).numpy()
        entropy = float(dist.entropy().mean())
    return {
        'states': states,
        'actions': actions,
        'old_log_probs': log_probs,
        'advantages': rng.uniform(0.5, 2.0, size).astype(np.float32),
        'returns': rng.normal(size=size).astype(np.float32),
    }, entropy


def test_ratio_far_above_band_is_clipped():
    agent = make_brain(epochs=1, clip_epsilon=0.2, entropy_coef=0.01, max_grad_norm=None)
    batch, entropy = batch_for(agent)
    # Old policy much less likely than the current one: ratio e^5
    batch['old_log_probs'] = batch['old_log_probs'] - 5.0

    result = agent.train(batch)

    expected = -(1.0 + 0.2) * float(batch['advantages'].mean()) - 0.01 * entropy
    assert result['actor_loss'] == pytest.approx(expected, abs=1e-5)


def test_ratio_inside_band_is_not_clipped():
    agent = make_brain(epochs=1, entropy_coef=0.0, max_grad_norm=None)
    batch, _ = batch_for(agent, seed=1)

    result = agent.train(batch)

    # Unchanged policy: ratio 1, surrogate is the mean advantage
    assert result['actor_loss'] == pytest.approx(-float(batch['advantages'].mean()), abs=1e-5)


def test_train_rejects_wrong_state_width(ppo_agent):
    fill_trajectory(ppo_agent)
    batch = ppo_agent.build_batch()
    batch['states'] = np.zeros((4, STATE_SIZE * 2), dtype=np.float32)
    batch['actions'] = np.zeros(8, dtype=np.int64)

    with pytest.raises(ShapeMismatchError):
        ppo_agent.train(batch)
    assert ppo_agent.trajectory_length == 0
    assert ppo_agent.train_calls == 0


@pytest.mark.parametrize("column", ['actions', 'old_log_probs', 'advantages', 'returns'])
def test_train_rejects_column_length_mismatch(ppo_agent, column):
    batch, _ = batch_for(ppo_agent, size=4)
    batch[column] = batch[column][:3]
    before = ppo_agent.get_action_probabilities(batch['states'][0])

    with pytest.raises(ShapeMismatchError):
        ppo_agent.train(batch)
    assert np.allclose(before, ppo_agent.get_action_probabilities(batch['states'][0]))
