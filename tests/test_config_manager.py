import json

import pytest

from climbing.config.config_manager import ConfigManager
from climbing.errors import ConfigurationError


@pytest.fixture
def manager():
    return ConfigManager()


@pytest.mark.parametrize("method", ["DQN", "PPO"])
def test_defaults_match_programmatic_defaults(manager, method):
    assert manager.load_default(method) == manager.create_default_config(method)


@pytest.mark.parametrize("method", ["dqn", "ppo"])
def test_defaults_are_valid(manager, method):
    config = manager.load_default(method)
    assert manager.validate(config) == []
    assert manager.get_method(config) == method.upper()


def test_load_merges_user_file(manager, tmp_path):
    path = tmp_path / "custom.json"
    path.write_text(json.dumps({
        "method": "PPO",
        "environment": {"scene": "wall", "reward_weights": {"fall": -10.0}},
        "ppo": {"epochs": 3}
    }))
    config = manager.load(str(path))

    assert config["method"] == "PPO"
    assert config["environment"]["scene"] == "wall"
    assert config["environment"]["reward_weights"]["fall"] == -10.0
    assert config["environment"]["reward_weights"]["goal_reached"] == 100.0
    assert config["ppo"]["epochs"] == 3
    assert config["ppo"]["clip_epsilon"] == 0.2


def test_load_without_file_uses_method(manager):
    assert manager.load(method="ppo")["method"] == "PPO"
    assert manager.load()["method"] == "DQN"


def test_load_rejects_invalid_file(manager, tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"environment": {"reward_weights": {"teleport": 1.0}}}))
    with pytest.raises(ConfigurationError):
        manager.load(str(path))
    with pytest.raises(ConfigurationError):
        manager.load(method="A2C")


def test_merge_is_deep_and_copies(manager):
    base = {"a": {"b": 1, "c": [1, 2]}, "d": 1}
    merged = manager.merge(base, {"a": {"b": 2}})
    assert merged == {"a": {"b": 2, "c": [1, 2]}, "d": 1}
    merged["a"]["c"].append(3)
    assert base["a"]["c"] == [1, 2]


@pytest.mark.parametrize("path, value, fragment", [
    (("environment", "scene"), "volcano", "Unknown scene"),
    (("environment", "max_steps"), 0, "max_steps"),
    (("environment", "reward_weights", "fall"), "a lot", "fall"),
    (("dqn", "gamma"), 2.0, "gamma"),
    (("dqn", "batch_size"), 100000, "batch_size"),
    (("training", "num_episodes"), -1, "num_episodes"),
    (("training", "step_delay"), -1.0, "step_delay"),
])
def test_validate_reports_errors(manager, path, value, fragment):
    config = manager.load_default("DQN")
    section = config
    for key in path[:-1]:
        section = section[key]
    section[path[-1]] = value

    errors = manager.validate(config)
    assert any(fragment in e for e in errors)


def test_validate_missing_sections(manager):
    errors = manager.validate({"method": "DQN"})
    assert "Missing required key: environment" in errors
    assert "Missing required key: training" in errors
    assert "Missing configuration for method: DQN" in errors


def test_save_and_reload(manager, tmp_path):
    config = manager.load_default("PPO")
    path = tmp_path / "nested" / "saved.json"
    manager.save_to_file(config, str(path))
    assert manager.load_from_file(str(path)) == config
