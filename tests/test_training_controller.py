import threading

import pytest

from climbing.controller.orchestrator import TrainingOrchestrator
from climbing.controller.training_controller import TrainingController
from climbing.errors import TrainingStateError


@pytest.fixture
def controller(short_env, dqn_agent):
    return TrainingController(TrainingOrchestrator(short_env, dqn_agent))


def test_trains_on_worker_thread(controller):
    statuses = []
    metrics = []
    controller.add_status_listener(statuses.append)
    controller.add_metrics_listener(lambda stats, result: metrics.append(threading.current_thread().name))

    controller.start(3)
    assert controller.join(10)

    assert controller.error is None
    assert controller.final_stats['current_episode'] == 3
    assert metrics == ['training-worker'] * 3
    assert "Training started" in statuses
    assert "Training completed" in statuses


def test_failing_metrics_listener_does_not_starve_others(controller):
    seen = []

    def broken(stats, result):
        raise RuntimeError("plot closed")

    controller.add_metrics_listener(broken)
    controller.add_metrics_listener(lambda stats, result: seen.append(result['episode']))

    controller.start(2)
    assert controller.join(10)

    assert controller.error is None
    assert seen == [1, 2]


def test_pause_resume_and_stop(controller):
    orchestrator = controller.orchestrator
    paused = threading.Event()

    @orchestrator.on_episode_complete
    def pause_once(stats, result):
        if stats['current_episode'] == 1:
            orchestrator.pause_training()
            paused.set()

    controller.start(50)
    assert paused.wait(10)
    assert controller.is_running
    controller.resume()
    controller.stop(timeout=10)

    assert not controller.is_running
    assert orchestrator.is_stopped
    with pytest.raises(TrainingStateError):
        controller.start(1)


def test_errors_reach_error_listeners(controller):
    errors = []
    controller.add_error_listener(errors.append)

    def broken_episode(should_continue=None):
        raise RuntimeError("physics exploded")

    controller.orchestrator.trainer.run_episode = broken_episode
    controller.start(1)
    controller.join(10)

    assert isinstance(controller.error, RuntimeError)
    assert errors == ["Training error: physics exploded"]


def test_set_speed(controller):
    controller.set_speed(0)
    assert controller.orchestrator.step_delay == 0.0

    controller.set_speed(100)
    assert controller.target_fps == 100
    assert controller.orchestrator.step_delay == pytest.approx(0.01)

    controller.set_speed(5000)
    assert controller.target_fps == 1000
    assert controller.orchestrator.step_delay == pytest.approx(0.001)


def test_current_metrics_snapshot(controller):
    metrics = controller.get_current_metrics()
    assert metrics['current_episode'] == 0
    assert metrics['state'] == 'idle'
