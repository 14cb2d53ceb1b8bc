"""
Training Controller - runs the orchestrator on a worker thread.
"""
import logging
import threading
from typing import Optional, Callable

from climbing.controller.orchestrator import TrainingOrchestrator
from climbing.errors import TrainingStateError

logger = logging.getLogger(__name__)


class TrainingController:
    """
    Host for a TrainingOrchestrator.
    Starts training in a separate thread and forwards pause/resume/stop and
    speed changes. Status, metrics and error messages go to registered listeners.
    """

    def __init__(self, orchestrator: TrainingOrchestrator):
        """
        Initialize controller.

        Args:
            orchestrator: TrainingOrchestrator instance
        """
        self.orchestrator = orchestrator
        self.worker_thread: Optional[threading.Thread] = None
        self.error: Optional[BaseException] = None
        self.final_stats = None

        # Speed control
        self.target_fps = 0

        self.status_listeners = []
        self.metrics_listeners = []
        self.error_listeners = []

        orchestrator.on_episode_complete(self._emit_metrics)

    @property
    def is_running(self):
        return self.worker_thread is not None and self.worker_thread.is_alive()

    def add_status_listener(self, callback: Callable[[str], None]):
        self.status_listeners.append(callback)

    def add_metrics_listener(self, callback: Callable[[dict, dict], None]):
        self.metrics_listeners.append(callback)

    def add_error_listener(self, callback: Callable[[str], None]):
        self.error_listeners.append(callback)

    def start(self, num_episodes: Optional[int] = None):
        """Start training in a separate thread."""
        if self.is_running:
            self._emit_status("Already running")
            return

        if self.orchestrator.is_stopped:
            raise TrainingStateError("Training was stopped; create a new orchestrator to train again")

        self.error = None
        self.worker_thread = threading.Thread(
            target=self._run_training, args=(num_episodes,), name='training-worker', daemon=True
        )
        self.worker_thread.start()
        self._emit_status("Training started")

    def pause(self):
        """Pause training."""
        if not self.is_running:
            return

        try:
            self.orchestrator.pause_training()
        except TrainingStateError as e:
            self._emit_status(f"Pause ignored: {e}")
            return
        self._emit_status("Training paused")

    def resume(self):
        """Resume training."""
        if not self.is_running:
            return

        try:
            self.orchestrator.resume_training()
        except TrainingStateError as e:
            self._emit_status(f"Resume ignored: {e}")
            return
        self._emit_status("Training resumed")

    def stop(self, timeout: float = 5.0):
        """Stop training and wait for the worker thread."""
        self.orchestrator.stop_training()
        self._emit_status("Stopping training...")

        if self.worker_thread and self.worker_thread.is_alive():
            self.worker_thread.join(timeout=timeout)
            if self.worker_thread.is_alive():
                logger.warning("Worker thread did not stop within %.1f s", timeout)
                return

        self._emit_status("Training stopped")

    def join(self, timeout: Optional[float] = None):
        """Wait for the worker thread to finish."""
        if self.worker_thread is not None:
            self.worker_thread.join(timeout=timeout)
        return not self.is_running

    def set_speed(self, fps: int):
        """
        Set training speed in environment steps per second.

        Args:
            fps: Target steps per second (1-1000), 0 for unlimited
        """
        if fps <= 0:
            self.target_fps = 0
            self.orchestrator.set_step_delay(0.0)
            self._emit_status("Speed set to unlimited")
            return

        self.target_fps = max(1, min(1000, fps))
        self.orchestrator.set_step_delay(1.0 / self.target_fps)
        self._emit_status(f"Speed set to {self.target_fps} FPS")

    def _run_training(self, num_episodes):
        """Main training loop (runs in worker thread)."""
        try:
            self.final_stats = self.orchestrator.start_training(num_episodes)
            self._emit_status(f"Training {self.final_stats['state']}")
        except Exception as e:
            self.error = e
            logger.exception("Training error")
            self._emit_error(f"Training error: {e}")

    def _emit_metrics(self, stats: dict, episode_result: dict):
        for callback in list(self.metrics_listeners):
            try:
                callback(stats, episode_result)
            except Exception:
                logger.exception("Metrics listener failed")

    def _emit_error(self, message: str):
        for callback in list(self.error_listeners):
            try:
                callback(message)
            except Exception:
                logger.exception("Error listener failed")

    def _emit_status(self, message: str):
        logger.info(message)
        for callback in list(self.status_listeners):
            try:
                callback(message)
            except Exception:
                logger.exception("Status listener failed")

    def get_current_metrics(self) -> dict:
        """
        Get current statistics from the orchestrator.

        Returns:
            dict: Training statistics snapshot
        """
        return self.orchestrator.get_training_stats()
