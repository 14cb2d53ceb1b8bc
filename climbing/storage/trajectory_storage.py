"""
Trajectory storage - episode trajectories saved as JSON files for later analysis.
"""
import os
import json
import time
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class TrajectoryStorage:
    """
    One JSON file per episode plus a metadata.json index.
    The oldest episodes are deleted once max_trajectories is exceeded.
    """

    def __init__(self, storage_path='training-data/trajectories', max_trajectories=10000):
        if max_trajectories <= 0:
            raise ValueError(f"max_trajectories must be positive, got {max_trajectories}")
        self.storage_path = storage_path
        self.max_trajectories = max_trajectories
        self.metadata_path = os.path.join(storage_path, 'metadata.json')
        self.trajectories_path = os.path.join(storage_path, 'trajectories')
        self.trajectories = []

    def init(self):
        """Create directories and load the existing index."""
        os.makedirs(self.trajectories_path, exist_ok=True)
        self.load_metadata()
        logger.info("Trajectory storage at %s (%d existing trajectories)",
                    self.storage_path, len(self.trajectories))

    def save_trajectory(self, trajectory, episode=None):
        """
        Save one episode.

        Args:
            trajectory: Episode record from ClimbingEnvironment.get_last_trajectory()
            episode: Episode number to store it under (defaults to trajectory['episode'])

        Returns:
            str or None: File name, or None if the trajectory was rejected
        """
        if not trajectory:
            logger.warning("Empty trajectory, skipping save")
            return None
        episode = episode if episode is not None else trajectory.get('episode')
        if not episode:
            logger.warning("Trajectory without episode number, skipping save")
            return None

        filename = f"episode_{episode}_{int(time.time() * 1000)}.json"
        saved_at = datetime.now(timezone.utc).isoformat()
        data = {**trajectory, 'episode': episode, 'saved_at': saved_at, 'filename': filename}

        os.makedirs(self.trajectories_path, exist_ok=True)
        with open(os.path.join(self.trajectories_path, filename), 'w') as f:
            json.dump(data, f)

        self.trajectories.append({
            'episode': episode,
            'filename': filename,
            'reward': trajectory.get('total_reward', 0.0),
            'steps': trajectory.get('steps', len(trajectory.get('trajectory', ()))),
            'success': bool(trajectory.get('success', False)),
            'saved_at': saved_at
        })

        self.prune_old_trajectories()
        self.save_metadata()
        return filename

    def load_trajectory(self, episode):
        """Full trajectory record of an episode, or None."""
        entry = next((t for t in self.trajectories if t['episode'] == episode), None)
        if entry is None:
            logger.warning("Trajectory for episode %s not found", episode)
            return None
        with open(os.path.join(self.trajectories_path, entry['filename']), 'r') as f:
            return json.load(f)

    def load_metadata(self):
        if not os.path.exists(self.metadata_path):
            self.trajectories = []
            return
        try:
            with open(self.metadata_path, 'r') as f:
                self.trajectories = json.load(f).get('trajectories', [])
        except (OSError, json.JSONDecodeError):
            logger.exception("Error loading trajectory metadata, starting with an empty index")
            self.trajectories = []

    def save_metadata(self):
        os.makedirs(self.storage_path, exist_ok=True)
        metadata = {
            'version': '1.0',
            'last_updated': datetime.now(timezone.utc).isoformat(),
            'total_trajectories': len(self.trajectories),
            'trajectories': self.trajectories
        }
        with open(self.metadata_path, 'w') as f:
            json.dump(metadata, f, indent=2)

    def prune_old_trajectories(self):
        """Delete the oldest episodes beyond max_trajectories."""
        excess = len(self.trajectories) - self.max_trajectories
        if excess <= 0:
            return

        self.trajectories.sort(key=lambda t: t['episode'])
        removed, self.trajectories = self.trajectories[:excess], self.trajectories[excess:]
        for entry in removed:
            path = os.path.join(self.trajectories_path, entry['filename'])
            if os.path.exists(path):
                os.remove(path)
        logger.debug("Pruned %d old trajectories", excess)

    def get_trajectory_list(self):
        return list(self.trajectories)

    def get_trajectory_count(self):
        return len(self.trajectories)

    def get_trajectory_range(self, start_episode, end_episode):
        return [t for t in self.trajectories if start_episode <= t['episode'] <= end_episode]

    def get_successful_trajectories(self):
        return [t for t in self.trajectories if t['success']]

    def get_statistics(self):
        if not self.trajectories:
            return {'count': 0, 'avg_reward': 0.0, 'success_rate': 0.0, 'avg_steps': 0.0}

        count = len(self.trajectories)
        return {
            'count': count,
            'avg_reward': sum(t['reward'] for t in self.trajectories) / count,
            'success_rate': sum(1 for t in self.trajectories if t['success']) / count,
            'avg_steps': sum(t['steps'] for t in self.trajectories) / count,
            'first_episode': self.trajectories[0]['episode'],
            'last_episode': self.trajectories[-1]['episode']
        }

    def clear_all(self):
        """Delete every stored trajectory."""
        for entry in self.trajectories:
            path = os.path.join(self.trajectories_path, entry['filename'])
            if os.path.exists(path):
                os.remove(path)
        self.trajectories = []
        self.save_metadata()
        logger.info("All trajectories cleared")
