"""
Versioned model persistence: torch checkpoints plus a JSON metadata file.
"""
import os
import re
import json
import glob
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100

CHECKPOINT_VERSION = re.compile(r"_model_v(\d+)\.pth$")


def _empty_metadata():
    return {
        'version': 0,
        'kind': None,
        'total_episodes': 0,
        'total_steps': 0,
        'best_reward': None,
        'avg_reward': 0.0,
        'success_rate': 0.0,
        'last_saved': None,
        'latest_checkpoint': None,
        'training_history': []
    }


def _checkpoint_version(path):
    match = CHECKPOINT_VERSION.search(os.path.basename(path))
    return int(match.group(1)) if match else -1


class ModelManager:
    """
    Saves the agent every few episodes and restores the latest version on startup,
    so training continues across sessions.
    """

    def __init__(self, agent, model_path='training-data/models', save_interval=10,
                 auto_save=True, keep_checkpoints=5):
        """
        Args:
            agent: DQNBrain or PPOBrain
            model_path: Directory for checkpoints and metadata.json
            save_interval: Episodes between automatic saves
            auto_save: Whether should_save() ever answers True
            keep_checkpoints: Number of versioned checkpoint files kept on disk
        """
        if save_interval <= 0:
            raise ValueError(f"save_interval must be positive, got {save_interval}")
        self.agent = agent
        self.model_path = model_path
        self.metadata_path = os.path.join(model_path, 'metadata.json')
        self.save_interval = save_interval
        self.auto_save = auto_save
        self.keep_checkpoints = max(1, keep_checkpoints)
        self.metadata = _empty_metadata()

    def init(self, load_model=True):
        """
        Load existing metadata and, if present, the latest model.

        Returns:
            dict or None: Metadata of the loaded model
        """
        if not self.load_metadata():
            logger.info("No existing model found in %s, starting fresh", self.model_path)
            return None

        logger.info(
            "Found existing %s model v%d: %d episodes, success rate %.1f%%",
            self.metadata.get('kind'), self.metadata['version'], self.metadata['total_episodes'],
            self.metadata['success_rate'] * 100
        )
        return self.load_latest_model() if load_model else None

    def load_metadata(self):
        """Read metadata.json. Returns True if it existed and parsed."""
        if not os.path.exists(self.metadata_path):
            return False
        try:
            with open(self.metadata_path, 'r') as f:
                loaded = json.load(f)
        except (OSError, json.JSONDecodeError):
            logger.exception("Could not read model metadata %s", self.metadata_path)
            return False
        self.metadata = {**_empty_metadata(), **loaded}
        return True

    def save_metadata(self):
        os.makedirs(self.model_path, exist_ok=True)
        tmp_path = self.metadata_path + '.tmp'
        with open(tmp_path, 'w') as f:
            json.dump(self.metadata, f, indent=2)
        os.replace(tmp_path, self.metadata_path)

    def _checkpoint_path(self, version):
        kind = (self.agent.kind or 'model').lower()
        return os.path.join(self.model_path, f"{kind}_model_v{version:04d}.pth")

    def load_latest_model(self):
        """
        Load the checkpoint named in the metadata into the agent.

        Returns:
            dict or None: Metadata if a model was loaded, None otherwise
        """
        checkpoint = self.metadata.get('latest_checkpoint')
        if not checkpoint:
            return None
        if self.metadata.get('kind') not in (None, self.agent.kind):
            logger.warning("Stored model is %s but agent is %s, continuing with fresh model",
                           self.metadata['kind'], self.agent.kind)
            return None

        path = os.path.join(self.model_path, checkpoint)
        try:
            self.agent.load_model(path)
        except Exception:
            logger.exception("Error loading model %s, continuing with fresh model", path)
            return None

        logger.info("Loaded model version %d from %s", self.metadata['version'], path)
        return self.get_metadata()

    def save_model(self, stats=None):
        """
        Save the agent as a new version.

        Args:
            stats: dict with episodes_since_save, steps_since_save, avg_reward,
                success_rate and episode (all optional)

        Returns:
            dict: Updated metadata
        """
        stats = stats or {}
        metadata = self.metadata
        version = metadata['version'] + 1
        checkpoint_path = self._checkpoint_path(version)

        # Weights first so metadata never points at a missing file
        self.agent.save_model(checkpoint_path)

        metadata['version'] = version
        metadata['kind'] = self.agent.kind
        metadata['state_size'] = self.agent.state_size
        metadata['action_size'] = self.agent.action_size
        metadata['total_episodes'] += int(stats.get('episodes_since_save', 0))
        metadata['total_steps'] += int(stats.get('steps_since_save', 0))
        metadata['last_saved'] = datetime.now(timezone.utc).isoformat()
        metadata['latest_checkpoint'] = os.path.basename(checkpoint_path)

        if 'avg_reward' in stats:
            metadata['avg_reward'] = float(stats['avg_reward'])
            if metadata['best_reward'] is None or stats['avg_reward'] > metadata['best_reward']:
                metadata['best_reward'] = float(stats['avg_reward'])
        if 'success_rate' in stats:
            metadata['success_rate'] = float(stats['success_rate'])

        metadata['training_history'].append({
            'version': version,
            'timestamp': metadata['last_saved'],
            'episode': stats.get('episode', 0),
            'episodes': int(stats.get('episodes_since_save', 0)),
            'avg_reward': float(stats.get('avg_reward', 0.0)),
            'success_rate': float(stats.get('success_rate', 0.0))
        })
        metadata['training_history'] = metadata['training_history'][-HISTORY_LIMIT:]

        self.save_metadata()
        self._prune_checkpoints()

        logger.info(
            "Model saved (v%d): %d episodes, avg reward %.2f, success rate %.1f%%",
            version, metadata['total_episodes'], metadata['avg_reward'], metadata['success_rate'] * 100
        )
        return self.get_metadata()

    def _prune_checkpoints(self):
        pattern = os.path.join(self.model_path, f"{(self.agent.kind or 'model').lower()}_model_v*.pth")
        # Version numbers outgrow the zero padding, so order numerically
        checkpoints = sorted(glob.glob(pattern), key=_checkpoint_version)
        for path in checkpoints[:-self.keep_checkpoints]:
            os.remove(path)

    def should_save(self, episode):
        """Check if model should be saved based on episode count."""
        if not self.auto_save:
            return False
        return episode > 0 and episode % self.save_interval == 0

    def get_metadata(self):
        metadata = dict(self.metadata)
        metadata['training_history'] = list(self.metadata['training_history'])
        return metadata

    def reset(self):
        """Delete all saved checkpoints and metadata."""
        for path in glob.glob(os.path.join(self.model_path, '*_model_v*.pth')):
            os.remove(path)
        if os.path.exists(self.metadata_path):
            os.remove(self.metadata_path)
        self.metadata = _empty_metadata()
        logger.info("All models and metadata in %s reset", self.model_path)
