"""
Trainer selection by agent kind.
"""
from climbing.brains.base import BrainBase
from .dqn_trainer import DQNTrainer
from .ppo_trainer import PPOTrainer

TRAINERS = {
    'DQN': DQNTrainer,
    'PPO': PPOTrainer,
}


def make_trainer(env, agent, config=None):
    """
    Build the trainer that matches the agent.

    Args:
        env: ClimbingEnvironment
        agent: DQNBrain or PPOBrain
        config: 'training' configuration section

    Returns:
        TrainerBase: Trainer wired to env and agent
    """
    if not isinstance(agent, BrainBase) or agent.kind not in TRAINERS:
        raise TypeError(f"No trainer for agent of type {type(agent).__name__}")
    return TRAINERS[agent.kind](env, agent, config)
