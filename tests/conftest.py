import pytest

from climbing.brains.dqn_brain import DQNBrain
from climbing.brains.ppo_brain import PPOBrain
from climbing.simulation.environment import ClimbingEnvironment, STATE_SIZE, ACTIONS
from climbing.simulation.physics import Vec3, as_vec3
from climbing.simulation.scenes import Scene, Surface


class FakePhysics:
    """
    Scriptable stand-in for BoxPhysics.
    Each step() moves the agent to the next queued position; with an empty
    queue the agent stays where it is. Forces and impulses are recorded.
    """

    def __init__(self, positions=None):
        self.queue = [as_vec3(p) for p in positions or []]
        self.position = Vec3(0.0, 0.0, 0.0)
        self.velocity = Vec3(0.0, 0.0, 0.0)
        self.contacts = []
        self.forces = []
        self.impulses = []
        self.steps = 0

    def push(self, *positions):
        self.queue.extend(as_vec3(p) for p in positions)

    def create_agent_body(self, position, mass, size, shape='box'):
        self.position = as_vec3(position)
        return 'agent'

    def apply_force(self, body, vector):
        self.forces.append(as_vec3(vector))

    def apply_impulse(self, body, vector):
        self.impulses.append(as_vec3(vector))

    def get_body_position(self, body):
        return self.position

    def get_body_velocity(self, body):
        return self.velocity

    def get_colliding_bodies(self, body):
        return list(self.contacts)

    def set_body_position(self, body, position):
        self.position = as_vec3(position)

    def set_body_velocity(self, body, velocity):
        self.velocity = as_vec3(velocity)

    def step(self):
        self.steps += 1
        if self.queue:
            self.position = self.queue.pop(0)


# Agent resting on the ground (size 0.5) and standing on the single step
GROUND = (0.0, 0.25, 0.0)
ON_STEP = (0.0, 1.25, -1.5)


def one_step_scene():
    """A single 1 m step in front of the agent, goal at 5 m."""
    return Scene(
        name='one_step',
        description='Single step',
        surfaces=(Surface('step_0', Vec3(0.0, 0.5, -2.0), Vec3(4.0, 1.0, 2.0)),),
        goal_platform=None,
        goal_position=Vec3(0.0, 5.0, -4.0),
        goal_height=5.0,
        start_position=Vec3(*GROUND),
        bounds={'x': (-6.0, 6.0), 'z': (-10.0, 6.0)}
    )


@pytest.fixture
def physics():
    return FakePhysics()


@pytest.fixture
def scene():
    return one_step_scene()


@pytest.fixture
def env(physics, scene):
    return ClimbingEnvironment(physics, scene=scene, config={'max_steps': 50})


@pytest.fixture
def short_env():
    """Episodes of exactly five steps on the ground."""
    return ClimbingEnvironment(FakePhysics(), scene=one_step_scene(), config={'max_steps': 5})


@pytest.fixture
def dqn_agent():
    return DQNBrain(STATE_SIZE, len(ACTIONS), hidden_layers=[16], mem_size=100, batch_size=4, seed=0)


@pytest.fixture
def ppo_agent():
    return PPOBrain(STATE_SIZE, len(ACTIONS), hidden_layers=[16], epochs=2, seed=0)
