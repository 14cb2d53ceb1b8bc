"""
Physics collaborator interface and a small headless box-physics implementation.

The environment only talks to physics through PhysicsProtocol, so any engine
wrapper exposing these calls can be dropped in. BoxPhysics is enough to run
training from the command line: gravity, a ground plane at y = 0, static
axis-aligned boxes and one or more dynamic boxes.
"""
import logging
from collections import namedtuple
from typing import Protocol, List, runtime_checkable

import numpy as np

logger = logging.getLogger(__name__)

Vec3 = namedtuple('Vec3', ('x', 'y', 'z'))

GROUND_ID = 'ground'


def as_vec3(value) -> Vec3:
    """Accept a Vec3, any object with x/y/z attributes, a mapping or a sequence."""
    if isinstance(value, Vec3):
        return value
    if hasattr(value, 'x'):
        return Vec3(float(value.x), float(value.y), float(value.z))
    if isinstance(value, dict):
        return Vec3(float(value['x']), float(value['y']), float(value['z']))
    x, y, z = value
    return Vec3(float(x), float(y), float(z))


@runtime_checkable
class PhysicsProtocol(Protocol):
    """Calls the environment makes on the physics engine."""

    def create_agent_body(self, position, mass: float, size: float, shape: str = 'box'):
        ...

    def apply_force(self, body, vector) -> None:
        ...

    def apply_impulse(self, body, vector) -> None:
        ...

    def get_body_position(self, body) -> Vec3:
        ...

    def get_body_velocity(self, body) -> Vec3:
        ...

    def get_colliding_bodies(self, body) -> List[str]:
        ...

    def set_body_position(self, body, position) -> None:
        ...

    def set_body_velocity(self, body, velocity) -> None:
        ...

    def step(self) -> None:
        ...


class _Body:
    __slots__ = ('body_id', 'position', 'velocity', 'half_extents', 'mass', 'static', 'force', 'contacts')

    def __init__(self, body_id, position, half_extents, mass=0.0, static=True):
        self.body_id = body_id
        self.position = np.array(position, dtype=np.float64)
        self.velocity = np.zeros(3, dtype=np.float64)
        self.half_extents = np.array(half_extents, dtype=np.float64)
        self.mass = mass
        self.static = static
        self.force = np.zeros(3, dtype=np.float64)
        self.contacts = []


class BoxPhysics:
    """
    Headless rigid-box simulation with semi-implicit Euler integration.

    Bodies are referred to by string ids. Collisions between a dynamic body and
    the ground or a static box are resolved by pushing the body out along the
    axis of least penetration and cancelling the velocity into the obstacle.
    """

    def __init__(self, gravity=-9.82, timestep=1.0 / 60.0, friction=0.3, ground=True):
        """
        Args:
            gravity: Vertical acceleration in m/s^2
            timestep: Fixed simulation step in seconds
            friction: Coulomb-style coefficient applied while a body is supported
            ground: Whether an infinite ground plane sits at y = 0
        """
        if timestep <= 0:
            raise ValueError(f"timestep must be positive, got {timestep}")
        self.gravity = np.array([0.0, gravity, 0.0])
        self.timestep = timestep
        self.friction = friction
        self.ground = ground
        self.bodies = {}
        self.step_count = 0

    def _get(self, body) -> _Body:
        try:
            return self.bodies[body]
        except KeyError:
            raise KeyError(f"Unknown body: {body!r}") from None

    def create_agent_body(self, position, mass=1.0, size=0.5, shape='box', body_id='agent'):
        """
        Create the dynamic agent body.

        Args:
            position: Start position
            mass: Body mass in kg
            size: Edge length of the cube
            shape: Only 'box' is supported; spheres are approximated by their bounding box

        Returns:
            str: Body id
        """
        if mass <= 0:
            raise ValueError(f"mass must be positive, got {mass}")
        if shape not in ('box', 'sphere'):
            raise ValueError(f"Unsupported shape: {shape}")
        half = float(size) / 2.0
        self.bodies[body_id] = _Body(body_id, as_vec3(position), (half, half, half), mass=mass, static=False)
        logger.debug("Created agent body %s at %s", body_id, position)
        return body_id

    def add_static_box(self, body_id, position, size):
        """
        Add an immovable box.

        Args:
            body_id: Unique id, reported by get_colliding_bodies
            position: Box center
            size: Full extents (x, y, z)
        """
        if body_id in self.bodies:
            raise ValueError(f"Body id already in use: {body_id}")
        size = as_vec3(size)
        self.bodies[body_id] = _Body(body_id, as_vec3(position), (size.x / 2.0, size.y / 2.0, size.z / 2.0))
        return body_id

    def remove_body(self, body):
        self.bodies.pop(body, None)

    def static_bodies(self):
        return [b.body_id for b in self.bodies.values() if b.static]

    def apply_force(self, body, vector):
        """Accumulate a force applied during the next step only."""
        b = self._get(body)
        if not b.static:
            b.force += np.array(as_vec3(vector))

    def apply_impulse(self, body, vector):
        """Change velocity instantly by impulse / mass."""
        b = self._get(body)
        if not b.static:
            b.velocity += np.array(as_vec3(vector)) / b.mass

    def get_body_position(self, body) -> Vec3:
        return Vec3(*self._get(body).position.tolist())

    def get_body_velocity(self, body) -> Vec3:
        return Vec3(*self._get(body).velocity.tolist())

    def set_body_position(self, body, position):
        b = self._get(body)
        b.position[:] = as_vec3(position)
        b.contacts = []

    def set_body_velocity(self, body, velocity):
        self._get(body).velocity[:] = as_vec3(velocity)

    def get_colliding_bodies(self, body) -> List[str]:
        """Ids of the bodies touched during the last step."""
        return list(self._get(body).contacts)

    def step(self):
        """Advance the simulation by one fixed timestep."""
        dt = self.timestep
        statics = [b for b in self.bodies.values() if b.static]

        for body in self.bodies.values():
            if body.static:
                continue

            # Semi-implicit Euler: velocity first, then position
            supported = self._is_supported(body)
            body.velocity += (self.gravity + body.force / body.mass) * dt
            if supported:
                self._apply_friction(body, dt)
            body.position += body.velocity * dt
            body.force[:] = 0.0

            body.contacts = []
            if self.ground:
                self._resolve_ground(body)
            for other in statics:
                self._resolve_box(body, other)

        self.step_count += 1

    def _is_supported(self, body):
        for contact in body.contacts:
            if contact == GROUND_ID:
                return True
            other = self.bodies.get(contact)
            if other is not None:
                top = other.position[1] + other.half_extents[1]
                if body.position[1] - body.half_extents[1] >= top - 1e-6:
                    return True
        return False

    def _apply_friction(self, body, dt):
        horizontal = body.velocity[[0, 2]]
        speed = float(np.linalg.norm(horizontal))
        if speed == 0.0:
            return
        drop = self.friction * abs(self.gravity[1]) * dt
        scale = max(0.0, speed - drop) / speed
        body.velocity[0] *= scale
        body.velocity[2] *= scale

    def _resolve_ground(self, body):
        bottom = body.position[1] - body.half_extents[1]
        if bottom <= 0.0:
            body.position[1] = body.half_extents[1]
            if body.velocity[1] < 0.0:
                body.velocity[1] = 0.0
            body.contacts.append(GROUND_ID)

    def _resolve_box(self, body, other):
        delta = body.position - other.position
        overlap = body.half_extents + other.half_extents - np.abs(delta)
        if np.any(overlap < 0.0):
            return

        # Push out along the axis of least penetration
        axis = int(np.argmin(overlap))
        direction = 1.0 if delta[axis] >= 0.0 else -1.0
        body.position[axis] += direction * overlap[axis]
        if body.velocity[axis] * direction < 0.0:
            body.velocity[axis] = 0.0
        body.contacts.append(other.body_id)
