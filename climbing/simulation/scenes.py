"""
Declarative course layouts and their construction on BoxPhysics.
"""
import logging
from collections import namedtuple

from .physics import Vec3

logger = logging.getLogger(__name__)

# Climbable box; index in Scene.surfaces is its level
Surface = namedtuple('Surface', ('body_id', 'position', 'size'))

Scene = namedtuple('Scene', (
    'name', 'description', 'surfaces', 'goal_platform', 'goal_position',
    'goal_height', 'start_position', 'bounds'
))


def staircase_scene(num_steps=10, step_height=1.0, step_depth=2.0, step_width=4.0):
    """Straight staircase climbing away from the agent along -z."""
    surfaces = tuple(
        Surface(
            f'step_{i}',
            Vec3(0.0, step_height * (i + 0.5), -step_depth * i),
            Vec3(step_width, step_height, step_depth)
        )
        for i in range(num_steps)
    )
    top = step_height * num_steps
    goal_z = -step_depth * num_steps
    return Scene(
        name='staircase',
        description=f'Simple staircase with {num_steps} steps',
        surfaces=surfaces,
        goal_platform=Surface('goal', Vec3(0.0, top + 0.5, goal_z), Vec3(step_width, 0.5, step_depth)),
        goal_position=Vec3(0.0, top + 0.5, goal_z),
        goal_height=top,
        start_position=Vec3(0.0, 1.0, 3.0),
        bounds={'x': (-step_width * 1.5, step_width * 1.5), 'z': (goal_z - 4.0, 8.0)}
    )


def wall_scene():
    """Vertical wall with six thin ledges."""
    ledge_x = (0.0, 1.0, -1.0, 0.0, 1.0, 0.0)
    surfaces = tuple(
        Surface(f'ledge_{i}', Vec3(x, 2.0 * (i + 1), -5.0), Vec3(2.0, 0.2, 1.0))
        for i, x in enumerate(ledge_x)
    )
    return Scene(
        name='wall',
        description='Vertical wall with ledges',
        surfaces=surfaces,
        goal_platform=Surface('goal', Vec3(0.0, 14.0, -5.0), Vec3(2.0, 0.5, 1.0)),
        goal_position=Vec3(0.0, 14.0, -4.0),
        goal_height=14.0,
        start_position=Vec3(0.0, 1.0, 0.0),
        bounds={'x': (-6.0, 6.0), 'z': (-10.0, 6.0)}
    )


SCENES = {
    'staircase': staircase_scene,
    'wall': wall_scene,
}


def get_scene(name):
    """
    Look up a scene by name.

    Raises:
        KeyError: If no scene is registered under that name
    """
    try:
        return SCENES[name]()
    except KeyError:
        raise KeyError(f"Unknown scene '{name}'. Available: {', '.join(sorted(SCENES))}") from None


def available_scenes():
    return sorted(SCENES)


def build_scene(physics, scene):
    """
    Create the static bodies of a scene.

    Args:
        physics: BoxPhysics (or anything with add_static_box)
        scene: Scene instance or scene name

    Returns:
        Scene: The scene that was built
    """
    if isinstance(scene, str):
        scene = get_scene(scene)

    for surface in scene.surfaces:
        physics.add_static_box(surface.body_id, surface.position, surface.size)
    if scene.goal_platform is not None:
        platform = scene.goal_platform
        physics.add_static_box(platform.body_id, platform.position, platform.size)

    logger.info("Built scene '%s' with %d surfaces", scene.name, len(scene.surfaces))
    return scene
