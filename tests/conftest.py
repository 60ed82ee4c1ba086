import os
import sys

import numpy as np
import pytest

# Get the path to the project root (one level up from 'tests')
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
src_path = os.path.join(project_root, 'src')

# Add 'src' to sys.path
sys.path.insert(0, src_path)

from arbordyn.dynamics.body import Body  # noqa: E402
from arbordyn.dynamics.joints import Joint  # noqa: E402
from arbordyn.dynamics.model import Model  # noqa: E402
from arbordyn.utils.spatial import SpatialTransform, xrotx, xtrans  # noqa: E402


# -----------------------------------------------------------------------------
# Model fixtures
# -----------------------------------------------------------------------------

BOX_MASS = 2.0
BOX_HALF_HEIGHT = 0.5


@pytest.fixture
def rng():
    """Seeded random generator for reproducible states."""
    return np.random.default_rng(1234)


@pytest.fixture
def free_box():
    """
    Box on a floating base (6 dofs, com at the body origin).

    Returns (model, body_id).
    """
    model = Model()
    body = Body(BOX_MASS, [0.0, 0.0, 0.0], [0.2, 0.3, 0.4])
    body_id = model.add_body(0, SpatialTransform(), Joint.floating_base(), body, name="box")
    return model, body_id


@pytest.fixture
def pendulum_chain():
    """
    Three-link planar chain swinging about y, links 1 m long along -z.

    Returns (model, [link ids]).
    """
    model = Model()
    link = Body(1.0, [0.0, 0.0, -0.5], [0.1, 0.1, 0.01])
    ids = [model.add_body(0, SpatialTransform(), Joint.revolute([0, 1, 0]), link, name="link1")]
    ids.append(model.append_body(xtrans([0, 0, -1]), Joint.revolute([0, 1, 0]), link, name="link2"))
    ids.append(model.append_body(xtrans([0, 0, -1]), Joint.revolute([0, 1, 0]), link, name="link3"))
    return model, ids


@pytest.fixture
def branched_tree():
    """
    Tree with two branches, mixed joint types and a fixed body.

    Topology::

        ROOT - trunk(rz) - upper(ry) - tip (fixed)
                        \\- arm(rx) - slider(px)

    Returns (model, dict name -> id).
    """
    model = Model()
    ids = {}
    ids["trunk"] = model.add_body(
        0, xtrans([0, 0, 0.2]), Joint.revolute([0, 0, 1]),
        Body(3.0, [0.0, 0.0, 0.3], [0.2, 0.2, 0.05]), name="trunk")
    ids["upper"] = model.add_body(
        ids["trunk"], xtrans([0.0, 0.1, 0.6]), Joint.revolute([0, 1, 0]),
        Body(1.5, [0.4, 0.0, 0.0], [0.01, 0.08, 0.08]), name="upper")
    ids["tip"] = model.add_body(
        ids["upper"], xtrans([0.8, 0.0, 0.0]), Joint.fixed(),
        Body(0.5, [0.05, 0.0, 0.0], [0.001, 0.001, 0.001]), name="tip")
    ids["arm"] = model.add_body(
        ids["trunk"], xrotx(0.3) * xtrans([0.0, -0.1, 0.5]), Joint.revolute([1, 0, 0]),
        Body(1.0, [0.0, -0.3, 0.0], [0.03, 0.005, 0.03]), name="arm")
    ids["slider"] = model.add_body(
        ids["arm"], xtrans([0.0, -0.6, 0.0]), Joint.prismatic([1, 0, 0]),
        Body(0.7, [0.0, 0.0, -0.05], [0.002, 0.002, 0.002]), name="slider")
    return model, ids


def random_state(model: Model, rng: np.random.Generator):
    """Random (q, qdot, tau) of moderate magnitude."""
    n = model.dof_count
    q = rng.uniform(-0.8, 0.8, n)
    qdot = rng.uniform(-1.0, 1.0, n)
    tau = rng.uniform(-2.0, 2.0, n)
    return q, qdot, tau
