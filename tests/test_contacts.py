"""
Contact solvers: statics, agreement between formulations, constraint
satisfaction, impacts and failure modes.
"""
import numpy as np
import pytest

from arbordyn.core.contacts import (
    calc_contact_jacobian,
    compute_contact_impulses_lagrangian,
    forward_dynamics_acceleration_deltas,
    forward_dynamics_apply_constraint_forces,
    forward_dynamics_contacts,
    forward_dynamics_contacts_lagrangian,
    forward_dynamics_contacts_lagrangian_sparse,
)
from arbordyn.dynamics.algorithms import (
    composite_rigid_body_algorithm,
    forward_dynamics,
    inverse_dynamics,
)
from arbordyn.dynamics.body import Body
from arbordyn.dynamics.constraints import ConstraintSet
from arbordyn.dynamics.joints import Joint
from arbordyn.dynamics.kinematics import (
    calc_point_acceleration,
    calc_point_jacobian,
    calc_point_velocity,
)
from arbordyn.dynamics.model import Model
from arbordyn.exceptions import SingularSystemError
from arbordyn.utils.linalg import LinearSolver
from arbordyn.utils.spatial import SpatialTransform, xtrans
from conftest import BOX_HALF_HEIGHT, BOX_MASS, random_state

G = 9.81
TOL = dict(rtol=1e-8, atol=1e-8)

DENSE_CASES = [
    (forward_dynamics_contacts_lagrangian, m) for m in LinearSolver if m is not LinearSolver.LLT
]
SPARSE_CASES = [
    (forward_dynamics_contacts_lagrangian_sparse, m)
    for m in (LinearSolver.PARTIAL_PIV_LU, LinearSolver.COL_PIV_HOUSEHOLDER_QR,
              LinearSolver.GAUSS_ELIM_PIVOT)
]
TEST_FORCE_CASES = [
    (forward_dynamics_contacts, m)
    for m in (LinearSolver.PARTIAL_PIV_LU, LinearSolver.COL_PIV_HOUSEHOLDER_QR,
              LinearSolver.HOUSEHOLDER_QR, LinearSolver.GAUSS_ELIM_PIVOT)
]
ALL_CASES = DENSE_CASES + SPARSE_CASES + TEST_FORCE_CASES
CASE_IDS = [f"{solver.__name__}-{method.name}" for solver, method in ALL_CASES]


def _solve(solver, method, model, q, qdot, tau, cs):
    cs.clear()
    qddot = np.zeros(model.dof_count)
    solver(model, q, qdot, tau, cs, qddot, method)
    return qddot


def _box_on_ground(model, box, points):
    cs = ConstraintSet()
    for p in points:
        cs.add_constraint(box, p, [0.0, 0.0, 1.0])
    cs.bind(model)
    return cs


def _tree_constraints(model, ids, rng):
    cs = ConstraintSet()
    normal = rng.normal(size=3)
    cs.add_constraint(ids["tip"], [0.05, 0.02, 0.0], normal / np.linalg.norm(normal), name="tip")
    cs.add_constraint(ids["slider"], [0.0, 0.1, -0.1], [1.0, 0.0, 0.0], name="slider_x",
                      normal_acceleration=0.3)
    cs.add_constraint(ids["arm"], [0.0, -0.4, 0.0], [0.0, 0.0, 1.0], name="arm_z")
    cs.bind(model)
    return cs


# -----------------------------------------------------------------------------
# Statics
# -----------------------------------------------------------------------------

@pytest.mark.parametrize("solver, method", ALL_CASES, ids=CASE_IDS)
def test_resting_box_carries_its_weight(free_box, solver, method):
    model, box = free_box
    cs = _box_on_ground(model, box, [[0.0, 0.0, -BOX_HALF_HEIGHT]])
    qddot = _solve(solver, method, model, np.zeros(6), np.zeros(6), np.zeros(6), cs)
    np.testing.assert_allclose(qddot, 0.0, atol=1e-10)
    assert cs.force[0] == pytest.approx(BOX_MASS * G)


@pytest.mark.parametrize("solver, method", ALL_CASES, ids=CASE_IDS)
def test_three_legged_box_load_distribution(free_box, solver, method):
    model, box = free_box
    h = -BOX_HALF_HEIGHT
    cs = _box_on_ground(model, box, [[0.5, 0.5, h], [-0.5, 0.5, h], [0.0, -0.5, h]])
    qddot = _solve(solver, method, model, np.zeros(6), np.zeros(6), np.zeros(6), cs)
    weight = BOX_MASS * G
    np.testing.assert_allclose(qddot, 0.0, atol=1e-10)
    np.testing.assert_allclose(cs.force, [weight / 4, weight / 4, weight / 2], rtol=1e-9)


def test_target_acceleration_lifts_box(free_box):
    model, box = free_box
    cs = ConstraintSet()
    cs.add_constraint(box, [0.0, 0.0, -BOX_HALF_HEIGHT], [0.0, 0.0, 1.0], normal_acceleration=2.0)
    cs.bind(model)
    qddot = _solve(forward_dynamics_contacts, LinearSolver.COL_PIV_HOUSEHOLDER_QR,
                   model, np.zeros(6), np.zeros(6), np.zeros(6), cs)
    assert qddot[2] == pytest.approx(2.0)
    assert cs.force[0] == pytest.approx(BOX_MASS * (G + 2.0))


# -----------------------------------------------------------------------------
# Agreement and constraint satisfaction
# -----------------------------------------------------------------------------

@pytest.fixture
def tree_problem(branched_tree, rng):
    model, ids = branched_tree
    cs = _tree_constraints(model, ids, rng)
    q, qdot, tau = random_state(model, rng)
    return model, cs, q, qdot, tau


@pytest.mark.parametrize("solver, method", ALL_CASES, ids=CASE_IDS)
def test_solvers_agree_on_branched_tree(tree_problem, solver, method):
    model, cs, q, qdot, tau = tree_problem
    reference = _solve(forward_dynamics_contacts_lagrangian, LinearSolver.PARTIAL_PIV_LU,
                       model, q, qdot, tau, cs)
    reference_force = cs.force.copy()

    qddot = _solve(solver, method, model, q, qdot, tau, cs)

    np.testing.assert_allclose(qddot, reference, **TOL)
    np.testing.assert_allclose(cs.force, reference_force, **TOL)


@pytest.mark.parametrize("solver, method", ALL_CASES, ids=CASE_IDS)
def test_constraints_are_satisfied(tree_problem, solver, method):
    model, cs, q, qdot, tau = tree_problem
    qddot = _solve(solver, method, model, q, qdot, tau, cs)
    for i in range(cs.size()):
        a = calc_point_acceleration(model, q, qdot, qddot, cs.body[i], cs.point[i])
        assert cs.normal[i] @ a == pytest.approx(cs.acceleration[i], abs=1e-8)


def test_constraint_forces_explain_acceleration(tree_problem):
    """H qddot + C = tau + G^T force."""
    model, cs, q, qdot, tau = tree_problem
    qddot = _solve(forward_dynamics_contacts, LinearSolver.COL_PIV_HOUSEHOLDER_QR,
                   model, q, qdot, tau, cs)
    n = model.dof_count
    C = inverse_dynamics(model, q, qdot, np.zeros(n))
    H = composite_rigid_body_algorithm(model, q)
    G_mat = calc_contact_jacobian(model, q, cs, np.zeros((cs.size(), n)))
    np.testing.assert_allclose(H @ qddot + C, tau + G_mat.T @ cs.force, atol=1e-8)


def test_free_box_solvers_agree(free_box, rng):
    model, box = free_box
    cs = ConstraintSet()
    for axis in np.eye(3):
        cs.add_constraint(box, [0.2, -0.1, -BOX_HALF_HEIGHT], axis)
    cs.bind(model)
    q, qdot, tau = random_state(model, rng)

    dense = _solve(forward_dynamics_contacts_lagrangian, LinearSolver.COL_PIV_HOUSEHOLDER_QR,
                   model, q, qdot, tau, cs)
    dense_force = cs.force.copy()
    sparse = _solve(forward_dynamics_contacts_lagrangian_sparse,
                    LinearSolver.COL_PIV_HOUSEHOLDER_QR, model, q, qdot, tau, cs)
    sparse_force = cs.force.copy()
    test_forces = _solve(forward_dynamics_contacts, LinearSolver.COL_PIV_HOUSEHOLDER_QR,
                         model, q, qdot, tau, cs)

    np.testing.assert_allclose(sparse, dense, **TOL)
    np.testing.assert_allclose(test_forces, dense, **TOL)
    np.testing.assert_allclose(sparse_force, dense_force, **TOL)
    np.testing.assert_allclose(cs.force, dense_force, **TOL)


def test_contact_jacobian_rows(tree_problem):
    model, cs, q, _, _ = tree_problem
    G_mat = calc_contact_jacobian(model, q, cs, np.zeros((cs.size(), model.dof_count)))
    for i in range(cs.size()):
        J = calc_point_jacobian(model, q, cs.body[i], cs.point[i])
        np.testing.assert_allclose(G_mat[i], cs.normal[i] @ J, atol=1e-12)


def test_contact_jacobian_shares_point_evaluations(free_box):
    model, box = free_box
    cs = ConstraintSet()
    for axis in np.eye(3):
        cs.add_constraint(box, [0.0, 0.0, -BOX_HALF_HEIGHT], axis)
    cs.bind(model)
    G_mat = calc_contact_jacobian(model, np.zeros(6), cs, np.zeros((3, 6)))
    # rows stacked along x, y, z reproduce the point Jacobian itself
    np.testing.assert_allclose(G_mat, cs.Gi, atol=1e-12)


# -----------------------------------------------------------------------------
# Test-force internals
# -----------------------------------------------------------------------------

def test_compliance_operator_is_symmetric(tree_problem):
    model, cs, q, qdot, tau = tree_problem
    _solve(forward_dynamics_contacts, LinearSolver.COL_PIV_HOUSEHOLDER_QR, model, q, qdot, tau, cs)
    K = cs.K.copy()
    np.testing.assert_allclose(K, K.T, atol=1e-10)

    H = composite_rigid_body_algorithm(model, q)
    G_mat = calc_contact_jacobian(model, q, cs, np.zeros((cs.size(), model.dof_count)), False)
    np.testing.assert_allclose(K, -G_mat @ np.linalg.solve(H, G_mat.T), atol=1e-10)


def test_acceleration_deltas_match_external_force(branched_tree, rng):
    model, ids = branched_tree
    cs = _tree_constraints(model, ids, rng)
    q, qdot, tau = random_state(model, rng)
    f_ext = np.zeros((model.body_count, 6))
    body_id = ids["slider"]
    f_ext[body_id] = rng.normal(size=6)

    qddot_free = forward_dynamics(model, q, qdot, tau)
    qddot_forced = forward_dynamics(model, q, qdot, tau, f_ext=f_ext)

    forward_dynamics(model, q, qdot, tau)
    delta = np.zeros(model.dof_count)
    forward_dynamics_acceleration_deltas(model, cs, delta, body_id, f_ext)

    np.testing.assert_allclose(delta, qddot_forced - qddot_free, atol=1e-10)
    # bodies off the ancestor chain of the slider receive no bias change
    assert cs.d_u[ids["upper"]] == 0.0


def test_apply_constraint_forces_matches_forward_dynamics(branched_tree, rng):
    model, ids = branched_tree
    cs = _tree_constraints(model, ids, rng)
    q, qdot, tau = random_state(model, rng)
    cs.f_ext_constraints[ids["arm"]] = rng.normal(size=6)
    cs.f_ext_constraints[ids["upper"]] = rng.normal(size=6)

    expected = forward_dynamics(model, q, qdot, tau, f_ext=cs.f_ext_constraints)

    forward_dynamics(model, q, qdot, tau)
    qddot = np.zeros(model.dof_count)
    forward_dynamics_apply_constraint_forces(model, tau, cs, qddot)
    np.testing.assert_allclose(qddot, expected, atol=1e-10)


# -----------------------------------------------------------------------------
# Lifecycle
# -----------------------------------------------------------------------------

@pytest.mark.parametrize("solver, method", ALL_CASES, ids=CASE_IDS)
def test_empty_set_gives_unconstrained_dynamics(branched_tree, rng, solver, method):
    model, _ = branched_tree
    cs = ConstraintSet()
    cs.bind(model)
    q, qdot, tau = random_state(model, rng)
    qddot = _solve(solver, method, model, q, qdot, tau, cs)
    np.testing.assert_allclose(qddot, forward_dynamics(model, q, qdot, tau), atol=1e-10)


def test_clear_and_resolve_matches_fresh_set(branched_tree):
    model, ids = branched_tree
    q, qdot, tau = random_state(model, np.random.default_rng(7))
    reused = _tree_constraints(model, ids, np.random.default_rng(3))
    forward_dynamics_contacts(model, q + 0.1, qdot, tau, reused)
    reused.clear()
    result = np.zeros(model.dof_count)
    forward_dynamics_contacts(model, q, qdot, tau, reused, result)

    fresh = _tree_constraints(model, ids, np.random.default_rng(3))
    expected = forward_dynamics_contacts(model, q, qdot, tau, fresh)

    np.testing.assert_allclose(result, expected, atol=1e-12)
    np.testing.assert_allclose(reused.force, fresh.force, atol=1e-12)


def test_contact_on_fixed_body_equals_contact_on_parent():
    def build():
        model = Model()
        box = model.add_body(0, SpatialTransform(), Joint.floating_base(),
                             Body(BOX_MASS, [0.0, 0.0, 0.0], [0.2, 0.3, 0.4]))
        foot = model.add_body(box, xtrans([0.3, 0.0, -BOX_HALF_HEIGHT]), Joint.fixed(), Body(0.0))
        return model, box, foot

    model, box, foot = build()
    on_foot = ConstraintSet()
    on_foot.add_constraint(foot, [0.0, 0.0, 0.0], [0.0, 0.0, 1.0])
    on_foot.add_constraint(foot, [0.0, 0.0, 0.0], [1.0, 0.0, 0.0])
    on_foot.bind(model)

    on_box = ConstraintSet()
    on_box.add_constraint(box, [0.3, 0.0, -BOX_HALF_HEIGHT], [0.0, 0.0, 1.0])
    on_box.add_constraint(box, [0.3, 0.0, -BOX_HALF_HEIGHT], [1.0, 0.0, 0.0])
    on_box.bind(model)

    q, qdot, tau = random_state(model, np.random.default_rng(11))
    for solver, method in ALL_CASES:
        expected = _solve(solver, method, model, q, qdot, tau, on_box)
        result = _solve(solver, method, model, q, qdot, tau, on_foot)
        np.testing.assert_allclose(result, expected, **TOL)
        np.testing.assert_allclose(on_foot.force, on_box.force, **TOL)


# -----------------------------------------------------------------------------
# Failure modes
# -----------------------------------------------------------------------------

@pytest.mark.parametrize("solver, method", ALL_CASES, ids=CASE_IDS)
def test_contradictory_constraints_are_singular(free_box, solver, method):
    model, box = free_box
    cs = ConstraintSet()
    cs.add_constraint(box, [0.0, 0.0, -BOX_HALF_HEIGHT], [0.0, 0.0, 1.0])
    cs.add_constraint(box, [0.0, 0.0, -BOX_HALF_HEIGHT], [0.0, 0.0, 1.0], normal_acceleration=1.0)
    cs.bind(model)
    with pytest.raises(SingularSystemError):
        _solve(solver, method, model, np.zeros(6), np.zeros(6), np.zeros(6), cs)


def test_dense_llt_rejects_kkt_matrix(free_box):
    model, box = free_box
    cs = _box_on_ground(model, box, [[0.0, 0.0, -BOX_HALF_HEIGHT]])
    with pytest.raises(SingularSystemError, match="LLT"):
        _solve(forward_dynamics_contacts_lagrangian, LinearSolver.LLT,
               model, np.zeros(6), np.zeros(6), np.zeros(6), cs)


@pytest.mark.parametrize("solver, method", [
    (forward_dynamics_contacts_lagrangian_sparse, LinearSolver.HOUSEHOLDER_QR),
    (forward_dynamics_contacts_lagrangian_sparse, LinearSolver.LLT),
    (forward_dynamics_contacts, LinearSolver.LLT),
])
def test_unsupported_linear_solver_raises(free_box, solver, method):
    model, box = free_box
    cs = _box_on_ground(model, box, [[0.0, 0.0, -BOX_HALF_HEIGHT]])
    with pytest.raises(ValueError, match="not supported"):
        _solve(solver, method, model, np.zeros(6), np.zeros(6), np.zeros(6), cs)


def test_set_default_solver_is_used(free_box):
    model, box = free_box
    cs = ConstraintSet(linear_solver=LinearSolver.LLT)
    cs.add_constraint(box, [0.0, 0.0, -BOX_HALF_HEIGHT], [0.0, 0.0, 1.0])
    cs.bind(model)
    with pytest.raises(ValueError, match="not supported"):
        forward_dynamics_contacts(model, np.zeros(6), np.zeros(6), np.zeros(6), cs)


# -----------------------------------------------------------------------------
# Impacts
# -----------------------------------------------------------------------------

@pytest.mark.parametrize("method", list(m for m in LinearSolver if m is not LinearSolver.LLT))
def test_plastic_impact_stops_normal_velocity(free_box, method):
    model, box = free_box
    cs = _box_on_ground(model, box, [[0.0, 0.0, -BOX_HALF_HEIGHT]])
    qdot_minus = np.array([0.3, 0.0, -1.0, 0.0, 0.0, 0.0])
    qdot_plus = compute_contact_impulses_lagrangian(model, np.zeros(6), qdot_minus, cs,
                                                    linear_solver=method)
    np.testing.assert_allclose(qdot_plus, [0.3, 0.0, 0.0, 0.0, 0.0, 0.0], atol=1e-10)
    assert cs.impulse[0] == pytest.approx(BOX_MASS * 1.0)


def test_impact_with_target_velocity(free_box):
    model, box = free_box
    cs = _box_on_ground(model, box, [[0.0, 0.0, -BOX_HALF_HEIGHT]])
    cs.v_plus[0] = 0.5
    qdot_plus = np.zeros(6)
    compute_contact_impulses_lagrangian(model, np.zeros(6), np.array([0, 0, -1.0, 0, 0, 0]),
                                        cs, qdot_plus)
    assert qdot_plus[2] == pytest.approx(0.5)
    assert cs.impulse[0] == pytest.approx(BOX_MASS * 1.5)


def test_impact_on_branched_tree(tree_problem):
    model, cs, q, qdot_minus, _ = tree_problem
    cs.v_plus[:] = [0.0, 0.2, -0.1]
    qdot_plus = compute_contact_impulses_lagrangian(model, q, qdot_minus, cs)

    for i in range(cs.size()):
        v = calc_point_velocity(model, q, qdot_plus, cs.body[i], cs.point[i])
        assert cs.normal[i] @ v == pytest.approx(cs.v_plus[i], abs=1e-9)

    H = composite_rigid_body_algorithm(model, q)
    G_mat = calc_contact_jacobian(model, q, cs, np.zeros((cs.size(), model.dof_count)), False)
    np.testing.assert_allclose(H @ (qdot_plus - qdot_minus), G_mat.T @ cs.impulse, atol=1e-9)


# -----------------------------------------------------------------------------
# Spherical joints
# -----------------------------------------------------------------------------

def _ball_and_hinge(joint):
    model = Model()
    body = Body(1.0, [1.0, 0.0, 0.0], [1.0, 1.0, 1.0])
    ball = model.add_body(0, xtrans([0.0, 0.0, 0.0]), joint, body)
    hinge = model.append_body(xtrans([1.0, 0.0, 0.0]), Joint.revolute([0, 1, 0]), body)
    cs = ConstraintSet()
    cs.add_constraint(hinge, [1.0, 0.0, 0.0], [0.0, 0.0, 1.0])
    cs.add_constraint(hinge, [1.0, 0.0, 0.0], [1.0, 0.0, 0.0])
    cs.add_constraint(ball, [0.5, 0.0, 0.0], [0.0, 0.0, 1.0])
    cs.bind(model)
    return model, cs


def test_spherical_joint_matches_explicit_rotations():
    spherical, spherical_cs = _ball_and_hinge(Joint.spherical())
    emulated, emulated_cs = _ball_and_hinge(
        Joint([0, 0, 1, 0, 0, 0], [0, 1, 0, 0, 0, 0], [1, 0, 0, 0, 0, 0]))
    q, qdot, tau = random_state(spherical, np.random.default_rng(5))

    for solver, method in ALL_CASES:
        expected = _solve(solver, method, emulated, q, qdot, tau, emulated_cs)
        result = _solve(solver, method, spherical, q, qdot, tau, spherical_cs)
        np.testing.assert_allclose(result, expected, **TOL)
        np.testing.assert_allclose(spherical_cs.force, emulated_cs.force, **TOL)
        for i in range(spherical_cs.size()):
            a = calc_point_acceleration(spherical, q, qdot, result,
                                        spherical_cs.body[i], spherical_cs.point[i])
            assert spherical_cs.normal[i] @ a == pytest.approx(0.0, abs=1e-8)


def test_spherical_joint_set_from_quaternion():
    model, cs = _ball_and_hinge(Joint.spherical())
    ball = model.parent[model.body_count - 1]
    q = np.zeros(model.q_size)
    model.set_quaternion(ball, [0.0, 0.0, np.sin(0.25), np.cos(0.25)], q)
    # half angle 0.25 about z is a pure yaw of 0.5 rad
    np.testing.assert_allclose(q, [0.5, 0.0, 0.0, 0.0], atol=1e-12)

    qddot = _solve(forward_dynamics_contacts, LinearSolver.COL_PIV_HOUSEHOLDER_QR,
                   model, q, np.zeros(4), np.zeros(4), cs)
    reference = _solve(forward_dynamics_contacts_lagrangian, LinearSolver.PARTIAL_PIV_LU,
                       model, q, np.zeros(4), np.zeros(4), cs)
    np.testing.assert_allclose(qddot, reference, **TOL)


# -----------------------------------------------------------------------------
# Agreement over tree sizes
# -----------------------------------------------------------------------------

def _floating_chain(extra_links, rng):
    """Floating base followed by a chain of hinges about random coordinate axes."""
    model = Model()
    body_ids = [model.add_body(0, SpatialTransform(), Joint.floating_base(),
                               Body(2.0, [0.0, 0.0, 0.0], [0.2, 0.3, 0.4]))]
    for _ in range(extra_links):
        axis = np.eye(3)[rng.integers(3)]
        body_ids.append(model.append_body(
            xtrans([0.0, 0.0, -0.4]), Joint.revolute(axis),
            Body(1.0, [0.0, 0.0, -0.2], [0.02, 0.02, 0.01])))
    return model, body_ids


@pytest.mark.parametrize("extra_links", [1, 2, 7, 15])
def test_solvers_agree_over_chain_sizes(extra_links):
    rng = np.random.default_rng(100 + extra_links)
    model, body_ids = _floating_chain(extra_links, rng)
    cs = ConstraintSet()
    for _ in range((extra_links + 1) // 2):
        normal = rng.normal(size=3)
        cs.add_constraint(body_ids[rng.integers(len(body_ids))], rng.uniform(-0.2, 0.2, 3),
                          normal / np.linalg.norm(normal))
    cs.bind(model)
    q, qdot, tau = random_state(model, rng)

    reference = _solve(forward_dynamics_contacts_lagrangian, LinearSolver.PARTIAL_PIV_LU,
                       model, q, qdot, tau, cs)
    reference_force = cs.force.copy()
    for solver, method in ALL_CASES:
        qddot = _solve(solver, method, model, q, qdot, tau, cs)
        np.testing.assert_allclose(qddot, reference, rtol=1e-7, atol=1e-7)
        np.testing.assert_allclose(cs.force, reference_force, rtol=1e-7, atol=1e-7)

    _solve(forward_dynamics_contacts, LinearSolver.COL_PIV_HOUSEHOLDER_QR, model, q, qdot, tau, cs)
    np.testing.assert_allclose(cs.K, cs.K.T, atol=1e-9)
