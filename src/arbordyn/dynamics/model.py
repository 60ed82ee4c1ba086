"""
Kinematic tree model.

Bodies live in an index-addressed arena. Body 0 is the fixed root (world);
every movable body ``i`` has exactly one degree of freedom and a parent
``parent[i] < i``, so a single forward loop visits parents before children
and a single backward loop visits children before parents.

Per-body recursive quantities are stored on the model and overwritten in
place by the algorithms in :mod:`arbordyn.dynamics.kinematics` and
:mod:`arbordyn.dynamics.algorithms`:

======================  =====================================================
``X_J``                 joint transform
``X_lambda``            parent frame -> body frame
``X_base``              base frame -> body frame
``v``, ``c``, ``a``     spatial velocity, velocity-product acceleration,
                        spatial acceleration (body coordinates)
``IA``, ``pA``          articulated inertia and bias force
``U``, ``d``, ``u``     ``IA S``, ``S^T IA S`` and ``tau - S^T pA``
``f``                   body force of the inverse dynamics pass
``Ic``                  composite rigid body inertia
======================  =====================================================

Each algorithm documents which of these it reads and writes. The model must
not be shared between concurrent solves.
"""
from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy.spatial.transform import Rotation as ScR

from arbordyn.dynamics.body import Body, FixedBody
from arbordyn.dynamics.joints import Joint, JointType
from arbordyn.utils.spatial import SpatialTransform
from arbordyn.utils.validation import validate_vector3

FIXED_BODY_DISCRIMINATOR = 2**30
ROOT_NAME = "ROOT"
DEFAULT_GRAVITY = (0.0, 0.0, -9.81)
SPHERICAL_EULER_SEQUENCE = "ZYX"  # intrinsic, matches Joint.spherical axes


class Model:
    """
    Tree of rigid bodies connected by single-axis joints.

    Parameters
    ----------
    gravity : array-like
        Gravitational acceleration in base coordinates [m/s²]

    Attributes
    ----------
    parent : list[int]
        Parent index of every body (``parent[0] == 0``)
    bodies : list[Body]
        Inertial data of every movable body, including merged fixed bodies
    fixed_bodies : list[FixedBody]
        Bodies attached through fixed joints, addressed with ids starting at
        ``FIXED_BODY_DISCRIMINATOR``
    spherical_q_index : dict[int, int]
        First joint coordinate of every body attached with
        :meth:`Joint.spherical`

    Examples
    --------
    >>> model = Model()
    >>> body = Body(1.0, [0.5, 0.0, 0.0], [0.1, 0.1, 0.1])
    >>> b1 = model.add_body(0, xtrans([0, 0, 0]), Joint.revolute([0, 0, 1]), body)
    >>> b2 = model.append_body(xtrans([1, 0, 0]), Joint.revolute([0, 0, 1]), body)
    """

    def __init__(self, gravity=DEFAULT_GRAVITY) -> None:
        self.gravity = validate_vector3(gravity, "Gravity")

        self.parent: list[int] = [0]
        self.bodies: list[Body] = [Body(0.0)]
        self.joint_types: list[JointType] = [JointType.FIXED]
        self.S: list[NDArray[np.float64]] = [np.zeros(6)]
        self.X_T: list[SpatialTransform] = [SpatialTransform()]
        self.I: list[NDArray[np.float64]] = [np.zeros((6, 6))]

        self.X_J: list[SpatialTransform] = [SpatialTransform()]
        self.X_lambda: list[SpatialTransform] = [SpatialTransform()]
        self.X_base: list[SpatialTransform] = [SpatialTransform()]
        self.v: list[NDArray[np.float64]] = [np.zeros(6)]
        self.c: list[NDArray[np.float64]] = [np.zeros(6)]
        self.a: list[NDArray[np.float64]] = [np.zeros(6)]
        self.IA: list[NDArray[np.float64]] = [np.zeros((6, 6))]
        self.pA: list[NDArray[np.float64]] = [np.zeros(6)]
        self.U: list[NDArray[np.float64]] = [np.zeros(6)]
        self.d: list[float] = [0.0]
        self.u: list[float] = [0.0]
        self.f: list[NDArray[np.float64]] = [np.zeros(6)]
        self.Ic: list[NDArray[np.float64]] = [np.zeros((6, 6))]

        self.fixed_bodies: list[FixedBody] = []
        self.body_names: dict[str, int] = {ROOT_NAME: 0}
        self.spherical_q_index: dict[int, int] = {}
        self.previously_added_body_id = 0

    @property
    def dof_count(self) -> int:
        return len(self.parent) - 1

    @property
    def q_size(self) -> int:
        return self.dof_count

    @property
    def qdot_size(self) -> int:
        return self.dof_count

    @property
    def body_count(self) -> int:
        """Number of movable bodies plus the root."""
        return len(self.parent)

    @staticmethod
    def q_index(body_id: int) -> int:
        return body_id - 1

    def is_fixed_body_id(self, body_id: int) -> bool:
        return (FIXED_BODY_DISCRIMINATOR <= body_id
                < FIXED_BODY_DISCRIMINATOR + len(self.fixed_bodies))

    def is_body_id(self, body_id: int) -> bool:
        return 0 < body_id < self.body_count or self.is_fixed_body_id(body_id)

    def fixed_body(self, body_id: int) -> FixedBody:
        return self.fixed_bodies[body_id - FIXED_BODY_DISCRIMINATOR]

    def movable_body_id(self, body_id: int) -> int:
        """Resolve a fixed body id to the movable body it is attached to."""
        if self.is_fixed_body_id(body_id):
            return self.fixed_body(body_id).movable_parent
        return body_id

    def get_body_id(self, name: str) -> int:
        try:
            return self.body_names[name]
        except KeyError:
            raise KeyError(f"No body named '{name}'") from None

    def add_body(
        self,
        parent_id: int,
        joint_frame: SpatialTransform,
        joint: Joint,
        body: Body,
        name: str | None = None,
    ) -> int:
        """
        Attach ``body`` to ``parent_id`` through ``joint``.

        Parameters
        ----------
        parent_id : int
            Id of the parent body (movable, fixed or the root 0)
        joint_frame : SpatialTransform
            Transform from the parent frame to the joint frame at q = 0
        joint : Joint
            Joint type; multi-axis joints create massless virtual bodies
        body : Body
            Inertial data of the new body
        name : str | None
            Optional unique name

        Returns
        -------
        int
            Id of the new body. For fixed joints this is a fixed body id.
        """
        if parent_id != 0 and not self.is_body_id(parent_id):
            raise ValueError(f"Unknown parent body id {parent_id}")
        if name is not None and name in self.body_names:
            raise ValueError(f"A body named '{name}' already exists")

        if self.is_fixed_body_id(parent_id):
            fixed_parent = self.fixed_body(parent_id)
            parent_id = fixed_parent.movable_parent
            joint_frame = joint_frame * fixed_parent.parent_transform

        if joint.is_fixed:
            body_id = self._add_fixed_body(parent_id, joint_frame, body)
        else:
            body_id = parent_id
            first_q_index = self.dof_count
            last = joint.dof_count - 1
            for k, (axis, kind) in enumerate(zip(joint.axes, joint.types)):
                frame = joint_frame if k == 0 else SpatialTransform()
                link = body if k == last else Body(0.0)
                body_id = self._add_single_dof_body(body_id, frame, axis, kind, link)
            if joint.is_spherical:
                self.spherical_q_index[body_id] = first_q_index

        if name is not None:
            self.body_names[name] = body_id
        self.previously_added_body_id = body_id
        return body_id

    def append_body(
        self,
        joint_frame: SpatialTransform,
        joint: Joint,
        body: Body,
        name: str | None = None,
    ) -> int:
        """Attach ``body`` to the most recently added body."""
        return self.add_body(self.previously_added_body_id, joint_frame, joint, body, name)

    def _add_single_dof_body(
        self,
        parent_id: int,
        joint_frame: SpatialTransform,
        axis: NDArray[np.float64],
        kind: JointType,
        body: Body,
    ) -> int:
        self.parent.append(parent_id)
        self.bodies.append(body)
        self.joint_types.append(kind)
        self.S.append(axis.copy())
        self.X_T.append(joint_frame)
        self.I.append(body.spatial_inertia())

        self.X_J.append(SpatialTransform())
        self.X_lambda.append(SpatialTransform())
        self.X_base.append(SpatialTransform())
        self.v.append(np.zeros(6))
        self.c.append(np.zeros(6))
        self.a.append(np.zeros(6))
        self.IA.append(np.zeros((6, 6)))
        self.pA.append(np.zeros(6))
        self.U.append(np.zeros(6))
        self.d.append(0.0)
        self.u.append(0.0)
        self.f.append(np.zeros(6))
        self.Ic.append(np.zeros((6, 6)))
        return len(self.parent) - 1

    def _add_fixed_body(self, movable_parent: int, transform: SpatialTransform, body: Body) -> int:
        self.fixed_bodies.append(FixedBody(body, movable_parent, transform))
        if movable_parent != 0:
            merged = self.bodies[movable_parent].join(transform, body)
            self.bodies[movable_parent] = merged
            self.I[movable_parent] = merged.spatial_inertia()
        return FIXED_BODY_DISCRIMINATOR + len(self.fixed_bodies) - 1

    def _spherical_slice(self, body_id: int) -> slice:
        try:
            start = self.spherical_q_index[body_id]
        except KeyError:
            raise ValueError(f"Body {body_id} is not attached through a spherical joint") from None
        return slice(start, start + 3)

    def get_quaternion(self, body_id: int, q: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Orientation of a spherical joint as a unit quaternion ``[x, y, z, w]``.

        The quaternion rotates body coordinates into parent joint coordinates.
        """
        angles = np.asarray(q, dtype=np.float64)[self._spherical_slice(body_id)]
        return ScR.from_euler(SPHERICAL_EULER_SEQUENCE, angles).as_quat()

    def set_quaternion(
        self, body_id: int, quaternion: NDArray[np.float64], q: NDArray[np.float64]
    ) -> None:
        """Write the joint angles of a spherical joint into ``q`` in place."""
        q[self._spherical_slice(body_id)] = ScR.from_quat(quaternion).as_euler(
            SPHERICAL_EULER_SEQUENCE
        )

    def ancestors(self, body_id: int):
        """Yield ``body_id`` and its movable ancestors, leaf to root."""
        i = self.movable_body_id(body_id)
        while i != 0:
            yield i
            i = self.parent[i]

    def __repr__(self) -> str:
        return (f"Model(dof_count={self.dof_count}, "
                f"fixed_bodies={len(self.fixed_bodies)})")
