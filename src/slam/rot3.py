# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
Rot3: 3D rotations stored as unit quaternions.

Chart (right-perturbation, tangent dimension 3):

    retract(v)            R · Exp(v)
    local_coordinates(S)  Log(R⁻¹ · S)

Group operations carry analytic Jacobians in the same right-perturbation
convention, so they compose directly inside expressions:

    compose(R, S)   = R S       H_R = Sᵀ,            H_S = I
    between(R, S)   = R⁻¹ S     H_R = -(R⁻¹ S)ᵀ,     H_S = I
    inverse(R)      = R⁻¹       H_R = -R
    rotate(R, p)    = R p       H_R = -R hat(p),     H_p = R
    unrotate(R, p)  = Rᵀ p      H_R = hat(Rᵀ p),     H_p = Rᵀ

Quaternions q and -q describe the same rotation; `equals` and
`local_coordinates` treat them as identical.
"""

from __future__ import annotations

import jax.numpy as jnp

from chartfg.core.math3d import (
    hat,
    quaternion_conjugate,
    quaternion_exp,
    quaternion_log,
    quaternion_multiply,
    quaternion_to_matrix,
    so3_right_jacobian_inverse,
)
from .manifold import Manifold
from .unit3 import Unit3


class Rot3(Manifold):
    """Rotation in SO(3), scalar-first unit quaternion [w, x, y, z]."""

    __slots__ = ("_q",)

    dimension = 3
    manifold_name = "rot3"

    def __init__(self, q=(1.0, 0.0, 0.0, 0.0)):
        q = jnp.asarray(q, dtype=jnp.float64).reshape(4)
        self._q = q / jnp.linalg.norm(q)

    @classmethod
    def identity(cls) -> "Rot3":
        return cls()

    @classmethod
    def expmap(cls, w) -> "Rot3":
        return cls(quaternion_exp(jnp.asarray(w, dtype=jnp.float64).reshape(3)))

    @classmethod
    def from_axis_angle(cls, axis, angle: float) -> "Rot3":
        axis = jnp.asarray(axis, dtype=jnp.float64).reshape(3)
        return cls.expmap(angle * axis / jnp.linalg.norm(axis))

    def logmap(self) -> jnp.ndarray:
        return quaternion_log(self._q)

    def quaternion(self) -> jnp.ndarray:
        return self._q

    def matrix(self) -> jnp.ndarray:
        return quaternion_to_matrix(self._q)

    # --- Group ---

    def inverse(self, return_jacobian: bool = False):
        inv = Rot3(quaternion_conjugate(self._q))
        if not return_jacobian:
            return inv
        return inv, -self.matrix()

    def compose(self, other: "Rot3", jac_self: bool = False, jac_other: bool = False):
        result = Rot3(quaternion_multiply(self._q, other._q))
        if not (jac_self or jac_other):
            return result
        H_1 = other.matrix().T if jac_self else None
        H_2 = jnp.eye(3) if jac_other else None
        return result, H_1, H_2

    def between(self, other: "Rot3", jac_self: bool = False, jac_other: bool = False):
        result = Rot3(quaternion_multiply(quaternion_conjugate(self._q), other._q))
        if not (jac_self or jac_other):
            return result
        H_1 = -result.matrix().T if jac_self else None
        H_2 = jnp.eye(3) if jac_other else None
        return result, H_1, H_2

    def __mul__(self, other: "Rot3") -> "Rot3":
        return self.compose(other)

    # --- Action on points and directions ---

    def rotate(self, point, jac_self: bool = False, jac_point: bool = False):
        R = self.matrix()
        point = jnp.asarray(point, dtype=jnp.float64).reshape(3)
        result = R @ point
        if not (jac_self or jac_point):
            return result
        H_R = -R @ hat(point) if jac_self else None
        H_p = R if jac_point else None
        return result, H_R, H_p

    def unrotate(self, point, jac_self: bool = False, jac_point: bool = False):
        Rt = self.matrix().T
        point = jnp.asarray(point, dtype=jnp.float64).reshape(3)
        result = Rt @ point
        if not (jac_self or jac_point):
            return result
        H_R = hat(result) if jac_self else None
        H_p = Rt if jac_point else None
        return result, H_R, H_p

    def rotate_direction(self, direction: Unit3, jac_self: bool = False, jac_direction: bool = False):
        """Rotated direction R·d, with Jacobians in the tangent basis of the result."""
        R = self.matrix()
        p = direction.point3()
        result = Unit3(R @ p)
        if not (jac_self or jac_direction):
            return result
        Bt = result.basis().T
        H_R = Bt @ (-R @ hat(p)) if jac_self else None
        H_d = Bt @ R @ direction.basis() if jac_direction else None
        return result, H_R, H_d

    # --- Chart ---

    def retract(self, v: jnp.ndarray) -> "Rot3":
        v = jnp.asarray(v, dtype=jnp.float64).reshape(3)
        return Rot3(quaternion_multiply(self._q, quaternion_exp(v)))

    def local_coordinates(self, other: "Rot3", return_jacobian: bool = False):
        w = quaternion_log(quaternion_multiply(quaternion_conjugate(self._q), other._q))
        if not return_jacobian:
            return w
        return w, so3_right_jacobian_inverse(w)

    def equals(self, other: "Rot3", tol: float = 1e-9) -> bool:
        return bool(jnp.allclose(self.matrix(), other.matrix(), atol=tol, rtol=0.0))

    def __repr__(self) -> str:
        w, x, y, z = (float(c) for c in self._q)
        return f"Rot3(w={w:.6g}, x={x:.6g}, y={y:.6g}, z={z:.6g})"
