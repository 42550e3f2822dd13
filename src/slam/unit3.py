# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
Unit3: a direction, i.e. a point on the unit sphere S².

The tangent plane at p is parameterized by an orthonormal basis B = [b1 b2]
(3×2), chosen deterministically from p alone:

    axis = the world axis with the smallest |projection| onto p
           (ties prefer x, then y, then z)
    b1   = normalize(p × axis)
    b2   = p × b1

The chart is the exponential map of the sphere:

    retract(v)           ξ = B v, θ = |ξ|,  cos θ · p + sin θ · ξ / θ
    local_coordinates(y) Bᵀ · (θ / |r|) r,  r = y − p c,  c = p·y,  θ = atan2(|r|, c)

Derivatives are requested with explicit boolean flags. Methods return only the
value when no flag is set, and a tuple (value, H...) with None in the slots
that were not requested otherwise.

The basis and its 6×2 derivative are memoized per instance. The first caller
computes them under a per-instance lock; later reads do not take the lock.
"""

from __future__ import annotations

import math
import threading
from typing import Optional

import jax
import jax.numpy as jnp

from chartfg.core.math3d import cross, hat, normalize
from .manifold import Manifold

# Shared by both singular branches of local_coordinates.
UNIT3_EPSILON = 1e-16

_AXES = (
    jnp.array([1.0, 0.0, 0.0]),
    jnp.array([0.0, 1.0, 0.0]),
    jnp.array([0.0, 0.0, 1.0]),
)


def _compute_basis(n: jnp.ndarray, return_jacobian: bool):
    mx, my, mz = (abs(float(c)) for c in n)
    if mx <= my and mx <= mz:
        axis = _AXES[0]
    elif my <= mx and my <= mz:
        axis = _AXES[1]
    else:
        axis = _AXES[2]

    if not return_jacobian:
        b1 = normalize(jnp.cross(n, axis))
        b2 = jnp.cross(n, b1)
        return jnp.stack([b1, b2], axis=1), None

    B1, H_B1_n, _ = cross(n, axis, return_jacobians=True)
    b1, H_b1_B1 = normalize(B1, return_jacobian=True)
    b2, H_b2_n, H_b2_b1 = cross(n, b1, return_jacobians=True)
    B = jnp.stack([b1, b2], axis=1)

    # n moves along B for a tangent perturbation of the point itself.
    H_n_p = B
    H_b1_p = H_b1_B1 @ H_B1_n @ H_n_p
    H_b2_p = H_b2_n @ H_n_p + H_b2_b1 @ H_b1_p
    return B, jnp.concatenate([H_b1_p, H_b2_p], axis=0)


class Unit3(Manifold):
    """Direction in R³ with a 2-dimensional tangent space."""

    __slots__ = ("_p", "_B", "_H_B", "_lock")

    dimension = 2
    manifold_name = "unit3"

    def __init__(self, p=(1.0, 0.0, 0.0)):
        self._p = normalize(jnp.asarray(p, dtype=jnp.float64).reshape(3))
        self._B: Optional[jnp.ndarray] = None
        self._H_B: Optional[jnp.ndarray] = None
        self._lock = threading.Lock()

    # --- Construction ---

    @classmethod
    def from_point3(cls, point, return_jacobian: bool = False):
        """
        Direction of an unconstrained 3-vector.

        With return_jacobian=True also returns the 2×3 derivative of the
        direction's tangent coordinates with respect to `point`.
        """
        point = jnp.asarray(point, dtype=jnp.float64).reshape(3)
        if not return_jacobian:
            return cls(point)
        p, D_p_point = normalize(point, return_jacobian=True)
        direction = cls(p)
        return direction, direction.basis().T @ D_p_point

    @classmethod
    def random(cls, rng_key: jax.Array) -> "Unit3":
        """Uniform sample on the sphere from a `jax.random` key."""
        return cls(jax.random.normal(rng_key, (3,), dtype=jnp.float64))

    # --- Accessors ---

    def basis(self, return_jacobian: bool = False):
        """
        3×2 orthonormal basis of the tangent plane at this point.

        With return_jacobian=True returns (B, H) where H (6×2) is the derivative
        of [b1; b2] with respect to this point's tangent coordinates.
        """
        B, H = self._B, self._H_B
        if B is not None and (not return_jacobian or H is not None):
            return (B, H) if return_jacobian else B

        with self._lock:
            if self._B is None or (return_jacobian and self._H_B is None):
                B, H = _compute_basis(self._p, return_jacobian)
                if H is not None:
                    self._H_B = H
                if self._B is None:
                    self._B = B
            B, H = self._B, self._H_B

        return (B, H) if return_jacobian else B

    def point3(self, return_jacobian: bool = False):
        """Ambient unit vector; its Jacobian is the basis (3×2)."""
        if return_jacobian:
            return self._p, self.basis()
        return self._p

    def unit_vector(self) -> jnp.ndarray:
        return self._p

    def skew(self) -> jnp.ndarray:
        return hat(self._p)

    # --- Geometry ---

    def dot(self, q: "Unit3", jac_self: bool = False, jac_other: bool = False):
        """Inner product p·q, with optional 1×2 derivatives."""
        d = jnp.dot(self._p, q._p)
        if not (jac_self or jac_other):
            return d
        H_p = (q._p @ self.basis()).reshape(1, 2) if jac_self else None
        H_q = (self._p @ q.basis()).reshape(1, 2) if jac_other else None
        return d, H_p, H_q

    def error(self, q: "Unit3", jac_other: bool = False):
        """
        Projection of q onto this tangent plane, Bᵀ q.

        The Jacobian is taken with respect to q's tangent coordinates.
        """
        Bt = self.basis().T
        xi = Bt @ q._p
        if not jac_other:
            return xi
        return xi, Bt @ q.basis()

    def error_vector(self, q: "Unit3", jac_self: bool = False, jac_other: bool = False):
        """Same value as `error`, with derivatives for both operands."""
        if jac_self:
            B, H_B = self.basis(return_jacobian=True)
        else:
            B, H_B = self.basis(), None
        xi = B.T @ q._p
        if not (jac_self or jac_other):
            return xi

        H_p = None
        if jac_self:
            H_xi1_p = q._p @ H_B[0:3, :]
            H_xi2_p = q._p @ H_B[3:6, :]
            H_p = jnp.stack([H_xi1_p, H_xi2_p], axis=0)
        H_q = B.T @ q.basis() if jac_other else None
        return xi, H_p, H_q

    def distance(self, q: "Unit3", jac_self: bool = False, jac_other: bool = False):
        """
        Norm of the tangent-plane error, |Bᵀ q| (the sine of the angle).

        When the error is exactly zero the derivatives are reported as zero.
        """
        if not (jac_self or jac_other):
            return jnp.linalg.norm(self.error(q))
        xi, H_xi_p, H_xi_q = self.error_vector(q, jac_self, jac_other)
        theta = jnp.linalg.norm(xi)
        if float(theta) == 0.0:
            row = jnp.zeros((1, 2))
        else:
            row = (xi / theta).reshape(1, 2)
        H_p = row @ H_xi_p if jac_self else None
        H_q = row @ H_xi_q if jac_other else None
        return theta, H_p, H_q

    # --- Chart ---

    def retract(self, v: jnp.ndarray) -> "Unit3":
        v = jnp.asarray(v, dtype=jnp.float64).reshape(2)
        B = self.basis()
        xi_hat = v[0] * B[:, 0] + v[1] * B[:, 1]
        theta = float(jnp.linalg.norm(xi_hat))

        if theta == 0.0:
            if float(jnp.linalg.norm(v)) == 0.0:
                return self
            return Unit3(-self._p)

        exp_p_xi_hat = math.cos(theta) * self._p + math.sin(theta) * (xi_hat / theta)
        return Unit3(exp_p_xi_hat)

    def local_coordinates(self, y: "Unit3", return_jacobian: bool = False):
        """
        Tangent coordinates of y at this point.

        Coincident points give 0. Antipodal points give (π, 0): the direction
        is undefined there and the first basis vector is used by convention,
        with a zero Jacobian.
        """
        p, q = self._p, y._p
        c = float(jnp.dot(p, q))
        # |r| = sin θ; atan2 keeps θ accurate near both ends, where acos(c) does not.
        r = q - p * c
        s = float(jnp.linalg.norm(r))

        if c > 1.0 - UNIT3_EPSILON or (s == 0.0 and c > 0.0):
            v = jnp.zeros(2)
            if not return_jacobian:
                return v
            return v, self.basis().T @ y.basis()
        if c < -1.0 + UNIT3_EPSILON or s == 0.0:
            v = jnp.array([math.pi, 0.0])
            if not return_jacobian:
                return v
            return v, jnp.zeros((2, 2))

        theta = math.atan2(s, c)
        ratio = theta / s
        Bt = self.basis().T
        v = Bt @ (ratio * r)
        if not return_jacobian:
            return v

        # d(θ / sin θ)/dc, with its series limit -1/3 near θ = 0.
        if theta < 1e-4:
            d_ratio = -1.0 / 3.0
        else:
            d_ratio = (-1.0 + theta * c / s) / (s * s)
        H_r_q = ratio * (jnp.eye(3) - jnp.outer(p, p)) + d_ratio * jnp.outer(r, p)
        return v, Bt @ H_r_q @ y.basis()

    # --- Testable ---

    def equals(self, other: "Unit3", tol: float = 1e-9) -> bool:
        return bool(jnp.allclose(self._p, other._p, atol=tol, rtol=0.0))

    def __repr__(self) -> str:
        x, y, z = (float(c) for c in self._p)
        return f"Unit3({x:.6g}, {y:.6g}, {z:.6g})"
