"""
3D vector and SO(3) helpers for ChartFG.

This module implements the small amount of 3D mathematics required by the
manifold types in `slam/`:

    • Vector primitives with analytic Jacobians (normalize, cross)
    • Unit-quaternion algebra (product, conjugate, rotation matrix)
    • Quaternion exponential & logarithm maps
    • The inverse right Jacobian of SO(3)

All functions are written in `jax.numpy` and are pure: they can be
JIT-compiled or differentiated with `jax.jacfwd`. Small-angle limits are
handled with `jnp.where` and guarded denominators so that neither values nor
derivatives produce NaNs at zero rotation.

Key Functions
-------------
hat(v)
    Converts a 3-vector to its skew-symmetric matrix.

normalize(p, return_jacobian)
    p / |p| and optionally its 3×3 Jacobian (I - u uᵀ) / |p|.

cross(a, b, return_jacobians)
    a × b and optionally the Jacobians -hat(b) and hat(a).

quaternion_exp(w), quaternion_log(q)
    Maps between a rotation vector and a unit quaternion [w, x, y, z].

so3_right_jacobian_inverse(w)
    Jr⁻¹(w), the derivative of Log(Exp(w) Exp(δ)) with respect to δ.

Notes
-----
Quaternions are stored scalar-first: [w, x, y, z]. `quaternion_log` picks the
hemisphere with w >= 0 so that the returned angle lies in [0, π].
"""

from __future__ import annotations

import jax.numpy as jnp

_SMALL_ANGLE = 1e-10


def hat(v: jnp.ndarray) -> jnp.ndarray:
    """so(3) hat operator: R^3 -> 3x3 skew-symmetric matrix."""
    x, y, z = v[0], v[1], v[2]
    return jnp.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ]
    )


def normalize(p: jnp.ndarray, return_jacobian: bool = False):
    """
    Unit vector along p.

    With return_jacobian=True returns (u, H) where H = d u / d p.
    """
    p = jnp.asarray(p, dtype=jnp.float64)
    # Pre-scale so the norm neither underflows nor overflows.
    scale = jnp.max(jnp.abs(p))
    scaled = p / scale
    n = jnp.linalg.norm(scaled)
    u = scaled / n
    if not return_jacobian:
        return u
    H = (jnp.eye(3) - jnp.outer(u, u)) / (n * scale)
    return u, H


def cross(a: jnp.ndarray, b: jnp.ndarray, return_jacobians: bool = False):
    """a × b, optionally with (d/da, d/db)."""
    c = jnp.cross(a, b)
    if not return_jacobians:
        return c
    return c, -hat(b), hat(a)


# --- Unit quaternions ---

def quaternion_multiply(q1: jnp.ndarray, q2: jnp.ndarray) -> jnp.ndarray:
    """Hamilton product q1 ⊗ q2, scalar-first."""
    w1, v1 = q1[0], q1[1:]
    w2, v2 = q2[0], q2[1:]
    w = w1 * w2 - jnp.dot(v1, v2)
    v = w1 * v2 + w2 * v1 + jnp.cross(v1, v2)
    return jnp.concatenate([jnp.array([w]), v])


def quaternion_conjugate(q: jnp.ndarray) -> jnp.ndarray:
    return jnp.concatenate([q[:1], -q[1:]])


def quaternion_to_matrix(q: jnp.ndarray) -> jnp.ndarray:
    w, x, y, z = q[0], q[1], q[2], q[3]
    return jnp.array(
        [
            [1.0 - 2.0 * (y * y + z * z), 2.0 * (x * y - w * z), 2.0 * (x * z + w * y)],
            [2.0 * (x * y + w * z), 1.0 - 2.0 * (x * x + z * z), 2.0 * (y * z - w * x)],
            [2.0 * (x * z - w * y), 2.0 * (y * z + w * x), 1.0 - 2.0 * (x * x + y * y)],
        ]
    )


def quaternion_exp(w: jnp.ndarray) -> jnp.ndarray:
    """
    Exponential map from a rotation vector to a unit quaternion.

    Uses sin(θ/2)/θ -> 1/2 as the small-angle fallback.
    """
    w = jnp.asarray(w, dtype=jnp.float64)
    theta = jnp.linalg.norm(w)
    small = theta < _SMALL_ANGLE
    theta_safe = jnp.where(small, 1.0, theta)
    scale = jnp.where(small, 0.5, jnp.sin(0.5 * theta_safe) / theta_safe)
    qw = jnp.cos(0.5 * theta)
    return jnp.concatenate([jnp.array([qw]), scale * w])


def quaternion_log(q: jnp.ndarray) -> jnp.ndarray:
    """
    Logarithm map from a unit quaternion to a rotation vector.

    Handles q and -q identically and the identity rotation without NaNs.
    """
    q = jnp.asarray(q, dtype=jnp.float64)
    q = jnp.where(q[0] < 0.0, -q, q)
    qw, v = q[0], q[1:]
    n = jnp.linalg.norm(v)
    small = n < _SMALL_ANGLE
    n_safe = jnp.where(small, 1.0, n)
    theta = 2.0 * jnp.arctan2(n, qw)
    # qw is ~1 whenever n is tiny, so 2 / qw is well defined there.
    scale = jnp.where(small, 2.0 / qw, theta / n_safe)
    return scale * v


def so3_right_jacobian_inverse(w: jnp.ndarray) -> jnp.ndarray:
    """
    Inverse right Jacobian of SO(3):

        Jr⁻¹(w) = I + ½ W + (1/θ² − (1 + cos θ) / (2 θ sin θ)) W²

    with the series value 1/12 for the W² coefficient near θ = 0.
    """
    w = jnp.asarray(w, dtype=jnp.float64)
    theta = jnp.linalg.norm(w)
    W = hat(w)
    small = theta < 1e-5
    theta_safe = jnp.where(small, 1.0, theta)
    coeff = jnp.where(
        small,
        1.0 / 12.0,
        1.0 / (theta_safe * theta_safe)
        - (1.0 + jnp.cos(theta_safe)) / (2.0 * theta_safe * jnp.sin(theta_safe)),
    )
    return jnp.eye(3) + 0.5 * W + coeff * (W @ W)
