# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
Chart contract and manifold dispatch for ChartFG.

This module centralizes the *geometric* contract that lets optimization
variables live on non-Euclidean spaces while the optimizer works in local
tangent coordinates:

    • The `Manifold` base class that every manifold-valued type implements
    • Dispatch helpers that treat floats and arrays as Euclidean manifolds
    • A chart-law checker used by the tests
    • Metadata that maps variables to slices of a flat tangent vector and to
      their manifold model (e.g. "unit3", "rot3", "euclidean")

The chart contract
------------------
Every manifold type declares a fixed tangent dimension ``d`` and two maps:

    retract(base, v)              base ⊕ v, with v of length d
    local_coordinates(base, y)    y ⊖ base, the (approximate) inverse

and must satisfy, for v in a neighborhood where the chart is invertible:

    local_coordinates(base, retract(base, v)) == v
    retract(base, local_coordinates(base, y)) == y   (y not singular to base)
    retract(base, 0) == base

Singular inputs (e.g. antipodal directions) are resolved by a fallback that
each type documents; they never yield NaN.

Integration with the expression engine
--------------------------------------
`optimization.expression` and `optimization.expression_factor` only use the
module-level functions `dimension`, `retract` and `local_coordinates`, so any
new type plugs in by subclassing `Manifold`.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Dict, Optional, Tuple

import jax.numpy as jnp

from chartfg.core.types import Key, Ordering

if TYPE_CHECKING:
    from chartfg.core.values import Values


class Manifold(abc.ABC):
    """Base class for manifold-valued variable types."""

    __slots__ = ()

    dimension: int = 0
    manifold_name: str = "manifold"

    @abc.abstractmethod
    def retract(self, v: jnp.ndarray) -> "Manifold":
        ...

    @abc.abstractmethod
    def local_coordinates(self, other: "Manifold", return_jacobian: bool = False):
        """
        Tangent vector v with retract(v) ≈ other.

        With return_jacobian=True returns (v, H) where H is the derivative of v
        with respect to the tangent coordinates of `other`.
        """

    @abc.abstractmethod
    def equals(self, other: "Manifold", tol: float = 1e-9) -> bool:
        ...


def _as_vector(x) -> jnp.ndarray:
    return jnp.ravel(jnp.asarray(x, dtype=jnp.float64))


def dimension(x) -> int:
    """Tangent dimension of a manifold value; Euclidean values use their size."""
    if isinstance(x, Manifold):
        return x.dimension
    return int(jnp.size(jnp.asarray(x)))


def retract(x, v: jnp.ndarray):
    if isinstance(x, Manifold):
        return x.retract(v)
    x_arr = jnp.asarray(x, dtype=jnp.float64)
    return x_arr + jnp.reshape(jnp.asarray(v, dtype=jnp.float64), jnp.shape(x_arr))


def local_coordinates(x, y, return_jacobian: bool = False):
    """
    y ⊖ x for any supported value.

    For Euclidean values this is y - x flattened, with identity Jacobian.
    """
    if isinstance(x, Manifold):
        return x.local_coordinates(y, return_jacobian)
    v = _as_vector(y) - _as_vector(x)
    if not return_jacobian:
        return v
    return v, jnp.eye(v.shape[0])


def equals(x, y, tol: float = 1e-9) -> bool:
    if isinstance(x, Manifold):
        return isinstance(y, type(x)) and x.equals(y, tol)
    if isinstance(y, Manifold):
        return False
    a, b = _as_vector(x), _as_vector(y)
    return a.shape == b.shape and bool(jnp.allclose(a, b, atol=tol, rtol=0.0))


def manifold_name(x) -> str:
    if isinstance(x, Manifold):
        return x.manifold_name
    return "euclidean"


def check_manifold_invariants(a, b, tol: float = 1e-9) -> bool:
    """
    Check the chart laws for a pair of values on the same manifold:

      - retract(a, 0) == a
      - local_coordinates(a, a) == 0
      - retract(a, local_coordinates(a, b)) == b
      - local_coordinates(a, retract(a, v)) == v for v = local_coordinates(a, b)
    """
    d = dimension(a)
    zero = jnp.zeros(d)
    if not equals(retract(a, zero), a, tol):
        return False
    if not bool(jnp.allclose(local_coordinates(a, a), zero, atol=tol)):
        return False
    v = local_coordinates(a, b)
    b_recovered = retract(a, v)
    if not equals(b_recovered, b, tol):
        return False
    v_recovered = local_coordinates(a, b_recovered)
    return bool(jnp.allclose(v_recovered, v, atol=tol))


def build_manifold_metadata(
    values: "Values",
    ordering: Optional[Ordering] = None,
) -> Tuple[Dict[Key, slice], Dict[Key, str]]:
    """
    Build metadata for applying a flat tangent update to a Values:

      - block_slices: Key -> slice in the flat tangent vector
      - manifold_types: Key -> manifold name ('unit3', 'rot3', 'euclidean', ...)

    Blocks are laid out in `ordering`, or in sorted key order by default.
    """
    keys = list(ordering) if ordering is not None else values.keys()

    block_slices: Dict[Key, slice] = {}
    manifold_types: Dict[Key, str] = {}

    offset = 0
    for key in keys:
        value = values.at(key)
        dim = dimension(value)
        block_slices[key] = slice(offset, offset + dim)
        manifold_types[key] = manifold_name(value)
        offset += dim

    return block_slices, manifold_types
