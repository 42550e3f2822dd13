# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
Numerical derivatives on manifolds, for checking analytic Jacobians.

For f: M → N and an argument x ∈ M, column i of the numerical Jacobian is
the centered difference

    [ local(f(x), f(x ⊕ δ eᵢ)) − local(f(x), f(x ⊕ −δ eᵢ)) ] / 2δ

so the result is expressed in the same tangent coordinates (at x and at f(x))
as the analytic Jacobians returned by the manifold types.
"""

from __future__ import annotations

from typing import Any, Callable

import jax.numpy as jnp

from chartfg.slam import manifold


def numerical_derivative(
    f: Callable[..., Any],
    *args: Any,
    argnum: int = 0,
    delta: float = 1e-5,
) -> jnp.ndarray:
    """Jacobian of f with respect to args[argnum], shape (dim f(x), dim x)."""
    x = args[argnum]
    fx = f(*args)
    n = manifold.dimension(x)

    def f_at(xi):
        perturbed = list(args)
        perturbed[argnum] = xi
        return f(*perturbed)

    columns = []
    for i in range(n):
        d = jnp.zeros(n).at[i].set(delta)
        plus = manifold.local_coordinates(fx, f_at(manifold.retract(x, d)))
        minus = manifold.local_coordinates(fx, f_at(manifold.retract(x, -d)))
        columns.append((plus - minus) / (2.0 * delta))
    return jnp.stack(columns, axis=1)
