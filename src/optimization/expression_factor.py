# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
ExpressionFactor: a measurement factor defined by an expression.

The factor binds a noise model, a fixed measurement z and an expression
h(x). Its residual lives in the tangent space of the measurement:

    r(x) = local_coordinates(z, h(x))

and linearizing at an assignment x₀ gives the block-sparse system

    A Δ = b,   A_k = ∂r/∂x_k (tangent coordinates),   b = -r(x₀)

with one block per key, in key order. The Jacobian of r is the expression's
Jacobian composed with the derivative of the measurement chart's local
coordinates, which is the identity to first order at r = 0.

An optional activity predicate over the assignment switches the factor off;
an inactive factor contributes nothing: `linearize` returns None and `error`
returns 0.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Tuple

import jax.numpy as jnp

from chartfg.core.jacobian_factor import JacobianFactor
from chartfg.core.noise_model import NoiseModel
from chartfg.core.types import Key, key_to_string
from chartfg.core.values import Values
from chartfg.slam import manifold
from .expression import Expression, as_expression

LOGGER = logging.getLogger(__name__)

ActivePredicate = Callable[[Values], bool]


class ExpressionFactor:
    """Nonlinear factor with residual local_coordinates(measurement, expression(x))."""

    def __init__(
        self,
        noise_model: NoiseModel,
        measurement: Any,
        expression: Expression,
        active: Optional[ActivePredicate] = None,
    ):
        expression = as_expression(expression)
        measurement_dim = manifold.dimension(measurement)
        if noise_model.dim != measurement_dim:
            raise ValueError(
                f"noise model dimension {noise_model.dim} does not match "
                f"measurement dimension {measurement_dim}"
            )
        self.noise_model = noise_model
        self.measurement = measurement
        self.expression = expression
        self._active = active
        self._keys: Tuple[Key, ...] = tuple(sorted(expression.keys()))

    def keys(self) -> Tuple[Key, ...]:
        return self._keys

    def size(self) -> int:
        return len(self._keys)

    def dim(self) -> int:
        return self.noise_model.dim

    def active(self, values: Values) -> bool:
        if self._active is None:
            return True
        return bool(self._active(values))

    def _residual_and_jacobians(self, values: Values):
        predicted, terms = self.expression.value_and_jacobians(values)
        residual, H_local = manifold.local_coordinates(
            self.measurement, predicted, return_jacobian=True
        )
        blocks = {}
        for key in self._keys:
            if key in terms:
                blocks[key] = H_local @ terms[key]
            else:
                # Operations may return None for an input their value ignores.
                blocks[key] = jnp.zeros((H_local.shape[0], values.dim(key)))
        return residual, blocks

    def unwhitened_error(self, values: Values, jacobians: Optional[List[Any]] = None) -> jnp.ndarray:
        """
        Residual local_coordinates(measurement, h(x)) without noise weighting.

        If `jacobians` is given it must already hold one slot per key; the slots
        are overwritten with the residual Jacobians in key order.
        """
        if jacobians is None:
            predicted = self.expression.value(values)
            return manifold.local_coordinates(self.measurement, predicted)

        if len(jacobians) != len(self._keys):
            raise ValueError(
                f"jacobians list has {len(jacobians)} slots, factor has {len(self._keys)} keys"
            )
        residual, blocks = self._residual_and_jacobians(values)
        for i, key in enumerate(self._keys):
            jacobians[i] = blocks[key]
        return residual

    def whitened_error(self, values: Values) -> jnp.ndarray:
        return self.noise_model.whiten(self.unwhitened_error(values))

    def error(self, values: Values) -> float:
        """0.5 · squared noise-model distance of the residual; 0 when inactive."""
        if not self.active(values):
            return 0.0
        return 0.5 * self.noise_model.squared_distance(self.unwhitened_error(values))

    def linearize(self, values: Values) -> Optional[JacobianFactor]:
        if not self.active(values):
            LOGGER.debug("factor on %s inactive, skipping", [key_to_string(k) for k in self._keys])
            return None

        residual, blocks = self._residual_and_jacobians(values)
        b = -jnp.ravel(residual)

        dims = self.expression.dims(values)
        key_order = list(dims)
        columns = [blocks[key] for key in key_order]
        Ab = jnp.concatenate(columns + [b[:, None]], axis=1)

        if not bool(jnp.all(jnp.isfinite(Ab))):
            raise ValueError(
                f"non-finite linearization for factor on {[key_to_string(k) for k in key_order]}"
            )

        model = self.noise_model.unit() if self.noise_model.is_constrained else None
        return JacobianFactor(key_order, [dims[k] for k in key_order], Ab, model)

    def __repr__(self) -> str:
        keys = ", ".join(key_to_string(k) for k in self._keys)
        return f"ExpressionFactor([{keys}], measurement={self.measurement!r}, expression={self.expression!r})"
