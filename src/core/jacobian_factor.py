# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
JacobianFactor: the block-sparse linear factor produced by linearization.

Layout
------
A factor on keys (k_1, ..., k_n) with tangent dimensions (d_1, ..., d_n)
stores a single augmented matrix

    Ab = [ A_1 | A_2 | ... | A_n | b ]      shape (m, Σ d_i + 1)

where A_i is the Jacobian block of key k_i and b is the right-hand side of
A·Δ = b. Rows equal the residual dimension m. The optional `model` is a noise
model attached to the linear factor (only constrained models are attached by
`ExpressionFactor`); without one the rows are unit-weighted.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence, Tuple

import jax.numpy as jnp

from .noise_model import NoiseModel
from .types import Key, key_to_string


class JacobianFactor:
    """Linear factor ‖A Δ - b‖² in block form."""

    def __init__(
        self,
        keys: Sequence[Key],
        dims: Sequence[int],
        Ab: jnp.ndarray,
        model: Optional[NoiseModel] = None,
    ):
        keys = tuple(keys)
        dims = tuple(int(d) for d in dims)
        Ab = jnp.asarray(Ab, dtype=jnp.float64)

        if len(keys) != len(dims):
            raise ValueError(f"{len(keys)} keys but {len(dims)} block dimensions")
        if len(set(keys)) != len(keys):
            raise ValueError("JacobianFactor keys must be unique")
        if Ab.ndim != 2:
            raise ValueError(f"augmented matrix must be 2-D, got shape {Ab.shape}")
        if sum(dims) + 1 != Ab.shape[1]:
            raise ValueError(
                f"block widths {dims} plus the rhs column need {sum(dims) + 1} columns, "
                f"matrix has {Ab.shape[1]}"
            )
        if model is not None and model.dim != Ab.shape[0]:
            raise ValueError(f"noise model dimension {model.dim} != {Ab.shape[0]} rows")

        self.keys = keys
        self.dims = dims
        self.Ab = Ab
        self.model = model

        offsets = [0]
        for d in dims:
            offsets.append(offsets[-1] + d)
        self._offsets: Dict[Key, Tuple[int, int]] = {
            key: (offsets[i], offsets[i + 1]) for i, key in enumerate(keys)
        }

    @property
    def rows(self) -> int:
        return self.Ab.shape[0]

    @property
    def cols(self) -> int:
        return self.Ab.shape[1]

    @property
    def A(self) -> jnp.ndarray:
        return self.Ab[:, :-1]

    @property
    def b(self) -> jnp.ndarray:
        return self.Ab[:, -1]

    def is_constrained(self) -> bool:
        return self.model is not None and self.model.is_constrained

    def dim_of(self, key: Key) -> int:
        start, stop = self._block(key)
        return stop - start

    def get_A(self, key: Key) -> jnp.ndarray:
        start, stop = self._block(key)
        return self.Ab[:, start:stop]

    def _block(self, key: Key) -> Tuple[int, int]:
        try:
            return self._offsets[key]
        except KeyError:
            raise KeyError(f"key {key_to_string(key)} is not involved in this factor") from None

    def whitened_system(self) -> Tuple[jnp.ndarray, jnp.ndarray]:
        if self.model is None:
            return self.A, self.b
        return self.model.whiten_system(self.A, self.b)

    def error_vector(self, delta: Mapping[Key, jnp.ndarray]) -> jnp.ndarray:
        """Unwhitened A Δ - b for the blocks of this factor."""
        Ax = jnp.zeros(self.rows)
        for key in self.keys:
            Ax = Ax + self.get_A(key) @ jnp.asarray(delta[key], dtype=jnp.float64)
        return Ax - self.b

    def error(self, delta: Mapping[Key, jnp.ndarray]) -> float:
        e = self.error_vector(delta)
        if self.model is None:
            return 0.5 * float(jnp.dot(e, e))
        return 0.5 * self.model.squared_distance(e)

    def __repr__(self) -> str:
        blocks = ", ".join(f"{key_to_string(k)}:{d}" for k, d in zip(self.keys, self.dims))
        return f"JacobianFactor([{blocks}], rows={self.rows}, constrained={self.is_constrained()})"
