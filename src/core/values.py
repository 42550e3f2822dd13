# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
Values: the assignment of current estimates to variable keys.

A `Values` maps each `Key` to a manifold value (a `Manifold` instance such as
`Unit3` or `Rot3`, or a Euclidean float/array). It is the read-only view that
factors see during linearization; updates produce a new `Values` through
`retract` / `retract_vector`.

Looking up a key that is not present is a caller error and raises `KeyError`
immediately. Inserting a key twice raises `ValueError`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import jax.numpy as jnp

from chartfg.slam import manifold
from .types import Key, Ordering, key_to_string

LOGGER = logging.getLogger(__name__)


class Values:
    """Key -> manifold value container."""

    def __init__(self, items: Optional[Mapping[Key, Any]] = None):
        self._values: Dict[Key, Any] = {}
        if items:
            for key, value in items.items():
                self.insert(key, value)

    def insert(self, key: Key, value: Any) -> None:
        if key in self._values:
            raise ValueError(f"Values already contains key {key_to_string(key)}")
        self._values[key] = value

    def update(self, key: Key, value: Any) -> None:
        if key not in self._values:
            raise KeyError(f"Cannot update missing key {key_to_string(key)}")
        self._values[key] = value

    def at(self, key: Key) -> Any:
        try:
            return self._values[key]
        except KeyError:
            raise KeyError(f"Key {key_to_string(key)} not found in Values") from None

    def exists(self, key: Key) -> bool:
        return key in self._values

    def __contains__(self, key: Key) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Key]:
        return iter(self.keys())

    def keys(self) -> List[Key]:
        return sorted(self._values)

    def items(self) -> List[Tuple[Key, Any]]:
        return [(key, self._values[key]) for key in self.keys()]

    def dim(self, key: Key) -> int:
        return manifold.dimension(self.at(key))

    def dims(self) -> Dict[Key, int]:
        return {key: manifold.dimension(value) for key, value in self.items()}

    def total_dim(self) -> int:
        return sum(self.dims().values())

    # --- Chart on the product manifold ---

    def retract(self, delta: Mapping[Key, jnp.ndarray]) -> "Values":
        """New Values with each key in `delta` retracted; other keys are shared."""
        unknown = set(delta) - set(self._values)
        if unknown:
            names = ", ".join(key_to_string(k) for k in sorted(unknown))
            raise KeyError(f"retract delta contains unknown keys: {names}")
        result = Values()
        for key, value in self.items():
            if key in delta:
                result._values[key] = manifold.retract(value, delta[key])
            else:
                result._values[key] = value
        return result

    def retract_vector(self, x: jnp.ndarray, ordering: Optional[Ordering] = None) -> "Values":
        """Retract by a flat tangent vector laid out in `ordering` (sorted keys by default)."""
        block_slices, manifold_types = manifold.build_manifold_metadata(self, ordering)
        x = jnp.asarray(x, dtype=jnp.float64)
        expected = sum(sl.stop - sl.start for sl in block_slices.values())
        if x.shape != (expected,):
            raise ValueError(f"tangent vector has shape {x.shape}, expected ({expected},)")
        LOGGER.debug("retracting %d blocks (%s)", len(block_slices), sorted(set(manifold_types.values())))
        return self.retract({key: x[sl] for key, sl in block_slices.items()})

    def local_coordinates(self, other: "Values") -> Dict[Key, jnp.ndarray]:
        """Per-key tangent vectors v with self.retract(v) ≈ other."""
        return {key: manifold.local_coordinates(value, other.at(key)) for key, value in self.items()}

    def equals(self, other: "Values", tol: float = 1e-9) -> bool:
        if self.keys() != other.keys():
            return False
        return all(manifold.equals(value, other.at(key), tol) for key, value in self.items())

    def __repr__(self) -> str:
        body = ", ".join(f"{key_to_string(k)}: {v!r}" for k, v in self.items())
        return f"Values({{{body}}})"
