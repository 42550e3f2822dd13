# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
Factor graphs for ChartFG.

This module holds the two containers that sit on either side of a
linearization pass:

NonlinearFactorGraph
    A list of nonlinear factors (typically `ExpressionFactor`). Given the
    current `Values`, it evaluates the total error or linearizes every active
    factor into a `JacobianFactor`.

GaussianFactorGraph
    The result of linearization: a list of `JacobianFactor`s. It can lay the
    blocks out as a dense whitened system (A, b) for a given variable ordering,
    which is what an external least-squares solver consumes.

Linearization
-------------
Factors are independent, so `NonlinearFactorGraph.linearize` can spread them
over a thread pool (`LinearizationConfig.max_workers`). Each worker only reads
the shared `Values`; the output keeps the factor order of the graph, so serial
and parallel runs produce identical linear graphs. Inactive factors return
None and are dropped.

Notes
-----
The solve itself (trust region, step acceptance, convergence) is outside this
module. `GaussianFactorGraph.jacobian` returns plain `jax.numpy` arrays so any
dense or sparse solver can be plugged in.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import jax.numpy as jnp

from .jacobian_factor import JacobianFactor
from .types import Key, Ordering, key_to_string
from .values import Values

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinearizationConfig:
    """Configuration for a linearization pass."""

    max_workers: int = 1

    def __post_init__(self) -> None:
        if self.max_workers <= 0:
            raise ValueError("max_workers must be positive")


@dataclass
class GaussianFactorGraph:
    """Linear factors produced by one linearization pass."""

    factors: List[JacobianFactor] = field(default_factory=list)

    def add(self, factor: JacobianFactor) -> None:
        self.factors.append(factor)

    def __len__(self) -> int:
        return len(self.factors)

    def __iter__(self):
        return iter(self.factors)

    def __getitem__(self, i: int) -> JacobianFactor:
        return self.factors[i]

    def keys(self) -> List[Key]:
        return sorted({key for f in self.factors for key in f.keys})

    def dims(self) -> Dict[Key, int]:
        dims: Dict[Key, int] = {}
        for f in self.factors:
            for key, d in zip(f.keys, f.dims):
                if dims.setdefault(key, d) != d:
                    raise ValueError(f"key {key_to_string(key)} has inconsistent dimensions")
        return dims

    def jacobian(self, ordering: Optional[Ordering] = None) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """
        Dense whitened system (A, b).

        Columns follow `ordering` (sorted keys by default); rows follow factor
        order. Every key used by a factor must appear in the ordering.
        """
        dims = self.dims()
        ordering = list(ordering) if ordering is not None else sorted(dims)

        offsets: Dict[Key, int] = {}
        n = 0
        for key in ordering:
            if key not in dims:
                raise KeyError(f"ordering key {key_to_string(key)} is not in the graph")
            offsets[key] = n
            n += dims[key]
        missing = set(dims) - set(offsets)
        if missing:
            names = ", ".join(key_to_string(k) for k in sorted(missing))
            raise KeyError(f"ordering is missing keys: {names}")

        m = sum(f.rows for f in self.factors)
        A = jnp.zeros((m, n))
        b = jnp.zeros((m,))
        row = 0
        for f in self.factors:
            Af, bf = f.whitened_system()
            col = 0
            for key, d in zip(f.keys, f.dims):
                start = offsets[key]
                A = A.at[row:row + f.rows, start:start + d].set(Af[:, col:col + d])
                col += d
            b = b.at[row:row + f.rows].set(bf)
            row += f.rows
        return A, b

    def error(self, delta: Mapping[Key, jnp.ndarray]) -> float:
        return sum(f.error(delta) for f in self.factors)


@dataclass
class NonlinearFactorGraph:
    """Ordered collection of nonlinear factors."""

    factors: List[Any] = field(default_factory=list)

    def add(self, factor: Any) -> None:
        self.factors.append(factor)

    def __len__(self) -> int:
        return len(self.factors)

    def __iter__(self):
        return iter(self.factors)

    def keys(self) -> List[Key]:
        return sorted({key for f in self.factors for key in f.keys()})

    def error(self, values: Values) -> float:
        return sum(f.error(values) for f in self.factors)

    def linearize(
        self,
        values: Values,
        config: LinearizationConfig = LinearizationConfig(),
    ) -> GaussianFactorGraph:
        if config.max_workers == 1 or len(self.factors) < 2:
            linear = [f.linearize(values) for f in self.factors]
        else:
            LOGGER.debug(
                "linearizing %d factors on %d workers", len(self.factors), config.max_workers
            )
            with ThreadPoolExecutor(max_workers=config.max_workers) as executor:
                linear = list(executor.map(lambda f: f.linearize(values), self.factors))

        gfg = GaussianFactorGraph([f for f in linear if f is not None])
        skipped = len(linear) - len(gfg)
        if skipped:
            LOGGER.debug("%d of %d factors inactive", skipped, len(linear))
        return gfg
