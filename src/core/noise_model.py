# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
Gaussian noise models for ChartFG factors.

A noise model turns an unwhitened residual r into a whitened one, R·r, where
R is a square-root information matrix. Factors use it in three ways:

    • `whiten(r)` / `whiten_system(A, b)` for least-squares weighting
    • `squared_distance(r)` for the nonlinear error 0.5·|R r|²
    • `is_constrained` / `unit()` to mark hard equality constraints

Model family
------------
Gaussian
    Full square-root information matrix R (d×d).

Diagonal
    Per-component sigmas, R = diag(1/σ). `from_sigmas` with `smart=True`
    returns a `Constrained` model as soon as any sigma is zero.

Isotropic / Unit
    A single sigma for every component; `Unit` has σ = 1.

Constrained
    Diagonal model in which σ = 0 marks a hard constraint. Constrained rows are
    left unscaled by `whiten` and are penalized with weight `mu` in
    `squared_distance`. `unit()` returns the model a linearized factor carries:
    σ = 0 on constrained rows and σ = 1 elsewhere.

Conversions mirror the usual sigma / variance / precision conventions:

    weight = 1 / σ²,   sqrt-information = 1 / σ
"""

from __future__ import annotations

import abc
from typing import Tuple

import jax.numpy as jnp

DEFAULT_CONSTRAINT_MU = 1000.0


class NoiseModel(abc.ABC):
    """Base class; subclasses define `sqrt_information`."""

    is_constrained = False

    def __init__(self, dim: int):
        if dim <= 0:
            raise ValueError("noise model dimension must be positive")
        self.dim = dim

    @abc.abstractmethod
    def sqrt_information(self) -> jnp.ndarray:
        ...

    def _check(self, r: jnp.ndarray) -> jnp.ndarray:
        r = jnp.asarray(r, dtype=jnp.float64)
        if r.shape[0] != self.dim:
            raise ValueError(f"residual has {r.shape[0]} rows, noise model has dimension {self.dim}")
        return r

    def whiten(self, r: jnp.ndarray) -> jnp.ndarray:
        return self.sqrt_information() @ self._check(r)

    def whiten_system(self, A: jnp.ndarray, b: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
        R = self.sqrt_information()
        return R @ self._check(A), R @ self._check(b)

    def squared_distance(self, r: jnp.ndarray) -> float:
        w = self.whiten(r)
        return float(jnp.dot(w, w))


class Gaussian(NoiseModel):
    def __init__(self, sqrt_information: jnp.ndarray):
        R = jnp.asarray(sqrt_information, dtype=jnp.float64)
        if R.ndim != 2 or R.shape[0] != R.shape[1]:
            raise ValueError(f"square-root information must be square, got shape {R.shape}")
        super().__init__(R.shape[0])
        self._R = R

    @classmethod
    def from_sqrt_information(cls, R) -> "Gaussian":
        return cls(R)

    @classmethod
    def from_information(cls, information) -> "Gaussian":
        L = jnp.linalg.cholesky(jnp.asarray(information, dtype=jnp.float64))
        return cls(L.T)

    @classmethod
    def from_covariance(cls, covariance) -> "Gaussian":
        information = jnp.linalg.inv(jnp.asarray(covariance, dtype=jnp.float64))
        return cls.from_information(information)

    def sqrt_information(self) -> jnp.ndarray:
        return self._R


class Diagonal(NoiseModel):
    def __init__(self, sigmas):
        sigmas = jnp.ravel(jnp.asarray(sigmas, dtype=jnp.float64))
        super().__init__(sigmas.shape[0])
        self.sigmas = sigmas

    @classmethod
    def from_sigmas(cls, sigmas, smart: bool = True) -> NoiseModel:
        sigmas = jnp.ravel(jnp.asarray(sigmas, dtype=jnp.float64))
        if smart and bool(jnp.any(sigmas == 0.0)):
            return Constrained.mixed_sigmas(sigmas)
        return cls(sigmas)

    @classmethod
    def from_variances(cls, variances, smart: bool = True) -> NoiseModel:
        return cls.from_sigmas(jnp.sqrt(jnp.asarray(variances, dtype=jnp.float64)), smart)

    @classmethod
    def from_precisions(cls, precisions, smart: bool = True) -> NoiseModel:
        return cls.from_variances(1.0 / jnp.asarray(precisions, dtype=jnp.float64), smart)

    def sqrt_information(self) -> jnp.ndarray:
        return jnp.diag(1.0 / self.sigmas)

    def whiten(self, r: jnp.ndarray) -> jnp.ndarray:
        return self._check(r) / self.sigmas

    def whiten_system(self, A: jnp.ndarray, b: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
        inv = 1.0 / self.sigmas
        return inv[:, None] * self._check(A), inv * self._check(b)


class Isotropic(Diagonal):
    @classmethod
    def from_sigma(cls, dim: int, sigma: float, smart: bool = True) -> NoiseModel:
        """A zero sigma gives a fully constrained model when `smart` is set."""
        return cls.from_sigmas(jnp.full((dim,), float(sigma)), smart)

    @property
    def sigma(self) -> float:
        return float(self.sigmas[0])


class Unit(Isotropic):
    @classmethod
    def create(cls, dim: int) -> "Unit":
        return cls(jnp.ones((dim,)))


class Constrained(Diagonal):
    """Diagonal model where zero sigmas are hard equality constraints."""

    is_constrained = True

    def __init__(self, sigmas, mu=None):
        super().__init__(sigmas)
        if mu is None:
            mu = jnp.full((self.dim,), DEFAULT_CONSTRAINT_MU)
        self.mu = jnp.ravel(jnp.asarray(mu, dtype=jnp.float64))
        if self.mu.shape[0] != self.dim:
            raise ValueError("constraint penalty mu must match the model dimension")

    @classmethod
    def all(cls, dim: int, mu: float = DEFAULT_CONSTRAINT_MU) -> "Constrained":
        return cls(jnp.zeros((dim,)), jnp.full((dim,), mu))

    @classmethod
    def mixed_sigmas(cls, sigmas, mu=None) -> "Constrained":
        return cls(sigmas, mu)

    def constrained_mask(self) -> jnp.ndarray:
        return self.sigmas == 0.0

    def _inverse_sigmas(self) -> jnp.ndarray:
        mask = self.constrained_mask()
        return jnp.where(mask, 1.0, 1.0 / jnp.where(mask, 1.0, self.sigmas))

    def sqrt_information(self) -> jnp.ndarray:
        return jnp.diag(self._inverse_sigmas())

    def whiten(self, r: jnp.ndarray) -> jnp.ndarray:
        return self._check(r) * self._inverse_sigmas()

    def whiten_system(self, A: jnp.ndarray, b: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
        inv = self._inverse_sigmas()
        return inv[:, None] * self._check(A), inv * self._check(b)

    def squared_distance(self, r: jnp.ndarray) -> float:
        w = self.whiten(r)
        weights = jnp.where(self.constrained_mask(), self.mu, 1.0)
        return float(jnp.sum(weights * w * w))

    def unit(self) -> "Constrained":
        """Same constraint pattern with unit sigmas on the unconstrained rows."""
        sigmas = jnp.where(self.constrained_mask(), 0.0, 1.0)
        return Constrained(sigmas, self.mu)
