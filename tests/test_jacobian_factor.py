from __future__ import annotations

import jax.numpy as jnp
import pytest

from chartfg.core.jacobian_factor import JacobianFactor
from chartfg.core.noise_model import Constrained, Isotropic
from chartfg.core.types import symbol

X0 = symbol("x", 0)
X1 = symbol("x", 1)


def _factor(model=None) -> JacobianFactor:
    A0 = jnp.array([[1.0, 0.0], [0.0, 2.0]])
    A1 = jnp.array([[3.0], [4.0]])
    b = jnp.array([1.0, -1.0])
    Ab = jnp.concatenate([A0, A1, b[:, None]], axis=1)
    return JacobianFactor([X0, X1], [2, 1], Ab, model)


def test_block_access():
    f = _factor()
    assert f.rows == 2 and f.cols == 4
    assert f.dim_of(X0) == 2 and f.dim_of(X1) == 1
    assert jnp.allclose(f.get_A(X1), jnp.array([[3.0], [4.0]]))
    assert jnp.allclose(f.b, jnp.array([1.0, -1.0]))
    assert not f.is_constrained()
    with pytest.raises(KeyError):
        f.get_A(symbol("x", 2))


def test_error_at_delta():
    f = _factor()
    delta = {X0: jnp.array([1.0, 0.0]), X1: jnp.array([0.0])}
    assert jnp.allclose(f.error_vector(delta), jnp.array([0.0, 1.0]))
    assert f.error(delta) == pytest.approx(0.5)


def test_whitened_system_applies_model():
    f = _factor(Isotropic.from_sigma(2, 0.5))
    A, b = f.whitened_system()
    assert jnp.allclose(A, 2.0 * f.A)
    assert jnp.allclose(b, 2.0 * f.b)


def test_constrained_model_flag():
    f = _factor(Constrained.all(2))
    assert f.is_constrained()
    A, _ = f.whitened_system()
    assert jnp.allclose(A, f.A)


def test_construction_errors():
    Ab = jnp.zeros((2, 4))
    with pytest.raises(ValueError):
        JacobianFactor([X0], [2, 1], Ab)
    with pytest.raises(ValueError):
        JacobianFactor([X0, X0], [2, 1], Ab)
    with pytest.raises(ValueError):
        JacobianFactor([X0, X1], [2, 2], Ab)
    with pytest.raises(ValueError):
        JacobianFactor([X0, X1], [2, 1], Ab, Isotropic.from_sigma(3, 1.0))
