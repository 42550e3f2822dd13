from __future__ import annotations

import jax.numpy as jnp
import pytest

from chartfg.core.types import Key, key_to_string, symbol, symbol_chr, symbol_index
from chartfg.core.values import Values
from chartfg.slam.rot3 import Rot3
from chartfg.slam.unit3 import Unit3

D0 = symbol("d", 0)
R0 = symbol("r", 0)
T0 = symbol("t", 0)


def _values() -> Values:
    values = Values()
    values.insert(D0, Unit3(jnp.array([0.0, 0.0, 1.0])))
    values.insert(R0, Rot3.identity())
    values.insert(T0, jnp.array([1.0, 2.0]))
    return values


def test_symbol_round_trip_and_ordering():
    k = symbol("x", 12)
    assert symbol_chr(k) == "x"
    assert symbol_index(k) == 12
    assert key_to_string(k) == "x12"
    assert key_to_string(Key(7)) == "7"
    assert symbol("l", 100) < symbol("x", 0) < symbol("x", 1)

    with pytest.raises(ValueError):
        symbol("xy", 0)
    with pytest.raises(ValueError):
        symbol("x", -1)


def test_insert_and_lookup():
    values = _values()
    assert len(values) == 3
    assert values.exists(D0) and R0 in values
    assert values.keys() == [D0, R0, T0]
    assert values.dims() == {D0: 2, R0: 3, T0: 2}
    assert values.total_dim() == 7
    assert jnp.allclose(values.at(T0), jnp.array([1.0, 2.0]))


def test_missing_key_raises_key_error():
    with pytest.raises(KeyError, match="d1"):
        _values().at(symbol("d", 1))


def test_duplicate_insert_raises():
    values = _values()
    with pytest.raises(ValueError):
        values.insert(D0, Unit3(jnp.array([1.0, 0.0, 0.0])))


def test_update_requires_existing_key():
    values = _values()
    values.update(T0, jnp.array([3.0, 4.0]))
    assert jnp.allclose(values.at(T0), jnp.array([3.0, 4.0]))
    with pytest.raises(KeyError):
        values.update(symbol("t", 9), jnp.zeros(2))


def test_retract_leaves_original_untouched():
    values = _values()
    updated = values.retract({T0: jnp.array([0.5, -0.5]), D0: jnp.array([0.0, 0.1])})

    assert jnp.allclose(updated.at(T0), jnp.array([1.5, 1.5]))
    assert updated.at(D0).equals(values.at(D0).retract(jnp.array([0.0, 0.1])))
    assert updated.at(R0) is values.at(R0)
    assert jnp.allclose(values.at(T0), jnp.array([1.0, 2.0]))

    with pytest.raises(KeyError):
        values.retract({symbol("q", 0): jnp.zeros(2)})


def test_retract_vector_uses_sorted_layout():
    values = _values()
    x = jnp.array([0.0, 0.1, 0.0, 0.0, 0.2, 1.0, -1.0])
    updated = values.retract_vector(x)

    assert updated.at(D0).equals(values.at(D0).retract(jnp.array([0.0, 0.1])))
    assert updated.at(R0).equals(Rot3.expmap(jnp.array([0.0, 0.0, 0.2])))
    assert jnp.allclose(updated.at(T0), jnp.array([2.0, 1.0]))

    with pytest.raises(ValueError):
        values.retract_vector(jnp.zeros(5))


def test_local_coordinates_inverts_retract():
    values = _values()
    delta = {D0: jnp.array([0.2, -0.1]), R0: jnp.array([0.1, 0.0, -0.3]), T0: jnp.array([1.0, 1.0])}
    updated = values.retract(delta)
    recovered = values.local_coordinates(updated)
    for key, v in delta.items():
        assert jnp.allclose(recovered[key], v, atol=1e-9)
    assert values.retract(recovered).equals(updated)
    assert not values.equals(updated)
