from __future__ import annotations

import jax.numpy as jnp
import pytest

from chartfg.core.types import symbol
from chartfg.core.values import Values
from chartfg.slam import manifold
from chartfg.slam.manifold import build_manifold_metadata, check_manifold_invariants
from chartfg.slam.rot3 import Rot3
from chartfg.slam.unit3 import Unit3


def test_euclidean_values_use_vector_chart():
    x = jnp.array([1.0, 2.0, 3.0])
    y = jnp.array([0.5, 2.5, 3.0])
    assert manifold.dimension(x) == 3
    assert manifold.dimension(2.0) == 1
    assert manifold.manifold_name(x) == "euclidean"

    v, H = manifold.local_coordinates(x, y, return_jacobian=True)
    assert jnp.allclose(v, y - x)
    assert jnp.allclose(H, jnp.eye(3))
    assert jnp.allclose(manifold.retract(x, v), y)


def test_scalar_retract_keeps_scalar_shape():
    x = manifold.retract(1.5, jnp.array([0.25]))
    assert jnp.shape(x) == ()
    assert float(x) == pytest.approx(1.75)


def test_dispatch_to_manifold_types():
    p = Unit3(jnp.array([0.0, 1.0, 0.0]))
    assert manifold.dimension(p) == 2
    assert manifold.manifold_name(p) == "unit3"
    assert manifold.manifold_name(Rot3.identity()) == "rot3"
    assert manifold.equals(p, Unit3(jnp.array([0.0, 2.0, 0.0])))
    assert not manifold.equals(p, jnp.array([0.0, 1.0, 0.0]))


def test_check_manifold_invariants_for_each_type():
    assert check_manifold_invariants(jnp.array([1.0, -2.0]), jnp.array([0.3, 4.0]))
    assert check_manifold_invariants(
        Unit3(jnp.array([1.0, 0.2, 0.1])), Unit3(jnp.array([0.1, 1.0, -0.4]))
    )
    assert check_manifold_invariants(
        Rot3.expmap(jnp.array([0.1, 0.2, 0.3])), Rot3.expmap(jnp.array([-0.4, 0.0, 1.0]))
    )


def test_build_manifold_metadata_basic():
    d0, r0, t0 = symbol("d", 0), symbol("r", 0), symbol("t", 0)
    values = Values()
    values.insert(d0, Unit3(jnp.array([0.0, 0.0, 1.0])))
    values.insert(r0, Rot3.identity())
    values.insert(t0, jnp.array([0.5]))

    block_slices, manifold_types = build_manifold_metadata(values)

    # Sorted key order: 'd' < 'r' < 't'.
    assert block_slices[d0] == slice(0, 2)
    assert block_slices[r0] == slice(2, 5)
    assert block_slices[t0] == slice(5, 6)

    assert manifold_types[d0] == "unit3"
    assert manifold_types[r0] == "rot3"
    assert manifold_types[t0] == "euclidean"


def test_build_manifold_metadata_follows_ordering():
    d0, r0 = symbol("d", 0), symbol("r", 0)
    values = Values({d0: Unit3(jnp.array([1.0, 0.0, 0.0])), r0: Rot3.identity()})

    block_slices, _ = build_manifold_metadata(values, ordering=[r0, d0])
    assert block_slices[r0] == slice(0, 3)
    assert block_slices[d0] == slice(3, 5)
