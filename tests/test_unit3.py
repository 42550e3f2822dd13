from __future__ import annotations

import math
import threading

import jax
import jax.numpy as jnp
import pytest

from chartfg.core.numerical import numerical_derivative
from chartfg.slam.manifold import check_manifold_invariants
from chartfg.slam.unit3 import Unit3


P = Unit3(jnp.array([1.0, 0.3, -0.5]))
Q = Unit3(jnp.array([-0.2, 0.9, 0.4]))


def _random_directions(n: int, seed: int = 42):
    keys = jax.random.split(jax.random.PRNGKey(seed), n)
    return [Unit3.random(k) for k in keys]


def _stacked_basis(p: Unit3) -> jnp.ndarray:
    B = p.basis()
    return jnp.concatenate([B[:, 0], B[:, 1]])


# --- Basis ---

def test_basis_for_z_axis_uses_x_axis():
    p = Unit3(jnp.array([0.0, 0.0, 1.0]))
    B = p.basis()
    # p × x = (0, 1, 0), p × b1 = (-1, 0, 0)
    assert jnp.allclose(B[:, 0], jnp.array([0.0, 1.0, 0.0]), atol=1e-12)
    assert jnp.allclose(B[:, 1], jnp.array([-1.0, 0.0, 0.0]), atol=1e-12)
    assert jnp.allclose(jnp.linalg.norm(B, axis=0), jnp.ones(2), atol=1e-12)
    assert jnp.allclose(B.T @ p.point3(), jnp.zeros(2), atol=1e-12)


def test_basis_picks_axis_with_smallest_projection():
    # |y| is smallest here, so b1 = normalize(p × y) lies in the x-z plane.
    p = Unit3(jnp.array([0.6, 0.1, -0.8]))
    b1 = p.basis()[:, 0]
    expected = jnp.cross(p.point3(), jnp.array([0.0, 1.0, 0.0]))
    assert jnp.allclose(b1, expected / jnp.linalg.norm(expected), atol=1e-12)


def test_basis_is_orthonormal_for_random_points():
    for p in _random_directions(20):
        B = p.basis()
        assert jnp.allclose(B.T @ B, jnp.eye(2), atol=1e-12)
        assert jnp.allclose(B.T @ p.point3(), jnp.zeros(2), atol=1e-12)


def test_basis_jacobian_matches_numerical():
    for p in [P, Q, Unit3(jnp.array([0.2, -0.7, 0.3]))]:
        _, H = p.basis(return_jacobian=True)
        H_num = numerical_derivative(_stacked_basis, p)
        assert H.shape == (6, 2)
        assert jnp.allclose(H, H_num, atol=1e-6)


def test_basis_is_cached_and_value_only_request_skips_jacobian():
    p = Unit3(jnp.array([0.3, 0.4, 0.5]))
    B1 = p.basis()
    assert p._H_B is None
    assert p.basis() is B1

    B2, H = p.basis(return_jacobian=True)
    assert B2 is B1
    assert H.shape == (6, 2)
    _, H_again = p.basis(return_jacobian=True)
    assert H_again is H


def test_basis_concurrent_first_use_is_deterministic():
    p = Unit3(jnp.array([0.3, -0.8, 0.1]))
    reference = Unit3(jnp.array([0.3, -0.8, 0.1])).basis(return_jacobian=True)
    results = []
    barrier = threading.Barrier(8)

    def worker(i):
        barrier.wait()
        results.append(p.basis(return_jacobian=bool(i % 2)))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    for r in results:
        B = r[0] if isinstance(r, tuple) else r
        assert jnp.allclose(B, reference[0], atol=0.0)
    assert jnp.allclose(p.basis(return_jacobian=True)[1], reference[1], atol=0.0)


# --- Construction ---

def test_from_point3_normalizes_and_jacobian_matches_numerical():
    point = jnp.array([1.0, -2.0, 0.5])
    direction, H = Unit3.from_point3(point, return_jacobian=True)
    assert jnp.allclose(direction.point3(), point / jnp.linalg.norm(point), atol=1e-12)
    H_num = numerical_derivative(Unit3.from_point3, point)
    assert H.shape == (2, 3)
    assert jnp.allclose(H, H_num, atol=1e-6)


def test_random_is_unit_and_reproducible():
    key = jax.random.PRNGKey(7)
    a = Unit3.random(key)
    b = Unit3.random(key)
    assert jnp.allclose(jnp.linalg.norm(a.point3()), 1.0, atol=1e-12)
    assert a.equals(b, tol=0.0)


# --- Geometry ---

def test_dot_and_jacobians():
    d, H_p, H_q = P.dot(Q, jac_self=True, jac_other=True)
    assert float(d) == pytest.approx(float(jnp.dot(P.point3(), Q.point3())))
    assert jnp.allclose(H_p, numerical_derivative(lambda a, b: a.dot(b), P, Q, argnum=0), atol=1e-6)
    assert jnp.allclose(H_q, numerical_derivative(lambda a, b: a.dot(b), P, Q, argnum=1), atol=1e-6)


def test_dot_only_computes_requested_jacobian():
    _, H_p, H_q = P.dot(Q, jac_other=True)
    assert H_p is None
    assert H_q.shape == (1, 2)


def test_error_and_jacobian():
    xi, H_q = P.error(Q, jac_other=True)
    assert jnp.allclose(xi, P.basis().T @ Q.point3(), atol=1e-12)
    assert jnp.allclose(H_q, numerical_derivative(lambda q: P.error(q), Q), atol=1e-6)


def test_error_vector_jacobians():
    _, H_p, H_q = P.error_vector(Q, jac_self=True, jac_other=True)
    assert jnp.allclose(H_p, numerical_derivative(lambda a, b: a.error_vector(b), P, Q, argnum=0), atol=1e-6)
    assert jnp.allclose(H_q, numerical_derivative(lambda a, b: a.error_vector(b), P, Q, argnum=1), atol=1e-6)


def test_distance_jacobians():
    _, H_p, H_q = P.distance(Q, jac_self=True, jac_other=True)
    assert jnp.allclose(H_p, numerical_derivative(lambda a, b: a.distance(b), P, Q, argnum=0), atol=1e-6)
    assert jnp.allclose(H_q, numerical_derivative(lambda a, b: a.distance(b), P, Q, argnum=1), atol=1e-6)


def test_distance_is_symmetric():
    dirs = _random_directions(10, seed=3)
    for a, b in zip(dirs[:-1], dirs[1:]):
        assert float(a.distance(b)) == pytest.approx(float(b.distance(a)), abs=1e-12)


def test_distance_to_self_is_zero_with_finite_jacobian():
    assert float(P.distance(P)) == pytest.approx(0.0, abs=1e-12)
    _, H_p, H_q = P.distance(Unit3(P.point3()), jac_self=True, jac_other=True)
    assert jnp.all(jnp.isfinite(H_p)) and jnp.all(jnp.isfinite(H_q))


# --- Chart ---

def test_retract_scenario_z_axis():
    p = Unit3(jnp.array([0.0, 0.0, 1.0]))
    q = p.retract(jnp.array([0.0, 0.1]))
    b2 = p.basis()[:, 1]
    expected = math.cos(0.1) * p.point3() + math.sin(0.1) * b2
    assert jnp.allclose(jnp.linalg.norm(q.point3()), 1.0, atol=1e-12)
    assert jnp.allclose(q.point3(), expected, atol=1e-12)
    assert math.acos(float(p.dot(q))) == pytest.approx(0.1, abs=1e-9)


def test_retract_zero_returns_same_point():
    assert P.retract(jnp.zeros(2)).equals(P, tol=0.0)


def test_local_coordinates_of_self_is_zero():
    assert jnp.allclose(P.local_coordinates(P), jnp.zeros(2), atol=1e-12)


def test_chart_round_trip():
    for p in _random_directions(10, seed=11):
        for v in [jnp.array([0.3, -0.2]), jnp.array([-1.5, 2.0]), jnp.array([1e-7, 0.0])]:
            assert jnp.allclose(p.local_coordinates(p.retract(v)), v, atol=1e-9)


def test_inverse_chart_round_trip():
    dirs = _random_directions(12, seed=5)
    for p, q in zip(dirs[::2], dirs[1::2]):
        assert p.retract(p.local_coordinates(q)).equals(q, tol=1e-9)
        assert check_manifold_invariants(p, q)


def test_local_coordinates_antipodal_fallback():
    p = Unit3(jnp.array([0.0, 0.0, 1.0]))
    q = Unit3(jnp.array([0.0, 0.0, -1.0]))
    # The direction at the antipode is undefined; only the documented
    # convention (π, 0) and finiteness are checked.
    v, H = p.local_coordinates(q, return_jacobian=True)
    assert jnp.allclose(v, jnp.array([math.pi, 0.0]), atol=0.0)
    assert jnp.all(jnp.isfinite(H))


def test_local_coordinates_jacobian_matches_numerical():
    _, H = P.local_coordinates(Q, return_jacobian=True)
    H_num = numerical_derivative(lambda q: P.local_coordinates(q), Q)
    assert jnp.allclose(H, H_num, atol=1e-6)


def test_local_coordinates_jacobian_is_identity_at_coincidence():
    _, H = P.local_coordinates(P, return_jacobian=True)
    assert jnp.allclose(H, jnp.eye(2), atol=1e-12)
    near = P.retract(jnp.array([1e-6, -2e-6]))
    _, H_near = P.local_coordinates(near, return_jacobian=True)
    assert jnp.allclose(H_near, jnp.eye(2), atol=1e-5)


@pytest.mark.parametrize("eps", [1e-4, 1e-6, 1e-7])
def test_chart_round_trip_close_to_antipode(eps):
    p = P
    b1 = p.basis()[:, 0]
    q = Unit3(-p.point3() + eps * b1)
    v = p.local_coordinates(q)
    # q sits atan(eps) away from -p.
    assert float(jnp.linalg.norm(v)) <= math.pi
    assert float(jnp.linalg.norm(v)) == pytest.approx(math.pi - math.atan(eps), abs=1e-12)
    assert p.retract(v).equals(q, tol=1e-9)


def test_local_coordinates_jacobian_close_to_antipode_is_finite():
    q = Unit3(-P.point3() + 1e-6 * P.basis()[:, 1])
    _, H = P.local_coordinates(q, return_jacobian=True)
    assert jnp.all(jnp.isfinite(H))


@pytest.mark.parametrize("scale", [1e-200, 1e200])
def test_construction_from_extreme_magnitudes_is_unit(scale):
    p = Unit3(jnp.array([1.0, -2.0, 2.0]) * scale)
    assert jnp.allclose(p.point3(), jnp.array([1.0, -2.0, 2.0]) / 3.0, atol=1e-15)
