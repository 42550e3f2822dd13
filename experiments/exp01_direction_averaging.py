from __future__ import annotations

import jax
import jax.numpy as jnp

from chartfg.core.factor_graph import LinearizationConfig, NonlinearFactorGraph
from chartfg.core.noise_model import Isotropic
from chartfg.core.types import key_to_string, symbol
from chartfg.core.values import Values
from chartfg.optimization.expression import constant, leaf
from chartfg.optimization.expression_factor import ExpressionFactor
from chartfg.slam import expressions as ex
from chartfg.slam.rot3 import Rot3
from chartfg.slam.unit3 import Unit3


def setup_problem(num_samples: int = 8, seed: int = 3):
    """
    Joint direction / rotation averaging:

      - d0: an unknown direction, observed directly by noisy samples
      - r0: an unknown rotation, observed through the rotated direction r0·d0
        and through three fixed reference directions

    Factors:
      - direction samples   local(z_k, d0)
      - rotated samples     local(y_k, r0·d0)
      - reference pairs     local(R_true·u_i, r0·u_i)
    """
    d_true = Unit3(jnp.array([0.3, -0.2, 1.0]))
    R_true = Rot3.expmap(jnp.array([0.4, 0.1, -0.3]))

    rng = jax.random.PRNGKey(seed)
    graph = NonlinearFactorGraph()
    noise = Isotropic.from_sigma(2, 0.02)

    d0, r0 = symbol("d", 0), symbol("r", 0)

    for _ in range(num_samples):
        rng, k1, k2 = jax.random.split(rng, 3)
        z = d_true.retract(0.02 * jax.random.normal(k1, (2,), dtype=jnp.float64))
        graph.add(ExpressionFactor(noise, z, leaf(d0)))

        y = R_true.rotate_direction(d_true).retract(0.02 * jax.random.normal(k2, (2,), dtype=jnp.float64))
        graph.add(ExpressionFactor(noise, y, ex.rotate_direction(leaf(r0), leaf(d0))))

    for u in ([1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]):
        u = Unit3(jnp.array(u))
        graph.add(ExpressionFactor(noise, R_true.rotate_direction(u),
                                   ex.rotate_direction(leaf(r0), constant(u))))

    initial = Values()
    initial.insert(d0, Unit3(jnp.array([0.0, 0.0, 1.0])))
    initial.insert(r0, Rot3.identity())
    return graph, initial, d_true, R_true


def gauss_newton(graph: NonlinearFactorGraph, values: Values, max_iters: int = 10,
                 config: LinearizationConfig = LinearizationConfig()) -> Values:
    for it in range(max_iters):
        gfg = graph.linearize(values, config)
        A, b = gfg.jacobian()
        delta = jnp.linalg.lstsq(A, b)[0]
        values = values.retract_vector(delta)
        print(f"iter {it:02d}: error = {graph.error(values):.6e}, |delta| = {float(jnp.linalg.norm(delta)):.3e}")
        if float(jnp.linalg.norm(delta)) < 1e-10:
            break
    return values


def main():
    graph, initial, d_true, R_true = setup_problem()

    print("=== Direction / rotation averaging ===")
    print(f"factors = {len(graph)}, keys = {[key_to_string(k) for k in graph.keys()]}")
    print(f"initial error = {graph.error(initial):.6e}")

    result = gauss_newton(graph, initial, config=LinearizationConfig(max_workers=2))

    d_est = result.at(symbol("d", 0))
    R_est = result.at(symbol("r", 0))
    print(f"d0 true: {d_true}")
    print(f"d0 est:  {d_est}  (angle error {float(jnp.arccos(jnp.clip(d_true.dot(d_est), -1.0, 1.0))):.3e} rad)")
    print(f"r0 true: {R_true}")
    print(f"r0 est:  {R_est}  (|log| error {float(jnp.linalg.norm(R_true.local_coordinates(R_est))):.3e} rad)")


if __name__ == "__main__":
    main()
