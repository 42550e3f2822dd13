# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.

import time

import jax
import jax.numpy as jnp

from chartfg.core.factor_graph import LinearizationConfig, NonlinearFactorGraph
from chartfg.core.noise_model import Isotropic
from chartfg.core.types import symbol
from chartfg.core.values import Values
from chartfg.optimization.expression import leaf
from chartfg.optimization.expression_factor import ExpressionFactor
from chartfg.slam import expressions as ex
from chartfg.slam.rot3 import Rot3
from chartfg.slam.unit3 import Unit3


def build_bearing_graph(num_frames: int = 20, num_landmarks: int = 30, seed: int = 0):
    """
    Rotation-only bearing problem:
        frame i observes landmark direction j as R_iᵀ d_j
    Each observation becomes one ExpressionFactor on (r_i, d_j).
    """
    rng = jax.random.PRNGKey(seed)
    rng, *lm_keys = jax.random.split(rng, num_landmarks + 1)
    landmarks = [Unit3.random(k) for k in lm_keys]

    rotations = []
    for i in range(num_frames):
        rng, sub = jax.random.split(rng)
        rotations.append(Rot3.expmap(0.3 * jax.random.normal(sub, (3,), dtype=jnp.float64)))

    graph = NonlinearFactorGraph()
    values = Values()
    noise = Isotropic.from_sigma(2, 0.01)

    for i, R in enumerate(rotations):
        values.insert(symbol("r", i), R.retract(jnp.full(3, 0.02)))
    for j, d in enumerate(landmarks):
        values.insert(symbol("d", j), d.retract(jnp.array([0.01, -0.01])))

    for i, R in enumerate(rotations):
        R_inv = R.inverse()
        for j, d in enumerate(landmarks):
            measured = R_inv.rotate_direction(d)
            predicted = ex.rotate_direction(ex.inverse(leaf(symbol("r", i))), leaf(symbol("d", j)))
            graph.add(ExpressionFactor(noise, measured, predicted))

    # Anchor the first frame.
    graph.add(ExpressionFactor(Isotropic.from_sigma(3, 1e-3), rotations[0], leaf(symbol("r", 0))))
    return graph, values


def run_benchmark(num_frames: int = 20, num_landmarks: int = 30, max_workers: int = 4):
    print("=== Linearization Benchmark (Unit3 / Rot3 bearings) ===")
    print(f"num_frames = {num_frames}, num_landmarks = {num_landmarks}")

    graph, values = build_bearing_graph(num_frames, num_landmarks)
    print(f"factors = {len(graph)}, variables = {len(values)}, tangent dim = {values.total_dim()}")

    for workers in (1, max_workers):
        cfg = LinearizationConfig(max_workers=workers)

        # Warmup: JAX dispatch and per-instance basis caches.
        graph.linearize(values, cfg)

        t0 = time.time()
        gfg = graph.linearize(values, cfg)
        A, b = gfg.jacobian()
        A.block_until_ready()
        t1 = time.time()

        print(f"max_workers = {workers}: {(t1 - t0) * 1000:.3f} ms, A shape = {A.shape}")

    print(f"initial error = {graph.error(values):.6f}")


if __name__ == "__main__":
    run_benchmark(num_frames=20, num_landmarks=30, max_workers=4)
