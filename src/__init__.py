# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
ChartFG: manifold charts and expression-based linearization on JAX.

Importing the package switches JAX to 64-bit floats. The chart tolerances
(e.g. the 1e-16 coincidence test in ``Unit3.local_coordinates``) and the
finite-difference Jacobian checks are meaningless in float32.
"""

import jax

jax.config.update("jax_enable_x64", True)

__version__ = "0.1.0"
