"""Manifold types and the expressions built on them."""
