# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
Core typed aliases for ChartFG.

This module defines the small vocabulary shared by every layer of the
linearization core. These types are intentionally minimal: they carry
identity and shape information only, while all numerical work is done by
`jax.numpy` in the manifold and expression layers.

Types
-----
Key
    Unique, totally ordered identifier of an optimization variable. Keys are
    plain integers so that sorting them gives a deterministic block layout.

JacobianMap
    Mapping Key -> dense Jacobian block (rows = output tangent dimension,
    columns = the variable's tangent dimension).

Ordering
    Sequence of keys fixing the column layout of a dense linear system.

Helpers
-------
symbol(chr, index)
    Packs a character and an index into a single Key, e.g. ``symbol("x", 3)``.

symbol_chr(key), symbol_index(key), key_to_string(key)
    Inverse helpers, mostly used for readable error messages.

Notes
-----
Keys produced by `symbol` sort first by character and then by index, which
keeps all poses ("x") together and all landmarks ("l") together in a
linearized factor.
"""

from __future__ import annotations
from typing import Dict, NewType, Sequence

import jax.numpy as jnp

Key = NewType("Key", int)

JacobianMap = Dict[Key, jnp.ndarray]
Ordering = Sequence[Key]

_CHR_BITS = 8
_INDEX_BITS = 56
_INDEX_MASK = (1 << _INDEX_BITS) - 1


def symbol(c: str, index: int) -> Key:
    """Build a Key from a single character and a non-negative index."""
    if len(c) != 1:
        raise ValueError(f"symbol character must be a single character, got {c!r}")
    if index < 0 or index > _INDEX_MASK:
        raise ValueError(f"symbol index {index} out of range")
    return Key((ord(c) << _INDEX_BITS) | index)


def symbol_chr(key: Key) -> str:
    return chr((key >> _INDEX_BITS) & ((1 << _CHR_BITS) - 1))


def symbol_index(key: Key) -> int:
    return key & _INDEX_MASK


def key_to_string(key: Key) -> str:
    """Readable form of a key: ``x3`` for symbols, the plain integer otherwise."""
    c = symbol_chr(key)
    if key >> _INDEX_BITS and c.isprintable():
        return f"{c}{symbol_index(key)}"
    return str(int(key))
