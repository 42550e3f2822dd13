# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
Expression builders for the geometry types.

Each builder wraps a `Unit3` / `Rot3` method as a `FunctionExpression`
operation. Arguments may be expressions or plain values; plain values become
constants. Typical use:

    R = leaf(symbol("r", 0))
    d = leaf(symbol("d", 0))
    predicted = rotate_direction(R, d)
    factor = ExpressionFactor(model, measured_direction, predicted)
"""

from __future__ import annotations

from typing import Any, Callable

from chartfg.optimization.expression import (
    FunctionExpression,
    apply,
    constant,
    leaf,
)
from .rot3 import Rot3
from .unit3 import Unit3

__all__ = [
    "leaf",
    "constant",
    "unit3_from_point3",
    "dot",
    "error",
    "distance",
    "rotate",
    "unrotate",
    "rotate_direction",
    "compose",
    "between",
    "inverse",
]


def _unary(method: Callable[..., Any], name: str):
    def op(x, want):
        if not want[0]:
            return method(x), (None,)
        value, H = method(x, True)
        return value, (H,)

    op.__name__ = name
    return op


def _binary(method: Callable[..., Any], name: str):
    def op(a, b, want):
        if not any(want):
            return method(a, b), (None, None)
        value, H_a, H_b = method(a, b, want[0], want[1])
        return value, (H_a, H_b)

    op.__name__ = name
    return op


_from_point3 = _unary(Unit3.from_point3, "unit3_from_point3")
_inverse = _unary(Rot3.inverse, "inverse")
_dot = _binary(Unit3.dot, "dot")
_error = _binary(Unit3.error_vector, "error")
_distance = _binary(Unit3.distance, "distance")
_rotate = _binary(Rot3.rotate, "rotate")
_unrotate = _binary(Rot3.unrotate, "unrotate")
_rotate_direction = _binary(Rot3.rotate_direction, "rotate_direction")
_compose = _binary(Rot3.compose, "compose")
_between = _binary(Rot3.between, "between")


def unit3_from_point3(point: Any) -> FunctionExpression:
    """Direction of a Euclidean 3-vector expression."""
    return apply(_from_point3, point)


def dot(p: Any, q: Any) -> FunctionExpression:
    return apply(_dot, p, q)


def error(p: Any, q: Any) -> FunctionExpression:
    """Tangent-plane error of q at p (2-vector)."""
    return apply(_error, p, q)


def distance(p: Any, q: Any) -> FunctionExpression:
    return apply(_distance, p, q)


def rotate(R: Any, point: Any) -> FunctionExpression:
    return apply(_rotate, R, point)


def unrotate(R: Any, point: Any) -> FunctionExpression:
    return apply(_unrotate, R, point)


def rotate_direction(R: Any, direction: Any) -> FunctionExpression:
    return apply(_rotate_direction, R, direction)


def compose(R1: Any, R2: Any) -> FunctionExpression:
    return apply(_compose, R1, R2)


def between(R1: Any, R2: Any) -> FunctionExpression:
    return apply(_between, R1, R2)


def inverse(R: Any) -> FunctionExpression:
    return apply(_inverse, R)
