# Copyright (c) 2025.
# This file is part of ChartFG, released under the MIT License.
"""
Expression engine: values and Jacobian blocks of composed functions.

An expression is a directed acyclic graph whose leaves are variables
(identified by a `Key`) or constants, and whose inner nodes apply an
operation to the values of their children. Evaluating an expression against
a `Values` assignment yields the output value and, on request, a
`JacobianMap`: for every key reachable from the root, the derivative of the
output's local coordinates with respect to that key's tangent coordinates.

Evaluation scheme
-----------------
1. Nodes are put in topological order once (children before parents); a node
   shared by several parents is evaluated a single time.

2. Forward pass: each node computes its value from its children's values. An
   operation is asked for the derivative with respect to a child only if that
   child's subtree contains at least one key; a value-only evaluation asks for
   none.

3. Reverse pass: starting from the identity at the root, each node passes
   `adjoint @ H_child` down to its children. Contributions that reach the same
   node or the same key through different paths are summed.

Operations
----------
A `FunctionExpression` wraps an operation with the signature

    op(*inputs, want: Tuple[bool, ...]) -> (value, Tuple[Optional[H], ...])

where `want[i]` says whether the derivative with respect to input i is needed
and H_i has shape (dim(value), dim(input_i)). `JaxFunctionExpression` builds
such an operation from a plain `jax.numpy` function on Euclidean inputs and
differentiates it with `jax.jacfwd`.
"""

from __future__ import annotations

import abc
from typing import Any, Callable, Dict, FrozenSet, List, Sequence, Tuple

import jax
import jax.numpy as jnp

from chartfg.core.types import JacobianMap, Key
from chartfg.core.values import Values
from chartfg.slam import manifold

Operation = Callable[..., Tuple[Any, Tuple[Any, ...]]]


class Expression(abc.ABC):
    """Node of an expression graph."""

    def __init__(self, children: Sequence["Expression"] = ()):
        self._children: Tuple[Expression, ...] = tuple(children)
        keys: FrozenSet[Key] = frozenset()
        for child in self._children:
            keys = keys | child.keys()
        self._keys = keys

    @property
    def children(self) -> Tuple["Expression", ...]:
        return self._children

    def keys(self) -> FrozenSet[Key]:
        return self._keys

    def dims(self, values: Values) -> Dict[Key, int]:
        """Tangent dimension of every key in this expression, in key order."""
        return {key: values.dim(key) for key in sorted(self._keys)}

    @abc.abstractmethod
    def _evaluate(self, values: Values, inputs: List[Any], want: Tuple[bool, ...]):
        """Return (value, per-child Jacobians) for this node."""

    def value(self, values: Values) -> Any:
        value, _ = self._run(values, with_jacobians=False)
        return value

    def value_and_jacobians(self, values: Values) -> Tuple[Any, JacobianMap]:
        return self._run(values, with_jacobians=True)

    def _run(self, values: Values, with_jacobians: bool):
        order = _topological_order(self)
        results: Dict[int, Any] = {}
        local_jacobians: Dict[int, Tuple[Any, ...]] = {}

        for node in order:
            inputs = [results[id(child)] for child in node._children]
            if with_jacobians:
                want = tuple(bool(child._keys) for child in node._children)
            else:
                want = (False,) * len(node._children)
            value, H = node._evaluate(values, inputs, want)
            results[id(node)] = value
            if with_jacobians and any(want):
                local_jacobians[id(node)] = tuple(
                    None if h is None else jnp.reshape(
                        jnp.asarray(h, dtype=jnp.float64),
                        (manifold.dimension(value), manifold.dimension(x)),
                    )
                    for h, x in zip(H, inputs)
                )

        output = results[id(self)]
        if not with_jacobians:
            return output, None

        jacobians: JacobianMap = {}
        if not self._keys:
            return output, jacobians

        adjoints: Dict[int, jnp.ndarray] = {id(self): jnp.eye(manifold.dimension(output))}
        for node in reversed(order):
            adjoint = adjoints.pop(id(node), None)
            if adjoint is None:
                continue
            if isinstance(node, LeafExpression):
                if node.key in jacobians:
                    jacobians[node.key] = jacobians[node.key] + adjoint
                else:
                    jacobians[node.key] = adjoint
                continue
            for child, H in zip(node._children, local_jacobians.get(id(node), ())):
                if H is None or not child._keys:
                    continue
                contribution = adjoint @ H
                if id(child) in adjoints:
                    adjoints[id(child)] = adjoints[id(child)] + contribution
                else:
                    adjoints[id(child)] = contribution

        return output, dict(sorted(jacobians.items()))


def _topological_order(root: Expression) -> List[Expression]:
    """Children-first ordering of the distinct nodes below `root`."""
    order: List[Expression] = []
    seen = set()
    stack = [(root, False)]
    while stack:
        node, expanded = stack.pop()
        if expanded:
            order.append(node)
            continue
        if id(node) in seen:
            continue
        seen.add(id(node))
        stack.append((node, True))
        for child in reversed(node._children):
            if id(child) not in seen:
                stack.append((child, False))
    return order


class LeafExpression(Expression):
    """Variable lookup; its Jacobian with respect to its own key is the identity."""

    def __init__(self, key: Key):
        super().__init__()
        self.key = key
        self._keys = frozenset([key])

    def _evaluate(self, values, inputs, want):
        return values.at(self.key), ()

    def __repr__(self) -> str:
        return f"LeafExpression({self.key})"


class ConstantExpression(Expression):
    def __init__(self, value: Any):
        super().__init__()
        self.constant = value

    def _evaluate(self, values, inputs, want):
        return self.constant, ()

    def __repr__(self) -> str:
        return f"ConstantExpression({self.constant!r})"


class FunctionExpression(Expression):
    """Applies `op` to the values of its children."""

    def __init__(self, op: Operation, *children: Expression, name: str = ""):
        super().__init__(children)
        self.op = op
        self.name = name or getattr(op, "__name__", "op")

    def _evaluate(self, values, inputs, want):
        value, H = self.op(*inputs, want=want)
        if len(H) != len(inputs):
            raise ValueError(
                f"operation {self.name} returned {len(H)} Jacobians for {len(inputs)} inputs"
            )
        return value, H

    def __repr__(self) -> str:
        args = ", ".join(repr(c) for c in self._children)
        return f"{self.name}({args})"


class JaxFunctionExpression(FunctionExpression):
    """
    Euclidean function differentiated by JAX.

    `fn` takes and returns `jax.numpy` arrays (or floats). Only inputs whose
    derivative is requested are differentiated, one `jax.jacfwd` per input.
    """

    def __init__(self, fn: Callable[..., jnp.ndarray], *children: Expression, name: str = ""):
        self.fn = fn

        def op(*inputs, want):
            args = [jnp.asarray(x, dtype=jnp.float64) for x in inputs]
            value = fn(*args)
            H = tuple(
                jax.jacfwd(fn, argnums=i)(*args) if w else None
                for i, w in enumerate(want)
            )
            return value, H

        super().__init__(op, *children, name=name or getattr(fn, "__name__", "jax_fn"))


def as_expression(x: Any) -> Expression:
    """Wrap plain values as constants; expressions pass through."""
    if isinstance(x, Expression):
        return x
    return ConstantExpression(x)


def leaf(key: Key) -> LeafExpression:
    return LeafExpression(key)


def constant(value: Any) -> ConstantExpression:
    return ConstantExpression(value)


def apply(op: Operation, *args: Any, name: str = "") -> FunctionExpression:
    return FunctionExpression(op, *(as_expression(a) for a in args), name=name)


def apply_jax(fn: Callable[..., jnp.ndarray], *args: Any, name: str = "") -> JaxFunctionExpression:
    return JaxFunctionExpression(fn, *(as_expression(a) for a in args), name=name)
