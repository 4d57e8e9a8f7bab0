"""Regions of a factor graph whose beliefs are tracked as one unit.

A region is either a single `Variable` or a `Cluster`: a node together with a
subset of its edges whose joint belief is required because the posterior
factorization does not factorize across them.
"""
from __future__ import annotations

from collections.abc import Sequence

import attr

from .graph import Edge, FactorNode, Variable


class InvariantViolation(RuntimeError):
    """Raised when internal bookkeeping of a factorization becomes inconsistent."""


@attr.dataclass(frozen=True, repr=False)
class Cluster:
    """A node and a set of its edges with a joint marginal.

    Two clusters over the same node and the same edges are equal regardless of
    the order in which the edges were discovered.

    Attributes:
        node: The node at which the edges meet.
        edges: The edges of the cluster, in discovery order.
    """
    node: FactorNode = attr.field(eq=False)
    edges: tuple[Edge, ...] = attr.field(converter=tuple, eq=False)
    key: tuple = attr.field(init=False)

    @key.default
    def _key(self):
        return (id(self.node), frozenset(id(e) for e in self.edges))

    def __attrs_post_init__(self):
        if len(self.edges) == 0:
            raise InvariantViolation(f"Cannot construct a cluster at {self.node} without edges.")

    @property
    def id(self) -> str:
        return "_".join([self.node.id] + [e.id for e in self.edges])

    @property
    def variables(self) -> list[Variable]:
        return [e.variable for e in self.edges]

    def __repr__(self) -> str:
        return f"Cluster({self.id})"


Region = Variable | Cluster


def region_key(node: FactorNode, edges: Sequence[Edge]) -> tuple:
    """The identity under which candidate regions are collected before clustering."""
    return (id(node), frozenset(id(e) for e in edges))
