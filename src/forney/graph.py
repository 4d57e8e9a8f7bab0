"""Forney-style factor graphs: variables, edges, interfaces and nodes.

In a Forney-style factor graph (FFG) every edge connects exactly two node
interfaces and carries one variable. A variable that is shared by more than two
factors is represented by several edges joined through `Equality` nodes, which
`FactorGraph.associate` inserts automatically.

Nodes come in two flavours:

    - `DeltaFactor`: deterministic relations (equality, addition, gain,
      clamped constants). They carry no uncertainty structure of their own.
    - `SoftFactor`: stochastic factors with a genuine distribution family.

The concrete node kinds live in `forney.nodes`.
"""
from __future__ import annotations

import collections
import logging
from collections.abc import Iterator

import attr

from .distributions import Message

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when a model, factorization or rule set is ill-defined."""


@attr.dataclass(eq=False, repr=False)
class Interface:
    """An attachment point of a node; the message on it flows out of the node."""
    node: FactorNode | None
    name: str
    edge: Edge | None = None
    breaker_type: Message | None = None

    @property
    def partner(self) -> Interface | None:
        """The interface at the other end of the edge, if any."""
        if self.edge is None:
            return None
        if self.edge.a is self:
            return self.edge.b
        return self.edge.a

    def __repr__(self) -> str:
        node_id = self.node.id if self.node is not None else "?"
        return f"Interface({node_id}.{self.name})"


@attr.dataclass(eq=False, repr=False)
class Edge:
    """Connects interface `a` to interface `b` and carries one variable."""
    id: str
    variable: Variable | None
    a: Interface | None
    b: Interface | None = None
    graph: FactorGraph | None = None

    @property
    def interfaces(self) -> list[Interface]:
        return [iface for iface in (self.a, self.b) if iface is not None]

    @property
    def nodes(self) -> list[FactorNode]:
        return [iface.node for iface in self.interfaces if iface.node is not None]

    def __repr__(self) -> str:
        return f"Edge({self.id})"


@attr.dataclass(eq=False, repr=False)
class Variable:
    """A named unknown; all of its edges carry the same marginal belief."""
    id: str
    graph: FactorGraph
    edges: list[Edge] = attr.field(factory=list)

    def __repr__(self) -> str:
        return f"Variable({self.id})"


class FactorNode:
    """Base class of all node kinds.

    Subclasses declare their interfaces through `interface_names`. Constructing
    a node attaches those interfaces, in order, to the given variables.
    """
    interface_names: tuple[str, ...] = ()

    def __init__(self, *variables: Variable, id: str | None = None):
        if len(variables) != len(self.interface_names):
            raise ConfigurationError(
                f"{type(self).__name__} expects {len(self.interface_names)} variables "
                f"({', '.join(self.interface_names)}), got {len(variables)}."
            )
        graphs = {v.graph for v in variables}
        if len(graphs) != 1:
            raise ConfigurationError("All variables of a node must belong to the same graph.")
        graph = graphs.pop()
        self._attach(graph, id)
        for iface, variable in zip(self.interfaces, variables):
            graph.associate(iface, variable)

    def _attach(self, graph: FactorGraph, id: str | None):
        self.graph = graph
        self.id = id if id is not None else graph.generate_id(type(self).__name__.lower())
        self.interfaces = [Interface(self, name) for name in self.interface_names]
        self.i = {iface.name: iface for iface in self.interfaces}
        graph.add_node(self)

    @classmethod
    def unconnected(cls, graph: FactorGraph, id: str | None = None) -> FactorNode:
        """Creates a node whose interfaces are not attached to any edge."""
        node = cls.__new__(cls)
        node._attach(graph, id)
        return node

    @property
    def deterministic(self) -> bool:
        return isinstance(self, DeltaFactor)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.id})"


class DeltaFactor(FactorNode):
    """A node encoding an exact functional relation."""


class SoftFactor(FactorNode):
    """A node encoding a stochastic relation."""


class FactorGraph:
    def __init__(self):
        self.nodes: dict[str, FactorNode] = {}
        self.variables: dict[str, Variable] = {}
        self.edges: list[Edge] = []
        self._counters = collections.Counter()
        set_current_graph(self)

    def generate_id(self, prefix: str) -> str:
        self._counters[prefix] += 1
        return f"{prefix}_{self._counters[prefix]}"

    def variable(self, id: str | None = None) -> Variable:
        if id is None:
            id = self.generate_id("variable")
        if id in self.variables:
            raise ConfigurationError(f"Variable id {id!r} is already in use.")
        var = Variable(id, self)
        self.variables[id] = var
        return var

    def constant(self, value, id: str | None = None) -> Variable:
        """Creates a variable clamped to a fixed value."""
        from .nodes import Clamp

        var = self.variable(id if id is not None else self.generate_id("constant"))
        Clamp(var, value)
        return var

    def add_node(self, node: FactorNode):
        if node.id in self.nodes:
            raise ConfigurationError(f"Node id {node.id!r} is already in use.")
        self.nodes[node.id] = node

    def connect(self, variable: Variable, a: Interface, b: Interface | None = None) -> Edge:
        """Creates a new edge for `variable` between interfaces `a` and `b`."""
        count = len(variable.edges)
        edge_id = variable.id if count == 0 else f"{variable.id}_{count + 1}"
        edge = Edge(edge_id, variable, a, b, self)
        a.edge = edge
        if b is not None:
            b.edge = edge
        variable.edges.append(edge)
        self.edges.append(edge)
        return edge

    def associate(self, iface: Interface, variable: Variable):
        """Attaches an interface to the edges of a variable."""
        if iface.edge is not None:
            raise ConfigurationError(f"{iface} is already connected to {iface.edge}.")
        if variable.graph is not self:
            raise ConfigurationError(f"{variable} does not belong to this graph.")
        if not variable.edges:
            self.connect(variable, iface)
            return
        last = variable.edges[-1]
        if last.b is None:
            last.b = iface
            iface.edge = last
            return
        # Split the last edge with an equality constraint
        from .nodes import Equality

        equ = Equality.unconnected(self)
        first, second, third = equ.interfaces
        downstream = last.b
        last.b = first
        first.edge = last
        downstream.edge = None
        self.connect(variable, second, downstream)
        self.connect(variable, third, iface)
        logger.debug(f"Inserted {equ} for {variable}")

    def set_breaker(self, iface: Interface, message_type: Message):
        """Designates an interface whose message is initialized before updating."""
        if iface.node is None or iface.node.graph is not self:
            raise ConfigurationError(f"{iface} does not belong to this graph.")
        iface.breaker_type = message_type

    def degree(self, edge: Edge) -> int:
        """The number of non-Clamp nodes that share the edge."""
        if edge.graph is not self:
            raise ConfigurationError(f"{edge} does not belong to the active graph.")
        from .nodes import Clamp

        return len({id(n) for n in edge.nodes if not isinstance(n, Clamp)})

    def stochastic_edges(self) -> list[Edge]:
        return [edge for edge in self.edges if not is_clamped(edge)]

    def __iter__(self) -> Iterator[FactorNode]:
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)


def clamp_of(edge: Edge):
    """The Clamp node that fixes the variable of the edge, or None.

    A constant used by several nodes is split by Equality nodes, so the Clamp
    may sit on another edge of the same variable.
    """
    from .nodes import Clamp

    edges = edge.variable.edges if edge.variable is not None else [edge]
    for e in edges:
        for node in e.nodes:
            if isinstance(node, Clamp):
                return node
    return None


def is_clamped(edge: Edge) -> bool:
    """Whether the variable of the edge is fixed by a Clamp node."""
    return clamp_of(edge) is not None


def requires_breaker(iface: Interface) -> bool:
    return iface.breaker_type is not None


_current_graph: FactorGraph | None = None


def current_graph() -> FactorGraph:
    """Returns the most recently created graph, creating one if there is none."""
    if _current_graph is None:
        return FactorGraph()
    return _current_graph


def set_current_graph(graph: FactorGraph) -> FactorGraph:
    global _current_graph
    _current_graph = graph
    return graph
