"""Generation of message-passing schedules for posterior factors.

A schedule is an ordered list of `ScheduleEntry` instructions. Each entry
computes one message (targeting the interface it flows out of) or one
marginal (targeting a `Variable` or a `Cluster`) with an update rule selected
by `forney.rules`. Every inbound reference of an entry is produced earlier in
the list, or is a constant (`Clamp`) or a belief (`MarginalReference`).

The message order follows a depth-first walk over the dependency graph of the
interfaces, started from the targets of the factor and from its breaker
interfaces. Breaker interfaces are leaves of the dependency graph: a walk that
reaches one uses the vague initial message that opens the schedule, which is
what makes feedback loops schedulable. The layout of a schedule is

    1. a vague initialization entry for every breaker interface,
    2. the message updates, in depth-first discovery order,
    3. one marginal entry per target variable and per target cluster.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence

import attr
import networkx as nx

from .distributions import Marginal, Message, PointMass, TypeDescriptor
from .graph import ConfigurationError, DeltaFactor, FactorNode, Interface, Variable, clamp_of, is_clamped
from .nodes import Clamp, Composite, Terminal
from .region import Cluster, Region
from .rules import RULES, NoApplicableRuleError, Rule, RuleKind, RuleRegistry, initialization_rule

logger = logging.getLogger(__name__)


class ScheduleError(ConfigurationError):
    """Raised when the messages of a factor depend on each other in a loop."""

    def __init__(self, cycle: Sequence[Interface]):
        self.cycle = list(cycle)
        super().__init__(
            f"Messages on interfaces {self.cycle} depend on each other; "
            "designate a breaker interface on the loop."
        )


@attr.dataclass(frozen=True)
class MarginalReference:
    """An inbound belief over a region, owned by this or another posterior factor."""
    region: Region
    type: Marginal = Marginal()


@attr.dataclass(eq=False, repr=False)
class ScheduleEntry:
    """One instruction of a schedule.

    Attributes:
        target: The interface the message flows out of, or the region of a marginal.
        rule: The selected update rule.
        inbounds: One reference per inbound: an earlier entry, a Clamp node, a
            MarginalReference, or None at the outbound position.
        inbound_types: The types that were used to select the rule.
    """
    target: Interface | Region
    rule: Rule
    inbounds: tuple = ()
    inbound_types: tuple = ()

    @property
    def outbound_type(self) -> TypeDescriptor:
        return self.rule.outbound_type

    @property
    def is_marginal(self) -> bool:
        return isinstance(self.target, (Variable, Cluster))

    def __repr__(self) -> str:
        return f"ScheduleEntry({self.target!r}, {self.rule.name})"


def _inbound_type(inbound, variational: bool) -> TypeDescriptor | None:
    if inbound is None:
        return None
    if isinstance(inbound, Clamp):
        return Marginal(PointMass) if variational else Message(PointMass)
    if isinstance(inbound, MarginalReference):
        return inbound.type
    return inbound.outbound_type


def _label(target) -> str:
    if isinstance(target, Interface):
        return f"{target.node.id}.{target.name}"
    return f"q({target.id})"


def format_schedule(schedule: Sequence[ScheduleEntry]) -> str:
    """Renders a schedule with one numbered line per entry."""
    index = {id(entry): i for i, entry in enumerate(schedule, 1)}
    lines = []
    for i, entry in enumerate(schedule, 1):
        args = []
        for inbound in entry.inbounds:
            if inbound is None:
                args.append("-")
            elif isinstance(inbound, Clamp):
                args.append(inbound.id)
            elif isinstance(inbound, MarginalReference):
                args.append(_label(inbound.region))
            else:
                args.append(f"#{index.get(id(inbound), '?')}")
        lines.append(f"{i}. {_label(entry.target)} <- {entry.rule.name}({', '.join(args)})")
    return "\n".join(lines)


class _MessageWalker:
    """Shared depth-first scheduling of messages over a dependency graph."""

    def __init__(self, registry: RuleRegistry):
        self.registry = registry
        self.entries: list[ScheduleEntry] = []
        self.latest: dict[Interface, ScheduleEntry] = {}

    def rule_kind(self, node: FactorNode) -> RuleKind:
        return RuleKind.SUM_PRODUCT

    def is_leaf(self, iface: Interface) -> bool:
        return False

    def message_into(self, iface: Interface):
        """The reference to the message that arrives at `iface`."""
        raise NotImplementedError

    def dependencies(self, iface: Interface) -> list[Interface]:
        """Interfaces whose outbound messages the message out of `iface` consumes."""
        raise NotImplementedError

    def append(self, entry: ScheduleEntry):
        self.entries.append(entry)
        if isinstance(entry.target, Interface):
            self.latest[entry.target] = entry

    def dependency_graph(self, roots: Sequence[Interface]) -> nx.DiGraph:
        graph = nx.DiGraph()
        stack = list(roots)
        seen = set()
        while stack:
            iface = stack.pop()
            if iface in seen:
                continue
            seen.add(iface)
            graph.add_node(iface)
            if self.is_leaf(iface):
                continue
            for dep in self.dependencies(iface):
                graph.add_edge(iface, dep)
                stack.append(dep)
        if not nx.is_directed_acyclic_graph(graph):
            cycle = nx.find_cycle(graph)
            raise ScheduleError([u for u, _ in cycle])
        return graph

    def walk(self, graph: nx.DiGraph, root: Interface):
        for iface in nx.dfs_postorder_nodes(graph, source=root):
            if iface in self.latest or self.is_leaf(iface):
                continue
            self.schedule_message(iface)

    def message_inbounds(self, iface: Interface, kind: RuleKind) -> list:
        inbounds = []
        for other in iface.node.interfaces:
            if other is iface:
                inbounds.append(None)
            elif other.edge is None:
                raise ConfigurationError(f"{other} is not connected to an edge.")
            elif is_clamped(other.edge):
                inbounds.append(clamp_of(other.edge))
            else:
                inbounds.append(self.message_into(other))
        return inbounds

    def schedule_message(self, iface: Interface, outbound_type: Message | None = None) -> ScheduleEntry:
        node = iface.node
        kind = self.rule_kind(node)
        inbounds = self.message_inbounds(iface, kind)
        types = tuple(_inbound_type(i, kind is not RuleKind.SUM_PRODUCT) for i in inbounds)
        try:
            rule = self.registry.dispatch(type(node), outbound_type, types, kind)
        except NoApplicableRuleError:
            if kind is not RuleKind.SUM_PRODUCT or not isinstance(node, Composite):
                raise
            return self.inline(iface, inbounds)
        entry = ScheduleEntry(iface, rule, tuple(inbounds), types)
        self.append(entry)
        return entry

    def inline(self, iface: Interface, inbounds: list) -> ScheduleEntry:
        """Schedules the message out of a composite node through its inner graph."""
        node = iface.node
        logger.debug(f"No shortcut rule for {node}; inlining its inner schedule")
        walker = _InlineWalker(node, dict(zip(node.interface_names, inbounds)), self.registry)
        entries = walker.build(iface.name)
        last = entries[-1]
        last.target = iface
        for entry in entries[:-1]:
            self.entries.append(entry)
        self.append(last)
        return last


class _InlineWalker(_MessageWalker):
    """Schedules messages inside the inner graph of a composite node."""

    def __init__(self, composite: Composite, outer: dict, registry: RuleRegistry):
        super().__init__(registry)
        self.composite = composite
        self.outer = outer

    def is_leaf(self, iface: Interface) -> bool:
        return isinstance(iface.node, Terminal)

    def message_into(self, iface: Interface):
        partner = iface.partner
        if partner is None:
            raise ConfigurationError(f"{iface} of {self.composite} has a dangling inner edge.")
        if isinstance(partner.node, Terminal):
            inbound = self.outer[partner.node.outer]
            if inbound is None:
                raise ConfigurationError(
                    f"The inner graph of {self.composite} routes interface {partner.node.outer!r} back to itself."
                )
            return inbound
        return self.latest[partner]

    def dependencies(self, iface: Interface) -> list[Interface]:
        deps = []
        for other in iface.node.interfaces:
            if other is iface or other.edge is None or is_clamped(other.edge):
                continue
            if other.partner is None:
                raise ConfigurationError(f"{other} of {self.composite} has a dangling inner edge.")
            deps.append(other.partner)
        return deps

    def build(self, name: str) -> list[ScheduleEntry]:
        target = self.composite.terminals[name].interfaces[0].partner
        if target is None:
            raise ConfigurationError(f"Interface {name!r} of {self.composite} is not used by its inner graph.")
        graph = self.dependency_graph([target])
        self.walk(graph, target)
        return self.entries


class ScheduleBuilder(_MessageWalker):
    """Builds the schedule of one posterior factor.

    Args:
      pf: the posterior factor, with its targets set.
      pfz: the factorization that owns `pf`.
      registry: the rules to dispatch on; defaults to `forney.rules.RULES`.
    """

    def __init__(self, pf, pfz, registry: RuleRegistry | None = None):
        super().__init__(registry if registry is not None else RULES)
        self.pf = pf
        self.pfz = pfz
        self.breakers = sorted(pf.breaker_interfaces, key=lambda i: (i.node.id, i.name))
        self.initial: dict[Interface, ScheduleEntry] = {}
        self._kinds: dict[FactorNode, RuleKind] = {}

    def rule_kind(self, node: FactorNode) -> RuleKind:
        """Selects the kind of update for messages out of `node`.

        Sum-product applies when the node is deterministic or all its
        stochastic edges are internal to the factor. Otherwise the node is
        updated by structured variational rules if a cluster is registered at
        it, and by naive variational rules if not.
        """
        if node in self._kinds:
            return self._kinds[node]
        edges = [i.edge for i in node.interfaces if i.edge is not None and not is_clamped(i.edge)]
        if isinstance(node, DeltaFactor) or all(e in self.pf for e in edges):
            kind = RuleKind.SUM_PRODUCT
        elif any((node, e) in self.pfz.node_edge_to_cluster for e in edges):
            kind = RuleKind.STRUCTURED_VARIATIONAL
        elif sum(1 for e in edges if e in self.pf) > 1:
            raise ConfigurationError(
                f"{node} has several edges in posterior factor {self.pf.id!r} but no cluster; "
                "set the targets with external_targets=True."
            )
        else:
            kind = RuleKind.NAIVE_VARIATIONAL
        self._kinds[node] = kind
        return kind

    def region(self, node: FactorNode, edge) -> Region:
        return self.pfz.node_edge_to_cluster.get((node, edge), edge.variable)

    def is_leaf(self, iface: Interface) -> bool:
        return iface in self.initial

    def message_from(self, iface: Interface) -> ScheduleEntry:
        if iface in self.latest:
            return self.latest[iface]
        return self.initial[iface]

    def message_into(self, iface: Interface) -> ScheduleEntry:
        if iface.partner is None:
            raise ConfigurationError(f"{iface} is on a dangling edge and receives no message.")
        return self.message_from(iface.partner)

    def dependencies(self, iface: Interface) -> list[Interface]:
        kind = self.rule_kind(iface.node)
        if kind is RuleKind.NAIVE_VARIATIONAL:
            return []
        deps = []
        for other in iface.node.interfaces:
            if other is iface or other.edge is None or is_clamped(other.edge):
                continue
            if kind is RuleKind.STRUCTURED_VARIATIONAL and other.edge not in self.pf:
                continue
            if other.partner is None:
                raise ConfigurationError(f"{other} is on a dangling edge and receives no message.")
            deps.append(other.partner)
        return deps

    def message_inbounds(self, iface: Interface, kind: RuleKind) -> list:
        if kind is RuleKind.SUM_PRODUCT:
            return super().message_inbounds(iface, kind)
        node = iface.node
        inbounds = []
        regions = []
        for other in node.interfaces:
            if other is iface:
                inbounds.append(None)
            elif other.edge is None:
                raise ConfigurationError(f"{other} is not connected to an edge.")
            elif is_clamped(other.edge):
                inbounds.append(clamp_of(other.edge))
            elif kind is RuleKind.STRUCTURED_VARIATIONAL and other.edge in self.pf:
                inbounds.append(self.message_into(other))
            else:
                region = self.region(node, other.edge)
                if region not in regions:
                    regions.append(region)
                    inbounds.append(MarginalReference(region))
        return inbounds

    def marginal_inbounds(self, cluster: Cluster) -> list:
        inbounds = []
        regions = []
        for iface in cluster.node.interfaces:
            if iface.edge is None:
                raise ConfigurationError(f"{iface} is not connected to an edge.")
            elif is_clamped(iface.edge):
                inbounds.append(clamp_of(iface.edge))
            elif iface.edge in self.pf:
                inbounds.append(self.message_into(iface))
            else:
                region = self.region(cluster.node, iface.edge)
                if region not in regions:
                    regions.append(region)
                    inbounds.append(MarginalReference(region))
        return inbounds

    def schedule_marginal(self, region: Region) -> ScheduleEntry:
        if isinstance(region, Cluster):
            node_type = type(region.node)
            inbounds = self.marginal_inbounds(region)
        else:
            node_type = None
            edge = region.edges[0]
            inbounds = [self.message_from(i) for i in edge.interfaces]
        types = tuple(_inbound_type(i, True) for i in inbounds)
        rule = self.registry.dispatch(node_type, None, types, RuleKind.MARGINAL)
        entry = ScheduleEntry(region, rule, tuple(inbounds), types)
        self.append(entry)
        return entry

    def roots(self) -> list[Interface]:
        roots = []
        for variable in sorted(self.pf.target_variables, key=lambda v: v.id):
            roots.extend(variable.edges[0].interfaces)
        for cluster in sorted(self.pf.target_clusters, key=lambda c: c.id):
            for iface in cluster.node.interfaces:
                if iface.edge is not None and iface.edge in self.pf and iface.partner is not None:
                    roots.append(iface.partner)
        return roots

    def build(self) -> list[ScheduleEntry]:
        for iface in self.breakers:
            entry = ScheduleEntry(iface, initialization_rule(iface.breaker_type))
            self.initial[iface] = entry
            self.entries.append(entry)

        roots = self.roots()
        breaker_deps = [dep for b in self.breakers for dep in self.dependencies(b)]
        graph = self.dependency_graph(roots + breaker_deps)
        for root in roots:
            self.walk(graph, root)
        for breaker in self.breakers:
            for dep in self.dependencies(breaker):
                self.walk(graph, dep)
            self.schedule_message(breaker, outbound_type=breaker.breaker_type)

        for variable in sorted(self.pf.target_variables, key=lambda v: v.id):
            self.schedule_marginal(variable)
        for cluster in sorted(self.pf.target_clusters, key=lambda c: c.id):
            self.schedule_marginal(cluster)
        return self.entries


def generate_schedule(pf, pfz, registry: RuleRegistry | None = None) -> list[ScheduleEntry]:
    """Generates the schedule of a posterior factor."""
    schedule = ScheduleBuilder(pf, pfz, registry).build()
    logger.debug(f"Schedule of posterior factor {pf.id!r}:\n{format_schedule(schedule)}")
    return schedule
