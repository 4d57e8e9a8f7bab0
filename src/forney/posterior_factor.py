"""Posterior factors and the selection of their targets.

A posterior factor is one block of a structured posterior factorization. It
owns a set of internal edges: the stochastic edges reached from a group of
variables by extending across deterministic nodes. Before a schedule can be
generated, `set_targets` decides which beliefs the factor has to expose:

    - variable marginals that were requested by the caller,
    - marginals that other posterior factors consume (external targets),
    - the marginals that enter the free energy, selected by counting numbers.

Joint beliefs over several edges at one node are tracked as `Cluster` regions.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable

import attr

from .graph import ConfigurationError, DeltaFactor, Edge, FactorNode, Interface, Variable, is_clamped, requires_breaker
from .nodes import Clamp, Equality
from .region import Cluster, InvariantViolation, region_key

logger = logging.getLogger(__name__)


@attr.dataclass(frozen=True)
class CountingNumber:
    """Multiplicity of a region in the free-energy decomposition.

    A pinned counting number belongs to a region whose average energy has to
    be evaluated; the region is required regardless of the value.
    """
    value: int = 0
    pinned: bool = False

    def __add__(self, other: CountingNumber) -> CountingNumber:
        return CountingNumber(self.value + other.value, self.pinned or other.pinned)

    @property
    def required(self) -> bool:
        return self.pinned or self.value != 0


def increase(table: dict, key, amount: int, pin: bool = False):
    """Adds `amount` to the counting number stored under `key`."""
    table[key] = table.get(key, CountingNumber()) + CountingNumber(amount, pin)


def _variables(variables) -> list[Variable]:
    if isinstance(variables, Variable):
        return [variables]
    return list(variables)


class PosteriorFactor:
    """A block of the posterior factorization.

    Attributes:
        id: The identifier of the factor within its factorization.
        internal_edges: The stochastic edges owned by the factor, in graph order.
        target_variables: Variables whose marginal the factor exposes.
        target_clusters: Clusters whose joint marginal the factor exposes.
        breaker_interfaces: Interfaces seeded with an initial message.
        schedule: The generated schedule, or None before `prepare`.
    """

    def __init__(self, pfz, variables: Variable | Iterable[Variable] | None = None, id: str | None = None):
        self.id = id if id is not None else pfz.generate_id()
        if self.id in pfz.posterior_factors:
            raise ConfigurationError(f"Posterior factor id {self.id!r} is already in use.")
        graph = pfz.graph
        if variables is None:
            seeds = graph.stochastic_edges()
        else:
            seeds = []
            for var in _variables(variables):
                if var.graph is not graph:
                    raise ConfigurationError(f"{var} does not belong to the factorized graph.")
                seeds.extend(e for e in var.edges if not is_clamped(e))
        internal = extend(seeds)
        for other in pfz.values():
            shared = [e for e in other.internal_edges if e in internal]
            if shared:
                raise InvariantViolation(
                    f"Edges {shared} are claimed by posterior factors {other.id!r} and {self.id!r}."
                )
        self.internal_edges = tuple(e for e in graph.edges if e in internal)
        self._internal = internal
        self.target_variables: list[Variable] = []
        self.target_clusters: list[Cluster] = []
        self.breaker_interfaces: list[Interface] = []
        self.counting_numbers = {}
        self.schedule = None
        pfz.posterior_factors[self.id] = self
        logger.debug(f"Posterior factor {self.id!r} owns edges {list(self.internal_edges)}")

    def __contains__(self, edge: Edge) -> bool:
        return edge in self._internal

    def __repr__(self) -> str:
        return f"PosteriorFactor({self.id!r})"


def extend(edges: Iterable[Edge]) -> set[Edge]:
    """Closes a set of stochastic edges over deterministic nodes.

    The extension continues through every non-Clamp `DeltaFactor` and stops at
    stochastic nodes. Clamped edges are never included.
    """
    result = set()
    stack = [e for e in edges if not is_clamped(e)]
    while stack:
        edge = stack.pop()
        if edge in result:
            continue
        result.add(edge)
        for node in edge.nodes:
            if not isinstance(node, DeltaFactor) or isinstance(node, Clamp):
                continue
            for iface in node.interfaces:
                if iface.edge is not None and iface.edge not in result and not is_clamped(iface.edge):
                    stack.append(iface.edge)
    return result


def _unique(items):
    seen = set()
    out = []
    for item in items:
        if id(item) not in seen:
            seen.add(id(item))
            out.append(item)
    return out


def nodes_connected_to_internal_edges(pf: PosteriorFactor) -> list[FactorNode]:
    return _unique(node for edge in pf.internal_edges for node in edge.nodes)


def nodes_connected_to_external_edges(pf: PosteriorFactor) -> list[FactorNode]:
    """Nodes of the factor that also touch stochastic edges of other factors."""
    result = []
    for node in nodes_connected_to_internal_edges(pf):
        for iface in node.interfaces:
            edge = iface.edge
            if edge is not None and edge not in pf and not is_clamped(edge):
                result.append(node)
                break
    return result


def local_stochastic_internal_edges(node: FactorNode, pf: PosteriorFactor) -> list[Edge]:
    """The internal edges at `node`, in interface order."""
    return [
        iface.edge for iface in node.interfaces
        if iface.edge is not None and iface.edge in pf and not is_clamped(iface.edge)
    ]


def _validate(pf: PosteriorFactor):
    for edge in pf.internal_edges:
        if edge.variable is None:
            raise ConfigurationError(f"{edge} does not carry a variable.")
        for iface in edge.interfaces:
            if iface.node is None:
                raise ConfigurationError(f"{iface} on {edge} does not belong to a node.")


def set_targets(
    pf: PosteriorFactor,
    pfz,
    target_variables: Iterable[Variable] = (),
    free_energy: bool = False,
    external_targets: bool = False,
) -> PosteriorFactor:
    """Populates the targets of a posterior factor.

    The lookup tables of the factorization (edge to factor, node and edge to
    cluster) are filled at the same time, and the counting-number tables when
    free energy is requested.

    Args:
      pf: the posterior factor.
      pfz: the factorization that owns `pf`.
      target_variables: variables whose marginals are requested.
      free_energy: whether the factor must expose the free-energy regions.
      external_targets: whether the factor must expose the regions consumed
        by other posterior factors.
    Returns:
      the posterior factor.
    """
    _validate(pf)
    # Candidate joint regions by key; identical regions found by different
    # passes collapse to one entry
    large_regions = {}

    def add_region(node, edges):
        large_regions.setdefault(region_key(node, edges), (node, list(edges)))

    def add_variable(variable):
        if not any(variable is v for v in pf.target_variables):
            pf.target_variables.append(variable)

    for variable in target_variables:
        if variable.edges and variable.edges[0] in pf:
            add_variable(variable)

    if external_targets:
        for node in nodes_connected_to_external_edges(pf):
            if isinstance(node, DeltaFactor):
                continue
            edges = local_stochastic_internal_edges(node, pf)
            if len(edges) == 1:
                add_variable(edges[0].variable)
            elif len(edges) > 1:
                add_region(node, edges)

    cluster_counts = {}
    if free_energy:
        variable_counts = {}
        regions = {}
        for node in nodes_connected_to_internal_edges(pf):
            edges = local_stochastic_internal_edges(node, pf)
            if isinstance(node, Clamp):
                continue
            elif not isinstance(node, DeltaFactor):
                if len(edges) == 1:
                    increase(variable_counts, edges[0].variable, 1, pin=True)
                elif len(edges) > 1:
                    key = region_key(node, edges)
                    regions[key] = (node, edges)
                    increase(cluster_counts, key, 1, pin=True)
            elif isinstance(node, Equality):
                increase(variable_counts, edges[0].variable, 1)
            else:
                if len(edges) == 2:
                    increase(variable_counts, edges[1].variable, 1)
                elif len(edges) > 2:
                    key = region_key(node, edges[1:])
                    regions[key] = (node, edges[1:])
                    increase(cluster_counts, key, 1)

        for edge in pf.internal_edges:
            increase(variable_counts, edge.variable, -(pfz.graph.degree(edge) - 1))

        for variable, count in variable_counts.items():
            if count.required:
                add_variable(variable)
                pf.counting_numbers[variable] = count
                pfz.entropy_counting_numbers[variable] = count
        for key, count in cluster_counts.items():
            if count.required:
                add_region(*regions[key])

    for edge in pf.internal_edges:
        for iface in edge.interfaces:
            if requires_breaker(iface) and not any(iface is b for b in pf.breaker_interfaces):
                pf.breaker_interfaces.append(iface)
        owner = pfz.edge_to_posterior_factor.get(edge)
        if owner is not None and owner is not pf:
            raise InvariantViolation(f"{edge} is claimed by posterior factors {owner.id!r} and {pf.id!r}.")
        pfz.edge_to_posterior_factor[edge] = pf

    for key, (node, edges) in large_regions.items():
        existing = pfz.node_edge_to_cluster.get((node, edges[0]))
        cluster = existing if existing is not None and existing.key == key else Cluster(node, edges)
        if cluster not in pf.target_clusters:
            pf.target_clusters.append(cluster)
        for edge in cluster.edges:
            pfz.node_edge_to_cluster[node, edge] = cluster
        if key in cluster_counts:
            pf.counting_numbers[cluster] = cluster_counts[key]
            pfz.entropy_counting_numbers[cluster] = cluster_counts[key]

    if free_energy:
        for node in nodes_connected_to_internal_edges(pf):
            if not isinstance(node, DeltaFactor):
                pfz.energy_counting_numbers[node] = 1

    pfz.free_energy_flag = free_energy
    pf.schedule = None
    logger.debug(
        f"Targets of {pf.id!r}: variables {pf.target_variables}, clusters {pf.target_clusters}, "
        f"breakers {pf.breaker_interfaces}"
    )
    return pf

