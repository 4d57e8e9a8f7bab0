"""Posterior factorizations: a partition of a graph into posterior factors."""
from __future__ import annotations

import collections
import logging
from collections.abc import Iterable, Iterator

from .graph import ConfigurationError, Edge, FactorGraph, FactorNode, Variable, current_graph
from .posterior_factor import CountingNumber, PosteriorFactor
from .region import Cluster, Region

logger = logging.getLogger(__name__)


class PosteriorFactorization:
    """Owns the posterior factors of a graph and the lookup tables between them.

    The lookup tables are filled by `set_targets` and read during scheduling:

        - `edge_to_posterior_factor`: the factor that owns each internal edge.
        - `node_edge_to_cluster`: the cluster registered for a (node, edge) pair.
        - `energy_counting_numbers`: per stochastic node, for the average energy.
        - `entropy_counting_numbers`: per region, for the entropy.

    Example Usage:
        >>> pfz = PosteriorFactorization.from_variables([x, y], w, ids=["xy", "w"])
        >>> [id for id, _ in pfz]
        ['xy', 'w']
    """

    def __init__(self, graph: FactorGraph | None = None):
        self.graph = graph if graph is not None else current_graph()
        self.posterior_factors: dict[str, PosteriorFactor] = collections.OrderedDict()
        self.edge_to_posterior_factor: dict[Edge, PosteriorFactor] = {}
        self.node_edge_to_cluster: dict[tuple[FactorNode, Edge], Cluster] = {}
        self.energy_counting_numbers: dict[FactorNode, int] = {}
        self.entropy_counting_numbers: dict[Region, CountingNumber] = {}
        self.free_energy_flag = False
        self._count = 0
        set_current_posterior_factorization(self)

    @staticmethod
    def from_graph(graph: FactorGraph | None = None) -> PosteriorFactorization:
        """A factorization with a single factor covering every stochastic edge."""
        pfz = PosteriorFactorization(graph)
        PosteriorFactor(pfz, id="")
        return pfz

    @staticmethod
    def from_variables(
        *groups: Variable | Iterable[Variable],
        ids: list[str] | None = None,
        graph: FactorGraph | None = None,
    ) -> PosteriorFactorization:
        """A factorization with one factor per group of variables."""
        if ids and len(ids) != len(groups):
            raise ConfigurationError(
                f"Got {len(ids)} posterior factor ids for {len(groups)} variable groups."
            )
        groups = [group if isinstance(group, Variable) else list(group) for group in groups]
        if graph is None and groups:
            first = groups[0]
            if isinstance(first, Variable):
                graph = first.graph
            elif first:
                graph = first[0].graph
            else:
                raise ConfigurationError("The first variable group is empty; pass the graph explicitly.")
        pfz = PosteriorFactorization(graph)
        for i, group in enumerate(groups):
            pfz.add_factor(group, id=ids[i] if ids else None)
        return pfz

    def generate_id(self) -> str:
        self._count += 1
        return f"posteriorfactor_{self._count}"

    def add_factor(self, variables: Variable | Iterable[Variable], id: str | None = None) -> PosteriorFactor:
        return PosteriorFactor(self, variables, id=id)

    def prepare(self, registry=None) -> PosteriorFactorization:
        """Generates the schedule of every factor that does not have one yet."""
        from .schedule import generate_schedule

        for pf in self.posterior_factors.values():
            if pf.schedule is None:
                pf.schedule = generate_schedule(pf, self, registry=registry)
                logger.info(f"Scheduled {len(pf.schedule)} updates for posterior factor {pf.id!r}")
        return self

    def uncovered_edges(self) -> list[Edge]:
        """Stochastic edges of the graph that no factor owns."""
        return [
            e for e in self.graph.stochastic_edges()
            if not any(e in pf for pf in self.posterior_factors.values())
        ]

    def values(self):
        return self.posterior_factors.values()

    def __getitem__(self, id: str) -> PosteriorFactor:
        return self.posterior_factors[id]

    def __iter__(self) -> Iterator[tuple[str, PosteriorFactor]]:
        return iter(self.posterior_factors.items())

    def __len__(self) -> int:
        return len(self.posterior_factors)


_current_posterior_factorization: PosteriorFactorization | None = None


def current_posterior_factorization() -> PosteriorFactorization:
    """Returns the current factorization, creating one if there is none."""
    if _current_posterior_factorization is None:
        return PosteriorFactorization()
    return _current_posterior_factorization


def set_current_posterior_factorization(pfz: PosteriorFactorization) -> PosteriorFactorization:
    global _current_posterior_factorization
    _current_posterior_factorization = pfz
    return pfz


def reset_current_posterior_factorization():
    global _current_posterior_factorization
    _current_posterior_factorization = None
