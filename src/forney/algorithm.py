"""Assembly of a message-passing algorithm from a posterior factorization."""
from __future__ import annotations

import logging
from collections.abc import Iterable

import attr

from .graph import Variable
from .posterior_factor import set_targets
from .posterior_factorization import PosteriorFactorization, current_posterior_factorization
from .rules import RuleRegistry
from .schedule import ScheduleEntry

logger = logging.getLogger(__name__)


@attr.dataclass(frozen=True)
class InferenceAlgorithm:
    """The scheduled updates handed to code generation.

    Attributes:
        posterior_factorization: The prepared factorization.
        target_variables: The variables whose marginals were requested.
        free_energy: Whether the schedules cover the free-energy regions.
        schedules: The schedule of every posterior factor, by factor id.
    """
    posterior_factorization: PosteriorFactorization
    target_variables: tuple[Variable, ...]
    free_energy: bool
    schedules: dict[str, list[ScheduleEntry]]


def message_passing_algorithm(
    target_variables: Iterable[Variable] = (),
    pfz: PosteriorFactorization | None = None,
    free_energy: bool = False,
    registry: RuleRegistry | None = None,
) -> InferenceAlgorithm:
    """Sets the targets of every posterior factor and schedules them.

    Args:
      target_variables: the variables whose marginals are requested.
      pfz: the factorization; the current one if omitted.
      free_energy: whether to schedule the marginals of the free energy.
      registry: the update rules; the default registry if omitted.
    Returns:
      the InferenceAlgorithm with one schedule per posterior factor.
    """
    if pfz is None:
        pfz = current_posterior_factorization()
    if len(pfz) == 0:
        logger.info("Empty posterior factorization; using a single factor for the whole graph")
        pfz = PosteriorFactorization.from_graph(pfz.graph)
    target_variables = tuple(target_variables)
    uncovered = pfz.uncovered_edges()
    if uncovered:
        logger.warning(f"Stochastic edges {uncovered} are not covered by any posterior factor")
    for _, pf in pfz:
        set_targets(pf, pfz, target_variables, free_energy=free_energy, external_targets=True)
    pfz.prepare(registry)
    schedules = {id: pf.schedule for id, pf in pfz}
    return InferenceAlgorithm(pfz, target_variables, free_energy, schedules)
