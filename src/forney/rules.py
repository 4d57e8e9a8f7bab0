"""Selection of update rules for messages and marginals.

Every computation in a schedule is carried out by an update rule. Rules are
declared by the node library (see `forney.update_rules`) and consist of:

    - the node kind they apply to (`None` for edge-level marginal rules),
    - the kind of computation (`RuleKind`),
    - the outbound type they produce,
    - an applicability test over the ordered tuple of inbound types, given
      either as a tuple of patterns or as a predicate.

Given a node kind, a requested outbound type and the inbound types of a
computation, `RuleRegistry.dispatch` filters the applicable rules and returns
the most specific one. Specificity is the total number of distribution
families a rule accepts over its outbound and inbound patterns, so a rule for
a single family wins over a rule for a family union. Equally specific
candidates make the rule set ambiguous and are reported as an error.
"""
from __future__ import annotations

import collections
import enum
import functools
import logging
from collections.abc import Callable, Iterator, Sequence

import attr

from .distributions import TypeDescriptor, matches, width
from .graph import ConfigurationError

logger = logging.getLogger(__name__)

InboundTypes = tuple[TypeDescriptor | None, ...]


class RuleKind(enum.Enum):
    SUM_PRODUCT = "sum-product"
    NAIVE_VARIATIONAL = "naive variational"
    STRUCTURED_VARIATIONAL = "structured variational"
    MARGINAL = "marginal"
    INITIALIZATION = "initialization"


class AmbiguousRuleError(ConfigurationError):
    """Raised when several equally specific rules apply."""

    def __init__(self, candidates: Sequence[Rule], inbound_types: InboundTypes):
        self.candidates = list(candidates)
        self.inbound_types = inbound_types
        names = ", ".join(rule.name for rule in candidates)
        super().__init__(
            f"Ambiguous rule set: {names} apply equally to inbound types "
            f"{_format_types(inbound_types)}."
        )


class NoApplicableRuleError(LookupError):
    """Raised when no rule applies to a requested computation."""

    def __init__(self, node_type, outbound_type, inbound_types: InboundTypes, kind: RuleKind):
        self.node_type = node_type
        self.outbound_type = outbound_type
        self.inbound_types = inbound_types
        self.kind = kind
        super().__init__(
            f"No applicable {kind.value} rule for node kind {_node_name(node_type)} with "
            f"outbound type {outbound_type if outbound_type is not None else 'any'} and "
            f"inbound types {_format_types(inbound_types)}."
        )


def _node_name(node_type) -> str:
    return "edge" if node_type is None else node_type.__name__


def _format_types(types: InboundTypes) -> str:
    return "(" + ", ".join("Nothing" if t is None else str(t) for t in types) + ")"


@attr.dataclass(frozen=True, repr=False)
class Rule:
    """An update rule declaration.

    Attributes:
        name: The identifier consumed by code generation.
        node_type: The node class the rule applies to, or None for edge rules.
        kind: The computation the rule performs.
        outbound_type: The type of the message or marginal the rule produces.
        inbound_types: Per-interface patterns, with None at the outbound position.
        predicate: Alternative applicability test over the inbound types.
    """
    name: str
    node_type: type | None
    kind: RuleKind
    outbound_type: TypeDescriptor | None
    inbound_types: InboundTypes | None = None
    predicate: Callable[[InboundTypes], bool] | None = attr.field(default=None, eq=False)

    def __attrs_post_init__(self):
        if (self.inbound_types is None) == (self.predicate is None):
            raise ConfigurationError(
                f"Rule {self.name} must declare exactly one of inbound_types and predicate."
            )

    def is_applicable(self, inbound_types: InboundTypes) -> bool:
        if self.predicate is not None:
            return self.predicate(inbound_types)
        if len(inbound_types) != len(self.inbound_types):
            return False
        return all(matches(t, p) for t, p in zip(inbound_types, self.inbound_types))

    @property
    def specificity(self) -> int:
        """The number of families accepted by the rule; lower is more specific."""
        return width(self.outbound_type) + sum(width(p) for p in self.inbound_types or ())

    def __repr__(self) -> str:
        return f"Rule({self.name})"


def initialization_rule(breaker_type: TypeDescriptor) -> Rule:
    """The rule that seeds a breaker interface with a vague message."""
    return Rule("Vague", None, RuleKind.INITIALIZATION, breaker_type, inbound_types=())


class RuleRegistry:
    def __init__(self, rules: Sequence[Rule] = ()):
        self._rules = collections.defaultdict(list)
        self._names = {}
        for rule in rules:
            self.register(rule)

    def register(self, rule: Rule) -> Rule:
        if rule.name in self._names:
            raise ConfigurationError(f"A rule named {rule.name} is already registered.")
        self._names[rule.name] = rule
        self._rules[rule.node_type, rule.kind].append(rule)
        return rule

    def copy(self) -> RuleRegistry:
        return RuleRegistry(list(self))

    def rules_for(self, node_type: type | None, kind: RuleKind) -> list[Rule]:
        return list(self._rules.get((node_type, kind), []))

    def __getitem__(self, name: str) -> Rule:
        return self._names[name]

    def __contains__(self, name: str) -> bool:
        return name in self._names

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._names.values())

    def __len__(self) -> int:
        return len(self._names)

    def dispatch(
        self,
        node_type: type | None,
        outbound_type: TypeDescriptor | None,
        inbound_types: Sequence[TypeDescriptor | None],
        kind: RuleKind = RuleKind.SUM_PRODUCT,
    ) -> Rule:
        """Selects the most specific rule for a computation.

        Args:
          node_type: the node class, or None for edge-level marginal rules.
          outbound_type: the requested outbound type, or None for any.
          inbound_types: the ordered inbound types, None marking the outbound
            position.
          kind: the kind of computation.
        Returns:
          the selected Rule.
        Raises:
          NoApplicableRuleError: if no rule applies.
          AmbiguousRuleError: if several rules apply with equal specificity.
        """
        inbound_types = tuple(inbound_types)
        candidates = [
            rule for rule in self.rules_for(node_type, kind)
            if (outbound_type is None or matches(rule.outbound_type, outbound_type))
            and rule.is_applicable(inbound_types)
        ]
        if not candidates:
            raise NoApplicableRuleError(node_type, outbound_type, inbound_types, kind)
        candidates.sort(key=lambda rule: rule.specificity)
        best = [r for r in candidates if r.specificity == candidates[0].specificity]
        if len(best) > 1:
            raise AmbiguousRuleError(best, inbound_types)
        logger.debug(f"Selected {best[0].name} for {_node_name(node_type)} {_format_types(inbound_types)}")
        return best[0]


RULES = RuleRegistry()


def register_rule(
    kind: RuleKind,
    node_type: type | None,
    outbound_type: TypeDescriptor,
    inbound_types: Sequence[TypeDescriptor | None] | None = None,
    *,
    name: str,
    predicate: Callable[[InboundTypes], bool] | None = None,
    registry: RuleRegistry | None = None,
) -> Rule:
    """Declares an update rule and adds it to a registry (the default one if omitted)."""
    if inbound_types is not None:
        inbound_types = tuple(inbound_types)
    rule = Rule(name, node_type, kind, outbound_type, inbound_types, predicate)
    return (registry if registry is not None else RULES).register(rule)


sum_product_rule = functools.partial(register_rule, RuleKind.SUM_PRODUCT)
naive_variational_rule = functools.partial(register_rule, RuleKind.NAIVE_VARIATIONAL)
structured_variational_rule = functools.partial(register_rule, RuleKind.STRUCTURED_VARIATIONAL)
marginal_rule = functools.partial(register_rule, RuleKind.MARGINAL)


def dispatch(node_type, outbound_type, inbound_types, kind=RuleKind.SUM_PRODUCT, registry=None) -> Rule:
    """`RuleRegistry.dispatch` on the default registry."""
    return (registry if registry is not None else RULES).dispatch(
        node_type, outbound_type, inbound_types, kind
    )
