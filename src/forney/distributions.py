"""Distribution families and the message/marginal type descriptors.

The scheduling core never manipulates distribution parameters. It only needs
to know which family a message or a marginal belongs to, so that an update
rule can be selected for every computation. This module defines the family
tags and two descriptors built from them:

    - `Message`: the type of a message sent over an edge.
    - `Marginal`: the type of a (possibly joint) belief over a region.

A descriptor holds a set of families. A descriptor created without a family
covers every family, which is how update rules accept "any distribution".

Example Usage:
    >>> print(Message(Gaussian))
    Message{Gaussian}
    >>> matches(Message(Gamma), Message((Gamma, Wishart)))
    True
"""
from __future__ import annotations

from collections.abc import Iterable

import attr


class Distribution:
    """Base class of the distribution family tags."""


class PointMass(Distribution):
    pass


class Gaussian(Distribution):
    pass


class Gamma(Distribution):
    pass


class Wishart(Distribution):
    pass


class Bernoulli(Distribution):
    pass


class Beta(Distribution):
    pass


class Categorical(Distribution):
    pass


class Dirichlet(Distribution):
    pass


FAMILIES = (PointMass, Gaussian, Gamma, Wishart, Bernoulli, Beta, Categorical, Dirichlet)
SOFT_FAMILIES = tuple(f for f in FAMILIES if f is not PointMass)


def _families(value: type | Iterable[type] | None) -> frozenset[type]:
    if value is None:
        return frozenset(FAMILIES)
    if isinstance(value, type):
        return frozenset([value])
    return frozenset(value)


def _label(kind: str, family: frozenset[type]) -> str:
    if family == frozenset(FAMILIES):
        return f"{kind}{{*}}"
    return "%s{%s}" % (kind, ", ".join(sorted(f.__name__ for f in family)))


@attr.dataclass(frozen=True, repr=False)
class Message:
    """Type of a message carrying a distribution from one of `family`."""
    family: frozenset[type] = attr.field(default=None, converter=_families)

    def __str__(self) -> str:
        return _label("Message", self.family)

    __repr__ = __str__


@attr.dataclass(frozen=True, repr=False)
class Marginal:
    """Type of a belief over a variable or a cluster."""
    family: frozenset[type] = attr.field(default=None, converter=_families)

    def __str__(self) -> str:
        return _label("Marginal", self.family)

    __repr__ = __str__


TypeDescriptor = Message | Marginal


def matches(actual: TypeDescriptor | None, pattern: TypeDescriptor | None) -> bool:
    """Checks whether an inferred type is accepted by a declared pattern.

    `None` stands for "no message" and only matches itself. Otherwise both
    descriptors must be of the same kind and every family of `actual` must be
    covered by `pattern`.
    """
    if actual is None or pattern is None:
        return actual is pattern
    return type(actual) is type(pattern) and actual.family <= pattern.family


def width(pattern: TypeDescriptor | None) -> int:
    """Number of families accepted by a pattern; lower means more specific."""
    if pattern is None:
        return 0
    return len(pattern.family)
