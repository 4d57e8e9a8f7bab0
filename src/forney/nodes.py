"""Concrete node kinds.

Node kinds form a closed set of classes under `DeltaFactor` (deterministic)
and `SoftFactor` (stochastic). Update rules are registered per node class, see
`forney.update_rules`.
"""
from __future__ import annotations

from .graph import DeltaFactor, FactorGraph, SoftFactor, Variable, set_current_graph


class Clamp(DeltaFactor):
    """Fixes the variable on its single interface to a known value."""
    interface_names = ("out",)

    def __init__(self, out: Variable, value=None, id: str | None = None):
        self.value = value
        super().__init__(out, id=id)


class Terminal(DeltaFactor):
    """Marks where an edge of a composite's inner graph leaves the composite."""
    interface_names = ("out",)

    def __init__(self, out: Variable, outer: str, id: str | None = None):
        self.outer = outer
        super().__init__(out, id=id)


class Equality(DeltaFactor):
    interface_names = ("1", "2", "3")


class Addition(DeltaFactor):
    """out = in1 + in2"""
    interface_names = ("out", "in1", "in2")


class Gain(DeltaFactor):
    """out = gain * in1"""
    interface_names = ("out", "in1")

    def __init__(self, out: Variable, in1: Variable, gain=1.0, id: str | None = None):
        self.gain = gain
        super().__init__(out, in1, id=id)


class GaussianMeanPrecision(SoftFactor):
    interface_names = ("out", "m", "w")


class Gamma(SoftFactor):
    interface_names = ("out", "a", "b")


class Bernoulli(SoftFactor):
    interface_names = ("out", "p")


class Beta(SoftFactor):
    interface_names = ("out", "a", "b")


class Categorical(SoftFactor):
    interface_names = ("out", "p")


class Dirichlet(SoftFactor):
    interface_names = ("out", "a")


class Composite(SoftFactor):
    """A node defined by an inner factor graph.

    Subclasses implement `define`, which receives one inner variable per outer
    interface (each attached to a `Terminal`) and builds the inner graph with
    regular node constructors. When no update rule is registered for the
    composite itself, schedules compute its messages from the inner graph.
    """

    def __init__(self, *variables: Variable, id: str | None = None):
        super().__init__(*variables, id=id)
        outer = self.graph
        self.inner = FactorGraph()
        self.terminals: dict[str, Terminal] = {}
        terminal_variables = {}
        for name in self.interface_names:
            var = self.inner.variable(name)
            self.terminals[name] = Terminal(var, name, id=f"terminal_{name}")
            terminal_variables[name] = var
        self.define(**terminal_variables)
        # Building the inner graph made it current
        set_current_graph(outer)

    def define(self, **variables: Variable):
        raise NotImplementedError


class GainAddition(Composite):
    """out = in1 + gain * in2"""
    interface_names = ("out", "in1", "in2")

    def __init__(self, out: Variable, in1: Variable, in2: Variable, gain=1.0, id: str | None = None):
        self.gain = gain
        super().__init__(out, in1, in2, id=id)

    def define(self, out: Variable, in1: Variable, in2: Variable):
        scaled = self.inner.variable("scaled")
        Gain(scaled, in2, gain=self.gain)
        Addition(out, in1, scaled)
