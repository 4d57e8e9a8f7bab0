"""Main entry point for the forney package.

This module exposes the graph model, the posterior factorization and the
scheduling API. Importing the package registers the update rules of the node
library in the default rule registry (`forney.rules.RULES`).
"""
from . import distributions, nodes, rules, schedule, update_rules
from .algorithm import InferenceAlgorithm, message_passing_algorithm
from .graph import ConfigurationError, Edge, FactorGraph, FactorNode, Interface, Variable
from .posterior_factor import CountingNumber, PosteriorFactor, set_targets
from .posterior_factorization import (
    PosteriorFactorization,
    current_posterior_factorization,
    reset_current_posterior_factorization,
    set_current_posterior_factorization,
)
from .region import Cluster, InvariantViolation, Region
from .rules import RULES, AmbiguousRuleError, NoApplicableRuleError, Rule, RuleKind, RuleRegistry
from .schedule import MarginalReference, ScheduleEntry, ScheduleError, format_schedule

__all__ = [
    'FactorGraph',
    'Variable',
    'Edge',
    'Interface',
    'FactorNode',
    'Cluster',
    'Region',
    'CountingNumber',
    'PosteriorFactor',
    'PosteriorFactorization',
    'set_targets',
    'current_posterior_factorization',
    'set_current_posterior_factorization',
    'reset_current_posterior_factorization',
    'Rule',
    'RuleKind',
    'RuleRegistry',
    'RULES',
    'ScheduleEntry',
    'MarginalReference',
    'format_schedule',
    'InferenceAlgorithm',
    'message_passing_algorithm',
    'ConfigurationError',
    'AmbiguousRuleError',
    'NoApplicableRuleError',
    'ScheduleError',
    'InvariantViolation',
    'distributions',
    'nodes',
    'rules',
    'schedule',
    'update_rules',
]
