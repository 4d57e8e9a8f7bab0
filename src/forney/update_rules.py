"""Update rule declarations of the node library.

Only the selection metadata of each rule is declared here: the node kind, the
kind of computation, the outbound type and the inbound pattern (or predicate).
Rule names follow the convention `<kind><Node><Interface><inbounds>`, where the
inbound letters are N (no message), P (point mass), G (Gaussian) and D (any
distribution), and code generation binds a numeric implementation to each name.
"""
from . import nodes
from .distributions import (
    SOFT_FAMILIES,
    Bernoulli,
    Beta,
    Categorical,
    Dirichlet,
    Gamma,
    Gaussian,
    Marginal,
    Message,
    PointMass,
    Wishart,
    matches,
)
from .rules import marginal_rule, naive_variational_rule, structured_variational_rule, sum_product_rule

PM = Message(PointMass)
GAUSSIAN = Message(Gaussian)
ANY = Marginal()


def match_permuted_canonical(message_type: Message):
    """Applicable when two of three inbounds carry `message_type` and one is the outbound."""
    def predicate(inbound_types):
        void = sum(1 for t in inbound_types if t is None)
        messages = sum(1 for t in inbound_types if t is not None and matches(t, message_type))
        return void == 1 and messages == 2
    return predicate


def _point_mass_equality(inbound_types):
    void = sum(1 for t in inbound_types if t is None)
    soft = sum(1 for t in inbound_types if t is not None and matches(t, Message(SOFT_FAMILIES)))
    point_mass = sum(1 for t in inbound_types if t is not None and matches(t, PM))
    return void == 1 and soft == 1 and point_mass == 1


for family in (Gaussian, Bernoulli, Beta, Categorical, Dirichlet):
    sum_product_rule(
        nodes.Equality, Message(family), name=f"SPEquality{family.__name__}",
        predicate=match_permuted_canonical(Message(family)),
    )
sum_product_rule(
    nodes.Equality, Message((Gamma, Wishart)), name="SPEqualityGammaWishart",
    predicate=match_permuted_canonical(Message((Gamma, Wishart))),
)
sum_product_rule(nodes.Equality, PM, name="SPEqualityPointMass", predicate=_point_mass_equality)

# Gaussian with mean and precision parameterization
sum_product_rule(nodes.GaussianMeanPrecision, GAUSSIAN, (None, PM, PM), name="SPGaussianMeanPrecisionOutNPP")
sum_product_rule(nodes.GaussianMeanPrecision, GAUSSIAN, (PM, None, PM), name="SPGaussianMeanPrecisionMPNP")
sum_product_rule(nodes.GaussianMeanPrecision, GAUSSIAN, (None, GAUSSIAN, PM), name="SPGaussianMeanPrecisionOutNGP")
sum_product_rule(nodes.GaussianMeanPrecision, GAUSSIAN, (GAUSSIAN, None, PM), name="SPGaussianMeanPrecisionMGNP")
naive_variational_rule(nodes.GaussianMeanPrecision, GAUSSIAN, (None, ANY, ANY), name="VBGaussianMeanPrecisionOut")
naive_variational_rule(nodes.GaussianMeanPrecision, GAUSSIAN, (ANY, None, ANY), name="VBGaussianMeanPrecisionM")
naive_variational_rule(nodes.GaussianMeanPrecision, Message(Gamma), (ANY, ANY, None), name="VBGaussianMeanPrecisionW")
structured_variational_rule(
    nodes.GaussianMeanPrecision, GAUSSIAN, (None, GAUSSIAN, ANY), name="SVBGaussianMeanPrecisionOutNGD"
)
structured_variational_rule(
    nodes.GaussianMeanPrecision, GAUSSIAN, (GAUSSIAN, None, ANY), name="SVBGaussianMeanPrecisionMGND"
)
structured_variational_rule(nodes.GaussianMeanPrecision, Message(Gamma), (ANY, None), name="SVBGaussianMeanPrecisionW")
marginal_rule(nodes.GaussianMeanPrecision, ANY, (GAUSSIAN, GAUSSIAN, ANY), name="MGaussianMeanPrecisionGGD")

sum_product_rule(nodes.Gamma, Message(Gamma), (None, PM, PM), name="SPGammaOutNPP")
naive_variational_rule(nodes.Gamma, Message(Gamma), (None, ANY, ANY), name="VBGammaOut")

sum_product_rule(nodes.Addition, GAUSSIAN, (None, GAUSSIAN, GAUSSIAN), name="SPAdditionOutNGG")
sum_product_rule(nodes.Addition, GAUSSIAN, (None, GAUSSIAN, PM), name="SPAdditionOutNGP")
sum_product_rule(nodes.Addition, GAUSSIAN, (None, PM, GAUSSIAN), name="SPAdditionOutNPG")
sum_product_rule(nodes.Addition, GAUSSIAN, (PM, None, GAUSSIAN), name="SPAdditionIn1PNG")
sum_product_rule(nodes.Addition, GAUSSIAN, (GAUSSIAN, None, GAUSSIAN), name="SPAdditionIn1GNG")
sum_product_rule(nodes.Addition, GAUSSIAN, (PM, GAUSSIAN, None), name="SPAdditionIn2PGN")
sum_product_rule(nodes.Addition, GAUSSIAN, (GAUSSIAN, GAUSSIAN, None), name="SPAdditionIn2GGN")
# Joint belief over the inputs, given the messages on all three interfaces
marginal_rule(nodes.Addition, ANY, (GAUSSIAN, GAUSSIAN, GAUSSIAN), name="MAdditionGGG")

sum_product_rule(nodes.Gain, GAUSSIAN, (None, GAUSSIAN), name="SPGainOutNG")
sum_product_rule(nodes.Gain, GAUSSIAN, (GAUSSIAN, None), name="SPGainIn1GN")

sum_product_rule(nodes.Categorical, Message(Categorical), (None, PM), name="SPCategoricalOutNP")
naive_variational_rule(nodes.Categorical, Message(Categorical), (None, ANY), name="VBCategoricalOut")
naive_variational_rule(nodes.Categorical, Message(Dirichlet), (ANY, None), name="VBCategoricalIn1")

sum_product_rule(nodes.Dirichlet, Message(Dirichlet), (None, PM), name="SPDirichletOutNP")
naive_variational_rule(nodes.Dirichlet, Message(Dirichlet), (None, ANY), name="VBDirichletOut")

sum_product_rule(nodes.Bernoulli, Message(Bernoulli), (None, PM), name="SPBernoulliOutNP")
naive_variational_rule(nodes.Bernoulli, Message(Bernoulli), (None, ANY), name="VBBernoulliOut")
naive_variational_rule(nodes.Bernoulli, Message(Beta), (ANY, None), name="VBBernoulliIn1")

sum_product_rule(nodes.Beta, Message(Beta), (None, PM, PM), name="SPBetaOutNPP")
naive_variational_rule(nodes.Beta, Message(Beta), (None, ANY, ANY), name="VBBetaOut")

# Beliefs over a single variable, from the messages on one of its edges
marginal_rule(None, ANY, (Message(), Message()), name="Product")
marginal_rule(None, ANY, (Message(),), name="Copy")
