import unittest

from parameterized import parameterized

from forney import nodes
from forney.distributions import Gaussian, Message
from forney.graph import ConfigurationError, FactorGraph
from forney.posterior_factor import CountingNumber, increase, set_targets
from forney.posterior_factorization import PosteriorFactorization
from forney.region import Cluster, InvariantViolation


def _gaussian(graph, out, m=0.0, w=1.0, id=None):
    """A GaussianMeanPrecision node; numbers become clamped constants."""
    m = graph.constant(m) if isinstance(m, float) else m
    w = graph.constant(w) if isinstance(w, float) else w
    out = graph.constant(out) if isinstance(out, float) else out
    return nodes.GaussianMeanPrecision(out, m, w, id=id)


def _chain():
    """x ~ N(0, 1), y = 1.0 observed with y ~ N(x, 1)."""
    g = FactorGraph()
    x = g.variable("x")
    prior = _gaussian(g, x, id="prior")
    lik = _gaussian(g, 1.0, x, id="lik")
    return g, x, prior, lik


def _structured():
    """y ~ N(x, w) with priors on x and w and a noisy observation of y."""
    g = FactorGraph()
    x, y, w = g.variable("x"), g.variable("y"), g.variable("w")
    _gaussian(g, x, id="prior_x")
    nodes.Gamma(w, g.constant(1.0), g.constant(1.0), id="prior_w")
    lik = nodes.GaussianMeanPrecision(y, x, w, id="lik")
    _gaussian(g, 2.0, y, 10.0, id="obs")
    return g, x, y, w, lik


def _loop():
    """x ~ N(0, 1) with 3.0 = x + z and z = 0.5 * x."""
    g = FactorGraph()
    x, y, z = g.variable("x"), g.variable("y"), g.variable("z")
    _gaussian(g, x, id="prior")
    nodes.Addition(y, x, z, id="add")
    nodes.Clamp(y, 3.0)
    gain = nodes.Gain(z, x, gain=0.5, id="gain")
    return g, x, y, z, gain


class TestCountingNumber(unittest.TestCase):

    def test_pin_survives_discounts(self):
        table = {}
        increase(table, "x", 1, pin=True)
        increase(table, "x", -1)
        self.assertEqual(table["x"], CountingNumber(0, True))
        self.assertTrue(table["x"].required)

    @parameterized.expand([
        ([1, -1], False),
        ([1, 1, -1], True),
        ([0], False),
        ([-1], True),
    ])
    def test_required(self, amounts, expected):
        table = {}
        for amount in amounts:
            increase(table, "x", amount)
        self.assertEqual(table["x"].required, expected)


class TestPosteriorFactor(unittest.TestCase):

    def test_extends_across_deterministic_nodes(self):
        g, x, y, z, _ = _loop()
        pfz = PosteriorFactorization(g)
        pf = pfz.add_factor(x)
        self.assertEqual({e.id for e in pf.internal_edges}, {"x", "x_2", "x_3", "z"})
        self.assertNotIn(y.edges[0], pf)
        self.assertEqual(list(pf.internal_edges), [e for e in g.edges if e in pf])

    def test_stops_at_stochastic_nodes(self):
        g, x, y, w, _ = _structured()
        pfz = PosteriorFactorization(g)
        pf = pfz.add_factor([x])
        self.assertEqual([e.id for e in pf.internal_edges], ["x"])

    def test_whole_graph(self):
        g, x, y, w, _ = _structured()
        pf = PosteriorFactorization.from_graph(g)[""]
        self.assertEqual({e.id for e in pf.internal_edges}, {"x", "y", "w"})

    def test_overlapping_factors(self):
        g, x, y, z, _ = _loop()
        pfz = PosteriorFactorization(g)
        pfz.add_factor(x)
        with self.assertRaises(InvariantViolation):
            pfz.add_factor(z)

    def test_user_targets(self):
        g, x, y, w, _ = _structured()
        pfz = PosteriorFactorization.from_variables([x, y], w, ids=["xy", "w"])
        set_targets(pfz["xy"], pfz, target_variables=[x, w])
        self.assertEqual(pfz["xy"].target_variables, [x])
        self.assertEqual(pfz["xy"].target_clusters, [])

    def test_external_targets(self):
        g, x, y, w, lik = _structured()
        pfz = PosteriorFactorization.from_variables([x, y], w, ids=["xy", "w"])
        set_targets(pfz["xy"], pfz, external_targets=True)
        set_targets(pfz["w"], pfz, external_targets=True)

        self.assertEqual(pfz["xy"].target_variables, [])
        self.assertEqual(pfz["xy"].target_clusters, [Cluster(lik, [y.edges[0], x.edges[0]])])
        self.assertEqual(pfz["w"].target_variables, [w])
        cluster = pfz["xy"].target_clusters[0]
        self.assertIs(pfz.node_edge_to_cluster[lik, x.edges[0]], cluster)
        self.assertIs(pfz.node_edge_to_cluster[lik, y.edges[0]], cluster)
        self.assertNotIn((lik, w.edges[0]), pfz.node_edge_to_cluster)

    def test_cluster_unification(self):
        g, x, y, w, lik = _structured()
        pfz = PosteriorFactorization.from_variables([x, y], w, ids=["xy", "w"])
        pf = set_targets(pfz["xy"], pfz, free_energy=True, external_targets=True)

        self.assertEqual(len(pf.target_clusters), 1)
        cluster = pf.target_clusters[0]
        self.assertEqual(cluster.id, "lik_y_x")
        self.assertEqual(pf.counting_numbers[cluster], CountingNumber(1, True))
        self.assertEqual(pfz.entropy_counting_numbers[cluster], CountingNumber(1, True))
        # Discounted to zero, but required for the average energies
        self.assertEqual(pf.counting_numbers[x], CountingNumber(0, True))
        self.assertEqual({v.id for v in pf.target_variables}, {"x", "y"})

    def test_free_energy_chain(self):
        g, x, prior, lik = _chain()
        pfz = PosteriorFactorization.from_graph(g)
        pf = set_targets(pfz[""], pfz, free_energy=True)

        self.assertEqual(pf.target_variables, [x])
        self.assertEqual(pf.counting_numbers[x], CountingNumber(1, True))
        self.assertEqual(pfz.entropy_counting_numbers, {x: CountingNumber(1, True)})
        self.assertEqual(pfz.energy_counting_numbers, {prior: 1, lik: 1})
        self.assertTrue(pfz.free_energy_flag)

    def test_free_energy_single_node(self):
        g = FactorGraph()
        x = g.variable("x")
        node = _gaussian(g, x)
        pfz = PosteriorFactorization.from_graph(g)
        pf = set_targets(pfz[""], pfz, free_energy=True)
        self.assertEqual(pf.counting_numbers[x].value, 1)
        self.assertEqual(pfz.energy_counting_numbers, {node: 1})

    def test_free_energy_equality(self):
        g = FactorGraph()
        x = g.variable("x")
        _gaussian(g, x, id="prior")
        _gaussian(g, 1.0, x, id="lik1")
        _gaussian(g, 2.0, x, id="lik2")
        pfz = PosteriorFactorization.from_graph(g)
        pf = set_targets(pfz[""], pfz, free_energy=True)
        self.assertEqual(pf.counting_numbers[x], CountingNumber(1, True))
        self.assertEqual(len(pfz.energy_counting_numbers), 3)

    def test_free_energy_deterministic_node(self):
        g, x, y, z, _ = _loop()
        pfz = PosteriorFactorization.from_graph(g)
        pf = set_targets(pfz[""], pfz, free_energy=True)
        # The addition and the gain each count the variable on their second
        # internal interface once; z is discounted back to zero.
        self.assertEqual(pf.target_variables, [x])
        self.assertEqual(pf.counting_numbers[x], CountingNumber(0, True))
        self.assertNotIn(z, pf.counting_numbers)
        # The factorization keeps the pinned flag of a zero count
        self.assertEqual(pfz.entropy_counting_numbers, {x: CountingNumber(0, True)})

    def test_shared_constant_is_clamped(self):
        g = FactorGraph()
        x, y = g.variable("x"), g.variable("y")
        w = g.constant(1.0, id="w")
        _gaussian(g, x, 0.0, w, id="px")
        _gaussian(g, y, x, w, id="py")
        nodes.Clamp(y, 2.0)
        self.assertEqual(g.stochastic_edges(), [x.edges[0]])

        pfz = PosteriorFactorization.from_graph(g)
        pf = set_targets(pfz[""], pfz, free_energy=True)
        self.assertEqual(pf.internal_edges, (x.edges[0],))
        self.assertEqual(pf.target_variables, [x])
        self.assertNotIn(w, pf.counting_numbers)
        self.assertEqual(pfz.entropy_counting_numbers, {x: CountingNumber(1, True)})

    def test_breakers_and_lookup(self):
        g, x, y, z, gain = _loop()
        g.set_breaker(gain.i["out"], Message(Gaussian))
        pfz = PosteriorFactorization.from_graph(g)
        pf = set_targets(pfz[""], pfz, target_variables=[x])
        self.assertEqual(pf.breaker_interfaces, [gain.i["out"]])
        for edge in pf.internal_edges:
            self.assertIs(pfz.edge_to_posterior_factor[edge], pf)

    def test_partition(self):
        g, x, y, w, _ = _structured()
        pfz = PosteriorFactorization.from_variables(x, y, w)
        for _, pf in pfz:
            set_targets(pf, pfz, external_targets=True)
        owners = [pf for edge in g.stochastic_edges() for pf in pfz.values() if edge in pf]
        self.assertEqual(len(owners), len(g.stochastic_edges()))
        self.assertEqual(set(pfz.edge_to_posterior_factor), set(g.stochastic_edges()))

    def test_edge_claimed_twice(self):
        g, x, y, w, _ = _structured()
        pfz = PosteriorFactorization.from_variables(x, w, ids=["x", "w"])
        pfz.edge_to_posterior_factor[x.edges[0]] = pfz["w"]
        with self.assertRaises(InvariantViolation):
            set_targets(pfz["x"], pfz)

    def test_edge_without_variable(self):
        g, x, prior, lik = _chain()
        pfz = PosteriorFactorization.from_graph(g)
        x.edges[0].variable = None
        with self.assertRaises(ConfigurationError):
            set_targets(pfz[""], pfz)

    def test_interface_without_node(self):
        g, x, prior, lik = _chain()
        pfz = PosteriorFactorization.from_graph(g)
        x.edges[0].b.node = None
        with self.assertRaises(ConfigurationError):
            set_targets(pfz[""], pfz)


if __name__ == '__main__':
    unittest.main()
