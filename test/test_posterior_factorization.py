import unittest

from forney import nodes
from forney.graph import ConfigurationError, FactorGraph
from forney.posterior_factor import set_targets
from forney.posterior_factorization import (
    PosteriorFactorization,
    current_posterior_factorization,
    reset_current_posterior_factorization,
    set_current_posterior_factorization,
)


def _model():
    g = FactorGraph()
    x, y, w = g.variable("x"), g.variable("y"), g.variable("w")
    nodes.GaussianMeanPrecision(x, g.constant(0.0), g.constant(1.0), id="prior_x")
    nodes.Gamma(w, g.constant(1.0), g.constant(1.0), id="prior_w")
    nodes.GaussianMeanPrecision(y, x, w, id="lik")
    nodes.Clamp(y, 1.5)
    return g, x, y, w


class TestPosteriorFactorization(unittest.TestCase):

    def tearDown(self):
        reset_current_posterior_factorization()

    def test_from_graph(self):
        g, x, y, w = _model()
        pfz = PosteriorFactorization.from_graph(g)
        self.assertEqual(len(pfz), 1)
        self.assertEqual([id for id, _ in pfz], [""])
        self.assertIs(pfz.graph, g)
        self.assertIs(current_posterior_factorization(), pfz)

    def test_from_variables_generated_ids(self):
        g, x, y, w = _model()
        pfz = PosteriorFactorization.from_variables(x, w)
        self.assertEqual([id for id, _ in pfz], ["posteriorfactor_1", "posteriorfactor_2"])
        self.assertEqual([pf.internal_edges for pf in pfz.values()], [(x.edges[0],), (w.edges[0],)])

    def test_from_variables_with_ids(self):
        g, x, y, w = _model()
        pfz = PosteriorFactorization.from_variables([w], [x], ids=["w", "x"])
        self.assertEqual([id for id, _ in pfz], ["w", "x"])
        self.assertEqual(pfz["x"].internal_edges, (x.edges[0],))

    def test_ids_length_mismatch(self):
        g, x, y, w = _model()
        with self.assertRaises(ConfigurationError):
            PosteriorFactorization.from_variables(x, w, ids=["x"])

    def test_empty_first_group(self):
        g, x, y, w = _model()
        with self.assertRaises(ConfigurationError):
            PosteriorFactorization.from_variables([], x)
        pfz = PosteriorFactorization.from_variables((v for v in [x]), [w], ids=["x", "w"])
        self.assertIs(pfz.graph, g)
        self.assertEqual(pfz["x"].internal_edges, (x.edges[0],))

    def test_incremental_construction(self):
        g, x, y, w = _model()
        pfz = PosteriorFactorization(g)
        self.assertEqual(len(pfz), 0)
        pfz.add_factor(x, id="q_x")
        self.assertEqual(pfz.uncovered_edges(), [w.edges[0]])
        pfz.add_factor(w, id="q_w")
        self.assertEqual(pfz.uncovered_edges(), [])
        with self.assertRaises(ConfigurationError):
            pfz.add_factor([], id="q_w")

    def test_current_factorization(self):
        g, x, y, w = _model()
        first = PosteriorFactorization(g)
        second = PosteriorFactorization(g)
        self.assertIs(current_posterior_factorization(), second)
        set_current_posterior_factorization(first)
        self.assertIs(current_posterior_factorization(), first)
        reset_current_posterior_factorization()
        fresh = current_posterior_factorization()
        self.assertIsNot(fresh, first)
        self.assertIsNot(fresh, second)
        self.assertIs(current_posterior_factorization(), fresh)

    def test_prepare_is_idempotent(self):
        g, x, y, w = _model()
        pfz = PosteriorFactorization.from_variables(x, w, ids=["x", "w"])
        for _, pf in pfz:
            set_targets(pf, pfz, target_variables=[x, w], external_targets=True)
        pfz.prepare()
        schedules = {id: list(pf.schedule) for id, pf in pfz}
        pfz.prepare()
        for id, pf in pfz:
            self.assertEqual(len(pf.schedule), len(schedules[id]))
            for first, second in zip(schedules[id], pf.schedule):
                self.assertIs(first, second)

    def test_set_targets_invalidates_schedule(self):
        g, x, y, w = _model()
        pfz = PosteriorFactorization.from_variables(x, w, ids=["x", "w"])
        pf = set_targets(pfz["x"], pfz, target_variables=[x])
        set_targets(pfz["w"], pfz)
        pfz.prepare()
        first = pf.schedule
        self.assertEqual(
            [e.rule.name for e in first],
            ["SPGaussianMeanPrecisionOutNPP", "VBGaussianMeanPrecisionM", "Product"],
        )
        self.assertEqual(pfz["w"].schedule, [])
        set_targets(pf, pfz, target_variables=[x], external_targets=True)
        self.assertIsNone(pf.schedule)
        pfz.prepare()
        self.assertIsNot(pf.schedule, first)
        self.assertEqual([e.target for e in pf.schedule if e.is_marginal], [x])


if __name__ == '__main__':
    unittest.main()
