"""
Tests for the MPLE estimator and z-test helpers in estimation.py.

The eight-group fixture network (conftest.py) has closed-form MPLE
estimates, so coefficients are checked against exact log-odds.

Run: uv run pytest tests/test_estimation.py -v
"""

import math

import numpy as np
import pytest

from rebel_ergm.comparator import build_design_matrix
from rebel_ergm.errors import NonConvergenceError
from rebel_ergm.estimation import (
    MPLEEstimator,
    bernoulli_log_likelihood,
    significance_marker,
    z_test,
)
from rebel_ergm.models import DesignMatrix
from rebel_ergm.terms import ModelSpec


def _fit(network, formula, **kwargs):
    design = build_design_matrix(network, ModelSpec.from_formula("m", formula))
    return MPLEEstimator(**kwargs).fit(design)


# ── Helpers ──────────────────────────────────────────────────────────────────


class TestHelpers:
    def test_log_likelihood(self):
        y = np.array([1, 0, 0, 1])
        p = np.array([0.5, 0.5, 0.25, 0.75])
        expected = 2 * math.log(0.5) + 2 * math.log(0.75)
        assert bernoulli_log_likelihood(y, p) == pytest.approx(expected)

    def test_log_likelihood_clips(self):
        assert np.isfinite(bernoulli_log_likelihood(np.array([1, 0]), np.array([0.0, 1.0])))

    def test_z_test(self):
        z, p = z_test(np.array([1.96, 0.0]), np.array([1.0, 2.0]))
        assert z.tolist() == [1.96, 0.0]
        assert p[0] == pytest.approx(0.05, abs=1e-3)
        assert p[1] == pytest.approx(1.0)

    def test_z_test_zero_se(self):
        z, p = z_test(np.array([1.0]), np.array([0.0]))
        assert np.isnan(z[0])
        assert np.isnan(p[0])

    @pytest.mark.parametrize(
        "p_value, marker",
        [(0.0001, "***"), (0.005, "**"), (0.03, "*"), (0.07, "."), (0.5, ""), (float("nan"), "")],
    )
    def test_significance_marker(self, p_value, marker):
        assert significance_marker(p_value) == marker


# ── Estimates ────────────────────────────────────────────────────────────────


class TestMPLE:
    """Closed-form estimates on the fixture network."""

    def test_edges_only_is_logit_density(self, rebels):
        result = _fit(rebels, "edges")
        assert result.coefficients[0] == pytest.approx(math.log(9 / 19), abs=1e-5)

    def test_edges_only_standard_error(self, rebels):
        result = _fit(rebels, "edges")
        # 1 / sqrt(n p (1 - p)) with n = 28, p = 9/28
        assert result.std_errors[0] == pytest.approx(math.sqrt(28 / 171), rel=1e-4)

    def test_edges_only_log_likelihood(self, rebels):
        result = _fit(rebels, "edges")
        expected = 9 * math.log(9 / 28) + 19 * math.log(19 / 28)
        assert result.log_likelihood == pytest.approx(expected, abs=1e-6)
        assert result.n_obs == 28

    def test_nodematch(self, rebels):
        result = _fit(rebels, "edges + nodematch(role)")
        edges, match = result.coefficients
        assert edges == pytest.approx(math.log(3 / 13), abs=1e-4)
        assert match == pytest.approx(-math.log(3 / 13), abs=1e-4)

    def test_fitted_probabilities(self, rebels):
        result = _fit(rebels, "edges + nodematch(role)")
        assert result.fitted.shape == (28,)
        assert result.fitted.sum() == pytest.approx(9, abs=1e-4)
        np.testing.assert_allclose(np.unique(np.round(result.fitted, 4)), [0.1875, 0.5])

    def test_covariates_finite(self, rebels):
        result = _fit(rebels, "edges + absdiff(size) + nodematch(role) + absdiff(ideology)")
        assert np.all(np.isfinite(result.coefficients))
        assert np.all(result.std_errors > 0)
        assert result.method == "MPLE"
        assert result.n_iter is not None

    def test_unit_invariance(self, rebels):
        """Rescaling a covariate rescales its coefficient, nothing else."""
        spec = ModelSpec.from_formula("m", "edges + absdiff(size)")
        design = build_design_matrix(rebels, spec)
        scaled = DesignMatrix(
            X=design.X * np.array([1.0, 1000.0]),
            y=design.y,
            labels=design.labels,
            dyads=design.dyads,
        )
        a = MPLEEstimator().fit(design)
        b = MPLEEstimator().fit(scaled)
        assert b.coefficients[0] == pytest.approx(a.coefficients[0], abs=1e-5)
        assert b.coefficients[1] * 1000 == pytest.approx(a.coefficients[1], rel=1e-4)
        assert b.log_likelihood == pytest.approx(a.log_likelihood, abs=1e-6)

    def test_directed(self, rebels_directed):
        result = _fit(rebels_directed, "edges + istar(2)")
        assert result.n_obs == 56
        assert np.all(np.isfinite(result.coefficients))


# ── Failure modes ────────────────────────────────────────────────────────────


class TestNonConvergence:
    """Degenerate inputs raise NonConvergenceError instead of returning garbage."""

    def test_empty_network(self, make_network):
        with pytest.raises(NonConvergenceError, match="Degenerate"):
            _fit(make_network(ties=[]), "edges")

    def test_complete_network(self, make_network):
        ids = [f"g{i}" for i in range(1, 9)]
        ties = [(a, b) for i, a in enumerate(ids) for b in ids[i + 1 :]]
        with pytest.raises(NonConvergenceError, match="Degenerate"):
            _fit(make_network(ties=ties), "edges")

    def test_constant_column(self, rebels):
        # every group has degree >= 2, so toggling one dyad never changes isolates
        with pytest.raises(NonConvergenceError, match="isolates"):
            _fit(rebels, "edges + isolates")

    def test_collinear_columns(self, rebels):
        # bloc partitions the groups exactly like role
        with pytest.raises(NonConvergenceError):
            _fit(rebels, "edges + nodematch(role) + nodematch(bloc)")

    def test_iteration_limit(self, rebels):
        with pytest.raises(NonConvergenceError, match="did not converge"):
            _fit(
                rebels,
                "edges + absdiff(size) + nodematch(role) + absdiff(ideology)",
                max_iter=2,
            )
