"""Estimators consumed by the model comparator.

An estimator takes a DesignMatrix (change statistics per dyad plus observed
tie indicators) and returns a FitResult. The comparator never looks inside;
any object with a matching ``fit`` method can be injected, e.g. a wrapper
around an MCMC-MLE routine or a fake in tests.

The default MPLEEstimator is maximum pseudo-likelihood: an unpenalized
logistic regression (no intercept; the ``edges`` column plays that role)
fit with scikit-learn.
"""

from __future__ import annotations

import warnings
from typing import Protocol

import numpy as np
from scipy import stats
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression

from rebel_ergm.config import (
    MAX_CONDITION_NUMBER,
    MAX_ITER,
    MAX_LINEAR_PREDICTOR,
    SIGNIFICANCE_LEVELS,
    TOL,
)
from rebel_ergm.errors import NonConvergenceError
from rebel_ergm.models import DesignMatrix, FitResult


class Estimator(Protocol):
    def fit(self, design: DesignMatrix) -> FitResult: ...


def bernoulli_log_likelihood(y: np.ndarray, p: np.ndarray) -> float:
    """Log-likelihood of binary outcomes ``y`` under probabilities ``p``."""
    p = np.clip(p, 1e-15, 1 - 1e-15)
    return float(np.sum(y * np.log(p) + (1 - y) * np.log1p(-p)))


def z_test(coefficients: np.ndarray, std_errors: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Wald z statistics and two-sided p-values."""
    with np.errstate(divide="ignore", invalid="ignore"):
        z = np.where(std_errors > 0, coefficients / std_errors, np.nan)
    p = 2 * stats.norm.sf(np.abs(z))
    return z, p


def significance_marker(p_value: float) -> str:
    """R-style significance stars: *** ** * . or empty."""
    if p_value is None or np.isnan(p_value):
        return ""
    for bound, marker in SIGNIFICANCE_LEVELS:
        if p_value < bound:
            return marker
    return ""


class MPLEEstimator:
    """Maximum pseudo-likelihood via scikit-learn's LogisticRegression.

    Standard errors come from the inverse Fisher information of the logistic
    model, as ergm reports for MPLE fits. Raises NonConvergenceError when the
    optimizer does not converge, the response has no variation, or the
    information matrix is (near-)singular: perfect separation, constant or
    collinear change statistics.
    """

    method = "MPLE"

    def __init__(
        self,
        max_iter: int = MAX_ITER,
        tol: float = TOL,
        max_condition: float = MAX_CONDITION_NUMBER,
    ) -> None:
        self.max_iter = max_iter
        self.tol = tol
        self.max_condition = max_condition

    def _model(self) -> LogisticRegression:
        # C=inf means no penalty
        return LogisticRegression(
            C=np.inf, fit_intercept=False, solver="lbfgs", max_iter=self.max_iter, tol=self.tol
        )

    def fit(self, design: DesignMatrix) -> FitResult:
        X = np.asarray(design.X, dtype=np.float64)
        y = np.asarray(design.y, dtype=np.int64)

        n_ties = int(y.sum())
        if n_ties == 0 or n_ties == y.size:
            raise NonConvergenceError(
                f"Degenerate network: {n_ties} of {y.size} dyads are ties, "
                "so the pseudo-likelihood has no finite maximum"
            )

        # Columns are rescaled to unit RMS for the optimizer; no centering,
        # since there is no intercept.
        scale = np.sqrt(np.mean(X**2, axis=0))
        constant = [lbl for lbl, s in zip(design.labels, scale) if s == 0]
        if constant:
            raise NonConvergenceError(
                f"Change statistics are identically zero for {constant}; "
                "the coefficient is not identified"
            )

        model = self._model()
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ConvergenceWarning)
            model.fit(X / scale, y)
        if any(issubclass(w.category, ConvergenceWarning) for w in caught):
            raise NonConvergenceError(
                f"MPLE optimizer did not converge within {self.max_iter} iterations "
                f"(terms: {', '.join(design.labels)})"
            )

        coef = model.coef_.ravel() / scale
        if not np.all(np.isfinite(coef)):
            raise NonConvergenceError(f"Non-finite coefficients for {', '.join(design.labels)}")

        eta = X @ coef
        if np.max(np.abs(eta)) > MAX_LINEAR_PREDICTOR:
            raise NonConvergenceError(
                "Fitted tie probabilities reach 0 or 1 (perfect separation); "
                f"terms: {', '.join(design.labels)}"
            )
        p = model.predict_proba(X / scale)[:, 1]
        info = (X * (p * (1 - p))[:, None]).T @ X
        # Condition number of the correlation-scaled information, so that
        # covariate units do not matter
        d = np.sqrt(np.diag(info))
        cond = np.linalg.cond(info / np.outer(d, d)) if np.all(d > 0) else np.inf
        if not np.isfinite(cond) or cond > self.max_condition:
            raise NonConvergenceError(
                f"Singular Fisher information (condition number {cond:.3g}); "
                f"the model is degenerate or separated (terms: {', '.join(design.labels)})"
            )
        cov = np.linalg.inv(info)
        se = np.sqrt(np.clip(np.diag(cov), 0.0, None))

        n_iter = int(np.max(model.n_iter_)) if hasattr(model, "n_iter_") else None
        return FitResult(
            coefficients=coef,
            std_errors=se,
            log_likelihood=bernoulli_log_likelihood(y, p),
            n_obs=design.n_obs,
            fitted=p,
            method=self.method,
            n_iter=n_iter,
        )
