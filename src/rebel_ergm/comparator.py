"""Fit several model specifications to one network and rank them by AIC/BIC.

Estimation is delegated to an injected estimator (MPLEEstimator by default).
This module only assembles the design matrix, reads the estimator's output,
and derives information criteria, coefficient tables and fit diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import polars as pl
from sklearn.metrics import roc_auc_score

from rebel_ergm.errors import ErgmError, EstimationError
from rebel_ergm.estimation import Estimator, MPLEEstimator, significance_marker, z_test
from rebel_ergm.models import DesignMatrix, FitResult
from rebel_ergm.network import Network
from rebel_ergm.terms import ModelSpec

CRITERIA = ("aic", "bic")


def dyad_index(network: Network) -> np.ndarray:
    """Dyads in row-major order: i < j if undirected, all i != j if directed."""
    n = network.n_nodes
    if network.directed:
        rows, cols = np.nonzero(~np.eye(n, dtype=bool))
    else:
        rows, cols = np.triu_indices(n, k=1)
    return np.column_stack([rows, cols])


def build_design_matrix(network: Network, spec: ModelSpec) -> DesignMatrix:
    """Change statistics for every dyad, one column per term of ``spec``."""
    spec.check(network)
    dyads = dyad_index(network)
    rows, cols = dyads[:, 0], dyads[:, 1]
    columns = [term.change_statistics(network)[rows, cols] for term in spec.terms]
    X = np.column_stack(columns) if columns else np.empty((len(dyads), 0))
    y = network.ties[rows, cols].astype(np.int64)
    return DesignMatrix(X=X.astype(float), y=y, labels=spec.labels, dyads=dyads)


@dataclass(frozen=True, eq=False)
class ModelFit:
    """One specification's estimates plus derived fit statistics."""

    spec: ModelSpec
    result: FitResult
    design: DesignMatrix
    observed: dict[str, float]

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def n_params(self) -> int:
        return len(self.spec.terms)

    @property
    def log_likelihood(self) -> float:
        return self.result.log_likelihood

    @property
    def aic(self) -> float:
        return 2 * self.n_params - 2 * self.log_likelihood

    @property
    def bic(self) -> float:
        return self.n_params * np.log(self.result.n_obs) - 2 * self.log_likelihood

    def criterion(self, name: str) -> float:
        if name not in CRITERIA:
            raise ValueError(f"Unknown criterion {name!r}; use one of {CRITERIA}")
        return self.aic if name == "aic" else self.bic

    def coefficient_table(self) -> pl.DataFrame:
        """Estimates, standard errors, z, p and significance marker per term."""
        coef = np.asarray(self.result.coefficients, dtype=float)
        se = np.asarray(self.result.std_errors, dtype=float)
        z, p = z_test(coef, se)
        return pl.DataFrame(
            {
                "term": list(self.spec.labels),
                "estimate": coef.tolist(),
                "std_error": se.tolist(),
                "z_value": z.tolist(),
                "p_value": p.tolist(),
                "signif": [significance_marker(v) for v in p],
                "observed": [self.observed[lbl] for lbl in self.spec.labels],
            }
        )

    def fit_statistics(self) -> dict:
        return {
            "model": self.name,
            "formula": self.spec.formula,
            "method": self.result.method,
            "n_terms": self.n_params,
            "n_dyads": self.result.n_obs,
            "log_likelihood": self.log_likelihood,
            "aic": self.aic,
            "bic": self.bic,
        }


def fit_model(
    network: Network,
    spec: ModelSpec,
    estimator: Estimator | None = None,
) -> ModelFit:
    """Fit one specification. Errors propagate; there is no retry."""
    estimator = estimator or MPLEEstimator()
    design = build_design_matrix(network, spec)
    observed = spec.observed_statistics(network)
    try:
        result = estimator.fit(design)
    except EstimationError as e:
        e.spec_name = spec.name
        raise
    if len(result.coefficients) != len(spec.terms):
        raise EstimationError(
            f"Estimator returned {len(result.coefficients)} coefficients "
            f"for {len(spec.terms)} terms",
            spec_name=spec.name,
        )
    return ModelFit(spec=spec, result=result, design=design, observed=observed)


@dataclass
class ComparisonResult:
    """Successful fits (input order) and failed specifications."""

    network: Network
    fits: list[ModelFit] = field(default_factory=list)
    failures: dict[str, ErgmError] = field(default_factory=dict)

    def __getitem__(self, name: str) -> ModelFit:
        for f in self.fits:
            if f.name == name:
                return f
        raise KeyError(name)

    @property
    def ok(self) -> bool:
        return not self.failures

    def ranking(self, criterion: str = "aic") -> pl.DataFrame:
        """Fit statistics sorted by ``criterion`` (lower is better)."""
        if criterion not in CRITERIA:
            raise ValueError(f"Unknown criterion {criterion!r}; use one of {CRITERIA}")
        if not self.fits:
            return pl.DataFrame()
        df = pl.DataFrame([f.fit_statistics() for f in self.fits]).sort(criterion)
        best = df[criterion][0]
        return df.with_columns(
            pl.int_range(1, df.height + 1).alias("rank"),
            (pl.col("aic") - df["aic"].min()).alias("delta_aic"),
            (pl.col("bic") - df["bic"].min()).alias("delta_bic"),
            (pl.col(criterion) == best).alias("best"),
        )

    def best(self, criterion: str = "aic") -> ModelFit | None:
        if not self.fits:
            return None
        return min(self.fits, key=lambda f: f.criterion(criterion))

    def coefficient_table(self) -> pl.DataFrame:
        """Long-format coefficients across all fitted models."""
        frames = [
            f.coefficient_table().with_columns(pl.lit(f.name).alias("model")) for f in self.fits
        ]
        if not frames:
            return pl.DataFrame()
        return pl.concat(frames).select(["model", pl.all().exclude("model")])

    def raise_for_failures(self) -> None:
        """Re-raise the first recorded failure, if any."""
        for err in self.failures.values():
            raise err


def compare_models(
    network: Network,
    specs: list[ModelSpec],
    estimator: Estimator | None = None,
    strict: bool = False,
) -> ComparisonResult:
    """Fit every specification independently against the same network.

    A failing specification is recorded in ``failures`` and the rest are
    still fit. With ``strict=True`` the first failure is raised instead,
    carrying the fits completed so far as ``partial_result``.
    """
    names = [s.name for s in specs]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValueError(f"Duplicate model names: {dupes}")

    estimator = estimator or MPLEEstimator()
    result = ComparisonResult(network=network)
    for spec in specs:
        print(f"  Fitting {spec.name}: {spec.formula}")
        try:
            fit = fit_model(network, spec, estimator)
        except ErgmError as e:
            print(f"    FAILED ({type(e).__name__}): {e}")
            result.failures[spec.name] = e
            if strict:
                e.partial_result = result  # type: ignore[attr-defined]
                raise
            continue
        result.fits.append(fit)
        print(f"    logLik={fit.log_likelihood:.3f}  AIC={fit.aic:.3f}  BIC={fit.bic:.3f}")
    return result


# ── Goodness of fit ──────────────────────────────────────────────────────────


def tie_prediction_diagnostics(fit: ModelFit) -> dict:
    """How well the fitted conditional tie probabilities recover observed ties."""
    y = fit.design.y
    p = np.asarray(fit.result.fitted, dtype=float)
    auc = roc_auc_score(y, p) if 0 < y.sum() < y.size else None
    return {
        "model": fit.name,
        "auc": round(float(auc), 4) if auc is not None else None,
        "observed_density": round(float(y.mean()), 4),
        "mean_predicted": round(float(p.mean()), 4),
    }


def degree_fit_table(network: Network, fit: ModelFit) -> pl.DataFrame:
    """Observed vs expected degree per node.

    Expected degree sums the fitted conditional tie probabilities of every
    dyad the node belongs to (both ends for directed networks).
    """
    p = np.asarray(fit.result.fitted, dtype=float)
    rows, cols = fit.design.dyads[:, 0], fit.design.dyads[:, 1]
    expected = np.bincount(rows, weights=p, minlength=network.n_nodes) + np.bincount(
        cols, weights=p, minlength=network.n_nodes
    )
    observed = network.degree.astype(float)
    return pl.DataFrame(
        {
            network.attributes.id_column: list(network.ids),
            "label": network.labels,
            "observed_degree": observed.tolist(),
            "expected_degree": expected.tolist(),
            "residual": (observed - expected).tolist(),
        }
    )
