"""Command-line interface: load, assemble, fit and compare ERGM specifications."""

import argparse

import polars as pl

from rebel_ergm.comparator import CRITERIA, ModelFit, compare_models
from rebel_ergm.config import (
    ADJACENCY_FILE,
    ATTRIBUTES_FILE,
    DIRECTED_MODELS,
    MAX_ITER,
    UNDIRECTED_MODELS,
)
from rebel_ergm.errors import DataError, TermError
from rebel_ergm.estimation import MPLEEstimator
from rebel_ergm.loader import load_network_data
from rebel_ergm.network import assemble_network
from rebel_ergm.terms import ModelSpec


def _parse_model(text: str) -> tuple[str, str]:
    name, sep, formula = text.partition("=")
    if not sep or not name.strip() or not formula.strip():
        raise argparse.ArgumentTypeError(f"expected NAME=FORMULA, got {text!r}")
    return name.strip(), formula.strip()


def build_specs(models: list[tuple[str, str]] | None, directed: bool) -> list[ModelSpec]:
    """Model specs from ``--model`` flags, or the defaults for this directedness."""
    if not models:
        defaults = DIRECTED_MODELS if directed else UNDIRECTED_MODELS
        models = list(defaults.items())
    return [ModelSpec.from_formula(name, formula) for name, formula in models]


def print_fit(fit: ModelFit) -> None:
    print(f"\n  {fit.name}: {fit.spec.formula}")
    with pl.Config(tbl_rows=-1, tbl_hide_dataframe_shape=True, float_precision=4):
        print(fit.coefficient_table().drop("observed"))
    print(
        f"  logLik: {fit.log_likelihood:.3f}   AIC: {fit.aic:.3f}   BIC: {fit.bic:.3f}"
        f"   ({fit.result.n_obs} dyads)"
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="rebel-ergm",
        description="Fit and compare exponential random graph models for rebel group ties.",
    )
    parser.add_argument(
        "--adjacency",
        default=str(ADJACENCY_FILE),
        help=f"Adjacency CSV path or URL (default: {ADJACENCY_FILE})",
    )
    parser.add_argument(
        "--attributes",
        default=str(ATTRIBUTES_FILE),
        help=f"Node attribute CSV path or URL (default: {ATTRIBUTES_FILE})",
    )
    parser.add_argument(
        "--directed",
        action="store_true",
        help="Treat ties as directed (enables istar, disables isolates/concurrent)",
    )
    parser.add_argument(
        "--model",
        "-m",
        action="append",
        type=_parse_model,
        metavar="NAME=FORMULA",
        help='Model to fit, e.g. "homophily=edges + nodematch(role)" (repeatable)',
    )
    parser.add_argument(
        "--criterion",
        choices=CRITERIA,
        default="aic",
        help="Information criterion for ranking (default: aic)",
    )
    parser.add_argument(
        "--max-iter",
        type=int,
        default=MAX_ITER,
        help=f"Optimizer iteration limit (default: {MAX_ITER})",
    )

    args = parser.parse_args(argv)

    try:
        specs = build_specs(args.model, args.directed)
    except TermError as e:
        parser.error(str(e))

    try:
        adjacency, attributes = load_network_data(args.adjacency, args.attributes)
    except (DataError, OSError) as e:
        parser.error(str(e))

    network = assemble_network(adjacency, attributes, directed=args.directed)
    print("\nNetwork:")
    for key, value in network.summary().items():
        print(f"  {key:14s} {value}")

    print("\nFitting models:")
    result = compare_models(network, specs, estimator=MPLEEstimator(max_iter=args.max_iter))

    for fit in result.fits:
        print_fit(fit)

    ranking = result.ranking(args.criterion)
    if ranking.height:
        print(f"\nRanking by {args.criterion.upper()} (lower is better):")
        with pl.Config(tbl_hide_dataframe_shape=True, float_precision=3):
            print(ranking.select(["rank", "model", "n_terms", "log_likelihood", "aic", "bic"]))

    if result.failures:
        print(f"\n  WARNING: {len(result.failures)} model(s) failed:")
        for name, err in result.failures.items():
            print(f"    {name:14s} {type(err).__name__}: {err}")
        return 1
    return 0
