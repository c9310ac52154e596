"""
Rebel Group Conflict Network — ERGM Analysis

Loads the rebel-group adjacency matrix and group covariates, assembles the
network (undirected by default, directed with --directed), plots it, and fits
a sequence of nested exponential random graph models by maximum
pseudo-likelihood, comparing them by AIC/BIC.

Usage:
  uv run python analysis/ergm.py [--dataset rebels] [--directed]
      [--adjacency data/rebels_adjacency.csv] [--attributes data/rebels_attributes.csv]

Outputs (in results/<dataset>/ergm/<date>/):
  - data/:   Parquet files (coefficients, ranking, degree fit, edge list)
  - plots/:  PNG visualizations (network, degrees, coefficients, model fit)
  - filtering_manifest.json, run_info.json, run_log.txt
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np
import polars as pl
from matplotlib.colors import Normalize
from matplotlib.patches import Patch

from rebel_ergm.comparator import (
    ComparisonResult,
    ModelFit,
    compare_models,
    degree_fit_table,
    tie_prediction_diagnostics,
)
from rebel_ergm.config import (
    ADJACENCY_FILE,
    ATTRIBUTES_FILE,
    DIRECTED_MODELS,
    MAX_ITER,
    RANDOM_SEED,
    UNDIRECTED_MODELS,
)
from rebel_ergm.estimation import MPLEEstimator
from rebel_ergm.loader import load_network_data
from rebel_ergm.network import Network, assemble_network
from rebel_ergm.terms import ModelSpec

try:
    from analysis.run_context import RunContext
except ModuleNotFoundError:
    from run_context import RunContext  # type: ignore[no-redef]


# ── Constants ────────────────────────────────────────────────────────────────

TOP_LABEL_N = 10
ROLE_ATTR = "role"
SIZE_ATTR = "size"
IDEOLOGY_ATTR = "ideology"

# Plain-English labels for coefficient plots
PLAIN_LABELS: dict[str, str] = {
    "edges": "Baseline Tie Propensity (edges)",
    "absdiff.size": "Size Difference (absdiff)",
    "absdiff.ideology": "Ideology Difference (absdiff)",
    "nodematch.role": "Same Role (nodematch)",
    "isolates": "Isolated Groups",
    "concurrent": "Groups with 2+ Ties",
    "istar2": "Popularity (2-in-stars)",
}

ERGM_PRIMER = """\
# ERGM Analysis

## Purpose

Tests which group characteristics and structural tendencies explain who is
tied to whom in the rebel-group conflict network. Treats the observed
network as one draw from a distribution over all graphs on the same groups
and estimates how each statistic shifts the log-odds of a tie.

## Method

### Network Construction
- **Nodes:** Rebel groups, with size (numeric), role (categorical) and
  ideology (ordinal) attributes.
- **Ties:** Non-zero adjacency entries. Undirected by default; `--directed`
  keeps the direction of each tie.

### Terms
- **edges:** Baseline propensity to form ties (like an intercept).
- **absdiff(x):** Sum over ties of |x_i - x_j|. Negative = ties between similar groups.
- **nodematch(x):** Ties between groups with the same value. Positive = homophily.
- **isolates:** Groups with no ties (undirected only).
- **concurrent:** Groups with two or more ties (undirected only).
- **istar(2):** Pairs of ties into the same group (directed only); popularity.

### Estimation
Maximum pseudo-likelihood (MPLE): logistic regression of each dyad's tie
indicator on its change statistics. Standard errors from the inverse Fisher
information. Models are compared by AIC and BIC (lower is better).

## Outputs

| File | Contents |
|------|----------|
| `coefficients.parquet` | Estimates, SEs, p-values per model and term |
| `model_ranking.parquet` | logLik, AIC, BIC and rank per model |
| `degree_fit_{model}.parquet` | Observed vs expected degree per group |
| `edge_list.parquet` | Ties with weights |
| `node_attributes.parquet` | Group covariates in node order |

## Caveats

- MPLE standard errors are too small when dyads are dependent (structural
  terms); read significance of isolates/concurrent/istar cautiously.
- About 30 groups is a small network; coefficients are imprecise.
- Degenerate models (perfect separation) are reported as failures, not refit.
"""


# ── Helpers ──────────────────────────────────────────────────────────────────


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rebel Group ERGM Analysis")
    parser.add_argument("--dataset", default="rebels", help="Label for the results directory")
    parser.add_argument("--adjacency", default=str(ADJACENCY_FILE), help="Adjacency CSV or URL")
    parser.add_argument("--attributes", default=str(ATTRIBUTES_FILE), help="Attribute CSV or URL")
    parser.add_argument(
        "--directed",
        action="store_true",
        help="Treat ties as directed (uses the istar(2) model variant)",
    )
    parser.add_argument("--results-root", type=Path, default=None, help="Override results root")
    parser.add_argument(
        "--max-iter",
        type=int,
        default=MAX_ITER,
        help=f"Optimizer iteration limit (default: {MAX_ITER})",
    )
    return parser.parse_args()


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


def _role_colors(roles: list[str]) -> dict[str, tuple]:
    cmap = plt.cm.tab10  # type: ignore[attr-defined]
    return {role: cmap(i % 10) for i, role in enumerate(sorted(set(roles)))}


# ── Phase 1-2: Load and Assemble ────────────────────────────────────────────


def load_and_assemble(adjacency_src: str, attributes_src: str, directed: bool) -> Network:
    adjacency, attributes = load_network_data(adjacency_src, attributes_src)
    network = assemble_network(adjacency, attributes, directed=directed)
    for key, value in network.summary().items():
        print(f"  {key:14s} {value}")
    if network.isolates:
        print(f"  Isolates: {', '.join(network.isolates)}")
    return network


def default_specs(directed: bool) -> list[ModelSpec]:
    models = DIRECTED_MODELS if directed else UNDIRECTED_MODELS
    return [ModelSpec.from_formula(name, formula) for name, formula in models.items()]


# ── Phase 5: Plots ──────────────────────────────────────────────────────────


def compute_layout(network: Network) -> dict[str, np.ndarray]:
    """Spring layout with x seeded by ideology so left-right reads as ideology."""
    G = network.to_networkx()
    if G.number_of_nodes() == 0:
        return {}
    rng = np.random.default_rng(RANDOM_SEED)
    ideology = network.attribute(IDEOLOGY_ATTR).astype(float)
    span = float(np.ptp(ideology)) or 1.0
    init_pos = {
        node: ((x - ideology.min()) / span * 2 - 1, rng.uniform(-1, 1))
        for node, x in zip(network.ids, ideology)
    }
    return nx.spring_layout(
        G.to_undirected(),
        pos=init_pos,
        seed=RANDOM_SEED,
        k=2.0 / np.sqrt(G.number_of_nodes()),
        iterations=100,
    )


def plot_network(network: Network, out_path: Path, pos: dict | None = None) -> dict:
    """Network colored by role, node size by group size, top-degree groups labeled."""
    G = network.to_networkx()
    if pos is None:
        pos = compute_layout(network)

    fig, ax = plt.subplots(1, 1, figsize=(12, 9))
    nodes = list(network.ids)
    roles = [str(r) for r in network.attribute(ROLE_ATTR)]
    colors = _role_colors(roles)

    sizes = network.attribute(SIZE_ATTR).astype(float)
    norm = Normalize(vmin=float(sizes.min()), vmax=float(sizes.max()))
    node_sizes = [120 + 600 * norm(s) for s in sizes]

    nx.draw_networkx_edges(
        G,
        pos,
        ax=ax,
        alpha=0.35,
        edge_color="#888888",
        arrows=network.directed,
        arrowsize=10,
        node_size=node_sizes,
    )
    nx.draw_networkx_nodes(
        G,
        pos,
        nodelist=nodes,
        ax=ax,
        node_color=[colors[r] for r in roles],
        node_size=node_sizes,
        alpha=0.9,
        edgecolors="white",
        linewidths=0.5,
    )

    degree = network.degree
    top = np.argsort(-degree, kind="stable")[:TOP_LABEL_N]
    labels = {network.ids[i]: network.labels[i] for i in top if degree[i] > 0}
    nx.draw_networkx_labels(G, pos, labels, ax=ax, font_size=7, font_weight="bold")

    ax.legend(
        handles=[Patch(facecolor=c, label=r) for r, c in colors.items()],
        loc="upper left",
        fontsize=9,
        title="Role",
    )
    kind = "Directed" if network.directed else "Undirected"
    ax.set_title(
        f"Rebel Group Conflict Network ({kind}, {network.n_edges} ties)",
        fontsize=14,
        fontweight="bold",
    )
    ax.axis("off")
    save_fig(fig, out_path)
    return pos


def plot_degree_distribution(network: Network, out_path: Path) -> None:
    dist = network.degree_distribution()
    fig, ax = plt.subplots(figsize=(8, 5))
    ax.bar(dist["degree"].to_list(), dist["n_nodes"].to_list(), color="#333333", alpha=0.8)
    ax.set_xlabel("Number of Ties (Degree)", fontsize=10)
    ax.set_ylabel("Number of Groups", fontsize=10)
    ax.set_title("How Many Ties Does Each Group Have?", fontsize=12, fontweight="bold")
    ax.grid(True, axis="y", alpha=0.3)
    save_fig(fig, out_path)


def plot_coefficients(fit: ModelFit, out_path: Path) -> None:
    """Forest plot: estimate with 95% interval per term."""
    table = fit.coefficient_table()
    terms = table["term"].to_list()
    est = np.array(table["estimate"].to_list())
    se = np.array(table["std_error"].to_list())
    y = np.arange(len(terms))[::-1]

    fig, ax = plt.subplots(figsize=(9, 1.0 + 0.6 * len(terms)))
    ax.errorbar(est, y, xerr=1.96 * se, fmt="o", color="#333333", capsize=4, linewidth=1.5)
    ax.axvline(0, color="#E81B23", linestyle="--", alpha=0.6)
    ax.set_yticks(y)
    ax.set_yticklabels([PLAIN_LABELS.get(t, t) for t in terms], fontsize=9)
    ax.set_xlabel("Effect on Log-Odds of a Tie (95% interval)", fontsize=10)
    ax.set_title(f"Model '{fit.name}' — What Predicts a Tie?", fontsize=12, fontweight="bold")
    ax.grid(True, axis="x", alpha=0.3)
    save_fig(fig, out_path)


def plot_model_comparison(ranking: pl.DataFrame, out_path: Path) -> None:
    """AIC and BIC side by side for each model, in ranking order."""
    models = ranking["model"].to_list()
    x = np.arange(len(models))
    fig, ax = plt.subplots(figsize=(max(6, 2 * len(models)), 5))
    ax.bar(x - 0.2, ranking["aic"].to_list(), width=0.4, label="AIC", color="#0015BC", alpha=0.8)
    ax.bar(x + 0.2, ranking["bic"].to_list(), width=0.4, label="BIC", color="#E81B23", alpha=0.8)
    ax.set_xticks(x)
    ax.set_xticklabels(models, fontsize=9)
    ax.set_ylabel("Information Criterion (lower is better)", fontsize=10)
    ax.set_title("Which Model Fits Best?", fontsize=12, fontweight="bold")
    ax.legend(fontsize=9)
    ax.grid(True, axis="y", alpha=0.3)
    save_fig(fig, out_path)


def plot_degree_fit(degree_fit: pl.DataFrame, model: str, out_path: Path) -> None:
    """Observed vs model-expected degree per group (goodness of fit)."""
    obs = np.array(degree_fit["observed_degree"].to_list())
    exp = np.array(degree_fit["expected_degree"].to_list())
    fig, ax = plt.subplots(figsize=(7, 7))
    ax.scatter(exp, obs, color="#333333", alpha=0.7)
    hi = float(max(obs.max(initial=0), exp.max(initial=0))) + 1
    ax.plot([0, hi], [0, hi], color="#E81B23", linestyle="--", alpha=0.6)
    worst = np.argsort(-np.abs(obs - exp))[:5]
    labels = degree_fit["label"].to_list()
    for i in worst:
        ax.annotate(
            labels[i], (exp[i], obs[i]), fontsize=7, xytext=(3, 3), textcoords="offset points"
        )
    ax.set_xlabel("Expected Degree (model)", fontsize=10)
    ax.set_ylabel("Observed Degree", fontsize=10)
    ax.set_title(f"Model '{model}' — Degree Goodness of Fit", fontsize=12, fontweight="bold")
    ax.grid(True, alpha=0.3)
    save_fig(fig, out_path)


# ── Main ─────────────────────────────────────────────────────────────────────


def _build_manifest(args: argparse.Namespace, network: Network, result: ComparisonResult) -> dict:
    manifest: dict = {
        "analysis": "ergm",
        "constants": {
            "RANDOM_SEED": RANDOM_SEED,
            "MAX_ITER": args.max_iter,
            "TOP_LABEL_N": TOP_LABEL_N,
        },
        "directed": args.directed,
        "network": network.summary(),
        "isolates": network.isolates,
        "models": {f.name: f.fit_statistics() for f in result.fits},
        "failures": {name: f"{type(e).__name__}: {e}" for name, e in result.failures.items()},
    }
    best_aic = result.best("aic")
    best_bic = result.best("bic")
    manifest["best_aic"] = best_aic.name if best_aic else None
    manifest["best_bic"] = best_bic.name if best_bic else None
    return manifest


def main() -> None:
    args = parse_args()
    dataset = f"{args.dataset}_directed" if args.directed else args.dataset

    with RunContext(
        dataset=dataset,
        analysis_name="ergm",
        params=vars(args),
        results_root=args.results_root,
        primer=ERGM_PRIMER,
    ) as ctx:
        print("Rebel Group ERGM Analysis")
        print(f"Dataset:    {dataset}")
        print(f"Adjacency:  {args.adjacency}")
        print(f"Attributes: {args.attributes}")
        print(f"Output:     {ctx.run_dir}")

        # ── Phase 1-2: Load and Assemble ──
        print_header("PHASE 1: LOAD AND ASSEMBLE")
        network = load_and_assemble(args.adjacency, args.attributes, args.directed)
        network.edge_list().write_parquet(ctx.data_dir / "edge_list.parquet")
        network.attributes.frame.write_parquet(ctx.data_dir / "node_attributes.parquet")

        # ── Phase 2: Describe ──
        print_header("PHASE 2: DESCRIBE")
        dist = network.degree_distribution()
        for row in dist.iter_rows(named=True):
            print(f"  degree {row['degree']:3d}: {row['n_nodes']} group(s)")

        pos = plot_network(network, ctx.plots_dir / "network.png")
        plot_degree_distribution(network, ctx.plots_dir / "degree_distribution.png")

        # ── Phase 3: Fit Models ──
        print_header("PHASE 3: FIT MODELS")
        specs = default_specs(args.directed)
        result = compare_models(network, specs, estimator=MPLEEstimator(max_iter=args.max_iter))
        ctx.record_comparison(result)

        coefficients = result.coefficient_table()
        if coefficients.height:
            coefficients.write_parquet(ctx.data_dir / "coefficients.parquet")
            print("  Saved: coefficients.parquet")
        for fit in result.fits:
            print(f"\n  {fit.name}")
            for row in fit.coefficient_table().iter_rows(named=True):
                print(
                    f"    {row['term']:20s} {row['estimate']:9.4f} "
                    f"({row['std_error']:.4f}) {row['signif']}"
                )
            plot_coefficients(fit, ctx.plots_dir / f"coefficients_{fit.name}.png")

        # ── Phase 4: Compare ──
        print_header("PHASE 4: MODEL COMPARISON")
        ranking = result.ranking("aic")
        if ranking.height:
            ranking.write_parquet(ctx.data_dir / "model_ranking.parquet")
            for row in ranking.iter_rows(named=True):
                print(
                    f"  {row['rank']}. {row['model']:14s} logLik={row['log_likelihood']:9.3f} "
                    f"AIC={row['aic']:9.3f} BIC={row['bic']:9.3f}"
                )
            plot_model_comparison(ranking, ctx.plots_dir / "model_comparison.png")
        for name, err in result.failures.items():
            print(f"  FAILED {name}: {type(err).__name__}: {err}")

        # ── Phase 5: Goodness of Fit ──
        print_header("PHASE 5: GOODNESS OF FIT")
        gof_rows = []
        for fit in result.fits:
            diag = tie_prediction_diagnostics(fit)
            gof_rows.append(diag)
            print(
                f"  {fit.name:14s} AUC={diag['auc']}  density={diag['observed_density']}"
                f"  mean predicted={diag['mean_predicted']}"
            )
            degree_fit = degree_fit_table(network, fit)
            degree_fit.write_parquet(ctx.data_dir / f"degree_fit_{fit.name}.parquet")
            plot_degree_fit(degree_fit, fit.name, ctx.plots_dir / f"degree_fit_{fit.name}.png")
        if gof_rows:
            pl.DataFrame(gof_rows).write_parquet(ctx.data_dir / "tie_prediction.parquet")

        # ── Filtering Manifest ──
        print_header("FILTERING MANIFEST")
        manifest = _build_manifest(args, network, result)
        manifest["layout_nodes"] = len(pos)
        manifest_path = ctx.run_dir / "filtering_manifest.json"
        with open(manifest_path, "w") as f:
            json.dump(manifest, f, indent=2, default=str)
        print("  Saved: filtering_manifest.json")

        print_header("DONE")
        print(f"  All outputs in: {ctx.run_dir}")
        print(f"  Parquet files:  {len(list(ctx.data_dir.glob('*.parquet')))}")
        print(f"  PNG plots:      {len(list(ctx.plots_dir.glob('*.png')))}")
        print(f"  JSON manifests: {len(list(ctx.run_dir.glob('*.json')))}")


if __name__ == "__main__":
    main()
