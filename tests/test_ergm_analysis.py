"""
Tests for the ERGM analysis script helpers and the RunContext output layout.

Covers the non-interactive pieces of analysis/ergm.py (layout, default model
sets, manifest, plot files) and analysis/run_context.py (directory tree,
log capture, run metadata). The full pipeline is integration-level and not
run here.

Run: uv run pytest tests/test_ergm_analysis.py -v
"""

import argparse
import json
import sys
from pathlib import Path

import pytest

# Add project root to path so we can import analysis.ergm
sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.ergm import (
    _build_manifest,
    compute_layout,
    default_specs,
    plot_coefficients,
    plot_degree_fit,
    plot_model_comparison,
    plot_network,
)
from analysis.run_context import RunContext, _normalize_dataset
from rebel_ergm.comparator import compare_models, degree_fit_table
from rebel_ergm.terms import ModelSpec

# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def comparison(rebels):
    specs = [
        ModelSpec.from_formula("baseline", "edges"),
        ModelSpec.from_formula("homophily", "edges + nodematch(role)"),
        ModelSpec.from_formula("structural", "edges + isolates"),
    ]
    return compare_models(rebels, specs)


# ── Layout and specs ─────────────────────────────────────────────────────────


class TestLayout:
    def test_every_node_placed(self, rebels):
        pos = compute_layout(rebels)
        assert set(pos) == set(rebels.ids)

    def test_deterministic(self, rebels):
        a = compute_layout(rebels)
        b = compute_layout(rebels)
        for node in rebels.ids:
            assert tuple(a[node]) == pytest.approx(tuple(b[node]))

    def test_directed_network(self, rebels_directed):
        assert len(compute_layout(rebels_directed)) == 8


class TestDefaultSpecs:
    def test_undirected(self):
        names = [s.name for s in default_specs(directed=False)]
        assert names == ["baseline", "covariates", "structural"]

    def test_directed(self):
        specs = default_specs(directed=True)
        assert specs[-1].labels[-1] == "istar2"
        assert all("isolates" not in s.labels for s in specs)

    def test_nested(self):
        specs = default_specs(directed=False)
        for smaller, larger in zip(specs, specs[1:]):
            assert set(smaller.labels) < set(larger.labels)


# ── Manifest and plots ───────────────────────────────────────────────────────


class TestManifest:
    def test_contents(self, rebels, comparison):
        args = argparse.Namespace(directed=False, max_iter=100)
        manifest = _build_manifest(args, rebels, comparison)
        assert manifest["analysis"] == "ergm"
        assert manifest["constants"]["MAX_ITER"] == 100
        assert set(manifest["models"]) == {"baseline", "homophily"}
        assert "NonConvergenceError" in manifest["failures"]["structural"]
        assert manifest["best_aic"] == "homophily"
        assert manifest["best_bic"] == "baseline"

    def test_serializable(self, rebels, comparison):
        args = argparse.Namespace(directed=False, max_iter=100)
        json.dumps(_build_manifest(args, rebels, comparison), default=str)


class TestPlots:
    def test_network_plot(self, rebels, tmp_path):
        out = tmp_path / "network.png"
        pos = plot_network(rebels, out)
        assert out.exists()
        assert len(pos) == rebels.n_nodes

    def test_result_plots(self, rebels, comparison, tmp_path):
        fit = comparison["homophily"]
        plot_coefficients(fit, tmp_path / "coef.png")
        plot_model_comparison(comparison.ranking(), tmp_path / "cmp.png")
        plot_degree_fit(degree_fit_table(rebels, fit), fit.name, tmp_path / "deg.png")
        assert sorted(p.name for p in tmp_path.glob("*.png")) == [
            "cmp.png",
            "coef.png",
            "deg.png",
        ]


# ── RunContext ───────────────────────────────────────────────────────────────


class TestRunContext:
    """Structured output directories and run metadata."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("rebels", "rebels"),
            ("Rebels Directed", "rebels_directed"),
            ("conflict/2019", "conflict_2019"),
        ],
    )
    def test_normalize_dataset(self, raw, expected):
        assert _normalize_dataset(raw) == expected

    def test_directories_and_metadata(self, tmp_path):
        with RunContext("rebels", "ergm", params={"directed": False}, results_root=tmp_path) as ctx:
            print("hello from the run")
            assert ctx.plots_dir.is_dir()
            assert ctx.data_dir.is_dir()

        assert "hello from the run" in (ctx.run_dir / "run_log.txt").read_text()
        info = json.loads((ctx.run_dir / "run_info.json").read_text())
        assert info["dataset"] == "rebels"
        assert info["analysis"] == "ergm"
        assert info["params"] == {"directed": False}
        assert info["error"] is None
        assert (tmp_path / "rebels" / "ergm" / "latest").is_symlink()

    def test_primer_written(self, tmp_path):
        with RunContext("rebels", "ergm", results_root=tmp_path, primer="# Primer\n"):
            pass
        assert (tmp_path / "rebels" / "ergm" / "README.md").read_text() == "# Primer\n"

    def test_error_recorded(self, tmp_path):
        with pytest.raises(RuntimeError):
            with RunContext("rebels", "ergm", results_root=tmp_path) as ctx:
                raise RuntimeError("boom")
        info = json.loads((ctx.run_dir / "run_info.json").read_text())
        assert info["error"] == "RuntimeError: boom"

    def test_stdout_restored(self, tmp_path):
        original = sys.stdout
        with RunContext("rebels", "ergm", results_root=tmp_path):
            assert sys.stdout is not original
        assert sys.stdout is original

    def test_comparison_outcome_recorded(self, comparison, tmp_path):
        with RunContext("rebels", "ergm", results_root=tmp_path) as ctx:
            ctx.record_comparison(comparison)
        info = json.loads((ctx.run_dir / "run_info.json").read_text())
        outcome = info["outcome"]
        assert outcome["models_fitted"] == ["baseline", "homophily"]
        assert list(outcome["models_failed"]) == ["structural"]
        assert outcome["models_failed"]["structural"].startswith("NonConvergenceError")
        assert outcome["best_aic"] == "homophily"
        assert outcome["best_bic"] == "baseline"

    def test_outcome_empty_without_comparison(self, tmp_path):
        with RunContext("rebels", "ergm", results_root=tmp_path) as ctx:
            pass
        info = json.loads((ctx.run_dir / "run_info.json").read_text())
        assert info["outcome"] == {}
        assert info["elapsed_seconds"] >= 0

    def test_latest_repointed(self, tmp_path):
        for _ in range(2):
            with RunContext("rebels", "ergm", results_root=tmp_path) as ctx:
                pass
        latest = tmp_path / "rebels" / "ergm" / "latest"
        assert latest.resolve() == ctx.run_dir.resolve()
