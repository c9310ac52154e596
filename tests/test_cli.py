"""
Tests for CLI argument parsing and exit codes in cli.py.

Writes the eight-group fixture network to CSV files in tmp_path and runs
main() end to end; a monkeypatched compare_models captures the specs and
estimator settings where only argument handling is under test.

Run: uv run pytest tests/test_cli.py -v
"""

import argparse

import pytest

from rebel_ergm.cli import _parse_model, build_specs, main
from rebel_ergm.comparator import ComparisonResult
from rebel_ergm.config import DIRECTED_MODELS, MAX_ITER, UNDIRECTED_MODELS

# ── Helpers ──────────────────────────────────────────────────────────────────


@pytest.fixture
def csv_args(write_csvs):
    adj, attrs = write_csvs()
    return ["--adjacency", str(adj), "--attributes", str(attrs)]


@pytest.fixture
def mock_compare(monkeypatch):
    """Patch compare_models to record its arguments and fit nothing."""
    calls = []

    def fake_compare(network, specs, estimator=None, strict=False):
        calls.append({"network": network, "specs": specs, "estimator": estimator})
        return ComparisonResult(network=network)

    monkeypatch.setattr("rebel_ergm.cli.compare_models", fake_compare)
    return calls


# ── Model arguments ──────────────────────────────────────────────────────────


class TestParseModel:
    """--model NAME=FORMULA parsing."""

    def test_name_and_formula(self):
        assert _parse_model("homophily = edges + nodematch(role)") == (
            "homophily",
            "edges + nodematch(role)",
        )

    def test_missing_equals(self):
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_model("edges + nodematch(role)")

    def test_empty_formula(self):
        with pytest.raises(argparse.ArgumentTypeError):
            _parse_model("m=")


class TestBuildSpecs:
    """Default model sets depend on directedness."""

    def test_undirected_defaults(self):
        specs = build_specs(None, directed=False)
        assert [s.name for s in specs] == list(UNDIRECTED_MODELS)

    def test_directed_defaults(self):
        specs = build_specs(None, directed=True)
        assert [s.name for s in specs] == list(DIRECTED_MODELS)
        assert "istar2" in specs[-1].labels

    def test_explicit(self):
        specs = build_specs([("m", "nodematch(role)")], directed=False)
        assert specs[0].labels == ("edges", "nodematch.role")


# ── Argument handling ────────────────────────────────────────────────────────


class TestArguments:
    """Flags reach assemble/compare without running the optimizer."""

    def test_default_undirected(self, csv_args, mock_compare):
        assert main(csv_args) == 0
        assert mock_compare[0]["network"].directed is False
        assert mock_compare[0]["estimator"].max_iter == MAX_ITER

    def test_directed_flag(self, csv_args, mock_compare):
        main([*csv_args, "--directed"])
        assert mock_compare[0]["network"].directed is True
        assert [s.name for s in mock_compare[0]["specs"]] == list(DIRECTED_MODELS)

    def test_repeated_models(self, csv_args, mock_compare):
        main([*csv_args, "-m", "a=edges", "--model", "b=edges + absdiff(size)"])
        assert [s.name for s in mock_compare[0]["specs"]] == ["a", "b"]

    def test_max_iter(self, csv_args, mock_compare):
        main([*csv_args, "--max-iter", "50"])
        assert mock_compare[0]["estimator"].max_iter == 50

    def test_bad_criterion(self, csv_args, mock_compare):
        with pytest.raises(SystemExit) as exc:
            main([*csv_args, "--criterion", "dic"])
        assert exc.value.code == 2


# ── Exit codes ───────────────────────────────────────────────────────────────


class TestExitCodes:
    """0 when every model fits, 1 when any fails, 2 on bad input."""

    def test_all_fit(self, csv_args, capsys):
        code = main([*csv_args, "-m", "baseline=edges", "-m", "homophily=edges + nodematch(role)"])
        assert code == 0
        out = capsys.readouterr().out
        assert "Ranking by AIC" in out
        assert "nodematch.role" in out

    def test_bic_ranking(self, csv_args, capsys):
        main([*csv_args, "-m", "baseline=edges", "--criterion", "bic"])
        assert "Ranking by BIC" in capsys.readouterr().out

    def test_some_fail(self, csv_args, capsys):
        # every group has degree >= 2, so the isolates column is constant
        code = main([*csv_args, "-m", "baseline=edges", "-m", "iso=edges + isolates"])
        assert code == 1
        out = capsys.readouterr().out
        assert "1 model(s) failed" in out
        assert "NonConvergenceError" in out

    def test_unknown_term(self, csv_args, capsys):
        with pytest.raises(SystemExit) as exc:
            main([*csv_args, "-m", "tri=edges + triangles"])
        assert exc.value.code == 2
        assert "triangles" in capsys.readouterr().err

    def test_missing_file(self, tmp_path, capsys):
        missing = tmp_path / "nope.csv"
        with pytest.raises(SystemExit) as exc:
            main(["--adjacency", str(missing), "--attributes", str(missing)])
        assert exc.value.code == 2

    def test_misaligned_attributes(self, write_csvs, capsys):
        adj, attrs = write_csvs()
        attrs.write_text(attrs.read_text().replace("g8,", "g9,"))
        with pytest.raises(SystemExit) as exc:
            main(["--adjacency", str(adj), "--attributes", str(attrs)])
        assert exc.value.code == 2
        assert "g9" in capsys.readouterr().err
