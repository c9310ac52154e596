"""Output directory, console log and run metadata for one ERGM analysis run.

Layout under the results root:

    <dataset>/<analysis>/README.md          primer, rewritten every run
    <dataset>/<analysis>/<YYYY-MM-DD>/      this run
        data/  plots/  run_log.txt  run_info.json
    <dataset>/<analysis>/latest -> <YYYY-MM-DD>

Everything printed inside the ``with`` block is echoed to the console and kept
for run_log.txt. Scripts hand their model comparison to ``record_comparison``
so that run_info.json names the fitted models, the failures and the AIC/BIC
winners next to the parameters.

Usage:
    with RunContext(dataset="rebels", analysis_name="ergm", params=vars(args)) as ctx:
        result = compare_models(network, specs)
        ctx.record_comparison(result)
        result.ranking().write_parquet(ctx.data_dir / "model_ranking.parquet")
"""

from __future__ import annotations

import json
import re
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType
from typing import TextIO


class _ConsoleCapture:
    """Forward writes to the console and keep a copy of everything written."""

    def __init__(self, console: TextIO) -> None:
        self.console = console
        self.chunks: list[str] = []

    def write(self, text: str) -> int:
        self.console.write(text)
        self.chunks.append(text)
        return len(text)

    def flush(self) -> None:
        self.console.flush()

    @property
    def text(self) -> str:
        return "".join(self.chunks)


def _normalize_dataset(dataset: str) -> str:
    """Make a dataset label safe to use as a directory name.

    Examples:
        "rebels"            -> "rebels"
        "Rebels Directed"   -> "rebels_directed"
        "conflict/2019"     -> "conflict_2019"
    """
    slug = re.sub(r"[^a-z0-9_-]+", "_", dataset.strip().lower())
    return slug.strip("_") or "dataset"


def _git_revision() -> str:
    try:
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL, text=True, timeout=5
        )
    except (OSError, subprocess.SubprocessError):
        return "unknown"
    return out.strip() or "unknown"


class RunContext:
    """Context manager for one dated analysis run.

    Attributes:
        dataset: Directory-safe dataset label (e.g. "rebels_directed").
        analysis_name: Analysis label (e.g. "ergm").
        params: Script arguments, stored in run_info.json.
        outcome: Model comparison summary set by ``record_comparison``.
        run_dir: results/<dataset>/<analysis>/<date>/.
    """

    def __init__(
        self,
        dataset: str,
        analysis_name: str,
        params: dict | None = None,
        results_root: Path | None = None,
        primer: str | None = None,
    ) -> None:
        self.dataset = _normalize_dataset(dataset)
        self.analysis_name = analysis_name
        self.params = dict(params or {})
        self.primer = primer
        self.outcome: dict = {}

        self.run_date = datetime.now(timezone.utc).date().isoformat()
        self.analysis_dir = Path(results_root or "results") / self.dataset / analysis_name
        self.run_dir = self.analysis_dir / self.run_date

        self._capture: _ConsoleCapture | None = None
        self._console: TextIO | None = None
        self._started: datetime | None = None
        self._error: str | None = None

    @property
    def plots_dir(self) -> Path:
        return self.run_dir / "plots"

    @property
    def data_dir(self) -> Path:
        return self.run_dir / "data"

    def __enter__(self) -> RunContext:
        for directory in (self.plots_dir, self.data_dir):
            directory.mkdir(parents=True, exist_ok=True)
        if self.primer:
            (self.analysis_dir / "README.md").write_text(self.primer, encoding="utf-8")

        self._console = sys.stdout
        self._capture = _ConsoleCapture(sys.stdout)
        sys.stdout = self._capture  # type: ignore[assignment]
        self._started = datetime.now(timezone.utc)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self._error = f"{exc_type.__name__}: {exc_val}"
        if self._console is not None:
            sys.stdout = self._console  # type: ignore[assignment]

        log = self._capture.text if self._capture is not None else ""
        (self.run_dir / "run_log.txt").write_text(log, encoding="utf-8")
        with open(self.run_dir / "run_info.json", "w") as f:
            json.dump(self.run_info(), f, indent=2, default=str)
        self._point_latest()

    def record_comparison(self, result) -> None:
        """Summarize a ComparisonResult: fitted and failed models, AIC/BIC winners."""
        best_aic = result.best("aic")
        best_bic = result.best("bic")
        self.outcome = {
            "models_fitted": [fit.name for fit in result.fits],
            "models_failed": {
                name: f"{type(err).__name__}: {err}" for name, err in result.failures.items()
            },
            "best_aic": best_aic.name if best_aic else None,
            "best_bic": best_bic.name if best_bic else None,
        }

    def run_info(self) -> dict:
        finished = datetime.now(timezone.utc)
        elapsed = (finished - self._started).total_seconds() if self._started else None
        return {
            "analysis": self.analysis_name,
            "dataset": self.dataset,
            "run_date": self.run_date,
            "started": self._started.isoformat() if self._started else None,
            "finished": finished.isoformat(),
            "elapsed_seconds": round(elapsed, 2) if elapsed is not None else None,
            "git_commit": _git_revision(),
            "python_version": sys.version,
            "params": self.params,
            "outcome": self.outcome,
            "error": self._error,
        }

    def _point_latest(self) -> None:
        # Relative target so the results tree can be moved
        latest = self.analysis_dir / "latest"
        latest.unlink(missing_ok=True)
        latest.symlink_to(self.run_date)
