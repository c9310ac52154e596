"""Data classes for network inputs, design matrices, and estimator output."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import polars as pl

# Attribute kinds. Ordinal attributes are integer-coded and accepted
# wherever numeric or categorical attributes are.
NUMERIC = "numeric"
CATEGORICAL = "categorical"
ORDINAL = "ordinal"
ATTRIBUTE_KINDS = (NUMERIC, CATEGORICAL, ORDINAL)


def read_only(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class AdjacencyMatrix:
    """Square tie-weight matrix; rows and columns share the order of ``ids``."""

    ids: tuple[str, ...]
    values: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", read_only(np.asarray(self.values, dtype=float)))

    @property
    def n_nodes(self) -> int:
        return len(self.ids)

    @property
    def is_symmetric(self) -> bool:
        return bool(np.array_equal(self.values, self.values.T))


@dataclass(frozen=True)
class AttributeTable:
    """One row per node, in adjacency order, plus the declared kind of each attribute."""

    frame: pl.DataFrame
    kinds: dict[str, str]
    id_column: str

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self.frame[self.id_column].to_list())

    @property
    def names(self) -> list[str]:
        return list(self.kinds)

    def column(self, name: str) -> np.ndarray:
        return self.frame[name].to_numpy()

    def missing(self, name: str) -> list[str]:
        """Identifiers of nodes with no value for ``name``."""
        return self.frame.filter(pl.col(name).is_null())[self.id_column].to_list()


@dataclass(frozen=True)
class DesignMatrix:
    """Change statistics (one row per dyad) and observed tie indicators."""

    X: np.ndarray
    y: np.ndarray
    labels: tuple[str, ...]
    dyads: np.ndarray  # (n_dyads, 2) node index pairs

    @property
    def n_obs(self) -> int:
        return int(self.X.shape[0])

    @property
    def n_terms(self) -> int:
        return int(self.X.shape[1])


@dataclass(frozen=True)
class FitResult:
    """What an estimator hands back for one design matrix."""

    coefficients: np.ndarray
    std_errors: np.ndarray
    log_likelihood: float
    n_obs: int
    fitted: np.ndarray  # per-dyad tie probabilities
    method: str = "MPLE"
    n_iter: int | None = None
    extra: dict = field(default_factory=dict)
