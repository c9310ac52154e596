"""Immutable network assembled from a validated adjacency/attribute pair."""

from __future__ import annotations

from dataclasses import dataclass, field

import networkx as nx
import numpy as np
import polars as pl

from rebel_ergm.config import LABEL_COLUMN
from rebel_ergm.errors import AlignmentError, SchemaError
from rebel_ergm.models import AdjacencyMatrix, AttributeTable, read_only


@dataclass(frozen=True, eq=False)
class Network:
    """A directed or undirected graph over a fixed, ordered node set.

    Node ``i`` is row/column ``i`` of ``weights`` and row ``i`` of the
    attribute table. Degrees and isolates are derived on access.
    """

    ids: tuple[str, ...]
    weights: np.ndarray
    attributes: AttributeTable
    directed: bool
    ties: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        w = np.array(self.weights, dtype=float)
        np.fill_diagonal(w, 0.0)
        object.__setattr__(self, "weights", read_only(w))
        object.__setattr__(self, "ties", read_only((w != 0).astype(np.int64)))

    # -- Size and degree -------------------------------------------------------

    @property
    def n_nodes(self) -> int:
        return len(self.ids)

    @property
    def n_edges(self) -> int:
        total = int(self.ties.sum())
        return total if self.directed else total // 2

    @property
    def n_dyads(self) -> int:
        n = self.n_nodes
        return n * (n - 1) if self.directed else n * (n - 1) // 2

    @property
    def density(self) -> float:
        return self.n_edges / self.n_dyads if self.n_dyads else 0.0

    @property
    def in_degree(self) -> np.ndarray:
        return self.ties.sum(axis=0)

    @property
    def out_degree(self) -> np.ndarray:
        return self.ties.sum(axis=1)

    @property
    def degree(self) -> np.ndarray:
        """Number of incident ties (in + out for directed networks)."""
        if self.directed:
            return self.in_degree + self.out_degree
        return self.ties.sum(axis=1)

    @property
    def isolates(self) -> list[str]:
        return [self.ids[i] for i in np.flatnonzero(self.degree == 0)]

    def degree_distribution(self) -> pl.DataFrame:
        """Count of nodes at each degree (total degree for directed networks)."""
        return (
            pl.DataFrame({"degree": self.degree.astype(np.int64)})
            .group_by("degree")
            .agg(pl.len().alias("n_nodes"))
            .sort("degree")
        )

    # -- Attributes ------------------------------------------------------------

    def attribute(self, name: str) -> np.ndarray:
        if name not in self.attributes.kinds:
            raise SchemaError(
                f"Network has no attribute {name!r} (available: {self.attributes.names})"
            )
        return self.attributes.column(name)

    def attribute_kind(self, name: str) -> str:
        self.attribute(name)
        return self.attributes.kinds[name]

    @property
    def labels(self) -> list[str]:
        return self.attributes.frame[LABEL_COLUMN].to_list()

    # -- Derived views ---------------------------------------------------------

    def index(self, node_id: str) -> int:
        return self.ids.index(node_id)

    def with_tie(self, i: int, j: int, weight: float = 1.0) -> Network:
        """Return a copy with tie i -> j (and j -> i if undirected) set to ``weight``.

        A weight of 0 removes the tie.
        """
        w = np.array(self.weights)
        w[i, j] = weight
        if not self.directed:
            w[j, i] = weight
        return Network(ids=self.ids, weights=w, attributes=self.attributes, directed=self.directed)

    def edge_list(self) -> pl.DataFrame:
        """Present ties as (source, target, weight) rows; i < j for undirected."""
        rows = []
        for i, j in zip(*np.nonzero(self.ties)):
            if not self.directed and i > j:
                continue
            rows.append(
                {"source": self.ids[i], "target": self.ids[j], "weight": float(self.weights[i, j])}
            )
        return pl.DataFrame(
            rows, schema={"source": pl.Utf8, "target": pl.Utf8, "weight": pl.Float64}
        )

    def to_networkx(self) -> nx.Graph:
        """Export to networkx with every node attribute, for layout and plotting."""
        G = nx.DiGraph() if self.directed else nx.Graph()
        for row in self.attributes.frame.iter_rows(named=True):
            node = row.pop(self.attributes.id_column)
            G.add_node(node, **row)
        for row in self.edge_list().iter_rows(named=True):
            G.add_edge(row["source"], row["target"], weight=row["weight"])
        return G

    def summary(self) -> dict:
        """Summary statistics for the console and the run manifest."""
        degree = self.degree
        out = {
            "n_nodes": self.n_nodes,
            "n_edges": self.n_edges,
            "directed": self.directed,
            "density": round(self.density, 4),
            "mean_degree": round(float(degree.mean()), 3) if self.n_nodes else 0.0,
            "max_degree": int(degree.max()) if self.n_nodes else 0,
            "n_isolates": len(self.isolates),
        }
        G = self.to_networkx()
        if self.directed:
            out["n_components"] = nx.number_weakly_connected_components(G)
            out["reciprocity"] = round(nx.reciprocity(G), 4) if self.n_edges else 0.0
        else:
            out["n_components"] = nx.number_connected_components(G)
        return out


def assemble_network(
    adjacency: AdjacencyMatrix,
    attributes: AttributeTable,
    directed: bool,
) -> Network:
    """Build a Network, keeping the adjacency row order as node index order.

    Undirected networks built from an asymmetric matrix take the union of
    both directions (the larger weight wins).
    """
    if adjacency.ids != attributes.ids:
        a, b = set(adjacency.ids), set(attributes.ids)
        bad = sorted(a ^ b) or [i for i, j in zip(adjacency.ids, attributes.ids) if i != j]
        raise AlignmentError(
            "Attribute rows are not aligned with adjacency order", ids=bad
        )

    values = adjacency.values
    if not directed and not adjacency.is_symmetric:
        n_asym = int(np.triu((values != 0) != (values.T != 0), k=1).sum())
        print(f"  Symmetrizing adjacency: {n_asym} one-directional dyad(s) treated as ties")
        values = np.where(np.abs(values) >= np.abs(values.T), values, values.T)

    return Network(ids=adjacency.ids, weights=values, attributes=attributes, directed=directed)
