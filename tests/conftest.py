"""Shared fixtures: a small eight-group network with known MPLE estimates.

Groups g1-g4 have role "a", g5-g8 role "b". Six of the twelve same-role
dyads are ties and three of the sixteen cross-role dyads are, so
edges + nodematch(role) has closed-form estimates logit(3/16) and
logit(6/12) - logit(3/16).
"""

import numpy as np
import polars as pl
import pytest

from rebel_ergm.loader import adjacency_from_frame, attributes_from_frame
from rebel_ergm.network import assemble_network

IDS = ("g1", "g2", "g3", "g4", "g5", "g6", "g7", "g8")
ROLES = ["a", "a", "a", "a", "b", "b", "b", "b"]
SIZES = [100, 200, 150, 300, 120, 80, 500, 60]
IDEOLOGY = [1, 2, 3, 1, 2, 3, 1, 2]
TIES = [
    ("g1", "g2"),
    ("g2", "g3"),
    ("g3", "g4"),
    ("g5", "g6"),
    ("g6", "g7"),
    ("g1", "g5"),
    ("g4", "g8"),
    ("g7", "g8"),
    ("g2", "g6"),
]


def adjacency_frame(ties=TIES, ids=IDS, directed=False) -> pl.DataFrame:
    values = np.zeros((len(ids), len(ids)), dtype=int)
    for a, b in ties:
        values[ids.index(a), ids.index(b)] = 1
        if not directed:
            values[ids.index(b), ids.index(a)] = 1
    data = {"group_id": list(ids)}
    for j, name in enumerate(ids):
        data[name] = [str(v) for v in values[:, j]]
    return pl.DataFrame(data)


def attribute_frame(ids=IDS) -> pl.DataFrame:
    return pl.DataFrame(
        {
            "group_id": list(ids),
            "size": [str(s) for s in SIZES],
            "role": ROLES,
            "ideology": [str(v) for v in IDEOLOGY],
            # same partition as role under different labels
            "bloc": ["east" if r == "a" else "west" for r in ROLES],
        }
    )


def build_network(ties=TIES, directed=False):
    adjacency = adjacency_from_frame(adjacency_frame(ties, directed=directed))
    attributes = attributes_from_frame(attribute_frame(), adjacency.ids)
    return assemble_network(adjacency, attributes, directed=directed)


@pytest.fixture
def rebels():
    """Undirected eight-group network (9 ties over 28 dyads)."""
    return build_network()


@pytest.fixture
def rebels_directed():
    """The same ties read as directed, first -> second."""
    return build_network(directed=True)


@pytest.fixture
def write_csvs(tmp_path):
    """Write adjacency and attribute CSVs and return their paths."""

    def _write(ties=TIES, directed=False):
        adj = tmp_path / "adjacency.csv"
        attrs = tmp_path / "attributes.csv"
        adjacency_frame(ties, directed=directed).write_csv(adj)
        attribute_frame().write_csv(attrs)
        return adj, attrs

    return _write


@pytest.fixture
def make_network():
    """Factory for variants of the fixture network with other ties."""
    return build_network
