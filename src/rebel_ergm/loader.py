"""Load and validate the adjacency and node attribute tables.

Both tables are delimited text, read from a local path or an http(s) URL.
The adjacency table's first column holds the group identifiers; the remaining
column headers are the same identifiers. The attribute table has one row per
group keyed by ``ID_COLUMN``.
"""

from __future__ import annotations

import io
from collections import Counter
from pathlib import Path

import numpy as np
import polars as pl
import requests

from rebel_ergm.config import (
    ID_COLUMN,
    LABEL_COLUMN,
    REQUEST_TIMEOUT,
    REQUIRED_ATTRIBUTES,
    USER_AGENT,
)
from rebel_ergm.errors import AlignmentError, SchemaError, ShapeError
from rebel_ergm.models import (
    ATTRIBUTE_KINDS,
    CATEGORICAL,
    NUMERIC,
    ORDINAL,
    AdjacencyMatrix,
    AttributeTable,
)

Source = str | Path


def _is_url(source: Source) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


def fetch_bytes(url: str) -> bytes:
    """Download a table over HTTP. Errors propagate; there are no retries."""
    resp = requests.get(url, timeout=REQUEST_TIMEOUT, headers={"User-Agent": USER_AGENT})
    resp.raise_for_status()
    return resp.content


def read_table(source: Source) -> pl.DataFrame:
    """Read a CSV from a local path or URL into a polars DataFrame (all columns as text)."""
    if _is_url(source):
        data: Path | io.BytesIO = io.BytesIO(fetch_bytes(str(source)))
    else:
        data = Path(source)
    return pl.read_csv(data, infer_schema=False)


def _duplicates(values: list[str]) -> list[str]:
    return sorted(v for v, c in Counter(values).items() if c > 1)


def _mismatch_message(what: str, expected: set[str], actual: set[str]) -> tuple[str, list[str]]:
    missing = sorted(expected - actual)
    extra = sorted(actual - expected)
    parts = []
    if missing:
        parts.append(f"missing {missing}")
    if extra:
        parts.append(f"unexpected {extra}")
    return f"{what}: " + ", ".join(parts), missing + extra


# ── Adjacency ────────────────────────────────────────────────────────────────


def adjacency_from_frame(df: pl.DataFrame) -> AdjacencyMatrix:
    """Validate an adjacency DataFrame (identifier column first) and align its columns.

    Columns are reordered to match row order, so node index order is the
    row order of the source table.
    """
    if df.width < 2:
        raise ShapeError(f"Adjacency table needs an id column plus data columns, got {df.width}")

    id_col = df.columns[0]
    row_ids = [str(v).strip() for v in df[id_col].to_list()]
    col_ids = [c.strip() for c in df.columns[1:]]

    if len(col_ids) != len(row_ids):
        raise ShapeError(
            f"Adjacency table is not square: {len(row_ids)} rows x {len(col_ids)} columns"
        )

    dup_rows = _duplicates(row_ids)
    if dup_rows:
        raise AlignmentError(f"Duplicate row identifiers in adjacency: {dup_rows}", ids=dup_rows)
    dup_cols = _duplicates(col_ids)
    if dup_cols:
        raise AlignmentError(f"Duplicate column identifiers in adjacency: {dup_cols}", ids=dup_cols)
    if set(row_ids) != set(col_ids):
        msg, ids = _mismatch_message(
            "Adjacency column identifiers do not match rows", set(row_ids), set(col_ids)
        )
        raise AlignmentError(msg, ids=ids)

    by_name = dict(zip(col_ids, df.columns[1:]))
    ordered = df.select([by_name[i] for i in row_ids])
    try:
        values = ordered.select(
            pl.all().cast(pl.Utf8).str.strip_chars().cast(pl.Float64)
        ).to_numpy()
    except pl.exceptions.InvalidOperationError as e:
        raise SchemaError(f"Adjacency table has non-numeric entries: {e}") from e

    if np.isnan(values).any():
        bad = sorted({row_ids[i] for i in np.argwhere(np.isnan(values))[:, 0]})
        raise SchemaError(f"Adjacency table has missing entries in rows {bad}", ids=bad)

    return AdjacencyMatrix(ids=tuple(row_ids), values=values)


def load_adjacency(source: Source) -> AdjacencyMatrix:
    """Load the adjacency table from a path or URL."""
    adj = adjacency_from_frame(read_table(source))
    print(f"  Adjacency: {adj.n_nodes} groups from {source}")
    return adj


# ── Attributes ───────────────────────────────────────────────────────────────


def _blank_to_null(name: str) -> pl.Expr:
    stripped = pl.col(name).cast(pl.Utf8).str.strip_chars()
    return pl.when(stripped != "").then(stripped).alias(name)


def _cast_attribute(
    df: pl.DataFrame, name: str, kind: str, allow_missing: bool = False
) -> pl.DataFrame:
    """Cast one attribute column to its kind's dtype; blank cells become null.

    Required columns must be complete. Optional columns may keep nulls; a
    term that references one checks for them when it is applied.
    """
    if kind not in ATTRIBUTE_KINDS:
        raise ValueError(f"Unknown attribute kind {kind!r} for {name!r}")
    target = {NUMERIC: pl.Float64, ORDINAL: pl.Int64, CATEGORICAL: pl.Utf8}[kind]
    try:
        out = df.with_columns(_blank_to_null(name).cast(target).alias(name))
    except pl.exceptions.InvalidOperationError as e:
        raise SchemaError(f"Attribute {name!r} is declared {kind} but cannot be cast: {e}") from e
    if not allow_missing and out[name].null_count() > 0:
        bad = out.filter(pl.col(name).is_null())[ID_COLUMN].to_list()
        raise SchemaError(f"Attribute {name!r} has missing values for {bad}", ids=bad)
    return out


def _infer_kind(df: pl.DataFrame, name: str) -> str:
    """Undeclared columns: numeric if every non-blank value parses as a float."""
    values = df.select(_blank_to_null(name))[name]
    parsed = values.cast(pl.Float64, strict=False)
    if parsed.null_count() == values.null_count():
        return NUMERIC
    return CATEGORICAL


def attributes_from_frame(
    df: pl.DataFrame,
    node_ids: tuple[str, ...],
    required: dict[str, str] | None = None,
) -> AttributeTable:
    """Validate an attribute DataFrame against the adjacency identifiers.

    ``required`` maps column name to kind (numeric, categorical, ordinal).
    The returned table is sorted into ``node_ids`` order.
    """
    required = REQUIRED_ATTRIBUTES if required is None else required

    missing_cols = [c for c in [ID_COLUMN, *required] if c not in df.columns]
    if missing_cols:
        raise SchemaError(f"Attribute table is missing required columns: {missing_cols}")

    df = df.with_columns(pl.col(ID_COLUMN).cast(pl.Utf8).str.strip_chars())
    ids = df[ID_COLUMN].to_list()
    dup = _duplicates(ids)
    if dup:
        raise AlignmentError(f"Duplicate identifiers in attribute table: {dup}", ids=dup)
    if set(ids) != set(node_ids):
        msg, bad = _mismatch_message(
            "Attribute identifiers do not match adjacency", set(node_ids), set(ids)
        )
        raise AlignmentError(msg, ids=bad)

    kinds: dict[str, str] = {}
    for name, kind in required.items():
        df = _cast_attribute(df, name, kind)
        kinds[name] = kind

    for name in df.columns:
        if name in (ID_COLUMN, LABEL_COLUMN) or name in kinds:
            continue
        kind = _infer_kind(df, name)
        df = _cast_attribute(df, name, kind, allow_missing=True)
        kinds[name] = kind

    if LABEL_COLUMN not in df.columns:
        df = df.with_columns(pl.col(ID_COLUMN).alias(LABEL_COLUMN))
    else:
        df = df.with_columns(pl.col(LABEL_COLUMN).fill_null(pl.col(ID_COLUMN)))

    position = {node: i for i, node in enumerate(node_ids)}
    df = (
        df.with_columns(
            pl.col(ID_COLUMN).replace_strict(position, return_dtype=pl.Int64).alias("_order")
        )
        .sort("_order")
        .drop("_order")
    )
    return AttributeTable(frame=df, kinds=kinds, id_column=ID_COLUMN)


def load_attributes(
    source: Source,
    node_ids: tuple[str, ...],
    required: dict[str, str] | None = None,
) -> AttributeTable:
    """Load the node attribute table from a path or URL."""
    table = attributes_from_frame(read_table(source), node_ids, required)
    print(f"  Attributes: {table.frame.height} rows, columns {table.names}")
    return table


def load_network_data(
    adjacency_source: Source,
    attribute_source: Source,
    required: dict[str, str] | None = None,
) -> tuple[AdjacencyMatrix, AttributeTable]:
    """Load both tables and return the validated, aligned pair."""
    adjacency = load_adjacency(adjacency_source)
    attributes = load_attributes(attribute_source, adjacency.ids, required)
    return adjacency, attributes
