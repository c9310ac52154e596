"""ERGM terms: observed statistics and change statistics over a Network.

Each term declares which networks it applies to (directed, undirected),
which attribute kinds it accepts, and whether it is dyadic (a value per dyad
from node attributes) or structural (computed from topology alone).

Change statistics are what pseudo-likelihood estimation consumes: entry
(i, j) is the statistic with the tie i -> j present minus the statistic with
it absent, holding the rest of the graph fixed.

Terms are looked up by name in ``TERMS``. Model formulas use the ergm
syntax, e.g. ``edges + absdiff(size) + nodematch(role) + istar(2)``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import ClassVar

import numpy as np
from scipy.special import comb

from rebel_ergm.errors import (
    SchemaError,
    TermSyntaxError,
    UnknownTermError,
    UnsupportedTermError,
)
from rebel_ergm.models import CATEGORICAL, NUMERIC, ORDINAL
from rebel_ergm.network import Network

DYADIC = "dyadic"
STRUCTURAL = "structural"

TERMS: dict[str, type[Term]] = {}

_TERM_RE = re.compile(r"^\s*([A-Za-z_]\w*)\s*(?:\((.*)\))?\s*$")


def register(cls: type[Term]) -> type[Term]:
    TERMS[cls.name] = cls
    return cls


class Term:
    """Base class for model terms. Subclasses set the class-level declarations."""

    name: ClassVar[str]
    kind: ClassVar[str]
    directed_ok: ClassVar[bool] = True
    undirected_ok: ClassVar[bool] = True
    attribute_kinds: ClassVar[tuple[str, ...]] = ()

    def __init__(self, *args: str | int) -> None:
        self.args = self.validate_args(args)

    def validate_args(self, args: tuple) -> tuple:
        if args:
            raise TermSyntaxError(f"{self.name} takes no arguments, got {args}", term=self.name)
        return ()

    @property
    def label(self) -> str:
        """Coefficient label, e.g. ``absdiff.size`` or ``istar2``."""
        return self.name

    def __str__(self) -> str:
        if not self.args:
            return self.name
        return f"{self.name}({', '.join(str(a) for a in self.args)})"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self}>"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Term) and (self.name, self.args) == (other.name, other.args)

    def __hash__(self) -> int:
        return hash((self.name, self.args))

    def check(self, network: Network) -> None:
        """Raise UnsupportedTermError if this term does not apply to ``network``."""
        if network.directed and not self.directed_ok:
            raise UnsupportedTermError(
                f"{self} is only defined for undirected networks", term=str(self)
            )
        if not network.directed and not self.undirected_ok:
            raise UnsupportedTermError(
                f"{self} is only defined for directed networks", term=str(self)
            )

    def statistic(self, network: Network) -> float:
        raise NotImplementedError

    def change_statistics(self, network: Network) -> np.ndarray:
        raise NotImplementedError


# ── Dyadic terms ─────────────────────────────────────────────────────────────


class DyadicTerm(Term):
    """A term whose statistic sums a per-dyad value over present ties."""

    kind = DYADIC

    def validate_args(self, args: tuple) -> tuple:
        if len(args) != 1 or not isinstance(args[0], str) or not args[0]:
            raise TermSyntaxError(
                f"{self.name} takes exactly one attribute name, got {args}", term=self.name
            )
        return args

    @property
    def attr(self) -> str:
        return self.args[0]

    @property
    def label(self) -> str:
        return f"{self.name}.{self.attr}"

    def check(self, network: Network) -> None:
        super().check(network)
        kind = network.attribute_kind(self.attr)
        if kind not in self.attribute_kinds:
            raise UnsupportedTermError(
                f"{self} needs a {' or '.join(self.attribute_kinds)} attribute, "
                f"but {self.attr!r} is {kind}",
                term=str(self),
            )
        missing = network.attributes.missing(self.attr)
        if missing:
            raise SchemaError(
                f"{self} uses {self.attr!r}, which has missing values for {missing}", ids=missing
            )

    def dyad_values(self, network: Network) -> np.ndarray:
        raise NotImplementedError

    def statistic(self, network: Network) -> float:
        self.check(network)
        contrib = self.dyad_values(network) * network.ties
        if not network.directed:
            contrib = np.triu(contrib, k=1)
        return float(contrib.sum())

    def change_statistics(self, network: Network) -> np.ndarray:
        self.check(network)
        return self.dyad_values(network).astype(float)


@register
class AbsDiff(DyadicTerm):
    """|attr[i] - attr[j]| for each dyad."""

    name = "absdiff"
    attribute_kinds = (NUMERIC, ORDINAL)

    def dyad_values(self, network: Network) -> np.ndarray:
        self.check(network)
        x = network.attribute(self.attr).astype(float)
        return np.abs(x[:, None] - x[None, :])


@register
class NodeMatch(DyadicTerm):
    """1 if both endpoints share the attribute value, else 0.

    Exact equality: case-sensitive for strings, numeric equality otherwise.
    """

    name = "nodematch"
    attribute_kinds = (CATEGORICAL, NUMERIC, ORDINAL)

    def dyad_values(self, network: Network) -> np.ndarray:
        self.check(network)
        x = network.attribute(self.attr)
        return (x[:, None] == x[None, :]).astype(float)


# ── Structural terms ─────────────────────────────────────────────────────────


class StructuralTerm(Term):
    kind = STRUCTURAL


@register
class Edges(StructuralTerm):
    """Number of ties. Always the first term of a model."""

    name = "edges"

    def statistic(self, network: Network) -> float:
        return float(network.n_edges)

    def change_statistics(self, network: Network) -> np.ndarray:
        return np.ones((network.n_nodes, network.n_nodes))


def _degree_without_dyad(network: Network) -> np.ndarray:
    """Entry (i, j): degree of i when the tie i-j is removed."""
    return network.degree[:, None] - network.ties


@register
class Isolates(StructuralTerm):
    """Number of nodes with no ties."""

    name = "isolates"
    directed_ok = False

    def statistic(self, network: Network) -> float:
        self.check(network)
        return float(len(network.isolates))

    def change_statistics(self, network: Network) -> np.ndarray:
        self.check(network)
        d = _degree_without_dyad(network)
        return -((d == 0).astype(float) + (d.T == 0).astype(float))


@register
class Concurrent(StructuralTerm):
    """Number of nodes with two or more ties."""

    name = "concurrent"
    directed_ok = False

    def statistic(self, network: Network) -> float:
        self.check(network)
        return float((network.degree >= 2).sum())

    def change_statistics(self, network: Network) -> np.ndarray:
        self.check(network)
        d = _degree_without_dyad(network)
        return (d == 1).astype(float) + (d.T == 1).astype(float)


@register
class InStar(StructuralTerm):
    """k-in-stars: for every node, the number of ways k ties point into it."""

    name = "istar"
    undirected_ok = False

    def validate_args(self, args: tuple) -> tuple:
        if len(args) != 1 or not isinstance(args[0], int) or args[0] < 1:
            raise TermSyntaxError(
                f"istar takes one positive integer star size, got {args}", term=self.name
            )
        return args

    @property
    def k(self) -> int:
        return self.args[0]

    @property
    def label(self) -> str:
        return f"istar{self.k}"

    def statistic(self, network: Network) -> float:
        self.check(network)
        return float(comb(network.in_degree, self.k).sum())

    def change_statistics(self, network: Network) -> np.ndarray:
        self.check(network)
        # In-degree of the receiver j without the tie i -> j
        indeg = network.in_degree[None, :] - network.ties
        return comb(indeg, self.k - 1)


# ── Parsing ──────────────────────────────────────────────────────────────────


def _parse_arg(text: str) -> str | int:
    text = text.strip().strip("\"'")
    if re.fullmatch(r"-?\d+", text):
        return int(text)
    return text


def make_term(name: str, *args: str | int) -> Term:
    """Instantiate a registered term, e.g. ``make_term("absdiff", "size")``."""
    try:
        cls = TERMS[name]
    except KeyError:
        raise UnknownTermError(
            f"Unknown term {name!r}; known terms: {sorted(TERMS)}", term=name
        ) from None
    return cls(*args)


def parse_term(text: str) -> Term:
    """Parse a single term call such as ``nodematch("role")`` or ``istar(2)``."""
    m = _TERM_RE.match(text)
    if not m:
        raise TermSyntaxError(f"Cannot parse term {text!r}", term=text.strip())
    name, arg_text = m.group(1), m.group(2)
    args: list[str | int] = []
    if arg_text is not None and arg_text.strip():
        args = [_parse_arg(a) for a in arg_text.split(",")]
    return make_term(name, *args)


def parse_formula(formula: str) -> list[Term]:
    """Parse ``[net ~] term + term + ...`` into a list of terms."""
    rhs = formula.split("~", 1)[-1]
    parts = rhs.split("+")
    if not rhs.strip() or any(not p.strip() for p in parts):
        raise TermSyntaxError(f"Malformed formula {formula!r}")
    return [parse_term(p) for p in parts]


@dataclass(frozen=True)
class ModelSpec:
    """An ordered list of terms; ``edges`` is always first and never repeated."""

    name: str
    terms: tuple[Term, ...]

    def __post_init__(self) -> None:
        terms = [t if isinstance(t, Term) else parse_term(t) for t in self.terms]
        rest = [t for t in terms if t.name != "edges"]
        seen: set[str] = set()
        for t in rest:
            if t.label in seen:
                raise TermSyntaxError(f"Term {t} appears twice in model {self.name!r}", term=str(t))
            seen.add(t.label)
        object.__setattr__(self, "terms", (Edges(), *rest))

    @classmethod
    def from_formula(cls, name: str, formula: str) -> ModelSpec:
        return cls(name=name, terms=tuple(parse_formula(formula)))

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(t.label for t in self.terms)

    @property
    def formula(self) -> str:
        return " + ".join(str(t) for t in self.terms)

    def check(self, network: Network) -> None:
        for term in self.terms:
            term.check(network)

    def observed_statistics(self, network: Network) -> dict[str, float]:
        return {t.label: t.statistic(network) for t in self.terms}
