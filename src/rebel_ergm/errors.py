"""Exception hierarchy for loading, term specification, and estimation."""

from __future__ import annotations


class ErgmError(Exception):
    """Base class for all errors raised by rebel_ergm."""


# -- Data loading --------------------------------------------------------------


class DataError(ErgmError):
    """Input tables cannot be turned into a valid network."""

    def __init__(self, message: str, ids: list[str] | None = None) -> None:
        super().__init__(message)
        self.ids = ids or []


class SchemaError(DataError):
    """A table is missing required columns or holds unparseable values."""


class AlignmentError(DataError):
    """Node identifiers differ between (or are duplicated within) the tables."""


class ShapeError(DataError):
    """The adjacency table is not square."""


# -- Term specification --------------------------------------------------------


class TermError(ErgmError):
    """A model term cannot be built."""

    def __init__(self, message: str, term: str | None = None) -> None:
        super().__init__(message)
        self.term = term


class UnknownTermError(TermError):
    """The term name is not in the registry."""


class UnsupportedTermError(TermError):
    """The term does not apply to this network or attribute."""


class TermSyntaxError(TermError):
    """A term call or formula is malformed."""


# -- Estimation ----------------------------------------------------------------


class EstimationError(ErgmError):
    """The external estimator could not produce a usable fit."""

    def __init__(self, message: str, spec_name: str | None = None) -> None:
        super().__init__(message)
        self.spec_name = spec_name


class NonConvergenceError(EstimationError):
    """The estimator did not converge (degenerate model, separation, ...)."""
