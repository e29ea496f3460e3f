"""Failure classification for sandbox errors.

Classifiers map a live exception to a :class:`FailureKind`.  They are kept
in a registry so hosts can teach the controller about new error categories
without touching the retry loop::

    @register_classifier("polars_column")
    def _polars_column(exc):
        if type(exc).__name__ == "ColumnNotFoundError":
            return FailureKind.MISSING_COLUMN
        return None

Classifiers run newest-first; the first non-``None`` answer wins and
anything unclaimed is ``FailureKind.RUNTIME``.
"""

from __future__ import annotations

import re
from typing import Callable, Optional

from .errors import DatasetNotLoadedError, FailureKind

Classifier = Callable[[BaseException], Optional[FailureKind]]

_CLASSIFIERS: list[tuple[str, Classifier]] = []

_FRAME_ATTRIBUTE_MISS = re.compile(
    r"'(DataFrame|Series|DataFrameGroupBy|SeriesGroupBy)' object has no attribute"
)
_COLUMN_SIGNATURE = re.compile(
    r"\bKeyError\b|not in index|None of \[Index|UndefinedVariableError|"
    r"'(DataFrame|Series)' object has no attribute"
)
_SYNTAX_SIGNATURE = re.compile(r"\b(SyntaxError|IndentationError|TabError)\b")


def register_classifier(name: str):
    """Decorator to register a failure classifier under *name*.

    Re-registering a name replaces the previous classifier.
    """

    def decorator(fn: Classifier) -> Classifier:
        unregister_classifier(name)
        _CLASSIFIERS.insert(0, (name, fn))
        return fn

    return decorator


def unregister_classifier(name: str) -> None:
    """Remove a classifier by name. Unknown names are ignored."""
    _CLASSIFIERS[:] = [(n, fn) for n, fn in _CLASSIFIERS if n != name]


def list_classifiers() -> list[str]:
    """Return classifier names in evaluation order."""
    return [name for name, _ in _CLASSIFIERS]


def classify_exception(exc: BaseException) -> FailureKind:
    """Return the failure kind for a sandbox exception."""
    for _, fn in _CLASSIFIERS:
        kind = fn(exc)
        if kind is not None:
            return kind
    return FailureKind.RUNTIME


def classify_message(text: str) -> FailureKind:
    """Classify an error that only survives as text (e.g. a remote sandbox)."""
    if _COLUMN_SIGNATURE.search(text or ""):
        return FailureKind.MISSING_COLUMN
    if _SYNTAX_SIGNATURE.search(text or ""):
        return FailureKind.SYNTAX
    return FailureKind.RUNTIME


# ---------------------------------------------------------------------------
# Built-in classifiers (registered last-resort first)
# ---------------------------------------------------------------------------


@register_classifier("message_signature")
def _message_signature(exc: BaseException) -> Optional[FailureKind]:
    kind = classify_message(f"{type(exc).__name__}: {exc}")
    return kind if kind is not FailureKind.RUNTIME else None


@register_classifier("column_lookup")
def _column_lookup(exc: BaseException) -> Optional[FailureKind]:
    if isinstance(exc, KeyError):
        return FailureKind.MISSING_COLUMN
    # pandas.errors.UndefinedVariableError from df.query()/df.eval()
    if type(exc).__name__ == "UndefinedVariableError":
        return FailureKind.MISSING_COLUMN
    if isinstance(exc, AttributeError) and _FRAME_ATTRIBUTE_MISS.search(str(exc)):
        return FailureKind.MISSING_COLUMN
    return None


@register_classifier("syntax")
def _syntax(exc: BaseException) -> Optional[FailureKind]:
    if isinstance(exc, SyntaxError):
        return FailureKind.SYNTAX
    return None


@register_classifier("dataset_binding")
def _dataset_binding(exc: BaseException) -> Optional[FailureKind]:
    if isinstance(exc, DatasetNotLoadedError):
        return FailureKind.MISSING_DATASET
    return None
