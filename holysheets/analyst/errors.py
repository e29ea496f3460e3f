"""Failure taxonomy for the analyst loop."""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    """Structured failure codes used to pick a corrective strategy."""

    GENERATION = "generation"
    EXTRACTION = "extraction"
    MISSING_DATASET = "missing_dataset"
    MISSING_COLUMN = "missing_column"
    SYNTAX = "syntax"
    RUNTIME = "runtime"
    VALIDATION = "validation"


class AnalystError(Exception):
    """Base class for all analyst pipeline errors."""

    kind: FailureKind = FailureKind.RUNTIME


class GenerationError(AnalystError):
    """A model backend could not produce text.

    ``reason`` is one of ``timeout``, ``quota``, ``auth``,
    ``malformed_response``, ``transport``, ``engine``, ``not_ready``
    or ``config``.
    """

    kind = FailureKind.GENERATION

    def __init__(self, message: str, *, backend: str, reason: str = "transport") -> None:
        super().__init__(message)
        self.backend = backend
        self.reason = reason

    def __str__(self) -> str:
        return f"[{self.backend}:{self.reason}] {self.args[0]}"


class ScriptExecutionError(AnalystError):
    """A script raised inside the sandbox.

    The message is the exception text as ``"<Type>: <message>"``.
    """

    def __init__(
        self,
        message: str,
        *,
        error_type: str = "Exception",
        kind: FailureKind = FailureKind.RUNTIME,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.kind = kind


class DatasetNotLoadedError(ScriptExecutionError):
    """The dataset binding is absent from the sandbox scope."""

    def __init__(self, variable: str = "df") -> None:
        super().__init__(
            f"DatasetNotLoadedError: no dataset is bound to '{variable}'. "
            "Load a CSV or spreadsheet before running analysis scripts.",
            error_type="DatasetNotLoadedError",
            kind=FailureKind.MISSING_DATASET,
        )
        self.variable = variable


class OutputValidationError(AnalystError):
    """Captured output is not a valid Output Contract value."""

    kind = FailureKind.VALIDATION

    def __init__(self, message: str, *, raw_output: str = "") -> None:
        super().__init__(message)
        self.raw_output = raw_output


class DatasetLoadError(AnalystError):
    """An uploaded file could not be read into a dataframe."""


class ModelNotDownloadedError(AnalystError):
    """The on-device model file is missing."""

    kind = FailureKind.GENERATION


class TurnInProgressError(AnalystError):
    """A new turn was submitted while the previous one is still running."""
