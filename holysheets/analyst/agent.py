"""Retry / self-correction controller for one conversation turn.

Each attempt runs ``prompt -> generate -> extract -> execute -> validate``
to completion before the next one starts.  A failed attempt is classified
and turned into a diagnostic addendum for the next prompt; a column lookup
failure gets the dataset's *current* column list.  After ``1 + max_retries``
attempts the turn is answered with a markdown apology.

The controller never raises to its caller: every terminal state produces an
Output Contract value in :attr:`TurnOutcome.result`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..metrics import TurnMetrics, track_step
from ..utils.logging import (
    get_logger,
    log_attempt,
    log_attempt_failure,
    log_llm_response,
    log_prompt,
    log_turn_complete,
    log_turn_start,
)
from .backends import BackendSelector, ModelBackend
from .contract import AnalysisResult, MarkdownResult, validate_output
from .errors import (
    DatasetLoadError,
    DatasetNotLoadedError,
    FailureKind,
    GenerationError,
    OutputValidationError,
    ScriptExecutionError,
)
from .extract import ExtractionTier, extract_code
from .prompts import build_column_feedback, build_error_feedback, build_prompt
from .sandbox import SandboxSession
from .schema_context import build_schema_context, format_schema_context

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 2

EXHAUSTED_MESSAGE = "I tried to analyze the data but encountered an error I couldn't fix: {error}"
NO_DATASET_MESSAGE = (
    "There is no dataset loaded yet. Please upload a CSV or Excel file and ask your question again."
)
DATASET_ERROR_MESSAGE = "I couldn't read the uploaded file: {error}"
GENERATION_FAILED_MESSAGE = "The language model could not produce an answer ({reason}): {error}"


# ---------------------------------------------------------------------------
# Turn request / response types
# ---------------------------------------------------------------------------


class ConversationTurn(BaseModel):
    """One user message and, once produced, the assistant's answer."""

    model_config = ConfigDict(populate_by_name=True)

    user_message: str = Field(alias="userMessage")
    attachment: Optional[str] = None
    response: Optional[AnalysisResult] = None


class TurnRequest(BaseModel):
    """Everything the host hands over for one turn."""

    model_config = ConfigDict(populate_by_name=True)

    user_message: str = Field(alias="userMessage")
    file_context: Optional[str] = Field(default=None, alias="fileContext")
    history: list[ConversationTurn] = Field(default_factory=list)
    dataset_bytes: Optional[bytes] = Field(default=None, alias="datasetBytes")
    dataset_file_name: Optional[str] = Field(default=None, alias="datasetFileName")
    use_local_model: bool = Field(default=False, alias="useLocalModel")


class AttemptState(str, Enum):
    DRAFTING = "drafting"
    EXECUTING = "executing"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TurnState(str, Enum):
    """Terminal state of a turn."""

    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    GENERATION_FAILED = "generation_failed"
    NO_DATASET = "no_dataset"
    DATASET_ERROR = "dataset_error"


@dataclass
class RetryAttempt:
    """Bookkeeping for one pass through the pipeline."""

    number: int
    prompt: str
    state: AttemptState = AttemptState.DRAFTING
    response: Optional[str] = None
    script: Optional[str] = None
    tier: Optional[ExtractionTier] = None
    output: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    error: Optional[str] = None

    def fail(self, kind: FailureKind, error: str) -> None:
        self.state = AttemptState.FAILED
        self.failure_kind = kind
        self.error = error


@dataclass
class TurnOutcome:
    """Result of :meth:`AnalystAgent.run_turn`."""

    result: Any
    state: TurnState
    attempts: list[RetryAttempt] = field(default_factory=list)
    metrics: TurnMetrics = field(default_factory=TurnMetrics)
    error: Optional[str] = None
    backend: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state is TurnState.SUCCEEDED

    @property
    def retries(self) -> int:
        """Attempts made after the first one."""
        return max(0, len(self.attempts) - 1)


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class AnalystAgent:
    """Drive the generate/execute/validate loop against one sandbox.

    Parameters
    ----------
    sandbox:
        The dataset session scripts run in. Owned by the caller.
    backends:
        A :class:`BackendSelector` (chooses remote or local per turn from
        ``TurnRequest.use_local_model``) or a single backend used for
        every turn.
    max_retries:
        Additional attempts after the first. Default ``2`` (three total).
    history_turns:
        Trailing conversation turns included in the prompt.
    sample_rows:
        Rows of sample data in the schema description.
    """

    def __init__(
        self,
        sandbox: SandboxSession,
        backends: Union[BackendSelector, ModelBackend],
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        history_turns: int = 6,
        sample_rows: int = 5,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._sandbox = sandbox
        self._backends = backends
        self._max_retries = max_retries
        self._history_turns = history_turns
        self._sample_rows = sample_rows

    @classmethod
    def from_config(
        cls,
        config: Any = None,
        *,
        sandbox: SandboxSession | None = None,
        remote: ModelBackend | None = None,
        local: ModelBackend | None = None,
    ) -> AnalystAgent:
        """Build an agent whose backends and limits come from ``HolySheetsConfig``."""
        from ..config import get_config
        from .backends import make_local_backend, make_local_manager, make_remote_backend

        cfg = config or get_config()
        selector = BackendSelector(
            remote=remote or (lambda: make_remote_backend(cfg)),
            local=local or (lambda: make_local_backend(make_local_manager(cfg), cfg)),
        )
        return cls(
            sandbox or SandboxSession(),
            selector,
            max_retries=cfg.max_retries,
            history_turns=cfg.history_turns,
            sample_rows=cfg.sample_rows,
        )

    @property
    def sandbox(self) -> SandboxSession:
        return self._sandbox

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def sample_rows(self) -> int:
        return self._sample_rows

    @property
    def attempt_budget(self) -> int:
        """Total attempts per turn: the first one plus the retries."""
        return 1 + self._max_retries

    # -- helpers -----------------------------------------------------------

    def _select_backend(self, use_local_model: bool) -> ModelBackend:
        if isinstance(self._backends, ModelBackend):
            return self._backends
        return self._backends.select(use_local_model)

    def _schema_text(self, request: TurnRequest) -> str | None:
        if request.file_context and request.file_context.strip():
            return request.file_context
        if not self._sandbox.has_dataset:
            return None
        context = build_schema_context(
            self._sandbox.dataset_meta,
            self._sandbox.dataset(),
            sample_rows=self._sample_rows,
        )
        return format_schema_context(context)

    def _feedback(self, attempt: RetryAttempt, request: TurnRequest) -> str:
        error = attempt.error or ""
        if attempt.failure_kind is FailureKind.MISSING_COLUMN:
            try:
                columns = self._sandbox.columns()
            except DatasetNotLoadedError:
                columns = None
            if columns:
                return build_column_feedback(error=error, request=request.user_message, columns=columns)
        return build_error_feedback(
            error=error,
            request=request.user_message,
            kind=attempt.failure_kind or FailureKind.RUNTIME,
            raw_output=attempt.output,
        )

    def _finish(
        self,
        result: Any,
        state: TurnState,
        attempts: list[RetryAttempt],
        metrics: TurnMetrics,
        started: float,
        *,
        backend: ModelBackend | None = None,
        error: str | None = None,
    ) -> TurnOutcome:
        log_turn_complete(
            logger,
            state.value,
            len(attempts),
            result_type=getattr(result, "type", None),
            total_duration=time.perf_counter() - started,
        )
        return TurnOutcome(
            result=result,
            state=state,
            attempts=attempts,
            metrics=metrics,
            error=error,
            backend=backend.name if backend is not None else None,
        )

    # -- the loop ----------------------------------------------------------

    def run_turn(self, request: TurnRequest, *, backend: ModelBackend | None = None) -> TurnOutcome:
        """Answer one user message.

        Parameters
        ----------
        request:
            The turn request. ``dataset_bytes`` (if set) is loaded into the
            sandbox before the first script runs.
        backend:
            Explicit backend for this turn, overriding selection.
        """
        started = time.perf_counter()
        metrics = TurnMetrics()
        attempts: list[RetryAttempt] = []

        try:
            backend = backend or self._select_backend(request.use_local_model)
        except GenerationError as exc:
            message = GENERATION_FAILED_MESSAGE.format(reason=exc.reason, error=exc.args[0])
            return self._finish(
                MarkdownResult(summary=message),
                TurnState.GENERATION_FAILED,
                attempts,
                metrics,
                started,
                error=str(exc),
            )

        log_turn_start(logger, request.user_message, backend.name, request.dataset_file_name)

        if request.dataset_bytes is not None:
            file_name = request.dataset_file_name or "dataset.csv"
            try:
                with track_step(metrics, "load"):
                    meta = self._sandbox.load_dataset(request.dataset_bytes, file_name)
            except DatasetLoadError as exc:
                logger.warning(f"Dataset load failed: {exc}")
                return self._finish(
                    MarkdownResult(summary=DATASET_ERROR_MESSAGE.format(error=exc)),
                    TurnState.DATASET_ERROR,
                    attempts,
                    metrics,
                    started,
                    backend=backend,
                    error=str(exc),
                )
            logger.info(f"Loaded {meta.name}: {meta.rows} rows x {len(meta.columns)} columns")

        try:
            schema = self._schema_text(request)
        except Exception as exc:
            logger.warning(f"Could not describe the current dataset: {exc}")
            schema = None
        budget = self.attempt_budget
        feedback: str | None = None
        last_error = ""

        for number in range(1, budget + 1):
            prompt = build_prompt(
                schema=schema,
                request=request.user_message,
                history=request.history,
                feedback=feedback,
                max_history_turns=self._history_turns,
            )
            attempt = RetryAttempt(number=number, prompt=prompt)
            attempts.append(attempt)
            log_attempt(logger, number, budget, "retry" if feedback else None)
            log_prompt(logger, "Correction Prompt" if feedback else "Analysis Prompt", prompt)

            # Drafting
            try:
                with track_step(metrics, "generate", number):
                    response = backend.generate(prompt)
            except Exception as exc:
                if not isinstance(exc, GenerationError):
                    exc = GenerationError(str(exc), backend=backend.name, reason="transport")
                attempt.fail(FailureKind.GENERATION, str(exc))
                log_attempt_failure(logger, number, FailureKind.GENERATION.value, str(exc))
                message = GENERATION_FAILED_MESSAGE.format(reason=exc.reason, error=exc.args[0])
                return self._finish(
                    MarkdownResult(summary=message),
                    TurnState.GENERATION_FAILED,
                    attempts,
                    metrics,
                    started,
                    backend=backend,
                    error=str(exc),
                )
            attempt.response = response
            log_llm_response(logger, "Model Reply", response)

            with track_step(metrics, "extract", number):
                extracted = extract_code(response)
            attempt.script = extracted.code
            attempt.tier = extracted.tier
            if extracted.ambiguous:
                logger.info(f"[Attempt {number}] no fenced block found, using the raw reply as the script")
            if extracted.empty:
                last_error = "The model reply contained no code."
                attempt.fail(FailureKind.EXTRACTION, last_error)
                log_attempt_failure(logger, number, FailureKind.EXTRACTION.value, last_error)
                feedback = self._feedback(attempt, request)
                continue

            # Executing
            attempt.state = AttemptState.EXECUTING
            try:
                with track_step(metrics, "execute", number):
                    output = self._sandbox.execute(extracted.code)
            except DatasetNotLoadedError as exc:
                attempt.fail(FailureKind.MISSING_DATASET, str(exc))
                log_attempt_failure(logger, number, FailureKind.MISSING_DATASET.value, str(exc))
                return self._finish(
                    MarkdownResult(summary=NO_DATASET_MESSAGE),
                    TurnState.NO_DATASET,
                    attempts,
                    metrics,
                    started,
                    backend=backend,
                    error=str(exc),
                )
            except ScriptExecutionError as exc:
                last_error = str(exc)
                attempt.fail(exc.kind, last_error)
                log_attempt_failure(logger, number, exc.kind.value, last_error)
                feedback = self._feedback(attempt, request)
                continue
            attempt.output = output
            log_llm_response(logger, "Script Output", output)

            # Validating
            attempt.state = AttemptState.VALIDATING
            try:
                with track_step(metrics, "validate", number):
                    result = validate_output(output)
            except OutputValidationError as exc:
                last_error = str(exc)
                attempt.fail(FailureKind.VALIDATION, last_error)
                log_attempt_failure(logger, number, FailureKind.VALIDATION.value, last_error)
                feedback = self._feedback(attempt, request)
                continue

            if result.type != "markdown" and not result.code:
                result = result.model_copy(update={"code": extracted.code})
            attempt.state = AttemptState.SUCCEEDED
            return self._finish(result, TurnState.SUCCEEDED, attempts, metrics, started, backend=backend)

        return self._finish(
            MarkdownResult(summary=EXHAUSTED_MESSAGE.format(error=last_error)),
            TurnState.EXHAUSTED,
            attempts,
            metrics,
            started,
            backend=backend,
            error=last_error,
        )
