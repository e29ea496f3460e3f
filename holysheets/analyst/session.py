"""Conversation session management."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

from .agent import AnalystAgent, ConversationTurn, TurnOutcome, TurnRequest
from .errors import TurnInProgressError
from .loaders import DatasetMeta, load_dataset_bytes
from .sandbox import SandboxSession
from .schema_context import SchemaContext, build_schema_context, format_schema_context


class AnalysisSession:
    """Stateful session for conversational analysis of one dataset.

    Owns the sandbox (the Dataset Session) and the conversation history.
    A file attached with :meth:`attach` is parsed once, right away, and the
    resulting frame is bound into the sandbox together with the next question.

    Parameters
    ----------
    agent:
        Controller used for every turn. Built from ``HolySheetsConfig`` when
        omitted.
    """

    def __init__(self, agent: AnalystAgent | None = None) -> None:
        self._agent = agent or AnalystAgent.from_config()
        self._history: list[ConversationTurn] = []
        self._schema: SchemaContext | None = None
        self._pending: tuple[DatasetMeta, Any] | None = None
        self._turn_lock = threading.Lock()
        self._closed = False
        self._last_outcome: TurnOutcome | None = None

    @property
    def agent(self) -> AnalystAgent:
        return self._agent

    @property
    def sandbox(self) -> SandboxSession:
        return self._agent.sandbox

    @property
    def history(self) -> list[ConversationTurn]:
        """Conversation turns so far (a copy)."""
        return list(self._history)

    @property
    def schema(self) -> SchemaContext | None:
        """Schema of the most recently attached file."""
        return self._schema

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def busy(self) -> bool:
        """True while a turn is being processed."""
        return self._turn_lock.locked()

    @property
    def last_outcome(self) -> TurnOutcome | None:
        return self._last_outcome

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("Cannot use a closed session.")

    def attach(self, source: Path | str | bytes, file_name: str | None = None) -> SchemaContext:
        """Attach a dataset for the next turn.

        Parameters
        ----------
        source:
            A file path, or the raw bytes of an upload.
        file_name:
            Required with bytes; the extension selects the reader.

        Raises
        ------
        DatasetLoadError
            If the file cannot be read.
        """
        self._check_open()
        if isinstance(source, bytes):
            if not file_name:
                raise ValueError("file_name is required when attaching raw bytes")
            data = source
        else:
            path = Path(source)
            if not path.exists():
                raise FileNotFoundError(f"Dataset not found: {path}")
            data = path.read_bytes()
            file_name = file_name or path.name

        meta, df = load_dataset_bytes(data, file_name)
        self._schema = build_schema_context(meta, df, sample_rows=self._agent.sample_rows)
        self._pending = (meta, df)
        return self._schema

    def ask(self, message: str, *, use_local_model: bool = False) -> TurnOutcome:
        """Run one turn and record it in the history.

        Raises
        ------
        TurnInProgressError
            If another turn on this session has not finished yet.
        """
        self._check_open()
        if not self._turn_lock.acquire(blocking=False):
            raise TurnInProgressError("A turn is already in progress for this session.")
        try:
            pending = self._pending
            file_context = None
            if pending is not None:
                meta, df = pending
                self.sandbox.bind_dataset(df, meta)
                # Later turns describe the live frame, which scripts may have changed.
                file_context = format_schema_context(self._schema) if self._schema else None
            request = TurnRequest(
                user_message=message,
                file_context=file_context,
                history=list(self._history),
                dataset_file_name=pending[0].name if pending else None,
                use_local_model=use_local_model,
            )
            outcome = self._agent.run_turn(request)
            self._pending = None
            self._history.append(
                ConversationTurn(
                    user_message=message,
                    attachment=pending[0].name if pending else None,
                    response=outcome.result,
                )
            )
            self._last_outcome = outcome
            return outcome
        finally:
            self._turn_lock.release()

    def ask_result(self, message: str, **kwargs: Any) -> Any:
        """Like :meth:`ask` but return only the Output Contract value."""
        return self.ask(message, **kwargs).result

    def close(self) -> None:
        """Close the session and release the dataset."""
        self._closed = True
        self._pending = None
        self.sandbox.reset()
