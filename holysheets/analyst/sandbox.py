"""In-process sandbox with a persistent variable scope.

A :class:`SandboxSession` owns one namespace that survives across script
runs.  The loaded dataset is bound there under :data:`DATASET_VARIABLE`;
``pd``, ``np`` and ``json`` are pre-imported.

Scripts talk back by printing one JSON value.  Standard output is redirected
to a fresh buffer for the duration of each run only and restored on every
exit path.  The redirect is process-wide while it is active, so exactly one
execution may be in flight per session; runs are serialised by a lock.
"""

from __future__ import annotations

import contextlib
import io
import json
import threading
from pathlib import Path
from typing import Any

from .diagnostics import classify_exception
from .errors import DatasetNotLoadedError, ScriptExecutionError
from .loaders import DatasetMeta, load_dataset_bytes, load_dataset_path

DATASET_VARIABLE = "df"
SCRIPT_FILENAME = "<analysis-script>"


def _describe_exception(exc: BaseException) -> str:
    if isinstance(exc, SyntaxError):
        where = f" (line {exc.lineno})" if exc.lineno else ""
        return f"{type(exc).__name__}: {exc.msg}{where}"
    if isinstance(exc, SystemExit):
        return f"SystemExit: script called exit({exc.code!r})"
    return f"{type(exc).__name__}: {exc}"


class SandboxSession:
    """Persistent interpreter scope holding the active dataset.

    Parameters
    ----------
    dataset_variable:
        Name the dataset is bound to inside scripts. Default ``"df"``.
    """

    def __init__(self, *, dataset_variable: str = DATASET_VARIABLE) -> None:
        self._variable = dataset_variable
        self._lock = threading.Lock()
        self._namespace: dict[str, Any] = self._fresh_namespace()
        self._dataset_meta: DatasetMeta | None = None
        self._runs = 0

    @staticmethod
    def _fresh_namespace() -> dict[str, Any]:
        import numpy as np
        import pandas as pd

        return {"__name__": "__sandbox__", "pd": pd, "np": np, "json": json}

    @property
    def dataset_variable(self) -> str:
        return self._variable

    @property
    def dataset_meta(self) -> DatasetMeta | None:
        """Metadata of the most recently loaded dataset, if any."""
        return self._dataset_meta

    @property
    def has_dataset(self) -> bool:
        return self._variable in self._namespace

    @property
    def runs(self) -> int:
        """Number of scripts submitted to :meth:`execute`."""
        return self._runs

    # -- dataset binding ---------------------------------------------------

    def bind_dataset(self, df: Any, meta: DatasetMeta | None = None) -> None:
        """Bind *df* as the session dataset, replacing any previous one."""
        with self._lock:
            self._namespace[self._variable] = df
            self._dataset_meta = meta

    def load_dataset(self, data: bytes, file_name: str) -> DatasetMeta:
        """Load an uploaded file and bind it. The extension picks the reader."""
        meta, df = load_dataset_bytes(data, file_name)
        self.bind_dataset(df, meta)
        return meta

    def load_dataset_file(self, path: Path | str) -> DatasetMeta:
        meta, df = load_dataset_path(path)
        self.bind_dataset(df, meta)
        return meta

    def dataset(self) -> Any:
        """Return the currently bound dataframe (including script mutations)."""
        with self._lock:
            return self._require_dataset()

    def columns(self) -> list[str]:
        """Column names of the dataset as it is *now*, not as it was loaded."""
        import pandas as pd

        df = self.dataset()
        if isinstance(df, pd.Series):
            df = df.to_frame()
        return [str(c) for c in getattr(df, "columns", [])]

    def get(self, name: str, default: Any = None) -> Any:
        """Read a variable from the session scope."""
        with self._lock:
            return self._namespace.get(name, default)

    def reset(self) -> None:
        """Drop every variable, including the dataset binding."""
        with self._lock:
            self._namespace = self._fresh_namespace()
            self._dataset_meta = None

    # -- execution ---------------------------------------------------------

    def _require_dataset(self) -> Any:
        if self._variable not in self._namespace:
            raise DatasetNotLoadedError(self._variable)
        return self._namespace[self._variable]

    def execute(self, script: str) -> str:
        """Run *script* in the session scope and return what it printed.

        Raises
        ------
        DatasetNotLoadedError
            If no dataset is bound; the script is not run.
        ScriptExecutionError
            If the script fails to compile or raises. The message carries the
            exception text and ``kind`` its :class:`FailureKind`.
        """
        with self._lock:
            self._runs += 1
            self._require_dataset()
            try:
                code = compile(script, SCRIPT_FILENAME, "exec")
            except SyntaxError as exc:
                raise ScriptExecutionError(
                    _describe_exception(exc),
                    error_type=type(exc).__name__,
                    kind=classify_exception(exc),
                ) from exc

            buffer = io.StringIO()
            try:
                with contextlib.redirect_stdout(buffer):
                    exec(code, self._namespace)
            except (Exception, SystemExit) as exc:
                raise ScriptExecutionError(
                    _describe_exception(exc),
                    error_type=type(exc).__name__,
                    kind=classify_exception(exc),
                ) from exc
            return buffer.getvalue()
