# holysheets/sdk.py
"""
HolySheets Python SDK -- programmatic access without the CLI.

Core functions::

    from holysheets.sdk import analyze, open_session

    result  = analyze("total sales by region", data="sales.csv")
    session = open_session(data="sales.csv")
    outcome = session.ask("show the monthly revenue trend")
    outcome = session.ask("and as a table", use_local_model=True)

Utilities::

    from holysheets.sdk import make_backend, load_local_model, health

    backend = make_backend(provider="openai_compatible", model="qwen2.5-coder")
    manager = load_local_model(on_progress=print)
    status  = health()

Model clients (DSPy/LiteLLM, openai, httpx, llama.cpp) are imported lazily so
this module stays importable without them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from .analyst.backends import LocalModelManager, ModelBackend
    from .analyst.session import AnalysisSession
    from .config import HolySheetsConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


def make_backend(
    *,
    provider: str | None = None,
    model: str | None = None,
    local: bool = False,
    manager: LocalModelManager | None = None,
    config: HolySheetsConfig | None = None,
) -> ModelBackend:
    """Build a model backend from configuration.

    Parameters
    ----------
    provider:
        ``"litellm"``, ``"openai_compatible"`` or ``"custom"``. Defaults to
        ``HOLYSHEETS_PROVIDER``.
    model:
        Model identifier; overrides ``HOLYSHEETS_LM``.
    local:
        Build the on-device backend instead. The model must be loaded
        through *manager* (see :func:`load_local_model`) before use.
    """
    from .analyst.backends import make_local_backend, make_local_manager, make_remote_backend
    from .config import get_config

    cfg = config or get_config()
    if local:
        return make_local_backend(manager or make_local_manager(cfg), cfg)
    return make_remote_backend(cfg, provider=provider, model=model)


def load_local_model(
    on_progress: Callable[[int], None] | None = None,
    *,
    config: HolySheetsConfig | None = None,
) -> LocalModelManager:
    """Load the configured GGUF model and return its manager.

    Raises
    ------
    ModelNotDownloadedError
        If the model file does not exist.
    """
    from .analyst.backends import make_local_manager

    manager = make_local_manager(config)
    manager.ensure_loaded(on_progress)
    return manager


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


def open_session(
    data: str | Path | bytes | None = None,
    *,
    file_name: str | None = None,
    backend: ModelBackend | None = None,
    local_backend: ModelBackend | None = None,
    max_retries: int | None = None,
    config: HolySheetsConfig | None = None,
) -> AnalysisSession:
    """Create a conversational analysis session.

    Parameters
    ----------
    data:
        Optional dataset to attach (path or raw bytes). It is loaded into the
        session with the first question.
    file_name:
        Required when *data* is bytes.
    backend:
        Remote backend override (e.g. a test double).
    local_backend:
        Backend used for turns asked with ``use_local_model=True``.
    max_retries:
        Overrides ``HOLYSHEETS_MAX_RETRIES``.

    Examples
    --------
    ::

        from holysheets.sdk import open_session

        session = open_session(data="sales.csv")
        print(session.schema.columns)
        outcome = session.ask("total sales")
        session.close()
    """
    from .analyst.agent import AnalystAgent
    from .analyst.session import AnalysisSession
    from .config import get_config

    cfg = config or get_config()
    if max_retries is not None:
        cfg = cfg.model_copy(update={"max_retries": max_retries})
    agent = AnalystAgent.from_config(cfg, remote=backend, local=local_backend)
    session = AnalysisSession(agent)
    if data is not None:
        session.attach(data, file_name)
    return session


def analyze(
    question: str,
    *,
    data: str | Path | bytes,
    file_name: str | None = None,
    backend: ModelBackend | None = None,
    use_local_model: bool = False,
    max_retries: int | None = None,
) -> dict[str, Any]:
    """One-shot question over a dataset.

    Returns
    -------
    dict
        The Output Contract value with camelCase keys, as produced for a
        host UI (``{"type": "kpi", "summary": ..., "data": [...]}``).
    """
    session = open_session(
        data,
        file_name=file_name,
        backend=backend,
        local_backend=backend if use_local_model else None,
        max_retries=max_retries,
    )
    try:
        outcome = session.ask(question, use_local_model=use_local_model)
    finally:
        session.close()
    logger.info("analyze() finished in state %s after %d attempt(s)", outcome.state.value, len(outcome.attempts))
    return outcome.result.to_wire()


# ---------------------------------------------------------------------------
# health
# ---------------------------------------------------------------------------


def health() -> dict[str, Any]:
    """Report configuration status without calling any model.

    Returns
    -------
    dict
        Keys: ``"version"``, ``"provider"``, ``"lm_model"``, ``"api_base"``,
        ``"configured"``, ``"local_model_path"``, ``"local_model_downloaded"``.
    """
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as _pkg_version

    from .config import get_config

    try:
        version = _pkg_version("holysheets")
    except PackageNotFoundError:
        from . import __version__ as version

    cfg = get_config()
    if cfg.provider == "custom":
        configured = bool(cfg.custom_endpoint_url)
    else:
        configured = bool(cfg.api_key or cfg.api_base)

    return {
        "version": version,
        "provider": cfg.provider,
        "lm_model": cfg.lm,
        "api_base": cfg.api_base,
        "configured": configured,
        "local_model_path": str(cfg.local_model_path),
        "local_model_downloaded": Path(cfg.local_model_path).expanduser().is_file(),
    }
