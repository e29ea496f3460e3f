"""Model backends: anything that turns a prompt into raw text.

Every backend implements ``generate(prompt) -> str`` and reports failures
as :class:`~holysheets.analyst.errors.GenerationError` with a ``reason`` tag,
never as partial text.  Backends hold no conversation state, so the caller
may pick a different one for every turn.

Remote backends
    ``LiteLLMBackend``  any LiteLLM model string through ``dspy.LM``
                        (``gemini/...``, ``openai/...``, ``groq/...``)
    ``OpenAICompatibleBackend``  the ``openai`` client against any
                        OpenAI-compatible server (vLLM, Ollama, LM Studio)
    ``CustomEndpointBackend``  ``POST {url}/generate`` on a self-hosted model

Local backend
    ``LocalBackend`` renders the chat template and calls an in-process
    llama.cpp engine owned by :class:`LocalModelManager`.  It never loads
    the model itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..utils.logging import get_logger
from .errors import GenerationError, ModelNotDownloadedError
from .prompts import SYSTEM_ROLE

if TYPE_CHECKING:
    from ..config import HolySheetsConfig

_logger = get_logger(__name__)

ProgressCallback = Callable[[int], None]


def _failure_reason(exc: BaseException) -> str:
    """Map a client exception to a GenerationError reason tag by its type name."""
    name = type(exc).__name__.lower()
    if "timeout" in name:
        return "timeout"
    if "ratelimit" in name or "quota" in name or "resourceexhausted" in name:
        return "quota"
    if "authentication" in name or "permissiondenied" in name:
        return "auth"
    return "transport"


def _require_text(value: Any, *, backend: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise GenerationError(
            "The model returned an empty or non-text response.",
            backend=backend,
            reason="malformed_response",
        )
    return value


class ModelBackend(ABC):
    """Strategy interface for text generation."""

    name: str = "backend"
    mode: str = "remote"

    @abstractmethod
    def generate(self, prompt: str) -> str:
        """Return the model's raw reply to *prompt*."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


# ---------------------------------------------------------------------------
# Remote backends
# ---------------------------------------------------------------------------


class LiteLLMBackend(ModelBackend):
    """Hosted model routed by LiteLLM through ``dspy.LM``.

    Parameters
    ----------
    model:
        LiteLLM model string, e.g. ``"gemini/gemini-1.5-flash"``,
        ``"openai/gpt-4-turbo"`` or ``"groq/llama3-70b-8192"``.
    lm:
        Pre-built callable LM (tests inject a fake here).
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str = "",
        api_base: str = "",
        temperature: float = 0.1,
        max_tokens: int = 2048,
        timeout: float = 120.0,
        lm: Any = None,
    ) -> None:
        self.model = model
        self.name = f"litellm:{model}"
        self._api_key = api_key
        self._api_base = api_base
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._lm = lm

    def _get_lm(self) -> Any:
        if self._lm is None:
            try:
                from ..metrics import make_harmony_lm

                self._lm = make_harmony_lm(
                    self.model,
                    api_key=self._api_key,
                    api_base=self._api_base,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                    timeout=self._timeout,
                    cache=False,
                    num_retries=0,
                )
            except ImportError as exc:
                raise GenerationError(
                    "DSPy is required for the LiteLLM backend. Install with: pip install dspy",
                    backend=self.name,
                    reason="config",
                ) from exc
        return self._lm

    def generate(self, prompt: str) -> str:
        lm = self._get_lm()
        messages = [
            {"role": "system", "content": SYSTEM_ROLE},
            {"role": "user", "content": prompt},
        ]
        try:
            outputs = lm(messages=messages)
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(str(exc), backend=self.name, reason=_failure_reason(exc)) from exc

        first = outputs[0] if isinstance(outputs, (list, tuple)) and outputs else outputs
        if isinstance(first, dict):
            first = first.get("text")
        return _require_text(first, backend=self.name)


class OpenAICompatibleBackend(ModelBackend):
    """Chat completions through the ``openai`` client."""

    def __init__(
        self,
        model: str,
        *,
        api_key: str = "",
        base_url: str = "",
        temperature: float = 0.1,
        max_tokens: int = 2048,
        timeout: float = 120.0,
        client: Any = None,
    ) -> None:
        self.model = model
        self.name = f"openai_compatible:{model}"
        self._api_key = api_key
        self._base_url = base_url
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import OpenAI

            kwargs: dict[str, Any] = {"api_key": self._api_key or "not-needed", "timeout": self._timeout}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = OpenAI(**kwargs)
        return self._client

    def generate(self, prompt: str) -> str:
        client = self._get_client()
        try:
            completion = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_ROLE},
                    {"role": "user", "content": prompt},
                ],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except Exception as exc:
            raise GenerationError(str(exc), backend=self.name, reason=_failure_reason(exc)) from exc

        try:
            content = completion.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            raise GenerationError(
                f"Unexpected completion shape: {exc}",
                backend=self.name,
                reason="malformed_response",
            ) from exc
        from ..metrics import strip_harmony_tokens

        return strip_harmony_tokens(_require_text(content, backend=self.name))


class CustomEndpointBackend(ModelBackend):
    """Self-hosted model behind ``POST {endpoint}/generate``.

    The endpoint receives ``{"prompt": ..., "systemPrompt": ...}`` and
    answers with ``{"text": ...}`` or ``{"response": ...}``.
    """

    def __init__(self, endpoint_url: str, *, timeout: float = 120.0, client: Any = None) -> None:
        if not endpoint_url:
            raise GenerationError(
                "Custom endpoint URL is not configured. Set HOLYSHEETS_CUSTOM_ENDPOINT_URL.",
                backend="custom",
                reason="config",
            )
        self.endpoint_url = endpoint_url.rstrip("/")
        self.name = f"custom:{self.endpoint_url}"
        self._timeout = timeout
        self._client = client

    def generate(self, prompt: str) -> str:
        import httpx

        client = self._client or httpx.Client(timeout=self._timeout)
        try:
            response = client.post(
                f"{self.endpoint_url}/generate",
                json={"prompt": prompt, "systemPrompt": SYSTEM_ROLE},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise GenerationError(str(exc), backend=self.name, reason="timeout") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            reason = "quota" if status == 429 else "auth" if status in (401, 403) else "transport"
            raise GenerationError(
                f"Endpoint returned HTTP {status}", backend=self.name, reason=reason
            ) from exc
        except httpx.HTTPError as exc:
            raise GenerationError(str(exc), backend=self.name, reason="transport") from exc
        except ValueError as exc:
            raise GenerationError(
                f"Endpoint did not return JSON: {exc}",
                backend=self.name,
                reason="malformed_response",
            ) from exc
        finally:
            if self._client is None:
                client.close()

        text = payload.get("text") or payload.get("response") if isinstance(payload, dict) else None
        return _require_text(text, backend=self.name)


# ---------------------------------------------------------------------------
# Local (on-device) backend
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatTemplate:
    """Role delimiters a local model expects around system/user turns."""

    name: str
    system: str
    user: str
    assistant_prefix: str
    stop: tuple[str, ...]

    def render(self, system: str, user: str) -> str:
        return (
            self.system.format(content=system)
            + self.user.format(content=user)
            + self.assistant_prefix
        )


CHAT_TEMPLATES: dict[str, ChatTemplate] = {
    # Qwen / ChatML
    "chatml": ChatTemplate(
        name="chatml",
        system="<|im_start|>system\n{content}<|im_end|>\n",
        user="<|im_start|>user\n{content}<|im_end|>\n",
        assistant_prefix="<|im_start|>assistant\n",
        stop=("<|im_end|>", "<|endoftext|>"),
    ),
    "llama3": ChatTemplate(
        name="llama3",
        system="<|begin_of_text|><|start_header_id|>system<|end_header_id|>\n\n{content}<|eot_id|>",
        user="<|start_header_id|>user<|end_header_id|>\n\n{content}<|eot_id|>",
        assistant_prefix="<|start_header_id|>assistant<|end_header_id|>\n\n",
        stop=("<|eot_id|>", "<|end_of_text|>"),
    ),
}


def get_chat_template(name: str) -> ChatTemplate:
    """Get a chat template by name. Raises ValueError if unknown."""
    if name not in CHAT_TEMPLATES:
        available = ", ".join(sorted(CHAT_TEMPLATES))
        raise ValueError(f"Unknown chat template: {name!r}. Available: {available}")
    return CHAT_TEMPLATES[name]


def _llama_cpp_factory(**kwargs: Any) -> Any:
    from llama_cpp import Llama

    return Llama(**kwargs)


class LocalModelManager:
    """Owns the on-device model: readiness and explicit loading.

    The host calls :meth:`ensure_loaded` before switching a conversation to
    local mode; :class:`LocalBackend` only checks :meth:`is_ready`.

    Parameters
    ----------
    model_path:
        Path to a GGUF model file.
    engine_factory:
        Callable building the engine from keyword arguments
        (``model_path``, ``n_ctx``, ``n_threads``, ``verbose``).
        Defaults to ``llama_cpp.Llama``.
    """

    def __init__(
        self,
        model_path: Path | str,
        *,
        n_threads: int = 4,
        n_ctx: int = 2048,
        engine_factory: Callable[..., Any] | None = None,
    ) -> None:
        self.model_path = Path(model_path).expanduser()
        self.n_threads = n_threads
        self.n_ctx = n_ctx
        self._engine_factory = engine_factory or _llama_cpp_factory
        self._engine: Any = None

    @property
    def engine(self) -> Any:
        return self._engine

    def is_downloaded(self) -> bool:
        return self.model_path.is_file()

    def is_ready(self) -> bool:
        """True when a model is resident in memory."""
        return self._engine is not None

    def ensure_loaded(self, on_progress: Optional[ProgressCallback] = None) -> Any:
        """Load the model into memory if needed and return the engine.

        Raises
        ------
        ModelNotDownloadedError
            If the model file does not exist.
        """
        if self._engine is not None:
            if on_progress:
                on_progress(100)
            return self._engine

        if on_progress:
            on_progress(10)
        if not self.is_downloaded():
            raise ModelNotDownloadedError(f"Local model not downloaded: {self.model_path}")
        if on_progress:
            on_progress(30)

        _logger.info(
            f"Loading local model {self.model_path.name} (n_threads={self.n_threads}, n_ctx={self.n_ctx})"
        )
        if on_progress:
            on_progress(50)
        self._engine = self._engine_factory(
            model_path=str(self.model_path),
            n_ctx=self.n_ctx,
            n_threads=self.n_threads,
            verbose=False,
        )
        if on_progress:
            on_progress(100)
        _logger.info("Local model ready")
        return self._engine

    def unload(self) -> None:
        """Release the resident model."""
        engine, self._engine = self._engine, None
        close = getattr(engine, "close", None)
        if callable(close):
            close()


class LocalBackend(ModelBackend):
    """On-device generation through a llama.cpp engine."""

    mode = "local"

    def __init__(
        self,
        manager: LocalModelManager,
        *,
        template: str = "chatml",
        max_tokens: int = 1024,
        temperature: float = 0.1,
    ) -> None:
        self.manager = manager
        self.template = get_chat_template(template)
        self.name = f"local:{manager.model_path.name}"
        self._max_tokens = max_tokens
        self._temperature = temperature

    def render(self, prompt: str) -> str:
        """Wrap *prompt* in the model's conversational template."""
        return self.template.render(SYSTEM_ROLE, prompt)

    def generate(self, prompt: str) -> str:
        if not self.manager.is_ready():
            raise GenerationError(
                "Local model is not loaded. Load it before using local mode.",
                backend=self.name,
                reason="not_ready",
            )
        try:
            output = self.manager.engine(
                self.render(prompt),
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                stop=list(self.template.stop),
                echo=False,
            )
        except Exception as exc:
            raise GenerationError(str(exc), backend=self.name, reason="engine") from exc

        try:
            text = output["choices"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationError(
                f"Unexpected engine output: {exc}",
                backend=self.name,
                reason="malformed_response",
            ) from exc
        return _require_text(text, backend=self.name)


# ---------------------------------------------------------------------------
# Factories / per-turn selection
# ---------------------------------------------------------------------------


def make_remote_backend(
    config: HolySheetsConfig | None = None,
    *,
    provider: str | None = None,
    model: str | None = None,
) -> ModelBackend:
    """Build the configured remote backend."""
    if config is None:
        from ..config import get_config

        config = get_config()
    provider = provider or config.provider
    model = model or config.lm

    if provider == "litellm":
        return LiteLLMBackend(
            model,
            api_key=config.api_key,
            api_base=config.api_base,
            temperature=config.lm_temperature,
            max_tokens=config.lm_max_tokens,
            timeout=config.request_timeout,
        )
    if provider == "openai_compatible":
        return OpenAICompatibleBackend(
            model,
            api_key=config.api_key,
            base_url=config.api_base,
            temperature=config.lm_temperature,
            max_tokens=config.lm_max_tokens,
            timeout=config.request_timeout,
        )
    if provider == "custom":
        return CustomEndpointBackend(config.custom_endpoint_url, timeout=config.request_timeout)
    raise ValueError(f"Unknown provider: {provider!r}. Available: litellm, openai_compatible, custom")


def make_local_manager(config: HolySheetsConfig | None = None) -> LocalModelManager:
    if config is None:
        from ..config import get_config

        config = get_config()
    return LocalModelManager(
        config.local_model_path,
        n_threads=config.local_n_threads,
        n_ctx=config.local_n_ctx,
    )


def make_local_backend(
    manager: LocalModelManager,
    config: HolySheetsConfig | None = None,
) -> LocalBackend:
    if config is None:
        from ..config import get_config

        config = get_config()
    return LocalBackend(
        manager,
        template=config.local_chat_template,
        max_tokens=config.local_max_tokens,
        temperature=config.local_temperature,
    )


class BackendSelector:
    """Picks the strategy for a turn from the request's ``use_local_model`` flag.

    Backends are built on first use so a cloud-only host never touches
    llama.cpp and vice versa.
    """

    def __init__(
        self,
        *,
        remote: ModelBackend | Callable[[], ModelBackend] | None = None,
        local: ModelBackend | Callable[[], ModelBackend] | None = None,
    ) -> None:
        self._remote = remote
        self._local = local

    @staticmethod
    def _resolve(value: Any, label: str) -> ModelBackend:
        if value is None:
            raise GenerationError(
                f"No {label} backend configured.", backend=label, reason="config"
            )
        if isinstance(value, ModelBackend):
            return value
        return value()

    def select(self, use_local_model: bool) -> ModelBackend:
        if use_local_model:
            self._local = self._resolve(self._local, "local")
            return self._local
        self._remote = self._resolve(self._remote, "remote")
        return self._remote
