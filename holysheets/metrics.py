"""Per-stage timing metrics and LLM construction helpers.

Provides ``StepMetric``/``TurnMetrics`` and a ``track_step`` context manager
that captures wall-clock time for each stage of an analyst turn
(generate, extract, execute, validate), per attempt.

Also provides ``strip_harmony_tokens`` and ``make_harmony_lm`` — a
``dspy.LM`` factory whose responses are stripped of gpt-oss Harmony channel
tokens before the code extractor sees them.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Generator
from urllib.parse import urlparse


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class StepMetric:
    """Metrics for a single pipeline stage."""

    name: str
    duration_s: float
    attempt: int = 0
    ok: bool = True


@dataclass
class TurnMetrics:
    """Aggregated stage metrics for one conversation turn."""

    steps: list[StepMetric] = field(default_factory=list)

    @property
    def total_duration_s(self) -> float:
        return sum(s.duration_s for s in self.steps)

    def duration_for(self, stage: str) -> float:
        """Total seconds spent in *stage* across all attempts."""
        return sum(s.duration_s for s in self.steps if s.name == stage)

    def to_dict(self) -> dict[str, object]:
        return {
            "total_duration_s": round(self.total_duration_s, 4),
            "steps": [
                {
                    "name": s.name,
                    "attempt": s.attempt,
                    "duration_s": round(s.duration_s, 4),
                    "ok": s.ok,
                }
                for s in self.steps
            ],
        }


# ---------------------------------------------------------------------------
# Step-timing context manager
# ---------------------------------------------------------------------------


@contextmanager
def track_step(
    metrics: TurnMetrics,
    step_name: str,
    attempt: int = 0,
) -> Generator[None, None, None]:
    """Time a pipeline stage, recording it even when the stage raises.

    Usage::

        metrics = TurnMetrics()
        with track_step(metrics, "execute", attempt=1):
            stdout = sandbox.execute(script)
    """
    t0 = time.perf_counter()
    ok = False
    try:
        yield
        ok = True
    finally:
        metrics.steps.append(StepMetric(step_name, time.perf_counter() - t0, attempt, ok))


# ---------------------------------------------------------------------------
# Harmony token stripping (gpt-oss served through OpenAI-compatible APIs)
# ---------------------------------------------------------------------------

_HARMONY_FINAL = "<|channel|>final<|message|>"


def strip_harmony_tokens(text: str) -> str:
    """Extract the final-channel content from a Harmony-formatted response.

    gpt-oss models wrap output in channel tokens::

        <|channel|>analysis<|message|>...thinking...
        <|start|>assistant<|channel|>final<|message|>...answer...

    Returns only the ``final`` channel content.  If no Harmony tokens
    are present the text is returned unchanged, so this is safe to call
    on responses from any backend.
    """
    if _HARMONY_FINAL in text:
        return text.split(_HARMONY_FINAL, 1)[1]
    return text


_PROVIDER_PREFIXES = {
    "openai",
    "azure",
    "anthropic",
    "ollama",
    "gemini",
    "google",
    "vertex_ai",
    "bedrock",
    "cohere",
    "mistral",
    "huggingface",
    "together_ai",
    "groq",
    "xai",
}


def _normalize_local_api_base(value: object) -> object:
    """Normalize localhost API bases to IPv4 loopback for transport stability."""
    if not isinstance(value, str):
        return value
    out = value
    out = out.replace("://localhost", "://127.0.0.1")
    out = out.replace("://[::1]", "://127.0.0.1")
    return out


def _normalize_model_for_api_base(model: object, api_base: object) -> object:
    """Normalize model/provider for local OpenAI-compatible endpoints.

    If a local ``api_base`` is configured and model has no provider prefix,
    force ``openai/`` so LiteLLM routes through the expected provider.
    """
    if not isinstance(model, str):
        return model

    model_name = model.strip()
    if not model_name:
        return model

    if "/" in model_name:
        provider = model_name.split("/", 1)[0].strip().lower()
        if provider in _PROVIDER_PREFIXES:
            return model_name

    base_norm = _normalize_local_api_base(api_base)
    if not isinstance(base_norm, str) or not base_norm.strip():
        return model_name

    parsed = urlparse(base_norm)
    host = (parsed.hostname or "").strip().lower()
    if host not in {"127.0.0.1", "localhost", "::1"}:
        return model_name

    return f"openai/{model_name}"


def make_harmony_lm(model: str, **kwargs: object) -> object:
    """Create a ``dspy.LM`` that strips Harmony tokens from every response.

    Drop-in replacement for ``dspy.LM(model, ...)``. Empty ``api_base``/
    ``api_key`` values are dropped so LiteLLM falls back to the provider's
    own environment variables (``GEMINI_API_KEY``, ``GROQ_API_KEY``, ...).
    """
    import dspy

    lm_kwargs = {k: v for k, v in kwargs.items() if not (k in {"api_base", "api_key"} and not v)}
    if "api_base" in lm_kwargs:
        lm_kwargs["api_base"] = _normalize_local_api_base(lm_kwargs.get("api_base"))

    effective_model = _normalize_model_for_api_base(model, lm_kwargs.get("api_base"))

    class HarmonyLM(dspy.LM):
        """``dspy.LM`` subclass that strips gpt-oss Harmony channel tokens."""

        def _process_completion(self, response, merged_kwargs):
            outputs = super()._process_completion(response, merged_kwargs)
            cleaned = []
            for o in outputs:
                if isinstance(o, str):
                    cleaned.append(strip_harmony_tokens(o))
                elif isinstance(o, dict) and isinstance(o.get("text"), str):
                    cleaned.append({**o, "text": strip_harmony_tokens(o["text"])})
                else:
                    cleaned.append(o)
            return cleaned

    return HarmonyLM(effective_model, **lm_kwargs)
