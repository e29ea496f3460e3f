"""Isolate the executable script from a model's raw reply.

Models follow "no markdown" instructions inconsistently, so extraction is an
ordered fallback:

1. a fenced block tagged ``python``/``py``/``python3``,
2. any fenced block,
3. the whole reply, trimmed.

Each tier is exposed on its own.  :func:`extract_code` never raises; text that
is not runnable is rejected later by the sandbox and feeds the retry loop.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

_TAGGED_FENCE = re.compile(
    r"```[ \t]*(?:python3?|py)(?:[ \t]*\r?\n|[ \t]+)(.*?)```",
    re.DOTALL | re.IGNORECASE,
)
_GENERIC_FENCE = re.compile(r"```(?:[^\n`]*\r?\n|[\w+-]*[ \t]+)(.*?)```", re.DOTALL)


class ExtractionTier(str, Enum):
    TAGGED = "tagged_fence"
    GENERIC = "generic_fence"
    RAW = "raw_text"


@dataclass(frozen=True)
class ExtractedScript:
    """Best-guess script plus the tier that produced it."""

    code: str
    tier: ExtractionTier

    @property
    def ambiguous(self) -> bool:
        """True when no fenced block was found and the raw reply is used."""
        return self.tier is ExtractionTier.RAW

    @property
    def empty(self) -> bool:
        return not self.code.strip()


def extract_tagged_block(text: str) -> str | None:
    """Interior of the first python-tagged fenced block, trimmed."""
    match = _TAGGED_FENCE.search(text or "")
    return match.group(1).strip() if match else None


def extract_generic_block(text: str) -> str | None:
    """Interior of the first fenced block of any language, trimmed."""
    match = _GENERIC_FENCE.search(text or "")
    return match.group(1).strip() if match else None


def extract_code(text: str | None) -> ExtractedScript:
    """Return the best-guess executable script from *text*."""
    raw = text if isinstance(text, str) else ""
    tagged = extract_tagged_block(raw)
    if tagged is not None:
        return ExtractedScript(tagged, ExtractionTier.TAGGED)
    generic = extract_generic_block(raw)
    if generic is not None:
        return ExtractedScript(generic, ExtractionTier.GENERIC)
    return ExtractedScript(raw.strip(), ExtractionTier.RAW)
