"""Prompt assembly for the analyst loop.

Every attempt builds a fresh prompt from, in order: the fixed rules, the
dataset schema, recent conversation, the user's request and, on retry only,
a diagnostic addendum.  All functions here are pure.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Sequence

from .errors import FailureKind

SYSTEM_ROLE = (
    "You are a Python Data Analyst. You answer questions about a tabular "
    "dataset by writing one valid Python script and nothing else."
)

ANALYST_RULES = """\
You are a Python Data Analyst.
Your goal is to answer the user's question by writing a VALID PYTHON SCRIPT.

RULES:
1. A pandas DataFrame named 'df' is ALREADY LOADED. Do not load, read or create the dataset yourself. 'pd', 'np' and 'json' are already imported.
2. Refer to columns by their EXACT names from the schema below (e.g. df['Sales']). Never use positional indexing such as df.iloc[:, 2] or df[df.columns[1]].
3. Convert NaN/NaT/None values to JSON-safe values (null, 0 or a string) before serializing. Never print NaN or Infinity.
4. The final action of the script must print EXACTLY ONE JSON object with json.dumps(...). Print nothing else: no explanations, no intermediate prints.
5. If the request cannot be answered from the available columns, print a 'markdown' result naming the missing fields instead of inventing data.
6. Return raw code only. Do not wrap it in markdown fences.
7. Use 'chart' when the user asks for a chart or trend, 'table' for a table or list, 'kpi' for headline numbers, 'markdown' otherwise.

OUTPUT JSON CONTRACT (exactly one of):
  {"type": "markdown", "summary": str}
  {"type": "table", "summary": str, "data": {"headers": [str], "rows": [[cell, ...], ...]}}
  {"type": "chart", "summary": str, "data": {"config": {"type": "bar"|"line"|"pie"|"area"|"scatter", "title": str, "xAxisKey": str, "series": [{"dataKey": str, "label": str}]}, "data": [{<xAxisKey>: value, <dataKey>: value}, ...]}}
  {"type": "kpi", "summary": str, "data": [{"label": str, "value": str|number, "trend": str (optional), "status": "positive"|"negative"|"neutral" (optional)}]}
'summary' is a short human-readable sentence and is always required.

EXAMPLE SCRIPT:
monthly = df.groupby('Month')['Revenue'].sum().reset_index()
monthly['Revenue'] = monthly['Revenue'].fillna(0)
print(json.dumps({
    "type": "chart",
    "summary": "Revenue peaked in December.",
    "data": {
        "config": {"type": "bar", "title": "Revenue by Month", "xAxisKey": "Month",
                   "series": [{"dataKey": "Revenue", "label": "Revenue"}]},
        "data": monthly.to_dict(orient="records")
    }
}, default=str))"""

NO_SCHEMA = "ACTIVE FILE METADATA:\n- No dataset has been uploaded yet."


def _compact(text: str, limit: int = 300) -> str:
    value = " ".join(str(text).split())
    if len(value) <= limit:
        return value
    clipped = value[: limit - 1].rstrip()
    if " " in clipped:
        clipped = clipped.rsplit(" ", 1)[0]
    return clipped + "…"


def _turn_fields(turn: Any) -> tuple[str, str]:
    """Return (user text, assistant summary) for a turn model or dict."""
    if isinstance(turn, dict):
        user = turn.get("user_message") or turn.get("userMessage") or ""
        response = turn.get("response")
    else:
        user = getattr(turn, "user_message", "")
        response = getattr(turn, "response", None)
    if response is None:
        return str(user), ""
    if isinstance(response, dict):
        kind, summary = response.get("type", ""), response.get("summary", "")
    else:
        kind, summary = getattr(response, "type", ""), getattr(response, "summary", "")
    return str(user), f"[{kind}] {summary}" if kind else str(summary)


def format_history(history: Iterable[Any], *, max_turns: int = 6) -> str:
    """Render the most recent turns as a compact transcript."""
    turns = list(history)[-max_turns:] if max_turns > 0 else []
    lines: list[str] = []
    for turn in turns:
        user, answer = _turn_fields(turn)
        if user:
            lines.append(f"User: {_compact(user)}")
        if answer:
            lines.append(f"Assistant: {_compact(answer)}")
    return "\n".join(lines)


def build_prompt(
    *,
    schema: str | None,
    request: str,
    history: Sequence[Any] = (),
    feedback: str | None = None,
    max_history_turns: int = 6,
) -> str:
    """Assemble the full instruction payload for one attempt.

    Parameters
    ----------
    schema:
        Formatted schema description, or ``None`` if no file is loaded.
    request:
        The user's natural-language request.
    history:
        Previous conversation turns (read-only).
    feedback:
        Diagnostic addendum; only set on retries.
    max_history_turns:
        How many trailing turns to include. Default ``6``.
    """
    sections = [ANALYST_RULES, "DATA SCHEMA:\n" + (schema.strip() if schema and schema.strip() else NO_SCHEMA)]
    transcript = format_history(history, max_turns=max_history_turns)
    if transcript:
        sections.append("CONVERSATION SO FAR:\n" + transcript)
    sections.append(f'USER REQUEST: "{request.strip()}"')
    if feedback:
        sections.append(feedback.strip())
    else:
        sections.append("Write the Python script now.")
    return "\n\n".join(sections) + "\n"


def build_column_feedback(*, error: str, request: str, columns: Sequence[str]) -> str:
    """Addendum for column lookup failures, grounded in the live column list."""
    return (
        "PREVIOUS ATTEMPT FAILED: UNKNOWN COLUMN.\n"
        f'The previous script failed with this error:\n"{error}"\n\n'
        f"The dataframe 'df' currently has EXACTLY these columns:\n{json.dumps(list(columns), ensure_ascii=False)}\n\n"
        f'Original Request: "{request.strip()}"\n\n'
        "Re-write the script using only the column names listed above, spelled exactly. "
        "If the request needs a column that does not exist, print a 'markdown' result "
        "that names the missing field instead of guessing."
    )


def build_error_feedback(
    *,
    error: str,
    request: str,
    kind: FailureKind = FailureKind.RUNTIME,
    raw_output: str | None = None,
) -> str:
    """Addendum for every other failure: the raw error plus the original request."""
    lines = ["PREVIOUS ATTEMPT FAILED."]
    if kind is FailureKind.VALIDATION:
        lines.append(f'The previous script ran, but its output was rejected:\n"{error}"')
        if raw_output and raw_output.strip():
            lines.append(f"It printed:\n{_compact(raw_output, 600)}")
        lines.append("The script's final action must print exactly one JSON object matching the contract, and nothing else.")
    elif kind is FailureKind.EXTRACTION:
        lines.append(f'No runnable Python code was found in your reply:\n"{error}"')
    else:
        lines.append(f'The previous python script you wrote failed with this error:\n"{error}"')
    lines.append(f'\nOriginal Request: "{request.strip()}"')
    lines.append(
        "\nPlease analyze the error and RE-WRITE the script to fix it. "
        "Remember: the dataframe is named 'df' and is already loaded."
    )
    return "\n".join(lines)
