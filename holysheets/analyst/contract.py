"""Output Contract: the four tagged result shapes a script may print.

Wire format (camelCase keys are the contract; Python attributes are
snake_case)::

    {"type": "markdown", "summary": "..."}
    {"type": "table", "summary": "...", "code": "...",
     "data": {"headers": [...], "rows": [[...], ...]}}
    {"type": "chart", "summary": "...", "code": "...",
     "data": {"config": {"type": "bar", "title": "...", "xAxisKey": "Month",
                         "series": [{"dataKey": "Revenue", "label": "Rev"}]},
              "data": [{"Month": "Jan", "Revenue": 10}, ...]}}
    {"type": "kpi", "summary": "...", "code": "...",
     "data": [{"label": "...", "value": 42, "trend": "+5%", "status": "positive"}]}
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .errors import OutputValidationError

RESULT_TYPES = ("markdown", "table", "chart", "kpi")
CHART_TYPES = ("line", "bar", "pie", "area", "scatter")


class _ContractModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class _ResultBase(_ContractModel):
    summary: str

    @field_validator("summary")
    @classmethod
    def _summary_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("summary must be a non-empty string")
        return value

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready dict using the contract's key names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class MarkdownResult(_ResultBase):
    type: Literal["markdown"] = "markdown"


class _ScriptedResult(_ResultBase):
    code: Optional[str] = None


class TableData(_ContractModel):
    headers: list[str]
    rows: list[list[Any]]


class TableResult(_ScriptedResult):
    type: Literal["table"] = "table"
    data: TableData


class ChartSeries(_ContractModel):
    data_key: str = Field(alias="dataKey")
    label: str
    color: Optional[str] = None


class ChartConfig(_ContractModel):
    type: Literal["line", "bar", "pie", "area", "scatter"]
    title: str = ""
    x_axis_key: str = Field(alias="xAxisKey")
    series: list[ChartSeries] = Field(min_length=1)


class ChartPayload(_ContractModel):
    config: ChartConfig
    data: list[dict[str, Any]]


class ChartResult(_ScriptedResult):
    type: Literal["chart"] = "chart"
    data: ChartPayload


class Kpi(_ContractModel):
    label: str
    value: Union[str, int, float]
    trend: Optional[str] = None
    status: Optional[Literal["positive", "negative", "neutral"]] = None


class KpiResult(_ScriptedResult):
    type: Literal["kpi"] = "kpi"
    data: list[Kpi] = Field(min_length=1)


AnalysisResult = Annotated[
    Union[MarkdownResult, TableResult, ChartResult, KpiResult],
    Field(discriminator="type"),
]

_RESULT_ADAPTER: TypeAdapter[Any] = TypeAdapter(AnalysisResult)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON; convert NaN/Infinity to null before printing")


def _format_errors(exc: ValidationError, result_type: str) -> str:
    parts = []
    for err in exc.errors()[:5]:
        # Drop the discriminator tag pydantic prepends to union locations.
        loc = [str(p) for p in err.get("loc", ()) if p != result_type]
        where = ".".join(loc) or "(root)"
        parts.append(f"{where}: {err.get('msg')}")
    return "; ".join(parts)


def validate_output(text: str) -> Any:
    """Parse captured stdout and validate it against the Output Contract.

    Returns
    -------
    AnalysisResult
        One of :class:`MarkdownResult`, :class:`TableResult`,
        :class:`ChartResult`, :class:`KpiResult`.

    Raises
    ------
    OutputValidationError
        If the output is empty, not a single JSON object, has an unknown
        ``type`` tag, lacks a summary, or does not match its variant's shape.
    """
    raw = text or ""
    stripped = raw.strip()
    if not stripped:
        raise OutputValidationError(
            "The script printed nothing. Its final action must print exactly one JSON object.",
            raw_output=raw,
        )
    try:
        payload = json.loads(stripped, parse_constant=_reject_constant)
    except ValueError as exc:
        raise OutputValidationError(
            "The script output is not a single valid JSON object "
            f"(model ignored the output-format instruction): {exc}",
            raw_output=raw,
        ) from exc
    return validate_payload(payload, raw_output=raw)


def validate_payload(payload: Any, *, raw_output: str = "") -> Any:
    """Validate an already-parsed value against the Output Contract."""
    if not isinstance(payload, dict):
        raise OutputValidationError(
            f"Expected a JSON object, got {type(payload).__name__}.",
            raw_output=raw_output,
        )
    result_type = payload.get("type")
    if result_type not in RESULT_TYPES:
        raise OutputValidationError(
            f"Missing or unknown 'type' tag {result_type!r}; expected one of {list(RESULT_TYPES)}.",
            raw_output=raw_output,
        )
    summary = payload.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise OutputValidationError(
            f"The '{result_type}' result is missing a non-empty 'summary'.",
            raw_output=raw_output,
        )
    try:
        return _RESULT_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise OutputValidationError(
            f"Output does not match the '{result_type}' contract: {_format_errors(exc, result_type)}",
            raw_output=raw_output,
        ) from exc


def validate_result(result: Any) -> Any:
    """Re-validate an Output Contract value.

    Model instances are checked and returned as-is (never copied or
    mutated); dicts are validated like parsed output.
    """
    if isinstance(result, _ResultBase):
        validate_payload(result.to_wire())
        return result
    return validate_payload(result)


def result_to_json(result: Any, *, indent: int | None = None) -> str:
    """Serialise a result using the contract's key names."""
    return json.dumps(result.to_wire(), indent=indent, ensure_ascii=False, default=str)
