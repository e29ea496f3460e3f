"""Lightweight dataset schema summary sent to the model instead of the data."""

from __future__ import annotations

import json
import reprlib
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .loaders import DatasetMeta

DEFAULT_SAMPLE_ROWS = 5


class SchemaContext(BaseModel):
    """Column names, a few sample rows and the row count of one dataset."""

    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(alias="fileName")
    sheet_names: list[str] = Field(default_factory=list, alias="sheetNames")
    columns: list[str]
    sample_rows: list[list[Any]] = Field(default_factory=list, alias="sampleRows")
    row_count: int = Field(alias="rowCount")
    # Set when the dataset variable holds something other than a table.
    value_summary: str | None = Field(default=None, alias="valueSummary")


def _json_safe(value: Any) -> Any:
    """Return a JSON-serialisable scalar (NaN/NaT -> None)."""
    if value is None:
        return None
    try:
        import pandas as pd

        if pd.isna(value):
            return None
        if isinstance(value, pd.Timestamp):
            return value.isoformat()
    except (TypeError, ValueError):
        # Non-scalar cells (lists, dicts) make pd.isna ambiguous.
        return str(value)
    if hasattr(value, "item") and callable(value.item):
        try:
            return value.item()
        except (TypeError, ValueError):
            return str(value)
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def build_schema_context(
    meta: DatasetMeta | None,
    df: Any,
    *,
    sample_rows: int = DEFAULT_SAMPLE_ROWS,
) -> SchemaContext:
    """Summarise a loaded dataframe.

    Parameters
    ----------
    meta:
        Metadata returned by the loader (file name, sheet names), or ``None``
        for a frame bound without one.
    df:
        The loaded ``pandas.DataFrame``. Scripts may rebind the dataset
        variable, so a ``Series`` is summarised as a one-column frame and
        any other value by its type and a short repr.
    sample_rows:
        Number of leading rows to include. Default ``5``.
    """
    import pandas as pd

    name = meta.name if meta is not None else "df"
    sheets = list(meta.sheet_names) if meta is not None else []
    if isinstance(df, pd.Series):
        df = df.to_frame()
    if not isinstance(df, pd.DataFrame):
        return SchemaContext(
            file_name=name,
            sheet_names=sheets or [name],
            columns=[],
            row_count=0,
            value_summary=f"{type(df).__name__}: {reprlib.repr(df)}",
        )

    head = df.head(max(0, sample_rows))
    rows = [[_json_safe(v) for v in record] for record in head.itertuples(index=False, name=None)]
    return SchemaContext(
        file_name=name,
        sheet_names=sheets or [name],
        columns=[str(c).strip() for c in df.columns],
        sample_rows=rows,
        row_count=int(len(df)),
    )


def format_schema_context(context: SchemaContext) -> str:
    """Render a schema summary as the fixed text block used in prompts."""
    sheet = context.sheet_names[0] if context.sheet_names else context.file_name
    if context.value_summary is not None:
        return (
            "ACTIVE FILE METADATA:\n"
            f'- File Name: "{context.file_name}"\n'
            f'- Sheet Name: "{sheet}"\n'
            f"- The dataset variable no longer holds a table. Current value: {context.value_summary}"
        )
    return (
        "ACTIVE FILE METADATA:\n"
        f'- File Name: "{context.file_name}"\n'
        f'- Sheet Name: "{sheet}"\n'
        f"- Total Rows: {context.row_count}\n"
        f"- Columns: {json.dumps(context.columns, ensure_ascii=False)}\n"
        f"- Sample Data (Top {len(context.sample_rows)} rows):\n"
        f"  {json.dumps(context.sample_rows, ensure_ascii=False, default=str)}"
    )
