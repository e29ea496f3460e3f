"""Dataset loaders for the sandbox.

An upload arrives as a byte buffer plus a filename; the extension picks the
pandas reader.  Only the first sheet of a workbook is loaded.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .errors import DatasetLoadError

CSV_SUFFIXES = (".csv", ".tsv")
SPREADSHEET_SUFFIXES = (".xlsx", ".xlsm", ".xls")


class DatasetMeta(BaseModel):
    """Metadata about a loaded dataset."""

    name: str
    format: str  # "csv", "tsv", "excel"
    size: int  # bytes
    rows: int
    columns: list[str]
    sheet_names: list[str] = Field(default_factory=list)
    preview: str | None = None


def dataset_format(file_name: str) -> str:
    """Return ``csv``, ``tsv`` or ``excel`` for *file_name*.

    Raises
    ------
    DatasetLoadError
        If the extension is not a supported tabular format.
    """
    suffix = Path(file_name).suffix.lower()
    if suffix == ".csv":
        return "csv"
    if suffix == ".tsv":
        return "tsv"
    if suffix in SPREADSHEET_SUFFIXES:
        return "excel"
    supported = ", ".join(CSV_SUFFIXES + SPREADSHEET_SUFFIXES)
    raise DatasetLoadError(
        f"Unsupported dataset format {suffix or '(none)'!r} for {file_name!r}. "
        f"Supported: {supported}"
    )


def load_dataset_bytes(data: bytes, file_name: str) -> tuple[DatasetMeta, Any]:
    """Load an uploaded byte buffer and return (metadata, DataFrame)."""
    fmt = dataset_format(file_name)
    try:
        if fmt == "excel":
            df, sheet_names = _read_excel(data)
        else:
            df = _read_delimited(data, sep="\t" if fmt == "tsv" else ",")
            sheet_names = [Path(file_name).stem]
    except DatasetLoadError:
        raise
    except Exception as exc:
        raise DatasetLoadError(f"Could not read {file_name!r}: {exc}") from exc

    columns = [str(c) for c in df.columns]
    return (
        DatasetMeta(
            name=Path(file_name).name,
            format=fmt,
            size=len(data),
            rows=int(len(df)),
            columns=columns,
            sheet_names=sheet_names,
            preview=f"{len(df)} rows x {len(columns)} cols: {columns}",
        ),
        df,
    )


def load_dataset_path(path: Path | str) -> tuple[DatasetMeta, Any]:
    """Load a dataset from disk. Convenience wrapper over :func:`load_dataset_bytes`."""
    path = Path(path)
    if not path.is_file():
        raise DatasetLoadError(f"Dataset not found: {path}")
    return load_dataset_bytes(path.read_bytes(), path.name)


def _read_delimited(data: bytes, *, sep: str) -> Any:
    import pandas as pd

    if not data.strip():
        raise DatasetLoadError("File is empty")
    df = pd.read_csv(io.BytesIO(data), sep=sep)
    df.columns = [str(c).strip() for c in df.columns]
    return df


def _read_excel(data: bytes) -> tuple[Any, list[str]]:
    import pandas as pd

    if not data:
        raise DatasetLoadError("File is empty")
    with pd.ExcelFile(io.BytesIO(data)) as workbook:
        sheet_names = [str(s) for s in workbook.sheet_names]
        if not sheet_names:
            raise DatasetLoadError("Workbook has no sheets")
        df = workbook.parse(sheet_names[0])
    df.columns = [str(c).strip() for c in df.columns]
    return df, sheet_names
