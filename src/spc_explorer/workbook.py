"""
Workbook ingestion: sheet names and sparse row records via pandas.
"""

import os
from datetime import date, datetime
from typing import List, Dict, Any, Sequence, Union
import pandas as pd

Row = Dict[str, Any]

EXCEL_SUFFIXES = (".xlsx", ".xls")
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class WorkbookError(ValueError):
    """Workbook cannot be opened, or a requested sheet is missing."""


def _normalize_cell(val: Any) -> Any:
    if val is None:
        return None
    if isinstance(val, str):
        return val if val.strip() else None
    if pd.isna(val):
        return None
    if isinstance(val, (pd.Timestamp, datetime, date)):
        return val.strftime(DATE_FORMAT)
    if hasattr(val, "item"):  # numpy scalar
        return val.item()
    return val


def frame_to_rows(df: pd.DataFrame) -> List[Row]:
    """One dict per row; blank cells are left out of the record."""
    rows: List[Row] = []
    columns = [str(c) for c in df.columns]
    for values in df.itertuples(index=False, name=None):
        rec: Row = {}
        for col, raw in zip(columns, values):
            v = _normalize_cell(raw)
            if v is not None:
                rec[col] = v
        rows.append(rec)
    return rows


class Workbook:
    """Parsed workbook: every sheet read once as object dtype."""

    def __init__(self, sheets: Dict[str, pd.DataFrame], name: str = ""):
        self.name = name
        self._sheets = sheets

    @classmethod
    def from_path(cls, path: Union[str, os.PathLike]) -> "Workbook":
        path = os.fspath(path)
        if not path.lower().endswith(EXCEL_SUFFIXES):
            raise WorkbookError(f"not an Excel workbook (.xlsx, .xls): {path}")
        if not os.path.exists(path):
            raise WorkbookError(f"workbook not found: {path}")
        try:
            sheets = pd.read_excel(path, sheet_name=None, dtype=object)
        except Exception as exc:
            raise WorkbookError(f"failed to read workbook {path}: {exc}") from exc
        return cls(sheets, name=os.path.basename(path))

    @property
    def sheet_names(self) -> List[str]:
        return list(self._sheets)

    def sheet_rows(self, sheet: str) -> List[Row]:
        if sheet not in self._sheets:
            raise WorkbookError(f"no sheet named '{sheet}' in {self.name or 'workbook'}")
        return frame_to_rows(self._sheets[sheet])

    def rows(self, sheets: Sequence[str]) -> List[Row]:
        """Rows of the selected sheets, concatenated in the order given."""
        out: List[Row] = []
        for s in sheets:
            out.extend(self.sheet_rows(s))
        return out
