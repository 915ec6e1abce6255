"""
JSON-backed memory of the last analysis selections per workbook.
"""

import json
import os
from typing import Dict, List, Any, Optional, Sequence

Record = Dict[str, Any]

"""
Selection Memory Rules
Each workbook (keyed by file name) remembers: sheets, x_column, y_columns, filters.
On restore, a remembered entry is used only while it is still valid:
- sheets: kept if they exist in the workbook; none left -> first sheet.
- x_column: kept if present in the loaded columns; else the default date/time column.
- y_columns: the ones still present; none left -> the default numeric column.
- filters: dropped when the column is gone or the value is no longer offered.
"""


class SelectionStore:
    """
    JSON-backed memory keyed by workbook name.

    Record:
    {"sheets":[...],"x_column":str|null,"y_columns":[...],"filters":{col: value}}
    """
    def __init__(self, json_path: str):
        self.json_path = json_path
        self.data: Dict[str, Record] = {}
        if os.path.exists(json_path):
            try:
                with open(json_path, "r", encoding="utf-8") as f:
                    self.data = json.load(f)
            except (OSError, ValueError):
                self.data = {}
            if not isinstance(self.data, dict):
                self.data = {}

    def _save(self) -> None:
        folder = os.path.dirname(self.json_path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        tmp = self.json_path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self.data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.json_path)

    def get(self, workbook: str) -> Record:
        return dict(self.data.get(workbook) or {})

    def remember(
        self,
        workbook: str,
        sheets: Sequence[str],
        x_column: Optional[str],
        y_columns: Sequence[str],
        filters: Dict[str, Any],
    ) -> None:
        self.data[workbook] = {
            "sheets": list(sheets),
            "x_column": x_column,
            "y_columns": list(y_columns),
            "filters": {k: v for k, v in filters.items()},
        }
        self._save()

    def forget(self, workbook: str) -> None:
        if workbook in self.data:
            del self.data[workbook]
            self._save()


# ---------- restore ----------
def restore_sheets(previous: Sequence[str], available: Sequence[str]) -> List[str]:
    kept = [s for s in available if s in previous]
    if kept:
        return kept
    return list(available[:1])


def restore_columns(previous: Sequence[str], columns: Sequence[str]) -> List[str]:
    return [c for c in columns if c in previous]
