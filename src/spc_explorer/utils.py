"""
Utilities: cell coercion, display formatting, column helpers,
X-axis ticks, and Y-axis label mapping.
"""

from typing import Optional, List, Dict, Any, Sequence
import math
import numbers
import re
import matplotlib.pyplot as plt

Row = Dict[str, Any]

_STRIP_RE = re.compile(r"[$,\s]")
_DATE_KEYWORDS = ("日期", "時間", "date", "time")


def coerce_number(raw: Any) -> Optional[float]:
    """
    Cell value -> number, or None when it is not one.

    Numbers pass through untouched; strings lose '$', ',' and whitespace
    before parsing. Unparseable or non-finite text gives None, never 0.
    """
    if isinstance(raw, numbers.Real) and not isinstance(raw, bool):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = _STRIP_RE.sub("", raw)
    try:
        val = float(text)
    except ValueError:
        return None
    return val if math.isfinite(val) else None


def is_number(val: Any) -> bool:
    """True for a coerced value that can feed the statistics."""
    return val is not None and not (isinstance(val, float) and math.isnan(val))


def format_value(val: Any) -> Any:
    """Table display: integers as-is, other floats rounded to 4 places."""
    if isinstance(val, numbers.Real) and not isinstance(val, bool):
        if isinstance(val, numbers.Integral):
            return int(val)
        f = float(val)
        if math.isfinite(f) and f.is_integer():
            return int(f)
        return round(f, 4)
    return val


def cell_text(val: Any) -> str:
    """Text form used for filter matching and unique-value ordering."""
    return str(format_value(val))


def format_stat(val: Optional[float], digits: int = 4) -> str:
    if val is None or math.isnan(val): return "N/A"
    if math.isinf(val): return "inf" if val > 0 else "-inf"
    return f"{val:.{digits}f}"


def format_index(val: Optional[float], precision: int = 3) -> str:
    return format_stat(val, precision)


def format_ca(ca: Optional[float]) -> str:
    """Ca as a percentage with two decimals."""
    if ca is None or math.isnan(ca): return "N/A"
    return format_stat(ca * 100, 2) + ("%" if math.isfinite(ca) else "")


# ---------- columns ----------
def union_columns(rows: Sequence[Row]) -> List[str]:
    cols: Dict[str, None] = {}
    for r in rows:
        for k in r:
            cols.setdefault(k, None)
    return list(cols)


def get_unique_values(rows: Sequence[Row], column: str) -> List[Any]:
    seen: Dict[str, Any] = {}
    for r in rows:
        v = r.get(column)
        if v is None or v == "":
            continue
        seen.setdefault(cell_text(v), v)
    return [seen[k] for k in sorted(seen)]


def is_filter_candidate(rows: Sequence[Row], column: str,
                        max_values: int = 500, numeric_cutoff: int = 50) -> bool:
    """Category-like column: 2..max_values distinct values, not a dense numeric column."""
    if not rows:
        return False
    n_unique = len(get_unique_values(rows, column))
    first = rows[0].get(column)
    dense_numeric = isinstance(first, numbers.Real) and not isinstance(first, bool) and n_unique > numeric_cutoff
    return 1 < n_unique <= max_values and not dense_numeric


def _looks_numeric(val: Any) -> bool:
    if isinstance(val, bool):
        return False
    if isinstance(val, numbers.Real):
        return True
    if isinstance(val, str):
        try:
            return math.isfinite(float(val.strip()))
        except ValueError:
            return False
    return False


def default_x_column(columns: Sequence[str]) -> Optional[str]:
    for c in columns:
        lower = c.lower()
        if any(k in lower for k in _DATE_KEYWORDS):
            return c
    return None


def default_y_column(rows: Sequence[Row], columns: Sequence[str]) -> Optional[str]:
    if not rows:
        return None
    for c in columns:
        if _looks_numeric(rows[0].get(c)):
            return c
    return None


# ---------- axes ----------
def apply_xaxis(ax: plt.Axes, labels: Sequence[Any]) -> None:
    """Positions 1..n with a thinned set of category tick labels."""
    n = len(labels)
    if n == 0:
        return
    if n <= 20:
        step = 1
    elif n <= 50:
        step = 2
    else:
        step = max(5, n // 20)

    ticks = list(range(1, n + 1, step))
    if ticks[-1] != n:
        ticks.append(n)

    ax.set_xlim(0.5, n + 0.5)
    ax.set_xticks(ticks)
    ax.set_xticklabels([str(labels[t - 1]) for t in ticks], rotation=45, ha="right")


def get_ylabel(columns: Sequence[str], overrides: Optional[Dict[str, str]] = None) -> str:
    if len(columns) != 1:
        return "Value"
    display_name = columns[0]
    if overrides:
        # case-insensitive exact match
        for k, v in overrides.items():
            if k.strip().lower() == display_name.strip().lower():
                return v
    return display_name
