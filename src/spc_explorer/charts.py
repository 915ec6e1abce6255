"""
Analysis orchestration: filter rows, recompute statistics on every change,
render trend / distribution charts, and export results.
"""

import os
import re
from dataclasses import dataclass
from typing import List, Optional, Dict, Any, Callable, Sequence, Tuple
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from .metrics import (
    SpecLimits, StatisticsResult, compute_statistics,
    normal_curve, sigma_markers,
)
from .utils import (
    coerce_number, is_number, cell_text, union_columns, get_unique_values,
    is_filter_candidate, default_x_column, default_y_column, apply_xaxis, get_ylabel,
)
from .panel import summary_lines, render_text_panel, print_panel_lines
from .memory import SelectionStore, restore_sheets, restore_columns
from .workbook import Workbook, WorkbookError

Row = Dict[str, Any]

SPEC_COLOR = "#ef4444"
CL_COLOR = (245 / 255, 158 / 255, 11 / 255, 0.7)
PALETTE = ["#0ea5e9", "#10b981", "#f59e0b", "#8b5cf6", "#ec4899"]


# ----------------- Rows -> values -----------------
def apply_filters(rows: Sequence[Row], filters: Dict[str, Any]) -> List[Row]:
    """Rows whose cell text equals every active filter value; order kept.

    A row without a cell in a filtered column never matches.
    """
    wanted = {col: cell_text(val) for col, val in filters.items()}
    return [r for r in rows
            if all(c in r and cell_text(r[c]) == v for c, v in wanted.items())]


def safe_tag(text: str) -> str:
    """File-name-safe form of a sheet tag."""
    return re.sub(r'[\\/:*?"<>|]', "-", text)


def extract_values(rows: Sequence[Row], column: str) -> List[float]:
    """Coerced numeric cells of one column; non-numbers dropped."""
    out = []
    for r in rows:
        v = coerce_number(r.get(column))
        if is_number(v):
            out.append(v)
    return out


def spec_from_column(rows: Sequence[Row], column: str) -> Optional[float]:
    """Spec limit taken from the first row's cell of a column, if numeric."""
    if not rows or not column:
        return None
    v = coerce_number(rows[0].get(column))
    return v if is_number(v) else None


def parse_specs(target: Any = None, usl: Any = None, lsl: Any = None) -> SpecLimits:
    """Spec limits from typed input; unparseable text leaves the limit unset."""
    def _one(raw):
        v = coerce_number(raw)
        return float(v) if is_number(v) else None
    return SpecLimits(target=_one(target), usl=_one(usl), lsl=_one(lsl))


# ----------------- Snapshot -----------------
@dataclass(frozen=True)
class Snapshot:
    """Everything the chart and summary consumers read for one state."""
    rows: Tuple[Row, ...]
    total_rows: int
    x_column: Optional[str]
    y_columns: Tuple[str, ...]
    specs: SpecLimits
    values: Tuple[float, ...]
    stats: StatisticsResult

    @property
    def filtered_rows(self) -> int:
        return len(self.rows)


def build_snapshot(
    rows: Sequence[Row],
    x_column: Optional[str],
    y_columns: Sequence[str],
    specs: Optional[SpecLimits] = None,
    filters: Optional[Dict[str, Any]] = None,
) -> Snapshot:
    specs = specs or SpecLimits()
    filtered = apply_filters(rows, filters or {})
    values = extract_values(filtered, y_columns[0]) if y_columns else []
    return Snapshot(
        rows=tuple(filtered),
        total_rows=len(rows),
        x_column=x_column,
        y_columns=tuple(y_columns),
        specs=specs,
        values=tuple(values),
        stats=compute_statistics(values, specs),
    )


Listener = Callable[[Snapshot], None]


class SpcSession:
    """
    Interactive analysis state.

    Every change (sheets, axes, filters, spec limits) rebuilds a fresh
    Snapshot and hands it to all subscribers; snapshots are never
    mutated, so consumers always see one consistent state.
    """
    def __init__(self, workbook: Optional[Workbook] = None, store: Optional[SelectionStore] = None):
        self.workbook = workbook
        self.store = store
        self.sheets: List[str] = []
        self.raw_rows: List[Row] = []
        self.columns: List[str] = []
        self.filters: Dict[str, Any] = {}
        self.x_column: Optional[str] = None
        self.y_columns: List[str] = []
        self.specs = SpecLimits()
        self._listeners: List[Listener] = []
        self._snapshot = build_snapshot([], None, [])

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # ---------- state changes ----------
    def load_rows(self, rows: Sequence[Row], sheets: Sequence[str] = ()) -> None:
        """Replace the raw rows; keep still-valid axes and filters."""
        self.sheets = list(sheets)
        self.raw_rows = list(rows)
        self.columns = union_columns(self.raw_rows)
        self._restore_axes()
        self._prune_filters()
        self._recompute()

    def load_sheets(self, sheets: Optional[Sequence[str]] = None) -> None:
        if self.workbook is None:
            raise WorkbookError("no workbook loaded")
        available = self.workbook.sheet_names
        if not sheets:
            previous = self._remembered().get("sheets") or []
            sheets = restore_sheets(previous, available)
        if not self.filters:
            self.filters = dict(self._remembered().get("filters") or {})
        self.load_rows(self.workbook.rows(sheets), sheets)

    def set_axes(self, x_column: Optional[str] = None, y_columns: Optional[Sequence[str]] = None) -> None:
        if x_column is not None:
            self.x_column = x_column
        if y_columns is not None:
            self.y_columns = list(y_columns)
        self._recompute()

    def set_filter(self, column: str, value: Any) -> None:
        if value is None or value == "":
            self.filters.pop(column, None)
        else:
            self.filters[column] = value
        self._recompute()

    def reset_filters(self) -> None:
        self.filters = {}
        self._recompute()

    def set_specs(self, target: Any = None, usl: Any = None, lsl: Any = None) -> None:
        self.specs = parse_specs(target, usl, lsl)
        self._recompute()

    def set_spec_from_column(self, field: str, column: str) -> None:
        """Fill target/usl/lsl from the first filtered row of a column."""
        if field not in ("target", "usl", "lsl"):
            raise ValueError(f"unknown spec field: {field}")
        val = spec_from_column(self._snapshot.rows, column)
        if val is None:
            return
        current = {"target": self.specs.target, "usl": self.specs.usl, "lsl": self.specs.lsl}
        current[field] = float(val)
        self.specs = SpecLimits(**current)
        self._recompute()

    # ---------- helpers ----------
    def filter_options(self) -> Dict[str, List[Any]]:
        return {c: get_unique_values(self.raw_rows, c)
                for c in self.columns if is_filter_candidate(self.raw_rows, c)}

    def _remembered(self) -> Dict[str, Any]:
        if self.store is None or self.workbook is None:
            return {}
        return self.store.get(self.workbook.name)

    def _restore_axes(self) -> None:
        mem = self._remembered()
        candidates = [self.x_column, mem.get("x_column")]
        self.x_column = next((c for c in candidates if c and c in self.columns),
                             default_x_column(self.columns))
        ys = restore_columns(self.y_columns or mem.get("y_columns") or [], self.columns)
        if not ys:
            y = default_y_column(self.raw_rows, self.columns)
            ys = [y] if y else []
        self.y_columns = ys

    def _prune_filters(self) -> None:
        kept = {}
        for col, val in self.filters.items():
            offered = {cell_text(v) for v in get_unique_values(self.raw_rows, col)}
            if cell_text(val) in offered:
                kept[col] = val
        self.filters = kept

    def _recompute(self) -> None:
        self._snapshot = build_snapshot(self.raw_rows, self.x_column, self.y_columns,
                                        self.specs, self.filters)
        if self.store is not None and self.workbook is not None:
            self.store.remember(self.workbook.name, self.sheets, self.x_column,
                                self.y_columns, self.filters)
        for listener in list(self._listeners):
            listener(self._snapshot)


# ----------------- Rendering -----------------
def _out_of_spec(y: np.ndarray, specs: SpecLimits) -> np.ndarray:
    mask = np.zeros(y.shape, dtype=bool)
    with np.errstate(invalid="ignore"):
        if specs.has_usl:
            mask |= y > specs.usl
        if specs.has_lsl:
            mask |= y < specs.lsl
    return mask


def render_trend_chart(
    snap: Snapshot,
    y_overrides: Optional[Dict[str, str]] = None,
    panel: Optional[List] = None,
) -> Optional[plt.Figure]:
    """Trend of every y column against x; OOS points red, spec and control lines."""
    if not snap.rows or not snap.x_column or not snap.y_columns:
        return None

    if panel:
        fig, (ax, ax_text) = plt.subplots(ncols=2, figsize=(16, 8), gridspec_kw={'width_ratios': [3, 2]})
        render_text_panel(ax_text, panel)
    else:
        fig, ax = plt.subplots(figsize=(16, 8))

    x_labels = [r.get(snap.x_column, "") for r in snap.rows]
    x_plot = np.arange(1, len(snap.rows) + 1)
    for idx, col in enumerate(snap.y_columns):
        color = PALETTE[idx % len(PALETTE)]
        y = np.array([v if is_number(v) else np.nan
                      for v in (coerce_number(r.get(col)) for r in snap.rows)], dtype=float)
        oos = _out_of_spec(y, snap.specs)
        ax.plot(x_plot, y, color=color, linewidth=2, label=col)
        ax.scatter(x_plot[~oos], y[~oos], color=color, s=36, zorder=3)
        if oos.any():
            ax.scatter(x_plot[oos], y[oos], color=SPEC_COLOR, s=100, zorder=4,
                       edgecolors='white', linewidths=1.5)

    specs, stats = snap.specs, snap.stats
    if specs.has_usl:
        ax.axhline(specs.usl, color=SPEC_COLOR, linestyle='--', linewidth=2, label='USL')
    if specs.has_lsl:
        ax.axhline(specs.lsl, color=SPEC_COLOR, linestyle='--', linewidth=2, label='LSL')
    if stats.n:
        ax.axhline(stats.ucl, color=CL_COLOR, linestyle=':', linewidth=1.5, label='UCL')
        ax.axhline(stats.lcl, color=CL_COLOR, linestyle=':', linewidth=1.5, label='LCL')

    ax.set_title(f"Trend ({', '.join(snap.y_columns)})")
    ax.set_xlabel(snap.x_column)
    ax.set_ylabel(get_ylabel(snap.y_columns, y_overrides))
    ax.grid(True, alpha=0.3); ax.legend()
    apply_xaxis(ax, x_labels)
    fig.tight_layout()
    return fig


def render_distribution_chart(snap: Snapshot, bins: int = 20) -> Optional[plt.Figure]:
    """Density histogram of the first y column with its normal curve and ±3σ markers."""
    if not snap.values:
        return None
    values = np.asarray(snap.values, dtype=float)
    stats = snap.stats
    mean, sigma = stats.mean, stats.stdev_overall

    fig, ax = plt.subplots(figsize=(16, 8))
    ax.hist(values, bins=bins, density=True, color=(100/255, 116/255, 139/255, 0.4),
            edgecolor=(100/255, 116/255, 139/255, 1.0), label='Data')
    xs, ys = normal_curve(values, mean, sigma)
    ax.plot(xs, ys, color=PALETTE[0], linewidth=3, label='Normal curve')
    markers = sigma_markers(mean, sigma)
    ax.scatter([m[1] for m in markers], [m[2] for m in markers], color=SPEC_COLOR, s=40,
               zorder=3, label='σ markers')
    for label, x, y in markers:
        ax.annotate(label, (x, y), textcoords='offset points', xytext=(0, 6), ha='center')

    if snap.specs.has_usl:
        ax.axvline(snap.specs.usl, ymax=0.9, color=SPEC_COLOR, linestyle='--', linewidth=2)
    if snap.specs.has_lsl:
        ax.axvline(snap.specs.lsl, ymax=0.9, color=SPEC_COLOR, linestyle='--', linewidth=2)

    column = snap.y_columns[0]
    ax.set_title(f"{column} Normal Analysis (Cpk:{(stats.cpk or 0):.3f}, Ppk:{(stats.ppk or 0):.3f})")
    ax.set_xlabel(column)
    ax.set_ylabel("Probability density")
    ax.grid(True, alpha=0.3)
    ax.legend(loc='upper center', bbox_to_anchor=(0.5, -0.12), ncol=3)
    fig.tight_layout()
    return fig


# ----------------- Export -----------------
def export_chart(fig: plt.Figure, path: str) -> str:
    """PNG at 1600x800 px."""
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    fig.set_size_inches(16, 8)
    fig.savefig(path, dpi=100, format='png')
    return path


def export_filtered(snap: Snapshot, results_dir: str, tag: str) -> Optional[str]:
    """Filtered rows to filtered_data_<tag>.xlsx; nothing when no rows pass."""
    if not snap.rows:
        return None
    os.makedirs(results_dir, exist_ok=True)
    path = os.path.join(results_dir, f"filtered_data_{safe_tag(tag)}.xlsx")
    df = pd.DataFrame(list(snap.rows), columns=union_columns(snap.rows))
    df.to_excel(path, sheet_name="FilteredData", index=False)
    return path


# ================= Batch entry from config =================
def run_from_config(cfg: Dict[str, Any], workbook: Optional[str] = None,
                    sheets: Optional[Sequence[str]] = None) -> Optional[Snapshot]:
    cfg = cfg or {}
    path = workbook or cfg.get("workbook")
    results_dir = cfg.get("results_dir") or "results"
    chart_cfg = cfg.get("charts") or {}
    precision = int(cfg.get("index_precision", 3))
    y_overrides = cfg.get("y_label_overrides") if isinstance(cfg.get("y_label_overrides"), dict) else None

    if not path or not os.path.exists(path):
        print(f"workbook not found: {path}")
        return None
    try:
        wb = Workbook.from_path(path)
    except WorkbookError as exc:
        print(exc)
        return None

    memory_path = cfg.get("memory_path") or os.path.join(results_dir, "_memory", "spc_selections.json")
    session = SpcSession(wb, SelectionStore(memory_path))
    try:
        session.load_sheets(sheets or cfg.get("sheets"))
    except WorkbookError as exc:
        print(exc)
        return None
    if not session.raw_rows:
        print(f"no data in the selected sheets: {', '.join(session.sheets)}")
        return None

    session.set_axes(cfg.get("x_column"), cfg.get("y_columns"))
    # the config alone defines the batch filters; remembered ones are not reused
    session.reset_filters()
    for col, val in (cfg.get("filters") or {}).items():
        session.set_filter(col, val)
    spec_cfg = cfg.get("specs") or {}
    session.set_specs(spec_cfg.get("target"), spec_cfg.get("usl"), spec_cfg.get("lsl"))
    for field, col in (cfg.get("spec_columns") or {}).items():
        session.set_spec_from_column(field, col)

    snap = session.snapshot
    tag = safe_tag("_".join(session.sheets))
    title = f"{wb.name} | {', '.join(snap.y_columns) or '-'}"
    lines = summary_lines(title, snap.stats, snap.specs, snap.total_rows, snap.filtered_rows, precision,
                          filters=session.filters)
    print(); print_panel_lines(lines)

    os.makedirs(results_dir, exist_ok=True)
    if chart_cfg.get("trend", True):
        fig = render_trend_chart(snap, y_overrides, panel=lines)
        if fig is not None:
            print(f"saved {export_chart(fig, os.path.join(results_dir, f'trend_chart_{tag}.png'))}")
            if cfg.get("show"): plt.show()
            plt.close(fig)
    if chart_cfg.get("distribution", True):
        fig = render_distribution_chart(snap)
        if fig is not None:
            print(f"saved {export_chart(fig, os.path.join(results_dir, f'normal_dist_{tag}.png'))}")
            if cfg.get("show"): plt.show()
            plt.close(fig)
    if cfg.get("export_filtered", True):
        out = export_filtered(snap, results_dir, tag)
        if out:
            print(f"saved {out}")
    return snap
