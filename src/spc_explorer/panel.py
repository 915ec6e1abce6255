"""
Summary display: numeric summary lines, the chart text panel and colored console printing.
"""

from typing import List, Optional, Tuple, Dict, Any
import matplotlib.pyplot as plt

from .metrics import StatisticsResult, SpecLimits, index_grade, ca_grade, GRADE_COLORS
from .utils import format_stat, format_index, format_ca

Line = Tuple[str, Optional[str]]

_ANSI = {"red": "91", "green": "92", "darkgoldenrod": "93", "blue": "94"}


def _graded(label: str, text: str, grade: Optional[str]) -> Line:
    if grade is None:
        return f"{label}: {text}", None
    return f"{label}: {text} ({grade})", GRADE_COLORS[grade]


def summary_lines(
    title: str,
    stats: StatisticsResult,
    specs: Optional[SpecLimits] = None,
    total_rows: Optional[int] = None,
    filtered_rows: Optional[int] = None,
    precision: int = 3,
    filters: Optional[Dict[str, Any]] = None,
) -> List[Line]:
    """(text, color) pairs; color is None for plain lines."""
    specs = specs or SpecLimits()
    lines: List[Line] = [(f"--- {title} ---", None)]
    if total_rows is not None:
        shown = total_rows if filtered_rows is None else filtered_rows
        lines.append((f"Rows: {shown} / {total_rows}", None))
    if filters is not None:
        active = ", ".join(f"{c}={v}" for c, v in filters.items())
        lines.append((f"Filters: {active or 'none'}", None))
    lines.append((f"n: {stats.n} | Mean: {format_stat(stats.mean)}", None))
    lines.append((f"USL: {format_stat(specs.usl)} | LSL: {format_stat(specs.lsl)} | "
                  f"Target: {format_stat(specs.target)}", None))
    if stats.n:
        lines.append((f"UCL: {format_stat(stats.ucl)} | LCL: {format_stat(stats.lcl)}", None))
        lines.append((f"Std Dev within: {format_stat(stats.stdev_within)}", None))
        lines.append((f"Std Dev between: {format_stat(stats.stdev_between)}", None))
        lines.append((f"Std Dev overall: {format_stat(stats.stdev_overall)}", None))
    else:
        lines.append(("UCL: - | LCL: -", None))
        lines.append(("Std Dev within/between/overall: -", None))
    lines.append(_graded("Ca", format_ca(stats.ca), ca_grade(stats.ca)))
    lines.append(_graded("Cp", format_index(stats.cp, precision), index_grade(stats.cp)))
    lines.append(_graded("Cpk", format_index(stats.cpk, precision), index_grade(stats.cpk)))
    lines.append(_graded("Ppk", format_index(stats.ppk, precision), index_grade(stats.ppk)))
    return lines


def render_text_panel(ax: plt.Axes, lines: List[Line], fontsize=10, line_spacing=1.25) -> None:
    """Right-side text panel; index lines colored by grade."""
    ax.axis('off')
    y = 0.98
    dy = 0.045 * (fontsize/10) * (line_spacing/1.25)
    for text, color in lines:
        ax.text(0.02, y, text, fontsize=fontsize, family='monospace',
                va='top', ha='left', color=color or 'black', transform=ax.transAxes)
        y -= dy


def print_panel_lines(lines: List[Line]) -> None:
    """Console: index lines colored by grade."""
    for text, color in lines:
        code = _ANSI.get(color or "")
        if code:
            print(f"\033[{code}m{text}\033[0m")
        else:
            print(text)
