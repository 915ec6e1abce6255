"""
SPC Explorer Package
--------------------
Exploratory SPC analysis of measurement columns in Excel workbooks:
trend charts, normal-distribution overlays, control limits and
capability indices (Ca, Cp, Cpk, Ppk).

Modules:
- metrics: statistics engine (sigma within/between/overall, Ca/Cp/Cpk/Ppk, UCL/LCL, normal density)
- utils: cell coercion, display formatting and column helpers
- workbook: sheet loading into row records
- charts: filtering, recompute-on-change session, chart rendering and export
- panel: numeric summary lines and text panel
- memory: persisted selections between runs
- run_report: lightweight CLI entrypoint
"""

__version__ = "1.0.0"

from . import charts, metrics, panel, memory, utils, workbook
from .metrics import SpecLimits, StatisticsResult, compute_statistics, normal_density
from .utils import coerce_number
