"""
Statistical helpers: mean, overall/within/between sigma, Ca/Cp/Cpk/Ppk,
control limits, and the normal density used for comparison curves.
"""

from dataclasses import dataclass, asdict
from typing import Optional, Sequence, Tuple, List, Dict, Any
import math
import numpy as np

# d2 for a moving range of 2 consecutive observations
D2_MR2 = 1.128


@dataclass(frozen=True)
class SpecLimits:
    """Target / USL / LSL; None means the limit is not set."""
    target: Optional[float] = None
    usl: Optional[float] = None
    lsl: Optional[float] = None

    @property
    def has_usl(self) -> bool:
        return self.usl is not None and not math.isnan(self.usl)

    @property
    def has_lsl(self) -> bool:
        return self.lsl is not None and not math.isnan(self.lsl)

    @property
    def has_target(self) -> bool:
        return self.target is not None and not math.isnan(self.target)


@dataclass(frozen=True)
class StatisticsResult:
    n: int
    mean: float
    stdev_overall: float
    stdev_within: float
    stdev_between: float
    ca: Optional[float]
    cp: Optional[float]
    cpk: Optional[float]
    ppk: Optional[float]
    ucl: float
    lcl: float

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


EMPTY_RESULT = StatisticsResult(
    n=0, mean=0.0,
    stdev_overall=0.0, stdev_within=0.0, stdev_between=0.0,
    ca=None, cp=None, cpk=None, ppk=None,
    ucl=0.0, lcl=0.0,
)


def _div(num: float, den: float) -> float:
    # x/0 -> signed inf, 0/0 -> nan; never raises
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.divide(np.float64(num), np.float64(den)))


def _min(a: float, b: float) -> float:
    # nan-propagating, unlike builtin min()
    return float(np.minimum(a, b))


def compute_statistics(values: Sequence[float], specs: Optional[SpecLimits] = None) -> StatisticsResult:
    """
    Compute dispersion, capability indices and control limits.

    `values` must already be coerced and in production order; the
    within-subgroup sigma comes from successive moving ranges, so
    reordering the input changes it. Degenerate inputs (empty, single
    point, zero variance) map to defined results and never raise.
    """
    specs = specs or SpecLimits()
    y = np.asarray(values, dtype=float)
    n = int(y.size)
    if n == 0:
        return EMPTY_RESULT

    mean = float(y.mean())
    stdev_overall = float(y.std(ddof=1)) if n > 1 else 0.0

    if n > 1:
        mr_bar = float(np.abs(np.diff(y)).mean())
        stdev_within = mr_bar / D2_MR2
    else:
        stdev_within = stdev_overall

    stdev_between = math.sqrt(max(0.0, stdev_overall ** 2 - stdev_within ** 2))

    ca = cp = cpk = ppk = None
    usl, lsl = specs.usl, specs.lsl
    if specs.has_usl and specs.has_lsl:
        tol = usl - lsl
        center = (usl + lsl) / 2
        ca = _div(mean - center, tol / 2)
        cp = _div(tol, 6 * stdev_within)
        cpk = _min(_div(usl - mean, 3 * stdev_within), _div(mean - lsl, 3 * stdev_within))
        ppk = _min(_div(usl - mean, 3 * stdev_overall), _div(mean - lsl, 3 * stdev_overall))
    elif specs.has_usl:
        cpk = _div(usl - mean, 3 * stdev_within)
        ppk = _div(usl - mean, 3 * stdev_overall)
    elif specs.has_lsl:
        cpk = _div(mean - lsl, 3 * stdev_within)
        ppk = _div(mean - lsl, 3 * stdev_overall)

    return StatisticsResult(
        n=n,
        mean=mean,
        stdev_overall=stdev_overall,
        stdev_within=stdev_within,
        stdev_between=stdev_between,
        ca=ca, cp=cp, cpk=cpk, ppk=ppk,
        ucl=mean + 3 * stdev_within,
        lcl=mean - 3 * stdev_within,
    )


def normal_density(x, mean: float, std_dev: float):
    """Gaussian PDF at x (scalar or array). std_dev == 0 gives 0."""
    if std_dev == 0:
        return np.zeros_like(x, dtype=float) if np.ndim(x) else 0.0
    z = (np.asarray(x, dtype=float) - mean) ** 2 / (2 * std_dev ** 2)
    pdf = np.exp(-z) / (std_dev * math.sqrt(2 * math.pi))
    return pdf if np.ndim(pdf) else float(pdf)


def normal_curve(values: Sequence[float], mean: float, sigma: float,
                 points: int = 101) -> Tuple[np.ndarray, np.ndarray]:
    """Curve over [min(values, mean-4σ), max(values, mean+4σ)]; no values -> mean±4σ."""
    lo = min(list(values) + [mean - 4 * sigma])
    hi = max(list(values) + [mean + 4 * sigma])
    xs = np.linspace(lo, hi, points)
    return xs, normal_density(xs, mean, sigma)


SIGMA_LABELS = ["-3σ", "-2σ", "-1σ", "Mean", "+1σ", "+2σ", "+3σ"]


def sigma_markers(mean: float, sigma: float) -> List[Tuple[str, float, float]]:
    """(label, x, density) at mean + k*sigma for k in -3..3."""
    out = []
    for label, k in zip(SIGMA_LABELS, range(-3, 4)):
        x = mean + k * sigma
        out.append((label, x, normal_density(x, mean, sigma)))
    return out


# ---------- grading ----------
def index_grade(val: Optional[float]) -> Optional[str]:
    if val is None or math.isnan(val): return None
    if val >= 1.67: return "Excellent"
    if val >= 1.33: return "Good"
    if val >= 1.0:  return "Acceptable"
    return "Poor"


def ca_grade(ca: Optional[float]) -> Optional[str]:
    if ca is None or math.isnan(ca): return None
    pct = abs(ca * 100)
    if pct <= 12.5: return "A"
    if pct <= 25:   return "B"
    if pct <= 50:   return "C"
    return "D"


GRADE_COLORS = {
    "Excellent": "green", "A": "green",
    "Good": "blue", "B": "blue",
    "Acceptable": "darkgoldenrod", "C": "darkgoldenrod",
    "Poor": "red", "D": "red",
}
