"""
Interpolation of correlations over strikes and of values over time.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple, Union

import numpy as np
from scipy.interpolate import CubicSpline, PchipInterpolator, interp1d

from .config import CORRELATION_SANITY_BOUND
from .solver import SolverError


class CorrelationRangeError(RuntimeError):
    """Raised when an interpolated correlation falls outside the sanity band."""


class InterpMethod(Enum):
    LINEAR = "linear"
    FLAT = "flat"
    CUBIC = "cubic"
    PCHIP = "pchip"
    QUADRATIC = "quadratic"


class ExtrapMethod(Enum):
    CONST = "const"
    SMOOTH = "smooth"


@dataclass(frozen=True)
class Interp:
    """
    Interpolation rule: method inside the knots, extrapolation outside,
    and a clamp applied to every result.
    """
    method: InterpMethod = InterpMethod.LINEAR
    extrap: ExtrapMethod = ExtrapMethod.CONST
    lower: float = -np.inf
    upper: float = np.inf

    def build(self, x: Sequence[float], y: Sequence[float]) -> 'Interpolator':
        return Interpolator(self, x, y)


class Interpolator:
    """Callable interpolator over strictly increasing knots."""

    def __init__(self, interp: Interp, x: Sequence[float], y: Sequence[float]):
        self.interp = interp
        self.x = np.asarray(x, dtype=float)
        self.y = np.asarray(y, dtype=float)
        if self.x.ndim != 1 or self.x.shape != self.y.shape:
            raise ValueError(f"Knots x ({self.x.shape}) and y ({self.y.shape}) not match")
        if self.x.size == 0:
            raise ValueError("Cannot interpolate without knots")
        if np.any(np.diff(self.x) <= 0):
            raise ValueError(f"Knots must be strictly increasing: {self.x}")
        self._spline = self._fit()

    def _fit(self):
        n = self.x.size
        method = self.interp.method
        if method is InterpMethod.CUBIC and n >= 3:
            return CubicSpline(self.x, self.y, bc_type="natural")
        if method is InterpMethod.PCHIP and n >= 2:
            return PchipInterpolator(self.x, self.y, extrapolate=False)
        if method is InterpMethod.QUADRATIC and n >= 3:
            return interp1d(self.x, self.y, kind="quadratic", assume_sorted=True)
        return None

    def _inner(self, v: np.ndarray) -> np.ndarray:
        if self.x.size == 1:
            return np.full_like(v, self.y[0])
        if self._spline is not None:
            return np.asarray(self._spline(v), dtype=float)
        if self.interp.method is InterpMethod.FLAT:
            idx = np.searchsorted(self.x, v, side="right") - 1
            return self.y[np.clip(idx, 0, self.x.size - 1)]
        return np.interp(v, self.x, self.y)

    def _end_slopes(self) -> Tuple[float, float]:
        if self.x.size == 1 or self.interp.method is InterpMethod.FLAT:
            return 0.0, 0.0
        lo = (self.y[1] - self.y[0]) / (self.x[1] - self.x[0])
        hi = (self.y[-1] - self.y[-2]) / (self.x[-1] - self.x[-2])
        return lo, hi

    def __call__(self, v: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        scalar = np.ndim(v) == 0
        v = np.atleast_1d(np.asarray(v, dtype=float))
        out = np.empty_like(v)

        x0, xn = self.x[0], self.x[-1]
        below = v < x0
        above = v > xn
        inside = ~(below | above)
        out[inside] = self._inner(v[inside])

        if self.interp.extrap is ExtrapMethod.SMOOTH:
            lo, hi = self._end_slopes()
            out[below] = self.y[0] + lo * (v[below] - x0)
            out[above] = self.y[-1] + hi * (v[above] - xn)
        else:
            out[below] = self.y[0]
            out[above] = self.y[-1]

        out = np.clip(out, self.interp.lower, self.interp.upper)
        return float(out[0]) if scalar else out


def check_correlation(corr: float, strike: float) -> float:
    """Reject interpolated correlations outside [-2, 2]."""
    if corr < -CORRELATION_SANITY_BOUND or corr > CORRELATION_SANITY_BOUND:
        raise CorrelationRangeError(f"Invalid base correlation value {corr} at strike {strike}")
    return corr


class CorrelationEvaluator:
    """
    Interpolates correlations over a (strike, correlation) table.

    NaN correlations are dropped, strikes are optionally replaced by their
    complements ``1 - s``, and unordered strikes are stably sorted keeping the
    first of any duplicates. With ``on_factor`` the table holds square roots of
    correlations and results are squared after interpolation.
    """

    def __init__(self, interp: Optional[Interp], strikes: Optional[Sequence[float]],
                 correlations: Sequence[float], on_factor: bool = False,
                 complement: bool = False):
        corrs = np.asarray(correlations, dtype=float)
        mask = ~np.isnan(corrs)
        if strikes is not None:
            raw = np.asarray(strikes, dtype=float)
            if raw.shape != corrs.shape:
                raise ValueError(
                    f"Strikes (Length={raw.size}) and correlations (Length={corrs.size}) not match")
            mask &= ~np.isnan(raw)
        if not mask.any():
            raise SolverError("All correlations are NaN")

        values = corrs[mask]
        self.on_factor = on_factor
        self.values = np.sqrt(values) if on_factor else values

        self.strikes = None
        if strikes is not None:
            s = raw[mask]
            self.strikes = 1.0 - s if complement else s
            if not _increasing(self.strikes):
                self.strikes, self.values = _sort_strikes(self.strikes, self.values)

        self._fn = None
        if interp is not None and self.strikes is not None:
            self._fn = interp.build(self.strikes, self.values)

    def evaluate(self, strike: float) -> float:
        x = self._fn(strike)
        return x * x if self.on_factor else x

    __call__ = evaluate

    def get_factor(self, i: int) -> float:
        v = self.values[i]
        return v if self.on_factor else np.sqrt(v)

    def get_correlation(self, i: int) -> float:
        v = self.values[i]
        return v * v if self.on_factor else v

    def is_monotone(self) -> bool:
        """True when strikes and correlations move in the same direction throughout."""
        if self.strikes is None or self.strikes.size < 2:
            return False
        d = np.diff(self.strikes) * np.diff(self.values)
        return bool(np.all(d >= 0))


def _increasing(x: np.ndarray) -> bool:
    return x.size > 1 and bool(np.all(np.diff(x) > 0))


def _sort_strikes(strikes: np.ndarray, values: np.ndarray):
    order = np.argsort(strikes, kind="stable")
    s = strikes[order]
    v = values[order]
    keep = np.concatenate(([True], np.diff(s) > 0))
    return s[keep], v[keep]
