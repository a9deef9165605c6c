"""
One-dimensional root finding for correlation factors.

The search variable is the factor ``x = sqrt(correlation)``. Brent's method
(inverse quadratic interpolation with bisection fallback) refines a bracket
found either from the monotone (strike, correlation) table or by expanding
an initial guess within the allowed domain.
"""
import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Optional, Tuple

import numpy as np
from scipy.optimize import brentq

from .config import (
    BRACKET_STEP,
    BRACKET_STEPS,
    FULL_SEARCH_START,
    MAX_ITERATIONS,
    MAX_TOLERANCE_F,
    MAX_TOLERANCE_X,
    MIN_FACTOR,
)

logger = logging.getLogger("BaseCorr.Solver")

Fn = Callable[[float], float]

_MIN_RTOL = 4 * np.finfo(float).eps


class SolverError(RuntimeError):
    """Raised when a root cannot be bracketed or located."""


@dataclass(frozen=True)
class SolverConfig:
    """
    Per-calibration root finder settings.

    Non-positive tolerances are resolved from the basket principal by
    ``check_tolerance``.
    """
    tolerance_f: float = 0.0
    tolerance_x: float = 0.0
    max_iterations: int = MAX_ITERATIONS
    use_bracket_index: bool = True   # binary search on monotone tables
    retry_full_domain: bool = True

    def resolved(self, total_principal: float) -> 'SolverConfig':
        tol_f, tol_x = check_tolerance(self.tolerance_f, self.tolerance_x, total_principal)
        return replace(self, tolerance_f=tol_f, tolerance_x=tol_x)


def check_tolerance(tolerance_f: float, tolerance_x: float,
                    total_principal: float) -> Tuple[float, float]:
    """
    Derive default tolerances.

    Parameters
    ----------
    tolerance_f : float
        Function tolerance; when <= 0 it becomes ``1/|principal|`` capped at 1e-6
    tolerance_x : float
        Argument tolerance; when <= 0 it becomes ``100 * tolerance_f`` capped at 1e-4
    total_principal : float
        Total principal of the basket

    Returns
    -------
    tuple
        (tolerance_f, tolerance_x)
    """
    if tolerance_f <= 0:
        tolerance_f = 1.0 / abs(total_principal) if total_principal else MAX_TOLERANCE_F
        tolerance_f = min(tolerance_f, MAX_TOLERANCE_F)
    if tolerance_x <= 0:
        tolerance_x = min(100 * tolerance_f, MAX_TOLERANCE_X)
    return tolerance_f, tolerance_x


def brent(fn: Fn, target: float,
          a: float, fa: float, b: float, fb: float,
          tolerance_f: float, tolerance_x: float,
          max_iterations: int = MAX_ITERATIONS) -> float:
    """
    Brent's method on a bracket ``[a, b]`` with known values ``fa, fb``.

    An end point within ``tolerance_f`` of the target is returned as is.
    Otherwise ``brentq`` stops once the bracket is below
    ``2*tol_x*|x| + tol_f/2``.
    """
    fa -= target
    fb -= target
    if abs(fa) <= tolerance_f:
        return a
    if abs(fb) <= tolerance_f:
        return b
    if fa * fb > 0:
        raise SolverError(f"Root is not bracketed by [{a}, {b}] (f = {fa}, {fb})")

    x, info = brentq(lambda v: fn(v) - target, a, b,
                     xtol=0.5 * tolerance_f,
                     rtol=max(2.0 * tolerance_x, _MIN_RTOL),
                     maxiter=max_iterations, full_output=True, disp=False)
    if not info.converged:
        logger.warning(f"Brent reached {max_iterations} iterations at x={x} ({info.flag})")
    return float(x)


class Brent:
    """Bounded Brent solver with Numerical Recipes style bracket expansion."""

    def __init__(self, lower: float, upper: float,
                 tolerance_f: float, tolerance_x: float,
                 max_iterations: int = MAX_ITERATIONS):
        if lower >= upper:
            raise ValueError(f"Invalid bounds (lower ({lower}) >= upper ({upper}))")
        self.lower = lower
        self.upper = upper
        self.tolerance_f = tolerance_f
        self.tolerance_x = tolerance_x
        self.max_iterations = max_iterations

    def _clamp(self, x: float) -> float:
        return min(max(x, self.lower), self.upper)

    def find_bracket(self, fn: Fn, target: float, x_lower: float, x_upper: float,
                     steps: int = BRACKET_STEPS) -> Tuple[float, float, float, float]:
        """
        Expand ``[x_lower, x_upper]`` until ``fn - target`` changes sign.

        Returns
        -------
        tuple
            (x_lower, f_lower, x_upper, f_upper) with f values relative to
            ``target``; equal end points mean a solution was hit directly.
        """
        if x_lower >= x_upper:
            raise ValueError(f"Invalid bracket (lower ({x_lower}) >= upper ({x_upper}))")

        f1 = fn(x_lower) - target
        f2 = fn(x_upper) - target
        for _ in range(steps):
            if f1 * f2 <= 0.0:
                return x_lower, f1, x_upper, f2
            if abs(f1) < abs(f2):
                if abs(f1) <= self.tolerance_f:
                    return x_lower, f1, x_lower, f1
                if x_lower <= self.lower:
                    break
                x_lower = self._clamp(x_lower + BRACKET_STEP * (x_lower - x_upper))
                f1 = fn(x_lower) - target
            else:
                if abs(f2) <= self.tolerance_f:
                    return x_upper, f2, x_upper, f2
                if x_upper >= self.upper:
                    break
                x_upper = self._clamp(x_upper + BRACKET_STEP * (x_upper - x_lower))
                f2 = fn(x_upper) - target

        logger.debug(f"Unable to bracket: x_lower {x_lower} ({f1 + target}), "
                     f"x_upper {x_upper} ({f2 + target})")
        raise SolverError("Cannot bracket a solution")

    def solve(self, fn: Fn, target: float, x0: Optional[float] = None,
              x_lower: Optional[float] = None, x_upper: Optional[float] = None) -> float:
        """
        Solve ``fn(x) = target`` starting from a guess or from a bracket.
        """
        if x_lower is not None and x_upper is not None:
            for name, x in (("Lower", x_lower), ("Upper", x_upper)):
                if x < self.lower or x > self.upper:
                    raise SolverError(
                        f"{name} ({x}) bracket out of bounds ({self.lower}-{self.upper})")
        else:
            x0 = 0.5 * (self.lower + self.upper) if x0 is None else self._clamp(x0)
            delta = max(abs(x0) * 0.1, self.tolerance_x * 1e4)
            x_lower = max(self.lower, x0 - delta)
            x_upper = min(self.upper, x0 + delta)

        xl, fl, xh, fh = self.find_bracket(fn, target, x_lower, x_upper)
        if xl == xh:
            return xl
        return brent(fn, target, xl, fl + target, xh, fh + target,
                     self.tolerance_f, self.tolerance_x, self.max_iterations)


def bracket_index(evaluator, strike_fn: Fn, tolerance: float) -> int:
    """
    Binary search a monotone table for the knot interval holding the root.

    Returns ``-(i + 1)`` when knot ``i`` solves the equation, otherwise the
    index ``i`` such that the root lies between knots ``i - 1`` and ``i``
    (``0`` below the first knot, ``n`` above the last).
    """
    strikes = evaluator.strikes
    last = len(strikes) - 1
    low, high, idx = 0, last, 0

    while True:
        idx = (low + high) // 2
        s = strike_fn(evaluator.get_factor(idx))
        tol = (1 + abs(strikes[idx])) * tolerance
        if s > strikes[idx] + tol:
            low = idx
        elif s < strikes[idx] - tol:
            high = idx
        else:
            return -(idx + 1)
        if high - low <= 1:
            break

    if idx != low and low == 0:
        s = strike_fn(evaluator.get_factor(low))
        tol = (1 + abs(strikes[low])) * tolerance
        if s > strikes[low] + tol:
            return high
        if s < strikes[low] - tol:
            return low
        return -(low + 1)
    if idx != high and high == last:
        s = strike_fn(evaluator.get_factor(high))
        tol = (1 + abs(strikes[high])) * tolerance
        if s > strikes[high] + tol:
            return high + 1
        if s < strikes[high] - tol:
            return high
        return -(high + 1)
    return high


def solve_strike(evaluator, strike_fn: Fn, config: SolverConfig,
                 upper_bound: float) -> float:
    """
    Find the correlation ``c`` with ``evaluator(strike_fn(sqrt(c))) == c``.

    Parameters
    ----------
    evaluator : CorrelationEvaluator
        The smile's (strike, correlation) table
    strike_fn : callable
        Maps a trial factor to a strike
    config : SolverConfig
        Resolved tolerances and bracket strategy
    upper_bound : float
        Largest admissible correlation

    Returns
    -------
    float
        The solved correlation (factor squared)
    """
    tol_f, tol_x = config.tolerance_f, config.tolerance_x
    min_factor = MIN_FACTOR
    max_factor = math.sqrt(upper_bound)
    low, high = min_factor, max_factor

    def evaluate(x: float) -> float:
        if math.isnan(x):
            return math.nan
        return evaluator.evaluate(strike_fn(x)) - x * x

    if config.use_bracket_index and evaluator.is_monotone():
        idx = bracket_index(evaluator, strike_fn, min(tol_x, tol_f))
        if idx < 0:
            return evaluator.get_correlation(-idx - 1)
        n = len(evaluator.strikes)
        if idx >= n:
            low, high = evaluator.get_factor(n - 1), max_factor
        elif idx == 0:
            low, high = min_factor, evaluator.get_factor(0)
        else:
            low, high = evaluator.get_factor(idx - 1), evaluator.get_factor(idx)
        logger.debug(f"Bracket index {idx}: factors [{low}, {high}]")

        # flat region of the smile
        if low >= high - tol_x:
            x = 0.5 * (low + high)
            if abs(evaluate(x)) <= tol_f:
                return x * x
            low, high = min_factor, max_factor

    if (low > min_factor or high < max_factor) and low < high:
        try:
            rf = Brent(low, high, tol_f, tol_x, config.max_iterations)
            x = rf.solve(evaluate, 0.0, x_lower=low, x_upper=high)
            return x * x
        except SolverError as e:
            if not config.retry_full_domain:
                raise
            logger.debug(f"Bracketed search failed ({e}); trying the full domain")

    rf = Brent(min_factor, max_factor, tol_f, tol_x, config.max_iterations)
    x = rf.solve(evaluate, 0.0, x0=FULL_SEARCH_START)
    return x * x
