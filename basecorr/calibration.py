"""
Implied correlation of tranche ladders.

Two bootstraps turn a ladder of market quoted tranches into base correlations:

- arbitrage free: each base tranche ``[0, d_i]`` is re-struck with the next
  tranche's premium and priced at its solved correlation; the resulting PV is
  the target of the next base tranche,
- protection matching: tranche correlations are implied first, then base
  correlations reproduce the cumulative protection PV of the ladder.

Failures do not raise; a ``CalibrationResult`` carries whatever was solved.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .config import (
    BASE_TRANCHE_ATTACHMENT,
    FULL_DETACHMENT,
    GENERAL_BRACKET_MAX,
    GENERAL_BRACKET_TOLERANCE,
    HIGH_FACTOR_QUADRATURE_POINTS,
    HIGH_FACTOR_THRESHOLD,
    INITIAL_SEARCH_POINTS,
    ZERO_ATTACHMENT,
)
from .pricer import SyntheticCDOPricer
from .solver import SolverError, brent, check_tolerance

logger = logging.getLogger("BaseCorr.Calibration")

Bracket = Tuple[float, float, float, float]


class BaseCorrelationMethod(Enum):
    ARBITRAGE_FREE = "ArbitrageFree"
    PROTECTION_MATCHING = "ProtectionMatching"


@dataclass
class CalibrationResult:
    """
    Outcome of a ladder calibration.

    Unsolved entries are NaN; ``error`` holds the solver message when the
    bootstrap stopped early.
    """
    correlations: np.ndarray
    tranche_correlations: np.ndarray
    error: Optional[str] = None
    elapsed: float = field(default=0.0, compare=False)

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def empty(cls, n: int) -> 'CalibrationResult':
        return cls(np.full(n, np.nan), np.full(n, np.nan))


# ----------------------------------------------------------------------
# Evaluation at a trial factor
# ----------------------------------------------------------------------
def _at_factor(pricer: SyntheticCDOPricer, factor: float, value: Callable[[], float]) -> float:
    basket = pricer.basket
    points = basket.quadrature_points
    if factor > HIGH_FACTOR_THRESHOLD and points < HIGH_FACTOR_QUADRATURE_POINTS:
        basket.quadrature_points = HIGH_FACTOR_QUADRATURE_POINTS
    basket.set_factor(factor)
    try:
        return value()
    finally:
        basket.quadrature_points = points


def evaluate_pv(pricer: SyntheticCDOPricer, factor: float) -> float:
    """Flat price of the tranche at a factor."""
    return _at_factor(pricer, factor, pricer.flat_price)


def evaluate_protection(pricer: SyntheticCDOPricer, factor: float) -> float:
    return _at_factor(pricer, factor, pricer.protection_pv)


# ----------------------------------------------------------------------
# Brackets
# ----------------------------------------------------------------------
def bracket_base_tranche(fn: Callable[[float], float], target: float,
                         tolerance_f: float = 0.0) -> Bracket:
    """
    Bracket the factor of a first-loss tranche.

    The flat price of an equity tranche rises with correlation, so the
    search starts at 0.4 and moves down to zero or up towards one. A target
    within ``tolerance_f`` beyond an end returns a degenerate bracket at
    that end.
    """
    x0 = 0.4
    f0 = fn(x0)
    if target <= f0:
        fl = fn(0.0)
        if target < fl:
            if fl - target < tolerance_f:
                return 0.0, fl, 0.0, fl
            raise SolverError(f"The premium too big (PV {fl} at zero correlation, target {target})")
        return 0.0, fl, x0, f0

    f8 = fn(0.8)
    if target <= f8:
        return x0, f0, 0.8, f8
    f99 = fn(0.99)
    if target <= f99:
        return 0.8, f8, 0.99, f99
    if target - f99 < tolerance_f:
        return 0.99, f99, 0.99, f99
    f1 = fn(1.0)
    if target - f1 < tolerance_f or target <= f1:
        return 0.99, f99, 1.0, f1
    raise SolverError(
        f"The premium too small or correlation is larger than 0.99 (PV {f1}, target {target})")


def _subdivide(fn, target, a, fa, b, fb, tolerance) -> Optional[Bracket]:
    if b - a < tolerance:
        return None
    m = 0.5 * (a + b)
    fm = fn(m)
    if (fa - target) * (fm - target) <= 0:
        return a, fa, m, fm
    if (fm - target) * (fb - target) <= 0:
        return m, fm, b, fb
    return (_subdivide(fn, target, a, fa, m, fm, tolerance)
            or _subdivide(fn, target, m, fm, b, fb, tolerance))


def bracket_general_tranche(fn: Callable[[float], float], target: float,
                            x_min: float = 0.0, x_max: float = GENERAL_BRACKET_MAX,
                            tolerance: float = GENERAL_BRACKET_TOLERANCE) -> Bracket:
    """
    Bracket a possibly non-monotone tranche price.

    Tries ``x_min``, ``x_min + 0.7 (x_max - x_min)`` and ``x_max``, then
    bisects the intervals recursively down to ``tolerance``.
    """
    xs = [x_min, x_min + 0.7 * (x_max - x_min), x_max]
    fs = [fn(x) for x in xs]
    pairs = list(zip(xs, fs, xs[1:], fs[1:]))
    for a, fa, b, fb in pairs:
        if (fa - target) * (fb - target) <= 0:
            return a, fa, b, fb
    for a, fa, b, fb in pairs:
        found = _subdivide(fn, target, a, fa, b, fb, tolerance)
        if found is not None:
            return found
    raise SolverError(
        f"Unable to bracket tranche value {target} in factors [{x_min}, {x_max}]")


# ----------------------------------------------------------------------
# Single tranche solves
# ----------------------------------------------------------------------
def _tolerances(pricer: SyntheticCDOPricer, tolerance_f: float, tolerance_x: float):
    return check_tolerance(tolerance_f, tolerance_x, pricer.basket.total_principal)


def implied_correlation_pv(target: float, pricer: SyntheticCDOPricer,
                           tolerance_f: float = 0.0, tolerance_x: float = 0.0) -> float:
    """
    Correlation at which the tranche flat price equals ``target``.

    Parameters
    ----------
    target : float
        Target flat price
    pricer : SyntheticCDOPricer
        Tranche pricer; its basket factor is modified
    tolerance_f, tolerance_x : float
        Solver tolerances, resolved from the basket principal when <= 0

    Returns
    -------
    float
        Implied correlation
    """
    tol_f, tol_x = _tolerances(pricer, tolerance_f, tolerance_x)

    def fn(x: float) -> float:
        return evaluate_pv(pricer, x)

    if pricer.cdo.attachment < BASE_TRANCHE_ATTACHMENT:
        a, fa, b, fb = bracket_base_tranche(fn, target, tol_f)
    else:
        a, fa, b, fb = bracket_general_tranche(fn, target)
    x = brent(fn, target, a, fa, b, fb, tol_f, tol_x)
    return x * x


def implied_protection_correlation(target: float, pricer: SyntheticCDOPricer,
                                   tolerance_f: float = 0.0, tolerance_x: float = 0.0) -> float:
    """Correlation at which the tranche protection PV equals ``target``."""
    tol_f, tol_x = _tolerances(pricer, tolerance_f, tolerance_x)

    def fn(x: float) -> float:
        return evaluate_protection(pricer, x)

    a, fa, b, fb = bracket_general_tranche(fn, target)
    x = brent(fn, target, a, fa, b, fb, tol_f, tol_x)
    return x * x


# ----------------------------------------------------------------------
# Ladders
# ----------------------------------------------------------------------
def validate_ladder(pricers: Sequence[SyntheticCDOPricer]) -> None:
    """Contiguous tranches from zero with one maturity and discount curve."""
    if len(pricers) == 0:
        raise ValueError("Must specify at least one tranche")
    first = pricers[0]
    if abs(first.cdo.attachment) > ZERO_ATTACHMENT:
        raise ValueError(f"First attachment must be 0, got {first.cdo.attachment}")
    for prev, p in zip(pricers, pricers[1:]):
        if abs(p.cdo.attachment - prev.cdo.detachment) > ZERO_ATTACHMENT:
            raise ValueError(
                f"Tranches not contiguous: detachment {prev.cdo.detachment} followed by "
                f"attachment {p.cdo.attachment}")
        if p.cdo.maturity != first.cdo.maturity:
            raise ValueError(
                f"Tranches with different maturities {first.cdo.maturity.date()} "
                f"and {p.cdo.maturity.date()}")
        if p.discount_curve is not first.discount_curve:
            raise ValueError("Tranches must share one discount curve")


def implied_correlation(pricers: Sequence[SyntheticCDOPricer],
                        method: BaseCorrelationMethod = BaseCorrelationMethod.ARBITRAGE_FREE,
                        tolerance_f: float = 0.0, tolerance_x: float = 0.0) -> CalibrationResult:
    """
    Base correlations of a ladder of market quoted tranches.

    Parameters
    ----------
    pricers : sequence of SyntheticCDOPricer
        Contiguous tranches starting at zero, each with its market premium/fee
    method : BaseCorrelationMethod
        Bootstrap method
    tolerance_f, tolerance_x : float
        Solver tolerances

    Returns
    -------
    CalibrationResult
    """
    validate_ladder(pricers)
    bases = [p.base_tranche() for p in pricers]
    return implied_base_correlations(bases, pricers, method, tolerance_f, tolerance_x)


def implied_base_correlations(base_pricers: Sequence[SyntheticCDOPricer],
                              tranche_pricers: Optional[Sequence[SyntheticCDOPricer]] = None,
                              method: BaseCorrelationMethod = BaseCorrelationMethod.ARBITRAGE_FREE,
                              tolerance_f: float = 0.0,
                              tolerance_x: float = 0.0,
                              seed: Optional[Sequence[float]] = None) -> CalibrationResult:
    """
    Base correlations from ladders of base tranche pricers.

    ``base_pricers[i]`` prices ``[0, d_i]`` with the premium and fee of
    tranche ``i``. Protection matching also needs the tranche pricers.
    The leading non-NaN entries of ``seed`` are kept by the bottom-up
    arbitrage free bootstrap, which resumes after them.
    """
    start = time.perf_counter()
    if method is BaseCorrelationMethod.PROTECTION_MATCHING:
        if tranche_pricers is None or len(tranche_pricers) != len(base_pricers):
            raise ValueError("Protection matching requires one tranche pricer per base tranche")
        result = _protection_matching(base_pricers, tranche_pricers, tolerance_f, tolerance_x)
    elif any(p.cdo.detachment > FULL_DETACHMENT for p in base_pricers):
        result = _arbitrage_free_top_down(base_pricers, tolerance_f, tolerance_x)
    else:
        result = _arbitrage_free_bottom_up(base_pricers, tolerance_f, tolerance_x, seed)
    result.elapsed = time.perf_counter() - start

    solved = int(np.sum(~np.isnan(result.correlations)))
    if result.failed:
        logger.warning(f"{method.value} calibration stopped after {solved} of "
                       f"{len(base_pricers)} tranches: {result.error}")
    else:
        logger.info(f"{method.value} calibration of {len(base_pricers)} tranches "
                    f"in {result.elapsed:.3f}s")
    return result


def _restruck(pricer: SyntheticCDOPricer, source: SyntheticCDOPricer) -> SyntheticCDOPricer:
    """Base tranche re-struck with the premium and fee of another tranche."""
    return pricer.with_cdo(pricer.cdo.replace(premium=source.cdo.premium, fee=source.cdo.fee),
                           notional=pricer.notional)


def _arbitrage_free_bottom_up(bases, tolerance_f, tolerance_x, seed=None) -> CalibrationResult:
    n = len(bases)
    result = CalibrationResult.empty(n)
    start = 0
    for corr in (seed if seed is not None else [])[:n]:
        if math.isnan(corr):
            break
        result.correlations[start] = corr
        start += 1

    last_pv = 0.0
    if 0 < start < n:
        last_pv = evaluate_pv(_restruck(bases[start - 1], bases[start]),
                              math.sqrt(result.correlations[start - 1]))
    for i in range(start, n):
        base = bases[i]
        try:
            corr = implied_correlation_pv(last_pv, base, tolerance_f, tolerance_x)
        except SolverError as e:
            result.error = f"Tranche [0, {base.cdo.detachment}]: {e}"
            break
        result.correlations[i] = corr
        logger.debug(f"Base [0, {base.cdo.detachment}] correlation {corr:.6f}")
        if i + 1 < n:
            last_pv = evaluate_pv(_restruck(base, bases[i + 1]), math.sqrt(corr))
    result.tranche_correlations[0] = result.correlations[0]
    return result


def _arbitrage_free_top_down(bases, tolerance_f, tolerance_x) -> CalibrationResult:
    n = len(bases)
    result = CalibrationResult.empty(n)
    last = bases[-1]
    last_pv = evaluate_pv(last, last.basket.factor)
    for i in range(n - 2, -1, -1):
        base = bases[i]
        try:
            corr = implied_correlation_pv(last_pv, _restruck(base, bases[i + 1]),
                                          tolerance_f, tolerance_x)
        except SolverError as e:
            result.error = f"Tranche [0, {base.cdo.detachment}]: {e}"
            break
        result.correlations[i] = corr
        logger.debug(f"Base [0, {base.cdo.detachment}] correlation {corr:.6f}")
        last_pv = evaluate_pv(base, math.sqrt(corr))
    return result


def _grid_factors() -> np.ndarray:
    return np.sqrt(np.arange(INITIAL_SEARCH_POINTS + 1) / INITIAL_SEARCH_POINTS)


def _table_extreme(values: np.ndarray, target: float, tolerance: float) -> Optional[float]:
    """
    Correlation of the table end point when the target is at or beyond it.

    Raises
    ------
    SolverError
        The target lies outside the table by more than ``tolerance``
    """
    imax, imin = int(np.argmax(values)), int(np.argmin(values))
    if target >= values[imax]:
        if target - values[imax] < tolerance:
            return imax / INITIAL_SEARCH_POINTS
        raise SolverError("The break even correlation cannot be found, "
                          "possibly because the premiums are too big")
    if target <= values[imin]:
        if values[imin] - target < tolerance:
            return imin / INITIAL_SEARCH_POINTS
        raise SolverError("The break even correlation cannot be found, "
                          "possibly because the premiums are too small")
    return None


def _table_bracket(values: np.ndarray, target: float) -> int:
    for k in range(values.size - 1):
        if (values[k] - target) * (values[k + 1] - target) <= 0:
            return k
    raise SolverError(f"Unable to bracket target {target} in the search table")


def estimate_correlation(fn: Callable[[float], float], target: float,
                         tolerance_f: float, tolerance_x: float) -> float:
    """
    Solve ``fn(x) = target`` from a coarse table of factors, refined by Brent.
    """
    factors = _grid_factors()
    values = np.array([fn(x) for x in factors])
    extreme = _table_extreme(values, target, tolerance_f)
    if extreme is not None:
        return extreme
    k = _table_bracket(values, target)
    x = brent(fn, target, factors[k], values[k], factors[k + 1], values[k + 1],
              tolerance_f, tolerance_x)
    return x * x


def _bisect_table(fn: Callable[[float], float], target: float,
                  tolerance_f: float, tolerance_x: float) -> float:
    factors = _grid_factors()
    values = np.array([fn(x) for x in factors])
    extreme = _table_extreme(values, target, tolerance_f)
    if extreme is not None:
        return extreme
    k = _table_bracket(values, target)
    xl, fl, xh, fh = factors[k], values[k], factors[k + 1], values[k + 1]
    while abs(xh - xl) > tolerance_x and abs(fh - fl) >= tolerance_f:
        xm = 0.5 * (xl + xh)
        fm = fn(xm)
        if (fl - target) * (fm - target) <= 0:
            xh, fh = xm, fm
        else:
            xl, fl = xm, fm
    xm = 0.5 * (xl + xh)
    return xm * xm


def _protection_matching(bases, tranches, tolerance_f, tolerance_x) -> CalibrationResult:
    n = len(bases)
    result = CalibrationResult.empty(n)
    tol_f, tol_x = _tolerances(bases[0], tolerance_f, tolerance_x)

    protections: List[float] = []
    try:
        for i, tranche in enumerate(tranches):
            corr = estimate_correlation(lambda x, p=tranche: evaluate_pv(p, x), 0.0, tol_f, tol_x)
            result.tranche_correlations[i] = corr
            protections.append(evaluate_protection(tranche, math.sqrt(corr)))
    except SolverError as e:
        result.error = f"Tranche {len(protections)}: {e}"

    # base tranches below the first failure are still matched
    cumulative = np.cumsum(protections)
    for i in range(len(protections)):
        if i == 0:
            result.correlations[0] = result.tranche_correlations[0]
            continue
        base = bases[i]
        try:
            corr = _bisect_table(lambda x, p=base: evaluate_protection(p, x),
                                 cumulative[i], tol_f, tol_x)
        except SolverError as e:
            if result.error is None:
                result.error = f"Base tranche [0, {base.cdo.detachment}]: {e}"
            break
        result.correlations[i] = corr
    for base, corr in zip(bases, result.correlations):
        if not math.isnan(corr):
            base.basket.set_factor(math.sqrt(corr))
    return result


# ----------------------------------------------------------------------
# Tranche correlation from two base correlations
# ----------------------------------------------------------------------
def tranche_correlation(pricer: SyntheticCDOPricer, method: BaseCorrelationMethod,
                        ap_correlation: float, dp_correlation: float,
                        tolerance_f: float = 0.0, tolerance_x: float = 0.0) -> float:
    """
    Single correlation pricing ``[a, d]`` consistently with base correlations
    at its attachment and detachment.

    Parameters
    ----------
    pricer : SyntheticCDOPricer
        Tranche pricer
    method : BaseCorrelationMethod
        Reconciles premiums (arbitrage free) or protection PVs
    ap_correlation, dp_correlation : float
        Base correlations of ``[0, a]`` and ``[0, d]``

    Returns
    -------
    float
        Tranche correlation
    """
    if math.isnan(dp_correlation):
        return implied_correlation_pv(0.0, pricer, tolerance_f, tolerance_x)

    total = pricer.basket.total_principal
    a, d = pricer.cdo.attachment, pricer.cdo.detachment
    unit = pricer.cdo.replace(premium=1.0, fee=0.0)

    def legs(level: float, corr: float) -> Tuple[float, float]:
        if level <= ZERO_ATTACHMENT:
            return 0.0, 0.0
        base = pricer.with_cdo(unit.replace(attachment=0.0, detachment=level),
                               notional=total * level)
        factor = math.sqrt(corr)
        return evaluate_protection(base, factor), _at_factor(base, factor, base.fee_pv)

    prot1, fee1 = legs(d, dp_correlation)
    prot0, fee0 = legs(a, ap_correlation)
    protection = prot1 - prot0

    if method is BaseCorrelationMethod.PROTECTION_MATCHING:
        scaled = pricer.with_cdo(notional=total * (d - a))
        return implied_protection_correlation(protection, scaled, tolerance_f, tolerance_x)

    premium = -protection / (fee1 - fee0) if fee1 != fee0 else 0.0
    fee = 0.0
    if premium < 0.0:
        premium = 0.0
        fee = -protection / (total * (d - a))
    synthetic = pricer.with_cdo(pricer.cdo.replace(premium=premium, fee=fee),
                                notional=total * (d - a))
    return implied_correlation_pv(0.0, synthetic, tolerance_f, tolerance_x)
