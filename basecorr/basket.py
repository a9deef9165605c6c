"""
Semi-analytic basket loss model.

Conditional on the common factor, defaults are independent and the
portfolio loss distribution is built by adding one name at a time to a
discrete loss grid. Distributions are computed on a time grid for all
quadrature nodes at once and then integrated over the factor.
"""
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .config import DEFAULT_QUADRATURE_POINTS, DEFAULT_STEP_SIZE
from .copula import BaseCopula, GaussianCopula
from .correlation import CorrelationTermStruct, SingleFactorCorrelation
from .curves import DateLike, DiscountCurve, SurvivalCurve, to_date, year_fraction

logger = logging.getLogger("BaseCorr.Basket")

Correlation = Union[float, SingleFactorCorrelation, CorrelationTermStruct]

_LEVEL_EPS = 1e-12


@dataclass(frozen=True)
class BasketSpec:
    """
    Immutable description of a basket.

    ``no_amortization`` and ``loss_level_add_complement`` together control
    recovery amortization: the notional of a tranche is written down from the
    top by recoveries only when amortization is on and complement loss levels
    (``1 - detachment``) are tracked.
    """
    as_of: pd.Timestamp
    maturity: pd.Timestamp
    survival_curves: Tuple[SurvivalCurve, ...]
    principals: Tuple[float, ...] = ()
    copula: BaseCopula = field(default_factory=GaussianCopula)
    step_size: float = DEFAULT_STEP_SIZE
    quadrature_points: int = DEFAULT_QUADRATURE_POINTS
    grid_size: int = 1                 # loss grid units per smallest name loss
    no_amortization: bool = True
    loss_level_add_complement: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'as_of', to_date(self.as_of))
        object.__setattr__(self, 'maturity', to_date(self.maturity))
        object.__setattr__(self, 'survival_curves', tuple(self.survival_curves))
        n = len(self.survival_curves)
        if n == 0:
            raise ValueError("Basket must contain at least one name")
        principals = tuple(float(p) for p in self.principals) or (1.0,) * n
        if len(principals) != n:
            raise ValueError(
                f"Principals (Length={len(principals)}) and survival curves (Length={n}) not match")
        if any(p < 0 for p in principals) or sum(principals) <= 0:
            raise ValueError(f"Invalid principals {principals}")
        object.__setattr__(self, 'principals', principals)
        if self.maturity <= self.as_of:
            raise ValueError(f"Maturity {self.maturity.date()} must be after as-of {self.as_of.date()}")
        if self.step_size <= 0 or self.quadrature_points < 1 or self.grid_size < 1:
            raise ValueError("Step size, quadrature points and grid size must be positive")

    def replace(self, **changes) -> 'BasketSpec':
        return dataclasses.replace(self, **changes)


def _units(amounts: np.ndarray, granularity: int) -> Tuple[np.ndarray, float]:
    """Integer grid units of each amount and the size of one unit."""
    positive = amounts[amounts > 0]
    if positive.size == 0:
        return np.zeros(amounts.size, dtype=int), 1.0
    unit = positive.min() / granularity
    units = np.where(amounts > 0, np.maximum(np.rint(amounts / unit), 1), 0).astype(int)
    return units, unit


def _convolve(q: np.ndarray, units: np.ndarray) -> np.ndarray:
    """
    Conditional loss distributions by recursion over names.

    Parameters
    ----------
    q : np.ndarray
        Shape (nodes, names, times) conditional default probabilities
    units : np.ndarray
        Grid units lost by each name on default

    Returns
    -------
    np.ndarray
        Shape (nodes, times, buckets)
    """
    n_nodes, _, n_times = q.shape
    dist = np.zeros((n_nodes, n_times, int(units.sum()) + 1))
    dist[..., 0] = 1.0
    for i, k in enumerate(units):
        if k == 0:
            continue
        p = q[:, i, :, None]
        shifted = np.zeros_like(dist)
        shifted[..., k:] = dist[..., :-k]
        dist = dist * (1.0 - p) + shifted * p
    return dist


class SemiAnalyticBasketPricer:
    """
    Loss distribution of a credit basket under a one-factor copula.

    Losses and amortizations are fractions of the total principal. Names
    whose survival curve is defaulted contribute realized loss and
    amortization and are excluded from the stochastic part.
    """

    def __init__(self, spec: BasketSpec, correlation: Correlation = 0.0):
        self.spec = spec
        if isinstance(correlation, (SingleFactorCorrelation, CorrelationTermStruct)):
            self.correlation = correlation
        else:
            self.correlation = SingleFactorCorrelation(self.names, float(correlation))
        self._maturity = spec.maturity
        self._quadrature_points = spec.quadrature_points

        principals = np.asarray(spec.principals, dtype=float)
        recovery = np.array([c.recovery_rate for c in spec.survival_curves])
        defaulted = np.array([c.defaulted for c in spec.survival_curves])
        total = principals.sum()

        self._total = total
        self._loss = principals * (1.0 - recovery) / total
        self._amort = principals * recovery / total
        self._alive = ~defaulted
        self._defaulted_principal = float(principals[defaulted].sum())
        self._previous_loss = float(self._loss[defaulted].sum())
        self._previous_amort = float(self._amort[defaulted].sum())

        self._loss_units, self._loss_unit = _units(self._loss[self._alive], spec.grid_size)
        self._amort_units, self._amort_unit = _units(self._amort[self._alive], spec.grid_size)
        self.reset()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    def reset(self) -> None:
        """Discard cached distributions."""
        self._times = None
        self._loss_pdf = None
        self._amort_pdf = None

    def set_factor(self, factor: float) -> None:
        """Set the factor of the tenor covering the current maturity."""
        self.correlation.set_factor_from(self._maturity, factor)
        self.reset()

    @property
    def factor(self) -> float:
        return self.correlation.factor_at(self._maturity)

    @property
    def maturity(self) -> pd.Timestamp:
        return self._maturity

    @maturity.setter
    def maturity(self, date: DateLike) -> None:
        date = to_date(date)
        if date <= self.spec.as_of:
            raise ValueError(f"Maturity {date.date()} must be after as-of {self.spec.as_of.date()}")
        if date != self._maturity:
            self._maturity = date
            self.reset()

    @property
    def quadrature_points(self) -> int:
        return self._quadrature_points

    @quadrature_points.setter
    def quadrature_points(self, points: int) -> None:
        if points != self._quadrature_points:
            self._quadrature_points = int(points)
            self.reset()

    @property
    def as_of(self) -> pd.Timestamp:
        return self.spec.as_of

    @property
    def names(self):
        return [c.name for c in self.spec.survival_curves]

    @property
    def total_principal(self) -> float:
        return self._total

    @property
    def defaulted_principal(self) -> float:
        return self._defaulted_principal

    @property
    def previous_loss(self) -> float:
        return self._previous_loss

    @property
    def previous_amortized(self) -> float:
        return self._previous_amort

    @property
    def amortizes(self) -> bool:
        return not self.spec.no_amortization and self.spec.loss_level_add_complement

    def duplicate(self, **spec_changes) -> 'SemiAnalyticBasketPricer':
        """New pricer from a modified snapshot of this basket."""
        spec = self.spec.replace(**{"maturity": self._maturity, **spec_changes})
        other = SemiAnalyticBasketPricer(spec, self.correlation.copy())
        other.quadrature_points = self._quadrature_points
        return other

    def with_correlation(self, correlation: Correlation) -> 'SemiAnalyticBasketPricer':
        other = SemiAnalyticBasketPricer(self.spec.replace(maturity=self._maturity), correlation)
        other.quadrature_points = self._quadrature_points
        return other

    # ------------------------------------------------------------------
    # Distributions
    # ------------------------------------------------------------------
    def time_grid(self) -> np.ndarray:
        """Year fractions from as-of to the current maturity, starting at 0."""
        T = year_fraction(self.spec.as_of, self._maturity)
        step = self.spec.step_size
        points = [np.arange(step, T, step), [T]]
        if isinstance(self.correlation, CorrelationTermStruct):
            tenors = np.array([year_fraction(self.spec.as_of, d) for d in self.correlation.dates])
            points.append(tenors[(tenors > 0) & (tenors < T)])
        grid = np.unique(np.concatenate(points))
        return np.r_[0.0, grid[grid > 1e-10]]

    def _factors(self, times: np.ndarray) -> np.ndarray:
        if isinstance(self.correlation, CorrelationTermStruct):
            tenors = np.array([year_fraction(self.spec.as_of, d) for d in self.correlation.dates])
            idx = np.searchsorted(tenors, times - 1e-10, side="left")
            return self.correlation.factors[np.minimum(idx, tenors.size - 1)]
        return np.full(times.shape, self.correlation.factor_at(self._maturity))

    def _ensure(self) -> None:
        if self._loss_pdf is not None:
            return
        times = self.time_grid()
        curves = [c for c, alive in zip(self.spec.survival_curves, self._alive) if alive]
        quad = self.spec.copula.quadrature(self._quadrature_points)

        if curves:
            p = np.array([c.default_probability(times) for c in curves])
            q = self.spec.copula.conditional_default_probability(p, self._factors(times), quad)
            loss = np.einsum('q,qtb->tb', quad.weights, _convolve(q, self._loss_units))
            amort = None
            if self.amortizes:
                amort = np.einsum('q,qtb->tb', quad.weights, _convolve(q, self._amort_units))
        else:
            loss = np.ones((times.size, 1))
            amort = np.ones((times.size, 1)) if self.amortizes else None

        self._times = times
        self._loss_pdf = loss
        self._amort_pdf = amort
        logger.debug(f"Loss distribution: {times.size} times, {loss.shape[1]} buckets, "
                     f"factor {self.factor:.6f}")

    def _loss_levels(self) -> np.ndarray:
        return self._previous_loss + self._loss_unit * np.arange(self._loss_pdf.shape[1])

    def _amort_levels(self) -> np.ndarray:
        return self._previous_amort + self._amort_unit * np.arange(self._amort_pdf.shape[1])

    def _at(self, date: DateLike, values: np.ndarray) -> float:
        t = year_fraction(self.spec.as_of, date)
        return float(np.interp(t, self._times, values))

    def distribution_times(self) -> np.ndarray:
        self._ensure()
        return self._times

    def expected_tranche_losses(self, attachment: float, detachment: float) -> np.ndarray:
        """Expected loss of ``[attachment, detachment]`` at each grid time."""
        self._ensure()
        payoff = np.clip(self._loss_levels() - attachment, 0.0, detachment - attachment)
        return self._loss_pdf @ payoff

    def expected_tranche_amortizations(self, attachment: float, detachment: float) -> np.ndarray:
        self._ensure()
        if self._amort_pdf is None:
            return np.zeros(self._times.size)
        payoff = np.clip(self._amort_levels() - (1.0 - detachment), 0.0, detachment - attachment)
        return self._amort_pdf @ payoff

    def accumulated_loss(self, date: DateLike, attachment: float, detachment: float) -> float:
        """Expected loss of a tranche by ``date``, realized losses included."""
        return self._at(date, self.expected_tranche_losses(attachment, detachment))

    def amortized_amount(self, date: DateLike, attachment: float, detachment: float) -> float:
        return self._at(date, self.expected_tranche_amortizations(attachment, detachment))

    def basket_loss(self, start: Optional[DateLike] = None, end: Optional[DateLike] = None) -> float:
        """Expected loss of the surviving names between two dates."""
        t0 = 0.0 if start is None else max(year_fraction(self.spec.as_of, start), 0.0)
        t1 = year_fraction(self.spec.as_of, self._maturity if end is None else end)
        loss = 0.0
        for c, lgd, alive in zip(self.spec.survival_curves, self._loss, self._alive):
            if alive:
                loss += lgd * float(c.default_probability(t1) - c.default_probability(t0))
        return loss

    def basket_loss_pv(self, discount_curve: DiscountCurve, end: Optional[DateLike] = None) -> float:
        """Discounted expected loss of the surviving names on the time grid."""
        times = self.time_grid()
        if end is not None:
            times = times[times <= year_fraction(self.spec.as_of, end) + 1e-10]
        el = np.zeros(times.size)
        for c, lgd, alive in zip(self.spec.survival_curves, self._loss, self._alive):
            if alive:
                el += lgd * c.default_probability(times)
        return float(np.sum(discount_curve.discount_factor(times[1:]) * np.diff(el)))

    def calc_loss_distribution(self, want_probability: bool, date: DateLike,
                               levels: Sequence[float]) -> np.ndarray:
        """
        Loss distribution at ``date`` evaluated at loss levels.

        Returns
        -------
        np.ndarray
            Shape (n, 2): the levels and either ``P[L <= level]`` or
            the expected base tranche loss ``E[min(L, level)]``
        """
        self._ensure()
        levels = np.asarray(levels, dtype=float)
        losses = self._loss_levels()
        if want_probability:
            payoff = (losses[None, :] <= levels[:, None] + _LEVEL_EPS).astype(float)
        else:
            payoff = np.minimum(losses[None, :], levels[:, None])
        by_time = self._loss_pdf @ payoff.T
        values = [self._at(date, by_time[:, j]) for j in range(levels.size)]
        return np.column_stack([levels, values])

    def adjust_tranche_levels(self, attachment: float, detachment: float) -> Tuple[float, float, float]:
        """
        Rescale tranche levels to the surviving portfolio.

        Returns
        -------
        tuple
            (attachment, detachment, realized tranche loss)
        """
        loss = min(max(self._previous_loss - attachment, 0.0), detachment - attachment)
        remaining = 1.0 - self._previous_loss - self._previous_amort
        if remaining <= 0.0:
            return 0.0, 0.0, loss

        def rescale(level: float) -> float:
            return min(max(level - self._previous_loss, 0.0), remaining) / remaining

        return rescale(attachment), rescale(detachment), loss

    def adjust_tranche_level(self, detachment: float) -> float:
        return self.adjust_tranche_levels(0.0, detachment)[1]

    def __repr__(self) -> str:
        return (f"SemiAnalyticBasketPricer(names={len(self.spec.survival_curves)}, "
                f"maturity={self._maturity.date()}, {self.correlation!r})")
