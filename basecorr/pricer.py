"""
Synthetic CDO tranche pricing on a semi-analytic basket.
"""
import dataclasses
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd

from .basket import SemiAnalyticBasketPricer
from .config import DEFAULT_PREMIUM_FREQUENCY
from .curves import DateLike, DiscountCurve, to_date, year_fraction


@dataclass(frozen=True)
class SyntheticCDO:
    """
    Tranche terms.

    ``premium`` is a running spread (decimal, per annum) and ``fee`` an upfront
    payment as a fraction of the tranche notional.
    """
    attachment: float
    detachment: float
    maturity: pd.Timestamp
    premium: float = 0.0
    fee: float = 0.0
    frequency: int = DEFAULT_PREMIUM_FREQUENCY
    name: str = ""

    def __post_init__(self):
        object.__setattr__(self, 'maturity', to_date(self.maturity))
        if not 0.0 <= self.attachment < self.detachment <= 1.0:
            raise ValueError(
                f"Invalid tranche [{self.attachment}, {self.detachment}]")
        if self.frequency < 1:
            raise ValueError(f"Invalid premium frequency {self.frequency}")

    @property
    def width(self) -> float:
        return self.detachment - self.attachment

    def replace(self, **changes) -> 'SyntheticCDO':
        return dataclasses.replace(self, **changes)


def premium_dates(as_of: DateLike, maturity: DateLike, frequency: int):
    """Regular payment dates rolled back from maturity, after ``as_of``."""
    as_of, maturity = to_date(as_of), to_date(maturity)
    step = pd.DateOffset(months=12 // frequency)
    dates = []
    k = 0
    while True:
        d = maturity - k * step
        if d <= as_of:
            break
        dates.append(d)
        k += 1
    return dates[::-1]


class SyntheticCDOPricer:
    """
    Prices one tranche against a basket.

    Legs are computed from the basket's expected tranche loss profile on its
    time grid; PVs are in currency units of ``notional``.
    """

    def __init__(self, cdo: SyntheticCDO, basket: SemiAnalyticBasketPricer,
                 discount_curve: DiscountCurve, notional: Optional[float] = None):
        if discount_curve is None:
            raise ValueError("Discount curve is required")
        if basket.maturity < cdo.maturity:
            raise ValueError(
                f"Basket maturity {basket.maturity.date()} is before tranche maturity "
                f"{cdo.maturity.date()}")
        self.cdo = cdo
        self.basket = basket
        self.discount_curve = discount_curve
        self.notional = basket.total_principal * cdo.width if notional is None else float(notional)

    @property
    def as_of(self) -> pd.Timestamp:
        return self.basket.as_of

    def with_cdo(self, cdo: Optional[SyntheticCDO] = None,
                 basket: Optional[SemiAnalyticBasketPricer] = None,
                 notional: Optional[float] = None) -> 'SyntheticCDOPricer':
        """New pricer sharing whatever is not replaced."""
        return SyntheticCDOPricer(cdo or self.cdo, basket or self.basket,
                                  self.discount_curve, notional)

    def base_tranche(self, detachment: Optional[float] = None) -> 'SyntheticCDOPricer':
        """First-loss pricer ``[0, detachment]`` keeping premium and fee."""
        d = self.cdo.detachment if detachment is None else detachment
        return self.with_cdo(self.cdo.replace(attachment=0.0, detachment=d),
                             notional=self.basket.total_principal * d)

    def reset(self) -> None:
        self.basket.reset()

    def _profile(self, times: np.ndarray) -> np.ndarray:
        """Expected tranche loss plus amortization, as a fraction of the width."""
        a, d = self.cdo.attachment, self.cdo.detachment
        grid = self.basket.distribution_times()
        written = self.basket.expected_tranche_losses(a, d) + \
            self.basket.expected_tranche_amortizations(a, d)
        return np.interp(times, grid, written) / self.cdo.width

    def _loss_profile(self, times: np.ndarray) -> np.ndarray:
        grid = self.basket.distribution_times()
        el = self.basket.expected_tranche_losses(self.cdo.attachment, self.cdo.detachment)
        return np.interp(times, grid, el) / self.cdo.width

    def protection_pv(self) -> float:
        """PV of the protection leg, negative from the protection buyer's view."""
        T = year_fraction(self.as_of, self.cdo.maturity)
        grid = self.basket.distribution_times()
        times = np.r_[grid[grid < T], T]
        el = self._loss_profile(times)
        df = self.discount_curve.discount_factor(times[1:])
        return -self.notional * float(np.sum(df * np.diff(el)))

    def risky_annuity(self) -> float:
        """Premium leg PV of a unit spread on a unit notional."""
        dates = premium_dates(self.as_of, self.cdo.maturity, self.cdo.frequency)
        if not dates:
            return 0.0
        ends = np.array([year_fraction(self.as_of, d) for d in dates])
        starts = np.r_[max(ends[0] - 1.0 / self.cdo.frequency, 0.0), ends[:-1]]
        accrual = ends - starts
        # outstanding notional averaged over each accrual period
        outstanding = 1.0 - 0.5 * (self._profile(starts) + self._profile(ends))
        df = self.discount_curve.discount_factor(ends)
        return float(np.sum(df * accrual * np.maximum(outstanding, 0.0)))

    def fee_pv(self) -> float:
        return self.notional * (self.cdo.fee + self.cdo.premium * self.risky_annuity())

    def flat_price(self) -> float:
        return self.protection_pv() + self.fee_pv()

    def break_even_premium(self) -> float:
        annuity = self.risky_annuity() * self.notional
        if annuity == 0.0:
            return 0.0
        return -(self.protection_pv() + self.cdo.fee * self.notional) / annuity

    @property
    def current_notional(self) -> float:
        """Notional left after realized losses and amortization."""
        a, d = self.cdo.attachment, self.cdo.detachment
        loss = min(max(self.basket.previous_loss - a, 0.0), d - a)
        amort = min(max(self.basket.previous_amortized - (1.0 - d), 0.0), d - a)
        return self.notional * (1.0 - (loss + amort) / self.cdo.width)

    def __repr__(self) -> str:
        return (f"SyntheticCDOPricer([{self.cdo.attachment}, {self.cdo.detachment}], "
                f"maturity={self.cdo.maturity.date()}, notional={self.notional})")
