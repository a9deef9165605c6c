"""
Discount, survival and time-interpolation curves.
"""
from bisect import bisect_left
from datetime import date
from typing import List, Optional, Union

import numpy as np
import pandas as pd

from .bootstrapper import BootStrapper
from .config import DAYS_PER_YEAR, DEFAULT_RECOVERY_RATE
from .interp import Interp

DateLike = Union[str, date, pd.Timestamp, np.datetime64]


def to_date(date: DateLike) -> pd.Timestamp:
    return pd.Timestamp(date).normalize()


def year_fraction(start: DateLike, end: DateLike) -> float:
    """Actual/365 year fraction between two dates (negative if end < start)."""
    return (to_date(end) - to_date(start)).days / DAYS_PER_YEAR


class DiscountCurve:
    """Flat, continuously compounded discount curve."""

    def __init__(self, as_of: DateLike, rate: float):
        self.as_of = to_date(as_of)
        self.rate = float(rate)

    def discount_factor(self, t: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        return np.exp(-self.rate * np.asarray(t, dtype=float))

    def df(self, date: DateLike) -> float:
        return float(self.discount_factor(year_fraction(self.as_of, date)))

    def __repr__(self) -> str:
        return f"DiscountCurve(as_of={self.as_of.date()}, rate={self.rate})"


class SurvivalCurve:
    """
    Piecewise-constant hazard rate curve for one reference entity.

    Hazard ``h_i`` applies on ``(T_{i-1}, T_i]``; the last rate is held flat
    beyond the last tenor. A defaulted curve has zero survival everywhere.
    """

    def __init__(self, as_of: DateLike, tenors: np.ndarray, hazard_rates: np.ndarray,
                 recovery_rate: float = DEFAULT_RECOVERY_RATE, name: str = "",
                 defaulted: bool = False):
        self.as_of = to_date(as_of)
        self.tenors = np.atleast_1d(np.asarray(tenors, dtype=float))
        self.hazard_rates = np.atleast_1d(np.asarray(hazard_rates, dtype=float))
        if self.tenors.shape != self.hazard_rates.shape:
            raise ValueError(
                f"Tenors ({self.tenors.size}) and hazard rates ({self.hazard_rates.size}) not match")
        if np.any(self.hazard_rates < 0):
            raise ValueError(f"Negative hazard rate in {self.hazard_rates}")
        self.recovery_rate = float(recovery_rate)
        self.name = name
        self.defaulted = defaulted

    @classmethod
    def flat(cls, as_of: DateLike, hazard_rate: float,
             recovery_rate: float = DEFAULT_RECOVERY_RATE, name: str = "") -> 'SurvivalCurve':
        return cls(as_of, [1.0], [hazard_rate], recovery_rate, name)

    @classmethod
    def from_spreads(cls, as_of: DateLike, tenors: np.ndarray, spreads: np.ndarray,
                     recovery_rate: float = DEFAULT_RECOVERY_RATE,
                     name: str = "") -> 'SurvivalCurve':
        """Bootstrap from par spreads in basis points."""
        haz = BootStrapper(tenors, spreads, recovery_rate).bootstrap()
        return cls(as_of, tenors, haz, recovery_rate, name)

    def cumulative_hazard(self, t: Union[float, np.ndarray]) -> np.ndarray:
        t = np.maximum(np.asarray(t, dtype=float), 0.0)
        starts = np.r_[0.0, self.tenors[:-1]]
        ends = np.r_[self.tenors[:-1], np.inf]
        # time spent in each hazard interval
        spent = np.clip(t[..., None] - starts, 0.0, ends - starts)
        return spent @ self.hazard_rates

    def survival(self, t: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        t = np.asarray(t, dtype=float)
        if self.defaulted:
            return np.zeros_like(t)
        return np.exp(-self.cumulative_hazard(t))

    def default_probability(self, t: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        return 1.0 - self.survival(t)

    def __repr__(self) -> str:
        state = ", defaulted" if self.defaulted else ""
        return f"SurvivalCurve({self.name!r}, R={self.recovery_rate}{state})"


class Curve:
    """
    Date-keyed curve interpolated in year fractions from ``as_of``.

    Used for time interpolation of correlations between tenor dates.
    """

    def __init__(self, as_of: DateLike, interp: Optional[Interp] = None):
        self.as_of = to_date(as_of)
        self.interp = interp or Interp()
        self._dates: List[pd.Timestamp] = []
        self._values: List[float] = []

    def add(self, date: DateLike, value: float) -> None:
        date = to_date(date)
        pos = bisect_left(self._dates, date)
        if pos < len(self._dates) and self._dates[pos] == date:
            self._values[pos] = float(value)
            return
        self._dates.insert(pos, date)
        self._values.insert(pos, float(value))

    def __len__(self) -> int:
        return len(self._dates)

    def interpolate(self, date: DateLike) -> float:
        if not self._dates:
            raise ValueError("Cannot interpolate an empty curve")
        x = [year_fraction(self.as_of, d) for d in self._dates]
        fn = self.interp.build(x, self._values)
        return float(fn(year_fraction(self.as_of, date)))
