"""
Correlation objects injected into basket pricers.
"""
import copy
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import DEFAULT_MAX_CORRELATION, DEFAULT_MIN_CORRELATION
from .curves import DateLike, to_date


class SingleFactorCorrelation:
    """One factor loading shared by all names."""

    def __init__(self, names: Optional[Sequence[str]], factor: float):
        self.names = list(names) if names is not None else []
        self.factor = float(factor)

    @property
    def correlation(self) -> float:
        return self.factor * self.factor

    def factor_at(self, date: DateLike) -> float:
        return self.factor

    def set_factor(self, factor: float) -> None:
        self.factor = float(factor)

    def set_factor_from(self, date: DateLike, factor: float) -> None:
        self.factor = float(factor)

    def copy(self) -> 'SingleFactorCorrelation':
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return f"SingleFactorCorrelation(factor={self.factor:.6f})"


class CorrelationTermStruct:
    """
    Factor loadings by tenor date.

    The factor at a date is the one of the first tenor on or after it; dates
    beyond the last tenor use the last factor.
    """

    def __init__(self, names: Optional[Sequence[str]], factors: Sequence[float],
                 dates: Sequence[DateLike],
                 min_correlation: float = DEFAULT_MIN_CORRELATION,
                 max_correlation: float = DEFAULT_MAX_CORRELATION):
        self.names = list(names) if names is not None else []
        self.factors = np.array(factors, dtype=float)
        self.dates: List[pd.Timestamp] = [to_date(d) for d in dates]
        if self.factors.size != len(self.dates):
            raise ValueError(
                f"Factors (Length={self.factors.size}) and dates (Length={len(self.dates)}) not match")
        if len(self.dates) == 0:
            raise ValueError("Must specify at least one tenor date")
        if any(b <= a for a, b in zip(self.dates, self.dates[1:])):
            raise ValueError("Tenor dates must be strictly increasing")
        self.min_correlation = min_correlation
        self.max_correlation = max_correlation

    @property
    def correlations(self) -> np.ndarray:
        return self.factors ** 2

    def _index(self, date: DateLike) -> int:
        date = to_date(date)
        for i, d in enumerate(self.dates):
            if d >= date:
                return i
        return len(self.dates) - 1

    def factor_at(self, date: DateLike) -> float:
        return float(self.factors[self._index(date)])

    def set_factor(self, factor: float) -> None:
        self.factors[:] = factor

    def set_factor_from(self, date: DateLike, factor: float) -> None:
        """Set the factor of the tenor covering ``date``."""
        if len(self.dates) == 1:
            self.set_factor(factor)
            return
        self.factors[self._index(date)] = factor

    def set_factor_at_date(self, i: int, factor: float) -> None:
        if i < 0 or i >= self.factors.size:
            raise ValueError(f"Invalid tenor index {i}")
        self.factors[i] = factor

    def copy(self) -> 'CorrelationTermStruct':
        return copy.deepcopy(self)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({'date': self.dates, 'factor': self.factors,
                             'correlation': self.correlations})

    def __repr__(self) -> str:
        return f"CorrelationTermStruct(dates={len(self.dates)})"
