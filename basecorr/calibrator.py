"""
Calibration of a base correlation term structure to tranche quotes.
"""
import logging
import math
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import numpy as np

from .base_correlation import BaseCorrelation
from .basket import SemiAnalyticBasketPricer
from .calibration import BaseCorrelationMethod, implied_base_correlations, validate_ladder
from .config import DEFAULT_MAX_CORRELATION, DEFAULT_MIN_CORRELATION
from .correlation import CorrelationTermStruct
from .curves import DateLike, DiscountCurve, to_date
from .interp import Interp
from .pricer import SyntheticCDO, SyntheticCDOPricer
from .strikes import StrikeEvaluator, StrikeMethod
from .term_structure import BaseCorrelationTermStruct, CalibrationMethod

logger = logging.getLogger("BaseCorr.Calibrator")


@dataclass(frozen=True)
class TrancheQuote:
    """Running premium (decimal) and upfront fee of one tranche."""
    premium: float
    fee: float = 0.0


Quote = Union[TrancheQuote, float]


class BaseCorrelationCalibrator:
    """
    Calibrates smiles tenor by tenor from a grid of tranche quotes.

    Parameters
    ----------
    tenor_dates : sequence of dates
        Strictly increasing maturities
    detachments : sequence of float
        Detachment points of the ladder, increasing in (0, 1]
    quotes : sequence of sequence of TrancheQuote or float
        Quotes by tenor then tranche; floats are running premiums
    basket : SemiAnalyticBasketPricer
        Underlying portfolio; it is duplicated, never modified
    discount_curve : DiscountCurve
        Discount curve shared by all tranches
    """

    def __init__(self, tenor_dates: Sequence[DateLike], detachments: Sequence[float],
                 quotes: Sequence[Sequence[Quote]], basket: SemiAnalyticBasketPricer,
                 discount_curve: DiscountCurve,
                 method: BaseCorrelationMethod = BaseCorrelationMethod.ARBITRAGE_FREE,
                 strike_method: StrikeMethod = StrikeMethod.EXPECTED_LOSS_PV,
                 calibration_method: CalibrationMethod = CalibrationMethod.MATURITY_MATCH,
                 strike_evaluator: Optional[StrikeEvaluator] = None,
                 tolerance_f: float = 0.0, tolerance_x: float = 0.0,
                 interp: Optional[Interp] = None, tenor_interp: Optional[Interp] = None,
                 interp_on_factors: bool = False,
                 min_correlation: float = DEFAULT_MIN_CORRELATION,
                 max_correlation: float = DEFAULT_MAX_CORRELATION):
        self.tenor_dates = [to_date(d) for d in tenor_dates]
        self.detachments = np.array(detachments, dtype=float)
        if not self.tenor_dates:
            raise ValueError("Must specify at least one tenor")
        if any(b <= a for a, b in zip(self.tenor_dates, self.tenor_dates[1:])):
            raise ValueError("Tenor dates must be strictly increasing")
        if self.detachments.size == 0 or np.any(np.diff(self.detachments) <= 0) \
                or self.detachments[0] <= 0 or self.detachments[-1] > 1:
            raise ValueError(f"Invalid detachments {self.detachments}")
        if len(quotes) != len(self.tenor_dates):
            raise ValueError(
                f"Quotes (Length={len(quotes)}) and tenors (Length={len(self.tenor_dates)}) not match")
        self.quotes: List[List[TrancheQuote]] = []
        for row in quotes:
            if len(row) != self.detachments.size:
                raise ValueError(
                    f"Quotes (Length={len(row)}) and detachments "
                    f"(Length={self.detachments.size}) not match")
            self.quotes.append([q if isinstance(q, TrancheQuote) else TrancheQuote(float(q))
                                for q in row])
        if discount_curve is None:
            raise ValueError("Discount curve is required")
        if strike_method is StrikeMethod.USER_DEFINED and strike_evaluator is None:
            raise ValueError("User defined strike method requires a strike evaluator")
        if (calibration_method is CalibrationMethod.TERM_STRUCTURE
                and method is BaseCorrelationMethod.PROTECTION_MATCHING):
            raise NotImplementedError(
                "Protection matching is not supported with term structure calibration")

        self.basket = basket
        self.discount_curve = discount_curve
        self.method = method
        self.strike_method = strike_method
        self.calibration_method = calibration_method
        self.strike_evaluator = strike_evaluator
        self.tolerance_f = tolerance_f
        self.tolerance_x = tolerance_x
        self.interp = interp
        self.tenor_interp = tenor_interp
        self.interp_on_factors = interp_on_factors
        self.min_correlation = min_correlation
        self.max_correlation = max_correlation

    def tranches(self, tenor: int) -> List[SyntheticCDO]:
        """Ladder of quoted tranches maturing at tenor ``tenor``."""
        maturity = self.tenor_dates[tenor]
        attachments = np.r_[0.0, self.detachments[:-1]]
        return [SyntheticCDO(a, d, maturity, q.premium, q.fee, name=f"{a:.2%}-{d:.2%}")
                for a, d, q in zip(attachments, self.detachments, self.quotes[tenor])]

    def _smile_kwargs(self) -> dict:
        return dict(interp=self.interp, interp_on_factors=self.interp_on_factors,
                    min_correlation=self.min_correlation, max_correlation=self.max_correlation)

    def _calibrate(self, bases, tranches, seed) -> BaseCorrelation:
        result = implied_base_correlations(bases, tranches, self.method,
                                           self.tolerance_f, self.tolerance_x, seed)
        return BaseCorrelation.from_calibration(result, bases, self.method, self.strike_method,
                                                self.strike_evaluator, **self._smile_kwargs())

    def fit(self, term_struct: Optional[BaseCorrelationTermStruct] = None,
            from_tenor: int = 0, from_detachment: int = 0) -> BaseCorrelationTermStruct:
        """
        Calibrate every tenor.

        Parameters
        ----------
        term_struct : BaseCorrelationTermStruct, optional
            Previous calibration; its smiles before ``from_tenor`` are reused
        from_tenor : int
            First tenor to recalibrate
        from_detachment : int
            First detachment index to recalibrate within ``from_tenor``

        Returns
        -------
        BaseCorrelationTermStruct
        """
        start = time.perf_counter()
        previous = term_struct.smiles if term_struct is not None else None
        if previous is None:
            from_tenor, from_detachment = 0, 0
        term_structure = self.calibration_method is CalibrationMethod.TERM_STRUCTURE

        curves: List[CorrelationTermStruct] = []
        baskets: List[SemiAnalyticBasketPricer] = []
        if term_structure:
            for _ in self.detachments:
                cts = CorrelationTermStruct(self.basket.names, np.zeros(len(self.tenor_dates)),
                                            self.tenor_dates, self.min_correlation,
                                            self.max_correlation)
                curves.append(cts)
                baskets.append(self.basket.with_correlation(cts))
            for k in range(from_tenor):
                for j, corr in enumerate(previous[k].correlations):
                    if not math.isnan(corr):
                        curves[j].set_factor_at_date(k, math.sqrt(corr))

        smiles = []
        for k, date in enumerate(self.tenor_dates):
            if k < from_tenor:
                smiles.append(previous[k].copy())
                continue
            seed = None
            if previous is not None and k == from_tenor and from_detachment > 0:
                seed = previous[k].correlations[:from_detachment]

            ladder = self.tranches(k)
            if term_structure:
                bases = []
                for cdo, basket in zip(ladder, baskets):
                    basket.maturity = date
                    bases.append(SyntheticCDOPricer(cdo.replace(attachment=0.0), basket,
                                                    self.discount_curve,
                                                    basket.total_principal * cdo.detachment))
                smile = self._calibrate(bases, None, seed)
                for j, corr in enumerate(smile.correlations):
                    if not math.isnan(corr):
                        curves[j].set_factor_at_date(k, math.sqrt(corr))
            else:
                basket = self.basket.duplicate(maturity=date)
                pricers = [SyntheticCDOPricer(cdo, basket, self.discount_curve) for cdo in ladder]
                validate_ladder(pricers)
                smile = self._calibrate([p.base_tranche() for p in pricers], pricers, seed)
            logger.debug(f"Tenor {date.date()}: {smile.correlations}")
            smiles.append(smile)

        fitted = BaseCorrelationTermStruct(self.tenor_dates, smiles, self.calibration_method,
                                           self.tenor_interp, self.min_correlation,
                                           self.max_correlation, calibrator=self)
        logger.info(f"Calibrated {len(smiles) - from_tenor} of {len(smiles)} tenors "
                    f"({self.calibration_method.value}) in {time.perf_counter() - start:.3f}s")
        if fitted.calibration_failed:
            logger.warning(f"Calibration failed: {fitted.error_message}")
        return fitted
