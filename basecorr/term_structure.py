"""
Base correlation term structure: smiles keyed by maturity.
"""
import logging
import math
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .base_correlation import BaseCorrelation
from .basket import SemiAnalyticBasketPricer
from .calibration import BaseCorrelationMethod
from .config import DEFAULT_MAX_CORRELATION, DEFAULT_MIN_CORRELATION, DETACHMENT_MATCH_TOLERANCE
from .correlation import CorrelationTermStruct
from .curves import Curve, DateLike, DiscountCurve, to_date
from .interp import ExtrapMethod, Interp, InterpMethod
from .pricer import SyntheticCDO
from .strikes import StrikeEvaluator, StrikeMethod, compute_strikes, base_pricers

logger = logging.getLogger("BaseCorr.TermStructure")


class CalibrationMethod(Enum):
    MATURITY_MATCH = "MaturityMatch"
    TERM_STRUCTURE = "TermStructure"


class BaseCorrelationTermStruct:
    """
    Smiles at increasing tenor dates with interpolation in time.

    Parameters
    ----------
    dates : sequence of dates
        Strictly increasing tenor dates
    smiles : sequence of BaseCorrelation
        One smile per tenor
    calibration_method : CalibrationMethod
        How the tenors were (or will be) calibrated
    interp : Interp, optional
        Time interpolation of correlations across tenors
    min_correlation, max_correlation : float
        Correlation bounds
    calibrator : BaseCorrelationCalibrator, optional
        Used by ``fit`` and ``refit``
    """

    def __init__(self, dates: Sequence[DateLike], smiles: Sequence[BaseCorrelation],
                 calibration_method: CalibrationMethod = CalibrationMethod.MATURITY_MATCH,
                 interp: Optional[Interp] = None,
                 min_correlation: float = DEFAULT_MIN_CORRELATION,
                 max_correlation: float = DEFAULT_MAX_CORRELATION,
                 calibrator=None):
        self.dates: List[pd.Timestamp] = [to_date(d) for d in dates]
        self.smiles: List[BaseCorrelation] = list(smiles)
        if len(self.dates) != len(self.smiles):
            raise ValueError(
                f"Dates (Length={len(self.dates)}) and smiles (Length={len(self.smiles)}) not match")
        if not self.dates:
            raise ValueError("Must specify at least one tenor")
        if any(b <= a for a, b in zip(self.dates, self.dates[1:])):
            raise ValueError("Tenor dates must be strictly increasing")
        self.calibration_method = calibration_method
        self.interp = interp or Interp(InterpMethod.LINEAR, ExtrapMethod.CONST,
                                       min_correlation, max_correlation)
        self.min_correlation = min_correlation
        self.max_correlation = max_correlation
        self.calibrator = calibrator

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_smiles(cls, dates: Sequence[DateLike], smiles: Sequence[BaseCorrelation],
                    **kwargs) -> 'BaseCorrelationTermStruct':
        return cls(dates, smiles, **kwargs)

    @classmethod
    def from_correlations(cls, dates: Sequence[DateLike], detachments: Sequence[float],
                          correlations, cdo: SyntheticCDO, basket: SemiAnalyticBasketPricer,
                          discount_curve: DiscountCurve,
                          method: BaseCorrelationMethod = BaseCorrelationMethod.ARBITRAGE_FREE,
                          strike_method: StrikeMethod = StrikeMethod.EXPECTED_LOSS_PV,
                          strike_evaluator: Optional[StrikeEvaluator] = None,
                          **kwargs) -> 'BaseCorrelationTermStruct':
        """
        Term structure from known correlations, shape (tenors, detachments),
        with strikes computed on ``basket`` at each tenor.
        """
        correlations = np.asarray(correlations, dtype=float)
        if correlations.shape != (len(dates), len(detachments)):
            raise ValueError(
                f"Correlations {correlations.shape} must be (tenors={len(dates)}, "
                f"detachments={len(detachments)})")
        smile_kwargs = {k: kwargs.pop(k) for k in ('interp_on_factors',) if k in kwargs}
        smiles = []
        for date, corrs in zip(dates, correlations):
            tenor_basket = basket.duplicate(maturity=to_date(date))
            bases = base_pricers(cdo.replace(maturity=to_date(date)), detachments,
                                 tenor_basket, discount_curve)
            strikes = compute_strikes(strike_method, bases, corrs, strike_evaluator)
            smiles.append(BaseCorrelation(method, strike_method, strikes, corrs, detachments,
                                          strike_evaluator=strike_evaluator,
                                          entity_names=basket.names, **smile_kwargs))
        return cls(dates, smiles, **kwargs)

    @classmethod
    def from_tranches(cls, ladders: Sequence[Sequence[SyntheticCDO]],
                      basket: SemiAnalyticBasketPricer, discount_curve: DiscountCurve,
                      **kwargs) -> 'BaseCorrelationTermStruct':
        """
        Calibrate from quoted tranche ladders, one per tenor, all with the
        same detachments. Tenor dates are the ladder maturities.
        """
        from .calibrator import BaseCorrelationCalibrator, TrancheQuote

        if len(ladders) == 0:
            raise ValueError("Must specify at least one tranche ladder")
        detachments = [cdo.detachment for cdo in ladders[0]]
        for ladder in ladders[1:]:
            if len(ladder) != len(detachments) or not np.allclose([cdo.detachment for cdo in ladder], detachments,
                               atol=DETACHMENT_MATCH_TOLERANCE, rtol=0.0):
                raise ValueError("Tranche ladders must share detachments")
        dates = [ladder[0].maturity for ladder in ladders]
        quotes = [[TrancheQuote(cdo.premium, cdo.fee) for cdo in ladder] for ladder in ladders]
        calibrator = BaseCorrelationCalibrator(dates, detachments, quotes, basket,
                                               discount_curve, **kwargs)
        return cls.from_market_quotes(calibrator)

    @classmethod
    def from_market_quotes(cls, calibrator) -> 'BaseCorrelationTermStruct':
        """Calibrate every tenor through a ``BaseCorrelationCalibrator``."""
        return calibrator.fit()

    @classmethod
    def create(cls, tenor_dates: Sequence[DateLike], detachments: Sequence[float],
               premiums, basket: SemiAnalyticBasketPricer, discount_curve: DiscountCurve,
               fees=None, **kwargs) -> 'BaseCorrelationTermStruct':
        """
        Calibrate from premiums (and optional upfront fees) of shape
        (tenors, detachments).
        """
        from .calibrator import BaseCorrelationCalibrator, TrancheQuote

        premiums = np.asarray(premiums, dtype=float)
        fees = np.zeros_like(premiums) if fees is None else np.asarray(fees, dtype=float)
        if premiums.shape != fees.shape:
            raise ValueError(f"Premiums {premiums.shape} and fees {fees.shape} not match")
        quotes = [[TrancheQuote(p, f) for p, f in zip(prow, frow)]
                  for prow, frow in zip(premiums, fees)]
        calibrator = BaseCorrelationCalibrator(tenor_dates, detachments, quotes, basket,
                                               discount_curve, **kwargs)
        return cls.from_market_quotes(calibrator)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def method(self) -> BaseCorrelationMethod:
        return self.smiles[0].method

    @property
    def strike_method(self) -> StrikeMethod:
        return self.smiles[0].strike_method

    @property
    def calibration_failed(self) -> bool:
        return any(s.calibration_failed for s in self.smiles)

    @property
    def error_message(self) -> Optional[str]:
        messages = [f"{d.date()}: {s.error_message}" for d, s in zip(self.dates, self.smiles)
                    if s.calibration_failed]
        return "; ".join(messages) if messages else None

    @property
    def entity_names(self):
        return self.smiles[0].entity_names

    def term_struct_dates(self) -> Optional[List[pd.Timestamp]]:
        """Tenor dates for correlation objects, None under maturity match."""
        if self.calibration_method is CalibrationMethod.TERM_STRUCTURE:
            return list(self.dates)
        return None

    def copy(self) -> 'BaseCorrelationTermStruct':
        return BaseCorrelationTermStruct(self.dates, [s.copy() for s in self.smiles],
                                         self.calibration_method, self.interp,
                                         self.min_correlation, self.max_correlation,
                                         self.calibrator)

    def set_correlations(self, other: 'BaseCorrelationTermStruct') -> None:
        if len(other.smiles) != len(self.smiles):
            raise ValueError(
                f"Cannot set {len(other.smiles)} tenors on a term structure of {len(self.smiles)}")
        for mine, theirs in zip(self.smiles, other.smiles):
            mine.set_correlations(theirs)

    def to_frame(self) -> pd.DataFrame:
        frames = []
        for date, smile in zip(self.dates, self.smiles):
            df = smile.to_frame()
            df.insert(0, 'date', date)
            frames.append(df)
        return pd.concat(frames, ignore_index=True)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def check_dates(self, date: DateLike) -> int:
        """Index of the tenor matching ``date``; 0 with a single tenor, -1 otherwise."""
        if len(self.dates) == 1:
            return 0
        date = to_date(date)
        for i, d in enumerate(self.dates):
            if d == date:
                return i
        return -1

    def _curve(self, as_of: DateLike) -> Curve:
        return Curve(as_of, self.interp)

    def _tenor_call(self, i: int, cdo: SyntheticCDO, basket: SemiAnalyticBasketPricer):
        date = self.dates[i]
        return cdo.replace(maturity=date), basket.duplicate(maturity=date)

    def get_correlation(self, cdo: SyntheticCDO, basket: SemiAnalyticBasketPricer,
                        discount_curve: DiscountCurve,
                        tolerance_f: float = 0.0, tolerance_x: float = 0.0) -> float:
        """
        Base correlation of ``[0, cdo.detachment]`` at the tranche maturity.

        Off-tenor maturities interpolate in time the correlations each smile
        gives at its own tenor.
        """
        idx = self.check_dates(cdo.maturity)
        if idx >= 0:
            tenor_basket = basket.duplicate(maturity=cdo.maturity)
            return self.smiles[idx].calc_correlation(cdo, tenor_basket, discount_curve,
                                                     tolerance_f, tolerance_x)
        curve = self._curve(basket.as_of)
        for i, smile in enumerate(self.smiles):
            tenor_cdo, tenor_basket = self._tenor_call(i, cdo, basket)
            curve.add(self.dates[i], smile.calc_correlation(tenor_cdo, tenor_basket, discount_curve,
                                                            tolerance_f, tolerance_x))
        corr = curve.interpolate(cdo.maturity)
        logger.debug(f"Detachment {cdo.detachment} at {cdo.maturity.date()}: "
                     f"interpolated correlation {corr:.6f}")
        return corr

    def get_correlation_for_detachment(self, detachment: float, cdo: SyntheticCDO,
                                       basket: SemiAnalyticBasketPricer,
                                       discount_curve: DiscountCurve,
                                       as_of: Optional[DateLike] = None,
                                       tolerance_f: float = 0.0, tolerance_x: float = 0.0) -> float:
        """
        Base correlation at ``detachment`` for the tranche maturity, using
        only tenors on or after ``as_of`` (the last tenor when none remain).
        """
        as_of = basket.as_of if as_of is None else to_date(as_of)
        cdo = cdo.replace(attachment=0.0, detachment=detachment)
        curve = self._curve(as_of)
        for i, smile in enumerate(self.smiles):
            if self.dates[i] < as_of:
                continue
            tenor_cdo, tenor_basket = self._tenor_call(i, cdo, basket)
            curve.add(self.dates[i], smile.calc_correlation(tenor_cdo, tenor_basket, discount_curve,
                                                            tolerance_f, tolerance_x))
        if len(curve) == 0:
            tenor_cdo, tenor_basket = self._tenor_call(len(self.smiles) - 1, cdo, basket)
            curve.add(as_of, self.smiles[-1].calc_correlation(tenor_cdo, tenor_basket, discount_curve,
                                                              tolerance_f, tolerance_x))
        return curve.interpolate(cdo.maturity)

    def tranche_correlation(self, cdo: SyntheticCDO, basket: SemiAnalyticBasketPricer,
                            discount_curve: DiscountCurve,
                            ap_bump: float = 0.0, dp_bump: float = 0.0,
                            tolerance_f: float = 0.0, tolerance_x: float = 0.0) -> float:
        idx = self.check_dates(cdo.maturity)
        if idx >= 0:
            tenor_basket = basket.duplicate(maturity=cdo.maturity)
            return self.smiles[idx].tranche_correlation(cdo, tenor_basket, discount_curve, ap_bump,
                                                        dp_bump, tolerance_f, tolerance_x)
        curve = self._curve(basket.as_of)
        for i, smile in enumerate(self.smiles):
            tenor_cdo, tenor_basket = self._tenor_call(i, cdo, basket)
            curve.add(self.dates[i], smile.tranche_correlation(tenor_cdo, tenor_basket, discount_curve,
                                                               ap_bump, dp_bump,
                                                               tolerance_f, tolerance_x))
        return curve.interpolate(cdo.maturity)

    def get_base_correlation(self, date: DateLike) -> BaseCorrelation:
        """
        Smile at ``date``; off-tenor dates get a new smile on the union of
        all strikes, interpolated in time.
        The result never aliases a stored smile.
        """
        date = to_date(date)
        idx = self.check_dates(date)
        if idx >= 0:
            return self.smiles[idx].copy()
        if date <= self.dates[0]:
            return self.smiles[0].copy()

        first = self.smiles[0]
        for s in self.smiles[1:]:
            if s.method is not first.method or s.strike_method is not first.strike_method:
                raise ValueError("Cannot interpolate smiles with different methods")
        strikes = np.unique(np.concatenate(
            [s.strikes[~np.isnan(s.strikes) & ~np.isnan(s.correlations)] for s in self.smiles]))
        as_of = min(date, self.dates[0])
        correlations = np.empty(strikes.size)
        for j, strike in enumerate(strikes):
            curve = self._curve(as_of)
            for d, smile in zip(self.dates, self.smiles):
                curve.add(d, smile.get_correlation(strike))
            correlations[j] = curve.interpolate(date)
        return BaseCorrelation(first.method, first.strike_method, strikes, correlations,
                               strike_evaluator=first.strike_evaluator, interp=first.interp,
                               interp_on_factors=first.interp_on_factors,
                               min_correlation=self.min_correlation,
                               max_correlation=self.max_correlation,
                               entity_names=first.entity_names)

    def get_correlations(self, cdo: SyntheticCDO, basket: SemiAnalyticBasketPricer,
                         discount_curve: DiscountCurve, names: Optional[Sequence[str]] = None,
                         dates: Optional[Sequence[DateLike]] = None,
                         tolerance_f: float = 0.0, tolerance_x: float = 0.0) -> CorrelationTermStruct:
        """Factors of the tranche detachment per date, ready for a basket."""
        if dates is None:
            dates = self.term_struct_dates() or [cdo.maturity]
        dates = [to_date(d) for d in dates]
        factors = [math.sqrt(self.get_correlation(cdo.replace(maturity=d), basket, discount_curve,
                                                  tolerance_f, tolerance_x))
                   for d in dates]
        return CorrelationTermStruct(names if names is not None else basket.names, factors, dates,
                                     self.min_correlation, self.max_correlation)

    # ------------------------------------------------------------------
    # Bumps
    # ------------------------------------------------------------------
    def _tenor_index(self, tenor) -> int:
        if isinstance(tenor, (int, np.integer)):
            if tenor < 0 or tenor >= len(self.smiles):
                raise ValueError(f"Invalid tenor index {tenor} (Length={len(self.smiles)})")
            return int(tenor)
        date = to_date(tenor)
        if date not in self.dates:
            raise ValueError(f"Unknown tenor {date.date()}")
        return self.dates.index(date)

    @staticmethod
    def _average(deltas: Sequence[float]) -> float:
        return float(np.mean(deltas)) if deltas else 0.0

    def bump_correlations(self, bump: float, relative: bool = False) -> float:
        """Bump every correlation of every tenor."""
        return self._average([s.bump_correlations(bump, relative) for s in self.smiles])

    def bump_correlation(self, i: int, bump: float, relative: bool = False) -> float:
        """Bump detachment ``i`` of every tenor."""
        return self._average([s.bump_correlation(i, bump, relative) for s in self.smiles])

    def bump_tenor(self, tenor, bump: float, relative: bool = False) -> float:
        return self.smiles[self._tenor_index(tenor)].bump_correlations(bump, relative)

    def bump_tenor_at(self, tenor, i: int, bump: float, relative: bool = False) -> float:
        return self.smiles[self._tenor_index(tenor)].bump_correlation(i, bump, relative)

    def bump_selected(self, tenor_dates: Optional[Sequence[DateLike]],
                      detachments: Optional[Sequence[float]],
                      bump, relative: bool = False) -> float:
        """
        Bump the selected tenors and detachments; None selects everything.
        Selections matching nothing leave the surface unchanged and return 0.
        With detachments given, ``bump`` may hold one size per detachment.
        """
        if tenor_dates is None:
            indices = range(len(self.smiles))
        else:
            wanted = {to_date(d) for d in tenor_dates}
            indices = [i for i, d in enumerate(self.dates) if d in wanted]
        deltas = []
        for i in indices:
            smile = self.smiles[i]
            if detachments is None:
                deltas.append(smile.bump_correlations(bump, relative))
            elif smile.detachments is not None and any(
                    abs(dp - d) < DETACHMENT_MATCH_TOLERANCE
                    for d in detachments for dp in smile.detachments):
                deltas.append(smile.bump_detachments(detachments, bump, relative))
        return self._average(deltas)

    # ------------------------------------------------------------------
    # Recalibration
    # ------------------------------------------------------------------
    def fit(self) -> None:
        """Recalibrate every tenor with the stored calibrator."""
        self.refit(0, 0)

    def refit(self, from_tenor: int = 0, from_detachment: int = 0) -> None:
        """
        Recalibrate from tenor ``from_tenor`` and, within it, from detachment
        index ``from_detachment``; earlier results are kept.
        """
        if self.calibrator is None:
            raise ValueError("Term structure has no calibrator")
        fitted = self.calibrator.fit(self, from_tenor, from_detachment)
        self.smiles = fitted.smiles

    def __repr__(self) -> str:
        return (f"BaseCorrelationTermStruct({self.calibration_method.value}, "
                f"tenors={[d.date().isoformat() for d in self.dates]})")
