"""
Single-tenor base correlation smile.
"""
import copy
import logging
import math
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .basket import SemiAnalyticBasketPricer
from .calibration import (
    BaseCorrelationMethod,
    CalibrationResult,
    implied_base_correlations,
    implied_correlation,
    tranche_correlation,
    validate_ladder,
)
from .config import (
    CORRELATION_EQUALITY,
    DEFAULT_MAX_CORRELATION,
    DEFAULT_MIN_CORRELATION,
    DETACHMENT_MATCH_TOLERANCE,
    FULL_DETACHMENT,
    ZERO_ATTACHMENT,
    ZERO_DETACHMENT,
)
from .correlation import SingleFactorCorrelation
from .curves import DiscountCurve
from .interp import CorrelationEvaluator, ExtrapMethod, Interp, InterpMethod, check_correlation
from .pricer import SyntheticCDO, SyntheticCDOPricer
from .solver import SolverConfig, solve_strike
from .strikes import (
    StrikeEvaluator,
    StrikeMethod,
    compute_strikes,
    detachment_scaling_factor,
    direct_strike,
    make_strike_function,
)

logger = logging.getLogger("BaseCorr.Smile")

FAILED_MESSAGE = "There're NaN in correlations. "


def bump_value(corr: float, bump: float, relative: bool, lower: float, upper: float) -> float:
    """
    Shifted correlation clamped to ``[lower, upper]``.

    A relative bump ``b > 0`` scales by ``1 + b`` and ``b < 0`` by
    ``1 / (1 - b)``, so ``b`` followed by ``-b`` restores the value.
    """
    if relative:
        corr = corr * (1.0 + bump) if bump > 0 else corr / (1.0 - bump)
    else:
        corr = corr + bump
    return min(max(corr, lower), upper)


class BaseCorrelation:
    """
    Base correlations of one maturity, keyed by strike.

    Parameters
    ----------
    method : BaseCorrelationMethod
        Bootstrap method used for tranche correlations
    strike_method : StrikeMethod
        Strike convention of the x-axis
    strikes, correlations : sequence of float
        The smile; NaN entries are ignored by interpolation
    detachments : sequence of float, optional
        Detachment points, one per strike
    tranche_correlations : sequence of float, optional
        Per-tranche implied correlations
    strike_evaluator : StrikeEvaluator, optional
        Required by ``StrikeMethod.USER_DEFINED``
    interp : Interp, optional
        Interpolation over strikes, bounded by the correlation range
    interp_on_factors : bool
        Interpolate square roots of correlations
    min_correlation, max_correlation : float
        Correlation bounds
    """

    def __init__(self, method: BaseCorrelationMethod, strike_method: StrikeMethod,
                 strikes: Sequence[float], correlations: Sequence[float],
                 detachments: Optional[Sequence[float]] = None,
                 tranche_correlations: Optional[Sequence[float]] = None,
                 strike_evaluator: Optional[StrikeEvaluator] = None,
                 interp: Optional[Interp] = None,
                 interp_on_factors: bool = False,
                 min_correlation: float = DEFAULT_MIN_CORRELATION,
                 max_correlation: float = DEFAULT_MAX_CORRELATION,
                 extended: bool = False,
                 entity_names: Optional[Sequence[str]] = None):
        strikes = np.array(strikes, dtype=float)
        correlations = np.array(correlations, dtype=float)
        if strikes.shape != correlations.shape:
            raise ValueError(
                f"Strikes (Length={strikes.size}) and correlations (Length={correlations.size}) not match")
        if strike_method is StrikeMethod.USER_DEFINED and strike_evaluator is None:
            raise ValueError("User defined strike method requires a strike evaluator")
        if min_correlation > max_correlation:
            raise ValueError(f"Invalid correlation bounds [{min_correlation}, {max_correlation}]")

        self.method = method
        self.strike_method = strike_method
        self.strike_evaluator = strike_evaluator
        self._strikes = strikes
        self._correlations = correlations
        self._detachments = None
        self._tranche_correlations = np.full(strikes.size, np.nan)
        self.interp = interp or Interp(InterpMethod.LINEAR, ExtrapMethod.CONST)
        self.interp_on_factors = interp_on_factors
        self.min_correlation = min_correlation
        self.max_correlation = max_correlation
        self.extended = extended
        self.entity_names = list(entity_names) if entity_names is not None else None
        self.calibration_failed = False
        self.error_message: Optional[str] = None
        self.calibration_time = 0.0
        self._evaluator: Optional[CorrelationEvaluator] = None

        if detachments is not None:
            self.detachments = detachments
        if tranche_correlations is not None:
            self.tranche_correlations = tranche_correlations

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_calibration(cls, result: CalibrationResult, base_pricers: Sequence[SyntheticCDOPricer],
                         method: BaseCorrelationMethod, strike_method: StrikeMethod,
                         strike_evaluator: Optional[StrikeEvaluator] = None,
                         **kwargs) -> 'BaseCorrelation':
        """Smile from a ladder calibration, strikes computed at the solved correlations."""
        strikes = compute_strikes(strike_method, base_pricers, result.correlations, strike_evaluator)
        detachments = [p.cdo.detachment for p in base_pricers]
        smile = cls(method, strike_method, strikes, result.correlations, detachments,
                    result.tranche_correlations, strike_evaluator,
                    entity_names=base_pricers[0].basket.names, **kwargs)
        smile.calibration_time = result.elapsed
        if result.failed:
            smile.calibration_failed = True
            smile.error_message = FAILED_MESSAGE + result.error
            logger.warning(smile.error_message)
        return smile

    @classmethod
    def from_pricers(cls, pricers: Sequence[SyntheticCDOPricer],
                     method: BaseCorrelationMethod = BaseCorrelationMethod.ARBITRAGE_FREE,
                     strike_method: StrikeMethod = StrikeMethod.EXPECTED_LOSS_PV,
                     strike_evaluator: Optional[StrikeEvaluator] = None,
                     tolerance_f: float = 0.0, tolerance_x: float = 0.0,
                     **kwargs) -> 'BaseCorrelation':
        """Calibrate a smile to a contiguous ladder of quoted tranches."""
        validate_ladder(pricers)
        result = implied_correlation(pricers, method, tolerance_f, tolerance_x)
        bases = [p.base_tranche() for p in pricers]
        return cls.from_calibration(result, bases, method, strike_method, strike_evaluator, **kwargs)

    @classmethod
    def from_base_pricers(cls, base_pricers: Sequence[SyntheticCDOPricer],
                          tranche_pricers: Optional[Sequence[SyntheticCDOPricer]] = None,
                          method: BaseCorrelationMethod = BaseCorrelationMethod.ARBITRAGE_FREE,
                          strike_method: StrikeMethod = StrikeMethod.EXPECTED_LOSS_PV,
                          strike_evaluator: Optional[StrikeEvaluator] = None,
                          tolerance_f: float = 0.0, tolerance_x: float = 0.0,
                          **kwargs) -> 'BaseCorrelation':
        """Calibrate from pre-built base tranche pricers ``[0, d_i]``."""
        result = implied_base_correlations(base_pricers, tranche_pricers, method,
                                           tolerance_f, tolerance_x)
        return cls.from_calibration(result, base_pricers, method, strike_method,
                                    strike_evaluator, **kwargs)

    @classmethod
    def from_tranches(cls, cdos: Sequence[SyntheticCDO], basket: SemiAnalyticBasketPricer,
                      discount_curve: DiscountCurve, **kwargs) -> 'BaseCorrelation':
        pricers = [SyntheticCDOPricer(cdo, basket, discount_curve) for cdo in cdos]
        return cls.from_pricers(pricers, **kwargs)

    @classmethod
    def combine(cls, smiles: Sequence['BaseCorrelation'],
                weights: Optional[Sequence[float]] = None) -> 'BaseCorrelation':
        """
        Weighted combination of smiles sharing a strike method.

        Strikes are the union of all strikes; each correlation is the weight
        normalized sum of the interpolated correlations.
        """
        if len(smiles) == 0:
            raise ValueError("Must specify at least one smile")
        weights = np.ones(len(smiles)) if weights is None else np.asarray(weights, dtype=float)
        if weights.size != len(smiles):
            raise ValueError(
                f"Weights (Length={weights.size}) and smiles (Length={len(smiles)}) not match")
        if weights.sum() == 0.0:
            raise ValueError("Weights sum to zero")
        first = smiles[0]
        for s in smiles[1:]:
            if s.strike_method is not first.strike_method:
                raise ValueError(
                    f"Cannot combine strike methods {first.strike_method.value} "
                    f"and {s.strike_method.value}")

        strikes = np.unique(np.concatenate([s.strikes[~np.isnan(s.strikes)] for s in smiles]))
        corrs = np.zeros(strikes.size)
        for w, s in zip(weights, smiles):
            corrs += w * np.array([s.get_correlation(k) for k in strikes])
        corrs /= weights.sum()
        return cls(first.method, first.strike_method, strikes, corrs,
                   strike_evaluator=first.strike_evaluator, interp=first.interp,
                   interp_on_factors=first.interp_on_factors,
                   min_correlation=min(s.min_correlation for s in smiles),
                   max_correlation=max(s.max_correlation for s in smiles))

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def strikes(self) -> np.ndarray:
        return self._strikes

    @strikes.setter
    def strikes(self, values: Sequence[float]) -> None:
        values = np.array(values, dtype=float)
        if values.size != self._correlations.size:
            raise ValueError(f"Strikes (Length={values.size}) must have length {self._correlations.size}")
        self._strikes = values
        self._evaluator = None

    @property
    def correlations(self) -> np.ndarray:
        return self._correlations

    @correlations.setter
    def correlations(self, values: Sequence[float]) -> None:
        values = np.array(values, dtype=float)
        if values.size != self._strikes.size:
            raise ValueError(f"Correlations (Length={values.size}) must have length {self._strikes.size}")
        self._correlations = values
        self._evaluator = None

    @property
    def detachments(self) -> Optional[np.ndarray]:
        return self._detachments

    @detachments.setter
    def detachments(self, values: Sequence[float]) -> None:
        values = np.array(values, dtype=float)
        if values.size != self._strikes.size:
            raise ValueError(f"Detachments (Length={values.size}) must have length {self._strikes.size}")
        self._detachments = values

    @property
    def tranche_correlations(self) -> np.ndarray:
        return self._tranche_correlations

    @tranche_correlations.setter
    def tranche_correlations(self, values: Sequence[float]) -> None:
        values = np.array(values, dtype=float)
        if values.size != self._strikes.size:
            raise ValueError(
                f"Tranche correlations (Length={values.size}) must have length {self._strikes.size}")
        self._tranche_correlations = values

    def set_correlations(self, other: 'BaseCorrelation') -> None:
        """Copy strikes and correlations from a smile of the same shape."""
        if other.strikes.size != self._strikes.size:
            raise ValueError(
                f"Cannot set {other.strikes.size} correlations on a smile of {self._strikes.size}")
        self._strikes = other.strikes.copy()
        self._correlations = other.correlations.copy()
        self._tranche_correlations = other.tranche_correlations.copy()
        self._evaluator = None

    def copy(self) -> 'BaseCorrelation':
        other = copy.copy(self)
        other._strikes = self._strikes.copy()
        other._correlations = self._correlations.copy()
        other._tranche_correlations = self._tranche_correlations.copy()
        if self._detachments is not None:
            other._detachments = self._detachments.copy()
        other.entity_names = None if self.entity_names is None else list(self.entity_names)
        other._evaluator = None
        return other

    def to_frame(self) -> pd.DataFrame:
        data = {'strike': self._strikes, 'correlation': self._correlations,
                'tranche_correlation': self._tranche_correlations}
        if self._detachments is not None:
            data = {'detachment': self._detachments, **data}
        return pd.DataFrame(data)

    # ------------------------------------------------------------------
    # Interpolation
    # ------------------------------------------------------------------
    def evaluator(self) -> CorrelationEvaluator:
        """Evaluator over the smile, in the coordinates strike functions return."""
        if self._evaluator is None:
            lower, upper = self.min_correlation, self.max_correlation
            if self.interp_on_factors:
                lower, upper = math.sqrt(max(lower, 0.0)), math.sqrt(upper)
            interp = Interp(self.interp.method, self.interp.extrap, lower, upper)
            self._evaluator = CorrelationEvaluator(
                interp, self._strikes, self._correlations,
                on_factor=self.interp_on_factors, complement=self.strike_method.is_spread)
        return self._evaluator

    def _evaluate(self, x: float) -> float:
        return check_correlation(self.evaluator().evaluate(x), x)

    def get_correlation(self, strike: float) -> float:
        """Interpolated correlation at a stored-coordinate strike."""
        x = 1.0 - strike if self.strike_method.is_spread else strike
        return self._evaluate(x)

    def _valid_count(self) -> int:
        return int(np.sum(~np.isnan(self._correlations) & ~np.isnan(self._strikes)))

    def calc_correlation(self, cdo: SyntheticCDO, basket: SemiAnalyticBasketPricer,
                         discount_curve: DiscountCurve,
                         tolerance_f: float = 0.0, tolerance_x: float = 0.0) -> float:
        """
        Base correlation of ``[0, cdo.detachment]`` on a basket.

        Correlation dependent strike methods solve for the correlation whose
        strike interpolates back to itself on this smile.
        """
        if self._valid_count() == 1:
            return float(self._correlations[~np.isnan(self._correlations)][0])

        d = cdo.detachment
        method = self.strike_method
        pricer = SyntheticCDOPricer(cdo.replace(attachment=0.0), basket, discount_curve,
                                    basket.total_principal * d)
        if method.is_direct:
            scaling = detachment_scaling_factor(method, basket, discount_curve)
            return self._evaluate(direct_strike(method, d, basket, scaling))
        if method is StrikeMethod.USER_DEFINED and self.strike_evaluator is None:
            raise ValueError("User defined strike method requires a strike evaluator")

        fn = make_strike_function(method, pricer, self.strike_evaluator)
        if d > FULL_DETACHMENT:
            return self._evaluate(fn.strike(0.0))
        if d <= ZERO_DETACHMENT and not method.is_spread:
            return self._evaluate(0.0)

        config = SolverConfig(tolerance_f, tolerance_x).resolved(basket.total_principal)
        corr = solve_strike(self.evaluator(), fn.strike, config, self.max_correlation)
        logger.debug(f"Detachment {d}: correlation {corr:.6f}")
        return corr

    def tranche_correlation(self, cdo: SyntheticCDO, basket: SemiAnalyticBasketPricer,
                            discount_curve: DiscountCurve,
                            ap_bump: float = 0.0, dp_bump: float = 0.0,
                            tolerance_f: float = 0.0, tolerance_x: float = 0.0) -> float:
        """
        Single correlation for the tranche ``[a, d]`` from the base
        correlations at both ends, after adding the bumps.
        """
        dp_corr = self.calc_correlation(cdo, basket, discount_curve, tolerance_f, tolerance_x)
        dp_corr += dp_bump
        if cdo.attachment <= ZERO_ATTACHMENT:
            return dp_corr
        ap_cdo = cdo.replace(attachment=0.0, detachment=cdo.attachment)
        ap_corr = self.calc_correlation(ap_cdo, basket, discount_curve, tolerance_f, tolerance_x)
        ap_corr += ap_bump
        if abs(dp_corr - ap_corr) < CORRELATION_EQUALITY:
            return 0.5 * (dp_corr + ap_corr)
        pricer = SyntheticCDOPricer(cdo, basket, discount_curve)
        return tranche_correlation(pricer, self.method, ap_corr, dp_corr, tolerance_f, tolerance_x)

    def get_correlations(self, cdo: SyntheticCDO, basket: SemiAnalyticBasketPricer,
                         discount_curve: DiscountCurve, names: Optional[Sequence[str]] = None,
                         tolerance_f: float = 0.0, tolerance_x: float = 0.0) -> SingleFactorCorrelation:
        """Correlation object for the tranche detachment, ready for a basket."""
        corr = self.calc_correlation(cdo, basket, discount_curve, tolerance_f, tolerance_x)
        return SingleFactorCorrelation(names if names is not None else basket.names, math.sqrt(corr))

    # ------------------------------------------------------------------
    # Strikes
    # ------------------------------------------------------------------
    def strike(self, pricers: Sequence[SyntheticCDOPricer],
               correlations: Optional[Sequence[float]] = None) -> np.ndarray:
        """Strikes of the base tranches of ``pricers`` at the given (or stored) correlations."""
        correlations = self._correlations if correlations is None else correlations
        bases = [p if p.cdo.attachment <= ZERO_ATTACHMENT else p.base_tranche() for p in pricers]
        return compute_strikes(self.strike_method, bases, correlations, self.strike_evaluator)

    def strike_detachments(self, cdo: SyntheticCDO, basket: SemiAnalyticBasketPricer,
                           discount_curve: DiscountCurve,
                           detachments: Optional[Sequence[float]] = None,
                           correlations: Optional[Sequence[float]] = None) -> np.ndarray:
        """Strikes of detachments (stored ones by default) on another basket."""
        detachments = self._detachments if detachments is None else detachments
        if detachments is None:
            raise ValueError("Smile has no detachments")
        pricers = [SyntheticCDOPricer(cdo.replace(attachment=0.0, detachment=d), basket,
                                      discount_curve, basket.total_principal * d)
                   for d in detachments]
        return self.strike(pricers, correlations)

    # ------------------------------------------------------------------
    # Bumps
    # ------------------------------------------------------------------
    def _bump_at(self, indices, bump, relative: bool) -> float:
        bumps = np.broadcast_to(np.asarray(bump, dtype=float), (len(indices),))
        total, count = 0.0, 0
        for i, b in zip(indices, bumps):
            old = self._correlations[i]
            if math.isnan(old):
                continue
            new = bump_value(old, b, relative, self.min_correlation, self.max_correlation)
            self._correlations[i] = new
            total += new - old
            count += 1
        self._evaluator = None
        return total / count if count else 0.0

    def bump_correlations(self, bump: float, relative: bool = False) -> float:
        """Bump every correlation; returns the average realized change."""
        return self._bump_at(range(self._correlations.size), bump, relative)

    def bump_correlation(self, i: int, bump: float, relative: bool = False) -> float:
        if i < 0 or i >= self._correlations.size:
            raise ValueError(f"Invalid detachment index {i} (Length={self._correlations.size})")
        return self._bump_at([i], bump, relative)

    def bump_indices(self, indices: Sequence[int], bump: float, relative: bool = False) -> float:
        for i in indices:
            if i < 0 or i >= self._correlations.size:
                raise ValueError(f"Invalid detachment index {i} (Length={self._correlations.size})")
        return self._bump_at(indices, bump, relative)

    def bump_detachments(self, detachments: Sequence[float], bump,
                         relative: bool = False) -> float:
        """
        Bump the correlations of matching detachments; unmatched ones are skipped.

        ``bump`` is either one size for all detachments or one size per
        detachment. A correlation is bumped at most once.
        """
        if self._detachments is None:
            raise ValueError("Smile has no detachments")
        bumps = np.atleast_1d(np.asarray(bump, dtype=float))
        if bumps.size != 1 and bumps.size != len(detachments):
            raise ValueError(
                f"Bumps (Length={bumps.size}) and detachments (Length={len(detachments)}) not match")
        bumps = np.broadcast_to(bumps, (len(detachments),))
        indices, sizes = [], []
        for d, b in zip(detachments, bumps):
            idx = np.flatnonzero(np.abs(self._detachments - d) < DETACHMENT_MATCH_TOLERANCE)
            if idx.size and int(idx[0]) not in indices:
                indices.append(int(idx[0]))
                sizes.append(b)
        return self._bump_at(indices, sizes, relative)

    def __repr__(self) -> str:
        state = ", failed" if self.calibration_failed else ""
        return (f"BaseCorrelation({self.method.value}, {self.strike_method.value}, "
                f"n={self._strikes.size}{state})")
