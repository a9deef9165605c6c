"""
Strike methods: maps from a detachment point (and a trial factor) to the
x-coordinate of the base correlation smile.

Every strike function works on an explicit base tranche pricer ``[0, d]``
and the basket it holds; evaluating at a factor loads the factor into that
basket first. Spread strikes are stored as break-even premiums and
interpolated on their complements, so the spread functions return
``1 - premium``.
"""
import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Sequence

import numpy as np

from .basket import SemiAnalyticBasketPricer
from .config import FULL_DETACHMENT, ZERO_DETACHMENT
from .curves import DiscountCurve
from .pricer import SyntheticCDO, SyntheticCDOPricer


class StrikeMethod(Enum):
    UNSCALED = "Unscaled"
    UNSCALED_FORWARD = "UnscaledForward"
    EXPECTED_LOSS = "ExpectedLoss"
    EXPECTED_LOSS_FORWARD = "ExpectedLossForward"
    EXPECTED_LOSS_PV = "ExpectedLossPV"
    EXPECTED_LOSS_PV_FORWARD = "ExpectedLossPVForward"
    EXPECTED_LOSS_RATIO = "ExpectedLossRatio"
    EXPECTED_LOSS_RATIO_FORWARD = "ExpectedLossRatioForward"
    EQUITY_PROTECTION = "EquityProtection"
    EQUITY_PROTECTION_FORWARD = "EquityProtectionForward"
    PROTECTION = "Protection"
    PROTECTION_FORWARD = "ProtectionForward"
    EXPECTED_LOSS_PV_RATIO = "ExpectedLossPvRatio"
    EXPECTED_LOSS_PV_RATIO_FORWARD = "ExpectedLossPvRatioForward"
    EQUITY_PROTECTION_PV = "EquityProtectionPv"
    EQUITY_PROTECTION_PV_FORWARD = "EquityProtectionPvForward"
    PROTECTION_PV = "ProtectionPv"
    PROTECTION_PV_FORWARD = "ProtectionPvForward"
    PROBABILITY = "Probability"
    EQUITY_SPREAD = "EquitySpread"
    SENIOR_SPREAD = "SeniorSpread"
    USER_DEFINED = "UserDefined"

    @property
    def is_forward(self) -> bool:
        return self.value.endswith("Forward")

    @property
    def is_direct(self) -> bool:
        """Strike does not depend on correlation."""
        return self in _DIRECT

    @property
    def is_protection(self) -> bool:
        return self in _PROTECTION

    @property
    def is_protection_pv(self) -> bool:
        return self in _PROTECTION_PV

    @property
    def is_spread(self) -> bool:
        return self in (StrikeMethod.EQUITY_SPREAD, StrikeMethod.SENIOR_SPREAD)


_DIRECT = frozenset([
    StrikeMethod.UNSCALED, StrikeMethod.UNSCALED_FORWARD,
    StrikeMethod.EXPECTED_LOSS, StrikeMethod.EXPECTED_LOSS_FORWARD,
    StrikeMethod.EXPECTED_LOSS_PV, StrikeMethod.EXPECTED_LOSS_PV_FORWARD,
])
_PROTECTION = frozenset([
    StrikeMethod.EXPECTED_LOSS_RATIO, StrikeMethod.EXPECTED_LOSS_RATIO_FORWARD,
    StrikeMethod.EQUITY_PROTECTION, StrikeMethod.EQUITY_PROTECTION_FORWARD,
    StrikeMethod.PROTECTION, StrikeMethod.PROTECTION_FORWARD,
])
_PROTECTION_PV = frozenset([
    StrikeMethod.EXPECTED_LOSS_PV_RATIO, StrikeMethod.EXPECTED_LOSS_PV_RATIO_FORWARD,
    StrikeMethod.EQUITY_PROTECTION_PV, StrikeMethod.EQUITY_PROTECTION_PV_FORWARD,
    StrikeMethod.PROTECTION_PV, StrikeMethod.PROTECTION_PV_FORWARD,
])


class StrikeEvaluator(ABC):
    """
    User supplied strike convention.

    The evaluator is handed a base tranche pricer ``[0, d]`` and owns how it
    re-prices it; ``strike`` takes a correlation (not a factor).
    """

    @abstractmethod
    def set_pricer(self, pricer: SyntheticCDOPricer) -> None:
        pass

    @abstractmethod
    def strike(self, correlation: Optional[float] = None) -> float:
        pass


def remaining_fraction(basket: SemiAnalyticBasketPricer) -> float:
    """Share of the original principal not yet defaulted."""
    return (basket.total_principal - basket.defaulted_principal) / basket.total_principal


def detachment_scaling_factor(method: StrikeMethod, basket: SemiAnalyticBasketPricer,
                              discount_curve: Optional[DiscountCurve] = None) -> float:
    """
    Multiplier turning a detachment into a strike for the direct methods.

    Parameters
    ----------
    method : StrikeMethod
        Strike method
    basket : SemiAnalyticBasketPricer
        Basket supplying the expected loss
    discount_curve : DiscountCurve, optional
        Required by the loss PV methods

    Returns
    -------
    float
        1 for unscaled methods, the inverse portfolio expected loss (or loss
        PV) for the expected loss methods
    """
    if method in (StrikeMethod.UNSCALED, StrikeMethod.UNSCALED_FORWARD):
        return 1.0
    if method is StrikeMethod.EXPECTED_LOSS:
        return 1.0 / (basket.basket_loss() + basket.previous_loss)
    if method is StrikeMethod.EXPECTED_LOSS_FORWARD:
        return 1.0 / basket.basket_loss()
    if method in (StrikeMethod.EXPECTED_LOSS_PV, StrikeMethod.EXPECTED_LOSS_PV_FORWARD):
        if discount_curve is None:
            raise ValueError(f"Strike method {method.value} requires a discount curve")
        return 1.0 / basket.basket_loss_pv(discount_curve)
    raise ValueError(f"Strike method {method.value} has no detachment scaling")


def direct_strike(method: StrikeMethod, detachment: float, basket: SemiAnalyticBasketPricer,
                  scaling: float) -> float:
    if not method.is_forward:
        return detachment * scaling
    d = basket.adjust_tranche_level(detachment)
    mult = 1.0 if method is StrikeMethod.UNSCALED_FORWARD else remaining_fraction(basket)
    return mult * d * scaling


class StrikeFunction(ABC):
    """
    Strike of a base tranche as a function of the factor.

    ``strike(factor)`` loads the factor into the basket; ``strike()`` uses
    whatever correlation the basket already holds.
    """

    def __init__(self, pricer: SyntheticCDOPricer):
        self.pricer = pricer

    @property
    def basket(self) -> SemiAnalyticBasketPricer:
        return self.pricer.basket

    @property
    def detachment(self) -> float:
        return self.pricer.cdo.detachment

    def strike(self, factor: Optional[float] = None) -> float:
        if factor is not None:
            if math.isnan(factor):
                return math.nan
            self.basket.set_factor(factor)
        return self._evaluate()

    __call__ = strike

    @abstractmethod
    def _evaluate(self) -> float:
        pass


class DirectStrike(StrikeFunction):
    """Strike independent of correlation."""

    def __init__(self, pricer: SyntheticCDOPricer, method: StrikeMethod):
        super().__init__(pricer)
        self.method = method
        self.scaling = detachment_scaling_factor(method, pricer.basket, pricer.discount_curve)

    def strike(self, factor: Optional[float] = None) -> float:
        return self._evaluate()

    __call__ = strike

    def _evaluate(self) -> float:
        return direct_strike(self.method, self.detachment, self.basket, self.scaling)


class ProtectionStrike(StrikeFunction):
    """Expected base tranche loss at maturity over a loss based scaling."""

    def __init__(self, pricer: SyntheticCDOPricer, method: StrikeMethod):
        super().__init__(pricer)
        self.method = method
        self.scaling = self._scaling()

    def _scaling(self) -> float:
        basket = self.basket
        not_adj = remaining_fraction(basket)
        if self.method is StrikeMethod.EXPECTED_LOSS_RATIO:
            return basket.basket_loss() + basket.previous_loss
        if self.method is StrikeMethod.EXPECTED_LOSS_RATIO_FORWARD:
            return basket.basket_loss()
        if self.method is StrikeMethod.EQUITY_PROTECTION:
            return self.detachment * not_adj
        if self.method is StrikeMethod.EQUITY_PROTECTION_FORWARD:
            return basket.adjust_tranche_level(self.detachment) * not_adj
        return not_adj

    def _evaluate(self) -> float:
        d = self.detachment
        loss = self.basket.accumulated_loss(self.basket.maturity, 0.0, d)
        if self.method.is_forward:
            loss -= min(self.basket.previous_loss, d)
        return loss / self.scaling


class ProtectionPvStrike(StrikeFunction):
    """Protection PV of the base tranche over a PV based scaling."""

    def __init__(self, pricer: SyntheticCDOPricer, method: StrikeMethod):
        super().__init__(pricer)
        self.method = method
        self.scaling = self._scaling()

    def _scaling(self) -> float:
        basket = self.basket
        notional = basket.total_principal
        d = self.detachment
        if self.method in (StrikeMethod.EXPECTED_LOSS_PV_RATIO,
                           StrikeMethod.EXPECTED_LOSS_PV_RATIO_FORWARD):
            whole = self.pricer.cdo.replace(attachment=0.0, detachment=1.0, premium=0.0, fee=0.0)
            independent = basket.duplicate()
            independent.set_factor(0.0)
            return -SyntheticCDOPricer(whole, independent, self.pricer.discount_curve,
                                       notional).protection_pv()
        if self.method is StrikeMethod.EQUITY_PROTECTION_PV:
            return notional * d
        if self.method is StrikeMethod.EQUITY_PROTECTION_PV_FORWARD:
            return (notional - basket.defaulted_principal) * basket.adjust_tranche_level(d)
        if self.method is StrikeMethod.PROTECTION_PV_FORWARD:
            return notional - basket.defaulted_principal
        return notional

    def _evaluate(self) -> float:
        return -self.pricer.protection_pv() / self.scaling


class ProbabilityStrike(StrikeFunction):
    """Probability that the portfolio loss stays below the detachment."""

    def _evaluate(self) -> float:
        dist = self.basket.calc_loss_distribution(True, self.basket.maturity,
                                                  [0.0, self.detachment])
        return float(dist[-1, 1])


class SpreadStrike(StrikeFunction):
    """
    One minus the break-even premium of the equity tranche ``[0, d]`` or,
    for the senior variant, of ``[d, 1]`` on an amortizing snapshot of the
    basket.
    """

    def __init__(self, pricer: SyntheticCDOPricer, senior: bool = False):
        # no senior tranche above a full detachment; its premium is taken as zero
        self.empty = senior and pricer.cdo.detachment > FULL_DETACHMENT
        if senior and not self.empty:
            basket = pricer.basket.duplicate(no_amortization=False,
                                             loss_level_add_complement=True)
            cdo = pricer.cdo.replace(attachment=pricer.cdo.detachment, detachment=1.0, fee=0.0)
            spread_pricer = SyntheticCDOPricer(cdo, basket, pricer.discount_curve)
        else:
            spread_pricer = pricer
        super().__init__(spread_pricer)
        self.base_pricer = pricer
        self.senior = senior

    @property
    def detachment(self) -> float:
        return self.base_pricer.cdo.detachment

    def _evaluate(self) -> float:
        if self.empty:
            return 1.0
        return 1.0 - self.pricer.break_even_premium()


class UserStrike(StrikeFunction):
    """Delegates to a user ``StrikeEvaluator`` working in correlations."""

    def __init__(self, pricer: SyntheticCDOPricer, evaluator: StrikeEvaluator):
        if evaluator is None:
            raise ValueError("User defined strike method requires a strike evaluator")
        super().__init__(pricer)
        self.evaluator = evaluator
        evaluator.set_pricer(pricer)

    def strike(self, factor: Optional[float] = None) -> float:
        if factor is None:
            return self.evaluator.strike()
        if math.isnan(factor):
            return math.nan
        return self.evaluator.strike(factor * factor)

    __call__ = strike

    def _evaluate(self) -> float:
        return self.evaluator.strike()


def make_strike_function(method: StrikeMethod, pricer: SyntheticCDOPricer,
                         strike_evaluator: Optional[StrikeEvaluator] = None) -> StrikeFunction:
    """
    Strike function for the base tranche held by ``pricer``.

    Parameters
    ----------
    method : StrikeMethod
        Strike method
    pricer : SyntheticCDOPricer
        Pricer of a base tranche ``[0, d]``
    strike_evaluator : StrikeEvaluator, optional
        Required by ``StrikeMethod.USER_DEFINED``

    Returns
    -------
    StrikeFunction
    """
    if method.is_direct:
        return DirectStrike(pricer, method)
    if method.is_protection:
        return ProtectionStrike(pricer, method)
    if method.is_protection_pv:
        return ProtectionPvStrike(pricer, method)
    if method is StrikeMethod.PROBABILITY:
        return ProbabilityStrike(pricer)
    if method.is_spread:
        return SpreadStrike(pricer, senior=method is StrikeMethod.SENIOR_SPREAD)
    if method is StrikeMethod.USER_DEFINED:
        return UserStrike(pricer, strike_evaluator)
    raise ValueError(f"Unknown strike method {method}")


def _is_zero_strike(method: StrikeMethod, detachment: float) -> bool:
    if detachment > ZERO_DETACHMENT:
        return False
    if method.is_protection or method.is_protection_pv:
        return method is not StrikeMethod.EQUITY_PROTECTION
    return method is StrikeMethod.PROBABILITY


def compute_strikes(method: StrikeMethod, pricers: Sequence[SyntheticCDOPricer],
                    correlations: Sequence[float],
                    strike_evaluator: Optional[StrikeEvaluator] = None) -> np.ndarray:
    """
    Strikes of a ladder of base tranches at their correlations.

    Spread methods return the break-even premiums themselves. NaN
    correlations give NaN strikes for the correlation dependent methods.
    """
    if len(pricers) != len(correlations):
        raise ValueError(
            f"Pricers (Length={len(pricers)}) and correlations (Length={len(correlations)}) not match")
    strikes = np.full(len(pricers), np.nan)
    for i, (pricer, corr) in enumerate(zip(pricers, correlations)):
        d = pricer.cdo.detachment
        if method.is_direct:
            strikes[i] = make_strike_function(method, pricer).strike()
            continue
        if _is_zero_strike(method, d):
            strikes[i] = 0.0
            continue
        if math.isnan(corr):
            continue
        fn = make_strike_function(method, pricer, strike_evaluator)
        s = fn.strike(math.sqrt(corr))
        strikes[i] = 1.0 - s if method.is_spread else s
    return strikes


def base_pricers(cdo: SyntheticCDO, detachments: Sequence[float],
                 basket: SemiAnalyticBasketPricer,
                 discount_curve: DiscountCurve) -> list:
    """Base tranche pricers ``[0, d]`` sharing one basket."""
    return [SyntheticCDOPricer(cdo.replace(attachment=0.0, detachment=d), basket,
                               discount_curve, basket.total_principal * d)
            for d in detachments]
