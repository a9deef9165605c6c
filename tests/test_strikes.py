"""
Tests for strike methods and strike computation on base tranche ladders.
"""

import math

import numpy as np
import pytest
from scipy.stats import binom

from basecorr import (
    BaseCorrelation,
    BaseCorrelationMethod,
    StrikeEvaluator,
    StrikeMethod,
    SyntheticCDO,
    compute_strikes,
)
from basecorr.strikes import base_pricers, detachment_scaling_factor, make_strike_function


# =============================================================================
# Test Fixtures
# =============================================================================

DETACHMENTS = [0.03, 0.07, 0.10, 0.15]
CORRELATIONS = [0.15, 0.25, 0.32, 0.40]


@pytest.fixture
def cdo(maturity):
    return SyntheticCDO(0.0, 0.03, maturity)


@pytest.fixture
def ladder(cdo, flat_basket, discount_curve):
    return base_pricers(cdo, DETACHMENTS, flat_basket, discount_curve)


class ScaledDetachment(StrikeEvaluator):
    """Detachment scaled up by the correlation."""

    def __init__(self):
        self.pricer = None

    def set_pricer(self, pricer):
        self.pricer = pricer

    def strike(self, correlation=None):
        corr = 0.0 if correlation is None else correlation
        return self.pricer.cdo.detachment * (1.0 + corr)


# =============================================================================
# Strike Method Flags
# =============================================================================

class TestStrikeMethod:

    def test_forward_flags(self):
        assert StrikeMethod.EXPECTED_LOSS_PV_FORWARD.is_forward
        assert not StrikeMethod.EXPECTED_LOSS_PV.is_forward

    def test_groups(self):
        assert StrikeMethod.UNSCALED.is_direct
        assert StrikeMethod.EXPECTED_LOSS_PV.is_direct
        assert StrikeMethod.EQUITY_PROTECTION.is_protection
        assert StrikeMethod.PROTECTION_PV_FORWARD.is_protection_pv
        assert StrikeMethod.SENIOR_SPREAD.is_spread
        assert not StrikeMethod.PROBABILITY.is_direct
        assert len(StrikeMethod) == 22


# =============================================================================
# Direct Strikes
# =============================================================================

class TestDirectStrikes:

    def test_unscaled(self, ladder):
        strikes = compute_strikes(StrikeMethod.UNSCALED, ladder, [np.nan] * 4)
        np.testing.assert_allclose(strikes, DETACHMENTS)

    def test_expected_loss(self, ladder, flat_basket):
        strikes = compute_strikes(StrikeMethod.EXPECTED_LOSS, ladder, CORRELATIONS)
        np.testing.assert_allclose(strikes, np.array(DETACHMENTS) / flat_basket.basket_loss())

    def test_expected_loss_pv(self, ladder, flat_basket, discount_curve):
        strikes = compute_strikes(StrikeMethod.EXPECTED_LOSS_PV, ladder, CORRELATIONS)
        expected = np.array(DETACHMENTS) / flat_basket.basket_loss_pv(discount_curve)
        np.testing.assert_allclose(strikes, expected)

    def test_forward_equals_spot_without_defaults(self, ladder):
        spot = compute_strikes(StrikeMethod.EXPECTED_LOSS, ladder, CORRELATIONS)
        fwd = compute_strikes(StrikeMethod.EXPECTED_LOSS_FORWARD, ladder, CORRELATIONS)
        np.testing.assert_allclose(fwd, spot)

    def test_independent_of_correlation(self, ladder):
        fn = make_strike_function(StrikeMethod.EXPECTED_LOSS, ladder[1])
        assert fn.strike(0.1) == pytest.approx(fn.strike(0.9))

    def test_scaling_requirements(self, flat_basket):
        with pytest.raises(ValueError):
            detachment_scaling_factor(StrikeMethod.EXPECTED_LOSS_PV, flat_basket, None)
        with pytest.raises(ValueError):
            detachment_scaling_factor(StrikeMethod.PROTECTION, flat_basket)


# =============================================================================
# Correlation Dependent Strikes
# =============================================================================

class TestProtectionStrikes:

    def test_increasing_in_detachment(self, ladder):
        strikes = compute_strikes(StrikeMethod.EXPECTED_LOSS_RATIO, ladder, [0.3] * 4)
        assert np.all(np.diff(strikes) > 0)

    def test_full_tranche_ratio_is_one(self, cdo, flat_basket, discount_curve):
        pricers = base_pricers(cdo, [1.0], flat_basket, discount_curve)
        strikes = compute_strikes(StrikeMethod.EXPECTED_LOSS_RATIO, pricers, [0.3])
        assert strikes[0] == pytest.approx(1.0, rel=1e-6)

    def test_equity_protection_is_loss_fraction(self, ladder, flat_basket):
        corr = 0.25
        strike = compute_strikes(StrikeMethod.EQUITY_PROTECTION, ladder[:1], [corr])[0]
        flat_basket.set_factor(math.sqrt(corr))
        expected = flat_basket.accumulated_loss(flat_basket.maturity, 0.0, 0.03) / 0.03
        assert strike == pytest.approx(expected)
        assert 0.0 < strike < 1.0

    def test_protection_pv_ratio_full_tranche(self, cdo, flat_basket, discount_curve):
        pricers = base_pricers(cdo, [1.0], flat_basket, discount_curve)
        strikes = compute_strikes(StrikeMethod.EXPECTED_LOSS_PV_RATIO, pricers, [0.3])
        assert strikes[0] == pytest.approx(1.0, rel=1e-6)

    def test_equity_protection_pv(self, ladder):
        strikes = compute_strikes(StrikeMethod.EQUITY_PROTECTION_PV, ladder, CORRELATIONS)
        assert np.all((strikes > 0) & (strikes < 1))

    def test_zero_detachment(self, cdo, flat_basket, discount_curve):
        pricers = base_pricers(cdo, [1e-9], flat_basket, discount_curve)
        assert compute_strikes(StrikeMethod.PROTECTION, pricers, [0.3])[0] == 0.0
        assert compute_strikes(StrikeMethod.PROBABILITY, pricers, [0.3])[0] == 0.0

    def test_zero_detachment_equity_methods(self, cdo, flat_basket, discount_curve):
        pricers = base_pricers(cdo, [1e-9], flat_basket, discount_curve)
        for method in (StrikeMethod.EQUITY_PROTECTION_FORWARD, StrikeMethod.EQUITY_PROTECTION_PV,
                       StrikeMethod.EQUITY_PROTECTION_PV_FORWARD):
            assert compute_strikes(method, pricers, [np.nan])[0] == 0.0
        # plain equity protection is still evaluated, so a missing correlation shows
        assert np.isnan(compute_strikes(StrikeMethod.EQUITY_PROTECTION, pricers, [np.nan])[0])

    def test_nan_correlation_gives_nan(self, ladder):
        strikes = compute_strikes(StrikeMethod.PROTECTION, ladder, [0.2, np.nan, 0.3, 0.4])
        assert np.isnan(strikes[1])
        assert not np.isnan(strikes[0])

    def test_length_mismatch(self, ladder):
        with pytest.raises(ValueError):
            compute_strikes(StrikeMethod.PROTECTION, ladder, [0.2])


class TestProbabilityStrike:

    def test_independent_defaults(self, ladder, flat_basket):
        strike = compute_strikes(StrikeMethod.PROBABILITY, ladder[1:2], [0.0])[0]
        curve = flat_basket.spec.survival_curves[0]
        p = float(curve.default_probability(flat_basket.distribution_times()[-1]))
        # 0.07 covers two 3% losses
        assert strike == pytest.approx(binom.cdf(2, 20, p), abs=1e-10)


class TestSpreadStrikes:

    def test_equity_spread_is_break_even(self, ladder, flat_basket):
        corr = 0.25
        strike = compute_strikes(StrikeMethod.EQUITY_SPREAD, ladder[1:2], [corr])[0]
        flat_basket.set_factor(math.sqrt(corr))
        assert strike == pytest.approx(ladder[1].break_even_premium())

    def test_senior_spread_below_equity(self, ladder):
        equity = compute_strikes(StrikeMethod.EQUITY_SPREAD, ladder[1:2], [0.25])[0]
        senior = compute_strikes(StrikeMethod.SENIOR_SPREAD, ladder[1:2], [0.25])[0]
        assert 0.0 < senior < equity

    def test_spread_function_returns_complement(self, ladder):
        fn = make_strike_function(StrikeMethod.EQUITY_SPREAD, ladder[0])
        value = fn.strike(0.5)
        assert value == pytest.approx(1.0 - ladder[0].break_even_premium())

    def test_senior_spread_at_full_detachment(self, cdo, flat_basket, discount_curve):
        pricers = base_pricers(cdo, [1.0], flat_basket, discount_curve)
        assert make_strike_function(StrikeMethod.SENIOR_SPREAD, pricers[0]).strike(0.5) == 1.0
        assert compute_strikes(StrikeMethod.SENIOR_SPREAD, pricers, [0.3])[0] == 0.0

    def test_senior_spread_smile_prices_super_senior(self, ladder, flat_basket, discount_curve,
                                                     maturity):
        strikes = compute_strikes(StrikeMethod.SENIOR_SPREAD, ladder, CORRELATIONS)
        smile = BaseCorrelation(BaseCorrelationMethod.ARBITRAGE_FREE, StrikeMethod.SENIOR_SPREAD,
                                strikes, CORRELATIONS, DETACHMENTS)
        senior = SyntheticCDO(0.10, 1.0, maturity)
        assert smile.calc_correlation(senior, flat_basket, discount_curve) == \
            pytest.approx(CORRELATIONS[-1])
        corr = smile.tranche_correlation(senior, flat_basket, discount_curve)
        assert 0.0 <= corr <= 1.0


class TestUserStrike:

    def test_evaluator_receives_correlation(self, ladder):
        strikes = compute_strikes(StrikeMethod.USER_DEFINED, ladder[:2], [0.25, 0.5],
                                  ScaledDetachment())
        np.testing.assert_allclose(strikes, [0.03 * 1.25, 0.07 * 1.5])

    def test_evaluator_required(self, ladder):
        with pytest.raises(ValueError):
            make_strike_function(StrikeMethod.USER_DEFINED, ladder[0])

    def test_nan_factor(self, ladder):
        fn = make_strike_function(StrikeMethod.USER_DEFINED, ladder[0], ScaledDetachment())
        assert math.isnan(fn.strike(float("nan")))
