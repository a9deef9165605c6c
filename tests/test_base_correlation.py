"""
Tests for single-tenor base correlation smiles: interpolation, correlation
lookup by tranche, bumps and combination.
"""

import math

import numpy as np
import pytest

from basecorr import (
    BaseCorrelation,
    BaseCorrelationMethod,
    ExtrapMethod,
    Interp,
    InterpMethod,
    SingleFactorCorrelation,
    SolverError,
    StrikeMethod,
    SyntheticCDO,
    SyntheticCDOPricer,
    compute_strikes,
)
from basecorr.base_correlation import bump_value
from basecorr.strikes import base_pricers


# =============================================================================
# Test Fixtures
# =============================================================================

AF = BaseCorrelationMethod.ARBITRAGE_FREE
STRIKES = [0.03, 0.07, 0.10, 0.15]
CORRELATIONS = [0.20, 0.25, 0.30, 0.35]


@pytest.fixture
def smile():
    return BaseCorrelation(AF, StrikeMethod.UNSCALED, STRIKES, CORRELATIONS,
                           detachments=STRIKES)


@pytest.fixture
def cdo(maturity):
    return SyntheticCDO(0.0, 0.07, maturity)


@pytest.fixture
def protection_smile(cdo, flat_basket, discount_curve):
    """Smile struck with expected loss ratios on the flat basket."""
    ladder = base_pricers(cdo, STRIKES, flat_basket, discount_curve)
    strikes = compute_strikes(StrikeMethod.EXPECTED_LOSS_RATIO, ladder, CORRELATIONS)
    return BaseCorrelation(AF, StrikeMethod.EXPECTED_LOSS_RATIO, strikes, CORRELATIONS,
                           detachments=STRIKES)


# =============================================================================
# Construction
# =============================================================================

class TestConstruction:

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            BaseCorrelation(AF, StrikeMethod.UNSCALED, [0.03, 0.07], [0.2])

    def test_user_defined_requires_evaluator(self):
        with pytest.raises(ValueError):
            BaseCorrelation(AF, StrikeMethod.USER_DEFINED, [0.03], [0.2])

    def test_setters_check_length(self, smile):
        with pytest.raises(ValueError):
            smile.correlations = [0.1, 0.2]
        with pytest.raises(ValueError):
            smile.tranche_correlations = [0.1]
        smile.correlations = [0.1, 0.2, 0.3, 0.4]
        assert smile.get_correlation(0.03) == pytest.approx(0.1)

    def test_to_frame(self, smile):
        df = smile.to_frame()
        assert list(df.columns) == ['detachment', 'strike', 'correlation', 'tranche_correlation']
        assert len(df) == 4

    def test_copy_is_independent(self, smile):
        other = smile.copy()
        other.bump_correlations(0.1)
        np.testing.assert_allclose(smile.correlations, CORRELATIONS)
        np.testing.assert_allclose(other.correlations, np.array(CORRELATIONS) + 0.1)


# =============================================================================
# Interpolation
# =============================================================================

class TestInterpolation:

    @pytest.mark.parametrize("method", list(InterpMethod))
    def test_knots_round_trip(self, method):
        smile = BaseCorrelation(AF, StrikeMethod.UNSCALED, STRIKES, CORRELATIONS,
                                interp=Interp(method))
        for s, c in zip(STRIKES, CORRELATIONS):
            assert smile.get_correlation(s) == pytest.approx(c, abs=1e-12)

    def test_factor_interpolation(self):
        smile = BaseCorrelation(AF, StrikeMethod.UNSCALED, [0.0, 1.0], [0.04, 0.16],
                                interp_on_factors=True)
        assert smile.get_correlation(0.5) == pytest.approx(0.09)

    def test_bounded_by_correlation_range(self):
        smile = BaseCorrelation(AF, StrikeMethod.UNSCALED, [0.1, 0.2], [0.5, 0.9],
                                interp=Interp(extrap=ExtrapMethod.SMOOTH),
                                max_correlation=0.95)
        assert smile.get_correlation(0.5) == pytest.approx(0.95)

    def test_spread_strikes_round_trip(self):
        premiums = [0.30, 0.10, 0.03, 0.01]
        smile = BaseCorrelation(AF, StrikeMethod.EQUITY_SPREAD, premiums, CORRELATIONS)
        for s, c in zip(premiums, CORRELATIONS):
            assert smile.get_correlation(s) == pytest.approx(c)
        assert smile.get_correlation(0.2) == pytest.approx(0.225)

    def test_nan_entries_ignored(self):
        smile = BaseCorrelation(AF, StrikeMethod.UNSCALED, STRIKES, [0.2, np.nan, 0.3, 0.35])
        assert smile.get_correlation(0.05) == pytest.approx(0.2 + 0.1 * 2.0 / 7.0)

    def test_all_nan_raises(self):
        smile = BaseCorrelation(AF, StrikeMethod.UNSCALED, STRIKES, [np.nan] * 4)
        with pytest.raises(SolverError):
            smile.get_correlation(0.05)


# =============================================================================
# Correlation of a Tranche
# =============================================================================

class TestCalcCorrelation:

    def test_single_point_smile(self, cdo, flat_basket, discount_curve):
        smile = BaseCorrelation(AF, StrikeMethod.PROTECTION, [0.05], [0.3])
        assert smile.get_correlation(0.9) == pytest.approx(0.3)
        assert smile.calc_correlation(cdo, flat_basket, discount_curve) == pytest.approx(0.3)

    def test_unscaled_direct(self, smile, flat_basket, discount_curve, maturity):
        cdo = SyntheticCDO(0.0, 0.085, maturity)
        assert smile.calc_correlation(cdo, flat_basket, discount_curve) == pytest.approx(0.275)

    def test_expected_loss_direct(self, flat_basket, discount_curve, maturity):
        el = flat_basket.basket_loss()
        smile = BaseCorrelation(AF, StrikeMethod.EXPECTED_LOSS,
                                [0.03 / el, 0.07 / el], [0.2, 0.3])
        cdo = SyntheticCDO(0.0, 0.05, maturity)
        assert smile.calc_correlation(cdo, flat_basket, discount_curve) == pytest.approx(0.25)

    def test_fixed_point_at_knot(self, protection_smile, cdo, flat_basket, discount_curve):
        corr = protection_smile.calc_correlation(cdo, flat_basket, discount_curve)
        assert corr == pytest.approx(0.25, abs=1e-3)

    def test_fixed_point_between_knots(self, protection_smile, flat_basket, discount_curve,
                                       maturity):
        cdo = SyntheticCDO(0.0, 0.085, maturity)
        corr = protection_smile.calc_correlation(cdo, flat_basket, discount_curve)
        assert 0.25 - 1e-3 <= corr <= 0.30 + 1e-3
        # the solved correlation reproduces itself through its own strike
        pricer = SyntheticCDOPricer(cdo, flat_basket, discount_curve)
        strike = compute_strikes(StrikeMethod.EXPECTED_LOSS_RATIO, [pricer], [corr])[0]
        assert protection_smile.get_correlation(strike) == pytest.approx(corr, abs=2e-3)

    def test_get_correlations(self, smile, cdo, flat_basket, discount_curve):
        corr = smile.get_correlations(cdo, flat_basket, discount_curve)
        assert isinstance(corr, SingleFactorCorrelation)
        assert corr.factor == pytest.approx(math.sqrt(0.25))
        assert corr.names == flat_basket.names

    def test_strike_detachments(self, smile, cdo, flat_basket, discount_curve):
        strikes = smile.strike_detachments(cdo, flat_basket, discount_curve)
        np.testing.assert_allclose(strikes, STRIKES)


class TestTrancheCorrelation:

    def test_equity_tranche_uses_detachment(self, smile, cdo, flat_basket, discount_curve):
        corr = smile.tranche_correlation(cdo, flat_basket, discount_curve)
        assert corr == pytest.approx(0.25)

    def test_flat_smile_gives_same_correlation(self, flat_basket, discount_curve, maturity):
        smile = BaseCorrelation(AF, StrikeMethod.UNSCALED, STRIKES, [0.3] * 4)
        cdo = SyntheticCDO(0.03, 0.07, maturity)
        assert smile.tranche_correlation(cdo, flat_basket, discount_curve) == pytest.approx(0.3)

    def test_bumps_shift_ends(self, smile, cdo, flat_basket, discount_curve):
        corr = smile.tranche_correlation(cdo, flat_basket, discount_curve, dp_bump=0.05)
        assert corr == pytest.approx(0.30)


# =============================================================================
# Bumps
# =============================================================================

class TestBumps:

    def test_bump_value(self):
        assert bump_value(0.2, 0.05, False, 0.0, 1.0) == pytest.approx(0.25)
        assert bump_value(0.2, 0.5, True, 0.0, 1.0) == pytest.approx(0.3)
        assert bump_value(0.3, -0.5, True, 0.0, 1.0) == pytest.approx(0.2)

    def test_relative_bump_is_reversible(self, smile):
        smile.bump_correlations(0.25, relative=True)
        np.testing.assert_allclose(smile.correlations, np.array(CORRELATIONS) * 1.25)
        smile.bump_correlations(-0.25, relative=True)
        np.testing.assert_allclose(smile.correlations, CORRELATIONS)

    def test_clamped_to_range(self):
        smile = BaseCorrelation(AF, StrikeMethod.UNSCALED, [0.03, 0.07], [0.95, 0.5])
        change = smile.bump_correlation(0, 0.1)
        assert smile.correlations[0] == pytest.approx(1.0)
        assert change == pytest.approx(0.05)

    def test_average_change(self, smile):
        assert smile.bump_correlations(0.02) == pytest.approx(0.02)

    def test_bump_invalidates_interpolation(self, smile):
        assert smile.get_correlation(0.03) == pytest.approx(0.2)
        smile.bump_correlation(0, 0.1)
        assert smile.get_correlation(0.03) == pytest.approx(0.3)

    def test_nan_entries_skipped(self):
        smile = BaseCorrelation(AF, StrikeMethod.UNSCALED, [0.03, 0.07], [np.nan, 0.5])
        assert smile.bump_correlations(0.1) == pytest.approx(0.1)
        assert np.isnan(smile.correlations[0])

    def test_invalid_index(self, smile):
        with pytest.raises(ValueError):
            smile.bump_correlation(4, 0.1)
        with pytest.raises(ValueError):
            smile.bump_indices([0, -1], 0.1)

    def test_bump_detachments(self, smile):
        change = smile.bump_detachments([0.07, 0.5], 0.05)
        assert change == pytest.approx(0.05)
        np.testing.assert_allclose(smile.correlations, [0.20, 0.30, 0.30, 0.35])

    def test_bump_detachments_per_detachment(self, smile):
        change = smile.bump_detachments([0.03, 0.15], [0.01, -0.05])
        assert change == pytest.approx(-0.02)
        np.testing.assert_allclose(smile.correlations, [0.21, 0.25, 0.30, 0.30])
        with pytest.raises(ValueError):
            smile.bump_detachments([0.03, 0.07, 0.10], [0.01, 0.02])

    def test_repeated_detachment_bumped_once(self, smile):
        change = smile.bump_detachments([0.07, 0.07 + 1e-8], 0.05)
        assert change == pytest.approx(0.05)
        np.testing.assert_allclose(smile.correlations, [0.20, 0.30, 0.30, 0.35])

    def test_bump_indices(self, smile):
        smile.bump_indices([1, 3], -0.05)
        np.testing.assert_allclose(smile.correlations, [0.20, 0.20, 0.30, 0.30])


# =============================================================================
# Combination
# =============================================================================

class TestCombine:

    def test_weighted_average(self):
        a = BaseCorrelation(AF, StrikeMethod.UNSCALED, [0.03, 0.07], [0.2, 0.3])
        b = BaseCorrelation(AF, StrikeMethod.UNSCALED, [0.03, 0.07], [0.4, 0.5])
        combined = BaseCorrelation.combine([a, b], [1.0, 3.0])
        np.testing.assert_allclose(combined.strikes, [0.03, 0.07])
        np.testing.assert_allclose(combined.correlations, [0.35, 0.45])

    def test_union_of_strikes(self):
        a = BaseCorrelation(AF, StrikeMethod.UNSCALED, [0.03, 0.07], [0.2, 0.3])
        b = BaseCorrelation(AF, StrikeMethod.UNSCALED, [0.05, 0.07], [0.2, 0.3])
        combined = BaseCorrelation.combine([a, b])
        np.testing.assert_allclose(combined.strikes, [0.03, 0.05, 0.07])
        assert combined.correlations[1] == pytest.approx(0.5 * (0.25 + 0.2))

    def test_strike_methods_must_match(self):
        a = BaseCorrelation(AF, StrikeMethod.UNSCALED, [0.03], [0.2])
        b = BaseCorrelation(AF, StrikeMethod.PROTECTION, [0.03], [0.2])
        with pytest.raises(ValueError):
            BaseCorrelation.combine([a, b])

    def test_weights_length(self):
        a = BaseCorrelation(AF, StrikeMethod.UNSCALED, [0.03], [0.2])
        with pytest.raises(ValueError):
            BaseCorrelation.combine([a], [1.0, 2.0])
