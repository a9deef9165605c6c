"""
Tests for hazard bootstrapping, survival and discount curves, and the
date-keyed interpolation curve.
"""

import numpy as np
import pytest

from basecorr.bootstrapper import BootStrapper
from basecorr.curves import Curve, DiscountCurve, SurvivalCurve, year_fraction
from basecorr.interp import Interp, InterpMethod


# =============================================================================
# Bootstrapping
# =============================================================================

class TestBootStrapper:

    def test_flat_spreads_give_flat_hazard(self):
        haz = BootStrapper([1, 3, 5], [120, 120, 120], 0.4).bootstrap()
        np.testing.assert_allclose(haz, 0.012 / 0.6)

    def test_upward_curve_forward_hazards(self):
        haz = BootStrapper([1, 2], [60, 120], 0.4).bootstrap()
        assert haz[0] == pytest.approx(0.01)
        # average hazard 0.02 over two years
        assert haz[1] == pytest.approx(0.03)

    def test_inverted_curve_floored(self):
        haz = BootStrapper([1, 2], [300, 50], 0.4).bootstrap()
        assert haz[1] == 0.0

    def test_mismatched_inputs(self):
        with pytest.raises(ValueError):
            BootStrapper([1, 2, 3], [100, 100], 0.4)

    def test_invalid_recovery(self):
        with pytest.raises(ValueError):
            BootStrapper([1], [100], 1.0)


# =============================================================================
# Survival Curves
# =============================================================================

class TestSurvivalCurve:

    def test_flat_curve(self):
        curve = SurvivalCurve.flat("2024-01-01", 0.02)
        assert curve.survival(2.0) == pytest.approx(np.exp(-0.04))
        assert curve.default_probability(0.0) == pytest.approx(0.0)

    def test_piecewise_hazard_held_flat(self):
        curve = SurvivalCurve("2024-01-01", [1.0, 2.0], [0.01, 0.02])
        assert curve.cumulative_hazard(3.0) == pytest.approx(0.05)
        assert curve.cumulative_hazard(0.5) == pytest.approx(0.005)

    def test_vectorized(self):
        curve = SurvivalCurve.flat("2024-01-01", 0.01)
        probs = curve.default_probability(np.array([1.0, 2.0, 5.0]))
        assert probs.shape == (3,)
        assert np.all(np.diff(probs) > 0)

    def test_defaulted_curve(self):
        curve = SurvivalCurve("2024-01-01", [1.0], [0.01], defaulted=True)
        assert curve.default_probability(0.5) == pytest.approx(1.0)

    def test_negative_hazard_rejected(self):
        with pytest.raises(ValueError):
            SurvivalCurve("2024-01-01", [1.0], [-0.01])

    def test_from_spreads(self):
        curve = SurvivalCurve.from_spreads("2024-01-01", np.array([1.0, 5.0]),
                                           np.array([100.0, 100.0]), 0.4, "ACME")
        assert curve.name == "ACME"
        np.testing.assert_allclose(curve.hazard_rates, 0.01 / 0.6)


# =============================================================================
# Discount Curve and Dates
# =============================================================================

class TestDiscountCurve:

    def test_discount_factor(self):
        dc = DiscountCurve("2024-01-01", 0.05)
        assert dc.discount_factor(2.0) == pytest.approx(np.exp(-0.1))
        assert dc.df("2025-01-01") == pytest.approx(np.exp(-0.05 * 366 / 365))

    def test_year_fraction(self):
        assert year_fraction("2025-01-01", "2026-01-01") == pytest.approx(1.0)
        assert year_fraction("2026-01-01", "2025-01-01") == pytest.approx(-1.0)


# =============================================================================
# Time Interpolation Curve
# =============================================================================

class TestCurve:

    def test_linear_in_time(self):
        curve = Curve("2024-01-01")
        curve.add("2026-01-01", 0.2)
        curve.add("2028-01-01", 0.4)
        assert curve.interpolate("2027-01-01") == pytest.approx(0.3)

    def test_points_sorted_and_replaced(self):
        curve = Curve("2024-01-01")
        curve.add("2028-01-01", 0.4)
        curve.add("2026-01-01", 0.2)
        curve.add("2028-01-01", 0.6)
        assert len(curve) == 2
        assert curve.interpolate("2028-01-01") == pytest.approx(0.6)

    def test_flat_outside(self):
        curve = Curve("2024-01-01")
        curve.add("2026-01-01", 0.2)
        curve.add("2028-01-01", 0.4)
        assert curve.interpolate("2025-01-01") == pytest.approx(0.2)
        assert curve.interpolate("2030-01-01") == pytest.approx(0.4)

    def test_step_interpolation(self):
        curve = Curve("2024-01-01", Interp(InterpMethod.FLAT))
        curve.add("2026-01-01", 0.2)
        curve.add("2028-01-01", 0.4)
        assert curve.interpolate("2027-06-01") == pytest.approx(0.2)

    def test_empty_curve(self):
        with pytest.raises(ValueError):
            Curve("2024-01-01").interpolate("2025-01-01")
