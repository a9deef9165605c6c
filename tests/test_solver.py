"""
Tests for the root finders and the smile fixed-point search.
"""

import math

import pytest

from basecorr.interp import CorrelationEvaluator, Interp
from basecorr.solver import (
    Brent,
    SolverConfig,
    SolverError,
    bracket_index,
    brent,
    check_tolerance,
    solve_strike,
)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def rising_table():
    """Identity-like smile: correlation equals strike on five knots."""
    knots = [0.1, 0.2, 0.3, 0.4, 0.5]
    return CorrelationEvaluator(Interp(), knots, knots)


@pytest.fixture
def config():
    return SolverConfig().resolved(1.0e6)


# =============================================================================
# Tolerances
# =============================================================================

class TestCheckTolerance:

    def test_defaults_from_principal(self):
        tol_f, tol_x = check_tolerance(0.0, 0.0, 1.0e8)
        assert tol_f == pytest.approx(1.0e-8)
        assert tol_x == pytest.approx(1.0e-6)

    def test_defaults_capped(self):
        tol_f, tol_x = check_tolerance(0.0, 0.0, 10.0)
        assert tol_f == pytest.approx(1.0e-6)
        assert tol_x == pytest.approx(1.0e-4)

    def test_explicit_values_kept(self):
        assert check_tolerance(1e-3, 1e-2, 1.0) == (1e-3, 1e-2)

    def test_config_resolved(self):
        cfg = SolverConfig(tolerance_f=0.0, tolerance_x=5e-5).resolved(1.0e7)
        assert cfg.tolerance_f == pytest.approx(1.0e-7)
        assert cfg.tolerance_x == pytest.approx(5e-5)


# =============================================================================
# Brent
# =============================================================================

class TestBrent:

    def test_bracketed_root(self):
        fn = lambda x: x * x
        x = brent(fn, 2.0, 1.0, 1.0, 2.0, 4.0, 1e-12, 1e-12)
        assert x == pytest.approx(math.sqrt(2.0), abs=1e-9)

    def test_unbracketed_raises(self):
        fn = lambda x: x * x + 1.0
        with pytest.raises(SolverError):
            brent(fn, 0.0, 0.0, 1.0, 1.0, 2.0, 1e-10, 1e-10)

    def test_solver_expands_bracket(self):
        rf = Brent(0.0, 10.0, 1e-12, 1e-10)
        x = rf.solve(lambda x: x ** 3, 27.0, x0=1.0)
        assert x == pytest.approx(3.0, abs=1e-8)

    def test_solver_no_root_in_bounds(self):
        rf = Brent(0.0, 1.0, 1e-10, 1e-6)
        with pytest.raises(SolverError):
            rf.solve(lambda x: x * x + 1.0, 0.0, x0=0.5)

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            Brent(1.0, 0.0, 1e-6, 1e-6)

    def test_bracket_outside_bounds(self):
        rf = Brent(0.0, 1.0, 1e-10, 1e-6)
        with pytest.raises(SolverError):
            rf.solve(lambda x: x, 0.5, x_lower=-1.0, x_upper=0.9)


# =============================================================================
# Monotone Table Search
# =============================================================================

class TestBracketIndex:

    def test_root_between_knots(self, rising_table):
        # strike(c) = 0.19 + 0.2 c, fixed point at 0.2375
        strike_fn = lambda x: 0.25 + 0.2 * (x * x - 0.3)
        assert bracket_index(rising_table, strike_fn, 1e-8) == 2

    def test_root_on_knot(self, rising_table):
        strike_fn = lambda x: x * x
        idx = bracket_index(rising_table, strike_fn, 1e-8)
        assert idx < 0
        assert rising_table.get_correlation(-idx - 1) == pytest.approx(0.3)

    def test_root_below_first_knot(self, rising_table):
        strike_fn = lambda x: 0.05
        assert bracket_index(rising_table, strike_fn, 1e-8) == 0

    def test_root_above_last_knot(self, rising_table):
        strike_fn = lambda x: 0.9
        assert bracket_index(rising_table, strike_fn, 1e-8) == 5


class TestSolveStrike:

    def test_monotone_table(self, rising_table, config):
        strike_fn = lambda x: 0.25 + 0.2 * (x * x - 0.3)
        corr = solve_strike(rising_table, strike_fn, config, 1.0)
        assert 0.2 < corr < 0.3
        assert corr == pytest.approx(0.2375, abs=1e-3)

    def test_exact_knot(self, rising_table, config):
        corr = solve_strike(rising_table, lambda x: x * x, config, 1.0)
        assert corr == pytest.approx(0.3)

    def test_non_monotone_table_uses_full_domain(self, config):
        knots = [0.1, 0.2, 0.3, 0.4, 0.5]
        table = CorrelationEvaluator(Interp(), knots, knots[::-1])
        assert not table.is_monotone()
        corr = solve_strike(table, lambda x: x * x, config, 1.0)
        assert corr == pytest.approx(0.3, abs=1e-3)

    def test_without_bracket_index(self, rising_table):
        cfg = SolverConfig(use_bracket_index=False).resolved(1.0e6)
        strike_fn = lambda x: 0.25 + 0.2 * (x * x - 0.3)
        corr = solve_strike(rising_table, strike_fn, cfg, 1.0)
        assert corr == pytest.approx(0.2375, abs=1e-3)

    def test_no_solution_raises(self, config):
        knots = [0.1, 0.2, 0.3]
        table = CorrelationEvaluator(Interp(), knots, [2.0, 2.0, 2.0])
        with pytest.raises(SolverError):
            solve_strike(table, lambda x: 0.9, config, 1.0)
