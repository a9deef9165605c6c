"""
Base Correlation Calibration Library
"""
from .base_correlation import BaseCorrelation
from .basket import BasketSpec, SemiAnalyticBasketPricer
from .bootstrapper import BootStrapper
from .calibration import (
    BaseCorrelationMethod,
    CalibrationResult,
    implied_base_correlations,
    implied_correlation,
    implied_correlation_pv,
    implied_protection_correlation,
    tranche_correlation,
)
from .calibrator import BaseCorrelationCalibrator, TrancheQuote
from .copula import GaussianCopula, TCopula
from .correlation import CorrelationTermStruct, SingleFactorCorrelation
from .curves import Curve, DiscountCurve, SurvivalCurve, year_fraction
from .interp import CorrelationEvaluator, CorrelationRangeError, ExtrapMethod, Interp, InterpMethod
from .pricer import SyntheticCDO, SyntheticCDOPricer
from .solver import Brent, SolverConfig, SolverError, solve_strike
from .strikes import StrikeEvaluator, StrikeMethod, compute_strikes, make_strike_function
from .term_structure import BaseCorrelationTermStruct, CalibrationMethod

__all__ = [
    'BaseCorrelation',
    'BasketSpec',
    'SemiAnalyticBasketPricer',
    'BootStrapper',
    'BaseCorrelationMethod',
    'CalibrationResult',
    'implied_base_correlations',
    'implied_correlation',
    'implied_correlation_pv',
    'implied_protection_correlation',
    'tranche_correlation',
    'BaseCorrelationCalibrator',
    'TrancheQuote',
    'GaussianCopula',
    'TCopula',
    'CorrelationTermStruct',
    'SingleFactorCorrelation',
    'Curve',
    'DiscountCurve',
    'SurvivalCurve',
    'year_fraction',
    'CorrelationEvaluator',
    'CorrelationRangeError',
    'ExtrapMethod',
    'Interp',
    'InterpMethod',
    'SyntheticCDO',
    'SyntheticCDOPricer',
    'Brent',
    'SolverConfig',
    'SolverError',
    'solve_strike',
    'StrikeEvaluator',
    'StrikeMethod',
    'compute_strikes',
    'make_strike_function',
    'BaseCorrelationTermStruct',
    'CalibrationMethod',
]
