"""
Configuration for the base correlation engine.
"""
import logging
from typing import Optional, Union

# =============================================================================
# Pricing Defaults
# =============================================================================
DEFAULT_RECOVERY_RATE = 0.4         # Industry standard
DEFAULT_STEP_SIZE = 0.25            # Loss distribution time step (years)
DEFAULT_PREMIUM_FREQUENCY = 4       # Quarterly premium payments
DAYS_PER_YEAR = 365.0               # Actual/365 year fractions

# =============================================================================
# Quadrature
# =============================================================================
DEFAULT_QUADRATURE_POINTS = 25      # Gauss-Hermite nodes on the common factor
DEFAULT_T_QUADRATURE_POINTS = 10    # Gauss-Laguerre nodes on the t mixing variable
HIGH_FACTOR_QUADRATURE_POINTS = 40  # Used when the factor approaches one
HIGH_FACTOR_THRESHOLD = 0.945

# =============================================================================
# Root Finder
# =============================================================================
MAX_ITERATIONS = 1000
MIN_FACTOR = 1e-10
MAX_TOLERANCE_F = 1e-6
MAX_TOLERANCE_X = 1e-4
BRACKET_STEP = 1.6
BRACKET_STEPS = 50
FULL_SEARCH_START = 0.4

# =============================================================================
# Calibration
# =============================================================================
INITIAL_SEARCH_POINTS = 7           # Intervals of the coarse protection-matching grid
GENERAL_BRACKET_MAX = 0.99
GENERAL_BRACKET_TOLERANCE = 0.1

# =============================================================================
# Smile
# =============================================================================
DEFAULT_MIN_CORRELATION = 0.0
DEFAULT_MAX_CORRELATION = 1.0
CORRELATION_SANITY_BOUND = 2.0000000001
CORRELATION_EQUALITY = 1e-7
DETACHMENT_MATCH_TOLERANCE = 1e-6
ZERO_DETACHMENT = 1e-8
FULL_DETACHMENT = 0.9999999999
ZERO_ATTACHMENT = 1e-7
BASE_TRANCHE_ATTACHMENT = 1e-5

# =============================================================================
# Logging
# =============================================================================
LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def configure_logging(level: Optional[Union[str, int]] = None) -> None:
    """
    Configure the root logger for scripts and notebooks using the engine.

    Parameters
    ----------
    level : str or int, optional
        Logging level, defaults to ``LOG_LEVEL``
    """
    level = LOG_LEVEL if level is None else level
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
