"""
Shared fixtures: a small homogeneous-recovery portfolio, a flat discount
curve and tranche quotes generated at a known base correlation smile.
"""

import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from basecorr import (
    BasketSpec,
    DiscountCurve,
    SemiAnalyticBasketPricer,
    SurvivalCurve,
)
from data.synthetic.generator import EntityConfig, TrancheQuoteGenerator, TrancheSpec


AS_OF = "2024-03-20"
MATURITY = "2029-03-20"
DETACHMENTS = [0.03, 0.07, 0.10, 0.15]
SMILE = [0.15, 0.25, 0.32, 0.40]


# =============================================================================
# Market Fixtures
# =============================================================================

@pytest.fixture
def as_of() -> pd.Timestamp:
    return pd.Timestamp(AS_OF)


@pytest.fixture
def maturity() -> pd.Timestamp:
    return pd.Timestamp(MATURITY)


@pytest.fixture
def discount_curve() -> DiscountCurve:
    return DiscountCurve(AS_OF, 0.03)


@pytest.fixture
def generator() -> TrancheQuoteGenerator:
    """30 names with 5Y spreads from 80 to 196 bps."""
    gen = TrancheQuoteGenerator(seed=7)
    gen.set_entities([
        EntityConfig(name=f"Name {i}", ticker=f"N{i:02d}", sector="Industrials",
                     base_spread_5y=80.0 + 4.0 * i)
        for i in range(30)
    ])
    return gen


@pytest.fixture
def basket(generator) -> SemiAnalyticBasketPricer:
    return generator.build_basket(AS_OF, MATURITY)


@pytest.fixture
def flat_basket() -> SemiAnalyticBasketPricer:
    """20 identical names with a flat 1% hazard rate."""
    curves = [SurvivalCurve.flat(AS_OF, 0.01, 0.4, f"H{i:02d}") for i in range(20)]
    return SemiAnalyticBasketPricer(BasketSpec(AS_OF, MATURITY, curves))


@pytest.fixture
def ladder():
    attachments = [0.0] + DETACHMENTS[:-1]
    return [TrancheSpec(a, d, c) for a, d, c in zip(attachments, DETACHMENTS, SMILE)]


@pytest.fixture
def quotes(generator, basket, discount_curve, ladder) -> pd.DataFrame:
    """Break-even quotes of the ladder at the known smile."""
    return generator.generate_quotes(basket, discount_curve, [MATURITY], [ladder])
