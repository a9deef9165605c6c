"""
One-factor copula models for the basket loss distribution.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Union

import numpy as np
from numpy.polynomial.hermite_e import hermegauss
from scipy.special import gammaln, roots_genlaguerre
from scipy.stats import norm, t

from .config import DEFAULT_T_QUADRATURE_POINTS

# Conditional variance floor, keeps the factor = 1 limit a (steep) step
_MIN_IDIOSYNCRATIC_VARIANCE = 1e-24


@dataclass(frozen=True)
class FactorQuadrature:
    """Quadrature rule over the common factor (and mixing variable)."""
    nodes: np.ndarray     # common factor values
    scales: np.ndarray    # threshold scaling per node (1 for Gaussian)
    weights: np.ndarray   # sum to one

    @property
    def size(self) -> int:
        return self.nodes.size


def _hermite_rule(points: int):
    z, w = hermegauss(points)
    return z, w / w.sum()


class BaseCopula(ABC):
    """Abstract base class for one-factor copulas."""

    @abstractmethod
    def thresholds(self, p: np.ndarray) -> np.ndarray:
        """Default thresholds ``F^{-1}(p)`` of the latent variables."""
        pass

    @abstractmethod
    def quadrature(self, points: int) -> FactorQuadrature:
        """Integration rule for the common factor."""
        pass

    def conditional_default_probability(
        self,
        p: np.ndarray,
        factor: Union[float, np.ndarray],
        quad: FactorQuadrature,
    ) -> np.ndarray:
        """
        Default probability conditional on each quadrature node.

        P(default | M = m) = Phi((s * c - a * m) / sqrt(1 - a^2))

        Parameters
        ----------
        p : np.ndarray
            Unconditional default probabilities, any shape
        factor : float or np.ndarray
            Factor loading ``a``, broadcastable to ``p``; clamped to [0, 1]
        quad : FactorQuadrature
            Quadrature nodes

        Returns
        -------
        np.ndarray
            Shape ``(quad.size,) + p.shape``
        """
        p = np.asarray(p, dtype=float)
        a = np.clip(np.asarray(factor, dtype=float), 0.0, 1.0)
        c = self.thresholds(p)
        denom = np.sqrt(np.maximum(1.0 - a * a, _MIN_IDIOSYNCRATIC_VARIANCE))

        extra = (1,) * p.ndim
        m = quad.nodes.reshape((-1,) + extra)
        s = quad.scales.reshape((-1,) + extra)
        with np.errstate(invalid="ignore"):
            x = (s * c - a * m) / denom
        # thresholds of -inf/+inf are certain survival/default
        x = np.where(np.isneginf(c), -np.inf, np.where(np.isposinf(c), np.inf, x))
        return norm.cdf(x)


class GaussianCopula(BaseCopula):
    """One-factor Gaussian copula."""

    def thresholds(self, p: np.ndarray) -> np.ndarray:
        return norm.ppf(p)

    def quadrature(self, points: int) -> FactorQuadrature:
        z, w = _hermite_rule(points)
        return FactorQuadrature(nodes=z, scales=np.ones_like(z), weights=w)

    def __repr__(self) -> str:
        return "GaussianCopula()"


class TCopula(BaseCopula):
    """
    One-factor Student-t copula.

    X_i = sqrt(W) (a M + sqrt(1 - a^2) e_i),  W = df / chi2(df)

    Conditioning on both M and W leaves independent Gaussian defaults; W is
    integrated with generalized Gauss-Laguerre nodes over ``chi2 / 2``.
    """

    def __init__(self, df: float, points_second: int = DEFAULT_T_QUADRATURE_POINTS):
        if df <= 2:
            raise ValueError(f"Degrees of freedom must be > 2, got {df}")
        self.df = float(df)
        self.points_second = int(points_second)

    def thresholds(self, p: np.ndarray) -> np.ndarray:
        return t.ppf(p, df=self.df)

    def quadrature(self, points: int) -> FactorQuadrature:
        z, wz = _hermite_rule(points)

        # y = chi2 / 2 ~ Gamma(df/2, 1)
        half = self.df / 2
        y, wy = roots_genlaguerre(self.points_second, half - 1)
        wy = wy * np.exp(-gammaln(half))
        wy = wy / wy.sum()
        scales = np.sqrt(2.0 * y / self.df)   # 1 / sqrt(W)

        nodes = np.repeat(z, y.size)
        return FactorQuadrature(
            nodes=nodes,
            scales=np.tile(scales, z.size),
            weights=np.repeat(wz, y.size) * np.tile(wy, z.size),
        )

    def __repr__(self) -> str:
        return f"TCopula(df={self.df})"
