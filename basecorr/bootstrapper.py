"""
Hazard rate bootstrapping from CDS spreads.
"""
import numpy as np

from .config import DEFAULT_RECOVERY_RATE


class BootStrapper:
    """Piecewise-constant hazard bootstrap from par CDS spreads (credit triangle)."""

    def __init__(self, tenors: np.ndarray, spreads: np.ndarray,
                 recovery_rate: float = DEFAULT_RECOVERY_RATE):
        """
        Parameters
        ----------
        tenors : np.ndarray
            Tenor points in years (e.g., [1, 3, 5, 7, 10])
        spreads : np.ndarray
            Par spreads in basis points at each tenor
        recovery_rate : float
            Assumed recovery rate
        """
        self.tenors = np.asarray(tenors, dtype=float)
        self.spreads = np.asarray(spreads, dtype=float) / 10000
        if self.tenors.shape != self.spreads.shape:
            raise ValueError(
                f"Tenors ({self.tenors.size}) and spreads ({self.spreads.size}) not match")
        if self.tenors.size == 0:
            raise ValueError("Must specify at least one tenor")
        if np.any(np.diff(self.tenors) <= 0):
            raise ValueError(f"Tenors must be strictly increasing: {self.tenors}")
        if not 0.0 <= recovery_rate < 1.0:
            raise ValueError(f"Invalid recovery rate {recovery_rate}")
        self.R = recovery_rate
        self.lgd = 1 - self.R

    def bootstrap(self) -> np.ndarray:
        """
        Hazard rates for each tenor interval.

        The average hazard to tenor ``T_i`` is ``s_i / LGD``; forward hazards
        are differenced from the cumulative hazards and floored at zero.

        Returns
        -------
        np.ndarray
            Hazard rate for each interval ``(T_{i-1}, T_i]``
        """
        tenors = self.tenors
        avg_haz = self.spreads / self.lgd

        haz = np.zeros(len(tenors))
        haz[0] = avg_haz[0]
        for i in range(1, len(tenors)):
            delta_t = tenors[i] - tenors[i - 1]
            haz[i] = (avg_haz[i] * tenors[i] - avg_haz[i - 1] * tenors[i - 1]) / delta_t

        return np.maximum(haz, 0.0)
