"""Stability checks for the relaxation loop."""

import numpy as np

from .errors import ConfigurationError

# Absolute slack on threshold comparisons
STABILITY_ATOL = 1e-12


class ConvergenceDetector:
    """Per-cell and aggregate stability check against a threshold.

    A cell is stable when ``|new - old| <= threshold``. Fixed cells are
    copied unchanged by every kernel, so they are always stable and need no
    special casing here.
    """

    def __init__(self, threshold: float, atol: float = STABILITY_ATOL):
        if not threshold > 0:
            raise ConfigurationError(f"threshold must be > 0, got {threshold}")
        self.threshold = threshold
        self.atol = atol

    def cell_is_stable(self, new: float, old: float) -> bool:
        return abs(new - old) <= self.threshold + self.atol

    def max_change(self, new: np.ndarray, old: np.ndarray) -> float:
        if new.size == 0:
            return 0.0
        return float(np.max(np.abs(new - old)))

    def region_is_stable(self, new: np.ndarray, old: np.ndarray) -> bool:
        return self.max_change(new, old) <= self.threshold + self.atol

    @staticmethod
    def combine(flags) -> bool:
        """Logical AND of local stability flags."""
        return all(flags)
