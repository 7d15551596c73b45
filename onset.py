"""Spectral flux onset strength."""

from typing import Optional

import numpy as np


def spectral_flux(current: np.ndarray, previous: Optional[np.ndarray]) -> float:
    """Sum of positive bin-wise magnitude increases from *previous* to *current*."""
    if previous is None or len(previous) == 0:
        return 0.0
    count = min(len(current), len(previous))
    diff = np.asarray(current[:count], dtype=np.float64) - np.asarray(previous[:count], dtype=np.float64)
    return float(np.sum(np.maximum(0.0, diff)))


class OnsetEstimator:
    """Holds the previous spectrum and yields one onset value per frame."""

    def __init__(self):
        self.prev_spectrum: Optional[np.ndarray] = None

    def process(self, spectrum: np.ndarray) -> float:
        onset = spectral_flux(spectrum, self.prev_spectrum)
        self.prev_spectrum = np.array(spectrum, dtype=np.float64, copy=True)
        return onset
