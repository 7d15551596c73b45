"""
SoundVis - Spectral Transform
Turns incoming sample buffers of any length into a fixed-size magnitude spectrum.
"""

from typing import Optional

import numpy as np
from scipy.signal import get_window

from config import SpectrumConfig
from frequency_utils import bin_for_frequency, frequency_for_bin
from logging_utils import log_event


class SpectralTransform:
    """
    Windowed real FFT over a sliding staging buffer.

    The staging buffer always holds the most recent ``fft_size`` samples:
    short buffers are appended to the tail and the oldest samples fall off
    the front, so startup frames are zero-padded on the left.  Output has
    ``fft_size // 2`` bins with magnitude ``|X[k]| / fft_size``.
    """

    def __init__(self, fft_size: int = 2048, sample_rate: float = 48000,
                 db_normalize: bool = False, db_floor: float = -90.0,
                 db_ceiling: float = -10.0, noise_gate_db: float = 10.0):
        if fft_size <= 0 or (fft_size & (fft_size - 1)) != 0:
            raise ValueError(f"fft_size must be a power of two, got {fft_size}")
        if db_ceiling <= db_floor:
            raise ValueError("db_ceiling must be above db_floor")

        self.fft_size = int(fft_size)
        self.sample_rate = float(sample_rate)
        self.db_normalize = db_normalize
        self.db_floor = float(db_floor)
        self.db_ceiling = float(db_ceiling)
        self.noise_gate_db = float(noise_gate_db)

        self._input_buffer = np.zeros(self.fft_size, dtype=np.float64)
        self._window = get_window('hann', self.fft_size)

        # Per-bin noise floor in dB (dB-normalized mode only)
        self.noise_floor_db: Optional[np.ndarray] = None
        self._noise_samples: Optional[list[np.ndarray]] = None

    @classmethod
    def from_config(cls, spectrum: SpectrumConfig, sample_rate: float) -> "SpectralTransform":
        return cls(
            fft_size=spectrum.fft_size,
            sample_rate=sample_rate,
            db_normalize=spectrum.db_normalize,
            db_floor=spectrum.db_floor,
            db_ceiling=spectrum.db_ceiling,
            noise_gate_db=spectrum.noise_gate_db,
        )

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def process(self, samples) -> np.ndarray:
        """Push samples and return the magnitude spectrum of the current window."""
        samples = np.asarray(samples, dtype=np.float64).ravel()
        count = min(len(samples), self.fft_size)
        if count > 0:
            if count < self.fft_size:
                self._input_buffer[:-count] = self._input_buffer[count:]
            self._input_buffer[-count:] = samples[-count:]

        windowed = self._input_buffer * self._window
        spectrum = np.abs(np.fft.rfft(windowed))[:self.bin_count] / self.fft_size

        if not self.db_normalize:
            return spectrum

        spectrum_db = self.to_decibels(spectrum)
        if self._noise_samples is not None:
            self._noise_samples.append(spectrum_db)
        return self.normalize_decibels(spectrum_db)

    def to_decibels(self, spectrum: np.ndarray) -> np.ndarray:
        return 20.0 * np.log10(np.maximum(spectrum, 1e-12))

    def normalize_decibels(self, spectrum_db: np.ndarray) -> np.ndarray:
        """Noise-gate then map [db_floor, db_ceiling] onto [0, 1]."""
        values = spectrum_db.copy()
        if self.noise_floor_db is not None and len(self.noise_floor_db) == len(values):
            gated = values < self.noise_floor_db + self.noise_gate_db
            values[gated] = self.db_floor
        values = np.clip(values, self.db_floor, self.db_ceiling)
        return (values - self.db_floor) / (self.db_ceiling - self.db_floor)

    # ------------------------------------------------------------------
    # Noise floor
    # ------------------------------------------------------------------
    def begin_noise_floor(self) -> None:
        """Start collecting dB spectra for a noise floor estimate."""
        self._noise_samples = []

    @property
    def is_learning_noise_floor(self) -> bool:
        return self._noise_samples is not None

    def finish_noise_floor(self) -> None:
        """Average the collected spectra into the per-bin noise floor."""
        samples = self._noise_samples or []
        self._noise_samples = None
        if not samples:
            return
        self.noise_floor_db = np.mean(np.stack(samples), axis=0)
        log_event("INFO", "Spectrum", "Noise floor learned",
                  frames=len(samples), mean_db=f"{float(np.mean(self.noise_floor_db)):.1f}")

    # ------------------------------------------------------------------
    # Bin <-> frequency
    # ------------------------------------------------------------------
    def frequency_for_bin(self, bin_index: float) -> float:
        return frequency_for_bin(bin_index, self.sample_rate, self.fft_size)

    def bin_for_frequency(self, frequency: float) -> int:
        return min(self.bin_count - 1, bin_for_frequency(frequency, self.sample_rate, self.fft_size))
