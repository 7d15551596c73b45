import colorsys
from typing import Sequence

import numpy as np


def frequency_for_bin(bin_index: float, sample_rate: float, fft_size: int) -> float:
    """Center frequency (Hz) of an FFT bin."""
    return float(bin_index) * sample_rate / fft_size


def bin_for_frequency(frequency: float, sample_rate: float, fft_size: int) -> int:
    """Nearest FFT bin for a frequency (Hz)."""
    if sample_rate <= 0:
        return 0
    return max(0, int(round(frequency * fft_size / sample_rate)))


def extract_dominant_freq(
    spectrum: np.ndarray | None,
    sample_rate: int,
    freq_low: float,
    freq_high: float,
) -> float:
    """Extract dominant frequency from a specific Hz range of a half-size spectrum."""
    if spectrum is None or len(spectrum) == 0:
        return 0.0

    freq_per_bin = sample_rate / (2 * len(spectrum))
    if freq_per_bin <= 0:
        return 0.0

    low_bin = max(0, int(freq_low / freq_per_bin))
    high_bin = min(len(spectrum) - 1, int(freq_high / freq_per_bin))
    if low_bin >= high_bin:
        return 0.0

    band = spectrum[low_bin:high_bin + 1]
    if float(np.max(band)) <= 0.0:
        return 0.0
    peak_bin = low_bin + int(np.argmax(band))
    return peak_bin * freq_per_bin


def name_for_frequency(frequency: float) -> str:
    """Short descriptive register name for a center frequency."""
    if frequency < 100:
        return "Sub"
    if frequency < 250:
        return "Bass"
    if frequency < 500:
        return "Low"
    if frequency < 1000:
        return "Mid"
    if frequency < 2000:
        return "High"
    if frequency < 4000:
        return "Bright"
    if frequency < 8000:
        return "Air"
    return "Ultra"


def color_for_frequency(frequency: float) -> tuple[float, float, float]:
    """RGB color for a centroid: hue runs from blue at 100 Hz down to orange around 4 kHz."""
    normalized = (frequency - 100.0) / 4000.0
    hue = max(0.0, min(1.0, 0.6 - normalized * 0.5))
    return colorsys.hsv_to_rgb(hue, 0.7, 0.9)


def band_index_for_frequency(frequency: float, bands: Sequence) -> int:
    """Index of the band containing a frequency; the last band catches everything else."""
    for i, band in enumerate(bands):
        if band.low_hz <= frequency < band.high_hz:
            return i
    return len(bands) - 1


def band_energies(spectrum: np.ndarray, sample_rate: float, fft_size: int, bands: Sequence) -> np.ndarray:
    """Mean magnitude per band; empty bands read 0."""
    freqs = np.arange(len(spectrum)) * (sample_rate / fft_size)
    energies = np.zeros(len(bands), dtype=np.float64)
    for i, band in enumerate(bands):
        mask = (freqs >= band.low_hz) & (freqs < band.high_hz)
        if np.any(mask):
            energies[i] = float(np.mean(spectrum[mask]))
    return energies
