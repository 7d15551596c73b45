"""
SoundVis - Voice Tracker
Finds long-lived frequency regions ("voices") in the magnitude spectrum and
keeps per-voice activity and energy for the renderer.

Two modes share peak detection, decay and eviction:
  CALIBRATED - average a warm-up period, carve non-overlapping regions out
               of the mean spectrum, then track those regions by energy and
               spectral-shape correlation.
  CONTINUOUS - match the strongest peaks of each frame to existing voices by
               bin distance, spawning and dissolving voices as they come.
"""

import itertools
import time
from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.signal import argrelextrema

from config import VoiceConfig, VoiceTrackingMode
from frequency_utils import (
    band_index_for_frequency,
    bin_for_frequency,
    color_for_frequency,
    frequency_for_bin,
    name_for_frequency,
)
from logging_utils import log_event


@dataclass
class SpectralPeak:
    """Local spectral maximum"""
    bin_index: int
    frequency: float
    magnitude: float
    bandwidth: int            # Bins either side still at/above half magnitude


@dataclass
class Voice:
    """Tracked frequency region. Owned and mutated by VoiceTracker only."""
    id: int
    name: str
    low_freq: float
    high_freq: float
    centroid: float
    color: tuple
    shape: Optional[np.ndarray] = None   # Normalized template over the claimed bins
    energy: float = 0.0
    smoothed_energy: float = 0.0
    is_active: bool = False
    last_active_time: float = 0.0
    last_active_frame: int = 0
    bin_center: float = 0.0
    band: str = ""
    age: int = 0


@dataclass(frozen=True)
class VoiceState:
    """Read-only copy of a voice for consumers"""
    id: int
    name: str
    frequency: float
    low_freq: float
    high_freq: float
    energy: float
    smoothed_energy: float
    is_active: bool
    color: tuple
    band: str = ""
    age: int = 0
    frequency_norm: float = 0.0


def find_peaks(spectrum: np.ndarray, threshold: float, sample_rate: float, fft_size: int,
               max_bandwidth: int = 19) -> list[SpectralPeak]:
    """Strict local maxima over a +/-2 bin window above *threshold*.

    Bandwidth counts outward while either neighbour stays at or above half
    the peak magnitude, capped at *max_bandwidth*.
    """
    spectrum = np.asarray(spectrum, dtype=np.float64)
    n = len(spectrum)
    if n < 5:
        return []

    candidates = argrelextrema(spectrum, np.greater, order=2, mode='clip')[0]
    peaks: list[SpectralPeak] = []
    for i in candidates:
        i = int(i)
        if i < 2 or i > n - 3:
            continue
        magnitude = float(spectrum[i])
        if magnitude <= threshold:
            continue

        half = magnitude / 2.0
        bandwidth = 0
        for j in range(1, max_bandwidth + 1):
            left = spectrum[i - j] if i - j >= 0 else 0.0
            right = spectrum[i + j] if i + j < n else 0.0
            if left < half and right < half:
                break
            bandwidth = j

        peaks.append(SpectralPeak(
            bin_index=i,
            frequency=frequency_for_bin(i, sample_rate, fft_size),
            magnitude=magnitude,
            bandwidth=bandwidth,
        ))
    return peaks


def shape_correlation(a: np.ndarray, b: np.ndarray) -> float:
    """Normalized cross-correlation (cosine similarity); 0 for empty or zero vectors."""
    n = min(len(a), len(b))
    if n == 0:
        return 0.0
    a = np.asarray(a[:n], dtype=np.float64)
    b = np.asarray(b[:n], dtype=np.float64)
    denom = float(np.sqrt(np.dot(a, a) * np.dot(b, b)))
    if denom <= 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


def _normalized(values: np.ndarray) -> np.ndarray:
    peak = float(np.max(values)) if len(values) else 0.0
    if peak > 0:
        return values / peak
    return values.copy()


class VoiceTracker:
    def __init__(self, config: VoiceConfig, sample_rate: float, fft_size: int):
        self.config = config
        self.sample_rate = float(sample_rate)
        self.fft_size = int(fft_size)
        self.mode = VoiceTrackingMode(config.mode)

        self.voices: list[Voice] = []
        self._ids = itertools.count(1)
        self.frame_count: int = 0

        # Calibration state
        self.is_calibrating: bool = self.mode == VoiceTrackingMode.CALIBRATED
        self.calibration_history: deque[np.ndarray] = deque(maxlen=max(1, config.calibration_history_max))
        self.calibration_started_at: Optional[float] = None
        self.calibration_frames_seen: int = 0

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def process(self, spectrum: np.ndarray, now: Optional[float] = None,
                level: Optional[float] = None) -> None:
        """Update voices from one spectrum. *level* is the buffer RMS (continuous mode quiet gate)."""
        if now is None:
            now = time.time()
        self.frame_count += 1

        if self.mode == VoiceTrackingMode.CONTINUOUS:
            self._process_continuous(np.asarray(spectrum, dtype=np.float64), level, now)
            return

        if self.is_calibrating:
            self._collect_calibration(spectrum, now)
            if self._calibration_complete(now):
                self.finalize_calibration(now)
        else:
            self._match_calibrated(np.asarray(spectrum, dtype=np.float64), now)

    # ------------------------------------------------------------------
    # Calibrated mode
    # ------------------------------------------------------------------
    def _collect_calibration(self, spectrum: np.ndarray, now: float) -> None:
        if self.calibration_started_at is None:
            self.calibration_started_at = now
            log_event("INFO", "Voices", "Calibration started",
                      seconds=self.config.calibration_seconds,
                      frames=self.config.calibration_frames)
        self.calibration_history.append(np.array(spectrum, dtype=np.float64, copy=True))
        self.calibration_frames_seen += 1

    def _calibration_complete(self, now: float) -> bool:
        if self.config.calibration_frames > 0:
            return self.calibration_frames_seen >= self.config.calibration_frames
        if self.calibration_started_at is None:
            return False
        return now - self.calibration_started_at >= self.config.calibration_seconds

    def calibration_progress(self, now: Optional[float] = None) -> float:
        """Fraction of the calibration period elapsed (1.0 once tracking)."""
        if not self.is_calibrating:
            return 1.0
        if self.config.calibration_frames > 0:
            return min(1.0, self.calibration_frames_seen / self.config.calibration_frames)
        if self.calibration_started_at is None or self.config.calibration_seconds <= 0:
            return 0.0
        if now is None:
            now = time.time()
        return min(1.0, max(0.0, (now - self.calibration_started_at) / self.config.calibration_seconds))

    def finalize_calibration(self, now: Optional[float] = None) -> None:
        """Turn the averaged calibration spectra into a fixed, frequency-ordered voice set."""
        if now is None:
            now = time.time()
        self.is_calibrating = False
        if not self.calibration_history:
            log_event("INFO", "Voices", "Calibration finished without data")
            return

        mean_spectrum = np.mean(np.stack(list(self.calibration_history)), axis=0)
        frames = len(self.calibration_history)
        self.calibration_history.clear()

        regions = self._identify_regions(mean_spectrum)
        self.voices = []
        for low_bin, high_bin, peak_bin, shape in regions:
            centroid = self._freq(peak_bin)
            self.voices.append(Voice(
                id=next(self._ids),
                name=name_for_frequency(centroid),
                low_freq=self._freq(low_bin),
                high_freq=self._freq(high_bin),
                centroid=centroid,
                color=color_for_frequency(centroid),
                shape=shape,
                last_active_time=now,
                last_active_frame=self.frame_count,
                bin_center=float(peak_bin),
            ))

        log_event("INFO", "Voices", "Calibration finalized",
                  frames=frames, voices=len(self.voices),
                  names=",".join(v.name for v in self.voices))

    def _identify_regions(self, mean_spectrum: np.ndarray) -> list[tuple[int, int, int, np.ndarray]]:
        cfg = self.config
        peaks = [
            p for p in find_peaks(mean_spectrum, cfg.peak_threshold, self.sample_rate,
                                  self.fft_size, cfg.max_bandwidth_bins)
            if p.magnitude > cfg.region_min_magnitude
        ]
        peaks.sort(key=lambda p: p.magnitude, reverse=True)

        last_bin = len(mean_spectrum) - 1
        claimed = np.zeros(len(mean_spectrum), dtype=bool)
        regions = []
        for peak in peaks:
            if len(regions) >= cfg.max_voices:
                break
            reach = peak.bandwidth + cfg.region_margin_bins
            low_bin = max(0, peak.bin_index - reach)
            high_bin = min(last_bin, peak.bin_index + reach)
            if claimed[low_bin:high_bin + 1].any():
                continue
            claimed[low_bin:high_bin + 1] = True
            shape = _normalized(mean_spectrum[low_bin:high_bin + 1])
            regions.append((low_bin, high_bin, peak.bin_index, shape))

        regions.sort(key=lambda r: r[2])
        return regions

    def _match_calibrated(self, spectrum: np.ndarray, now: float) -> None:
        cfg = self.config
        for voice in self.voices:
            low_bin = self._bin(voice.low_freq)
            high_bin = self._bin(voice.high_freq)

            energy = 0.0
            shape_match = 0.0
            if high_bin > low_bin and low_bin >= 0 and high_bin < len(spectrum):
                window = spectrum[low_bin:high_bin + 1]
                energy = float(np.mean(window))
                if voice.shape is not None and len(voice.shape) > 0:
                    shape_match = shape_correlation(_normalized(window), voice.shape)

            voice.energy = energy
            voice.smoothed_energy += (energy - voice.smoothed_energy) * cfg.energy_smoothing
            if cfg.require_shape_match:
                voice.is_active = energy > cfg.activation_threshold and shape_match > cfg.shape_match_threshold
            else:
                voice.is_active = energy > cfg.activation_threshold

            if voice.is_active:
                voice.last_active_time = now
                voice.last_active_frame = self.frame_count
                voice.age += 1

        self._evict(lambda v: now - v.last_active_time > cfg.voice_timeout_seconds)

    # ------------------------------------------------------------------
    # Continuous mode
    # ------------------------------------------------------------------
    def _process_continuous(self, spectrum: np.ndarray, level: Optional[float], now: float) -> None:
        cfg = self.config

        if level is not None and level < cfg.quiet_rms:
            for voice in self.voices:
                voice.smoothed_energy *= cfg.quiet_smoothed_decay
                voice.energy *= cfg.quiet_energy_decay
                voice.is_active = False
            self._evict_continuous()
            return

        peaks = find_peaks(spectrum, cfg.detection_threshold, self.sample_rate,
                           self.fft_size, cfg.max_bandwidth_bins)
        peaks.sort(key=lambda p: p.magnitude, reverse=True)

        matched: set[int] = set()
        for peak in peaks[:cfg.max_voices]:
            best_match: Optional[Voice] = None
            best_dist = float(cfg.match_distance_bins)
            for voice in self.voices:
                if voice.id in matched:
                    continue
                dist = abs(voice.bin_center - peak.bin_index)
                if dist < best_dist:
                    best_dist = dist
                    best_match = voice

            if best_match is not None:
                matched.add(best_match.id)
                self._absorb_peak(best_match, peak, now)
            elif len(self.voices) < cfg.max_voices and peak.magnitude > cfg.creation_threshold:
                voice = self._spawn_voice(peak, now)
                matched.add(voice.id)

        for voice in self.voices:
            if voice.id not in matched:
                voice.smoothed_energy *= cfg.unmatched_smoothed_decay
                voice.energy *= cfg.unmatched_energy_decay
                voice.is_active = False

        self._evict_continuous()

    def _absorb_peak(self, voice: Voice, peak: SpectralPeak, now: float) -> None:
        cfg = self.config
        voice.bin_center = float(round(voice.bin_center * cfg.center_blend
                                       + peak.bin_index * (1.0 - cfg.center_blend)))
        frequency = self._freq(voice.bin_center)
        voice.centroid = frequency
        voice.low_freq = frequency
        voice.high_freq = frequency
        voice.energy = peak.magnitude
        voice.smoothed_energy += (peak.magnitude - voice.smoothed_energy) * cfg.energy_smoothing
        voice.age += 1
        voice.last_active_frame = self.frame_count
        voice.last_active_time = now
        voice.is_active = True

    def _spawn_voice(self, peak: SpectralPeak, now: float) -> Voice:
        bands = self.config.bands
        band_index = band_index_for_frequency(peak.frequency, bands)
        band = bands[band_index] if bands else None
        voice = Voice(
            id=next(self._ids),
            name=name_for_frequency(peak.frequency),
            low_freq=peak.frequency,
            high_freq=peak.frequency,
            centroid=peak.frequency,
            color=tuple(band.color) if band is not None else color_for_frequency(peak.frequency),
            energy=peak.magnitude,
            smoothed_energy=peak.magnitude,
            is_active=True,
            last_active_time=now,
            last_active_frame=self.frame_count,
            bin_center=float(peak.bin_index),
            band=band.name if band is not None else "",
        )
        self.voices.append(voice)
        log_event("DEBUG", "Voices", "Voice created",
                  id=voice.id, band=voice.band, freq_hz=f"{peak.frequency:.0f}",
                  magnitude=f"{peak.magnitude:.3f}")
        return voice

    def _evict_continuous(self) -> None:
        cfg = self.config
        self._evict(lambda v: v.smoothed_energy <= cfg.energy_floor
                    and self.frame_count - v.last_active_frame >= cfg.voice_timeout_frames)

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------
    def _evict(self, expired) -> None:
        kept = []
        for voice in self.voices:
            if expired(voice):
                log_event("INFO", "Voices", "Voice evicted",
                          id=voice.id, name=voice.name, freq_hz=f"{voice.centroid:.0f}")
            else:
                kept.append(voice)
        self.voices = kept

    def _freq(self, bin_index: float) -> float:
        return frequency_for_bin(bin_index, self.sample_rate, self.fft_size)

    def _bin(self, frequency: float) -> int:
        return bin_for_frequency(frequency, self.sample_rate, self.fft_size)

    def snapshot(self) -> tuple[VoiceState, ...]:
        """Immutable copies of the current voices, in list order."""
        bins = max(1, self.bin_count)
        return tuple(
            VoiceState(
                id=v.id,
                name=v.name,
                frequency=v.centroid,
                low_freq=v.low_freq,
                high_freq=v.high_freq,
                energy=float(v.energy),
                smoothed_energy=float(v.smoothed_energy),
                is_active=bool(v.is_active),
                color=tuple(float(c) for c in v.color),
                band=v.band,
                age=v.age,
                frequency_norm=float(v.bin_center) / bins,
            )
            for v in self.voices
        )

