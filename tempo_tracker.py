"""
SoundVis - Tempo / Beat Phase Tracker
Autocorrelation tempo estimation over the onset history plus a wall-clock
anchored beat phase that keeps advancing between estimates.
"""

import math
import time
from collections import deque
from enum import IntEnum
from typing import Optional

import numpy as np

from config import TempoConfig
from logging_utils import log_event


class TempoState(IntEnum):
    COLD = 0          # No BPM yet
    ESTIMATING = 1    # BPM set, confidence below lock level
    LOCKED = 2        # BPM set, confidence at/above lock level


class TempoTracker:
    """
    Consumes one onset value per frame.

    Every ``update_interval_frames`` frames (once ``min_history`` samples
    exist) the z-scored onset history is autocorrelated over the lags that
    map into [min_bpm, max_bpm]. The best lag becomes a raw estimate; raw
    estimates are median filtered and blended into the visible BPM.

    Phase is recomputed from elapsed wall-clock time on every frame, never
    from frame counts.
    """

    def __init__(self, sample_rate: float = 48000, hop_size: int = 1024,
                 min_bpm: float = 60.0, max_bpm: float = 180.0,
                 update_interval_frames: int = 8, onset_history_size: int = 512,
                 min_history: int = 256, tempo_history_size: int = 16,
                 smoothing: float = 0.9, default_beat_interval: float = 0.5,
                 normalize_epsilon: float = 1e-4, lock_confidence: float = 0.5,
                 lag_tie_margin: float = 0.02,
                 now: Optional[float] = None):
        if min_bpm <= 0 or min_bpm >= max_bpm:
            raise ValueError(f"invalid BPM range {min_bpm}-{max_bpm}")
        if sample_rate <= 0 or hop_size <= 0:
            raise ValueError("sample_rate and hop_size must be positive")

        self.frames_per_second = float(sample_rate) / float(hop_size)
        self.min_bpm = float(min_bpm)
        self.max_bpm = float(max_bpm)
        self.update_interval_frames = max(1, int(update_interval_frames))
        self.min_history = int(min_history)
        self.smoothing = float(smoothing)
        self.default_beat_interval = float(default_beat_interval)
        self.normalize_epsilon = float(normalize_epsilon)
        self.lock_confidence = float(lock_confidence)
        self.lag_tie_margin = max(0.0, float(lag_tie_margin))

        # Lag range: shortest lag for max BPM, longest for min BPM, both inside the range
        self.min_lag = max(1, math.ceil(self.frames_per_second * 60.0 / self.max_bpm))
        self.max_lag = max(self.min_lag, math.floor(self.frames_per_second * 60.0 / self.min_bpm))

        self.onset_history: deque[float] = deque(maxlen=int(onset_history_size))
        self.tempo_estimates: deque[float] = deque(maxlen=int(tempo_history_size))

        # Visible output
        self.current_bpm: float = 0.0
        self.confidence: float = 0.0
        self.beat_phase: float = 0.0
        self.time_to_next_beat: float = 0.0

        # Phase anchor
        self.beat_interval: float = self.default_beat_interval
        self.last_beat_time: Optional[float] = None if now is None else float(now)

        self.frame_count: int = 0
        self._last_state = TempoState.COLD

    @classmethod
    def from_config(cls, tempo: TempoConfig, sample_rate: float, hop_size: int,
                    now: Optional[float] = None) -> "TempoTracker":
        return cls(
            sample_rate=sample_rate,
            hop_size=hop_size,
            min_bpm=tempo.min_bpm,
            max_bpm=tempo.max_bpm,
            update_interval_frames=tempo.update_interval_frames,
            onset_history_size=tempo.onset_history_size,
            min_history=tempo.min_history,
            tempo_history_size=tempo.tempo_history_size,
            smoothing=tempo.smoothing,
            default_beat_interval=tempo.default_beat_interval,
            normalize_epsilon=tempo.normalize_epsilon,
            lock_confidence=tempo.lock_confidence,
            lag_tie_margin=tempo.lag_tie_margin,
            now=now,
        )

    @property
    def state(self) -> TempoState:
        if self.current_bpm <= 0:
            return TempoState.COLD
        if self.confidence >= self.lock_confidence:
            return TempoState.LOCKED
        return TempoState.ESTIMATING

    def process_onset(self, onset: float, now: Optional[float] = None) -> None:
        """Record one frame's onset strength and refresh tempo and phase."""
        if now is None:
            now = time.time()

        self.onset_history.append(max(0.0, float(onset)))
        self.frame_count += 1

        if (self.frame_count % self.update_interval_frames == 0
                and len(self.onset_history) >= self.min_history):
            estimate = self.estimate_tempo()
            if estimate is not None:
                self.push_estimate(*estimate)

        self.update_phase(now)

    # ------------------------------------------------------------------
    # Tempo estimation
    # ------------------------------------------------------------------
    def lag_for_bpm(self, bpm: float) -> float:
        return self.frames_per_second * 60.0 / bpm

    def bpm_for_lag(self, lag: int) -> float:
        return self.frames_per_second * 60.0 / lag

    def _normalized_history(self) -> np.ndarray:
        signal = np.asarray(self.onset_history, dtype=np.float64)
        std = float(np.std(signal))
        if std < self.normalize_epsilon:
            return signal
        return (signal - float(np.mean(signal))) / std

    @staticmethod
    def autocorrelation_function(signal: np.ndarray) -> np.ndarray:
        """Mean of signal[i] * signal[i + lag] over the valid overlap, for every lag < len."""
        n = len(signal)
        if n == 0:
            return np.zeros(0)

        # Autocorrelation via FFT, zero padded so lags do not wrap
        n_fft = 1
        while n_fft < 2 * n:
            n_fft *= 2
        fft_sig = np.fft.rfft(signal, n=n_fft)
        acf = np.fft.irfft(fft_sig * np.conj(fft_sig), n=n_fft)[:n]
        return acf / (n - np.arange(n))

    @classmethod
    def autocorrelation(cls, signal: np.ndarray, lag: int) -> float:
        """Single-lag value of ``autocorrelation_function``; 0 when lag >= len."""
        if lag < 0 or lag >= len(signal):
            return 0.0
        return float(cls.autocorrelation_function(signal)[lag])

    def estimate_tempo(self) -> Optional[tuple[float, float]]:
        """Return (raw_bpm, correlation) for the best lag, or None without a positive peak.

        Lags are scanned shortest first and a longer lag only replaces the
        best one when it is clearly stronger, so a pulse train resolves to its
        period instead of a multiple of it.
        """
        signal = self._normalized_history()
        acf = self.autocorrelation_function(signal)
        best_lag = 0
        best_correlation = 0.0
        for lag in range(self.min_lag, min(self.max_lag, len(signal) - 1) + 1):
            correlation = float(acf[lag])
            if correlation > best_correlation * (1.0 + self.lag_tie_margin):
                best_correlation = correlation
                best_lag = lag

        if best_lag <= 0:
            return None
        return self.bpm_for_lag(best_lag), best_correlation

    def push_estimate(self, raw_bpm: float, correlation: float) -> None:
        """Median filter the raw estimate into the visible BPM."""
        self.tempo_estimates.append(float(raw_bpm))
        ordered = sorted(self.tempo_estimates)
        median_bpm = ordered[len(ordered) // 2]

        if self.current_bpm <= 0:
            self.current_bpm = median_bpm
            log_event("INFO", "Tempo", "Initial tempo",
                      bpm=f"{median_bpm:.1f}", confidence=f"{correlation:.3f}")
        else:
            self.current_bpm = self.current_bpm * self.smoothing + median_bpm * (1.0 - self.smoothing)

        self.beat_interval = 60.0 / self.current_bpm
        self.confidence = max(0.0, min(1.0, float(correlation)))

        state = self.state
        if state != self._last_state:
            log_event("INFO", "Tempo", "State changed",
                      state=state.name, bpm=f"{self.current_bpm:.1f}",
                      confidence=f"{self.confidence:.3f}")
            self._last_state = state

    # ------------------------------------------------------------------
    # Phase
    # ------------------------------------------------------------------
    def update_phase(self, now: Optional[float] = None) -> float:
        """Advance the anchor by whole beat intervals and recompute phase."""
        if now is None:
            now = time.time()
        interval = self.beat_interval
        if interval <= 0:
            return self.beat_phase
        if self.last_beat_time is None:
            self.last_beat_time = now

        elapsed = max(0.0, now - self.last_beat_time)
        accumulator = elapsed / interval
        if accumulator >= 1.0:
            beats = math.floor(accumulator)
            self.last_beat_time += beats * interval
            accumulator -= beats

        self.beat_phase = min(max(accumulator, 0.0), math.nextafter(1.0, 0.0))
        self.time_to_next_beat = (1.0 - self.beat_phase) * interval
        return self.beat_phase

    def phase_at(self, now: Optional[float] = None) -> float:
        """Phase extrapolated to *now* without mutating the anchor."""
        if now is None:
            now = time.time()
        if self.beat_interval <= 0 or self.last_beat_time is None:
            return self.beat_phase
        elapsed = max(0.0, now - self.last_beat_time)
        return (elapsed / self.beat_interval) % 1.0

    def predict_next_beat_time(self, now: Optional[float] = None) -> float:
        if now is None:
            now = time.time()
        return now + (1.0 - self.phase_at(now)) * self.beat_interval

    def predict_beat_times(self, count: int, now: Optional[float] = None) -> list[float]:
        """Timestamps of the next *count* beats."""
        first = self.predict_next_beat_time(now)
        return [first + i * self.beat_interval for i in range(max(0, count))]

