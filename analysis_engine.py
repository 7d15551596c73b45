"""
SoundVis - Analysis Engine
Runs every audio buffer through transform -> onset -> tempo and
transform -> voices, then publishes one immutable snapshot for the renderer.
"""

import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

import numpy as np
from scipy.signal import butter, sosfilt, sosfilt_zi

from audio_capture import AudioCapture, CaptureError
from config import Config
from frequency_utils import band_energies, extract_dominant_freq
from logging_utils import is_debug_enabled, log_event
from onset import OnsetEstimator
from spectral_transform import SpectralTransform
from tempo_tracker import TempoState, TempoTracker
from voice_tracker import VoiceState, VoiceTracker


@dataclass(frozen=True)
class AnalysisSnapshot:
    """Everything a renderer needs for one frame. Never mutated after publish."""
    timestamp: float = 0.0
    frame_index: int = 0
    bpm: float = 0.0                  # 0 until a tempo is known
    beat_phase: float = 0.0           # [0, 1), 0 = beat just happened
    confidence: float = 0.0           # [0, 1]
    beat_interval: float = 0.5        # Seconds per beat (default until a tempo is known)
    beat_anchor: Optional[float] = None   # Wall-clock time of the last beat boundary
    time_to_next_beat: float = 0.0
    tempo_state: TempoState = TempoState.COLD
    is_calibrating: bool = False
    calibration_progress: float = 0.0
    voices: tuple[VoiceState, ...] = ()
    onset: float = 0.0
    rms: float = 0.0
    dominant_frequency: float = 0.0
    band_energies: tuple[float, ...] = ()
    error: Optional[str] = None

    def phase_at(self, now: float) -> float:
        """Beat phase extrapolated from the published anchor."""
        if self.beat_interval <= 0 or self.beat_anchor is None:
            return self.beat_phase
        return (max(0.0, now - self.beat_anchor) / self.beat_interval) % 1.0

    @property
    def active_voices(self) -> tuple[VoiceState, ...]:
        return tuple(v for v in self.voices if v.is_active)


class AnalysisEngine:
    """
    Owns the analysis state. ``process_buffer`` is called synchronously by
    the capture thread; consumers read ``get_snapshot()`` from any thread.
    """

    def __init__(self, config: Config,
                 snapshot_callback: Optional[Callable[[AnalysisSnapshot], None]] = None,
                 capture_factory: Callable[..., AudioCapture] = AudioCapture):
        self.config = config
        self.snapshot_callback = snapshot_callback
        self.capture_factory = capture_factory
        self.capture: Optional[AudioCapture] = None
        self.running = False

        sample_rate = config.audio.sample_rate
        self.transform = SpectralTransform.from_config(config.spectrum, sample_rate)
        self.onset_estimator = OnsetEstimator()
        self.tempo_tracker = TempoTracker.from_config(config.tempo, sample_rate, config.audio.buffer_size)
        self.voice_tracker = VoiceTracker(config.voice, sample_rate, config.spectrum.fft_size)

        self._frame_index = 0
        self._band_energies = np.zeros(len(config.voice.bands), dtype=np.float64)

        # Noise floor learning (dB-normalized spectrum only)
        self._noise_floor_pending = bool(config.spectrum.db_normalize and config.voice.noise_floor_seconds > 0)
        self._noise_floor_started_at: Optional[float] = None

        # High-pass filter state (initialized from config)
        self._highpass_sos = None
        self._highpass_zi = None
        self._highpass_state = None
        self._init_highpass_filter()

        self._snapshot_lock = threading.Lock()
        self._snapshot = AnalysisSnapshot(
            beat_interval=self.tempo_tracker.beat_interval,
            is_calibrating=self._noise_floor_pending or self.voice_tracker.is_calibrating,
            band_energies=tuple(0.0 for _ in config.voice.bands),
        )

        self._session_started_at: float = 0.0
        self._session_frame_count: int = 0
        self._session_rms_min: float | None = None
        self._session_rms_max: float | None = None
        self._session_onset_min: float | None = None
        self._session_onset_max: float | None = None
        self._session_rms_sum: float = 0.0
        self._session_onset_sum: float = 0.0
        self._reset_session_stats()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Start audio capture. Raises CaptureError when no audio can be acquired."""
        if self.running:
            return

        self._reset_session_stats()
        self.capture = self.capture_factory(self.config.audio, self.process_buffer)
        try:
            self.capture.start()
        except CaptureError as e:
            self.capture = None
            log_event("ERROR", "Engine", "Audio capture failed", error=e)
            self._publish(replace(self.get_snapshot(), error=str(e)))
            raise

        self.running = True
        log_event("INFO", "Engine", "Started",
                  mode=self.voice_tracker.mode.name,
                  fft=self.transform.fft_size,
                  sample_rate=self.config.audio.sample_rate)

    def stop(self) -> None:
        """Stop feeding buffers; the last in-flight buffer still completes."""
        self.running = False
        if self.capture is not None:
            self.capture.stop()
            self.capture = None
        self._log_shutdown_summary()
        log_event("INFO", "Engine", "Stopped")

    # ------------------------------------------------------------------
    # Per-buffer pipeline
    # ------------------------------------------------------------------
    def process_buffer(self, samples, now: Optional[float] = None) -> AnalysisSnapshot:
        """Analyze one buffer of mono samples in [-1, 1] and publish the result."""
        if now is None:
            now = time.time()

        samples = np.asarray(samples, dtype=np.float64).ravel()
        if self.config.audio.gain != 1.0:
            samples = samples * self.config.audio.gain
        rms = float(np.sqrt(np.mean(samples ** 2))) if len(samples) > 0 else 0.0

        if self._noise_floor_pending and self._noise_floor_started_at is None:
            self._noise_floor_started_at = now
            self.transform.begin_noise_floor()
            log_event("INFO", "Spectrum", "Learning noise floor",
                      seconds=self.config.voice.noise_floor_seconds)

        spectrum = self.transform.process(self._apply_highpass(samples))
        onset = self.onset_estimator.process(spectrum)
        self.tempo_tracker.process_onset(onset, now)

        if self._noise_floor_pending:
            if now - self._noise_floor_started_at >= self.config.voice.noise_floor_seconds:
                self.transform.finish_noise_floor()
                self._noise_floor_pending = False
        else:
            self.voice_tracker.process(spectrum, now, level=rms)

        self._update_band_energies(spectrum)
        self._update_session_stats(rms, onset)

        every = self.config.debug_log_every_frames
        if every > 0 and self._frame_index % every == 0 and is_debug_enabled():
            log_event("DEBUG", "Engine", "Levels",
                      rms=f"{rms:.6f}", onset=f"{onset:.4f}",
                      bpm=f"{self.tempo_tracker.current_bpm:.1f}",
                      voices=len(self.voice_tracker.voices))

        snapshot = self._build_snapshot(now, spectrum, onset, rms)
        self._frame_index += 1
        self._publish(snapshot)
        if self.snapshot_callback is not None:
            self.snapshot_callback(snapshot)
        return snapshot

    def _build_snapshot(self, now: float, spectrum: np.ndarray, onset: float, rms: float) -> AnalysisSnapshot:
        tempo = self.tempo_tracker
        if self._noise_floor_pending:
            seconds = self.config.voice.noise_floor_seconds
            is_calibrating = True
            progress = min(1.0, (now - self._noise_floor_started_at) / seconds) if seconds > 0 else 1.0
        else:
            is_calibrating = self.voice_tracker.is_calibrating
            progress = self.voice_tracker.calibration_progress(now) if is_calibrating else 1.0

        return AnalysisSnapshot(
            timestamp=now,
            frame_index=self._frame_index,
            bpm=tempo.current_bpm,
            beat_phase=tempo.beat_phase,
            confidence=tempo.confidence,
            beat_interval=tempo.beat_interval,
            beat_anchor=tempo.last_beat_time,
            time_to_next_beat=tempo.time_to_next_beat,
            tempo_state=tempo.state,
            is_calibrating=is_calibrating,
            calibration_progress=progress,
            voices=self.voice_tracker.snapshot(),
            onset=onset,
            rms=rms,
            dominant_frequency=extract_dominant_freq(
                spectrum, self.config.audio.sample_rate, 20.0, self.config.audio.sample_rate / 2.0),
            band_energies=tuple(float(e) for e in self._band_energies),
        )

    def _publish(self, snapshot: AnalysisSnapshot) -> None:
        with self._snapshot_lock:
            self._snapshot = snapshot

    def get_snapshot(self) -> AnalysisSnapshot:
        """Latest published snapshot (immutable; safe to hold across frames)."""
        with self._snapshot_lock:
            return self._snapshot

    def extrapolated_phase(self, now: Optional[float] = None) -> float:
        """Beat phase at *now* from the last published anchor, without waiting on analysis."""
        if now is None:
            now = time.time()
        return self.get_snapshot().phase_at(now)

    def predict_beat_times(self, count: int, now: Optional[float] = None) -> list[float]:
        """Upcoming beat timestamps from the last published anchor and interval."""
        if now is None:
            now = time.time()
        snapshot = self.get_snapshot()
        first = now + (1.0 - snapshot.phase_at(now)) * snapshot.beat_interval
        return [first + i * snapshot.beat_interval for i in range(max(0, count))]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _update_band_energies(self, spectrum: np.ndarray) -> None:
        bands = self.config.voice.bands
        if not bands:
            return
        current = band_energies(spectrum, self.config.audio.sample_rate, self.transform.fft_size, bands)
        self._band_energies += (current - self._band_energies) * self.config.voice.band_smoothing

    def _init_highpass_filter(self) -> None:
        """Initialize Butterworth high-pass filter for rumble removal"""
        cutoff = self.config.audio.highpass_filter_hz
        if not cutoff or cutoff <= 0:
            return

        nyquist = self.config.audio.sample_rate / 2
        cutoff_norm = max(0.001, min(0.99, cutoff / nyquist))
        try:
            self._highpass_sos = butter(4, cutoff_norm, btype='highpass', output='sos')
            self._highpass_zi = sosfilt_zi(self._highpass_sos)
            log_event("INFO", "Engine", "Butterworth high-pass initialized", cutoff=f"{cutoff:.0f}")
        except ValueError as e:
            log_event("ERROR", "Engine", "Failed to initialize high-pass filter", error=e)
            self._highpass_sos = None
            self._highpass_zi = None

    def _apply_highpass(self, samples: np.ndarray) -> np.ndarray:
        if self._highpass_sos is None or len(samples) == 0:
            return samples
        if self._highpass_state is None:
            # Start from steady state at the first sample to avoid an onset spike
            self._highpass_state = self._highpass_zi * samples[0]
        filtered, self._highpass_state = sosfilt(self._highpass_sos, samples, zi=self._highpass_state)
        return filtered

    def _reset_session_stats(self) -> None:
        self._session_started_at = time.time()
        self._session_frame_count = 0
        self._session_rms_min = None
        self._session_rms_max = None
        self._session_onset_min = None
        self._session_onset_max = None
        self._session_rms_sum = 0.0
        self._session_onset_sum = 0.0

    def _update_session_stats(self, rms: float, onset: float) -> None:
        self._session_frame_count += 1
        self._session_rms_sum += rms
        self._session_onset_sum += onset
        if self._session_rms_min is None or rms < self._session_rms_min:
            self._session_rms_min = rms
        if self._session_rms_max is None or rms > self._session_rms_max:
            self._session_rms_max = rms
        if self._session_onset_min is None or onset < self._session_onset_min:
            self._session_onset_min = onset
        if self._session_onset_max is None or onset > self._session_onset_max:
            self._session_onset_max = onset

    def _log_shutdown_summary(self) -> None:
        if self._session_frame_count <= 0:
            return

        elapsed_s = max(0.0, time.time() - self._session_started_at)
        rms_min = float(self._session_rms_min or 0.0)
        rms_max = float(self._session_rms_max or 0.0)
        onset_min = float(self._session_onset_min or 0.0)
        onset_max = float(self._session_onset_max or 0.0)
        frame_count = float(self._session_frame_count)

        log_event(
            "INFO",
            "Engine",
            "Shutdown levels summary",
            frames=self._session_frame_count,
            seconds=f"{elapsed_s:.1f}",
            rms_min=f"{rms_min:.6f}",
            rms_max=f"{rms_max:.6f}",
            rms_mean=f"{self._session_rms_sum / frame_count:.6f}",
            onset_min=f"{onset_min:.4f}",
            onset_max=f"{onset_max:.4f}",
            onset_mean=f"{self._session_onset_sum / frame_count:.4f}",
            bpm=f"{self.tempo_tracker.current_bpm:.1f}",
            voices=len(self.voice_tracker.voices),
        )
