# SoundVis Configuration
# All default values and constants

from dataclasses import dataclass, field, fields, is_dataclass
from typing import List, Optional
from enum import IntEnum

from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1

class VoiceTrackingMode(IntEnum):
    """How persistent voices are discovered"""
    CALIBRATED = 1     # Fixed voice set found during a warm-up, then tracked
    CONTINUOUS = 2     # Voices form and dissolve frame by frame from strong peaks

@dataclass
class AudioConfig:
    """Audio input settings"""
    sample_rate: int = 48000
    buffer_size: int = 1024           # Samples per delivered buffer = analysis hop
    channels: int = 1                 # Capture channels (downmixed to mono)
    # Device index - None means use system default
    device_index: Optional[int] = None
    gain: float = 1.0                 # Linear gain applied before the transform
    highpass_filter_hz: int = 0       # Butterworth high-pass cutoff (0=disabled)

@dataclass
class SpectrumConfig:
    """Spectral transform settings"""
    fft_size: int = 2048              # Transform size (power of two)
    db_normalize: bool = False        # Map magnitudes to 0-1 over a dB window
    db_floor: float = -90.0           # dB mapped to 0.0
    db_ceiling: float = -10.0         # dB mapped to 1.0
    noise_gate_db: float = 10.0       # Gate bins within this many dB of the learned noise floor

@dataclass
class TempoConfig:
    """Tempo / beat phase tracking"""
    min_bpm: float = 60.0
    max_bpm: float = 180.0
    update_interval_frames: int = 8   # Run autocorrelation every N frames (~170ms at 48k/1024)
    onset_history_size: int = 512     # ~10 seconds of onset samples
    min_history: int = 256            # Samples required before the first estimate
    tempo_history_size: int = 16      # Raw estimates kept for the median filter
    smoothing: float = 0.9            # Weight of the previous visible BPM
    default_beat_interval: float = 0.5  # Seconds per beat until a tempo is known (120 BPM)
    normalize_epsilon: float = 1e-4   # Skip onset normalization below this std
    lock_confidence: float = 0.5      # Confidence at/above which the tempo counts as locked
    lag_tie_margin: float = 0.02      # A longer lag must beat the best correlation by this fraction

@dataclass
class VoiceBand:
    """Frequency band used to tag continuous voices"""
    name: str = "mid"
    low_hz: float = 450.0
    high_hz: float = 1400.0
    color: List[float] = field(default_factory=lambda: [0.25, 0.65, 0.55])


def default_voice_bands() -> List[VoiceBand]:
    return [
        VoiceBand('low',      40.0,   160.0,   [0.15, 0.35, 0.75]),
        VoiceBand('lowMid',   160.0,  450.0,   [0.2, 0.55, 0.7]),
        VoiceBand('mid',      450.0,  1400.0,  [0.25, 0.65, 0.55]),
        VoiceBand('highMid',  1400.0, 3200.0,  [0.5, 0.55, 0.35]),
        VoiceBand('presence', 3200.0, 6000.0,  [0.65, 0.4, 0.45]),
        VoiceBand('air',      6000.0, 14000.0, [0.55, 0.35, 0.6]),
    ]

@dataclass
class VoiceConfig:
    """Spectral-entity (voice) tracking"""
    mode: VoiceTrackingMode = VoiceTrackingMode.CALIBRATED
    max_voices: int = 8
    max_bandwidth_bins: int = 19      # Half-magnitude bandwidth search radius

    # Calibrated mode
    calibration_seconds: float = 30.0
    calibration_frames: int = 0       # >0 overrides calibration_seconds with a frame count
    calibration_history_max: int = 1024  # Spectra retained for averaging (~20s)
    peak_threshold: float = 0.02      # Local-maximum floor for mean-spectrum peaks
    region_min_magnitude: float = 0.05  # Only peaks above this become voices
    region_margin_bins: int = 2       # Extra bins claimed either side of the bandwidth
    activation_threshold: float = 0.15  # Mean range energy required to be active
    shape_match_threshold: float = 0.7  # Template correlation required to be active
    require_shape_match: bool = True
    voice_timeout_seconds: float = 180.0  # Drop voices idle this long

    # Continuous mode
    detection_threshold: float = 0.18  # Peak floor for matching
    creation_threshold: float = 0.24   # Stricter floor for spawning a new voice
    match_distance_bins: int = 6       # Peak-to-voice distance must be below this
    center_blend: float = 0.85         # Weight of the old bin center on match
    energy_smoothing: float = 0.2
    quiet_rms: float = 0.008           # Below this RMS the frame counts as quiet
    quiet_smoothed_decay: float = 0.985
    quiet_energy_decay: float = 0.96
    unmatched_smoothed_decay: float = 0.94
    unmatched_energy_decay: float = 0.92
    energy_floor: float = 0.015
    voice_timeout_frames: int = 900
    noise_floor_seconds: float = 0.0   # Learn a noise floor before tracking (0=disabled)
    band_smoothing: float = 0.12
    bands: List[VoiceBand] = field(default_factory=default_voice_bands)

@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    audio: AudioConfig = field(default_factory=AudioConfig)
    spectrum: SpectrumConfig = field(default_factory=SpectrumConfig)
    tempo: TempoConfig = field(default_factory=TempoConfig)
    voice: VoiceConfig = field(default_factory=VoiceConfig)

    # Global
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)
    debug_log_every_frames: int = 20  # Level diagnostics cadence at DEBUG

    @classmethod
    def for_calibrated(cls) -> "Config":
        """Full-resolution preset: 2048-point transform, fixed voice set after calibration."""
        return cls()

    @classmethod
    def for_continuous(cls) -> "Config":
        """Low-latency preset: 256-point dB-normalized spectrum, voices formed on the fly."""
        config = cls()
        config.audio.sample_rate = 44100
        config.audio.buffer_size = 256
        config.spectrum.fft_size = 256
        config.spectrum.db_normalize = True
        config.voice.mode = VoiceTrackingMode.CONTINUOUS
        config.voice.max_voices = 5
        config.voice.noise_floor_seconds = 2.0
        return config


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; IntEnum fields are coerced when possible;
    lists of dataclasses are rebuilt from lists of dicts."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        if isinstance(current, IntEnum):
            try:
                setattr(target, key, current.__class__(value))
                continue
            except Exception:
                log_event("WARNING", "Config", "Could not convert value, keeping default",
                          key=key, type=current.__class__.__name__)
                continue

        if isinstance(current, list) and current and is_dataclass(current[0]) and isinstance(value, list):
            item_cls = current[0].__class__
            known = {f.name for f in fields(item_cls)}
            rebuilt = []
            for item in value:
                if not isinstance(item, dict):
                    continue
                entry = item_cls()
                apply_dict_to_dataclass(entry, {k: v for k, v in item.items() if k in known})
                rebuilt.append(entry)
            if rebuilt:
                setattr(target, key, rebuilt)
            continue

        setattr(target, key, value)


def _is_power_of_two(value: int) -> bool:
    return value > 0 and (value & (value - 1)) == 0


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Restores defaults for fields stored as None, clamps ranges and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except Exception:
        version = 0

    if version < 1:
        defaults = Config()
        for section_name in ('audio', 'spectrum', 'tempo', 'voice'):
            section = getattr(config, section_name)
            default_section = getattr(defaults, section_name)
            for f in fields(section):
                if getattr(section, f.name) is None and f.name != 'device_index':
                    setattr(section, f.name, getattr(default_section, f.name))

    if getattr(config, 'log_level', None) is None:
        config.log_level = "INFO"

    if not _is_power_of_two(int(config.spectrum.fft_size or 0)):
        log_event("WARNING", "Config", "fft_size is not a power of two, using default",
                  fft_size=config.spectrum.fft_size)
        config.spectrum.fft_size = SpectrumConfig().fft_size

    if config.audio.buffer_size <= 0:
        config.audio.buffer_size = AudioConfig().buffer_size

    if config.tempo.min_bpm <= 0 or config.tempo.min_bpm >= config.tempo.max_bpm:
        config.tempo.min_bpm = TempoConfig().min_bpm
        config.tempo.max_bpm = TempoConfig().max_bpm

    config.tempo.smoothing = max(0.0, min(1.0, float(config.tempo.smoothing)))
    config.tempo.update_interval_frames = max(1, int(config.tempo.update_interval_frames))
    config.voice.max_voices = max(1, int(config.voice.max_voices))
    config.voice.activation_threshold = max(0.0, float(config.voice.activation_threshold))
    config.voice.shape_match_threshold = max(0.0, min(1.0, float(config.voice.shape_match_threshold)))
    config.voice.center_blend = max(0.0, min(1.0, float(config.voice.center_blend)))

    config.version = CURRENT_CONFIG_VERSION


# Default config instance
DEFAULT_CONFIG = Config()
