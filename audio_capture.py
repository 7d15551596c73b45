"""
SoundVis - Audio Capture
Microphone / input-device capture via sounddevice. Delivers mono float32
buffers to a callback on the PortAudio thread.
"""

from typing import Callable

import numpy as np

from config import AudioConfig
from logging_utils import log_event


class CaptureError(RuntimeError):
    """Audio could not be acquired (no device, permission denied, driver failure)."""


def list_devices() -> list[dict]:
    """Input-capable devices as plain dicts."""
    try:
        import sounddevice as sd
    except OSError as e:
        raise CaptureError(f"PortAudio is not available: {e}") from e

    devices = []
    for i, d in enumerate(sd.query_devices()):
        if d['max_input_channels'] <= 0:
            continue
        devices.append({
            'index': i,
            'name': d['name'],
            'inputs': d['max_input_channels'],
            'default_samplerate': d['default_samplerate'],
        })
    return devices


class AudioCapture:
    """Owns the input stream; the analysis runs synchronously in its callback."""

    def __init__(self, config: AudioConfig, on_samples: Callable[[np.ndarray], object]):
        self.config = config
        self.on_samples = on_samples
        self.stream = None
        self.running = False
        self.overflow_count = 0

    def start(self) -> None:
        """Open and start the input stream. Raises CaptureError on failure."""
        if self.running:
            return
        try:
            import sounddevice as sd
        except OSError as e:
            raise CaptureError(f"PortAudio is not available: {e}") from e

        try:
            device_info = sd.query_devices(self.config.device_index, 'input')
            channels = max(1, min(int(self.config.channels), int(device_info['max_input_channels'])))
            log_event("INFO", "Capture", "Using input device",
                      device=device_info['name'], channels=channels,
                      sample_rate=self.config.sample_rate, buffer=self.config.buffer_size)

            self.stream = sd.InputStream(
                samplerate=self.config.sample_rate,
                blocksize=self.config.buffer_size,
                device=self.config.device_index,
                channels=channels,
                dtype='float32',
                callback=self._callback,
            )
            self.running = True
            self.stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self.running = False
            self.stream = None
            raise CaptureError(f"Could not open audio input: {e}") from e

        log_event("INFO", "Capture", "Input capture started")

    def stop(self) -> None:
        """Stop capture; an in-flight callback is allowed to finish."""
        self.running = False
        if self.stream is not None:
            self.stream.stop()
            self.stream.close()
            self.stream = None
        log_event("INFO", "Capture", "Stopped", overflows=self.overflow_count)

    def _callback(self, indata, frames, time_info, status):
        if status:
            if status.input_overflow:
                self.overflow_count += 1
            log_event("DEBUG", "Capture", "Stream status", status=status)
        if not self.running:
            return

        # Convert to mono
        if indata.shape[1] > 1:
            mono = np.mean(indata, axis=1)
        else:
            mono = indata[:, 0].copy()
        self.on_samples(mono)
