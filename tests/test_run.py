import argparse
import unittest

from analysis_engine import AnalysisSnapshot
from config import VoiceTrackingMode
from run import build_config, format_status
from voice_tracker import VoiceState


def _args(**overrides):
    values = dict(mode="continuous", device=None, log_level=None)
    values.update(overrides)
    return argparse.Namespace(**values)


class TestConsoleFrontEnd(unittest.TestCase):
    def test_build_config_applies_overrides(self):
        config = build_config(_args(device=4, log_level="DEBUG"))
        self.assertEqual(config.voice.mode, VoiceTrackingMode.CONTINUOUS)
        self.assertEqual(config.audio.device_index, 4)
        self.assertEqual(config.log_level, "DEBUG")

    def test_calibration_bar(self):
        line = format_status(AnalysisSnapshot(is_calibrating=True, calibration_progress=0.5), 0.0)
        self.assertIn("#" * 10 + "." * 10, line)
        self.assertIn("50%", line)

    def test_tempo_and_voices(self):
        voice = VoiceState(id=1, name="Bass", frequency=120.0, low_freq=100.0, high_freq=140.0,
                           energy=0.4, smoothed_energy=0.3, is_active=True, color=(1.0, 0.0, 0.0))
        snapshot = AnalysisSnapshot(bpm=120.0, confidence=0.8, beat_interval=0.5,
                                    beat_anchor=10.0, voices=(voice,))
        line = format_status(snapshot, 10.25)
        self.assertIn("120.0 BPM", line)
        self.assertIn("..o.", line)
        self.assertIn("Bass*@120", line)

    def test_no_tempo_yet(self):
        line = format_status(AnalysisSnapshot(), 0.0)
        self.assertIn("---- BPM", line)
        self.assertIn("no voices", line)


if __name__ == "__main__":
    unittest.main()
