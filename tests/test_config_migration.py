import unittest

from config import (
    Config,
    CURRENT_CONFIG_VERSION,
    VoiceTrackingMode,
    apply_dict_to_dataclass,
    migrate_config,
)


class TestConfigMigration(unittest.TestCase):
    def test_missing_version_sets_defaults_and_bumps(self):
        cfg = Config()
        data = {
            # version intentionally omitted to simulate legacy file
            "tempo": {},
            "voice": {},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
        self.assertEqual(cfg.tempo.min_bpm, 60.0)
        self.assertEqual(cfg.voice.mode, VoiceTrackingMode.CALIBRATED)

    def test_none_values_are_sanitized(self):
        cfg = Config()
        data = {
            "version": 0,
            "audio": {"sample_rate": None, "device_index": None},
            "tempo": {"smoothing": None, "min_history": None},
            "voice": {"activation_threshold": None},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
        self.assertEqual(cfg.audio.sample_rate, 48000)
        self.assertIsNone(cfg.audio.device_index)
        self.assertEqual(cfg.tempo.smoothing, 0.9)
        self.assertEqual(cfg.tempo.min_history, 256)
        self.assertEqual(cfg.voice.activation_threshold, 0.15)

    def test_preserves_custom_values(self):
        cfg = Config()
        data = {
            "version": 1,
            "audio": {"device_index": 3},
            "tempo": {"min_bpm": 80.0, "max_bpm": 160.0},
            "voice": {"mode": 2, "max_voices": 4},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
        self.assertEqual(cfg.audio.device_index, 3)
        self.assertEqual(cfg.tempo.min_bpm, 80.0)
        self.assertEqual(cfg.tempo.max_bpm, 160.0)
        self.assertEqual(cfg.voice.mode, VoiceTrackingMode.CONTINUOUS)
        self.assertEqual(cfg.voice.max_voices, 4)

    def test_invalid_values_fall_back(self):
        cfg = Config()
        data = {
            "spectrum": {"fft_size": 1000},
            "tempo": {"min_bpm": 200.0, "max_bpm": 100.0, "smoothing": 1.5},
            "voice": {"mode": 99, "shape_match_threshold": -1.0},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, 1)

        self.assertEqual(cfg.spectrum.fft_size, 2048)
        self.assertEqual(cfg.tempo.min_bpm, 60.0)
        self.assertEqual(cfg.tempo.max_bpm, 180.0)
        self.assertEqual(cfg.tempo.smoothing, 1.0)
        self.assertEqual(cfg.voice.mode, VoiceTrackingMode.CALIBRATED)
        self.assertEqual(cfg.voice.shape_match_threshold, 0.0)

    def test_unknown_keys_ignored_and_bands_rebuilt(self):
        cfg = Config()
        data = {
            "display": {"theme": "dark"},
            "voice": {"bands": [{"name": "kick", "low_hz": 30.0, "high_hz": 120.0, "extra": 1}]},
        }

        apply_dict_to_dataclass(cfg, data)

        self.assertFalse(hasattr(cfg, "display"))
        self.assertEqual(len(cfg.voice.bands), 1)
        self.assertEqual(cfg.voice.bands[0].name, "kick")
        self.assertEqual(cfg.voice.bands[0].high_hz, 120.0)

    def test_presets(self):
        calibrated = Config.for_calibrated()
        continuous = Config.for_continuous()
        self.assertEqual(calibrated.spectrum.fft_size, 2048)
        self.assertEqual(calibrated.voice.mode, VoiceTrackingMode.CALIBRATED)
        self.assertEqual(continuous.spectrum.fft_size, 256)
        self.assertTrue(continuous.spectrum.db_normalize)
        self.assertEqual(continuous.voice.max_voices, 5)


if __name__ == "__main__":
    unittest.main()
