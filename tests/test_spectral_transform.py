import unittest

import numpy as np

from config import SpectrumConfig
from spectral_transform import SpectralTransform


def _sine(freq, sample_rate, count, amplitude=1.0):
    t = np.arange(count) / sample_rate
    return amplitude * np.sin(2 * np.pi * freq * t)


class TestSpectralTransform(unittest.TestCase):
    def test_rejects_non_power_of_two(self):
        with self.assertRaises(ValueError):
            SpectralTransform(fft_size=1000)
        with self.assertRaises(ValueError):
            SpectralTransform(fft_size=2048, db_floor=-10.0, db_ceiling=-90.0)

    def test_sine_peaks_at_expected_bin(self):
        transform = SpectralTransform(fft_size=2048, sample_rate=48000)
        # Bin 100 at 48k/2048 = 2343.75 Hz
        spectrum = transform.process(_sine(2343.75, 48000, 2048))

        self.assertEqual(len(spectrum), 1024)
        self.assertEqual(int(np.argmax(spectrum)), 100)
        # Hann coherent gain 0.5, one-sided, divided by N
        self.assertAlmostEqual(float(spectrum[100]), 0.25, places=3)
        self.assertAlmostEqual(transform.frequency_for_bin(100), 2343.75)
        self.assertEqual(transform.bin_for_frequency(2343.75), 100)

    def test_short_buffers_slide_into_window(self):
        transform = SpectralTransform(fft_size=2048, sample_rate=48000)
        first = transform.process(np.zeros(512))
        self.assertTrue(np.all(first == 0.0))

        samples = _sine(2343.75, 48000, 2048)
        for start in range(0, 2048, 512):
            spectrum = transform.process(samples[start:start + 512])
        self.assertEqual(len(spectrum), 1024)
        self.assertEqual(int(np.argmax(spectrum)), 100)

    def test_long_buffer_keeps_most_recent_samples(self):
        transform = SpectralTransform(fft_size=256, sample_rate=48000)
        samples = np.concatenate([np.ones(1000), np.zeros(256)])
        spectrum = transform.process(samples)
        self.assertTrue(np.allclose(spectrum, 0.0))

    def test_output_non_negative(self):
        transform = SpectralTransform(fft_size=512, sample_rate=44100)
        rng = np.random.default_rng(7)
        spectrum = transform.process(rng.uniform(-1.0, 1.0, 300))
        self.assertEqual(len(spectrum), 256)
        self.assertTrue(np.all(spectrum >= 0.0))

    def test_db_normalized_range(self):
        transform = SpectralTransform.from_config(
            SpectrumConfig(fft_size=2048, db_normalize=True), 48000)

        silent = transform.process(np.zeros(2048))
        self.assertTrue(np.all(silent == 0.0))

        spectrum = transform.process(_sine(2343.75, 48000, 2048))
        self.assertTrue(np.all((spectrum >= 0.0) & (spectrum <= 1.0)))
        # 0.25 magnitude is about -12 dB on a -90..-10 window
        self.assertAlmostEqual(float(spectrum[100]), (-12.04 + 90.0) / 80.0, places=2)

    def test_noise_floor_gates_quiet_bins(self):
        transform = SpectralTransform(fft_size=256, sample_rate=44100, db_normalize=True)
        rng = np.random.default_rng(3)
        noise = lambda: rng.normal(0.0, 0.05, 256)

        ungated = transform.process(noise())
        self.assertGreater(float(np.mean(ungated)), 0.2)

        transform.begin_noise_floor()
        self.assertTrue(transform.is_learning_noise_floor)
        for _ in range(20):
            transform.process(noise())
        transform.finish_noise_floor()

        self.assertFalse(transform.is_learning_noise_floor)
        self.assertEqual(len(transform.noise_floor_db), 128)

        gated = transform.process(noise())
        self.assertLess(float(np.mean(gated)), 0.05)


if __name__ == "__main__":
    unittest.main()
