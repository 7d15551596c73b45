import unittest

import numpy as np

from config import default_voice_bands
from frequency_utils import (
    band_energies,
    band_index_for_frequency,
    bin_for_frequency,
    color_for_frequency,
    extract_dominant_freq,
    frequency_for_bin,
    name_for_frequency,
)


class TestFrequencyUtils(unittest.TestCase):
    def test_extract_dominant_freq_basic_peak(self):
        # sample_rate=1000, N=10 => freq_per_bin=50Hz
        spectrum = np.zeros(10)
        spectrum[4] = 10.0

        freq = extract_dominant_freq(spectrum, sample_rate=1000, freq_low=100.0, freq_high=300.0)
        self.assertAlmostEqual(freq, 200.0, places=6)

    def test_extract_dominant_freq_empty_or_none(self):
        self.assertEqual(extract_dominant_freq(None, 1000, 10.0, 200.0), 0.0)
        self.assertEqual(extract_dominant_freq(np.array([]), 1000, 10.0, 200.0), 0.0)

    def test_extract_dominant_freq_invalid_band(self):
        spectrum = np.ones(10)
        freq = extract_dominant_freq(spectrum, sample_rate=1000, freq_low=400.0, freq_high=200.0)
        self.assertEqual(freq, 0.0)

    def test_extract_dominant_freq_silence(self):
        self.assertEqual(extract_dominant_freq(np.zeros(10), 1000, 0.0, 500.0), 0.0)

    def test_bin_frequency_mapping(self):
        self.assertAlmostEqual(frequency_for_bin(100, 48000, 2048), 2343.75)
        self.assertEqual(bin_for_frequency(2343.75, 48000, 2048), 100)
        self.assertEqual(bin_for_frequency(-50.0, 48000, 2048), 0)

    def test_name_for_frequency_registers(self):
        self.assertEqual(name_for_frequency(60.0), "Sub")
        self.assertEqual(name_for_frequency(440.0), "Low")
        self.assertEqual(name_for_frequency(2500.0), "Bright")
        self.assertEqual(name_for_frequency(12000.0), "Ultra")

    def test_color_runs_from_blue_low_to_orange_high(self):
        low = color_for_frequency(100.0)
        high = color_for_frequency(4100.0)
        self.assertTrue(all(0.0 <= c <= 1.0 for c in low + high))
        # Low centroid: blue dominates; high centroid: red dominates
        self.assertGreater(low[2], low[0])
        self.assertGreater(high[0], high[2])

    def test_band_lookup_and_energies(self):
        bands = default_voice_bands()
        self.assertEqual(bands[band_index_for_frequency(100.0, bands)].name, "low")
        self.assertEqual(bands[band_index_for_frequency(20000.0, bands)].name, "air")

        # 48000/2048 = 23.4 Hz per bin; bin 4 = 93.75 Hz sits in "low"
        spectrum = np.zeros(1024)
        spectrum[4] = 1.0
        energies = band_energies(spectrum, 48000, 2048, bands)
        self.assertEqual(len(energies), len(bands))
        self.assertGreater(energies[0], 0.0)
        self.assertTrue(np.all(energies[1:] == 0.0))


if __name__ == "__main__":
    unittest.main()
