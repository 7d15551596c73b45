import sys
import types
import unittest
from unittest import mock

import numpy as np

from audio_capture import AudioCapture, CaptureError, list_devices
from config import AudioConfig


class FakePortAudioError(Exception):
    pass


def _fake_sounddevice(devices=None, stream_error=None):
    module = types.ModuleType("sounddevice")
    module.PortAudioError = FakePortAudioError
    devices = devices if devices is not None else [
        {'name': 'Speakers', 'max_input_channels': 0, 'default_samplerate': 48000.0},
        {'name': 'Mic', 'max_input_channels': 2, 'default_samplerate': 48000.0},
    ]

    def query_devices(device=None, kind=None):
        if kind == 'input':
            return devices[1]
        return devices

    module.query_devices = query_devices
    module.InputStream = mock.MagicMock(side_effect=stream_error)
    return module


class TestAudioCapture(unittest.TestCase):
    def test_list_devices_filters_outputs(self):
        with mock.patch.dict(sys.modules, {"sounddevice": _fake_sounddevice()}):
            devices = list_devices()
        self.assertEqual([d['name'] for d in devices], ['Mic'])
        self.assertEqual(devices[0]['index'], 1)

    def test_start_opens_stream_with_config(self):
        fake = _fake_sounddevice()
        capture = AudioCapture(AudioConfig(channels=2, buffer_size=512), lambda samples: None)
        with mock.patch.dict(sys.modules, {"sounddevice": fake}):
            capture.start()

        self.assertTrue(capture.running)
        _, kwargs = fake.InputStream.call_args
        self.assertEqual(kwargs['blocksize'], 512)
        self.assertEqual(kwargs['channels'], 2)
        self.assertEqual(kwargs['dtype'], 'float32')
        capture.stream.start.assert_called_once()

        capture.stop()
        self.assertFalse(capture.running)
        self.assertIsNone(capture.stream)

    def test_stream_failure_raises_capture_error(self):
        fake = _fake_sounddevice(stream_error=FakePortAudioError("Invalid device"))
        capture = AudioCapture(AudioConfig(), lambda samples: None)
        with mock.patch.dict(sys.modules, {"sounddevice": fake}):
            with self.assertRaises(CaptureError):
                capture.start()
        self.assertFalse(capture.running)

    def test_callback_downmixes_to_mono(self):
        received = []
        capture = AudioCapture(AudioConfig(), received.append)
        capture.running = True

        stereo = np.array([[1.0, 0.0], [0.5, 0.5], [-1.0, 1.0]], dtype=np.float32)
        capture._callback(stereo, 3, None, None)

        self.assertEqual(len(received), 1)
        np.testing.assert_allclose(received[0], [0.5, 0.5, 0.0])

    def test_callback_ignored_after_stop(self):
        received = []
        capture = AudioCapture(AudioConfig(), received.append)
        capture._callback(np.zeros((4, 1), dtype=np.float32), 4, None, None)
        self.assertEqual(received, [])


if __name__ == "__main__":
    unittest.main()
