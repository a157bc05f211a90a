import numpy as np
import pytest

from audio_capture import MicrophoneCapture
from audio_frames import AudioFrame, float_to_pcm16, pcm16_to_float


class FakeTransport:
    def __init__(self, is_open=True):
        self.is_open = is_open
        self.sent: list[AudioFrame] = []

    def send_audio(self, frame):
        self.sent.append(frame)
        return True


def test_float_to_pcm16_clamps_to_int16_range():
    out = float_to_pcm16([1.5, -2.0, 1.0, -1.0, 0.5, -0.5, 0.0])
    assert out.dtype == np.dtype("<i2")
    assert out.tolist() == [32767, -32768, 32767, -32768, 16384, -16384, 0]


def test_float_to_pcm16_truncates_toward_zero():
    assert float_to_pcm16([0.00002, -0.00002, 0.1]).tolist() == [0, 0, 3276]


def test_pcm16_to_float_ignores_trailing_odd_byte():
    pcm = float_to_pcm16([0.5, -0.5]).tobytes() + b"\x01"
    samples = pcm16_to_float(pcm)
    assert samples.tolist() == pytest.approx([0.5, -0.5])


def test_audio_frame_duration():
    frame = AudioFrame(pcm=b"\x00\x00" * 4096, sample_rate=16000)
    assert frame.sample_count == 4096
    assert frame.duration == pytest.approx(0.256)


def test_frames_are_dropped_while_transport_closed():
    transport = FakeTransport(is_open=False)
    capture = MicrophoneCapture(transport, sample_rate=16000, buffer_size=4)

    assert capture.process_buffer(np.array([0.1, 0.2, 0.3, 0.4], dtype=np.float32)) is None
    assert transport.sent == []
    assert capture.dropped_frames == 1


def test_frames_are_forwarded_in_order_once_open():
    transport = FakeTransport(is_open=False)
    capture = MicrophoneCapture(transport, sample_rate=16000, buffer_size=4)
    capture.process_buffer(np.zeros(4, dtype=np.float32))

    transport.is_open = True
    first = capture.process_buffer(np.array([2.0, -2.0, 0.0, 0.5], dtype=np.float32))
    second = capture.process_buffer(np.zeros(4, dtype=np.float32))

    assert transport.sent == [first, second]
    assert [f.index for f in transport.sent] == [0, 1]
    assert first.sample_rate == 16000
    assert np.frombuffer(first.pcm, dtype="<i2").tolist() == [32767, -32768, 0, 16384]


def test_stop_without_start_is_a_noop():
    capture = MicrophoneCapture(FakeTransport())
    capture.stop()
    assert not capture.is_running
