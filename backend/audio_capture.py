import asyncio
import logging

import numpy as np

from audio_frames import AudioFrame, float_to_pcm16
from config import CAPTURE_BUFFER_SIZE, SAMPLE_RATE

log = logging.getLogger("gennie.capture")


class MicrophoneCapture:
    """Reads the microphone and forwards PCM16 frames to an open transport.

    The sounddevice callback runs on the audio thread; every buffer is handed
    to the event loop so conversion and the open check happen there. Frames
    that arrive while the transport is not open are dropped, never buffered.
    """

    def __init__(
        self,
        transport,
        sample_rate: int = SAMPLE_RATE,
        buffer_size: int = CAPTURE_BUFFER_SIZE,
        device=None,
    ):
        self._transport = transport
        self.sample_rate = sample_rate
        self.buffer_size = buffer_size
        self._device = device
        self._stream = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._next_index = 0
        self.dropped_frames = 0

    @property
    def is_running(self) -> bool:
        return self._stream is not None

    def start(self):
        if self._stream is not None:
            return
        import sounddevice as sd

        self._loop = asyncio.get_running_loop()
        self._stream = sd.InputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            blocksize=self.buffer_size,
            device=self._device,
            callback=self._audio_callback,
        )
        self._stream.start()
        log.info("event=mic_started sample_rate=%d buffer=%d", self.sample_rate, self.buffer_size)

    def stop(self):
        stream, self._stream = self._stream, None
        if stream is None:
            return
        import sounddevice as sd

        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as e:
            log.warning("event=mic_stop_failed error=%s", e)
        log.info("event=mic_stopped dropped=%d", self.dropped_frames)

    # -- sounddevice audio-thread callback --

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status):
        if status:
            log.warning("event=mic_status status=%s", status)
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.process_buffer, indata[:, 0].copy())

    # -- event loop --

    def process_buffer(self, samples) -> AudioFrame | None:
        """Convert one float buffer and forward it; returns the frame sent, if any."""
        if not self._transport.is_open:
            self.dropped_frames += 1
            return None
        frame = AudioFrame(
            pcm=float_to_pcm16(samples).tobytes(),
            sample_rate=self.sample_rate,
            index=self._next_index,
        )
        self._next_index += 1
        self._transport.send_audio(frame)
        return frame
