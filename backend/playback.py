import logging
import threading

import numpy as np

from audio_frames import AudioFrame, pcm16_to_float
from config import SAMPLE_RATE

log = logging.getLogger("gennie.playback")


class PlaybackScheduler:
    """Schedules agent audio chunks back to back on an output clock.

    ``output`` provides ``current_time()``, ``suspended``, ``resume()``,
    ``play_at(samples, start_at)`` and ``clear()``. One scheduler belongs to
    one session; ``next_play_time`` is only touched by ``schedule`` and
    ``reset``.
    """

    def __init__(self, output, sample_rate: int = SAMPLE_RATE):
        self._output = output
        self.sample_rate = sample_rate
        self.next_play_time: float | None = None

    def schedule(self, frame: AudioFrame) -> float:
        if self._output.suspended:
            self._output.resume()
            self.next_play_time = self._output.current_time()
        elif self.next_play_time is None:
            self.next_play_time = self._output.current_time()

        samples = pcm16_to_float(frame.pcm)
        rate = frame.sample_rate or self.sample_rate
        duration = len(samples) / rate

        start_at = max(self._output.current_time(), self.next_play_time)
        self._output.play_at(samples, start_at)
        self.next_play_time = start_at + duration
        return start_at

    def reset(self):
        self._output.clear()
        self.next_play_time = self._output.current_time()
        log.debug("event=playback_reset at=%.3f", self.next_play_time)


class SoundDeviceOutput:
    """Sample-accurate speaker output via sd.OutputStream.

    The clock is the number of frames handed to the device divided by the
    sample rate, so scheduled start times are honoured to the sample. Segments
    are written from the event loop and mixed on the audio thread under a lock.
    """

    CHANNELS = 1

    def __init__(self, sample_rate: int = SAMPLE_RATE, blocksize: int = 1024, device=None):
        self.sample_rate = sample_rate
        self._blocksize = blocksize
        self._device = device
        self._lock = threading.Lock()
        self._segments: list[tuple[int, np.ndarray]] = []
        self._frames_rendered = 0
        self._stream = None

    @property
    def suspended(self) -> bool:
        return self._stream is None or not self._stream.active

    def resume(self):
        import sounddevice as sd

        if self._stream is None:
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=self.CHANNELS,
                dtype="float32",
                blocksize=self._blocksize,
                device=self._device,
                callback=self._callback,
            )
        if not self._stream.active:
            self._stream.start()
            log.info("event=speaker_started sample_rate=%d", self.sample_rate)

    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / self.sample_rate

    def play_at(self, samples: np.ndarray, start_at: float):
        start_frame = int(round(start_at * self.sample_rate))
        with self._lock:
            self._segments.append((start_frame, np.asarray(samples, dtype=np.float32)))

    def clear(self):
        with self._lock:
            self._segments.clear()

    def close(self):
        self.clear()
        stream, self._stream = self._stream, None
        if stream is not None:
            import sounddevice as sd

            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError as e:
                log.warning("event=speaker_close_failed error=%s", e)

    # -- sounddevice audio-thread callback --

    def _callback(self, outdata: np.ndarray, frames: int, _time, status):
        if status:
            log.warning("event=playback_status status=%s", status)
        outdata.fill(0.0)
        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            remaining = []
            for start, samples in self._segments:
                end = start + len(samples)
                if end <= block_start:
                    continue
                if start < block_end:
                    lo = max(start, block_start)
                    hi = min(end, block_end)
                    outdata[lo - block_start:hi - block_start, 0] += samples[lo - start:hi - start]
                remaining.append((start, samples))
            self._segments = remaining
            self._frames_rendered = block_end
