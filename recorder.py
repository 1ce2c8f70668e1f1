"""Microphone recorder adapter."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from queue import Full, Queue
from typing import Any, Callable, Optional

import numpy as np

from errors import DEVICE_BUSY, PERMISSION_DENIED, UNSUPPORTED_CONFIG, AcquisitionError
from models import AudioFrame

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - PortAudio missing
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, str], None]


@dataclass(frozen=True)
class CaptureOptions:
    sample_rate: int = 16000
    channel_count: int = 1
    echo_cancellation: bool = True
    noise_suppression: bool = True


def _classify_stream_error(exc: Exception) -> str:
    low = str(exc).lower()
    if "permission" in low or "denied" in low or "not authorized" in low:
        return PERMISSION_DENIED
    if "sample rate" in low or "channels" in low or "invalid" in low or "format" in low:
        return UNSUPPORTED_CONFIG
    return DEVICE_BUSY


class SoundDeviceRecorder:
    def __init__(
        self,
        options: CaptureOptions | None = None,
        chunk_ms: int = 100,
        device: int | str | None = None,
    ) -> None:
        self.options = options or CaptureOptions()
        self.chunk_ms = chunk_ms
        self.device = device
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self.dropped_chunks = 0
        self._audio_queue: Queue[AudioFrame | None] | None = None
        self._on_error: Optional[ErrorCallback] = None

    @property
    def blocksize(self) -> int:
        return int(self.options.sample_rate * (self.chunk_ms / 1000.0))

    def start(
        self,
        audio_queue: Queue[AudioFrame | None],
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise AcquisitionError(DEVICE_BUSY, "sounddevice is not installed")
            if self.options.echo_cancellation or self.options.noise_suppression:
                logger.debug("Echo cancellation/noise suppression not available on PortAudio input")
            self._audio_queue = audio_queue
            self._on_error = on_error
            self.dropped_chunks = 0
            stream = None
            try:
                stream = sd.InputStream(
                    samplerate=self.options.sample_rate,
                    channels=self.options.channel_count,
                    dtype="int16",
                    blocksize=self.blocksize,
                    device=self.device,
                    callback=self._on_audio,
                    finished_callback=self._on_finished,
                )
                self._running = True
                stream.start()
            except Exception as exc:
                self._running = False
                self._audio_queue = None
                if stream is not None:
                    try:
                        stream.close()
                    except Exception:  # pragma: no cover - already failing
                        logger.debug("Closing half-open stream failed", exc_info=True)
                code = _classify_stream_error(exc)
                logger.error("Microphone start failed (%s): %s", code, exc)
                raise AcquisitionError(code, str(exc)) from exc
            self._stream = stream
            logger.info(
                "Capturing %d Hz x%d, %d samples per frame",
                self.options.sample_rate,
                self.options.channel_count,
                self.blocksize,
            )

    def stop(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
            if not self._running and stream is None:
                return
            self._running = False
            try:
                if stream is not None:
                    try:
                        stream.stop()
                    finally:
                        stream.close()
            finally:
                self._emit_sentinel()
            if self.dropped_chunks:
                logger.warning("Dropped %d audio frames (queue full)", self.dropped_chunks)
            logger.info("Capture stopped")

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        audio_queue = self._audio_queue
        if not self._running or audio_queue is None:
            return
        frame = AudioFrame(
            pcm16_bytes=np.asarray(indata, dtype=np.int16).tobytes(),
            sample_rate=self.options.sample_rate,
            channels=self.options.channel_count,
            timestamp_ms=int(time.time() * 1000),
        )
        try:
            audio_queue.put_nowait(frame)
        except Full:
            self.dropped_chunks += 1

    def _emit_sentinel(self) -> None:
        if self._audio_queue is None:
            return
        try:
            self._audio_queue.put_nowait(None)
        except Full:
            pass
        self._audio_queue = None

    def _on_finished(self) -> None:
        """PortAudio ended the stream; only unexpected if we did not stop it."""
        if not self._running:
            return
        self._running = False
        logger.error("Input stream ended unexpectedly")
        if self._on_error is not None:
            self._on_error(DEVICE_BUSY, "input stream ended unexpectedly")
