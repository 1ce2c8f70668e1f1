"""State-machine based session orchestration."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from functools import partial
from queue import Empty, Queue
from typing import Callable, List, Optional

from counter import DebounceCounter
from detector import detect
from errors import ASR_PROTOCOL_ERROR, ERROR_MESSAGES, AcquisitionError
from interfaces import Recorder, RecognizerAdapter, TelemetryChannel
from models import (
    AudioFrame,
    RecognitionEvent,
    RecognitionKind,
    SerialConnectionState,
    SessionSnapshot,
    SessionState,
    TargetPattern,
    TranscriptChunk,
)
from normalizer import normalize

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
PartialCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str], None]
SnapshotListener = Callable[[SessionSnapshot], None]

_RECOGNITION = "recognition"
_CAPTURE_ERROR = "capture_error"
_RESET = "reset"
_SYNC = "sync"


@dataclass
class _InboxItem:
    kind: str
    generation: int = 0
    event: Optional[RecognitionEvent] = None


@dataclass
class SessionResources:
    """Live acquisitions of one session, released newest first."""

    recognizer: Optional[RecognizerAdapter] = None
    serial: Optional[TelemetryChannel] = None
    audio: Optional[Recorder] = None

    def detach_audio(self) -> SessionResources:
        """Hand the capture side to the caller; the model and serial stay held."""
        detached = SessionResources(recognizer=self.recognizer, audio=self.audio)
        self.audio = None
        return detached

    def release_audio(self) -> None:
        recorder, self.audio = self.audio, None
        if recorder is not None:
            _safe(recorder.stop, "recorder stop")
        if self.recognizer is not None:
            _safe(self.recognizer.stop, "recognizer stop")

    def release_all(self) -> None:
        self.release_audio()
        channel, self.serial = self.serial, None
        if channel is not None:
            _safe(channel.close, "serial close")
        recognizer, self.recognizer = self.recognizer, None
        if recognizer is not None:
            _safe(recognizer.terminate, "recognizer terminate")


def _safe(action: Callable[[], None], label: str) -> None:
    try:
        action()
    except Exception:  # pragma: no cover - defensive
        logger.warning("%s failed during teardown", label, exc_info=True)


class SessionController:
    def __init__(
        self,
        recorder: Recorder,
        recognizer: RecognizerAdapter,
        pattern: TargetPattern,
        telemetry: Optional[TelemetryChannel] = None,
        auto_start: bool = False,
        queue_maxsize: int = 50,
        on_state_change: Optional[StateCallback] = None,
        on_partial: Optional[PartialCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._recorder = recorder
        self._recognizer = recognizer
        self._pattern = pattern
        self._telemetry = telemetry
        self._auto_start = auto_start
        self._queue_maxsize = queue_maxsize
        self._on_state_change = on_state_change
        self._on_partial = on_partial
        self._on_error = on_error

        self._lock = threading.RLock()
        self._command_lock = threading.RLock()
        self._state = SessionState.LOADING_MODEL
        self._resources = SessionResources()
        self._counter = DebounceCounter()
        self._generation = 0
        self._active = False
        self._sequence = 0
        self._transcript: List[str] = []
        self._partial = ""
        self._error = ""
        self._listeners: List[SnapshotListener] = []
        self._epoch = 0
        self._inbox: Queue[_InboxItem] = Queue()
        self._drain_lock = threading.Lock()
        self._reconnect_thread: Optional[threading.Thread] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def pattern(self) -> TargetPattern:
        return self._pattern

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            serial_state = (
                self._telemetry.state
                if self._telemetry is not None
                else SerialConnectionState.DISCONNECTED
            )
            return SessionSnapshot(
                state=self._state,
                count=self._counter.state.count,
                transcript=" ".join(self._transcript),
                partial=self._partial,
                serial_state=serial_state,
                error=self._error,
            )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def open(self) -> bool:
        """Load the model and bring the session to READY (or LISTENING)."""
        with self._command_lock, self._lock:
            if self._state in (SessionState.READY, SessionState.LISTENING):
                return True
            self._resources.release_all()
            self._epoch += 1
            self._error = ""
            self._transition(SessionState.LOADING_MODEL)
            try:
                self._recognizer.load()
            except AcquisitionError as exc:
                self._fail(exc.code, str(exc))
                return False
            self._resources.recognizer = self._recognizer

            if self._telemetry is not None:
                self._resources.serial = self._telemetry
                self._reconnect_thread = self._telemetry.reconnect_in_background(
                    partial(self._on_serial_reconnected, self._epoch)
                )

            self._transition(SessionState.READY)
            if self._auto_start:
                return self.start()
            return True

    def start(self) -> bool:
        with self._command_lock, self._lock:
            if self._state == SessionState.LISTENING:
                return True
            if self._state != SessionState.READY:
                if not self.open():
                    return False
                if self._state == SessionState.LISTENING:
                    return True

            self._generation += 1
            generation = self._generation
            audio_queue: Queue[AudioFrame | None] = Queue(maxsize=self._queue_maxsize)
            self._active = True
            self._resources.audio = self._recorder
            try:
                self._recognizer.start(audio_queue, partial(self._on_recognition_event, generation))
                self._recorder.start(audio_queue, partial(self._on_capture_error, generation))
            except AcquisitionError as exc:
                self._fail(exc.code, str(exc))
                return False
            except Exception as exc:  # pragma: no cover - defensive
                self._fail(ASR_PROTOCOL_ERROR, f"start failed: {exc}")
                return False
            self._transition(SessionState.LISTENING)
            return True

    def stop(self) -> None:
        # Capture is released outside _lock; a decoder delivering an event needs it to exit.
        with self._command_lock:
            with self._lock:
                if self._state != SessionState.LISTENING:
                    return
                self._active = False
                self._generation += 1
                released = self._resources.detach_audio()
            released.release_audio()
            with self._lock:
                self._partial = ""
                if self._state == SessionState.LISTENING:
                    self._transition(SessionState.READY)

    def reset(self) -> None:
        self._post(_InboxItem(kind=_RESET))

    def close(self) -> None:
        """Release every resource; safe to call at any point, any number of times."""
        with self._command_lock:
            with self._lock:
                self._active = False
                self._generation += 1
                self._epoch += 1
                released, self._resources = self._resources, SessionResources()
            released.release_all()
            with self._lock:
                self._partial = ""
                if self._state != SessionState.ERROR:
                    self._transition(SessionState.LOADING_MODEL)

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def _on_recognition_event(self, generation: int, event: RecognitionEvent) -> None:
        self._post(_InboxItem(kind=_RECOGNITION, generation=generation, event=event))

    def _on_capture_error(self, generation: int, code: str, message: str) -> None:
        event = RecognitionEvent(kind=RecognitionKind.ERROR.value, code=code, message=message)
        self._post(_InboxItem(kind=_CAPTURE_ERROR, generation=generation, event=event))

    def _on_serial_reconnected(self, epoch: int) -> None:
        self._post(_InboxItem(kind=_SYNC, generation=epoch))

    def _post(self, item: _InboxItem) -> None:
        """Queue an event and drain the inbox unless another thread already is."""
        self._inbox.put(item)
        while self._drain_lock.acquire(blocking=False):
            try:
                while True:
                    try:
                        queued = self._inbox.get_nowait()
                    except Empty:
                        break
                    self._dispatch(queued)
            finally:
                self._drain_lock.release()
            if self._inbox.empty():
                return

    def _dispatch(self, item: _InboxItem) -> None:
        with self._lock:
            if item.kind == _RESET:
                self._apply_reset()
                return
            if item.kind == _SYNC:
                if item.generation != self._epoch or self._resources.serial is None:
                    logger.debug("Discarding serial sync from a closed session")
                    return
                self._send_count(self._counter.state.count)
                return
            if item.generation != self._generation or not self._active:
                logger.debug("Discarding %s event from a finished session", item.kind)
                return
            event = item.event
            if event is None:
                return
            if item.kind == _CAPTURE_ERROR:
                self._fail(event.code, event.message)
                return
            self._handle_recognition_event(event)

    def _handle_recognition_event(self, event: RecognitionEvent) -> None:
        kind = event.kind
        if kind == RecognitionKind.PARTIAL.value:
            self._partial = event.text
            if self._on_partial:
                self._on_partial(event.text)
            self._notify()
            return
        if kind == RecognitionKind.FINAL.value:
            self._sequence += 1
            self._apply_chunk(TranscriptChunk(text=event.text, is_final=True, sequence=self._sequence))
            return
        if kind == RecognitionKind.ERROR.value:
            if event.retryable:
                logger.warning("Utterance dropped (%s): %s", event.code, event.message)
                self._partial = ""
                self._notify()
                return
            self._fail(event.code or ASR_PROTOCOL_ERROR, event.message)

    def _apply_chunk(self, chunk: TranscriptChunk) -> None:
        self._partial = ""
        if chunk.text.strip():
            self._transcript.append(chunk.text.strip())
        text = normalize(chunk.text, self._pattern.alphabet)
        before = self._counter.state.count
        counter_state = self._counter.apply(detect(text, self._pattern, chunk.sequence))
        if counter_state.count != before:
            logger.info("Count %d -> %d (chunk %d)", before, counter_state.count, chunk.sequence)
            self._send_count(counter_state.count)
        self._notify()

    def _apply_reset(self) -> None:
        self._counter.reset()
        self._transcript.clear()
        self._partial = ""
        logger.info("Counter reset")
        self._send_count(0)
        self._notify()

    def _send_count(self, count: int) -> None:
        if self._telemetry is None:
            return
        try:
            self._telemetry.send_count(count)
        except Exception:  # pragma: no cover - defensive
            logger.warning("Telemetry send failed", exc_info=True)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _fail(self, code: str, message: str) -> None:
        self._active = False
        self._generation += 1
        self._epoch += 1
        self._resources.release_all()
        self._partial = ""
        self._error = message or ERROR_MESSAGES.get(code, code)
        logger.error("Session failed (%s): %s", code, self._error)
        self._transition(SessionState.ERROR)
        self._emit_error(code, self._error)

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.info("Session %s -> %s", from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            listener(snap)
