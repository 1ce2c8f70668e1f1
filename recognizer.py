"""ASR recognizer adapter using an offline Vosk model.

Frames from the audio queue are fed to ``KaldiRecognizer.AcceptWaveform``
on a worker thread.  When Vosk closes an utterance the resolved text is
reported once as a final event; in between, changed partial hypotheses are
reported as partial events.  A failure while decoding one utterance is
reported as a retryable error and the recognizer is reset for the next one.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from queue import Empty, Queue
from typing import Any, Callable, List, Optional

from errors import ASR_DECODE_ERROR, ASR_PROTOCOL_ERROR, MODEL_LOAD_FAILED, AcquisitionError
from models import AudioFrame, RecognitionEvent, RecognitionKind

try:
    import vosk
except Exception:  # pragma: no cover - native library missing
    vosk = None  # type: ignore

logger = logging.getLogger(__name__)


class _DecodeRun:
    """State owned by one start/stop cycle; a late worker only touches its own run."""

    def __init__(
        self,
        recognizer: Any,
        audio_queue: Queue[AudioFrame | None],
        on_event: Callable[[RecognitionEvent], None],
    ) -> None:
        self.recognizer = recognizer
        self.audio_queue = audio_queue
        self.on_event = on_event
        self.stop_event = threading.Event()
        self.last_partial = ""


class VoskRecognizerAdapter:
    def __init__(
        self,
        model_path: str,
        sample_rate: int = 16000,
        grammar: Optional[List[str]] = None,
        join_timeout_s: float = 0.5,
    ) -> None:
        self._model_path = model_path
        self._sample_rate = sample_rate
        self._grammar = grammar
        self._join_timeout_s = join_timeout_s
        self._model: Any = None
        self._run: Optional[_DecodeRun] = None
        self._thread: Optional[threading.Thread] = None

    def load(self) -> None:
        if self._model is not None:
            return
        if vosk is None:
            raise AcquisitionError(MODEL_LOAD_FAILED, "vosk is not installed")
        if not self._model_path or not os.path.isdir(self._model_path):
            raise AcquisitionError(MODEL_LOAD_FAILED, f"model not found: {self._model_path!r}")
        vosk.SetLogLevel(-1)
        try:
            self._model = vosk.Model(self._model_path)
        except Exception as exc:
            raise AcquisitionError(MODEL_LOAD_FAILED, str(exc)) from exc
        logger.info("Loaded speech model from %s", self._model_path)

    def start(
        self,
        audio_queue: Queue[AudioFrame | None],
        on_event: Callable[[RecognitionEvent], None],
    ) -> None:
        if self._thread and self._thread.is_alive():
            return
        if self._model is None:
            raise AcquisitionError(MODEL_LOAD_FAILED, "model is not loaded")
        run = _DecodeRun(self._new_recognizer(), audio_queue, on_event)
        self._run = run
        self._thread = threading.Thread(
            target=self._worker, args=(run,), name="vosk-decoder", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        run, self._run = self._run, None
        thread, self._thread = self._thread, None
        if run is not None:
            run.stop_event.set()
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=self._join_timeout_s)
            if thread.is_alive():
                logger.debug("Decoder worker still busy; it will exit on its own")

    def terminate(self) -> None:
        self.stop()
        if self._model is not None:
            self._model = None
            logger.info("Released speech model")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _new_recognizer(self) -> Any:
        if self._grammar:
            rec = vosk.KaldiRecognizer(
                self._model, self._sample_rate, json.dumps(self._grammar, ensure_ascii=False)
            )
        else:
            rec = vosk.KaldiRecognizer(self._model, self._sample_rate)
        rec.SetWords(False)
        return rec

    def _worker(self, run: _DecodeRun) -> None:
        """Decode frames until the sentinel or a stop request."""
        try:
            while not run.stop_event.is_set():
                try:
                    frame = run.audio_queue.get(timeout=0.2)
                except Empty:
                    continue
                if frame is None:  # Sentinel
                    if not run.stop_event.is_set():
                        self._flush(run)
                    return
                self._feed(run, frame.pcm16_bytes)
        except Exception as exc:
            logger.exception("Recognizer worker crashed")
            self._emit(
                run,
                RecognitionEvent(
                    kind=RecognitionKind.ERROR.value,
                    code=ASR_PROTOCOL_ERROR,
                    message=str(exc),
                    retryable=False,
                ),
            )

    def _feed(self, run: _DecodeRun, pcm: bytes) -> None:
        rec = run.recognizer
        try:
            if rec.AcceptWaveform(pcm):
                self._emit_final(run, self._extract_text(rec.Result(), "text"))
                return
            partial = self._extract_text(rec.PartialResult(), "partial")
        except (ValueError, KeyError, RuntimeError) as exc:
            rec.Reset()
            run.last_partial = ""
            self._emit(
                run,
                RecognitionEvent(
                    kind=RecognitionKind.ERROR.value,
                    code=ASR_DECODE_ERROR,
                    message=str(exc),
                    retryable=True,
                ),
            )
            return
        if partial and partial != run.last_partial:
            run.last_partial = partial
            self._emit(run, RecognitionEvent(kind=RecognitionKind.PARTIAL.value, text=partial))

    def _flush(self, run: _DecodeRun) -> None:
        try:
            text = self._extract_text(run.recognizer.FinalResult(), "text")
        except (ValueError, KeyError, RuntimeError) as exc:
            logger.warning("Dropping last utterance, final decode failed: %s", exc)
            return
        if text:
            self._emit_final(run, text)

    def _emit_final(self, run: _DecodeRun, text: str) -> None:
        run.last_partial = ""
        if text:
            self._emit(run, RecognitionEvent(kind=RecognitionKind.FINAL.value, text=text))

    @staticmethod
    def _emit(run: _DecodeRun, event: RecognitionEvent) -> None:
        if run.stop_event.is_set():
            return
        run.on_event(event)

    @staticmethod
    def _extract_text(payload: str, key: str) -> str:
        """Pull the text field out of a Vosk JSON result."""
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError(f"unexpected recognizer payload: {payload!r}")
        return str(data.get(key, "")).strip()
