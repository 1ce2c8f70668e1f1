"""Tests for VoskRecognizerAdapter."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from queue import Queue
from unittest.mock import MagicMock, patch

import pytest

from errors import ASR_DECODE_ERROR, ASR_PROTOCOL_ERROR, MODEL_LOAD_FAILED, AcquisitionError
from models import AudioFrame, RecognitionEvent, RecognitionKind
from recognizer import VoskRecognizerAdapter


# ---------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------

def _make_frame(n_samples: int = 1600) -> AudioFrame:
    return AudioFrame(pcm16_bytes=b"\x00\x00" * n_samples, sample_rate=16000, channels=1)


def _queue_with(n_frames: int) -> Queue[AudioFrame | None]:
    q: Queue[AudioFrame | None] = Queue()
    for _ in range(n_frames):
        q.put(_make_frame())
    q.put(None)
    return q


def _run_to_sentinel(adapter: VoskRecognizerAdapter, q: Queue, events: list) -> None:
    adapter.start(q, events.append)
    thread = adapter._thread
    assert thread is not None
    thread.join(timeout=3.0)
    adapter.stop()


def _kinds(events: list[RecognitionEvent], kind: RecognitionKind) -> list[RecognitionEvent]:
    return [e for e in events if e.kind == kind.value]


@pytest.fixture
def model_dir(tmp_path: Path) -> str:
    path = tmp_path / "vosk-model-small-cn-0.3"
    path.mkdir()
    return str(path)


@pytest.fixture
def mock_vosk():
    with patch("recognizer.vosk") as mocked:
        kaldi = mocked.KaldiRecognizer.return_value
        kaldi.AcceptWaveform.return_value = False
        kaldi.PartialResult.return_value = json.dumps({"partial": ""})
        kaldi.Result.return_value = json.dumps({"text": ""})
        kaldi.FinalResult.return_value = json.dumps({"text": ""})
        yield mocked


# ---------------------------------------------------------------
# Model loading
# ---------------------------------------------------------------

def test_load_missing_model_dir_fails(mock_vosk: MagicMock, tmp_path: Path) -> None:
    adapter = VoskRecognizerAdapter(model_path=str(tmp_path / "nope"))

    with pytest.raises(AcquisitionError) as info:
        adapter.load()

    assert info.value.code == MODEL_LOAD_FAILED
    mock_vosk.Model.assert_not_called()


@patch("recognizer.vosk", None)
def test_load_without_vosk_fails(model_dir: str) -> None:
    adapter = VoskRecognizerAdapter(model_path=model_dir)

    with pytest.raises(AcquisitionError, match="vosk is not installed"):
        adapter.load()


def test_load_wraps_engine_failure(mock_vosk: MagicMock, model_dir: str) -> None:
    mock_vosk.Model.side_effect = Exception("Failed to create a model")
    adapter = VoskRecognizerAdapter(model_path=model_dir)

    with pytest.raises(AcquisitionError) as info:
        adapter.load()

    assert info.value.code == MODEL_LOAD_FAILED
    assert adapter._model is None


def test_load_is_idempotent_and_terminate_releases(mock_vosk: MagicMock, model_dir: str) -> None:
    adapter = VoskRecognizerAdapter(model_path=model_dir)
    adapter.load()
    adapter.load()

    mock_vosk.Model.assert_called_once_with(model_dir)
    assert adapter._model is not None

    adapter.terminate()
    adapter.terminate()
    assert adapter._model is None


def test_start_before_load_fails(mock_vosk: MagicMock, model_dir: str) -> None:
    adapter = VoskRecognizerAdapter(model_path=model_dir)

    with pytest.raises(AcquisitionError):
        adapter.start(Queue(), lambda e: None)


def test_grammar_is_passed_to_recognizer(mock_vosk: MagicMock, model_dir: str) -> None:
    adapter = VoskRecognizerAdapter(model_path=model_dir, grammar=["om ara pa cha na dhi", "[unk]"])
    adapter.load()
    events: list[RecognitionEvent] = []

    _run_to_sentinel(adapter, _queue_with(0), events)

    args = mock_vosk.KaldiRecognizer.call_args.args
    assert args[1] == 16000
    assert json.loads(args[2]) == ["om ara pa cha na dhi", "[unk]"]


# ---------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------

def test_partials_then_single_final(mock_vosk: MagicMock, model_dir: str) -> None:
    kaldi = mock_vosk.KaldiRecognizer.return_value
    kaldi.AcceptWaveform.side_effect = [False, False, False, True]
    kaldi.PartialResult.side_effect = [
        json.dumps({"partial": "om"}),
        json.dumps({"partial": "om"}),
        json.dumps({"partial": "om ara"}),
    ]
    kaldi.Result.return_value = json.dumps({"text": "om ara pa"})

    adapter = VoskRecognizerAdapter(model_path=model_dir)
    adapter.load()
    events: list[RecognitionEvent] = []
    _run_to_sentinel(adapter, _queue_with(4), events)

    assert [e.text for e in _kinds(events, RecognitionKind.PARTIAL)] == ["om", "om ara"]
    assert [e.text for e in _kinds(events, RecognitionKind.FINAL)] == ["om ara pa"]
    assert events[-1].kind == RecognitionKind.FINAL.value


def test_sentinel_flushes_pending_utterance(mock_vosk: MagicMock, model_dir: str) -> None:
    kaldi = mock_vosk.KaldiRecognizer.return_value
    kaldi.PartialResult.return_value = json.dumps({"partial": "om ara"})
    kaldi.FinalResult.return_value = json.dumps({"text": "om ara pa cha"})

    adapter = VoskRecognizerAdapter(model_path=model_dir)
    adapter.load()
    events: list[RecognitionEvent] = []
    _run_to_sentinel(adapter, _queue_with(2), events)

    assert [e.kind for e in events] == [RecognitionKind.PARTIAL.value, RecognitionKind.FINAL.value]
    assert events[-1].text == "om ara pa cha"


def test_empty_final_is_not_emitted(mock_vosk: MagicMock, model_dir: str) -> None:
    kaldi = mock_vosk.KaldiRecognizer.return_value
    kaldi.AcceptWaveform.return_value = True
    kaldi.Result.return_value = json.dumps({"text": "  "})

    adapter = VoskRecognizerAdapter(model_path=model_dir)
    adapter.load()
    events: list[RecognitionEvent] = []
    _run_to_sentinel(adapter, _queue_with(3), events)

    assert events == []


def test_decode_hiccup_is_retryable(mock_vosk: MagicMock, model_dir: str) -> None:
    kaldi = mock_vosk.KaldiRecognizer.return_value
    kaldi.AcceptWaveform.side_effect = [RuntimeError("decoder glitch"), True]
    kaldi.Result.return_value = json.dumps({"text": "hello"})

    adapter = VoskRecognizerAdapter(model_path=model_dir)
    adapter.load()
    events: list[RecognitionEvent] = []
    _run_to_sentinel(adapter, _queue_with(2), events)

    errors = _kinds(events, RecognitionKind.ERROR)
    assert len(errors) == 1
    assert errors[0].code == ASR_DECODE_ERROR
    assert errors[0].retryable is True
    kaldi.Reset.assert_called_once()
    assert [e.text for e in _kinds(events, RecognitionKind.FINAL)] == ["hello"]


def test_malformed_result_is_retryable(mock_vosk: MagicMock, model_dir: str) -> None:
    kaldi = mock_vosk.KaldiRecognizer.return_value
    kaldi.AcceptWaveform.return_value = True
    kaldi.Result.return_value = "not json"

    adapter = VoskRecognizerAdapter(model_path=model_dir)
    adapter.load()
    events: list[RecognitionEvent] = []
    _run_to_sentinel(adapter, _queue_with(1), events)

    assert len(events) == 1
    assert events[0].code == ASR_DECODE_ERROR
    assert events[0].retryable is True


def test_worker_crash_is_fatal(mock_vosk: MagicMock, model_dir: str) -> None:
    kaldi = mock_vosk.KaldiRecognizer.return_value
    kaldi.AcceptWaveform.side_effect = TypeError("bad buffer")

    adapter = VoskRecognizerAdapter(model_path=model_dir)
    adapter.load()
    events: list[RecognitionEvent] = []
    _run_to_sentinel(adapter, _queue_with(1), events)

    assert len(events) == 1
    assert events[0].kind == RecognitionKind.ERROR.value
    assert events[0].code == ASR_PROTOCOL_ERROR
    assert events[0].retryable is False


def test_stop_before_sentinel_skips_flush(mock_vosk: MagicMock, model_dir: str) -> None:
    kaldi = mock_vosk.KaldiRecognizer.return_value
    kaldi.FinalResult.return_value = json.dumps({"text": "late words"})

    adapter = VoskRecognizerAdapter(model_path=model_dir)
    adapter.load()
    events: list[RecognitionEvent] = []
    q: Queue[AudioFrame | None] = Queue()
    adapter.start(q, events.append)
    adapter.stop()
    q.put(None)

    assert _kinds(events, RecognitionKind.FINAL) == []


def test_restart_while_worker_is_busy_keeps_runs_apart(mock_vosk: MagicMock, model_dir: str) -> None:
    kaldi = mock_vosk.KaldiRecognizer.return_value
    kaldi.PartialResult.side_effect = [json.dumps({"partial": "om"}), json.dumps({"partial": "om ara"})]
    delivering = threading.Event()
    release = threading.Event()
    first_events: list[RecognitionEvent] = []

    def slow_consumer(event: RecognitionEvent) -> None:
        first_events.append(event)
        delivering.set()
        release.wait(timeout=3.0)

    adapter = VoskRecognizerAdapter(model_path=model_dir, join_timeout_s=0.05)
    adapter.load()
    first_queue: Queue[AudioFrame | None] = Queue()
    first_queue.put(_make_frame())
    first_queue.put(_make_frame())
    adapter.start(first_queue, slow_consumer)
    assert delivering.wait(timeout=3.0)
    first_worker = adapter._thread

    adapter.stop()
    second_events: list[RecognitionEvent] = []
    _run_to_sentinel(adapter, _queue_with(1), second_events)
    release.set()
    assert first_worker is not None
    first_worker.join(timeout=3.0)

    assert not first_worker.is_alive()
    assert [e.text for e in first_events] == ["om"]
    assert [e.text for e in second_events] == ["om ara"]
    assert first_queue.qsize() == 1
