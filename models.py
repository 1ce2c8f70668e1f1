"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from normalizer import Alphabet, collapse, normalize


class SessionState(str, Enum):
    LOADING_MODEL = "LOADING_MODEL"
    READY = "READY"
    LISTENING = "LISTENING"
    ERROR = "ERROR"


class SerialConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


class RecognitionKind(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"


class MatchMode(str, Enum):
    EXACT_RUN = "exact_run"
    FUZZY_WINDOW = "fuzzy_window"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass
class RecognitionEvent:
    kind: str
    text: str = ""
    code: str = ""
    message: str = ""
    retryable: bool = False


@dataclass(frozen=True)
class TranscriptChunk:
    text: str
    is_final: bool
    sequence: int


@dataclass(frozen=True)
class TargetPattern:
    """What to count. ``collapsed_target`` is derived once at construction."""

    phrase: str
    max_edit_distance: int = 3
    mode: MatchMode = MatchMode.FUZZY_WINDOW
    run_weight: int = 1
    alphabet: Alphabet = Alphabet.LATIN
    collapsed_target: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "collapsed_target", collapse(normalize(self.phrase, self.alphabet))
        )

    @property
    def target_length(self) -> int:
        return len(self.collapsed_target)


@dataclass(frozen=True)
class DetectionEvent:
    chunk_sequence: int
    matched_span: Optional[str]
    distance: int
    mode: MatchMode = MatchMode.FUZZY_WINDOW
    weight: int = 1


@dataclass(frozen=True)
class CounterState:
    count: int = 0
    in_run: bool = False


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    count: int
    transcript: str = ""
    partial: str = ""
    serial_state: SerialConnectionState = SerialConnectionState.DISCONNECTED
    error: str = ""
