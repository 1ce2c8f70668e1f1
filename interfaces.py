"""Protocol interfaces used by SessionController."""

from __future__ import annotations

import threading
from queue import Queue
from typing import Callable, List, Optional, Protocol

from models import AudioFrame, RecognitionEvent, SerialConnectionState, TargetPattern


ErrorCallback = Callable[[str, str], None]


class Recorder(Protocol):
    def start(
        self,
        audio_queue: Queue[AudioFrame | None],
        on_error: Optional[ErrorCallback] = None,
    ) -> None: ...

    def stop(self) -> None: ...


class RecognizerAdapter(Protocol):
    def load(self) -> None: ...

    def start(
        self,
        audio_queue: Queue[AudioFrame | None],
        on_event: Callable[[RecognitionEvent], None],
    ) -> None: ...

    def stop(self) -> None: ...

    def terminate(self) -> None: ...


class TelemetryChannel(Protocol):
    @property
    def state(self) -> SerialConnectionState: ...

    def reconnect(self) -> bool: ...

    def reconnect_in_background(
        self, on_connected: Optional[Callable[[], None]] = None
    ) -> threading.Thread: ...

    def send_count(self, count: int) -> bool: ...

    def close(self) -> None: ...


class ConfigStore(Protocol):
    def get_model_path(self) -> str: ...

    def target_pattern(self) -> TargetPattern: ...

    def get_serial_port(self) -> str: ...

    def set_serial_port(self, port: str) -> None: ...

    def get_auto_start(self) -> bool: ...

    def get_grammar(self) -> Optional[List[str]]: ...
