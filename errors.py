"""Shared error codes and user-facing messages."""

from __future__ import annotations

MODEL_LOAD_FAILED = "MODEL_LOAD_FAILED"
PERMISSION_DENIED = "PERMISSION_DENIED"
DEVICE_BUSY = "DEVICE_BUSY"
UNSUPPORTED_CONFIG = "UNSUPPORTED_CONFIG"
SERIAL_OPEN_FAILED = "SERIAL_OPEN_FAILED"
SERIAL_WRITE_FAILED = "SERIAL_WRITE_FAILED"
ASR_DECODE_ERROR = "ASR_DECODE_ERROR"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"

ERROR_MESSAGES = {
    MODEL_LOAD_FAILED: "Speech model could not be loaded.",
    PERMISSION_DENIED: "Microphone permission is required.",
    DEVICE_BUSY: "Microphone is busy or unavailable.",
    UNSUPPORTED_CONFIG: "Microphone does not support 16 kHz mono capture.",
    SERIAL_OPEN_FAILED: "Counter device could not be opened.",
    SERIAL_WRITE_FAILED: "Counter device stopped accepting updates.",
    ASR_DECODE_ERROR: "One utterance could not be decoded.",
    ASR_PROTOCOL_ERROR: "Speech recognizer stopped unexpectedly.",
}


class AcquisitionError(RuntimeError):
    """A model, microphone or serial port could not be acquired."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or ERROR_MESSAGES.get(code, code))
        self.code = code
