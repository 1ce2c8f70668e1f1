"""One-way serial telemetry: pushes ``"<count>\\n"`` to a counter device."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Optional

import serial
from serial.tools import list_ports

from errors import SERIAL_OPEN_FAILED, SERIAL_WRITE_FAILED, AcquisitionError
from models import SerialConnectionState

logger = logging.getLogger(__name__)

BAUD_RATE = 9600

StateCallback = Callable[[SerialConnectionState], None]


def list_serial_ports() -> List[str]:
    return [port.device for port in list_ports.comports()]


def encode_count(count: int) -> bytes:
    return f"{count}\n".encode("ascii")


class SerialTelemetryChannel:
    def __init__(
        self,
        port: str = "",
        baudrate: int = BAUD_RATE,
        write_timeout_s: float = 0.5,
        watch_interval_s: float = 1.0,
        on_state_change: Optional[StateCallback] = None,
    ) -> None:
        self.port = port
        self._baudrate = baudrate
        self._write_timeout_s = write_timeout_s
        self._watch_interval_s = watch_interval_s
        self._on_state_change = on_state_change
        self._lock = threading.RLock()
        self._state = SerialConnectionState.DISCONNECTED
        self._serial: Any = None
        self._watch_stop = threading.Event()
        self._watch_thread: Optional[threading.Thread] = None
        self._session = 0

    @property
    def state(self) -> SerialConnectionState:
        return self._state

    def connect(self, port: str | None = None) -> None:
        """Open ``port`` (or the remembered one). Raises AcquisitionError."""
        with self._lock:
            self._open(port, self._session)

    def reconnect(self) -> bool:
        """Reopen the remembered device if it is present; never raises."""
        with self._lock:
            session = self._session
        return self._reconnect(session)

    def reconnect_in_background(
        self, on_connected: Optional[Callable[[], None]] = None
    ) -> threading.Thread:
        """Run :meth:`reconnect` on a thread; a later :meth:`close` cancels it."""
        with self._lock:
            session = self._session

        def run() -> None:
            if self._reconnect(session) and on_connected is not None:
                on_connected()

        thread = threading.Thread(target=run, name="serial-reconnect", daemon=True)
        thread.start()
        return thread

    def send_count(self, count: int) -> bool:
        with self._lock:
            if self._state != SerialConnectionState.CONNECTED or self._serial is None:
                return False
            try:
                self._serial.write(encode_count(count))
            except (serial.SerialException, OSError) as exc:
                logger.warning("%s on %s: %s", SERIAL_WRITE_FAILED, self.port, exc)
                self._release_port()
                self._set_state(SerialConnectionState.ERROR)
                return False
            return True

    def notify_disconnected(self) -> None:
        with self._lock:
            if self._serial is None and self._state == SerialConnectionState.DISCONNECTED:
                return
            logger.info("Serial device %s disconnected", self.port)
            self._release_port()
            self._set_state(SerialConnectionState.DISCONNECTED)

    def close(self) -> None:
        with self._lock:
            self._session += 1
            self._watch_stop.set()
            watch, self._watch_thread = self._watch_thread, None
            self._release_port()
            self._set_state(SerialConnectionState.DISCONNECTED)
        if watch and watch.is_alive() and watch is not threading.current_thread():
            watch.join(timeout=self._watch_interval_s + 0.5)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _reconnect(self, session: int) -> bool:
        if not self.port:
            return False
        if self.port not in list_serial_ports():
            logger.info("Remembered serial device %s not present", self.port)
            return False
        try:
            with self._lock:
                return self._open(None, session)
        except AcquisitionError as exc:
            logger.warning("Serial reconnect to %s failed: %s", self.port, exc)
            return False

    def _open(self, port: str | None, session: int) -> bool:
        if session != self._session:
            logger.info("Serial reconnect to %s abandoned, channel closed", self.port)
            return False
        if port:
            self.port = port
        if not self.port:
            raise AcquisitionError(SERIAL_OPEN_FAILED, "no serial port selected")
        self._release_port()
        self._set_state(SerialConnectionState.CONNECTING)
        try:
            self._serial = serial.Serial(
                self.port,
                baudrate=self._baudrate,
                write_timeout=self._write_timeout_s,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            self._serial = None
            self._set_state(SerialConnectionState.ERROR)
            raise AcquisitionError(SERIAL_OPEN_FAILED, str(exc)) from exc
        self._set_state(SerialConnectionState.CONNECTED)
        logger.info("Serial device %s open at %d baud", self.port, self._baudrate)
        self._start_watch()
        return True

    def _release_port(self) -> None:
        port, self._serial = self._serial, None
        if port is None:
            return
        try:
            port.close()
        except (serial.SerialException, OSError):
            logger.debug("Closing %s failed", self.port, exc_info=True)

    def _set_state(self, state: SerialConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)

    def _start_watch(self) -> None:
        if self._watch_thread and self._watch_thread.is_alive() and not self._watch_stop.is_set():
            return
        self._watch_stop = threading.Event()
        self._watch_thread = threading.Thread(
            target=self._watch, args=(self._watch_stop,), name="serial-watch", daemon=True
        )
        self._watch_thread.start()

    def _watch(self, stop: threading.Event) -> None:
        """Poll the port list; pyserial has no unplug event."""
        while not stop.wait(self._watch_interval_s):
            if self._state != SerialConnectionState.CONNECTED:
                return
            try:
                present = self.port in list_serial_ports()
            except OSError:
                continue
            if not present:
                self.notify_disconnected()
                return
