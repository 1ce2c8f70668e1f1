"""Application entrypoint."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from config import JsonConfigStore
from interfaces import ConfigStore
from models import MatchMode, SessionSnapshot, SessionState
from normalizer import Alphabet
from recognizer import VoskRecognizerAdapter
from recorder import SoundDeviceRecorder
from serial_channel import SerialTelemetryChannel, list_serial_ports
from session_controller import SessionController

logger = logging.getLogger("chantcount")

HELP = "commands: s=start  x=stop  r=reset  q=quit"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chantcount",
        description="Count a spoken phrase in live speech and relay the count over serial.",
    )
    parser.add_argument("--model", help="path to an unpacked Vosk model directory")
    parser.add_argument("--phrase", help="phrase or token to count")
    parser.add_argument("--mode", choices=[m.value for m in MatchMode])
    parser.add_argument("--max-distance", type=int, help="edit distance allowed per window")
    parser.add_argument("--run-weight", type=int, help="increment per exact run")
    parser.add_argument("--alphabet", choices=[a.value for a in Alphabet])
    parser.add_argument("--serial-port", help="counter device port (remembered)")
    parser.add_argument("--list-ports", action="store_true", help="list serial ports and exit")
    parser.add_argument("--no-auto-start", action="store_true", help="wait for 's' before listening")
    parser.add_argument("--log-level", default="INFO")
    return parser


class App:
    def __init__(self, args: argparse.Namespace) -> None:
        self.config_store: ConfigStore = JsonConfigStore()
        if args.serial_port:
            self.config_store.set_serial_port(args.serial_port)

        pattern = self.config_store.target_pattern()
        overrides = {}
        if args.phrase:
            overrides["phrase"] = args.phrase
        if args.mode:
            overrides["mode"] = MatchMode(args.mode)
        if args.max_distance is not None:
            overrides["max_edit_distance"] = args.max_distance
        if args.run_weight is not None:
            overrides["run_weight"] = args.run_weight
        if args.alphabet:
            overrides["alphabet"] = Alphabet(args.alphabet)
        if overrides:
            pattern = replace(pattern, **overrides)

        self.telemetry = SerialTelemetryChannel(port=self.config_store.get_serial_port())
        self.controller = SessionController(
            recorder=SoundDeviceRecorder(),
            recognizer=VoskRecognizerAdapter(
                model_path=args.model or self.config_store.get_model_path(),
                grammar=self.config_store.get_grammar(),
            ),
            pattern=pattern,
            telemetry=self.telemetry,
            auto_start=self.config_store.get_auto_start() and not args.no_auto_start,
            on_error=self._on_error,
        )
        self._last_count = -1
        self.controller.subscribe(self._on_update)

    def _on_error(self, code: str, message: str) -> None:
        print(f"error [{code}]: {message}", file=sys.stderr, flush=True)

    def _on_update(self, snap: SessionSnapshot) -> None:
        if snap.count != self._last_count:
            self._last_count = snap.count
            print(f"count: {snap.count}  (serial {snap.serial_state.value.lower()})", flush=True)

    def run(self) -> int:
        pattern = self.controller.pattern
        print(f"counting {pattern.phrase!r} ({pattern.mode.value}); {HELP}", flush=True)
        self.controller.open()
        try:
            for line in sys.stdin:
                command = line.strip().lower()
                if command == "s":
                    self.controller.start()
                elif command == "x":
                    self.controller.stop()
                elif command == "r":
                    self.controller.reset()
                elif command == "q":
                    break
                elif command:
                    print(HELP, flush=True)
        except KeyboardInterrupt:
            pass
        finally:
            self.quit()
        return 0 if self.controller.state != SessionState.ERROR else 1

    def quit(self) -> None:
        self.controller.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.list_ports:
        for port in list_serial_ports():
            print(port)
        return 0
    app = App(args)
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
