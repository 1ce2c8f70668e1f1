"""Simple JSON-based config store."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Optional

from models import MatchMode, TargetPattern
from normalizer import Alphabet

DEFAULT_PHRASE = "om ara pa cha na dhi"
MODEL_PATH_ENV = "CHANTCOUNT_MODEL_PATH"


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "chantcount" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_model_path(self) -> str:
        data = self._read_all()
        return str(data.get("model_path") or os.getenv(MODEL_PATH_ENV, ""))

    def set_model_path(self, path: str) -> None:
        self._set("model_path", path)

    def get_serial_port(self) -> str:
        data = self._read_all()
        return str(data.get("serial_port", ""))

    def set_serial_port(self, port: str) -> None:
        self._set("serial_port", port)

    def get_auto_start(self) -> bool:
        data = self._read_all()
        return bool(data.get("auto_start", True))

    def set_auto_start(self, enabled: bool) -> None:
        self._set("auto_start", enabled)

    def get_grammar(self) -> Optional[List[str]]:
        data = self._read_all()
        grammar = data.get("grammar")
        if not isinstance(grammar, list) or not grammar:
            return None
        return [str(item) for item in grammar]

    def target_pattern(self) -> TargetPattern:
        data = self._read_all()
        target = data.get("target", {})
        if not isinstance(target, dict):
            target = {}
        try:
            mode = MatchMode(target.get("mode", MatchMode.FUZZY_WINDOW.value))
        except ValueError:
            mode = MatchMode.FUZZY_WINDOW
        try:
            alphabet = Alphabet(target.get("alphabet", Alphabet.LATIN.value))
        except ValueError:
            alphabet = Alphabet.LATIN
        return TargetPattern(
            phrase=str(target.get("phrase", DEFAULT_PHRASE)),
            max_edit_distance=_as_int(target.get("max_edit_distance"), 3),
            mode=mode,
            run_weight=_as_int(target.get("run_weight"), 1),
            alphabet=alphabet,
        )

    def set_target_pattern(self, pattern: TargetPattern) -> None:
        self._set(
            "target",
            {
                "phrase": pattern.phrase,
                "max_edit_distance": pattern.max_edit_distance,
                "mode": pattern.mode.value,
                "run_weight": pattern.run_weight,
                "alphabet": pattern.alphabet.value,
            },
        )

    def _set(self, key: str, value: object) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def _as_int(value: object, default: int) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
