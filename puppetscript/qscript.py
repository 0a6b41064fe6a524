"""Normalized event script: one tab-indented directive per line, one block per scene."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .models import Duty, plain_text

logger = logging.getLogger(__name__)


def quoted(text: Any) -> str:
    return '"' + plain_text(text).replace('"', '\\"') + '"'


def write_text_if_changed(path: Path, text: str) -> bool:
    if path.exists() and path.read_text(encoding="utf-8") == text:
        logger.debug("unchanged: %s", path)
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return True


@dataclass
class ScriptEntry:
    loc: str
    scene: str | None
    key: str
    items: tuple[Any, ...]


class NormalizedScript:
    def __init__(self) -> None:
        self._lines: list[str] = []
        self.entries: list[ScriptEntry] = []
        self.scene: str | None = None

    @property
    def lines(self) -> int:
        return len(self._lines)

    def loc(self) -> str:
        return f"loc{self.lines}"

    @property
    def text(self) -> str:
        return "".join(f"{line}\n" for line in self._lines)

    def puts(self, line: str = "") -> None:
        self._lines.append(line)

    def comment(self, line: str) -> None:
        self.puts(f"\t//{line}")

    def begin_scene(self, title: str, stem: str) -> None:
        self.scene = title
        self.puts(f"timeframe {quoted(title)} //{stem}")
        self.puts("{")

    def end_scene(self) -> None:
        self.puts("}")
        self.puts()
        self.scene = None

    def emit(self, directive: str, key: str, *items: Any) -> ScriptEntry:
        """Write `directive "item" "item"` and keep it as a structured entry."""
        entry = ScriptEntry(loc=self.loc(), scene=self.scene, key=key, items=items)
        words = [directive, *(quoted(item) for item in items if item is not None)]
        self.puts("\t" + " ".join(words))
        self.entries.append(entry)
        return entry

    def emit_raw(self, directive: str, key: str, value: str) -> ScriptEntry:
        entry = ScriptEntry(loc=self.loc(), scene=self.scene, key=key, items=(value,))
        self.puts(f"\t{directive} {value}")
        self.entries.append(entry)
        return entry

    def person(self, token: str, role: str, what: str, value: str | None = None) -> ScriptEntry:
        duty = Duty(role, what)
        entry = ScriptEntry(loc=self.loc(), scene=self.scene, key=f"Pers{token}", items=(duty, value))
        line = f"\tperson{token} {quoted(role)}.{what}"
        if value is not None:
            line += f" {quoted(value)}"
        self.puts(line)
        self.entries.append(entry)
        return entry

