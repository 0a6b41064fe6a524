"""Per-scene event log and tallies plus the cross-scene per-entity history."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any

from .models import HistoryEntry, SpokenCell
from .qscript import NormalizedScript

logger = logging.getLogger(__name__)


@dataclass
class Scene:
    title: str
    filename: str
    index: int
    fields: dict[str, list[Any]] = field(default_factory=dict)
    tables: dict[str, dict[str, Any]] = field(default_factory=dict)
    spoken: dict[tuple[str, str], SpokenCell] = field(default_factory=dict)
    closed: bool = False

    def spoken_count(self, category: str, entity: str) -> int:
        cell = self.spoken.get((category, entity))
        return cell.count if cell else 0


class TimeframeTracker:
    def __init__(self, script: NormalizedScript | None = None) -> None:
        self.script = script
        self.scenes: dict[str, Scene] = {}
        self.current: Scene | None = None
        self.histories: dict[str, dict[str, list[HistoryEntry]]] = defaultdict(dict)
        # scene title -> person -> names the person is responsible for
        self.highlights: dict[str, dict[str, list[str]]] = {}

    @property
    def scene_title(self) -> str | None:
        return self.current.title if self.current else None

    def loc(self) -> str:
        return self.script.loc() if self.script else "loc0"

    def open_scene(self, title: str, filename: str = "") -> str:
        if self.current is not None:
            logger.warning("scene %r was not closed before %r", self.current.title, title)
            self.close_scene()
        unique = title
        counter = 1
        while unique in self.scenes:
            counter += 1
            unique = f"{title} ({counter})"
        scene = Scene(title=unique, filename=filename or unique, index=len(self.scenes))
        self.scenes[unique] = scene
        self.current = scene
        self.highlights[unique] = {}
        return unique

    def close_scene(self) -> Scene:
        """Finalize every spoken tally of the open scene and freeze it."""
        scene = self._require_scene()
        for cell in scene.spoken.values():
            cell.final = True
        scene.closed = True
        self.current = None
        logger.debug("closed scene %s", scene.title)
        return scene

    def _require_scene(self) -> Scene:
        if self.current is None:
            raise RuntimeError("no open scene")
        return self.current

    def add(self, field_name: str, value: Any) -> None:
        if value is None:
            raise ValueError(f"cannot add None to scene field {field_name!r}")
        scene = self._require_scene()
        scene.fields.setdefault(field_name, []).append(value)

    def add_once(self, field_name: str, value: Any) -> bool:
        if value is None:
            raise ValueError(f"cannot add None to scene field {field_name!r}")
        scene = self._require_scene()
        values = scene.fields.setdefault(field_name, [])
        if value in values:
            return False
        values.append(value)
        return True

    def values(self, field_name: str, scene: str | None = None) -> list[Any]:
        target = self.scenes.get(scene) if scene else self.current
        if target is None:
            return []
        return list(target.fields.get(field_name, []))

    def seen(self, field_name: str, value: Any) -> bool:
        return self.current is not None and value in self.current.fields.get(field_name, [])

    def set_table(self, name: str, key: str, value: Any) -> None:
        scene = self._require_scene()
        scene.tables.setdefault(name, {})[key] = value

    def table(self, name: str, scene: str) -> dict[str, Any]:
        target = self.scenes.get(scene)
        if target is None:
            return {}
        return target.tables.get(name, {})

    def add_event_text(self, category: str, entity: str | None, key: str, text: Any) -> HistoryEntry | None:
        if entity is None:
            return None
        entry = HistoryEntry(scene=self.scene_title, loc=self.loc(), key=key, text=text)
        self.histories[category].setdefault(entity, []).append(entry)
        return entry

    def history(self, category: str, entity: str) -> list[HistoryEntry]:
        return self.histories.get(category, {}).get(entity, [])

    def record_spoken(
        self,
        name: str,
        *,
        player: str | None = None,
        voice: str | None = None,
        puppet: str | None = None,
    ) -> None:
        """Count one spoken line for the role and the entities animating it."""
        scene = self._require_scene()
        targets = [("Role", name), ("Person", player)]
        if voice != player:
            targets.append(("Person", voice))
        targets.append(("Puppet", puppet))
        for category, entity in targets:
            if entity is None:
                continue
            cell = scene.spoken.get((category, entity))
            if cell is None:
                cell = SpokenCell()
                scene.spoken[(category, entity)] = cell
                entry = HistoryEntry(scene=scene.title, loc=self.loc(), key="Spokn", spoken=cell)
                self.histories[category].setdefault(entity, []).append(entry)
            cell.count += 1

    def highlight(self, person: str | None, name: str) -> None:
        if person is None or self.current is None:
            return
        names = self.highlights[self.current.title].setdefault(person, [])
        if name not in names:
            names.append(name)

    def highlight_group(self, roles: list[str], group: str, title: str) -> None:
        for names in self.highlights.get(title, {}).values():
            if group not in names and any(role in names for role in roles):
                names.append(group)
