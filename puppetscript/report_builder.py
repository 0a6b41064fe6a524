"""Read-only report projections over the finished store and tracker.

Projections return plain rows; `render_text` and `render_html` turn them into
the text report and the HTML report. Nothing here mutates the store or the
tracker, so the builder must only run after every scene has been parsed.
"""

from __future__ import annotations

import html
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import read_table
from .entity_store import EntityStore
from .line_rules import BACKDROP_FIELDS, prop_refs
from .models import CATEGORY_TITLES, HistoryEntry, Ref, plain_text
from .qscript import NormalizedScript
from .timeframe import TimeframeTracker

NATURAL_SPLIT_RE = re.compile(r"(\d+)")
PRESENCE_CATEGORIES = {"Roles": "Role", "People": "Person", "Puppets": "Puppet"}
BUILD_CATEGORIES = (
    "Backdrop",
    "FrontProp",
    "SecondLevelProp",
    "PersonalProp",
    "HandProp",
    "TechProp",
    "SpecialEffect",
    "Puppet",
    "Costume",
)
SPOKEN_CATEGORIES = ("Role", "Person", "Puppet")
STAGE_KEYS = ("Stage", "Effct")
DEFAULT_HTML_HEADER = (
    "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\"/>\n"
    "<title>Scene report</title>\n</head>\n<body>\n"
)
HTML_FOOTER = "</body>\n</html>\n"


def natural_key(text: str, numeric: bool = True) -> list[Any]:
    lowered = text.lower()
    if not numeric:
        return [lowered]
    return [int(part) if part.isdigit() else part for part in NATURAL_SPLIT_RE.split(lowered)]


@dataclass
class PoolEntry:
    name: str
    html: str
    builder: str | None = None


class PuppetPool:
    """Picture pool of the puppets, keyed by puppet name."""

    def __init__(self) -> None:
        self.entries: dict[str, PoolEntry] = {}

    @classmethod
    def from_file(cls, path: Path) -> PuppetPool:
        pool = cls()
        for row in read_table(path):
            name = row.fields[0].strip()
            if len(row.fields) == 2:
                pool.add(name, row.fields[1].strip())
            else:
                pool.add(name, ";".join(row.fields[2:]).strip(), builder=row.fields[1].strip() or None)
        return pool

    def add(self, name: str, fragment: str, builder: str | None = None) -> None:
        self.entries[name] = PoolEntry(name=name, html=fragment, builder=builder)

    def image(self, name: str | None) -> str | None:
        entry = self.entries.get(name or "")
        if entry is None or not entry.html:
            return None
        return f"<img {entry.html.replace('&', '&amp;')}/>"

    def builders(self) -> list[str]:
        return sorted({entry.builder for entry in self.entries.values() if entry.builder})


@dataclass
class SceneHistory:
    scene: str | None
    spoken: str | None
    entries: list[HistoryEntry] = field(default_factory=list)


@dataclass
class Table:
    title: str
    headers: list[str]
    rows: list[list[str]]


class ReportBuilder:
    def __init__(
        self,
        store: EntityStore,
        tracker: TimeframeTracker,
        script: NormalizedScript | None = None,
        *,
        puppet_pool: PuppetPool | None = None,
        natural_sort: bool = True,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.script = script
        self.puppet_pool = puppet_pool or PuppetPool()
        self.natural_sort = natural_sort

    def sorted_names(self, names: Any) -> list[str]:
        return sorted(names, key=lambda name: natural_key(name, self.natural_sort))

    @property
    def scenes(self) -> list[str]:
        return list(self.tracker.scenes)

    # -- projections ---------------------------------------------------------

    def catalog(self) -> list[tuple[str, str, list[tuple[str, int]]]]:
        sections = []
        for title, category in CATEGORY_TITLES.items():
            items = self.store.items.get(category, {})
            if not items:
                continue
            listed = [(name, len(items[name].uses)) for name in self.sorted_names(items)]
            sections.append((title, category, listed))
        return sections

    def timeframe_contents(self) -> list[tuple[str, list[tuple[str, list[str]]]]]:
        contents = []
        for title, scene in self.tracker.scenes.items():
            fields = []
            for label, category in CATEGORY_TITLES.items():
                values = [plain_text(value) for value in dict.fromkeys(scene.fields.get(category, []))]
                if values:
                    fields.append((label, values))
            contents.append((title, fields))
        return contents

    def item_history(self, category: str, name: str) -> list[SceneHistory]:
        """History of one entity grouped by scene, with the scene's spoken summary."""
        blocks: list[SceneHistory] = []
        for entry in self.tracker.history(category, name):
            if not blocks or blocks[-1].scene != entry.scene:
                spoken = None
                scene = self.tracker.scenes.get(entry.scene or "")
                if category in SPOKEN_CATEGORIES and scene is not None:
                    count = scene.spoken_count(category, name)
                    spoken = f"{count}x spoken" if count else None
                blocks.append(SceneHistory(scene=entry.scene, spoken=spoken))
            blocks[-1].entries.append(entry)
        return blocks

    def presence_table(self, title: str) -> Table:
        category = PRESENCE_CATEGORIES[title]
        scenes = self.scenes
        rows = []
        for name in self.sorted_names(self.store.items.get(category, {})):
            marks = ["x" if name in self.tracker.values(category, scene) else "" for scene in scenes]
            rows.append([name, *marks, str(marks.count("x"))])
        return Table(title=title, headers=["Name", *scenes, "Total"], rows=rows)

    def backdrop_table(self) -> Table:
        usage: dict[str, list[str]] = defaultdict(list)
        for scene in self.scenes:
            for key in dict.fromkeys(self.tracker.values("Backdrop", scene)):
                usage[key].append(scene)
        rows = []
        for scene in self.scenes:
            cells = {position: "" for position in BACKDROP_FIELDS}
            for key in dict.fromkeys(self.tracker.values("Backdrop", scene)):
                value, _, position = key.rpartition(" ")
                used = usage[key]
                text = f"{value} (use {used.index(scene) + 1}/{len(used)})"
                cells[position] = f"{cells[position]}, {text}" if cells.get(position) else text
            rows.append([scene, *(cells[position] for position in BACKDROP_FIELDS)])
        return Table(title="Backdrops", headers=["Scene", *BACKDROP_FIELDS], rows=rows)

    def puppet_plays_table(self) -> Table:
        rows = []
        for scene in self.scenes:
            plays = self.tracker.table("puppet_plays", scene)
            for puppet in self.sorted_names(plays):
                play = plays[puppet]
                rows.append(
                    [scene, puppet, play.role, play.player or "", play.hand or "", play.voice or "", play.costume or ""]
                )
        return Table(
            title="Puppet plays",
            headers=["Scene", "Puppet", "Role", "Player", "Hands", "Voice", "Costume"],
            rows=rows,
        )

    def puppet_use_table(self) -> Table:
        rows = []
        for puppet in self.sorted_names(self.store.items.get("Puppet", {})):
            item = self.store.items["Puppet"][puppet]
            roles = list(dict.fromkeys(use.attrs.get("role") for use in item.uses if use.attrs.get("role")))
            scenes = [scene for scene in self.scenes if puppet in self.tracker.values("Puppet", scene)]
            rows.append([puppet, ", ".join(roles), ", ".join(scenes), str(len(scenes))])
        return Table(title="Puppet use", headers=["Puppet", "Roles", "Scenes", "Count"], rows=rows)

    def puppet_costumes_table(self, *, images: bool = False) -> Table:
        by_puppet: dict[str, list[tuple[str, str | None]]] = defaultdict(list)
        for costume, item in self.store.items.get("Costume", {}).items():
            for use in item.uses:
                pair = (costume, use.attrs.get("role"))
                puppet = use.attrs.get("puppet") or ""
                if pair not in by_puppet[puppet]:
                    by_puppet[puppet].append(pair)
        rows = []
        for puppet in self.sorted_names(by_puppet):
            costumes = ", ".join(dict.fromkeys(costume for costume, _ in by_puppet[puppet]))
            roles = ", ".join(dict.fromkeys(role for _, role in by_puppet[puppet] if role))
            row = [puppet, costumes, roles]
            if images:
                row.insert(1, self.puppet_pool.image(puppet) or "")
            rows.append(row)
        headers = ["Puppet", "Costumes", "Roles"]
        if images:
            headers.insert(1, "Image")
        return Table(title="Puppet costumes", headers=headers, rows=rows)

    def todo_list(self) -> Table:
        """Items to build, listed at the first scene that needs them."""
        seen: set[tuple[str, str]] = set()
        rows = []
        for scene in self.scenes:
            for category in BUILD_CATEGORIES:
                for value in dict.fromkeys(self.tracker.values(category, scene)):
                    if (category, value) in seen:
                        continue
                    seen.add((category, value))
                    rows.append([scene, category, self.store.prop_name(category, value)])
        return Table(title="Todo list", headers=["Scene", "Category", "Item"], rows=rows)

    def hands_table(self) -> Table:
        rows = []
        for scene in self.scenes:
            hands = self.tracker.table("props_hands", scene)
            for kprop in self.sorted_names(hands):
                rows.append([scene, kprop, ", ".join(hands[kprop])])
        return Table(title="Hands", headers=["Scene", "Prop", "Stagehands"], rows=rows)

    def assignments(self) -> Table:
        """Backstage duties per person and scene, inferred from their history."""
        rows = []
        for person in self.sorted_names(self.store.items.get("Person", {})):
            duties: dict[str | None, list[str]] = {}
            for entry in self.tracker.history("Person", person):
                found = duties.setdefault(entry.scene, [])
                for duty in self._duties(entry):
                    if duty not in found:
                        found.append(duty)
            for scene, found in duties.items():
                if found:
                    rows.append([person, scene or "", ", ".join(found)])
        return Table(title="Assignments", headers=["Person", "Scene", "Duties"], rows=rows)

    @staticmethod
    def _duties(entry: HistoryEntry) -> list[str]:
        if entry.key == "Pers+":
            return [plain_text(entry.text[0])]
        if entry.key in STAGE_KEYS:
            text = plain_text(entry.text[-1])
            names = [ref.name for ref in prop_refs(text)]
            return list(dict.fromkeys(names)) or [text]
        return []

    def cast(self) -> Table:
        rows = []
        for name in self.sorted_names(self.store.items.get("Role", {})):
            role = self.store.items["Role"][name]
            values = [
                ", ".join(role.assignments.get(what, []))
                for what in ("player", "hands", "voice", "puppet", "costume")
            ]
            rows.append([name, *values])
        builders = self.puppet_pool.builders()
        if builders:
            rows.append(["Puppet Builders", ", ".join(builders), "", "", "", ""])
        return Table(
            title="Cast of characters",
            headers=["Role", "Player", "Hands", "Voice", "Puppet", "Costume"],
            rows=rows,
        )

    def assignment_list(self) -> list[list[str]]:
        scenes = self.scenes
        rows: list[list[str]] = [["Name", *scenes]]
        for name in self.sorted_names(self.store.items.get("Role", {})):
            cells = []
            for scene in scenes:
                players = [
                    plain_text(entry.text[1])
                    for entry in self.tracker.history("Role", name)
                    if entry.scene == scene and entry.key == "Pers+" and entry.text[0].what == "player"
                ]
                cells.append(", ".join(dict.fromkeys(players)))
            rows.append([name, *cells])
        props = sorted(
            {kprop for scene in scenes for kprop in self.tracker.table("props_hands", scene)},
            key=lambda name: natural_key(name, self.natural_sort),
        )
        for kprop in props:
            cells = [", ".join(self.tracker.table("props_hands", scene).get(kprop, [])) for scene in scenes]
            rows.append([kprop, *cells])
        for person in self.sorted_names(self.store.items.get("Person", {})):
            cells = ["x" if person in self.tracker.values("Person", scene) else "" for scene in scenes]
            rows.append([person, *cells])
        return rows

    def wiki_actors(self) -> dict[str, dict[str, list[str]]]:
        """Highlights per scene file; a file parsed twice is keyed by its unique scene title."""
        actors: dict[str, dict[str, list[str]]] = {}
        for title, people in self.tracker.highlights.items():
            key = self.tracker.scenes[title].filename
            if key in actors:
                key = title
            actors[key] = {person: list(names) for person, names in people.items()}
        return actors

    def tables(self) -> list[Table]:
        return [
            self.backdrop_table(),
            *(self.presence_table(title) for title in PRESENCE_CATEGORIES),
            self.puppet_plays_table(),
            self.puppet_use_table(),
            self.puppet_costumes_table(),
            self.todo_list(),
            self.hands_table(),
            self.assignments(),
            self.cast(),
        ]

    # -- CSV --------------------------------------------------------------------

    def todo_csv(self) -> str:
        table = self.todo_list()
        return "".join(";".join(row) + "\n" for row in [table.headers, *table.rows])

    def assignment_csv(self) -> str:
        return "".join(";".join(row) + "\n" for row in self.assignment_list())

    # -- text -------------------------------------------------------------------

    def render_text(self) -> str:
        lines: list[str] = ["Catalog"]
        for title, _, listed in self.catalog():
            lines.append(f"  {title}")
            lines.extend(f"    {name} ({count})" for name, count in listed)
        lines.append("")
        lines.append("Timeframe contents")
        for title, fields in self.timeframe_contents():
            lines.append(f"  {title}")
            for label, values in fields:
                lines.append(f"    {label}: {', '.join(values)}")
        lines.append("")
        lines.append("Catalog item details")
        for title, category, listed in self.catalog():
            for name, _ in listed:
                lines.append(f"  {title} {name}")
                for block in self.item_history(category, name):
                    if block.spoken:
                        lines.append(f"    {block.scene}: {block.spoken}")
                    for entry in block.entries:
                        lines.append(f"      {entry.scene} {entry.key} {plain_text(entry.label())}".rstrip())
        for table in self.tables():
            lines.append("")
            lines.append(table.title)
            lines.extend(ascii_table(table.headers, table.rows))
        return "\n".join(lines) + "\n"

    # -- HTML -------------------------------------------------------------------

    def anchor(self, value: Any) -> str:
        if isinstance(value, Ref):
            item = self.store.get(value.category, value.name)
            text = html.escape(value.name)
            return f'<a href="#{item.ref}">{text}</a>' if item is not None else text
        if isinstance(value, (list, tuple)):
            return " ".join(self.anchor(part) for part in value if part is not None)
        return html.escape(plain_text(value))

    def render_html(self, header: str | None = None) -> str:
        sections = [
            ("catalog", "Catalog"),
            ("timeframes", "Timeframe contents"),
            ("details", "Catalog item details"),
            *((f"table{index}", table.title) for index, table in enumerate(self.tables())),
            ("script", "Script"),
        ]
        out = [header or DEFAULT_HTML_HEADER, "<ul class=\"nav\">\n"]
        out.extend(f'<li><a href="#{anchor}">{html.escape(title)}</a></li>\n' for anchor, title in sections)
        out.append("</ul>\n")

        out.append('<h2 id="catalog">Catalog</h2>\n')
        for title, category, listed in self.catalog():
            out.append(f"<h3>{html.escape(title)}</h3>\n<ul>\n")
            for name, count in listed:
                item = self.store.items[category][name]
                css = ' class="todo"' if category == "Todo" else ""
                out.append(f'<li{css}><a href="#{item.ref}">{html.escape(name)}</a> ({count})</li>\n')
            out.append("</ul>\n")

        out.append('<h2 id="timeframes">Timeframe contents</h2>\n')
        for index, (title, fields) in enumerate(self.timeframe_contents()):
            out.append(f'<h3 id="timeframe{index}">{html.escape(title)}</h3>\n<ul>\n')
            for label, values in fields:
                out.append(f"<li>{html.escape(label)}: {html.escape(', '.join(values))}</li>\n")
            out.append("</ul>\n")

        out.append('<h2 id="details">Catalog item details</h2>\n<ul>\n')
        for title, category, listed in self.catalog():
            for name, count in listed:
                item = self.store.items[category][name]
                out.append(f'<li id="{item.ref}"><p>{html.escape(title)} {html.escape(name)} ({count})</p>\n')
                for block in self.item_history(category, name):
                    if block.spoken:
                        out.append(f"<p>{html.escape(block.scene or '')}: {block.spoken}</p>\n")
                    for entry in block.entries:
                        out.append(
                            f'<p><a href="#{entry.loc}">{html.escape(entry.scene or "")}</a> '
                            f"{html.escape(entry.key)} {self.anchor(entry.label())}</p>\n"
                        )
                out.append("</li>\n")
        out.append("</ul>\n")

        for index, table in enumerate(self.tables()):
            if table.title == "Puppet costumes":
                table = self.puppet_costumes_table(images=True)
            out.append(f'<h2 id="table{index}">{html.escape(table.title)}</h2>\n')
            out.append(html_table(table, raw_columns={"Image"}))

        out.append('<h2 id="script">Script</h2>\n')
        if self.script is not None:
            for entry in self.script.entries:
                css = ' class="todo"' if entry.key == "Todo" else ""
                out.append(
                    f'<p id="{entry.loc}"{css}>{html.escape(entry.scene or "")} '
                    f"{html.escape(entry.key)} {self.anchor(entry.items)}</p>\n"
                )
        out.append(HTML_FOOTER)
        return "".join(out)

    def render_clothes_html(self, header: str | None = None) -> str:
        table = self.puppet_costumes_table(images=True)
        return "".join(
            [
                header or DEFAULT_HTML_HEADER,
                f"<h2>{html.escape(table.title)}</h2>\n",
                html_table(table, raw_columns={"Image"}),
                HTML_FOOTER,
            ]
        )


def ascii_table(headers: list[str], rows: list[list[str]]) -> list[str]:
    widths = [max(len(str(cell)) for cell in column) for column in zip(headers, *rows)]
    rule = "+" + "+".join("-" * (width + 2) for width in widths) + "+"

    def line(cells: list[str]) -> str:
        return "|" + "|".join(f" {str(cell):<{width}} " for cell, width in zip(cells, widths)) + "|"

    return [rule, line(headers), rule, *(line(row) for row in rows), rule]


def html_table(table: Table, raw_columns: set[str] | None = None) -> str:
    raw = {index for index, header in enumerate(table.headers) if header in (raw_columns or set())}
    out = ['<table class="report">\n<tr>']
    out.extend(f"<th>{html.escape(header)}</th>" for header in table.headers)
    out.append("</tr>\n")
    for row in table.rows:
        out.append("<tr>")
        for index, cell in enumerate(row):
            text = cell if index in raw else html.escape(cell)
            css = ' class="present"' if cell == "x" else ""
            out.append(f"<td{css}>{text}</td>")
        out.append("</tr>\n")
    out.append("</table>\n")
    return "".join(out)
