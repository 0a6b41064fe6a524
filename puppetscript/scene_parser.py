"""Line-driven parser for one scene file.

The parser walks the lines of a scene in order, routes each one through the
ordered rules in `line_rules`, mutates the entity store and timeframe tracker
and writes the normalized script. Malformed input never stops a run: it
becomes an anomaly note and parsing continues with the best default.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .entity_store import EntityStore, RoleUpdate
from .line_rules import (
    ACTION_CUE,
    BACKDROP_FIELDS,
    EFFECT_CUE,
    HEAD_SECTIONS,
    INLINE_BACKDROP_RE,
    ITEM_TAGS,
    MATCH_NAME,
    SIMPLE_CUES,
    STAGEHAND_CUE,
    TABLE_SECTIONS,
    UNQUOTED_RE,
    CueSpec,
    capitalize_identifier,
    classify_script,
    classify_structural,
    hands_from_parens,
    is_benign,
    prop_refs,
    scene_stem,
    scene_title_from_filename,
    split_list,
    stagehand_name,
    strip_tags,
    table_cell_category,
    table_cells,
    tagged_props,
)
from .models import (
    OWNED_PROP_CATEGORIES,
    PROP_KINDS,
    FieldMark,
    PropKind,
    Ref,
    is_none_token,
    parse_field,
)
from .qscript import NormalizedScript
from .role_aliases import RoleAliasResolver, RoleAliasTable
from .text_normalizer import TextNormalizer
from .timeframe import TimeframeTracker

logger = logging.getLogger(__name__)

VERSION_FORMAT = "%Y-%m-%d %H:%M"
CURTAIN_STATES = ("open", "close")
INTRO = "INTRO"
PREROLL = "PREROLL"
SETTING = "Setting"
PROP_TITLES: dict[str, str] = {
    "FrontProp": "Front prop",
    "SecondLevelProp": "Second level prop",
    "PersonalProp": "Personal prop",
    "HandProp": "Hand prop",
    "TechProp": "Tech prop",
    "SpecialEffect": "Special effect",
}

CAST_ENTRY_RE = re.compile(r"^\s*([^(]+?)\s*(?:\((.*))?$")
CAST_TRAILER_RE = re.compile(r"\)(?: .*)?$")
VOICE_PREFIX_RE = re.compile(r"^Voice:\s*", re.IGNORECASE)
ROLE_LIST_RE = re.compile(rf"^({MATCH_NAME})(?: and |, *)")
ROLE_WORD_RE = re.compile(rf"^({MATCH_NAME})(?:'s)?:*$")
GROUP_SUFFIX_RE = re.compile(rf"^= *({MATCH_NAME}):")
POSITION_RE = re.compile(r" *\[[^\]]*\]")
ARTICLE_RE = re.compile(r"^(?:The|A) ")
GROUP_MEMBER_RE = re.compile(rf"({MATCH_NAME})( *\[[^\]]*\])?")
TABLE_HEAD_RE = re.compile(r"^\^ *([^^|]+?) *[\^|]")
BACKDROP_ENTRY_RE = re.compile(r"^([A-Z][a-z]*):(.*)$")


@dataclass
class ScenePropLedger:
    """Props of the scene being parsed, keyed by lower-cased name."""

    counts: dict[str, int] = field(default_factory=dict)
    kinds: dict[str, PropKind] = field(default_factory=dict)
    hands: dict[str, list[str]] = field(default_factory=dict)
    unknown: list[str] = field(default_factory=list)


class SceneParser:
    def __init__(
        self,
        store: EntityStore,
        tracker: TimeframeTracker,
        script: NormalizedScript,
        *,
        normalizer: TextNormalizer | None = None,
        role_aliases: RoleAliasTable | None = None,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.script = script
        self.normalizer = normalizer or TextNormalizer()
        self.role_aliases = role_aliases or RoleAliasTable()
        self.resolver = RoleAliasResolver()
        self.props = ScenePropLedger()
        self.section: str | None = None
        self.title = ""
        self.filename = ""
        self.version: str | None = None
        self.setting = ""
        self.backdrops: list[str] = []

    # -- scene lifecycle ------------------------------------------------------

    def parse_file(self, path: Path) -> str:
        lines = path.read_text(encoding="utf-8").splitlines()
        version = datetime.fromtimestamp(path.stat().st_mtime).strftime(VERSION_FORMAT)
        return self.parse_lines(path.name, lines, version=version)

    def parse_lines(self, filename: str, lines: list[str], *, version: str | None = None) -> str:
        self.version = version
        title = self.open_scene(filename)
        for lineno, raw in enumerate(lines, start=1):
            logger.debug("%d:%s", lineno, raw)
            line = self.normalizer.normalize(raw, filename, title).rstrip()
            if self.parse_structural(line):
                continue
            self.parse_script_line(line.strip())
        self.close_scene()
        return title

    def open_scene(self, filename: str) -> str:
        self.filename = filename
        self.title = self.tracker.open_scene(scene_title_from_filename(filename), filename)
        self.resolver = self.role_aliases.resolver_for(self.title, filename)
        self.props = ScenePropLedger()
        self.section = None
        self.setting = ""
        self.backdrops = []
        self.script.begin_scene(self.title, scene_stem(filename))
        return self.title

    def close_scene(self) -> None:
        """Flag unused props, take every role and prop off stage, finalize the tallies."""
        for kprop in list(self.props.counts):
            kind = self.props.kinds[kprop]
            display = self.store.prop_name(kind.category, kprop)
            unused = self.props.counts[kprop] == 0
            if unused:
                self.add_todo(f"{PROP_TITLES[kind.category]} unused '{display}'")
                self.place_unused_prop(display, kind)
            if kind.category not in OWNED_PROP_CATEGORIES:
                self.drop_prop(display, kind)
        for role in dict.fromkeys(self.tracker.values("Role")):
            self.drop_role(role)
        for kprop, hands in self.props.hands.items():
            self.tracker.set_table("props_hands", kprop, list(hands))
        for kprop in self.props.unknown:
            self.tracker.set_table("props_fix", kprop, True)
        for group, roles in self.resolver.groups.items():
            self.tracker.highlight_group(roles, group, self.title)
        for group in self.resolver.unused():
            logger.warning("%s: Role group %s is not used", self.title, group)
        self.script.end_scene()
        self.tracker.close_scene()

    # -- notes ------------------------------------------------------------

    def add_note(self, text: str) -> None:
        self.script.emit("note", "Note", text)
        self.script.puts()

    def add_todo(self, message: str | None) -> None:
        if not message:
            return
        self.script.emit("todo", "Todo", message)
        self.script.puts()
        self.store.record_anomaly(message)

    # -- structural lines ---------------------------------------------------

    def parse_structural(self, line: str) -> bool:
        """Handle markers and header sections; False sends the line on to content dispatch."""
        classified = classify_structural(line)
        if classified is None:
            if line.startswith("### "):
                return False
            if self.section == SETTING:
                self.setting += f"\n{line.strip()}"
                return True
            if self.section not in (None, INTRO, PREROLL):
                self.add_todo(f"unknown header in section '{self.section}': {line}")
            return False

        kind, match = classified
        if kind == "section_break":
            if self.section != INTRO:
                self.section = None
        elif kind == "navigation":
            pass
        elif kind == "title":
            self.add_note(line)
            if self.version:
                self.add_note(f"INFO: version date {self.version}")
        elif kind == "head_data":
            self.script.comment(line.strip())
            self.parse_section_data(line.strip()[2:].strip())
        elif kind == "head_comment":
            self.section = match.group(1).strip()
            self.script.comment(line.strip())
            self.parse_head(self.section, line[match.end():].strip())
        elif kind == "intro":
            self.section = INTRO
        elif kind == "dialogue_start":
            self.section = None
        elif kind == "preroll":
            self.section = PREROLL
        elif kind == "table_head":
            self.section = self.table_section(line)
            if self.section is not None:
                self.script.comment(line)
        elif kind == "table_row":
            if self.section is not None:
                self.script.comment(line)
                self.parse_table_row(line)
        return True

    def table_section(self, line: str) -> str | None:
        match = TABLE_HEAD_RE.match(line)
        if match and match.group(1) in TABLE_SECTIONS:
            return match.group(1)
        return None

    def parse_head(self, section: str, rest: str) -> None:
        if section not in HEAD_SECTIONS:
            logger.warning("%s: unknown header section %r", self.title, section)
            return
        if not rest:
            return
        if section == "Backdrop":
            self.parse_backdrop_list(rest)
        elif section == "Puppets":
            for entry in rest.split("), "):
                self.parse_cast_entry(entry)
        elif section == SETTING:
            self.setting = rest
            self.parse_section_props(rest)
        elif section in ("Stage setup", "On playrail", "On 2nd rail", "Hand props", "Props", "Special effects"):
            self.parse_section_props(rest)

    def parse_section_data(self, line: str) -> None:
        section = self.section
        if section == "Backdrop":
            self.parse_single_backdrop(line)
            self.parse_section_props(line)
        elif section == "Puppets":
            self.parse_cast_entry(line)
        elif section == SETTING:
            self.setting += f"\n{line}"
            self.parse_section_props(line)
        elif section in ("Stage setup", "On playrail", "On 2nd rail", "Hand props", "Props", "Special effects"):
            if section == "Stage setup":
                self.setting += f"\n{line}"
            self.parse_section_props(line)

    def parse_section_props(self, line: str) -> None:
        for tag, category in ITEM_TAGS.items():
            for name in tagged_props(line, tag):
                hands = hands_from_parens(line) or [stagehand_name(name)]
                self.declare_prop(name, hands, category)

    # -- tables -------------------------------------------------------------

    def parse_table_row(self, line: str) -> None:
        cells = table_cells(line)
        if not cells:
            return
        if self.section == "Role":
            self.parse_table_role(cells)
        elif self.section == "Backdrop":
            self.parse_table_backdrop(cells)
        elif self.section == SETTING:
            self.setting += f"\n{' '.join(cells)}"
        elif self.section == "PreRec":
            pass
        else:
            self.parse_table_prop(cells)

    def parse_table_role(self, cells: list[str]) -> None:
        cells = (cells + [""] * 6)[:6]
        name = cells[0]
        if not name or name.lower() == "role":
            return
        raw_player, raw_hands, raw_voice, raw_puppet, raw_costume = cells[1:]
        hands: list[str] | FieldMark
        hands_field = parse_field(raw_hands, dash_means_unset=True)
        hands = hands_field if isinstance(hands_field, FieldMark) else split_list(hands_field)
        update = self.store.register_or_update_role(
            name,
            player=parse_field(raw_player),
            hands=hands,
            voice=parse_field(raw_voice),
            puppet=parse_field(raw_puppet),
            costume=parse_field(raw_costume),
        )
        self.report_role_update(update)
        role = update.role
        for what, raw, value in (
            ("player", raw_player, role.player),
            ("puppet", raw_puppet, role.puppet),
            ("costume", raw_costume, role.costume),
        ):
            if not raw and self.store.is_synthetic(value):
                self.add_todo(f"Missing name for {what} of role '{name}'")

    def parse_table_prop(self, cells: list[str]) -> None:
        name = strip_tags(cells[0])
        if not name:
            return
        category = table_cell_category(cells[0])
        hands = split_list(cells[1]) if len(cells) > 1 else []
        self.declare_prop(name, hands or [stagehand_name(name)], category)

    def parse_table_backdrop(self, cells: list[str]) -> None:
        first = cells[0]
        if BACKDROP_ENTRY_RE.match(first):
            self.parse_single_backdrop(first)
        elif first in BACKDROP_FIELDS:
            self.add_single_backdrop(first, cells[1] if len(cells) > 1 else "")
        else:
            self.setting += f"\n{' '.join(cells)}"
            if table_cell_category(first):
                self.parse_table_prop(cells)

    # -- backdrops ------------------------------------------------------------

    def parse_backdrop_list(self, text: str) -> None:
        parts = [part.strip().rstrip(".") for part in text.split(". ")]
        keys = [
            self.store.add_backdrop(position, part)
            for position, part in zip(BACKDROP_FIELDS, parts)
        ]
        self.add_backdrop_list(keys)

    def parse_single_backdrop(self, line: str) -> None:
        match = BACKDROP_ENTRY_RE.match(line)
        if not match:
            self.add_todo(f"Unable to parse backdrop: {line}")
            return
        if match.group(2) and not match.group(2).startswith(" "):
            self.add_todo(f"Backdrop needs space after colon: {line}")
        self.add_single_backdrop(match.group(1), match.group(2).strip())

    def add_single_backdrop(self, position: str, text: str) -> None:
        if not text:
            text = capitalize_identifier(self.title)
        self.backdrops.append(self.store.add_backdrop(position, text))
        if position == BACKDROP_FIELDS[-1]:
            self.add_backdrop_list(self.backdrops)
            self.backdrops = []

    def add_backdrop_list(self, keys: list[str]) -> None:
        if not keys:
            return
        refs = tuple(Ref("Backdrop", key) for key in keys)
        self.script.emit("backdrop", "Backd", *refs)
        for key in keys:
            self.tracker.add_event_text("Backdrop", key, "Backd", refs)

    def parse_inline_backdrop(self, line: str) -> None:
        match = INLINE_BACKDROP_RE.search(line)
        if not match:
            self.add_todo(f"Unable to parse backdrop: {line}")
            return
        keys = [
            self.store.add_backdrop(position, value.strip())
            for position, value in zip(BACKDROP_FIELDS, match.groups())
        ]
        self.add_backdrop_list(keys)

    # -- cast -----------------------------------------------------------------

    def parse_cast_entry(self, entry: str) -> None:
        """`Role (Player, Hands, Voice|Puppet|Costume) comment`; every part is optional."""
        if entry.lstrip().startswith("###"):
            return
        match = CAST_ENTRY_RE.match(entry)
        if not match:
            self.add_todo(f"Unable to parse cast entry: {entry}")
            return
        name = match.group(1).strip()
        body = match.group(2)
        if body is None:
            update = self.store.register_or_update_role(name)
            self.report_role_update(update)
            return
        body = CAST_TRAILER_RE.sub("", body.strip())
        people, puppet, costume = (body.split("|", 2) + ["", ""])[:3]
        names = [part.strip() for part in people.split(",")]
        player, hand, voice = (names + [None, None])[:3]
        if hand and VOICE_PREFIX_RE.match(hand):
            voice, hand = hand, None
        if voice:
            voice = VOICE_PREFIX_RE.sub("", voice)
        hands_field = parse_field(hand, dash_means_unset=True)
        update = self.store.register_or_update_role(
            name,
            player=parse_field(player),
            hands=hands_field if isinstance(hands_field, FieldMark) else [hands_field],
            voice=parse_field(voice),
            puppet=parse_field(puppet),
            costume=parse_field(costume),
        )
        self.report_role_update(update)

    def report_role_update(self, update: RoleUpdate) -> None:
        for message in update.anomalies:
            self.add_todo(message)
        self.list_role_on_stage(update)

    def list_role_on_stage(self, update: RoleUpdate) -> None:
        role = update.role
        name = role.key
        self.script.puts()
        if role.player:
            self.script.person("+", name, "player", role.player)
        if role.hands:
            self.script.person("+", name, "hands", ", ".join(role.hands))
        if role.voice:
            self.script.person("+", name, "voice", role.voice)
        if role.puppet:
            self.script.emit("puppet+", "Pupp+", Ref("Role", name), Ref("Puppet", role.puppet))
        for event in update.costume_events:
            self.script.emit(f"clothing{event.token}", f"Clth{event.token}", Ref("Role", name), Ref("Costume", event.costume))

    def ensure_role_known(self, name: str) -> None:
        """A role used before its cast declaration is put on stage and reported."""
        if self.tracker.seen("Role", name):
            return
        if self.section != "Puppets":
            self.add_todo(f"unknown Role: '{name}'")
        role = self.store.role(name)
        if role is not None and not role.auto_registered:
            update = self.store.register_or_update_role(name)
        else:
            update = self.store.auto_register_role(name)
        self.report_role_update(update)

    def drop_role(self, name: str) -> None:
        dropped = self.store.drop_role(name)
        if dropped is None:
            return
        self.script.puts()
        for owned in dropped.props:
            display = self.store.prop_name(owned.kind.category, owned.key)
            self.script.emit(f"{owned.kind.directive}-", f"{owned.kind.report_key}-", Ref("Role", name), display)
        for what, _ in dropped.duties:
            self.script.person("-", name, what)
        for event in dropped.costume_events:
            self.script.emit(f"clothing{event.token}", f"Clth{event.token}", Ref("Role", name), Ref("Costume", event.costume))
        if dropped.puppet:
            self.script.emit("puppet-", "Pupp-", Ref("Role", name), Ref("Puppet", dropped.puppet))

    # -- props ----------------------------------------------------------------

    def declare_prop(self, name: str, hands: list[str], category: str | None) -> None:
        if category is None:
            self.add_todo(f"Type of Prop '{name}' unknown.")
            return
        kprop = name.lower()
        kind = PROP_KINDS[category]
        self.props.counts[kprop] = 0
        self.props.kinds[kprop] = kind
        self.props.hands[kprop] = list(hands)
        self.store.declare_prop(kind, kprop, name, hands)

    def note_scene_prop(self, name: str, tag: str) -> int:
        kprop = name.lower()
        if kprop in self.props.counts:
            self.props.counts[kprop] += 1
        else:
            self.add_todo(f"unknown Prop '{name}', add: | <{tag}>{name}</{tag}> |  |  |")
            self.props.counts[kprop] = 1
            self.props.unknown.append(kprop)
        return self.props.counts[kprop]

    def stagehands_for(self, kprop: str) -> list[str]:
        return self.props.hands.setdefault(kprop, [stagehand_name(kprop)])

    def place_prop(self, name: str, kind: PropKind) -> list[str]:
        kprop = name.lower()
        hands = self.stagehands_for(kprop)
        display = self.store.prop_name(kind.category, kprop) if self.store.get(kind.category, kprop) else name
        self.props.kinds[kprop] = kind
        self.script.emit(f"{kind.directive}+", f"{kind.report_key}+", display)
        self.store.place_prop(kind, kprop, display, hands)
        return hands

    def acknowledge_prop(self, name: str, kind: PropKind) -> list[str]:
        kprop = name.lower()
        known = self.props.kinds.get(kprop, kind)
        if known.category != kind.category:
            self.add_todo(f"ERROR: prop '{name}' changed type from '{known.category}' to '{kind.category}'")
            kind = known
        if kind.is_just:
            return []
        hands = self.stagehands_for(kprop)
        self.script.emit(f"{kind.directive}=", f"{kind.report_key}=", self.store.prop_name(kind.category, kprop))
        self.store.acknowledge_prop(kind, kprop, hands=hands)
        return hands

    def drop_prop(self, name: str, kind: PropKind) -> None:
        kprop = name.lower()
        kind = PROP_KINDS[kind.category]
        self.script.emit(f"{kind.directive}-", f"{kind.report_key}-", self.store.prop_name(kind.category, kprop))
        self.store.remove_prop(kind, kprop, hands=self.stagehands_for(kprop))

    def place_unused_prop(self, name: str, kind: PropKind) -> None:
        """Put a prop nobody referenced on stage so it still shows up in the script."""
        if kind.category == "PersonalProp":
            owner = self.store.owner_of(kind.category, name.lower())
            if owner is None:
                self.place_prop(name, kind)
            else:
                self.add_owned_prop(name, owner, kind)
        elif kind.category in OWNED_PROP_CATEGORIES:
            self.place_just_prop(name, kind)
        else:
            self.place_prop(name, kind)

    def place_just_prop(self, name: str, kind: PropKind) -> list[str]:
        kprop = name.lower()
        just = kind.just()
        hands = self.stagehands_for(kprop)
        self.props.kinds[kprop] = just
        self.store.place_prop(just, kprop, name, hands)
        self.script.emit(just.directive, just.report_key, self.store.prop_name(kind.category, kprop))
        return hands

    def add_owned_prop(self, name: str, owner: str, kind: PropKind) -> list[str]:
        kprop = name.lower()
        hands = self.stagehands_for(kprop)
        self.props.kinds[kprop] = kind
        self.store.add_owned_prop(kind, kprop, name, owner, hands)
        self.script.emit(f"{kind.directive}+", f"{kind.report_key}+", Ref("Role", owner), self.store.prop_name(kind.category, kprop))
        return hands

    def remove_owned_prop(self, name: str, owner: str, kind: PropKind) -> None:
        kprop = name.lower()
        kind = PROP_KINDS[kind.category]
        self.script.emit(f"{kind.directive}-", f"{kind.report_key}-", Ref("Role", owner), self.store.prop_name(kind.category, kprop))
        self.store.remove_owned_prop(kind, kprop, owner, self.stagehands_for(kprop))

    def acknowledge_owned_prop(self, name: str, owner: str, kind: PropKind) -> list[str]:
        kprop = name.lower()
        previous = self.store.owner_of(kind.category, kprop)
        if previous == owner:
            hands = self.stagehands_for(kprop)
            self.props.kinds[kprop] = kind
            self.store.acknowledge_prop(kind, kprop, owner, hands)
            self.script.emit(f"{kind.directive}=", f"{kind.report_key}=", Ref("Role", owner), self.store.prop_name(kind.category, kprop))
            return hands
        if previous is not None:
            self.remove_owned_prop(name, previous, self.props.kinds.get(kprop, kind))
        return self.add_owned_prop(name, owner, kind)

    def collect_single_prop(self, name: str, kind: PropKind, tag: str) -> list[str]:
        if self.note_scene_prop(name, tag) == 1:
            return self.place_prop(name, kind)
        return self.acknowledge_prop(name, kind)

    def collect_just_prop(self, name: str, kind: PropKind, tag: str) -> list[str]:
        self.note_scene_prop(name, tag)
        kprop = name.lower()
        previous = self.store.owner_of(kind.category, kprop)
        if previous is not None:
            self.remove_owned_prop(name, previous, kind)
        return self.place_just_prop(name, kind)

    def collect_owned_prop(self, name: str, owner: str | None, kind: PropKind, tag: str) -> list[str]:
        if owner is None:
            return self.collect_just_prop(name, kind, tag)
        self.note_scene_prop(name, tag)
        return self.acknowledge_owned_prop(name, owner, kind)

    def collect_props(self, text: str, owner: str | None) -> list[str]:
        """Register every prop mentioned in `text` once and return their stagehands."""
        hands: list[str] = []
        seen: set[tuple[str, str]] = set()
        for ref in prop_refs(text):
            marker = (ref.category, ref.name.lower())
            if marker in seen:
                continue
            seen.add(marker)
            kind = PROP_KINDS[ref.category]
            if ref.category in OWNED_PROP_CATEGORIES:
                found = self.collect_owned_prop(ref.name, owner, kind, ref.tag)
            else:
                found = self.collect_single_prop(ref.name, kind, ref.tag)
            hands.extend(hand for hand in found if hand not in hands)
        return hands

    # -- stagehands and effects ----------------------------------------------

    def stagehand_cue(self, person: str, text: str, cue: CueSpec) -> None:
        self.script.emit(cue.directive, cue.report_key, Ref("Person", person), text)
        self.tracker.add_once("Person", person)
        self.tracker.add_event_text("Person", person, cue.report_key, (Ref("Person", person), text))

    def add_stagehands(self, hands: list[str], text: str) -> None:
        for hand in hands:
            if is_none_token(hand):
                continue
            self.add_todo(self.store.register_stagehand(hand))
            self.stagehand_cue(hand, text, STAGEHAND_CUE)

    def flush_setting(self) -> None:
        if not self.setting:
            return
        hands = self.collect_props(self.setting, None)
        self.add_stagehands(hands, SETTING)
        self.setting = ""

    def parse_curtain(self, state: str) -> None:
        self.flush_setting()
        state = state.strip()
        self.script.emit_raw("curtain", "Curtn", state)
        if state not in CURTAIN_STATES:
            self.add_todo(f"unknown curtain state: '{state}'")
        elif state == self.store.curtain:
            self.add_todo(f"same curtain state: '{state}'")
        self.store.curtain = state

    def parse_hand(self, text: str) -> None:
        refs = prop_refs(text)
        if not refs:
            self.add_todo(f"%HND% without prop or stagehand: {text}")
            return
        self.collect_props(text, None)
        for kprop in dict.fromkeys(ref.name.lower() for ref in refs):
            for hand in self.stagehands_for(kprop):
                if is_none_token(hand):
                    continue
                self.add_todo(self.store.register_stagehand(hand, prop=kprop))
                self.stagehand_cue(hand, text, STAGEHAND_CUE)
                self.tracker.highlight(hand, kprop)

    def effect_cue(self, text: str, label: str, hands: list[str]) -> None:
        self.tracker.add_once("Effect", text)
        self.props.hands[text] = list(hands)
        for hand in hands:
            if is_none_token(hand):
                continue
            self.add_todo(self.store.register_stagehand(hand, effect=label))
            self.stagehand_cue(hand, text, EFFECT_CUE)
            self.store.add_item("Effect", label, stagehand=hand)
            self.tracker.add_event_text("Effect", label, EFFECT_CUE.report_key, (Ref("Person", hand), text))
            self.tracker.highlight(hand, label)

    def parse_spot(self, text: str) -> None:
        refs = prop_refs(text)
        if not refs:
            self.add_todo(f"%SPT% without prop or stagehand: {text}")
            return
        self.collect_props(text, None)
        for kprop in dict.fromkeys(ref.name.lower() for ref in refs):
            self.effect_cue(text, kprop, self.stagehands_for(kprop))

    def parse_fog(self, text: str) -> None:
        refs = prop_refs(text)
        if refs:
            self.collect_props(text, None)
            for kprop in dict.fromkeys(ref.name.lower() for ref in refs):
                self.effect_cue(text, kprop, self.stagehands_for(kprop))
            return
        hands = self.props.hands.get("fog") or self.stagehands_for("fog")
        self.effect_cue(text, text, hands)

    def parse_simple_cue(self, marker: str, text: str) -> None:
        cue = SIMPLE_CUES[marker]
        hands = self.collect_props(text, None)
        self.add_stagehands(hands, text)
        self.script.emit(cue.directive, cue.report_key, text)
        if cue.category is None:
            self.store.count("Note", text)
            self.tracker.add("Note", text)
            return
        self.store.register_cue(cue.category, text, cue.report_key)

    # -- roles in the script ---------------------------------------------------

    def parse_role_names(self, text: str) -> list[str]:
        """Role names at the start of an action or dialogue line; `= Group` defines a group."""
        rest = ARTICLE_RE.sub("", POSITION_RE.sub("", text))
        names: list[str] = []
        while True:
            match = ROLE_LIST_RE.match(rest)
            if not match:
                break
            names.append(match.group(1))
            rest = rest[match.end():]
        first, _, rest = rest.partition(" ")
        match = ROLE_WORD_RE.match(first)
        if match:
            names.append(match.group(1))
        else:
            self.add_todo(f"Error in Role: '{first}', {text}")
        group = GROUP_SUFFIX_RE.match(rest)
        if group:
            self.resolver.add_group(group.group(1), names)
        return names

    def expand_roles(self, names: list[str]) -> list[str]:
        roles: list[str] = []
        for name in names:
            for role in self.resolver.expand(name):
                if role not in roles:
                    roles.append(role)
        return roles

    def parse_action(self, text: str) -> None:
        if "=" in text:
            self.parse_group_action(text)
            return
        for role in self.expand_roles(self.parse_role_names(text)):
            self.print_role(role, text)

    def parse_group_action(self, text: str) -> None:
        members, _, rest = text.partition("=")
        group, _, remainder = rest.strip().partition(" ")
        positioned: list[tuple[str, str]] = []
        for name, position in GROUP_MEMBER_RE.findall(members):
            if name in ("and", "The", "A"):
                continue
            positioned.append((name, position.strip()))
        self.resolver.add_group(group, [name for name, _ in positioned])
        for name, position in positioned:
            self.print_role(name, f"{position} {remainder}".strip())

    def print_role(self, name: str, text: str) -> None:
        self.ensure_role_known(name)
        hands = self.collect_props(text, name)
        self.add_stagehands(hands, text)
        self.script.emit(ACTION_CUE.directive, ACTION_CUE.report_key, Ref("Role", name), text)
        role = self.store.role(name)
        event = (Ref("Role", name), text)
        self.tracker.add_event_text("Role", name, ACTION_CUE.report_key, event)
        people = [role.player, *role.hands, role.voice]
        for person in dict.fromkeys(person for person in people if person):
            self.tracker.add_event_text("Person", person, ACTION_CUE.report_key, event)
        self.tracker.add_event_text("Puppet", role.puppet, ACTION_CUE.report_key, event)

    def parse_dialogue(self, names: list[str], comment: str | None, text: str) -> None:
        for role in self.expand_roles(names):
            self.print_spoken(role, comment, text)

    def print_spoken(self, name: str, comment: str | None, text: str) -> None:
        self.ensure_role_known(name)
        hands = self.collect_props(comment, name) if comment else []
        for hand in self.collect_props(text, name):
            if hand not in hands:
                hands.append(hand)
        self.add_stagehands(hands, text)
        if UNQUOTED_RE.match(text.strip()):
            self.add_todo(f"spoken line not quoted: {name}: '{text}'")
        role = self.store.role(name)
        self.tracker.record_spoken(name, player=role.player, voice=role.voice, puppet=role.puppet)
        spoken = f"({comment}) {text}" if comment else text
        self.script.emit("spoken", "Spokn", Ref("Role", name), spoken)
        if role.voice is None and not role.auto_registered:
            self.add_todo(f"unknown voice for role: {name}")

    # -- content dispatch -------------------------------------------------------

    def parse_script_line(self, line: str) -> None:
        if self.section == INTRO and line and not line.startswith("%"):
            self.parse_simple_cue("%PRE%", line)
            return
        classified = classify_script(line)
        if classified is None:
            if not is_benign(line):
                self.add_todo(f"unknown line '{line}'")
            return
        kind, match = classified
        if kind == "empty":
            return
        if kind == "inline_backdrop":
            self.parse_inline_backdrop(line)
        elif kind == "setting":
            self.section = SETTING
            self.setting = match.group(1)
        elif kind == "curtain":
            self.parse_curtain(match.group(1))
        elif kind == "hand":
            self.parse_hand(match.group(1))
        elif kind == "spot":
            self.parse_spot(match.group(1))
        elif kind == "fog":
            self.parse_fog(match.group(1))
        elif kind == "mix":
            self.parse_simple_cue("%ATT%", match.group(1))
        elif kind == "simple_cue":
            self.parse_simple_cue(match.group(1), match.group(2))
        elif kind == "role_cue":
            self.parse_action(match.group(1))
        elif kind == "dialogue_comment":
            self.parse_dialogue([match.group(1)], match.group(2), match.group(3))
        elif kind == "dialogue":
            self.parse_dialogue([match.group(1)], None, match.group(2))
        elif kind == "dialogue_multi":
            self.parse_dialogue(self.parse_role_names(line), None, match.group(1))

