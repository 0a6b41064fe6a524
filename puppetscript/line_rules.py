"""Ordered line classification rules and the cue and prop tag tables.

Rules are evaluated top to bottom and the first match wins, so the order of
each list below is the dispatch priority.
"""

from __future__ import annotations

import re
from typing import NamedTuple

MATCH_NAME = r"[A-Za-z0-9_-]+"
MATCH_TAGGED = r"[^<]+"


class CueSpec(NamedTuple):
    directive: str
    report_key: str
    category: str | None


class PropRef(NamedTuple):
    name: str
    category: str
    tag: str


SIMPLE_CUES: dict[str, CueSpec] = {
    "%AMB%": CueSpec("ambience", "Ambie", "Ambience"),
    "%MUS%": CueSpec("ambience", "Ambie", "Ambience"),
    "%SND%": CueSpec("sound", "Sound", "Sound"),
    "%PRE%": CueSpec("sound", "Sound", "Sound"),
    "%VID%": CueSpec("video", "Video", "Video"),
    "%LIG%": CueSpec("light", "Light", "Light"),
    "%ATT%": CueSpec("note", "Note", None),
    "###": CueSpec("note", "Note", None),
}
ACTION_CUE = CueSpec("action", "Actio", None)
STAGEHAND_CUE = CueSpec("stagehand", "Stage", None)
EFFECT_CUE = CueSpec("effect", "Effct", "Effect")

ITEM_TAGS: dict[str, str] = {
    "fp": "FrontProp",
    "pr": "FrontProp",
    "sp": "SecondLevelProp",
    "2nd": "SecondLevelProp",
    "pp": "PersonalProp",
    "hp": "HandProp",
    "tec": "TechProp",
    "sfx": "SpecialEffect",
}

# (convention, marker, tag reported for unknown props); order is extraction order
PROP_MARKERS: list[tuple[str, str, str]] = [
    ("suffix", "hp", "hp"),
    ("tag", "pp", "pp"),
    ("tag", "hp", "hp"),
    ("tag", "tec", "tec"),
    ("tag", "sfx", "sfx"),
    ("suffix", "pr", "fp"),
    ("tag", "fp", "fp"),
    ("suffix", "2nd", "sp"),
    ("tag", "sp", "sp"),
]

BACKDROP_FIELDS = ("Left", "Middle", "Right")
HEAD_SECTIONS = (
    "Backdrop",
    "Puppets",
    "Costumes",
    "Setting",
    "Stage setup",
    "On playrail",
    "On 2nd rail",
    "Hand props",
    "Props",
    "Special effects",
    "PreRec",
)
TABLE_SECTIONS = (
    "Role",
    "Backdrop",
    "Setting",
    "Stage setup",
    "On 2nd rail",
    "On playrail",
    "Hand props",
    "Special effects",
    "PreRec",
)

STRUCTURAL_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("section_break", re.compile(r"^(?:|----|\^Part\^Time\|)$")),
    ("navigation", re.compile(r"^(?:<html>|\[\[)")),
    ("title", re.compile(r"^==== ")),
    ("head_data", re.compile(r"^      \* ")),
    ("head_comment", re.compile(r"^    \* ([A-Za-z][A-Za-z0-9_ -]*):")),
    ("intro", re.compile(r"^== INTRO ==$")),
    ("dialogue_start", re.compile(r"^== DIALOG(?:UE)? ==$")),
    ("preroll", re.compile(r"^== TECH PREROLL(?: \S+)? ==$")),
    ("table_head", re.compile(r"^\^")),
    ("table_row", re.compile(r"^\|")),
]

SCRIPT_RULES: list[tuple[str, re.Pattern[str]]] = [
    ("empty", re.compile(r"^$")),
    ("inline_backdrop", re.compile(r"Backdrop_L\b")),
    ("setting", re.compile(r"^Setting:\s*(.*)$")),
    ("curtain", re.compile(r"^%HND% Curtain - (.*)$")),
    ("hand", re.compile(r"^%HND% +(.*)$")),
    ("spot", re.compile(r"^%SPT% +(.*)$")),
    ("fog", re.compile(r"^%FOG% +(.*)$")),
    ("mix", re.compile(r"^%MIX% +(.*)$")),
    ("simple_cue", re.compile(r"^(%AMB%|%MUS%|%SND%|%PRE%|%VID%|%LIG%|%ATT%|###) +(.*)$")),
    ("role_cue", re.compile(r"^%ACT% +(.*)$")),
    ("dialogue_comment", re.compile(rf"^({MATCH_NAME}) \(([^:]*)\): (.*)$")),
    ("dialogue", re.compile(rf"^({MATCH_NAME}): (.*)$")),
    (
        "dialogue_multi",
        re.compile(rf"^{MATCH_NAME}(?:, *{MATCH_NAME}| +and +{MATCH_NAME})+(?: *= *{MATCH_NAME})?: (.*)$"),
    ),
]

# boilerplate lines that are neither content nor worth a note
BENIGN_LINE_RES = [
    re.compile(r"^\^Part\^Time\|"),
    re.compile(r"^\|(?:Intro|Dialogue)\|"),
    re.compile(r"^\|\*\*Scene Total\*\* \|"),
    re.compile(r":events:pps:script:"),
]

INLINE_BACKDROP_RE = re.compile(r"Backdrop_L (.*) Backdrop_M (.*) Backdrop_R (.*)$")
HANDS_IN_PARENS_RE = re.compile(r"\(([^)]*)\)")
LIST_SPLIT_RE = re.compile(r", *")
UNQUOTED_RE = re.compile(r'^[^"].*[^"]$')
CAPITALIZE_RE = re.compile(r"(?:^|[\s._+-])[a-z]")
SCENE_PREFIX_RE = re.compile(r"^[a-z]*")
SCENE_STEM_RE = re.compile(r"^[a-z0-9]*")


def classify_structural(line: str) -> tuple[str, re.Match[str]] | None:
    for kind, pattern in STRUCTURAL_RULES:
        match = pattern.search(line)
        if match:
            return kind, match
    return None


def classify_script(line: str) -> tuple[str, re.Match[str]] | None:
    for kind, pattern in SCRIPT_RULES:
        match = pattern.search(line)
        if match:
            return kind, match
    return None


def is_benign(line: str) -> bool:
    return any(pattern.search(line) for pattern in BENIGN_LINE_RES)


def suffix_props(line: str, suffix: str) -> list[str]:
    pattern = re.compile(rf"({MATCH_NAME})_{re.escape(suffix)}(?![A-Za-z0-9])", re.IGNORECASE)
    return pattern.findall(line)


def tagged_props(line: str, tag: str) -> list[str]:
    pattern = re.compile(rf"<{re.escape(tag)}>({MATCH_TAGGED})</{re.escape(tag)}>", re.IGNORECASE)
    return [name.strip() for name in pattern.findall(line)]


def prop_refs(line: str) -> list[PropRef]:
    """Every prop reference on a line, in extraction order, duplicates included."""
    refs: list[PropRef] = []
    for convention, marker, tag in PROP_MARKERS:
        finder = suffix_props if convention == "suffix" else tagged_props
        for name in finder(line, marker):
            refs.append(PropRef(name=name, category=ITEM_TAGS[marker], tag=tag))
    return refs


def capitalize_identifier(text: str) -> str:
    text = text.replace(" ", "_")
    return CAPITALIZE_RE.sub(lambda match: match.group(0).upper(), text)


def stagehand_name(prop: str) -> str:
    return f"{capitalize_identifier(prop)}_SH"


def scene_title_from_filename(filename: str) -> str:
    """`act12.txt` -> `Act 1-2`, `12.txt` -> `Scene 1-2`."""
    prefix = SCENE_PREFIX_RE.match(filename).group(0)
    rest = filename[len(prefix):].split(".", 1)[0]
    title = prefix.capitalize() or "Scene"
    if len(rest) >= 2:
        return f"{title} {rest[0]}-{rest[1:]}"
    return f"{title} {rest}".strip()


def scene_stem(filename: str) -> str:
    return SCENE_STEM_RE.match(filename).group(0)


def split_list(text: str) -> list[str]:
    return [part.strip() for part in LIST_SPLIT_RE.split(text) if part.strip()]


def hands_from_parens(line: str) -> list[str]:
    match = HANDS_IN_PARENS_RE.search(line)
    if not match:
        return []
    return split_list(match.group(1))


def table_cells(line: str) -> list[str]:
    cells = [cell.strip() for cell in line.split("|")]
    return cells[1:-1] if line.rstrip().endswith("|") else cells[1:]


def strip_tags(text: str) -> str:
    text = re.sub(r"^[^>]*>", "", text)
    return re.sub(r"<[^<]*$", "", text).strip()


def table_cell_category(cell: str) -> str | None:
    for tag, category in ITEM_TAGS.items():
        if re.search(rf"<{re.escape(tag)}>", cell, re.IGNORECASE):
            return category
    return None
