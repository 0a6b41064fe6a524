"""Record types shared by the entity store, the timeframe tracker and the reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple

# Catalog titles in report order, mapped to the item category they list.
CATEGORY_TITLES: dict[str, str] = {
    "Front props": "FrontProp",
    "Second level props": "SecondLevelProp",
    "Backdrop panels": "Backdrop",
    "Lights": "Light",
    "Ambiences": "Ambience",
    "Sounds": "Sound",
    "Videos": "Video",
    "Effects": "Effect",
    "Roles": "Role",
    "Person": "Person",
    "Puppets": "Puppet",
    "Costumes": "Costume",
    "Personal props": "PersonalProp",
    "Hand props": "HandProp",
    "Tech props": "TechProp",
    "Special effect": "SpecialEffect",
    "Todos": "Todo",
}

ITEM_TYPE_INDEX: dict[str, int] = {
    "FrontProp": 0,
    "SecondLevelProp": 1,
    "Backdrop": 2,
    "Light": 3,
    "Ambience": 4,
    "Sound": 5,
    "Video": 6,
    "Effect": 7,
    "Role": 8,
    "Person": 9,
    "Puppet": 10,
    "Costume": 11,
    "PersonalProp": 12,
    "HandProp": 13,
    "TechProp": 14,
    "SpecialEffect": 15,
    "Todo": 16,
}

# Categories whose items are owned by the role that mentions them.
OWNED_PROP_CATEGORIES = ("PersonalProp", "HandProp", "TechProp", "SpecialEffect")

PLACEHOLDER_NONE = "none"
PLACEHOLDER_DASH = "---"
PENDING_SPOKEN = "#"

COSTUME_ADD = "add"
COSTUME_KEEP = "keep"
COSTUME_REMOVE = "remove"
COSTUME_TOKENS = {COSTUME_ADD: "+", COSTUME_KEEP: "=", COSTUME_REMOVE: "-"}


class FieldMark(Enum):
    """Marks a cast field that carries no name.

    UNSET means the field was not given and inherits; ABSENT means it was
    given as a placeholder token and is explicitly empty.
    """

    UNSET = "unset"
    ABSENT = "absent"


UNSET = FieldMark.UNSET
ABSENT = FieldMark.ABSENT


class Ref(NamedTuple):
    category: str
    name: str


class Duty(NamedTuple):
    """A role attribute slot such as `Alice.player`."""

    role: str
    what: str


class PropKind(NamedTuple):
    category: str
    directive: str
    report_key: str

    @property
    def is_just(self) -> bool:
        return self.directive.startswith("just ")

    def just(self) -> PropKind:
        if self.is_just:
            return self
        return PropKind(self.category, f"just {self.directive}", f"J{self.report_key}")


PROP_KINDS: dict[str, PropKind] = {
    "FrontProp": PropKind("FrontProp", "frontProp", "FroP"),
    "SecondLevelProp": PropKind("SecondLevelProp", "secondLevelProp", "SecP"),
    "PersonalProp": PropKind("PersonalProp", "personalProp", "PerP"),
    "HandProp": PropKind("HandProp", "handProp", "HanP"),
    "TechProp": PropKind("TechProp", "techProp", "TecP"),
    "SpecialEffect": PropKind("SpecialEffect", "specialEffect", "SfxP"),
}


class OwnedProp(NamedTuple):
    kind: PropKind
    key: str


class PuppetPlay(NamedTuple):
    role: str
    player: str | None
    hand: str | None
    voice: str | None
    costume: str | None


@dataclass
class ItemUse:
    scene: str | None
    loc: str
    attrs: dict[str, Any] = field(default_factory=dict)


@dataclass
class Item:
    category: str
    key: str
    name: str
    ref: str
    uses: list[ItemUse] = field(default_factory=list)

    def uses_in(self, scene: str | None) -> list[ItemUse]:
        return [use for use in self.uses if use.scene == scene]


@dataclass
class Person(Item):
    synthetic: bool = False


@dataclass
class Role(Item):
    player: str | None = None
    hands: list[str] = field(default_factory=list)
    voice: str | None = None
    puppet: str | None = None
    costume: str | None = None
    last_costume: str | None = None
    voice_follows_player: bool = True
    hands_follow_player: bool = True
    on_stage: bool = False
    auto_registered: bool = False
    # every distinct value ever assigned, per attribute
    assignments: dict[str, list[str]] = field(default_factory=dict)

    def remember(self, what: str, value: str | None) -> None:
        if value is None:
            return
        seen = self.assignments.setdefault(what, [])
        if value not in seen:
            seen.append(value)


@dataclass
class Puppet(Item):
    role: str | None = None


@dataclass
class Costume(Item):
    role: str | None = None
    puppet: str | None = None


@dataclass
class Prop(Item):
    owner: str | None = None
    hands: list[str] = field(default_factory=list)


@dataclass
class Backdrop(Item):
    position: str = ""


@dataclass
class Anomaly:
    scene: str | None
    message: str


@dataclass(frozen=True)
class CostumeEvent:
    kind: str
    role: str
    costume: str

    @property
    def token(self) -> str:
        return COSTUME_TOKENS[self.kind]


@dataclass
class SpokenCell:
    """Spoken-line counter for one entity in one scene.

    History entries hold the cell itself; the label becomes final once the
    owning scene is closed.
    """

    count: int = 0
    final: bool = False

    def label(self) -> str:
        if not self.final:
            return PENDING_SPOKEN
        return f"{self.count}x spoken"


@dataclass
class HistoryEntry:
    scene: str | None
    loc: str
    key: str
    text: Any = None
    spoken: SpokenCell | None = None

    @property
    def is_pending(self) -> bool:
        return self.spoken is not None and not self.spoken.final

    def label(self) -> Any:
        if self.spoken is not None:
            return self.spoken.label()
        return self.text


def parse_field(raw: str | None, *, dash_means_unset: bool = False) -> str | FieldMark:
    if raw is None:
        return UNSET
    value = raw.strip()
    if value.startswith("(") and value.endswith(")"):
        value = value[1:-1].strip()
    if not value:
        return UNSET
    if value == PLACEHOLDER_DASH:
        return UNSET if dash_means_unset else ABSENT
    if value.lower() == PLACEHOLDER_NONE:
        return ABSENT
    return value


def is_none_token(value: str | None) -> bool:
    return value is not None and value.lower() == PLACEHOLDER_NONE


def plain_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Duty):
        return f"{value.role}.{value.what}"
    if isinstance(value, Ref):
        return value.name
    if isinstance(value, (list, tuple)):
        return " ".join(plain_text(part) for part in value if part is not None)
    return str(value)
