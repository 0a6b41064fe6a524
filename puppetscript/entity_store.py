"""Scene-spanning registries: roles, people, puppets, costumes, props and backdrops.

The store owns the entity records and the usage counters. Every mutation also
records the matching history entries on the timeframe tracker, so the reports
can be built from the two objects alone once parsing is done.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any

from .models import (
    ABSENT,
    COSTUME_ADD,
    COSTUME_KEEP,
    COSTUME_REMOVE,
    ITEM_TYPE_INDEX,
    PROP_KINDS,
    UNSET,
    Anomaly,
    Backdrop,
    Costume,
    CostumeEvent,
    Duty,
    FieldMark,
    Item,
    ItemUse,
    OwnedProp,
    Person,
    Prop,
    PropKind,
    Puppet,
    PuppetPlay,
    Ref,
    Role,
    is_none_token,
)
from .timeframe import TimeframeTracker

logger = logging.getLogger(__name__)

# Placeholder words that request a generated identifier, per identifier category.
SLOT_PLACEHOLDERS: dict[str, set[str]] = {
    "Person": {"person", "actor"},
    "Hands": {"hands"},
    "Puppet": {"puppet"},
    "Costume": {"costume"},
}
# Written in a person slot, this word stands for the role's own name.
ROLE_NAME_PLACEHOLDER = "player"
NAMED_CATEGORIES = ("Role", "Person", "Puppet", "Costume")

FieldInput = str | FieldMark


@dataclass
class RoleUpdate:
    role: Role
    is_new: bool
    anomalies: list[str] = field(default_factory=list)
    costume_events: list[CostumeEvent] = field(default_factory=list)


@dataclass
class RoleDrop:
    role: str
    duties: list[tuple[str, str]]
    props: list[OwnedProp]
    costume_events: list[CostumeEvent]
    puppet: str | None


class EntityStore:
    def __init__(self, tracker: TimeframeTracker) -> None:
        self.tracker = tracker
        self.items: dict[str, dict[str, Any]] = {category: {} for category in ITEM_TYPE_INDEX}
        self.counts: dict[str, Counter[str]] = defaultdict(Counter)
        self.owners: dict[str, dict[str, str | None]] = defaultdict(dict)
        self.owned_props: dict[str, list[OwnedProp]] = defaultdict(list)
        self.anomalies: list[Anomaly] = []
        self.curtain: str | None = None
        self._synthetic: dict[tuple[str, str | None, str | None], str] = {}
        self._synthetic_counts: Counter[str] = Counter()
        self._reported: set[tuple[str | None, str]] = set()

    # -- generic registry ------------------------------------------------

    def add_item(self, category: str, key: str, *, factory: type[Item] = Item, name: str | None = None, **attrs: Any) -> Any:
        bucket = self.items.setdefault(category, {})
        item = bucket.get(key)
        if item is None:
            index = ITEM_TYPE_INDEX.get(category, len(ITEM_TYPE_INDEX))
            item = factory(category=category, key=key, name=name or key, ref=f"item{index}_{len(bucket)}")
            bucket[key] = item
        item.uses.append(ItemUse(scene=self.tracker.scene_title, loc=self.tracker.loc(), attrs=dict(attrs)))
        return item

    def get(self, category: str, key: str) -> Any:
        return self.items.get(category, {}).get(key)

    def role(self, name: str) -> Role | None:
        return self.items["Role"].get(name)

    def count(self, category: str, key: str) -> bool:
        """Count one use; True when this is the first use in the run."""
        self.counts[category][key] += 1
        return self.counts[category][key] == 1

    def record_anomaly(self, message: str) -> Anomaly:
        anomaly = Anomaly(scene=self.tracker.scene_title, message=message)
        self.anomalies.append(anomaly)
        logger.warning("%s: %s", anomaly.scene or "-", message)
        self.add_item("Todo", message)
        if self.tracker.current is not None:
            self.tracker.add("Todo", message)
        self.tracker.add_event_text("Todo", message, "Todo", message)
        return anomaly

    def _once(self, message: str | None) -> str | None:
        if message is None:
            return None
        marker = (self.tracker.scene_title, message)
        if marker in self._reported:
            return None
        self._reported.add(marker)
        return message

    # -- generated identifiers --------------------------------------------

    def allocate_identifier(self, raw: str | None, category: str, context: str | None) -> str:
        """Return `Category<N>`, the same one for a repeated (category, raw, context)."""
        memo_key = (category, raw, context)
        found = self._synthetic.get(memo_key)
        if found is not None:
            return found
        while True:
            self._synthetic_counts[category] += 1
            candidate = f"{category}{self._synthetic_counts[category]}"
            if not any(candidate in self.items[bucket] for bucket in NAMED_CATEGORIES):
                break
        self._synthetic[memo_key] = candidate
        return candidate

    def is_synthetic(self, name: str | None) -> bool:
        return name is not None and name in self._synthetic.values()

    def _resolve(self, value: FieldInput, slot: str, role: str) -> str | None:
        if value is ABSENT:
            return None
        if value is UNSET:
            return self.allocate_identifier(None, slot, role)
        if slot == "Person" and value.lower() == ROLE_NAME_PLACEHOLDER:
            return role
        if value.lower() in SLOT_PLACEHOLDERS[slot]:
            return self.allocate_identifier(value, slot, role)
        return value

    @staticmethod
    def _explicit(value: Any, slot: str) -> bool:
        return isinstance(value, str) and value.lower() not in SLOT_PLACEHOLDERS[slot]

    # -- roles --------------------------------------------------------------

    def register_or_update_role(
        self,
        name: str,
        player: FieldInput = UNSET,
        hands: list[str] | FieldMark = UNSET,
        voice: FieldInput = UNSET,
        puppet: FieldInput = UNSET,
        costume: FieldInput = UNSET,
    ) -> RoleUpdate:
        """Merge a cast declaration into the role record and put the role on stage.

        Unset fields inherit, placeholder words get generated identifiers and
        every explicit change of player, hands, voice or puppet is reported
        once while the new value is kept.
        """
        role = self.role(name)
        is_new = role is None
        role = self.add_item("Role", name, factory=Role)
        declared = not is_new and not role.auto_registered
        anomalies: list[str] = []

        if player is UNSET and declared:
            new_player = role.player
        else:
            new_player = self._resolve(player, "Person", name)
        if declared and self._explicit(player, "Person") and role.player and new_player != role.player:
            anomalies.append(f"Player changed for '{name}': '{role.player}' -> '{new_player}'")

        if hands is UNSET:
            if declared and not role.hands_follow_player:
                new_hands = list(role.hands)
            else:
                new_hands = [new_player] if new_player else []
            hands_follow = not declared or role.hands_follow_player
        elif hands is ABSENT:
            new_hands, hands_follow = [], False
        else:
            new_hands = []
            for hand in hands:
                if is_none_token(hand):
                    continue
                resolved = self._resolve(hand, "Hands", name)
                if resolved and resolved not in new_hands:
                    new_hands.append(resolved)
            hands_follow = bool(new_player) and new_hands == [new_player]
            explicit = any(self._explicit(hand, "Hands") for hand in hands)
            if declared and explicit and role.hands and new_hands != role.hands:
                anomalies.append(
                    f"Hands changed for '{name}': '{', '.join(role.hands)}' -> '{', '.join(new_hands)}'"
                )

        if voice is UNSET:
            if declared and not role.voice_follows_player:
                new_voice = role.voice
            else:
                new_voice = new_player
            voice_follows = not declared or role.voice_follows_player
        elif voice is ABSENT:
            new_voice, voice_follows = None, False
        else:
            new_voice = self._resolve(voice, "Person", name)
            voice_follows = new_voice == new_player
            if declared and self._explicit(voice, "Person") and role.voice and new_voice != role.voice:
                anomalies.append(f"Voice changed for '{name}': '{role.voice}' -> '{new_voice}'")

        if puppet is UNSET and declared:
            new_puppet = role.puppet
        else:
            new_puppet = self._resolve(puppet, "Puppet", name)
        if declared and self._explicit(puppet, "Puppet") and role.puppet and new_puppet != role.puppet:
            anomalies.append(f"Puppet changed for '{name}': '{role.puppet}' -> '{new_puppet}'")

        if costume is UNSET and declared:
            new_costume = role.costume or role.last_costume
        else:
            new_costume = self._resolve(costume, "Costume", name)

        for value, slot, resolved in (
            (player, "Person", new_player),
            (voice, "Person", new_voice),
            (puppet, "Puppet", new_puppet),
            (costume, "Costume", new_costume),
        ):
            if self._explicit(value, slot) and self.is_synthetic(resolved):
                anomalies.append(f"Name '{resolved}' clashes with a generated identifier")

        role.player = new_player
        role.hands = new_hands
        role.voice = new_voice
        role.puppet = new_puppet
        role.hands_follow_player = hands_follow
        role.voice_follows_player = voice_follows
        role.auto_registered = False
        role.on_stage = True
        self.count("Role", name)
        self.tracker.add_once("Role", name)

        self._add_duty(role, "player", new_player)
        for hand in new_hands:
            self._add_duty(role, "hands", hand)
        self._add_duty(role, "voice", new_voice)
        if new_puppet:
            self._add_puppet(role, new_puppet, new_costume)

        events = self.assign_costume(name, new_costume)
        if new_puppet:
            self.tracker.set_table(
                "puppet_plays",
                new_puppet,
                PuppetPlay(name, new_player, ", ".join(new_hands) or None, new_voice, role.costume),
            )

        for person in dict.fromkeys([new_player, *new_hands]):
            if person:
                anomalies.append(self.check_person(person))
        if new_puppet:
            anomalies.append(self.check_puppet(new_puppet))
        if role.costume:
            anomalies.append(self.check_costume(role.costume))
        anomalies = [message for message in map(self._once, anomalies) if message]
        return RoleUpdate(role=role, is_new=is_new, anomalies=anomalies, costume_events=events)

    def auto_register_role(self, name: str) -> RoleUpdate:
        """Put a role on stage without a cast declaration; attributes stay empty."""
        role = self.role(name)
        is_new = role is None
        role = self.add_item("Role", name, factory=Role, auto=True)
        if is_new:
            role.auto_registered = True
        role.on_stage = True
        self.count("Role", name)
        self.tracker.add_once("Role", name)
        return RoleUpdate(role=role, is_new=is_new)

    def _add_duty(self, role: Role, what: str, person: str | None) -> None:
        if person is None:
            return
        item = self.add_item("Person", person, factory=Person, role=role.key, **{what: True})
        item.synthetic = item.synthetic or self.is_synthetic(person)
        role.remember(what, person)
        if what != "voice" or person != role.player:
            self.tracker.add_once("Person", person)
            self.tracker.highlight(person, role.key)
        text = (Duty(role.key, what), Ref("Person", person))
        self.tracker.add_event_text("Role", role.key, "Pers+", text)
        self.tracker.add_event_text("Person", person, "Pers+", text)

    def _add_puppet(self, role: Role, puppet: str, costume: str | None) -> None:
        item = self.add_item("Puppet", puppet, factory=Puppet, role=role.key, costume=costume)
        item.role = role.key
        role.remember("puppet", puppet)
        self.count("Puppet", puppet)
        self.tracker.add_once("Puppet", puppet)
        text = (Ref("Role", role.key), Ref("Puppet", puppet))
        self.tracker.add_event_text("Role", role.key, "Pupp+", text)
        self.tracker.add_event_text("Puppet", puppet, "Pupp+", text)

    def assign_costume(self, name: str, costume: str | None) -> list[CostumeEvent]:
        """Apply the costume transition rules and return the events they produce."""
        role = self.role(name)
        if role is None:
            raise KeyError(name)
        events: list[CostumeEvent] = []
        if costume is None:
            if role.costume is not None:
                events.append(self._costume_event(COSTUME_REMOVE, role, role.costume))
            role.costume = None
            role.last_costume = None
            return events
        previous = role.costume or role.last_costume
        if previous is None:
            events.append(self._costume_event(COSTUME_ADD, role, costume))
        elif previous == costume:
            events.append(self._costume_event(COSTUME_KEEP, role, costume))
        else:
            events.append(self._costume_event(COSTUME_REMOVE, role, previous))
            events.append(self._costume_event(COSTUME_ADD, role, costume))
        role.costume = costume
        role.last_costume = costume
        role.remember("costume", costume)
        item = self.add_item("Costume", costume, factory=Costume, role=name, puppet=role.puppet)
        item.role = name
        item.puppet = role.puppet
        self.count("Costume", costume)
        self.tracker.add_once("Costume", costume)
        return events

    def _costume_event(self, kind: str, role: Role, costume: str) -> CostumeEvent:
        event = CostumeEvent(kind=kind, role=role.key, costume=costume)
        key = f"Clth{event.token}"
        text = (Ref("Role", role.key), Ref("Costume", costume))
        self.tracker.add_event_text("Role", role.key, key, text)
        self.tracker.add_event_text("Costume", costume, key, text)
        self.tracker.add_event_text("Puppet", role.puppet, key, text)
        return event

    def drop_role(self, name: str) -> RoleDrop | None:
        """Take a role off stage; its records stay for the reports."""
        role = self.role(name)
        if role is None or not role.on_stage:
            return None
        props = self.owned_props.pop(name, [])
        for owned in props:
            self.owners[owned.kind.category][owned.key] = None
            self._prop_event(owned.kind, "-", owned.key, owner=name)

        duties = [
            (what, value)
            for what, value in (
                ("player", role.player),
                ("hands", ", ".join(role.hands)),
                ("voice", role.voice),
            )
            if value
        ]
        for what, value in duties:
            text = (Duty(name, what),)
            self.tracker.add_event_text("Role", name, "Pers-", text)
            for person in value.split(", "):
                self.tracker.add_event_text("Person", person, "Pers-", text)

        events: list[CostumeEvent] = []
        if role.costume:
            events.append(self._costume_event(COSTUME_REMOVE, role, role.costume))
            role.last_costume = role.costume
            role.costume = None

        if role.puppet:
            text = (Ref("Role", name), Ref("Puppet", role.puppet))
            self.tracker.add_event_text("Role", name, "Pupp-", text)
            self.tracker.add_event_text("Puppet", role.puppet, "Pupp-", text)
            puppet = self.get("Puppet", role.puppet)
            if puppet is not None and puppet.role == name:
                puppet.role = None
        role.on_stage = False
        return RoleDrop(role=name, duties=duties, props=props, costume_events=events, puppet=role.puppet)

    # -- conflict checks ----------------------------------------------------

    def check_person(self, person: str) -> str | None:
        item = self.get("Person", person)
        if item is None:
            return None
        roles: list[str] = []
        duties: list[str] = []
        for use in item.uses_in(self.tracker.scene_title):
            if use.attrs.get("stagehand"):
                label = use.attrs.get("prop") or use.attrs.get("effect")
                if label and label not in duties:
                    duties.append(label)
            elif use.attrs.get("player") or use.attrs.get("hands"):
                if use.attrs["role"] not in roles:
                    roles.append(use.attrs["role"])
        if roles and duties:
            return (
                f"Person '{person}' can't act as a stagehand for '{duties[0]}', "
                f"because it's already Player/Hands for '{roles[0]}'"
            )
        if len(roles) > 1:
            return (
                f"Person '{person}' can't play '{roles[-1]}', "
                f"because it's already Player/Hands of role '{roles[0]}'"
            )
        return None

    def check_puppet(self, puppet: str) -> str | None:
        item = self.get("Puppet", puppet)
        if item is None:
            return None
        roles = list(dict.fromkeys(use.attrs["role"] for use in item.uses_in(self.tracker.scene_title)))
        if len(roles) > 1:
            return f"Puppet '{puppet}' can't be used by '{roles[-1]}', because it's already the puppet of role '{roles[0]}'"
        return None

    def check_costume(self, costume: str) -> str | None:
        item = self.get("Costume", costume)
        if item is None:
            return None
        puppets = [use.attrs.get("puppet") for use in item.uses_in(self.tracker.scene_title)]
        puppets = list(dict.fromkeys(puppet for puppet in puppets if puppet))
        if len(puppets) > 1:
            return f"Costume '{costume}' can't be worn by '{puppets[-1]}', because it's already worn by '{puppets[0]}'"
        return None

    # -- props ----------------------------------------------------------------

    def _prop_event(
        self,
        kind: PropKind,
        token: str,
        key: str,
        owner: str | None = None,
        hands: list[str] | tuple[str, ...] = (),
    ) -> None:
        report_key = f"{kind.report_key}{token}"
        text = (Ref("Role", owner) if owner else None, Ref(kind.category, key))
        self.tracker.add_event_text(kind.category, key, report_key, text)
        if owner:
            self.tracker.add_event_text("Role", owner, report_key, text)
            role = self.role(owner)
            if role is not None and role.puppet and kind.category != "HandProp":
                self.tracker.add_event_text("Puppet", role.puppet, report_key, text)
        for hand in hands:
            self.tracker.add_event_text("Person", hand, report_key, text)
            if self.tracker.current is not None:
                self.tracker.add_once("Person", hand)
                self.tracker.highlight(hand, key)

    def declare_prop(self, kind: PropKind, key: str, display: str, hands: list[str]) -> Prop:
        prop = self.add_item(kind.category, key, factory=Prop, name=display, hands=list(hands))
        prop.hands = list(hands)
        for hand in hands:
            self.add_item("Person", hand, factory=Person, prop=key, stagehand=True)
            self.tracker.add_event_text("Person", hand, kind.report_key, (Ref("Person", hand), Ref(kind.category, key)))
            self.tracker.highlight(hand, key)
        return prop

    def place_prop(self, kind: PropKind, key: str, display: str, hands: list[str] | tuple[str, ...] = ()) -> Prop:
        prop = self.add_item(kind.category, key, factory=Prop, name=display)
        self.count(kind.category, key)
        self.tracker.add_once(kind.category, key)
        self._prop_event(kind, "+" if not kind.is_just else "", key, hands=hands)
        return prop

    def acknowledge_prop(
        self,
        kind: PropKind,
        key: str,
        owner: str | None = None,
        hands: list[str] | tuple[str, ...] = (),
    ) -> None:
        self.count(kind.category, key)
        self.tracker.add_once(kind.category, key)
        self._prop_event(kind, "=", key, owner, hands)

    def remove_prop(self, kind: PropKind, key: str, hands: list[str] | tuple[str, ...] = ()) -> None:
        self.tracker.add_once(kind.category, key)
        self._prop_event(kind, "-", key, hands=hands)

    def add_owned_prop(
        self,
        kind: PropKind,
        key: str,
        display: str,
        owner: str,
        hands: list[str] | tuple[str, ...] = (),
    ) -> Prop:
        prop = self.add_item(kind.category, key, factory=Prop, name=display, owner=owner)
        prop.owner = owner
        self.count(kind.category, key)
        self.owners[kind.category][key] = owner
        self.tracker.add_once(kind.category, key)
        self._prop_event(kind, "+", key, owner, hands)
        owned = OwnedProp(PROP_KINDS[kind.category], key)
        if owned not in self.owned_props[owner]:
            self.owned_props[owner].append(owned)
        return prop

    def remove_owned_prop(
        self,
        kind: PropKind,
        key: str,
        owner: str,
        hands: list[str] | tuple[str, ...] = (),
    ) -> None:
        self.owners[kind.category][key] = None
        owned = OwnedProp(PROP_KINDS[kind.category], key)
        if owned in self.owned_props.get(owner, []):
            self.owned_props[owner].remove(owned)
        self._prop_event(kind, "-", key, owner, hands)

    def owner_of(self, category: str, key: str) -> str | None:
        return self.owners.get(category, {}).get(key)

    def prop_name(self, category: str, key: str) -> str:
        prop = self.get(category, key)
        return prop.name if prop is not None else key

    # -- backdrops, cues and stagehands ----------------------------------------

    def add_backdrop(self, position: str, value: str) -> str:
        key = f"{value} {position}"
        self.count("Backdrop", key)
        self.tracker.add("Backdrop", key)
        item = self.add_item("Backdrop", key, factory=Backdrop)
        item.position = position
        return key

    def register_cue(self, category: str, text: str, report_key: str) -> bool:
        first = self.count(category, text)
        self.add_item(category, text)
        self.tracker.add(category, text)
        self.tracker.add_event_text(category, text, report_key if first else f"{report_key}=", text)
        return first

    def register_stagehand(self, person: str, *, prop: str | None = None, effect: str | None = None) -> str | None:
        attrs: dict[str, Any] = {"stagehand": True}
        if prop:
            attrs["prop"] = prop
        if effect:
            attrs["effect"] = effect
        self.add_item("Person", person, factory=Person, **attrs)
        self.tracker.add_once("Person", person)
        return self._once(self.check_person(person))

