from puppetscript.entity_store import EntityStore
from puppetscript.qscript import NormalizedScript
from puppetscript.report_builder import ReportBuilder
from puppetscript.role_aliases import RoleAliasTable
from puppetscript.scene_parser import SceneParser
from puppetscript.timeframe import TimeframeTracker

CAST_ALICE = "    * Puppets: Alice (Player, ---|Bobcat|Costume1)"


def messages(store: EntityStore, scene: str | None = None) -> list[str]:
    return [anomaly.message for anomaly in store.anomalies if scene is None or anomaly.scene == scene]


def fresh_parser(**kwargs) -> SceneParser:
    script = NormalizedScript()
    tracker = TimeframeTracker(script)
    return SceneParser(EntityStore(tracker), tracker, script, **kwargs)


def history_keys(tracker: TimeframeTracker, category: str, name: str) -> list[tuple[str, str]]:
    return [(entry.key, str(entry.label())) for entry in tracker.history(category, name)]


def test_single_role_scene(parser: SceneParser, store: EntityStore, tracker: TimeframeTracker):
    title = parser.parse_lines(
        "act12.txt",
        [
            "==== The Meeting ====",
            CAST_ALICE,
            "",
            'Alice: "Hello."',
            'Alice: "How are you?"',
            'Alice (laughing): "Fine."',
        ],
    )
    role = store.role("Alice")

    assert title == "Act 1-2"
    assert messages(store) == []
    assert role.player == "Alice"
    assert role.hands == ["Alice"]
    assert role.voice == "Alice"
    assert role.puppet == "Bobcat"
    assert role.last_costume == "Costume1"
    assert tracker.scenes[title].spoken_count("Role", "Alice") == 3
    assert ("Spokn", "3x spoken") in history_keys(tracker, "Role", "Alice")
    assert ("Spokn", "3x spoken") in history_keys(tracker, "Puppet", "Bobcat")


def test_no_spoken_entry_stays_pending(parser: SceneParser, tracker: TimeframeTracker):
    parser.parse_lines("act12.txt", [CAST_ALICE, "", 'Alice: "Hello."'])
    parser.parse_lines("act13.txt", [CAST_ALICE, "", 'Alice: "Again."', 'Alice: "And again."'])

    entries = [entry for people in tracker.histories.values() for history in people.values() for entry in history]
    assert not any(entry.is_pending for entry in entries)
    spoken = [entry.label() for entry in tracker.history("Role", "Alice") if entry.key == "Spokn"]
    assert spoken == ["1x spoken", "2x spoken"]


def test_hands_change_is_reported(parser: SceneParser, store: EntityStore):
    parser.parse_lines("act12.txt", [CAST_ALICE, "", 'Alice: "Hello."'])
    parser.parse_lines(
        "act13.txt",
        ["    * Puppets: Alice (Alice, Carol|Bobcat|Costume1)", "", 'Alice: "Again."'],
    )

    assert messages(store, "Act 1-3") == ["Hands changed for 'Alice': 'Alice' -> 'Carol'"]
    assert store.role("Alice").hands == ["Carol"]
    assert store.role("Alice").voice == "Alice"


def test_costume_events_in_the_script(parser: SceneParser, script: NormalizedScript):
    for filename, costume in (("act11.txt", "C1"), ("act12.txt", "C1"), ("act13.txt", "C2")):
        parser.parse_lines(filename, [f"    * Puppets: Alice (Ann|Cat|{costume})", "", 'Alice: "Hi"'])

    def clothing(scene):
        return [
            (entry.key, entry.items[1].name)
            for entry in script.entries
            if entry.scene == scene and entry.key.startswith("Clth")
        ]

    assert clothing("Act 1-1") == [("Clth+", "C1"), ("Clth-", "C1")]
    assert clothing("Act 1-2") == [("Clth=", "C1"), ("Clth-", "C1")]
    assert clothing("Act 1-3") == [("Clth-", "C1"), ("Clth+", "C2"), ("Clth-", "C2")]


def test_referenced_prop_is_not_unused(parser: SceneParser, store: EntityStore, script: NormalizedScript):
    parser.parse_lines(
        "act12.txt",
        [
            "    * Puppets: Alice (Ann|Cat|Red)",
            "    * Stage setup: <fp>Table</fp> (Sam)",
            "",
            'Alice: "Put it on the <fp>Table</fp>."',
        ],
    )

    assert messages(store) == []
    assert '\tfrontProp+ "Table"' in script.text
    assert '\tstagehand "Sam"' in script.text


def test_declared_prop_never_used_is_flagged_once(parser: SceneParser, store: EntityStore):
    parser.parse_lines(
        "act12.txt",
        ["    * Puppets: Alice (Ann|Cat|Red)", "    * Stage setup: <fp>Table</fp> (Sam)", "", 'Alice: "Hi"'],
    )

    assert [message for message in messages(store) if "unused" in message] == ["Front prop unused 'Table'"]


def test_setting_props_without_a_curtain_stay_unused(parser: SceneParser, store: EntityStore):
    parser.parse_lines(
        "act12.txt",
        [
            "    * Puppets: Alice (Ann|Cat|Red)",
            "    * Stage setup:",
            "      * <fp>Table</fp> (Sam)",
            "    * Setting: A kitchen with <fp>Stove</fp> (Sam)",
            "",
            'Alice: "Hi"',
        ],
    )

    unused = [message for message in messages(store) if "unused" in message]
    assert unused == ["Front prop unused 'Table'", "Front prop unused 'Stove'"]


def test_unused_hand_prop_is_still_placed(parser: SceneParser, store: EntityStore, script: NormalizedScript):
    parser.parse_lines(
        "act12.txt",
        ["    * Puppets: Alice (Ann|Cat|Red)", "    * Hand props: <hp>Cup</hp> (Sam)", "", 'Alice: "Hi"'],
    )

    assert "Hand prop unused 'Cup'" in messages(store)
    assert '\tjust handProp "Cup"' in script.text
    assert '\thandProp- "Cup"' not in script.text


def test_unknown_hand_prop_follows_its_owner(parser: SceneParser, store: EntityStore, script: NormalizedScript):
    parser.parse_lines(
        "act12.txt",
        [
            "    * Puppets: Alice (Ann|Cat|Red), Bob (Ben|Dog|Blue)",
            "",
            'Alice: "My <hp>Cup</hp>."',
            'Bob: "No, my <hp>Cup</hp>."',
        ],
    )
    text = script.text

    assert messages(store) == ["unknown Prop 'Cup', add: | <hp>Cup</hp> |  |  |"]
    assert text.index('\thandProp+ "Alice" "Cup"') < text.index('\thandProp- "Alice" "Cup"')
    assert text.index('\thandProp- "Alice" "Cup"') < text.index('\thandProp+ "Bob" "Cup"')
    assert '\thandProp- "Bob" "Cup"' in text


def test_prop_mentioned_twice_on_one_line_counts_once(parser: SceneParser, store: EntityStore):
    parser.parse_lines(
        "act12.txt",
        ["    * Puppets: Alice (Ann|Cat|Red)", "", 'Alice: "Lamp_hp and <hp>Lamp</hp>"'],
    )

    assert parser.store.counts["HandProp"]["lamp"] == 1
    assert len([message for message in messages(store) if "unknown Prop" in message]) == 1


def test_stagehand_who_is_also_a_player(parser: SceneParser, store: EntityStore):
    parser.parse_lines(
        "act12.txt",
        ["    * Stage setup: <fp>Table</fp> (Ann)", "    * Puppets: Alice (Ann|Cat|Red)", ""],
    )

    assert (
        "Person 'Ann' can't act as a stagehand for 'table', because it's already Player/Hands for 'Alice'"
        in messages(store)
    )


def test_generated_identifiers_are_reused_within_a_scene(parser: SceneParser, store: EntityStore):
    parser.parse_lines(
        "act12.txt",
        [
            "    * Puppets:",
            "      * Alice (Person, Hands|Puppet|Costume)",
            "      * Alice (Person, Hands|Puppet|Costume)",
            "",
        ],
    )
    role = store.role("Alice")

    assert (role.player, role.hands, role.puppet, role.costume) == ("Person1", ["Hands1"], "Puppet1", None)
    assert role.last_costume == "Costume1"
    assert messages(store) == []
    assert store.allocate_identifier(None, "Person", "Zed") == "Person2"


def test_composite_dialogue_counts_every_role(parser: SceneParser, tracker: TimeframeTracker):
    parser.parse_lines(
        "act12.txt",
        [
            "    * Puppets: Alice (Ann|Cat|Red), Bob (Ben|Dog|Blue)",
            "",
            'Alice and Bob: "Hi"',
            'Alice, Bob = Duo: "Yes"',
            'Duo: "Again"',
        ],
    )
    scene = tracker.scenes["Act 1-2"]

    assert scene.spoken_count("Role", "Alice") == 3
    assert scene.spoken_count("Role", "Bob") == 3
    assert scene.spoken_count("Person", "Ben") == 3


def test_configured_group_expands_to_its_roles(tracker: TimeframeTracker, script: NormalizedScript):
    aliases = RoleAliasTable()
    aliases.add("Chorus", ["Frog", "Toad"])
    parser = SceneParser(EntityStore(tracker), tracker, script, role_aliases=aliases)
    parser.parse_lines(
        "act12.txt",
        ["    * Puppets: Frog (Ann|Cat|Red), Toad (Ben|Dog|Blue)", "", 'Chorus: "Ribbit"'],
    )

    assert tracker.scenes["Act 1-2"].spoken_count("Role", "Frog") == 1
    assert tracker.scenes["Act 1-2"].spoken_count("Role", "Toad") == 1
    assert tracker.highlights["Act 1-2"]["Ann"] == ["Frog", "Chorus"]


def test_same_file_parsed_twice_keeps_separate_highlights(
    parser: SceneParser, tracker: TimeframeTracker, store: EntityStore, script: NormalizedScript
):
    parser.parse_lines("act12.txt", ["    * Puppets: Alice (Ann|Cat|Red)", "", 'Alice: "Hi"'])
    parser.parse_lines("act12.txt", ["    * Puppets: Bob (Ben|Dog|Blue)", "", 'Bob: "Hi"'])
    actors = ReportBuilder(store, tracker, script).wiki_actors()

    assert tracker.highlights["Act 1-2"] == {"Ann": ["Alice"]}
    assert tracker.highlights["Act 1-2 (2)"] == {"Ben": ["Bob"]}
    assert actors == {"act12.txt": {"Ann": ["Alice"]}, "Act 1-2 (2)": {"Ben": ["Bob"]}}


def test_undeclared_role_is_registered_and_flagged(parser: SceneParser, store: EntityStore, tracker: TimeframeTracker):
    parser.parse_lines("act12.txt", ['Zed: "Who is there?"', 'Zed: "Hello?"'])

    assert messages(store) == ["unknown Role: 'Zed'"]
    assert store.role("Zed").auto_registered
    assert tracker.scenes["Act 1-2"].spoken_count("Role", "Zed") == 2


def test_malformed_lines_become_notes(parser: SceneParser, store: EntityStore, script: NormalizedScript):
    parser.parse_lines(
        "act12.txt",
        [
            "    * Puppets: Alice (Ann|Cat|Red)",
            "",
            "Alice: Hello",
            "the lights go down slowly",
            "{{tag>:events:pps:script:}}",
            "%HND% Curtain - open",
            "%HND% Curtain - open",
            "%HND% Curtain - ajar",
        ],
    )

    assert messages(store) == [
        "spoken line not quoted: Alice: 'Hello'",
        "unknown line 'the lights go down slowly'",
        "same curtain state: 'open'",
        "unknown curtain state: 'ajar'",
    ]
    assert "\tcurtain open" in script.text
    assert '\ttodo "unknown line \'the lights go down slowly\'"' in script.text


def test_cues_and_backdrops(parser: SceneParser, store: EntityStore, tracker: TimeframeTracker, script: NormalizedScript):
    parser.parse_lines(
        "act12.txt",
        [
            "    * Backdrop: Forest. Castle. Sky",
            "",
            "== INTRO ==",
            'Narrator: "Once upon a time"',
            "== DIALOG ==",
            "%SND% Thunder",
            "%SND% Thunder",
            "%LIG% Dawn",
        ],
    )

    assert '\tbackdrop "Forest Left" "Castle Middle" "Sky Right"' in script.text
    assert 'Narrator: "Once upon a time"' in store.items["Sound"]
    assert [entry.key for entry in tracker.history("Sound", "Thunder")] == ["Sound", "Sound="]
    assert tracker.values("Light", "Act 1-2") == ["Dawn"]
    assert messages(store) == []


def test_scene_block_shape(parser: SceneParser, script: NormalizedScript):
    parser.parse_lines("act12.txt", ["%LIG% Dawn"])

    assert script.text.startswith('timeframe "Act 1-2" //act12\n{\n')
    assert script.text.endswith("}\n\n")


def test_identical_input_gives_identical_output():
    lines = [
        "==== The Meeting ====",
        "    * Puppets: Alice (Ann|Cat|Red), Bob (Ben|Dog|Blue)",
        "    * Stage setup: <fp>Table</fp> (Sam)",
        "",
        '%HND% Curtain - open',
        'Alice: "On the <fp>Table</fp>, my <hp>Cup</hp>."',
        'Bob: "Who?"',
        "%SND% Thunder",
    ]
    outputs = []
    for _ in range(2):
        parser = fresh_parser()
        parser.parse_lines("act12.txt", lines)
        parser.parse_lines("act13.txt", lines)
        report = ReportBuilder(parser.store, parser.tracker, parser.script)
        outputs.append((parser.script.text, report.render_text(), report.render_html()))

    assert outputs[0] == outputs[1]
