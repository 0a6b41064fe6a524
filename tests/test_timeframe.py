import pytest

from puppetscript.timeframe import TimeframeTracker


def test_adding_without_an_open_scene_fails(tracker: TimeframeTracker):
    with pytest.raises(RuntimeError):
        tracker.add("Role", "Alice")


def test_none_is_never_a_field_value(tracker: TimeframeTracker):
    tracker.open_scene("Act 1-1", "act11.txt")

    with pytest.raises(ValueError):
        tracker.add("Role", None)
    with pytest.raises(ValueError):
        tracker.add_once("Role", None)


def test_add_once_keeps_first_occurrence_only(tracker: TimeframeTracker):
    tracker.open_scene("Act 1-1", "act11.txt")

    assert tracker.add_once("Role", "Alice") is True
    assert tracker.add_once("Role", "Alice") is False
    tracker.add("Backdrop", "Forest Left")
    tracker.add("Backdrop", "Forest Left")

    assert tracker.values("Role") == ["Alice"]
    assert tracker.values("Backdrop") == ["Forest Left", "Forest Left"]


def test_duplicate_scene_titles_are_kept_apart(tracker: TimeframeTracker):
    first = tracker.open_scene("Act 1-1", "act11.txt")
    tracker.close_scene()
    second = tracker.open_scene("Act 1-1", "act11b.txt")

    assert first == "Act 1-1"
    assert second == "Act 1-1 (2)"
    assert list(tracker.scenes) == ["Act 1-1", "Act 1-1 (2)"]


def test_opening_a_scene_closes_the_previous_one(tracker: TimeframeTracker):
    tracker.open_scene("Act 1-1", "act11.txt")
    tracker.record_spoken("Alice", player="Ann")
    tracker.open_scene("Act 1-2", "act12.txt")

    assert tracker.scenes["Act 1-1"].closed
    assert tracker.history("Role", "Alice")[0].label() == "1x spoken"


def test_spoken_entry_is_pending_until_the_scene_closes(tracker: TimeframeTracker):
    tracker.open_scene("Act 1-1", "act11.txt")
    for _ in range(3):
        tracker.record_spoken("Alice", player="Ann", voice="Ann", puppet="Cat")

    entry = tracker.history("Role", "Alice")[0]
    assert entry.key == "Spokn"
    assert entry.is_pending
    assert entry.label() == "#"

    tracker.close_scene()

    assert not entry.is_pending
    assert entry.label() == "3x spoken"
    assert tracker.history("Puppet", "Cat")[0].label() == "3x spoken"
    assert len(tracker.history("Person", "Ann")) == 1


def test_distinct_voice_is_counted_separately(tracker: TimeframeTracker):
    tracker.open_scene("Act 1-1", "act11.txt")
    tracker.record_spoken("Alice", player="Ann", voice="Vera")
    tracker.record_spoken("Alice", player="Ann", voice="Vera")
    scene = tracker.close_scene()

    assert scene.spoken_count("Person", "Ann") == 2
    assert scene.spoken_count("Person", "Vera") == 2
    assert scene.spoken_count("Puppet", "Cat") == 0


def test_history_spans_scenes(tracker: TimeframeTracker):
    tracker.open_scene("Act 1-1", "act11.txt")
    tracker.add_event_text("Sound", "Thunder", "Sound", "Thunder")
    tracker.close_scene()
    tracker.open_scene("Act 1-2", "act12.txt")
    tracker.add_event_text("Sound", "Thunder", "Sound=", "Thunder")
    tracker.add_event_text("Sound", None, "Sound", "ignored")
    tracker.close_scene()

    history = tracker.history("Sound", "Thunder")
    assert [(entry.scene, entry.key) for entry in history] == [("Act 1-1", "Sound"), ("Act 1-2", "Sound=")]


def test_group_highlight_follows_member_roles(tracker: TimeframeTracker):
    tracker.open_scene("Act 1-1", "act11.txt")
    tracker.highlight("Ann", "Frog")
    tracker.highlight("Ben", "Owl")
    tracker.highlight_group(["Frog", "Toad"], "Chorus", "Act 1-1")

    assert tracker.highlights["Act 1-1"] == {"Ann": ["Frog", "Chorus"], "Ben": ["Owl"]}
