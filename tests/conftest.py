from __future__ import annotations

import pytest

from puppetscript.entity_store import EntityStore
from puppetscript.qscript import NormalizedScript
from puppetscript.scene_parser import SceneParser
from puppetscript.timeframe import TimeframeTracker


@pytest.fixture
def script() -> NormalizedScript:
    return NormalizedScript()


@pytest.fixture
def tracker(script: NormalizedScript) -> TimeframeTracker:
    return TimeframeTracker(script)


@pytest.fixture
def store(tracker: TimeframeTracker) -> EntityStore:
    return EntityStore(tracker)


@pytest.fixture
def parser(store: EntityStore, tracker: TimeframeTracker, script: NormalizedScript) -> SceneParser:
    return SceneParser(store, tracker, script)
