import json
from pathlib import Path

import pytest

from puppetscript.cli import main, run
from puppetscript.config import RunConfig

SCENE = """==== The Meeting ====
    * Puppets: Alice (Ann|Cat|Red)

Grandma: "Hello."
%MUSIC% Waltz
"""


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "subs.ini").write_text("%MUSIC%;%MUS%\n[act12.txt]\nGrandma;Alice\n", encoding="utf-8")
    (config_dir / "roles.ini").write_text("Chorus;Frog;Toad\n", encoding="utf-8")
    (config_dir / "puppet_pool.csv").write_text('Cat;Mia;src="cat.png"\n', encoding="utf-8")
    (tmp_path / "act12.txt").write_text(SCENE, encoding="utf-8")
    return tmp_path


def test_missing_scene_file(tmp_path: Path, capsys):
    assert main([str(tmp_path / "absent.txt")]) == 2
    assert "error: missing required file:" in capsys.readouterr().out


def test_run_writes_every_output(workspace: Path, capsys):
    out_dir = workspace / "out"
    code = main(
        [str(workspace / "act12.txt"), "--config-dir", str(workspace / "config"), "--out-dir", str(out_dir)]
    )

    assert code == 0
    for name in (
        "qscript.txt",
        "report.txt",
        "out.html",
        "clothes.html",
        "wiki_actors.json",
        "todo-list.csv",
        "assignment-list.csv",
        "run_manifest.json",
    ):
        assert (out_dir / name).is_file(), name

    script = (out_dir / "qscript.txt").read_text(encoding="utf-8")
    assert 'timeframe "Act 1-2" //act12' in script
    assert '\tspoken "Alice" "\\"Hello.\\""' in script
    assert '\tambience "Waltz"' in script

    manifest = json.loads((out_dir / "run_manifest.json").read_text(encoding="utf-8"))
    assert manifest["metadata"]["record_count"] == 1
    assert manifest["metadata"]["anomaly_count"] == 0
    assert manifest["items"][0]["roles"] == ["Alice"]
    assert manifest["items"][0]["spoken_lines"] == 1
    assert "scenes parsed: 1" in capsys.readouterr().out


def test_outputs_default_to_the_working_directory(workspace: Path, monkeypatch):
    monkeypatch.chdir(workspace)

    assert main(["act12.txt", "--config-dir", "config"]) == 0
    assert (workspace / "out" / "qscript.txt").is_file()
    assert (workspace / "out" / "run_manifest.json").is_file()


def test_unchanged_outputs_are_not_rewritten(workspace: Path):
    config = RunConfig.from_config_dir(
        workspace / "config",
        out_dir=workspace / "out",
        scene_files=[workspace / "act12.txt"],
    )
    first = run(config)
    second = run(config)

    assert "qscript.txt" in first["metadata"]["outputs_written"]
    assert second["metadata"]["outputs_written"] == []
    assert second["metadata"]["unused_substitutions"] == []
