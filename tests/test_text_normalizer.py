from pathlib import Path

from puppetscript.text_normalizer import TextNormalizer


def test_scoped_substitutions_run_before_global_ones():
    normalizer = TextNormalizer()
    normalizer.add("Mr Fox", "Fox Senior")
    normalizer.add("Fox:", "Mr Fox:", scope="act12.txt")

    assert normalizer.normalize('Fox: "Hi"', "act12.txt") == 'Fox Senior: "Hi"'
    assert normalizer.normalize('Fox: "Hi"', "act13.txt") == 'Fox: "Hi"'


def test_unused_patterns_are_reported():
    normalizer = TextNormalizer()
    used = normalizer.add("colour", "color")
    normalizer.add("grey", "gray")

    assert normalizer.normalize("colour and colour") == "color and color"
    assert used.uses == 2
    assert [sub.pattern for sub in normalizer.unused()] == ["grey"]


def test_wiki_line_break_is_stripped():
    assert TextNormalizer().normalize('Alice: "Hi" \\\\') == 'Alice: "Hi"'


def test_from_file_reads_scopes_and_skips_malformed_lines(tmp_path: Path):
    path = tmp_path / "subs.ini"
    path.write_text(
        "# comment\n"
        "Mr. Fox;Fox\n"
        "no separator here\n"
        "\n"
        "[act12.txt]\n"
        "Grandma;Granny\n",
        encoding="utf-8",
    )
    normalizer = TextNormalizer.from_file(path)

    assert [sub.pattern for sub in normalizer.scopes["global"]] == ["Mr. Fox"]
    assert normalizer.normalize("Grandma and Mr. Fox", "act12.txt") == "Granny and Fox"


def test_missing_file_is_an_empty_table(tmp_path: Path):
    normalizer = TextNormalizer.from_file(tmp_path / "absent.ini")

    assert normalizer.normalize("unchanged") == "unchanged"
    assert normalizer.unused() == []
