from pathlib import Path

from puppetscript.role_aliases import RoleAliasResolver, RoleAliasTable


def test_scoped_groups_apply_to_their_scene_only(tmp_path: Path):
    path = tmp_path / "roles.ini"
    path.write_text("Chorus;Frog;Toad\n[Act 1-2]\nGuards;Guard1;Guard2\n", encoding="utf-8")
    table = RoleAliasTable.from_file(path)

    scene = table.resolver_for("Act 1-2", "act12.txt")
    other = table.resolver_for("Act 2-1", "act21.txt")

    assert scene.expand("Guards") == ["Guard1", "Guard2"]
    assert scene.expand("Chorus") == ["Frog", "Toad"]
    assert other.expand("Guards") == ["Guards"]


def test_unknown_name_expands_to_itself():
    assert RoleAliasResolver().expand("Alice") == ["Alice"]


def test_unused_groups_are_listed():
    resolver = RoleAliasResolver({"Chorus": ["Frog", "Toad"], "Guards": ["Guard1"]})
    resolver.expand("Chorus")

    assert resolver.unused() == ["Guards"]


def test_groups_defined_in_a_scene_count_as_used():
    resolver = RoleAliasResolver()
    resolver.add_group("Duo", ["Alice", "Bob"])

    assert resolver.expand("Duo") == ["Alice", "Bob"]
    assert resolver.unused() == []
