"""Role groups: a group cue name expands to the roles it stands for."""

from __future__ import annotations

from collections import defaultdict
from pathlib import Path

from .config import GLOBAL_SCOPE, read_table


class RoleAliasTable:
    """Groups loaded from `roles.ini`, keyed by scope (scene title or `global`)."""

    def __init__(self) -> None:
        self.scopes: dict[str, dict[str, list[str]]] = defaultdict(dict)

    @classmethod
    def from_file(cls, path: Path) -> RoleAliasTable:
        table = cls()
        for row in read_table(path):
            group = row.fields[0].strip()
            roles = [role.strip() for role in row.fields[1:] if role.strip()]
            if group and roles:
                table.add(group, roles, scope=row.scope)
        return table

    def add(self, group: str, roles: list[str], scope: str = GLOBAL_SCOPE) -> None:
        self.scopes[scope][group] = list(roles)

    def resolver_for(self, *scopes: str) -> RoleAliasResolver:
        groups = dict(self.scopes.get(GLOBAL_SCOPE, {}))
        for scope in scopes:
            groups.update(self.scopes.get(scope, {}))
        return RoleAliasResolver(groups)


class RoleAliasResolver:
    """Group expansion for one scene; groups may also be defined by scene lines."""

    def __init__(self, groups: dict[str, list[str]] | None = None) -> None:
        self.groups: dict[str, list[str]] = {name: list(roles) for name, roles in (groups or {}).items()}
        self.used: set[str] = set()

    def add_group(self, group: str, roles: list[str]) -> None:
        self.groups[group] = list(roles)
        self.used.add(group)

    def expand(self, name: str) -> list[str]:
        roles = self.groups.get(name)
        if roles is None:
            return [name]
        self.used.add(name)
        return list(roles)

    def unused(self) -> list[str]:
        return [group for group in self.groups if group not in self.used]
