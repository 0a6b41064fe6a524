"""Literal text substitutions applied to every scene line before parsing."""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path

from .config import GLOBAL_SCOPE, TABLE_SEPARATOR, read_table

# DokuWiki forced line break at the end of a line
LINEBREAK_RE = re.compile(r"\s*\\\\\s*$")


@dataclass
class Substitution:
    pattern: str
    replacement: str
    scope: str = GLOBAL_SCOPE
    uses: int = 0


class TextNormalizer:
    def __init__(self) -> None:
        self.scopes: dict[str, list[Substitution]] = defaultdict(list)

    @classmethod
    def from_file(cls, path: Path) -> TextNormalizer:
        normalizer = cls()
        for row in read_table(path):
            pattern = row.fields[0]
            if not pattern:
                continue
            normalizer.add(pattern, TABLE_SEPARATOR.join(row.fields[1:]), scope=row.scope)
        return normalizer

    def add(self, pattern: str, replacement: str, scope: str = GLOBAL_SCOPE) -> Substitution:
        substitution = Substitution(pattern=pattern, replacement=replacement, scope=scope)
        self.scopes[scope].append(substitution)
        return substitution

    def normalize(self, line: str, *scopes: str) -> str:
        """Strip wiki line breaks, then apply scoped and global substitutions in order."""
        line = LINEBREAK_RE.sub("", line)
        for scope in (*scopes, GLOBAL_SCOPE):
            for substitution in self.scopes.get(scope, ()):
                if substitution.pattern not in line:
                    continue
                substitution.uses += line.count(substitution.pattern)
                line = line.replace(substitution.pattern, substitution.replacement)
        return line

    def unused(self) -> list[Substitution]:
        return [
            substitution
            for substitutions in self.scopes.values()
            for substitution in substitutions
            if substitution.uses == 0
        ]
