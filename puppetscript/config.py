"""Run configuration and the `;`-separated table format shared by the config files."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"
# Relative to the working directory of the run.
DEFAULT_OUT_DIR = Path("out")
ROLES_FILENAME = "roles.ini"
SUBS_FILENAME = "subs.ini"
PUPPET_POOL_FILENAME = "puppet_pool.csv"
HTML_HEADER_FILENAME = "header.html"

GLOBAL_SCOPE = "global"
SCOPE_RE = re.compile(r"^\[(.+)\]$")
TABLE_SEPARATOR = ";"


@dataclass
class TableRow:
    scope: str
    fields: list[str]
    lineno: int


@dataclass
class RunConfig:
    roles_file: Path = DEFAULT_CONFIG_DIR / ROLES_FILENAME
    subs_file: Path = DEFAULT_CONFIG_DIR / SUBS_FILENAME
    puppet_pool_file: Path = DEFAULT_CONFIG_DIR / PUPPET_POOL_FILENAME
    html_header_file: Path = DEFAULT_CONFIG_DIR / HTML_HEADER_FILENAME
    out_dir: Path = DEFAULT_OUT_DIR
    natural_sort: bool = True
    debug: bool = False
    scene_files: list[Path] = field(default_factory=list)

    @classmethod
    def from_config_dir(cls, config_dir: Path, **overrides: object) -> RunConfig:
        config = cls(
            roles_file=config_dir / ROLES_FILENAME,
            subs_file=config_dir / SUBS_FILENAME,
            puppet_pool_file=config_dir / PUPPET_POOL_FILENAME,
            html_header_file=config_dir / HTML_HEADER_FILENAME,
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)
        return config


def read_table(path: Path, *, min_fields: int = 2) -> list[TableRow]:
    """Read a `;`-separated table.

    `#` lines and blank lines are skipped, `[Name]` lines switch the scope of
    the rows that follow. A missing file reads as an empty table.
    """
    if not path.exists():
        logger.info("config table not found, using empty table: %s", path)
        return []
    rows: list[TableRow] = []
    scope = GLOBAL_SCOPE
    for lineno, raw in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        scope_match = SCOPE_RE.match(line)
        if scope_match:
            scope = scope_match.group(1).strip()
            continue
        fields = line.split(TABLE_SEPARATOR)
        if len(fields) < min_fields:
            logger.warning("%s:%d: skipping malformed line: %s", path.name, lineno, line)
            continue
        rows.append(TableRow(scope=scope, fields=fields, lineno=lineno))
    return rows
