#!/usr/bin/env python3
"""Read scene scripts and write the normalized script and the reports.

Outputs (written to --out-dir):
- qscript.txt: normalized event script, one timeframe block per scene
- report.txt / out.html / clothes.html: catalog, histories and tables
- wiki_actors.json: per scene file, person -> highlighted names
- todo-list.csv / assignment-list.csv
- run_manifest.json
"""

from __future__ import annotations

import argparse
import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import DEFAULT_CONFIG_DIR, DEFAULT_OUT_DIR, RunConfig
from .entity_store import EntityStore
from .qscript import NormalizedScript, write_text_if_changed
from .report_builder import PuppetPool, ReportBuilder
from .role_aliases import RoleAliasTable
from .scene_parser import SceneParser
from .text_normalizer import TextNormalizer
from .timeframe import TimeframeTracker

logger = logging.getLogger(__name__)

PIPELINE_VERSION = "read-scenes-v0.1.0"
MANIFEST_SCHEMA_VERSION = "0.1.0-draft"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="read-scenes", description=__doc__.splitlines()[0])
    parser.add_argument("files", nargs="+", type=Path, help="scene files, in performance order")
    parser.add_argument("--config-dir", type=Path, default=DEFAULT_CONFIG_DIR)
    parser.add_argument("--out-dir", type=Path, default=DEFAULT_OUT_DIR, help="default: ./out")
    parser.add_argument("--html-header", type=Path, default=None)
    parser.add_argument("--no-natural-sort", action="store_true", help="sort names as plain text")
    parser.add_argument("--indent", type=int, default=2)
    parser.add_argument("--debug", action="store_true", help="trace every parsed line")
    return parser.parse_args(argv)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def build_artifact_envelope(
    *,
    artifact_type: str,
    build_timestamp: str,
    source_file_hash: str,
    items: list[dict[str, Any]],
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "artifact_type": artifact_type,
        "schema_version": MANIFEST_SCHEMA_VERSION,
        "pipeline_version": PIPELINE_VERSION,
        "build_timestamp": build_timestamp,
        "source_file_hash": source_file_hash,
        "record_count": len(items),
    }
    if extra_metadata:
        metadata.update(extra_metadata)
    return {"metadata": metadata, "items": items}


def write_json(path: Path, payload: Any, indent: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=indent if indent > 0 else None, ensure_ascii=False)
        f.write("\n")


def scene_summary(tracker: TimeframeTracker, store: EntityStore, title: str) -> dict[str, Any]:
    scene = tracker.scenes[title]
    return {
        "scene": title,
        "file": scene.filename,
        "roles": list(dict.fromkeys(scene.fields.get("Role", []))),
        "spoken_lines": sum(cell.count for (category, _), cell in scene.spoken.items() if category == "Role"),
        "anomaly_count": sum(1 for anomaly in store.anomalies if anomaly.scene == title),
    }


def run(config: RunConfig, indent: int = 2) -> dict[str, Any]:
    """Parse every scene file in order, then write all outputs; returns the manifest."""
    script = NormalizedScript()
    tracker = TimeframeTracker(script)
    store = EntityStore(tracker)
    normalizer = TextNormalizer.from_file(config.subs_file)
    parser = SceneParser(
        store,
        tracker,
        script,
        normalizer=normalizer,
        role_aliases=RoleAliasTable.from_file(config.roles_file),
    )
    sources = b""
    titles = []
    for path in config.scene_files:
        sources += path.read_bytes()
        titles.append(parser.parse_file(path))
        logger.info("parsed %s as %s", path.name, titles[-1])

    report = ReportBuilder(
        store,
        tracker,
        script,
        puppet_pool=PuppetPool.from_file(config.puppet_pool_file),
        natural_sort=config.natural_sort,
    )
    header = None
    if config.html_header_file.is_file():
        header = config.html_header_file.read_text(encoding="utf-8")

    out_dir = config.out_dir
    written = []
    outputs = {
        "qscript.txt": script.text,
        "report.txt": report.render_text(),
        "out.html": report.render_html(header),
        "clothes.html": report.render_clothes_html(header),
        "wiki_actors.json": json.dumps(report.wiki_actors(), indent=indent, ensure_ascii=False) + "\n",
        "todo-list.csv": report.todo_csv(),
        "assignment-list.csv": report.assignment_csv(),
    }
    for filename, text in outputs.items():
        if write_text_if_changed(out_dir / filename, text):
            written.append(filename)

    manifest = build_artifact_envelope(
        artifact_type="run_manifest",
        build_timestamp=utc_now_iso(),
        source_file_hash=sha256_hex(sources),
        items=[scene_summary(tracker, store, title) for title in titles],
        extra_metadata={
            "source_files": [path.name for path in config.scene_files],
            "anomaly_count": len(store.anomalies),
            "outputs_written": written,
            "unused_substitutions": [substitution.pattern for substitution in normalizer.unused()],
        },
    )
    write_json(out_dir / "run_manifest.json", manifest, indent)
    return manifest


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    scene_files = [path.resolve() for path in args.files]
    for required in scene_files:
        if not required.is_file():
            print(f"error: missing required file: {required}")
            return 2

    config = RunConfig.from_config_dir(
        args.config_dir.resolve(),
        out_dir=args.out_dir.resolve(),
        html_header_file=args.html_header.resolve() if args.html_header else None,
        natural_sort=not args.no_natural_sort,
        debug=args.debug,
        scene_files=scene_files,
    )
    manifest = run(config, args.indent)
    metadata = manifest["metadata"]

    print(f"scenes parsed: {metadata['record_count']}")
    print(f"anomalies: {metadata['anomaly_count']}")
    for filename in metadata["outputs_written"]:
        print(f"wrote {config.out_dir / filename}")
    print(f"wrote {config.out_dir / 'run_manifest.json'}")
    for pattern in metadata["unused_substitutions"]:
        print(f"unused substitution: {pattern}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
