"""Offline curriculum validator: skill references, prerequisite cycles and dangling prerequisites."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from curriculum import CurriculumConfigError, CurriculumGraph
from skill_catalog import DEFAULT_CATALOG, SkillCatalog, SkillCatalogError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--curriculum",
        type=str,
        default=None,
        help="Path to a JSON or YAML curriculum (default: built-in curriculum)",
    )
    parser.add_argument(
        "--catalog",
        type=str,
        default=None,
        help="Optional JSON or YAML skill catalog (default: built-in catalog)",
    )
    parser.add_argument(
        "--allow-missing",
        action="store_true",
        help="Report unresolved prerequisite ids without failing",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Optional path to write the JSON report",
    )
    return parser


def _write_output(report: dict, output_path: str | None) -> None:
    payload = json.dumps(report, indent=2, ensure_ascii=False)
    if output_path:
        Path(output_path).write_text(payload + "\n", encoding="utf-8")
    print(payload)


def build_report(graph: CurriculumGraph, catalog: SkillCatalog) -> Dict[str, Any]:
    used = {skill for topic in graph for skill in topic.skills}
    return {
        "topics": len(graph),
        "skills": len(catalog),
        "clusters": [cluster.cluster_id for cluster in graph.clusters()],
        "foundational_topics": graph.foundational_topics(),
        "cycles": graph.find_cycles(),
        "missing_prerequisites": graph.missing_prerequisites(),
        "unused_skills": [skill for skill in catalog if skill not in used],
    }


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        catalog = SkillCatalog.from_file(args.catalog) if args.catalog else DEFAULT_CATALOG
    except (OSError, ValueError, SkillCatalogError) as exc:
        print(f"Skill catalog is invalid: {exc}", file=sys.stderr)
        return 2

    try:
        if args.curriculum:
            graph = CurriculumGraph.from_file(args.curriculum, catalog=catalog)
        else:
            graph = CurriculumGraph.default(catalog=catalog)
    except (OSError, ValueError, CurriculumConfigError) as exc:
        print(f"Curriculum is invalid: {exc}", file=sys.stderr)
        return 2

    report = build_report(graph, catalog)

    failures: List[str] = []
    for cycle in report["cycles"]:
        failures.append("Prerequisite cycle: " + " -> ".join(cycle + cycle[:1]))
    for topic_id, missing in report["missing_prerequisites"].items():
        message = f"Topic '{topic_id}' lists unknown prerequisites: {', '.join(missing)}"
        if args.allow_missing:
            print(f"Warning: {message}", file=sys.stderr)
        else:
            failures.append(message)

    for message in failures:
        print(message, file=sys.stderr)

    print(f"Topics: {report['topics']}")
    print(f"Skills: {report['skills']}")
    print(f"Cycles: {len(report['cycles'])}")
    _write_output(report, args.output)
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
