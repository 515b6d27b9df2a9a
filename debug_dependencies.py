#!/usr/bin/env python3
"""Debug package applicability (dependency trees against local facts)."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from services.catalog import CatalogEntry, CatalogError, FileCatalog, parse_package_descriptor
from services.dependencies import Probe, SubprocessProbe, evaluate_roots, explain
from services.facts import FactSnapshot, collect_local_facts


def _load_facts(args: argparse.Namespace) -> FactSnapshot:
    if not args.facts_json:
        return collect_local_facts()
    with open(args.facts_json, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError("facts JSON must be an object of key -> value or list of values")
    return FactSnapshot.from_mapping(data)


def _load_entries(args: argparse.Namespace) -> list[CatalogEntry]:
    if args.descriptor:
        text = Path(args.descriptor).read_text(encoding="utf-8")
        return [parse_package_descriptor(text)]
    return FileCatalog(args.catalog).load()


def _make_probe(args: argparse.Namespace) -> Probe:
    if args.probe_rc is None:
        return SubprocessProbe()
    fixed = args.probe_rc

    def _fixed_probe(command: str) -> int:
        print(f"    (probe skipped, assuming rc={fixed}) {command}")
        return fixed

    return _fixed_probe


def _report_entry(entry: CatalogEntry, facts: FactSnapshot, probe: Probe, args: argparse.Namespace) -> dict[str, Any]:
    package = entry.package
    applicable = evaluate_roots(entry.dependencies, facts, strict=args.strict, probe=probe)
    print(f"{package.id} {package.version} [{package.category}] {package.title}")
    if args.verbose:
        for root in entry.dependencies:
            for line in explain(root, facts, strict=args.strict, probe=probe):
                print(f"  {line}")
    print(f"  => {'APPLICABLE' if applicable else 'not applicable'}")
    return {
        "id": package.id,
        "title": package.title,
        "version": package.version,
        "category": package.category,
        "applicable": applicable,
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Evaluate package dependency trees against this machine.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--descriptor", help="Path to a single package descriptor XML")
    source.add_argument("--catalog", help="Catalog folder with descriptor XML files")
    parser.add_argument("--facts-json", help="Evaluate against facts from a JSON file instead of this machine")
    parser.add_argument("--dump-facts", action="store_true", help="Print the collected facts and exit")
    parser.add_argument("--strict", action="store_true", help="Treat unknown dependency keys as not met")
    parser.add_argument("--probe-rc", type=int, help="Do not run external detection commands; assume this exit code")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print the verdict of every dependency node")
    parser.add_argument("--output-json", help="Write results to a JSON file")
    args = parser.parse_args()

    try:
        facts = _load_facts(args)
    except (OSError, ValueError) as exc:
        print(f"Unable to load facts: {exc}", file=sys.stderr)
        return 2
    if args.dump_facts:
        print(json.dumps(facts.to_dict(), indent=2))
        return 0
    try:
        entries = _load_entries(args)
    except (OSError, CatalogError) as exc:
        print(f"Unable to load packages: {exc}", file=sys.stderr)
        return 2

    probe = _make_probe(args)
    results = [_report_entry(entry, facts, probe, args) for entry in entries]
    applicable = sum(1 for item in results if item["applicable"])
    print(f"\n{applicable}/{len(results)} package(s) applicable.")
    if args.output_json:
        with open(args.output_json, "w", encoding="utf-8") as handle:
            json.dump({"facts": facts.to_dict(), "packages": results}, handle, indent=2)
    return 0


if __name__ == "__main__":
    sys.exit(main())
