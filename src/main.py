"""
kinmap command line.

1) Import GEDCOM files into the local SQLite database (or export it back).
2) Lay out the tree around a root person and write it as JSON for a canvas renderer.
3) Plot the laid-out tree with matplotlib.
4) Validate the data for cycles, impossible ages and ambiguous birth families.
5) Export and restore JSON backups.
6) Search persons by name or place.
"""

import argparse
import json
import logging
import os
from pathlib import Path
import sys

from autolayout import ENGINES, auto_arrange
from backup import dumps_backup, export_backup, import_backup, loads_backup
from database import FamilyStore
from gedcom import export_database, import_gedcom
from layout import DESKTOP, PROFILES, LayoutResult, generate_tree_layout
from models import ORIENTATIONS
from parsing import extract_year
from plotting import plot_layout, to_render_graph
from relations import search_persons
from validation import validate_tree


logger = logging.getLogger("kinmap")

DEFAULT_DB = "family_tree.db"
MAX_WARNINGS_SHOWN = 10


def _layout(store: FamilyStore, args) -> LayoutResult:
    orientation = args.orientation or store.get_settings().layout_orientation
    result = generate_tree_layout(
        store.get_all_persons(),
        store.get_all_families(),
        root_person_id=args.root,
        orientation=orientation,
        profile=args.profile,
        compact_couples=args.couples,
    )
    if args.auto_arrange and result.nodes:
        nodes = auto_arrange(result.nodes, result.edges, orientation, args.profile, args.engine)
        result = LayoutResult(nodes=nodes, edges=result.edges)
    return result


def cmd_import_gedcom(store: FamilyStore, args) -> int:
    print(f"Parsing GEDCOM file: {args.path}")
    result = import_gedcom(store, args.path.read_text(encoding="utf-8-sig"))
    print(f"  Imported {result.persons} persons and {result.families} families")
    return 0


def cmd_export_gedcom(store: FamilyStore, args) -> int:
    args.path.write_text(export_database(store), encoding="utf-8")
    print(f"GEDCOM saved to {args.path}")
    return 0


def cmd_layout(store: FamilyStore, args) -> int:
    result = _layout(store, args)
    text = json.dumps(to_render_graph(result.nodes, result.edges), indent=2)
    if args.output:
        args.output.write_text(text, encoding="utf-8")
        print(f"Layout with {len(result.nodes)} nodes and {len(result.edges)} edges saved to {args.output}")
    else:
        print(text)
    return 0


def cmd_plot(store: FamilyStore, args) -> int:
    result = _layout(store, args)
    if not result.nodes:
        print("Nothing to plot: the database has no persons")
        return 1
    plot_layout(result.nodes, result.edges, args.profile, args.output)
    return 0


def cmd_validate(store: FamilyStore, args) -> int:
    print("Validating family tree...")
    warnings = validate_tree(store.get_all_persons(), store.get_all_families())
    if not warnings:
        print("  No validation issues found")
        return 0

    print(f"  Found {len(warnings)} validation warnings:")
    shown = warnings if args.all else warnings[:MAX_WARNINGS_SHOWN]
    for w in shown:
        print(f"    - {w}")
    if len(warnings) > len(shown):
        print(f"    ... and {len(warnings) - len(shown)} more")
    return 1


def cmd_search(store: FamilyStore, args) -> int:
    matches = search_persons(store.get_all_persons(), args.query)
    print(f"Found {len(matches)} persons matching '{args.query}'")
    for person in matches:
        born = extract_year(person.birth.date) if person.birth else None
        print(f"  {person.id}  {person.full_name}" + (f" (b. {born})" if born else ""))
    return 0


def cmd_backup_export(store: FamilyStore, args) -> int:
    args.path.write_text(dumps_backup(export_backup(store)), encoding="utf-8")
    print(f"Backup saved to {args.path}")
    return 0


def cmd_backup_import(store: FamilyStore, args) -> int:
    result = import_backup(store, loads_backup(args.path.read_text(encoding="utf-8")))
    print(f"Restored {result.persons} persons, {result.families} families and {result.trees} trees")
    return 0


def cmd_clear(store: FamilyStore, args) -> int:
    if not args.yes:
        print("Refusing to delete all data without --yes")
        return 1
    store.clear_all()
    print("Deleted all persons, families and trees")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kinmap", description="Local family tree editor core.")
    parser.add_argument(
        "--db",
        type=Path,
        default=Path(os.environ.get("KINMAP_DB", DEFAULT_DB)),
        help="SQLite database file (default: $KINMAP_DB or family_tree.db)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import-gedcom", help="Import a GEDCOM file")
    p.add_argument("path", type=Path)
    p.set_defaults(func=cmd_import_gedcom)

    p = sub.add_parser("export-gedcom", help="Export everything as GEDCOM")
    p.add_argument("path", type=Path)
    p.set_defaults(func=cmd_export_gedcom)

    for name, func, help_text in (
        ("layout", cmd_layout, "Write the laid-out tree as JSON"),
        ("plot", cmd_plot, "Plot the laid-out tree to an image"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--root", help="Root person id (default: first person)")
        p.add_argument("--orientation", choices=ORIENTATIONS, help="Default: the saved setting")
        p.add_argument("--profile", choices=PROFILES, default=DESKTOP)
        p.add_argument("--no-couples", dest="couples", action="store_false", help="Never merge couples")
        p.add_argument("--auto-arrange", action="store_true", help="Re-position with a layered layout")
        p.add_argument("--engine", choices=ENGINES, default=ENGINES[0])
        if name == "plot":
            p.add_argument("output", type=Path, nargs="?", help="Image file (default: show a window)")
        else:
            p.add_argument("-o", "--output", type=Path, help="JSON file (default: stdout)")
        p.set_defaults(func=func)

    p = sub.add_parser("validate", help="Report data problems")
    p.add_argument("--all", action="store_true", help="Show every warning")
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("search", help="Find persons by name or place")
    p.add_argument("query")
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("backup-export", help="Write a JSON backup")
    p.add_argument("path", type=Path)
    p.set_defaults(func=cmd_backup_export)

    p = sub.add_parser("backup-import", help="Restore a JSON backup")
    p.add_argument("path", type=Path)
    p.set_defaults(func=cmd_backup_import)

    p = sub.add_parser("clear", help="Permanently delete all data")
    p.add_argument("--yes", action="store_true")
    p.set_defaults(func=cmd_clear)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    store = FamilyStore.open(args.db)
    try:
        return args.func(store, args)
    except (ValueError, LookupError, OSError) as e:
        logger.error("%s", e)
        return 2
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
