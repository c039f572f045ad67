"""
Forensic Reporter CLI
=====================

Inspects a history directory directly, without the API server.

COMMANDS:
- scan:    Aggregate logs and report skipped/duplicate counts
- tree:    Project / package / file tree with rename links
- ops:     Dump one file's operation sequence
- replay:  Print the text right after operation INDEX
- focal:   Resolve the operation nearest to TIME
- deps:    List operation dependencies (text provenance, clipboard)

USAGE:
    python -m chronology.forensic [--history-dir DIR] [COMMAND] [ARGS]
"""
import argparse
import sys
from pathlib import Path
from typing import List, Optional

from .contracts.base import ReconstructionError, UnknownFileError, format_millis
from .engine import ChronologyConfig, ChronologyEngine
from .observability import configure_logging


def _engine(args) -> ChronologyEngine:
    config = ChronologyConfig.from_env()
    if args.history_dir:
        config.store.history_dir = Path(args.history_dir)
    if args.lenient:
        config.replay.strict = False
    configure_logging(args.log_level or config.log_level)
    engine = ChronologyEngine(config)
    engine.rebuild()
    return engine


def _describe(op) -> str:
    payload = op.payload
    kind = op.kind.value
    if kind == "edit":
        return (f"{payload.subtype.value:<6} @{payload.start_offset} "
                f"-{payload.deleted_text!r} +{payload.inserted_text!r}")
    if kind == "compound":
        return f"{payload.group_type or 'compound'} ({len(payload.children)} edits)"
    if kind == "copy":
        return f"@{payload.start_offset} {payload.copied_text!r}"
    if kind == "file":
        return payload.action.value
    if kind == "command":
        return payload.command_id
    counterpart = f" <-> {payload.identical_path}" if payload.identical_path else ""
    return f"{payload.target.value} {payload.change_kind.value} ({payload.side.value}){counterpart}"


def cmd_scan(args, engine: ChronologyEngine) -> int:
    report = engine.aggregator.last_report
    print(f"[*] Scanned {engine.store.history_dir}")
    print(f"    Files:      {report.files_scanned} ({report.files_decoded} decoded)")
    print(f"    Operations: {report.operations_routed} ({report.duplicate_operations} duplicates merged)")
    print(f"    Repairs:    {report.repairs}")
    for path in report.skipped_files:
        print(f"[WARN] Skipped {path}")
    if not report.success:
        print(f"[FAIL] {report.error.message}")
        return 1
    print("[PASS] Repository built.")
    return 0


def cmd_tree(args, engine: ChronologyEngine) -> int:
    projects = engine.list_projects()
    if not projects:
        print("[!] No recorded history.")
        return 0
    for project in projects:
        print(f"{project.name} [{format_millis(project.first_time)} .. {format_millis(project.last_time)}]")
        packages = engine.list_packages(project.name)
        for i, package in enumerate(packages):
            last_pkg = i == len(packages) - 1
            print(f"{'`-- ' if last_pkg else '|-- '}{package.name}")
            files = engine.list_files(project.name, package.name)
            for j, node in enumerate(files):
                connector = "`-- " if j == len(files) - 1 else "|-- "
                origin = node.predecessor()
                moved = f" (from {origin.key})" if origin else ""
                print(f"{'    ' if last_pkg else '|   '}{connector}{node.name} "
                      f"[{node.operation_count} ops]{moved}")
    return 0


def cmd_ops(args, engine: ChronologyEngine) -> int:
    ops = engine.operations(args.file_key, use_lineage=args.lineage)
    print("IDX | TIME                    | SEQ | KIND     | DETAIL")
    print("-" * 80)
    for i, op in enumerate(ops):
        print(f"{i:<3} | {format_millis(op.timestamp):<23} | {op.sequence_number:<3} | "
              f"{op.kind.value:<8} | {_describe(op)}")
    return 0


def cmd_replay(args, engine: ChronologyEngine) -> int:
    try:
        text = engine.reconstruct(args.file_key, args.index, use_lineage=args.lineage)
    except IndexError as e:
        print(f"[FAIL] {e}")
        return 1
    except ReconstructionError as e:
        print(f"[FAIL] {e}")
        return 1
    sys.stdout.write(text)
    if not text.endswith("\n"):
        sys.stdout.write("\n")
    return 0


def cmd_focal(args, engine: ChronologyEngine) -> int:
    event = engine.focal(args.file_key, args.time, use_lineage=args.lineage)
    if event is None:
        print("[!] No operations recorded for this file.")
        return 0
    print(f"Focal index {event.index} at {event.time} ({format_millis(event.time)})")
    if event.error is not None:
        print(f"[WARN] {event.error.message}")
    return 0


def cmd_deps(args, engine: ChronologyEngine) -> int:
    graph = engine.dependency_graph(args.file_key, use_lineage=args.lineage)
    print(f"[*] {graph.node_count} operations, {graph.edge_count} dependencies")
    for edge in graph.edges():
        kinds = ",".join(r.value for r in edge.relations)
        print(f"    {edge.source.identity_string()} -> {edge.target.identity_string()} [{kinds}]")
    return 0


COMMANDS = {
    "scan": cmd_scan,
    "tree": cmd_tree,
    "ops": cmd_ops,
    "replay": cmd_replay,
    "focal": cmd_focal,
    "deps": cmd_deps,
}


def _add_lineage_flags(parser: argparse.ArgumentParser) -> None:
    # None keeps the configured default
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--lineage", dest="lineage", action="store_true", default=None,
                       help="Follow renames/moves")
    group.add_argument("--no-lineage", dest="lineage", action="store_false", default=None,
                       help="Only the file's own operations")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Forensic Reporter")
    parser.add_argument("--history-dir", default=None, help="Path to history directory")
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    parser.add_argument("--lenient", action="store_true",
                        help="Do not check deleted text while replaying")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("scan", help="Aggregate and report")
    subparsers.add_parser("tree", help="Show project tree")

    for name, help_text in (("ops", "Dump operations"), ("deps", "Show dependencies")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("file_key")
        _add_lineage_flags(sub)

    replay_parser = subparsers.add_parser("replay", help="Reconstruct text")
    replay_parser.add_argument("file_key")
    replay_parser.add_argument("index", type=int)
    _add_lineage_flags(replay_parser)

    focal_parser = subparsers.add_parser("focal", help="Nearest operation to a time")
    focal_parser.add_argument("file_key")
    focal_parser.add_argument("time", type=int, help="Epoch milliseconds")
    _add_lineage_flags(focal_parser)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command not in COMMANDS:
        parser.print_help()
        return 2

    engine = _engine(args)
    try:
        return COMMANDS[args.command](args, engine)
    except UnknownFileError as e:
        print(f"[FAIL] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
