"""
SPECGRAPH MAIN - Entry Point and CLI

Commands:
    init      - Create graph.json and a root feature
    validate  - Full validation report (exit 1 when invalid)
    nodes     - List node summaries
    node      - Print one node document
    edges     - List every edge
    search    - Case-insensitive text search
    subgraph  - A grouping node and everything it contains
    effective - Effective constraints for a node
    deps      - depends_on context (--full for the cross-referenced view)
    affecting - Every upstream node affecting a node, with reasons

Usage:
    python main.py init --root-id APP --title "My App"
    python main.py validate --strict
    python main.py effective AUTH-01
    python main.py deps AUTH-01 --full
    python main.py --repo ../other-repo --directory spec affecting AUTH-01

Output is JSON on stdout. Errors are printed to stderr and exit with status 1.
"""
import sys
from pathlib import Path
from typing import Any, List, Optional

import msgspec

# Add the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from infrastructure.config import load_config
from infrastructure.logger import configure_logging
from infrastructure.schema_registry import SchemaFetchError
from infrastructure.storage import StorageError
from specgraph.store import SpecGraphError
from specgraph.workspace import SpecGraphWorkspace


def _emit(result: Any) -> None:
    sys.stdout.write(msgspec.json.format(msgspec.json.encode(result), indent=2).decode() + "\n")


def cmd_init(ws: SpecGraphWorkspace, args) -> int:
    _emit(ws.init_specgraph(
        root_id=args.root_id,
        title=args.title,
        description=args.description,
        specgraph_version=args.specgraph_version,
    ))
    return 0


def cmd_validate(ws: SpecGraphWorkspace, args) -> int:
    result = ws.validate_specgraph(strict=True if args.strict else None)
    _emit(result)
    return 0 if result.valid else 1


def cmd_nodes(ws: SpecGraphWorkspace, args) -> int:
    _emit(ws.list_nodes())
    return 0


def cmd_node(ws: SpecGraphWorkspace, args) -> int:
    _emit(ws.get_node(args.node_id))
    return 0


def cmd_edges(ws: SpecGraphWorkspace, args) -> int:
    _emit(ws.list_edges())
    return 0


def cmd_search(ws: SpecGraphWorkspace, args) -> int:
    _emit(ws.search_nodes(args.query))
    return 0


def cmd_subgraph(ws: SpecGraphWorkspace, args) -> int:
    _emit(ws.get_group_subgraph(args.node_id))
    return 0


def cmd_effective(ws: SpecGraphWorkspace, args) -> int:
    _emit(ws.get_effective_constraints(args.node_id))
    return 0


def cmd_deps(ws: SpecGraphWorkspace, args) -> int:
    if args.full:
        _emit(ws.list_dependencies_full(args.node_id))
    else:
        _emit(ws.list_dependencies(args.node_id))
    return 0


def cmd_affecting(ws: SpecGraphWorkspace, args) -> int:
    _emit(ws.get_affecting_nodes(args.node_id))
    return 0


def build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        description="SpecGraph - specification graph engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--repo", default=".", help="Repository root (default: current directory)")
    parser.add_argument("--directory", help="Graph directory relative to the repository root")
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True, help="Available commands")

    init_parser = subparsers.add_parser("init", help="Initialize a spec graph")
    init_parser.add_argument("--root-id", default="ROOT", help="Root feature id")
    init_parser.add_argument("--title", default="Root Feature", help="Root feature title")
    init_parser.add_argument(
        "--description", default="Top-level feature for this spec graph.", help="Root feature description"
    )
    init_parser.add_argument("--specgraph-version", help="specgraphVersion written to graph.json")
    init_parser.set_defaults(func=cmd_init)

    validate_parser = subparsers.add_parser("validate", help="Validate the spec graph")
    validate_parser.add_argument("--strict", action="store_true", help="Missing pins are errors")
    validate_parser.set_defaults(func=cmd_validate)

    subparsers.add_parser("nodes", help="List nodes").set_defaults(func=cmd_nodes)
    subparsers.add_parser("edges", help="List edges").set_defaults(func=cmd_edges)

    node_parser = subparsers.add_parser("node", help="Show one node")
    node_parser.add_argument("node_id")
    node_parser.set_defaults(func=cmd_node)

    search_parser = subparsers.add_parser("search", help="Search nodes")
    search_parser.add_argument("query")
    search_parser.set_defaults(func=cmd_search)

    subgraph_parser = subparsers.add_parser("subgraph", help="Show a grouping node's subgraph")
    subgraph_parser.add_argument("node_id")
    subgraph_parser.set_defaults(func=cmd_subgraph)

    effective_parser = subparsers.add_parser("effective", help="Effective constraints for a node")
    effective_parser.add_argument("node_id")
    effective_parser.set_defaults(func=cmd_effective)

    deps_parser = subparsers.add_parser("deps", help="depends_on context for a node")
    deps_parser.add_argument("node_id")
    deps_parser.add_argument("--full", action="store_true", help="Transitive, cross-referenced view")
    deps_parser.set_defaults(func=cmd_deps)

    affecting_parser = subparsers.add_parser("affecting", help="Upstream nodes affecting a node")
    affecting_parser.add_argument("node_id")
    affecting_parser.set_defaults(func=cmd_affecting)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with subcommands. Returns the process exit status."""
    args = build_parser().parse_args(argv)

    config = load_config(args.repo)
    configure_logging(args.log_level or config.log_level)

    try:
        ws = SpecGraphWorkspace(args.repo, directory=args.directory, config=config)
        return args.func(ws, args)
    except (SpecGraphError, StorageError, SchemaFetchError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
