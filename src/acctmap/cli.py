from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from acctmap.core.config import ConfigError, load_settings
from acctmap.core.frequency import tally
from acctmap.core.match import Constraint, ValueParseError, compile_constraints
from acctmap.core.output import render_frequency, render_matches, write_matches_json
from acctmap.core.paths import UnknownField, resolve
from acctmap.core.planner import execute, plan
from acctmap.core.schema import SchemaError, load_catalog
from acctmap.core.transport import RpcTransport, Transport, TransportError

logger = logging.getLogger("acctmap")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acctmap",
        description="Search a program's accounts by decoded field values using its IDL",
    )
    parser.add_argument("-i", "--idl", required=True, help="Path to the IDL JSON/YAML file")
    parser.add_argument("-p", "--program", required=True, help="Program ID owning the accounts")
    parser.add_argument("-n", "--name", required=True, help="Account type name to search")
    parser.add_argument(
        "-P", "--path", dest="paths", action="append", default=[],
        help="Field path to constrain (repeatable, e.g. pricing.tradeImpactFeeScalar)",
    )
    parser.add_argument(
        "-k", "--value", dest="values", action="append", default=[],
        help="Value for the matching --path (order must match)",
    )
    parser.add_argument("-s", "--interest", help="Field path whose values to tally across matches")
    parser.add_argument("-o", "--output", help="Write all matches with decoded fields to this JSON file")
    parser.add_argument("--limit", type=int, help="Maximum accounts to display")
    parser.add_argument("--top", type=int, help="Maximum values to show for --interest")
    parser.add_argument("-r", "--rpc", help="RPC URL (overrides config and SOL_RPC_URL)")
    parser.add_argument("--config", help="Path to config YAML")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def main(argv: list[str] | None = None, *, transport: Transport | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    for flag, v in (("--limit", args.limit), ("--top", args.top)):
        if v is not None and v < 0:
            print(f"acctmap: {flag} must be a non-negative integer", file=sys.stderr)
            return 2

    if len(args.paths) != len(args.values):
        print("acctmap: the number of --path and --value arguments must match", file=sys.stderr)
        return 2

    idl_path = Path(args.idl)
    if not idl_path.exists():
        print(f"acctmap: file not found: {args.idl}", file=sys.stderr)
        return 2

    # Everything the caller configured is validated before the node is contacted
    try:
        settings = load_settings(Path(args.config) if args.config else None)
        catalog = load_catalog(idl_path.read_text(encoding="utf-8"))
        descriptor = catalog.get_descriptor(args.name)
        constraints = [Constraint(p, v) for p, v in zip(args.paths, args.values)]
        criteria = compile_constraints(descriptor, constraints)
        if args.interest:
            resolve(descriptor, args.interest)
    except (ConfigError, SchemaError, UnknownField, ValueParseError) as e:
        print(f"acctmap: {e}", file=sys.stderr)
        return 2

    limit = args.limit if args.limit is not None else settings.display_limit
    top = args.top if args.top is not None else settings.top
    request = plan(args.program, descriptor, criteria)
    console = Console()

    owned = None
    if transport is None:
        rpc_url = args.rpc or settings.rpc_url
        logger.debug("using RPC %s (timeout %ss)", rpc_url, settings.timeout)
        owned = transport = RpcTransport(rpc_url, timeout=settings.timeout)
    try:
        console.print(
            f"Searching for {args.name} accounts with {len(criteria)} constraint(s)..."
        )
        result = execute(transport, request, descriptor, criteria)
    except TransportError as e:
        print(f"acctmap: {e}", file=sys.stderr)
        return 1
    finally:
        if owned is not None:
            owned.close()

    render_matches(console, result, descriptor, limit)
    if args.output:
        write_matches_json(Path(args.output), result.matches, descriptor)
        console.print(f"Full results written to {args.output}")
    elif len(result.matches) > limit:
        console.print("To see all accounts, use --output to save results to a file.")

    if args.interest:
        render_frequency(console, args.interest, tally(result.matches, descriptor, args.interest), top)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
