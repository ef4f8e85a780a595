"""Console and JSON rendering of search results."""

from __future__ import annotations

import base64
import json
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.text import Text

from acctmap.core.decode import BufferTooShort, decode_all, format_value, to_json
from acctmap.core.frequency import FrequencyTable
from acctmap.core.planner import MatchResult, QueryResult
from acctmap.core.schema import AccountTypeDescriptor


def render_matches(
    console: Console, result: QueryResult, descriptor: AccountTypeDescriptor, limit: int
) -> None:
    matches = result.matches
    if not matches:
        console.print(f"No {descriptor.name} accounts found matching the criteria.")
    else:
        shown = matches[:limit]
        console.print(f"Found {len(matches)} {descriptor.name} account(s):")
        table = Table()
        table.add_column("#", justify="right", style="dim")
        table.add_column("Pubkey", style="cyan", no_wrap=True)
        table.add_column("Data Length", justify="right")
        for i, m in enumerate(shown, start=1):
            table.add_row(str(i), m.address, f"{len(m.data)} bytes")
        console.print(table)
        if len(matches) > len(shown):
            console.print(f"Showing {len(shown)} of {len(matches)} accounts found.")

    if result.skipped:
        console.print(
            Text(
                f"Skipped {result.skipped} account(s): "
                f"{result.type_mismatch} type mismatch, {result.too_short} too short",
                style="yellow",
            )
        )
    if not result.remote_filtered:
        console.print(Text("Node rejected remote filters; matched client-side.", style="yellow"))


def render_frequency(console: Console, path: str, table: FrequencyTable, top: int) -> None:
    if not table:
        console.print(f"No values to analyze for '{path}'.")
        return
    console.print(f"Top {min(top, len(table))} most common values for '{path}':")
    out = Table()
    out.add_column("Value", style="cyan")
    out.add_column("Count", justify="right")
    for value, count in table[:top]:
        out.add_row(format_value(value), str(count))
    console.print(out)


def matches_document(
    matches: Sequence[MatchResult], descriptor: AccountTypeDescriptor
) -> dict:
    accounts = []
    for m in matches:
        try:
            fields = to_json(decode_all(m.data, descriptor))
        except BufferTooShort:
            fields = None
        accounts.append(
            {
                "pubkey": m.address,
                "data": base64.b64encode(m.data).decode("ascii"),
                "data_length": len(m.data),
                "fields": fields,
            }
        )
    return {"account_type": descriptor.name, "count": len(accounts), "accounts": accounts}


def write_matches_json(
    path: Path, matches: Sequence[MatchResult], descriptor: AccountTypeDescriptor
) -> None:
    doc = matches_document(matches, descriptor)
    path.write_text(json.dumps(doc, indent=2) + "\n", encoding="utf-8")
