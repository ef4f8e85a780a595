from __future__ import annotations

import logging
from collections.abc import Iterable

from acctmap.core.decode import BufferTooShort, DecodedValue, decode_field
from acctmap.core.paths import resolve
from acctmap.core.planner import MatchResult
from acctmap.core.schema import AccountTypeDescriptor

logger = logging.getLogger(__name__)

FrequencyTable = tuple[tuple[DecodedValue, int], ...]


def tally(
    matches: Iterable[MatchResult], descriptor: AccountTypeDescriptor, path: str
) -> FrequencyTable:
    """Count decoded values of `path` across matches.

    Returns (value, count) pairs by count descending; equal counts keep the
    order in which each value was first seen. Raises UnknownField for a bad
    path. Accounts too short to hold the field are left out of the counts.
    """
    field = resolve(descriptor, path)
    counts: dict[DecodedValue, int] = {}
    short = 0
    for m in matches:
        try:
            value = decode_field(m.data, field.offset, field.width, field.field_type)
        except BufferTooShort:
            short += 1
            continue
        counts[value] = counts.get(value, 0) + 1
    if short:
        logger.info("%d account(s) too short to read %s", short, path)
    # dicts keep insertion order and sorted() is stable
    return tuple(sorted(counts.items(), key=lambda kv: kv[1], reverse=True))
