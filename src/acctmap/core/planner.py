"""Query planning and execution.

Every criterion whose target has a unique byte encoding is pushed to the node
as a memcmp filter next to the discriminator filter, so the transport returns
only accounts that already match. All criteria are still evaluated client-side
after fetch, which covers transports that ignore some or all filters.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from acctmap.core.decode import BufferTooShort
from acctmap.core.discriminator import AccountTypeMismatch, check_discriminator
from acctmap.core.match import Constraint, Criterion, Memcmp, compile_constraints, evaluate
from acctmap.core.schema import AccountTypeDescriptor, SchemaCatalog
from acctmap.core.transport import FetchedAccount, FiltersUnsupported, Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryRequest:
    program_id: str
    filters: tuple[Memcmp, ...]


@dataclass(frozen=True)
class MatchResult:
    address: str
    data: bytes


@dataclass(frozen=True)
class QueryResult:
    """Matches in transport order plus counts of accounts that were skipped.

    Attributes:
        matches: Accounts satisfying the discriminator and every criterion
        fetched: Number of accounts the transport returned
        type_mismatch: Accounts whose discriminator differs (AccountTypeMismatch)
        too_short: Accounts too small to hold a constrained field (BufferTooShort)
        rejected: Accounts that decoded but failed a criterion
        remote_filtered: False when the fetch had to fall back to no filters
        skipped_addresses: (address, reason) for each skipped account, in order
    """

    matches: tuple[MatchResult, ...]
    fetched: int = 0
    type_mismatch: int = 0
    too_short: int = 0
    rejected: int = 0
    remote_filtered: bool = True
    skipped_addresses: tuple[tuple[str, str], ...] = ()

    @property
    def skipped(self) -> int:
        return self.type_mismatch + self.too_short


def plan(
    program_id: str, descriptor: AccountTypeDescriptor, criteria: Sequence[Criterion]
) -> QueryRequest:
    filters = [Memcmp(0, descriptor.discriminator)]
    for c in criteria:
        m = c.memcmp()
        if m is None:
            logger.debug("constraint %s evaluated after fetch only", c.path)
            continue
        filters.append(m)
    return QueryRequest(program_id=program_id, filters=tuple(filters))


def execute(
    transport: Transport,
    request: QueryRequest,
    descriptor: AccountTypeDescriptor,
    criteria: Sequence[Criterion],
) -> QueryResult:
    remote_filtered = True
    try:
        accounts = transport.fetch_program_accounts(request.program_id, request.filters)
    except FiltersUnsupported as e:
        logger.warning("remote filters rejected (%s); fetching all accounts of %s", e, request.program_id)
        remote_filtered = False
        accounts = transport.fetch_program_accounts(request.program_id, ())
    return _select(accounts, descriptor, criteria, remote_filtered)


def _select(
    accounts: Iterable[FetchedAccount],
    descriptor: AccountTypeDescriptor,
    criteria: Sequence[Criterion],
    remote_filtered: bool,
) -> QueryResult:
    matches: list[MatchResult] = []
    skipped: list[tuple[str, str]] = []
    fetched = type_mismatch = too_short = rejected = 0
    for acc in accounts:
        fetched += 1
        data = bytes(acc.data)
        try:
            check_discriminator(data, descriptor)
            ok = evaluate(data, criteria)
        except AccountTypeMismatch as e:
            type_mismatch += 1
            skipped.append((acc.address, str(e)))
            continue
        except BufferTooShort as e:
            too_short += 1
            skipped.append((acc.address, str(e)))
            continue
        if ok:
            matches.append(MatchResult(acc.address, data))
        else:
            rejected += 1

    if type_mismatch or too_short:
        logger.info(
            "skipped %d account(s): %d type mismatch, %d too short",
            type_mismatch + too_short,
            type_mismatch,
            too_short,
        )
    return QueryResult(
        matches=tuple(matches),
        fetched=fetched,
        type_mismatch=type_mismatch,
        too_short=too_short,
        rejected=rejected,
        remote_filtered=remote_filtered,
        skipped_addresses=tuple(skipped),
    )


def search(
    transport: Transport,
    catalog: SchemaCatalog,
    program_id: str,
    account_name: str,
    constraints: Iterable[Constraint] = (),
) -> QueryResult:
    """Find accounts of `account_name` owned by `program_id` matching every constraint.

    Configuration errors (SchemaError, UnknownField, ValueParseError) are raised
    before the transport is called.
    """
    descriptor = catalog.get_descriptor(account_name)
    criteria = compile_constraints(descriptor, constraints)
    request = plan(program_id, descriptor, criteria)
    logger.info(
        "searching %s accounts with %d constraint(s), %d remote filter(s)",
        account_name,
        len(criteria),
        len(request.filters),
    )
    return execute(transport, request, descriptor, criteria)
