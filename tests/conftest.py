from __future__ import annotations

import json
from collections.abc import Sequence

import pytest

from acctmap.core.decode import encode_value
from acctmap.core.match import Memcmp, parse_value
from acctmap.core.paths import resolve
from acctmap.core.schema import AccountTypeDescriptor, SchemaCatalog, load_catalog
from acctmap.core.transport import FetchedAccount, FiltersUnsupported

PROGRAM_ID = "PERPHjGBqRHArX4DySjwM6UJHiR3sWAatqfdBS2qQJu"
USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
WSOL = "So11111111111111111111111111111111111111112"
TOKEN_ACCOUNT = "BUvduFTd2sWFagCunBPLupG8fBTJqweLw9DuhruNFSCm"

# Custody body layout (offsets relative to the end of the discriminator):
#   pool 0, mint 32, tokenAccount 64, decimals 96, isStable 97,
#   oracle 98 (45 bytes), pricing 143 (24 bytes), ratios 167 (8 bytes),
#   fundingRate 175, totalShares 183, weight 199 -> body 203, account 211
IDL = {
    "version": "0.1.0",
    "name": "perpetuals",
    "accounts": [
        {
            "name": "Custody",
            "type": {
                "kind": "struct",
                "fields": [
                    {"name": "pool", "type": "publicKey"},
                    {"name": "mint", "type": "publicKey"},
                    {"name": "tokenAccount", "type": "publicKey"},
                    {"name": "decimals", "type": "u8"},
                    {"name": "isStable", "type": "bool"},
                    {"name": "oracle", "type": {"defined": "OracleParams"}},
                    {"name": "pricing", "type": {"defined": "PricingParams"}},
                    {"name": "ratios", "type": {"array": ["u16", 4]}},
                    {"name": "fundingRate", "type": "i64"},
                    {"name": "totalShares", "type": "u128"},
                    {"name": "weight", "type": "f32"},
                ],
            },
        },
        {
            "name": "PositionRequest",
            "type": {
                "kind": "struct",
                "fields": [
                    {"name": "owner", "type": "publicKey"},
                    {"name": "sizeUsd", "type": "u64"},
                    {"name": "side", "type": "u8"},
                ],
            },
        },
        {
            "name": "Pool",
            "type": {
                "kind": "struct",
                "fields": [
                    {"name": "authority", "type": "publicKey"},
                    {"name": "bump", "type": "u8"},
                    {"name": "name", "type": "string"},
                    {"name": "custodies", "type": {"vec": "publicKey"}},
                    {"name": "aumUsd", "type": "u128"},
                ],
            },
        },
    ],
    "types": [
        {
            "name": "OracleType",
            "type": {
                "kind": "enum",
                "variants": [{"name": "None"}, {"name": "Test"}, {"name": "Pyth"}],
            },
        },
        {
            "name": "OracleParams",
            "type": {
                "kind": "struct",
                "fields": [
                    {"name": "oracleAccount", "type": "publicKey"},
                    {"name": "oracleType", "type": {"defined": "OracleType"}},
                    {"name": "maxPriceError", "type": "u64"},
                    {"name": "maxPriceAgeSec", "type": "u32"},
                ],
            },
        },
        {
            "name": "PricingParams",
            "type": {
                "kind": "struct",
                "fields": [
                    {"name": "tradeImpactFeeScalar", "type": "u64"},
                    {"name": "maxLeverage", "type": "u64"},
                    {"name": "buffer", "type": "f64"},
                ],
            },
        },
    ],
}


@pytest.fixture
def idl_text() -> str:
    return json.dumps(IDL)


@pytest.fixture
def catalog(idl_text: str) -> SchemaCatalog:
    return load_catalog(idl_text)


@pytest.fixture
def custody(catalog: SchemaCatalog) -> AccountTypeDescriptor:
    return catalog.get_descriptor("Custody")


@pytest.fixture
def build_account():
    """Return a builder for account buffers with fields set from text values."""

    def build(
        descriptor: AccountTypeDescriptor,
        fields: dict[str, str] | None = None,
        *,
        size: int | None = None,
        tag: bytes | None = None,
    ) -> bytes:
        buf = bytearray(descriptor.size)
        buf[:8] = descriptor.discriminator if tag is None else tag
        for path, text in (fields or {}).items():
            f = resolve(descriptor, path)
            buf[f.offset : f.offset + f.width] = encode_value(parse_value(text, f.field_type))
        return bytes(buf[: descriptor.size if size is None else size])

    return build


class FakeTransport:
    """In-memory node that applies memcmp filters unless told otherwise."""

    def __init__(
        self,
        accounts: Sequence[FetchedAccount],
        *,
        apply_filters: bool = True,
        reject_filters: bool = False,
    ) -> None:
        self.accounts = list(accounts)
        self.apply_filters = apply_filters
        self.reject_filters = reject_filters
        self.calls: list[tuple[str, tuple[Memcmp, ...]]] = []

    def fetch_program_accounts(
        self, program_id: str, filters: Sequence[Memcmp]
    ) -> list[FetchedAccount]:
        self.calls.append((program_id, tuple(filters)))
        if filters and self.reject_filters:
            raise FiltersUnsupported("getProgramAccounts: filters are not supported")
        if not self.apply_filters:
            return list(self.accounts)
        return [
            a
            for a in self.accounts
            if all(a.data[f.offset : f.offset + len(f.data)] == f.data for f in filters)
        ]


@pytest.fixture
def fake_transport():
    return FakeTransport
