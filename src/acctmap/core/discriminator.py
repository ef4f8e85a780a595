"""Account discriminators: the 8-byte type tag leading every account."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from acctmap.core.schema import AccountTypeDescriptor

DISCRIMINATOR_LEN = 8


class AccountTypeMismatch(ValueError):
    """Raised when an account's leading bytes do not carry the expected tag."""


def discriminator(account_name: str) -> bytes:
    """Return the first 8 bytes of sha256("account:<name>")."""
    digest = hashlib.sha256(f"account:{account_name}".encode("utf-8")).digest()
    return digest[:DISCRIMINATOR_LEN]


def check_discriminator(buffer: bytes, descriptor: AccountTypeDescriptor) -> None:
    head = bytes(buffer[:DISCRIMINATOR_LEN])
    if head != descriptor.discriminator:
        raise AccountTypeMismatch(
            f"expected {descriptor.name} discriminator {descriptor.discriminator.hex()}, "
            f"got {head.hex() or 'empty buffer'}"
        )
