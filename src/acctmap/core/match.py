"""Type-aware constraint matching against raw account buffers.

A constraint is compiled once into a Criterion: its path is resolved against
the account layout and its text value parsed into the field's type. The same
Criterion serves both the remote query (as a memcmp filter, when the target
has a unique byte encoding) and the client-side check after fetch.
"""

from __future__ import annotations

import logging
import math
import re
import struct
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import base58

from acctmap.core.decode import BufferTooShort, DecodedValue, decode_field, encode_value
from acctmap.core.paths import ResolvedField, resolve
from acctmap.core.schema import AccountTypeDescriptor, FieldType

logger = logging.getLogger(__name__)


class ValueParseError(ValueError):
    """Raised when constraint text cannot be read as the field's type."""


@dataclass(frozen=True)
class Constraint:
    path: str
    value: str


@dataclass(frozen=True)
class Memcmp:
    """Remote filter: `account[offset:offset + len(data)] == data`."""

    offset: int
    data: bytes


_INT_PREFIX = re.compile(r"^[+-]?0[xob]", re.IGNORECASE)


def _parse_int(text: str, field_type: FieldType) -> int:
    s = text.strip().replace("_", "")
    try:
        val = int(s, 0) if _INT_PREFIX.match(s) else int(s, 10)
    except ValueError:
        raise ValueParseError(f"'{text}' is not a valid {field_type.value}") from None
    bits = field_type.width * 8
    lo, hi = (-(1 << (bits - 1)), (1 << (bits - 1)) - 1) if field_type.signed else (0, (1 << bits) - 1)
    if not lo <= val <= hi:
        raise ValueParseError(f"{val} is out of range for {field_type.value} [{lo}, {hi}]")
    return val


def _parse_float(text: str, field_type: FieldType) -> float:
    try:
        val = float(text.strip())
    except ValueError:
        raise ValueParseError(f"'{text}' is not a valid {field_type.value}") from None
    if field_type is FieldType.F32:
        # Round to the nearest f32 so comparison against decoded f32 values is exact
        try:
            val = struct.unpack("<f", struct.pack("<f", val))[0]
        except (OverflowError, struct.error):
            raise ValueParseError(f"'{text}' does not fit in f32") from None
    return val


def _parse_bool(text: str) -> bool:
    s = text.strip().lower()
    if s == "true":
        return True
    if s == "false":
        return False
    raise ValueParseError(f"'{text}' is not a valid bool (expected true or false)")


def _parse_pubkey(text: str) -> bytes:
    try:
        raw = base58.b58decode(text.strip())
    except ValueError:
        raise ValueParseError(f"'{text}' is not a base58 public key") from None
    if len(raw) != FieldType.PUBKEY.width:
        raise ValueParseError(f"'{text}' decodes to {len(raw)} bytes, expected 32")
    return raw


def parse_value(text: str, field_type: FieldType) -> DecodedValue:
    """Parse caller-supplied text into a value of `field_type`."""
    if field_type.is_int:
        return DecodedValue(field_type, _parse_int(text, field_type))
    if field_type.is_float:
        return DecodedValue(field_type, _parse_float(text, field_type))
    if field_type is FieldType.BOOL:
        return DecodedValue(field_type, _parse_bool(text))
    return DecodedValue(field_type, _parse_pubkey(text))


@dataclass(frozen=True)
class Criterion:
    """A resolved, parsed equality constraint."""

    field: ResolvedField
    target: DecodedValue

    @property
    def path(self) -> str:
        return self.field.path

    @property
    def pushable(self) -> bool:
        """True when every value equal to the target has the same byte encoding.

        Booleans decode any non-zero byte as true, and float zero compares
        equal to negative zero, so those targets cannot be pushed as memcmp.
        """
        t = self.target
        if t.field_type is FieldType.BOOL:
            return t.value is False
        if t.field_type.is_float:
            return t.value != 0.0 and not math.isnan(t.value)  # type: ignore[arg-type]
        return True

    def memcmp(self) -> Memcmp | None:
        if not self.pushable:
            return None
        return Memcmp(self.field.offset, encode_value(self.target))

    def test(self, buffer: bytes) -> bool:
        """Decode the field and compare. Raises BufferTooShort."""
        f = self.field
        return decode_field(buffer, f.offset, f.width, f.field_type) == self.target


def compile_constraints(
    descriptor: AccountTypeDescriptor, constraints: Iterable[Constraint]
) -> tuple[Criterion, ...]:
    """Resolve and parse every constraint; raises UnknownField or ValueParseError."""
    out = []
    for c in constraints:
        field = resolve(descriptor, c.path)
        try:
            target = parse_value(c.value, field.field_type)
        except ValueParseError as e:
            raise ValueParseError(f"{c.path}: {e}") from None
        logger.debug("constraint %s (%s @ %d) == %s", c.path, field.field_type.value, field.offset, target)
        out.append(Criterion(field=field, target=target))
    return tuple(out)


def evaluate(buffer: bytes, criteria: Sequence[Criterion]) -> bool:
    """AND of every criterion, stopping at the first failure.

    Raises BufferTooShort when a referenced field does not fit.
    """
    return all(c.test(buffer) for c in criteria)


def matches(
    buffer: bytes, constraints: Iterable[Constraint], descriptor: AccountTypeDescriptor
) -> bool:
    criteria = compile_constraints(descriptor, constraints)
    try:
        return evaluate(buffer, criteria)
    except BufferTooShort:
        return False
