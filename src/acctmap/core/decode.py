"""Little-endian decoding of account fields into typed values."""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from typing import Any

import base58

from acctmap.core.schema import AccountTypeDescriptor, FieldDescriptor, FieldType


class BufferTooShort(ValueError):
    """Raised when a field extends past the end of the account data."""


@dataclass(frozen=True)
class DecodedValue:
    """A decoded scalar tagged with the type it was decoded as.

    `value` is an int, float or bool, or the raw 32 bytes of a public key.
    Equality is the plain Python equality of the payload, which for floats
    is IEEE-754 equality (0.0 == -0.0, NaN never equal).
    """

    field_type: FieldType
    value: int | float | bool | bytes

    def __str__(self) -> str:
        return format_value(self)

    def to_json(self) -> Any:
        if self.field_type is FieldType.PUBKEY:
            return format_pubkey(self.value)  # type: ignore[arg-type]
        if self.field_type.is_float and not math.isfinite(self.value):  # type: ignore[arg-type]
            return str(self.value)
        return self.value


def format_pubkey(raw: bytes) -> str:
    return base58.b58encode(raw).decode("ascii")


def format_value(v: DecodedValue) -> str:
    if v.field_type is FieldType.PUBKEY:
        return format_pubkey(v.value)  # type: ignore[arg-type]
    if v.field_type is FieldType.BOOL:
        return "true" if v.value else "false"
    return str(v.value)


_FLOAT_FORMATS = {FieldType.F32: "<f", FieldType.F64: "<d"}


def decode_field(buffer: bytes, offset: int, width: int, field_type: FieldType) -> DecodedValue:
    if offset < 0 or offset + width > len(buffer):
        raise BufferTooShort(
            f"{field_type.value} at {offset:#x}+{width} exceeds buffer of {len(buffer)} bytes"
        )
    data = bytes(buffer[offset : offset + width])
    if field_type.is_int:
        return DecodedValue(
            field_type, int.from_bytes(data, byteorder="little", signed=field_type.signed)
        )
    if field_type.is_float:
        return DecodedValue(field_type, struct.unpack(_FLOAT_FORMATS[field_type], data)[0])
    if field_type is FieldType.BOOL:
        # Any non-zero byte reads as true
        return DecodedValue(field_type, data[0] != 0)
    return DecodedValue(field_type, data)


def encode_value(v: DecodedValue) -> bytes:
    """Canonical encoding of a value, as it would appear in account data."""
    ft = v.field_type
    if ft.is_int:
        return int(v.value).to_bytes(ft.width, byteorder="little", signed=ft.signed)
    if ft.is_float:
        return struct.pack(_FLOAT_FORMATS[ft], v.value)
    if ft is FieldType.BOOL:
        return b"\x01" if v.value else b"\x00"
    return bytes(v.value)  # type: ignore[arg-type]


def decode_all(buffer: bytes, descriptor: AccountTypeDescriptor) -> dict[str, Any]:
    """Decode every field of an account.

    Structs become nested dicts and fixed arrays become lists. Raises
    BufferTooShort on the first field that does not fit.
    """
    return {
        f.name: _decode_node(buffer, descriptor.data_offset + f.offset, f)
        for f in descriptor.fields
    }


def _decode_node(buffer: bytes, offset: int, node: FieldDescriptor) -> Any:
    if node.field_type is not None:
        return decode_field(buffer, offset, node.width, node.field_type)
    if node.element is not None:
        step = node.element.width
        return [
            _decode_node(buffer, offset + i * step, node.element)
            for i in range(node.length or 0)
        ]
    return {m.name: _decode_node(buffer, offset + m.offset, m) for m in node.fields}


def to_json(decoded: Any) -> Any:
    """Convert a decode_all() tree to JSON-friendly values."""
    if isinstance(decoded, DecodedValue):
        return decoded.to_json()
    if isinstance(decoded, list):
        return [to_json(x) for x in decoded]
    return {k: to_json(v) for k, v in decoded.items()}
