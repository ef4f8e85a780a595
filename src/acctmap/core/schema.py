from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import yaml

from acctmap.core.discriminator import DISCRIMINATOR_LEN, discriminator


class SchemaError(Exception):
    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


class FieldType(Enum):
    """Fixed-width scalar kinds an account field can hold."""

    U8 = "u8"
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    U128 = "u128"
    I8 = "i8"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    I128 = "i128"
    F32 = "f32"
    F64 = "f64"
    BOOL = "bool"
    PUBKEY = "publicKey"

    @property
    def width(self) -> int:
        return SCALAR_SIZES[self.value]

    @property
    def is_int(self) -> bool:
        return self.value[0] in "ui" and self.value[1:].isdigit()

    @property
    def is_float(self) -> bool:
        return self in (FieldType.F32, FieldType.F64)

    @property
    def signed(self) -> bool:
        return self.value.startswith("i")


SCALAR_SIZES = {
    "u8": 1,
    "u16": 2,
    "u32": 4,
    "u64": 8,
    "u128": 16,
    "i8": 1,
    "i16": 2,
    "i32": 4,
    "i64": 8,
    "i128": 16,
    "f32": 4,
    "f64": 8,
    "bool": 1,
    "publicKey": 32,
}

# Newer IDLs spell the key type in lowercase
TYPE_ALIASES = {"pubkey": "publicKey"}

# Recognized tags whose encoded size depends on the data
VARIABLE_TAGS = {"string", "bytes"}
VARIABLE_KEYS = {"vec", "option", "coption", "hashMap", "hashSet", "bTreeMap", "bTreeSet"}


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    offset: int  # relative to the start of the containing struct
    width: int
    field_type: FieldType | None = None  # set for scalars
    fields: tuple[FieldDescriptor, ...] = ()  # set for nested structs
    element: FieldDescriptor | None = None  # set for fixed arrays
    length: int | None = None

    @property
    def kind(self) -> str:
        if self.field_type is not None:
            return "scalar"
        if self.element is not None:
            return "array"
        return "struct"

    def member(self, name: str) -> FieldDescriptor | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass(frozen=True)
class AccountTypeDescriptor:
    """Byte layout of one account type.

    The 8-byte discriminator is the implicit leading field: body field offsets
    start at 0 and are shifted by `data_offset` when addressing a buffer.

    `fields` holds the fixed-width prefix of the body. When a variable-length
    field is declared, it and every field after it are listed by name in
    `variable_tail` with the reason in `tail_reason`; their offsets are not
    known without reading the data.
    """

    name: str
    fields: tuple[FieldDescriptor, ...]
    discriminator: bytes
    layout_error: str | None = None
    variable_tail: tuple[str, ...] = ()
    tail_reason: str | None = None

    data_offset = DISCRIMINATOR_LEN

    @property
    def body_size(self) -> int:
        return sum(f.width for f in self.fields)

    @property
    def size(self) -> int:
        return self.data_offset + self.body_size

    def member(self, name: str) -> FieldDescriptor | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class SchemaCatalog(Mapping[str, AccountTypeDescriptor]):
    """Read-only, declaration-ordered mapping of account name to layout."""

    def __init__(self, accounts: list[AccountTypeDescriptor]) -> None:
        self._accounts = {a.name: a for a in accounts}

    def __getitem__(self, name: str) -> AccountTypeDescriptor:
        return self._accounts[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._accounts)

    def __len__(self) -> int:
        return len(self._accounts)

    def get_descriptor(self, name: str) -> AccountTypeDescriptor:
        """Return a queryable descriptor or raise SchemaError."""
        desc = self._accounts.get(name)
        if desc is None:
            known = ", ".join(self._accounts) or "none"
            raise SchemaError([f"unknown account type '{name}' (known: {known})"])
        if desc.layout_error is not None:
            raise SchemaError([f"account type '{name}': {desc.layout_error}"])
        return desc


class _VariableLayout(Exception):
    """Raised while sizing a field whose width depends on the data."""


def load_catalog(text: str) -> SchemaCatalog:
    """Parse an interface-description document (JSON or YAML) into a catalog."""
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise SchemaError([f"IDL parse error: {e}"]) from None

    if not isinstance(data, dict):
        raise SchemaError(["Top-level IDL must be a mapping with 'accounts'."])

    errors: list[str] = []
    raw_accounts = data.get("accounts")
    if not isinstance(raw_accounts, list):
        raise SchemaError(["accounts must be a list"])

    raw_types = data.get("types", [])
    type_defs: dict[str, Any] = {}
    if not isinstance(raw_types, list):
        errors.append("types must be a list")
    else:
        for i, t in enumerate(raw_types):
            tname = t.get("name") if isinstance(t, dict) else None
            if not isinstance(tname, str) or not tname:
                errors.append(f"types[{i}].name is required")
                continue
            type_defs[tname] = t

    builder = _LayoutBuilder(type_defs, errors)
    accounts: list[AccountTypeDescriptor] = []
    seen: set[str] = set()
    for i, acc in enumerate(raw_accounts):
        ctx = f"accounts[{i}]"
        if not isinstance(acc, dict):
            errors.append(f"{ctx} must be a mapping")
            continue
        name = acc.get("name")
        if not isinstance(name, str) or not name:
            errors.append(f"{ctx}.name is required")
            continue
        if name in seen:
            errors.append(f"{ctx}: duplicate account type '{name}'")
            continue
        seen.add(name)

        type_spec = acc.get("type")
        if type_spec is None:
            # Newer IDLs keep the account body in `types` under the same name
            tdef = type_defs.get(name)
            if tdef is None:
                errors.append(f"{ctx}: no type definition for account '{name}'")
                continue
            type_spec = tdef.get("type")
            ctx = f"types[{name}]"

        try:
            body = builder.members(type_spec, f"{ctx}.type", [name])
        except _VariableLayout as e:
            accounts.append(
                AccountTypeDescriptor(
                    name=name, fields=(), discriminator=discriminator(name), layout_error=str(e)
                )
            )
            continue
        if body is None:
            continue
        fields, tail, reason = body
        accounts.append(
            AccountTypeDescriptor(
                name=name,
                fields=fields,
                discriminator=discriminator(name),
                variable_tail=tail,
                tail_reason=reason,
            )
        )

    if errors:
        raise SchemaError(errors)

    return SchemaCatalog(accounts)


class _LayoutBuilder:
    def __init__(self, type_defs: dict[str, Any], errors: list[str]) -> None:
        self.type_defs = type_defs
        self.errors = errors

    def members(
        self, type_spec: Any, ctx: str, stack: list[str]
    ) -> tuple[tuple[FieldDescriptor, ...], tuple[str, ...], str | None] | None:
        """Lay out a struct body as (fixed prefix, variable tail names, reason)."""
        if not isinstance(type_spec, dict):
            self.errors.append(f"{ctx} must be a mapping")
            return None
        kind = type_spec.get("kind")
        if kind == "enum":
            raise _VariableLayout("enum account bodies are not supported")
        if kind != "struct":
            self.errors.append(f"{ctx}.kind must be 'struct', got {kind!r}")
            return None
        raw_fields = type_spec.get("fields")
        if not isinstance(raw_fields, list):
            self.errors.append(f"{ctx}.fields must be a list")
            return None

        out: list[FieldDescriptor] = []
        tail: list[str] = []
        names: set[str] = set()
        offset = 0
        reason: str | None = None
        for j, f in enumerate(raw_fields):
            fctx = f"{ctx}.fields[{j}]"
            if not isinstance(f, dict):
                self.errors.append(f"{fctx} must be a mapping")
                continue
            name = f.get("name")
            if not isinstance(name, str) or not name:
                self.errors.append(f"{fctx}.name is required")
                continue
            if name in names:
                self.errors.append(f"{fctx}: duplicate field name '{name}'")
                continue
            names.add(name)
            if "type" not in f:
                self.errors.append(f"{fctx}.type is required")
                continue
            # Fields after a variable-length one are still validated
            try:
                node = self.field(name, f["type"], offset, fctx, stack)
            except _VariableLayout as e:
                reason = reason or f"field '{name}': {e}"
                tail.append(name)
                continue
            if reason is not None:
                tail.append(name)
                continue
            if node is None:
                continue
            out.append(node)
            offset += node.width
        return tuple(out), tuple(tail), reason

    def struct_fields(
        self, type_spec: Any, ctx: str, stack: list[str]
    ) -> tuple[FieldDescriptor, ...] | None:
        body = self.members(type_spec, ctx, stack)
        if body is None:
            return None
        fields, _, reason = body
        if reason is not None:
            raise _VariableLayout(reason)
        return fields

    def field(
        self, name: str, spec: Any, offset: int, ctx: str, stack: list[str]
    ) -> FieldDescriptor | None:
        if isinstance(spec, str):
            tag = TYPE_ALIASES.get(spec, spec)
            if tag in SCALAR_SIZES:
                ft = FieldType(tag)
                return FieldDescriptor(name=name, offset=offset, width=ft.width, field_type=ft)
            if tag in VARIABLE_TAGS:
                raise _VariableLayout(f"'{tag}' has no fixed size")
            if tag in self.type_defs:
                # Legacy IDLs reference user types by bare name
                return self.defined(name, tag, offset, ctx, stack)
            self.errors.append(f"{ctx}.type: unrecognized type tag '{spec}'")
            return None

        if isinstance(spec, dict):
            if "defined" in spec:
                ref = spec["defined"]
                if isinstance(ref, dict):
                    ref = ref.get("name")
                if not isinstance(ref, str) or not ref:
                    self.errors.append(f"{ctx}.type.defined must name a type")
                    return None
                return self.defined(name, ref, offset, ctx, stack)
            if "array" in spec:
                return self.array(name, spec["array"], offset, ctx, stack)
            if "tuple" in spec:
                return self.tuple_type(name, spec["tuple"], offset, ctx, stack)
            for key in spec:
                if key in VARIABLE_KEYS:
                    raise _VariableLayout(f"'{key}' has no fixed size")

        self.errors.append(f"{ctx}.type: unrecognized type {spec!r}")
        return None

    def defined(
        self, name: str, ref: str, offset: int, ctx: str, stack: list[str]
    ) -> FieldDescriptor | None:
        if ref in stack:
            chain = " -> ".join(stack + [ref])
            self.errors.append(f"{ctx}: type cycle detected: {chain}")
            return None
        tdef = self.type_defs.get(ref)
        if tdef is None:
            self.errors.append(f"{ctx}: unknown type reference: {ref}")
            return None
        type_spec = tdef.get("type")
        if isinstance(type_spec, dict) and type_spec.get("kind") == "enum":
            return self.enum(name, ref, type_spec, offset)
        members = self.struct_fields(type_spec, f"types[{ref}].type", stack + [ref])
        if members is None:
            return None
        return FieldDescriptor(
            name=name,
            offset=offset,
            width=sum(m.width for m in members),
            fields=members,
        )

    def enum(self, name: str, ref: str, type_spec: dict, offset: int) -> FieldDescriptor | None:
        """A fieldless enum is stored as its one-byte variant index."""
        variants = type_spec.get("variants")
        ctx = f"types[{ref}].type"
        if not isinstance(variants, list) or not variants:
            self.errors.append(f"{ctx}.variants must be a non-empty list")
            return None
        if len(variants) > 256:
            self.errors.append(f"{ctx}: {len(variants)} variants do not fit a one-byte tag")
            return None
        for v in variants:
            if isinstance(v, dict) and v.get("fields"):
                raise _VariableLayout(f"enum '{ref}' has variants carrying data")
        return FieldDescriptor(name=name, offset=offset, width=1, field_type=FieldType.U8)

    def tuple_type(
        self, name: str, spec: Any, offset: int, ctx: str, stack: list[str]
    ) -> FieldDescriptor | None:
        if not isinstance(spec, list) or not spec:
            self.errors.append(f"{ctx}.type.tuple must be a non-empty list of types")
            return None
        out: list[FieldDescriptor] = []
        inner = 0
        for k, elem_spec in enumerate(spec):
            node = self.field(str(k), elem_spec, inner, f"{ctx}.type.tuple[{k}]", stack)
            if node is None:
                return None
            out.append(node)
            inner += node.width
        return FieldDescriptor(name=name, offset=offset, width=inner, fields=tuple(out))

    def array(
        self, name: str, spec: Any, offset: int, ctx: str, stack: list[str]
    ) -> FieldDescriptor | None:
        if not isinstance(spec, list) or len(spec) != 2:
            self.errors.append(f"{ctx}.type.array must be [element, length]")
            return None
        elem_spec, length = spec
        if not isinstance(length, int) or isinstance(length, bool) or length < 0:
            # Generic-length arrays ({"generic": "N"}) land here too
            self.errors.append(f"{ctx}.type.array length must be a non-negative integer")
            return None
        element = self.field(f"{name}[]", elem_spec, 0, f"{ctx}.type.array[0]", stack)
        if element is None:
            return None
        return FieldDescriptor(
            name=name,
            offset=offset,
            width=element.width * length,
            element=element,
            length=length,
        )
