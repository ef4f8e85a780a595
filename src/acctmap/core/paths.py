from __future__ import annotations

import re
from dataclasses import dataclass

from acctmap.core.schema import AccountTypeDescriptor, FieldDescriptor, FieldType


class UnknownField(LookupError):
    """Raised when a dotted path does not name a scalar field of the layout."""


@dataclass(frozen=True)
class ResolvedField:
    path: str
    offset: int  # absolute within the account buffer
    width: int
    field_type: FieldType


_SEGMENT = re.compile(r"^([^\[\]]+)((?:\[\d+\])*)$")


def split_path(path: str) -> list[tuple[str, list[int]]]:
    """Split `a.b[2].c` into [("a", []), ("b", [2]), ("c", [])]."""
    if not path:
        raise UnknownField("empty field path")
    out: list[tuple[str, list[int]]] = []
    for seg in path.split("."):
        m = _SEGMENT.match(seg)
        if m is None:
            raise UnknownField(f"malformed path segment '{seg}' in '{path}'")
        indexes = [int(i) for i in re.findall(r"\[(\d+)\]", m.group(2))]
        out.append((m.group(1), indexes))
    return out


def resolve(descriptor: AccountTypeDescriptor, path: str) -> ResolvedField:
    """Resolve `path` to the absolute offset, width and type of a scalar field."""
    offset = descriptor.data_offset
    node: FieldDescriptor | None = None
    walked: list[str] = []

    for name, indexes in split_path(path):
        if node is None:
            child = descriptor.member(name)
        elif node.kind == "struct":
            child = node.member(name)
        else:
            raise UnknownField(
                f"'{'.'.join(walked)}' is not a struct; cannot look up '{name}' in {path!r}"
            )
        if child is None and node is None and name in descriptor.variable_tail:
            raise UnknownField(
                f"field '{name}' of {descriptor.name} has no fixed offset "
                f"({descriptor.tail_reason}) (path {path!r})"
            )
        if child is None:
            where = ".".join(walked) or descriptor.name
            raise UnknownField(f"field '{name}' not found in {where} (path {path!r})")
        offset += child.offset
        walked.append(name)
        node = child

        for idx in indexes:
            if node.element is None or node.length is None:
                raise UnknownField(f"'{'.'.join(walked)}' is not an array (path {path!r})")
            if idx >= node.length:
                raise UnknownField(
                    f"index {idx} out of range for '{'.'.join(walked)}' "
                    f"of length {node.length} (path {path!r})"
                )
            offset += idx * node.element.width
            walked[-1] = f"{walked[-1]}[{idx}]"
            node = node.element

    if node is None:
        raise UnknownField("empty field path")
    if node.field_type is None:
        raise UnknownField(f"path {path!r} names a {node.kind}, not a scalar field")
    return ResolvedField(path=path, offset=offset, width=node.width, field_type=node.field_type)
