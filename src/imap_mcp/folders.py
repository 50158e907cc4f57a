"""
Mailbox Tree
============

Builds the folder hierarchy from a LIST response and flattens it back
into full paths.

POST-FOLDERS-02: Depth-first, parent before children, siblings in server order.
INV-FOLDERS-01: Structural mirror of server data; nothing reordered or dropped.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from contracts import FolderDescriptor, FolderNode, ProtocolError

NOSELECT = "\\Noselect"


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def build_tree(list_response: Iterable[Any]) -> list[FolderNode]:
    """
    Turn imapclient's flat ``list_folders()`` output into a tree.

    Each entry is ``(flags, delimiter, name)``. Parents the server did not
    list are synthesized as ``\\Noselect`` nodes so children stay reachable.
    """
    roots: list[FolderNode] = []
    by_path: dict[tuple[str, ...], FolderNode] = {}
    listed: set[tuple[str, ...]] = set()

    for entry in list_response:
        try:
            flags, delimiter, name = entry
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed LIST entry: {entry!r}") from e
        if not isinstance(name, (str, bytes)) or not name:
            raise ProtocolError(f"Malformed LIST entry name: {entry!r}")

        name = _text(name)
        delimiter = _text(delimiter) if delimiter else None
        attributes = tuple(_text(f) for f in (flags or ()))
        parts = tuple(name.split(delimiter)) if delimiter else (name,)

        siblings = roots
        for depth in range(1, len(parts) + 1):
            path = parts[:depth]
            leaf = depth == len(parts)
            node = by_path.get(path)
            if node is None or (leaf and path in listed):
                node = FolderNode(
                    name=path[-1],
                    delimiter=delimiter,
                    attributes=attributes if leaf else (NOSELECT,),
                )
                by_path[path] = node
                siblings.append(node)
            elif leaf:
                # Listed after one of its children
                node.attributes = attributes
            siblings = node.children
        listed.add(parts)

    return roots


def flatten(
    tree: list[FolderNode],
    delimiter: str | None = None,
    prefix: str = "",
) -> list[FolderDescriptor]:
    """
    Flatten a folder tree into descriptors with full paths.

    Paths join ancestor names with ``delimiter`` (the account's convention);
    when it is None each node's own server delimiter is used.
    """
    result: list[FolderDescriptor] = []
    for node in tree:
        sep = delimiter if delimiter is not None else (node.delimiter or "")
        full_name = f"{prefix}{sep}{node.name}" if prefix else node.name
        result.append(
            FolderDescriptor(
                name=full_name,
                delimiter=sep or node.delimiter,
                attributes=node.attributes,
            )
        )
        if node.children:
            result.extend(flatten(node.children, delimiter, full_name))
    return result
