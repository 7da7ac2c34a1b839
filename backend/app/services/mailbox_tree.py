"""
Mailbox tree building and flattening.

IMAP LIST answers with one line per folder:

    (\\HasNoChildren) "/" "INBOX"
    (\\HasChildren) "/" "Archive"
    (\\HasNoChildren \\Sent) "/" "Archive/2024"

build_folder_tree() turns those lines into a nested mapping

    {"Archive": {"delimiter": "/", "attribs": [...], "children": {"2024": {...}}}}

and flatten() walks that mapping depth-first into MailboxNode records, each
node immediately followed by its children, in the order the server listed
them.
"""

import logging
import re
from typing import Iterable, List, Optional, Tuple, Union

from app.models.mail import MailboxNode

logger = logging.getLogger(__name__)

_LIST_LINE = re.compile(
    r'\((?P<flags>[^)]*)\)\s+(?P<delimiter>"(?:[^"\\]|\\.)*"|NIL)\s+(?P<name>.+)$',
    re.IGNORECASE,
)
_LITERAL = re.compile(r"^\{(\d+)\}$")

Line = Union[bytes, bytearray, str]


def _to_text(line: Line) -> str:
    if isinstance(line, (bytes, bytearray)):
        return bytes(line).decode("utf-8", errors="replace")
    return str(line)


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return re.sub(r"\\(.)", r"\1", value[1:-1])
    return value


def parse_list_line(line: Line) -> Optional[Tuple[List[str], Optional[str], str]]:
    """
    Parse a single LIST response line into (flags, delimiter, name).

    Returns None for lines that are not LIST data (e.g. the tagged
    completion line). A name sent as a literal comes back as "{N}" and is
    resolved by the caller.
    """
    text = _to_text(line).strip()
    if not text:
        return None

    match = _LIST_LINE.search(text)
    if not match:
        return None

    flags = match.group("flags").split()
    raw_delimiter = match.group("delimiter")
    delimiter = None if raw_delimiter.upper() == "NIL" else _unquote(raw_delimiter)
    name = _unquote(match.group("name"))
    return flags, delimiter, name


def _insert(tree: dict, flags: List[str], delimiter: Optional[str], name: str) -> None:
    parts = name.split(delimiter) if delimiter else [name]
    level = tree
    for depth, part in enumerate(parts):
        node = level.get(part)
        if node is None:
            # Parents the server did not list get a placeholder entry
            node = {"delimiter": delimiter, "attribs": [], "children": {}}
            level[part] = node
        if depth == len(parts) - 1:
            node["attribs"] = list(flags)
            node["delimiter"] = delimiter
        level = node["children"]


def build_folder_tree(lines: Iterable[Line]) -> dict:
    """
    Build the nested folder mapping from raw LIST response lines.

    Lines that cannot be parsed are logged and skipped rather than failing
    the whole listing.
    """
    tree: dict = {}
    pending: Optional[Tuple[List[str], Optional[str]]] = None

    for line in lines:
        if pending is not None:
            flags, delimiter = pending
            pending = None
            _insert(tree, flags, delimiter, _to_text(line))
            continue

        parsed = parse_list_line(line)
        if parsed is None:
            text = _to_text(line).strip()
            if text and "completed" not in text.lower():
                logger.warning(f"Could not parse folder line: {text}")
            continue

        flags, delimiter, name = parsed
        if _LITERAL.match(name):
            pending = (flags, delimiter)
            continue
        _insert(tree, flags, delimiter, name)

    return tree


def flatten(tree: dict, prefix: str = "") -> List[MailboxNode]:
    """
    Flatten a folder tree into depth-first pre-order MailboxNode records.

    Root nodes have path == name; every other node's path is its parent's
    path + delimiter + name.
    """
    result: List[MailboxNode] = []
    for name, box in tree.items():
        delimiter = box.get("delimiter")
        path = f"{prefix}{delimiter or ''}{name}" if prefix else name
        children = box.get("children") or {}
        result.append(
            MailboxNode(
                name=name,
                path=path,
                delimiter=delimiter,
                flags=list(box.get("attribs") or []),
                has_children=bool(children),
            )
        )
        if children:
            result.extend(flatten(children, path))
    return result
