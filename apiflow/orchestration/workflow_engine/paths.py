"""
Typed accessor paths over structured values.

A path is a sequence of field and index accessors, written as
``data.zone.countries[0].id``. Supported forms:

- ``name``: mapping key (or attribute-free dict lookup)
- ``[n]``: list index, negative indices allowed
- ``.n``: numeric segment, treated as an index when applied to a list
- ``[*]``: apply the rest of the path to every element of a list

The same evaluator is used for output extraction and for path suffixes on
step references, so both behave identically.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Tuple, Union

from .errors import PathSyntaxError

_INDEX_RE = re.compile(r"\[(\*|-?\d+)\]")
_INT_RE = re.compile(r"-?\d+")


@dataclass(frozen=True)
class Field:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Index:
    position: int

    def __str__(self) -> str:
        return f"[{self.position}]"


@dataclass(frozen=True)
class Wildcard:
    def __str__(self) -> str:
        return "[*]"


Accessor = Union[Field, Index, Wildcard]


class PathNotFound(LookupError):
    """Raised when an accessor cannot be applied to the current value."""

    def __init__(self, path: str, position: int, reason: str):
        self.path = path
        self.position = position
        self.reason = reason
        super().__init__(f"{reason} (at accessor {position} of '{path}')")


@lru_cache(maxsize=512)
def parse_path(path: str) -> Tuple[Accessor, ...]:
    """Parse a path string into accessors.

    Args:
        path: Path string; an empty string selects the whole value

    Returns:
        Tuple of accessors

    Raises:
        PathSyntaxError: If the path is malformed
    """
    if path is None:
        raise PathSyntaxError("Path must be a string, got None")
    path = path.strip()
    if not path:
        return ()

    accessors: List[Accessor] = []
    for segment in path.split("."):
        if not segment:
            raise PathSyntaxError(f"Empty segment in path '{path}'")

        bracket = segment.find("[")
        head = segment if bracket == -1 else segment[:bracket]
        tail = "" if bracket == -1 else segment[bracket:]

        if "]" in head:
            raise PathSyntaxError(f"Unbalanced ']' in path '{path}'")
        if head:
            accessors.append(Field(head))

        consumed = 0
        for match in _INDEX_RE.finditer(tail):
            if match.start() != consumed:
                break
            token = match.group(1)
            accessors.append(Wildcard() if token == "*" else Index(int(token)))
            consumed = match.end()
        if consumed != len(tail):
            raise PathSyntaxError(f"Invalid index expression '{tail[consumed:]}' in path '{path}'")

    return tuple(accessors)


def format_path(accessors: Tuple[Accessor, ...]) -> str:
    """Render accessors back into path syntax."""
    out = ""
    for accessor in accessors:
        if isinstance(accessor, Field):
            out += f".{accessor.name}" if out else accessor.name
        else:
            out += str(accessor)
    return out


def evaluate_path(value: Any, path: str) -> Any:
    """Apply a path to a structured value.

    Args:
        value: Mapping/list structure (typically decoded JSON)
        path: Accessor path

    Returns:
        The selected value, which may itself be None if the field exists
        and holds null

    Raises:
        PathNotFound: If a field or index along the path is absent
        PathSyntaxError: If the path is malformed
    """
    return _walk(value, parse_path(path), 0, path)


def path_exists(value: Any, path: str) -> bool:
    try:
        evaluate_path(value, path)
    except PathNotFound:
        return False
    return True


def _walk(value: Any, accessors: Tuple[Accessor, ...], position: int, path: str) -> Any:
    for offset, accessor in enumerate(accessors):
        here = position + offset
        if isinstance(accessor, Wildcard):
            if not isinstance(value, (list, tuple)):
                raise PathNotFound(path, here, f"expected a list for [*], got {type(value).__name__}")
            rest = accessors[offset + 1 :]
            return [_walk(item, rest, here + 1, path) for item in value]
        if isinstance(accessor, Index):
            value = _index(value, accessor.position, path, here)
            continue

        name = accessor.name
        if isinstance(value, dict):
            if name not in value:
                raise PathNotFound(path, here, f"field '{name}' is missing")
            value = value[name]
        elif isinstance(value, (list, tuple)) and _is_int(name):
            value = _index(value, int(name), path, here)
        else:
            raise PathNotFound(
                path, here, f"cannot read field '{name}' from {type(value).__name__}"
            )
    return value


def _index(value: Any, position: int, path: str, here: int) -> Any:
    if not isinstance(value, (list, tuple)):
        raise PathNotFound(path, here, f"cannot index {type(value).__name__} with [{position}]")
    try:
        return value[position]
    except IndexError:
        raise PathNotFound(
            path, here, f"index {position} out of range for list of length {len(value)}"
        ) from None


def _is_int(text: str) -> bool:
    return _INT_RE.fullmatch(text) is not None
