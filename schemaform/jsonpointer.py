"""
RFC 6901 JSON Pointer helpers.

Pointers are handled in two forms: the canonical string (``"/a/b~1c/0"``)
and the parsed list of unescaped segments (``["a", "b/c", "0"]``).  Every
function accepts either form.  Malformed input degrades to the root pointer
instead of raising, so callers building a document piece by piece never have
to guard their lookups.

Usage::

    from schemaform.jsonpointer import get_value, set_value
    get_value({"a": [1, 2]}, "/a/1")        # -> 2
    set_value({}, "/a/b", 1)                 # -> {"a": {"b": 1}}
"""

from __future__ import annotations

import re
from typing import Any, List, Optional
from urllib.parse import unquote

APPEND_SEGMENT = "-"

# "0" or a decimal without leading zeros
_INDEX_RE = re.compile(r"0|[1-9][0-9]*")


# ---------------------------------------------------------------------------
# Escaping
# ---------------------------------------------------------------------------

def escape(segment: Any) -> str:
    """Escape one segment: ``~`` -> ``~0``, ``/`` -> ``~1``."""
    return str(segment).replace("~", "~0").replace("/", "~1")


def unescape(segment: str) -> str:
    """Undo :func:`escape`.  ``~1`` is decoded before ``~0``."""
    return segment.replace("~1", "/").replace("~0", "~")


# ---------------------------------------------------------------------------
# Parse / compile
# ---------------------------------------------------------------------------

def parse_pointer(pointer: Any) -> List[str]:
    """Return the list of unescaped segments for *pointer*.

    Accepts a pointer string, a ``#``-prefixed URI fragment, or an already
    parsed list/tuple.  Anything else parses as the root pointer (``[]``).
    """
    if isinstance(pointer, (list, tuple)):
        return [str(segment) for segment in pointer]
    if not isinstance(pointer, str):
        return []
    if pointer.startswith("#"):
        pointer = unquote(pointer[1:])
    if pointer == "":
        return []
    if pointer.startswith("/"):
        pointer = pointer[1:]
    return [unescape(segment) for segment in pointer.split("/")]


def compile_pointer(pointer: Any) -> str:
    """Return the canonical string form of *pointer* (``""`` for the root)."""
    if isinstance(pointer, (list, tuple)):
        return "".join("/" + escape(segment) for segment in pointer)
    if not isinstance(pointer, str):
        return ""
    return compile_pointer(parse_pointer(pointer))


def last_segment(pointer: Any) -> Optional[str]:
    segments = parse_pointer(pointer)
    return segments[-1] if segments else None


def is_index(segment: Any) -> bool:
    """True if *segment* is an RFC 6901 array index (ASCII digits, no leading zero)."""
    return isinstance(segment, str) and _INDEX_RE.fullmatch(segment) is not None


def _list_index(container: list, segment: str) -> Optional[int]:
    """Return the index for *segment* in *container*, or None if out of range."""
    if not is_index(segment):
        return None
    index = int(segment)
    if index >= len(container):
        return None
    return index


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

def get_value(obj: Any, pointer: Any, default: Any = None) -> Any:
    """Return the value at *pointer* in *obj*, or *default* if it is missing."""
    current = obj
    for segment in parse_pointer(pointer):
        if isinstance(current, dict):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, list):
            index = _list_index(current, segment)
            if index is None:
                return default
            current = current[index]
        else:
            return default
    return current


_MISSING = object()


def has_value(obj: Any, pointer: Any) -> bool:
    return get_value(obj, pointer, _MISSING) is not _MISSING


# ---------------------------------------------------------------------------
# Write
# ---------------------------------------------------------------------------

def _new_container(next_segment: str):
    if next_segment == APPEND_SEGMENT or is_index(next_segment):
        return []
    return {}


def _assign(container: Any, segment: str, value: Any) -> bool:
    """Assign *value* under *segment*; returns False if the slot cannot exist."""
    if isinstance(container, dict):
        container[segment] = value
        return True
    if isinstance(container, list):
        if segment == APPEND_SEGMENT or segment == str(len(container)):
            container.append(value)
            return True
        index = _list_index(container, segment)
        if index is None:
            return False
        container[index] = value
        return True
    return False


def set_value(obj: Any, pointer: Any, value: Any, create_missing: bool = True) -> Any:
    """Set *value* at *pointer* inside *obj* and return *obj*.

    Intermediate containers are created when *create_missing* is true: a
    list when the following segment is an index or ``-``, otherwise a dict.
    With *create_missing* false a missing parent leaves *obj* unchanged.
    The root pointer cannot be assigned in place; *obj* is returned as-is.
    """
    segments = parse_pointer(pointer)
    if not segments:
        return obj
    current = obj
    for position, segment in enumerate(segments[:-1]):
        child = get_value(current, [segment], _MISSING)
        if child is _MISSING or not isinstance(child, (dict, list)):
            if not create_missing:
                return obj
            child = _new_container(segments[position + 1])
            if not _assign(current, segment, child):
                return obj
        current = child
    _assign(current, segments[-1], value)
    return obj


# ---------------------------------------------------------------------------
# Data pointer -> schema
# ---------------------------------------------------------------------------

def get_schema(schema: Any, data_pointer: Any) -> Any:
    """Return the sub-schema describing the data at *data_pointer*.

    Object keys descend through ``properties`` (then ``additionalProperties``),
    array indexes and ``-`` descend through ``items``.  A segment that is a
    literal key of the schema node itself is followed as a last resort, so
    schema-shaped paths such as ``/definitions/address`` also work.
    Returns None once the path leaves the schema.
    """
    current = schema
    for segment in parse_pointer(data_pointer):
        if not isinstance(current, dict):
            return None
        properties = current.get("properties")
        items = current.get("items")
        if isinstance(properties, dict) and segment in properties:
            current = properties[segment]
        elif items is not None and (segment == APPEND_SEGMENT or is_index(segment)):
            if isinstance(items, list):
                if segment == APPEND_SEGMENT or int(segment) >= len(items):
                    current = current.get("additionalItems")
                else:
                    current = items[int(segment)]
            else:
                current = items
        elif isinstance(current.get("additionalProperties"), dict):
            current = current["additionalProperties"]
        elif segment in current:
            current = current[segment]
        else:
            return None
    return current
