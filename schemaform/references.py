"""
JSON Schema ``$ref`` resolution.

References are resolved against a caller-owned cache mapping compiled
pointers to :class:`CacheEntry` objects.  A pointer is resolved at most once
per cache; resolving it again returns the identical cached object.

Cycles are broken with the placeholder ``{"$ref": pointer}``:

- the root pointer ``""`` is marked circular before anything else happens;
- any other pointer is marked ``IN_PROGRESS`` while its ``allOf`` members are
  being resolved, and a pointer met again in that state is marked circular.

Remote references (``http...``) never block.  They are handed to a
:class:`~schemaform.remote.RemoteSchemaFetcher`, which fills the cache when
the download completes; until then the placeholder is returned.
"""

from __future__ import annotations

import copy
import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, MutableMapping, Optional, Tuple

from schemaform.jsonpointer import compile_pointer, escape, get_value
from schemaform.traversal import NodeKind, for_own_deep, node_kind

logger = logging.getLogger(__name__)

REMOTE_PREFIX = "http"


class ReferenceState(enum.Enum):
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"


@dataclass
class CacheEntry:
    schema: Any = None
    is_circular: bool = False
    state: ReferenceState = ReferenceState.RESOLVED


class SchemaReferenceCache(dict):
    """Mapping of compiled pointer -> :class:`CacheEntry` for one schema.

    Create one per loaded schema and pass it to every resolution call.
    """

    def is_circular(self, pointer: Any) -> bool:
        entry = self.get(normalize_reference(pointer))
        return bool(entry and entry.is_circular)

    def circular_pointers(self) -> List[str]:
        return sorted(pointer for pointer, entry in list(self.items()) if entry.is_circular)

    def resolved_pointers(self) -> List[str]:
        return sorted(
            pointer for pointer, entry in list(self.items())
            if entry.state is ReferenceState.RESOLVED and not entry.is_circular
        )


def is_remote(pointer: Any) -> bool:
    return isinstance(pointer, str) and pointer.startswith(REMOTE_PREFIX)


def normalize_reference(reference: Any) -> Optional[str]:
    """Return the cache key for *reference*, or None if it is not a reference.

    Strings are references themselves; dicts must be exactly ``{"$ref": str}``.
    Remote URIs are kept verbatim, everything else is compiled as a pointer.
    """
    if isinstance(reference, str):
        target = reference
    elif (
        isinstance(reference, dict)
        and len(reference) == 1
        and isinstance(reference.get("$ref"), str)
    ):
        target = reference["$ref"]
    else:
        return None
    if is_remote(target):
        return target
    return compile_pointer(target)


def _is_all_of_wrapper(item: Any) -> bool:
    return (
        isinstance(item, dict)
        and len(item) == 1
        and isinstance(item.get("allOf"), list)
    )


def _entry(cache: MutableMapping[str, Any], pointer: str) -> Optional[CacheEntry]:
    """Fetch a cache entry, accepting the ``{"isCircular", "schema"}`` dict form."""
    entry = cache.get(pointer)
    if entry is None or isinstance(entry, CacheEntry):
        return entry
    if isinstance(entry, dict):
        return CacheEntry(schema=entry.get("schema"), is_circular=bool(entry.get("isCircular")))
    return None


def resolve_schema_reference(
    reference: Any,
    schema: Any,
    cache: MutableMapping[str, Any],
    circular_ok: bool = False,
    fetcher: Any = None,
) -> Any:
    """Resolve *reference* against *schema*, memoizing into *cache*.

    Returns the target value, the merge of an ``allOf``-of-references target,
    *reference* itself when it is not a reference, None when the pointer
    does not exist, or ``{"$ref": pointer}`` for a circular reference (unless
    *circular_ok*) and for a remote reference that has not arrived yet.
    """
    pointer = normalize_reference(reference)
    if pointer is None:
        return reference

    if pointer == "":
        cache[""] = CacheEntry(is_circular=True)
        return schema if circular_ok else {"$ref": ""}

    entry = _entry(cache, pointer)
    if entry is not None:
        if entry.state is ReferenceState.IN_PROGRESS:
            entry.is_circular = True
            cache[pointer] = entry
            return get_value(schema, pointer) if circular_ok else {"$ref": pointer}
        if entry.is_circular and not circular_ok:
            return {"$ref": pointer}
        return entry.schema

    if is_remote(pointer):
        if fetcher is not None:
            fetcher.fetch(pointer, cache)
        else:
            logger.warning("No fetcher configured, leaving remote reference %s unresolved", pointer)
        return {"$ref": pointer}

    item = get_value(schema, pointer)
    if not _is_all_of_wrapper(item):
        cache[pointer] = CacheEntry(schema=item)
        return item

    entry = CacheEntry(state=ReferenceState.IN_PROGRESS)
    cache[pointer] = entry
    merged: Dict[str, Any] = {}
    for member in item["allOf"]:
        resolved = resolve_schema_reference(member, schema, cache, circular_ok, fetcher)
        if isinstance(resolved, dict):
            merged.update(resolved)
    entry = _entry(cache, pointer)
    cache[pointer] = CacheEntry(schema=merged, is_circular=bool(entry and entry.is_circular))
    return merged


# ---------------------------------------------------------------------------
# Whole-document dereferencing
# ---------------------------------------------------------------------------

def _is_reference_node(node: Any) -> bool:
    return (
        isinstance(node, dict)
        and len(node) == 1
        and isinstance(node.get("$ref"), str)
    )


def _inside(location: str, ancestor: str) -> bool:
    return location == ancestor or location.startswith(ancestor + "/")


def dereference_schema(
    schema: Any,
    cache: Optional[MutableMapping[str, Any]] = None,
    circular_ok: bool = False,
    fetcher: Any = None,
) -> Any:
    """Return a copy of *schema* with every ``{"$ref": ...}`` node inlined.

    Each replacement is a deep copy of the resolved target, so the result
    shares nothing with *schema* or the cache.  A reference met again inside
    its own expansion (including ``""`` anywhere in the document) is left as
    the placeholder ``{"$ref": pointer}`` and marked circular in *cache*.
    Once a pointer is circular, later occurrences elsewhere in the document
    also stay placeholders unless *circular_ok*, in which case each one is
    expanded until it recurs beneath itself.  References that cannot be
    resolved are left untouched.
    """
    if cache is None:
        cache = SchemaReferenceCache()
    document = copy.deepcopy(schema)
    # (location in the output document, pointer expanded there)
    expansions: List[Tuple[str, str]] = [("", "")]

    def expand(location: str, reference: Dict[str, Any]) -> Any:
        pointer = normalize_reference(reference)
        if any(target == pointer and _inside(location, where) for where, target in expansions):
            logger.debug("Circular reference to %r at %r", pointer, location)
            entry = _entry(cache, pointer) or CacheEntry()
            entry.is_circular = True
            cache[pointer] = entry
            return {"$ref": pointer}
        resolved = resolve_schema_reference(reference, schema, cache, circular_ok, fetcher)
        if resolved is None:
            logger.warning("Unresolvable reference %r at %r", reference["$ref"], location)
            return reference
        if resolved == {"$ref": pointer}:
            return resolved
        expansions.append((location, pointer))
        return copy.deepcopy(resolved)

    def expand_chain(location: str, node: Any) -> Any:
        # a target may itself be a bare reference (a -> b -> c)
        while _is_reference_node(node):
            expanded = expand(location, node)
            if _is_reference_node(expanded) and normalize_reference(expanded) == normalize_reference(node):
                return expanded
            node = expanded
        return node

    def replace_children(node: Any, location: str) -> None:
        kind = node_kind(node)
        if kind is NodeKind.PRIMITIVE:
            return
        keys = list(node.keys()) if kind is NodeKind.OBJECT else list(range(len(node)))
        for key in keys:
            node[key] = expand_chain(location + "/" + escape(key), node[key])

    document = expand_chain("", document)
    replace_children(document, "")
    for_own_deep(document, lambda value, key, root, pointer: replace_children(value, pointer))
    return document


def reference_pointers(schema: Any) -> List[str]:
    """List the distinct pointers referenced anywhere in *schema*, in document order."""
    found: List[str] = []

    def collect(value, key, root, pointer):
        if _is_reference_node(value):
            target = normalize_reference(value)
            if target not in found:
                found.append(target)

    if _is_reference_node(schema):
        found.append(normalize_reference(schema))
    for_own_deep(schema, collect)
    return found
