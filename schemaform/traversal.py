"""Deep traversal of schema trees and layout lists, reporting JSON Pointers."""

from __future__ import annotations

import enum
from typing import Any, Callable, Iterator, List, Optional, Tuple

from schemaform.jsonpointer import escape, last_segment


class NodeKind(enum.Enum):
    PRIMITIVE = "primitive"
    OBJECT = "object"
    ARRAY = "array"


def node_kind(node: Any) -> NodeKind:
    if isinstance(node, dict):
        return NodeKind.OBJECT
    if isinstance(node, list):
        return NodeKind.ARRAY
    return NodeKind.PRIMITIVE


def _children(node: Any) -> Iterator[Tuple[str, Any]]:
    """Yield ``(key, value)`` pairs of a container.

    Keys (or the length) are captured up front and values are read as the
    iteration reaches them, so a visitor may replace a child before it is
    descended into.  Entries removed in the meantime are skipped.
    """
    kind = node_kind(node)
    if kind is NodeKind.OBJECT:
        keys = list(node.keys())
        for key in keys:
            if key in node:
                yield key, node[key]
    elif kind is NodeKind.ARRAY:
        length = len(node)
        for index in range(length):
            if index < len(node):
                yield index, node[index]


Visitor = Callable[[Any, Optional[str], Any, str], Any]


def for_own_deep(
    node: Any,
    fn: Visitor,
    root: Any = None,
    pointer: str = "",
    bottom_up: bool = False,
) -> Any:
    """Call ``fn(value, key, root, pointer)`` on every descendant of *node*.

    The outermost call (no *root*) treats *node* as the root, which is never
    passed to *fn*.  Siblings are visited in insertion/index order.  Top-down,
    a node is visited before its children; with *bottom_up* after them.
    Bottom-up does not reverse sibling order: ``{"a": {"b": 1}, "c": 2}``
    visits ``/a/b``, ``/a``, ``/c``.
    *fn*'s return value is ignored; it works by side effect.
    Returns *node*.
    """
    is_root = root is None
    if is_root:
        root = node
    key = last_segment(pointer)
    if not is_root and not bottom_up:
        fn(node, key, root, pointer)
    for child_key, child in _children(node):
        for_own_deep(child, fn, root, pointer + "/" + escape(child_key), bottom_up)
    if not is_root and bottom_up:
        fn(node, key, root, pointer)
    return node


LayoutFn = Callable[[Any, int, List[Any], str], Any]


def map_layout(
    layout: List[Any],
    fn: LayoutFn,
    root_layout: Optional[List[Any]] = None,
    path: str = "",
) -> List[Any]:
    """Build a new layout by passing every element through ``fn``.

    Children under an element's ``items`` (or, failing that, ``tabs``) list
    are mapped first, on a shallow copy of the element.  ``fn`` is called as
    ``fn(element, index, root_layout, path)`` and may return:

    - ``None`` to drop the element,
    - a list to splice several elements in its place,
    - anything else to keep a single element.

    Indexes and paths always describe the element's position in the output,
    so they account for elements dropped or added earlier at the same level.
    """
    if root_layout is None:
        root_layout = layout
    new_layout: List[Any] = []
    index_pad = 0
    for index, item in enumerate(layout):
        real_index = index + index_pad
        new_path = f"{path}/{real_index}"
        new_item = item
        if isinstance(item, dict):
            if isinstance(item.get("items"), list):
                new_item = dict(item)
                new_item["items"] = map_layout(item["items"], fn, root_layout, new_path + "/items")
            elif isinstance(item.get("tabs"), list):
                new_item = dict(item)
                new_item["tabs"] = map_layout(item["tabs"], fn, root_layout, new_path + "/tabs")
        result = fn(new_item, real_index, root_layout, new_path)
        if result is None:
            index_pad -= 1
        elif isinstance(result, list):
            index_pad += len(result) - 1
            new_layout.extend(result)
        else:
            new_layout.append(result)
    return new_layout
