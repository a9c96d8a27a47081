"""Tests for JSON pointers, deep traversal, $ref resolution, required-field lookup and the API."""

import io
import json
import tempfile
import threading
from concurrent.futures import Future
from pathlib import Path
from unittest import mock

import requests
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, override_settings
from rest_framework.test import APIClient

from schemaform import views
from schemaform.controls import get_control_validators, get_first_value, set_object_input_options
from schemaform.inspection import is_input_required
from schemaform.jsonpointer import (
    compile_pointer,
    escape,
    get_schema,
    get_value,
    has_value,
    is_index,
    parse_pointer,
    set_value,
    unescape,
)
from schemaform.references import (
    CacheEntry,
    ReferenceState,
    SchemaReferenceCache,
    dereference_schema,
    normalize_reference,
    reference_pointers,
    resolve_schema_reference,
)
from schemaform.remote import RemoteSchemaError, RemoteSchemaFetcher
from schemaform.traversal import NodeKind, for_own_deep, map_layout, node_kind

# ---------------------------------------------------------------------------
# Sample schema fixtures
# ---------------------------------------------------------------------------

PERSON_SCHEMA = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string"},
        "email": {"type": "string", "format": "email"},
        "address": {
            "type": "object",
            "required": ["street"],
            "properties": {
                "street": {"type": "string"},
                "city": {"type": "string"},
            },
        },
        "phones": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["number"],
                "properties": {
                    "number": {"type": "string"},
                    "label": {"type": "string"},
                },
            },
        },
    },
}

ALL_OF_SCHEMA = {
    "definitions": {
        "named": {"properties": {"name": {"type": "string"}}},
        "dated": {"properties": {"created": {"type": "string", "format": "date"}}, "required": ["created"]},
        "record": {
            "allOf": [
                {"type": "object"},
                {"$ref": "#/definitions/named"},
                {"$ref": "#/definitions/dated"},
            ]
        },
    },
    "properties": {
        "item": {"$ref": "#/definitions/record"},
    },
}

TREE_SCHEMA = {
    "definitions": {
        "node": {
            "type": "object",
            "properties": {
                "label": {"type": "string"},
                "child": {"$ref": "#/definitions/node"},
            },
        },
    },
    "properties": {
        "root": {"$ref": "#/definitions/node"},
    },
}

REMOTE_URI = "https://schemas.example.org/address.json"
REMOTE_DOCUMENT = {"type": "object", "properties": {"street": {"type": "string"}}}


def _copy(document):
    return json.loads(json.dumps(document))


# ===================================================================
# jsonpointer.py
# ===================================================================


class EscapeTest(SimpleTestCase):
    def test_escapes_tilde_and_slash(self):
        self.assertEqual(escape("a~b/c"), "a~0b~1c")

    def test_unescapes_tilde_and_slash(self):
        self.assertEqual(unescape("a~0b~1c"), "a~b/c")

    def test_unescape_decodes_slash_before_tilde(self):
        self.assertEqual(unescape("~01"), "~1")

    def test_escapes_non_string_segment(self):
        self.assertEqual(escape(3), "3")


class ParseCompileTest(SimpleTestCase):
    def test_compile_adds_leading_slash(self):
        self.assertEqual(compile_pointer("a/b"), "/a/b")

    def test_compile_segment_list(self):
        self.assertEqual(compile_pointer(["a/b", "c~d"]), "/a~1b/c~0d")

    def test_parse_unescapes(self):
        self.assertEqual(parse_pointer("/a~1b/c~0d"), ["a/b", "c~d"])

    def test_parse_uri_fragment(self):
        self.assertEqual(parse_pointer("#/definitions/street%20name"), ["definitions", "street name"])
        self.assertEqual(compile_pointer("#"), "")

    def test_root_pointer(self):
        self.assertEqual(parse_pointer(""), [])
        self.assertEqual(compile_pointer(""), "")
        self.assertEqual(compile_pointer([]), "")

    def test_invalid_input_is_root(self):
        self.assertEqual(compile_pointer(None), "")
        self.assertEqual(compile_pointer(42), "")
        self.assertEqual(parse_pointer(None), [])
        self.assertEqual(parse_pointer({"a": 1}), [])

    def test_round_trip(self):
        for segments in (["a"], ["a/b", "~"], ["", "x"], ["0", "-"], ["~1", "/~0"]):
            with self.subTest(segments=segments):
                self.assertEqual(parse_pointer(compile_pointer(segments)), segments)

    def test_compile_is_idempotent(self):
        pointer = compile_pointer(["a/b", "c"])
        self.assertEqual(compile_pointer(pointer), pointer)


class GetValueTest(SimpleTestCase):
    DOC = {"a": [{"b": 1}, {"c/d": 2}], "e": None}

    def test_nested_value(self):
        self.assertEqual(get_value(self.DOC, "/a/0/b"), 1)

    def test_escaped_key(self):
        self.assertEqual(get_value(self.DOC, "/a/1/c~1d"), 2)

    def test_segment_list(self):
        self.assertEqual(get_value(self.DOC, ["a", "1", "c/d"]), 2)

    def test_missing_key_returns_none(self):
        self.assertIsNone(get_value(self.DOC, "/a/0/zzz"))

    def test_index_out_of_range(self):
        self.assertIsNone(get_value(self.DOC, "/a/5"))

    def test_non_numeric_index(self):
        self.assertIsNone(get_value(self.DOC, "/a/x"))

    def test_walk_through_scalar(self):
        self.assertIsNone(get_value(self.DOC, "/a/0/b/c"))

    def test_default(self):
        self.assertEqual(get_value(self.DOC, "/missing", "fallback"), "fallback")

    def test_root_pointer_returns_document(self):
        self.assertIs(get_value(self.DOC, ""), self.DOC)

    def test_has_value_distinguishes_null_leaf(self):
        self.assertTrue(has_value(self.DOC, "/e"))
        self.assertFalse(has_value(self.DOC, "/f"))

    def test_leading_zero_is_not_an_index(self):
        self.assertFalse(has_value(self.DOC, "/a/01"))
        self.assertFalse(has_value(self.DOC, "/a/00"))

    def test_non_ascii_digit_is_not_an_index(self):
        self.assertFalse(has_value(self.DOC, "/a/１"))
        self.assertFalse(has_value(self.DOC, "/a/١"))


class IsIndexTest(SimpleTestCase):
    def test_valid_indexes(self):
        for segment in ("0", "1", "10", "907"):
            with self.subTest(segment=segment):
                self.assertTrue(is_index(segment))

    def test_invalid_indexes(self):
        for segment in ("", "-", "01", "-1", "1.0", " 1", "１", None, 1):
            with self.subTest(segment=segment):
                self.assertFalse(is_index(segment))


class SetValueTest(SimpleTestCase):
    def test_creates_missing_objects(self):
        self.assertEqual(set_value({}, "/a/b", 1), {"a": {"b": 1}})

    def test_creates_missing_list_for_index(self):
        self.assertEqual(set_value({}, "/a/0", "x"), {"a": ["x"]})

    def test_leading_zero_creates_object(self):
        self.assertEqual(set_value({}, "/a/01", "x"), {"a": {"01": "x"}})

    def test_append_marker(self):
        doc = {"a": [1]}
        set_value(doc, "/a/-", 2)
        self.assertEqual(doc, {"a": [1, 2]})

    def test_replaces_existing_value(self):
        doc = {"a": {"b": 1}}
        set_value(doc, "/a/b", 2)
        self.assertEqual(doc, {"a": {"b": 2}})

    def test_returns_same_object(self):
        doc = {}
        self.assertIs(set_value(doc, "/a", 1), doc)

    def test_without_create_missing_leaves_document(self):
        doc = {}
        set_value(doc, "/a/b", 1, create_missing=False)
        self.assertEqual(doc, {})

    def test_without_create_missing_sets_existing_parent(self):
        doc = {"a": {}}
        set_value(doc, "/a/b", 1, create_missing=False)
        self.assertEqual(doc, {"a": {"b": 1}})

    def test_root_pointer_is_noop(self):
        doc = {"a": 1}
        self.assertEqual(set_value(doc, "", {"b": 2}), {"a": 1})

    def test_escaped_segments(self):
        self.assertEqual(set_value({}, "/a~1b/~0", 1), {"a/b": {"~": 1}})


class GetSchemaTest(SimpleTestCase):
    def test_property_path(self):
        self.assertEqual(get_schema(PERSON_SCHEMA, "/address/city"), {"type": "string"})

    def test_array_index_uses_items(self):
        self.assertEqual(get_schema(PERSON_SCHEMA, "/phones/3/number"), {"type": "string"})

    def test_append_marker_uses_items(self):
        self.assertEqual(get_schema(PERSON_SCHEMA, "/phones/-/label"), {"type": "string"})

    def test_missing_path(self):
        self.assertIsNone(get_schema(PERSON_SCHEMA, "/nothing/here"))

    def test_root(self):
        self.assertIs(get_schema(PERSON_SCHEMA, ""), PERSON_SCHEMA)

    def test_tuple_items(self):
        schema = {"items": [{"type": "string"}, {"type": "integer"}]}
        self.assertEqual(get_schema(schema, "/1"), {"type": "integer"})

    def test_leading_zero_does_not_descend_items(self):
        self.assertIsNone(get_schema(PERSON_SCHEMA, "/phones/01/number"))

    def test_additional_properties(self):
        schema = {"type": "object", "additionalProperties": {"type": "number"}}
        self.assertEqual(get_schema(schema, "/anything"), {"type": "number"})

    def test_schema_shaped_path(self):
        self.assertEqual(
            get_schema(ALL_OF_SCHEMA, "/definitions/named"),
            ALL_OF_SCHEMA["definitions"]["named"],
        )


# ===================================================================
# traversal.py (for_own_deep)
# ===================================================================


def _record_visits(document, **kwargs):
    visits = []
    for_own_deep(document, lambda value, key, root, pointer: visits.append((pointer, key)), **kwargs)
    return visits


class NodeKindTest(SimpleTestCase):
    def test_kinds(self):
        self.assertIs(node_kind({}), NodeKind.OBJECT)
        self.assertIs(node_kind([]), NodeKind.ARRAY)
        self.assertIs(node_kind("x"), NodeKind.PRIMITIVE)
        self.assertIs(node_kind(None), NodeKind.PRIMITIVE)


class ForOwnDeepTest(SimpleTestCase):
    def test_top_down_order(self):
        visits = _record_visits({"a": {"b": 1}, "c": 2})
        self.assertEqual(visits, [("/a", "a"), ("/a/b", "b"), ("/c", "c")])

    def test_bottom_up_order(self):
        """Children before parents, siblings in insertion order."""
        visits = _record_visits({"a": {"b": 1}, "c": 2}, bottom_up=True)
        self.assertEqual(visits, [("/a/b", "b"), ("/a", "a"), ("/c", "c")])

    def test_bottom_up_single_branch(self):
        visits = _record_visits({"a": {"b": 1}}, bottom_up=True)
        self.assertEqual([pointer for pointer, _ in visits], ["/a/b", "/a"])

    def test_arrays(self):
        visits = _record_visits([[1, 2], 3])
        self.assertEqual(visits, [("/0", "0"), ("/0/0", "0"), ("/0/1", "1"), ("/1", "1")])

    def test_arrays_bottom_up(self):
        visits = _record_visits([[1, 2], 3], bottom_up=True)
        self.assertEqual([pointer for pointer, _ in visits], ["/0/0", "/0/1", "/0", "/1"])

    def test_escapes_keys_in_pointer(self):
        visits = _record_visits({"a/b": {"~": 1}})
        self.assertEqual(visits, [("/a~1b", "a/b"), ("/a~1b/~0", "~")])

    def test_root_is_never_visited(self):
        self.assertEqual(_record_visits({}), [])
        self.assertEqual(_record_visits([]), [])
        self.assertEqual(_record_visits("scalar"), [])

    def test_passes_root_object(self):
        document = {"a": {"b": 1}}
        roots = []
        for_own_deep(document, lambda value, key, root, pointer: roots.append(root))
        self.assertEqual(len(roots), 2)
        for root in roots:
            self.assertIs(root, document)

    def test_returns_same_node(self):
        document = {"a": 1}
        self.assertIs(for_own_deep(document, lambda *args: None), document)

    def test_sub_object_call_visits_itself(self):
        document = {"x": {"y": 1}}
        visits = []
        for_own_deep(
            document["x"],
            lambda value, key, root, pointer: visits.append((pointer, key, root is document)),
            document,
            "/x",
        )
        self.assertEqual(visits, [("/x", "x", True), ("/x/y", "y", True)])

    def test_visitor_can_replace_children_before_descent(self):
        def visitor(value, key, root, pointer):
            if pointer == "/a":
                value["b"] = {"c": 1}

        visits = []

        def recorder(value, key, root, pointer):
            visitor(value, key, root, pointer)
            visits.append(pointer)

        for_own_deep({"a": {"b": 0}}, recorder)
        self.assertEqual(visits, ["/a", "/a/b", "/a/b/c"])

    def test_visitor_deleting_sibling_skips_it(self):
        def visitor(value, key, root, pointer):
            if pointer == "/a":
                del root["b"]

        visits = []

        def recorder(value, key, root, pointer):
            visitor(value, key, root, pointer)
            visits.append(pointer)

        for_own_deep({"a": 1, "b": 2, "c": 3}, recorder)
        self.assertEqual(visits, ["/a", "/c"])

    def test_visitor_mutation_is_visible(self):
        document = {"a": {"type": "string"}, "b": {"type": "number"}}

        def tag(value, key, root, pointer):
            if isinstance(value, dict):
                value["x-pointer"] = pointer

        for_own_deep(document, tag)
        self.assertEqual(document["a"]["x-pointer"], "/a")
        self.assertEqual(document["b"]["x-pointer"], "/b")


# ===================================================================
# traversal.py (map_layout)
# ===================================================================


class MapLayoutTest(SimpleTestCase):
    def test_identity_mapping_copies(self):
        layout = ["a", {"key": "b"}]
        result = map_layout(layout, lambda item, index, root, path: item)
        self.assertEqual(result, layout)
        self.assertIsNot(result, layout)

    def test_deletion_and_fan_out_renumber(self):
        seen = []

        def fn(item, index, root, path):
            seen.append((item, index, path))
            if item == "b":
                return None
            if item == "c":
                return ["c1", "c2"]
            return item

        result = map_layout(["a", "b", "c"], fn)
        self.assertEqual(result, ["a", "c1", "c2"])
        self.assertEqual(seen, [("a", 0, "/0"), ("b", 1, "/1"), ("c", 1, "/1")])

    def test_fan_out_shifts_later_siblings(self):
        seen = []

        def fn(item, index, root, path):
            seen.append((item, path))
            if item == "a":
                return ["a1", "a2"]
            return item

        result = map_layout(["a", "b", "c"], fn)
        self.assertEqual(result, ["a1", "a2", "b", "c"])
        self.assertEqual(seen, [("a", "/0"), ("b", "/2"), ("c", "/3")])

    def test_empty_list_result_drops_element(self):
        result = map_layout(["a", "b"], lambda item, index, root, path: [] if item == "a" else (item, path))
        self.assertEqual(result, [("b", "/0")])

    def test_children_are_mapped_before_parent(self):
        order = []

        def fn(item, index, root, path):
            order.append(path)
            return item

        map_layout([{"type": "section", "items": ["x", "y"]}, "z"], fn)
        self.assertEqual(order, ["/0/items/0", "/0/items/1", "/0", "/1"])

    def test_parent_receives_mapped_children(self):
        def fn(item, index, root, path):
            if isinstance(item, str):
                return item.upper()
            return item

        layout = [{"type": "section", "items": ["x", "y"]}]
        result = map_layout(layout, fn)
        self.assertEqual(result, [{"type": "section", "items": ["X", "Y"]}])
        self.assertEqual(layout, [{"type": "section", "items": ["x", "y"]}])

    def test_tabs(self):
        paths = []

        def fn(item, index, root, path):
            paths.append(path)
            return item

        map_layout([{"tabs": [{"items": ["q"]}]}], fn)
        self.assertEqual(paths, ["/0/tabs/0/items/0", "/0/tabs/0", "/0"])

    def test_items_take_priority_over_tabs(self):
        visited = []

        def fn(item, index, root, path):
            visited.append(item)
            return item

        map_layout([{"items": ["a"], "tabs": ["b"]}], fn)
        self.assertIn("a", visited)
        self.assertNotIn("b", visited)

    def test_nested_deletion_renumbers_nested_paths(self):
        paths = []

        def fn(item, index, root, path):
            paths.append((item, path))
            return None if item == "x" else item

        result = map_layout([{"items": ["x", "y"]}], fn)
        self.assertEqual(result, [{"items": ["y"]}])
        self.assertIn(("y", "/0/items/0"), paths)

    def test_root_layout_passed_to_nested_calls(self):
        layout = [{"items": ["a"]}]
        roots = []
        map_layout(layout, lambda item, index, root, path: roots.append(root) or item)
        self.assertEqual(len(roots), 2)
        for root in roots:
            self.assertIs(root, layout)


# ===================================================================
# references.py (resolve_schema_reference)
# ===================================================================


class NormalizeReferenceTest(SimpleTestCase):
    def test_string_is_compiled(self):
        self.assertEqual(normalize_reference("definitions/a"), "/definitions/a")

    def test_ref_object(self):
        self.assertEqual(normalize_reference({"$ref": "#/definitions/a"}), "/definitions/a")

    def test_remote_uri_kept_verbatim(self):
        self.assertEqual(normalize_reference(REMOTE_URI), REMOTE_URI)
        self.assertEqual(normalize_reference({"$ref": REMOTE_URI}), REMOTE_URI)

    def test_non_references(self):
        self.assertIsNone(normalize_reference({"$ref": "/a", "title": "x"}))
        self.assertIsNone(normalize_reference({"$ref": 5}))
        self.assertIsNone(normalize_reference({"type": "string"}))
        self.assertIsNone(normalize_reference(None))


class ResolveSchemaReferenceTest(SimpleTestCase):
    def test_root_self_reference_placeholder(self):
        schema = {"$ref": ""}
        cache = {}
        self.assertEqual(resolve_schema_reference("", schema, cache, False), {"$ref": ""})
        self.assertTrue(cache[""].is_circular)

    def test_root_self_reference_circular_ok(self):
        schema = {"properties": {"self": {"$ref": "#"}}}
        cache = SchemaReferenceCache()
        self.assertIs(resolve_schema_reference("", schema, cache, True), schema)
        self.assertTrue(cache.is_circular(""))

    def test_root_reference_via_hash(self):
        schema = {"type": "object"}
        self.assertEqual(resolve_schema_reference({"$ref": "#"}, schema, {}), {"$ref": ""})

    def test_plain_target(self):
        schema = _copy(ALL_OF_SCHEMA)
        resolved = resolve_schema_reference({"$ref": "#/definitions/named"}, schema, {})
        self.assertIs(resolved, schema["definitions"]["named"])

    def test_memoized_identity(self):
        schema = _copy(ALL_OF_SCHEMA)
        cache = SchemaReferenceCache()
        first = resolve_schema_reference("/definitions/named", schema, cache)
        first["x-touched"] = True
        second = resolve_schema_reference({"$ref": "#/definitions/named"}, schema, cache)
        self.assertIs(second, first)
        self.assertTrue(second["x-touched"])

    def test_not_recomputed_after_document_changes(self):
        schema = _copy(ALL_OF_SCHEMA)
        cache = SchemaReferenceCache()
        first = resolve_schema_reference("/definitions/named", schema, cache)
        schema["definitions"]["named"] = {"replaced": True}
        self.assertIs(resolve_schema_reference("/definitions/named", schema, cache), first)

    def test_all_of_flattening(self):
        schema = {
            "wrapper": {"allOf": [{"a": 1}, {"$ref": "/defs/b"}]},
            "defs": {"b": {"b": 2}},
        }
        self.assertEqual(resolve_schema_reference("/wrapper", schema, {}), {"a": 1, "b": 2})

    def test_all_of_later_members_win(self):
        schema = _copy(ALL_OF_SCHEMA)
        resolved = resolve_schema_reference("/definitions/record", schema, SchemaReferenceCache())
        self.assertEqual(resolved["type"], "object")
        self.assertEqual(resolved["properties"], {"created": {"type": "string", "format": "date"}})
        self.assertEqual(resolved["required"], ["created"])

    def test_all_of_merge_is_cached(self):
        schema = _copy(ALL_OF_SCHEMA)
        cache = SchemaReferenceCache()
        first = resolve_schema_reference("/definitions/record", schema, cache)
        self.assertIs(resolve_schema_reference("/definitions/record", schema, cache), first)
        self.assertIn("/definitions/named", cache)
        self.assertIn("/definitions/dated", cache)

    def test_all_of_with_siblings_is_not_flattened(self):
        schema = {"defs": {"x": {"allOf": [{"a": 1}], "title": "X"}}}
        resolved = resolve_schema_reference("/defs/x", schema, {})
        self.assertIs(resolved, schema["defs"]["x"])

    def test_all_of_does_not_mutate_members(self):
        schema = {"wrapper": {"allOf": [{"$ref": "/defs/a"}, {"b": 2}]}, "defs": {"a": {"a": 1}}}
        resolve_schema_reference("/wrapper", schema, {})
        self.assertEqual(schema["defs"]["a"], {"a": 1})

    def test_non_reference_returned_unchanged(self):
        for value in ({"$ref": "/a", "title": "t"}, {"$ref": 5}, {"type": "string"}, 42, None):
            with self.subTest(value=value):
                self.assertIs(resolve_schema_reference(value, {"a": 1}, {}), value)

    def test_unresolvable_pointer(self):
        cache = SchemaReferenceCache()
        self.assertIsNone(resolve_schema_reference("/nope", {"a": 1}, cache))
        self.assertIn("/nope", cache)
        self.assertIsNone(cache["/nope"].schema)

    def test_cached_circular_entry_returns_placeholder(self):
        cache = SchemaReferenceCache({"/defs/a": CacheEntry(schema={"a": 1}, is_circular=True)})
        self.assertEqual(resolve_schema_reference("/defs/a", {}, cache), {"$ref": "/defs/a"})
        self.assertEqual(resolve_schema_reference("/defs/a", {}, cache, circular_ok=True), {"a": 1})

    def test_accepts_dict_form_cache_entries(self):
        cache = {"/x": {"isCircular": True}}
        self.assertEqual(resolve_schema_reference("/x", {"x": 1}, cache), {"$ref": "/x"})

    def test_two_hop_cycle_is_detected(self):
        schema = {
            "defs": {
                "A": {"allOf": [{"$ref": "#/defs/B"}]},
                "B": {"allOf": [{"$ref": "#/defs/A"}, {"title": "b"}]},
            }
        }
        cache = SchemaReferenceCache()
        resolved = resolve_schema_reference("/defs/A", schema, cache)
        self.assertEqual(resolved, {"$ref": "/defs/A", "title": "b"})
        self.assertTrue(cache.is_circular("/defs/A"))
        self.assertFalse(cache.is_circular("/defs/B"))
        self.assertEqual(resolve_schema_reference("/defs/A", schema, cache), {"$ref": "/defs/A"})
        self.assertEqual(
            resolve_schema_reference("/defs/A", schema, cache, circular_ok=True),
            {"$ref": "/defs/A", "title": "b"},
        )

    def test_self_all_of_cycle_terminates(self):
        schema = {"defs": {"A": {"allOf": [{"$ref": "#/defs/A"}, {"type": "object"}]}}}
        cache = SchemaReferenceCache()
        resolved = resolve_schema_reference("/defs/A", schema, cache)
        self.assertEqual(resolved["type"], "object")
        self.assertEqual(cache.circular_pointers(), ["/defs/A"])

    def test_remote_without_fetcher_returns_placeholder(self):
        cache = SchemaReferenceCache()
        with self.assertLogs("schemaform.references", level="WARNING"):
            resolved = resolve_schema_reference({"$ref": REMOTE_URI}, {}, cache)
        self.assertEqual(resolved, {"$ref": REMOTE_URI})
        self.assertNotIn(REMOTE_URI, cache)

    def test_remote_delegates_to_fetcher(self):
        cache = SchemaReferenceCache()
        fetcher = mock.Mock()
        resolved = resolve_schema_reference({"$ref": REMOTE_URI}, {}, cache, fetcher=fetcher)
        self.assertEqual(resolved, {"$ref": REMOTE_URI})
        fetcher.fetch.assert_called_once_with(REMOTE_URI, cache)

    def test_remote_served_from_cache_once_installed(self):
        cache = SchemaReferenceCache({REMOTE_URI: CacheEntry(schema=REMOTE_DOCUMENT)})
        fetcher = mock.Mock()
        resolved = resolve_schema_reference(REMOTE_URI, {}, cache, fetcher=fetcher)
        self.assertIs(resolved, REMOTE_DOCUMENT)
        fetcher.fetch.assert_not_called()


class SchemaReferenceCacheTest(SimpleTestCase):
    def test_pointer_listings(self):
        schema = {"defs": {"a": {"allOf": [{"$ref": "#/defs/a"}]}, "b": {"type": "string"}}}
        cache = SchemaReferenceCache()
        resolve_schema_reference("/defs/a", schema, cache)
        resolve_schema_reference("/defs/b", schema, cache)
        self.assertEqual(cache.circular_pointers(), ["/defs/a"])
        self.assertEqual(cache.resolved_pointers(), ["/defs/b"])

    def test_independent_caches(self):
        schema = {"defs": {"b": {"type": "string"}}}
        first, second = SchemaReferenceCache(), SchemaReferenceCache()
        resolve_schema_reference("/defs/b", schema, first)
        self.assertIn("/defs/b", first)
        self.assertNotIn("/defs/b", second)

    def test_listing_tolerates_entry_added_meanwhile(self):
        cache = SchemaReferenceCache()

        class InstallingEntry:
            # installs a remote document the moment it is inspected
            state = ReferenceState.RESOLVED

            @property
            def is_circular(self):
                cache[REMOTE_URI] = CacheEntry(schema=REMOTE_DOCUMENT)
                return True

        cache["/a"] = InstallingEntry()
        self.assertEqual(cache.circular_pointers(), ["/a"])
        self.assertIn(REMOTE_URI, cache)
        self.assertEqual(cache.resolved_pointers(), [REMOTE_URI])


# ===================================================================
# references.py (dereference_schema)
# ===================================================================


class DereferenceSchemaTest(SimpleTestCase):
    def test_inlines_references(self):
        schema = {
            "definitions": {"name": {"type": "string"}},
            "properties": {
                "first": {"$ref": "#/definitions/name"},
                "last": {"$ref": "#/definitions/name"},
            },
        }
        result = dereference_schema(schema)
        self.assertEqual(result["properties"]["first"], {"type": "string"})
        self.assertEqual(result["properties"]["last"], {"type": "string"})
        self.assertIsNot(result["properties"]["first"], result["properties"]["last"])

    def test_does_not_mutate_input(self):
        original = _copy(ALL_OF_SCHEMA)
        dereference_schema(ALL_OF_SCHEMA)
        self.assertEqual(ALL_OF_SCHEMA, original)

    def test_flattens_all_of_targets(self):
        result = dereference_schema(ALL_OF_SCHEMA)
        item = result["properties"]["item"]
        self.assertEqual(item["type"], "object")
        self.assertEqual(item["required"], ["created"])

    def test_reference_chain(self):
        schema = {
            "defs": {
                "a": {"$ref": "#/defs/b"},
                "b": {"$ref": "#/defs/c"},
                "c": {"type": "integer"},
            },
            "properties": {"x": {"$ref": "#/defs/a"}},
        }
        result = dereference_schema(schema)
        self.assertEqual(result["properties"]["x"], {"type": "integer"})
        self.assertEqual(result["defs"]["a"], {"type": "integer"})

    def test_recursive_definition_placeholder(self):
        cache = SchemaReferenceCache()
        result = dereference_schema(TREE_SCHEMA, cache, circular_ok=True)
        root = result["properties"]["root"]
        self.assertEqual(root["properties"]["label"], {"type": "string"})
        self.assertEqual(root["properties"]["child"], {"$ref": "/definitions/node"})
        self.assertTrue(cache.is_circular("/definitions/node"))

    def test_circular_pointer_stays_placeholder_without_circular_ok(self):
        result = dereference_schema(TREE_SCHEMA)
        self.assertEqual(result["properties"]["root"], {"$ref": "/definitions/node"})

    def test_bare_reference_cycle_terminates(self):
        schema = {"defs": {"a": {"$ref": "#/defs/b"}, "b": {"$ref": "#/defs/a"}}}
        cache = SchemaReferenceCache()
        result = dereference_schema(schema, cache)
        self.assertEqual(result["defs"]["a"], {"$ref": "/defs/b"})
        self.assertEqual(result["defs"]["b"], {"$ref": "/defs/b"})
        self.assertTrue(cache.is_circular("/defs/b"))

    def test_root_reference_inside_document(self):
        schema = {"properties": {"self": {"$ref": "#"}}}
        result = dereference_schema(schema, circular_ok=True)
        self.assertEqual(result["properties"]["self"], {"$ref": ""})

    def test_whole_document_reference(self):
        schema = {"$ref": "#/defs/a", "defs": {"a": {"type": "string"}}}
        # two keys: not a reference node, left alone
        self.assertEqual(dereference_schema(schema), schema)

    def test_references_inside_arrays(self):
        schema = {"defs": {"s": {"type": "string"}}, "anyOf": [{"$ref": "#/defs/s"}, {"type": "null"}]}
        result = dereference_schema(schema)
        self.assertEqual(result["anyOf"], [{"type": "string"}, {"type": "null"}])

    def test_unresolvable_reference_left_in_place(self):
        schema = {"properties": {"x": {"$ref": "#/missing"}}}
        with self.assertLogs("schemaform.references", level="WARNING"):
            result = dereference_schema(schema)
        self.assertEqual(result["properties"]["x"], {"$ref": "#/missing"})

    def test_reference_pointers(self):
        schema = {"a": {"$ref": "#/x"}, "b": [{"$ref": "/y"}, {"$ref": "#/x"}]}
        self.assertEqual(reference_pointers(schema), ["/x", "/y"])


# ===================================================================
# remote.py
# ===================================================================


def _response(status_code=200, payload=None, text=""):
    response = mock.Mock(status_code=status_code, text=text)
    response.json.return_value = payload
    return response


class RemoteSchemaFetcherTest(SimpleTestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.session.headers = {}
        self.fetcher = RemoteSchemaFetcher(session=self.session, timeout=5, max_workers=2, enabled=True)
        self.cache = SchemaReferenceCache()

    def tearDown(self):
        self.fetcher.shutdown()

    def test_installs_document_in_cache(self):
        self.session.get.return_value = _response(payload=REMOTE_DOCUMENT)
        document = self.fetcher.fetch(REMOTE_URI, self.cache).result(timeout=5)
        self.assertEqual(document, REMOTE_DOCUMENT)
        self.assertEqual(self.cache[REMOTE_URI].schema, REMOTE_DOCUMENT)
        self.assertFalse(self.fetcher.is_pending(REMOTE_URI))
        self.session.get.assert_called_once_with(REMOTE_URI, timeout=5)

    def test_pending_fetch_is_not_repeated(self):
        release = threading.Event()

        def slow_get(uri, timeout):
            release.wait(5)
            return _response(payload=REMOTE_DOCUMENT)

        self.session.get.side_effect = slow_get
        first = self.fetcher.fetch(REMOTE_URI, self.cache)
        second = self.fetcher.fetch(REMOTE_URI, self.cache)
        self.assertIs(first, second)
        self.assertTrue(self.fetcher.is_pending(REMOTE_URI))
        release.set()
        first.result(timeout=5)
        self.assertEqual(self.session.get.call_count, 1)

    def test_http_error_leaves_cache_untouched(self):
        self.session.get.return_value = _response(status_code=404, text="not found")
        with self.assertLogs("schemaform.remote", level="ERROR"):
            future = self.fetcher.fetch(REMOTE_URI, self.cache)
            with self.assertRaises(RemoteSchemaError) as ctx:
                future.result(timeout=5)
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertNotIn(REMOTE_URI, self.cache)
        self.assertFalse(self.fetcher.is_pending(REMOTE_URI))

    def test_retry_after_failure(self):
        self.session.get.side_effect = [
            _response(status_code=503, text="busy"),
            _response(payload=REMOTE_DOCUMENT),
        ]
        with self.assertRaises(RemoteSchemaError):
            self.fetcher.fetch(REMOTE_URI, self.cache).result(timeout=5)
        self.fetcher.fetch(REMOTE_URI, self.cache).result(timeout=5)
        self.assertEqual(self.cache[REMOTE_URI].schema, REMOTE_DOCUMENT)
        self.assertEqual(self.session.get.call_count, 2)

    def test_connection_error(self):
        self.session.get.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(RemoteSchemaError) as ctx:
            self.fetcher.fetch(REMOTE_URI, self.cache).result(timeout=5)
        self.assertIsNone(ctx.exception.status_code)
        self.assertIn("refused", ctx.exception.detail)

    def test_non_json_response(self):
        response = _response()
        response.json.side_effect = ValueError("no json")
        self.session.get.return_value = response
        with self.assertRaises(RemoteSchemaError):
            self.fetcher.fetch(REMOTE_URI, self.cache).result(timeout=5)

    def test_disabled_fetcher_fails_without_request(self):
        fetcher = RemoteSchemaFetcher(session=self.session, enabled=False)
        try:
            with self.assertRaises(RemoteSchemaError):
                fetcher.fetch(REMOTE_URI, self.cache).result(timeout=5)
        finally:
            fetcher.shutdown()
        self.session.get.assert_not_called()

    def test_host_outside_allow_list_is_rejected(self):
        fetcher = RemoteSchemaFetcher(session=self.session, allowed_hosts=["Schemas.Example.org"])
        self.session.get.return_value = _response(payload=REMOTE_DOCUMENT)
        try:
            with self.assertRaises(RemoteSchemaError) as ctx:
                fetcher.fetch("http://10.0.0.1/internal.json", self.cache).result(timeout=5)
            self.assertEqual(ctx.exception.detail, "host is not allowed")
            self.assertFalse(fetcher.is_pending("http://10.0.0.1/internal.json"))
            fetcher.fetch(REMOTE_URI, self.cache).result(timeout=5)
        finally:
            fetcher.shutdown()
        self.session.get.assert_called_once_with(REMOTE_URI, timeout=fetcher.timeout)
        self.assertNotIn("http://10.0.0.1/internal.json", self.cache)

    def test_wildcard_allows_any_host(self):
        fetcher = RemoteSchemaFetcher(session=self.session, allowed_hosts=["*"])
        try:
            self.assertTrue(fetcher.is_allowed("http://anything.test/s.json"))
        finally:
            fetcher.shutdown()

    def test_resolver_uses_document_once_fetched(self):
        self.session.get.return_value = _response(payload=REMOTE_DOCUMENT)
        placeholder = resolve_schema_reference({"$ref": REMOTE_URI}, {}, self.cache, fetcher=self.fetcher)
        self.assertEqual(placeholder, {"$ref": REMOTE_URI})
        self.fetcher.fetch(REMOTE_URI, self.cache).result(timeout=5)
        resolved = resolve_schema_reference({"$ref": REMOTE_URI}, {}, self.cache, fetcher=self.fetcher)
        self.assertEqual(resolved, REMOTE_DOCUMENT)
        self.assertEqual(self.session.get.call_count, 1)


# ===================================================================
# inspection.py
# ===================================================================


class IsInputRequiredTest(SimpleTestCase):
    def test_top_level_required(self):
        schema = {"required": ["name"], "properties": {"name": {"type": "string"}}}
        self.assertTrue(is_input_required(schema, "/name"))
        self.assertFalse(is_input_required(schema, "/other"))

    def test_nested_object(self):
        self.assertTrue(is_input_required(PERSON_SCHEMA, "/address/street"))
        self.assertFalse(is_input_required(PERSON_SCHEMA, "/address/city"))

    def test_new_array_item(self):
        self.assertTrue(is_input_required(PERSON_SCHEMA, "/phones/-/number"))
        self.assertFalse(is_input_required(PERSON_SCHEMA, "/phones/-/label"))

    def test_schema_shaped_array_item(self):
        schema = {"list": {"type": "array", "items": {"required": ["x"]}}}
        self.assertTrue(is_input_required(schema, "/list/-/x"))

    def test_existing_array_item(self):
        self.assertTrue(is_input_required(PERSON_SCHEMA, "/phones/0/number"))

    def test_case_sensitive(self):
        self.assertFalse(is_input_required(PERSON_SCHEMA, "/Name"))

    def test_empty_pointer(self):
        self.assertFalse(is_input_required(PERSON_SCHEMA, ""))

    def test_missing_parent(self):
        self.assertFalse(is_input_required(PERSON_SCHEMA, "/nothing/here"))
        self.assertFalse(is_input_required(PERSON_SCHEMA, "/nothing/-/here"))

    def test_required_not_a_list(self):
        self.assertFalse(is_input_required({"required": "name"}, "/name"))

    def test_invalid_schema_is_logged(self):
        with self.assertLogs("schemaform.inspection", level="ERROR"):
            self.assertFalse(is_input_required("not a schema", "/name"))


# ===================================================================
# controls.py
# ===================================================================


class ControlHelpersTest(SimpleTestCase):
    def test_first_value(self):
        self.assertEqual(get_first_value([None, 0, 1]), 0)
        self.assertIsNone(get_first_value([None]))
        self.assertIsNone(get_first_value("abc"))

    def test_string_validators(self):
        schema = {"type": "string", "minLength": 2, "pattern": "^a", "title": "ignored"}
        self.assertEqual(get_control_validators(schema), {"minLength": [2], "pattern": ["^a"]})

    def test_numeric_validators(self):
        schema = {"type": "number", "minimum": 0, "exclusiveMinimum": True, "maximum": 10, "multipleOf": 2}
        self.assertEqual(
            get_control_validators(schema),
            {"minimum": [0, True], "maximum": [10, False], "multipleOf": [2]},
        )

    def test_array_and_enum_validators(self):
        schema = {"type": "array", "minItems": 1, "uniqueItems": True, "enum": [["a"]]}
        self.assertEqual(
            get_control_validators(schema),
            {"minItems": [1], "uniqueItems": [True], "enum": [[["a"]]]},
        )

    def test_untyped_enum(self):
        self.assertEqual(get_control_validators({"enum": [1, 2]}), {"enum": [[1, 2]]})

    def test_union_type_yields_only_enum(self):
        self.assertEqual(get_control_validators({"type": ["string", "null"], "maxLength": 3}), {})
        self.assertEqual(
            get_control_validators({"type": ["integer", "null"], "minimum": 1, "enum": [1, None]}),
            {"enum": [[1, None]]},
        )

    def test_set_object_input_options(self):
        template = {"name": {"type": "text"}}
        self.assertTrue(set_object_input_options({"required": ["name", "a/b"]}, template))
        self.assertEqual(
            template,
            {
                "name": {"type": "text", "validators": {"required": []}},
                "a/b": {"validators": {"required": []}},
            },
        )

    def test_set_object_input_options_single_name(self):
        template = {}
        self.assertTrue(set_object_input_options({"required": "name"}, template))
        self.assertEqual(template, {"name": {"validators": {"required": []}}})

    def test_set_object_input_options_nothing_required(self):
        template = {}
        self.assertFalse(set_object_input_options({"required": []}, template))
        self.assertEqual(template, {})


# ===================================================================
# API views
# ===================================================================


class _InstantFetcher:
    """Fetcher double that completes immediately."""

    def __init__(self, document=None, error=None):
        self.document = document
        self.error = error
        self.calls = []

    def fetch(self, uri, cache):
        self.calls.append(uri)
        future = Future()
        if self.error is not None:
            future.set_exception(self.error)
        else:
            cache[uri] = CacheEntry(schema=self.document)
            future.set_result(self.document)
        return future


class ResolveViewTest(SimpleTestCase):
    def setUp(self):
        self.client = APIClient()

    def test_resolves_all_of(self):
        response = self.client.post(
            "/api/schemaform/resolve/",
            {"schema": ALL_OF_SCHEMA, "reference": {"$ref": "#/definitions/record"}},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["resolved"]["required"], ["created"])
        self.assertEqual(response.data["circular"], [])

    def test_root_reference_reports_circular(self):
        response = self.client.post(
            "/api/schemaform/resolve/",
            {"schema": {"type": "object"}, "reference": ""},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["resolved"], {"$ref": ""})
        self.assertEqual(response.data["circular"], [""])

    def test_rejects_scalar_schema(self):
        response = self.client.post(
            "/api/schemaform/resolve/",
            {"schema": "nope", "reference": "/a"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("schema", response.data)

    def test_requires_reference(self):
        response = self.client.post("/api/schemaform/resolve/", {"schema": {}}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("reference", response.data)

    def test_wait_remote(self):
        fetcher = _InstantFetcher(document=REMOTE_DOCUMENT)
        with mock.patch("schemaform.views.get_remote_fetcher", return_value=fetcher):
            response = self.client.post(
                "/api/schemaform/resolve/",
                {"schema": {}, "reference": {"$ref": REMOTE_URI}, "wait_remote": True},
                format="json",
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["resolved"], REMOTE_DOCUMENT)
        self.assertEqual(fetcher.calls, [REMOTE_URI])

    def test_remote_without_wait_does_not_fetch(self):
        with mock.patch("schemaform.views.get_remote_fetcher") as get_fetcher:
            response = self.client.post(
                "/api/schemaform/resolve/",
                {"schema": {}, "reference": REMOTE_URI},
                format="json",
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["resolved"], {"$ref": REMOTE_URI})
        self.assertEqual(response.data["circular"], [])
        get_fetcher.assert_not_called()

    def test_host_not_allowed_is_bad_gateway(self):
        session = mock.Mock()
        session.headers = {}
        fetcher = RemoteSchemaFetcher(session=session, allowed_hosts=[])
        try:
            with mock.patch("schemaform.views.get_remote_fetcher", return_value=fetcher):
                response = self.client.post(
                    "/api/schemaform/resolve/",
                    {"schema": {}, "reference": "http://169.254.169.254/latest/meta-data", "wait_remote": True},
                    format="json",
                )
        finally:
            fetcher.shutdown()
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.data["remote_error"], "host is not allowed")
        self.assertNotIn("resolved", response.data)
        session.get.assert_not_called()

    def test_api_fetcher_uses_allowed_hosts_setting(self):
        with mock.patch("schemaform.views._fetcher", None), override_settings(
            SCHEMAFORM_REMOTE_ALLOWED_HOSTS=["schemas.example.org"]
        ):
            fetcher = views.get_remote_fetcher()
        try:
            self.assertTrue(fetcher.is_allowed(REMOTE_URI))
            self.assertFalse(fetcher.is_allowed("http://localhost:8000/admin.json"))
        finally:
            fetcher.shutdown()

    def test_api_fetcher_allows_no_host_by_default(self):
        with mock.patch("schemaform.views._fetcher", None), override_settings(
            SCHEMAFORM_REMOTE_ALLOWED_HOSTS=[]
        ):
            fetcher = views.get_remote_fetcher()
        try:
            self.assertFalse(fetcher.is_allowed(REMOTE_URI))
        finally:
            fetcher.shutdown()

    def test_remote_failure_is_bad_gateway(self):
        fetcher = _InstantFetcher(error=RemoteSchemaError(REMOTE_URI, 404, "missing"))
        with mock.patch("schemaform.views.get_remote_fetcher", return_value=fetcher):
            response = self.client.post(
                "/api/schemaform/resolve/",
                {"schema": {}, "reference": REMOTE_URI, "wait_remote": True},
                format="json",
            )
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.data["remote_error"], "missing")


class DereferenceViewTest(SimpleTestCase):
    def test_dereferences_schema(self):
        response = APIClient().post(
            "/api/schemaform/dereference/",
            {"schema": TREE_SCHEMA, "circular_ok": True},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        child = response.data["schema"]["properties"]["root"]["properties"]["child"]
        self.assertEqual(child, {"$ref": "/definitions/node"})
        self.assertEqual(response.data["circular"], ["/definitions/node"])

    def test_remote_reference_is_left_as_placeholder(self):
        schema = {"properties": {"address": {"$ref": REMOTE_URI}}}
        with mock.patch("schemaform.views.get_remote_fetcher") as get_fetcher:
            response = APIClient().post(
                "/api/schemaform/dereference/",
                {"schema": schema},
                format="json",
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["schema"]["properties"]["address"], {"$ref": REMOTE_URI})
        get_fetcher.assert_not_called()


class RequiredViewTest(SimpleTestCase):
    def test_required_field(self):
        response = APIClient().post(
            "/api/schemaform/required/",
            {"schema": PERSON_SCHEMA, "pointer": "/phones/-/number"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, {"pointer": "/phones/-/number", "required": True})

    def test_optional_field(self):
        response = APIClient().post(
            "/api/schemaform/required/",
            {"schema": PERSON_SCHEMA, "pointer": "/email"},
            format="json",
        )
        self.assertFalse(response.data["required"])


# ===================================================================
# resolve_schema management command
# ===================================================================


class ResolveSchemaCommandTest(SimpleTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def _run(self, *args):
        out, err = io.StringIO(), io.StringIO()
        call_command("resolve_schema", *args, "--no-remote", stdout=out, stderr=err)
        return out.getvalue(), err.getvalue()

    def test_dereferences_json_file(self):
        path = self.dir / "schema.json"
        path.write_text(json.dumps(ALL_OF_SCHEMA), encoding="utf-8")
        out, _ = self._run(str(path))
        result = json.loads(out)
        self.assertEqual(result["properties"]["item"]["type"], "object")

    def test_yaml_file(self):
        path = self.dir / "schema.yaml"
        path.write_text(
            "definitions:\n"
            "  name:\n"
            "    type: string\n"
            "properties:\n"
            "  name:\n"
            "    $ref: '#/definitions/name'\n",
            encoding="utf-8",
        )
        out, _ = self._run(str(path))
        self.assertEqual(json.loads(out)["properties"]["name"], {"type": "string"})

    def test_single_reference(self):
        path = self.dir / "schema.json"
        path.write_text(json.dumps(ALL_OF_SCHEMA), encoding="utf-8")
        out, _ = self._run(str(path), "--reference", "/definitions/named")
        self.assertEqual(json.loads(out), ALL_OF_SCHEMA["definitions"]["named"])

    def test_reports_circular_references(self):
        path = self.dir / "schema.json"
        path.write_text(json.dumps(TREE_SCHEMA), encoding="utf-8")
        _, err = self._run(str(path), "--circular-ok")
        self.assertIn("/definitions/node", err)

    def test_writes_output_file(self):
        path = self.dir / "schema.json"
        path.write_text(json.dumps(ALL_OF_SCHEMA), encoding="utf-8")
        target = self.dir / "out" / "resolved.json"
        out, _ = self._run(str(path), "-o", str(target))
        self.assertIn("Wrote", out)
        self.assertEqual(json.loads(target.read_text(encoding="utf-8"))["properties"]["item"]["type"], "object")

    def test_missing_file(self):
        with self.assertRaises(CommandError):
            self._run(str(self.dir / "missing.json"))

    def test_invalid_json(self):
        path = self.dir / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(CommandError):
            self._run(str(path))
