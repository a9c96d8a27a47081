"""Validator options derived from a schema, for the form layer to bind."""

from typing import Any, Dict, List, Optional

from schemaform.jsonpointer import escape, set_value

# Validator options read verbatim from the schema, by schema type.
PASS_THROUGH_OPTIONS = {
    "string": ["pattern", "format", "minLength", "maxLength"],
    "object": ["minProperties", "maxProperties", "dependencies"],
    "array": ["minItems", "maxItems", "uniqueItems"],
}

NUMERIC_TYPES = {"number", "integer"}


def get_first_value(values: Any) -> Optional[Any]:
    """Return the first element of *values* that is not None."""
    if not isinstance(values, list):
        return None
    for value in values:
        if value is not None:
            return value
    return None


def get_control_validators(schema: Dict[str, Any]) -> Dict[str, List[Any]]:
    """Map schema keywords to ``{validator_name: [arguments]}``.

    Numeric bounds carry their exclusivity flag as a second argument, e.g.
    ``{"minimum": [0, True]}`` for ``exclusiveMinimum: true``.
    """
    validators: Dict[str, List[Any]] = {}
    schema_type = schema.get("type")
    if not isinstance(schema_type, str):
        # union types such as ["string", "null"] carry no type-specific options
        schema_type = None
    if schema_type in PASS_THROUGH_OPTIONS:
        for prop in PASS_THROUGH_OPTIONS[schema_type]:
            if prop in schema:
                validators[prop] = [schema[prop]]
    elif schema_type in NUMERIC_TYPES:
        for limit in ("minimum", "maximum"):
            if limit in schema:
                exclusive_key = "exclusive" + limit.capitalize()
                validators[limit] = [schema[limit], schema.get(exclusive_key) is True]
        if "multipleOf" in schema:
            validators["multipleOf"] = [schema["multipleOf"]]
    if "enum" in schema:
        validators["enum"] = [schema["enum"]]
    return validators


def set_object_input_options(schema: Dict[str, Any], template: Dict[str, Any]) -> bool:
    """Flag each required property of an object schema on *template*.

    Sets ``/<name>/validators/required`` to ``[]`` for every name in the
    schema's ``required`` (a list, or a single name).  Returns True if any
    field was flagged.
    """
    required = schema.get("required")
    if not required:
        return False
    names = required if isinstance(required, list) else [required]
    for name in names:
        set_value(template, "/" + escape(name) + "/validators/required", [])
    return True
