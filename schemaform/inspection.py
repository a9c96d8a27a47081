"""Read-only questions asked of a resolved schema while a form is being built."""

import logging

from schemaform.jsonpointer import APPEND_SEGMENT, get_schema, parse_pointer

logger = logging.getLogger(__name__)


def is_input_required(schema, data_pointer):
    """Return True if the field at *data_pointer* is listed as required.

    The key is the pointer's last segment and the ``required`` list comes
    from the schema of its parent.  When the parent segment is ``-`` (the
    next new array item) the list is read from that array's ``items`` schema.
    Never raises: a malformed schema is logged and reported as not required.
    """
    if not isinstance(schema, (dict, list)):
        logger.error("Schema must be an object, got %s", type(schema).__name__)
        return False

    segments = parse_pointer(data_pointer)
    if not segments:
        return False

    key = segments[-1]
    parent = segments[:-1]
    if not parent:
        required = schema.get("required") if isinstance(schema, dict) else None
    elif parent[-1] == APPEND_SEGMENT:
        list_schema = get_schema(schema, parent[:-1])
        items = list_schema.get("items") if isinstance(list_schema, dict) else None
        required = items.get("required") if isinstance(items, dict) else None
    else:
        parent_schema = get_schema(schema, parent)
        required = parent_schema.get("required") if isinstance(parent_schema, dict) else None

    return isinstance(required, list) and key in required
