"""
DRF views for the schemaform API.

Endpoints:
    POST /api/schemaform/resolve/      resolve one $ref against a schema
    POST /api/schemaform/dereference/  inline every $ref in a schema
    POST /api/schemaform/required/     is the field at a data pointer required?

Each request gets its own reference cache; nothing is shared between calls
except the remote fetcher and its connection pool.
"""

import logging

from django.conf import settings
from rest_framework import permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from schemaform.inspection import is_input_required
from schemaform.references import (
    SchemaReferenceCache,
    dereference_schema,
    is_remote,
    normalize_reference,
    resolve_schema_reference,
)
from schemaform.remote import RemoteSchemaError, RemoteSchemaFetcher
from schemaform.serializers import (
    DereferenceSerializer,
    RequiredFieldSerializer,
    ResolveReferenceSerializer,
)

logger = logging.getLogger(__name__)

_fetcher = None


def get_remote_fetcher():
    """Return the process-wide :class:`RemoteSchemaFetcher`, creating it on first use.

    Only hosts listed in ``SCHEMAFORM_REMOTE_ALLOWED_HOSTS`` are contacted.
    """
    global _fetcher
    if _fetcher is None:
        _fetcher = RemoteSchemaFetcher(
            allowed_hosts=getattr(settings, "SCHEMAFORM_REMOTE_ALLOWED_HOSTS", []),
        )
    return _fetcher


@api_view(["POST"])
@permission_classes([permissions.AllowAny])
def resolve_view(request):
    """Resolve a single reference; optionally wait for a remote document."""
    serializer = ResolveReferenceSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    cache = SchemaReferenceCache()
    # a fetcher writes into the cache from its worker, so only use one when waiting for it
    fetcher = get_remote_fetcher() if data["wait_remote"] else None
    resolved = resolve_schema_reference(
        data["reference"], data["schema"], cache, data["circular_ok"], fetcher
    )

    pointer = normalize_reference(data["reference"])
    if data["wait_remote"] and is_remote(pointer) and resolved == {"$ref": pointer}:
        if pointer not in cache:
            try:
                fetcher.fetch(pointer, cache).result()
            except RemoteSchemaError as exc:
                logger.warning("Remote reference %s could not be fetched: %s", pointer, exc)
                return Response(
                    {"detail": "Remote schema error.", "remote_error": str(exc.detail)},
                    status=status.HTTP_502_BAD_GATEWAY,
                )
        resolved = resolve_schema_reference(pointer, data["schema"], cache, data["circular_ok"], fetcher)

    return Response(
        {"resolved": resolved, "circular": cache.circular_pointers()},
        status=status.HTTP_200_OK,
    )


@api_view(["POST"])
@permission_classes([permissions.AllowAny])
def dereference_view(request):
    """Return the schema with every local reference inlined."""
    serializer = DereferenceSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    cache = SchemaReferenceCache()
    # remote references stay as {"$ref": uri} placeholders
    document = dereference_schema(data["schema"], cache, data["circular_ok"])
    return Response(
        {"schema": document, "circular": cache.circular_pointers()},
        status=status.HTTP_200_OK,
    )


@api_view(["POST"])
@permission_classes([permissions.AllowAny])
def required_view(request):
    """Report whether the field at ``pointer`` is required by the schema."""
    serializer = RequiredFieldSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    return Response(
        {"pointer": data["pointer"], "required": is_input_required(data["schema"], data["pointer"])},
        status=status.HTTP_200_OK,
    )
