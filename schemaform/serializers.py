"""
Request serializers for the schemaform API endpoints.
"""

from rest_framework import serializers


class SchemaField(serializers.JSONField):
    """A JSON Schema document: must be an object or an array."""

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        if not isinstance(value, (dict, list)):
            raise serializers.ValidationError("Schema must be a JSON object or array.")
        return value


class ResolveReferenceSerializer(serializers.Serializer):
    """Request to resolve one reference against a schema."""

    schema = SchemaField()
    reference = serializers.JSONField(help_text='Pointer string or {"$ref": pointer}')
    circular_ok = serializers.BooleanField(default=False)
    wait_remote = serializers.BooleanField(
        default=False,
        help_text="Block until a remote reference has been downloaded",
    )


class DereferenceSerializer(serializers.Serializer):
    """Request to inline every reference in a schema."""

    schema = SchemaField()
    circular_ok = serializers.BooleanField(default=False)


class RequiredFieldSerializer(serializers.Serializer):
    """Request to check whether a data pointer names a required field."""

    schema = SchemaField()
    pointer = serializers.CharField(allow_blank=True, trim_whitespace=False)
