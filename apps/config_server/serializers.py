"""
apps.config_server.serializers
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
I/O-only serializers for the config server API.
No business logic; shape validation only.
"""
from rest_framework import serializers

from .services.cipher_value import KeyAlias, Secret


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

class PropertySourceSerializer(serializers.Serializer):
    name = serializers.CharField()
    source = serializers.DictField(child=serializers.CharField(allow_blank=True))


class EnvironmentSerializer(serializers.Serializer):
    """Response shape for GET /{application}/{profile}[/{label}]/."""

    name = serializers.CharField()
    profiles = serializers.ListField(child=serializers.CharField())
    label = serializers.CharField(allow_null=True)
    version = serializers.CharField(allow_null=True)
    propertySources = PropertySourceSerializer(many=True)


# ---------------------------------------------------------------------------
# Encrypt / decrypt
# ---------------------------------------------------------------------------

class CipherRequestSerializer(serializers.Serializer):
    """
    Validates POST /encrypt/ and /decrypt/ bodies.

    ``secret`` and ``key`` select the key material and are mutually
    exclusive; omit both to use the default key.
    """

    value = serializers.CharField(trim_whitespace=False, allow_blank=True)
    secret = serializers.CharField(required=False, trim_whitespace=False)
    key = serializers.CharField(required=False)

    def validate_secret(self, value):
        if "}" in value:
            raise serializers.ValidationError("Secret must not contain '}'.")
        return value

    def validate_key(self, value):
        if "}" in value:
            raise serializers.ValidationError("Key alias must not contain '}'.")
        return value

    def validate(self, attrs):
        if "secret" in attrs and "key" in attrs:
            raise serializers.ValidationError("Specify at most one of 'secret' and 'key'.")
        if "secret" in attrs:
            attrs["selector"] = Secret(attrs["secret"])
        elif "key" in attrs:
            attrs["selector"] = KeyAlias(attrs["key"])
        else:
            attrs["selector"] = None
        return attrs


class CipherResponseSerializer(serializers.Serializer):
    value = serializers.CharField()


class StatusResponseSerializer(serializers.Serializer):
    status = serializers.CharField()


class ErrorResponseSerializer(serializers.Serializer):
    code = serializers.CharField()
    detail = serializers.CharField()
