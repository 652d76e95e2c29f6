"""
apps.config_server.views
~~~~~~~~~~~~~~~~~~~~~~~~~
Thin DRF API views for the config server.
All logic is delegated to :class:`~apps.config_server.services.ConfigService`.

Endpoints
---------
GET    /{application}/{profile}[/{label}]          – Resolve environment (JSON)
GET    /[{label}/]{application}-{profile}.yml      – Rendered YAML document
GET    /[{label}/]{application}-{profile}.properties – Rendered properties document
POST   /encrypt/[{application}/{profile}/]         – Encrypt a value
POST   /decrypt/[{application}/{profile}/]         – Decrypt a value
GET    /encrypt/status/                            – Default key status
GET    /key/                                       – Default public key (PEM)
POST   /refresh/                                   – Refetch the repository
"""
from __future__ import annotations

from django.http import HttpResponse
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from .apps import get_config_service
from .exceptions import InvalidRequest
from .serializers import (
    CipherRequestSerializer,
    CipherResponseSerializer,
    EnvironmentSerializer,
    ErrorResponseSerializer,
    StatusResponseSerializer,
)
from .services import ResolutionRequest
from .services.property_documents import DocumentEncoding, encoding_for_path

TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


class EnvironmentView(APIView):
    """GET /{application}/{profile}[/{label}] – resolve an environment."""

    @extend_schema(
        summary="Get Environment",
        description=(
            "Resolves the ordered property sources for an application, a "
            "comma-separated list of profiles and an optional label (branch, "
            "tag or commit; '(_)' stands for '/').  Cipher values are "
            "decrypted server-side when enabled; values that cannot be "
            "decrypted are returned under 'invalid.<key>'."
        ),
        responses={
            200: EnvironmentSerializer,
            404: OpenApiResponse(ErrorResponseSerializer, description="Label not found."),
            500: OpenApiResponse(ErrorResponseSerializer, description="Malformed document."),
            503: OpenApiResponse(ErrorResponseSerializer, description="Repository unavailable."),
        },
        tags=["Environment"],
    )
    def get(self, request: Request, application: str, profile: str, label: str | None = None) -> Response:
        environment = get_config_service().get_environment(
            ResolutionRequest(application=application, profile=profile, label=label)
        )
        return Response(environment.to_dict(), status=status.HTTP_200_OK)


class EnvironmentDocumentView(APIView):
    """GET /[{label}/]{application}-{profile}.{yml|properties} – rendered document."""

    @extend_schema(
        summary="Get Environment As Document",
        description=(
            "Resolves the environment and renders it as a single flat "
            "document, highest-priority value first.  The name is split into "
            "application and profile at its last '-'."
        ),
        responses={
            (200, "text/plain"): OpenApiResponse(description="Rendered document."),
            404: OpenApiResponse(ErrorResponseSerializer, description="Label not found."),
            422: OpenApiResponse(ErrorResponseSerializer, description="Name lacks a profile."),
        },
        tags=["Environment"],
    )
    def get(self, request: Request, name: str, extension: str, label: str | None = None) -> HttpResponse:
        application, sep, profile = name.rpartition("-")
        if not sep or not application:
            raise InvalidRequest(f'"{name}" must have the form <application>-<profile>.')
        encoding = encoding_for_path(f".{extension}") or DocumentEncoding.PROPERTIES

        service = get_config_service()
        environment = service.get_environment(
            ResolutionRequest(application=application, profile=profile, label=label)
        )
        return HttpResponse(service.render(environment, encoding), content_type=TEXT_CONTENT_TYPE)


class EncryptView(APIView):
    """POST /encrypt/[{application}/{profile}/] – encrypt a value."""

    @extend_schema(
        summary="Encrypt Value",
        description=(
            "Encrypts 'value' and returns a complete '{cipher}' value.  Pass "
            "'secret' or 'key' to choose the key; on the per-client path an "
            "unannotated request uses the key mapped to that client."
        ),
        request=CipherRequestSerializer,
        responses={
            200: CipherResponseSerializer,
            400: OpenApiResponse(
                ErrorResponseSerializer,
                description="No key configured (no_key_configured) or unknown alias (unknown_key_alias).",
            ),
        },
        tags=["Cryptography"],
    )
    def post(self, request: Request, application: str | None = None, profile: str | None = None) -> Response:
        vd = _validated(request)
        service = get_config_service()
        selector = vd["selector"]
        if selector is None and application:
            selector = service.selector_for_client(application, profile or "")
        return Response({"value": service.encrypt_value(vd["value"], selector)}, status=status.HTTP_200_OK)


class DecryptView(APIView):
    """POST /decrypt/[{application}/{profile}/] – decrypt a value."""

    @extend_schema(
        summary="Decrypt Value",
        description=(
            "Decrypts 'value' (with or without the '{cipher}' prefix).  A key "
            "annotation inside the value wins over 'secret'/'key'."
        ),
        request=CipherRequestSerializer,
        responses={
            200: CipherResponseSerializer,
            400: OpenApiResponse(
                ErrorResponseSerializer,
                description=(
                    "Bad ciphertext (decryption_failed), no key configured "
                    "(no_key_configured) or unknown alias (unknown_key_alias)."
                ),
            ),
        },
        tags=["Cryptography"],
    )
    def post(self, request: Request, application: str | None = None, profile: str | None = None) -> Response:
        vd = _validated(request)
        service = get_config_service()
        selector = vd["selector"]
        if selector is None and application:
            selector = service.selector_for_client(application, profile or "")
        return Response({"value": service.decrypt_value(vd["value"], selector)}, status=status.HTTP_200_OK)


class EncryptStatusView(APIView):
    """GET /encrypt/status/ – whether a default key is usable."""

    @extend_schema(
        summary="Encryption Status",
        responses={
            200: StatusResponseSerializer,
            400: OpenApiResponse(ErrorResponseSerializer, description="No key configured."),
        },
        tags=["Cryptography"],
    )
    def get(self, request: Request) -> Response:
        return Response({"status": get_config_service().encryption_status()}, status=status.HTTP_200_OK)


class PublicKeyView(APIView):
    """GET /key/ – PEM public key of the default asymmetric key."""

    @extend_schema(
        summary="Get Public Key",
        responses={
            (200, "text/plain"): OpenApiResponse(description="PEM encoded public key."),
            404: OpenApiResponse(ErrorResponseSerializer, description="Default key is symmetric."),
        },
        tags=["Cryptography"],
    )
    def get(self, request: Request) -> HttpResponse:
        return HttpResponse(get_config_service().public_key_pem(), content_type=TEXT_CONTENT_TYPE)


class RefreshView(APIView):
    """POST /refresh/ – fetch the repository and drop cached lookups."""

    @extend_schema(
        summary="Refresh Repository",
        request=None,
        responses={
            200: StatusResponseSerializer,
            503: OpenApiResponse(ErrorResponseSerializer, description="Repository unavailable."),
        },
        tags=["Environment"],
    )
    def post(self, request: Request) -> Response:
        get_config_service().refresh()
        return Response({"status": "refreshed"}, status=status.HTTP_200_OK)


def _validated(request: Request) -> dict:
    serializer = CipherRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data
