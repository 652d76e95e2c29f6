"""
tests.test_api
~~~~~~~~~~~~~~
HTTP-level tests for the config server endpoints, driven through DRF's
APIClient against an in-memory repository.  No database access required.
"""
from __future__ import annotations

import pytest
import yaml
from django.apps import apps as django_apps
from rest_framework.test import APIClient

from apps.config_server.services.cipher_value import Secret
from apps.config_server.services.config_service import ConfigService, parse_client_keys
from apps.config_server.services.key_resolver import KeyResolver

REPOSITORY = {
    "main": {
        "application.yml": "server:\n  port: 8080\nuser:\n  role: Default\n",
        "config-client-development.properties": "user.role=Developer\n",
        "config-client.properties": "user.role=Base\nuser.timeout=30\n",
    },
    "v1.0": {
        "config-client.properties": "user.role=Released\n",
    },
    "feature/login": {
        "config-client.properties": "user.role=Feature\n",
    },
}


@pytest.fixture
def api_client() -> APIClient:
    """Return an unauthenticated DRF APIClient."""
    return APIClient()


@pytest.fixture
def install_service(monkeypatch):
    """Swap the process-wide service for the one under test."""

    def _install(service: ConfigService) -> ConfigService:
        monkeypatch.setattr(django_apps.get_app_config("config_server"), "service", service)
        return service

    return _install


@pytest.fixture
def service(make_service, install_service) -> ConfigService:
    return install_service(make_service(REPOSITORY))


# ===========================================================================
# TestEnvironmentEndpoints
# ===========================================================================

class TestEnvironmentEndpoints:
    """GET /{application}/{profile}[/{label}] and rendered documents."""

    def test_environment_json(self, api_client, service):
        resp = api_client.get("/config-client/development")
        assert resp.status_code == 200
        body = resp.json()
        assert body["name"] == "config-client"
        assert body["profiles"] == ["development"]
        assert body["label"] == "main"
        assert body["version"] == service.source.list_revisions()["main"]
        names = [ps["name"] for ps in body["propertySources"]]
        assert names == [
            "memory://config-repo/config-client-development.properties",
            "memory://config-repo/config-client.properties",
            "memory://config-repo/application.yml",
        ]
        assert body["propertySources"][0]["source"] == {"user.role": "Developer"}
        assert body["propertySources"][2]["source"]["server.port"] == "8080"

    def test_trailing_slash_is_optional(self, api_client, service):
        assert api_client.get("/config-client/development/").status_code == 200

    def test_environment_with_label(self, api_client, service):
        resp = api_client.get("/config-client/development/v1.0")
        assert resp.status_code == 200
        body = resp.json()
        assert body["label"] == "v1.0"
        assert body["propertySources"][0]["source"] == {"user.role": "Released"}

    def test_label_with_slash_placeholder(self, api_client, service):
        resp = api_client.get("/config-client/development/feature(_)login")
        assert resp.status_code == 200
        assert resp.json()["label"] == "feature/login"

    def test_unknown_label_404(self, api_client, service):
        resp = api_client.get("/config-client/development/no-such-label")
        assert resp.status_code == 404
        assert resp.json()["code"] == "revision_not_found"

    def test_unknown_application_gives_empty_sources(self, api_client, make_service, install_service):
        install_service(make_service({"unrelated.txt": "x"}))
        resp = api_client.get("/billing/prod")
        assert resp.status_code == 200
        assert resp.json()["propertySources"] == []

    def test_malformed_document_500(self, api_client, make_service, install_service):
        install_service(make_service({"app.yml": "a: 'unterminated\n"}))
        resp = api_client.get("/app/dev")
        assert resp.status_code == 500
        assert resp.json()["code"] == "malformed_document"

    def test_repository_unavailable_503(self, api_client, install_service, symmetric_resolver):
        install_service(ConfigService(None, key_resolver=symmetric_resolver))
        resp = api_client.get("/app/dev")
        assert resp.status_code == 503
        assert resp.json()["code"] == "source_unavailable"
        assert resp["Retry-After"] == "5"

    def test_yaml_document(self, api_client, service):
        resp = api_client.get("/config-client-development.yml")
        assert resp.status_code == 200
        assert resp["Content-Type"].startswith("text/plain")
        assert yaml.safe_load(resp.content) == {
            "user": {"role": "Developer", "timeout": "30"},
            "server": {"port": "8080"},
        }

    def test_properties_document_with_label(self, api_client, service):
        resp = api_client.get("/v1.0/config-client-development.properties")
        assert resp.status_code == 200
        assert resp.content.decode() == "user.role=Released\n"

    def test_document_name_without_profile_422(self, api_client, service):
        resp = api_client.get("/application.yml")
        assert resp.status_code == 422
        assert resp.json()["code"] == "invalid_request"


# ===========================================================================
# TestCryptographyEndpoints
# ===========================================================================

class TestCryptographyEndpoints:
    """POST /encrypt/, /decrypt/ and the key status endpoints."""

    def test_encrypt_then_decrypt(self, api_client, service):
        resp = api_client.post("/encrypt/", {"value": "s3cr3t"}, format="json")
        assert resp.status_code == 200
        token = resp.json()["value"]
        assert token.startswith("{cipher}")

        resp = api_client.post("/decrypt/", {"value": token}, format="json")
        assert resp.status_code == 200
        assert resp.json()["value"] == "s3cr3t"

    def test_encrypt_with_inline_secret(self, api_client, service):
        resp = api_client.post("/encrypt/", {"value": "x", "secret": "d3v3L-key"}, format="json")
        token = resp.json()["value"]
        assert token.startswith("{cipher}{secret:d3v3L-key}")
        assert service.decrypt_value(token) == "x"

    def test_whitespace_is_preserved(self, api_client, service):
        token = api_client.post("/encrypt/", {"value": "  padded  "}, format="json").json()["value"]
        assert service.decrypt_value(token) == "  padded  "

    def test_per_client_key(self, api_client, make_service, install_service, keystore_resolver):
        install_service(
            make_service(
                REPOSITORY,
                key_resolver=keystore_resolver,
                client_keys=parse_client_keys(["config-client/development=alias-b"]),
            )
        )
        resp = api_client.post("/encrypt/config-client/development/", {"value": "x"}, format="json")
        assert resp.status_code == 200
        token = resp.json()["value"]
        assert token.startswith("{cipher}{key:alias-b}")

        resp = api_client.post("/decrypt/config-client/development/", {"value": token}, format="json")
        assert resp.json()["value"] == "x"

    def test_unmapped_client_uses_default_key(self, api_client, service):
        token = api_client.post("/encrypt/billing/prod/", {"value": "x"}, format="json").json()["value"]
        assert not token.startswith("{cipher}{")

    def test_decrypt_tampered_400(self, api_client, service):
        token = service.encrypt_value("x", Secret("abc"))
        tampered = token[:-4] + ("AAAA" if token[-4:] != "AAAA" else "BBBB")
        resp = api_client.post("/decrypt/", {"value": tampered}, format="json")
        assert resp.status_code == 400
        assert resp.json()["code"] == "decryption_failed"

    def test_no_key_configured_400(self, api_client, make_service, install_service):
        install_service(make_service(REPOSITORY, key_resolver=KeyResolver(None)))
        resp = api_client.post("/encrypt/", {"value": "x"}, format="json")
        assert resp.status_code == 400
        assert resp.json()["code"] == "no_key_configured"

        resp = api_client.get("/encrypt/status/")
        assert resp.status_code == 400
        assert resp.json()["code"] == "no_key_configured"

    def test_unknown_alias_400(self, api_client, make_service, install_service, keystore_resolver):
        install_service(make_service(REPOSITORY, key_resolver=keystore_resolver))
        resp = api_client.post("/encrypt/", {"value": "x", "key": "missing"}, format="json")
        assert resp.status_code == 400
        assert resp.json()["code"] == "unknown_key_alias"

    def test_secret_and_key_are_exclusive(self, api_client, service):
        resp = api_client.post("/encrypt/", {"value": "x", "secret": "a", "key": "b"}, format="json")
        assert resp.status_code == 400

    def test_missing_value_400(self, api_client, service):
        resp = api_client.post("/encrypt/", {}, format="json")
        assert resp.status_code == 400
        assert "value" in resp.json()

    def test_encrypt_status_ok(self, api_client, service):
        resp = api_client.get("/encrypt/status/")
        assert resp.status_code == 200
        assert resp.json() == {"status": "OK"}

    def test_public_key(self, api_client, make_service, install_service, keystore_resolver):
        install_service(make_service(REPOSITORY, key_resolver=keystore_resolver))
        resp = api_client.get("/key/")
        assert resp.status_code == 200
        assert resp.content.decode().startswith("-----BEGIN PUBLIC KEY-----")

    def test_public_key_404_for_symmetric(self, api_client, service):
        resp = api_client.get("/key/")
        assert resp.status_code == 404
        assert resp.json()["code"] == "no_public_key"


# ===========================================================================
# TestOperationalEndpoints
# ===========================================================================

class TestOperationalEndpoints:
    def test_refresh(self, api_client, service):
        service.source.push("main", {"config-client.properties": "user.role=Pushed\n"})
        assert api_client.get("/config-client/default").json()["propertySources"][0]["source"] == {
            "user.role": "Base",
            "user.timeout": "30",
        }

        resp = api_client.post("/refresh/")
        assert resp.status_code == 200
        assert resp.json() == {"status": "refreshed"}

        body = api_client.get("/config-client/default").json()
        assert body["propertySources"][0]["source"] == {"user.role": "Pushed"}

    def test_health_ok(self, api_client, service):
        resp = api_client.get("/health/")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "repository": "ok", "revisions": 3}

    def test_health_degraded(self, api_client, install_service, symmetric_resolver):
        install_service(ConfigService(None, key_resolver=symmetric_resolver))
        resp = api_client.get("/health/")
        assert resp.status_code == 503
        assert resp.json()["status"] == "degraded"

    def test_request_id_header(self, api_client, service):
        resp = api_client.get("/health/", HTTP_X_REQUEST_ID="req-123")
        assert resp["X-Request-ID"] == "req-123"
