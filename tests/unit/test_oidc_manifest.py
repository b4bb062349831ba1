"""Tests for the mock OIDC provider manifest."""

import json
import re

import pytest
import yaml

from cluster_tests.auth.oidc_mock import (
    DISCOVERY_PATH,
    KEYS_PATH,
    render_oidc_mock_manifest,
)

pytestmark = pytest.mark.unit


@pytest.fixture(scope="module")
def documents(identity):
    return list(yaml.safe_load_all(render_oidc_mock_manifest(identity)))


def find(documents, kind, name):
    for doc in documents:
        if doc["kind"] == kind and doc["metadata"]["name"] == name:
            return doc
    raise AssertionError(f"{kind}/{name} not in manifest")


class TestManifest:
    """Tests for render_oidc_mock_manifest."""

    def test_document_kinds(self, documents):
        assert [(d["kind"], d["metadata"]["name"]) for d in documents] == [
            ("Deployment", "oidc-mock"),
            ("Service", "platform-keycloak"),
            ("Service", "oidc-mock"),
            ("ConfigMap", "oidc-mock-nginx-config"),
            ("ConfigMap", "oidc-mock-content"),
        ]

    def test_keycloak_alias(self, documents):
        service = find(documents, "Service", "platform-keycloak")
        assert service["metadata"]["namespace"] == "orch-platform"
        assert service["spec"]["type"] == "ExternalName"
        assert service["spec"]["externalName"] == "oidc-mock.default.svc.cluster.local"

    def test_deployment_mounts_config_maps(self, documents):
        deployment = find(documents, "Deployment", "oidc-mock")
        volumes = deployment["spec"]["template"]["spec"]["volumes"]
        assert {v["configMap"]["name"] for v in volumes} == {
            "oidc-mock-nginx-config",
            "oidc-mock-content",
        }
        container = deployment["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == "nginx:alpine"

    def test_content_jwks_matches_identity(self, documents, identity):
        content = find(documents, "ConfigMap", "oidc-mock-content")
        assert json.loads(content["data"]["jwks.json"]) == identity.jwks()
        assert "<h1>OIDC Mock Server</h1>" in content["data"]["index.html"]

    def test_nginx_serves_discovery_and_keys(self, documents, identity):
        conf = find(documents, "ConfigMap", "oidc-mock-nginx-config")["data"][
            "default.conf"
        ]
        bodies = dict(
            re.findall(r"location (\S+) \{\s*return 200 '([^']*)';", conf)
        )
        assert json.loads(bodies[DISCOVERY_PATH]) == identity.discovery_document()
        assert json.loads(bodies[KEYS_PATH]) == identity.jwks()

    def test_manifest_is_deterministic_for_one_key(self, identity):
        assert render_oidc_mock_manifest(identity) == render_oidc_mock_manifest(
            identity
        )
