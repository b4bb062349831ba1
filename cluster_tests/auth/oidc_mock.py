"""
Mock OIDC identity provider.

The cluster manager discovers its token issuer through the
``platform-keycloak`` service. In the test cluster that service is an
ExternalName alias for a small nginx deployment that serves the discovery
document and the JWKS of the test identity, so tokens minted by
``TestIdentity`` validate inside the cluster.
"""

import json
from typing import Any, Dict, List

import yaml
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from cluster_tests.auth.issuer import TestIdentity
from cluster_tests.logging_config import configure_module_logging

logger = configure_module_logging("oidc_mock")

MOCK_NAME = "oidc-mock"
MOCK_NAMESPACE = "default"
KEYCLOAK_SERVICE = "platform-keycloak"
KEYCLOAK_NAMESPACE = "orch-platform"
NGINX_IMAGE = "nginx:alpine"

REALM_PATH = "/realms/master"
DISCOVERY_PATH = f"{REALM_PATH}/.well-known/openid-configuration"
KEYS_PATH = f"{REALM_PATH}/keys"

INDEX_TEXT = (
    "OIDC Mock Server (Dynamic Keys)\n"
    "Available endpoints:\n"
    f"  {DISCOVERY_PATH}\n"
    f"  {KEYS_PATH}\n"
)

INDEX_HTML = f"""<!DOCTYPE html>
<html>
<head><title>OIDC Mock Server (Dynamic Keys)</title></head>
<body>
<h1>OIDC Mock Server</h1>
<p><strong>Using Runtime-Generated Keys</strong></p>
<p>Available endpoints:</p>
<ul>
<li><a href="{DISCOVERY_PATH}">/.well-known/openid-configuration</a></li>
<li><a href="{KEYS_PATH}">/keys</a></li>
</ul>
</body>
</html>
"""


class _ManifestDumper(yaml.SafeDumper):
    pass


def _str_representer(dumper, data):
    # Multi-line values (nginx config, html) read better as literal blocks
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_ManifestDumper.add_representer(str, _str_representer)


def _nginx_config(discovery: Dict[str, Any], jwks_json: str) -> str:
    index = INDEX_TEXT.replace("\n", "\\n")
    return (
        "server {\n"
        "    listen 80;\n"
        "    server_name localhost;\n"
        "\n"
        f"    location {DISCOVERY_PATH} {{\n"
        f"        return 200 '{json.dumps(discovery)}';\n"
        "        add_header Content-Type application/json;\n"
        "    }\n"
        "\n"
        f"    location {KEYS_PATH} {{\n"
        f"        return 200 '{jwks_json}';\n"
        "        add_header Content-Type application/json;\n"
        "    }\n"
        "\n"
        "    location / {\n"
        f"        return 200 '{index}';\n"
        "    }\n"
        "}\n"
    )


def build_manifest_documents(identity: TestIdentity) -> List[Dict[str, Any]]:
    """Kubernetes objects that stand up the mock provider."""
    labels = {"app": MOCK_NAME}
    jwks_json = identity.jwks_json()

    deployment = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": MOCK_NAME, "namespace": MOCK_NAMESPACE, "labels": labels},
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [
                        {
                            "name": "nginx",
                            "image": NGINX_IMAGE,
                            "ports": [{"containerPort": 80}],
                            "volumeMounts": [
                                {"name": "config", "mountPath": "/etc/nginx/conf.d"},
                                {
                                    "name": "content",
                                    "mountPath": "/usr/share/nginx/html",
                                },
                            ],
                        }
                    ],
                    "volumes": [
                        {
                            "name": "config",
                            "configMap": {"name": f"{MOCK_NAME}-nginx-config"},
                        },
                        {
                            "name": "content",
                            "configMap": {"name": f"{MOCK_NAME}-content"},
                        },
                    ],
                },
            },
        },
    }

    http_port = [{"port": 80, "targetPort": 80, "name": "http"}]

    keycloak_alias = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": KEYCLOAK_SERVICE, "namespace": KEYCLOAK_NAMESPACE},
        "spec": {
            "selector": labels,
            "ports": http_port,
            "type": "ExternalName",
            "externalName": f"{MOCK_NAME}.{MOCK_NAMESPACE}.svc.cluster.local",
        },
    }

    service = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": MOCK_NAME, "namespace": MOCK_NAMESPACE},
        "spec": {"selector": labels, "ports": http_port},
    }

    nginx_config = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": f"{MOCK_NAME}-nginx-config", "namespace": MOCK_NAMESPACE},
        "data": {
            "default.conf": _nginx_config(identity.discovery_document(), jwks_json)
        },
    }

    content = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": f"{MOCK_NAME}-content", "namespace": MOCK_NAMESPACE},
        "data": {"jwks.json": jwks_json + "\n", "index.html": INDEX_HTML},
    }

    return [deployment, keycloak_alias, service, nginx_config, content]


def render_oidc_mock_manifest(identity: TestIdentity) -> str:
    """Render the mock provider as a multi-document YAML manifest."""
    documents = build_manifest_documents(identity)
    logger.debug(f"Rendering OIDC mock manifest with {len(documents)} documents")
    header = (
        "# Generated OIDC Mock Server Configuration (Dynamic Keys)\n"
        "# This configuration provides a mock OIDC server with runtime-generated RSA keys\n"
    )
    body = yaml.dump_all(
        documents,
        Dumper=_ManifestDumper,
        default_flow_style=False,
        sort_keys=False,
        width=1000,
    )
    return header + body


def create_oidc_mock_app(identity: TestIdentity) -> FastAPI:
    """
    In-process mock provider serving the same endpoints as the nginx deployment.

    Args:
        identity: Identity whose JWKS and discovery document are served

    Returns:
        FastAPI application
    """
    app = FastAPI(title="OIDC Mock Server", version="1.0.0")

    @app.get(DISCOVERY_PATH)
    async def openid_configuration():
        return identity.discovery_document()

    @app.get(KEYS_PATH)
    async def keys():
        return identity.jwks()

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/", response_class=PlainTextResponse)
    async def index():
        return INDEX_TEXT

    return app
