"""Client for the cluster-manager REST API (v2) used by the test suites."""

from typing import Any, Dict, Generator, List, Optional

import httpx

from cluster_tests.auth.models import TestAuthContext
from cluster_tests.config import (
    DEFAULT_CLUSTER_MANAGER_URL,
    DEFAULT_CLUSTER_NAME,
    DEFAULT_NAMESPACE,
    DEFAULT_NODE_GUID,
)
from cluster_tests.logging_config import configure_module_logging

logger = configure_module_logging("client")

PROJECT_HEADER = "Activeprojectid"

K3S_TEMPLATE_NAME = "baseline-k3s"
RKE2_TEMPLATE_NAME = "baseline-rke2"
BASELINE_TEMPLATE_VERSION = "v0.0.1"


class ClusterAPIError(Exception):
    """Cluster-manager returned an unexpected status or could not be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class BearerAuth(httpx.Auth):
    """Attach ``Authorization: Bearer <token>`` to every request."""

    def __init__(self, token: str):
        self.token = token

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.token}"
        yield request


def build_cluster_spec(
    name: str = DEFAULT_CLUSTER_NAME,
    template: str = f"{K3S_TEMPLATE_NAME}-{BASELINE_TEMPLATE_VERSION}",
    node_id: str = DEFAULT_NODE_GUID,
    labels: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Request body for creating a single-node cluster."""
    return {
        "name": name,
        "template": template,
        "nodes": [{"id": node_id, "role": "all"}],
        "labels": dict(labels or {}),
    }


class ClusterManagerClient:
    """
    Synchronous cluster-manager client scoped to one project.

    Every request carries the ``Activeprojectid`` header; when an auth
    context is given requests are also authenticated with its bearer token.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_CLUSTER_MANAGER_URL,
        project_id: str = DEFAULT_NAMESPACE,
        auth_context: Optional[TestAuthContext] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.project_id = project_id
        self.auth_context = auth_context
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={
                PROJECT_HEADER: project_id,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            auth=BearerAuth(auth_context.token) if auth_context else None,
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> "ClusterManagerClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        expected: tuple = (200,),
        **kwargs,
    ) -> httpx.Response:
        logger.debug(f"{method} {self.base_url}{path}")
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Request {method} {path} failed: {e}")
            raise ClusterAPIError(f"{method} {path} failed: {e}") from e

        if response.status_code not in expected:
            logger.error(
                f"{method} {path} returned {response.status_code}: {response.text}"
            )
            raise ClusterAPIError(
                f"{method} {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    def healthz(self) -> httpx.Response:
        """Raw health response, whatever the status."""
        return self._request("GET", "/v2/healthz", expected=tuple(range(100, 600)))

    def check_authentication(self) -> None:
        """
        Verify the bearer token is accepted.

        Raises:
            ClusterAPIError: 401 for an invalid or expired token, 403 for
                missing roles, any other non-200 status as unexpected
        """
        response = self.healthz()
        status = response.status_code
        if status == 200:
            logger.info("Authentication successful")
            return
        if status == 401:
            message = "authentication failed: invalid or expired token"
        elif status == 403:
            message = "authorization failed: insufficient permissions"
        else:
            message = f"unexpected response status: {status}"
        raise ClusterAPIError(message, status_code=status, body=response.text)

    def import_template(self, template: Dict[str, Any]) -> None:
        """Import a cluster template; an existing template is not an error."""
        response = self._request(
            "POST", "/v2/templates", expected=(201, 409), json=template
        )
        if response.status_code == 409:
            logger.info(f"Template already exists: {template.get('name')}")

    def get_template(self, name: str, version: str) -> Dict[str, Any]:
        return self._request("GET", f"/v2/templates/{name}/{version}").json()

    def list_templates(self, filter: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"filter": filter} if filter else None
        body = self._request("GET", "/v2/templates", params=params).json()
        return body.get("templateInfoList") or []

    def delete_template(self, name: str, version: str) -> None:
        self._request("DELETE", f"/v2/templates/{name}/{version}", expected=(204,))

    def delete_all_templates(self) -> List[str]:
        """Delete every template in the project and return their names."""
        deleted = []
        for info in self.list_templates():
            logger.info(f"Deleting template: {info['name']}-{info['version']}")
            self.delete_template(info["name"], info["version"])
            deleted.append(f"{info['name']}-{info['version']}")
        return deleted

    def get_default_template(self) -> Dict[str, Any]:
        body = self._request("GET", "/v2/templates", params={"default": "true"}).json()
        return body.get("defaultTemplateInfo") or {}

    def set_default_template(self, name: str, version: str = "") -> None:
        payload = {"version": version} if version else {}
        self._request("PUT", f"/v2/templates/{name}/default", json=payload)

    def create_cluster(self, spec: Dict[str, Any]) -> None:
        """Create a cluster; an existing cluster is not an error."""
        response = self._request("POST", "/v2/clusters", expected=(201, 409), json=spec)
        if response.status_code == 409:
            logger.info(f"Cluster already exists: {spec.get('name')}")

    def get_cluster(self, name: str) -> Dict[str, Any]:
        return self._request("GET", f"/v2/clusters/{name}").json()

    def delete_cluster(self, name: str) -> None:
        self._request("DELETE", f"/v2/clusters/{name}", expected=(204,))

    def delete_node(self, cluster: str, node_id: str, force: bool = False) -> None:
        params = {"force": "true"} if force else None
        self._request(
            "DELETE", f"/v2/clusters/{cluster}/nodes/{node_id}", params=params
        )

    def cluster_summary(self) -> Dict[str, Any]:
        return self._request("GET", "/v2/clusters/summary").json()

    def get_kubeconfig(self, name: str) -> str:
        """Kubeconfig of a workload cluster."""
        body = self._request("GET", f"/v2/clusters/{name}/kubeconfigs").json()
        return body.get("kubeconfig", "")

    def update_labels(self, name: str, labels: Dict[str, str]) -> None:
        self._request("PUT", f"/v2/clusters/{name}/labels", json=labels)
