"""HTTP client for the machine-learning service REST API.

Wraps an ``httpx.AsyncClient`` with one method per endpoint the lifecycle
uses. Request methods return the raw ``httpx.Response`` so stages can verify
status codes themselves; lookup helpers (``get_project_id``,
``get_analysis_id``, ...) verify the response and return the parsed value.
Network-level failures are raised as ``TransportError``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from ml_lifecycle.errors import MalformedResponseError, TransportError
from ml_lifecycle.models import HarnessConfig
from ml_lifecycle.verifier import expect_status, read_json, read_json_object

logger = logging.getLogger(__name__)

_OK = 200


class MLServiceClient:
    """Async client for the ML service endpoints.

    Use as an async context manager so the underlying connection pool is
    closed when the run ends::

        async with MLServiceClient.from_config(config) as client:
            response = await client.create_project("p", "Yacht")

    Attributes:
        base_url: Root URL every request path is joined to.
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth: tuple[str, str] | None = None,
        verify_tls: bool = True,
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Root URL of the service.
            auth: Optional basic-auth ``(username, password)`` pair.
            verify_tls: Whether to verify the server certificate.
            timeout_seconds: Per-request timeout.
            transport: Optional transport override (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            auth=auth,
            verify=verify_tls,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: HarnessConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> MLServiceClient:
        """Build a client from a ``HarnessConfig``."""
        auth: tuple[str, str] | None = None
        if config.username is not None and config.password is not None:
            auth = (config.username, config.password)
        return cls(
            config.base_url,
            auth=auth,
            verify_tls=config.verify_tls,
            timeout_seconds=config.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> MLServiceClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Request primitives
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: dict[str, str] | None = None,
        files: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request and return the response whatever its status.

        Raises:
            TransportError: If no response could be obtained.
        """
        logger.debug("%s %s", method, path)
        try:
            response = await self._http.request(
                method, path, json=json, data=data, files=files
            )
        except httpx.HTTPError as exc:
            msg = f"{method} {path} failed: {exc}"
            raise TransportError(
                msg, diagnostics={"method": method, "path": path}
            ) from exc
        logger.debug("%s %s -> %d", method, path, response.status_code)
        return response

    async def get(self, path: str) -> httpx.Response:
        return await self.request("GET", path)

    async def post(self, path: str, payload: Any = None) -> httpx.Response:
        return await self.request("POST", path, json=payload)

    async def delete(self, path: str) -> httpx.Response:
        return await self.request("DELETE", path)

    # ------------------------------------------------------------------
    # Datasets
    # ------------------------------------------------------------------

    async def upload_dataset_from_csv(
        self,
        name: str,
        version: str,
        sample_path: str | Path,
        *,
        description: str = "",
    ) -> httpx.Response:
        """Upload a CSV file as a new dataset version (multipart form)."""
        path = Path(sample_path)
        form = {
            "datasetName": name,
            "version": version,
            "description": description,
            "sourceType": "file",
            "destination": "file",
            "dataFormat": "CSV",
            "containsHeader": "true",
        }
        files = {"file": (path.name, path.read_bytes(), "text/csv")}
        return await self.request("POST", "/api/datasets", data=form, files=files)

    async def find_dataset_id(self, name: str) -> int | None:
        """Return the id of the newest dataset called *name*, if any."""
        response = await self.get("/api/datasets")
        expect_status(response, _OK, context="list datasets")
        datasets = read_json(response)
        if not isinstance(datasets, list):
            msg = "Dataset listing is not a JSON array"
            raise MalformedResponseError(msg, diagnostics={"body": response.text[:200]})
        ids = [
            int(d["id"])
            for d in datasets
            if isinstance(d, dict) and d.get("name") == name and "id" in d
        ]
        return max(ids) if ids else None

    async def get_version_set_id(self, dataset_id: int) -> int:
        """Return the id of a version set of *dataset_id*."""
        response = await self.get(f"/api/datasets/{dataset_id}/versions")
        expect_status(response, _OK, context="list dataset versions")
        versions = read_json(response)
        if not isinstance(versions, list) or not versions:
            msg = f"Dataset {dataset_id} has no version sets"
            raise MalformedResponseError(msg, diagnostics={"dataset_id": dataset_id})
        first = versions[0]
        if not isinstance(first, dict) or "id" not in first:
            msg = "Version set entry has no id"
            raise MalformedResponseError(msg, diagnostics={"entry": first})
        return int(first["id"])

    async def delete_dataset(self, dataset_id: int) -> httpx.Response:
        return await self.delete(f"/api/datasets/{dataset_id}")

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(self, project_name: str, dataset_name: str) -> httpx.Response:
        return await self.post(
            "/api/projects",
            {"name": project_name, "description": project_name, "datasetName": dataset_name},
        )

    async def get_project(self, project_name: str) -> httpx.Response:
        return await self.get(f"/api/projects/{project_name}")

    async def get_project_id(self, project_name: str) -> int:
        response = await self.get_project(project_name)
        expect_status(response, _OK, context=f"get project {project_name}")
        return int(read_json_object(response, "id")["id"])

    async def delete_project(self, project_name: str) -> httpx.Response:
        return await self.delete(f"/api/projects/{project_name}")

    # ------------------------------------------------------------------
    # Analyses
    # ------------------------------------------------------------------

    async def create_analysis(self, analysis_name: str, project_id: int) -> httpx.Response:
        return await self.post(
            "/api/analyses", {"name": analysis_name, "projectId": project_id}
        )

    async def get_analysis_id(self, project_id: int, analysis_name: str) -> int:
        response = await self.get(f"/api/projects/{project_id}/analyses/{analysis_name}")
        expect_status(response, _OK, context=f"get analysis {analysis_name}")
        return int(read_json_object(response, "id")["id"])

    async def set_feature_defaults(self, analysis_id: int) -> httpx.Response:
        return await self.post(
            f"/api/analyses/{analysis_id}/features/defaults",
            {"include": True, "type": "NUMERICAL", "imputeOption": "DISCARD"},
        )

    async def set_model_configuration(
        self, analysis_id: int, configurations: dict[str, str]
    ) -> httpx.Response:
        payload = [{"key": k, "value": v} for k, v in configurations.items()]
        return await self.post(f"/api/analyses/{analysis_id}/model", payload)

    async def set_hyperparameter_defaults(self, analysis_id: int) -> httpx.Response:
        return await self.post(f"/api/analyses/{analysis_id}/hyperParams/defaults")

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def create_model(self, analysis_id: int, version_set_id: int) -> httpx.Response:
        return await self.post(
            "/api/models", {"analysisId": analysis_id, "versionSetId": version_set_id}
        )

    async def get_model(self, model_name: str) -> dict[str, Any]:
        """Fetch the model object ``{id, name, status}`` for *model_name*."""
        response = await self.get(f"/api/models/{model_name}")
        expect_status(response, _OK, context=f"get model {model_name}")
        return read_json_object(response, "status")

    async def get_model_id(self, model_name: str) -> int:
        model = await self.get_model(model_name)
        if "id" not in model:
            msg = f"Model {model_name} has no id"
            raise MalformedResponseError(msg, diagnostics={"model": model})
        return int(model["id"])

    async def create_file_model_storage(
        self, model_id: int, storage_dir: str
    ) -> httpx.Response:
        return await self.post(
            f"/api/models/{model_id}/storages",
            {"storageType": "file", "storageDirectory": storage_dir},
        )

    async def build_model(self, model_id: int) -> httpx.Response:
        """Start asynchronous training of *model_id*."""
        return await self.post(f"/api/models/{model_id}")

    async def predict(self, model_id: int, rows: list[list[float]]) -> httpx.Response:
        return await self.post(f"/api/models/{model_id}/predict", rows)
