"""Shared fixtures for the ml_lifecycle test suite.

The remote ML service is replaced by ``FakeMLService``, an in-process,
stateful implementation of the REST endpoints served through
``httpx.MockTransport``. Tests drive the real ``MLServiceClient`` against it
and can inject failures per request.
"""

from __future__ import annotations

from itertools import count
import json
from pathlib import Path
import re
from typing import Any

import httpx
from ml_lifecycle.client import MLServiceClient
from ml_lifecycle.models import HarnessConfig, PollConfig
import pytest

BASE_URL = "http://ml.test"

_SAMPLE_CSV = (
    "Longitudinal_position,Prismatic_coefficient,Length_displacement_ratio,"
    "Beam_draught_ratio,Length_beam_ratio,Froude_number,Residuary_resistance\n"
    "-2.3,0.568,4.78,3.99,3.17,0.125,0.11\n"
    "-2.3,0.568,4.78,3.99,3.17,0.150,0.27\n"
    "-2.3,0.568,4.78,3.99,3.17,0.300,3.76\n"
)

# ---------------------------------------------------------------------------
# Fake service
# ---------------------------------------------------------------------------


class FakeMLService:
    """Stateful stand-in for the ML service REST API.

    Attributes:
        calls: ``(method, path)`` of every request received, in order.
        failures: ``(method, path)`` -> status code to answer instead.
        unreachable: ``(method, path)`` pairs that raise a connect error.
        status_sequence: Statuses reported by successive model reads after
            training started; the last one repeats.
        prediction_override: When set, predict returns this many values.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], int] = {}
        self.unreachable: set[tuple[str, str]] = set()
        self.status_sequence: list[str] = ["Running", "Complete"]
        self.prediction_override: int | None = None

        self.datasets: dict[int, str] = {}
        self.projects: dict[str, dict[str, Any]] = {}
        self.analyses: dict[tuple[int, str], int] = {}
        self.analysis_configs: dict[int, list[dict[str, str]]] = {}
        self.models: dict[str, dict[str, Any]] = {}
        self.storages: dict[int, str] = {}
        self._reads_after_build: dict[str, int] = {}
        self._ids = count(1)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def count(self, method: str, path: str) -> int:
        """Number of requests received for ``(method, path)``."""
        return self.calls.count((method, path))

    def _model_by_id(self, model_id: int) -> dict[str, Any] | None:
        return next((m for m in self.models.values() if m["id"] == model_id), None)

    # -- request dispatch ----------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        self.calls.append((method, path))

        if (method, path) in self.unreachable:
            msg = "connection refused"
            raise httpx.ConnectError(msg, request=request)
        if (method, path) in self.failures:
            return httpx.Response(self.failures[(method, path)], json={"error": "injected"})

        body: Any = None
        if request.content and request.headers.get("content-type", "").startswith(
            "application/json"
        ):
            body = json.loads(request.content)

        for pattern, verb, handler in self._routes():
            match = re.fullmatch(pattern, path)
            if match and verb == method:
                return handler(request, body, *match.groups())
        return httpx.Response(404, json={"error": f"no route {method} {path}"})

    def _routes(self) -> list[tuple[str, str, Any]]:
        return [
            (r"/api/datasets", "POST", self._upload_dataset),
            (r"/api/datasets", "GET", self._list_datasets),
            (r"/api/datasets/(\d+)/versions", "GET", self._list_versions),
            (r"/api/datasets/(\d+)", "DELETE", self._delete_dataset),
            (r"/api/projects", "POST", self._create_project),
            (r"/api/projects/(\d+)/analyses/([^/]+)", "GET", self._get_analysis),
            (r"/api/projects/([^/]+)", "GET", self._get_project),
            (r"/api/projects/([^/]+)", "DELETE", self._delete_project),
            (r"/api/analyses", "POST", self._create_analysis),
            (r"/api/analyses/(\d+)/features/defaults", "POST", self._analysis_ok),
            (r"/api/analyses/(\d+)/model", "POST", self._configure_analysis),
            (r"/api/analyses/(\d+)/hyperParams/defaults", "POST", self._analysis_ok),
            (r"/api/models", "POST", self._create_model),
            (r"/api/models/(\d+)/storages", "POST", self._add_storage),
            (r"/api/models/(\d+)/predict", "POST", self._predict),
            (r"/api/models/(\d+)", "POST", self._build_model),
            (r"/api/models/([^/]+)", "GET", self._get_model),
        ]

    # -- datasets ------------------------------------------------------------

    def _upload_dataset(self, request: httpx.Request, body: Any) -> httpx.Response:
        match = re.search(rb'name="datasetName"\r\n\r\n([^\r]+)', request.content)
        if match is None:
            return httpx.Response(400, json={"error": "datasetName missing"})
        dataset_id = next(self._ids)
        self.datasets[dataset_id] = match.group(1).decode()
        return httpx.Response(200)

    def _list_datasets(self, request: httpx.Request, body: Any) -> httpx.Response:
        return httpx.Response(
            200, json=[{"id": i, "name": n} for i, n in self.datasets.items()]
        )

    def _list_versions(self, request: httpx.Request, body: Any, dataset_id: str) -> httpx.Response:
        if int(dataset_id) not in self.datasets:
            return httpx.Response(404)
        return httpx.Response(200, json=[{"id": int(dataset_id) * 100, "version": "1.0"}])

    def _delete_dataset(self, request: httpx.Request, body: Any, dataset_id: str) -> httpx.Response:
        if self.datasets.pop(int(dataset_id), None) is None:
            return httpx.Response(404)
        return httpx.Response(200)

    # -- projects ------------------------------------------------------------

    def _create_project(self, request: httpx.Request, body: Any) -> httpx.Response:
        if body["datasetName"] not in self.datasets.values():
            return httpx.Response(400, json={"error": "unknown dataset"})
        self.projects[body["name"]] = {"id": next(self._ids), "name": body["name"]}
        return httpx.Response(200)

    def _get_project(self, request: httpx.Request, body: Any, name: str) -> httpx.Response:
        project = self.projects.get(name)
        if project is None:
            return httpx.Response(404)
        return httpx.Response(200, json=project)

    def _delete_project(self, request: httpx.Request, body: Any, name: str) -> httpx.Response:
        if self.projects.pop(name, None) is None:
            return httpx.Response(404)
        return httpx.Response(200)

    # -- analyses ------------------------------------------------------------

    def _create_analysis(self, request: httpx.Request, body: Any) -> httpx.Response:
        self.analyses[(body["projectId"], body["name"])] = next(self._ids)
        return httpx.Response(200)

    def _get_analysis(
        self, request: httpx.Request, body: Any, project_id: str, name: str
    ) -> httpx.Response:
        analysis_id = self.analyses.get((int(project_id), name))
        if analysis_id is None:
            return httpx.Response(404)
        return httpx.Response(200, json={"id": analysis_id, "name": name})

    def _analysis_ok(self, request: httpx.Request, body: Any, analysis_id: str) -> httpx.Response:
        if int(analysis_id) not in self.analyses.values():
            return httpx.Response(404)
        return httpx.Response(200)

    def _configure_analysis(
        self, request: httpx.Request, body: Any, analysis_id: str
    ) -> httpx.Response:
        self.analysis_configs[int(analysis_id)] = body
        return httpx.Response(200)

    # -- models --------------------------------------------------------------

    def _create_model(self, request: httpx.Request, body: Any) -> httpx.Response:
        model_id = next(self._ids)
        name = f"model-{body['analysisId']}-{model_id}"
        self.models[name] = {
            "id": model_id,
            "name": name,
            "status": "Pending",
            "analysisId": body["analysisId"],
            "versionSetId": body["versionSetId"],
        }
        return httpx.Response(200, json={"id": model_id, "name": name})

    def _add_storage(self, request: httpx.Request, body: Any, model_id: str) -> httpx.Response:
        self.storages[int(model_id)] = body["storageDirectory"]
        return httpx.Response(200)

    def _build_model(self, request: httpx.Request, body: Any, model_id: str) -> httpx.Response:
        model = self._model_by_id(int(model_id))
        if model is None:
            return httpx.Response(404)
        model["status"] = "Running"
        self._reads_after_build[model["name"]] = 0
        return httpx.Response(200)

    def _get_model(self, request: httpx.Request, body: Any, name: str) -> httpx.Response:
        model = self.models.get(name)
        if model is None:
            return httpx.Response(404)
        if name in self._reads_after_build:
            reads = self._reads_after_build[name]
            index = min(reads, len(self.status_sequence) - 1)
            model["status"] = self.status_sequence[index]
            self._reads_after_build[name] = reads + 1
        return httpx.Response(200, json=model)

    def _predict(self, request: httpx.Request, body: Any, model_id: str) -> httpx.Response:
        model = self._model_by_id(int(model_id))
        if model is None:
            return httpx.Response(404)
        rows = len(body) if self.prediction_override is None else self.prediction_override
        return httpx.Response(200, json=[round(0.5 * i, 3) for i in range(rows)])


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def make_poll(**overrides: Any) -> PollConfig:
    """Build a PollConfig that never sleeps, with a small attempt budget."""
    defaults: dict[str, Any] = {
        "interval_seconds": 0.0,
        "max_interval_seconds": 0.0,
        "backoff_factor": 1.0,
        "max_attempts": 5,
        "timeout_seconds": 30.0,
    }
    defaults.update(overrides)
    return PollConfig(**defaults)


def make_config(sample_path: Path, **overrides: Any) -> HarnessConfig:
    """Build a HarnessConfig pointing at *sample_path* and the fake service."""
    defaults: dict[str, Any] = {
        "base_url": BASE_URL,
        "username": None,
        "password": None,
        "dataset": {
            "name": "Yacht",
            "version": "1.0",
            "sample_path": str(sample_path),
            "response_attribute": "Residuary_resistance",
            "dataset_id": 1,
        },
        "poll": make_poll(),
        "model_storage_dir": "/tmp/models",
    }
    defaults.update(overrides)
    return HarnessConfig(**defaults)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_service() -> FakeMLService:
    return FakeMLService()


@pytest.fixture()
def client(fake_service: FakeMLService) -> MLServiceClient:
    """An ``MLServiceClient`` wired to ``fake_service``."""
    return MLServiceClient(BASE_URL, transport=fake_service.transport)


@pytest.fixture()
def sample_csv(tmp_path: Path) -> Path:
    """A small yacht hydrodynamics CSV sample on disk."""
    path = tmp_path / "yacht.csv"
    path.write_text(_SAMPLE_CSV, encoding="utf-8")
    return path


@pytest.fixture()
def config(sample_csv: Path) -> HarnessConfig:
    return make_config(sample_csv)


@pytest.fixture()
def seeded_service(fake_service: FakeMLService) -> FakeMLService:
    """``fake_service`` with the Yacht dataset (id 1) and a project already created."""
    fake_service.datasets[next(fake_service._ids)] = "Yacht"
    fake_service.projects["YachtHydrodynamicsProject"] = {
        "id": next(fake_service._ids),
        "name": "YachtHydrodynamicsProject",
    }
    return fake_service
