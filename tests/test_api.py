"""
HTTP service tests.

The client is used without its context manager so startup workers are not
launched: queued requests stay pending and can be inspected.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

import main
from providers import StableDiffusionQueueProvider
from requestmodels.models import ProviderName, ProviderSettings


@pytest.fixture
def client():
    return TestClient(main.app)


def queue_provider():
    return StableDiffusionQueueProvider(ProviderSettings(name=ProviderName.STABLE_DIFFUSION_QUEUE, url="http://sd.invalid"))


class TestGenerate:
    def test_generate_queues_request(self, client):
        response = client.post("/generate", json={"input": {"request_id": "api-req-1", "params": {"prompt": "a cat"}}})

        assert response.status_code == 202
        body = response.json()
        assert body["id"] == "api-req-1"
        assert body["status"] == "pending"
        assert "image" not in body

        result = client.get("/result/api-req-1")
        assert result.status_code == 200
        assert result.json()["status"] == "pending"

    def test_generate_assigns_request_id(self, client):
        response = client.post("/generate", json={"input": {}})

        assert response.status_code == 202
        assert response.json()["id"]

    def test_invalid_request_id_is_rejected(self, client):
        response = client.post("/generate", json={"input": {"request_id": "../etc"}})

        assert response.status_code == 422

    def test_invalid_params_are_rejected(self, client):
        response = client.post("/generate", json={"input": {"params": {"width": 0}}})

        assert response.status_code == 422

    def test_unknown_result_is_404(self, client):
        response = client.get("/result/does-not-exist")

        assert response.status_code == 404
        assert response.json()["status"] == "failed"

    def test_queue_info(self, client):
        response = client.get("/queue-info")

        assert response.status_code == 200
        assert set(response.json()) == {"generation_queue_size", "postprocess_queue_size"}


class TestHealth:
    def test_healthy_when_backend_reachable(self, client):
        provider = queue_provider()
        with patch.object(main, "get_provider", return_value=provider), \
                patch.object(provider, "is_up", AsyncMock(return_value=True)):
            response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["backend"]["provider"] == "stable_diffusion_queue"
        assert body["consecutive_failures"] == 0

    def test_unhealthy_when_backend_down(self, client):
        provider = queue_provider()
        with patch.object(main, "get_provider", return_value=provider), \
                patch.object(provider, "is_up", AsyncMock(return_value=False)):
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["backend"]["accessible"] is False

    def test_unhealthy_after_consecutive_failures(self, client):
        provider = queue_provider()
        with patch.object(main, "get_provider", return_value=provider), \
                patch.object(provider, "is_up", AsyncMock(return_value=True)), \
                patch.object(main, "get_consecutive_failures", return_value=main.HEALTH_FAILURE_THRESHOLD):
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
