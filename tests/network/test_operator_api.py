# tests/network/test_operator_api.py
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from dss_core.agent.operator_service import OperatorTaskService
from dss_core.consensus.consensus_errors import TaskComputationError
from dss_core.consensus.verification import AddressRecoveryVerifier
from dss_core.core.datatypes import TaskResponse
from dss_core.network.app.dependencies import get_task_service
from dss_core.network.app.main import create_operator_app


@pytest.fixture
def test_client(accounts):
    app = create_operator_app(OperatorTaskService(accounts[0]))
    with TestClient(app) as client:
        yield client


def test_task_returns_signed_square(test_client, accounts):
    response = test_client.post("/operator/task", json={"value": 9})
    assert response.status_code == 200

    body = response.json()
    assert body["completed_task"]["value"] == 9
    assert body["completed_task"]["response"] == 81
    assert body["public_key"] == accounts[0].address

    verified = AddressRecoveryVerifier().verify(TaskResponse.model_validate(body))
    assert verified is not None
    assert verified.identity == accounts[0].address.lower()


@pytest.mark.parametrize(
    "payload",
    [{}, {"value": -1}, {"value": "seven"}, {"value": 2**256}],
)
def test_task_rejects_invalid_body(test_client, payload):
    response = test_client.post("/operator/task", json=payload)
    assert response.status_code == 422


def test_task_failure_returns_500(accounts):
    mock_service = MagicMock(spec=OperatorTaskService)
    mock_service.handle_task = AsyncMock(side_effect=TaskComputationError("signing failed"))
    app = create_operator_app(OperatorTaskService(accounts[0]))
    app.dependency_overrides[get_task_service] = lambda: mock_service

    with TestClient(app) as client:
        response = client.post("/operator/task", json={"value": 3})
    assert response.status_code == 500
    assert "signing failed" in response.json()["detail"]
    mock_service.handle_task.assert_awaited_once()


def test_operator_health(test_client):
    response = test_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "Ok"}
