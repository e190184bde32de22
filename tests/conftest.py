"""
Test configuration and fixtures for dss_core tests
"""

import pytest
from eth_account import Account

from dss_core.consensus.verification import sign_completed_task
from dss_core.core.datatypes import CompletedTask, Operator, TaskResponse
from dss_core.monitoring.metrics import reset_metrics

# Test private keys (for testing only - never use in production)
test_private_keys = [
    "0x82a167f420cfd52500bdcf2754ccf68167ee70e9eef9cc4f95d387e42c97cfd7",
    "0x7b3f9b8c1d2e4a5b6c7d8e9f0a1b2c3d4e5f6a7b8c9d0e1f2a3b4c5d6e7f8a9",
    "0x1a2b3c4d5e6f7a8b9c0d1e2f3a4b5c6d7e8f9a0b1c2d3e4f5a6b7c8d9e0f1a2",
    "0x9f8e7d6c5b4a39284756193847561029384756193847561029384756193847aa",
    "0x5a4b3c2d1e0f9a8b7c6d5e4f3a2b1c0d9e8f7a6b5c4d3e2f1a0b9c8d7e6f5a4",
]


@pytest.fixture(autouse=True)
def fresh_metrics():
    """Counters are process-wide; start every test from zero."""
    reset_metrics()
    yield


@pytest.fixture
def accounts():
    return [Account.from_key(key) for key in test_private_keys]


@pytest.fixture
def operators(accounts):
    return [
        Operator(public_key=account.address, url=f"http://operator-{i}.test:8081")
        for i, account in enumerate(accounts)
    ]


@pytest.fixture
def make_response():
    """Factory for ECDSA-signed task responses."""

    def _make(account, value: int, response: int = None, completed_at="2024-05-01T12:00:00Z"):
        completed = CompletedTask(
            value=value,
            response=value * value if response is None else response,
            completed_at=completed_at,
        )
        return TaskResponse(
            completed_task=completed,
            public_key=account.address,
            signature=sign_completed_task(account, completed),
        )

    return _make


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line(
        "markers", "slow: pure-Python pairing checks, seconds per test"
    )
