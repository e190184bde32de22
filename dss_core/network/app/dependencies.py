# dss_core/network/app/dependencies.py
"""
Dependency providers for the FastAPI apps.

Each provider reads an object bound to app.state by the app factory, so
tests can either build an app with their own objects or use
app.dependency_overrides.
"""
from fastapi import HTTPException, Request, status

from dss_core.agent.operator_service import OperatorTaskService
from dss_core.consensus.operator_registry import OperatorRegistry
from dss_core.monitoring.health import HealthState


def _state_attr(request: Request, name: str, label: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not available or not initialized.",
        )
    return value


async def get_operator_registry(request: Request) -> OperatorRegistry:
    return _state_attr(request, "operator_registry", "Operator registry")


async def get_task_service(request: Request) -> OperatorTaskService:
    return _state_attr(request, "task_service", "Operator task service")


async def get_health_state(request: Request) -> HealthState:
    return _state_attr(request, "health_state", "Health state")
