# dss_core/network/app/main.py
"""
FastAPI app factories for the aggregator and operator nodes.
"""
from typing import Any, Callable, Optional

from fastapi import FastAPI

from dss_core import __version__
from dss_core.agent.operator_service import OperatorTaskService
from dss_core.consensus.operator_registry import OperatorRegistry
from dss_core.monitoring.health import HealthState
from dss_core.network.app.api.endpoints import aggregator, health, operator

Lifespan = Optional[Callable[[FastAPI], Any]]


def create_aggregator_app(
    registry: OperatorRegistry,
    health_state: Optional[HealthState] = None,
    lifespan: Lifespan = None,
) -> FastAPI:
    app = FastAPI(
        title="DSS Aggregator",
        description="Collects operator responses and submits quorum results.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.operator_registry = registry
    app.state.health_state = health_state or HealthState()

    app.include_router(aggregator.router)
    app.include_router(health.router)
    return app


def create_operator_app(
    task_service: OperatorTaskService,
    health_state: Optional[HealthState] = None,
    lifespan: Lifespan = None,
) -> FastAPI:
    app = FastAPI(
        title="DSS Operator",
        description="Computes and signs square-number tasks.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.task_service = task_service
    app.state.health_state = health_state or HealthState()

    app.include_router(operator.router)
    app.include_router(health.router)
    return app
