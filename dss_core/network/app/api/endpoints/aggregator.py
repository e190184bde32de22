"""
Aggregator registration endpoints called by operators.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from dss_core.consensus.consensus_errors import RegistryError
from dss_core.consensus.operator_registry import OperatorRegistry
from dss_core.core.datatypes import OperatorPayload
from dss_core.network.app.dependencies import get_operator_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/aggregator", tags=["Aggregator"])


@router.post(
    "/registerOperator",
    summary="Register an operator",
    description="Adds the operator to the registry. Idempotent; always returns true on success.",
    response_model=bool,
)
def register_operator(
    payload: OperatorPayload,
    registry: Annotated[OperatorRegistry, Depends(get_operator_registry)],
) -> bool:
    try:
        registry.register(payload.to_operator())
    except RegistryError as e:
        logger.error(f"API: Failed to register operator {payload.public_key}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        ) from e
    return True


@router.post(
    "/isOperatorRegistered",
    summary="Check operator registration",
    response_model=bool,
)
def is_operator_registered(
    payload: OperatorPayload,
    registry: Annotated[OperatorRegistry, Depends(get_operator_registry)],
) -> bool:
    try:
        return registry.is_registered(payload.to_operator())
    except RegistryError as e:
        logger.error(f"API: Failed to check operator {payload.public_key}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        ) from e
