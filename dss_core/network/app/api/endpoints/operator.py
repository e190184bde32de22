"""
Operator task endpoint called by the aggregator.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from dss_core.agent.operator_service import OperatorTaskService
from dss_core.consensus.consensus_errors import TaskComputationError
from dss_core.core.datatypes import Task, TaskResponse
from dss_core.network.app.dependencies import get_task_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/operator", tags=["Operator"])


@router.post(
    "/task",
    summary="Compute a task",
    description="Squares the value and returns the signed result.",
    response_model=TaskResponse,
)
async def handle_task(
    task: Task,
    service: Annotated[OperatorTaskService, Depends(get_task_service)],
) -> TaskResponse:
    logger.debug(f"API: Received task value={task.value}")
    try:
        return await service.handle_task(task)
    except TaskComputationError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)
        ) from e
