# dss_core/consensus/dispatcher.py
"""
Fan a task out to every registered operator and collect signed responses.
"""
import asyncio
import logging
from typing import Dict, FrozenSet, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from dss_core.core.datatypes import Operator, Task, TaskResponse
from dss_core.monitoring.metrics import get_metrics_manager

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0
TASK_PATH = "/operator/task"


class TaskDispatcher:
    """
    Sends POST {url}/operator/task to each operator concurrently over one
    shared httpx.AsyncClient.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def dispatch(
        self, task: Task, operators: FrozenSet[Operator]
    ) -> Dict[Operator, TaskResponse]:
        """
        Send one task to every operator of a registry snapshot.

        Args:
            task: The task to compute.
            operators: Snapshot of the registry.

        Returns:
            Responses keyed by operator. Operators that timed out, failed or
            returned an unusable body are absent.
        """
        if not operators:
            return {}

        ordered: List[Operator] = sorted(operators, key=lambda o: (o.identity, o.url))
        logger.info(
            f"[Dispatch] Sending task value={task.value} to {len(ordered)} operators"
        )

        results = await asyncio.gather(
            *(self._send_task(operator, task) for operator in ordered),
            return_exceptions=True,
        )

        responses: Dict[Operator, TaskResponse] = {}
        for operator, result in zip(ordered, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"[Dispatch] Unexpected error from {operator.url}: {result}"
                )
                get_metrics_manager().record_operator_request("error")
                continue
            status, response = result
            get_metrics_manager().record_operator_request(status)
            if response is not None:
                responses[operator] = response

        logger.info(
            f"[Dispatch] Task value={task.value}: {len(responses)}/{len(ordered)} operators responded"
        )
        return responses

    async def _send_task(
        self, operator: Operator, task: Task
    ) -> Tuple[str, Optional[TaskResponse]]:
        url = f"{operator.url.rstrip('/')}{TASK_PATH}"
        try:
            response = await self.client.post(
                url, json=task.model_dump(), timeout=self.timeout
            )
        except httpx.TimeoutException:
            logger.warning(f"[Dispatch] Timeout waiting for {operator.public_key} at {url}")
            return "timeout", None
        except httpx.HTTPError as e:
            logger.warning(f"[Dispatch] Network error sending task to {url}: {e}")
            return "http_error", None

        if response.status_code != 200:
            logger.warning(
                f"[Dispatch] Operator {operator.public_key} answered HTTP {response.status_code}"
            )
            return "http_error", None

        try:
            return "success", TaskResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.warning(
                f"[Dispatch] Malformed response body from {operator.public_key}: {e}"
            )
            return "invalid", None
