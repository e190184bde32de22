# dss_core/agent/operator_service.py
"""
Operator task handling: square the value and sign the completed task.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from eth_account.signers.local import LocalAccount

from dss_core.consensus.consensus_errors import TaskComputationError
from dss_core.consensus.verification import (
    bls_public_key_of,
    sign_completed_task,
    sign_completed_task_bls,
)
from dss_core.core.datatypes import CompletedTask, Task, TaskResponse
from dss_core.crypto.bls import BlsKeyPair
from dss_core.monitoring.metrics import get_metrics_manager

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class OperatorTaskService:
    """
    Computes task results for this operator. With a BLS key pair the result
    is BLS-signed, otherwise it is signed with the operator's EVM account.
    """

    def __init__(self, account: LocalAccount, bls_keypair: Optional[BlsKeyPair] = None):
        self.account = account
        self.bls_keypair = bls_keypair
        self.bls_public_key = bls_public_key_of(bls_keypair) if bls_keypair else None

    @property
    def address(self) -> str:
        return self.account.address

    def run_task(self, task: Task) -> CompletedTask:
        return CompletedTask(
            value=task.value,
            response=task.value * task.value,
            completed_at=utc_timestamp(),
        )

    def _compute_and_sign(self, task: Task) -> Tuple[CompletedTask, str]:
        completed_task = self.run_task(task)
        if self.bls_keypair is not None:
            return completed_task, sign_completed_task_bls(self.bls_keypair, completed_task)
        return completed_task, sign_completed_task(self.account, completed_task)

    async def handle_task(self, task: Task) -> TaskResponse:
        """
        Args:
            task: Task received from the aggregator.

        Returns:
            The signed TaskResponse.

        Raises:
            TaskComputationError: Computing or signing failed.
        """
        try:
            # BN254 scalar multiplication is CPU bound
            completed_task, signature = await asyncio.to_thread(self._compute_and_sign, task)
        except Exception as e:
            get_metrics_manager().record_task_handled(False)
            logger.exception(f"[Operator] Failed to handle task value={task.value}")
            raise TaskComputationError(f"Failed to handle task: {e}") from e

        get_metrics_manager().record_task_handled(True)
        logger.info(f"[Operator] Completed task value={task.value} response={completed_task.response}")
        return TaskResponse(
            completed_task=completed_task,
            public_key=self.address,
            signature=signature,
            bls_pubkey=self.bls_public_key,
        )
