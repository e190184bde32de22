# dss_core/consensus/event_watcher.py
"""
Aggregator main loop: poll the DSS for TaskRequestGenerated events, run each
request through dispatch, aggregation and submission, then checkpoint.
"""
import asyncio
import logging
from typing import FrozenSet, Optional

from dss_core.consensus.aggregation import QuorumAggregator
from dss_core.consensus.checkpoint import CheckpointStore
from dss_core.consensus.consensus_errors import AggregationError, BlockchainError
from dss_core.consensus.dispatcher import TaskDispatcher
from dss_core.consensus.operator_registry import OperatorRegistry
from dss_core.core.datatypes import CheckpointState, Operator, TaskRequest
from dss_core.monitoring.metrics import get_metrics_manager

logger = logging.getLogger(__name__)


class EventWatcher:
    """
    Processes task requests at most once: a request whose aggregation or
    submission fails is logged and the checkpoint still moves past it.
    Requests seen while no operator is registered are left for a later tick.
    """

    def __init__(
        self,
        contract_client,
        registry: OperatorRegistry,
        dispatcher: TaskDispatcher,
        aggregator: QuorumAggregator,
        checkpoint_store: CheckpointStore,
        poll_interval: float = 5.0,
        initial_state: Optional[CheckpointState] = None,
    ):
        self.contract_client = contract_client
        self.registry = registry
        self.dispatcher = dispatcher
        self.aggregator = aggregator
        self.checkpoint_store = checkpoint_store
        self.poll_interval = poll_interval
        # CheckpointError from load() propagates, startup must fail on it
        state = initial_state or checkpoint_store.load()
        self.block_number = state.block_number
        get_metrics_manager().update_checkpoint_block(self.block_number)

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info(
            f"[Watcher] Starting from block {self.block_number}, polling every {self.poll_interval}s"
        )
        while not stop_event.is_set():
            try:
                await self.poll_once()
            except Exception:
                logger.exception("[Watcher] Unexpected error during poll")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info(f"[Watcher] Stopped at block {self.block_number}")

    async def poll_once(self) -> int:
        """
        Run one tick.

        Returns:
            The checkpoint after the tick.
        """
        operators = self.registry.snapshot()
        from_block = self.block_number

        try:
            requests = await asyncio.to_thread(
                self.contract_client.get_task_requests, from_block
            )
        except BlockchainError as e:
            logger.error(f"[Watcher] Failed to fetch task requests from block {from_block}: {e}")
            return self.block_number

        new_block = from_block
        for request in requests:
            if not operators:
                logger.info(
                    f"[Watcher] No operators are registered, deferring task at block {request.block_number}"
                )
                continue
            try:
                await self.process_task_request(request, operators)
            except Exception:
                logger.exception(
                    f"[Watcher:B{request.block_number}] Unexpected error processing task request"
                )
            new_block = max(new_block, request.block_number + 1)

        self._persist(new_block)
        return self.block_number

    async def process_task_request(
        self, request: TaskRequest, operators: FrozenSet[Operator]
    ) -> Optional[str]:
        """
        Dispatch, aggregate and submit one request.

        Returns:
            The submission transaction hash, or None if the round failed.
        """
        prefix = f"[Watcher:B{request.block_number}]"
        logger.info(f"{prefix} Task request value={request.value}")

        responses = await self.dispatcher.dispatch(request.task, operators)
        try:
            decision = await self.aggregator.aggregate(responses.values(), operators)
        except AggregationError as e:
            logger.error(f"{prefix} Aggregation failed: {e}")
            return None

        if decision.non_signers:
            logger.info(f"{prefix} Non-signers: {', '.join(decision.non_signers)}")

        try:
            tx_hash = await asyncio.to_thread(
                self.contract_client.submit_task_response,
                request,
                decision.response,
                decision.proof,
            )
        except BlockchainError as e:
            logger.error(f"{prefix} Submission failed: {e}")
            get_metrics_manager().record_task_submission(False)
            return None

        get_metrics_manager().record_task_submission(True)
        logger.info(f"{prefix} Submitted response {decision.response}: {tx_hash}")
        return tx_hash

    def _persist(self, block_number: int) -> None:
        block_number = max(self.block_number, block_number)
        self.block_number = block_number
        get_metrics_manager().update_checkpoint_block(block_number)
        try:
            self.checkpoint_store.save(CheckpointState(block_number=block_number))
        except OSError as e:
            logger.error(f"[Watcher] Failed to persist checkpoint {block_number}: {e}")
