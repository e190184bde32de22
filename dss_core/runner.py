"""
Runners that wire settings, chain client, background loop and HTTP app
together for the aggregator and the operator node.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from eth_account import Account
from fastapi import FastAPI
from web3 import Web3

from dss_core.agent.operator_service import OperatorTaskService
from dss_core.agent.registration import RegistrationService
from dss_core.config.settings import QuorumMode, Settings
from dss_core.consensus.aggregation import QuorumAggregator
from dss_core.consensus.checkpoint import CheckpointStore
from dss_core.consensus.dispatcher import TaskDispatcher
from dss_core.consensus.event_watcher import EventWatcher
from dss_core.consensus.operator_registry import OperatorRegistry
from dss_core.core_client.contract_client import DSSContractClient
from dss_core.crypto.bls import BlsKeyPair
from dss_core.monitoring.health import HealthState
from dss_core.network.app.main import create_aggregator_app, create_operator_app

logger = logging.getLogger(__name__)


def build_contract_client(settings: Settings, account) -> DSSContractClient:
    w3 = Web3(Web3.HTTPProvider(settings.RPC_URL))
    return DSSContractClient(
        w3=w3,
        dss_address=settings.DSS_ADDRESS,
        core_address=settings.CORE_ADDRESS,
        account=account,
        abi_dir=settings.ABI_DIR,
        receipt_timeout=settings.TX_RECEIPT_TIMEOUT,
    )


async def _run_background(name: str, coro, health_state: HealthState) -> None:
    try:
        await coro
    except asyncio.CancelledError:
        logger.info(f"Runner: {name} cancelled.")
        raise
    except Exception as e:
        logger.exception(f"Runner: {name} crashed: {e}")
        health_state.mark_failing(f"{name} crashed: {e}")


class AggregatorRunner:
    """
    Builds the aggregator from settings and serves it with uvicorn.

    The event watcher runs as a background task inside the FastAPI lifespan.
    Construction fails with ConfigurationError or CheckpointError before
    anything is served.
    """

    def __init__(self, settings: Settings, contract_client=None):
        settings.require_aggregator_fields()
        self.settings = settings
        self.account = Account.from_key(settings.PRIVATE_KEY)
        self.contract_client = contract_client or build_contract_client(settings, self.account)

        self.registry = OperatorRegistry()
        self.health_state = HealthState()
        self.dispatcher = TaskDispatcher(timeout=settings.OPERATOR_REQUEST_TIMEOUT)
        self.aggregator = QuorumAggregator.for_mode(
            settings.QUORUM_MODE,
            contract_client=self.contract_client,
            min_stake=settings.MIN_OPERATOR_STAKE,
        )
        self.watcher = EventWatcher(
            contract_client=self.contract_client,
            registry=self.registry,
            dispatcher=self.dispatcher,
            aggregator=self.aggregator,
            checkpoint_store=CheckpointStore(settings.BLOCK_NUMBER_STORE),
            poll_interval=settings.heartbeat_seconds,
        )
        self.stop_event: Optional[asyncio.Event] = None
        self.main_loop_task: Optional[asyncio.Task] = None
        self.app = create_aggregator_app(
            self.registry, self.health_state, lifespan=self._lifespan
        )
        logger.info(
            f"Runner: Aggregator configured (mode={settings.QUORUM_MODE.value}, account={self.account.address})"
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        self.stop_event = asyncio.Event()
        logger.info("Runner: Starting event watcher as background task...")
        self.main_loop_task = asyncio.create_task(
            _run_background("Event watcher", self.watcher.run(self.stop_event), self.health_state)
        )
        try:
            yield
        finally:
            logger.info("Runner: Shutting down aggregator, waiting for in-flight tick...")
            self.stop_event.set()
            await self.main_loop_task
            await self.dispatcher.aclose()
            logger.info("Runner: Aggregator stopped.")

    def run(self):
        host, port = self.settings.HOST, self.settings.PORT
        log_level = self.settings.LOG_LEVEL.lower()
        logger.info(f"Runner: Starting Uvicorn server on {host}:{port} with log level {log_level}")
        uvicorn.run(self.app, host=host, port=port, log_level=log_level)


class OperatorRunner:
    """
    Builds the operator node: task endpoint plus the registration/heartbeat
    loop as a background task.
    """

    def __init__(self, settings: Settings, contract_client=None):
        settings.require_operator_fields()
        self.settings = settings
        self.account = Account.from_key(settings.PRIVATE_KEY)
        self.contract_client = contract_client or build_contract_client(settings, self.account)

        self.bls_keypair = (
            BlsKeyPair.from_base64(settings.BLS_KEYPAIR)
            if settings.QUORUM_MODE == QuorumMode.BLS
            else None
        )
        self.health_state = HealthState()
        self.task_service = OperatorTaskService(self.account, self.bls_keypair)
        self.registration = RegistrationService(
            contract_client=self.contract_client,
            operator_address=self.account.address,
            domain_url=settings.DOMAIN_URL,
            aggregator_url=settings.AGGREGATOR_URL,
            heartbeat_interval=settings.heartbeat_seconds,
            bls_keypair=self.bls_keypair,
            retry_base_seconds=settings.REGISTRATION_RETRY_BASE_SECONDS,
            retry_max_seconds=settings.REGISTRATION_RETRY_MAX_SECONDS,
        )
        self.stop_event: Optional[asyncio.Event] = None
        self.main_loop_task: Optional[asyncio.Task] = None
        self.app = create_operator_app(
            self.task_service, self.health_state, lifespan=self._lifespan
        )
        logger.info(f"Runner: Operator configured (account={self.account.address})")

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        self.stop_event = asyncio.Event()
        logger.info("Runner: Starting registration service as background task...")
        self.main_loop_task = asyncio.create_task(
            _run_background(
                "Registration service", self.registration.run(self.stop_event), self.health_state
            )
        )
        try:
            yield
        finally:
            logger.info("Runner: Shutting down operator...")
            self.stop_event.set()
            await self.main_loop_task
            await self.registration.close()
            logger.info("Runner: Operator stopped.")

    def run(self):
        host, port = self.settings.HOST, self.settings.PORT
        log_level = self.settings.LOG_LEVEL.lower()
        logger.info(f"Runner: Starting Uvicorn server on {host}:{port} with log level {log_level}")
        uvicorn.run(self.app, host=host, port=port, log_level=log_level)
