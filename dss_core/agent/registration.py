# dss_core/agent/registration.py
"""
Operator lifecycle: register with the DSS on-chain once, then keep the
aggregator aware of this operator with a periodic heartbeat.
"""
import asyncio
import logging
from enum import Enum
from typing import Optional

import httpx
from eth_abi import encode as abi_encode

from dss_core.consensus.verification import bls_public_key_of
from dss_core.core.datatypes import OperatorPayload
from dss_core.crypto import bls
from dss_core.monitoring.metrics import get_metrics_manager

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 10.0
BLS_REGISTRATION_TYPES = [
    "(uint256,uint256)",
    "(uint256[2],uint256[2])",
    "(uint256,uint256)",
]


class RegistrationState(str, Enum):
    UNREGISTERED_ON_CHAIN = "unregistered_on_chain"
    REGISTERED_NOT_ANNOUNCED = "registered_not_announced"
    STEADY = "steady"


def build_bls_registration_data(keypair: bls.BlsKeyPair, message_hash: bytes) -> bytes:
    """ABI-encode (G1 pubkey, G2 pubkey, G1 signature over message_hash) for registerOperatorToDSS."""
    signature = keypair.sign_message_hash(message_hash)
    return abi_encode(
        BLS_REGISTRATION_TYPES,
        [
            bls.g1_to_evm(keypair.g1_public_key),
            bls.g2_to_evm(keypair.g2_public_key),
            bls.g1_to_evm(signature),
        ],
    )


class RegistrationService:
    """
    Drives an operator from UNREGISTERED_ON_CHAIN to STEADY and keeps it there.

    Phase 1 retries the on-chain check-then-register step with exponential
    backoff until it succeeds. Phase 2 asks the aggregator every heartbeat
    whether it knows this operator and re-announces when it does not.
    """

    def __init__(
        self,
        contract_client,
        operator_address: str,
        domain_url: str,
        aggregator_url: str,
        heartbeat_interval: float = 5.0,
        bls_keypair: Optional[bls.BlsKeyPair] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_base_seconds: float = 1.0,
        retry_max_seconds: float = 60.0,
    ):
        self.contract_client = contract_client
        self.operator_address = operator_address
        self.domain_url = domain_url
        self.aggregator_url = aggregator_url.rstrip("/")
        self.heartbeat_interval = heartbeat_interval
        self.bls_keypair = bls_keypair
        self.bls_public_key = bls_public_key_of(bls_keypair) if bls_keypair else None
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        self.state = RegistrationState.UNREGISTERED_ON_CHAIN
        self.uid_prefix = f"[Registration:{operator_address[:10]}]"

    @property
    def payload(self) -> OperatorPayload:
        return OperatorPayload(
            public_key=self.operator_address,
            url=self.domain_url,
            bls_public_key=self.bls_public_key,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def _sleep(self, seconds: float, stop_event: Optional[asyncio.Event]) -> None:
        if stop_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return min(self.retry_base_seconds * (2 ** (attempt - 1)), self.retry_max_seconds)

    # --- Phase 1: on-chain ---

    async def register_on_chain_once(self) -> bool:
        """
        Check DSS membership and register through the core contract if absent.

        Returns:
            True when a registration transaction was sent, False if already registered.
        """
        registered = await asyncio.to_thread(
            self.contract_client.is_operator_registered, self.operator_address
        )
        if registered:
            logger.info(f"{self.uid_prefix} Operator already registered in DSS")
            return False

        registration_data = b""
        if self.bls_keypair is not None:
            message_hash = await asyncio.to_thread(
                self.contract_client.registration_message_hash
            )
            registration_data = build_bls_registration_data(self.bls_keypair, message_hash)

        tx_hash = await asyncio.to_thread(
            self.contract_client.register_operator_to_dss, registration_data
        )
        logger.info(f"{self.uid_prefix} ✅ Registered operator in DSS: {tx_hash}")
        return True

    async def ensure_registered_on_chain(
        self, stop_event: Optional[asyncio.Event] = None
    ) -> bool:
        """
        Retry the check-then-register step until it succeeds or stop_event is set.

        Returns:
            True once registered, False if stopped first.
        """
        attempt = 0
        while stop_event is None or not stop_event.is_set():
            attempt += 1
            try:
                await self.register_on_chain_once()
                self.state = RegistrationState.REGISTERED_NOT_ANNOUNCED
                get_metrics_manager().set_registered_on_chain(True)
                return True
            except Exception as e:
                delay = self.backoff_delay(attempt)
                logger.error(
                    f"{self.uid_prefix} On-chain registration attempt {attempt} failed: {e}. Retrying in {delay:.1f}s"
                )
                get_metrics_manager().set_registered_on_chain(False)
                await self._sleep(delay, stop_event)
        return False

    # --- Phase 2: aggregator heartbeat ---

    async def is_registered_with_aggregator(self) -> bool:
        url = f"{self.aggregator_url}/aggregator/isOperatorRegistered"
        response = await self.http_client.post(
            url, json=self.payload.model_dump(by_alias=True, exclude_none=True)
        )
        response.raise_for_status()
        return bool(response.json())

    async def register_with_aggregator(self) -> None:
        url = f"{self.aggregator_url}/aggregator/registerOperator"
        response = await self.http_client.post(
            url, json=self.payload.model_dump(by_alias=True, exclude_none=True)
        )
        response.raise_for_status()
        logger.info(f"{self.uid_prefix} Announced operator to aggregator at {self.aggregator_url}")

    async def heartbeat_check(self) -> bool:
        """
        Re-announce to the aggregator if it does not know this operator.

        Returns:
            True if a registration was sent.
        """
        registered = await self.is_registered_with_aggregator()
        get_metrics_manager().set_registered_with_aggregator(registered)
        if registered:
            self.state = RegistrationState.STEADY
            return False

        self.state = RegistrationState.REGISTERED_NOT_ANNOUNCED
        await self.register_with_aggregator()
        return True

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info(
            f"{self.uid_prefix} Starting registration service, heartbeat every {self.heartbeat_interval}s"
        )
        if not await self.ensure_registered_on_chain(stop_event):
            return

        while not stop_event.is_set():
            try:
                await self.heartbeat_check()
            except httpx.ConnectError as e:
                logger.warning(f"{self.uid_prefix} Could not connect to aggregator: {e}")
            except httpx.HTTPStatusError as e:
                logger.warning(
                    f"{self.uid_prefix} Aggregator answered HTTP {e.response.status_code}"
                )
            except Exception as e:
                logger.exception(f"{self.uid_prefix} Heartbeat failed: {e}")
            await self._sleep(self.heartbeat_interval, stop_event)

        logger.info(f"{self.uid_prefix} Registration service stopped")
