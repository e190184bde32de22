"""
Contract client for the square-number DSS and the restaking core contract.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from eth_abi import decode as abi_decode
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address
from hexbytes import HexBytes
from web3 import Web3

from dss_core.consensus.consensus_errors import (
    BlockchainError,
    BlockchainErrorHandler,
    SubmissionError,
)
from dss_core.core.datatypes import BlsProof, TaskRequest
from dss_core.core_client.abis import (
    FALLBACK_ABIS,
    SUBMIT_TASK_RESPONSE_BLS_SIG,
    SUBMIT_TASK_RESPONSE_SIG,
    TASK_REQUEST_EVENT_SIG,
)
from dss_core.crypto import bls

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 3_000_000
MIN_GAS_LIMIT = 220_000
TASK_REQUEST_TOPIC = Web3.keccak(text=TASK_REQUEST_EVENT_SIG)


def load_abi(name: str, abi_dir: Optional[str] = None) -> List[Dict]:
    """
    Load a contract ABI from {abi_dir}/{name}.json, accepting either a bare ABI
    list or a compiler artifact with an "abi" key. Falls back to the built-in ABI.
    """
    if abi_dir:
        artifact_path = Path(abi_dir) / f"{name}.json"
        if artifact_path.exists():
            try:
                with open(artifact_path, "r") as f:
                    contract_data = json.load(f)
                abi = contract_data.get("abi", []) if isinstance(contract_data, dict) else contract_data
                if abi:
                    logger.info(f"✅ Loaded {name} ABI from {artifact_path}: {len(abi)} entries")
                    return abi
            except (OSError, ValueError) as e:
                logger.warning(f"⚠️ Failed to load {name} ABI from {artifact_path}: {e}, using fallback")
        else:
            logger.warning(f"⚠️ Artifact not found at {artifact_path}, using fallback ABI")
    return FALLBACK_ABIS[name]


class DSSContractClient:
    """
    Synchronous web3 client for the DSS contract, the restaking core and
    its vaults. Async callers wrap its methods in asyncio.to_thread.
    """

    def __init__(
        self,
        w3: Web3,
        dss_address: str,
        core_address: Optional[str] = None,
        account: Optional[LocalAccount] = None,
        abi_dir: Optional[str] = None,
        receipt_timeout: int = 120,
    ):
        """
        Args:
            w3: Web3 instance connected to the chain
            dss_address: Address of the square-number DSS contract
            core_address: Address of the restaking core (needed for stake lookups and registration)
            account: Local account that signs transactions (optional for read-only use)
            abi_dir: Directory holding SquareNumberDSS.json / Core.json / Vault.json
            receipt_timeout: Seconds to wait for transaction receipts
        """
        self.w3 = w3
        self.account = account
        self.receipt_timeout = receipt_timeout
        self.dss_address = to_checksum_address(dss_address)
        self.dss = self.w3.eth.contract(
            address=self.dss_address, abi=load_abi("SquareNumberDSS", abi_dir)
        )

        self.core_address = to_checksum_address(core_address) if core_address else None
        self.core = (
            self.w3.eth.contract(address=self.core_address, abi=load_abi("Core", abi_dir))
            if self.core_address
            else None
        )
        self._vault_abi = load_abi("Vault", abi_dir)

        logger.info(f"✅ DSS contract client initialized: {self.dss_address}")

    def _require_core(self):
        if self.core is None:
            raise BlockchainError("Core contract address not configured")
        return self.core

    # --- Reads ---

    def latest_block(self) -> int:
        with BlockchainErrorHandler("latest_block"):
            return self.w3.eth.block_number

    def get_task_requests(self, from_block: int) -> List[TaskRequest]:
        """
        Fetch TaskRequestGenerated events emitted by the DSS since from_block.

        Returns:
            Decoded requests ordered by (block, log index).
        """
        with BlockchainErrorHandler("get_task_requests"):
            logs = self.w3.eth.get_logs(
                {
                    "address": self.dss_address,
                    "fromBlock": from_block,
                    "toBlock": "latest",
                    "topics": [Web3.to_hex(TASK_REQUEST_TOPIC)],
                }
            )

        requests = []
        for log in logs:
            request = self._decode_task_request(log)
            if request is not None:
                requests.append(request)
        requests.sort(key=lambda r: (r.block_number, r.log_index or 0))
        if requests:
            logger.debug(f"Found {len(requests)} task requests since block {from_block}")
        return requests

    def _decode_task_request(self, log: Any) -> Optional[TaskRequest]:
        try:
            topics = [HexBytes(t) for t in log["topics"]]
            if not topics or topics[0] != HexBytes(TASK_REQUEST_TOPIC):
                return None
            ((value,),) = abi_decode(["(uint256)"], bytes(HexBytes(log["data"])))
            sender = (
                to_checksum_address(bytes(topics[1])[-20:]) if len(topics) > 1 else None
            )
            tx_hash = log.get("transactionHash")
            return TaskRequest(
                value=value,
                block_number=int(log["blockNumber"]),
                sender=sender,
                transaction_hash=Web3.to_hex(HexBytes(tx_hash)) if tx_hash is not None else None,
                log_index=log.get("logIndex"),
            )
        except Exception as e:
            logger.warning(f"⚠️ Skipping undecodable TaskRequestGenerated log: {e}")
            return None

    def is_operator_registered(self, operator: str) -> bool:
        with BlockchainErrorHandler("is_operator_registered"):
            return bool(
                self.dss.functions.isOperatorRegistered(to_checksum_address(operator)).call()
            )

    def registration_message_hash(self) -> bytes:
        with BlockchainErrorHandler("registration_message_hash"):
            return bytes(self.dss.functions.REGISTRATION_MESSAGE_HASH().call())

    def fetch_vaults_staked_in_dss(self, operator: str) -> List[str]:
        core = self._require_core()
        with BlockchainErrorHandler("fetch_vaults_staked_in_dss"):
            return list(
                core.functions.fetchVaultsStakedInDSS(
                    to_checksum_address(operator), self.dss_address
                ).call()
            )

    def total_assets(self, vault: str) -> int:
        with BlockchainErrorHandler("total_assets"):
            contract = self.w3.eth.contract(
                address=to_checksum_address(vault), abi=self._vault_abi
            )
            return int(contract.functions.totalAssets().call())

    def get_operator_stake(self, operator: str) -> int:
        """Sum of totalAssets() over the vaults the operator stakes into this DSS."""
        return sum(self.total_assets(vault) for vault in self.fetch_vaults_staked_in_dss(operator))

    # --- Transactions ---

    def _send_transaction(self, fn_call, operation: str) -> str:
        if not self.account:
            raise BlockchainError("Account required for transaction")

        with BlockchainErrorHandler(operation):
            sender = self.account.address
            try:
                estimated = int(fn_call.estimate_gas({"from": sender}))
                gas_limit = max(MIN_GAS_LIMIT, estimated * 15 // 10)
            except Exception as e:
                logger.warning(f"⚠️ Gas estimation for {operation} failed, using default: {e}")
                gas_limit = DEFAULT_GAS_LIMIT

            txn = fn_call.build_transaction(
                {
                    "from": sender,
                    "gas": gas_limit,
                    "gasPrice": self.w3.eth.gas_price,
                    "nonce": self.w3.eth.get_transaction_count(sender, "pending"),
                }
            )
            signed_txn = self.account.sign_transaction(txn)
            tx_hash = self.w3.eth.send_raw_transaction(signed_txn.raw_transaction)
            tx_hex = Web3.to_hex(tx_hash)
            logger.info(f"Sent {operation} transaction: {tx_hex}")

            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )

        if receipt.get("status") != 1:
            raise SubmissionError(f"{operation} transaction {tx_hex} reverted")
        logger.info(f"✅ {operation} confirmed in block {receipt.get('blockNumber')}")
        return tx_hex

    def submit_task_response(
        self, request: TaskRequest, response: int, proof: Optional[BlsProof] = None
    ) -> str:
        """
        Submit the quorum response for a task request.

        Args:
            request: The task request being answered
            response: Winning response value
            proof: Aggregated BLS material; selects the BLS overload when present

        Returns:
            Transaction hash hex
        """
        with BlockchainErrorHandler("submitTaskResponse"):
            if proof is None:
                fn_call = self.dss.get_function_by_signature(SUBMIT_TASK_RESPONSE_SIG)(
                    (request.value,), (response,)
                )
            else:
                non_signers = [
                    bls.g1_to_evm(bls.g1_from_bytes(key))
                    for key in proof.non_signer_public_keys
                ]
                agg_pubkey = bls.g2_to_evm(bls.g2_from_bytes(proof.aggregated_public_key))
                agg_sign = bls.g1_to_evm(bls.g1_from_bytes(proof.aggregated_signature))
                fn_call = self.dss.get_function_by_signature(SUBMIT_TASK_RESPONSE_BLS_SIG)(
                    (request.value,), (response,), non_signers, agg_pubkey, agg_sign
                )
        return self._send_transaction(fn_call, "submitTaskResponse")

    def register_operator_to_dss(self, registration_data: bytes = b"") -> str:
        core = self._require_core()
        with BlockchainErrorHandler("registerOperatorToDSS"):
            fn_call = core.functions.registerOperatorToDSS(self.dss_address, registration_data)
        return self._send_transaction(fn_call, "registerOperatorToDSS")
