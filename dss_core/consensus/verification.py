# dss_core/consensus/verification.py
"""
Signing and verification of operator task responses.

Two schemes are supported:

* Address recovery: the operator signs the canonical JSON of its
  CompletedTask with an EIP-191 personal message signature, and the
  aggregator recovers the signer address.
* BLS: the operator signs keccak256(abi.encode(response)) on BN254, so the
  aggregated signature can be checked by the DSS contract.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from eth_abi.exceptions import EncodingError
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_utils import decode_hex

from dss_core.core.datatypes import (
    BlsPublicKey,
    CompletedTask,
    TaskResponse,
    VerifiedResponse,
    normalize_identity,
)
from dss_core.crypto import bls

logger = logging.getLogger(__name__)


def canonical_json_serialize(data: Any) -> str:
    """Serialize data to a stable JSON string (sorted keys, no whitespace).

    Pydantic models are dumped first, bytes become 0x-hex.

    Args:
        data: A pydantic model, dict, list or JSON scalar.

    Returns:
        The canonical JSON text that gets signed.
    """

    def convert(obj):
        if hasattr(obj, "model_dump"):
            return convert(obj.model_dump())
        elif isinstance(obj, dict):
            return {k: convert(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [convert(item) for item in obj]
        elif isinstance(obj, bytes):
            return "0x" + obj.hex()
        return obj

    return json.dumps(convert(data), sort_keys=True, separators=(",", ":"))


# --- Signing (operator side) ---


def sign_completed_task(account: LocalAccount, completed_task: CompletedTask) -> str:
    """EIP-191 signature over the canonical JSON of a completed task, as 0x-hex."""
    message = encode_defunct(text=canonical_json_serialize(completed_task))
    signed = account.sign_message(message)
    return "0x" + bytes(signed.signature).hex()


def sign_completed_task_bls(
    keypair: bls.BlsKeyPair, completed_task: CompletedTask
) -> str:
    """BLS G1 signature over the task response hash, as 0x-hex."""
    signature = keypair.sign_message_hash(bls.task_response_hash(completed_task.response))
    return bls.to_hex(bls.g1_to_bytes(signature))


def bls_public_key_of(keypair: bls.BlsKeyPair) -> BlsPublicKey:
    g1_hex, g2_hex = keypair.public_key_hex()
    return BlsPublicKey(g1=g1_hex, g2=g2_hex)


# --- Verification (aggregator side) ---


class ResponseVerifier(ABC):
    """Checks that a TaskResponse was signed by the operator it names."""

    @abstractmethod
    def verify(self, response: TaskResponse) -> Optional[VerifiedResponse]:
        """Return the verified response, or None if verification fails."""


class AddressRecoveryVerifier(ResponseVerifier):
    def verify(self, response: TaskResponse) -> Optional[VerifiedResponse]:
        try:
            message = encode_defunct(
                text=canonical_json_serialize(response.completed_task)
            )
            recovered = Account.recover_message(
                message, signature=decode_hex(response.signature)
            )
        except Exception as e:
            logger.warning(
                f"[Verify] Malformed signature from {response.public_key}: {e}"
            )
            return None

        if normalize_identity(recovered) != normalize_identity(response.public_key):
            logger.warning(
                f"[Verify] Signature from {response.public_key} recovers to {recovered}"
            )
            return None
        return VerifiedResponse(response=response)


class BlsVerifier(ResponseVerifier):
    def verify(self, response: TaskResponse) -> Optional[VerifiedResponse]:
        if response.bls_pubkey is None:
            logger.warning(f"[Verify] Response from {response.public_key} has no BLS key")
            return None

        try:
            g1_key = bls.g1_from_hex(response.bls_pubkey.g1)
            g2_key = bls.g2_from_hex(response.bls_pubkey.g2)
            signature = bls.g1_from_hex(response.signature)
            message_hash = bls.task_response_hash(response.completed_task.response)
        except (ValueError, EncodingError) as e:
            logger.warning(
                f"[Verify] Undecodable BLS material from {response.public_key}: {e}"
            )
            return None

        if not bls.verify_signature(g2_key, signature, message_hash):
            logger.warning(f"[Verify] Invalid BLS signature from {response.public_key}")
            return None

        return VerifiedResponse(
            response=response,
            signature_point=signature,
            g1_public_key=g1_key,
            g2_public_key=g2_key,
        )
