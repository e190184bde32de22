# dss_core/core/datatypes.py
"""
Data types shared by the aggregator and operator nodes.

Pydantic models describe what travels over HTTP; plain dataclasses hold
in-process state.
"""
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3

UINT256_MAX = 2**256 - 1


def normalize_identity(address: str) -> str:
    """Lowercase an operator address so it can be compared and hashed."""
    return address.lower()


def normalize_url(url: str) -> str:
    return url.rstrip("/")


# --- Wire models ---


class BlsPublicKey(BaseModel):
    """Operator BLS public key pair as 0x-hex point encodings."""

    model_config = ConfigDict(frozen=True)

    g1: str = Field(..., description="64-byte G1 public key (x || y)")
    g2: str = Field(
        ..., description="128-byte G2 public key (x.c1 || x.c0 || y.c1 || y.c0)"
    )


class Task(BaseModel):
    """Work item sent to operators: square this value."""

    value: int = Field(..., ge=0, le=UINT256_MAX)


class CompletedTask(BaseModel):
    """Result computed by an operator. Field order and values are what gets signed."""

    value: int = Field(..., ge=0, le=UINT256_MAX)
    response: int = Field(..., ge=0, le=UINT256_MAX)
    completed_at: str = Field(..., description="RFC 3339 UTC completion timestamp")


class TaskResponse(BaseModel):
    """Signed operator answer returned from POST /operator/task."""

    completed_task: CompletedTask
    public_key: str = Field(..., description="Operator EVM address")
    signature: str = Field(..., description="0x-hex ECDSA (65 bytes) or BLS G1 (64 bytes)")
    bls_pubkey: Optional[BlsPublicKey] = None


class OperatorPayload(BaseModel):
    """Body of the aggregator registration endpoints."""

    model_config = ConfigDict(populate_by_name=True)

    public_key: str = Field(..., alias="publicKey")
    url: str
    bls_public_key: Optional[BlsPublicKey] = Field(None, alias="blsPublicKey")

    @field_validator("public_key")
    def validate_public_key(cls, value: str) -> str:
        if not Web3.is_address(value):
            raise ValueError(f"Invalid operator address: {value}")
        return Web3.to_checksum_address(value)

    @field_validator("url")
    def validate_url(cls, value: str) -> str:
        if not (value.startswith("http://") or value.startswith("https://")):
            raise ValueError(f"Operator url must be http(s): {value}")
        return value

    def to_operator(self) -> "Operator":
        return Operator(
            public_key=self.public_key,
            url=self.url,
            bls_public_key=self.bls_public_key,
        )


# --- In-process state ---


@dataclass(frozen=True, eq=False)
class Operator:
    """
    A registered operator. Equality and hashing use (address, url) only,
    so the BLS key can be refreshed without creating a second entry.
    """

    public_key: str
    url: str
    bls_public_key: Optional[BlsPublicKey] = None

    @property
    def identity(self) -> str:
        return normalize_identity(self.public_key)

    def _key(self) -> Tuple[str, str]:
        return (self.identity, normalize_url(self.url))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Operator):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())


@dataclass(frozen=True)
class TaskRequest:
    """A TaskRequestGenerated event decoded from chain logs."""

    value: int
    block_number: int
    sender: Optional[str] = None
    transaction_hash: Optional[str] = None
    log_index: Optional[int] = None

    @property
    def task(self) -> Task:
        return Task(value=self.value)


@dataclass
class VerifiedResponse:
    """A TaskResponse whose signature checked out, plus decoded BLS points."""

    response: TaskResponse
    signature_point: Any = None
    g1_public_key: Any = None
    g2_public_key: Any = None

    @property
    def identity(self) -> str:
        return normalize_identity(self.response.public_key)

    @property
    def value(self) -> int:
        return self.response.completed_task.response


@dataclass(frozen=True)
class BlsProof:
    """Aggregated material for the BLS variant of submitTaskResponse."""

    aggregated_signature: bytes
    aggregated_public_key: bytes
    non_signer_public_keys: Tuple[bytes, ...] = ()


@dataclass(frozen=True)
class QuorumDecision:
    """Outcome of a successful aggregation round."""

    response: int
    winning_weight: int
    total_weight: int
    signers: Tuple[str, ...]
    non_signers: Tuple[str, ...] = ()
    proof: Optional[BlsProof] = None


@dataclass
class CheckpointState:
    block_number: int = 0

    def to_dict(self) -> dict:
        return {"block_number": self.block_number}

