"""
BLS signatures over the BN254 (alt_bn128) curve, as verified by the EVM
precompiles at 0x06-0x08.

Public keys live in both G1 and G2, signatures live in G1. Messages are
32-byte hashes mapped to G1 with the try-and-increment method used by
EigenLayer-style BN254 libraries, so a signature produced here verifies
on-chain.

Point encodings (big-endian, 32 bytes per coordinate):
- G1: x || y (64 bytes)
- G2: x.c1 || x.c0 || y.c1 || y.c0 (128 bytes, EVM order)
The point at infinity is encoded as all zero bytes.

Note: py_ecc is pure Python. Scalar multiplications take milliseconds and a
pairing check takes a good fraction of a second; callers verifying many
signatures should do so off the event loop.
"""

import base64
import logging
import secrets
from dataclasses import dataclass
from functools import reduce
from typing import Iterable, List, Tuple

from eth_abi import encode as abi_encode
from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    G1,
    G2,
    Z1,
    Z2,
    add,
    b,
    b2,
    curve_order,
    final_exponentiate,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    normalize,
    pairing,
)
from web3 import Web3

logger = logging.getLogger(__name__)

FIELD_MODULUS = FQ.field_modulus
G1_POINT_LEN = 64
G2_POINT_LEN = 128
SECRET_KEY_LEN = 32


class BlsError(ValueError):
    """Malformed key, signature or point encoding"""

    pass


# --- Point helpers ---


def _coeff(value) -> int:
    # optimized FQ2 keeps raw ints in .coeffs, FQ wraps them in .n
    return value.n if hasattr(value, "n") else int(value)


def _int_from(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset : offset + 32], "big")


def g1_to_bytes(point) -> bytes:
    if is_inf(point):
        return b"\x00" * G1_POINT_LEN
    x, y = normalize(point)
    return _coeff(x).to_bytes(32, "big") + _coeff(y).to_bytes(32, "big")


def g1_from_bytes(data: bytes):
    """Decode a 64-byte G1 point, rejecting points off the curve."""
    if len(data) != G1_POINT_LEN:
        raise BlsError(f"G1 point must be {G1_POINT_LEN} bytes, got {len(data)}")
    x, y = _int_from(data, 0), _int_from(data, 32)
    if x == 0 and y == 0:
        return Z1
    if x >= FIELD_MODULUS or y >= FIELD_MODULUS:
        raise BlsError("G1 coordinate exceeds field modulus")
    point = (FQ(x), FQ(y), FQ.one())
    # G1 on BN254 has cofactor 1, on-curve implies in-subgroup
    if not is_on_curve(point, b):
        raise BlsError("G1 point is not on the curve")
    return point


def g2_to_bytes(point) -> bytes:
    if is_inf(point):
        return b"\x00" * G2_POINT_LEN
    x, y = normalize(point)
    x0, x1 = (_coeff(c) for c in x.coeffs)
    y0, y1 = (_coeff(c) for c in y.coeffs)
    return b"".join(v.to_bytes(32, "big") for v in (x1, x0, y1, y0))


def g2_from_bytes(data: bytes):
    """Decode a 128-byte G2 point in EVM order, with curve and subgroup checks."""
    if len(data) != G2_POINT_LEN:
        raise BlsError(f"G2 point must be {G2_POINT_LEN} bytes, got {len(data)}")
    x1, x0, y1, y0 = (_int_from(data, i) for i in range(0, G2_POINT_LEN, 32))
    if not any((x1, x0, y1, y0)):
        return Z2
    if any(v >= FIELD_MODULUS for v in (x1, x0, y1, y0)):
        raise BlsError("G2 coordinate exceeds field modulus")
    point = (FQ2([x0, x1]), FQ2([y0, y1]), FQ2.one())
    if not is_on_curve(point, b2):
        raise BlsError("G2 point is not on the curve")
    if not is_inf(multiply(point, curve_order)):
        raise BlsError("G2 point is not in the prime-order subgroup")
    return point


def g1_to_evm(point) -> Tuple[int, int]:
    """G1 point as the (X, Y) struct expected by Solidity BN254 libraries."""
    data = g1_to_bytes(point)
    return _int_from(data, 0), _int_from(data, 32)


def g2_to_evm(point) -> Tuple[List[int], List[int]]:
    """G2 point as the (X[2], Y[2]) struct, imaginary component first."""
    data = g2_to_bytes(point)
    x1, x0, y1, y0 = (_int_from(data, i) for i in range(0, G2_POINT_LEN, 32))
    return [x1, x0], [y1, y0]


def g1_from_hex(value: str):
    return g1_from_bytes(bytes(Web3.to_bytes(hexstr=value)))


def g2_from_hex(value: str):
    return g2_from_bytes(bytes(Web3.to_bytes(hexstr=value)))


def to_hex(data: bytes) -> str:
    return "0x" + data.hex()


# --- Hashing ---


def hash_to_g1(message_hash: bytes):
    """
    Map a 32-byte digest to a G1 point by try-and-increment on x.

    y^2 = x^3 + 3 and p = 3 mod 4, so a square root is beta^((p+1)/4).
    """
    x = int.from_bytes(message_hash, "big") % FIELD_MODULUS
    while True:
        beta = (pow(x, 3, FIELD_MODULUS) + 3) % FIELD_MODULUS
        y = pow(beta, (FIELD_MODULUS + 1) // 4, FIELD_MODULUS)
        if (y * y) % FIELD_MODULUS == beta:
            return (FQ(x), FQ(y), FQ.one())
        x = (x + 1) % FIELD_MODULUS


def task_response_hash(response: int) -> bytes:
    """keccak256(abi.encode(TaskResponse{response})) - the message operators sign."""
    return bytes(Web3.keccak(abi_encode(["uint256"], [response])))


# --- Signatures ---


def verify_signature(g2_public_key, signature, message_hash: bytes) -> bool:
    """
    Check e(sig, G2) == e(H(m), pk) with a single final exponentiation.

    Points must already be decoded (and so validated) by the *_from_bytes helpers.
    """
    if is_inf(g2_public_key) or is_inf(signature):
        return False
    message_point = hash_to_g1(message_hash)
    product = pairing(neg(G2), signature, final_exponentiate=False) * pairing(
        g2_public_key, message_point, final_exponentiate=False
    )
    return final_exponentiate(product) == FQ12.one()


def aggregate_g1(points: Iterable):
    return reduce(add, points, Z1)


def aggregate_g2(points: Iterable):
    return reduce(add, points, Z2)


@dataclass(frozen=True)
class BlsKeyPair:
    """BN254 secret key together with its G1 and G2 public keys."""

    secret_key: int

    def __post_init__(self):
        if not 0 < self.secret_key < curve_order:
            raise BlsError("BLS secret key out of range")

    @classmethod
    def generate(cls) -> "BlsKeyPair":
        return cls(secrets.randbelow(curve_order - 1) + 1)

    @classmethod
    def from_bytes(cls, data: bytes) -> "BlsKeyPair":
        if len(data) != SECRET_KEY_LEN:
            raise BlsError(f"BLS secret key must be {SECRET_KEY_LEN} bytes")
        return cls(int.from_bytes(data, "big"))

    @classmethod
    def from_base64(cls, value: str) -> "BlsKeyPair":
        try:
            raw = base64.b64decode(value, validate=True)
        except ValueError as e:
            raise BlsError(f"Invalid base64 BLS key: {e}") from e
        return cls.from_bytes(raw)

    def to_bytes(self) -> bytes:
        return self.secret_key.to_bytes(SECRET_KEY_LEN, "big")

    def to_base64(self) -> str:
        return base64.b64encode(self.to_bytes()).decode("ascii")

    @property
    def g1_public_key(self):
        return multiply(G1, self.secret_key)

    @property
    def g2_public_key(self):
        return multiply(G2, self.secret_key)

    def public_key_hex(self) -> Tuple[str, str]:
        """(G1, G2) public keys as 0x-prefixed hex."""
        return (
            to_hex(g1_to_bytes(self.g1_public_key)),
            to_hex(g2_to_bytes(self.g2_public_key)),
        )

    def sign_message_hash(self, message_hash: bytes):
        """Sign a 32-byte digest, returning the G1 signature point."""
        if len(message_hash) != 32:
            raise BlsError("BLS message hash must be 32 bytes")
        return multiply(hash_to_g1(message_hash), self.secret_key)
