# dss_core/consensus/aggregation.py
"""
Quorum aggregation of operator responses for one task round.

The round pipeline is: dedupe responses by operator identity, verify
signatures, weigh each verified responder, group by response value and
require the winning group to hold a strict majority of the total weight.
In BLS mode the winning signatures and keys are also aggregated into the
proof that the DSS contract checks.
"""
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from dss_core.config.settings import QuorumMode
from dss_core.consensus.consensus_errors import (
    AggregationError,
    MajorityNotReached,
    MissingBlsKeyError,
    TaskVerificationFailed,
)
from dss_core.consensus.verification import (
    AddressRecoveryVerifier,
    BlsVerifier,
    ResponseVerifier,
)
from dss_core.core.datatypes import (
    BlsProof,
    Operator,
    QuorumDecision,
    TaskResponse,
    VerifiedResponse,
    normalize_identity,
)
from dss_core.crypto import bls
from dss_core.monitoring.metrics import get_metrics_manager

logger = logging.getLogger(__name__)


def registered_identities(operators: Iterable[Operator]) -> Set[str]:
    """Distinct operator addresses; one address may be registered under several urls."""
    return {op.identity for op in operators}


# --- Weighting ---


class WeightingStrategy(ABC):
    """Assigns voting weight to verified responders."""

    @abstractmethod
    async def weigh(
        self, responders: Iterable[str], operators: FrozenSet[Operator]
    ) -> Tuple[Dict[str, int], int]:
        """
        Args:
            responders: Identities with a verified response.
            operators: Registry snapshot the round was dispatched to.

        Returns:
            (weight per responder, total eligible weight). Responders with no
            weight are omitted.
        """


class EqualWeight(WeightingStrategy):
    """Every registered identity carries weight 1."""

    async def weigh(self, responders, operators):
        identities = registered_identities(operators)
        weights = {identity: 1 for identity in responders if identity in identities}
        return weights, len(identities)


class StakeWeight(WeightingStrategy):
    """
    Weight is the operator's restaked assets in this DSS. Operators at or
    below min_stake are excluded from both the responders and the total.
    """

    def __init__(self, contract_client, min_stake: int = 0):
        self.contract_client = contract_client
        self.min_stake = min_stake

    async def _stake_of(self, identity: str) -> int:
        return await asyncio.to_thread(self.contract_client.get_operator_stake, identity)

    async def weigh(self, responders, operators):
        identities = sorted(registered_identities(operators))
        results = await asyncio.gather(
            *(self._stake_of(identity) for identity in identities),
            return_exceptions=True,
        )

        stakes: Dict[str, int] = {}
        for identity, result in zip(identities, results):
            if isinstance(result, Exception):
                raise AggregationError(
                    f"Stake lookup failed for {identity}: {result}"
                ) from result
            if result > self.min_stake:
                stakes[identity] = result
            else:
                logger.debug(
                    f"[Aggregate] Operator {identity} stake {result} at or below minimum {self.min_stake}"
                )

        weights = {identity: stakes[identity] for identity in responders if identity in stakes}
        return weights, sum(stakes.values())


# --- Aggregator ---


class QuorumAggregator:
    """Turns a set of operator responses into a QuorumDecision."""

    def __init__(
        self,
        verifier: ResponseVerifier,
        weighting: WeightingStrategy,
        proof_builder: Optional["BlsProofBuilder"] = None,
    ):
        self.verifier = verifier
        self.weighting = weighting
        self.proof_builder = proof_builder

    @classmethod
    def for_mode(
        cls, mode: QuorumMode, contract_client=None, min_stake: int = 0
    ) -> "QuorumAggregator":
        mode = QuorumMode(mode)
        if mode == QuorumMode.STAKE:
            if contract_client is None:
                raise ValueError("Stake quorum requires a contract client")
            return cls(AddressRecoveryVerifier(), StakeWeight(contract_client, min_stake))
        if mode == QuorumMode.BLS:
            return cls(BlsVerifier(), EqualWeight(), proof_builder=BlsProofBuilder())
        return cls(AddressRecoveryVerifier(), EqualWeight())

    def _verify_all(self, responses: List[TaskResponse]) -> Dict[str, VerifiedResponse]:
        verified: Dict[str, VerifiedResponse] = {}
        for response in responses:
            result = self.verifier.verify(response)
            if result is not None:
                verified[result.identity] = result
        return verified

    async def aggregate(
        self, responses: Iterable[TaskResponse], operators: FrozenSet[Operator]
    ) -> QuorumDecision:
        """
        Run one quorum round.

        Args:
            responses: Responses gathered by the dispatcher. When an identity
                appears more than once the later response wins.
            operators: Registry snapshot taken before dispatch.

        Returns:
            The winning response value with its weight and, in BLS mode, the
            aggregated proof.

        Raises:
            TaskVerificationFailed: No response passed verification.
            MajorityNotReached: The heaviest response has at most half the weight.
            MissingBlsKeyError: A non-signer's G1 key is unknown (BLS mode).
            AggregationError: Stake lookup failed (stake mode).
        """
        start = time.monotonic()
        try:
            decision = await self._aggregate(responses, operators)
        except AggregationError as e:
            get_metrics_manager().record_aggregation_round(
                type(e).__name__, time.monotonic() - start
            )
            raise
        get_metrics_manager().record_aggregation_round(
            "success", time.monotonic() - start
        )
        return decision

    async def _aggregate(self, responses, operators) -> QuorumDecision:
        # --- 1. Dedupe by identity, ignoring unknown operators ---
        identities = registered_identities(operators)
        by_identity: Dict[str, TaskResponse] = {}
        for response in responses:
            identity = normalize_identity(response.public_key)
            if identity not in identities:
                logger.warning(
                    f"[Aggregate] Ignoring response from unregistered operator {response.public_key}"
                )
                continue
            by_identity[identity] = response

        # --- 2. Verify (pairings are CPU bound) ---
        verified = await asyncio.to_thread(self._verify_all, list(by_identity.values()))
        if not verified:
            raise TaskVerificationFailed(
                f"None of {len(by_identity)} responses passed verification"
            )
        logger.debug(f"[Aggregate] {len(verified)}/{len(by_identity)} responses verified")

        # --- 3. Weigh ---
        weights, total_weight = await self.weighting.weigh(verified.keys(), operators)

        # --- 4. Group by response value ---
        group_weight: Dict[int, int] = defaultdict(int)
        group_members: Dict[int, List[str]] = defaultdict(list)
        for identity, weight in weights.items():
            value = verified[identity].value
            group_weight[value] += weight
            group_members[value].append(identity)

        if not group_weight:
            raise MajorityNotReached(0, total_weight)

        # Heaviest group wins, ties go to the smallest value
        winning_value = min(group_weight, key=lambda v: (-group_weight[v], v))
        winning_weight = group_weight[winning_value]

        if 2 * winning_weight <= total_weight:
            logger.warning(
                f"[Aggregate] Majority not reached for response {winning_value}: {winning_weight}/{total_weight}"
            )
            raise MajorityNotReached(winning_weight, total_weight)

        signers = tuple(sorted(group_members[winning_value]))
        non_signers = tuple(sorted(identities - set(signers)))
        logger.info(
            f"[Aggregate] Quorum reached on {winning_value} with weight {winning_weight}/{total_weight} ({len(signers)} signers)"
        )

        proof: Optional[BlsProof] = None
        if self.proof_builder is not None:
            proof = self.proof_builder.build(
                [verified[i] for i in signers], non_signers, operators, by_identity
            )

        return QuorumDecision(
            response=winning_value,
            winning_weight=winning_weight,
            total_weight=total_weight,
            signers=signers,
            non_signers=non_signers,
            proof=proof,
        )


class BlsProofBuilder:
    """Aggregates the winning BLS material and collects non-signer G1 keys."""

    def build(
        self,
        winners: List[VerifiedResponse],
        non_signers: Tuple[str, ...],
        operators: FrozenSet[Operator],
        by_identity: Dict[str, TaskResponse],
    ) -> BlsProof:
        aggregated_signature = bls.aggregate_g1(w.signature_point for w in winners)
        aggregated_key = bls.aggregate_g2(w.g2_public_key for w in winners)

        registry_keys: Dict[str, str] = {}
        for op in sorted(operators, key=lambda o: (o.identity, o.url)):
            if op.bls_public_key is not None:
                registry_keys.setdefault(op.identity, op.bls_public_key.g1)

        non_signer_keys: List[bytes] = []
        for identity in non_signers:
            g1_hex = registry_keys.get(identity)
            if g1_hex is None:
                response = by_identity.get(identity)
                if response is not None and response.bls_pubkey is not None:
                    g1_hex = response.bls_pubkey.g1
            if g1_hex is None:
                raise MissingBlsKeyError(identity)
            try:
                point = bls.g1_from_hex(g1_hex)
            except ValueError as e:
                raise MissingBlsKeyError(identity) from e
            non_signer_keys.append(bls.g1_to_bytes(point))

        return BlsProof(
            aggregated_signature=bls.g1_to_bytes(aggregated_signature),
            aggregated_public_key=bls.g2_to_bytes(aggregated_key),
            non_signer_public_keys=tuple(non_signer_keys),
        )
