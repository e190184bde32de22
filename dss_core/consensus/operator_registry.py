# dss_core/consensus/operator_registry.py
"""
In-memory set of operators that announced themselves to the aggregator.

HTTP handlers write to it, the event watcher reads consistent snapshots.
"""
import logging
import threading
from typing import Dict, FrozenSet

from dss_core.consensus.consensus_errors import RegistryError
from dss_core.core.datatypes import Operator
from dss_core.monitoring.metrics import get_metrics_manager

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_SECONDS = 5.0


class OperatorRegistry:
    """Thread-safe registry keyed by (address, url)."""

    def __init__(self, lock_timeout: float = LOCK_TIMEOUT_SECONDS):
        self._operators: Dict[Operator, Operator] = {}
        self._lock = threading.RLock()
        self._lock_timeout = lock_timeout

    def _acquire(self):
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise RegistryError("Could not lock operator registry")

    def register(self, operator: Operator) -> bool:
        """
        Add an operator to the registry.

        Args:
            operator: The operator announcing itself.

        Returns:
            True if the (address, url) pair was new. An existing entry whose
            BLS key differs is updated in place and False is returned.
        """
        self._acquire()
        try:
            existing = self._operators.get(operator)
            if existing is None:
                self._operators[operator] = operator
                count = len(self._operators)
                logger.info(
                    f"[Registry] Operator registered: {operator.public_key} at {operator.url}"
                )
                get_metrics_manager().update_registered_operators(count)
                return True

            if (
                operator.bls_public_key is not None
                and operator.bls_public_key != existing.bls_public_key
            ):
                # Key is outside the dict key, so the entry must be swapped
                del self._operators[existing]
                self._operators[operator] = operator
                logger.info(f"[Registry] Updated BLS key for {operator.public_key}")
            else:
                logger.info(f"[Registry] Operator already registered: {operator.public_key}")
            return False
        finally:
            self._lock.release()

    def is_registered(self, operator: Operator) -> bool:
        self._acquire()
        try:
            return operator in self._operators
        finally:
            self._lock.release()

    def snapshot(self) -> FrozenSet[Operator]:
        """Immutable copy of the current membership."""
        self._acquire()
        try:
            return frozenset(self._operators.values())
        finally:
            self._lock.release()

    def __len__(self) -> int:
        self._acquire()
        try:
            return len(self._operators)
        finally:
            self._lock.release()
