#!/usr/bin/env python3
"""
Error hierarchy for the aggregator and operator nodes.

Everything raised by dss_core derives from DSSError so callers at the
outermost seams (runners, CLI, HTTP handlers) can catch a single type.
"""

import logging
from contextlib import contextmanager
from typing import Generator

logger = logging.getLogger(__name__)


class DSSError(Exception):
    """Base exception for dss_core"""

    pass


class ConfigurationError(DSSError):
    """Settings are missing or invalid for the selected role"""

    pass


class CheckpointError(DSSError):
    """The block checkpoint file cannot be read or parsed"""

    pass


class RegistryError(DSSError):
    """The operator registry could not be accessed"""

    pass


class BlockchainError(DSSError):
    """Custom exception for blockchain-related errors"""

    pass


class SubmissionError(BlockchainError):
    """A task response transaction was rejected or reverted"""

    pass


class AggregationError(DSSError):
    """A task round could not produce a quorum decision"""

    pass


class TaskVerificationFailed(AggregationError):
    """No operator response passed signature verification"""

    pass


class MajorityNotReached(AggregationError):
    """The winning response does not hold a strict majority of the weight"""

    def __init__(self, winning_weight: int, total_weight: int):
        self.winning_weight = winning_weight
        self.total_weight = total_weight
        super().__init__(
            f"Majority not reached: winning weight {winning_weight} of {total_weight}"
        )


class MissingBlsKeyError(AggregationError):
    """A non-signing operator has no known BLS G1 public key"""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"No BLS public key known for non-signer {identity}")


class TaskComputationError(DSSError):
    """The operator could not compute or sign a task result"""

    pass


@contextmanager
def BlockchainErrorHandler(operation: str) -> Generator[None, None, None]:
    """
    Context manager for handling chain interaction errors.

    Errors that are already a BlockchainError pass through untouched, anything
    else is logged and re-raised as BlockchainError.

    Args:
        operation: Name of the operation being performed
    """
    try:
        yield
    except BlockchainError:
        raise
    except Exception as e:
        logger.error(f"Error in blockchain operation '{operation}': {e}")
        raise BlockchainError(f"Failed {operation}: {e}") from e
