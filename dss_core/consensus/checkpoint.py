# dss_core/consensus/checkpoint.py
"""
Persistence of the event watcher's next block, as {"block_number": N}.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from dss_core.consensus.consensus_errors import CheckpointError
from dss_core.core.datatypes import CheckpointState

logger = logging.getLogger(__name__)


class CheckpointStore:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> CheckpointState:
        """
        Read the checkpoint file. A missing file means start from block 0.

        Raises:
            CheckpointError: The file exists but cannot be read or parsed.
        """
        if not self.path.exists():
            logger.info(f"[Checkpoint] No checkpoint at {self.path}, starting from block 0")
            return CheckpointState(block_number=0)

        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
            block_number = data["block_number"]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise CheckpointError(f"Cannot read checkpoint {self.path}: {e}") from e

        if not isinstance(block_number, int) or isinstance(block_number, bool) or block_number < 0:
            raise CheckpointError(
                f"Invalid block_number in {self.path}: {block_number!r}"
            )
        return CheckpointState(block_number=block_number)

    def save(self, state: CheckpointState) -> None:
        """Write the checkpoint atomically (temp file in the same directory, then replace)."""
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(directory)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(f"[Checkpoint] Saved block_number={state.block_number} to {self.path}")
