"""
Process health reported by GET /health.
"""
import logging
import threading
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    OK = "Ok"
    WARN = "Warn"
    FAIL = "Fail"


class HealthState:
    """Mutable health flag shared between background loops and the HTTP app."""

    def __init__(self):
        self._lock = threading.Lock()
        self._status = HealthStatus.OK
        self._reason: Optional[str] = None

    @property
    def status(self) -> HealthStatus:
        with self._lock:
            return self._status

    @property
    def reason(self) -> Optional[str]:
        with self._lock:
            return self._reason

    def set(self, status: HealthStatus, reason: Optional[str] = None) -> None:
        with self._lock:
            if status != self._status:
                logger.info(f"[Health] {self._status.value} -> {status.value}: {reason or ''}")
            self._status = status
            self._reason = reason

    def mark_warning(self, reason: str) -> None:
        self.set(HealthStatus.WARN, reason)

    def mark_failing(self, reason: str) -> None:
        self.set(HealthStatus.FAIL, reason)
