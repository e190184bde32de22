# dss_core/config/settings.py

import base64
import binascii
import logging
import re
from enum import Enum
from functools import lru_cache
from typing import List, Optional

import coloredlogs
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

from dss_core.consensus.consensus_errors import ConfigurationError

# ANSI color codes
RED = "\033[91m"
YELLOW = "\033[93m"
RESET = "\033[0m"

# Addresses (40 hex) and tx/message hashes (64 hex), with or without 0x
HEX_ID_REGEX = re.compile(r"(\b(?:0x)?[a-fA-F0-9]{40}(?:[a-fA-F0-9]{24})?\b)")
QUORUM_REGEX = re.compile(r"(\bMajority\b|\bQuorum\b)", re.IGNORECASE)


class HighlightFormatter(coloredlogs.ColoredFormatter):
    """Formatter that highlights quorum outcomes and hex addresses/hashes."""

    def format(self, record):
        formatted_message = super().format(record)

        if QUORUM_REGEX.search(formatted_message):
            formatted_message = QUORUM_REGEX.sub(f"{RED}\\1{RESET}", formatted_message)

        def replace_hex(match):
            return f"{YELLOW}{match.group(1)}{RESET}"

        return HEX_ID_REGEX.sub(replace_hex, formatted_message)


class QuorumMode(str, Enum):
    """How operator responses are verified and weighted."""

    ECDSA = "ecdsa"
    STAKE = "stake"
    BLS = "bls"


class Settings(BaseSettings):
    """
    Configuration shared by the aggregator and operator nodes, loaded from
    environment variables or a .env file.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    # --- Server ---
    HOST: str = Field(
        default="0.0.0.0", alias="HOST", description="Interface the HTTP server binds"
    )
    PORT: int = Field(
        default=8080, alias="PORT", description="Port the HTTP server listens on"
    )

    # --- Chain ---
    RPC_URL: Optional[str] = Field(
        None, alias="RPC_URL", description="EVM JSON-RPC endpoint"
    )
    PRIVATE_KEY: Optional[str] = Field(
        None,
        alias="PRIVATE_KEY",
        description="Hex secp256k1 key used to sign transactions and responses",
    )
    DSS_ADDRESS: Optional[str] = Field(
        None, alias="DSS_ADDRESS", description="Square-number DSS contract address"
    )
    CORE_ADDRESS: Optional[str] = Field(
        None, alias="CORE_ADDRESS", description="Restaking core contract address"
    )
    TX_RECEIPT_TIMEOUT: int = Field(
        default=120,
        alias="TX_RECEIPT_TIMEOUT",
        description="Seconds to wait for a transaction receipt",
    )
    ABI_DIR: Optional[str] = Field(
        None,
        alias="ABI_DIR",
        description="Directory of compiled contract ABI JSON files (built-in ABIs used when unset)",
    )

    # --- Aggregator ---
    BLOCK_NUMBER_STORE: str = Field(
        default="block_number.json",
        alias="BLOCK_NUMBER_STORE",
        description="Path of the JSON checkpoint file",
    )
    QUORUM_MODE: QuorumMode = Field(
        default=QuorumMode.ECDSA,
        alias="QUORUM_MODE",
        description="Quorum verification mode: ecdsa, stake or bls",
    )
    MIN_OPERATOR_STAKE: int = Field(
        default=0,
        alias="MIN_OPERATOR_STAKE",
        description="Operators with stake at or below this value carry no weight",
    )
    OPERATOR_REQUEST_TIMEOUT: float = Field(
        default=10.0,
        alias="OPERATOR_REQUEST_TIMEOUT",
        description="Per-operator timeout (seconds) for task dispatch",
    )

    # --- Operator ---
    HEARTBEAT: int = Field(
        default=5000,
        alias="HEARTBEAT",
        description="Milliseconds between event polls (aggregator) or heartbeats (operator)",
    )
    DOMAIN_URL: Optional[str] = Field(
        None,
        alias="DOMAIN_URL",
        description="Externally reachable base URL of this operator",
    )
    AGGREGATOR_URL: Optional[str] = Field(
        None, alias="AGGREGATOR_URL", description="Base URL of the aggregator"
    )
    BLS_KEYPAIR: Optional[str] = Field(
        None,
        alias="BLS_KEYPAIR",
        description="Base64 encoded 32-byte BLS secret key",
    )
    REGISTRATION_RETRY_BASE_SECONDS: float = Field(
        default=1.0,
        alias="REGISTRATION_RETRY_BASE_SECONDS",
        description="First delay of the on-chain registration backoff",
    )
    REGISTRATION_RETRY_MAX_SECONDS: float = Field(
        default=60.0,
        alias="REGISTRATION_RETRY_MAX_SECONDS",
        description="Upper bound of the on-chain registration backoff",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    @field_validator("DSS_ADDRESS", "CORE_ADDRESS", mode="before")
    def validate_address(cls, value: Optional[str]):
        if value is None or str(value).strip() == "":
            return None
        value_str = str(value).strip()
        if not Web3.is_address(value_str):
            raise ValueError(f"Invalid contract address: {value_str}")
        return Web3.to_checksum_address(value_str)

    @field_validator("QUORUM_MODE", mode="before")
    def validate_quorum_mode(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("LOG_LEVEL", mode="before")
    def validate_log_level(cls, value: Optional[str]):
        level = str(value or "INFO").strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("BLS_KEYPAIR", mode="before")
    def validate_bls_keypair(cls, value: Optional[str]):
        if value is None or str(value).strip() == "":
            return None
        value_str = str(value).strip()
        try:
            raw = base64.b64decode(value_str, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"BLS_KEYPAIR is not valid base64: {e}") from e
        if len(raw) != 32:
            raise ValueError("BLS_KEYPAIR must decode to exactly 32 bytes")
        return value_str

    @property
    def heartbeat_seconds(self) -> float:
        return self.HEARTBEAT / 1000.0

    def _require(self, names: List[str], role: str) -> None:
        missing = [name for name in names if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                f"Missing required {role} settings: {', '.join(missing)}"
            )

    def require_aggregator_fields(self) -> None:
        """Raise ConfigurationError if the aggregator cannot start with these settings."""
        required = ["RPC_URL", "PRIVATE_KEY", "DSS_ADDRESS", "BLOCK_NUMBER_STORE"]
        if self.QUORUM_MODE == QuorumMode.STAKE:
            required.append("CORE_ADDRESS")
        self._require(required, "aggregator")

    def require_operator_fields(self) -> None:
        """Raise ConfigurationError if the operator cannot start with these settings."""
        required = [
            "RPC_URL",
            "PRIVATE_KEY",
            "DSS_ADDRESS",
            "CORE_ADDRESS",
            "DOMAIN_URL",
            "AGGREGATOR_URL",
        ]
        if self.QUORUM_MODE == QuorumMode.BLS:
            required.append("BLS_KEYPAIR")
        self._require(required, "operator")


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# --- Logging ---

DEFAULT_LEVEL_STYLES = {
    "debug": {"color": "green"},
    "info": {"color": "cyan"},
    "warning": {"color": "yellow"},
    "error": {"color": "red"},
    "critical": {"bold": True, "color": "red"},
}
DEFAULT_FIELD_STYLES = {
    "asctime": {"color": "magenta"},
    "levelname": {"bold": True, "color": "blue"},
    "name": {"color": "white"},
}
DEFAULT_FMT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """
    Install coloredlogs on the root logger with the highlight formatter.

    Safe to call more than once; existing root handlers are replaced.
    """
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    highlight_formatter = HighlightFormatter(
        fmt=DEFAULT_FMT,
        level_styles=DEFAULT_LEVEL_STYLES,
        field_styles=DEFAULT_FIELD_STYLES,
    )
    coloredlogs.install(level=log_level, reconfigure=True)
    for handler in root_logger.handlers:
        handler.setFormatter(highlight_formatter)
    # web3 and httpx are chatty at DEBUG
    logging.getLogger("web3").setLevel(max(log_level, logging.INFO))
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))

    logging.getLogger(__name__).debug(
        f"Logging configured at {logging.getLevelName(log_level)}."
    )
