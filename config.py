"""
Configuration for the MedVault emergency access service.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

# Application version - update this for each release
VERSION = "1.0.0"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


@dataclass
class Config:
    """Application configuration."""

    # Server settings
    HOST: str = os.getenv("MEDVAULT_HOST", "127.0.0.1")
    PORT: int = _env_int("MEDVAULT_PORT", 18422)

    # Storage paths
    STORAGE_DIR: Path = Path(os.getenv("MEDVAULT_STORAGE_DIR", str(Path(__file__).parent / "data")))

    # Audit journal; empty keeps the audit trail in memory only
    AUDIT_JOURNAL: str = os.getenv("MEDVAULT_AUDIT_JOURNAL", "")

    # Pinata / IPFS blob store
    PINATA_API_URL: str = os.getenv("MEDVAULT_PINATA_API_URL", "https://api.pinata.cloud")
    PINATA_GATEWAY_URL: str = os.getenv("MEDVAULT_GATEWAY_URL", "https://gateway.pinata.cloud")
    PINATA_JWT: Optional[str] = os.getenv("MEDVAULT_PINATA_JWT")
    PINATA_API_KEY: Optional[str] = os.getenv("MEDVAULT_PINATA_API_KEY")
    PINATA_SECRET_API_KEY: Optional[str] = os.getenv("MEDVAULT_PINATA_SECRET_API_KEY")
    PUBLIC_GATEWAYS: list[str] = field(default_factory=lambda: ["https://ipfs.io", "https://dweb.link"])

    # Network behaviour
    REQUEST_TIMEOUT_SECONDS: float = _env_float("MEDVAULT_REQUEST_TIMEOUT", 30.0)
    MAX_RETRIES: int = _env_int("MEDVAULT_MAX_RETRIES", 3)
    RETRY_DELAY_SECONDS: float = _env_float("MEDVAULT_RETRY_DELAY", 1.0)
    MAX_RETRY_DELAY_SECONDS: float = 30.0

    # Request signatures older or newer than this are rejected
    SIGNATURE_MAX_SKEW_SECONDS: int = _env_int("MEDVAULT_SIGNATURE_MAX_SKEW", 300)

    # Logging
    LOG_LEVEL: str = os.getenv("MEDVAULT_LOG_LEVEL", "INFO")
    LOG_JSON: bool = _env_bool("MEDVAULT_LOG_JSON", True)

    def __post_init__(self):
        """Ensure storage directory exists."""
        self.STORAGE_DIR.mkdir(parents=True, exist_ok=True)

    @property
    def keys_dir(self) -> Path:
        """Directory for identity keys."""
        path = self.STORAGE_DIR / "keys"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def logs_dir(self) -> Path:
        """Directory for log files."""
        path = self.STORAGE_DIR / "logs"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def audit_journal_path(self) -> Optional[Path]:
        """Path of the JSONL audit journal, if persistence is enabled."""
        if not self.AUDIT_JOURNAL:
            return None
        return Path(self.AUDIT_JOURNAL)


# Global config instance
config = Config()
