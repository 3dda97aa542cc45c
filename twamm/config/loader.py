"""
TWAMM TOML Configuration Loader

Loads twamm.toml with environment variable overrides.

Environment variable mapping:
    [pool] default_type           → TWAMM_POOL_TYPE
    [pool] admin                  → TWAMM_POOL_ADMIN
    [fees] protocol_fee           → TWAMM_PROTOCOL_FEE
    [fees] fee_shift              → TWAMM_FEE_SHIFT
    [fees] collect_protocol_fees  → TWAMM_COLLECT_PROTOCOL_FEES
    [fees] fee_address            → TWAMM_FEE_ADDRESS
    [logging] level               → TWAMM_LOG_LEVEL
    [logging] file                → TWAMM_LOG_FILE
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from ..constants import MAX_FEE_SHIFT, NULL_ADDRESS, ONE, TWAMM_DEFAULT_POOL_TYPE, PoolType
from ..engine.state import FeeConfig
from ..exceptions import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class PoolSectionConfig:
    """[pool] section."""
    default_type: str = str(TWAMM_DEFAULT_POOL_TYPE)
    admin: str = "admin"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolSectionConfig":
        return cls(
            default_type=data.get("default_type", str(TWAMM_DEFAULT_POOL_TYPE)),
            admin=data.get("admin", "admin"),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("TWAMM_POOL_TYPE"):
            self.default_type = v
        if v := os.environ.get("TWAMM_POOL_ADMIN"):
            self.admin = v

    @property
    def pool_type(self) -> PoolType:
        try:
            return PoolType[self.default_type.upper()]
        except KeyError:
            raise ConfigurationError(
                f"unknown pool type {self.default_type!r}", ErrorCode.INVALID_POOL_TYPE
            ) from None


@dataclass
class FeeSectionConfig:
    """[fees] section."""
    protocol_fee: int = 0
    fee_shift: int = 0
    collect_protocol_fees: bool = False
    fee_address: str = NULL_ADDRESS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeeSectionConfig":
        return cls(
            protocol_fee=int(data.get("protocol_fee", 0)),
            fee_shift=int(data.get("fee_shift", 0)),
            collect_protocol_fees=bool(data.get("collect_protocol_fees", False)),
            fee_address=data.get("fee_address", NULL_ADDRESS),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("TWAMM_PROTOCOL_FEE"):
            self.protocol_fee = int(v)
        if v := os.environ.get("TWAMM_FEE_SHIFT"):
            self.fee_shift = int(v)
        if v := os.environ.get("TWAMM_COLLECT_PROTOCOL_FEES"):
            self.collect_protocol_fees = _parse_bool(v)
        if v := os.environ.get("TWAMM_FEE_ADDRESS"):
            self.fee_address = v

    def to_fee_config(self) -> FeeConfig:
        return FeeConfig(
            protocol_fee=self.protocol_fee,
            fee_shift=self.fee_shift,
            collect_protocol_fees=self.collect_protocol_fees,
        )


@dataclass
class LoggingSectionConfig:
    """[logging] section."""
    level: str = "INFO"
    file: str = ""
    console: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingSectionConfig":
        return cls(
            level=data.get("level", "INFO"),
            file=data.get("file", ""),
            console=data.get("console", True),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("TWAMM_LOG_LEVEL"):
            self.level = v
        if v := os.environ.get("TWAMM_LOG_FILE"):
            self.file = v


# -----------------------------------------------------------------------
# Top-level config
# -----------------------------------------------------------------------

@dataclass
class EngineConfig:
    """
    Engine configuration.

    Loads every section of twamm.toml and applies environment variable
    overrides.
    """
    pool: PoolSectionConfig = field(default_factory=PoolSectionConfig)
    fees: FeeSectionConfig = field(default_factory=FeeSectionConfig)
    logging: LoggingSectionConfig = field(default_factory=LoggingSectionConfig)

    # --- factories --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create EngineConfig from a parsed TOML dict."""
        return cls(
            pool=PoolSectionConfig.from_dict(data.get("pool", {})),
            fees=FeeSectionConfig.from_dict(data.get("fees", {})),
            logging=LoggingSectionConfig.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "EngineConfig":
        """
        Load configuration from a TOML file.

        Args:
            config_path: Path to twamm.toml

        Returns:
            EngineConfig instance
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            raw = tomllib.load(f)

        cfg = cls.from_dict(raw)
        cfg.apply_env()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> None:
        """Apply environment variable overrides to all sections."""
        self.pool.apply_env()
        self.fees.apply_env()
        self.logging.apply_env()

    # --- validation -------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate all configuration sections.

        Returns:
            True if all valid

        Raises:
            ConfigurationError: on invalid config
        """
        _ = self.pool.pool_type
        if not 0 <= self.fees.protocol_fee <= ONE:
            raise ConfigurationError(f"protocol_fee must be within [0, {ONE}]")
        if not 0 <= self.fees.fee_shift <= MAX_FEE_SHIFT:
            raise ConfigurationError(f"fee_shift must be within [0, {MAX_FEE_SHIFT}]")
        if self.logging.level.upper() not in _LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.logging.level}")
        return True

    # --- serialisation ----------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict (for diagnostics, NOT for re-creating TOML)."""
        return {
            "pool": {
                "default_type": self.pool.default_type,
                "admin": self.pool.admin,
            },
            "fees": {
                "protocol_fee": self.fees.protocol_fee,
                "fee_shift": self.fees.fee_shift,
                "collect_protocol_fees": self.fees.collect_protocol_fees,
                "fee_address": self.fees.fee_address,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
                "console": self.logging.console,
            },
        }


# -----------------------------------------------------------------------
# Convenience function
# -----------------------------------------------------------------------

def load_config(path: Optional[str] = None) -> EngineConfig:
    """
    Load engine configuration.

    Resolution order:
        1. Explicit *path* argument
        2. TWAMM_CONFIG env var
        3. ./twamm.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("TWAMM_CONFIG", "twamm.toml")

    return EngineConfig.from_file(path)
