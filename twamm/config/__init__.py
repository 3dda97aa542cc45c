"""
TWAMM Engine Configuration

Loads every section of twamm.toml.
Environment variables override TOML values.
"""

from .loader import (
    EngineConfig,
    FeeSectionConfig,
    LoggingSectionConfig,
    PoolSectionConfig,
    load_config,
)

__all__ = [
    "EngineConfig",
    "FeeSectionConfig",
    "LoggingSectionConfig",
    "PoolSectionConfig",
    "load_config",
]
