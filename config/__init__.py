# Configuration module
from config.config import (
    Config,
    DLQConfig,
    LoggingConfig,
    OffsetConfig,
    OracleSourceConfig,
    RunnerConfig,
    ServerConfig,
    get_config,
)

__all__ = [
    "Config",
    "DLQConfig",
    "LoggingConfig",
    "OffsetConfig",
    "OracleSourceConfig",
    "RunnerConfig",
    "ServerConfig",
    "get_config",
]
