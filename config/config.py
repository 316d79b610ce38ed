"""
Configuration management for the LogMiner CDC source.

Loads environment variables and provides configuration access. The source
itself can also be configured from the plain key/value properties used by
LogMiner connectors (db.hostname, db.port, ...).
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional
import logging

from dotenv import load_dotenv

from core.exceptions import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)


DB_HOSTNAME_PROPERTY = "db.hostname"
DB_PORT_PROPERTY = "db.port"
DB_NAME_PROPERTY = "db.name"
DB_NAME_ALIAS_PROPERTY = "db.name.alias"
DB_USER_PROPERTY = "db.user"
DB_PASSWORD_PROPERTY = "db.password"
DB_FETCH_SIZE_PROPERTY = "db.fetch.size"
PARSE_DML_DATA_PROPERTY = "parse.dml.data"
TABLE_WHITELIST_PROPERTY = "table.whitelist"
RESET_OFFSET_PROPERTY = "reset.offset"
START_SCN_PROPERTY = "start.scn"
MULTITENANT_PROPERTY = "multitenant"

DEFAULT_FETCH_SIZE = 100


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or not str(value).strip():
        return default
    return str(value).strip().lower() in ("true", "1", "yes")


def _parse_int(name: str, value: Optional[str], default: int) -> int:
    if value is None or not str(value).strip():
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigurationError(
            f"Property '{name}' must be an integer, got {value!r}",
            {"property": name},
        )


def _parse_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class OracleSourceConfig:
    """Oracle LogMiner source configuration."""

    host: str = "localhost"
    port: int = 1521
    database: str = "ORCLCDB"
    alias: str = ""
    user: str = "system"
    password: str = ""
    fetch_size: int = DEFAULT_FETCH_SIZE
    start_scn: Optional[int] = None
    reset_offset: bool = False
    table_whitelist: list[str] = field(default_factory=list)
    multitenant: bool = False
    parse_dml_data: bool = True

    def __post_init__(self):
        if self.fetch_size <= 0:
            raise ConfigurationError(
                f"Fetch size must be positive, got {self.fetch_size}",
                {"property": DB_FETCH_SIZE_PROPERTY},
            )

    @property
    def display_name(self) -> str:
        """Name used in log messages."""
        return self.alias or self.database

    @property
    def dsn(self) -> str:
        """Easy Connect string for python-oracledb."""
        return f"{self.host}:{self.port}/{self.database}"

    @classmethod
    def from_properties(cls, properties: Mapping[str, str]) -> "OracleSourceConfig":
        """
        Create configuration from connector properties.

        Args:
            properties: Plain key/value string properties

        Returns:
            OracleSourceConfig
        """
        start_scn = properties.get(START_SCN_PROPERTY)
        return cls(
            host=properties.get(DB_HOSTNAME_PROPERTY, "localhost"),
            port=_parse_int(DB_PORT_PROPERTY, properties.get(DB_PORT_PROPERTY), 1521),
            database=properties.get(DB_NAME_PROPERTY, "ORCLCDB"),
            alias=properties.get(DB_NAME_ALIAS_PROPERTY, ""),
            user=properties.get(DB_USER_PROPERTY, "system"),
            password=properties.get(DB_PASSWORD_PROPERTY, ""),
            fetch_size=_parse_int(
                DB_FETCH_SIZE_PROPERTY,
                properties.get(DB_FETCH_SIZE_PROPERTY),
                DEFAULT_FETCH_SIZE,
            ),
            start_scn=(
                _parse_int(START_SCN_PROPERTY, start_scn, 0)
                if start_scn and start_scn.strip()
                else None
            ),
            reset_offset=_parse_bool(properties.get(RESET_OFFSET_PROPERTY)),
            table_whitelist=_parse_list(properties.get(TABLE_WHITELIST_PROPERTY)),
            multitenant=_parse_bool(properties.get(MULTITENANT_PROPERTY)),
            parse_dml_data=_parse_bool(
                properties.get(PARSE_DML_DATA_PROPERTY), default=True
            ),
        )

    @classmethod
    def from_env(cls) -> "OracleSourceConfig":
        """Load source configuration from ORACLE_* environment variables."""
        return cls.from_properties(
            {
                DB_HOSTNAME_PROPERTY: os.getenv("ORACLE_HOST", "localhost"),
                DB_PORT_PROPERTY: os.getenv("ORACLE_PORT", "1521"),
                DB_NAME_PROPERTY: os.getenv("ORACLE_DATABASE", "ORCLCDB"),
                DB_NAME_ALIAS_PROPERTY: os.getenv("ORACLE_DATABASE_ALIAS", ""),
                DB_USER_PROPERTY: os.getenv("ORACLE_USER", "system"),
                DB_PASSWORD_PROPERTY: os.getenv("ORACLE_PASSWORD", ""),
                DB_FETCH_SIZE_PROPERTY: os.getenv("ORACLE_FETCH_SIZE", "100"),
                START_SCN_PROPERTY: os.getenv("ORACLE_START_SCN", ""),
                RESET_OFFSET_PROPERTY: os.getenv("ORACLE_RESET_OFFSET", "false"),
                TABLE_WHITELIST_PROPERTY: os.getenv("ORACLE_TABLE_WHITELIST", ""),
                MULTITENANT_PROPERTY: os.getenv("ORACLE_MULTITENANT", "false"),
                PARSE_DML_DATA_PROPERTY: os.getenv("ORACLE_PARSE_DML_DATA", "true"),
            }
        )


@dataclass
class OffsetConfig:
    """Durable offset storage configuration."""

    offset_storage_path: str = "./tmp/offsets"
    checkpoint_interval_ms: int = 10000

    def get_offset_file(self, source_name: str) -> str:
        """Get offset file path for a specific source."""
        path = Path(self.offset_storage_path)
        path.mkdir(parents=True, exist_ok=True)
        return str(path / f"{source_name}.json")


@dataclass
class RunnerConfig:
    """Stream runner configuration."""

    source_name: str = "oracle-cdc"
    poll_interval_ms: int = 500


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class ServerConfig:
    """API Server configuration."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8001


@dataclass
class DLQConfig:
    """Dead letter queue configuration for unparsable redo statements."""

    enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "logminer:dlq"
    max_stream_length: int = 100000  # MAXLEN cap per stream


@dataclass
class Config:
    """
    Central configuration for the LogMiner CDC source.

    Loads configuration from environment variables with sensible defaults.
    """

    source: OracleSourceConfig = field(default_factory=OracleSourceConfig)
    offsets: OffsetConfig = field(default_factory=OffsetConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    dlq: DLQConfig = field(default_factory=DLQConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            source=OracleSourceConfig.from_env(),
            offsets=OffsetConfig(
                offset_storage_path=os.getenv(
                    "OFFSET_STORAGE_PATH", "./tmp/offsets"
                ),
                checkpoint_interval_ms=int(
                    os.getenv("OFFSET_CHECKPOINT_INTERVAL_MS", "10000")
                ),
            ),
            runner=RunnerConfig(
                source_name=os.getenv("RUNNER_SOURCE_NAME", "oracle-cdc"),
                poll_interval_ms=int(os.getenv("RUNNER_POLL_INTERVAL_MS", "500")),
            ),
            logging=LoggingConfig(
                level=os.getenv("LOG_LEVEL", "INFO"),
                format=os.getenv(
                    "LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                ),
            ),
            server=ServerConfig(
                enabled=_parse_bool(os.getenv("SERVER_ENABLED"), default=True),
                host=os.getenv("SERVER_HOST", "0.0.0.0"),
                port=int(os.getenv("SERVER_PORT", "8001")),
            ),
            dlq=DLQConfig(
                enabled=_parse_bool(os.getenv("DLQ_ENABLED")),
                redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
                key_prefix=os.getenv("DLQ_KEY_PREFIX", "logminer:dlq"),
                max_stream_length=int(os.getenv("DLQ_MAX_STREAM_LENGTH", "100000")),
            ),
        )


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get singleton configuration instance.

    Uses lru_cache to ensure only one Config instance exists.
    """
    return Config.from_env()
