"""
Configuration management for the Cosmos client

Loads settings from environment variables and .env file.
Includes logging configuration with file output and correlation ID support.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List

from dotenv import load_dotenv


def _load_env_file():
    """Load .env file from project root"""
    current = Path(__file__).parent.parent  # cosmos_client package parent
    env_file = current / ".env"

    if env_file.exists():
        load_dotenv(env_file)


# Load .env on module import
_load_env_file()


def _get_env(key: str, default: Optional[str] = "") -> Optional[str]:
    """Get environment variable with default"""
    value = os.getenv(key)
    if value is None:
        return default
    return value


def _get_env_float(key: str, default: float) -> float:
    """Get environment variable as float"""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Invalid float value for {key}='{value}', using default={default}"
        )
        return default


def _get_env_int(key: str, default: int) -> int:
    """Get environment variable as int"""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Invalid int value for {key}='{value}', using default={default}"
        )
        return default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as bool"""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_list(key: str, default: Optional[List[str]] = None) -> List[str]:
    """Get comma separated environment variable as list (blank items dropped)"""
    value = os.getenv(key)
    if value is None:
        return list(default or [])
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class NodeConfig:
    """Node pool configuration (endpoint URLs must be configured in .env)"""
    urls: List[str] = field(default_factory=lambda: _get_env_list("NODE_URLS"))
    # Fallback nodes are only preferred once every primary is worse off
    fallback_urls: List[str] = field(default_factory=lambda: _get_env_list("NODE_FALLBACK_URLS"))
    request_timeout: float = field(default_factory=lambda: _get_env_float("NODE_REQUEST_TIMEOUT", 5.0))
    # Consecutive failures before Healthy -> Degraded
    degraded_after: int = field(default_factory=lambda: _get_env_int("NODE_DEGRADED_AFTER", 3))
    # Consecutive failures before Degraded -> Unreachable
    unreachable_after: int = field(default_factory=lambda: _get_env_int("NODE_UNREACHABLE_AFTER", 6))
    # Seconds an Unreachable node is left alone after its last failure
    cooldown_seconds: float = field(default_factory=lambda: _get_env_float("NODE_COOLDOWN_SECONDS", 30.0))
    # Blocks a node may trail the highest height seen before it counts as failing
    block_lag_allowed: int = field(default_factory=lambda: _get_env_int("NODE_BLOCK_LAG_ALLOWED", 10))


@dataclass
class RetryConfig:
    """Retry/backoff configuration shared by queries and broadcasts"""
    max_attempts: int = field(default_factory=lambda: _get_env_int("RETRY_MAX_ATTEMPTS", 3))
    base_delay: float = field(default_factory=lambda: _get_env_float("RETRY_BASE_DELAY", 0.5))
    max_delay: float = field(default_factory=lambda: _get_env_float("RETRY_MAX_DELAY", 8.0))
    # Fraction of the computed delay added as random jitter
    jitter_ratio: float = field(default_factory=lambda: _get_env_float("RETRY_JITTER_RATIO", 0.25))


@dataclass
class GasConfig:
    """Gas estimation and fee configuration"""
    multiplier: float = field(default_factory=lambda: _get_env_float("GAS_MULTIPLIER", 1.3))
    gas_price: float = field(default_factory=lambda: _get_env_float("GAS_PRICE", 0.02))
    # Upper bound for gas price escalation on insufficient fee rejections
    max_gas_price: float = field(default_factory=lambda: _get_env_float("GAS_MAX_PRICE", 0.03))
    denom: str = field(default_factory=lambda: _get_env("GAS_DENOM", "stake"))
    fee_escalation_attempts: int = field(default_factory=lambda: _get_env_int("GAS_FEE_ESCALATION_ATTEMPTS", 3))


@dataclass
class TxConfig:
    """Transaction submission and confirmation configuration"""
    chain_id: str = field(default_factory=lambda: _get_env("CHAIN_ID", ""))
    poll_initial_delay: float = field(default_factory=lambda: _get_env_float("TX_POLL_INITIAL_DELAY", 2.0))
    poll_max_delay: float = field(default_factory=lambda: _get_env_float("TX_POLL_MAX_DELAY", 10.0))
    confirmation_timeout: float = field(default_factory=lambda: _get_env_float("TX_CONFIRMATION_TIMEOUT", 60.0))
    # Rebuild-and-resign cycles allowed after a sequence mismatch
    sequence_rebuild_attempts: int = field(default_factory=lambda: _get_env_int("TX_SEQUENCE_REBUILD_ATTEMPTS", 1))
    default_memo: str = field(default_factory=lambda: _get_env("TX_DEFAULT_MEMO", ""))


def _get_default_log_path() -> str:
    """Get default log file path under cosmos_client/log/ with UTC timestamp"""
    from datetime import datetime, timezone
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_dir = Path(__file__).parent / "log"
    return str(log_dir / f"cosmos_client_{timestamp}.log")


@dataclass
class LoggingConfig:
    """
    Logging configuration with file output and correlation ID support.

    Default log location: cosmos_client/log/cosmos_client_<timestamp>.log

    Environment variables:
        LOG_FILE: Path to log file (overrides default, empty disables file output)
        LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
        LOG_FORMAT: Custom log format string
        LOG_CONSOLE: Enable console output (default: true)
        LOG_MAX_BYTES: Max log file size before rotation (default: 10MB)
        LOG_BACKUP_COUNT: Number of backup files to keep (default: 5)
    """
    log_file: str = field(default_factory=lambda: _get_env("LOG_FILE", _get_default_log_path()))
    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))
    log_format: str = field(default_factory=lambda: _get_env(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ))
    console_output: bool = field(default_factory=lambda: _get_env_bool("LOG_CONSOLE", True))
    max_bytes: int = field(default_factory=lambda: _get_env_int("LOG_MAX_BYTES", 10 * 1024 * 1024))  # 10MB
    backup_count: int = field(default_factory=lambda: _get_env_int("LOG_BACKUP_COUNT", 5))

    @property
    def level(self) -> int:
        """Get numeric log level"""
        return getattr(logging, self.log_level.upper(), logging.INFO)


@dataclass
class Config:
    """
    Main configuration container

    Loads all settings from environment variables and .env file.

    Usage:
        from cosmos_client.config import config

        print(config.node.urls)
        print(config.gas.multiplier)
    """
    node: NodeConfig = field(default_factory=NodeConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    gas: GasConfig = field(default_factory=GasConfig)
    tx: TxConfig = field(default_factory=TxConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def reload(cls) -> "Config":
        """Reload configuration from environment"""
        _load_env_file()
        return cls()


# Global config instance
config = Config()


def get_config() -> Config:
    """Get global configuration instance"""
    return config


def reload_config() -> Config:
    """Reload and return new configuration"""
    global config
    config = Config.reload()
    return config


def setup_logging(
    log_config: Optional[LoggingConfig] = None,
    logger_name: str = "cosmos_client",
) -> logging.Logger:
    """
    Set up logging based on configuration.

    Creates handlers for file and/or console output with optional rotation.
    The log file directory is created automatically if it doesn't exist.

    Args:
        log_config: Logging configuration (uses global config if None)
        logger_name: Name of the logger to configure (default: cosmos_client)

    Returns:
        Configured logger instance

    Example:
        from cosmos_client.config import LoggingConfig, setup_logging
        logger = setup_logging(LoggingConfig(log_file="", log_level="DEBUG"))
    """
    if log_config is None:
        log_config = config.logging

    logger = logging.getLogger(logger_name)
    logger.setLevel(log_config.level)

    # Close before removing to flush buffers and release file handles
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(log_config.log_format)

    handlers: List[logging.Handler] = []

    if log_config.log_file:
        from logging.handlers import RotatingFileHandler

        log_path = Path(log_config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_config.log_file,
            maxBytes=log_config.max_bytes,
            backupCount=log_config.backup_count,
            encoding='utf-8',
        )
        file_handler.setLevel(log_config.level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if log_config.console_output:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_config.level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    for handler in handlers:
        logger.addHandler(handler)

    # Child loggers inherit handlers from parent, only the level is set here
    for name in [f"{logger_name}.infra", f"{logger_name}.client"]:
        logging.getLogger(name).setLevel(log_config.level)

    if log_config.log_file:
        logger.info(f"Logging initialized: file={log_config.log_file}, level={log_config.log_level}")

    return logger


def enable_file_logging(
    log_file: Optional[str] = None,
    level: str = "INFO",
    console: bool = True,
) -> logging.Logger:
    """
    Quick setup for file logging.

    Args:
        log_file: Path to log file (defaults to cosmos_client/log/)
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        console: Also output to console

    Returns:
        Configured logger
    """
    if log_file is None:
        # Keep the timestamp chosen when the global config was created
        log_file = config.logging.log_file

    log_config = LoggingConfig(
        log_file=log_file,
        log_level=level,
        console_output=console,
    )
    return setup_logging(log_config)
