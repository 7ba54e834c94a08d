"""
Unified settings management for sparkbot.

This module provides a centralized configuration system using pydantic-settings
that supports:
1. TOML configuration file (~/.sparkbot/config.toml)
2. Environment variables
3. CLI arguments (via typer, handled by the CLI)

Priority (highest to lowest):
1. CLI arguments
2. Environment variables
3. Config file
4. Default values

Settings are read once at startup and cached; long-running watchers never
re-read them.

Usage:
    from sparkbot.settings import get_settings

    settings = get_settings()
    print(settings.deposits.min_confirmations)
    print(settings.get_explorer_urls())

Environment Variable Naming:
    - Use uppercase with double underscore for nested settings
    - Examples: NETWORK_CONFIG__NETWORK, DEPOSITS__MIN_CONFIRMATIONS, SWAP__MAX_DURATION
    - Maps to TOML sections: DEPOSITS__MAX_FEE -> [deposits] max_fee
"""

from __future__ import annotations

import os
import sys
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar

from loguru import logger
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from sparkbot.models import NetworkType

# Public explorer fallbacks per network
DEFAULT_EXPLORER_URLS: dict[str, list[str]] = {
    "mainnet": ["https://mempool.space/api"],
    "testnet": ["https://mempool.space/testnet/api"],
    "signet": ["https://mempool.space/signet/api"],
    "regtest": ["https://mempool.regtest.flashnet.xyz/api"],
}

# Asset key the AMM uses for native BTC
BTC_ASSET_PUBKEY = "02" * 33


class UnknownOutspendPolicy(str, Enum):
    """What to do with an output whose spent status the explorer cannot report."""

    EXCLUDE = "exclude"
    INCLUDE = "include"


class DepositMode(str, Enum):
    STATIC = "static"
    SINGLE_USE = "single-use"


class NetworkSettings(BaseModel):
    """Network and block explorer configuration."""

    network: NetworkType = Field(
        default=NetworkType.MAINNET,
        description="Network (mainnet, testnet, signet, regtest)",
    )
    explorer_urls: list[str] = Field(
        default_factory=list,
        description="Ordered block explorer API base URLs. Uses network defaults if empty.",
    )
    explorer_username: str = Field(
        default="",
        description="HTTP basic auth username for the first explorer (private electrs)",
    )
    explorer_password: SecretStr = Field(
        default=SecretStr(""),
        description="HTTP basic auth password for the first explorer",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Transport timeout in seconds for each explorer request",
    )


class WalletSettings(BaseModel):
    """Wallet collaborator configuration."""

    mnemonic: SecretStr = Field(
        default=SecretStr(""),
        description="BIP39 mnemonic handed to the wallet factory",
    )
    factory: str = Field(
        default="",
        description="Import path (module:callable) building the wallet and AMM clients",
    )
    deposit_mode: DepositMode = Field(
        default=DepositMode.STATIC,
        description="Deposit address shown by 'addresses': static or single-use",
    )


class DepositSettings(BaseModel):
    """Deposit watcher and claim configuration."""

    min_confirmations: int = Field(
        default=3,
        ge=1,
        description="Confirmations required before a deposit is claimed",
    )
    max_fee: int = Field(
        default=2000,
        ge=0,
        description="Maximum claim fee budget in sats",
    )
    poll_interval: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds between deposit scans",
    )
    confirmation_poll_interval: float = Field(
        default=10.0,
        gt=0.0,
        description="Seconds between confirmation checks while waiting on a deposit",
    )
    scan_active_addresses: bool = Field(
        default=False,
        description="Also scan unused single-use deposit addresses",
    )
    unknown_outspend: UnknownOutspendPolicy = Field(
        default=UnknownOutspendPolicy.EXCLUDE,
        description="Treat outputs with unknown spent status as spent (exclude) or unspent",
    )
    persist_seen: bool = Field(
        default=False,
        description="Remember attempted txids across restarts (data_dir/seen_txids.json)",
    )
    watcher_name: str = Field(
        default="",
        description="Label prefixed to watcher log lines",
    )


class SwapSettings(BaseModel):
    """Swap routing and execution configuration."""

    base_asset_address: str = Field(
        default=BTC_ASSET_PUBKEY,
        description="Asset swapped in (BTC asset public key)",
    )
    slippage_bps_constant_product: int = Field(
        default=300,
        ge=0,
        le=10_000,
        description="Default slippage for constant-product pools (bps)",
    )
    slippage_bps_single_sided: int = Field(
        default=700,
        ge=0,
        le=10_000,
        description="Default slippage for single-sided pools (bps)",
    )
    retry_interval: float = Field(
        default=2.0,
        gt=0.0,
        description="Seconds between swap attempts while waiting",
    )
    zero_output_backoff: float = Field(
        default=1.5,
        ge=0.0,
        description="Seconds to back off after a zero-output simulation",
    )
    max_duration: float = Field(
        default=120.0,
        gt=0.0,
        description="Wall-clock timeout in seconds for the swap loop",
    )
    skip_balance_check: bool = Field(
        default=False,
        description="Skip the balance check before each attempt",
    )
    dry_execute: bool = Field(
        default=False,
        description="Compute the swap request but do not submit it",
    )
    route_fanout: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Concurrent pool queries and simulations during route resolution",
    )
    pool_query_limit: int = Field(
        default=50,
        ge=1,
        description="Page size for pool discovery queries",
    )


class DetectionSettings(BaseModel):
    """Readiness detector configuration."""

    interval: float = Field(
        default=2.0,
        gt=0.0,
        description="Seconds between readiness probes",
    )
    consecutive_successes: int = Field(
        default=3,
        ge=1,
        description="Consecutive non-empty pool listings required to report ready",
    )
    pool_probe_limit: int = Field(
        default=5,
        ge=1,
        description="Page size of the pool listing probe",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        description="Log level: TRACE, DEBUG, INFO, WARNING, ERROR",
    )


class SparkbotSettings(BaseSettings):
    """
    Main sparkbot settings class.

    Loads configuration from multiple sources with the following priority:
    1. CLI arguments (passed to the constructor)
    2. Environment variables
    3. TOML config file (~/.sparkbot/config.toml)
    4. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    _config_file_path: ClassVar[Path | None] = None

    data_dir: Path | None = Field(
        default=None,
        description="Data directory (defaults to ~/.sparkbot)",
    )

    network_config: NetworkSettings = Field(default_factory=NetworkSettings)
    wallet: WalletSettings = Field(default_factory=WalletSettings)
    deposits: DepositSettings = Field(default_factory=DepositSettings)
    swap: SwapSettings = Field(default_factory=SwapSettings)
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        toml_source = TomlConfigSettingsSource(settings_cls)
        return (
            init_settings,
            env_settings,
            toml_source,
        )

    def get_data_dir(self) -> Path:
        """Get the data directory, using default if not set."""
        if self.data_dir is not None:
            return self.data_dir
        return get_default_data_dir()

    def get_explorer_urls(self) -> list[str]:
        """Get explorer base URLs, using network defaults if not set."""
        if self.network_config.explorer_urls:
            return self.network_config.explorer_urls
        return DEFAULT_EXPLORER_URLS.get(self.network_config.network.value, [])


def get_default_data_dir() -> Path:
    data_dir_env = os.environ.get("SPARKBOT_DATA_DIR")
    if data_dir_env:
        return Path(data_dir_env)
    return Path.home() / ".sparkbot"


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """
    Settings source that reads from a TOML config file.

    The config file is expected at ~/.sparkbot/config.toml,
    $SPARKBOT_DATA_DIR/config.toml, or $SPARKBOT_CONFIG_FILE.
    """

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self._config: dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        config_path = get_config_path()

        if not config_path.exists():
            logger.debug(f"Config file not found at {config_path}, using defaults")
            return

        try:
            import tomllib

            with open(config_path, "rb") as f:
                self._config = tomllib.load(f)

            logger.info(f"Loaded config from {config_path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Invalid TOML syntax in config file {config_path}")
            logger.error(f"Error: {e}")
            logger.error("Tip: Make sure section headers like [deposits] are uncommented")
            sys.exit(1)
        except OSError as e:
            logger.error(f"Failed to load config from {config_path}: {e}")
            sys.exit(1)

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        value = self._config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        return self._config


def get_config_path() -> Path:
    """Get the path to the config file."""
    env_path = os.environ.get("SPARKBOT_CONFIG_FILE")
    if env_path:
        return Path(env_path)
    return get_default_data_dir() / "config.toml"


def generate_config_template() -> str:
    """
    Generate a config file template with all settings commented out.

    Users see every setting with its default and description and only
    uncomment what they want to change.
    """
    lines: list[str] = [
        "# sparkbot Configuration",
        "#",
        "# All settings are commented out - uncomment to override.",
        "#",
        "# Priority (highest to lowest):",
        "#   1. CLI arguments",
        "#   2. Environment variables",
        "#   3. This config file",
        "#   4. Built-in defaults",
        "#",
        "# Environment variables use uppercase with double underscore for nesting:",
        "#   DEPOSITS__MIN_CONFIRMATIONS=3",
        "#   NETWORK_CONFIG__NETWORK=signet",
        "#",
        "",
    ]

    def add_section(title: str, model_cls: type[BaseModel], prefix: str) -> None:
        lines.append(f"# {'=' * 60}")
        lines.append(f"# {title}")
        lines.append(f"# {'=' * 60}")
        lines.append(f"[{prefix}]")
        lines.append("")

        for field_name, field_info in model_cls.model_fields.items():
            if field_info.description:
                lines.append(f"# {field_info.description}")

            default = field_info.default
            factory = field_info.default_factory
            if factory is not None:
                default = factory()  # type: ignore[call-arg]

            if isinstance(default, bool):
                value_str = str(default).lower()
            elif isinstance(default, Enum):
                value_str = f'"{default.value}"'
            elif isinstance(default, str):
                value_str = f'"{default}"'
            elif isinstance(default, SecretStr):
                value_str = '""'
            elif isinstance(default, list):
                value_str = "[]" if not default else str(default).replace("'", '"')
            else:
                value_str = str(default)

            lines.append(f"# {field_name} = {value_str}")
            lines.append("")

    lines.append("# Data directory for sparkbot files")
    lines.append("# Defaults to ~/.sparkbot or $SPARKBOT_DATA_DIR")
    lines.append("# data_dir = ")
    lines.append("")

    add_section("Network Settings", NetworkSettings, "network_config")
    add_section("Wallet Settings", WalletSettings, "wallet")
    add_section("Deposit Settings", DepositSettings, "deposits")
    add_section("Swap Settings", SwapSettings, "swap")
    add_section("Readiness Detection Settings", DetectionSettings, "detection")
    add_section("Logging Settings", LoggingSettings, "logging")

    return "\n".join(lines)


def ensure_config_file(data_dir: Path | None = None) -> Path:
    """
    Ensure the config file exists, creating a template if it doesn't.

    Returns:
        Path to the config file.
    """
    if data_dir is None:
        data_dir = get_default_data_dir()

    config_path = data_dir / "config.toml"

    if not config_path.exists():
        logger.info(f"Creating config file template at {config_path}")
        data_dir.mkdir(parents=True, exist_ok=True)
        config_path.write_text(generate_config_template())

    return config_path


_settings: SparkbotSettings | None = None


def get_settings(**overrides: Any) -> SparkbotSettings:
    """
    Get the sparkbot settings instance.

    On first call, loads settings from all sources. Subsequent calls
    return the cached instance unless reset_settings() is called.
    """
    global _settings
    if _settings is None or overrides:
        _settings = SparkbotSettings(**overrides)
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None


__all__ = [
    "SparkbotSettings",
    "NetworkSettings",
    "WalletSettings",
    "DepositSettings",
    "SwapSettings",
    "DetectionSettings",
    "LoggingSettings",
    "UnknownOutspendPolicy",
    "DepositMode",
    "BTC_ASSET_PUBKEY",
    "DEFAULT_EXPLORER_URLS",
    "get_settings",
    "reset_settings",
    "get_config_path",
    "get_default_data_dir",
    "generate_config_template",
    "ensure_config_file",
]
