"""
Configuration management for Webwallet Core.

Loads settings from environment variables and optional YAML config file.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings
import yaml


class WebwalletConfig(BaseSettings):
    """Configuration for the wallet orchestration engine."""

    # Docker settings
    docker_base_url: Optional[str] = Field(
        default=None,
        description="Docker daemon URL; None uses DOCKER_HOST / the local socket"
    )
    pull_image_on_startup: bool = Field(
        default=True,
        description="Pull the satellite image when the engine starts"
    )

    # Satellite (walletd container) settings
    satellite_image: str = Field(
        default="iridiumdev/walletd:latest",
        description="Image reference for walletd satellites"
    )
    satellite_command: List[str] = Field(
        default_factory=lambda: [
            "--container-file=/data/wallet.container",
            "--bind-address=0.0.0.0",
            "--bind-port=14007",
        ],
        description="Command template; the password flag is appended per wallet"
    )
    password_flag: str = Field(
        default="--container-password",
        description="Flag used to inject the wallet password"
    )
    satellite_labels: Dict[str, str] = Field(
        default_factory=lambda: {"cash.ird.webwallet": "satellite"},
        description="Labels applied to satellite volumes and containers"
    )
    satellite_data_path: str = Field(
        default="/data",
        description="Mount target of the wallet volume inside the container"
    )
    volume_suffix: str = Field(
        default=".wallet",
        description="Suffix appended to the wallet id to name its volume"
    )

    # Network / address resolution
    network: str = Field(
        default="webwallet",
        description="Docker network satellites are attached to"
    )
    internal_resolver: bool = Field(
        default=True,
        description="Use the container name as hostname (Docker DNS). "
                    "When False, the container IP is read from its network settings."
    )

    # walletd RPC
    rpc_port: int = Field(default=14007, description="walletd JSON-RPC port")
    rpc_path: str = Field(default="/json_rpc", description="walletd JSON-RPC path")
    rpc_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Per-call RPC timeout; None blocks until the daemon answers"
    )

    # Readiness probe
    readiness_timeout_seconds: float = Field(
        default=5.0,
        description="Deadline for walletd to start accepting connections"
    )
    readiness_attempt_timeout_seconds: float = Field(
        default=0.1,
        description="Timeout of a single connection attempt"
    )
    readiness_retry_delay_seconds: float = Field(
        default=0.05,
        description="Pause between failed connection attempts"
    )

    # Status watcher
    watcher_poll_interval_seconds: float = Field(
        default=10.0,
        description="Seconds between reconciliation cycles"
    )

    # Persistence
    store_path: Path = Field(
        default=Path("/var/lib/webwallet/wallets.json"),
        description="File used by the JSON wallet store"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")

    class Config:
        env_prefix = "WEBWALLET_"
        env_file = ".env"


def load_yaml_config(config_path: Optional[Path] = None) -> dict:
    """Load configuration from YAML file if it exists."""
    if config_path is None:
        env_path = os.getenv("WEBWALLET_CONFIG_FILE")
        if env_path:
            config_path = Path(env_path)
        else:
            config_path = Path(__file__).parent.parent / "config" / "webwallet.yaml"

    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


_config: Optional[WebwalletConfig] = None


def get_config() -> WebwalletConfig:
    """Get the singleton configuration instance."""
    global _config
    if _config is None:
        # Environment variables (WEBWALLET_*) take precedence over YAML values,
        # so YAML keys shadowed by an env var are dropped before construction.
        yaml_config = load_yaml_config()
        env_prefix = "WEBWALLET_"
        filtered = {
            k: v for k, v in yaml_config.items()
            if os.getenv(f"{env_prefix}{k.upper()}") is None
        }
        _config = WebwalletConfig(**filtered)
    return _config


def reset_config() -> None:
    """Reset config singleton (useful for testing)."""
    global _config
    _config = None
