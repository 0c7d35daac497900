"""Application settings and configuration management."""

from pathlib import Path
from typing import Literal

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

PROFILES = ("dev", "devnet", "prod")


class TokenSettings(BaseModel):
    """One tradable token entry from the configuration file."""

    name: str = Field(description="Logical token name")
    mint: str = Field(description="Token mint address (base58)")
    decimals: int | None = Field(
        default=None, description="Token decimals (defaults to token_decimals)"
    )
    display_name: str | None = Field(default=None, description="Display name")


class AppSettings(BaseSettings):
    """Application settings with environment variable support."""

    # Environment
    env: Literal["dev", "devnet", "prod"] = Field(
        description="Environment: dev, devnet, prod"
    )

    # RPC
    rpc_url: str = Field(description="Solana RPC URL")
    rpc_timeout_seconds: float = Field(
        default=30.0, description="Timeout per RPC request in seconds"
    )
    rpc_max_attempts: int = Field(
        default=3, ge=1, description="Attempts per RPC request before giving up"
    )
    rpc_backoff_seconds: float = Field(
        default=1.0, ge=0, description="Base of the exponential retry backoff"
    )
    commitment: Literal["processed", "confirmed", "finalized"] = Field(
        default="confirmed", description="Commitment level for reads and confirmation"
    )
    max_retries_send: int = Field(
        default=3, ge=0, description="maxRetries forwarded to sendTransaction"
    )

    # Program and tokens
    swap_program_id: str = Field(
        default="7VFS76Bvrfj35GDho97B8HxgToW9Rpk6zLnx1VwwJhKD",
        description="Deployed AMM program ID",
    )
    pool_account_size: int = Field(
        default=104, description="Byte size of pool records used to filter the scan"
    )
    base_token_name: str = Field(default="BOSON", description="Base token name")
    base_mint: str = Field(
        default="HtnUp4FXaKC7MvpWP2N8W25rea75XspMiiw3XEixE8Jd",
        description="Base settlement token mint",
    )
    token_decimals: int = Field(
        default=3, ge=0, le=18, description="Default token decimals"
    )
    tokens: list[TokenSettings] = Field(
        default_factory=list, description="Tradable tokens"
    )

    # Trading
    max_slippage_bps: int = Field(
        default=200, description="Maximum slippage in basis points"
    )
    min_fee_reserve_lamports: int = Field(
        default=5_000_000, ge=0, description="Minimum native balance kept for fees"
    )
    pool_selection: Literal["first_found", "highest_liquidity"] = Field(
        default="first_found",
        description="Tie-break when several pools hold the same pair",
    )

    # Timing
    quote_debounce_seconds: float = Field(
        default=0.5, ge=0, description="Debounce window for requotes"
    )
    confirm_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Wall-clock budget for confirmation polling"
    )
    confirm_poll_interval_seconds: float = Field(
        default=2.0, gt=0, description="Delay between confirmation polls"
    )
    confirm_fallback_delay_seconds: float = Field(
        default=3.0, ge=0, description="Delay before the post-timeout status check"
    )
    balance_poll_interval_seconds: float = Field(
        default=30.0, gt=0, description="Balance polling interval"
    )
    pool_cache_ttl_seconds: float = Field(
        default=30.0, ge=0, description="Pool discovery snapshot TTL (0 disables)"
    )

    # External wallet signer
    external_signer_command: str | None = Field(
        default=None, description="Command of the external wallet signing bridge"
    )
    external_signer_timeout: int = Field(
        default=120, description="Seconds to wait for the wallet to sign"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("max_slippage_bps")
    @classmethod
    def _check_slippage(cls, value: int) -> int:
        if not 0 <= value < 10_000:
            raise ValueError("max_slippage_bps must be in [0, 10000)")
        return value


def load_settings(profile: str, yaml_path: str) -> AppSettings:
    """Load settings from YAML file and environment variables.

    Args:
        profile: Configuration profile name (dev, devnet, prod)
        yaml_path: Path to YAML configuration file

    Returns:
        AppSettings instance with loaded configuration

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValidationError: If configuration is invalid
        ValueError: If profile is invalid
    """
    if profile not in PROFILES:
        raise ValueError(
            f"Invalid profile: {profile}. Must be one of: {', '.join(PROFILES)}"
        )

    yaml_file = Path(yaml_path)
    if not yaml_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

    try:
        with open(yaml_file, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        if not isinstance(yaml_config, dict):
            raise ValueError("Invalid YAML configuration: expected a mapping")

        yaml_config["env"] = profile

        logger.info("Loading configuration", profile=profile, yaml_path=yaml_path)

        settings = AppSettings(**yaml_config)

        logger.info(
            "Configuration loaded successfully",
            profile=profile,
            tokens=len(settings.tokens),
            rpc_url=settings.rpc_url[:50] + "..."
            if len(settings.rpc_url) > 50
            else settings.rpc_url,
        )

        return settings

    except yaml.YAMLError as e:
        logger.error("Failed to parse YAML configuration", error=str(e))
        raise ValueError(f"Invalid YAML configuration: {e}") from e
    except ValidationError as e:
        logger.error("Configuration validation failed", error=str(e))
        raise
