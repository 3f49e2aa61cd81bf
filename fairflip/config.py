"""
Configuration management for FairFlip.
Supports config.json with environment variable overrides.
All paths are resolved relative to the project root.
"""

import json
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

load_dotenv()

# Project root directory (parent of 'fairflip' folder)
PROJECT_ROOT = Path(__file__).parent.parent

# One whole token in its smallest unit (18 decimals)
TOKEN_UNIT = 10**18


def get_env(key: str, default: str = None) -> Optional[str]:
    """Get environment variable with optional default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes", "on")


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


# ==================== Configuration Models ====================

class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    name: str = "FairFlip"


class SecurityConfig(BaseModel):
    # Bearer token for the withdrawal processor and admin routes.
    # Empty disables the check (local development only).
    cron_secret: str = ""


class FlipConfig(BaseModel):
    """Coin flip limits. All amounts are in the token's smallest unit."""
    enabled: bool = True
    min_bet: int = 10_000 * TOKEN_UNIT
    max_bet: int = 500_000 * TOKEN_UNIT
    daily_limit: int = 10_000_000 * TOKEN_UNIT
    min_balance: int = 5_000_000 * TOKEN_UNIT
    house_fee_bps: int = 150
    burn_bps: int = 50
    reveal_window_seconds: int = 300
    forfeit_late_reveals: bool = True
    day_timezone: str = "UTC"

    @model_validator(mode="after")
    def check_limits(self):
        if self.min_bet <= 0 or self.min_bet > self.max_bet:
            raise ValueError("min_bet must be positive and not exceed max_bet")
        if self.daily_limit < self.min_bet:
            raise ValueError("daily_limit cannot be below min_bet")
        if self.reveal_window_seconds <= 0:
            raise ValueError("reveal_window_seconds must be positive")
        if self.house_fee_bps < 0 or self.burn_bps < 0:
            raise ValueError("fee basis points cannot be negative")
        if self.house_fee_bps + self.burn_bps >= 10_000:
            raise ValueError("house_fee_bps + burn_bps must be below 10000")
        return self


class WithdrawalConfig(BaseModel):
    min_amount: int = 20_000 * TOKEN_UNIT
    token_decimals: int = 18
    batch_size: int = 10
    scheduler_enabled: bool = True
    process_interval_minutes: int = 5
    # a withdrawal left in processing this long is offered to the sender again
    processing_timeout_minutes: int = 30


class RateLimitConfig(BaseModel):
    enabled: bool = True
    flip_requests: str = "30/minute"  # bet / reveal / cashout
    api_requests: str = "60/minute"   # read-only lookups


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_to_file: bool = False
    formatter: str = "color"


class PathsConfig(BaseModel):
    """All paths are relative to PROJECT_ROOT."""
    config_file: str = "config.json"
    database: str = "data/fairflip.db"
    log_file: str = "data/app.log"

    def get_config_path(self) -> Path:
        return PROJECT_ROOT / self.config_file

    def get_db_path(self) -> Path:
        return PROJECT_ROOT / self.database

    def get_log_path(self) -> Path:
        return PROJECT_ROOT / self.log_file


class AppConfig(BaseModel):
    """Main application configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    flip: FlipConfig = Field(default_factory=FlipConfig)
    withdrawal: WithdrawalConfig = Field(default_factory=WithdrawalConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)


# ==================== Configuration Loading ====================

# env var -> (section, key, kind)
ENV_OVERRIDES = {
    "SERVER_HOST": ("server", "host", "str"),
    "SERVER_PORT": ("server", "port", "int"),
    "DEBUG": ("server", "debug", "bool"),
    "CRON_SECRET": ("security", "cron_secret", "str"),
    "DB_PATH": ("paths", "database", "str"),
    "LOG_LEVEL": ("logging", "level", "str"),
    "LOG_TO_FILE": ("logging", "log_to_file", "bool"),
    "LOG_FORMATTER": ("logging", "formatter", "str"),
    "RATE_LIMIT_ENABLED": ("rate_limit", "enabled", "bool"),
    "RATE_LIMIT_FLIP_REQUESTS": ("rate_limit", "flip_requests", "str"),
    "RATE_LIMIT_API_REQUESTS": ("rate_limit", "api_requests", "str"),
    "FLIP_MIN_BET": ("flip", "min_bet", "int"),
    "FLIP_MAX_BET": ("flip", "max_bet", "int"),
    "FLIP_DAILY_LIMIT": ("flip", "daily_limit", "int"),
    "MIN_WITHDRAWAL": ("withdrawal", "min_amount", "int"),
    "WITHDRAWAL_SCHEDULER_ENABLED": ("withdrawal", "scheduler_enabled", "bool"),
}


def load_config() -> AppConfig:
    """
    Load configuration from config.json with environment variable overrides.
    Environment variables take precedence over config.json values.
    """
    config_path = PROJECT_ROOT / "config.json"

    data = {}
    if config_path.exists():
        with open(config_path, "r") as f:
            data = json.load(f)

    for env_key, (section, key, kind) in ENV_OVERRIDES.items():
        if not get_env(env_key):
            continue
        if kind == "int":
            value = get_env_int(env_key)
        elif kind == "bool":
            value = get_env_bool(env_key)
        else:
            value = get_env(env_key)
        data.setdefault(section, {})[key] = value

    return AppConfig(**data)


# Global config instance
settings = load_config()
