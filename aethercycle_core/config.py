"""
TOML-based configuration for AetherCycle.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.  Token amounts
are written in whole AEC and converted to base units where they are used.

Usage:
    from aethercycle_core.config import load_config
    cfg = load_config("aethercycle.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from aethercycle_core.engine import CycleConfig
from aethercycle_core.errors import ConfigurationError
from aethercycle_core.precision import SECONDS_PER_DAY, aec

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[import,no-redef]


@dataclass
class EngineConfig:
    """Cycle split, incentive and pacing settings."""
    address: str = "engine"
    deployer: str = "deployer"
    burn_bps: int = 2_000
    auto_lp_bps: int = 4_000
    refill_bps: int = 4_000
    caller_reward_bps: int = 10
    slippage_bps: int = 100
    min_process_aec: float = 1_000
    cooldown: int = 3_600
    refill_lp_bps: int = 5_000
    refill_token_bps: int = 3_750
    refill_nft_bps: int = 1_250

    def to_cycle_config(self) -> CycleConfig:
        return CycleConfig(
            burn_bps=self.burn_bps,
            auto_lp_bps=self.auto_lp_bps,
            refill_bps=self.refill_bps,
            caller_reward_bps=self.caller_reward_bps,
            slippage_bps=self.slippage_bps,
            min_process_amount=aec(self.min_process_aec),
            cooldown=self.cooldown,
            refill_lp_bps=self.refill_lp_bps,
            refill_token_bps=self.refill_token_bps,
            refill_nft_bps=self.refill_nft_bps,
        )


@dataclass
class EndowmentConfig:
    """Perpetual endowment seed and schedule."""
    address: str = "endowment"
    custodian: str = "emergency-custodian"
    initial_aec: float = 311_111_111
    release_interval_days: int = 30
    compounding: bool = True
    estimated_call_cost_aec: float = 1

    @property
    def release_interval(self) -> int:
        return int(self.release_interval_days * SECONDS_PER_DAY)


@dataclass
class StakingConfig:
    """Base-emission allocations per pool and bonus streaming length."""
    lp_allocation_aec: float = 177_777_777
    token_allocation_aec: float = 133_333_333
    nft_allocation_aec: float = 44_400_000
    rewards_duration_days: int = 7

    @property
    def rewards_duration(self) -> int:
        return int(self.rewards_duration_days * SECONDS_PER_DAY)


@dataclass
class MarketConfig:
    """Simulated AEC/stable market and token parameters."""
    stable_symbol: str = "USDC"
    tax_bps: int = 200
    trading_fee_bps: int = 30
    seed_aec: float = 10_000_000
    seed_stable: float = 1_000_000
    liquidity_provider: str = "genesis-lp"


@dataclass
class APIConfig:
    """Status/trigger HTTP API settings."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8090
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)
    max_body_bytes: int = 65_536


@dataclass
class KeeperConfig:
    """Periodic cycle trigger."""
    enabled: bool = True
    address: str = "keeper"
    interval_seconds: int = 3_600


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class AetherCycleConfig:
    """Top-level configuration container."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    endowment: EndowmentConfig = field(default_factory=EndowmentConfig)
    staking: StakingConfig = field(default_factory=StakingConfig)
    market: MarketConfig = field(default_factory=MarketConfig)
    api: APIConfig = field(default_factory=APIConfig)
    keeper: KeeperConfig = field(default_factory=KeeperConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def sections(self) -> list[tuple[str, Any]]:
        return [
            ("engine", self.engine),
            ("endowment", self.endowment),
            ("staking", self.staking),
            ("market", self.market),
            ("api", self.api),
            ("keeper", self.keeper),
            ("logging", self.logging),
        ]


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if not hasattr(dc, key_under):
            raise ConfigurationError(f"Unknown setting {type(dc).__name__}.{key}")
        setattr(dc, key_under, value)


def load_config(path: str | None = None) -> AetherCycleConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        AETHERCYCLE_LOG_LEVEL       -> logging.level
        AETHERCYCLE_LOG_FMT         -> logging.format
        AETHERCYCLE_API_PORT        -> api.port (also enables the API)
        AETHERCYCLE_API_KEY         -> api.api_key
        AETHERCYCLE_COOLDOWN        -> engine.cooldown
        AETHERCYCLE_KEEPER_INTERVAL -> keeper.interval_seconds
    """
    cfg = AetherCycleConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if not p.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        with open(p, "rb") as f:
            data = tomllib.load(f)
        for section_name, section_dc in cfg.sections():
            if section_name in data:
                _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("AETHERCYCLE_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("AETHERCYCLE_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("AETHERCYCLE_API_PORT"):
        cfg.api.port = int(v)
        cfg.api.enabled = True
    if v := os.environ.get("AETHERCYCLE_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("AETHERCYCLE_COOLDOWN"):
        cfg.engine.cooldown = int(v)
    if v := os.environ.get("AETHERCYCLE_KEEPER_INTERVAL"):
        cfg.keeper.interval_seconds = int(v)

    return cfg
