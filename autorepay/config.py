"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .constants import (
    ASSETS,
    GOAL_HEALTH_PERCENT,
    LOOP_DELAY_SECONDS,
    MAX_AUTO_REPAY_ATTEMPTS,
    MAX_COLLATERAL_ATTEMPTS,
    MIN_LOAN_VALUE_DOLLARS,
    SWAP_SLIPPAGE_BPS,
    Asset,
    market_by_symbol,
)
from .errors import ConfigError
from .models import RiskParams

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BotConfig:
    loop_delay_seconds: float = LOOP_DELAY_SECONDS
    goal_health_percent: float = GOAL_HEALTH_PERCENT
    max_auto_repay_attempts: int = MAX_AUTO_REPAY_ATTEMPTS
    max_collateral_attempts: int = MAX_COLLATERAL_ATTEMPTS
    retry_base_delay_seconds: float = 2.0
    max_concurrent_repairs: int = 4
    min_loan_value_dollars: float = MIN_LOAN_VALUE_DOLLARS
    slippage_bps: int = SWAP_SLIPPAGE_BPS
    health_buffer_percent: float = 0.0
    heartbeat_interval_hours: float = 24.0

    @property
    def goal_health(self) -> float:
        """Goal health as a fraction (0.15 for 15%)."""
        return self.goal_health_percent / 100


@dataclass(frozen=True)
class SolanaConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    commitment: str = "confirmed"
    confirm_timeout_seconds: float = 60.0
    confirm_poll_interval_seconds: float = 2.0


@dataclass(frozen=True)
class QuartzConfig:
    api_endpoints: tuple[str, ...] = ()
    instruction_service_url: str = ""
    timeout: int = 30


@dataclass(frozen=True)
class FlashLoanConfig:
    service_url: str = ""
    fee_rate: float = 0.0
    banks: dict[str, str] = field(default_factory=dict)
    timeout: int = 30


@dataclass(frozen=True)
class SignerConfig:
    service_url: str = ""
    caller: str = ""
    api_key: str = ""
    timeout: int = 30


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class JupiterPriceConfig:
    url: str = "https://lite-api.jup.ag/price/v3"


@dataclass(frozen=True)
class PriceOracleConfig:
    provider: str = "pyth"
    fallback: bool = True
    pyth: PythConfig = field(default_factory=PythConfig)
    jupiter: JupiterPriceConfig = field(default_factory=JupiterPriceConfig)


@dataclass(frozen=True)
class JupiterConfig:
    quote_url: str = "https://quote-api.jup.ag/v6/quote"
    swap_instructions_url: str = "https://api.jup.ag/swap/v1/swap-instructions"
    only_direct_routes: bool = True
    timeout: int = 15


@dataclass(frozen=True)
class RiskConfig:
    weights: dict[str, dict[str, float]] = field(default_factory=dict)
    liquidation_margin_buffer: float = 0.02

    def risk_params(self) -> RiskParams:
        """Build engine risk parameters with the configured weight overrides."""
        overrides = {market_by_symbol(symbol): dict(w) for symbol, w in self.weights.items()}
        return RiskParams(
            liquidation_margin_buffer=self.liquidation_margin_buffer,
        ).with_weight_overrides(overrides)


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class EmailConfig:
    enabled: bool = False
    alert_email: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = ""
    sender_password: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass(frozen=True)
class AppConfig:
    bot: BotConfig = field(default_factory=BotConfig)
    solana: SolanaConfig = field(default_factory=SolanaConfig)
    quartz: QuartzConfig = field(default_factory=QuartzConfig)
    flash_loan: FlashLoanConfig = field(default_factory=FlashLoanConfig)
    signer: SignerConfig = field(default_factory=SignerConfig)
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    jupiter: JupiterConfig = field(default_factory=JupiterConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _number(raw: dict[str, Any], key: str, default: Any, kind: type) -> Any:
    value = raw.get(key, default)
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for '{key}': {value!r}") from e


def _build_bot(raw: dict[str, Any]) -> BotConfig:
    return BotConfig(
        loop_delay_seconds=_number(raw, "loop_delay_seconds", LOOP_DELAY_SECONDS, float),
        goal_health_percent=_number(raw, "goal_health_percent", GOAL_HEALTH_PERCENT, float),
        max_auto_repay_attempts=_number(
            raw, "max_auto_repay_attempts", MAX_AUTO_REPAY_ATTEMPTS, int
        ),
        max_collateral_attempts=_number(
            raw, "max_collateral_attempts", MAX_COLLATERAL_ATTEMPTS, int
        ),
        retry_base_delay_seconds=_number(raw, "retry_base_delay_seconds", 2.0, float),
        max_concurrent_repairs=_number(raw, "max_concurrent_repairs", 4, int),
        min_loan_value_dollars=_number(
            raw, "min_loan_value_dollars", MIN_LOAN_VALUE_DOLLARS, float
        ),
        slippage_bps=_number(raw, "slippage_bps", SWAP_SLIPPAGE_BPS, int),
        health_buffer_percent=_number(raw, "health_buffer_percent", 0.0, float),
        heartbeat_interval_hours=_number(raw, "heartbeat_interval_hours", 24.0, float),
    )


def _build_solana(raw: dict[str, Any]) -> SolanaConfig:
    return SolanaConfig(
        rpc_endpoints=tuple(raw.get("rpc_endpoints", [])),
        rpc_timeout=_number(raw, "rpc_timeout", 30, int),
        commitment=raw.get("commitment", "confirmed"),
        confirm_timeout_seconds=_number(raw, "confirm_timeout_seconds", 60.0, float),
        confirm_poll_interval_seconds=_number(
            raw, "confirm_poll_interval_seconds", 2.0, float
        ),
    )


def _build_quartz(raw: dict[str, Any]) -> QuartzConfig:
    return QuartzConfig(
        api_endpoints=tuple(raw.get("api_endpoints", [])),
        instruction_service_url=raw.get("instruction_service_url", ""),
        timeout=_number(raw, "timeout", 30, int),
    )


def _build_flash_loan(raw: dict[str, Any]) -> FlashLoanConfig:
    return FlashLoanConfig(
        service_url=raw.get("service_url", ""),
        fee_rate=_number(raw, "fee_rate", 0.0, float),
        banks={str(k).upper(): v for k, v in (raw.get("banks") or {}).items()},
        timeout=_number(raw, "timeout", 30, int),
    )


def _build_signer(raw: dict[str, Any]) -> SignerConfig:
    return SignerConfig(
        service_url=raw.get("service_url", ""),
        caller=raw.get("caller", ""),
        api_key=raw.get("api_key", ""),
        timeout=_number(raw, "timeout", 30, int),
    )


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth") or {}
    jup_raw = raw.get("jupiter") or {}
    return PriceOracleConfig(
        provider=raw.get("provider", "pyth"),
        fallback=bool(raw.get("fallback", True)),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds={str(k).upper(): v for k, v in (pyth_raw.get("feeds") or {}).items()},
        ),
        jupiter=JupiterPriceConfig(url=jup_raw.get("url", JupiterPriceConfig.url)),
    )


def _build_jupiter(raw: dict[str, Any]) -> JupiterConfig:
    return JupiterConfig(
        quote_url=raw.get("quote_url", JupiterConfig.quote_url),
        swap_instructions_url=raw.get(
            "swap_instructions_url", JupiterConfig.swap_instructions_url
        ),
        only_direct_routes=bool(raw.get("only_direct_routes", True)),
        timeout=_number(raw, "timeout", 15, int),
    )


def _build_risk(raw: dict[str, Any]) -> RiskConfig:
    weights: dict[str, dict[str, float]] = {}
    for symbol, overrides in (raw.get("weights") or {}).items():
        if not isinstance(overrides, dict):
            raise ConfigError(f"Weight overrides for '{symbol}' must be a mapping")
        weights[str(symbol).upper()] = {
            name: _number(overrides, name, None, float) for name in overrides
        }
    return RiskConfig(
        weights=weights,
        liquidation_margin_buffer=_number(raw, "liquidation_margin_buffer", 0.02, float),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram") or {}
    em = raw.get("email") or {}
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
        email=EmailConfig(
            enabled=bool(em.get("enabled", False)),
            alert_email=em.get("alert_email", ""),
            smtp_server=em.get("smtp_server", "smtp.gmail.com"),
            smtp_port=int(em.get("smtp_port", 587)),
            sender_email=em.get("sender_email", ""),
            sender_password=em.get("sender_password", ""),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from the package).

    Raises:
        FileNotFoundError: the file does not exist.
        ConfigError: the file parses but describes an unusable setup.
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        bot=_build_bot(raw.get("bot") or {}),
        solana=_build_solana(raw.get("solana") or {}),
        quartz=_build_quartz(raw.get("quartz") or {}),
        flash_loan=_build_flash_loan(raw.get("flash_loan") or {}),
        signer=_build_signer(raw.get("signer") or {}),
        price_oracle=_build_price_oracle(raw.get("price_oracle") or {}),
        jupiter=_build_jupiter(raw.get("jupiter") or {}),
        risk=_build_risk(raw.get("risk") or {}),
        notifications=_build_notifications(raw.get("notifications") or {}),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


_WEIGHT_FIELDS = frozenset(f.name for f in fields(Asset) if f.name.endswith("_weight"))


def _validate(cfg: AppConfig) -> None:
    """Raise ``ConfigError`` on invalid configuration."""
    bot = cfg.bot
    if not 0 < bot.goal_health_percent < 100:
        raise ConfigError(
            f"goal_health_percent must be between 0 and 100, got {bot.goal_health_percent}"
        )
    if not 0 <= bot.health_buffer_percent < 100:
        raise ConfigError(
            f"health_buffer_percent must be in [0, 100), got {bot.health_buffer_percent}"
        )
    if bot.max_auto_repay_attempts < 1 or bot.max_collateral_attempts < 1:
        raise ConfigError("Repay attempt limits must be at least 1")
    if bot.max_concurrent_repairs < 1:
        raise ConfigError("max_concurrent_repairs must be at least 1")
    if not 0 <= bot.slippage_bps < 10_000:
        raise ConfigError(f"slippage_bps must be in [0, 10000), got {bot.slippage_bps}")
    if bot.loop_delay_seconds < 0 or bot.retry_base_delay_seconds < 0:
        raise ConfigError("Delays must not be negative")

    if not cfg.solana.rpc_endpoints:
        raise ConfigError("At least one Solana RPC endpoint must be configured")
    if not cfg.quartz.api_endpoints:
        raise ConfigError("At least one Quartz API endpoint must be configured")
    if not cfg.quartz.instruction_service_url:
        raise ConfigError("quartz.instruction_service_url is required")
    if not cfg.signer.service_url or not cfg.signer.caller:
        raise ConfigError("signer.service_url and signer.caller are required")

    if not cfg.flash_loan.service_url:
        raise ConfigError("flash_loan.service_url is required")
    if cfg.flash_loan.fee_rate < 0:
        raise ConfigError(f"flash_loan.fee_rate must not be negative, got {cfg.flash_loan.fee_rate}")
    missing_banks = [
        asset.symbol for asset in ASSETS.values() if asset.symbol not in cfg.flash_loan.banks
    ]
    if missing_banks:
        raise ConfigError(f"No flash-loan bank configured for: {', '.join(missing_banks)}")

    if cfg.price_oracle.provider not in ("pyth", "jupiter"):
        raise ConfigError(f"Unknown price oracle provider '{cfg.price_oracle.provider}'")

    for symbol, overrides in cfg.risk.weights.items():
        try:
            market_by_symbol(symbol)
        except KeyError as e:
            raise ConfigError(f"Weight overrides reference unknown asset '{symbol}'") from e
        for name, value in overrides.items():
            if name not in _WEIGHT_FIELDS:
                raise ConfigError(f"Unknown weight '{name}' for asset '{symbol}'")
            if value < 0:
                raise ConfigError(f"Weight '{name}' for asset '{symbol}' must not be negative")
