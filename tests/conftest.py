"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from autorepay.config import (
    AppConfig,
    BotConfig,
    FlashLoanConfig,
    JupiterConfig,
    NotificationsConfig,
    PriceOracleConfig,
    PythConfig,
    QuartzConfig,
    SignerConfig,
    SolanaConfig,
    TelegramConfig,
)
from autorepay.constants import ASSETS, MarketIndex
from autorepay.engine.transaction import (
    FLASH_LOAN_BEGIN,
    FLASH_LOAN_BORROW,
    FLASH_LOAN_END,
    FLASH_LOAN_REPAY,
)
from autorepay.models import (
    Account,
    Instruction,
    OraclePrice,
    Position,
    PriceTable,
    Quote,
    RiskParams,
    SignedTransaction,
    SwapMode,
)

CALLER = "CaLLer1111111111111111111111111111111111111"

BANKS = {asset.symbol: f"Bank{asset.symbol}111111111111111111111111" for asset in ASSETS.values()}


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def bot_settings() -> BotConfig:
    return BotConfig(
        loop_delay_seconds=0,
        goal_health_percent=20.0,
        max_auto_repay_attempts=3,
        max_collateral_attempts=8,
        retry_base_delay_seconds=0,
        max_concurrent_repairs=2,
        min_loan_value_dollars=1.0,
        slippage_bps=50,
    )


@pytest.fixture()
def sample_app_config(bot_settings: BotConfig) -> AppConfig:
    return AppConfig(
        bot=bot_settings,
        solana=SolanaConfig(
            rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
            rpc_timeout=10,
            confirm_timeout_seconds=5,
            confirm_poll_interval_seconds=0,
        ),
        quartz=QuartzConfig(
            api_endpoints=("https://quartz1.example.com", "https://quartz2.example.com"),
            instruction_service_url="https://ix.example.com",
        ),
        flash_loan=FlashLoanConfig(
            service_url="https://marginfi.example.com", fee_rate=0.0, banks=dict(BANKS)
        ),
        signer=SignerConfig(service_url="https://signer.example.com", caller=CALLER),
        price_oracle=PriceOracleConfig(
            provider="pyth",
            pyth=PythConfig(hermes_url="https://hermes.example.com/v2/updates/price/latest"),
        ),
        jupiter=JupiterConfig(
            quote_url="https://quote.example.com/v6/quote",
            swap_instructions_url="https://swap.example.com/swap-instructions",
        ),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
        ),
    )


SAMPLE_YAML = textwrap.dedent("""\
    bot:
      loop_delay_seconds: 10
      goal_health_percent: 20
      max_auto_repay_attempts: 3
      max_collateral_attempts: 4
      min_loan_value_dollars: 1.0
      slippage_bps: 50
    solana:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    quartz:
      api_endpoints: ["https://quartz.example.com"]
      instruction_service_url: "https://ix.example.com"
    flash_loan:
      service_url: "https://marginfi.example.com"
      fee_rate: 0.0005
      banks:
        usdc: "BankUSDC"
        SOL: "BankSOL"
        WBTC: "BankWBTC"
        WETH: "BankWETH"
        USDT: "BankUSDT"
        JITOSOL: "BankJITOSOL"
    signer:
      service_url: "https://signer.example.com"
      caller: "CaLLer"
    price_oracle:
      provider: pyth
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {sol: "aaa"}
    risk:
      liquidation_margin_buffer: 0.03
      weights:
        SOL: {maintenance_asset_weight: 0.85}
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: 999
      email:
        enabled: false
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_prices() -> PriceTable:
    return {
        MarketIndex.USDC: OraclePrice(price=1.0),
        MarketIndex.SOL: OraclePrice(price=100.0),
        MarketIndex.WBTC: OraclePrice(price=50_000.0),
        MarketIndex.WETH: OraclePrice(price=3_000.0),
        MarketIndex.USDT: OraclePrice(price=1.0),
        MarketIndex.JITOSOL: OraclePrice(price=110.0),
    }


@pytest.fixture()
def risk() -> RiskParams:
    return RiskParams()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_account() -> Callable[..., Account]:
    def _make(
        balances: dict[MarketIndex, int] | None = None,
        address: str = "Vau1t111",
        owner: str = "0wner111",
        **kwargs,
    ) -> Account:
        positions = tuple(
            Position(market_index=index, balance=balance)
            for index, balance in (balances or {}).items()
        )
        return Account(address=address, owner=owner, positions=positions, **kwargs)

    return _make


@pytest.fixture()
def make_quote() -> Callable[..., Quote]:
    def _make(
        mode: SwapMode = SwapMode.EXACT_OUT,
        input_market: MarketIndex = MarketIndex.SOL,
        output_market: MarketIndex = MarketIndex.USDC,
        in_amount: int = 1_000_000_000,
        out_amount: int = 100_000_000,
        threshold: int | None = None,
    ) -> Quote:
        if threshold is None:
            threshold = in_amount if mode == SwapMode.EXACT_OUT else out_amount
        return Quote(
            input_mint=ASSETS[input_market].mint,
            output_mint=ASSETS[output_market].mint,
            in_amount=in_amount,
            out_amount=out_amount,
            other_amount_threshold=threshold,
            swap_mode=mode,
            slippage_bps=50,
            raw={"swapMode": mode.value},
        )

    return _make


def ix(label: str) -> Instruction:
    return Instruction(program_id=f"Prog{label}", data="AA==", label=label)


@pytest.fixture()
def make_instruction() -> Callable[[str], Instruction]:
    return ix


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_signer() -> MagicMock:
    signer = MagicMock()
    signer.caller = CALLER
    signer.sign = AsyncMock(return_value=SignedTransaction(serialized="c2lnbmVk"))
    return signer


@pytest.fixture()
def fake_chain() -> AsyncMock:
    chain = AsyncMock()
    chain.get_balance.return_value = 2_000_000_000
    chain.get_token_balance.return_value = 0
    chain.missing_token_accounts.return_value = []
    chain.get_transaction_logs.return_value = []
    return chain


@pytest.fixture()
def fake_instruction_builder() -> AsyncMock:
    builder = AsyncMock()
    builder.build_repay_instructions.return_value = (
        [ix("start_repay"), ix("jupiter_swap"), ix("deposit"), ix("withdraw")],
        ["QuartzTable1", "SharedTable"],
    )
    builder.build_create_token_accounts.return_value = [ix("create_token_account")]
    builder.build_wrap_native.return_value = [ix("wrap_native")]
    return builder


@pytest.fixture()
def fake_quote_source() -> AsyncMock:
    quotes = AsyncMock()
    quotes.get_swap_instructions.return_value = ([ix("jupiter_swap")], ["SharedTable", "JupTable"])
    return quotes


@pytest.fixture()
def fake_flash_loan_provider() -> MagicMock:
    provider = MagicMock()
    provider.fee_rate = 0.0009
    provider.make_begin = AsyncMock(return_value=ix(FLASH_LOAN_BEGIN))
    provider.make_borrow = AsyncMock(return_value=ix(FLASH_LOAN_BORROW))
    provider.make_repay = AsyncMock(return_value=ix(FLASH_LOAN_REPAY))
    provider.make_end = AsyncMock(return_value=ix(FLASH_LOAN_END))
    return provider


# ---------------------------------------------------------------------------
# Sample API payloads
# ---------------------------------------------------------------------------


@pytest.fixture()
def raw_vault() -> dict:
    return {
        "vaultAddress": "Vau1t111",
        "owner": "0wner111",
        "status": "active",
        "vaultAccountSize": 1200,
        "maxMarginRatio": 0,
        "spotPositions": [
            {"marketIndex": 1, "balance": "10000000000"},  # 10 SOL
            {"marketIndex": 0, "balance": "-900000000"},  # 900 USDC borrowed
            {"marketIndex": 5, "balance": "0"},
        ],
        "perpPositions": [],
    }
