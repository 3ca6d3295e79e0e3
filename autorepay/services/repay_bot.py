"""Auto-repay orchestration: scan vaults, repair the ones at zero health."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum

import aiohttp

from ..config import AppConfig, BotConfig
from ..chains.solana import SolanaClient
from ..constants import MIN_LAMPORTS_BALANCE, QUOTE_DECIMALS
from ..engine.health import apply_health_buffer, compute_health
from ..engine.planner import plan_repay
from ..engine.positions import sort_positions
from ..engine.transaction import FlashLoanRegistry, TransactionBuilder
from ..engine.units import base_units_to_decimal, decimal_to_base_units
from ..errors import (
    AutoRepayError,
    CollateralBelowMinimumError,
    NoLoanPositionsError,
    NoRouteFoundError,
    UnconfirmedTransactionError,
)
from ..interfaces.account_source import AccountSource
from ..interfaces.chain import ChainClient
from ..interfaces.notifier import Notifier
from ..interfaces.price_oracle import PriceOracle
from ..interfaces.quote_source import QuoteSource
from ..models import (
    Account,
    BelowMinimum,
    HealthResult,
    NoRoute,
    PriceTable,
    RiskParams,
    SortedPositions,
)
from ..notifications import EmailNotifier, TelegramNotifier
from ..oracles import JupiterPriceOracle, PriceAggregator, PythOracle
from ..protocols.marginfi import MarginfiFlashLoanProvider
from ..protocols.quartz import QuartzAccountSource, QuartzInstructionBuilder
from ..retry import RetryConfig, retry_with_backoff
from ..signers import RemoteSigner
from ..swaps import JupiterQuoteSource

logger = logging.getLogger(__name__)


class BotState(str, Enum):
    IDLE = "Idle"
    SCANNING = "Scanning"
    PER_ACCOUNT_CHECK = "PerAccountCheck"
    HEALTHY = "Healthy"
    REPAIRING = "Repairing"
    ATTEMPTING = "Attempting"
    RETRY_BACKOFF = "RetryBackoff"
    SUCCESS = "Success"
    EXHAUSTED = "Exhausted"


class RepairOutcome(str, Enum):
    REPAIRED = "repaired"
    RESOLVED = "resolved"  # attempts failed but health recovered on its own
    FAILED = "failed"
    BELOW_MINIMUM = "below_minimum"
    NO_ROUTE = "no_route"
    SKIPPED = "skipped"


def _build_oracle(config: AppConfig) -> PriceOracle:
    oracle_cfg = config.price_oracle
    pyth = PythOracle(oracle_cfg.pyth)
    jupiter = JupiterPriceOracle(oracle_cfg.jupiter)
    primary, secondary = (pyth, jupiter) if oracle_cfg.provider == "pyth" else (jupiter, pyth)
    return PriceAggregator(primary, secondary if oracle_cfg.fallback else None)


class RepayBot:
    """Scans every vault and lifts zero-health accounts back to the goal health.

    Repairs run as tasks bounded by a semaphore; an account already under
    repair is not queued again. ``request_shutdown`` stops the loop after the
    current scan and lets in-flight repairs finish.
    """

    def __init__(
        self,
        accounts: AccountSource,
        oracle: PriceOracle,
        quotes: QuoteSource,
        transactions: TransactionBuilder,
        chain: ChainClient,
        settings: BotConfig,
        risk: RiskParams,
        caller: str,
        notifiers: list[Notifier] | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        self._accounts = accounts
        self._oracle = oracle
        self._quotes = quotes
        self._transactions = transactions
        self._chain = chain
        self._settings = settings
        self._risk = risk
        self._caller = caller
        self._notifiers: list[Notifier] = list(notifiers or [])
        self._retry = retry or RetryConfig()

        self._semaphore = asyncio.Semaphore(settings.max_concurrent_repairs)
        self._shutdown = asyncio.Event()
        self._in_flight: dict[str, asyncio.Task[RepairOutcome | None]] = {}
        self.state = BotState.IDLE

    @classmethod
    def from_config(cls, config: AppConfig) -> RepayBot:
        """Wire the production adapters described by ``config``."""
        chain = SolanaClient(config.solana)
        quotes = JupiterQuoteSource(config.jupiter)
        signer = RemoteSigner(config.signer)
        flash_loans = MarginfiFlashLoanProvider(config.flash_loan)
        registry = FlashLoanRegistry({m: flash_loans for m in flash_loans.supported_markets()})
        transactions = TransactionBuilder(
            chain, signer, quotes, QuartzInstructionBuilder(config.quartz), registry
        )

        notifiers: list[Notifier] = []
        if config.notifications.telegram.enabled:
            notifiers.append(TelegramNotifier(config.notifications.telegram))
        if config.notifications.email.enabled:
            notifiers.append(EmailNotifier(config.notifications.email))

        return cls(
            accounts=QuartzAccountSource(config.quartz),
            oracle=_build_oracle(config),
            quotes=quotes,
            transactions=transactions,
            chain=chain,
            settings=config.bot,
            risk=config.risk.risk_params(),
            caller=signer.caller,
            notifiers=notifiers,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: BotState, address: str = "") -> None:
        self.state = state
        if address:
            logger.debug("State %s for %s", state.value, address)

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown.set()

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early once shutdown is requested."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def account_health(self, account: Account, prices: PriceTable) -> HealthResult:
        """Health as displayed by the vault, i.e. after the health buffer."""
        result = compute_health(account, prices, self._risk)
        buffer = self._settings.health_buffer_percent
        if buffer <= 0:
            return result
        return HealthResult(
            score=apply_health_buffer(result.score, buffer),
            total_asset_value=result.total_asset_value,
            total_liability_value=result.total_liability_value,
        )

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def fetch_snapshot(self) -> tuple[list[Account], PriceTable]:
        accounts = await retry_with_backoff(
            self._accounts.list_accounts, self._retry, description="Account listing"
        )
        prices = await retry_with_backoff(
            self._oracle.fetch_prices, self._retry, description="Price fetch"
        )
        return accounts, prices

    async def scan_once(self) -> list[asyncio.Task[RepairOutcome | None]]:
        """Check every account once and start repairs for zero-health ones.

        Returns the repair tasks started by this scan.
        """
        self._set_state(BotState.SCANNING)
        accounts, prices = await self.fetch_snapshot()
        logger.debug("Scanning %d accounts", len(accounts))

        started: list[asyncio.Task[RepairOutcome | None]] = []
        for account in accounts:
            self._set_state(BotState.PER_ACCOUNT_CHECK, account.address)
            if account.address in self._in_flight:
                logger.debug("Repair already in flight for %s", account.address)
                continue
            if account.requires_upgrade:
                continue

            try:
                health = self.account_health(account, prices)
            except Exception as e:
                logger.error("Cannot value account %s: %s", account.address, e)
                continue

            if health.score > 0:
                self._set_state(BotState.HEALTHY, account.address)
                continue

            self._set_state(BotState.REPAIRING, account.address)
            task = asyncio.create_task(self._guarded_repair(account, prices))
            self._in_flight[account.address] = task
            started.append(task)

        return started

    async def _guarded_repair(
        self, account: Account, prices: PriceTable
    ) -> RepairOutcome | None:
        try:
            async with self._semaphore:
                return await self.repair_account(account, prices)
        except Exception as e:
            logger.error("Error processing account %s: %s", account.address, e)
            return None
        finally:
            self._in_flight.pop(account.address, None)

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    async def _attempt(
        self,
        account: Account,
        positions: SortedPositions,
        prices: PriceTable,
        health: HealthResult,
    ) -> str:
        """One attempt: walk the collateral list until a repay lands.

        Each pass skips one more of the largest collateral positions, so a
        collateral whose swap keeps failing is eventually routed around.
        """
        balances = account.balances()
        min_value = decimal_to_base_units(self._settings.min_loan_value_dollars, QUOTE_DECIMALS)
        passes = max(1, min(self._settings.max_collateral_attempts, len(positions.collateral)))
        last_error: Exception | None = None

        for skip in range(passes):
            outcome = await plan_repay(
                positions,
                balances,
                prices,
                health,
                self._risk,
                self._quotes,
                goal_health=self._settings.goal_health,
                min_repay_value=min_value,
                slippage_bps=self._settings.slippage_bps,
                skip_collateral_count=skip,
                health_buffer=self._settings.health_buffer_percent / 100,
            )
            if isinstance(outcome, BelowMinimum):
                raise CollateralBelowMinimumError(outcome.total_collateral_value)
            if isinstance(outcome, NoRoute):
                if last_error is None:
                    raise NoRouteFoundError(
                        f"No swap route for {account.address} skipping {skip} collateral"
                    )
                break

            try:
                return await self._transactions.build_and_submit(account, outcome.plan)
            except UnconfirmedTransactionError:
                raise
            except (AutoRepayError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.debug(
                    "Repay with %s failed for %s: %s",
                    outcome.plan.market_index_collateral.name, account.address, e,
                )
                last_error = e

        raise last_error or NoRouteFoundError(f"No collateral to repay with for {account.address}")

    async def repair_account(self, account: Account, prices: PriceTable) -> RepairOutcome:
        """Run bounded repay attempts for one zero-health account."""
        balances = account.balances()
        positions = sort_positions(balances, prices)
        if not positions.loans:
            raise NoLoanPositionsError(account.address)

        min_value = decimal_to_base_units(self._settings.min_loan_value_dollars, QUOTE_DECIMALS)
        if abs(positions.loans[0].value) < min_value:
            logger.debug("Largest loan of %s is below the minimum, skipping", account.address)
            return RepairOutcome.SKIPPED

        health = self.account_health(account, prices)
        max_attempts = self._settings.max_auto_repay_attempts
        last_error: Exception | None = None

        for attempt in range(max_attempts):
            self._set_state(BotState.ATTEMPTING, account.address)
            try:
                signature = await self._attempt(account, positions, prices, health)
            except CollateralBelowMinimumError as e:
                logger.warning(
                    "Collateral is below minimum amount for %s, skipping auto-repay (%s)",
                    account.address, e,
                )
                return RepairOutcome.BELOW_MINIMUM
            except NoRouteFoundError as e:
                logger.warning(
                    "No swap route for %s, retrying on the next scan (%s)", account.address, e
                )
                return RepairOutcome.NO_ROUTE
            except UnconfirmedTransactionError as e:
                last_error = e
                logger.warning(
                    "Auto-repay for %s was sent but not confirmed, re-checking health: %s",
                    account.address, e,
                )
                try:
                    account, health, prices = await self.check_account(account.address)
                except Exception as refresh_error:
                    logger.error(
                        "Could not refresh health for %s: %s", account.address, refresh_error
                    )
                    break
                if health.score > 0:
                    logger.info(
                        "Unconfirmed auto-repay for %s landed, health is now %d",
                        account.address, health.score,
                    )
                    await self.check_fee_payer_balance()
                    return RepairOutcome.REPAIRED
                positions = sort_positions(account.balances(), prices)
            except Exception as e:
                last_error = e
                logger.warning(
                    "Auto-repay attempt %d/%d failed for %s: %s",
                    attempt + 1, max_attempts, account.address, e,
                )
            else:
                self._set_state(BotState.SUCCESS, account.address)
                logger.info(
                    "Executed auto-repay for %s, signature: %s", account.address, signature
                )
                await self.check_fee_payer_balance()
                return RepairOutcome.REPAIRED

            if attempt + 1 < max_attempts:
                if self._shutdown.is_set():
                    break
                self._set_state(BotState.RETRY_BACKOFF, account.address)
                await self._sleep(self._settings.retry_base_delay_seconds * 2**attempt)
                if self._shutdown.is_set():
                    break

        self._set_state(BotState.EXHAUSTED, account.address)
        return await self._handle_exhausted(account, last_error)

    async def _handle_exhausted(
        self, account: Account, last_error: Exception | None
    ) -> RepairOutcome:
        """Re-check health after the last attempt; alert if it is still zero."""
        try:
            _, health, _ = await self.check_account(account.address)
            score: int | None = health.score
        except Exception as e:
            logger.error("Could not refresh health for %s: %s", account.address, e)
            score = None

        if score is not None and score > 0:
            logger.info(
                "Auto-repay attempts failed for %s but health recovered to %d",
                account.address, score,
            )
            return RepairOutcome.RESOLVED

        logger.error(
            "Failed to execute auto-repay for %s. Error: %s", account.address, last_error
        )
        await self._send_alert(
            (
                f"🚨 Auto-repay failed\n"
                f"\n"
                f"Vault: {account.address}\n"
                f"Owner: {account.owner}\n"
                f"Error: {last_error}\n"
                f"\n"
                f"{self._now_str()} UTC"
            ),
            subject="🚨 CRITICAL: Auto-repay failed",
        )
        return RepairOutcome.FAILED

    async def check_fee_payer_balance(self) -> None:
        """Alert when the caller is about to run out of lamports for fees."""
        try:
            lamports = await self._chain.get_balance(self._caller)
        except Exception as e:
            logger.error("Could not fetch fee payer balance: %s", e)
            return

        if lamports >= MIN_LAMPORTS_BALANCE:
            return
        sol = base_units_to_decimal(lamports, 9)
        logger.warning("Fee payer %s balance low: %.6f SOL", self._caller, sol)
        await self._send_alert(
            (
                f"⚠️ Low fee payer balance\n"
                f"\n"
                f"Address: {self._caller}\n"
                f"Balance: {sol:.6f} SOL\n"
                f"\n"
                f"{self._now_str()} UTC"
            ),
            subject="⚠️ WARNING: Low fee payer balance",
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def check_account(
        self, address: str
    ) -> tuple[Account, HealthResult, PriceTable]:
        account = await self._accounts.get_account(address)
        prices = await self._oracle.fetch_prices()
        return account, self.account_health(account, prices), prices

    async def wait_for_repairs(self) -> None:
        tasks = list(self._in_flight.values())
        if tasks:
            logger.info("Waiting for %d in-flight repairs", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)

    async def scan_and_wait(self) -> list[RepairOutcome | None]:
        tasks = await self.scan_once()
        return list(await asyncio.gather(*tasks))

    async def _heartbeat(self) -> None:
        interval = self._settings.heartbeat_interval_hours * 3600
        while not self._shutdown.is_set():
            await self._sleep(interval)
            if not self._shutdown.is_set():
                logger.info("Heartbeat | Bot address: %s", self._caller)

    async def run(self) -> None:
        """Scan forever, sleeping between scans, until shutdown is requested."""
        logger.info("Auto-Repay Bot initialized with address %s", self._caller)
        heartbeat = asyncio.create_task(self._heartbeat())
        try:
            while not self._shutdown.is_set():
                try:
                    await self.scan_once()
                except Exception as e:
                    logger.error("Error in scan loop: %s", e)
                self._set_state(BotState.IDLE)
                await self._sleep(self._settings.loop_delay_seconds)
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
            await self.wait_for_repairs()
            logger.info("Auto-Repay Bot stopped")
