"""Exception taxonomy for the auto-repay bot."""
from __future__ import annotations


class AutoRepayError(Exception):
    """Base class for all bot errors."""


class ConfigError(ValueError):
    """Invalid configuration detected at startup."""


class NoLoanPositionsError(AutoRepayError):
    """Account reported unhealthy but holds no negative-value positions."""

    def __init__(self, address: str) -> None:
        super().__init__(f"No loan positions found for unhealthy account {address}")
        self.address = address


class CollateralBelowMinimumError(AutoRepayError):
    """No repay pair reaches the minimum repay value."""

    def __init__(self, collateral_value: int) -> None:
        super().__init__(
            f"Collateral is below minimum amount, total value: {collateral_value}"
        )
        self.collateral_value = collateral_value


class NoRouteFoundError(AutoRepayError):
    """No swap route exists for any tried (loan, collateral) pair."""


class TransientRpcError(AutoRepayError):
    """Retryable network/RPC failure (HTTP 429/5xx, connection reset)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SubmissionError(AutoRepayError):
    """Transaction was rejected on submission or failed on-chain."""

    def __init__(
        self,
        message: str,
        signature: str | None = None,
        logs: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message)
        self.signature = signature
        self.logs = logs


class SlippageExceededError(SubmissionError):
    """The swap reverted because the price moved beyond the slippage tolerance."""


class UnconfirmedTransactionError(SubmissionError):
    """The transaction was sent but its outcome could not be confirmed in time."""


class FlashLoanError(AutoRepayError):
    """Flash-loan instructions are malformed or unbalanced."""


class SolanaRpcError(AutoRepayError):
    """The RPC node answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: int | None = None, data: object = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class PriceUnavailableError(AutoRepayError):
    """No oracle could price one or more markets."""
