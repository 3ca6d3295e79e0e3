"""Protocol interfaces for the auto-repay bot's external collaborators."""
from .account_source import AccountSource
from .chain import ChainClient
from .instruction_builder import (
    FlashLoanProvider,
    RepayInstructionBuilder,
    TransactionSigner,
)
from .notifier import Notifier
from .price_oracle import PriceOracle
from .quote_source import QuoteSource

__all__ = [
    "AccountSource",
    "ChainClient",
    "FlashLoanProvider",
    "Notifier",
    "PriceOracle",
    "QuoteSource",
    "RepayInstructionBuilder",
    "TransactionSigner",
]
