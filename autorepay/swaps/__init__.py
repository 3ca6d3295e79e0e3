"""Swap routing."""
from .jupiter import JupiterQuoteSource

__all__ = ["JupiterQuoteSource"]
