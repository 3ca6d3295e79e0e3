from .adapter import MarginfiFlashLoanProvider

__all__ = ["MarginfiFlashLoanProvider"]
