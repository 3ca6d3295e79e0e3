"""Auto-repay bot for leveraged Quartz vault accounts."""

__version__ = "0.1.0"
