"""Service modules."""
from .repay_bot import BotState, RepairOutcome, RepayBot

__all__ = ["BotState", "RepairOutcome", "RepayBot"]
