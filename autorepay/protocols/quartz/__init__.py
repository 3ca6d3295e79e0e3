from .adapter import QuartzAccountSource, QuartzInstructionBuilder

__all__ = ["QuartzAccountSource", "QuartzInstructionBuilder"]
