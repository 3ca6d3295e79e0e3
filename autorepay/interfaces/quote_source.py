"""Quote source protocol: swap routing abstraction."""
from typing import Protocol

from ..models import Instruction, Quote, SwapMode


class QuoteSource(Protocol):
    """Resolves swap quotes and turns a quote into executable instructions.

    ``get_quote`` returns ``None`` when no route exists; transport failures
    raise.
    """

    async def get_quote(
        self,
        mode: SwapMode,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> Quote | None: ...

    async def get_swap_instructions(
        self, quote: Quote, caller: str
    ) -> tuple[list[Instruction], list[str]]: ...
