"""Remote signing service client. Keys never enter this process."""
from __future__ import annotations

import logging

from ..config import SignerConfig
from ..errors import AutoRepayError
from ..http import request_json
from ..models import Instruction, SignedTransaction

logger = logging.getLogger(__name__)


class RemoteSigner:
    """Compile and sign a versioned transaction through the signing service."""

    def __init__(self, config: SignerConfig) -> None:
        self.url = f"{config.service_url.rstrip('/')}/sign"
        self.timeout = config.timeout
        self._caller = config.caller
        self._headers = {"Authorization": f"Bearer {config.api_key}"} if config.api_key else None

    @property
    def caller(self) -> str:
        return self._caller

    async def sign(
        self, instructions: list[Instruction], lookup_tables: list[str]
    ) -> SignedTransaction:
        payload = {
            "payer": self._caller,
            "instructions": [ix.to_json() for ix in instructions],
            "addressLookupTableAddresses": lookup_tables,
        }
        status, data = await request_json(
            "POST", self.url, json=payload, headers=self._headers, timeout=self.timeout
        )
        if status != 200 or not isinstance(data, dict) or not data.get("transaction"):
            error = data.get("error") if isinstance(data, dict) else None
            raise AutoRepayError(f"Signing failed (HTTP {status}): {error}")

        logger.debug("Signed transaction with %d instructions", len(instructions))
        return SignedTransaction(
            serialized=data["transaction"],
            instructions=tuple(instructions),
            lookup_tables=tuple(lookup_tables),
        )
