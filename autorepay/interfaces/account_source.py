"""Account source protocol: where vault accounts come from."""
from typing import Protocol

from ..models import Account


class AccountSource(Protocol):
    """Lists vault accounts and fetches a fresh snapshot of one."""

    async def list_accounts(self) -> list[Account]: ...

    async def get_account(self, address: str) -> Account: ...
