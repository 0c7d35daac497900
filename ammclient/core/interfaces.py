"""Core interfaces for the AMM client."""

from typing import Protocol, runtime_checkable

from solders.hash import Hash
from solders.pubkey import Pubkey

from .types import Confirmation


@runtime_checkable
class LedgerGateway(Protocol):
    """Ledger RPC surface used by the client."""

    async def get_program_accounts(
        self, program_id: Pubkey, data_size: int
    ) -> list[tuple[Pubkey, bytes]]:
        """Return every account owned by ``program_id`` of exactly ``data_size`` bytes."""
        ...

    async def get_multiple_accounts(
        self, addresses: list[Pubkey]
    ) -> list[bytes | None]:
        """Batched account lookup. ``None`` means the account does not exist."""
        ...

    async def get_balance(self, address: Pubkey) -> int:
        """Native balance in lamports."""
        ...

    async def get_latest_blockhash(self) -> tuple[Hash, int]:
        """Recent blockhash and its last valid block height."""
        ...

    async def submit_transaction(self, signed_bytes: bytes) -> str:
        """Send a signed transaction and return its signature."""
        ...

    async def confirm(
        self,
        signature: str,
        commitment: str = "confirmed",
        timeout: float = 30.0,
        poll_interval: float = 2.0,
    ) -> Confirmation:
        """Poll until the transaction reaches ``commitment`` or the budget runs out."""
        ...

    async def get_transaction_status(self, signature: str) -> Confirmation:
        """Single-shot status lookup for an already sent transaction."""
        ...


@runtime_checkable
class TxnSigner(Protocol):
    """Protocol for external transaction signers."""

    def pubkey_base58(self) -> str:
        """Get the public key in base58 format."""
        ...

    def sign_transaction(self, txn_bytes: bytes) -> bytes:
        """Sign a serialized unsigned transaction and return the signed wire bytes."""
        ...
