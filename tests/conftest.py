"""Shared fixtures: an in-memory ledger gateway and a small token universe."""

import asyncio
import struct
from collections import Counter

import pytest
from solders.hash import Hash
from solders.pubkey import Pubkey

from ammclient.core.types import Confirmation, ConfirmationStatus, TokenInfo
from ammclient.events.refresh_bus import RefreshBus
from ammclient.ledger.addresses import (
    derive_associated_token_address,
    derive_pool_authority,
)
from ammclient.tokens.registry import TokenRegistry

PROGRAM_ID = Pubkey.from_string("7VFS76Bvrfj35GDho97B8HxgToW9Rpk6zLnx1VwwJhKD")
BASE_MINT = Pubkey.from_string("HtnUp4FXaKC7MvpWP2N8W25rea75XspMiiw3XEixE8Jd")

TOKEN_ACCOUNT_SIZE = 165


def pool_account_data(
    amm: Pubkey, mint_a: Pubkey, mint_b: Pubkey, discriminator: bytes = b"\x07" * 8
) -> bytes:
    return discriminator + bytes(amm) + bytes(mint_a) + bytes(mint_b)


def token_account_data(mint: Pubkey, owner: Pubkey, amount: int) -> bytes:
    head = bytes(mint) + bytes(owner) + struct.pack("<Q", amount)
    return head + bytes(TOKEN_ACCOUNT_SIZE - len(head))


class FakeGateway:
    """In-memory ledger implementing the gateway protocol, with call counting."""

    def __init__(self, program_id: Pubkey = PROGRAM_ID) -> None:
        self.program_id = program_id
        self.program_accounts: list[tuple[Pubkey, bytes]] = []
        self.accounts: dict[Pubkey, bytes] = {}
        self.lamports: dict[Pubkey, int] = {}
        self.blockhash = Hash.new_unique()
        self.last_valid_block_height = 1_000
        self.signature = "5igNaTuRe"
        self.submit_error: Exception | None = None
        self.confirmation = Confirmation(status=ConfirmationStatus.SUCCESS, slot=42)
        self.transaction_status: Confirmation | Exception = Confirmation(
            status=ConfirmationStatus.UNKNOWN, reason="transaction not found"
        )
        self.submitted: list[bytes] = []
        self.confirmed: list[str] = []
        self.batches: list[list[Pubkey]] = []
        self.calls: Counter = Counter()
        self.gate: asyncio.Event | None = None

    def add_pool(
        self,
        mint_a: Pubkey,
        mint_b: Pubkey,
        reserve_a: int | None = 0,
        reserve_b: int | None = 0,
        amm: Pubkey | None = None,
        address: Pubkey | None = None,
    ) -> Pubkey:
        """Register a pool record and its reserve accounts. None = no account."""
        address = address or Pubkey.new_unique()
        amm = amm or Pubkey.new_unique()
        self.program_accounts.append((address, pool_account_data(amm, mint_a, mint_b)))

        authority = derive_pool_authority(self.program_id, amm, mint_a, mint_b)
        if reserve_a is not None:
            self.set_token_balance(authority, mint_a, reserve_a)
        if reserve_b is not None:
            self.set_token_balance(authority, mint_b, reserve_b)
        return address

    def set_token_balance(self, owner: Pubkey, mint: Pubkey, amount: int) -> Pubkey:
        account = derive_associated_token_address(owner, mint)
        self.accounts[account] = token_account_data(mint, owner, amount)
        return account

    async def get_program_accounts(self, program_id, data_size):
        self.calls["get_program_accounts"] += 1
        if program_id != self.program_id:
            return []
        return [(a, d) for a, d in self.program_accounts if len(d) == data_size]

    async def get_multiple_accounts(self, addresses):
        self.calls["get_multiple_accounts"] += 1
        self.batches.append(list(addresses))
        if self.gate is not None:
            await self.gate.wait()
        return [self.accounts.get(address) for address in addresses]

    async def get_balance(self, address):
        self.calls["get_balance"] += 1
        return self.lamports.get(address, 0)

    async def get_latest_blockhash(self):
        self.calls["get_latest_blockhash"] += 1
        return self.blockhash, self.last_valid_block_height

    async def submit_transaction(self, signed_bytes):
        self.calls["submit_transaction"] += 1
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(signed_bytes)
        return self.signature

    async def confirm(self, signature, commitment="confirmed", timeout=30.0, poll_interval=2.0):
        self.calls["confirm"] += 1
        self.confirmed.append(signature)
        return self.confirmation

    async def get_transaction_status(self, signature):
        self.calls["get_transaction_status"] += 1
        if isinstance(self.transaction_status, Exception):
            raise self.transaction_status
        return self.transaction_status


@pytest.fixture
def program_id():
    return PROGRAM_ID


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def bus():
    return RefreshBus()


@pytest.fixture
def holder():
    return Pubkey.new_unique()


@pytest.fixture
def base_token():
    return TokenInfo(name="BOSON", mint=BASE_MINT, decimals=3)


@pytest.fixture
def player_tokens():
    return [
        TokenInfo(name="BenStokes", mint=Pubkey.new_unique(), display_name="Ben Stokes"),
        TokenInfo(name="JoeRoot", mint=Pubkey.new_unique(), display_name="Joe Root"),
    ]


@pytest.fixture
def token_registry(base_token, player_tokens):
    return TokenRegistry(base_token, player_tokens)
