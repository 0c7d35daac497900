"""Fixed-offset binary layouts of the accounts the client reads."""

import struct
from typing import NamedTuple

from solders.pubkey import Pubkey

from ..core.errors import AccountDecodeError

# discriminator (8) + amm (32) + mint_a (32) + mint_b (32)
POOL_RECORD = struct.Struct("<8s32s32s32s")
POOL_ACCOUNT_SIZE = POOL_RECORD.size

# mint (32) + owner (32) + amount (u64 LE); the rest of the account is ignored
TOKEN_ACCOUNT_HEAD = struct.Struct("<32s32sQ")
TOKEN_ACCOUNT_AMOUNT_OFFSET = 64


class PoolRecord(NamedTuple):
    discriminator: bytes
    amm: Pubkey
    mint_a: Pubkey
    mint_b: Pubkey


class TokenAccount(NamedTuple):
    mint: Pubkey
    owner: Pubkey
    amount: int


def decode_pool_record(data: bytes) -> PoolRecord:
    """Decode the identifier fields of a pool account.

    Raises:
        AccountDecodeError: If the buffer is too short or both mints are equal
    """
    if len(data) < POOL_ACCOUNT_SIZE:
        raise AccountDecodeError(
            f"Pool account too short: {len(data)} bytes (expected {POOL_ACCOUNT_SIZE})"
        )

    discriminator, amm, mint_a, mint_b = POOL_RECORD.unpack_from(data, 0)
    if mint_a == mint_b:
        raise AccountDecodeError("Pool account lists the same mint twice")

    return PoolRecord(
        discriminator=discriminator,
        amm=Pubkey.from_bytes(amm),
        mint_a=Pubkey.from_bytes(mint_a),
        mint_b=Pubkey.from_bytes(mint_b),
    )


def decode_token_account(data: bytes) -> TokenAccount:
    """Decode mint, owner and raw amount of an SPL token account.

    Raises:
        AccountDecodeError: If the buffer cannot hold the amount field
    """
    if len(data) < TOKEN_ACCOUNT_HEAD.size:
        raise AccountDecodeError(
            f"Token account too short: {len(data)} bytes "
            f"(expected at least {TOKEN_ACCOUNT_HEAD.size})"
        )

    mint, owner, amount = TOKEN_ACCOUNT_HEAD.unpack_from(data, 0)
    return TokenAccount(
        mint=Pubkey.from_bytes(mint), owner=Pubkey.from_bytes(owner), amount=amount
    )


def token_amount_or_zero(data: bytes | None) -> int:
    """Raw amount of a token account, or 0 when the account does not exist."""
    if data is None:
        return 0
    return decode_token_account(data).amount
