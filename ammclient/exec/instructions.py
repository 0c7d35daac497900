"""Instruction builders for the AMM swap program and the ATA program."""

import struct
from typing import NamedTuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ..core.types import Pool
from ..ledger.addresses import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    derive_associated_token_address,
)
from ..pricing.amm_math import U64_MAX

SWAP_DISCRIMINATOR = bytes([249, 86, 253, 50, 177, 221, 73, 162])

# direction flag (u8) + amount in (u64 LE) + min amount out (u64 LE)
SWAP_ARGS = struct.Struct("<BQQ")

# Associated token program instruction tags
ATA_CREATE = b""
ATA_CREATE_IDEMPOTENT = b"\x01"


class SwapAccounts(NamedTuple):
    """Accounts of the swap instruction, in program order."""

    amm: Pubkey
    pool: Pubkey
    pool_authority: Pubkey
    trader: Pubkey
    mint_a: Pubkey
    mint_b: Pubkey
    pool_account_a: Pubkey
    pool_account_b: Pubkey
    trader_account_a: Pubkey
    trader_account_b: Pubkey

    @classmethod
    def for_pool(cls, pool: Pool, trader: Pubkey) -> "SwapAccounts":
        return cls(
            amm=pool.amm,
            pool=pool.address,
            pool_authority=pool.pool_authority,
            trader=trader,
            mint_a=pool.mint_a,
            mint_b=pool.mint_b,
            pool_account_a=pool.reserve_account_a,
            pool_account_b=pool.reserve_account_b,
            trader_account_a=derive_associated_token_address(trader, pool.mint_a),
            trader_account_b=derive_associated_token_address(trader, pool.mint_b),
        )


def encode_swap_data(a_to_b: bool, amount_in: int, min_amount_out: int) -> bytes:
    """Serialize swap arguments after the method discriminator.

    Raises:
        ValueError: If an amount does not fit in a u64
    """
    for name, value in (("amount_in", amount_in), ("min_amount_out", min_amount_out)):
        if not 0 <= value <= U64_MAX:
            raise ValueError(f"{name}={value} does not fit in u64")
    return SWAP_DISCRIMINATOR + SWAP_ARGS.pack(int(a_to_b), amount_in, min_amount_out)


def build_swap_instruction(
    program_id: Pubkey,
    accounts: SwapAccounts,
    a_to_b: bool,
    amount_in: int,
    min_amount_out: int,
) -> Instruction:
    """Build the swap instruction. The account order is fixed by the program."""
    account_metas = [
        AccountMeta(pubkey=accounts.amm, is_signer=False, is_writable=False),
        AccountMeta(pubkey=accounts.pool, is_signer=False, is_writable=False),
        AccountMeta(pubkey=accounts.pool_authority, is_signer=False, is_writable=False),
        AccountMeta(pubkey=accounts.trader, is_signer=True, is_writable=False),
        AccountMeta(pubkey=accounts.mint_a, is_signer=False, is_writable=False),
        AccountMeta(pubkey=accounts.mint_b, is_signer=False, is_writable=False),
        AccountMeta(pubkey=accounts.pool_account_a, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.pool_account_b, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.trader_account_a, is_signer=False, is_writable=True),
        AccountMeta(pubkey=accounts.trader_account_b, is_signer=False, is_writable=True),
        # payer for any account the program initializes
        AccountMeta(pubkey=accounts.trader, is_signer=True, is_writable=True),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(
            pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False
        ),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]

    return Instruction(
        program_id=program_id,
        accounts=account_metas,
        data=encode_swap_data(a_to_b, amount_in, min_amount_out),
    )


def build_create_associated_token_account_instruction(
    payer: Pubkey, owner: Pubkey, mint: Pubkey, idempotent: bool = True
) -> Instruction:
    """Create ``owner``'s associated token account for ``mint``, paid by ``payer``."""
    return Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        accounts=[
            AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
            AccountMeta(
                pubkey=derive_associated_token_address(owner, mint),
                is_signer=False,
                is_writable=True,
            ),
            AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
        data=ATA_CREATE_IDEMPOTENT if idempotent else ATA_CREATE,
    )
