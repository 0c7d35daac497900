"""Well-known program addresses and deterministic address derivation."""

from typing import Final

from solders.pubkey import Pubkey

SYSTEM_PROGRAM_ID: Final[Pubkey] = Pubkey.from_string(
    "11111111111111111111111111111111"
)
TOKEN_PROGRAM_ID: Final[Pubkey] = Pubkey.from_string(
    "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
)
ASSOCIATED_TOKEN_PROGRAM_ID: Final[Pubkey] = Pubkey.from_string(
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
)

POOL_AUTHORITY_SEED: Final[bytes] = b"authority"


def derive_pool_authority(
    program_id: Pubkey, amm: Pubkey, mint_a: Pubkey, mint_b: Pubkey
) -> Pubkey:
    """Derive the pool authority PDA from ``[amm, mint_a, mint_b, "authority"]``."""
    authority, _bump = Pubkey.find_program_address(
        [bytes(amm), bytes(mint_a), bytes(mint_b), POOL_AUTHORITY_SEED], program_id
    )
    return authority


def derive_associated_token_address(
    owner: Pubkey, mint: Pubkey, token_program_id: Pubkey = TOKEN_PROGRAM_ID
) -> Pubkey:
    """Derive the associated token account of ``owner`` for ``mint``.

    Works for off-curve owners (PDAs) as well, which is how pool reserve
    accounts are addressed.
    """
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program_id), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address
