"""Known tokens, the base settlement token, and raw/UI amount conversion."""

from collections.abc import Iterable
from decimal import ROUND_DOWN, Decimal

import structlog
from solders.pubkey import Pubkey

from ..core.types import TokenInfo

logger = structlog.get_logger(__name__)


def to_ui_amount(raw_amount: int, decimals: int) -> Decimal:
    """Convert a raw (smallest-unit) amount into a human-readable decimal."""
    return Decimal(raw_amount).scaleb(-decimals)


def to_raw_amount(ui_amount: Decimal | str | int, decimals: int) -> int:
    """Convert a human-readable amount into raw units, rounding down.

    Raises:
        ValueError: If the amount is negative or not a number
    """
    value = Decimal(str(ui_amount))
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid token amount: {ui_amount}")
    return int(value.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


class TokenRegistry:
    """Lookup of tokens by name and mint, with a distinguished base token."""

    def __init__(self, base: TokenInfo, tokens: Iterable[TokenInfo] = ()) -> None:
        self.base = base
        self._by_key: dict[str, TokenInfo] = {}
        self._by_mint: dict[Pubkey, TokenInfo] = {}
        self._add(base)
        for token in tokens:
            self._add(token)

    def _add(self, token: TokenInfo) -> None:
        existing = self._by_mint.get(token.mint)
        if existing is not None and existing.key != token.key:
            raise ValueError(
                f"Mint {token.mint} registered twice ({existing.name}, {token.name})"
            )
        if token.key in self._by_key and self._by_key[token.key].mint != token.mint:
            raise ValueError(f"Token name {token.name} registered twice")
        self._by_key[token.key] = token
        self._by_mint[token.mint] = token

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, mint: Pubkey) -> bool:
        return mint in self._by_mint

    def tokens(self, include_base: bool = False) -> list[TokenInfo]:
        """All registered tokens, optionally including the base token."""
        return [
            token
            for token in self._by_key.values()
            if include_base or token.mint != self.base.mint
        ]

    def by_name(self, name: str) -> TokenInfo:
        try:
            return self._by_key[name.lower()]
        except KeyError:
            raise KeyError(f"Unknown token: {name}") from None

    def by_mint(self, mint: Pubkey) -> TokenInfo | None:
        return self._by_mint.get(mint)

    def decimals_for(self, mint: Pubkey, default: int = 0) -> int:
        token = self._by_mint.get(mint)
        return token.decimals if token is not None else default
