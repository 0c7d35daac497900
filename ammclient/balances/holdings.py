"""Valuation of a holder's token balances in base-token units."""

from collections.abc import Iterable

import structlog
from solders.pubkey import Pubkey

from ..core.errors import PoolNotFound
from ..core.types import Holding, Pool, TokenInfo
from ..pools.registry import PoolRegistry
from ..pricing.amm_math import spot_price
from ..tokens.registry import TokenRegistry, to_ui_amount
from .tracker import BalanceTracker

logger = structlog.get_logger(__name__)


class HoldingsValuator:
    """Values non-zero token balances at the spot price of their base pool."""

    def __init__(
        self, registry: PoolRegistry, tracker: BalanceTracker, tokens: TokenRegistry
    ) -> None:
        self.registry = registry
        self.tracker = tracker
        self.tokens = tokens

    async def holdings(
        self, holder: Pubkey, tokens: Iterable[TokenInfo] | None = None
    ) -> list[Holding]:
        """Refresh ``holder``'s balances and value every non-zero token position.

        Tokens without a base-token pool are logged and left out. The base
        token itself is never listed.

        Raises:
            GatewayUnavailable: If the ledger cannot be reached
        """
        balances = await self.tracker.refresh(holder, tokens)
        base = self.tokens.base

        held: list[tuple[TokenInfo, int]] = []
        for entry in balances.values():
            if entry.mint == base.mint or entry.raw_amount == 0:
                continue
            token = self.tokens.by_mint(entry.mint) or TokenInfo(
                name=entry.name, mint=entry.mint, decimals=entry.decimals
            )
            held.append((token, entry.raw_amount))

        if not held:
            return []

        pools = await self.registry.get_pools()
        priced: list[tuple[TokenInfo, int, Pool]] = []
        for token, raw_amount in held:
            try:
                pool = await self.registry.resolve(token.mint, base.mint, pools)
            except PoolNotFound:
                logger.warning("No base pool for held token", token=token.name)
                continue
            priced.append((token, raw_amount, pool))

        if not priced:
            return []

        reserves = await self.registry.read_reserves_many(
            [pool for _, _, pool in priced]
        )

        holdings: list[Holding] = []
        for (token, raw_amount, pool), pair in zip(priced, reserves):
            base_reserve, token_reserve = pair.oriented(pool.is_a_to_b(base.mint))
            price = spot_price(base_reserve, token_reserve, base.decimals, token.decimals)
            balance = to_ui_amount(raw_amount, token.decimals)
            holdings.append(
                Holding(
                    token=token,
                    balance=balance,
                    price_in_base=price,
                    value_in_base=balance * price,
                )
            )

        logger.debug("Holdings valued", holder=str(holder), positions=len(holdings))
        return holdings
