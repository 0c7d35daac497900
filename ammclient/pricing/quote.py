"""Constant-product quote engine backed by live reserve reads."""

import structlog
from solders.pubkey import Pubkey

from ..core.types import PairPrice, Quote
from ..pools.registry import PoolRegistry
from ..tokens.registry import TokenRegistry
from .amm_math import constant_product_out, spot_price

logger = structlog.get_logger(__name__)


class QuoteEngine:
    """Computes swap quotes from freshly read pool reserves.

    Quotes do not subtract any protocol fee, so they are an upper bound on
    what the program will pay out when it charges one.
    """

    def __init__(
        self, registry: PoolRegistry, tokens: TokenRegistry | None = None
    ) -> None:
        self.registry = registry
        self.tokens = tokens

    async def quote(self, from_mint: Pubkey, to_mint: Pubkey, amount_in: int) -> Quote:
        """Quote swapping ``amount_in`` raw units of ``from_mint`` into ``to_mint``.

        Raises:
            PoolNotFound: If no pool holds the pair
            PricingOverflow: If the reserves push the math past u64
            GatewayUnavailable: If the ledger cannot be reached
        """
        if amount_in <= 0:
            return Quote.empty(from_mint, to_mint)

        pool = await self.registry.resolve(from_mint, to_mint)
        reserves = await self.registry.read_reserves(pool)

        a_to_b = pool.is_a_to_b(from_mint)
        reserve_in, reserve_out = reserves.oriented(a_to_b)
        amount_out = constant_product_out(amount_in, reserve_in, reserve_out)

        logger.debug(
            "Quote computed",
            pool=str(pool.address),
            a_to_b=a_to_b,
            amount_in=amount_in,
            amount_out=amount_out,
            reserve_in=reserve_in,
            reserve_out=reserve_out,
        )

        return Quote(
            from_mint=from_mint,
            to_mint=to_mint,
            amount_in=amount_in,
            amount_out=amount_out,
            reserve_in=reserve_in,
            reserve_out=reserve_out,
            pool_address=pool.address,
            a_to_b=a_to_b,
        )

    async def pair_price(self, token_mint: Pubkey, base_mint: Pubkey) -> PairPrice:
        """Spot price of ``token_mint`` in ``base_mint`` units from live reserves."""
        pool = await self.registry.resolve(token_mint, base_mint)
        reserves = await self.registry.read_reserves(pool)

        base_reserve, token_reserve = reserves.oriented(pool.is_a_to_b(base_mint))
        base_decimals = self._decimals(base_mint)
        token_decimals = self._decimals(token_mint)

        return PairPrice(
            token_mint=token_mint,
            base_mint=base_mint,
            pool_address=pool.address,
            token_reserve=token_reserve,
            base_reserve=base_reserve,
            price_in_base=spot_price(
                base_reserve, token_reserve, base_decimals, token_decimals
            ),
            token_per_base=spot_price(
                token_reserve, base_reserve, token_decimals, base_decimals
            ),
            read_at=reserves.read_at,
        )

    def _decimals(self, mint: Pubkey) -> int:
        if self.tokens is None:
            return 0
        return self.tokens.decimals_for(mint)
