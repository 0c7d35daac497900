"""Tests for the quote engine."""

from decimal import Decimal

import pytest
from solders.pubkey import Pubkey

from ammclient.core.errors import PoolNotFound, PricingOverflow
from ammclient.pools.registry import PoolRegistry
from ammclient.pricing.amm_math import U64_MAX
from ammclient.pricing.quote import QuoteEngine


@pytest.fixture
def engine(gateway, program_id, token_registry):
    return QuoteEngine(PoolRegistry(gateway, program_id), token_registry)


class TestQuoteEngine:
    """Test quoting against live reserves."""

    @pytest.mark.asyncio
    async def test_a_to_b_reference_scenario(self, gateway, engine):
        mint_a, mint_b = Pubkey.new_unique(), Pubkey.new_unique()
        pool_address = gateway.add_pool(mint_a, mint_b, 1_000_000, 500_000)

        quote = await engine.quote(mint_a, mint_b, 10_000)

        assert quote.amount_out == 4950
        assert quote.a_to_b is True
        assert (quote.reserve_in, quote.reserve_out) == (1_000_000, 500_000)
        assert quote.pool_address == pool_address

    @pytest.mark.asyncio
    async def test_b_to_a_uses_swapped_reserves(self, gateway, engine):
        mint_a, mint_b = Pubkey.new_unique(), Pubkey.new_unique()
        gateway.add_pool(mint_a, mint_b, 1_000_000, 500_000)

        quote = await engine.quote(mint_b, mint_a, 10_000)

        assert quote.a_to_b is False
        assert (quote.reserve_in, quote.reserve_out) == (500_000, 1_000_000)
        assert quote.amount_out == 10_000 * 1_000_000 // 510_000

    @pytest.mark.asyncio
    async def test_zero_input_skips_ledger(self, gateway, engine):
        quote = await engine.quote(Pubkey.new_unique(), Pubkey.new_unique(), 0)

        assert quote.is_empty
        assert quote.amount_out == 0
        assert sum(gateway.calls.values()) == 0

    @pytest.mark.asyncio
    async def test_missing_pool(self, gateway, engine):
        gateway.add_pool(Pubkey.new_unique(), Pubkey.new_unique(), 1, 1)

        with pytest.raises(PoolNotFound):
            await engine.quote(Pubkey.new_unique(), Pubkey.new_unique(), 100)

    @pytest.mark.asyncio
    async def test_reserves_read_fresh_every_quote(self, gateway, engine):
        mint_a, mint_b = Pubkey.new_unique(), Pubkey.new_unique()
        gateway.add_pool(mint_a, mint_b, 1_000_000, 500_000)
        first = await engine.quote(mint_a, mint_b, 10_000)

        pool = (await engine.registry.get_pools())[0]
        gateway.set_token_balance(pool.pool_authority, mint_b, 1_000_000)
        second = await engine.quote(mint_a, mint_b, 10_000)

        assert first.amount_out == 4950
        assert second.amount_out == 9900

    @pytest.mark.asyncio
    async def test_overflow_surfaces(self, gateway, engine):
        mint_a, mint_b = Pubkey.new_unique(), Pubkey.new_unique()
        gateway.add_pool(mint_a, mint_b, U64_MAX, 10)

        with pytest.raises(PricingOverflow):
            await engine.quote(mint_a, mint_b, 1)


class TestPairPrice:
    """Test base-token spot prices."""

    @pytest.mark.asyncio
    async def test_price_in_base(self, gateway, engine, token_registry, player_tokens):
        token = player_tokens[0]
        base = token_registry.base
        gateway.add_pool(token.mint, base.mint, 1_000_000, 250_000)

        price = await engine.pair_price(token.mint, base.mint)

        assert price.token_reserve == 1_000_000
        assert price.base_reserve == 250_000
        assert price.price_in_base == Decimal("0.25")
        assert price.token_per_base == Decimal(4)

    @pytest.mark.asyncio
    async def test_price_when_base_is_mint_a(self, gateway, engine, token_registry, player_tokens):
        token = player_tokens[1]
        base = token_registry.base
        gateway.add_pool(base.mint, token.mint, 3_000, 1_000)

        price = await engine.pair_price(token.mint, base.mint)

        assert price.price_in_base == Decimal(3)

    @pytest.mark.asyncio
    async def test_empty_pool_price_is_zero(self, gateway, engine, token_registry, player_tokens):
        token = player_tokens[0]
        gateway.add_pool(token.mint, token_registry.base.mint, reserve_a=None, reserve_b=None)

        price = await engine.pair_price(token.mint, token_registry.base.mint)

        assert price.price_in_base == 0
        assert price.token_per_base == 0
