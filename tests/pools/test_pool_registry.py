"""Tests for pool discovery and pair resolution."""

import pytest
from solders.pubkey import Pubkey

from ammclient.core.errors import PoolNotFound
from ammclient.core.types import TokenInfo
from ammclient.ledger.addresses import derive_associated_token_address, derive_pool_authority
from ammclient.pools.registry import (
    PoolRegistry,
    PoolSelection,
    decode_pool,
    find_pool,
    find_pools_by_base_token,
    list_pairs,
)
from ammclient.tokens.registry import TokenRegistry


@pytest.fixture
def registry(gateway, program_id):
    return PoolRegistry(gateway, program_id)


class TestDecodePool:
    """Test pool decoding with derived accounts."""

    def test_derives_authority_and_reserves(self, program_id):
        amm, mint_a, mint_b = Pubkey.new_unique(), Pubkey.new_unique(), Pubkey.new_unique()
        address = Pubkey.new_unique()
        data = bytes(8) + bytes(amm) + bytes(mint_a) + bytes(mint_b)

        pool = decode_pool(program_id, address, data)

        authority = derive_pool_authority(program_id, amm, mint_a, mint_b)
        assert pool.address == address
        assert pool.pool_authority == authority
        assert pool.reserve_account_a == derive_associated_token_address(authority, mint_a)
        assert pool.reserve_account_b == derive_associated_token_address(authority, mint_b)


class TestPoolLookups:
    """Test the pure lookup helpers."""

    @pytest.mark.asyncio
    async def test_find_pool_is_order_independent(self, gateway, registry):
        x, y = Pubkey.new_unique(), Pubkey.new_unique()
        gateway.add_pool(x, y)
        pools = await registry.discover_pools()

        assert find_pool(pools, x, y) is pools[0]
        assert find_pool(pools, y, x) is pools[0]
        assert find_pool(pools, x, Pubkey.new_unique()) is None

    @pytest.mark.asyncio
    async def test_find_pools_by_base_token(self, gateway, registry, base_token):
        with_base = gateway.add_pool(base_token.mint, Pubkey.new_unique())
        gateway.add_pool(Pubkey.new_unique(), Pubkey.new_unique())
        pools = await registry.discover_pools()

        matches = find_pools_by_base_token(pools, base_token.mint)

        assert [pool.address for pool in matches] == [with_base]

    @pytest.mark.asyncio
    async def test_list_pairs_only_known_tokens(self, gateway, registry, token_registry, player_tokens):
        stokes, root = player_tokens
        gateway.add_pool(stokes.mint, token_registry.base.mint)
        gateway.add_pool(token_registry.base.mint, root.mint)
        gateway.add_pool(token_registry.base.mint, Pubkey.new_unique())
        gateway.add_pool(stokes.mint, root.mint)
        pools = await registry.discover_pools()

        pairs = list_pairs(pools, token_registry)

        assert [pair.token.name for pair in pairs] == ["BenStokes", "JoeRoot"]
        assert all(pair.base == token_registry.base for pair in pairs)

    @pytest.mark.asyncio
    async def test_list_pairs_first_pool_per_token(self, gateway, registry, base_token):
        token = TokenInfo(name="ViratKohli", mint=Pubkey.new_unique())
        first = gateway.add_pool(token.mint, base_token.mint)
        gateway.add_pool(base_token.mint, token.mint)
        pools = await registry.discover_pools()

        pairs = list_pairs(pools, TokenRegistry(base_token, [token]))

        assert len(pairs) == 1
        assert pairs[0].pool.address == first


class TestPoolRegistry:
    """Test discovery, caching and resolution."""

    @pytest.mark.asyncio
    async def test_discovery_empty_program(self, registry):
        assert await registry.discover_pools() == []

    @pytest.mark.asyncio
    async def test_malformed_pool_skipped(self, gateway, registry):
        mint = Pubkey.new_unique()
        gateway.program_accounts.append(
            (Pubkey.new_unique(), bytes(8) + bytes(Pubkey.new_unique()) + bytes(mint) + bytes(mint))
        )
        good = gateway.add_pool(Pubkey.new_unique(), Pubkey.new_unique())

        pools = await registry.discover_pools()

        assert [pool.address for pool in pools] == [good]

    @pytest.mark.asyncio
    async def test_resolve_missing_pair(self, gateway, registry):
        x, y = Pubkey.new_unique(), Pubkey.new_unique()
        gateway.add_pool(x, Pubkey.new_unique())

        with pytest.raises(PoolNotFound) as exc_info:
            await registry.resolve(x, y)
        assert exc_info.value.mint_x == x
        assert exc_info.value.mint_y == y

    @pytest.mark.asyncio
    async def test_resolve_first_found_on_duplicates(self, gateway, registry):
        x, y = Pubkey.new_unique(), Pubkey.new_unique()
        first = gateway.add_pool(x, y, 10, 10)
        gateway.add_pool(y, x, 1_000, 1_000)

        pool = await registry.resolve(y, x)

        assert pool.address == first

    @pytest.mark.asyncio
    async def test_resolve_highest_liquidity_on_duplicates(self, gateway, program_id):
        registry = PoolRegistry(gateway, program_id, selection=PoolSelection.HIGHEST_LIQUIDITY)
        x, y = Pubkey.new_unique(), Pubkey.new_unique()
        gateway.add_pool(x, y, 10, 10)
        deep = gateway.add_pool(y, x, 1_000, 1_000)

        pool = await registry.resolve(x, y)

        assert pool.address == deep

    @pytest.mark.asyncio
    async def test_snapshot_ttl(self, gateway, program_id):
        clock = [100.0]
        registry = PoolRegistry(
            gateway, program_id, cache_ttl_seconds=30, now_fn=lambda: clock[0]
        )
        gateway.add_pool(Pubkey.new_unique(), Pubkey.new_unique())

        await registry.get_pools()
        await registry.get_pools()
        assert gateway.calls["get_program_accounts"] == 1

        clock[0] += 31
        await registry.get_pools()
        assert gateway.calls["get_program_accounts"] == 2

        registry.invalidate()
        await registry.get_pools()
        assert gateway.calls["get_program_accounts"] == 3

    @pytest.mark.asyncio
    async def test_no_ttl_rescans_every_time(self, gateway, registry):
        await registry.get_pools()
        await registry.get_pools()
        assert gateway.calls["get_program_accounts"] == 2

    @pytest.mark.asyncio
    async def test_read_reserves(self, gateway, registry):
        x, y = Pubkey.new_unique(), Pubkey.new_unique()
        gateway.add_pool(x, y, 1_000, 50_000)
        pool = await registry.resolve(x, y)

        reserves = await registry.read_reserves(pool)

        assert (reserves.reserve_a, reserves.reserve_b) == (1_000, 50_000)
        assert gateway.batches[-1] == [pool.reserve_account_a, pool.reserve_account_b]

    @pytest.mark.asyncio
    async def test_missing_reserve_account_is_zero(self, gateway, registry):
        x, y = Pubkey.new_unique(), Pubkey.new_unique()
        gateway.add_pool(x, y, reserve_a=None, reserve_b=500)
        pool = await registry.resolve(x, y)

        reserves = await registry.read_reserves(pool)

        assert reserves.oriented(True) == (0, 500)

    @pytest.mark.asyncio
    async def test_read_reserves_many_single_batch(self, gateway, registry):
        gateway.add_pool(Pubkey.new_unique(), Pubkey.new_unique(), 1, 2)
        gateway.add_pool(Pubkey.new_unique(), Pubkey.new_unique(), 3, 4)
        pools = await registry.get_pools()

        reserves = await registry.read_reserves_many(pools)

        assert [(r.reserve_a, r.reserve_b) for r in reserves] == [(1, 2), (3, 4)]
        assert gateway.calls["get_multiple_accounts"] == 1
