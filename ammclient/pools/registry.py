"""Pool discovery and lookup over the AMM program's accounts."""

import time
from collections.abc import Callable, Iterable
from enum import Enum

import structlog
from solders.pubkey import Pubkey

from ..core.errors import AccountDecodeError, PoolNotFound
from ..core.interfaces import LedgerGateway
from ..core.types import Pool, ReservePair, TradingPair
from ..ledger.addresses import derive_associated_token_address, derive_pool_authority
from ..ledger.layouts import POOL_ACCOUNT_SIZE, decode_pool_record, token_amount_or_zero
from ..tokens.registry import TokenRegistry

logger = structlog.get_logger(__name__)


class PoolSelection(str, Enum):
    """Tie-break when more than one pool holds the same pair."""

    FIRST_FOUND = "first_found"
    HIGHEST_LIQUIDITY = "highest_liquidity"


def decode_pool(program_id: Pubkey, address: Pubkey, data: bytes) -> Pool:
    """Decode a pool account and derive its authority and reserve accounts.

    Raises:
        AccountDecodeError: If the account bytes are not a valid pool record
    """
    record = decode_pool_record(data)
    authority = derive_pool_authority(
        program_id, record.amm, record.mint_a, record.mint_b
    )
    return Pool(
        address=address,
        amm=record.amm,
        mint_a=record.mint_a,
        mint_b=record.mint_b,
        pool_authority=authority,
        reserve_account_a=derive_associated_token_address(authority, record.mint_a),
        reserve_account_b=derive_associated_token_address(authority, record.mint_b),
    )


def find_pools(pools: Iterable[Pool], mint_x: Pubkey, mint_y: Pubkey) -> list[Pool]:
    """All pools whose mint set equals ``{mint_x, mint_y}``, in discovery order."""
    wanted = frozenset((mint_x, mint_y))
    return [pool for pool in pools if pool.mints == wanted]


def find_pool(pools: Iterable[Pool], mint_x: Pubkey, mint_y: Pubkey) -> Pool | None:
    """First discovered pool holding the unordered pair ``{mint_x, mint_y}``."""
    matches = find_pools(pools, mint_x, mint_y)
    return matches[0] if matches else None


def find_pools_by_base_token(pools: Iterable[Pool], base_mint: Pubkey) -> list[Pool]:
    """Pools that include the base settlement token."""
    return [pool for pool in pools if pool.holds(base_mint)]


def list_pairs(pools: Iterable[Pool], tokens: TokenRegistry) -> list[TradingPair]:
    """Tradable universe: base-token pools whose other mint is a known token.

    One pair per token; when a token has several base pools the first
    discovered one is listed.
    """
    pairs: list[TradingPair] = []
    seen: set[Pubkey] = set()
    for pool in find_pools_by_base_token(pools, tokens.base.mint):
        other = pool.other_mint(tokens.base.mint)
        token = tokens.by_mint(other)
        if token is None or other in seen:
            continue
        seen.add(other)
        pairs.append(TradingPair(token=token, base=tokens.base, pool=pool))
    return pairs


class PoolRegistry:
    """Discovers pools and resolves token pairs to pools."""

    def __init__(
        self,
        gateway: LedgerGateway,
        program_id: Pubkey,
        pool_account_size: int = POOL_ACCOUNT_SIZE,
        selection: PoolSelection = PoolSelection.FIRST_FOUND,
        cache_ttl_seconds: float = 0.0,
        now_fn: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the pool registry.

        Args:
            gateway: Ledger gateway
            program_id: AMM program owning the pool records
            pool_account_size: Exact byte size of pool records
            selection: Tie-break strategy for pairs served by several pools
            cache_ttl_seconds: How long a discovery snapshot may be reused
                (0 rescans on every lookup)
            now_fn: Optional function to get current timestamp (for testing)
        """
        self.gateway = gateway
        self.program_id = program_id
        self.pool_account_size = pool_account_size
        self.selection = PoolSelection(selection)
        self.cache_ttl_seconds = cache_ttl_seconds
        self._now_fn = now_fn or time.monotonic
        self._snapshot: list[Pool] | None = None
        self._snapshot_at = 0.0

    async def discover_pools(self) -> list[Pool]:
        """Scan the program for pool records and decode them.

        Malformed accounts are logged and skipped so that one bad record
        cannot empty the tradable universe.
        """
        accounts = await self.gateway.get_program_accounts(
            self.program_id, self.pool_account_size
        )

        pools: list[Pool] = []
        for address, data in accounts:
            try:
                pools.append(decode_pool(self.program_id, address, data))
            except (AccountDecodeError, ValueError) as e:
                logger.warning(
                    "Failed to parse pool account", address=str(address), error=str(e)
                )

        logger.info(
            "Pools discovered",
            program_id=str(self.program_id),
            accounts=len(accounts),
            pools=len(pools),
        )
        return pools

    async def get_pools(self, force: bool = False) -> list[Pool]:
        """Return a discovery snapshot no older than the configured TTL."""
        now = self._now_fn()
        fresh = (
            self._snapshot is not None
            and self.cache_ttl_seconds > 0
            and now - self._snapshot_at < self.cache_ttl_seconds
        )
        if fresh and not force:
            return list(self._snapshot)

        pools = await self.discover_pools()
        self._snapshot = pools
        self._snapshot_at = now
        return list(pools)

    def invalidate(self) -> None:
        self._snapshot = None

    async def resolve(
        self, mint_x: Pubkey, mint_y: Pubkey, pools: list[Pool] | None = None
    ) -> Pool:
        """Resolve an unordered token pair to a single pool.

        Raises:
            PoolNotFound: If no discovered pool holds the pair
        """
        if pools is None:
            pools = await self.get_pools()

        candidates = find_pools(pools, mint_x, mint_y)
        if not candidates:
            raise PoolNotFound(mint_x, mint_y)

        if len(candidates) > 1:
            logger.warning(
                "Multiple pools for token pair",
                mint_x=str(mint_x),
                mint_y=str(mint_y),
                pools=[str(pool.address) for pool in candidates],
                selection=self.selection.value,
            )
            if self.selection is PoolSelection.HIGHEST_LIQUIDITY:
                reserves = await self.read_reserves_many(candidates)
                best = max(
                    range(len(candidates)), key=lambda i: reserves[i].product
                )
                return candidates[best]

        return candidates[0]

    async def read_reserves(self, pool: Pool) -> ReservePair:
        """Read both reserve balances of ``pool`` in one batched call."""
        return (await self.read_reserves_many([pool]))[0]

    async def read_reserves_many(self, pools: list[Pool]) -> list[ReservePair]:
        """Read reserves of several pools in one batched call.

        A reserve account that does not exist counts as an empty reserve.
        """
        addresses: list[Pubkey] = []
        for pool in pools:
            addresses.extend((pool.reserve_account_a, pool.reserve_account_b))

        accounts = await self.gateway.get_multiple_accounts(addresses)
        read_at = time.time()

        return [
            ReservePair(
                reserve_a=token_amount_or_zero(accounts[2 * i]),
                reserve_b=token_amount_or_zero(accounts[2 * i + 1]),
                read_at=read_at,
            )
            for i in range(len(pools))
        ]
