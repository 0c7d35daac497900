"""Per-holder token balance cache refreshed by polling and refresh signals."""

import asyncio
import contextlib
from collections.abc import Callable, Iterable

import structlog
from solders.pubkey import Pubkey

from ..core.errors import AmmClientError
from ..core.interfaces import LedgerGateway
from ..core.types import BalanceEntry, TokenInfo
from ..events.refresh_bus import RefreshBus
from ..ledger.addresses import derive_associated_token_address
from ..ledger.layouts import token_amount_or_zero
from ..tokens.registry import TokenRegistry

logger = structlog.get_logger(__name__)

BalanceMap = dict[str, BalanceEntry]


class BalanceTracker:
    """Keeps the latest balance map of each tracked holder.

    A holder's map is replaced as a whole on every refresh, so a token that
    drops out of the tracked set never leaves a stale entry behind. At most
    one batched read per holder is in flight at any time.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        tokens: TokenRegistry,
        bus: RefreshBus | None = None,
        poll_interval_seconds: float = 30.0,
    ) -> None:
        """Initialize the balance tracker.

        Args:
            gateway: Ledger gateway
            tokens: Token registry; its base token is always included
            bus: Refresh bus to subscribe to on ``start()``
            poll_interval_seconds: Delay between timer-driven refreshes
        """
        self.gateway = gateway
        self.tokens = tokens
        self.bus = bus
        self.poll_interval_seconds = poll_interval_seconds

        self._tracked: dict[Pubkey, list[TokenInfo]] = {}
        self._cache: dict[Pubkey, BalanceMap] = {}
        self._inflight: dict[Pubkey, tuple[asyncio.Task, frozenset[Pubkey]]] = {}
        self._background: set[asyncio.Task] = set()
        self._poll_task: asyncio.Task | None = None
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def track(self, holder: Pubkey, tokens: Iterable[TokenInfo] | None = None) -> None:
        """Include ``holder`` in timer and bus driven refreshes.

        Args:
            holder: Wallet address
            tokens: Tokens to track (defaults to every registered token)
        """
        self._tracked[holder] = self._with_base(
            self.tokens.tokens() if tokens is None else tokens
        )
        logger.info(
            "Tracking holder balances",
            holder=str(holder),
            tokens=[token.key for token in self._tracked[holder]],
        )

    def untrack(self, holder: Pubkey) -> None:
        self._tracked.pop(holder, None)
        self._cache.pop(holder, None)
        # a read still in flight finishes but no longer updates the cache
        self._inflight.pop(holder, None)

    def get_cached(self, holder: Pubkey) -> BalanceMap | None:
        """Last refreshed map for ``holder``, or None before the first refresh."""
        balances = self._cache.get(holder)
        return dict(balances) if balances is not None else None

    async def refresh(
        self, holder: Pubkey, tokens: Iterable[TokenInfo] | None = None
    ) -> BalanceMap:
        """Read balances of ``holder`` and replace its cached map.

        A call made while a refresh of the same holder and token set is in
        flight joins that refresh instead of issuing another read. If the
        in-flight refresh reads a different token set, this call waits for it
        to finish and then reads its own set.

        Args:
            holder: Wallet address
            tokens: Tokens to read (defaults to the tracked set, or every
                registered token for an untracked holder)

        Returns:
            Map of lower-cased token name to balance entry, base token included

        Raises:
            GatewayUnavailable: If the ledger cannot be reached
        """
        if tokens is None:
            selected = self._tracked.get(holder) or self._with_base(self.tokens.tokens())
        else:
            selected = self._with_base(tokens)
        mints = frozenset(token.mint for token in selected)

        while holder in self._inflight:
            existing, existing_mints = self._inflight[holder]
            if existing_mints == mints:
                logger.debug("Balance refresh in flight, joining", holder=str(holder))
                return dict(await asyncio.shield(existing))
            logger.debug(
                "Balance refresh in flight for other tokens, waiting",
                holder=str(holder),
            )
            await asyncio.wait({existing})

        task = asyncio.ensure_future(self._read_balances(holder, selected))
        self._inflight[holder] = (task, mints)

        def _done(finished: asyncio.Task) -> None:
            entry = self._inflight.get(holder)
            if entry is not None and entry[0] is finished:
                del self._inflight[holder]

        task.add_done_callback(_done)
        return dict(await asyncio.shield(task))

    async def _read_balances(
        self, holder: Pubkey, tokens: list[TokenInfo]
    ) -> BalanceMap:
        addresses = [
            derive_associated_token_address(holder, token.mint) for token in tokens
        ]
        accounts = await self.gateway.get_multiple_accounts(addresses)

        balances: BalanceMap = {}
        for token, data in zip(tokens, accounts):
            balances[token.key] = BalanceEntry(
                name=token.name,
                mint=token.mint,
                raw_amount=token_amount_or_zero(data),
                decimals=token.decimals,
            )

        entry = self._inflight.get(holder)
        if entry is not None and entry[0] is asyncio.current_task():
            self._cache[holder] = balances
        logger.debug(
            "Balances refreshed",
            holder=str(holder),
            tokens=len(balances),
            missing=sum(1 for data in accounts if data is None),
        )
        return balances

    def request_refresh(self) -> None:
        """Schedule a refresh of every tracked holder.

        Holders whose refresh is already in flight are skipped. This is the
        refresh bus callback and must be called from the event loop thread.
        """
        for holder in list(self._tracked):
            if holder in self._inflight:
                logger.debug("Skipping overlapping balance refresh", holder=str(holder))
                continue
            task = asyncio.ensure_future(self._refresh_logged(holder))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _refresh_logged(self, holder: Pubkey) -> None:
        try:
            await self.refresh(holder)
        except AmmClientError as e:
            logger.warning(
                "Balance refresh failed",
                holder=str(holder),
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_seconds)
            self.request_refresh()

    def start(self) -> None:
        """Subscribe to the refresh bus and start the polling loop."""
        if self.running:
            return
        if self.bus is not None and self._unsubscribe is None:
            self._unsubscribe = self.bus.subscribe(self.request_refresh)
        self._poll_task = asyncio.ensure_future(self._poll_loop())
        self.request_refresh()
        logger.info(
            "Balance tracker started",
            holders=len(self._tracked),
            poll_interval_seconds=self.poll_interval_seconds,
        )

    async def stop(self) -> None:
        """Stop polling, unsubscribe and cancel scheduled refreshes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        tasks = list(self._background)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
            self._poll_task = None

        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        logger.info("Balance tracker stopped")

    def _with_base(self, tokens: Iterable[TokenInfo]) -> list[TokenInfo]:
        selected = [self.tokens.base]
        seen = {self.tokens.base.mint}
        for token in tokens:
            if token.mint not in seen:
                seen.add(token.mint)
                selected.append(token)
        return selected
