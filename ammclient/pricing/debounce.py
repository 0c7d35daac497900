"""Debounced, last-writer-wins requoting for high-frequency input."""

import asyncio
from collections.abc import Callable

import structlog
from solders.pubkey import Pubkey

from ..core.errors import AmmClientError
from ..core.types import Quote
from .quote import QuoteEngine

logger = structlog.get_logger(__name__)


class DebouncedQuoter:
    """Coalesces bursts of quote requests into one engine call.

    Every ``request()`` bumps a generation counter and re-arms a timer. Only
    the request still current when the timer fires is sent to the engine, and
    a result is applied only if its generation is still the latest when it
    arrives; late answers to superseded requests are dropped.
    """

    def __init__(
        self,
        engine: QuoteEngine,
        delay_seconds: float = 0.5,
        on_quote: Callable[[Quote], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self.engine = engine
        self.delay_seconds = delay_seconds
        self.on_quote = on_quote
        self.on_error = on_error

        self.latest: Quote | None = None
        self.last_error: Exception | None = None

        self._generation = 0
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._settled = asyncio.Event()
        self._settled.set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending(self) -> bool:
        return not self._settled.is_set()

    def request(self, from_mint: Pubkey, to_mint: Pubkey, amount_in: int) -> int:
        """Schedule a quote; supersedes any request not yet applied.

        Returns:
            The generation number of this request
        """
        self._generation += 1
        generation = self._generation
        self._settled.clear()

        if self._timer is not None:
            self._timer.cancel()

        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(
            self.delay_seconds, self._fire, generation, from_mint, to_mint, amount_in
        )
        return generation

    def cancel(self) -> None:
        """Drop the pending request and ignore any in-flight result."""
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._settled.set()

    async def wait_settled(self) -> Quote | None:
        """Wait until the latest request has been applied and return its quote."""
        await self._settled.wait()
        return self.latest

    def _fire(
        self, generation: int, from_mint: Pubkey, to_mint: Pubkey, amount_in: int
    ) -> None:
        self._timer = None
        if generation != self._generation:
            return
        task = asyncio.ensure_future(
            self._run(generation, from_mint, to_mint, amount_in)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(
        self, generation: int, from_mint: Pubkey, to_mint: Pubkey, amount_in: int
    ) -> None:
        try:
            quote = await self.engine.quote(from_mint, to_mint, amount_in)
        except Exception as e:
            if generation != self._generation:
                logger.debug("Discarding superseded quote error", generation=generation)
                return
            if isinstance(e, AmmClientError):
                logger.warning("Quote failed", amount_in=amount_in, error=str(e))
            else:
                logger.exception("Unexpected quote error", amount_in=amount_in)
            self.latest = None
            self.last_error = e
            self._settled.set()
            if self.on_error is not None:
                self.on_error(e)
            return

        if generation != self._generation:
            logger.debug("Discarding superseded quote", generation=generation)
            return

        self.latest = quote
        self.last_error = None
        self._settled.set()
        if self.on_quote is not None:
            self.on_quote(quote)
