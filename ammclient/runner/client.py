"""Holder-facing AMM client assembled from settings."""

from collections.abc import Callable, Iterable
from decimal import Decimal

import httpx
import structlog
from solders.pubkey import Pubkey

from ..balances.holdings import HoldingsValuator
from ..balances.tracker import BalanceMap, BalanceTracker
from ..config.settings import AppSettings
from ..core.interfaces import LedgerGateway, TxnSigner
from ..core.types import (
    Holding,
    PairPrice,
    Quote,
    SwapIntent,
    SwapOutcome,
    TokenInfo,
    TradingPair,
)
from ..events.refresh_bus import RefreshBus
from ..exec.signers import ExternalSigner
from ..exec.swap import SwapExecutor
from ..ledger.gateway import RpcGateway
from ..pools.registry import PoolRegistry, PoolSelection, list_pairs
from ..pricing.debounce import DebouncedQuoter
from ..pricing.quote import QuoteEngine
from ..tokens.registry import TokenRegistry

logger = structlog.get_logger(__name__)


def build_token_registry(settings: AppSettings) -> TokenRegistry:
    """Create the token registry from configured tokens and the base token."""
    base = TokenInfo(
        name=settings.base_token_name,
        mint=Pubkey.from_string(settings.base_mint),
        decimals=settings.token_decimals,
    )
    tokens = [
        TokenInfo(
            name=token.name,
            mint=Pubkey.from_string(token.mint),
            decimals=(
                token.decimals if token.decimals is not None else settings.token_decimals
            ),
            display_name=token.display_name,
        )
        for token in settings.tokens
    ]
    return TokenRegistry(base, tokens)


class AmmClient:
    """Composition root owning one gateway, registry, bus and tracker."""

    def __init__(
        self,
        gateway: LedgerGateway,
        program_id: Pubkey,
        tokens: TokenRegistry,
        signer: TxnSigner | None = None,
        pool_account_size: int = 104,
        pool_selection: PoolSelection = PoolSelection.FIRST_FOUND,
        pool_cache_ttl_seconds: float = 0.0,
        max_slippage_bps: int = 200,
        min_fee_reserve_lamports: int = 5_000_000,
        commitment: str = "confirmed",
        confirm_timeout_seconds: float = 30.0,
        confirm_poll_interval_seconds: float = 2.0,
        confirm_fallback_delay_seconds: float = 3.0,
        quote_debounce_seconds: float = 0.5,
        balance_poll_interval_seconds: float = 30.0,
    ) -> None:
        self.gateway = gateway
        self.program_id = program_id
        self.tokens = tokens
        self.quote_debounce_seconds = quote_debounce_seconds

        self.bus = RefreshBus()
        self.registry = PoolRegistry(
            gateway,
            program_id,
            pool_account_size=pool_account_size,
            selection=pool_selection,
            cache_ttl_seconds=pool_cache_ttl_seconds,
        )
        self.quotes = QuoteEngine(self.registry, tokens)
        self.executor = SwapExecutor(
            gateway,
            self.registry,
            program_id,
            bus=self.bus,
            signer=signer,
            max_slippage_bps=max_slippage_bps,
            min_fee_reserve_lamports=min_fee_reserve_lamports,
            commitment=commitment,
            confirm_timeout_seconds=confirm_timeout_seconds,
            confirm_poll_interval_seconds=confirm_poll_interval_seconds,
            confirm_fallback_delay_seconds=confirm_fallback_delay_seconds,
        )
        self.tracker = BalanceTracker(
            gateway,
            tokens,
            bus=self.bus,
            poll_interval_seconds=balance_poll_interval_seconds,
        )
        self.valuator = HoldingsValuator(self.registry, self.tracker, tokens)

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        signer: TxnSigner | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> "AmmClient":
        """Assemble a client from settings.

        Args:
            settings: Application settings
            signer: Signer to use; when omitted an ``ExternalSigner`` is built
                from ``external_signer_command`` if configured
            client: Optional httpx client shared with the gateway
        """
        if signer is None and settings.external_signer_command:
            signer = ExternalSigner(
                command=settings.external_signer_command,
                timeout=settings.external_signer_timeout,
            )

        gateway = RpcGateway(
            rpc_url=settings.rpc_url,
            client=client,
            timeout=settings.rpc_timeout_seconds,
            commitment=settings.commitment,
            max_attempts=settings.rpc_max_attempts,
            backoff_seconds=settings.rpc_backoff_seconds,
            send_max_retries=settings.max_retries_send,
        )
        tokens = build_token_registry(settings)

        logger.info(
            "AMM client assembled",
            env=settings.env,
            program_id=settings.swap_program_id,
            base_token=settings.base_token_name,
            tokens=len(tokens) - 1,
            signer=type(signer).__name__ if signer is not None else None,
        )

        return cls(
            gateway=gateway,
            program_id=Pubkey.from_string(settings.swap_program_id),
            tokens=tokens,
            signer=signer,
            pool_account_size=settings.pool_account_size,
            pool_selection=PoolSelection(settings.pool_selection),
            pool_cache_ttl_seconds=settings.pool_cache_ttl_seconds,
            max_slippage_bps=settings.max_slippage_bps,
            min_fee_reserve_lamports=settings.min_fee_reserve_lamports,
            commitment=settings.commitment,
            confirm_timeout_seconds=settings.confirm_timeout_seconds,
            confirm_poll_interval_seconds=settings.confirm_poll_interval_seconds,
            confirm_fallback_delay_seconds=settings.confirm_fallback_delay_seconds,
            quote_debounce_seconds=settings.quote_debounce_seconds,
            balance_poll_interval_seconds=settings.balance_poll_interval_seconds,
        )

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def start(self) -> None:
        """Start background balance polling and bus-driven refreshes."""
        self.tracker.start()

    async def stop(self) -> None:
        await self.tracker.stop()

    async def aclose(self) -> None:
        """Stop background work and release the gateway's HTTP client."""
        await self.stop()
        close = getattr(self.gateway, "aclose", None)
        if close is not None:
            await close()

    async def get_quote(
        self, from_mint: Pubkey, to_mint: Pubkey, amount_in: int
    ) -> Quote:
        return await self.quotes.quote(from_mint, to_mint, amount_in)

    def debounced_quoter(
        self,
        on_quote: Callable[[Quote], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> DebouncedQuoter:
        """A debouncer for one input field, using the configured window."""
        return DebouncedQuoter(
            self.quotes,
            delay_seconds=self.quote_debounce_seconds,
            on_quote=on_quote,
            on_error=on_error,
        )

    async def execute_swap(
        self,
        holder: Pubkey,
        intent: SwapIntent,
        quote: Quote,
        slippage_tolerance: Decimal | float | str | None = None,
    ) -> SwapOutcome:
        return await self.executor.execute(holder, intent, quote, slippage_tolerance)

    async def get_balances(
        self, holder: Pubkey, tracked: Iterable[TokenInfo] | None = None
    ) -> BalanceMap:
        """Read the holder's balances now and start tracking them."""
        tracked = list(tracked) if tracked is not None else None
        self.tracker.track(holder, tracked)
        return await self.tracker.refresh(holder)

    def refresh_balances(self) -> None:
        """Signal that balances may be stale."""
        self.bus.publish()

    async def list_pairs(self) -> list[TradingPair]:
        """Tradable base-token pairs of registered tokens."""
        return list_pairs(await self.registry.get_pools(), self.tokens)

    async def pair_price(self, token_mint: Pubkey) -> PairPrice:
        return await self.quotes.pair_price(token_mint, self.tokens.base.mint)

    async def get_holdings(
        self, holder: Pubkey, tokens: Iterable[TokenInfo] | None = None
    ) -> list[Holding]:
        return await self.valuator.holdings(holder, tokens)
