"""Swap transaction building, submission and outcome resolution."""

import asyncio
from decimal import Decimal
from typing import Any

import structlog
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from ..core.errors import (
    GatewayUnavailable,
    InsufficientBalance,
    InsufficientFeeReserve,
    SubmissionFailed,
)
from ..core.interfaces import LedgerGateway, TxnSigner
from ..core.types import (
    Confirmation,
    ConfirmationStatus,
    Quote,
    SwapIntent,
    SwapOutcome,
    UnsignedSwap,
)
from ..events.refresh_bus import RefreshBus
from ..ledger.addresses import derive_associated_token_address
from ..ledger.gateway import SolanaRpcError
from ..ledger.layouts import token_amount_or_zero
from ..pools.registry import PoolRegistry
from ..pricing.amm_math import min_amount_out, tolerance_from_bps
from .instructions import (
    SwapAccounts,
    build_create_associated_token_account_instruction,
    build_swap_instruction,
)

logger = structlog.get_logger(__name__)


class SwapExecutor:
    """Builds, submits and confirms swaps against the AMM program."""

    def __init__(
        self,
        gateway: LedgerGateway,
        registry: PoolRegistry,
        program_id: Pubkey,
        bus: RefreshBus | None = None,
        signer: TxnSigner | None = None,
        max_slippage_bps: int = 200,
        min_fee_reserve_lamports: int = 5_000_000,
        commitment: str = "confirmed",
        confirm_timeout_seconds: float = 30.0,
        confirm_poll_interval_seconds: float = 2.0,
        confirm_fallback_delay_seconds: float = 3.0,
    ) -> None:
        """Initialize the swap executor.

        Args:
            gateway: Ledger gateway
            registry: Pool registry used to resolve the pair being swapped
            program_id: AMM program ID
            bus: Refresh bus notified after a swap that may have moved balances
            signer: Optional external signer (required by ``execute``)
            max_slippage_bps: Default slippage tolerance in basis points
            min_fee_reserve_lamports: Native balance required before submitting
            commitment: Commitment level awaited during confirmation
            confirm_timeout_seconds: Wall-clock budget for confirmation polling
            confirm_poll_interval_seconds: Delay between status polls
            confirm_fallback_delay_seconds: Delay before the single fallback check
        """
        self.gateway = gateway
        self.registry = registry
        self.program_id = program_id
        self.bus = bus
        self.signer = signer
        self.tolerance = tolerance_from_bps(max_slippage_bps)
        self.min_fee_reserve_lamports = min_fee_reserve_lamports
        self.commitment = commitment
        self.confirm_timeout_seconds = confirm_timeout_seconds
        self.confirm_poll_interval_seconds = confirm_poll_interval_seconds
        self.confirm_fallback_delay_seconds = confirm_fallback_delay_seconds
        self._inflight: dict[tuple, asyncio.Task] = {}

        if signer is None:
            logger.warning("Swap executor initialized without signer - execute disabled")

    async def preflight(self, holder: Pubkey, intent: SwapIntent) -> None:
        """Check the holder can pay for the swap and its fees.

        Raises:
            InsufficientBalance: Source token balance below ``amount_in``
            InsufficientFeeReserve: Native balance below the fee reserve
        """
        source = derive_associated_token_address(holder, intent.from_mint)
        (source_data,) = await self.gateway.get_multiple_accounts([source])
        available = token_amount_or_zero(source_data)
        if available < intent.amount_in:
            logger.warning(
                "Insufficient token balance",
                holder=str(holder),
                mint=str(intent.from_mint),
                available=available,
                required=intent.amount_in,
            )
            raise InsufficientBalance(intent.from_mint, intent.amount_in, available)

        lamports = await self.gateway.get_balance(holder)
        if lamports < self.min_fee_reserve_lamports:
            logger.warning(
                "Low native balance for fees",
                holder=str(holder),
                lamports=lamports,
                required=self.min_fee_reserve_lamports,
            )
            raise InsufficientFeeReserve(self.min_fee_reserve_lamports, lamports)

    async def build_swap(
        self,
        holder: Pubkey,
        intent: SwapIntent,
        quote: Quote,
        slippage_tolerance: Decimal | float | str | None = None,
    ) -> UnsignedSwap:
        """Build an unsigned swap transaction paid for by ``holder``.

        Args:
            holder: Trader and fee payer
            intent: What to swap
            quote: Quote for exactly this intent
            slippage_tolerance: Fraction of the quoted output to accept, in
                (0, 1]; defaults to the configured slippage

        Raises:
            ValueError: If the quote does not belong to the intent or is stale
            PoolNotFound: If the pair no longer has a pool
        """
        _check_quote_matches(intent, quote)

        tolerance = self.tolerance if slippage_tolerance is None else slippage_tolerance
        min_out = min_amount_out(quote.amount_out, tolerance)

        pool = await self.registry.resolve(intent.from_mint, intent.to_mint)
        if quote.pool_address is not None and pool.address != quote.pool_address:
            raise ValueError(
                f"Quote was computed against pool {quote.pool_address}, "
                f"pair now resolves to {pool.address}; requote"
            )

        a_to_b = pool.is_a_to_b(intent.from_mint)
        accounts = SwapAccounts.for_pool(pool, holder)
        if a_to_b:
            destination, destination_mint = accounts.trader_account_b, pool.mint_b
        else:
            destination, destination_mint = accounts.trader_account_a, pool.mint_a

        instructions = []
        (destination_data,) = await self.gateway.get_multiple_accounts([destination])
        create_destination = destination_data is None
        if create_destination:
            instructions.append(
                build_create_associated_token_account_instruction(
                    payer=holder, owner=holder, mint=destination_mint
                )
            )
        instructions.append(
            build_swap_instruction(
                self.program_id, accounts, a_to_b, intent.amount_in, min_out
            )
        )

        blockhash, last_valid_block_height = await self.gateway.get_latest_blockhash()
        message = Message.new_with_blockhash(instructions, holder, blockhash)

        logger.info(
            "Built swap transaction",
            holder=str(holder),
            pool=str(pool.address),
            a_to_b=a_to_b,
            amount_in=intent.amount_in,
            quoted_out=quote.amount_out,
            min_amount_out=min_out,
            create_destination=create_destination,
        )

        return UnsignedSwap(
            transaction=Transaction.new_unsigned(message),
            blockhash=blockhash,
            last_valid_block_height=last_valid_block_height,
            min_amount_out=min_out,
            a_to_b=a_to_b,
            created_destination_account=create_destination,
            intent=intent,
            quote=quote,
        )

    async def submit(
        self,
        holder: Pubkey,
        intent: SwapIntent,
        signed_bytes: bytes,
        min_out: int | None = None,
        preflight: bool = True,
    ) -> SwapOutcome:
        """Submit a signed swap and resolve its outcome.

        A confirmation timeout is followed by one delayed status check; if the
        outcome is still ambiguous it is reported as ``UNKNOWN``, never as
        ``FAILED``. A send whose result is lost in transit, or that the node
        reports as already processed, is confirmed by the transaction's own
        signature.

        Raises:
            InsufficientBalance: Pre-flight balance check failed
            InsufficientFeeReserve: Pre-flight fee check failed
            SubmissionFailed: The ledger rejected the transaction
        """
        if preflight:
            await self.preflight(holder, intent)

        try:
            signature = await self.gateway.submit_transaction(signed_bytes)
        except SolanaRpcError as e:
            if not _already_processed(e):
                logger.error("Swap submission rejected", code=e.code, error=e.message)
                raise SubmissionFailed(e.message) from e
            signature = transaction_signature(signed_bytes)
            logger.warning("Swap already processed, confirming", signature=signature)
        except GatewayUnavailable as e:
            signature = transaction_signature(signed_bytes)
            logger.warning(
                "Swap send outcome lost, confirming", signature=signature, error=str(e)
            )

        confirmation = await self.gateway.confirm(
            signature,
            commitment=self.commitment,
            timeout=self.confirm_timeout_seconds,
            poll_interval=self.confirm_poll_interval_seconds,
        )
        if confirmation.status is ConfirmationStatus.UNKNOWN:
            confirmation = await self._fallback_status(signature, confirmation)

        outcome = SwapOutcome(
            status=confirmation.status,
            signature=signature,
            reason=confirmation.reason,
            min_amount_out=min_out,
        )
        logger.info(
            "Swap resolved",
            signature=signature,
            status=outcome.status.value,
            reason=outcome.reason,
        )

        if outcome.status is not ConfirmationStatus.FAILED and self.bus is not None:
            self.bus.publish()

        return outcome

    async def _fallback_status(
        self, signature: str, confirmation: Confirmation
    ) -> Confirmation:
        logger.warning("Confirmation timeout, checking status", signature=signature)
        await asyncio.sleep(self.confirm_fallback_delay_seconds)
        try:
            return await self.gateway.get_transaction_status(signature)
        except (GatewayUnavailable, SolanaRpcError) as e:
            logger.warning(
                "Fallback status check failed", signature=signature, error=str(e)
            )
            return confirmation

    async def execute(
        self,
        holder: Pubkey,
        intent: SwapIntent,
        quote: Quote,
        slippage_tolerance: Decimal | float | str | None = None,
    ) -> SwapOutcome:
        """Pre-flight, build, sign and submit a swap.

        A second call for the same holder and intent while the first is in
        flight joins the first submission instead of sending another one.

        Raises:
            SwapRejected: The signer declined
            RuntimeError: No signer configured
        """
        key = (holder, intent.from_mint, intent.to_mint, intent.amount_in)
        existing = self._inflight.get(key)
        if existing is not None:
            logger.warning(
                "Swap already in flight, joining existing submission",
                holder=str(holder),
                amount_in=intent.amount_in,
            )
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(
            self._execute(holder, intent, quote, slippage_tolerance)
        )
        self._inflight[key] = task
        task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _execute(
        self,
        holder: Pubkey,
        intent: SwapIntent,
        quote: Quote,
        slippage_tolerance: Any,
    ) -> SwapOutcome:
        if self.signer is None:
            raise RuntimeError("No signer configured; cannot execute swaps")

        await self.preflight(holder, intent)
        unsigned = await self.build_swap(holder, intent, quote, slippage_tolerance)

        logger.info("Requesting signature", holder=str(holder))
        signed = await asyncio.to_thread(
            self.signer.sign_transaction, unsigned.serialize()
        )

        return await self.submit(
            holder, intent, signed, min_out=unsigned.min_amount_out, preflight=False
        )


def transaction_signature(signed_bytes: bytes) -> str:
    """First signature of a signed transaction, which is also its id."""
    return str(Transaction.from_bytes(signed_bytes).signatures[0])


def _already_processed(error: SolanaRpcError) -> bool:
    return "already been processed" in error.message.lower() or (
        "AlreadyProcessed" in str(error.data)
    )


def _check_quote_matches(intent: SwapIntent, quote: Quote) -> None:
    if quote.is_empty:
        raise ValueError("Cannot build a swap from an empty quote")
    if (
        quote.from_mint != intent.from_mint
        or quote.to_mint != intent.to_mint
        or quote.amount_in != intent.amount_in
    ):
        raise ValueError("Quote does not match the swap intent; requote")
