"""Core data types for the AMM client."""

import time
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .errors import ConfirmationUnknown, SubmissionFailed


class TokenInfo(BaseModel):
    """A fungible token known to the client."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str = Field(description="Logical token name")
    mint: Pubkey = Field(description="Token mint address")
    decimals: int = Field(default=3, ge=0, le=18, description="Token decimals")
    display_name: str | None = Field(default=None, description="Display name")

    @property
    def key(self) -> str:
        """Balance map key for this token."""
        return self.name.lower()


class Pool(BaseModel):
    """Read-only snapshot of one on-chain liquidity pool."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    address: Pubkey = Field(description="Pool record account")
    amm: Pubkey = Field(description="AMM config account")
    mint_a: Pubkey = Field(description="First listed mint")
    mint_b: Pubkey = Field(description="Second listed mint")
    pool_authority: Pubkey = Field(description="Derived pool authority")
    reserve_account_a: Pubkey = Field(description="Pool-owned token account for A")
    reserve_account_b: Pubkey = Field(description="Pool-owned token account for B")

    @model_validator(mode="after")
    def _distinct_mints(self) -> "Pool":
        if self.mint_a == self.mint_b:
            raise ValueError("Pool mints must differ")
        return self

    @property
    def mints(self) -> frozenset[Pubkey]:
        return frozenset((self.mint_a, self.mint_b))

    def holds(self, mint: Pubkey) -> bool:
        return mint == self.mint_a or mint == self.mint_b

    def other_mint(self, mint: Pubkey) -> Pubkey:
        if mint == self.mint_a:
            return self.mint_b
        if mint == self.mint_b:
            return self.mint_a
        raise ValueError(f"Mint {mint} is not held by pool {self.address}")

    def is_a_to_b(self, from_mint: Pubkey) -> bool:
        """Swap direction for an input of ``from_mint``."""
        if not self.holds(from_mint):
            raise ValueError(f"Mint {from_mint} is not held by pool {self.address}")
        return from_mint == self.mint_a


class ReservePair(BaseModel):
    """Reserve balances read at one point in time. Advisory only."""

    model_config = ConfigDict(frozen=True)

    reserve_a: int = Field(ge=0, description="Raw reserve of mint A")
    reserve_b: int = Field(ge=0, description="Raw reserve of mint B")
    read_at: float = Field(default_factory=time.time, description="Read timestamp")

    def oriented(self, a_to_b: bool) -> tuple[int, int]:
        """Return (reserve_in, reserve_out) for the given direction."""
        if a_to_b:
            return self.reserve_a, self.reserve_b
        return self.reserve_b, self.reserve_a

    @property
    def product(self) -> int:
        return self.reserve_a * self.reserve_b


class Quote(BaseModel):
    """Constant-product swap quote in raw units."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    from_mint: Pubkey
    to_mint: Pubkey
    amount_in: int = Field(ge=0)
    amount_out: int = Field(ge=0)
    reserve_in: int = Field(default=0, ge=0)
    reserve_out: int = Field(default=0, ge=0)
    pool_address: Pubkey | None = None
    a_to_b: bool = True

    @classmethod
    def empty(cls, from_mint: Pubkey, to_mint: Pubkey) -> "Quote":
        """Quote for a missing or non-positive input."""
        return cls(from_mint=from_mint, to_mint=to_mint, amount_in=0, amount_out=0)

    @property
    def is_empty(self) -> bool:
        return self.amount_in == 0

    @property
    def effective_price(self) -> Decimal:
        """Output units received per input unit."""
        if self.amount_in == 0:
            return Decimal(0)
        return Decimal(self.amount_out) / Decimal(self.amount_in)


class SwapIntent(BaseModel):
    """User request to swap ``amount_in`` raw units of one token for another."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    from_mint: Pubkey
    to_mint: Pubkey
    amount_in: int = Field(gt=0)

    @model_validator(mode="after")
    def _distinct_mints(self) -> "SwapIntent":
        if self.from_mint == self.to_mint:
            raise ValueError("Cannot swap a token for itself")
        return self


class BalanceEntry(BaseModel):
    """Cached balance of one token for one holder."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str
    mint: Pubkey
    raw_amount: int = Field(default=0, ge=0)
    decimals: int = Field(default=3, ge=0)

    @property
    def ui_amount(self) -> Decimal:
        return Decimal(self.raw_amount).scaleb(-self.decimals)


class ConfirmationStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    UNKNOWN = "unknown"


class Confirmation(BaseModel):
    """Best-effort transaction confirmation result."""

    status: ConfirmationStatus
    reason: str | None = None
    slot: int | None = None


class SwapOutcome(BaseModel):
    """Result of a swap submission."""

    status: ConfirmationStatus
    signature: str | None = None
    reason: str | None = None
    min_amount_out: int | None = None

    @property
    def ok(self) -> bool:
        return self.status is ConfirmationStatus.SUCCESS

    def raise_for_status(self) -> "SwapOutcome":
        """Raise the matching error for a failed or ambiguous outcome."""
        if self.status is ConfirmationStatus.FAILED:
            raise SubmissionFailed(self.reason or "unknown error", self.signature)
        if self.status is ConfirmationStatus.UNKNOWN:
            raise ConfirmationUnknown(self.signature or "<unsent>", self.reason)
        return self


class UnsignedSwap(BaseModel):
    """Swap transaction ready for external signing."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    transaction: Transaction
    blockhash: Hash
    last_valid_block_height: int
    min_amount_out: int
    a_to_b: bool
    created_destination_account: bool
    intent: SwapIntent
    quote: Quote

    def message_bytes(self) -> bytes:
        return bytes(self.transaction.message)

    def serialize(self) -> bytes:
        """Wire bytes of the unsigned transaction (placeholder signatures)."""
        return bytes(self.transaction)


class TradingPair(BaseModel):
    """A tradable token paired with the base settlement token."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    token: TokenInfo
    base: TokenInfo
    pool: Pool


class PairPrice(BaseModel):
    """Spot price of a token in base-token units, from live reserves."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    token_mint: Pubkey
    base_mint: Pubkey
    pool_address: Pubkey
    token_reserve: int
    base_reserve: int
    price_in_base: Decimal = Field(description="Base units per one token")
    token_per_base: Decimal = Field(description="Token units per one base unit")
    read_at: float


class Holding(BaseModel):
    """A non-zero token balance valued at the pool spot price."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    token: TokenInfo
    balance: Decimal
    price_in_base: Decimal
    value_in_base: Decimal
