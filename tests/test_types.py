"""Tests for core data types."""

from decimal import Decimal

import pytest
from pydantic import ValidationError
from solders.pubkey import Pubkey

from ammclient.core.errors import ConfirmationUnknown, SubmissionFailed
from ammclient.core.types import (
    BalanceEntry,
    ConfirmationStatus,
    Pool,
    Quote,
    ReservePair,
    SwapIntent,
    SwapOutcome,
    TokenInfo,
)


def _pool(mint_a: Pubkey, mint_b: Pubkey) -> Pool:
    return Pool(
        address=Pubkey.new_unique(),
        amm=Pubkey.new_unique(),
        mint_a=mint_a,
        mint_b=mint_b,
        pool_authority=Pubkey.new_unique(),
        reserve_account_a=Pubkey.new_unique(),
        reserve_account_b=Pubkey.new_unique(),
    )


class TestTokenInfo:
    """Test TokenInfo model."""

    def test_key_is_lower_cased_name(self):
        token = TokenInfo(name="ViratKohli", mint=Pubkey.new_unique())
        assert token.key == "viratkohli"
        assert token.decimals == 3

    def test_frozen(self):
        token = TokenInfo(name="BOSON", mint=Pubkey.new_unique())
        with pytest.raises(ValidationError):
            token.name = "other"


class TestPool:
    """Test Pool model helpers."""

    def test_rejects_identical_mints(self):
        mint = Pubkey.new_unique()
        with pytest.raises(ValidationError, match="Pool mints must differ"):
            _pool(mint, mint)

    def test_direction_and_other_mint(self):
        mint_a, mint_b = Pubkey.new_unique(), Pubkey.new_unique()
        pool = _pool(mint_a, mint_b)

        assert pool.is_a_to_b(mint_a) is True
        assert pool.is_a_to_b(mint_b) is False
        assert pool.other_mint(mint_a) == mint_b
        assert pool.other_mint(mint_b) == mint_a
        assert pool.mints == frozenset((mint_a, mint_b))

    def test_foreign_mint_rejected(self):
        pool = _pool(Pubkey.new_unique(), Pubkey.new_unique())
        stranger = Pubkey.new_unique()

        assert not pool.holds(stranger)
        with pytest.raises(ValueError):
            pool.is_a_to_b(stranger)
        with pytest.raises(ValueError):
            pool.other_mint(stranger)


class TestReservePair:
    """Test ReservePair orientation."""

    def test_oriented(self):
        pair = ReservePair(reserve_a=10, reserve_b=20)
        assert pair.oriented(True) == (10, 20)
        assert pair.oriented(False) == (20, 10)
        assert pair.product == 200

    def test_negative_reserve_rejected(self):
        with pytest.raises(ValidationError):
            ReservePair(reserve_a=-1, reserve_b=0)


class TestQuote:
    """Test Quote model."""

    def test_empty_quote(self):
        x, y = Pubkey.new_unique(), Pubkey.new_unique()
        quote = Quote.empty(x, y)

        assert quote.is_empty
        assert quote.amount_out == 0
        assert quote.pool_address is None
        assert quote.effective_price == Decimal(0)

    def test_effective_price(self):
        quote = Quote(
            from_mint=Pubkey.new_unique(),
            to_mint=Pubkey.new_unique(),
            amount_in=100,
            amount_out=4950,
            reserve_in=1_000,
            reserve_out=50_000,
        )
        assert quote.effective_price == Decimal("49.5")


class TestSwapIntent:
    """Test SwapIntent validation."""

    def test_amount_must_be_positive(self):
        with pytest.raises(ValidationError):
            SwapIntent(from_mint=Pubkey.new_unique(), to_mint=Pubkey.new_unique(), amount_in=0)

    def test_self_swap_rejected(self):
        mint = Pubkey.new_unique()
        with pytest.raises(ValidationError, match="Cannot swap a token for itself"):
            SwapIntent(from_mint=mint, to_mint=mint, amount_in=1)


class TestBalanceEntry:
    def test_ui_amount_uses_decimals(self):
        entry = BalanceEntry(name="BOSON", mint=Pubkey.new_unique(), raw_amount=12_345, decimals=3)
        assert entry.ui_amount == Decimal("12.345")


class TestSwapOutcome:
    """Test SwapOutcome status helpers."""

    def test_success_passes_through(self):
        outcome = SwapOutcome(status=ConfirmationStatus.SUCCESS, signature="sig")
        assert outcome.ok
        assert outcome.raise_for_status() is outcome

    def test_failed_raises_submission_failed(self):
        outcome = SwapOutcome(
            status=ConfirmationStatus.FAILED, signature="sig", reason="slippage"
        )
        with pytest.raises(SubmissionFailed, match="Transaction failed: slippage") as exc:
            outcome.raise_for_status()
        assert exc.value.signature == "sig"

    def test_unknown_raises_confirmation_unknown(self):
        outcome = SwapOutcome(status=ConfirmationStatus.UNKNOWN, signature="sig")
        assert not outcome.ok
        with pytest.raises(ConfirmationUnknown) as exc:
            outcome.raise_for_status()
        assert exc.value.signature == "sig"
