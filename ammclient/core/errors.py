"""Exception taxonomy for the AMM client."""


class AmmClientError(Exception):
    """Base class for all AMM client errors."""


class GatewayUnavailable(AmmClientError):
    """Ledger RPC could not be reached after retries. Retryable by the caller."""


class PoolNotFound(AmmClientError):
    """No liquidity pool exists for the requested token pair."""

    def __init__(self, mint_x, mint_y) -> None:
        self.mint_x = mint_x
        self.mint_y = mint_y
        super().__init__(f"Pool not found for token pair {mint_x} / {mint_y}")


class PricingOverflow(AmmClientError):
    """Constant-product arithmetic exceeded the u64 range."""


class AccountDecodeError(AmmClientError, ValueError):
    """Account bytes do not match the expected layout."""


class InsufficientBalance(AmmClientError):
    """Holder does not own enough of the input token."""

    def __init__(self, mint, required: int, available: int) -> None:
        self.mint = mint
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance of {mint}: have {available}, need {required}"
        )


class InsufficientFeeReserve(AmmClientError):
    """Holder's native balance is below the minimum fee reserve."""

    def __init__(self, required_lamports: int, available_lamports: int) -> None:
        self.required_lamports = required_lamports
        self.available_lamports = available_lamports
        super().__init__(
            f"Native balance {available_lamports} lamports is below the "
            f"fee reserve of {required_lamports} lamports"
        )


class SwapRejected(AmmClientError):
    """The signer declined to sign the transaction."""


class SubmissionFailed(AmmClientError):
    """The ledger rejected the transaction. Safe to retry with a fresh quote."""

    def __init__(self, reason: str, signature: str | None = None) -> None:
        self.reason = reason
        self.signature = signature
        super().__init__(f"Transaction failed: {reason}")


class ConfirmationUnknown(AmmClientError):
    """Transaction outcome could not be determined.

    The transaction may still land. Callers should re-check the holder's
    balances instead of assuming success or failure.
    """

    def __init__(self, signature: str, reason: str | None = None) -> None:
        self.signature = signature
        self.reason = reason
        super().__init__(
            f"Confirmation status unknown for {signature}"
            + (f": {reason}" if reason else "")
        )
