"""JSON-RPC ledger gateway: account reads, transaction submission, confirmation."""

import asyncio
import base64
import binascii
import time
from typing import Any

import httpx
import structlog
from solders.hash import Hash
from solders.pubkey import Pubkey
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import AccountDecodeError, AmmClientError, GatewayUnavailable
from ..core.types import Confirmation, ConfirmationStatus

logger = structlog.get_logger(__name__)

# getMultipleAccounts rejects more keys than this per call
MAX_ACCOUNTS_PER_REQUEST = 100

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}

_RETRYABLE_RPC_CODES = {
    -32603,  # Internal error
    -32005,  # Node is unhealthy
    -32004,  # Slot was skipped
    429,  # Too many requests
}


class SolanaRpcError(AmmClientError):
    """Exception for Solana RPC errors."""

    def __init__(self, code: int, message: str, data: dict | None = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")


def _is_retryable_error(exception) -> bool:
    """Check if an exception is retryable."""
    if isinstance(exception, httpx.TimeoutException):
        return True
    if isinstance(exception, httpx.NetworkError):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status == 429 or status >= 500
    if isinstance(exception, SolanaRpcError):
        return exception.code in _RETRYABLE_RPC_CODES
    return False


def _decode_account_data(account: dict[str, Any] | None) -> bytes | None:
    """Decode the base64 ``data`` field of an RPC account object."""
    if account is None:
        return None
    data = account.get("data")
    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, str):
        raise AccountDecodeError(
            f"Unexpected account data encoding: {type(data).__name__}"
        )
    try:
        return base64.b64decode(data, validate=True)
    except binascii.Error as e:
        raise AccountDecodeError(f"Account data is not valid base64: {e}") from e


class RpcGateway:
    """Thin adapter over the ledger's JSON-RPC surface."""

    def __init__(
        self,
        rpc_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        commitment: str = "confirmed",
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        send_max_retries: int = 3,
    ) -> None:
        """Initialize RpcGateway.

        Args:
            rpc_url: Solana RPC endpoint URL
            client: Optional httpx client (will create one if not provided)
            timeout: Request timeout in seconds
            commitment: Commitment level used for reads
            max_attempts: Attempts per request before giving up
            backoff_seconds: Base of the exponential backoff between attempts
            send_max_retries: ``maxRetries`` forwarded to sendTransaction
        """
        self.rpc_url = rpc_url
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self.timeout = timeout
        self.commitment = commitment
        self.max_attempts = max_attempts
        self.send_max_retries = send_max_retries
        self._request_id = 0
        self._retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=backoff_seconds, max=10),
            retry=retry_if_exception(_is_retryable_error),
            reraise=True,
        )
        logger.info(
            "RpcGateway initialized",
            rpc_url=rpc_url,
            timeout=timeout,
            commitment=commitment,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _get_request_id(self) -> int:
        """Get next request ID."""
        self._request_id += 1
        return self._request_id

    async def _post_rpc(self, method: str, params: list[Any]) -> Any:
        """Send one JSON-RPC request and return its ``result``."""
        request_id = self._get_request_id()
        payload = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params,
        }

        start_time = time.time()
        logger.debug(
            "Making RPC request", method=method, request_id=request_id, url=self.rpc_url
        )

        response = await self.client.post(
            self.rpc_url,
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()

        logger.debug(
            "RPC request completed",
            method=method,
            request_id=request_id,
            duration=time.time() - start_time,
            status_code=response.status_code,
        )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(
                "RPC response is not JSON",
                method=method,
                request_id=request_id,
                content_type=response.headers.get("content-type"),
            )
            raise GatewayUnavailable(f"{method}: response is not JSON") from e
        if not isinstance(data, dict):
            raise GatewayUnavailable(f"{method}: malformed JSON-RPC response")

        if "error" in data:
            error = data["error"]
            raise SolanaRpcError(
                code=error.get("code", -1),
                message=error.get("message", "Unknown RPC error"),
                data=error.get("data"),
            )

        return data.get("result")

    async def _make_rpc_request(
        self, method: str, params: list[Any], retry: bool = True
    ) -> Any:
        """Make a JSON-RPC request, with retries unless ``retry`` is False.

        Raises:
            GatewayUnavailable: Transport failure or retryable RPC error after
                all attempts
            SolanaRpcError: Non-retryable JSON-RPC error
        """
        try:
            retrying = (
                self._retrying.copy()
                if retry
                else self._retrying.copy(stop=stop_after_attempt(1))
            )
            async for attempt in retrying:
                with attempt:
                    return await self._post_rpc(method, params)
        except SolanaRpcError as e:
            if _is_retryable_error(e):
                logger.error(
                    "RPC request failed after retries",
                    method=method,
                    code=e.code,
                    error=e.message,
                )
                raise GatewayUnavailable(f"{method}: {e}") from e
            raise
        except httpx.HTTPError as e:
            logger.error(
                "RPC request failed",
                method=method,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GatewayUnavailable(f"{method}: {e}") from e

    async def get_program_accounts(
        self, program_id: Pubkey, data_size: int
    ) -> list[tuple[Pubkey, bytes]]:
        """Return all accounts owned by ``program_id`` with exactly ``data_size`` bytes."""
        params = [
            str(program_id),
            {
                "encoding": "base64",
                "commitment": self.commitment,
                "filters": [{"dataSize": data_size}],
            },
        ]
        result = await self._make_rpc_request("getProgramAccounts", params) or []

        accounts: list[tuple[Pubkey, bytes]] = []
        for item in result:
            try:
                address = Pubkey.from_string(item["pubkey"])
                data = _decode_account_data(item.get("account"))
            except (KeyError, ValueError) as e:
                logger.warning(
                    "Skipping undecodable program account",
                    pubkey=item.get("pubkey"),
                    error=str(e),
                )
                continue
            if data is None:
                continue
            accounts.append((address, data))

        logger.debug(
            "Fetched program accounts",
            program_id=str(program_id),
            data_size=data_size,
            count=len(accounts),
        )
        return accounts

    async def get_multiple_accounts(
        self, addresses: list[Pubkey]
    ) -> list[bytes | None]:
        """Batched account lookup, position-preserving. ``None`` = no account."""
        results: list[bytes | None] = []
        for start in range(0, len(addresses), MAX_ACCOUNTS_PER_REQUEST):
            chunk = addresses[start : start + MAX_ACCOUNTS_PER_REQUEST]
            params = [
                [str(address) for address in chunk],
                {"encoding": "base64", "commitment": self.commitment},
            ]
            result = await self._make_rpc_request("getMultipleAccounts", params)
            values = (result or {}).get("value") or []
            if len(values) != len(chunk):
                raise GatewayUnavailable(
                    f"getMultipleAccounts returned {len(values)} entries "
                    f"for {len(chunk)} addresses"
                )
            results.extend(_decode_account_data(value) for value in values)
        return results

    async def get_balance(self, address: Pubkey) -> int:
        """Native balance in lamports."""
        params = [str(address), {"commitment": self.commitment}]
        result = await self._make_rpc_request("getBalance", params)
        return int(result["value"])

    async def get_latest_blockhash(self) -> tuple[Hash, int]:
        """Get the latest blockhash and its last valid block height."""
        params = [{"commitment": self.commitment}]
        result = await self._make_rpc_request("getLatestBlockhash", params)
        value = result["value"]

        logger.debug(
            "Retrieved latest blockhash",
            blockhash=value["blockhash"][:8] + "...",
            last_valid_block_height=value["lastValidBlockHeight"],
        )
        return Hash.from_string(value["blockhash"]), int(value["lastValidBlockHeight"])

    async def submit_transaction(self, signed_bytes: bytes) -> str:
        """Send a signed transaction once and return its signature.

        Sends are never retried here: a send that timed out may still have
        reached the node, and the node rebroadcasts up to ``maxRetries`` times.

        Raises:
            SolanaRpcError: If the node rejects the transaction
            GatewayUnavailable: On transport failure
        """
        tx_base64 = base64.b64encode(signed_bytes).decode("utf-8")
        logger.info(
            "Sending transaction",
            tx_length=len(tx_base64),
            max_retries=self.send_max_retries,
        )

        params = [
            tx_base64,
            {
                "encoding": "base64",
                "skipPreflight": False,
                "maxRetries": self.send_max_retries,
                "preflightCommitment": self.commitment,
            },
        ]
        signature = await self._make_rpc_request(
            "sendTransaction", params, retry=False
        )

        logger.info("Transaction sent successfully", signature=signature)
        return signature

    async def confirm(
        self,
        signature: str,
        commitment: str = "confirmed",
        timeout: float = 30.0,
        poll_interval: float = 2.0,
    ) -> Confirmation:
        """Poll signature status until ``commitment`` is reached.

        Never reports failure for a transaction it could not find: running out
        of the time budget yields ``UNKNOWN``. Each status request is cut off
        at the deadline, so the whole call stays within ``timeout``.
        """
        wanted = _COMMITMENT_RANK.get(commitment, 1)
        deadline = time.monotonic() + timeout

        logger.info(
            "Confirming transaction signature",
            signature=signature,
            commitment=commitment,
            timeout=timeout,
        )

        while True:
            try:
                async with asyncio.timeout(deadline - time.monotonic()):
                    status_info = await self._signature_status(signature)
            except TimeoutError:
                break
            except (GatewayUnavailable, SolanaRpcError) as e:
                logger.warning(
                    "Error checking signature status",
                    signature=signature,
                    error=str(e),
                )
            else:
                if status_info is None:
                    logger.debug(
                        "Transaction not found, continuing to poll",
                        signature=signature,
                    )
                elif status_info.get("err") is not None:
                    error = status_info["err"]
                    logger.error("Transaction failed", signature=signature, error=error)
                    return Confirmation(
                        status=ConfirmationStatus.FAILED,
                        reason=str(error),
                        slot=status_info.get("slot"),
                    )
                else:
                    reached = _COMMITMENT_RANK.get(
                        status_info.get("confirmationStatus") or "processed", 0
                    )
                    if reached >= wanted:
                        logger.info(
                            "Transaction confirmed",
                            signature=signature,
                            confirmation_status=status_info.get("confirmationStatus"),
                            slot=status_info.get("slot"),
                        )
                        return Confirmation(
                            status=ConfirmationStatus.SUCCESS,
                            slot=status_info.get("slot"),
                        )

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await asyncio.sleep(min(poll_interval, remaining))

        logger.warning(
            "Transaction confirmation timeout", signature=signature, timeout=timeout
        )
        return Confirmation(
            status=ConfirmationStatus.UNKNOWN,
            reason=f"not confirmed within {timeout}s",
        )

    async def _signature_status(self, signature: str) -> dict[str, Any] | None:
        params = [[signature], {"searchTransactionHistory": True}]
        result = await self._make_rpc_request("getSignatureStatuses", params)
        values = (result or {}).get("value") or [None]
        return values[0]

    async def get_transaction_status(self, signature: str) -> Confirmation:
        """Look the transaction up once via ``getTransaction``."""
        params = [
            signature,
            {
                "encoding": "json",
                "commitment": "confirmed",
                "maxSupportedTransactionVersion": 0,
            },
        ]
        result = await self._make_rpc_request("getTransaction", params)

        if result is None:
            return Confirmation(
                status=ConfirmationStatus.UNKNOWN, reason="transaction not found"
            )

        meta = result.get("meta") or {}
        if meta.get("err") is not None:
            return Confirmation(
                status=ConfirmationStatus.FAILED,
                reason=str(meta["err"]),
                slot=result.get("slot"),
            )
        return Confirmation(status=ConfirmationStatus.SUCCESS, slot=result.get("slot"))
