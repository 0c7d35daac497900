"""External wallet signers. The client itself never holds key material."""

import base64
import subprocess

import structlog

from ..core.errors import SwapRejected

logger = structlog.get_logger(__name__)


class ExternalSigner:
    """Signer using an external wallet bridge command.

    The command is invoked as ``<command> <args...> <unsigned_tx_base64>`` and
    must print the fully signed transaction as base64. A non-zero exit status
    means the wallet declined to sign.
    """

    def __init__(
        self, command: str, args: list[str] | None = None, timeout: int = 120
    ) -> None:
        """Initialize ExternalSigner with command configuration.

        Args:
            command: Path to external signing command
            args: Additional arguments for the command
            timeout: Timeout in seconds for command execution
        """
        self.command = command
        self.args = args or []
        self.timeout = timeout
        self.pubkey = self._get_pubkey()
        logger.info("ExternalSigner initialized", command=command, pubkey=self.pubkey)

    def pubkey_base58(self) -> str:
        """Get the public key in base58 format."""
        return self.pubkey

    def sign_transaction(self, txn_bytes: bytes) -> bytes:
        """Sign a transaction using the external command.

        Args:
            txn_bytes: Serialized unsigned transaction

        Returns:
            Fully signed transaction bytes ready for RPC submission

        Raises:
            SwapRejected: If the wallet declines, times out, or returns nothing
        """
        txn_b64 = base64.b64encode(txn_bytes).decode("utf-8")
        cmd = [self.command] + self.args + [txn_b64]

        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout, check=True
            )
        except subprocess.TimeoutExpired as e:
            raise SwapRejected(
                f"External signer timed out after {self.timeout} seconds"
            ) from e
        except subprocess.CalledProcessError as e:
            logger.warning(
                "External signer declined", returncode=e.returncode, stderr=e.stderr
            )
            raise SwapRejected(
                f"External signer declined: {(e.stderr or '').strip() or e.returncode}"
            ) from e
        except OSError as e:
            raise SwapRejected(f"Failed to run external signer: {e}") from e

        signed_b64 = result.stdout.strip()
        if not signed_b64:
            raise SwapRejected("External signer returned empty output")

        try:
            return base64.b64decode(signed_b64, validate=True)
        except ValueError as e:
            raise SwapRejected(f"External signer returned invalid base64: {e}") from e

    def _get_pubkey(self) -> str:
        """Get public key from external command."""
        cmd = [self.command] + self.args + ["--pubkey"]

        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout, check=True
            )
            return result.stdout.strip()
        except (subprocess.SubprocessError, OSError) as e:
            logger.warning(
                "Failed to get public key from external command", error=str(e)
            )
            return "unknown"
