"""
Solana Client Helper
====================
A thin wrapper around the Solana JSON-RPC calls the backend needs.

This module handles:
- Reading wallet balances (getBalance)
- Building and signing SOL transfers with solders
- Sending them (sendTransaction) and waiting for confirmation (getSignatureStatuses)
- Address validation

The RPC endpoint is SOLANA_RPC_URL, or the public cluster for SOLANA_NETWORK.
"""

import asyncio
import base64

import aiohttp
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from config.settings import Settings
from utils.logger import get_logger

logger = get_logger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


class SolanaClient:
    """
    Async Solana RPC client.

    Usage:
        client = SolanaClient(settings)
        await client.initialize()
        balance = await client.get_sol_balance("wallet_address_here")
        signature = await client.transfer_sol(keypair, [(to_address, lamports)])
        await client.close()
    """

    def __init__(self, settings: Settings):
        self.rpc_url = settings.rpc_url
        self.timeout = aiohttp.ClientTimeout(total=settings.rpc_timeout_seconds)
        self.session: aiohttp.ClientSession | None = None

    async def initialize(self) -> None:
        """Create the HTTP session for making RPC calls."""
        self.session = aiohttp.ClientSession(timeout=self.timeout)
        logger.info("solana_client_initialized", rpc=self.rpc_url)

    async def close(self) -> None:
        """Clean up the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

    # =========================================================================
    # Core RPC Calls
    # =========================================================================

    async def _rpc_call(self, method: str, params: list | None = None) -> dict:
        """
        Make a JSON-RPC call to the Solana node.
        Network errors propagate; RPC-level errors come back under "error".
        """
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params or [],
        }
        async with self.session.post(self.rpc_url, json=payload) as response:
            data = await response.json(content_type=None)
            if "error" in data:
                logger.error("rpc_error", method=method, error=data["error"])
            return data

    async def get_sol_balance(self, address: str) -> float:
        """Balance in SOL (not lamports)."""
        result = await self._rpc_call("getBalance", [address, {"commitment": "confirmed"}])
        if "error" in result:
            raise RuntimeError(f"getBalance failed: {result['error']}")
        lamports = result.get("result", {}).get("value", 0)
        return lamports / LAMPORTS_PER_SOL

    async def get_latest_blockhash(self) -> Hash:
        result = await self._rpc_call("getLatestBlockhash", [{"commitment": "finalized"}])
        blockhash = result.get("result", {}).get("value", {}).get("blockhash")
        if not blockhash:
            raise RuntimeError(f"getLatestBlockhash failed: {result.get('error')}")
        return Hash.from_string(blockhash)

    async def send_transaction(self, signed_bytes: bytes) -> str | None:
        """Send a signed transaction. Returns its signature, or None if the node rejected it."""
        encoded = base64.b64encode(signed_bytes).decode("utf-8")
        result = await self._rpc_call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": "confirmed"}],
        )
        if "error" in result:
            return None
        return result.get("result")

    async def confirm_transaction(self, signature: str, timeout: int = 30) -> bool:
        """
        Poll until the transaction is confirmed.
        Returns True if confirmed, False if it timed out or failed on-chain.
        """
        for _ in range(timeout):
            try:
                result = await self._rpc_call(
                    "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
                )
                statuses = result.get("result", {}).get("value", [])
                if statuses and statuses[0]:
                    status = statuses[0]
                    if status.get("confirmationStatus") in ("confirmed", "finalized"):
                        if status.get("err"):
                            logger.error("tx_confirmed_with_error", signature=signature, error=status["err"])
                            return False
                        logger.info("tx_confirmed", signature=signature)
                        return True
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.debug("confirm_check_error", error=str(e))

            await asyncio.sleep(1)

        logger.warning("tx_confirmation_timeout", signature=signature)
        return False

    # =========================================================================
    # Transfers
    # =========================================================================

    async def transfer_sol(self, sender: Keypair, transfers: list[tuple[str, int]]) -> str | None:
        """
        Send SOL from `sender` to one or more recipients in a single transaction.

        Args:
            sender: Keypair that pays and signs
            transfers: [(destination address, lamports), ...]

        Returns the confirmed signature, or None if sending or confirmation failed.
        """
        instructions = [
            transfer(TransferParams(
                from_pubkey=sender.pubkey(),
                to_pubkey=Pubkey.from_string(to_address),
                lamports=lamports,
            ))
            for to_address, lamports in transfers
            if lamports > 0
        ]
        blockhash = await self.get_latest_blockhash()
        message = Message.new_with_blockhash(instructions, sender.pubkey(), blockhash)
        transaction = Transaction([sender], message, blockhash)

        signature = await self.send_transaction(bytes(transaction))
        if not signature:
            return None
        if not await self.confirm_transaction(signature):
            return None
        return signature

    @staticmethod
    def is_valid_address(address: str) -> bool:
        """True if `address` parses as a Solana public key."""
        try:
            Pubkey.from_string(address)
            return True
        except (ValueError, TypeError):
            return False
