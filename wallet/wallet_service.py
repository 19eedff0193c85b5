"""
Wallet Service
==============
Each operator gets a custodial Solana wallet at signup. This module owns
everything that touches it:

- generate_wallet: new keypair, secret encrypted before it is stored
- get_balance / refresh_balance: live balance from RPC (cached on the user row)
- withdraw_with_fee: send SOL out, with the platform fee going to the admin
  wallet in the same transaction, and record both legs in the ledger
- list_transactions / get_transaction: the user's ledger

Balance lookups never raise: an RPC failure reads as 0 SOL.
"""

import math
from typing import Any

import base58
from cryptography.fernet import InvalidToken
from solders.keypair import Keypair

from config.settings import Settings
from database.db import Database
from utils.errors import (
    InsufficientBalanceError,
    NotFoundError,
    TransferError,
    ValidationError,
)
from utils.logger import get_logger
from utils.security import SecurityManager
from utils.solana_client import LAMPORTS_PER_SOL, SolanaClient

logger = get_logger(__name__)

TRANSACTION_TYPES = ("deposit", "withdrawal", "trade", "fee")


class WalletService:
    """
    Usage:
        wallet = WalletService(settings, db, solana, security)
        address, encrypted = wallet.generate_wallet()
        balance = await wallet.get_balance(address)
        receipt = await wallet.withdraw_with_fee(user_id, to_address, 0.5)
    """

    def __init__(self, settings: Settings, db: Database, solana: SolanaClient, security: SecurityManager):
        self.settings = settings
        self.db = db
        self.solana = solana
        self.security = security

    def generate_wallet(self) -> tuple[str, str]:
        """Returns (public address, encrypted base58 secret key)."""
        keypair = Keypair()
        secret = base58.b58encode(bytes(keypair)).decode()
        return str(keypair.pubkey()), self.security.encrypt_secret(secret)

    def _load_keypair(self, encrypted_secret: str) -> Keypair:
        try:
            secret = self.security.decrypt_secret(encrypted_secret)
            return Keypair.from_bytes(base58.b58decode(secret))
        except (InvalidToken, ValueError) as e:
            logger.error("wallet_key_unreadable", error=type(e).__name__)
            raise TransferError("Wallet key could not be decrypted") from e

    def is_valid_address(self, address: str) -> bool:
        return SolanaClient.is_valid_address(address)

    async def _get_user(self, user_id: int) -> dict:
        user = await self.db.get_user_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    # =========================================================================
    # Balance
    # =========================================================================

    async def get_balance(self, address: str) -> float:
        try:
            return await self.solana.get_sol_balance(address)
        except Exception as e:
            logger.warning("balance_lookup_failed", address=address[:8] + "...", error=str(e))
            return 0.0

    async def refresh_balance(self, user: dict) -> float:
        """Read the live balance and cache it on the user row."""
        balance = await self.get_balance(user["wallet_address"])
        await self.db.update_user_balance(user["id"], balance)
        return balance

    async def balance_info(self, user_id: int) -> dict[str, Any]:
        user = await self._get_user(user_id)
        balance = await self.refresh_balance(user)
        return {
            "wallet_address": user["wallet_address"],
            "balance": balance,
            "balance_formatted": f"{balance:.4f} SOL",
        }

    async def deposit_info(self, user_id: int) -> dict[str, Any]:
        user = await self._get_user(user_id)
        return {
            "deposit_address": user["wallet_address"],
            "message": "Send SOL to this address to make a deposit",
            "network": "Solana",
            "minimum_deposit": f"{self.settings.minimum_deposit_sol} SOL",
        }

    # =========================================================================
    # Withdrawals
    # =========================================================================

    async def withdraw_with_fee(self, user_id: int, to_address: str, amount: float) -> dict[str, Any]:
        """
        Withdraw `amount` SOL to `to_address`.

        The destination receives amount - fee, the admin wallet receives the
        fee, both in one signed transaction. Ledger rows: a "withdrawal" for
        the net amount and, when there is a fee, a "fee" row whose signature
        is the withdrawal's signature + "_fee".
        """
        if not to_address or not amount:
            raise ValidationError("Destination address and amount are required")
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        if amount < self.settings.min_withdrawal_amount:
            raise ValidationError(f"Minimum withdrawal: {self.settings.min_withdrawal_amount} SOL")
        if not self.is_valid_address(to_address):
            raise ValidationError("Invalid Solana address")

        user = await self._get_user(user_id)

        balance = await self.get_balance(user["wallet_address"])
        if balance < amount:
            raise InsufficientBalanceError("Insufficient balance")

        fee_amount = amount * self.settings.fee_percentage / 100
        net_amount = amount - fee_amount
        if fee_amount > 0 and not self.settings.admin_wallet_address:
            raise TransferError("Admin wallet is not configured")

        keypair = self._load_keypair(user["encrypted_private_key"])
        transfers = [(to_address, math.floor(net_amount * LAMPORTS_PER_SOL))]
        if fee_amount > 0:
            transfers.append((self.settings.admin_wallet_address, math.floor(fee_amount * LAMPORTS_PER_SOL)))

        try:
            signature = await self.solana.transfer_sol(keypair, transfers)
        except Exception as e:
            logger.error("withdrawal_send_failed", user_id=user_id, error=str(e))
            raise TransferError(f"Withdrawal failed: {e}") from e
        if not signature:
            raise TransferError("Withdrawal transaction was not confirmed")

        await self.db.insert_transaction({
            "user_id": user_id,
            "type": "withdrawal",
            "amount": net_amount,
            "signature": signature,
            "status": "confirmed",
            "fee_amount": fee_amount,
            "from_address": user["wallet_address"],
            "to_address": to_address,
            "metadata": {"original_amount": amount, "fee_percentage": self.settings.fee_percentage},
        })
        if fee_amount > 0:
            await self.db.insert_transaction({
                "user_id": user_id,
                "type": "fee",
                "amount": fee_amount,
                "signature": f"{signature}_fee",
                "status": "confirmed",
                "from_address": user["wallet_address"],
                "to_address": self.settings.admin_wallet_address,
                "metadata": {"fee_percentage": self.settings.fee_percentage, "original_withdrawal": amount},
            })

        new_balance = await self.refresh_balance(user)
        logger.info(
            "withdrawal_completed",
            user_id=user_id,
            amount=net_amount,
            fee=fee_amount,
            signature=signature,
        )
        return {
            "signature": signature,
            "amount": net_amount,
            "fee_amount": fee_amount,
            "to_address": to_address,
            "new_balance": new_balance,
        }

    # =========================================================================
    # Ledger
    # =========================================================================

    async def list_transactions(
        self, user_id: int, page: int = 1, limit: int = 20, tx_type: str | None = None
    ) -> dict[str, Any]:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        if tx_type and tx_type not in TRANSACTION_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(TRANSACTION_TYPES)}")

        transactions = await self.db.get_transactions(user_id, tx_type, limit=limit, offset=(page - 1) * limit)
        total = await self.db.count_transactions(user_id, tx_type)
        return {
            "transactions": transactions,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }

    async def get_transaction(self, user_id: int, signature: str) -> dict:
        tx = await self.db.get_transaction_by_signature(user_id, signature)
        if not tx:
            raise NotFoundError("Transaction not found")
        return tx
