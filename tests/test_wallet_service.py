"""Tests for custodial wallets, withdrawals and the ledger."""

import pytest
from solders.keypair import Keypair

from tests.factories import create_user
from utils.errors import InsufficientBalanceError, NotFoundError, TransferError, ValidationError
from utils.security import SecurityManager
from utils.solana_client import LAMPORTS_PER_SOL
from wallet.wallet_service import WalletService


@pytest.fixture
def security(settings):
    return SecurityManager(settings)


@pytest.fixture
def wallet(settings, db, solana, security):
    return WalletService(settings, db, solana, security)


async def _user_with_wallet(db, wallet):
    address, encrypted = wallet.generate_wallet()
    user_id = await db.create_user({
        "email": "op@example.com",
        "username": "operator",
        "password_hash": "x",
        "wallet_address": address,
        "encrypted_private_key": encrypted,
    })
    return user_id, address


DESTINATION = str(Keypair().pubkey())


class TestGenerateWallet:

    def test_secret_is_encrypted_and_recoverable(self, wallet):
        address, encrypted = wallet.generate_wallet()

        assert wallet.is_valid_address(address)
        keypair = wallet._load_keypair(encrypted)
        assert str(keypair.pubkey()) == address

    def test_unreadable_secret(self, wallet):
        with pytest.raises(TransferError):
            wallet._load_keypair("definitely-not-fernet")


class TestBalance:

    @pytest.mark.asyncio
    async def test_rpc_failure_reads_as_zero(self, wallet, solana):
        solana.get_sol_balance.side_effect = RuntimeError("rpc down")
        assert await wallet.get_balance(DESTINATION) == 0.0

    @pytest.mark.asyncio
    async def test_balance_info_caches_on_user(self, wallet, db, solana):
        user_id, address = await _user_with_wallet(db, wallet)
        solana.get_sol_balance.return_value = 2.5

        info = await wallet.balance_info(user_id)

        assert info == {"wallet_address": address, "balance": 2.5, "balance_formatted": "2.5000 SOL"}
        assert (await db.get_user_by_id(user_id))["sol_balance"] == 2.5

    @pytest.mark.asyncio
    async def test_deposit_info(self, wallet, db):
        user_id, address = await _user_with_wallet(db, wallet)
        info = await wallet.deposit_info(user_id)
        assert info["deposit_address"] == address
        assert info["network"] == "Solana"

    @pytest.mark.asyncio
    async def test_unknown_user(self, wallet):
        with pytest.raises(NotFoundError):
            await wallet.balance_info(404)


class TestWithdraw:

    @pytest.mark.asyncio
    async def test_fee_split_and_ledger_rows(self, wallet, db, solana, settings):
        user_id, address = await _user_with_wallet(db, wallet)

        receipt = await wallet.withdraw_with_fee(user_id, DESTINATION, 0.5)

        assert receipt["signature"] == "5igSignature111"
        assert receipt["amount"] == pytest.approx(0.45)
        assert receipt["fee_amount"] == pytest.approx(0.05)
        assert receipt["new_balance"] == 1.0

        _, transfers = solana.transfer_sol.call_args[0]
        assert transfers == [
            (DESTINATION, int(0.45 * LAMPORTS_PER_SOL)),
            (settings.admin_wallet_address, int(0.05 * LAMPORTS_PER_SOL)),
        ]

        withdrawal = await db.get_transaction_by_signature(user_id, "5igSignature111")
        assert withdrawal["type"] == "withdrawal"
        assert withdrawal["amount"] == pytest.approx(0.45)
        assert withdrawal["from_address"] == address
        assert withdrawal["metadata"]["original_amount"] == 0.5

        fee = await db.get_transaction_by_signature(user_id, "5igSignature111_fee")
        assert fee["type"] == "fee"
        assert fee["amount"] == pytest.approx(0.05)
        assert fee["to_address"] == settings.admin_wallet_address

    @pytest.mark.asyncio
    async def test_zero_fee_writes_one_row(self, wallet, db, solana, settings):
        settings.fee_percentage = 0
        user_id, _ = await _user_with_wallet(db, wallet)

        await wallet.withdraw_with_fee(user_id, DESTINATION, 0.5)

        _, transfers = solana.transfer_sol.call_args[0]
        assert len(transfers) == 1
        assert await db.count_transactions(user_id) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("to_address,amount,message", [
        ("", 0.5, "required"),
        (DESTINATION, -1, "greater than zero"),
        (DESTINATION, 0.05, "Minimum withdrawal"),
        ("not-an-address", 0.5, "Invalid Solana address"),
    ])
    async def test_rejects_bad_input(self, wallet, db, solana, to_address, amount, message):
        user_id, _ = await _user_with_wallet(db, wallet)

        with pytest.raises(ValidationError, match=message):
            await wallet.withdraw_with_fee(user_id, to_address, amount)

        solana.transfer_sol.assert_not_called()

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, wallet, db, solana):
        user_id, _ = await _user_with_wallet(db, wallet)
        solana.get_sol_balance.return_value = 0.2

        with pytest.raises(InsufficientBalanceError):
            await wallet.withdraw_with_fee(user_id, DESTINATION, 0.5)

        assert await db.count_transactions(user_id) == 0

    @pytest.mark.asyncio
    async def test_missing_admin_wallet(self, wallet, db, settings):
        settings.admin_wallet_address = ""
        user_id, _ = await _user_with_wallet(db, wallet)

        with pytest.raises(TransferError):
            await wallet.withdraw_with_fee(user_id, DESTINATION, 0.5)

    @pytest.mark.asyncio
    async def test_send_failure_leaves_no_ledger_rows(self, wallet, db, solana):
        user_id, _ = await _user_with_wallet(db, wallet)
        solana.transfer_sol.side_effect = RuntimeError("blockhash not found")

        with pytest.raises(TransferError, match="blockhash not found"):
            await wallet.withdraw_with_fee(user_id, DESTINATION, 0.5)

        assert await db.count_transactions(user_id) == 0


class TestLedger:

    @pytest.mark.asyncio
    async def test_pagination_and_type_filter(self, wallet, db):
        user_id = await create_user(db)
        for i in range(5):
            await db.insert_transaction({
                "user_id": user_id, "type": "trade" if i % 2 else "deposit",
                "amount": 0.1, "signature": f"sig{i}", "status": "confirmed",
            })

        page = await wallet.list_transactions(user_id, page=2, limit=2)
        assert len(page["transactions"]) == 2
        assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}

        trades = await wallet.list_transactions(user_id, tx_type="trade")
        assert trades["pagination"]["total"] == 2
        assert {tx["type"] for tx in trades["transactions"]} == {"trade"}

    @pytest.mark.asyncio
    async def test_bad_type_rejected(self, wallet):
        with pytest.raises(ValidationError):
            await wallet.list_transactions(1, tx_type="airdrop")

    @pytest.mark.asyncio
    async def test_transactions_are_per_user(self, wallet, db):
        owner = await create_user(db, "a@x.io", "a")
        other = await create_user(db, "b@x.io", "b")
        await db.insert_transaction({"user_id": owner, "type": "deposit", "amount": 1, "signature": "mine"})

        assert (await wallet.get_transaction(owner, "mine"))["amount"] == 1
        with pytest.raises(NotFoundError):
            await wallet.get_transaction(other, "mine")
