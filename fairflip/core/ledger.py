"""
Balance and withdrawal ledger.

pending_balance == total_won - total_withdrawn for every wallet. Reveals
credit total_won and pending_balance; a withdrawal request moves the whole
pending balance to total_withdrawn at request time, and a failed payout
moves it back.
"""

import sqlite3
import uuid
from datetime import datetime
from typing import Callable, Dict, List

from fairflip.config import WithdrawalConfig, settings
from fairflip.core.bets import normalize_wallet
from fairflip.core.database import Database, db, isoformat, utc_now
from fairflip.core.exceptions import (
    BalanceNotFoundError,
    BelowMinimumWithdrawalError,
    StorageError,
    WithdrawalPendingError,
)
from fairflip.core.logger import get_logger

logger = get_logger("ledger")


class Ledger:
    def __init__(
        self,
        database: Database = None,
        config: WithdrawalConfig = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = database or db
        self.config = config or settings.withdrawal
        self.clock = clock

    def to_tokens(self, amount: int) -> str:
        """Whole-token display value, truncated."""
        return str(amount // 10**self.config.token_decimals)

    def request_withdrawal(self, wallet_address: str) -> Dict:
        """
        Withdraw the whole pending balance.

        The open-withdrawal check, the insert and the balance move run in one
        transaction. The partial unique index on open withdrawals backs the
        check up: a constraint violation is reported as already pending.
        """
        wallet = normalize_wallet(wallet_address)
        now = isoformat(self.clock())
        withdrawal_id = uuid.uuid4().hex

        try:
            with self.db.transaction() as cur:
                balance = self.db.get_player_balance(wallet, cur=cur)
                if balance is None:
                    raise BalanceNotFoundError("No balance found")

                if balance["pending_balance"] < self.config.min_amount:
                    raise BelowMinimumWithdrawalError(
                        "Insufficient balance",
                        message=f"Minimum withdrawal is {self.to_tokens(self.config.min_amount)} tokens",
                        currentBalance=str(balance["pending_balance"]),
                        minRequired=str(self.config.min_amount),
                    )

                existing = self.db.get_open_withdrawal(wallet, cur=cur)
                if existing:
                    raise self._already_pending(existing)

                amount = balance["pending_balance"]
                self.db.insert_withdrawal(
                    {
                        "id": withdrawal_id,
                        "wallet_address": wallet,
                        "amount": amount,
                        "requested_at": now,
                    },
                    cur=cur,
                )
                self.db.move_pending_to_withdrawn(wallet, amount, cur=cur)
        except sqlite3.IntegrityError:
            logger.warning("Concurrent withdrawal rejected", extra={"wallet": wallet})
            raise self._already_pending(self.db.get_open_withdrawal(wallet))
        except sqlite3.Error:
            logger.error("Error creating withdrawal", exc_info=True, extra={"wallet": wallet})
            raise StorageError("Failed to create withdrawal")

        logger.info(
            "Withdrawal requested",
            extra={"withdrawal_id": withdrawal_id, "wallet": wallet, "amount": amount},
        )

        return {
            "id": withdrawal_id,
            "wallet_address": wallet,
            "amount": amount,
            "status": "pending",
            "requested_at": now,
        }

    def _already_pending(self, withdrawal: Dict) -> WithdrawalPendingError:
        details = {}
        if withdrawal:
            details["withdrawal"] = {
                "id": withdrawal["id"],
                "amount": str(withdrawal["amount"]),
                "status": withdrawal["status"],
                "requestedAt": withdrawal["requested_at"],
            }
        return WithdrawalPendingError("Withdrawal already pending", **details)

    def get_balance(self, wallet_address: str) -> Dict:
        """Balance row plus withdrawal eligibility, or None for unknown wallets."""
        wallet = normalize_wallet(wallet_address)
        balance = self.db.get_player_balance(wallet)
        if balance is None:
            return None
        balance["can_withdraw"] = balance["pending_balance"] >= self.config.min_amount
        balance["min_withdrawal"] = self.config.min_amount
        return balance

    def get_withdrawal_history(self, wallet_address: str, limit: int = 10) -> List[Dict]:
        wallet = normalize_wallet(wallet_address)
        return self.db.get_withdrawals(wallet=wallet, limit=limit)


ledger = Ledger()
