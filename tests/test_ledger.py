import sqlite3
import unittest

from fairflip.core.bets import BetManager
from fairflip.core.exceptions import (
    BalanceNotFoundError,
    BelowMinimumWithdrawalError,
    WithdrawalPendingError,
)
from fairflip.core.ledger import Ledger

from tests.helpers import (
    FakeClock,
    TempDatabase,
    flip_config,
    place_known_bet,
    random_wallet,
    withdrawal_config,
)


class TestLedger(unittest.TestCase):
    def setUp(self):
        self.temp = TempDatabase()
        self.db = self.temp.db
        self.clock = FakeClock()
        self.bets = BetManager(self.db, flip_config(), clock=self.clock)
        self.ledger = Ledger(self.db, withdrawal_config(), clock=self.clock)
        self.wallet = random_wallet()

    def tearDown(self):
        self.temp.cleanup()

    def flip(self, win=True, amount=10_000):
        bet, seed = place_known_bet(self.bets, self.wallet, amount, win=win)
        return self.bets.reveal_bet(bet["bet_id"], seed)

    def assertBalanceInvariant(self):
        balance = self.db.get_player_balance(self.wallet)
        self.assertEqual(
            balance["pending_balance"], balance["total_won"] - balance["total_withdrawn"]
        )

    def test_unknown_wallet_has_no_balance(self):
        with self.assertRaises(BalanceNotFoundError):
            self.ledger.request_withdrawal(self.wallet)
        self.assertIsNone(self.ledger.get_balance(self.wallet))

    def test_below_minimum_changes_nothing(self):
        self.flip(win=False)
        with self.assertRaises(BelowMinimumWithdrawalError) as ctx:
            self.ledger.request_withdrawal(self.wallet)

        self.assertEqual(ctx.exception.to_dict(), {
            "error": "Insufficient balance",
            "reason": "insufficient_balance",
            "message": "Minimum withdrawal is 10 tokens",
            "currentBalance": "0",
            "minRequired": "10000",
        })
        self.assertEqual(self.db.get_withdrawals(wallet=self.wallet), [])
        self.assertEqual(self.db.get_player_balance(self.wallet)["total_withdrawn"], 0)

    def test_withdraw_whole_pending_balance(self):
        self.flip()
        withdrawal = self.ledger.request_withdrawal(self.wallet.upper())

        self.assertEqual(withdrawal["amount"], 18_000)
        self.assertEqual(withdrawal["status"], "pending")
        self.assertEqual(withdrawal["wallet_address"], self.wallet)

        balance = self.db.get_player_balance(self.wallet)
        self.assertEqual(balance["pending_balance"], 0)
        self.assertEqual(balance["total_withdrawn"], 18_000)
        self.assertEqual(balance["total_withdrawals"], 1)
        self.assertBalanceInvariant()

    def test_one_open_withdrawal_per_wallet(self):
        self.flip()
        first = self.ledger.request_withdrawal(self.wallet)
        self.flip()

        with self.assertRaises(WithdrawalPendingError) as ctx:
            self.ledger.request_withdrawal(self.wallet)
        self.assertEqual(ctx.exception.details["withdrawal"]["id"], first["id"])
        self.assertEqual(self.db.get_player_balance(self.wallet)["pending_balance"], 21_600)
        self.assertBalanceInvariant()

    def test_open_withdrawal_index_rejects_duplicates(self):
        self.db.insert_withdrawal(
            {"id": "w1", "wallet_address": self.wallet, "amount": 1, "requested_at": "2026-01-01"}
        )
        with self.assertRaises(sqlite3.IntegrityError):
            self.db.insert_withdrawal(
                {"id": "w2", "wallet_address": self.wallet, "amount": 1, "requested_at": "2026-01-02"}
            )

    def test_processing_withdrawal_still_blocks(self):
        self.flip()
        first = self.ledger.request_withdrawal(self.wallet)
        self.db.update_withdrawal_status(first["id"], "processing", "pending")
        self.flip()
        with self.assertRaises(WithdrawalPendingError):
            self.ledger.request_withdrawal(self.wallet)

    def test_history_is_newest_first(self):
        self.flip()
        first = self.ledger.request_withdrawal(self.wallet)
        self.db.update_withdrawal_status(first["id"], "completed", "pending")

        self.clock.advance(minutes=1)
        self.flip()
        second = self.ledger.request_withdrawal(self.wallet)

        history = self.ledger.get_withdrawal_history(self.wallet)
        self.assertEqual([w["id"] for w in history], [second["id"], first["id"]])
        self.assertEqual(len(self.ledger.get_withdrawal_history(self.wallet, limit=1)), 1)
        self.assertBalanceInvariant()

    def test_balance_view(self):
        self.flip(win=False)
        balance = self.ledger.get_balance(self.wallet)
        self.assertFalse(balance["can_withdraw"])
        self.assertEqual(balance["min_withdrawal"], 10_000)

        self.flip()
        self.assertTrue(self.ledger.get_balance(self.wallet)["can_withdraw"])

    def test_token_display_truncates(self):
        self.assertEqual(self.ledger.to_tokens(18_999), "18")


if __name__ == "__main__":
    unittest.main()
