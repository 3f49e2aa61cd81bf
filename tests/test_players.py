import unittest
from datetime import datetime

from fairflip.core.bets import BetManager
from fairflip.core.exceptions import FlipValidationError
from fairflip.core.players import PlayerService

from tests.helpers import FakeClock, TempDatabase, flip_config, place_known_bet, random_wallet


class TestPlayerService(unittest.TestCase):
    def setUp(self):
        self.temp = TempDatabase()
        self.db = self.temp.db
        self.clock = FakeClock()
        self.bets = BetManager(self.db, flip_config(), clock=self.clock)
        self.players = PlayerService(self.bets)

    def tearDown(self):
        self.temp.cleanup()

    def play(self, wallet, *wins, amount=10_000):
        for win in wins:
            bet, seed = place_known_bet(self.bets, wallet, amount, win=win)
            self.bets.reveal_bet(bet["bet_id"], seed)

    def test_stats_for_new_wallet(self):
        wallet = random_wallet()
        stats = self.players.get_stats(wallet)
        self.assertEqual(stats["total_flips"], 0)
        self.assertEqual(stats["win_rate"], 0)

    def test_stats_after_play(self):
        wallet = random_wallet()
        self.play(wallet, True, False, True)
        stats = self.players.get_stats(wallet)

        self.assertEqual(stats["total_flips"], 3)
        self.assertEqual(stats["total_wins"], 2)
        self.assertEqual(stats["win_rate"], 66.67)
        self.assertEqual(stats["total_wagered"], 30_000)
        self.assertEqual(stats["total_won"], 36_000)
        self.assertEqual(stats["net_profit"], 6_000)
        self.assertEqual(stats["biggest_win"], 18_000)

    def test_leaderboard_orders_and_ranks(self):
        winner, loser, middle = random_wallet(), random_wallet(), random_wallet()
        self.play(winner, True, True)
        self.play(loser, False, False)
        self.play(middle, True)

        board = self.players.leaderboard("profit")
        self.assertEqual([e["wallet_address"] for e in board], [winner, middle, loser])
        self.assertEqual([e["rank"] for e in board], [1, 2, 3])

        by_flips = self.players.leaderboard("total_flips", limit=2)
        self.assertEqual(len(by_flips), 2)
        self.assertEqual(self.players.leaderboard("profit", offset=2)[0]["rank"], 3)

    def test_leaderboard_rejects_unknown_sort(self):
        with self.assertRaises(FlipValidationError) as ctx:
            self.players.leaderboard("wallet_address; DROP TABLE flip_bets")
        self.assertIn("profit", ctx.exception.details["allowed"])
        with self.assertRaises(FlipValidationError):
            self.players.leaderboard("profit", limit=0)

    def test_daily_status(self):
        wallet = random_wallet()
        self.play(wallet, False, amount=100_000)
        status = self.players.daily_status(wallet)

        self.assertEqual(status["wagered_today"], 100_000)
        self.assertEqual(status["remaining"], 100_000)
        self.assertTrue(status["can_flip"])

        self.play(wallet, False, amount=100_000)
        self.assertFalse(self.players.daily_status(wallet)["can_flip"])

    def test_self_exclusion_only_extends(self):
        wallet = random_wallet()
        long = self.players.self_exclude(wallet, 30)
        short = self.players.self_exclude(wallet, 2)
        self.assertEqual(short["self_excluded_until"], long["self_excluded_until"])

        longer = self.players.self_exclude(wallet, 60)
        self.assertGreater(
            datetime.fromisoformat(longer["self_excluded_until"]),
            datetime.fromisoformat(long["self_excluded_until"]),
        )
        status = self.players.daily_status(wallet)
        self.assertEqual(status["self_excluded_until"], longer["self_excluded_until"])
        self.assertFalse(status["can_flip"])

    def test_self_exclusion_bounds(self):
        for days in (0, -1, 3651):
            with self.assertRaises(FlipValidationError):
                self.players.self_exclude(random_wallet(), days)


if __name__ == "__main__":
    unittest.main()
