import unittest
from decimal import Decimal

from fairflip.core.exceptions import FlipValidationError
from fairflip.core.payout import BURN_BPS, HOUSE_FEE_BPS, calculate_payout, multiplier_hundredths
from fairflip.core.streaks import STREAK_MULTIPLIERS, streak_multiplier


class TestStreakMultiplier(unittest.TestCase):
    def test_table(self):
        expected = {
            0: "1.0", 1: "1.0", 2: "1.2", 3: "1.5", 4: "2.0", 5: "3.0", 6: "5.0", 7: "5.0", 50: "5.0",
        }
        for wins, multiplier in expected.items():
            self.assertEqual(streak_multiplier(wins), Decimal(multiplier), f"wins={wins}")

    def test_negative_streak(self):
        with self.assertRaises(ValueError):
            streak_multiplier(-1)


class TestPayout(unittest.TestCase):
    def test_example_split(self):
        payout = calculate_payout(10_000, True, Decimal("1.0"), house_fee_bps=500, burn_bps=500)
        self.assertEqual(payout, {
            "gross_payout": 20_000,
            "net_payout": 18_000,
            "house_fee": 1_000,
            "burn_amount": 1_000,
        })

    def test_default_fee_split(self):
        self.assertEqual((HOUSE_FEE_BPS, BURN_BPS), (150, 50))
        payout = calculate_payout(10**22, True)
        self.assertEqual(payout["gross_payout"], 2 * 10**22)
        self.assertEqual(payout["house_fee"], 3 * 10**20)
        self.assertEqual(payout["burn_amount"], 10**20)
        self.assertEqual(payout["net_payout"], 196 * 10**20)

    def test_loss_pays_nothing(self):
        for multiplier in STREAK_MULTIPLIERS.values():
            payout = calculate_payout(123_457, False, multiplier)
            self.assertEqual(set(payout.values()), {0})

    def test_conservation_is_exact(self):
        amounts = [1, 7, 999, 10_001, 123_456_789, 5 * 10**23 + 3]
        for amount in amounts:
            for wins in range(8):
                multiplier = streak_multiplier(wins)
                payout = calculate_payout(amount, True, multiplier, house_fee_bps=333, burn_bps=77)
                self.assertEqual(
                    payout["net_payout"] + payout["house_fee"] + payout["burn_amount"],
                    payout["gross_payout"],
                )
                self.assertEqual(payout["gross_payout"], amount * 2 * multiplier_hundredths(multiplier) // 100)

    def test_streak_multiplier_scales_gross(self):
        payout = calculate_payout(10_000, True, Decimal("1.5"), house_fee_bps=0, burn_bps=0)
        self.assertEqual(payout["gross_payout"], 30_000)
        self.assertEqual(payout["net_payout"], 30_000)

    def test_multiplier_accepts_strings_without_float_error(self):
        self.assertEqual(multiplier_hundredths("1.2"), 120)
        self.assertEqual(multiplier_hundredths(Decimal("5.0")), 500)

    def test_bad_multipliers(self):
        with self.assertRaises(FlipValidationError):
            multiplier_hundredths("1.234")
        with self.assertRaises(FlipValidationError):
            multiplier_hundredths("0.5")

    def test_negative_amount(self):
        with self.assertRaises(FlipValidationError):
            calculate_payout(-1, True)


if __name__ == "__main__":
    unittest.main()
