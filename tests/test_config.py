import logging
import os
import unittest
from decimal import Decimal
from unittest.mock import patch

import orjson
from pydantic import ValidationError

from fairflip.config import FlipConfig, load_config
from fairflip.core.logger import JsonFormatter, PlainFormatter


class TestConfig(unittest.TestCase):
    def test_env_overrides(self):
        env = {"FLIP_MIN_BET": "5", "FLIP_MAX_BET": "50", "DEBUG": "yes", "LOG_FORMATTER": "json"}
        with patch.dict(os.environ, env):
            config = load_config()
        self.assertEqual(config.flip.min_bet, 5)
        self.assertEqual(config.flip.max_bet, 50)
        self.assertTrue(config.server.debug)
        self.assertEqual(config.logging.formatter, "json")

    def test_defaults_use_smallest_token_unit(self):
        config = FlipConfig()
        self.assertEqual(config.min_bet, 10_000 * 10**18)
        self.assertEqual((config.house_fee_bps, config.burn_bps), (150, 50))

    def test_invalid_limits(self):
        with self.assertRaises(ValidationError):
            FlipConfig(min_bet=10, max_bet=5)
        with self.assertRaises(ValidationError):
            FlipConfig(house_fee_bps=9_000, burn_bps=1_000)
        with self.assertRaises(ValidationError):
            FlipConfig(burn_bps=-1)
        with self.assertRaises(ValidationError):
            FlipConfig(min_bet=100, max_bet=1_000, daily_limit=99)
        with self.assertRaises(ValidationError):
            FlipConfig(reveal_window_seconds=0)
        FlipConfig(min_bet=100, max_bet=1_000, daily_limit=100)


class TestLogFormatters(unittest.TestCase):
    def make_record(self):
        return logging.makeLogRecord({
            "name": "fairflip.bets",
            "levelno": logging.INFO,
            "levelname": "INFO",
            "msg": "Bet placed",
            "bet_id": "abc",
            "multiplier": Decimal("1.2"),
        })

    def test_json_includes_extra_fields(self):
        data = orjson.loads(JsonFormatter().format(self.make_record()))
        self.assertEqual(data["message"], "Bet placed")
        self.assertEqual(data["bet_id"], "abc")
        self.assertEqual(data["multiplier"], "1.2")

    def test_plain_appends_context(self):
        line = PlainFormatter().format(self.make_record())
        self.assertTrue(line.endswith("Bet placed [bet_id=abc multiplier=1.2]"))


if __name__ == "__main__":
    unittest.main()
