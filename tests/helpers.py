"""Shared fixtures for the unittest-style test cases."""

import secrets
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

from fairflip.config import FlipConfig, WithdrawalConfig
from fairflip.core.database import Database
from fairflip.core.fairness import combine_seeds, determine_result
from fairflip.core.rng import hash_seed, rng

SERVER_SEED = "5e" * 32

TEST_FLIP_CONFIG = dict(
    min_bet=1_000,
    max_bet=100_000,
    daily_limit=200_000,
    min_balance=50_000,
    house_fee_bps=500,
    burn_bps=500,
    reveal_window_seconds=300,
)


class FakeClock:
    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def random_wallet() -> str:
    return "0x" + secrets.token_hex(20)


def other_side(side: str) -> str:
    return "tails" if side == "heads" else "heads"


def flip_config(**overrides) -> FlipConfig:
    return FlipConfig(**{**TEST_FLIP_CONFIG, **overrides})


def withdrawal_config(**overrides) -> WithdrawalConfig:
    return WithdrawalConfig(**{"min_amount": 10_000, "token_decimals": 3, **overrides})


class TempDatabase:
    """A Database in its own temporary directory."""

    def __init__(self):
        self.directory = tempfile.mkdtemp(prefix="fairflip-db-")
        self.db = Database(Path(self.directory) / "flip.db")

    def cleanup(self):
        shutil.rmtree(self.directory, ignore_errors=True)


def place_known_bet(bets, wallet, amount, win=True, client_seed=None, **kwargs):
    """
    Place a bet whose outcome is known in advance by pinning the server seed.

    Returns:
        (placed bet dict, client seed)
    """
    client_seed = client_seed or secrets.token_hex(16)
    outcome = determine_result(combine_seeds(client_seed, SERVER_SEED))
    choice = outcome if win else other_side(outcome)
    with patch.object(rng, "generate_seed", return_value=SERVER_SEED):
        bet = bets.place_bet(wallet, amount, choice, hash_seed(client_seed), **kwargs)
    return bet, client_seed
