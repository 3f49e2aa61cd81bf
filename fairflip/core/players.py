"""
Per-player views: stats, leaderboard, daily wager status and self-exclusion.
"""

import sqlite3
from datetime import datetime, timedelta
from typing import Dict, List

from fairflip.core.bets import BetManager, bet_manager, empty_stats, normalize_wallet
from fairflip.core.database import LEADERBOARD_COLUMNS, isoformat
from fairflip.core.exceptions import FlipValidationError, StorageError
from fairflip.core.logger import get_logger

logger = get_logger("players")

MAX_EXCLUSION_DAYS = 3650
MAX_LEADERBOARD_LIMIT = 100


class PlayerService:
    def __init__(self, bets: BetManager = None):
        self.bets = bets or bet_manager
        self.db = self.bets.db

    def get_stats(self, wallet_address: str) -> Dict:
        wallet = normalize_wallet(wallet_address)
        stats = self.db.get_player_stats(wallet) or empty_stats(wallet)
        flips = stats["total_flips"]
        stats["win_rate"] = round(stats["total_wins"] / flips * 100, 2) if flips else 0
        return stats

    def leaderboard(self, sort_by: str = "profit", limit: int = 100, offset: int = 0) -> List[Dict]:
        if sort_by not in LEADERBOARD_COLUMNS:
            raise FlipValidationError(
                f"Invalid sortBy: {sort_by}",
                allowed=sorted(LEADERBOARD_COLUMNS),
            )
        if limit < 1 or offset < 0:
            raise FlipValidationError("limit must be positive and offset non-negative")
        limit = min(limit, MAX_LEADERBOARD_LIMIT)

        entries = self.db.get_leaderboard(sort_by, limit, offset)
        for rank, entry in enumerate(entries, start=offset + 1):
            entry["rank"] = rank
            entry["win_rate"] = round(entry["total_wins"] / entry["total_flips"] * 100, 2)
        return entries

    def daily_status(self, wallet_address: str) -> Dict:
        wallet = normalize_wallet(wallet_address)
        limit = self.bets.config.daily_limit
        wagered = self.db.get_daily_wagered(wallet, self.bets.today())

        excluded_until = None
        exclusion = self.db.get_self_exclusion(wallet)
        if exclusion and datetime.fromisoformat(exclusion["end_date"]) > self.bets.clock():
            excluded_until = exclusion["end_date"]

        return {
            "wallet_address": wallet,
            "date": self.bets.today(),
            "wagered_today": wagered,
            "daily_limit": limit,
            "remaining": max(0, limit - wagered),
            "self_excluded_until": excluded_until,
            "can_flip": excluded_until is None and wagered + self.bets.config.min_bet <= limit,
        }

    def self_exclude(self, wallet_address: str, days: int) -> Dict:
        """
        Block bet placement for `days` days. An existing exclusion is only
        ever extended.
        """
        wallet = normalize_wallet(wallet_address)
        if days < 1 or days > MAX_EXCLUSION_DAYS:
            raise FlipValidationError(f"days must be between 1 and {MAX_EXCLUSION_DAYS}")

        end = self.bets.clock() + timedelta(days=days)
        try:
            with self.db.transaction() as cur:
                existing = self.db.get_self_exclusion(wallet, cur=cur)
                if existing and datetime.fromisoformat(existing["end_date"]) >= end:
                    end_date = existing["end_date"]
                else:
                    end_date = isoformat(end)
                    self.db.set_self_exclusion(wallet, end_date, cur=cur)
        except sqlite3.Error:
            logger.error("Error saving self-exclusion", exc_info=True, extra={"wallet": wallet})
            raise StorageError("Failed to save self-exclusion")

        logger.info("Self-exclusion set", extra={"wallet": wallet, "until": end_date})
        return {"wallet_address": wallet, "self_excluded_until": end_date}


player_service = PlayerService()
