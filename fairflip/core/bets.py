"""
Bet lifecycle for the provably fair coin flip.

    pending  --reveal-->  revealed  --withdrawal completed-->  paid

A bet is revealed at most once. The pending -> revealed step is a
compare-and-swap on the status column, done in the same transaction as the
balance credit and the streak update, so a concurrent second reveal can
never pay twice.
"""

import sqlite3
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Optional

import pytz

from fairflip.config import FlipConfig, TOKEN_UNIT, settings
from fairflip.core.database import Database, db, isoformat, utc_now
from fairflip.core.exceptions import (
    AlreadyRevealedError,
    BetNotFoundError,
    BetNotRevealedError,
    DailyLimitExceededError,
    FlipValidationError,
    InsufficientTokenBalanceError,
    NoActiveStreakError,
    SeedMismatchError,
    SelfExcludedError,
    StorageError,
)
from fairflip.core.fairness import (
    SIDES,
    combine_seeds,
    determine_result,
    generate_proof,
    is_hex_digest,
    verify_bet_outcome,
    verify_seed,
)
from fairflip.core.logger import get_logger
from fairflip.core.payout import calculate_payout
from fairflip.core.rng import rng
from fairflip.core.streaks import streak_multiplier

logger = get_logger("bets")

# wallet address -> token balance in smallest units
TokenBalanceProvider = Callable[[str], int]


def normalize_wallet(wallet_address: str) -> str:
    if not wallet_address or not wallet_address.strip():
        raise FlipValidationError("Wallet address required")
    return wallet_address.strip().lower()


def empty_stats(wallet: str) -> Dict:
    return {
        "wallet_address": wallet,
        "farcaster_fid": None,
        "farcaster_username": None,
        "total_flips": 0,
        "total_wins": 0,
        "total_losses": 0,
        "total_wagered": 0,
        "total_won": 0,
        "net_profit": 0,
        "current_streak": 0,
        "streak_value": 0,
        "longest_streak": 0,
        "biggest_win": 0,
        "best_cashout": 0,
        "total_cashouts": 0,
        "first_flip_at": None,
        "last_flip_at": None,
    }


class BetManager:
    """Places, reveals, verifies and cashes out coin flip bets."""

    def __init__(
        self,
        database: Database = None,
        config: FlipConfig = None,
        token_balance_provider: Optional[TokenBalanceProvider] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = database or db
        self.config = config or settings.flip
        self.token_balance_provider = token_balance_provider
        self.clock = clock

    def today(self) -> str:
        """Calendar day key for the daily wager counter."""
        tz = pytz.timezone(self.config.day_timezone)
        return self.clock().astimezone(tz).date().isoformat()

    # ==================== Place ====================

    def place_bet(
        self,
        wallet_address: str,
        amount: int,
        choice: str,
        client_seed_hash: str,
        current_streak: int = 0,
        farcaster_fid: Optional[int] = None,
        farcaster_username: Optional[str] = None,
    ) -> Dict:
        """
        Commit a new bet.

        Validates the request, checks self-exclusion and the daily cap,
        commits a fresh server seed and stores the bet as pending. The daily
        counter increment and the bet insert share one transaction.

        Returns:
            Dict with bet_id, server_seed_hash, streak_multiplier, expires_at (epoch ms)
        """
        wallet = normalize_wallet(wallet_address)
        choice = self._validate_choice(choice)
        client_seed_hash = (client_seed_hash or "").strip().lower()
        if not is_hex_digest(client_seed_hash):
            raise FlipValidationError("clientSeedHash must be a 64 character SHA-256 hex digest")
        self._validate_amount(amount)
        if current_streak is None or current_streak < 0:
            raise FlipValidationError("currentStreak cannot be negative")

        self._check_token_balance(wallet)

        now = self.clock()
        day = self.today()
        server_seed = rng.generate_seed()
        server_seed_hash = rng.hash_seed(server_seed)
        expires = now + timedelta(seconds=self.config.reveal_window_seconds)
        bet_id = uuid.uuid4().hex

        try:
            with self.db.transaction() as cur:
                self._check_self_exclusion(wallet, now, cur)

                # The stored streak wins over the client's claim
                stats = self.db.get_player_stats(wallet, cur=cur)
                streak = stats["current_streak"] if stats else 0
                if current_streak != streak:
                    logger.warning(
                        "Client streak differs from stored streak",
                        extra={"wallet": wallet, "claimed": current_streak, "stored": streak},
                    )
                multiplier = streak_multiplier(streak + 1)

                wagered = self.db.get_daily_wagered(wallet, day, cur=cur)
                if wagered + amount > self.config.daily_limit:
                    raise DailyLimitExceededError(
                        "Daily betting limit exceeded",
                        dailyLimit=str(self.config.daily_limit),
                        wageredToday=str(wagered),
                        remaining=str(max(0, self.config.daily_limit - wagered)),
                    )
                self.db.add_daily_wagered(wallet, day, amount, cur=cur)

                self.db.insert_bet(
                    {
                        "id": bet_id,
                        "wallet_address": wallet,
                        "farcaster_fid": farcaster_fid,
                        "farcaster_username": farcaster_username,
                        "amount": amount,
                        "choice": choice,
                        "client_seed_hash": client_seed_hash,
                        "server_seed_hash": server_seed_hash,
                        "streak_level": streak + 1,
                        "streak_multiplier": multiplier,
                        "expires_at": isoformat(expires),
                        "created_at": isoformat(now),
                    },
                    server_seed,
                    cur=cur,
                )
        except sqlite3.Error:
            logger.error("Error creating bet", exc_info=True, extra={"wallet": wallet})
            raise StorageError("Failed to place bet")

        logger.info(
            "Bet placed",
            extra={"bet_id": bet_id, "wallet": wallet, "amount": amount, "choice": choice},
        )

        return {
            "bet_id": bet_id,
            "server_seed_hash": server_seed_hash,
            "streak_multiplier": multiplier,
            "streak_level": streak + 1,
            "expires_at": int(expires.timestamp() * 1000),
        }

    def _validate_choice(self, choice: str) -> str:
        choice = (choice or "").strip().lower()
        if choice not in SIDES:
            raise FlipValidationError('Invalid choice. Must be "heads" or "tails"')
        return choice

    def _validate_amount(self, amount: int):
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise FlipValidationError("Bet amount must be an integer")
        if amount < self.config.min_bet or amount > self.config.max_bet:
            raise FlipValidationError(
                f"Bet must be between {self.config.min_bet} and {self.config.max_bet}",
                minBet=str(self.config.min_bet),
                maxBet=str(self.config.max_bet),
            )

    def _check_self_exclusion(self, wallet: str, now: datetime, cur):
        exclusion = self.db.get_self_exclusion(wallet, cur=cur)
        if exclusion and datetime.fromisoformat(exclusion["end_date"]) > now:
            raise SelfExcludedError(
                "You are self-excluded from playing",
                excludedUntil=exclusion["end_date"],
            )

    def _check_token_balance(self, wallet: str):
        if self.token_balance_provider is None:
            return
        balance = self.token_balance_provider(wallet)
        if balance < self.config.min_balance:
            raise InsufficientTokenBalanceError(
                "Token balance below the minimum required to play",
                minBalance=str(self.config.min_balance),
                currentBalance=str(balance),
            )

    # ==================== Reveal ====================

    def reveal_bet(self, bet_id: str, client_seed: str) -> Dict:
        """
        Reveal the client seed and settle the bet.

        Raises:
            BetNotFoundError: unknown bet id
            AlreadyRevealedError: bet is no longer pending (carries the original result)
            SeedMismatchError: client seed does not match the committed hash
        """
        if not bet_id or not client_seed:
            raise FlipValidationError("Missing betId or clientSeed")

        try:
            bet = self.db.get_bet(bet_id)
            server_seed = self.db.get_server_seed(bet_id)
        except sqlite3.Error:
            logger.error("Error loading bet", exc_info=True, extra={"bet_id": bet_id})
            raise StorageError("Failed to reveal bet")

        if bet is None:
            raise BetNotFoundError("Bet not found")
        if bet["status"] != "pending":
            raise self._already_revealed(bet)
        if not verify_seed(client_seed, bet["client_seed_hash"]):
            raise SeedMismatchError("Client seed does not match hash")
        if not server_seed:
            logger.error("Server seed missing for bet", extra={"bet_id": bet_id})
            raise StorageError("Failed to reveal bet")

        now = self.clock()
        combined_hash = combine_seeds(client_seed, server_seed)
        result = determine_result(combined_hash)
        forfeited = (
            self.config.forfeit_late_reveals
            and now > datetime.fromisoformat(bet["expires_at"])
        )
        is_winner = result == bet["choice"] and not forfeited

        payout = calculate_payout(
            bet["amount"],
            is_winner,
            Decimal(bet["streak_multiplier"]),
            house_fee_bps=self.config.house_fee_bps,
            burn_bps=self.config.burn_bps,
        )

        try:
            with self.db.transaction() as cur:
                swapped = self.db.mark_bet_revealed(
                    bet_id,
                    {
                        "client_seed": client_seed,
                        "combined_hash": combined_hash,
                        "result": result,
                        "is_winner": is_winner,
                        "forfeited": forfeited,
                        "revealed_at": isoformat(now),
                        **payout,
                    },
                    cur=cur,
                )
                if not swapped:
                    raise self._already_revealed(self.db.get_bet(bet_id, cur=cur))

                self.db.credit_winnings(bet["wallet_address"], payout["net_payout"], cur=cur)
                stats = self._record_flip(bet, is_winner, payout["net_payout"], now, cur)
        except sqlite3.Error:
            logger.error("Error updating bet", exc_info=True, extra={"bet_id": bet_id})
            raise StorageError("Failed to reveal bet")

        logger.info(
            "Bet revealed",
            extra={
                "bet_id": bet_id,
                "result": result,
                "is_winner": is_winner,
                "payout": payout["net_payout"],
                "forfeited": forfeited,
            },
        )

        return {
            "bet_id": bet_id,
            "result": result,
            "is_winner": is_winner,
            "forfeited": forfeited,
            "payout": payout["net_payout"],
            "current_streak": stats["current_streak"],
            "proof": generate_proof(
                bet_id,
                client_seed,
                bet["client_seed_hash"],
                server_seed,
                bet["server_seed_hash"],
                bet["choice"],
                forfeited=forfeited,
            ),
            "breakdown": {
                "bet_amount": bet["amount"],
                "streak_multiplier": Decimal(bet["streak_multiplier"]),
                **payout,
            },
        }

    def _already_revealed(self, bet: Dict) -> AlreadyRevealedError:
        return AlreadyRevealedError(
            "Bet already revealed",
            result=bet["result"],
            isWinner=bet["is_winner"],
            payout=str(bet["payout"]) if bet["payout"] is not None else None,
            status=bet["status"],
        )

    def _record_flip(self, bet: Dict, is_winner: bool, net_payout: int, now: datetime, cur) -> Dict:
        """Fold one resolved bet into the player's stats and streak."""
        wallet = bet["wallet_address"]
        stats = self.db.get_player_stats(wallet, cur=cur) or empty_stats(wallet)
        timestamp = isoformat(now)

        stats["farcaster_fid"] = bet["farcaster_fid"] or stats["farcaster_fid"]
        stats["farcaster_username"] = bet["farcaster_username"] or stats["farcaster_username"]
        stats["total_flips"] += 1
        stats["total_wagered"] += bet["amount"]
        stats["total_won"] += net_payout
        stats["net_profit"] += net_payout - bet["amount"]

        if is_winner:
            stats["total_wins"] += 1
            if bet["streak_level"] == 1:
                stats["streak_value"] = 0
            stats["current_streak"] = bet["streak_level"]
            stats["streak_value"] += net_payout
            stats["longest_streak"] = max(stats["longest_streak"], stats["current_streak"])
            stats["biggest_win"] = max(stats["biggest_win"], net_payout)
        else:
            stats["total_losses"] += 1
            stats["current_streak"] = 0
            stats["streak_value"] = 0

        stats["first_flip_at"] = stats["first_flip_at"] or timestamp
        stats["last_flip_at"] = timestamp

        self.db.save_player_stats(stats, cur=cur)
        return stats

    # ==================== Cashout ====================

    def cashout(self, wallet_address: str, amount: Optional[int] = None) -> Dict:
        """
        End the current win streak and bank its accumulated winnings.

        The banked amount is the server-tracked value of the streak. A client
        supplied amount is only compared against it.
        """
        wallet = normalize_wallet(wallet_address)

        try:
            with self.db.transaction() as cur:
                stats = self.db.get_player_stats(wallet, cur=cur)
                streak = stats["current_streak"] if stats else 0
                if streak == 0:
                    raise NoActiveStreakError("No active streak to cash out")

                banked = stats["streak_value"]
                if amount is not None and amount != banked:
                    logger.warning(
                        "Cashout amount mismatch",
                        extra={"wallet": wallet, "claimed": amount, "tracked": banked},
                    )

                stats["current_streak"] = 0
                stats["streak_value"] = 0
                stats["best_cashout"] = max(stats["best_cashout"], banked)
                stats["total_cashouts"] += 1
                self.db.save_player_stats(stats, cur=cur)
        except sqlite3.Error:
            logger.error("Error processing cashout", exc_info=True, extra={"wallet": wallet})
            raise StorageError("Failed to process cashout")

        logger.info("Streak cashed out", extra={"wallet": wallet, "streak": streak, "amount": banked})

        return {
            "amount": banked,
            "streak": streak,
            "message": f"Cashed out {banked // TOKEN_UNIT} tokens from {streak}-win streak!",
        }

    # ==================== Verify ====================

    def verify_bet(self, bet_id: str) -> Dict:
        """Recompute a revealed bet's outcome from its stored seeds."""
        if not bet_id:
            raise FlipValidationError("Bet ID required")

        try:
            bet = self.db.get_bet(bet_id)
            server_seed = self.db.get_server_seed(bet_id)
        except sqlite3.Error:
            logger.error("Error loading bet", exc_info=True, extra={"bet_id": bet_id})
            raise StorageError("Failed to verify bet")

        if bet is None:
            raise BetNotFoundError("Bet not found")
        if bet["status"] == "pending":
            raise BetNotRevealedError("Bet not yet revealed")

        verification = verify_bet_outcome(
            bet["client_seed"],
            bet["client_seed_hash"],
            server_seed,
            bet["server_seed_hash"],
            bet["combined_hash"],
            bet["result"],
        )

        return {
            "bet_id": bet_id,
            "is_valid": verification["valid"],
            "errors": verification["errors"],
            "bet": bet,
            "proof": {
                "client_seed": bet["client_seed"],
                "client_seed_hash": bet["client_seed_hash"],
                "server_seed": server_seed,
                "server_seed_hash": bet["server_seed_hash"],
                "combined_hash": bet["combined_hash"],
            },
        }

    def get_bet(self, bet_id: str) -> Dict:
        """Public view of a bet. The server seed appears only once revealed."""
        bet = self.db.get_bet(bet_id)
        if bet is None:
            raise BetNotFoundError("Bet not found")
        if bet["status"] != "pending":
            bet["server_seed"] = self.db.get_server_seed(bet_id)
        return bet


bet_manager = BetManager()
