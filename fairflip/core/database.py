"""
Database module for persistent storage.
Uses SQLite for bets, seed secrets, daily wager counters, self-exclusions,
player stats, balances and withdrawals.

Token amounts can exceed SQLite's 64-bit integers, so they are stored as
decimal TEXT and converted to Python ints on the way out.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from fairflip.core.logger import get_logger
from fairflip.config import settings

logger = get_logger("database")

AMOUNT_COLUMNS = {
    "amount",
    "payout",
    "gross_payout",
    "house_fee",
    "burn_amount",
    "total_wagered",
    "total_won",
    "net_profit",
    "streak_value",
    "biggest_win",
    "best_cashout",
    "total_withdrawn",
    "pending_balance",
}

OPEN_WITHDRAWAL_STATUSES = ("pending", "processing")

LEADERBOARD_COLUMNS = {
    "profit": "CAST(net_profit AS REAL)",
    "volume": "CAST(total_wagered AS REAL)",
    "wins": "total_wins",
    "streak": "longest_streak",
    "biggest_win": "CAST(biggest_win AS REAL)",
    "best_cashout": "CAST(best_cashout AS REAL)",
    "total_flips": "total_flips",
    "win_rate": "CAST(total_wins AS REAL) / total_flips",
}


def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict]:
    if row is None:
        return None
    data = dict(row)
    for key in AMOUNT_COLUMNS.intersection(data):
        if data[key] is not None:
            data[key] = int(data[key])
    for key in ("is_winner", "forfeited"):
        if data.get(key) is not None:
            data[key] = bool(data[key])
    return data


def isoformat(dt: datetime) -> str:
    """Fixed-width UTC timestamp, so stored values also sort as text."""
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _now() -> str:
    return isoformat(utc_now())


class Database:
    """Thread-safe SQLite wrapper. One connection per thread per database."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else settings.paths.get_db_path()
        self._local = threading.local()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initializing database at {self.db_path}")
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        if getattr(self._local, "connection", None) is None:
            # isolation_level=None: autocommit reads, explicit BEGIN for writes
            conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, timeout=30, isolation_level=None
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            self._local.connection = conn
        return self._local.connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Run a block inside BEGIN IMMEDIATE ... COMMIT.

        IMMEDIATE takes the write lock up front, so two writers checking the
        same row are serialized instead of both reading the old value.
        Any exception rolls the whole block back.
        """
        conn = self._get_connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn.cursor()
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    def _cursor(self, cur: Optional[sqlite3.Cursor]) -> sqlite3.Cursor:
        return cur if cur is not None else self._get_connection().cursor()

    def _init_db(self):
        conn = self._get_connection()
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS flip_bets (
                id TEXT PRIMARY KEY,
                wallet_address TEXT NOT NULL,
                farcaster_fid INTEGER,
                farcaster_username TEXT,
                amount TEXT NOT NULL,
                choice TEXT NOT NULL CHECK (choice IN ('heads', 'tails')),
                client_seed_hash TEXT NOT NULL,
                server_seed_hash TEXT NOT NULL,
                streak_level INTEGER NOT NULL,
                streak_multiplier TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'revealed', 'paid')),
                client_seed TEXT,
                combined_hash TEXT,
                result TEXT,
                is_winner INTEGER,
                forfeited INTEGER DEFAULT 0,
                payout TEXT,
                gross_payout TEXT,
                house_fee TEXT,
                burn_amount TEXT,
                expires_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                revealed_at TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_flip_bets_wallet ON flip_bets(wallet_address);

            -- Server seeds live apart from the bet rows the read paths return
            CREATE TABLE IF NOT EXISTS flip_bet_secrets (
                bet_id TEXT PRIMARY KEY REFERENCES flip_bets(id),
                server_seed TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS flip_daily_limits (
                wallet_address TEXT NOT NULL,
                date TEXT NOT NULL,
                total_wagered TEXT NOT NULL DEFAULT '0',
                bet_count INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (wallet_address, date)
            );

            CREATE TABLE IF NOT EXISTS flip_self_exclusions (
                wallet_address TEXT PRIMARY KEY,
                end_date TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS flip_player_stats (
                wallet_address TEXT PRIMARY KEY,
                farcaster_fid INTEGER,
                farcaster_username TEXT,
                total_flips INTEGER DEFAULT 0,
                total_wins INTEGER DEFAULT 0,
                total_losses INTEGER DEFAULT 0,
                total_wagered TEXT DEFAULT '0',
                total_won TEXT DEFAULT '0',
                net_profit TEXT DEFAULT '0',
                current_streak INTEGER DEFAULT 0,
                streak_value TEXT DEFAULT '0',
                longest_streak INTEGER DEFAULT 0,
                biggest_win TEXT DEFAULT '0',
                best_cashout TEXT DEFAULT '0',
                total_cashouts INTEGER DEFAULT 0,
                first_flip_at TEXT,
                last_flip_at TEXT
            );

            CREATE TABLE IF NOT EXISTS flip_player_balances (
                wallet_address TEXT PRIMARY KEY,
                total_won TEXT NOT NULL DEFAULT '0',
                total_withdrawn TEXT NOT NULL DEFAULT '0',
                pending_balance TEXT NOT NULL DEFAULT '0',
                total_withdrawals INTEGER DEFAULT 0,
                last_withdrawal_at TEXT,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS flip_withdrawals (
                id TEXT PRIMARY KEY,
                wallet_address TEXT NOT NULL,
                amount TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
                tx_hash TEXT,
                error_message TEXT,
                requested_at TEXT NOT NULL,
                processed_at TEXT,
                completed_at TEXT
            );

            -- At most one withdrawal in flight per wallet
            CREATE UNIQUE INDEX IF NOT EXISTS idx_flip_withdrawals_open
                ON flip_withdrawals(wallet_address)
                WHERE status IN ('pending', 'processing');
            """
        )

    # ==================== Bets ====================

    def insert_bet(self, bet: Dict, server_seed: str, cur: sqlite3.Cursor = None):
        """Insert a pending bet and its server seed."""
        cursor = self._cursor(cur)
        cursor.execute(
            """
            INSERT INTO flip_bets (
                id, wallet_address, farcaster_fid, farcaster_username, amount, choice,
                client_seed_hash, server_seed_hash, streak_level, streak_multiplier,
                status, expires_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?)
            """,
            (
                bet["id"],
                bet["wallet_address"],
                bet.get("farcaster_fid"),
                bet.get("farcaster_username"),
                str(bet["amount"]),
                bet["choice"],
                bet["client_seed_hash"],
                bet["server_seed_hash"],
                bet["streak_level"],
                str(bet["streak_multiplier"]),
                bet["expires_at"],
                bet["created_at"],
            ),
        )
        cursor.execute(
            "INSERT INTO flip_bet_secrets (bet_id, server_seed) VALUES (?, ?)",
            (bet["id"], server_seed),
        )

    def get_bet(self, bet_id: str, cur: sqlite3.Cursor = None) -> Optional[Dict]:
        """Bet record without the server seed."""
        cursor = self._cursor(cur)
        cursor.execute("SELECT * FROM flip_bets WHERE id = ?", (bet_id,))
        return _row_to_dict(cursor.fetchone())

    def get_server_seed(self, bet_id: str, cur: sqlite3.Cursor = None) -> Optional[str]:
        cursor = self._cursor(cur)
        cursor.execute("SELECT server_seed FROM flip_bet_secrets WHERE bet_id = ?", (bet_id,))
        row = cursor.fetchone()
        return row["server_seed"] if row else None

    def mark_bet_revealed(self, bet_id: str, outcome: Dict, cur: sqlite3.Cursor = None) -> bool:
        """
        Compare-and-swap pending -> revealed.

        Returns False when the bet was no longer pending, in which case
        nothing was written.
        """
        cursor = self._cursor(cur)
        cursor.execute(
            """
            UPDATE flip_bets SET
                status = 'revealed',
                client_seed = ?,
                combined_hash = ?,
                result = ?,
                is_winner = ?,
                forfeited = ?,
                payout = ?,
                gross_payout = ?,
                house_fee = ?,
                burn_amount = ?,
                revealed_at = ?
            WHERE id = ? AND status = 'pending'
            """,
            (
                outcome["client_seed"],
                outcome["combined_hash"],
                outcome["result"],
                int(outcome["is_winner"]),
                int(outcome["forfeited"]),
                str(outcome["net_payout"]),
                str(outcome["gross_payout"]),
                str(outcome["house_fee"]),
                str(outcome["burn_amount"]),
                outcome["revealed_at"],
                bet_id,
            ),
        )
        return cursor.rowcount == 1

    def mark_bets_paid(self, wallet: str, revealed_before: str, cur: sqlite3.Cursor = None) -> int:
        """Winning bets revealed up to `revealed_before` move revealed -> paid."""
        cursor = self._cursor(cur)
        cursor.execute(
            """
            UPDATE flip_bets SET status = 'paid'
            WHERE wallet_address = ? AND status = 'revealed'
              AND is_winner = 1 AND revealed_at <= ?
            """,
            (wallet, revealed_before),
        )
        return cursor.rowcount

    # ==================== Daily Limits ====================

    def get_daily_wagered(self, wallet: str, day: str, cur: sqlite3.Cursor = None) -> int:
        cursor = self._cursor(cur)
        cursor.execute(
            "SELECT total_wagered FROM flip_daily_limits WHERE wallet_address = ? AND date = ?",
            (wallet, day),
        )
        row = cursor.fetchone()
        return int(row["total_wagered"]) if row else 0

    def add_daily_wagered(self, wallet: str, day: str, amount: int, cur: sqlite3.Cursor = None) -> int:
        """Add to the day's wager total and return the new total."""
        cursor = self._cursor(cur)
        new_total = self.get_daily_wagered(wallet, day, cur=cursor) + amount
        cursor.execute(
            """
            INSERT INTO flip_daily_limits (wallet_address, date, total_wagered, bet_count)
            VALUES (?, ?, ?, 1)
            ON CONFLICT(wallet_address, date) DO UPDATE SET
                total_wagered = excluded.total_wagered,
                bet_count = bet_count + 1
            """,
            (wallet, day, str(new_total)),
        )
        return new_total

    # ==================== Self Exclusion ====================

    def get_self_exclusion(self, wallet: str, cur: sqlite3.Cursor = None) -> Optional[Dict]:
        cursor = self._cursor(cur)
        cursor.execute("SELECT * FROM flip_self_exclusions WHERE wallet_address = ?", (wallet,))
        return _row_to_dict(cursor.fetchone())

    def set_self_exclusion(self, wallet: str, end_date: str, cur: sqlite3.Cursor = None):
        cursor = self._cursor(cur)
        cursor.execute(
            """
            INSERT INTO flip_self_exclusions (wallet_address, end_date, created_at)
            VALUES (?, ?, ?)
            ON CONFLICT(wallet_address) DO UPDATE SET end_date = excluded.end_date
            """,
            (wallet, end_date, _now()),
        )

    # ==================== Player Stats ====================

    def get_player_stats(self, wallet: str, cur: sqlite3.Cursor = None) -> Optional[Dict]:
        cursor = self._cursor(cur)
        cursor.execute("SELECT * FROM flip_player_stats WHERE wallet_address = ?", (wallet,))
        return _row_to_dict(cursor.fetchone())

    def save_player_stats(self, stats: Dict, cur: sqlite3.Cursor = None):
        """Upsert a full stats row."""
        cursor = self._cursor(cur)
        columns = [
            "wallet_address", "farcaster_fid", "farcaster_username", "total_flips",
            "total_wins", "total_losses", "total_wagered", "total_won", "net_profit",
            "current_streak", "streak_value", "longest_streak", "biggest_win",
            "best_cashout", "total_cashouts", "first_flip_at", "last_flip_at",
        ]
        values = [
            str(stats.get(c)) if c in AMOUNT_COLUMNS and stats.get(c) is not None else stats.get(c)
            for c in columns
        ]
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns[1:])
        cursor.execute(
            f"""
            INSERT INTO flip_player_stats ({", ".join(columns)})
            VALUES ({", ".join("?" for _ in columns)})
            ON CONFLICT(wallet_address) DO UPDATE SET {updates}
            """,
            values,
        )

    def get_leaderboard(self, sort_by: str = "profit", limit: int = 100, offset: int = 0) -> List[Dict]:
        order = LEADERBOARD_COLUMNS[sort_by]
        cursor = self._cursor(None)
        cursor.execute(
            f"""
            SELECT * FROM flip_player_stats
            WHERE total_flips > 0
            ORDER BY {order} DESC, wallet_address ASC
            LIMIT ? OFFSET ?
            """,
            (limit, offset),
        )
        return [_row_to_dict(row) for row in cursor.fetchall()]

    # ==================== Balances ====================

    def get_player_balance(self, wallet: str, cur: sqlite3.Cursor = None) -> Optional[Dict]:
        cursor = self._cursor(cur)
        cursor.execute("SELECT * FROM flip_player_balances WHERE wallet_address = ?", (wallet,))
        return _row_to_dict(cursor.fetchone())

    def credit_winnings(self, wallet: str, amount: int, cur: sqlite3.Cursor = None) -> Dict:
        """Add to total_won and pending_balance, creating the row if needed."""
        cursor = self._cursor(cur)
        balance = self.get_player_balance(wallet, cur=cursor) or {
            "total_won": 0,
            "total_withdrawn": 0,
            "pending_balance": 0,
        }
        total_won = balance["total_won"] + amount
        pending = balance["pending_balance"] + amount
        cursor.execute(
            """
            INSERT INTO flip_player_balances (wallet_address, total_won, pending_balance, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(wallet_address) DO UPDATE SET
                total_won = excluded.total_won,
                pending_balance = excluded.pending_balance,
                updated_at = excluded.updated_at
            """,
            (wallet, str(total_won), str(pending), _now()),
        )
        return self.get_player_balance(wallet, cur=cursor)

    def move_pending_to_withdrawn(self, wallet: str, amount: int, cur: sqlite3.Cursor = None):
        cursor = self._cursor(cur)
        balance = self.get_player_balance(wallet, cur=cursor)
        now = _now()
        cursor.execute(
            """
            UPDATE flip_player_balances SET
                pending_balance = ?,
                total_withdrawn = ?,
                total_withdrawals = total_withdrawals + 1,
                last_withdrawal_at = ?,
                updated_at = ?
            WHERE wallet_address = ?
            """,
            (
                str(balance["pending_balance"] - amount),
                str(balance["total_withdrawn"] + amount),
                now,
                now,
                wallet,
            ),
        )

    def refund_withdrawal_amount(self, wallet: str, amount: int, cur: sqlite3.Cursor = None):
        """Undo move_pending_to_withdrawn for a failed payout."""
        cursor = self._cursor(cur)
        balance = self.get_player_balance(wallet, cur=cursor)
        if balance is None:
            return
        cursor.execute(
            """
            UPDATE flip_player_balances SET
                pending_balance = ?,
                total_withdrawn = ?,
                updated_at = ?
            WHERE wallet_address = ?
            """,
            (
                str(balance["pending_balance"] + amount),
                str(balance["total_withdrawn"] - amount),
                _now(),
                wallet,
            ),
        )

    # ==================== Withdrawals ====================

    def get_open_withdrawal(self, wallet: str, cur: sqlite3.Cursor = None) -> Optional[Dict]:
        cursor = self._cursor(cur)
        cursor.execute(
            """
            SELECT * FROM flip_withdrawals
            WHERE wallet_address = ? AND status IN ('pending', 'processing')
            """,
            (wallet,),
        )
        return _row_to_dict(cursor.fetchone())

    def insert_withdrawal(self, withdrawal: Dict, cur: sqlite3.Cursor = None):
        cursor = self._cursor(cur)
        cursor.execute(
            """
            INSERT INTO flip_withdrawals (id, wallet_address, amount, status, requested_at)
            VALUES (?, ?, ?, 'pending', ?)
            """,
            (
                withdrawal["id"],
                withdrawal["wallet_address"],
                str(withdrawal["amount"]),
                withdrawal["requested_at"],
            ),
        )

    def get_withdrawal(self, withdrawal_id: str, cur: sqlite3.Cursor = None) -> Optional[Dict]:
        cursor = self._cursor(cur)
        cursor.execute("SELECT * FROM flip_withdrawals WHERE id = ?", (withdrawal_id,))
        return _row_to_dict(cursor.fetchone())

    def requeue_stale_withdrawals(self, claimed_before: str, cur: sqlite3.Cursor = None) -> int:
        """Move withdrawals stuck in processing since before `claimed_before` back to pending."""
        cursor = self._cursor(cur)
        cursor.execute(
            """
            UPDATE flip_withdrawals SET status = 'pending'
            WHERE status = 'processing' AND processed_at < ?
            """,
            (claimed_before,),
        )
        return cursor.rowcount

    def get_withdrawals(self, wallet: str = None, status: str = None, limit: int = 10,
                        oldest_first: bool = False) -> List[Dict]:
        clauses, params = [], []
        if wallet:
            clauses.append("wallet_address = ?")
            params.append(wallet)
        if status:
            clauses.append("status = ?")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        direction = "ASC" if oldest_first else "DESC"

        cursor = self._cursor(None)
        cursor.execute(
            f"SELECT * FROM flip_withdrawals {where} ORDER BY requested_at {direction}, rowid {direction} LIMIT ?",
            (*params, limit),
        )
        return [_row_to_dict(row) for row in cursor.fetchall()]

    def update_withdrawal_status(
        self,
        withdrawal_id: str,
        status: str,
        from_status: str,
        cur: sqlite3.Cursor = None,
        **fields,
    ) -> bool:
        """Move a withdrawal between statuses; False if it was not in `from_status`."""
        cursor = self._cursor(cur)
        assignments = ["status = ?"] + [f"{key} = ?" for key in fields]
        cursor.execute(
            f"UPDATE flip_withdrawals SET {', '.join(assignments)} WHERE id = ? AND status = ?",
            (status, *fields.values(), withdrawal_id, from_status),
        )
        return cursor.rowcount == 1


# Global database instance
db = Database()
