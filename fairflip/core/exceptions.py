"""
Error taxonomy for the coin flip engine.

Every error carries a machine readable ``reason`` and, where useful, the
limits involved so the client can correct the request. The HTTP layer
renders ``to_dict()`` with ``status_code``.
"""

from typing import Any, Dict


class FlipError(Exception):
    status_code = 400
    reason = "flip_error"

    def __init__(self, error: str, **details: Any):
        super().__init__(error)
        self.message = error
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "reason": self.reason, **self.details}


# ==================== Validation ====================

class FlipValidationError(FlipError):
    reason = "validation_error"


# ==================== Policy ====================

class PolicyError(FlipError):
    status_code = 403
    reason = "policy_violation"


class SelfExcludedError(PolicyError):
    reason = "self_excluded"


class DailyLimitExceededError(PolicyError):
    reason = "daily_limit_exceeded"


class InsufficientTokenBalanceError(PolicyError):
    reason = "insufficient_token_balance"


class BelowMinimumWithdrawalError(PolicyError):
    status_code = 400
    reason = "insufficient_balance"


class WithdrawalPendingError(PolicyError):
    status_code = 400
    reason = "withdrawal_pending"


class NoActiveStreakError(PolicyError):
    status_code = 400
    reason = "no_active_streak"


# ==================== State ====================

class BetNotFoundError(FlipError):
    status_code = 404
    reason = "bet_not_found"


class BalanceNotFoundError(FlipError):
    status_code = 404
    reason = "balance_not_found"


class AlreadyRevealedError(FlipError):
    reason = "already_revealed"


class SeedMismatchError(FlipError):
    reason = "seed_mismatch"


class BetNotRevealedError(FlipError):
    reason = "bet_not_revealed"


# ==================== Storage ====================

class StorageError(FlipError):
    """The store rejected a read or write. Details stay in the logs."""
    status_code = 500
    reason = "storage_error"
