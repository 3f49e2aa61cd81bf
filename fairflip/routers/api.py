from decimal import Decimal
from typing import Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Request
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address

from fairflip.config import settings
from fairflip.core.bets import bet_manager
from fairflip.core.ledger import ledger
from fairflip.core.logger import get_logger
from fairflip.core.players import player_service
from fairflip.core.withdrawals import withdrawal_processor

logger = get_logger("api")

limiter = Limiter(key_func=get_remote_address)

router = APIRouter()


# ==================== Request Models ====================

class BetRequest(BaseModel):
    walletAddress: str
    amount: int
    choice: str
    clientSeedHash: str
    currentStreak: int = 0
    farcasterFid: Optional[int] = None
    farcasterUsername: Optional[str] = None


class RevealRequest(BaseModel):
    betId: str
    clientSeed: str


class CashoutRequest(BaseModel):
    walletAddress: str
    amount: Optional[int] = None


class WithdrawRequest(BaseModel):
    walletAddress: str


class SelfExcludeRequest(BaseModel):
    walletAddress: str
    days: int


# ==================== Helpers ====================

def flip_rate_limit() -> str:
    return settings.rate_limit.flip_requests if settings.rate_limit.enabled else "1000/minute"


def api_rate_limit() -> str:
    return settings.rate_limit.api_requests if settings.rate_limit.enabled else "1000/minute"


def _amount(value: Optional[int]) -> Optional[str]:
    # Token amounts overflow JavaScript numbers, send them as strings
    return str(value) if value is not None else None


def _multiplier(value) -> float:
    return float(Decimal(str(value)))


def _tokens(value: int) -> str:
    return ledger.to_tokens(value)


def serialize_bet(bet: Dict) -> Dict:
    data = {
        "id": bet["id"],
        "walletAddress": bet["wallet_address"],
        "choice": bet["choice"],
        "amount": _amount(bet["amount"]),
        "status": bet["status"],
        "clientSeedHash": bet["client_seed_hash"],
        "serverSeedHash": bet["server_seed_hash"],
        "streakLevel": bet["streak_level"],
        "streakMultiplier": _multiplier(bet["streak_multiplier"]),
        "result": bet["result"],
        "isWinner": bet["is_winner"],
        "forfeited": bet["forfeited"],
        "payout": _amount(bet["payout"]),
        "expiresAt": bet["expires_at"],
        "createdAt": bet["created_at"],
        "revealedAt": bet["revealed_at"],
    }
    if bet["status"] != "pending":
        data["clientSeed"] = bet["client_seed"]
        data["serverSeed"] = bet.get("server_seed")
        data["combinedHash"] = bet["combined_hash"]
    return data


def serialize_withdrawal(withdrawal: Dict) -> Dict:
    return {
        "id": withdrawal["id"],
        "amount": _amount(withdrawal["amount"]),
        "amountTokens": _tokens(withdrawal["amount"]),
        "status": withdrawal["status"],
        "txHash": withdrawal.get("tx_hash"),
        "errorMessage": withdrawal.get("error_message"),
        "requestedAt": withdrawal["requested_at"],
        "processedAt": withdrawal.get("processed_at"),
        "completedAt": withdrawal.get("completed_at"),
    }


def serialize_stats(stats: Dict) -> Dict:
    return {
        "walletAddress": stats["wallet_address"],
        "farcasterUsername": stats["farcaster_username"],
        "totalFlips": stats["total_flips"],
        "totalWins": stats["total_wins"],
        "totalLosses": stats["total_losses"],
        "winRate": stats["win_rate"],
        "totalWagered": _amount(stats["total_wagered"]),
        "totalWon": _amount(stats["total_won"]),
        "netProfit": _amount(stats["net_profit"]),
        "currentStreak": stats["current_streak"],
        "streakValue": _amount(stats["streak_value"]),
        "longestStreak": stats["longest_streak"],
        "biggestWin": _amount(stats["biggest_win"]),
        "bestCashout": _amount(stats["best_cashout"]),
        "totalCashouts": stats["total_cashouts"],
        "firstFlipAt": stats["first_flip_at"],
        "lastFlipAt": stats["last_flip_at"],
    }


def trigger_withdrawal_processing():
    """Fire-and-forget run after a withdrawal request; the scheduler retries later."""
    try:
        withdrawal_processor.process_pending()
    except Exception as e:
        logger.error(f"Failed to trigger instant withdrawal processing: {e}", exc_info=True)


# ==================== Bets ====================

@router.post("/bet")
@limiter.limit(flip_rate_limit)
async def place_bet(request: Request, data: BetRequest):
    bet = bet_manager.place_bet(
        wallet_address=data.walletAddress,
        amount=data.amount,
        choice=data.choice,
        client_seed_hash=data.clientSeedHash,
        current_streak=data.currentStreak,
        farcaster_fid=data.farcasterFid,
        farcaster_username=data.farcasterUsername,
    )
    return {
        "success": True,
        "betId": bet["bet_id"],
        "serverSeedHash": bet["server_seed_hash"],
        "streakMultiplier": _multiplier(bet["streak_multiplier"]),
        "expiresAt": bet["expires_at"],
        "message": "Bet placed! Reveal your seed to flip the coin.",
    }


@router.post("/reveal")
@limiter.limit(flip_rate_limit)
async def reveal_bet(request: Request, data: RevealRequest):
    outcome = bet_manager.reveal_bet(data.betId, data.clientSeed)
    breakdown = outcome["breakdown"]
    return {
        "success": True,
        "result": outcome["result"],
        "isWinner": outcome["is_winner"],
        "forfeited": outcome["forfeited"],
        "payout": _amount(outcome["payout"]),
        "currentStreak": outcome["current_streak"],
        "proof": outcome["proof"],
        "breakdown": {
            "betAmount": _amount(breakdown["bet_amount"]),
            "grossPayout": _amount(breakdown["gross_payout"]),
            "houseFee": _amount(breakdown["house_fee"]),
            "burnAmount": _amount(breakdown["burn_amount"]),
            "netPayout": _amount(breakdown["net_payout"]),
            "streakMultiplier": _multiplier(breakdown["streak_multiplier"]),
        },
    }


@router.get("/verify")
@limiter.limit(api_rate_limit)
async def verify_bet(request: Request, betId: str):
    verification = bet_manager.verify_bet(betId)
    bet = verification["bet"]
    proof = verification["proof"]
    return {
        "betId": verification["bet_id"],
        "isValid": verification["is_valid"],
        "errors": verification["errors"],
        "bet": {
            "choice": bet["choice"],
            "result": bet["result"],
            "isWinner": bet["is_winner"],
            "forfeited": bet["forfeited"],
            "amount": _amount(bet["amount"]),
            "payout": _amount(bet["payout"]),
            "status": bet["status"],
            "streakLevel": bet["streak_level"],
            "streakMultiplier": _multiplier(bet["streak_multiplier"]),
            "createdAt": bet["created_at"],
            "revealedAt": bet["revealed_at"],
        },
        "proof": {
            "clientSeed": proof["client_seed"],
            "clientSeedHash": proof["client_seed_hash"],
            "serverSeed": proof["server_seed"],
            "serverSeedHash": proof["server_seed_hash"],
            "combinedHash": proof["combined_hash"],
        },
    }


@router.get("/bet/{bet_id}")
@limiter.limit(api_rate_limit)
async def get_bet(request: Request, bet_id: str):
    return {"bet": serialize_bet(bet_manager.get_bet(bet_id))}


@router.post("/cashout")
@limiter.limit(flip_rate_limit)
async def cashout(request: Request, data: CashoutRequest):
    result = bet_manager.cashout(data.walletAddress, data.amount)
    return {
        "success": True,
        "amount": _amount(result["amount"]),
        "streak": result["streak"],
        "message": result["message"],
    }


# ==================== Balance & Withdrawals ====================

@router.post("/withdraw")
@limiter.limit(flip_rate_limit)
async def request_withdrawal(request: Request, data: WithdrawRequest, background_tasks: BackgroundTasks):
    withdrawal = ledger.request_withdrawal(data.walletAddress)
    background_tasks.add_task(trigger_withdrawal_processing)
    return {
        "success": True,
        "withdrawal": serialize_withdrawal(withdrawal),
        "message": "Withdrawal processing... Your tokens will arrive within 1-2 minutes.",
    }


@router.get("/withdraw")
@limiter.limit(api_rate_limit)
async def get_withdrawals(request: Request, wallet: str):
    balance = ledger.get_balance(wallet)
    withdrawals = ledger.get_withdrawal_history(wallet)
    return {
        "balance": {
            "totalWon": _amount(balance["total_won"]),
            "totalWithdrawn": _amount(balance["total_withdrawn"]),
            "pendingBalance": _amount(balance["pending_balance"]),
            "totalWonTokens": _tokens(balance["total_won"]),
            "totalWithdrawnTokens": _tokens(balance["total_withdrawn"]),
            "pendingBalanceTokens": _tokens(balance["pending_balance"]),
            "canWithdraw": balance["can_withdraw"],
            "minWithdrawal": _amount(balance["min_withdrawal"]),
            "minWithdrawalTokens": _tokens(balance["min_withdrawal"]),
        } if balance else None,
        "withdrawals": [serialize_withdrawal(w) for w in withdrawals],
    }


# ==================== Players ====================

@router.get("/stats")
@limiter.limit(api_rate_limit)
async def get_stats(request: Request, wallet: str):
    return serialize_stats(player_service.get_stats(wallet))


@router.get("/daily-status")
@limiter.limit(api_rate_limit)
async def daily_status(request: Request, wallet: str):
    status = player_service.daily_status(wallet)
    return {
        "walletAddress": status["wallet_address"],
        "date": status["date"],
        "wageredToday": _amount(status["wagered_today"]),
        "dailyLimit": _amount(status["daily_limit"]),
        "remaining": _amount(status["remaining"]),
        "selfExcludedUntil": status["self_excluded_until"],
        "canFlip": status["can_flip"],
    }


@router.get("/leaderboard")
@limiter.limit(api_rate_limit)
async def leaderboard(request: Request, sortBy: str = "profit", limit: int = 100, offset: int = 0):
    entries = player_service.leaderboard(sortBy, limit, offset)
    return {
        "sortBy": sortBy,
        "entries": [{"rank": e["rank"], **serialize_stats(e)} for e in entries],
    }


@router.post("/self-exclude")
@limiter.limit(flip_rate_limit)
async def self_exclude(request: Request, data: SelfExcludeRequest):
    result = player_service.self_exclude(data.walletAddress, data.days)
    logger.info(f"Self-exclusion requested for {data.days} day(s)")
    return {
        "success": True,
        "walletAddress": result["wallet_address"],
        "selfExcludedUntil": result["self_excluded_until"],
    }
