from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from fairflip.core.database import db
from fairflip.core.logger import get_logger
from fairflip.core.security import require_cron_secret
from fairflip.core.withdrawals import withdrawal_processor
from fairflip.routers.api import serialize_withdrawal

logger = get_logger("admin")

router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.post("/process-withdrawals")
async def process_withdrawals():
    """Run one batch of the withdrawal processor (cron or manual trigger)."""
    logger.info("Withdrawal processor triggered")
    return await run_in_threadpool(withdrawal_processor.process_pending)


@router.get("/process-withdrawals")
async def processor_status():
    return {
        "status": "running" if withdrawal_processor.is_running else "idle",
        "configured": withdrawal_processor.sender is not None,
        "message": "Withdrawal processor endpoint",
    }


@router.get("/withdrawals")
async def recent_withdrawals(status: str = None, limit: int = 10):
    withdrawals = db.get_withdrawals(status=status, limit=min(max(limit, 1), 100))
    return {
        "withdrawals": [
            {"walletAddress": w["wallet_address"], **serialize_withdrawal(w)}
            for w in withdrawals
        ]
    }
