"""
Withdrawal processor.

Sends pending withdrawals through a PayoutSender (the on-chain transfer is
outside this service). Each run is triggered fire-and-forget after a
withdrawal request and by the scheduler as a fallback, so a withdrawal can
be offered to the sender more than once: senders must be idempotent per
withdrawal id.
"""

import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol

from fairflip.config import WithdrawalConfig, settings
from fairflip.core.database import Database, db, isoformat, utc_now
from fairflip.core.logger import get_logger

logger = get_logger("withdrawals")


class PayoutError(Exception):
    """Raised by a sender when a transfer was not made."""


class PayoutSender(Protocol):
    def send(self, wallet_address: str, amount: int, withdrawal_id: str) -> str:
        """Transfer `amount` to the wallet and return the transaction hash."""
        ...


class WithdrawalProcessor:
    def __init__(
        self,
        database: Database = None,
        sender: Optional[PayoutSender] = None,
        config: WithdrawalConfig = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = database or db
        self.sender = sender
        self.config = config or settings.withdrawal
        self.clock = clock
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def process_pending(self) -> Dict:
        """Process one batch of pending withdrawals, oldest first."""
        if not self._lock.acquire(blocking=False):
            return {"message": "Processor already running", "skipped": True}
        try:
            return self._process_batch()
        finally:
            self._lock.release()

    def _process_batch(self) -> Dict:
        if self.sender is None:
            logger.warning("No payout sender configured; withdrawals stay pending")
            return {"message": "Withdrawal service not configured", "configured": False, "processed": 0}

        # a run that died between claim and send leaves the row in processing
        cutoff = self.clock() - timedelta(minutes=self.config.processing_timeout_minutes)
        requeued = self.db.requeue_stale_withdrawals(isoformat(cutoff))
        if requeued:
            logger.warning(f"Requeued {requeued} stale processing withdrawal(s)")

        withdrawals = self.db.get_withdrawals(
            status="pending", limit=self.config.batch_size, oldest_first=True
        )
        results = {"processed": 0, "succeeded": 0, "failed": 0, "details": []}

        if not withdrawals:
            logger.debug("No pending withdrawals")
            return {"message": "No pending withdrawals", **results}

        logger.info(f"Found {len(withdrawals)} pending withdrawal(s)")

        for withdrawal in withdrawals:
            claimed = self.db.update_withdrawal_status(
                withdrawal["id"], "processing", "pending", processed_at=isoformat(self.clock())
            )
            if not claimed:
                continue

            try:
                tx_hash = self.sender.send(
                    withdrawal["wallet_address"], withdrawal["amount"], withdrawal["id"]
                )
            except Exception as e:
                logger.error(
                    "Withdrawal failed",
                    exc_info=not isinstance(e, PayoutError),
                    extra={"withdrawal_id": withdrawal["id"], "error": str(e)},
                )
                self._mark_failed(withdrawal, str(e) or type(e).__name__)
                results["failed"] += 1
                results["details"].append({"id": withdrawal["id"], "status": "failed", "error": str(e)})
            else:
                self._mark_completed(withdrawal, tx_hash)
                logger.info(
                    "Withdrawal completed",
                    extra={"withdrawal_id": withdrawal["id"], "tx_hash": tx_hash},
                )
                results["succeeded"] += 1
                results["details"].append({"id": withdrawal["id"], "status": "success", "txHash": tx_hash})

            results["processed"] += 1

        logger.info(
            f"Processed {results['processed']} withdrawal(s): "
            f"{results['succeeded']} succeeded, {results['failed']} failed"
        )
        return {"message": "Processing complete", **results}

    def _mark_completed(self, withdrawal: Dict, tx_hash: str):
        with self.db.transaction() as cur:
            self.db.update_withdrawal_status(
                withdrawal["id"],
                "completed",
                "processing",
                cur=cur,
                tx_hash=tx_hash,
                completed_at=isoformat(self.clock()),
            )
            self.db.mark_bets_paid(withdrawal["wallet_address"], withdrawal["requested_at"], cur=cur)

    def _mark_failed(self, withdrawal: Dict, error: str):
        with self.db.transaction() as cur:
            moved = self.db.update_withdrawal_status(
                withdrawal["id"],
                "failed",
                "processing",
                cur=cur,
                error_message=error,
                completed_at=isoformat(self.clock()),
            )
            if moved:
                self.db.refund_withdrawal_amount(
                    withdrawal["wallet_address"], withdrawal["amount"], cur=cur
                )


withdrawal_processor = WithdrawalProcessor()
