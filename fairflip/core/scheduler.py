from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from fairflip.config import settings
from fairflip.core.logger import get_logger
from fairflip.core.withdrawals import WithdrawalProcessor, withdrawal_processor

logger = get_logger("scheduler")


class WithdrawalScheduler:
    """Periodic fallback for withdrawals whose immediate trigger was lost."""

    def __init__(self, processor: WithdrawalProcessor = None, interval_minutes: int = None):
        self.processor = processor or withdrawal_processor
        self.interval_minutes = interval_minutes or settings.withdrawal.process_interval_minutes
        self.scheduler = BackgroundScheduler()

    def start(self):
        self.scheduler.add_job(
            self.process_withdrawals,
            IntervalTrigger(minutes=self.interval_minutes),
            id="process_withdrawals",
            name="Process pending withdrawals",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Withdrawal scheduler started (every {self.interval_minutes} min)")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Withdrawal scheduler shutdown")

    def process_withdrawals(self):
        try:
            result = self.processor.process_pending()
            if result.get("processed"):
                logger.info(f"Scheduled run processed {result['processed']} withdrawal(s)")
        except Exception as e:
            logger.error(f"Error processing withdrawals: {e}", exc_info=True)


withdrawal_scheduler = WithdrawalScheduler()
