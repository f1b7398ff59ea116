# lending/scheduler/jobs.py
import logging

from lending.core.config import (
    OVERDUE_AUTO_INITIATE_RETURNS,
    OVERDUE_PENALTY_MULTIPLIER,
    OVERDUE_SCAN_THRESHOLD_DAYS,
)
from lending.core.engine import LendingEngine
from lending.core.errors import LendingError

logger = logging.getLogger("scheduler_jobs")


async def run_overdue_scan(engine: LendingEngine) -> None:
    """Periodic overdue scan run as the system actor. Only newly accrued penalty is charged."""
    logger.info(
        f"Running overdue scan job (threshold {OVERDUE_SCAN_THRESHOLD_DAYS}d, "
        f"multiplier {OVERDUE_PENALTY_MULTIPLIER}, auto returns {OVERDUE_AUTO_INITIATE_RETURNS})"
    )
    try:
        result = await engine.overdue.scan(
            None,
            days_overdue_threshold=OVERDUE_SCAN_THRESHOLD_DAYS,
            auto_initiate_returns=OVERDUE_AUTO_INITIATE_RETURNS,
            penalty_multiplier=OVERDUE_PENALTY_MULTIPLIER,
            incremental=True,
        )
    except LendingError as e:
        # bad scan settings, the next run will fail the same way
        logger.error(f"Overdue scan job rejected: {e.message}")
        return
    except Exception as e:
        logger.error(f"Overdue scan job failed: {e}", exc_info=True)
        return

    logger.info(
        f"Overdue scan job finished. Processed: {result.summary.count}, "
        f"Failed: {len(result.failed)}, Total penalties: {result.summary.total_penalties}, "
        f"Auto returns: {result.summary.auto_returns_created}"
    )
