"""Periodic capture sweep.

Triggered by the scheduler and by the maintenance API endpoint. Picks up
presales that reached their target without being moved on (for example
because the process that recorded the last pledge died), runs first
attempts that were never started, runs retries whose time has come, and
takes over attempts whose claim went stale. One presale raising does not
stop the sweep for the others.
"""

from datetime import UTC, datetime

import structlog

from presales import config
from presales.capture.orchestrator import CaptureOrchestrator
from presales.errors import CaptureExhaustedError
from presales.threshold import tracker
from presales.threshold.threshold import ThresholdStatus

logger = structlog.get_logger(__name__)


def process_due_captures(as_of: datetime | None = None, orchestrator: CaptureOrchestrator | None = None) -> int:
    """Run every capture attempt that is due. Returns the number of attempts run."""
    as_of = as_of or datetime.now(UTC)
    orchestrator = orchestrator or CaptureOrchestrator()
    attempts_run = 0

    for threshold in tracker.thresholds_with_status(ThresholdStatus.ACTIVE):
        if not threshold.is_reached():
            continue
        try:
            if orchestrator.on_pledges_recorded(threshold.product_id, as_of) is not None:
                attempts_run += 1
        except CaptureExhaustedError as exc:
            attempts_run += 1
            logger.error("Presale capture exhausted", product_id=str(threshold.product_id), error=str(exc))
        except Exception:
            logger.exception("Capture attempt raised", product_id=str(threshold.product_id))

    manual = config.capture_trigger() == config.CaptureTrigger.MANUAL
    stale_before = as_of - config.stale_claim_after()
    for threshold in tracker.thresholds_with_status(ThresholdStatus.PROCESSING):
        if threshold.sweep_in_progress and not tracker.claim_is_stale(threshold, stale_before):
            continue
        if threshold.attempts_started == 0 and manual:
            continue
        try:
            if orchestrator.run_attempt(threshold.product_id, as_of) is not None:
                attempts_run += 1
        except CaptureExhaustedError as exc:
            attempts_run += 1
            logger.error("Presale capture exhausted", product_id=str(threshold.product_id), error=str(exc))
        except Exception:
            logger.exception("Capture attempt raised", product_id=str(threshold.product_id))

    logger.info("Capture sweep complete", attempts_run=attempts_run)
    return attempts_run
