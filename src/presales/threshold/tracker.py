"""Presale threshold tracker: conditional updates on the pledge counter.

Every write here is a conditional update through the repository DAO whose
criteria carry the value the caller observed, so the store decides which of
several racing writers wins. A write that matches no row lost the race.

Pledge counts move inside the Order Ledger's unit of work with
``_update_all`` and are committed or rolled back with the order. Status
transitions and capture claims are DAO claims that commit immediately.
"""

from datetime import UTC, datetime

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain
from protean.utils.query import Q

from presales.catalogue.product import as_utc
from presales.errors import ThresholdRaceError
from presales.threshold.threshold import PresaleThreshold, ThresholdStatus

logger = structlog.get_logger(__name__)

_MAX_DECREMENT_RETRIES = 10


def _dao():
    return current_domain.repository_for(PresaleThreshold)._dao


def _update_where(values: dict, **criteria) -> bool:
    """Apply ``values`` to the threshold matching ``criteria`` within the current unit of work."""
    return _dao()._update_all(Q(**criteria), values) == 1


def _transition(values: dict, **criteria) -> bool:
    """Apply ``values`` to the threshold matching ``criteria`` and commit at once.

    The DAO claim re-asserts ``criteria`` in the write and is serialized by
    the provider, so of several concurrent callers exactly one matches.
    """
    return len(_dao()._claim(Q(**criteria), values, limit=1)) == 1


def find_threshold(product_id) -> PresaleThreshold | None:
    """Read the stored threshold, bypassing any cached aggregate."""
    items = _dao().query.filter(product_id=str(product_id)).all().items
    return items[0] if items else None


def thresholds_with_status(status: ThresholdStatus) -> list[PresaleThreshold]:
    return _dao().query.filter(status=status.value).all().items


def is_reached(product_id) -> bool:
    threshold = find_threshold(product_id)
    return threshold is not None and threshold.is_reached()


def increment(product_id, quantity: int) -> int:
    """Add ``quantity`` pledges to an active presale and return the new count.

    Raises ValidationError when the presale is closed or would overshoot its
    target, and ThresholdRaceError when another pledge got there first.
    """
    threshold = find_threshold(product_id)
    if threshold is None:
        raise ValidationError({"product_id": [f"No presale threshold for product {product_id}"]})
    if threshold.status != ThresholdStatus.ACTIVE.value:
        raise ValidationError({"presale": ["Presale is no longer accepting orders"]})

    observed = threshold.current_orders
    if observed + quantity > threshold.target_orders:
        raise ValidationError({"quantity": ["Order would exceed presale target"]})

    won = _update_where(
        {"current_orders": observed + quantity},
        product_id=str(product_id),
        status=ThresholdStatus.ACTIVE.value,
        current_orders=observed,
    )
    if not won:
        raise ThresholdRaceError(str(product_id), observed)

    return observed + quantity


def decrement(product_id, quantity: int) -> int:
    """Remove pledges whose funds were released. Retries its own races."""
    for _ in range(_MAX_DECREMENT_RETRIES):
        threshold = find_threshold(product_id)
        if threshold is None:
            raise ValidationError({"product_id": [f"No presale threshold for product {product_id}"]})

        observed = threshold.current_orders
        new_count = max(observed - quantity, 0)
        if _update_where({"current_orders": new_count}, product_id=str(product_id), current_orders=observed):
            return new_count

    raise ThresholdRaceError(str(product_id), observed)


def mark_processing(product_id, as_of: datetime | None = None) -> bool:
    """Move a reached presale from ACTIVE to PROCESSING. Exactly one caller gets True."""
    threshold = find_threshold(product_id)
    if threshold is None or not threshold.is_reached():
        return False

    won = _transition(
        {"status": ThresholdStatus.PROCESSING.value, "reached_at": as_of or datetime.now(UTC)},
        product_id=str(product_id),
        status=ThresholdStatus.ACTIVE.value,
    )
    if won:
        logger.info(
            "Presale threshold reached",
            product_id=str(product_id),
            current_orders=threshold.current_orders,
            target_orders=threshold.target_orders,
        )
    return won


def mark_failed_if_unreached(product_id, observed_orders: int, as_of: datetime | None = None) -> bool:
    """Fail an ACTIVE presale, provided no pledge arrived since ``observed_orders`` was read."""
    return _transition(
        {"status": ThresholdStatus.FAILED.value, "resolved_at": as_of or datetime.now(UTC)},
        product_id=str(product_id),
        status=ThresholdStatus.ACTIVE.value,
        current_orders=observed_orders,
    )


def claim_attempt(product_id, attempts_started: int, as_of: datetime | None = None) -> bool:
    """Reserve the next capture attempt. Fails if a sweep is running or another claim won."""
    return _transition(
        {
            "attempts_started": attempts_started + 1,
            "sweep_in_progress": True,
            "claimed_at": as_of or datetime.now(UTC),
        },
        product_id=str(product_id),
        status=ThresholdStatus.PROCESSING.value,
        attempts_started=attempts_started,
        sweep_in_progress=False,
    )


def release_claim(product_id) -> None:
    _transition({"sweep_in_progress": False}, product_id=str(product_id), sweep_in_progress=True)


def claim_is_stale(threshold: PresaleThreshold, stale_before: datetime) -> bool:
    return bool(threshold.sweep_in_progress) and (
        threshold.claimed_at is None or as_utc(threshold.claimed_at) < stale_before
    )


def reclaim_stale(product_id, stale_before: datetime) -> bool:
    """Drop a claim left behind by a worker that died mid-attempt.

    Guarded by the attempt count the caller saw, so only one worker takes
    over and a claim renewed in the meantime is left alone.
    """
    threshold = find_threshold(product_id)
    if threshold is None or not claim_is_stale(threshold, stale_before):
        return False

    won = _transition(
        {"sweep_in_progress": False},
        product_id=str(product_id),
        status=ThresholdStatus.PROCESSING.value,
        attempts_started=threshold.attempts_started,
        sweep_in_progress=True,
    )
    if won:
        logger.warning(
            "Stale capture claim released",
            product_id=str(product_id),
            attempts_started=threshold.attempts_started,
            claimed_at=threshold.claimed_at.isoformat() if threshold.claimed_at else None,
        )
    return won


def resolve(product_id, status: ThresholdStatus, as_of: datetime | None = None) -> bool:
    """Settle a PROCESSING presale as COMPLETED or FAILED."""
    return _transition(
        {
            "status": status.value,
            "sweep_in_progress": False,
            "resolved_at": as_of or datetime.now(UTC),
        },
        product_id=str(product_id),
        status=ThresholdStatus.PROCESSING.value,
    )
