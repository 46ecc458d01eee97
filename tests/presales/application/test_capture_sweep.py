from datetime import UTC, datetime, timedelta

from presales.capture.attempt import AttemptStatus
from presales.capture.orchestrator import CaptureOrchestrator
from presales.capture.sweep import process_due_captures
from presales.ledger.queries import get_capture_history
from presales.threshold import tracker
from presales.threshold.threshold import ThresholdStatus

T0 = datetime.now(UTC) + timedelta(minutes=1)


def _funded(make_presale, record_pledge, orders=2, prefix="auth"):
    product_id = make_presale(target_orders=orders)
    for index in range(orders):
        record_pledge(product_id, f"{prefix}-{index}")
    return product_id


def test_picks_up_reached_presale_left_active(gateway, make_presale, record_pledge):
    product_id = _funded(make_presale, record_pledge)

    assert process_due_captures(T0, CaptureOrchestrator(gateway=gateway)) == 1
    assert tracker.find_threshold(product_id).status == ThresholdStatus.COMPLETED.value


def test_runs_due_retries_only(gateway, make_presale, record_pledge):
    product_id = _funded(make_presale, record_pledge)
    gateway.fail_capture("auth-0", times=1)
    orchestrator = CaptureOrchestrator(gateway=gateway)
    orchestrator.on_pledges_recorded(product_id, T0)

    assert process_due_captures(T0 + timedelta(hours=2), orchestrator) == 0
    assert process_due_captures(T0 + timedelta(hours=12), orchestrator) == 1

    history = get_capture_history(product_id)
    assert [a.status for a in history] == [AttemptStatus.PARTIAL.value, AttemptStatus.COMPLETED.value]


def test_exhausted_presale_does_not_stop_the_sweep(gateway, make_presale, record_pledge):
    doomed = _funded(make_presale, record_pledge, prefix="doomed")
    healthy = _funded(make_presale, record_pledge, prefix="healthy")
    gateway.fail_capture("doomed-0")
    orchestrator = CaptureOrchestrator(gateway=gateway)

    process_due_captures(T0, orchestrator)
    assert tracker.find_threshold(healthy).status == ThresholdStatus.COMPLETED.value

    process_due_captures(T0 + timedelta(days=4), orchestrator)
    assert tracker.find_threshold(doomed).status == ThresholdStatus.FAILED.value


def test_manual_mode_leaves_first_attempt_to_operator(gateway, make_presale, record_pledge, monkeypatch):
    monkeypatch.setenv("PRESALE_CAPTURE_TRIGGER", "manual")
    product_id = _funded(make_presale, record_pledge)

    assert process_due_captures(T0, CaptureOrchestrator(gateway=gateway)) == 0
    assert tracker.find_threshold(product_id).status == ThresholdStatus.PROCESSING.value
    assert gateway.calls_to("capture") == []


def test_nothing_to_do(gateway, make_presale, record_pledge):
    product_id = make_presale(target_orders=3)
    record_pledge(product_id, "auth-1")

    assert process_due_captures(T0, CaptureOrchestrator(gateway=gateway)) == 0
