"""Maintenance scheduler: job wiring and the one-shot run."""

import sys

import pytest
import presales.utils.logging  # noqa: F401 - monkeypatch target below needs it loaded
import scheduler
from presales.capture.attempt import AttemptStatus
from presales.domain import presales as presales_domain
from presales.ledger.order import PaymentStatus
from presales.ledger.queries import get_capture_history, get_orders_for_product
from presales.threshold import tracker
from presales.threshold.threshold import ThresholdStatus


@pytest.fixture()
def funded_presale(gateway, dispatcher, make_presale, record_pledge):
    product_id = make_presale(target_orders=2)
    record_pledge(product_id, "auth-1")
    record_pledge(product_id, "auth-2")
    return product_id


class TestBuildScheduler:
    def test_registers_both_sweeps_on_the_interval(self):
        sched = scheduler.build_scheduler(presales_domain, interval_minutes=15)

        assert {job.id for job in sched.get_jobs()} == {"expire_presales", "process_captures"}
        for job_id in ("expire_presales", "process_captures"):
            job = sched.get_job(job_id)
            assert job.trigger.interval.total_seconds() == 15 * 60
            assert job.args == (presales_domain,)

    def test_sweeps_never_overlap_or_pile_up(self):
        sched = scheduler.build_scheduler(presales_domain, interval_minutes=5)

        for job_id in ("expire_presales", "process_captures"):
            job = sched.get_job(job_id)
            assert job.max_instances == 1
            assert job.coalesce is True


class TestJobs:
    def test_process_captures_runs_due_attempt(self, gateway, funded_presale):
        assert scheduler.process_captures(presales_domain) == 1

        assert tracker.find_threshold(funded_presale).status == ThresholdStatus.COMPLETED.value
        assert len(gateway.calls_to("capture")) == 2

    def test_expire_presales_leaves_open_presales_alone(self, funded_presale):
        assert scheduler.expire_presales(presales_domain) == 0
        assert tracker.find_threshold(funded_presale).status == ThresholdStatus.ACTIVE.value


class TestRunOnce:
    def test_once_runs_both_sweeps_and_exits(self, gateway, funded_presale, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["scheduler.py", "--once"])
        monkeypatch.setattr(scheduler, "_domain", lambda: presales_domain)
        monkeypatch.setattr("presales.utils.logging.configure_logging", lambda: None)

        def never_start(*args, **kwargs):
            raise AssertionError("--once must not start the scheduler")

        monkeypatch.setattr(scheduler, "build_scheduler", never_start)

        scheduler.main()

        history = get_capture_history(funded_presale)
        assert [attempt.status for attempt in history] == [AttemptStatus.COMPLETED.value]
        orders = get_orders_for_product(funded_presale)
        assert {order.payment_status for order in orders} == {PaymentStatus.CAPTURED.value}
        assert {call["auth_id"] for call in gateway.calls_to("capture")} == {"auth-1", "auth-2"}
