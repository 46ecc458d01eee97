from datetime import UTC, datetime, timedelta

from presales.catalogue.product import Product, ProductStatus
from presales.channel.port import PresaleFailed
from presales.ledger.order import PaymentStatus
from presales.ledger.queries import get_orders_for_product
from presales.reaper.expiry import ExpiryReaper
from presales.threshold import tracker
from presales.threshold.threshold import ThresholdStatus
from protean.utils.globals import current_domain

DEADLINE = datetime.now(UTC) + timedelta(days=1)
AFTER_DEADLINE = DEADLINE + timedelta(hours=1)


class TestExpiringUnfundedPresales:
    def test_releases_every_hold_and_fails_the_presale(self, gateway, dispatcher, make_presale, record_pledge):
        product_id = make_presale(target_orders=10, deadline=DEADLINE)
        for index in range(6):
            record_pledge(product_id, f"auth-{index}")

        expired = ExpiryReaper(gateway=gateway).run(AFTER_DEADLINE)

        assert expired == 1
        threshold = tracker.find_threshold(product_id)
        assert threshold.status == ThresholdStatus.FAILED.value
        assert threshold.current_orders == 0

        orders = get_orders_for_product(product_id)
        assert all(order.payment_status == PaymentStatus.CANCELLED.value for order in orders)
        assert sorted(call["auth_id"] for call in gateway.calls_to("cancel")) == [f"auth-{i}" for i in range(6)]
        assert gateway.calls_to("capture") == []

        failed = dispatcher.of_type(PresaleFailed)
        assert len(failed) == 1
        assert failed[0].reason == "deadline_passed"
        assert failed[0].current_orders == 6
        assert failed[0].target_orders == 10
        assert failed[0].released_orders == 6

    def test_converts_release_to_digital(self, gateway, make_presale, record_pledge):
        product_id = make_presale(target_orders=4, unit_price=30.0, deadline=DEADLINE)
        record_pledge(product_id, "auth-1")

        ExpiryReaper(gateway=gateway).run(AFTER_DEADLINE)

        product = current_domain.repository_for(Product).get(product_id)
        assert product.status == ProductStatus.DIGITAL.value
        assert product.digital_price == 15.0

    def test_presale_without_pledges_still_fails(self, gateway, dispatcher, make_presale):
        product_id = make_presale(target_orders=3, deadline=DEADLINE)

        assert ExpiryReaper(gateway=gateway).run(AFTER_DEADLINE) == 1
        assert tracker.find_threshold(product_id).status == ThresholdStatus.FAILED.value
        assert gateway.calls_to("cancel") == []
        assert dispatcher.of_type(PresaleFailed)[0].released_orders == 0

    def test_failed_cancel_marks_order_failed(self, gateway, make_presale, record_pledge):
        product_id = make_presale(target_orders=5, deadline=DEADLINE)
        record_pledge(product_id, "auth-ok")
        record_pledge(product_id, "auth-stuck")
        gateway.fail_cancel("auth-stuck")

        ExpiryReaper(gateway=gateway).run(AFTER_DEADLINE)

        statuses = {o.payment_auth_id: o.payment_status for o in get_orders_for_product(product_id)}
        assert statuses == {"auth-ok": PaymentStatus.CANCELLED.value, "auth-stuck": PaymentStatus.FAILED.value}
        assert tracker.find_threshold(product_id).current_orders == 0


class TestPresalesLeftAlone:
    def test_before_deadline(self, gateway, make_presale, record_pledge):
        product_id = make_presale(target_orders=5, deadline=DEADLINE)
        record_pledge(product_id, "auth-1")

        assert ExpiryReaper(gateway=gateway).run(DEADLINE - timedelta(hours=1)) == 0
        assert tracker.find_threshold(product_id).status == ThresholdStatus.ACTIVE.value
        assert gateway.calls_to("cancel") == []

    def test_reached_presale_is_not_expired(self, gateway, make_presale, record_pledge):
        product_id = make_presale(target_orders=2, deadline=DEADLINE)
        record_pledge(product_id, "auth-1")
        record_pledge(product_id, "auth-2")

        assert ExpiryReaper(gateway=gateway).run(AFTER_DEADLINE) == 0
        assert tracker.find_threshold(product_id).status == ThresholdStatus.ACTIVE.value

    def test_processing_presale_is_not_expired(self, gateway, make_presale, record_pledge):
        product_id = make_presale(target_orders=1, deadline=DEADLINE)
        record_pledge(product_id, "auth-1")
        tracker.mark_processing(product_id)

        assert ExpiryReaper(gateway=gateway).run(AFTER_DEADLINE) == 0
        assert tracker.find_threshold(product_id).status == ThresholdStatus.PROCESSING.value

    def test_second_run_does_nothing(self, gateway, dispatcher, make_presale, record_pledge):
        product_id = make_presale(target_orders=5, deadline=DEADLINE)
        record_pledge(product_id, "auth-1")
        reaper = ExpiryReaper(gateway=gateway)

        assert reaper.run(AFTER_DEADLINE) == 1
        assert reaper.run(AFTER_DEADLINE) == 0
        assert len(gateway.calls_to("cancel")) == 1
        assert len(dispatcher.of_type(PresaleFailed)) == 1

    def test_pledge_landing_mid_expiry_wins(self, gateway, make_presale, record_pledge):
        product_id = make_presale(target_orders=5, deadline=DEADLINE)
        record_pledge(product_id, "auth-1")
        threshold = tracker.find_threshold(product_id)
        product = current_domain.repository_for(Product).get(product_id)

        record_pledge(product_id, "auth-2")

        assert ExpiryReaper(gateway=gateway).expire(threshold, product, AFTER_DEADLINE) is False
        assert tracker.find_threshold(product_id).status == ThresholdStatus.ACTIVE.value
        assert gateway.calls_to("cancel") == []
