from presales.threshold.threshold import PresaleThreshold, ThresholdStatus


class TestPresaleThreshold:
    def test_opens_active_and_empty(self):
        threshold = PresaleThreshold.open(product_id="prod-001", target_orders=10)
        assert threshold.status == ThresholdStatus.ACTIVE.value
        assert threshold.current_orders == 0
        assert threshold.attempts_started == 0
        assert not threshold.sweep_in_progress

    def test_reached_at_target(self):
        threshold = PresaleThreshold.open(product_id="prod-001", target_orders=2)
        threshold.current_orders = 2
        assert threshold.is_reached()
        assert threshold.remaining() == 0

    def test_not_reached_below_target(self):
        threshold = PresaleThreshold.open(product_id="prod-001", target_orders=3)
        threshold.current_orders = 1
        assert not threshold.is_reached()
        assert threshold.remaining() == 2
