"""BDD tests for expiring unfunded presales."""

from datetime import timedelta

from presales.reaper.expiry import ExpiryReaper
from pytest_bdd import scenarios, then, when

scenarios("features/presale_expiry.feature")


@when("the expiry reaper runs after the deadline")
def _(gateway, clock):
    ExpiryReaper(gateway=gateway).run(clock["deadline"] + timedelta(minutes=5))


@when("the expiry reaper runs before the deadline")
def _(gateway, clock):
    ExpiryReaper(gateway=gateway).run(clock["deadline"] - timedelta(minutes=5))


@then("no payment was captured")
def _(gateway):
    assert gateway.calls_to("capture") == []
