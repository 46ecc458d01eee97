"""Shared BDD fixtures and step definitions for presales."""

from datetime import UTC, datetime, timedelta

import pytest
from presales.capture.captured_payment import CapturedPaymentStatus
from presales.catalogue.product import Product
from presales.channel.port import PresaleCompleted, PresaleFailed
from presales.ledger.queries import get_captured_payments, get_orders_for_product
from presales.threshold import tracker
from protean.utils.globals import current_domain
from pytest_bdd import given, parsers, then

T0 = datetime.now(UTC) + timedelta(minutes=1)


@pytest.fixture(autouse=True)
def _fakes(gateway, dispatcher):
    """Install both fakes before any step runs so no notification is missed."""


@pytest.fixture()
def clock():
    return {"start": T0}


@pytest.fixture()
def outcome():
    """Holds whatever the When step produced or raised."""
    return {}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(
    parsers.cfparse("a presale of {target:d} copies at {price:f} closing in {days:d} days"),
    target_fixture="product_id",
)
def _presale(make_presale, clock, target, price, days):
    clock["deadline"] = datetime.now(UTC) + timedelta(days=days)
    return make_presale(target_orders=target, unit_price=price, deadline=clock["deadline"])


@given(parsers.cfparse("{count:d} buyers have pledged one copy each"))
def _pledges(record_pledge, product_id, count):
    for index in range(count):
        record_pledge(product_id, f"auth-{index}")


@given(parsers.cfparse('the gateway cannot capture "{auth_id}"'))
def _capture_always_fails(gateway, auth_id):
    gateway.fail_capture(auth_id)


@given(parsers.cfparse('the gateway fails to capture "{auth_id}" once'))
def _capture_fails_once(gateway, auth_id):
    gateway.fail_capture(auth_id, times=1)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the presale is "{status}"'))
def _presale_status(product_id, status):
    assert tracker.find_threshold(product_id).status == status


@then(parsers.cfparse("the presale counts {count:d} pledges"))
def _pledge_count(product_id, count):
    assert tracker.find_threshold(product_id).current_orders == count


@then(parsers.cfparse('{count:d} orders are "{status}"'))
def _orders_with_status(product_id, count, status):
    assert len(get_orders_for_product(product_id, [status])) == count


@then(parsers.cfparse("{count:d} payments are flagged for manual refund"))
def _flagged(product_id, count):
    flagged = get_captured_payments(product_id, CapturedPaymentStatus.FLAGGED_FOR_MANUAL_REFUND)
    assert len(flagged) == count


@then("no refunds were issued")
def _no_refunds(gateway):
    assert gateway.calls_to("refund") == []


@then(parsers.cfparse('buyers are told the presale failed because "{reason}"'))
def _failed_notice(dispatcher, reason):
    notices = dispatcher.of_type(PresaleFailed)
    assert len(notices) == 1
    assert notices[0].reason == reason


@then(parsers.cfparse("buyers are told the presale completed with {amount:f} captured"))
def _completed_notice(dispatcher, amount):
    notices = dispatcher.of_type(PresaleCompleted)
    assert len(notices) == 1
    assert notices[0].captured_amount == amount


@then(parsers.cfparse("the record is offered as a digital release at {price:f}"))
def _digital(product_id, price):
    product = current_domain.repository_for(Product).get(product_id)
    assert product.status == "Digital"
    assert product.digital_price == price
