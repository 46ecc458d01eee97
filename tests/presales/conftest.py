from datetime import UTC, datetime, timedelta

import pytest
from protean.integrations.pytest import DomainFixture
from protean.utils.globals import current_domain


@pytest.fixture(scope="session")
def presales_bed():
    from presales.domain import presales

    bed = DomainFixture(presales)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(presales_bed):
    from presales.channel import reset_dispatcher
    from presales.gateway import reset_gateway

    with presales_bed.domain_context():
        yield

        for _, provider in current_domain.providers.items():
            provider._data_reset()
        current_domain.event_store.store._data_reset()

    reset_gateway()
    reset_dispatcher()


@pytest.fixture()
def gateway():
    from presales.gateway import set_gateway
    from presales.gateway.fake_adapter import FakeGateway

    fake = FakeGateway()
    set_gateway(fake)
    return fake


@pytest.fixture()
def dispatcher():
    from presales.channel import set_dispatcher
    from presales.channel.fake_dispatcher import FakeDispatcher

    fake = FakeDispatcher()
    set_dispatcher(fake)
    return fake


@pytest.fixture()
def seller_id():
    from presales.catalogue.listing import RegisterSeller

    return current_domain.process(
        RegisterSeller(
            name="Blue Note Pressings",
            payout_account_ref="acct_blue_note",
            onboarding_complete=True,
            charges_enabled=True,
        ),
        asynchronous=False,
    )


@pytest.fixture()
def make_presale(seller_id):
    """Factory: list a presale and return its product id."""
    from presales.catalogue.listing import ListProduct

    def _make(target_orders=10, unit_price=25.0, deadline=None, seller=None, is_presale=True):
        return current_domain.process(
            ListProduct(
                seller_id=seller or seller_id,
                title="Night Drive (180g)",
                unit_price=unit_price,
                is_presale=is_presale,
                target_orders=target_orders if is_presale else None,
                deadline=(deadline or datetime.now(UTC) + timedelta(days=30)) if is_presale else None,
            ),
            asynchronous=False,
        )

    return _make


@pytest.fixture()
def record_pledge():
    """Factory: record an authorized presale order directly through the ledger."""
    from presales.ledger.recording import RecordAuthorizedOrder

    def _record(product_id, payment_auth_id, quantity=1, unit_price=25.0, buyer_ref=None):
        return current_domain.process(
            RecordAuthorizedOrder(
                payment_auth_id=payment_auth_id,
                product_id=product_id,
                buyer_ref=buyer_ref or f"buyer-{payment_auth_id}",
                quantity=quantity,
                unit_price=unit_price,
            ),
            asynchronous=False,
        )

    return _record
