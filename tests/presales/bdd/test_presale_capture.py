"""BDD tests for capturing funded presales."""

from datetime import timedelta

from presales.capture.orchestrator import CaptureOrchestrator
from presales.errors import CaptureExhaustedError
from pytest_bdd import parsers, scenarios, then, when

scenarios("features/presale_capture.feature")


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when("the presale reaches its target")
def _(gateway, product_id, clock, outcome):
    outcome["attempt"] = CaptureOrchestrator(gateway=gateway).on_pledges_recorded(product_id, clock["start"])


@when(parsers.cfparse("the retry runs {hours:d} hours later"))
def _(gateway, product_id, clock, outcome, hours):
    try:
        outcome["attempt"] = CaptureOrchestrator(gateway=gateway).run_attempt(
            product_id, clock["start"] + timedelta(hours=hours)
        )
    except CaptureExhaustedError as exc:
        outcome["error"] = exc


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the capture attempt is "{status}"'))
def _(outcome, status):
    assert outcome["attempt"].status == status


@then(parsers.cfparse("capture is reported as exhausted after {attempts:d} attempts"))
def _(outcome, attempts):
    assert isinstance(outcome["error"], CaptureExhaustedError)
    assert outcome["error"].attempts == attempts
