"""Presales bounded context: crowd-funded vinyl presales.

Turns buyer checkouts into held payments, counts pledges against each
presale's funding target, and resolves the presale either by capturing the
held funds (bounded retries, success-rate policy) or by releasing them when
the deadline passes.
"""

import structlog
from protean.domain import Domain

presales = Domain(name="presales")

logger = structlog.get_logger(__name__)
