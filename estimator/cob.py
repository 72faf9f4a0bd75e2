"""Coordination-of-benefits payment rules for secondary and tertiary payers."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Sequence

from estimator.amounts import ZERO, cents
from estimator.models import CobMethod, Payer, PayerType

TPL_PAYER_TYPES = frozenset({PayerType.AUTO, PayerType.WORKERS_COMP})
GROUP_HEALTH_PAYER_TYPES = frozenset({PayerType.COMMERCIAL})


@dataclass(frozen=True)
class CobInputs:
    """What the payer would have done as primary, plus what the chain has already settled."""

    would_pay: Decimal
    patient_cost_share: Decimal
    allowed: Decimal
    prior_paid: Decimal
    claim_amount: Decimal


def _traditional(inputs: CobInputs) -> Decimal:
    return min(inputs.would_pay, inputs.allowed - inputs.prior_paid, inputs.claim_amount)


def _non_duplication(inputs: CobInputs) -> Decimal:
    return min(inputs.would_pay - inputs.prior_paid, inputs.claim_amount)


def _carve_out(inputs: CobInputs) -> Decimal:
    return min(inputs.patient_cost_share, inputs.claim_amount)


_RULES: dict[CobMethod, Callable[[CobInputs], Decimal]] = {
    CobMethod.TRADITIONAL: _traditional,
    CobMethod.NON_DUPLICATION: _non_duplication,
    CobMethod.CARVE_OUT: _carve_out,
    CobMethod.MEDICARE_SECONDARY: _traditional,
    CobMethod.MEDICAID_PAYER_LAST_RESORT: _traditional,
    CobMethod.LIABILITY_NO_FAULT: _traditional,
}


def cob_payment(method: CobMethod, inputs: CobInputs) -> Decimal:
    """Payment of a non-primary payer, clamped to ``[0, claim_amount]``."""

    rule = _RULES.get(method, _traditional)
    payment = rule(inputs)
    claim = max(inputs.claim_amount, ZERO)
    return cents(min(max(payment, ZERO), claim))


def tpl_blocks(payers: Sequence[Payer], index: int, enabled: bool = True) -> bool:
    """True when the payer at ``index`` is a group health plan behind an active subrogation claim."""

    if not enabled or index <= 0:
        return False
    prior = payers[index - 1]
    if prior.payer_type not in TPL_PAYER_TYPES or not prior.subrogation_active:
        return False
    return payers[index].payer_type in GROUP_HEALTH_PAYER_TYPES
