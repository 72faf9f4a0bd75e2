"""Payer-specific allowed amounts with multiple-procedure discounting."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from estimator.amounts import ZERO, cents
from estimator.models import MetaData, Payer, Procedure

SURGERY = "surgery"


@dataclass(frozen=True)
class PricedLine:
    allowed: Decimal
    notes: list[str] = field(default_factory=list)


def session_key(procedure: Procedure, meta: MetaData) -> tuple[str, str, str]:
    """Procedures sharing date, rendering provider and place of service form one session."""

    return (
        procedure.date_of_service or meta.service.date,
        meta.provider.npi,
        meta.service.place_of_service,
    )


def base_allowed(payer: Payer, procedure: Procedure) -> Decimal:
    benefit = payer.benefit_for(procedure.id)
    per_unit = benefit.allowed_amount if benefit is not None and benefit.allowed_amount is not None else ZERO
    units = max(1, procedure.units)
    return min(cents(per_unit * units), cents(procedure.billed_amount))


def price_procedures(payer: Payer, procedures: Iterable[Procedure], meta: MetaData) -> dict[str, PricedLine]:
    """Return ``procedure id -> PricedLine`` for one payer."""

    factors = payer.benefits.multi_procedure_logic.factors
    sessions: dict[tuple[str, str, str], list[tuple[Procedure, Decimal]]] = defaultdict(list)
    for procedure in procedures:
        sessions[session_key(procedure, meta)].append((procedure, base_allowed(payer, procedure)))

    priced: dict[str, PricedLine] = {}
    for lines in sessions.values():
        surgical = [line for line in lines if line[0].category.strip().lower() == SURGERY]
        surgical.sort(key=lambda line: line[1], reverse=True)
        for rank, (procedure, allowed) in enumerate(surgical):
            factor = factors[min(rank, len(factors) - 1)]
            note = f"Multiple-procedure rank {rank + 1} ({int(factor * 100)}% policy)"
            priced[procedure.id] = PricedLine(allowed=cents(allowed * factor), notes=[note])

        for procedure, allowed in lines:
            if procedure.id not in priced:
                priced[procedure.id] = PricedLine(allowed=allowed)

    return priced
