"""Benefit-limit gates applied before cost sharing."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from estimator.amounts import UNLIMITED, ZERO, cents, format_money
from estimator.models import THERAPY_DISCIPLINES, Accumulators, Benefits, BreakdownStep, Procedure

DME = "dme"


@dataclass(frozen=True)
class GateResult:
    cap: Decimal = UNLIMITED
    steps: list[BreakdownStep] = field(default_factory=list)


def therapy_discipline(procedure: Procedure) -> str | None:
    category = procedure.category.strip().lower()
    return category if category in THERAPY_DISCIPLINES else None


def is_dme(procedure: Procedure) -> bool:
    return procedure.category.strip().lower() == DME


def evaluate_coverage_gate(procedure: Procedure, benefits: Benefits, accumulators: Accumulators) -> GateResult:
    """Return the ceiling on this line's allowed amount given exhausted benefit limits."""

    cap = UNLIMITED
    steps: list[BreakdownStep] = []

    discipline = therapy_discipline(procedure)
    if discipline is not None:
        limit = benefits.therapy_visit_limits.get(discipline)
        used = accumulators.therapy_visits_used.get(discipline)
        if limit > 0 and used >= limit:
            cap = ZERO
            steps.append(
                BreakdownStep(
                    description="Limit Exhausted",
                    notes=f"Annual visit limit of {limit} reached for {procedure.category}.",
                )
            )

    rental = benefits.dme_rental_cap
    if is_dme(procedure) and rental.applies and rental.purchase_price > 0:
        paid = accumulators.dme_rental_paid
        if paid >= rental.purchase_price:
            cap = ZERO
            steps.append(
                BreakdownStep(description="Non-Covered", notes="DME rental cap reached (purchase price met).")
            )
        else:
            remaining = cents(rental.purchase_price - paid)
            cap = min(cap, remaining)
            steps.append(
                BreakdownStep(
                    description="Rental Cap",
                    notes=f"Rental allowed limited to {format_money(remaining)} remaining of the purchase price.",
                )
            )

    return GateResult(cap=cap, steps=steps)
