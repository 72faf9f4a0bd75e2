"""Per-day selection of the lines a payer's copay applies to."""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Callable, Hashable, Sequence

from estimator.amounts import ZERO
from estimator.models import Benefits, CopayLogic, Payer, Procedure


def _all_lines(procedures: Sequence[Procedure], payer: Payer, default_date: str) -> set[str]:
    return {procedure.id for procedure in procedures}


def _highest_per_group(
    procedures: Sequence[Procedure],
    payer: Payer,
    default_date: str,
    group_of: Callable[[Procedure], Hashable],
) -> set[str]:
    groups: dict[Hashable, list[Procedure]] = defaultdict(list)
    for procedure in procedures:
        groups[group_of(procedure)].append(procedure)

    mask: set[str] = set()
    for members in groups.values():
        # First line wins ties.
        best = max(members, key=lambda p: _copay(payer, p))
        mask.add(best.id)
    return mask


def _copay(payer: Payer, procedure: Procedure) -> Decimal:
    benefit = payer.benefit_for(procedure.id)
    return benefit.copay if benefit is not None else ZERO


def _highest_per_day(procedures: Sequence[Procedure], payer: Payer, default_date: str) -> set[str]:
    return _highest_per_group(procedures, payer, default_date, lambda p: p.date_of_service or default_date)


def _highest_per_category_per_day(procedures: Sequence[Procedure], payer: Payer, default_date: str) -> set[str]:
    return _highest_per_group(
        procedures,
        payer,
        default_date,
        lambda p: (p.date_of_service or default_date, p.category.strip().lower()),
    )


_POLICIES: dict[CopayLogic, Callable[[Sequence[Procedure], Payer, str], set[str]]] = {
    CopayLogic.STANDARD_WATERFALL: _all_lines,
    CopayLogic.COPAY_ONLY_IF_PRESENT: _all_lines,
    CopayLogic.HIGHEST_COPAY_ONLY_PER_DAY: _highest_per_day,
    CopayLogic.COPAY_BY_CATEGORY_PER_DAY: _highest_per_category_per_day,
}


def compute_copay_mask(procedures: Sequence[Procedure], payer: Payer, default_date: str = "") -> set[str]:
    """Return the ids of procedures whose copay the payer's copay policy permits."""

    benefits: Benefits = payer.benefits
    return _POLICIES[benefits.copay_logic](procedures, payer, default_date)
