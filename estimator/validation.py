"""Submission checks run before an estimate request reaches the engine."""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from estimator.models import EstimateRequest, PayerRank, Procedure


def is_active(procedure: Procedure) -> bool:
    return bool(procedure.cpt_code.strip()) or procedure.billed_amount > 0


def active_procedures(procedures: Iterable[Procedure]) -> list[Procedure]:
    """Drop blank rows left over from the entry form."""

    return [procedure for procedure in procedures if is_active(procedure)]


def validate_submission(request: EstimateRequest) -> list[str]:
    """Return human-readable problems with the submission; empty when it can be estimated."""

    errors: list[str] = []

    if not request.meta_data.patient.name.strip():
        errors.append("Patient Name is required.")

    active = active_procedures(request.procedures)
    if not active:
        errors.append("At least one procedure must be added.")

    for index, procedure in enumerate(active, start=1):
        if not procedure.cpt_code.strip():
            errors.append(f"Procedure #{index} is missing a CPT Code.")
        if procedure.billed_amount <= 0:
            errors.append(f"Procedure {procedure.cpt_code or f'#{index}'} is missing a Billed Amount.")

    if not request.payers:
        errors.append("At least one payer must be added.")

    ranks = Counter(payer.rank for payer in request.payers)
    if request.payers and ranks[PayerRank.PRIMARY] != 1:
        errors.append("Exactly one Primary payer is required.")
    for rank, count in ranks.items():
        if rank is not PayerRank.PRIMARY and count > 1:
            errors.append(f"Only one {rank.value} payer is allowed.")

    for payer in request.payers:
        if not payer.insurance.name.strip():
            errors.append(f"{payer.rank.value} Payer: An insurance plan must be selected.")
        for position, procedure in enumerate(request.procedures, start=1):
            if not is_active(procedure):
                continue
            benefit = payer.benefit_for(procedure.id)
            if benefit is None or benefit.allowed_amount is None:
                label = procedure.cpt_code or f"(Procedure #{position})"
                errors.append(f"CPT {label}: Missing Allowed Amount for the {payer.rank.value} Payer.")

    return list(dict.fromkeys(errors))
