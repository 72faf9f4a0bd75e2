"""Heuristic payment-likelihood scoring from patient-reported financial signals."""

from __future__ import annotations

from decimal import Decimal

from estimator.models import PropensityData, PropensityResult, SuggestedAction

_HISTORY_IMPACT = {"on_time": 25, "payment_plan": 5, "sometimes_late": -10, "difficulty": -25}
_CONFIDENCE_IMPACT = {"excellent": 15, "good": 5, "fair": -10, "needs_improvement": -25}
_EMPLOYMENT_IMPACT = {"employed": 10, "retired": 5, "student": -5, "unemployed": -20, "other": 0}
_INCOME_MIDPOINTS = {
    "<25k": Decimal("12500"),
    "25k-50k": Decimal("37500"),
    "50k-100k": Decimal("75000"),
    "100k-200k": Decimal("150000"),
    ">200k": Decimal("250000"),
}

_RECOMMENDATIONS = {
    "High": "Patient has a high likelihood of paying. Standard billing procedures are recommended.",
    "Medium": "Patient may need flexible options. Proactively offer short-term payment plans.",
    "Low": (
        "Patient has a high risk of non-payment. "
        "Immediate engagement with a financial counselor is strongly recommended."
    ),
}
_ACTIONS = {
    "High": [("Pay in Full Now", "primary"), ("View Short-Term Plans", "secondary")],
    "Medium": [("Setup a Payment Plan", "primary"), ("Contact Financial Counselor", "secondary")],
    "Low": [("Contact Financial Counselor", "primary"), ("Learn about Financial Assistance", "secondary")],
}


def _has_inputs(data: PropensityData | None) -> bool:
    if data is None:
        return False
    return bool(
        data.payment_history
        or data.financial_confidence
        or data.outstanding_balance is not None
        or data.employment_status
        or data.household_income
    )


def _bill_size(total: Decimal) -> tuple[str, int]:
    if total > 5000:
        return "High Bill Amount (> $5k)", -30
    if total > 1000:
        return "High Bill Amount (> $1k)", -20
    if total > 200:
        return "Moderate Bill Amount", -5
    return "Low Bill Amount (< $200)", 10


def tier_for(score: int) -> str:
    if score > 75:
        return "High"
    if score > 40:
        return "Medium"
    return "Low"


def score_propensity(total_patient_responsibility: Decimal, data: PropensityData | None) -> PropensityResult | None:
    """Score the patient's likelihood of paying ``total_patient_responsibility``.

    Returns ``None`` when the patient supplied no financial signals at all.
    """

    if data is None or not _has_inputs(data):
        return None

    factors: dict[str, int] = {}

    def add(label: str, impact: int) -> None:
        if impact:
            factors[label] = impact

    add(*_bill_size(total_patient_responsibility))
    add("Payment History", _HISTORY_IMPACT.get(data.payment_history, 0))
    add("Financial Confidence", _CONFIDENCE_IMPACT.get(data.financial_confidence, 0))

    balance = data.outstanding_balance
    if balance is not None:
        if balance > 1000:
            add("High Outstanding Balance", -20)
        elif balance > 0:
            add("Existing Balance", -10)
        else:
            add("No Outstanding Balance", 5)

    add("Employment Status", _EMPLOYMENT_IMPACT.get(data.employment_status, 0))

    income = _INCOME_MIDPOINTS.get(data.household_income)
    if income is not None:
        stress = total_patient_responsibility / income
        if stress > Decimal("0.1"):
            add("High Bill-to-Income Ratio (>10%)", -20)
        elif stress > Decimal("0.05"):
            add("Moderate Bill-to-Income Ratio (>5%)", -10)
        if income < 50000 and data.household_size > 2:
            add("Low Income & Multiple Dependents", -10)

    if data.is_hsa_compatible:
        add("High Deductible Plan (HSA)", -15)

    score = max(0, min(100, 50 + sum(factors.values())))
    tier = tier_for(score)
    return PropensityResult(
        score=score,
        tier=tier,
        recommendation=_RECOMMENDATIONS[tier],
        dynamic_actions=[SuggestedAction(text=text, type=kind) for text, kind in _ACTIONS[tier]],
        factors=factors,
    )
