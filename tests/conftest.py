from __future__ import annotations

from typing import Any, Callable

import pytest

from estimator.models import MetaData, Payer, Procedure

SERVICE_DATE = "2024-03-15"


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


DEFAULT_BENEFITS: dict[str, Any] = {
    "plan_type": "Individual",
    "copay_logic": "standard_waterfall",
    "deductible_allocation": "highest_allowed_first",
    "multi_procedure_logic": "100_50_50",
    "in_network": {
        "individual_deductible": "0",
        "family_deductible": "0",
        "individual_oop_max": "5000",
        "family_oop_max": "10000",
        "coinsurance_percentage": "20",
    },
    "out_of_network": {
        "individual_deductible": "0",
        "family_deductible": "0",
        "individual_oop_max": "10000",
        "family_oop_max": "20000",
        "coinsurance_percentage": "40",
    },
    "therapy_visit_limits": {"physical": "", "occupational": "", "speech": ""},
    "dme_rental_cap": {"applies": False, "purchase_price": ""},
}


@pytest.fixture
def meta() -> MetaData:
    return MetaData.model_validate(
        {
            "patient": {"name": "John Doe", "dob": "1980-01-01", "relationship": "Self", "gender": "Male"},
            "practice": {"name": "Test Clinic", "tax_id": "123456789"},
            "provider": {"name": "Dr. Smith", "npi": "1234567890", "phone": "555-555-5555"},
            "service": {"date": SERVICE_DATE, "place_of_service": "11"},
        }
    )


@pytest.fixture
def make_procedure() -> Callable[..., Procedure]:
    def _make(proc_id: str, billed: Any, **fields: Any) -> Procedure:
        payload = {
            "id": proc_id,
            "cpt_code": "99214",
            "billed_amount": str(billed),
            "dx_code": "R05",
            "category": "Office Visit",
            "units": 1,
            "is_preventive": False,
            "date_of_service": SERVICE_DATE,
        }
        payload.update(fields)
        return Procedure.model_validate(payload)

    return _make


@pytest.fixture
def make_payer() -> Callable[..., Payer]:
    def _make(
        payer_id: str,
        rank: str = "Primary",
        *,
        network_status: str = "in-network",
        payer_type: str = "commercial",
        cob_method: str = "traditional",
        subrogation_active: bool = False,
        benefits: dict[str, Any] | None = None,
        accumulators: dict[str, Any] | None = None,
        family_accumulators: dict[str, Any] | None = None,
        proc_benefits: list[dict[str, Any]] | None = None,
    ) -> Payer:
        return Payer.model_validate(
            {
                "id": payer_id,
                "rank": rank,
                "insurance": {"name": f"{rank} Payer", "member_id": "123"},
                "network_status": network_status,
                "payer_type": payer_type,
                "cob_method": cob_method,
                "subrogation_active": subrogation_active,
                "benefits": _merge(DEFAULT_BENEFITS, benefits or {}),
                "patient_accumulators": accumulators or {},
                "family_accumulators": family_accumulators,
                "procedure_benefits": [
                    {
                        "procedure_id": pb["proc_id"],
                        "allowed_amount": str(pb["allowed"]),
                        "copay": str(pb.get("copay", 0)),
                        "coinsurance_percentage": (
                            str(pb["coinsurance"]) if pb.get("coinsurance") is not None else None
                        ),
                    }
                    for pb in proc_benefits or []
                ],
            }
        )

    return _make
