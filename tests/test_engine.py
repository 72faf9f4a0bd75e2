from __future__ import annotations

from decimal import Decimal

import pytest

from estimator.engine import calculate_combined_estimate, order_payers
from estimator.models import MetaData, PropensityData


def _cent_exact(value: Decimal) -> bool:
    return value == value.quantize(Decimal("0.01"))


def test_traditional_cob_secondary_pays_remaining_balance(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("proc1", 1000)
    primary = make_payer("payer1", proc_benefits=[{"proc_id": "proc1", "allowed": 1000, "coinsurance": 40}])
    secondary = make_payer(
        "payer2",
        "Secondary",
        cob_method="traditional",
        proc_benefits=[{"proc_id": "proc1", "allowed": 1000, "coinsurance": 20}],
    )

    result = calculate_combined_estimate([primary, secondary], [procedure], meta)

    assert result.adjudication_chain[0].total_payer_payment == Decimal("600")
    assert result.adjudication_chain[0].total_patient_share == Decimal("400")
    assert result.adjudication_chain[1].total_payer_payment == Decimal("400")
    assert result.total_patient_responsibility == Decimal("0")


def test_non_duplication_secondary_pays_nothing_when_primary_paid_as_much(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("proc1", 1000)
    primary = make_payer("payer1", proc_benefits=[{"proc_id": "proc1", "allowed": 1000, "coinsurance": 20}])
    secondary = make_payer(
        "payer2",
        "Secondary",
        cob_method="non_duplication",
        proc_benefits=[{"proc_id": "proc1", "allowed": 1000, "coinsurance": 20}],
    )

    result = calculate_combined_estimate([primary, secondary], [procedure], meta)

    assert result.adjudication_chain[0].total_payer_payment == Decimal("800")
    assert result.adjudication_chain[1].total_payer_payment == Decimal("0")
    assert result.total_patient_responsibility == Decimal("200")


def test_carve_out_secondary_pays_its_own_patient_share(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("proc1", 1000)
    primary = make_payer(
        "payer1",
        benefits={"in_network": {"individual_deductible": "1000"}},
        proc_benefits=[{"proc_id": "proc1", "allowed": 1000}],
    )
    secondary = make_payer(
        "payer2",
        "Secondary",
        cob_method="carve_out",
        proc_benefits=[{"proc_id": "proc1", "allowed": 1000, "copay": 50, "coinsurance": 20}],
    )

    result = calculate_combined_estimate([primary, secondary], [procedure], meta)

    assert result.adjudication_chain[0].total_payer_payment == Decimal("0")
    assert result.adjudication_chain[0].total_patient_share == Decimal("1000")
    assert result.adjudication_chain[1].total_payer_payment == Decimal("240")
    assert result.total_patient_responsibility == Decimal("760")


def test_out_of_network_primary_balance_bill_stays_outside_cob(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("proc1", 2000)
    primary = make_payer(
        "payer1",
        network_status="out-of-network",
        proc_benefits=[{"proc_id": "proc1", "allowed": 1000, "coinsurance": 40}],
    )
    secondary = make_payer(
        "payer2",
        "Secondary",
        proc_benefits=[{"proc_id": "proc1", "allowed": 1000, "coinsurance": 20}],
    )

    result = calculate_combined_estimate([primary, secondary], [procedure], meta)

    assert result.non_cob_patient_liability["proc1"] == Decimal("1000")
    assert result.adjudication_chain[0].total_payer_payment == Decimal("600")
    assert result.adjudication_chain[0].total_remaining_balance == Decimal("400")
    assert result.adjudication_chain[1].total_payer_payment == Decimal("400")
    assert result.total_patient_responsibility == Decimal("1000")

    descriptions = [step.description for step in result.adjudication_chain[0].procedure_estimates[0].calculation_breakdown]
    assert "OON Balance Bill" in descriptions


def test_tpl_subrogation_blocks_downstream_commercial_payer(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("proc1", 1000)
    primary = make_payer(
        "payer1",
        payer_type="auto",
        subrogation_active=True,
        proc_benefits=[{"proc_id": "proc1", "allowed": 1000, "coinsurance": 20}],
    )
    secondary = make_payer("payer2", "Secondary", proc_benefits=[{"proc_id": "proc1", "allowed": 1000}])

    result = calculate_combined_estimate([primary, secondary], [procedure], meta)

    assert result.adjudication_chain[0].total_payer_payment == Decimal("800")
    assert result.adjudication_chain[0].total_remaining_balance == Decimal("200")
    blocked = result.adjudication_chain[1].procedure_estimates[0]
    assert blocked.payer_payment == Decimal("0")
    assert blocked.balance_after_payer == Decimal("200")
    assert blocked.calculation_breakdown[0].description == "No remaining COB-eligible balance"
    assert result.total_patient_responsibility == Decimal("200")


def test_in_network_primary_records_write_off_without_liability(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("proc1", 1500)
    primary = make_payer("payer1", proc_benefits=[{"proc_id": "proc1", "allowed": 1000}])

    result = calculate_combined_estimate([primary], [procedure], meta)

    line = result.adjudication_chain[0].procedure_estimates[0]
    write_off = next(step for step in line.calculation_breakdown if step.description == "Write-Off")
    assert write_off.patient_owes == Decimal("0")
    assert "$500.00" in write_off.notes
    assert result.non_cob_patient_liability == {}
    assert result.total_patient_responsibility == Decimal("200")


def test_payers_are_processed_in_rank_order(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("proc1", 1000)
    primary = make_payer("payer1", proc_benefits=[{"proc_id": "proc1", "allowed": 1000, "coinsurance": 40}])
    secondary = make_payer(
        "payer2", "Secondary", proc_benefits=[{"proc_id": "proc1", "allowed": 1000, "coinsurance": 20}]
    )

    assert [payer.id for payer in order_payers([secondary, primary])] == ["payer1", "payer2"]

    result = calculate_combined_estimate([secondary, primary], [procedure], meta)
    assert [block.payer.id for block in result.adjudication_chain] == ["payer1", "payer2"]
    assert result.total_patient_responsibility == Decimal("0")


def test_deductible_allocation_controls_processing_order(make_payer, make_procedure, meta) -> None:
    procedures = [make_procedure("small", 200), make_procedure("large", 800)]
    proc_benefits = [{"proc_id": "small", "allowed": 200}, {"proc_id": "large", "allowed": 800}]
    highest_first = make_payer(
        "payer1",
        benefits={"in_network": {"individual_deductible": "500"}},
        proc_benefits=proc_benefits,
    )
    line_order = make_payer(
        "payer1",
        benefits={"deductible_allocation": "line_order", "in_network": {"individual_deductible": "500"}},
        proc_benefits=proc_benefits,
    )

    ranked = calculate_combined_estimate([highest_first], procedures, meta).adjudication_chain[0]
    by_id = {estimate.id: estimate for estimate in ranked.procedure_estimates}
    assert [estimate.id for estimate in ranked.procedure_estimates] == ["small", "large"]
    assert by_id["large"].processing_order == 1
    assert by_id["small"].processing_order == 2
    # large: 500 deductible + 20% of 300; small: 20% of 200
    assert by_id["large"].patient_cost_share == Decimal("560")
    assert by_id["small"].patient_cost_share == Decimal("40")

    in_line = calculate_combined_estimate([line_order], procedures, meta).adjudication_chain[0]
    by_id = {estimate.id: estimate for estimate in in_line.procedure_estimates}
    assert by_id["small"].processing_order == 1
    assert by_id["small"].patient_cost_share == Decimal("200")
    assert by_id["large"].patient_cost_share == Decimal("400")
    assert in_line.total_patient_share == ranked.total_patient_share == Decimal("600")


def test_running_accumulators_carry_between_lines_of_same_payer(make_payer, make_procedure, meta) -> None:
    procedures = [make_procedure("a", 300), make_procedure("b", 300)]
    payer = make_payer(
        "payer1",
        benefits={"deductible_allocation": "line_item_order", "in_network": {"individual_deductible": "400"}},
        proc_benefits=[{"proc_id": "a", "allowed": 300}, {"proc_id": "b", "allowed": 300}],
    )

    result = calculate_combined_estimate([payer], procedures, meta)
    first, second = result.adjudication_chain[0].procedure_estimates

    assert first.patient_cost_share == Decimal("300")
    # 100 of deductible left, then 20% of 200
    assert second.patient_cost_share == Decimal("140")
    assert payer.patient_accumulators.in_network.deductible_met == Decimal("0")


def test_secondary_cob_uses_original_accumulators(make_payer, make_procedure, meta) -> None:
    procedures = [make_procedure("a", 500), make_procedure("b", 500)]
    primary = make_payer(
        "payer1",
        proc_benefits=[{"proc_id": "a", "allowed": 500, "coinsurance": 50}, {"proc_id": "b", "allowed": 500, "coinsurance": 50}],
    )
    secondary = make_payer(
        "payer2",
        "Secondary",
        cob_method="non_duplication",
        benefits={"deductible_allocation": "line_item_order", "in_network": {"individual_deductible": "500"}},
        proc_benefits=[{"proc_id": "a", "allowed": 500}, {"proc_id": "b", "allowed": 500}],
    )

    result = calculate_combined_estimate([primary, secondary], procedures, meta)
    estimates = result.adjudication_chain[1].procedure_estimates

    # As primary each line would hit the untouched 500 deductible and pay nothing.
    assert [estimate.payer_payment for estimate in estimates] == [Decimal("0"), Decimal("0")]
    assert result.total_patient_responsibility == Decimal("500")


def test_therapy_visit_limit_exhausted_mid_estimate(make_payer, make_procedure, meta) -> None:
    procedures = [
        make_procedure("pt1", 150, category="physical"),
        make_procedure("pt2", 150, category="physical"),
    ]
    payer = make_payer(
        "payer1",
        benefits={"deductible_allocation": "line_item_order", "therapy_visit_limits": {"physical": "10"}},
        accumulators={"therapy_visits_used": {"physical": 9}},
        proc_benefits=[{"proc_id": "pt1", "allowed": 100}, {"proc_id": "pt2", "allowed": 100}],
    )

    result = calculate_combined_estimate([payer], procedures, meta)
    first, second = result.adjudication_chain[0].procedure_estimates

    assert first.final_allowed_amount == Decimal("100")
    assert first.payer_payment == Decimal("80")
    assert second.final_allowed_amount == Decimal("0")
    assert second.payer_payment == Decimal("0")
    assert second.calculation_breakdown[0].description == "Limit Exhausted"


def test_conservation_when_allowed_equals_billed(make_payer, make_procedure, meta) -> None:
    procedures = [make_procedure("a", 1200), make_procedure("b", 350.55), make_procedure("c", 80)]
    proc_benefits = [
        {"proc_id": "a", "allowed": 1200, "copay": 25},
        {"proc_id": "b", "allowed": 350.55},
        {"proc_id": "c", "allowed": 80, "coinsurance": 30},
    ]
    primary = make_payer(
        "payer1",
        benefits={"in_network": {"individual_deductible": "250", "individual_oop_max": "900"}},
        proc_benefits=proc_benefits,
    )
    secondary = make_payer("payer2", "Secondary", cob_method="non_duplication", proc_benefits=proc_benefits)
    tertiary = make_payer("payer3", "Tertiary", cob_method="carve_out", proc_benefits=proc_benefits)

    result = calculate_combined_estimate([primary, secondary, tertiary], procedures, meta)

    for procedure in procedures:
        paid = sum(
            (
                estimate.payer_payment
                for block in result.adjudication_chain
                for estimate in block.procedure_estimates
                if estimate.id == procedure.id
            ),
            Decimal("0"),
        )
        final_balance = result.adjudication_chain[-1].procedure_estimates[procedures.index(procedure)].balance_after_payer
        assert paid + final_balance == procedure.billed_amount

    for block in result.adjudication_chain:
        previous = None
        for estimate in block.procedure_estimates:
            assert estimate.payer_payment <= estimate.final_allowed_amount
            assert _cent_exact(estimate.payer_payment)
            assert _cent_exact(estimate.patient_cost_share)
            assert _cent_exact(estimate.balance_after_payer)
            for step in estimate.calculation_breakdown:
                assert _cent_exact(step.patient_owes)
        assert _cent_exact(block.total_payer_payment)
    assert _cent_exact(result.total_patient_responsibility)


def test_remaining_balance_never_increases_along_chain(make_payer, make_procedure, meta) -> None:
    procedures = [make_procedure("a", 900), make_procedure("b", 400)]
    proc_benefits = [{"proc_id": "a", "allowed": 700}, {"proc_id": "b", "allowed": 400, "copay": 40}]
    payers = [
        make_payer("p1", benefits={"in_network": {"individual_deductible": "300"}}, proc_benefits=proc_benefits),
        make_payer("p2", "Secondary", cob_method="carve_out", proc_benefits=proc_benefits),
        make_payer("p3", "Tertiary", proc_benefits=proc_benefits),
    ]

    result = calculate_combined_estimate(payers, procedures, meta)

    for index, procedure in enumerate(procedures):
        balances = [block.procedure_estimates[index].balance_after_payer for block in result.adjudication_chain]
        assert balances[0] <= procedure.billed_amount
        assert all(later <= earlier for earlier, later in zip(balances, balances[1:]))


def test_identical_inputs_produce_identical_outputs(make_payer, make_procedure, meta) -> None:
    procedures = [make_procedure("a", 640.10, category="Surgery"), make_procedure("b", 320.05, category="Surgery")]
    payer = make_payer(
        "payer1",
        benefits={"in_network": {"individual_deductible": "150"}},
        proc_benefits=[{"proc_id": "a", "allowed": 500}, {"proc_id": "b", "allowed": 300, "copay": 20}],
    )
    propensity = PropensityData(payment_history="on_time")

    first = calculate_combined_estimate([payer], procedures, meta, propensity)
    second = calculate_combined_estimate([payer], procedures, meta, propensity)

    assert first.model_dump(mode="json") == second.model_dump(mode="json")


def test_empty_inputs_yield_zero_result(make_payer, make_procedure) -> None:
    empty = calculate_combined_estimate([], [], MetaData())
    assert empty.total_patient_responsibility == Decimal("0")
    assert empty.adjudication_chain == []
    assert empty.propensity is None

    no_procedures = calculate_combined_estimate([make_payer("payer1")], [])
    assert no_procedures.total_patient_responsibility == Decimal("0")
    assert no_procedures.adjudication_chain[0].procedure_estimates == []

    no_payers = calculate_combined_estimate([], [make_procedure("a", 100)])
    assert no_payers.total_patient_responsibility == Decimal("0")


def test_malformed_numbers_do_not_raise(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("a", "not-a-number")
    payer = make_payer("payer1", proc_benefits=[{"proc_id": "a", "allowed": "??"}])

    result = calculate_combined_estimate([payer], [procedure], meta)

    assert result.total_patient_responsibility == Decimal("0")
    assert result.adjudication_chain[0].procedure_estimates[0].payer_payment == Decimal("0")


def test_oversized_amounts_coerce_to_zero(make_payer, make_procedure, meta) -> None:
    procedures = [make_procedure("a", "1e30", units="1e30"), make_procedure("b", "9" * 40)]
    payer = make_payer("payer1", proc_benefits=[{"proc_id": "a", "allowed": "1e30"}, {"proc_id": "b", "allowed": 100}])

    result = calculate_combined_estimate([payer], procedures, meta)

    assert result.total_patient_responsibility == Decimal("0")
    assert [estimate.original_billed_amount for estimate in result.adjudication_chain[0].procedure_estimates] == [
        Decimal("0"),
        Decimal("0"),
    ]


def test_coinsurance_above_hundred_percent_is_capped(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("a", 1000)
    payer = make_payer(
        "payer1",
        benefits={"in_network": {"individual_oop_max": "0", "family_oop_max": "0"}},
        proc_benefits=[{"proc_id": "a", "allowed": 1000, "coinsurance": 150}],
    )

    result = calculate_combined_estimate([payer], [procedure], meta)
    line = result.adjudication_chain[0].procedure_estimates[0]

    assert line.patient_cost_share == Decimal("1000")
    assert line.payer_payment == Decimal("0")
    assert line.balance_after_payer <= procedure.billed_amount
    assert result.total_patient_responsibility == Decimal("1000")


def test_copay_only_plans_through_the_chain(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("a", 300)
    primary = make_payer(
        "payer1",
        benefits={"copay_logic": "copay_only_if_present", "in_network": {"individual_deductible": "500"}},
        proc_benefits=[{"proc_id": "a", "allowed": 300, "copay": 40}],
    )
    secondary = make_payer(
        "payer2",
        "Secondary",
        cob_method="non_duplication",
        benefits={"copay_logic": "copay_only_if_present"},
        proc_benefits=[{"proc_id": "a", "allowed": 300, "copay": 25}],
    )

    result = calculate_combined_estimate([primary, secondary], [procedure], meta)
    first, second = (block.procedure_estimates[0] for block in result.adjudication_chain)

    # primary skips its deductible: 40 copay, pays 260
    assert first.patient_cost_share == Decimal("40")
    assert first.payer_payment == Decimal("260")
    assert "Copay Only" in [step.description for step in first.calculation_breakdown]
    # as primary the secondary would pay 275 (copay 25), less the 260 already paid
    assert second.payer_payment == Decimal("15")
    assert second.balance_after_payer == Decimal("25")
    assert result.total_patient_responsibility == Decimal("25")


def test_propensity_is_embedded(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("a", 100)
    payer = make_payer("payer1", proc_benefits=[{"proc_id": "a", "allowed": 100}])

    result = calculate_combined_estimate(
        [payer], [procedure], meta, PropensityData(payment_history="on_time", employment_status="employed")
    )

    assert result.propensity is not None
    # 50 + 10 (bill under $200) + 25 + 10
    assert result.propensity.score == 95
    assert result.propensity.tier == "High"


def test_json_dump_serialises_money_as_numbers(make_payer, make_procedure, meta) -> None:
    procedure = make_procedure("a", 100)
    payer = make_payer("payer1", proc_benefits=[{"proc_id": "a", "allowed": 100}])

    payload = calculate_combined_estimate([payer], [procedure], meta).model_dump(mode="json")

    assert payload["total_patient_responsibility"] == pytest.approx(20.0)
    assert payload["adjudication_chain"][0]["procedure_estimates"][0]["payer_payment"] == pytest.approx(80.0)
