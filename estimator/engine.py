"""Multi-payer estimate orchestration.

``calculate_combined_estimate`` walks the payers in rank order and, for each
payer, adjudicates every procedure against the balance the previous payers left
behind. Procedure state and accumulator snapshots are replaced, never mutated,
so the whole computation is a deterministic function of its inputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, Sequence

from estimator.amounts import ZERO, cents, clamp0, format_money
from estimator.cob import CobInputs, cob_payment, tpl_blocks
from estimator.config import TPL_BLOCKS_GROUP_HEALTH
from estimator.copay_mask import compute_copay_mask
from estimator.coverage import evaluate_coverage_gate
from estimator.models import (
	AdjudicatedProcedure,
	AdjudicationForPayer,
	Accumulators,
	Benefits,
	BreakdownStep,
	DeductibleAllocation,
	EstimateData,
	MetaData,
	NetworkStatus,
	Payer,
	Procedure,
	ProcedureBenefit,
	PropensityData,
)
from estimator.pricing import PricedLine, price_procedures
from estimator.propensity import score_propensity
from estimator.waterfall import LineOutcome, adjudicate_copay_only, adjudicate_line, uses_copay_only

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcedureState:
	"""Where one procedure stands in the payer chain."""

	id: str
	original_index: int
	original_billed_amount: Decimal
	cumulative_plan_paid: Decimal
	remaining_balance: Decimal
	last_allowed: Decimal = ZERO


def order_payers(payers: Iterable[Payer]) -> list[Payer]:
	"""Primary, then Secondary, then Tertiary; input order breaks ties."""

	return sorted(payers, key=lambda payer: payer.rank.position)


def processing_order(
	states: Sequence[ProcedureState],
	priced: dict[str, PricedLine],
	allocation: DeductibleAllocation,
) -> list[ProcedureState]:
	if allocation is DeductibleAllocation.LINE_ITEM_ORDER:
		return list(states)
	return sorted(
		states,
		key=lambda state: priced[state.id].allowed if state.id in priced else ZERO,
		reverse=True,
	)


def _adjudicate(
	procedure: Procedure,
	benefits: Benefits,
	benefit: ProcedureBenefit | None,
	accumulators: Accumulators,
	family_accumulators: Accumulators | None,
	allowed: Decimal,
	network: NetworkStatus,
	copay_applies: bool,
) -> LineOutcome:
	if benefit is not None and uses_copay_only(benefits, procedure, benefit, copay_applies):
		return adjudicate_copay_only(procedure, benefits, benefit, accumulators, family_accumulators, allowed, network)
	return adjudicate_line(
		procedure,
		benefits,
		benefit,
		accumulators,
		family_accumulators,
		allowed,
		network,
		copay_applies=copay_applies,
	)


def _skipped_line(state: ProcedureState, procedure: Procedure, order: int, blocked: bool) -> AdjudicatedProcedure:
	note = "Group health plan blocked by active third-party liability subrogation." if blocked else ""
	return AdjudicatedProcedure(
		id=state.id,
		cpt_code=procedure.cpt_code,
		original_billed_amount=state.original_billed_amount,
		final_allowed_amount=state.last_allowed,
		patient_cost_share=ZERO,
		payer_payment=ZERO,
		balance_after_payer=state.remaining_balance,
		processing_order=order,
		calculation_breakdown=[BreakdownStep(description="No remaining COB-eligible balance", notes=note)],
	)


def calculate_combined_estimate(
	payers: Sequence[Payer],
	procedures: Sequence[Procedure],
	meta_data: MetaData | None = None,
	propensity_data: PropensityData | None = None,
) -> EstimateData:
	"""Adjudicate ``procedures`` across ``payers`` and total the patient's responsibility."""

	meta = meta_data or MetaData()
	chain_payers = order_payers(payers)
	by_id = {procedure.id: procedure for procedure in procedures}

	states: dict[str, ProcedureState] = {}
	for index, procedure in enumerate(procedures):
		billed = cents(clamp0(procedure.billed_amount))
		states[procedure.id] = ProcedureState(
			id=procedure.id,
			original_index=index,
			original_billed_amount=billed,
			cumulative_plan_paid=ZERO,
			remaining_balance=billed,
		)

	non_cob: dict[str, Decimal] = {}
	chain: list[AdjudicationForPayer] = []

	for position, payer in enumerate(chain_payers):
		network = payer.network_status
		benefits = payer.benefits
		priced = price_procedures(payer, procedures, meta)
		copay_mask = compute_copay_mask(procedures, payer, meta.service.date)
		blocked = tpl_blocks(chain_payers, position, TPL_BLOCKS_GROUP_HEALTH)
		running = payer.patient_accumulators
		running_family = payer.family_accumulators

		LOGGER.debug(
			"Adjudicating %s payer %s (%s, %s, cob=%s, tpl_blocked=%s)",
			payer.rank.value,
			payer.id,
			network.value,
			payer.payer_type.value,
			payer.cob_method.value,
			blocked,
		)

		estimates: list[tuple[int, AdjudicatedProcedure]] = []
		payer_paid = ZERO
		patient_share_total = ZERO

		ordered = processing_order(list(states.values()), priced, benefits.deductible_allocation)
		for order, state in enumerate(ordered, start=1):
			procedure = by_id[state.id]
			claim = ZERO if blocked else clamp0(cents(state.remaining_balance))
			if claim <= 0:
				estimates.append((state.original_index, _skipped_line(state, procedure, order, blocked)))
				continue

			pricing = priced.get(state.id, PricedLine(allowed=ZERO))
			gate = evaluate_coverage_gate(procedure, benefits, running)
			final_allowed = min(pricing.allowed, gate.cap)
			benefit = payer.benefit_for(state.id)
			copay_applies = state.id in copay_mask

			outcome = _adjudicate(procedure, benefits, benefit, running, running_family, final_allowed, network, copay_applies)
			steps = list(gate.steps)
			steps.extend(BreakdownStep(description="Pricing Adjustment", notes=note) for note in pricing.notes)
			steps.extend(outcome.steps)

			if position == 0:
				payment = outcome.payer_payment
				patient_share = outcome.patient_cost_share
				gap = clamp0(cents(state.original_billed_amount - outcome.allowed))
				if gap > 0 and network is NetworkStatus.OUT_OF_NETWORK:
					steps.append(BreakdownStep(description="OON Balance Bill", patient_owes=gap, notes="Non-COB eligible"))
					non_cob[state.id] = cents(non_cob.get(state.id, ZERO) + gap)
				elif gap > 0:
					steps.append(BreakdownStep(description="Write-Off", notes=f"Contractual write-off {format_money(gap)}"))
				remaining = outcome.patient_cost_share
			else:
				# COB math runs against the payer's untouched accumulators, not the running snapshot.
				as_if = _adjudicate(
					procedure,
					benefits,
					benefit,
					payer.patient_accumulators,
					payer.family_accumulators,
					final_allowed,
					network,
					copay_applies,
				)
				payment = cob_payment(
					payer.cob_method,
					CobInputs(
						would_pay=as_if.payer_payment,
						patient_cost_share=as_if.patient_cost_share,
						allowed=as_if.allowed,
						prior_paid=state.cumulative_plan_paid,
						claim_amount=claim,
					),
				)
				patient_share = cents(claim - payment)
				remaining = clamp0(cents(state.remaining_balance - payment))
				steps.append(
					BreakdownStep(
						description="COB Payment",
						notes=(
							f"{payer.cob_method.value}: would pay {format_money(as_if.payer_payment)} as primary, "
							f"prior payers paid {format_money(state.cumulative_plan_paid)}, "
							f"claim {format_money(claim)}; pays {format_money(payment)}."
						),
					)
				)

			state = replace(
				state,
				cumulative_plan_paid=cents(state.cumulative_plan_paid + payment),
				remaining_balance=remaining,
				last_allowed=outcome.allowed,
			)
			states[state.id] = state
			running = outcome.accumulators
			running_family = outcome.family_accumulators

			payer_paid = cents(payer_paid + payment)
			patient_share_total = cents(patient_share_total + patient_share)
			estimates.append(
				(
					state.original_index,
					AdjudicatedProcedure(
						id=state.id,
						cpt_code=procedure.cpt_code,
						original_billed_amount=state.original_billed_amount,
						final_allowed_amount=outcome.allowed,
						patient_cost_share=patient_share,
						payer_payment=payment,
						balance_after_payer=remaining,
						processing_order=order,
						calculation_breakdown=steps,
					),
				)
			)
			LOGGER.debug(
				"%s line %s: allowed=%s paid=%s patient=%s remaining=%s",
				payer.id,
				state.id,
				outcome.allowed,
				payment,
				patient_share,
				remaining,
			)

		estimates.sort(key=lambda item: item[0])
		chain.append(
			AdjudicationForPayer(
				payer=payer,
				procedure_estimates=[estimate for _, estimate in estimates],
				total_payer_payment=payer_paid,
				total_patient_share=patient_share_total,
				total_remaining_balance=cents(sum((s.remaining_balance for s in states.values()), ZERO)),
			)
		)

	if chain:
		cob_eligible = cents(sum((s.remaining_balance for s in states.values()), ZERO))
	else:
		# nothing was adjudicated
		cob_eligible = ZERO
	total = cents(cob_eligible + sum(non_cob.values(), ZERO))

	return EstimateData(
		meta_data=meta,
		payers=list(payers),
		procedures=list(procedures),
		total_patient_responsibility=total,
		adjudication_chain=chain,
		non_cob_patient_liability=non_cob,
		propensity=score_propensity(total, propensity_data),
	)
