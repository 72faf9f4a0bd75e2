"""Single-line cost sharing: copay, deductible, coinsurance, then the out-of-pocket cap.

Every function here is pure. Accumulators come in as frozen snapshots and the
updated snapshots are returned on the outcome; nothing is mutated in place.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from estimator.amounts import HUNDRED, UNLIMITED, ZERO, cents, clamp0, format_money
from estimator.coverage import is_dme, therapy_discipline
from estimator.models import (
	AccumulatorTier,
	Accumulators,
	Benefits,
	BreakdownStep,
	CopayLogic,
	NetworkStatus,
	NetworkTier,
	PlanType,
	Procedure,
	ProcedureBenefit,
)


@dataclass(frozen=True)
class LineOutcome:
	"""Result of adjudicating one line against one payer."""

	allowed: Decimal
	patient_cost_share: Decimal
	payer_payment: Decimal
	steps: list[BreakdownStep]
	accumulators: Accumulators
	family_accumulators: Accumulators | None


@dataclass(frozen=True)
class ScopeRoom:
	individual: Decimal
	family: Decimal
	line: Decimal


def _network_tag(network: NetworkStatus) -> str:
	return "OON" if network is NetworkStatus.OUT_OF_NETWORK else "INN"


def _pct_label(pct: Decimal) -> str:
	return f"{pct.normalize():f}%"


def _line_room(plan_type: PlanType, individual: Decimal, family: Decimal) -> ScopeRoom:
	if plan_type is PlanType.INDIVIDUAL:
		line = individual
	elif plan_type is PlanType.AGGREGATE_FAMILY:
		line = family
	else:
		line = min(individual, family)
	return ScopeRoom(individual=individual, family=family, line=line)


def deductible_room(
	plan_type: PlanType,
	tier: NetworkTier,
	met: AccumulatorTier,
	family_met: AccumulatorTier,
) -> ScopeRoom:
	"""Deductible still to satisfy, per scope and for the line (lesser-of for embedded plans)."""

	individual = clamp0(cents(tier.individual_deductible - met.deductible_met))
	if tier.family_deductible > 0:
		family = clamp0(cents(tier.family_deductible - family_met.deductible_met))
	elif plan_type is PlanType.EMBEDDED_FAMILY:
		# no family deductible configured: the individual deductible governs alone
		family = UNLIMITED
	else:
		family = ZERO
	return _line_room(plan_type, individual, family)


def oop_room(
	plan_type: PlanType,
	tier: NetworkTier,
	met: AccumulatorTier,
	family_met: AccumulatorTier,
) -> ScopeRoom:
	"""Out-of-pocket room per scope. An unset (zero) maximum means no cap at that scope."""

	def _room(limit: Decimal, used: Decimal) -> Decimal:
		if limit <= 0:
			return UNLIMITED
		return clamp0(cents(limit - used))

	individual = _room(tier.individual_oop_max, met.oop_met)
	family = _room(tier.family_oop_max, family_met.oop_met)
	return _line_room(plan_type, individual, family)


def _split_delta(plan_type: PlanType, applied: Decimal, room: ScopeRoom) -> tuple[Decimal, Decimal]:
	individual = ZERO if plan_type is PlanType.AGGREGATE_FAMILY else cents(min(applied, room.individual))
	family = ZERO if plan_type is PlanType.INDIVIDUAL else cents(min(applied, room.family))
	return individual, family


def _commit(
	snapshot: Accumulators,
	network: NetworkStatus,
	field: str,
	delta: Decimal,
	limit: Decimal,
	label: str,
) -> tuple[Accumulators, BreakdownStep]:
	old = getattr(snapshot.tier(network), field)
	ceiling = limit if limit > 0 else UNLIMITED
	new = cents(min(old + delta, ceiling))
	step = BreakdownStep(
		description=f"Accumulator Update ({label} - {_network_tag(network)})",
		notes=f"Old: {format_money(old)}, Applied: {format_money(delta)}, New: {format_money(new)}",
	)
	return snapshot.with_tier(network, **{field: new}), step


@dataclass(frozen=True)
class _Scopes:
	"""Working accumulator pair for one line."""

	individual: Accumulators
	family: Accumulators | None

	def family_tier(self, network: NetworkStatus) -> AccumulatorTier:
		if self.family is None:
			return AccumulatorTier()
		return self.family.tier(network)


def _scopes(plan_type: PlanType, accumulators: Accumulators, family: Accumulators | None) -> _Scopes:
	if plan_type is not PlanType.INDIVIDUAL and family is None:
		family = Accumulators()
	return _Scopes(individual=accumulators, family=family)


def _apply_copay(
	procedure: Procedure,
	copay: Decimal,
	copay_applies: bool,
	remaining: Decimal,
) -> tuple[Decimal, list[BreakdownStep]]:
	if procedure.is_preventive:
		return ZERO, [BreakdownStep(description="Copay", notes="Preventive service, copay waived.")]
	if copay <= 0:
		return ZERO, []
	if not copay_applies:
		return ZERO, [
			BreakdownStep(description="Copay", notes="Copay not applied; the plan's copay policy assigns it to another line.")
		]
	applied = min(copay, remaining)
	return applied, [BreakdownStep(description="Copay", patient_owes=applied, notes=f"Plan copay of {format_money(copay)} applied.")]


def _apply_deductible(
	plan_type: PlanType,
	tier: NetworkTier,
	network: NetworkStatus,
	scopes: _Scopes,
	remaining: Decimal,
) -> tuple[Decimal, _Scopes, list[BreakdownStep]]:
	room = deductible_room(plan_type, tier, scopes.individual.tier(network), scopes.family_tier(network))
	applied = cents(min(remaining, room.line))
	if applied <= 0:
		return ZERO, scopes, []

	steps = [BreakdownStep(description="Deductible", patient_owes=applied, notes=f"Applied to {plan_type.value} deductible.")]
	individual_delta, family_delta = _split_delta(plan_type, applied, room)
	if individual_delta > 0 and individual_delta >= room.individual:
		steps.append(BreakdownStep(description="Benefit Status Change", notes="Individual Deductible met on this line."))
	if family_delta > 0 and family_delta >= room.family:
		steps.append(BreakdownStep(description="Benefit Status Change", notes="Family Deductible met on this line."))

	individual, family = scopes.individual, scopes.family
	if individual_delta > 0:
		individual, step = _commit(individual, network, "deductible_met", individual_delta, tier.individual_deductible, "Ind Deductible")
		steps.append(step)
	if family_delta > 0 and family is not None:
		family, step = _commit(family, network, "deductible_met", family_delta, tier.family_deductible, "Fam Deductible")
		steps.append(step)
	return applied, _Scopes(individual=individual, family=family), steps


def _apply_coinsurance(pct: Decimal, remaining: Decimal) -> tuple[Decimal, list[BreakdownStep]]:
	pct = min(clamp0(pct), HUNDRED)
	amount = cents(remaining * pct / HUNDRED)
	note = f"{_pct_label(pct)} of remaining {format_money(remaining)}."
	return amount, [BreakdownStep(description="Coinsurance", patient_owes=amount, notes=note)]


def apply_oop_cap(
	plan_type: PlanType,
	tier: NetworkTier,
	network: NetworkStatus,
	scopes: _Scopes,
	patient_so_far: Decimal,
) -> tuple[Decimal, _Scopes, list[BreakdownStep]]:
	"""Cap the line's patient total at the remaining out-of-pocket room and record the usage."""

	if patient_so_far <= 0:
		return ZERO, scopes, []

	room = oop_room(plan_type, tier, scopes.individual.tier(network), scopes.family_tier(network))
	overage = clamp0(patient_so_far - room.line) if room.line.is_finite() else ZERO
	counted = cents(patient_so_far - overage)

	steps: list[BreakdownStep] = []
	if overage > 0:
		steps.append(
			BreakdownStep(
				description="OOP Max Reached",
				patient_owes=-overage,
				notes="Patient cost capped by Out-of-Pocket Maximum.",
			)
		)

	individual_delta, family_delta = _split_delta(plan_type, counted, room)
	if individual_delta > 0 and individual_delta >= room.individual:
		steps.append(BreakdownStep(description="Benefit Status Change", notes="Individual OOP Max met on this line."))
	if family_delta > 0 and family_delta >= room.family:
		steps.append(BreakdownStep(description="Benefit Status Change", notes="Family OOP Max met on this line."))

	individual, family = scopes.individual, scopes.family
	if individual_delta > 0:
		individual, step = _commit(individual, network, "oop_met", individual_delta, tier.individual_oop_max, "Ind OOP")
		steps.append(step)
	if family_delta > 0 and family is not None:
		family, step = _commit(family, network, "oop_met", family_delta, tier.family_oop_max, "Fam OOP")
		steps.append(step)
	return counted, _Scopes(individual=individual, family=family), steps


def track_benefit_usage(
	procedure: Procedure,
	benefits: Benefits,
	accumulators: Accumulators,
	allowed: Decimal,
) -> tuple[Accumulators, list[BreakdownStep]]:
	"""Advance visit and rental usage for a covered line."""

	if allowed <= 0:
		return accumulators, []

	discipline = therapy_discipline(procedure)
	if discipline is not None:
		used = accumulators.therapy_visits_used.get(discipline)
		limit = benefits.therapy_visit_limits.get(discipline)
		new_used = used + 1 if limit <= 0 else min(used + 1, max(limit, used))
		visits = accumulators.therapy_visits_used.model_copy(update={discipline: new_used})
		note = f"{discipline.capitalize()} therapy visits used: {used} -> {new_used}"
		if limit > 0:
			note += f" of {limit}"
		return accumulators.model_copy(update={"therapy_visits_used": visits}), [
			BreakdownStep(description="Accumulator Update (Therapy Visits)", notes=note + ".")
		]

	rental = benefits.dme_rental_cap
	if is_dme(procedure) and rental.applies:
		old = accumulators.dme_rental_paid
		ceiling = rental.purchase_price if rental.purchase_price > 0 else UNLIMITED
		new = cents(min(old + allowed, ceiling))
		return accumulators.model_copy(update={"dme_rental_paid": new}), [
			BreakdownStep(
				description="Accumulator Update (DME Rental)",
				notes=f"Old: {format_money(old)}, Applied: {format_money(allowed)}, New: {format_money(new)}",
			)
		]

	return accumulators, []


def _finish(
	procedure: Procedure,
	benefits: Benefits,
	allowed: Decimal,
	patient: Decimal,
	scopes: _Scopes,
	steps: list[BreakdownStep],
	family_input: Accumulators | None,
) -> LineOutcome:
	individual, usage_steps = track_benefit_usage(procedure, benefits, scopes.individual, allowed)
	patient = cents(clamp0(patient))
	family = family_input if benefits.plan_type is PlanType.INDIVIDUAL else scopes.family
	return LineOutcome(
		allowed=allowed,
		patient_cost_share=patient,
		payer_payment=cents(clamp0(allowed - patient)),
		steps=steps + usage_steps,
		accumulators=individual,
		family_accumulators=family,
	)


def adjudicate_line(
	procedure: Procedure,
	benefits: Benefits,
	procedure_benefit: ProcedureBenefit | None,
	accumulators: Accumulators,
	family_accumulators: Accumulators | None,
	allowed: Decimal,
	network: NetworkStatus,
	copay_applies: bool = True,
) -> LineOutcome:
	"""Run the copay, deductible, coinsurance and OOP-cap waterfall for one line."""

	plan_type = benefits.plan_type
	tier = benefits.tier(network)
	scopes = _scopes(plan_type, accumulators, family_accumulators)
	allowed = cents(clamp0(allowed))
	remaining = allowed
	patient = ZERO
	steps: list[BreakdownStep] = []

	copay = cents(procedure_benefit.copay) if procedure_benefit is not None else ZERO
	copay_paid, copay_steps = _apply_copay(procedure, copay, copay_applies, remaining)
	patient += copay_paid
	remaining = cents(remaining - copay_paid)
	steps.extend(copay_steps)

	if remaining > 0 and not procedure.is_preventive:
		deductible_paid, scopes, deductible_steps = _apply_deductible(plan_type, tier, network, scopes, remaining)
		patient += deductible_paid
		remaining = cents(remaining - deductible_paid)
		steps.extend(deductible_steps)

	if remaining > 0 and not procedure.is_preventive:
		override = procedure_benefit.coinsurance_percentage if procedure_benefit is not None else None
		pct = override if override is not None else tier.coinsurance_percentage
		coinsurance, coinsurance_steps = _apply_coinsurance(pct, remaining)
		patient += coinsurance
		steps.extend(coinsurance_steps)

	patient, scopes, oop_steps = apply_oop_cap(plan_type, tier, network, scopes, cents(patient))
	steps.extend(oop_steps)

	return _finish(procedure, benefits, allowed, patient, scopes, steps, family_accumulators)


def uses_copay_only(
	benefits: Benefits,
	procedure: Procedure,
	procedure_benefit: ProcedureBenefit | None,
	copay_applies: bool = True,
) -> bool:
	"""True when a copay-only plan should replace the deductible and coinsurance for this line."""

	return (
		benefits.copay_logic is CopayLogic.COPAY_ONLY_IF_PRESENT
		and copay_applies
		and not procedure.is_preventive
		and procedure_benefit is not None
		and procedure_benefit.copay > 0
	)


def adjudicate_copay_only(
	procedure: Procedure,
	benefits: Benefits,
	procedure_benefit: ProcedureBenefit,
	accumulators: Accumulators,
	family_accumulators: Accumulators | None,
	allowed: Decimal,
	network: NetworkStatus,
) -> LineOutcome:
	"""The copay is the whole liability; only the OOP cap still applies."""

	plan_type = benefits.plan_type
	tier = benefits.tier(network)
	scopes = _scopes(plan_type, accumulators, family_accumulators)
	allowed = cents(clamp0(allowed))

	share = min(cents(procedure_benefit.copay), allowed)
	steps = [
		BreakdownStep(
			description="Copay Only",
			patient_owes=share,
			notes="Plan has a 'Copay Only' rule for this service.",
		)
	]
	patient, scopes, oop_steps = apply_oop_cap(plan_type, tier, network, scopes, share)
	steps.extend(oop_steps)
	return _finish(procedure, benefits, allowed, patient, scopes, steps, family_accumulators)
