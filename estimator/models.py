"""Shared data models for the estimator engine and its HTTP surface."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Callable

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer

from estimator.amounts import parse_amount, parse_count, parse_optional_amount, to_cents


def _as_float(value: Decimal | None) -> float | None:
	return None if value is None else float(value)


Money = Annotated[
	Decimal,
	BeforeValidator(parse_amount),
	PlainSerializer(_as_float, return_type=float, when_used="json"),
]
OptionalMoney = Annotated[
	Decimal | None,
	BeforeValidator(parse_optional_amount),
	PlainSerializer(_as_float, return_type=float | None, when_used="json"),
]
Cents = Annotated[
	Decimal,
	BeforeValidator(to_cents),
	PlainSerializer(_as_float, return_type=float, when_used="json"),
]
Count = Annotated[int, BeforeValidator(parse_count)]


def _lenient(enum_cls: type[Enum], default: Enum, aliases: dict[str, Enum] | None = None) -> Callable[[Any], Enum]:
	"""Build a validator that maps free-form text onto a closed enum, falling back to ``default``."""

	lookup: dict[str, Enum] = {member.value.lower(): member for member in enum_cls}
	lookup.update({key.lower(): value for key, value in (aliases or {}).items()})

	def _parse(value: Any) -> Enum:
		if isinstance(value, enum_cls):
			return value
		if isinstance(value, str):
			return lookup.get(value.strip().lower(), default)
		return default

	return _parse


class PlanType(str, Enum):
	INDIVIDUAL = "Individual"
	EMBEDDED_FAMILY = "EmbeddedFamily"
	AGGREGATE_FAMILY = "AggregateFamily"


class CopayLogic(str, Enum):
	STANDARD_WATERFALL = "standard_waterfall"
	HIGHEST_COPAY_ONLY_PER_DAY = "highest_copay_only_per_day"
	COPAY_BY_CATEGORY_PER_DAY = "copay_by_category_per_day"
	COPAY_ONLY_IF_PRESENT = "copay_only_if_present"


class DeductibleAllocation(str, Enum):
	HIGHEST_ALLOWED_FIRST = "highest_allowed_first"
	LINE_ITEM_ORDER = "line_item_order"


class MultiProcedureLogic(str, Enum):
	MPD_100_50_50 = "100_50_50"
	MPD_100_50_25 = "100_50_25"
	MPD_100_25_25 = "100_25_25"

	@property
	def factors(self) -> tuple[Decimal, ...]:
		return tuple(Decimal(part) / 100 for part in self.value.split("_"))


class NetworkStatus(str, Enum):
	IN_NETWORK = "in-network"
	OUT_OF_NETWORK = "out-of-network"


class PayerRank(str, Enum):
	PRIMARY = "Primary"
	SECONDARY = "Secondary"
	TERTIARY = "Tertiary"

	@property
	def position(self) -> int:
		return list(PayerRank).index(self)


class PayerType(str, Enum):
	COMMERCIAL = "commercial"
	MEDICARE = "medicare"
	MEDICAID = "medicaid"
	AUTO = "auto"
	WORKERS_COMP = "workers_comp"


class CobMethod(str, Enum):
	TRADITIONAL = "traditional"
	NON_DUPLICATION = "non_duplication"
	CARVE_OUT = "carve_out"
	MEDICARE_SECONDARY = "medicare_secondary"
	MEDICAID_PAYER_LAST_RESORT = "medicaid_payer_last_resort"
	LIABILITY_NO_FAULT = "liability_no_fault"


_COB_ALIASES: dict[str, CobMethod] = {
	"full": CobMethod.TRADITIONAL,
	"full_benefit": CobMethod.TRADITIONAL,
	"100% allowable": CobMethod.TRADITIONAL,
	"nonduplication": CobMethod.NON_DUPLICATION,
	"non-dup": CobMethod.NON_DUPLICATION,
	"nondup": CobMethod.NON_DUPLICATION,
	"carveout": CobMethod.CARVE_OUT,
	"maintenance_of_benefits": CobMethod.CARVE_OUT,
	"mob": CobMethod.CARVE_OUT,
}

PlanTypeField = Annotated[PlanType, BeforeValidator(_lenient(PlanType, PlanType.INDIVIDUAL))]
CopayLogicField = Annotated[CopayLogic, BeforeValidator(_lenient(CopayLogic, CopayLogic.STANDARD_WATERFALL))]
DeductibleAllocationField = Annotated[
	DeductibleAllocation,
	BeforeValidator(
		_lenient(
			DeductibleAllocation,
			DeductibleAllocation.HIGHEST_ALLOWED_FIRST,
			{"line_order": DeductibleAllocation.LINE_ITEM_ORDER},
		)
	),
]
MultiProcedureLogicField = Annotated[
	MultiProcedureLogic,
	BeforeValidator(_lenient(MultiProcedureLogic, MultiProcedureLogic.MPD_100_50_50)),
]
NetworkStatusField = Annotated[NetworkStatus, BeforeValidator(_lenient(NetworkStatus, NetworkStatus.IN_NETWORK))]
PayerRankField = Annotated[PayerRank, BeforeValidator(_lenient(PayerRank, PayerRank.PRIMARY))]
PayerTypeField = Annotated[PayerType, BeforeValidator(_lenient(PayerType, PayerType.COMMERCIAL))]
CobMethodField = Annotated[CobMethod, BeforeValidator(_lenient(CobMethod, CobMethod.TRADITIONAL, _COB_ALIASES))]

THERAPY_DISCIPLINES = ("physical", "occupational", "speech")


class Procedure(BaseModel):
	"""A billed service line. Identified by ``id`` across every payer."""

	model_config = ConfigDict(frozen=True)

	id: str
	cpt_code: str = ""
	billed_amount: Money = Decimal("0")
	modifiers: str = ""
	dx_code: str = ""
	category: str = ""
	units: Count = 1
	is_preventive: bool = False
	date_of_service: str = ""


class NetworkTier(BaseModel):
	"""Plan limits for one network status."""

	individual_deductible: Money = Decimal("0")
	family_deductible: Money = Decimal("0")
	individual_oop_max: Money = Decimal("0")
	family_oop_max: Money = Decimal("0")
	coinsurance_percentage: Money = Decimal("0")


class TherapyCounts(BaseModel):
	model_config = ConfigDict(frozen=True)

	physical: Count = 0
	occupational: Count = 0
	speech: Count = 0

	def get(self, discipline: str) -> int:
		return getattr(self, discipline, 0)


class DmeRentalCap(BaseModel):
	applies: bool = False
	purchase_price: Money = Decimal("0")


class Benefits(BaseModel):
	"""Benefit configuration of one payer."""

	plan_type: PlanTypeField = PlanType.INDIVIDUAL
	copay_logic: CopayLogicField = CopayLogic.STANDARD_WATERFALL
	deductible_allocation: DeductibleAllocationField = DeductibleAllocation.HIGHEST_ALLOWED_FIRST
	multi_procedure_logic: MultiProcedureLogicField = MultiProcedureLogic.MPD_100_50_50
	in_network: NetworkTier = Field(default_factory=NetworkTier)
	out_of_network: NetworkTier = Field(default_factory=NetworkTier)
	therapy_visit_limits: TherapyCounts = Field(default_factory=TherapyCounts)
	dme_rental_cap: DmeRentalCap = Field(default_factory=DmeRentalCap)

	def tier(self, network: NetworkStatus) -> NetworkTier:
		return self.out_of_network if network is NetworkStatus.OUT_OF_NETWORK else self.in_network


class AccumulatorTier(BaseModel):
	model_config = ConfigDict(frozen=True)

	deductible_met: Money = Decimal("0")
	oop_met: Money = Decimal("0")


class Accumulators(BaseModel):
	"""Year-to-date usage snapshot. Frozen: updates produce a new snapshot."""

	model_config = ConfigDict(frozen=True)

	in_network: AccumulatorTier = Field(default_factory=AccumulatorTier)
	out_of_network: AccumulatorTier = Field(default_factory=AccumulatorTier)
	therapy_visits_used: TherapyCounts = Field(default_factory=TherapyCounts)
	dme_rental_paid: Money = Decimal("0")

	def tier(self, network: NetworkStatus) -> AccumulatorTier:
		return self.out_of_network if network is NetworkStatus.OUT_OF_NETWORK else self.in_network

	def with_tier(self, network: NetworkStatus, **changes: Decimal) -> Accumulators:
		field = "out_of_network" if network is NetworkStatus.OUT_OF_NETWORK else "in_network"
		updated = self.tier(network).model_copy(update=changes)
		return self.model_copy(update={field: updated})


class ProcedureBenefit(BaseModel):
	"""Per-payer pricing for one procedure."""

	procedure_id: str
	allowed_amount: OptionalMoney = None
	copay: Money = Decimal("0")
	coinsurance_percentage: OptionalMoney = None


class Insurance(BaseModel):
	name: str = ""
	member_id: str = ""


class Payer(BaseModel):
	id: str
	rank: PayerRankField = PayerRank.PRIMARY
	insurance: Insurance = Field(default_factory=Insurance)
	network_status: NetworkStatusField = NetworkStatus.IN_NETWORK
	payer_type: PayerTypeField = PayerType.COMMERCIAL
	subrogation_active: bool = False
	cob_method: CobMethodField = CobMethod.TRADITIONAL
	benefits: Benefits = Field(default_factory=Benefits)
	patient_accumulators: Accumulators = Field(default_factory=Accumulators)
	family_accumulators: Accumulators | None = None
	procedure_benefits: list[ProcedureBenefit] = Field(default_factory=list)

	def benefit_for(self, procedure_id: str) -> ProcedureBenefit | None:
		return next((pb for pb in self.procedure_benefits if pb.procedure_id == procedure_id), None)


class PatientInfo(BaseModel):
	name: str = ""
	dob: str = ""
	relationship: str = "Self"
	gender: str = ""


class PracticeInfo(BaseModel):
	name: str = ""
	tax_id: str = ""


class ProviderInfo(BaseModel):
	name: str = ""
	npi: str = ""
	phone: str = ""


class ServiceInfo(BaseModel):
	date: str = ""
	place_of_service: str = ""


class MetaData(BaseModel):
	patient: PatientInfo = Field(default_factory=PatientInfo)
	practice: PracticeInfo = Field(default_factory=PracticeInfo)
	provider: ProviderInfo = Field(default_factory=ProviderInfo)
	service: ServiceInfo = Field(default_factory=ServiceInfo)


class PropensityData(BaseModel):
	"""Patient-reported financial signals collected alongside the estimate."""

	payment_history: str = ""
	financial_confidence: str = ""
	outstanding_balance: OptionalMoney = None
	employment_status: str = ""
	household_income: str = ""
	household_size: Count = 0
	is_hsa_compatible: bool = False


class BreakdownStep(BaseModel):
	"""One entry of the per-line audit trail."""

	description: str
	patient_owes: Cents = Decimal("0")
	notes: str = ""


class AdjudicatedProcedure(BaseModel):
	id: str
	cpt_code: str = ""
	original_billed_amount: Cents
	final_allowed_amount: Cents
	patient_cost_share: Cents
	payer_payment: Cents
	balance_after_payer: Cents
	processing_order: int | None = None
	calculation_breakdown: list[BreakdownStep] = Field(default_factory=list)


class AdjudicationForPayer(BaseModel):
	payer: Payer
	procedure_estimates: list[AdjudicatedProcedure] = Field(default_factory=list)
	total_payer_payment: Cents = Decimal("0")
	total_patient_share: Cents = Decimal("0")
	total_remaining_balance: Cents = Decimal("0")


class SuggestedAction(BaseModel):
	text: str
	type: str = "primary"


class PropensityResult(BaseModel):
	score: int
	tier: str
	recommendation: str
	dynamic_actions: list[SuggestedAction] = Field(default_factory=list)
	factors: dict[str, int] = Field(default_factory=dict)


class EstimateData(BaseModel):
	"""Full adjudication result returned by the engine."""

	meta_data: MetaData
	payers: list[Payer]
	procedures: list[Procedure]
	total_patient_responsibility: Cents
	adjudication_chain: list[AdjudicationForPayer] = Field(default_factory=list)
	non_cob_patient_liability: dict[str, Cents] = Field(default_factory=dict)
	propensity: PropensityResult | None = None


class EstimateRequest(BaseModel):
	"""Form submission payload for ``POST /estimate``."""

	payers: list[Payer] = Field(default_factory=list)
	procedures: list[Procedure] = Field(default_factory=list)
	meta_data: MetaData = Field(default_factory=MetaData)
	propensity_data: PropensityData | None = None
