"""
Core data models for the induction planner.

These models define the domain objects used throughout the system:
- Fleet snapshot (trainsets, work orders, branding contracts, depot bays)
- Global operating constraints for one planning run
- Agent outputs (findings, weighted recommendations, data quality)
- Induction plans, assignments, overrides and their audit trail
- What-if scenarios and simulation results
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from pydantic import BaseModel, Field, model_validator


class HealthStatus(str, Enum):
    """Health of a single subsystem."""
    OK = "ok"
    WARN = "warn"
    CRITICAL = "critical"


class Severity(str, Enum):
    """Severity of an agent finding."""
    INFO = "info"
    WARN = "warn"
    CRITICAL = "critical"


class WorkOrderType(str, Enum):
    CRITICAL = "critical"
    PREVENTIVE = "preventive"
    CORRECTIVE = "corrective"


class Subsystem(str, Enum):
    """Closed set of trainset subsystems tracked by work orders and health."""
    BRAKES = "brakes"
    HVAC = "hvac"
    DOORS = "doors"
    BOGIES = "bogies"
    TRACTION = "traction"
    SIGNALLING = "signalling"
    ELECTRICAL = "electrical"
    ROLLING_STOCK = "rolling_stock"


class BayType(str, Enum):
    SERVICE = "service"
    MAINTENANCE = "maintenance"
    CLEANING = "cleaning"
    STORAGE = "storage"


class Role(str, Enum):
    """Terminal induction decision for a trainset."""
    SERVICE = "service"
    STANDBY = "standby"
    MAINTENANCE = "maintenance"


class RecommendationAction(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"
    SERVICE = "service"
    STANDBY = "standby"
    MAINTENANCE = "maintenance"
    CLEANING = "cleaning"
    BRAND = "brand"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MODIFIED = "modified"


class ModificationType(str, Enum):
    """Declarative perturbations a what-if scenario can apply."""
    TRAINSET_UNAVAILABLE = "trainset_unavailable"
    MAINTENANCE_DELAY = "maintenance_delay"
    CLEANING_OUTAGE = "cleaning_outage"
    CONSTRAINT_CHANGE = "constraint_change"


# =============================================================================
# FLEET SNAPSHOT
# =============================================================================

class WorkOrder(BaseModel):
    """An open maintenance work order on a trainset."""
    id: str = Field(..., description="Work order ID, e.g. 'WO-2024-001'")
    type: WorkOrderType = Field(..., description="critical, preventive or corrective")
    system: Subsystem = Field(..., description="Subsystem the work targets")
    priority: int = Field(..., ge=1, le=10, description="1 (low) to 10 (urgent)")
    estimated_hours: float = Field(..., ge=0, description="Estimated labour hours")
    due_date: datetime = Field(..., description="When the work must be done")
    description: str = Field(default="", description="Free-text description")


class BrandingContract(BaseModel):
    """Advertiser commitment requiring revenue-service hours."""
    id: str
    advertiser: str
    committed_hours: float = Field(..., ge=0)
    remaining_hours: float = Field(..., ge=0)
    penalty_rate: float = Field(default=0.0, ge=0, description="Penalty per undelivered hour")
    expiry_date: datetime

    @model_validator(mode="after")
    def validate_hours(self):
        if self.remaining_hours > self.committed_hours:
            raise ValueError(
                f"contract {self.id}: remaining_hours ({self.remaining_hours}) "
                f"exceeds committed_hours ({self.committed_hours})"
            )
        return self


class SystemHealth(BaseModel):
    """Per-subsystem health map plus the time it was last refreshed."""
    statuses: dict[Subsystem, HealthStatus] = Field(default_factory=dict)
    last_updated: Optional[datetime] = None


class ComponentWear(BaseModel):
    """Wear percentages (0-100) for the four tracked components."""
    brake_pads: float = Field(default=0.0, ge=0, le=100)
    hvac_system: float = Field(default=0.0, ge=0, le=100)
    bogies: float = Field(default=0.0, ge=0, le=100)
    doors: float = Field(default=0.0, ge=0, le=100)
    last_inspection: Optional[datetime] = None

    def average(self) -> float:
        return (self.brake_pads + self.hvac_system + self.bogies + self.doors) / 4


class TrainsetSnapshot(BaseModel):
    """Point-in-time state of one trainset."""
    id: str = Field(..., description="Unique trainset ID, e.g. 'TS-101'")
    km: int = Field(..., ge=0, description="Cumulative mileage in km")
    fitness_valid_until: datetime = Field(..., description="Fitness certificate expiry")
    open_work_orders: list[WorkOrder] = Field(default_factory=list)
    branding_contracts: list[BrandingContract] = Field(default_factory=list)
    cleaning_required: bool = False
    last_cleaning_date: Optional[datetime] = None
    current_location: Optional[str] = Field(default=None, description="Depot bay ID (weak reference)")
    system_health: SystemHealth = Field(default_factory=SystemHealth)
    component_wear: ComponentWear = Field(default_factory=ComponentWear)

    def critical_work_orders(self) -> list[WorkOrder]:
        return [wo for wo in self.open_work_orders if wo.type == WorkOrderType.CRITICAL]

    def critical_systems(self) -> list[Subsystem]:
        return [s for s, status in self.system_health.statuses.items() if status == HealthStatus.CRITICAL]

    def branding_hours_remaining(self) -> float:
        return sum(c.remaining_hours for c in self.branding_contracts)

    def average_wear(self) -> float:
        return self.component_wear.average()

    def needs_maintenance(self) -> bool:
        return bool(self.critical_work_orders() or self.critical_systems())


class BayGeometry(BaseModel):
    track_number: int = Field(..., ge=0)
    position: int = Field(..., ge=0, description="Slot position along the track (0 = nearest exit)")
    access_difficulty: int = Field(..., ge=1, le=10, description="1 (easy) to 10 (hard to reach)")


class DepotBay(BaseModel):
    """A depot bay that can hold one or more trainsets."""
    id: str
    type: BayType
    capacity: int = Field(..., ge=0)
    current_occupancy: int = Field(default=0, ge=0)
    cleaning_capable: bool = False
    maintenance_capable: bool = False
    geometry: BayGeometry

    @model_validator(mode="after")
    def validate_occupancy(self):
        if self.current_occupancy > self.capacity:
            raise ValueError(
                f"bay {self.id}: current_occupancy ({self.current_occupancy}) exceeds capacity ({self.capacity})"
            )
        return self


class GlobalConstraints(BaseModel):
    """Read-only operating constraints for one planning run."""
    min_standby: int = Field(..., ge=0)
    max_service: int = Field(..., ge=0)
    cleaning_bay_capacity: int = Field(..., ge=0)
    cleaning_crew_capacity: int = Field(default=2, ge=0)
    max_shunting_moves: int = Field(default=10, ge=0)
    punctuality_target: float = Field(default=0.995, gt=0, le=1)
    mileage_balance_threshold: float = Field(default=20000.0, gt=0, description="km")


# =============================================================================
# AGENT OUTPUTS
# =============================================================================

class AgentFinding(BaseModel):
    """Informational observation emitted by an agent."""
    title: str
    message: str
    severity: Severity
    timestamp: datetime
    source: str = Field(..., description="Name of the emitting agent")
    trainset_id: Optional[str] = None


class AgentRecommendation(BaseModel):
    """
    Weighted nudge for a trainset (or the whole fleet when trainset_id is None).

    Positive weight encourages the role implied by action, negative discourages.
    constraints holds tags naming the policy rules that fired.
    """
    trainset_id: Optional[str] = None
    action: RecommendationAction = RecommendationAction.INCLUDE
    weight: float = 0.0
    rationale: str = ""
    confidence: float = Field(default=0.8, ge=0, le=1)
    constraints: list[str] = Field(default_factory=list)


class DataQualityMetrics(BaseModel):
    completeness: float = Field(default=1.0, ge=0, le=1)
    freshness: float = Field(default=0.0, ge=0, description="Age of the data in minutes")
    consistency: float = Field(default=1.0, ge=0, le=1)
    accuracy: float = Field(default=1.0, ge=0, le=1)


class ShuntingMove(BaseModel):
    trainset_id: str
    from_bay: Optional[str] = None
    to_bay: str
    reason: str
    benefit: float = 0.0


class StablingPlan(BaseModel):
    """Bay reassignments proposed to reduce morning shunting."""
    assignments: dict[str, Optional[str]] = Field(default_factory=dict, description="trainset ID -> bay ID")
    moves: list[ShuntingMove] = Field(default_factory=list)
    deferred: list[str] = Field(default_factory=list, description="Trainsets whose move did not fit")
    max_moves: int = 0

    @property
    def total_moves(self) -> int:
        return len(self.moves)

    @model_validator(mode="after")
    def validate_move_budget(self):
        if len(self.moves) > self.max_moves:
            raise ValueError(f"stabling plan uses {len(self.moves)} moves, limit is {self.max_moves}")
        return self


class AgentOutput(BaseModel):
    """Result of one agent run. Never mutated after return."""
    agent: str
    findings: list[AgentFinding] = Field(default_factory=list)
    recommendations: list[AgentRecommendation] = Field(default_factory=list)
    execution_time_ms: float = Field(default=0.0, ge=0)
    data_quality: DataQualityMetrics = Field(default_factory=DataQualityMetrics)
    stabling_plan: Optional[StablingPlan] = None


class AgentHealth(BaseModel):
    agent: str
    status: HealthStatus
    finding_counts: dict[str, int]
    last_run: datetime
    summary: str
    execution_time_ms: float = 0.0


# =============================================================================
# PLANS
# =============================================================================

class InductionAssignment(BaseModel):
    trainset_id: str
    role: Role
    score: float = Field(..., description="Aggregated net weight (sum of weight x confidence)")
    reasons: list[str] = Field(default_factory=list)
    assigned_bay: Optional[str] = None
    cleaning_scheduled: bool = False
    estimated_readiness: datetime
    risk_factors: list[str] = Field(default_factory=list)
    constraint_tags: list[str] = Field(default_factory=list, description="Union of tags from all recommendations")


class KPIProjections(BaseModel):
    """Forward-looking estimates for a proposed plan (not decision inputs)."""
    punctuality_rate: float
    mileage_balance: float
    branding_fulfillment: float
    maintenance_compliance: float
    energy_efficiency: float


KPI_FIELDS: tuple[str, ...] = tuple(KPIProjections.model_fields)


class _PlanAuditBase(BaseModel):
    timestamp: datetime
    user: str
    details: str


class PlanGeneratedEntry(_PlanAuditBase):
    action: Literal["plan_generated"] = "plan_generated"
    assignment_count: int = 0


class OverrideAppliedEntry(_PlanAuditBase):
    action: Literal["supervisor_override_applied"] = "supervisor_override_applied"
    trainset_id: str
    previous_value: InductionAssignment
    new_value: InductionAssignment


class PlanApprovedEntry(_PlanAuditBase):
    action: Literal["plan_approved"] = "plan_approved"
    previous_status: ApprovalStatus
    new_status: ApprovalStatus = ApprovalStatus.APPROVED


class PlanRejectedEntry(_PlanAuditBase):
    action: Literal["plan_rejected"] = "plan_rejected"
    previous_status: ApprovalStatus
    new_status: ApprovalStatus = ApprovalStatus.REJECTED
    reason: str = ""


PlanAuditEntry = Annotated[
    Union[PlanGeneratedEntry, OverrideAppliedEntry, PlanApprovedEntry, PlanRejectedEntry],
    Field(discriminator="action"),
]


class InductionPlan(BaseModel):
    """Proposed daily induction plan. Superseded, never deleted."""
    id: str
    generated_at: datetime
    assignments: list[InductionAssignment] = Field(default_factory=list)
    objective_notes: list[str] = Field(default_factory=list)
    kpi_projections: KPIProjections
    constraints: GlobalConstraints
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    audit_trail: list[PlanAuditEntry] = Field(default_factory=list)

    def assignment_for(self, trainset_id: str) -> Optional[InductionAssignment]:
        return next((a for a in self.assignments if a.trainset_id == trainset_id), None)

    def role_counts(self) -> dict[Role, int]:
        counts = {role: 0 for role in Role}
        for a in self.assignments:
            counts[a.role] += 1
        return counts


class SupervisorOverride(BaseModel):
    id: str
    plan_id: str
    trainset_id: str
    original_assignment: InductionAssignment
    override_assignment: InductionAssignment
    reason: str
    supervisor: str
    timestamp: datetime
    approved: bool = True


class FleetStatus(BaseModel):
    total: int
    available: int
    in_maintenance: int
    cleaning_required: int
    critical_issues: int
    average_mileage: int


# =============================================================================
# RUN INPUT
# =============================================================================

class OrchestratorRunInput(BaseModel):
    """Everything one planning run reads. Treated as an immutable snapshot."""
    fleet: list[TrainsetSnapshot] = Field(default_factory=list)
    constraints: GlobalConstraints
    depot_bays: list[DepotBay] = Field(default_factory=list)

    def validate_unique_ids(self):
        """Validate that trainsets and bays have unique IDs."""
        trainset_ids = [t.id for t in self.fleet]
        bay_ids = [b.id for b in self.depot_bays]

        if len(trainset_ids) != len(set(trainset_ids)):
            raise ValueError("Duplicate trainset IDs")
        if len(bay_ids) != len(set(bay_ids)):
            raise ValueError("Duplicate depot bay IDs")

    def trainset(self, trainset_id: str) -> Optional[TrainsetSnapshot]:
        return next((t for t in self.fleet if t.id == trainset_id), None)


# =============================================================================
# WHAT-IF SCENARIOS
# =============================================================================

class ScenarioModification(BaseModel):
    """
    One declarative change applied by a what-if scenario.

    - TRAINSET_UNAVAILABLE: remove trainset `target` from the fleet (value unused).
    - MAINTENANCE_DELAY: add a synthetic critical work order of `value` hours to `target`.
    - CLEANING_OUTAGE: subtract `value` from cleaning bay and crew capacity.
    - CONSTRAINT_CHANGE: shallow-merge the dict `value` over the constraints.
    """

    type: ModificationType
    target: str = Field(..., description="Trainset ID or capacity/constraint bucket name")
    value: Any = None
    description: str = ""

    @model_validator(mode="after")
    def validate_value_shape(self):
        """Validate that value is consistent with type."""
        if self.type in (ModificationType.TRAINSET_UNAVAILABLE, ModificationType.MAINTENANCE_DELAY):
            if not self.target:
                raise ValueError(f"{self.type.value} requires a non-empty trainset target")
        if self.type == ModificationType.MAINTENANCE_DELAY:
            if isinstance(self.value, bool) or not isinstance(self.value, (int, float)) or self.value < 0:
                raise ValueError("maintenance_delay requires a non-negative number of hours as value")
        elif self.type == ModificationType.CLEANING_OUTAGE:
            if isinstance(self.value, bool) or not isinstance(self.value, int) or self.value < 0:
                raise ValueError("cleaning_outage requires a non-negative integer capacity as value")
        elif self.type == ModificationType.CONSTRAINT_CHANGE:
            if not isinstance(self.value, dict) or not self.value:
                raise ValueError("constraint_change requires a non-empty dict of constraint fields")
            unknown = set(self.value) - set(GlobalConstraints.model_fields)
            if unknown:
                raise ValueError(f"constraint_change has unknown constraint fields: {sorted(unknown)}")
        return self


class WhatIfScenario(BaseModel):
    id: str
    name: str
    description: str = ""
    modifications: list[ScenarioModification] = Field(default_factory=list)


class ImpactAnalysis(BaseModel):
    kpi_deltas: dict[str, float] = Field(..., description="KPI field -> modified minus original")
    risk_assessment: list[str] = Field(default_factory=list)
    mitigation_suggestions: list[str] = Field(default_factory=list)


class SimulationResult(BaseModel):
    """Both plans in full plus the precomputed impact."""
    scenario_id: str
    original_plan: InductionPlan
    modified_plan: InductionPlan
    modified_input: OrchestratorRunInput
    impact: ImpactAnalysis
