"""
What-If Simulation Module

Replays the orchestrator on a perturbed copy of the planning input and diffs
the two plans.

- apply_modifications(): pure transformation of an OrchestratorRunInput
- calculate_impact(): KPI deltas, risk assessment, mitigation suggestions
- WhatIfSimulationEngine.run_simulation(): baseline + modified run + impact
- WhatIfSimulationEngine.get_common_scenarios(): preset scenario catalog

Nothing here persists a plan. Synthetic due dates derive from the injected
`now`, so re-running a scenario with the same inputs gives the same result.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from copy import deepcopy
from datetime import datetime, timedelta
from typing import Optional

from pydantic import ValidationError

from .agents import ScoringAgent
from .data_provider import DataProvider
from .errors import InputValidationError
from .models import (
    KPI_FIELDS,
    GlobalConstraints,
    ImpactAnalysis,
    InductionPlan,
    ModificationType,
    OrchestratorRunInput,
    Role,
    ScenarioModification,
    SimulationResult,
    Subsystem,
    WhatIfScenario,
    WorkOrder,
    WorkOrderType,
)
from .orchestrator import run_orchestrator

logger = logging.getLogger(__name__)

DELAY_DUE_WINDOW = timedelta(hours=2)

# Negative KPI deltas beyond these thresholds are reported as risks
PUNCTUALITY_RISK_DELTA = -0.01
BRANDING_RISK_DELTA = -0.1
MAINTENANCE_RISK_DELTA = -0.05


def apply_modifications(
    base_input: OrchestratorRunInput,
    modifications: list[ScenarioModification],
    now: datetime,
) -> OrchestratorRunInput:
    """
    Apply scenario modifications in list order to a copy of base_input.

    Targets naming trainsets that are not in the fleet are no-ops, logged as a
    warning since they point at a malformed scenario.

    Args:
        base_input: planning input (not mutated)
        modifications: changes to apply, in order
        now: time used for synthetic work-order due dates

    Returns:
        New OrchestratorRunInput

    Raises:
        InputValidationError: if a constraint_change produces invalid constraints
    """
    modified = deepcopy(base_input)

    for index, mod in enumerate(modifications):
        if mod.type in (ModificationType.TRAINSET_UNAVAILABLE, ModificationType.MAINTENANCE_DELAY):
            if modified.trainset(mod.target) is None:
                logger.warning(
                    "scenario modification %d (%s) targets unknown trainset %s; ignored",
                    index, mod.type.value, mod.target,
                )
                continue

        if mod.type == ModificationType.TRAINSET_UNAVAILABLE:
            modified.fleet = [ts for ts in modified.fleet if ts.id != mod.target]

        elif mod.type == ModificationType.MAINTENANCE_DELAY:
            delay_order = WorkOrder(
                id=f"WO-DELAY-{mod.target}-{index}",
                type=WorkOrderType.CRITICAL,
                system=Subsystem.ROLLING_STOCK,
                priority=10,
                estimated_hours=float(mod.value),
                due_date=now + DELAY_DUE_WINDOW,
                description=f"Delayed maintenance: {mod.description}",
            )
            modified.fleet = [
                ts.model_copy(update={"open_work_orders": [*ts.open_work_orders, delay_order]})
                if ts.id == mod.target else ts
                for ts in modified.fleet
            ]

        elif mod.type == ModificationType.CLEANING_OUTAGE:
            constraints = modified.constraints
            modified.constraints = constraints.model_copy(update={
                "cleaning_bay_capacity": max(0, constraints.cleaning_bay_capacity - mod.value),
                "cleaning_crew_capacity": max(0, constraints.cleaning_crew_capacity - mod.value),
            })

        elif mod.type == ModificationType.CONSTRAINT_CHANGE:
            merged = {**modified.constraints.model_dump(), **mod.value}
            try:
                modified.constraints = GlobalConstraints.model_validate(merged)
            except ValidationError as exc:
                raise InputValidationError(
                    f"constraint_change {mod.value!r} yields invalid constraints",
                    {"modification_index": index, "errors": [e["msg"] for e in exc.errors()]},
                ) from exc

    return modified


def _role_count(plan: InductionPlan, role: Role) -> int:
    return sum(1 for a in plan.assignments if a.role == role)


def calculate_impact(original_plan: InductionPlan, modified_plan: InductionPlan) -> ImpactAnalysis:
    """
    Compare two plans.

    kpi_deltas are exact field-wise differences (modified - original), no rounding.
    """
    original_kpis = original_plan.kpi_projections
    modified_kpis = modified_plan.kpi_projections
    kpi_deltas = {
        name: getattr(modified_kpis, name) - getattr(original_kpis, name)
        for name in KPI_FIELDS
    }

    risk_assessment: list[str] = []
    if kpi_deltas["punctuality_rate"] < PUNCTUALITY_RISK_DELTA:
        risk_assessment.append(
            f"Punctuality risk: {kpi_deltas['punctuality_rate'] * 100:.2f}% decrease"
        )
    if kpi_deltas["branding_fulfillment"] < BRANDING_RISK_DELTA:
        risk_assessment.append(
            f"Branding SLA risk: {kpi_deltas['branding_fulfillment'] * 100:.1f}% decrease in fulfillment"
        )
    if kpi_deltas["maintenance_compliance"] < MAINTENANCE_RISK_DELTA:
        risk_assessment.append(
            f"Maintenance compliance risk: {kpi_deltas['maintenance_compliance'] * 100:.1f}% decrease"
        )

    mitigation_suggestions: list[str] = []
    if _role_count(modified_plan, Role.SERVICE) < _role_count(original_plan, Role.SERVICE):
        mitigation_suggestions.append("Consider reducing service intervals or deploying backup trainsets")

    original_risks = {a.trainset_id: len(a.risk_factors) for a in original_plan.assignments}
    if any(len(a.risk_factors) > original_risks.get(a.trainset_id, 0) for a in modified_plan.assignments):
        mitigation_suggestions.append("Prioritize maintenance activities to reduce risk factors")

    if kpi_deltas["branding_fulfillment"] < BRANDING_RISK_DELTA:
        mitigation_suggestions.append(
            "Negotiate branding contract extensions or deploy alternative advertising solutions"
        )

    return ImpactAnalysis(
        kpi_deltas=kpi_deltas,
        risk_assessment=risk_assessment,
        mitigation_suggestions=mitigation_suggestions,
    )


class WhatIfSimulationEngine:
    """
    Runs the orchestrator on a baseline and a perturbed input.

    The same agent instances serve both runs; agents keep no state between runs.
    """

    def __init__(self, agents: Optional[list[ScoringAgent]] = None, parallel: bool = False):
        self.agents = agents
        self.parallel = parallel

    def run_simulation(
        self,
        scenario: WhatIfScenario,
        base_input: OrchestratorRunInput,
        now: datetime,
        data_provider: Optional[DataProvider] = None,
    ) -> SimulationResult:
        """
        Run a what-if scenario.

        Returns:
            SimulationResult with both plans in full, the modified input and the impact

        Raises:
            InputValidationError: invalid base input or invalid constraint_change
            AgentContractError: an agent failed in either run
        """
        modified_input = apply_modifications(base_input, scenario.modifications, now)

        def _run(run_input: OrchestratorRunInput) -> InductionPlan:
            return run_orchestrator(run_input, now, data_provider=data_provider, agents=self.agents).plan

        if self.parallel:
            with ThreadPoolExecutor(max_workers=2) as pool:
                original_future = pool.submit(_run, base_input)
                modified_future = pool.submit(_run, modified_input)
                original_plan = original_future.result()
                modified_plan = modified_future.result()
        else:
            original_plan = _run(base_input)
            modified_plan = _run(modified_input)

        impact = calculate_impact(original_plan, modified_plan)

        logger.info(
            "scenario %s: %d modifications, %d risks, %d mitigations",
            scenario.id, len(scenario.modifications),
            len(impact.risk_assessment), len(impact.mitigation_suggestions),
        )

        return SimulationResult(
            scenario_id=scenario.id,
            original_plan=original_plan,
            modified_plan=modified_plan,
            modified_input=modified_input,
            impact=impact,
        )

    @staticmethod
    def get_common_scenarios() -> list[WhatIfScenario]:
        """Preset scenario catalog."""
        return [
            WhatIfScenario(
                id="SCENARIO-001",
                name="Peak Hour Trainset Failure",
                description="Simulate the impact of a critical trainset becoming unavailable during peak hours",
                modifications=[
                    ScenarioModification(
                        type=ModificationType.TRAINSET_UNAVAILABLE,
                        target="TS-101",
                        description="TS-101 experiences critical system failure",
                    )
                ],
            ),
            WhatIfScenario(
                id="SCENARIO-002",
                name="Cleaning Bay Outage",
                description="Simulate the impact of 2 cleaning bays being out of service",
                modifications=[
                    ScenarioModification(
                        type=ModificationType.CLEANING_OUTAGE,
                        target="cleaning_capacity",
                        value=2,
                        description="2 cleaning bays offline due to equipment failure",
                    )
                ],
            ),
            WhatIfScenario(
                id="SCENARIO-003",
                name="Extended Maintenance Window",
                description="Simulate the impact of extended maintenance requiring additional trainsets",
                modifications=[
                    ScenarioModification(
                        type=ModificationType.CONSTRAINT_CHANGE,
                        target="constraints",
                        value={"min_standby": 5, "max_service": 15},
                        description="Increased standby requirement for extended maintenance",
                    )
                ],
            ),
            WhatIfScenario(
                id="SCENARIO-004",
                name="Multiple Trainset Delays",
                description="Simulate multiple trainsets experiencing maintenance delays",
                modifications=[
                    ScenarioModification(
                        type=ModificationType.MAINTENANCE_DELAY,
                        target="TS-105",
                        value=6,
                        description="TS-105 brake system maintenance delay",
                    ),
                    ScenarioModification(
                        type=ModificationType.MAINTENANCE_DELAY,
                        target="TS-112",
                        value=4,
                        description="TS-112 HVAC system maintenance delay",
                    ),
                ],
            ),
            WhatIfScenario(
                id="SCENARIO-005",
                name="High Demand Service",
                description="Simulate increased service demand requiring more trainsets",
                modifications=[
                    ScenarioModification(
                        type=ModificationType.CONSTRAINT_CHANGE,
                        target="constraints",
                        value={"max_service": 22, "min_standby": 2},
                        description="Increased service requirement for special event",
                    )
                ],
            ),
        ]

    def get_scenario(self, scenario_id: str) -> Optional[WhatIfScenario]:
        return next((s for s in self.get_common_scenarios() if s.id == scenario_id), None)
