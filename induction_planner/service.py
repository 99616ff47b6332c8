"""
Induction Service

Facade the presentation layer talks to. Wires together:
- a snapshot source (fleet, bays, constraints for "now")
- a data provider (job cards, sensor readings, operator messages)
- the orchestrator and the what-if simulation engine
- the plan store and the audit log

Every collaborator is passed in; there are no module-level singletons.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Literal, Optional, Protocol, Union

from pydantic import BaseModel, ValidationError

from .agents import DataIngestionAgent, ScoringAgent
from .audit import AuditLog, AuditLogEntry, AuditSeverity
from .data_provider import DataProvider, NullDataProvider, apply_job_cards
from .errors import InputValidationError, ScenarioNotFoundError
from .models import (
    AgentHealth,
    AgentOutput,
    FleetStatus,
    HealthStatus,
    InductionPlan,
    OrchestratorRunInput,
    Role,
    ScenarioModification,
    Severity,
    SimulationResult,
    SupervisorOverride,
    WhatIfScenario,
)
from .orchestrator import run_orchestrator
from .simulation import WhatIfSimulationEngine
from .store import PlanStore

logger = logging.getLogger(__name__)

PRIOR_PLANS_FOR_FEEDBACK = 10
HEALTH_WINDOW = timedelta(hours=24)
DATA_QUALITY_WARNING_ISSUES = 5


class SnapshotSource(Protocol):
    """Supplies the fleet/bay/constraint snapshot for a planning time."""

    def load(self, now: datetime) -> OrchestratorRunInput: ...


@dataclass
class PlanGenerationResult:
    plan: InductionPlan
    agent_outputs: list[AgentOutput]
    execution_time_ms: float
    agent_health: list[AgentHealth] = field(default_factory=list)


class SystemHealthReport(BaseModel):
    overall: Literal["healthy", "warning", "critical"]
    agents: list[AgentHealth]
    data_quality_score: float
    data_quality_issues: list[str]
    avg_plan_generation_ms: float
    success_rate: float
    last_error: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


def compute_agent_health(agent_outputs: list[AgentOutput], now: datetime) -> list[AgentHealth]:
    """Status is the worst finding severity an agent reported in the run."""
    health: list[AgentHealth] = []
    for output in agent_outputs:
        counts = {s.value: 0 for s in Severity}
        for finding in output.findings:
            counts[finding.severity.value] += 1
        if counts[Severity.CRITICAL.value]:
            status = HealthStatus.CRITICAL
        elif counts[Severity.WARN.value]:
            status = HealthStatus.WARN
        else:
            status = HealthStatus.OK
        health.append(AgentHealth(
            agent=output.agent,
            status=status,
            finding_counts=counts,
            last_run=now,
            summary=f"{len(output.findings)} findings, {len(output.recommendations)} recommendations",
            execution_time_ms=output.execution_time_ms,
        ))
    return health


def compute_fleet_status(run_input: OrchestratorRunInput) -> FleetStatus:
    fleet = run_input.fleet
    return FleetStatus(
        total=len(fleet),
        available=sum(1 for ts in fleet if not ts.needs_maintenance()),
        in_maintenance=sum(1 for ts in fleet if ts.critical_work_orders()),
        cleaning_required=sum(1 for ts in fleet if ts.cleaning_required),
        critical_issues=sum(1 for ts in fleet if ts.critical_systems()),
        average_mileage=round(sum(ts.km for ts in fleet) / len(fleet)) if fleet else 0,
    )


class InductionService:
    """
    Plan generation, supervisor workflow, what-if analysis and audit access.

    Args:
        snapshot_source: supplies the planning input when none is passed
        store: plan store (a fresh one sharing audit_log if omitted)
        audit_log: audit sink (a fresh one using clock if omitted)
        data_provider: external data for the agents
        clock: planning-time source
        simulation_engine: what-if engine (built from agents/parallel if omitted)
        agents: agent instances for plan generation (default sequence if omitted)
        parallel: run agents on a thread pool
    """

    def __init__(
        self,
        snapshot_source: SnapshotSource,
        store: Optional[PlanStore] = None,
        audit_log: Optional[AuditLog] = None,
        data_provider: Optional[DataProvider] = None,
        clock: Callable[[], datetime] = _utcnow,
        simulation_engine: Optional[WhatIfSimulationEngine] = None,
        agents: Optional[list[ScoringAgent]] = None,
        parallel: bool = False,
    ):
        self.snapshot_source = snapshot_source
        self.clock = clock
        self.audit_log = audit_log or AuditLog(clock=clock)
        self.store = store or PlanStore(audit_log=self.audit_log)
        self.data_provider = data_provider or NullDataProvider()
        self.agents = agents
        self.parallel = parallel
        self.simulation_engine = simulation_engine or WhatIfSimulationEngine(agents=agents, parallel=parallel)
        self._last_agent_health: list[AgentHealth] = []

    def _planning_input(self, run_input: Optional[OrchestratorRunInput], now: datetime) -> OrchestratorRunInput:
        base = run_input if run_input is not None else self.snapshot_source.load(now)
        job_cards = self.data_provider.job_cards()
        if not job_cards:
            return base
        return base.model_copy(update={"fleet": apply_job_cards(base.fleet, job_cards)})

    def _record_data_quality(self, agent_outputs: list[AgentOutput]) -> None:
        for output in agent_outputs:
            if output.agent != DataIngestionAgent.name:
                continue
            for finding in output.findings:
                if finding.severity == Severity.INFO:
                    continue
                self.audit_log.log_data_quality_issue(
                    source=output.agent,
                    issue=f"{finding.title}: {finding.message}",
                    severity=AuditSeverity.CRITICAL if finding.severity == Severity.CRITICAL else AuditSeverity.WARN,
                    trainset_id=finding.trainset_id,
                )

    # -------------------------------------------------------------------------
    # Plans
    # -------------------------------------------------------------------------

    def generate_induction_plan(
        self,
        run_input: Optional[OrchestratorRunInput] = None,
        user: str = "system",
    ) -> PlanGenerationResult:
        """
        Generate a plan and publish it as the current plan.

        The plan is published only after it is fully built. Failures are
        logged to the audit sink and re-raised unchanged.
        """
        start = time.perf_counter()
        now = self.clock()
        try:
            planning_input = self._planning_input(run_input, now)
            result = run_orchestrator(
                planning_input,
                now,
                data_provider=self.data_provider,
                agents=self.agents,
                parallel=self.parallel,
                prior_plans=self.store.history(limit=PRIOR_PLANS_FOR_FEEDBACK),
            )
            plan = self.store.publish(result.plan)
        except Exception as exc:
            elapsed = _elapsed_ms(start)
            logger.exception("plan generation failed after %.1fms", elapsed)
            self.audit_log.log_performance("generate_induction_plan", elapsed, False, str(exc))
            raise

        elapsed = _elapsed_ms(start)
        agent_health = compute_agent_health(result.agent_outputs, now)
        self._last_agent_health = agent_health

        self._record_data_quality(result.agent_outputs)
        self.audit_log.log_plan_generation(plan, result.agent_outputs, elapsed, user=user)
        self.audit_log.log_performance(
            "generate_induction_plan", elapsed, True,
            f"Generated plan {plan.id} with {len(plan.assignments)} assignments",
        )

        return PlanGenerationResult(
            plan=plan,
            agent_outputs=result.agent_outputs,
            execution_time_ms=elapsed,
            agent_health=agent_health,
        )

    def get_current_plan(self) -> Optional[InductionPlan]:
        return self.store.current_plan()

    def get_plan(self, plan_id: str) -> InductionPlan:
        return self.store.get_plan(plan_id)

    def get_plan_history(self, limit: int = 10) -> list[InductionPlan]:
        return self.store.history(limit=limit)

    def get_overrides(self, plan_id: Optional[str] = None) -> list[SupervisorOverride]:
        return self.store.overrides(plan_id)

    def apply_supervisor_override(
        self,
        plan_id: str,
        trainset_id: str,
        new_role: Union[Role, str],
        reason: str,
        supervisor: str,
    ) -> InductionPlan:
        return self.store.apply_override(plan_id, trainset_id, new_role, reason, supervisor, self.clock())

    def approve_plan(self, plan_id: str, approver: str) -> InductionPlan:
        return self.store.approve(plan_id, approver, self.clock())

    def reject_plan(self, plan_id: str, supervisor: str, reason: str) -> InductionPlan:
        return self.store.reject(plan_id, supervisor, reason, self.clock())

    # -------------------------------------------------------------------------
    # What-if
    # -------------------------------------------------------------------------

    def get_available_scenarios(self) -> list[WhatIfScenario]:
        return self.simulation_engine.get_common_scenarios()

    def _resolve_scenario(
        self,
        scenario_id: Optional[str],
        custom_modifications: Optional[list[Union[ScenarioModification, dict[str, Any]]]],
        now: datetime,
    ) -> WhatIfScenario:
        if custom_modifications is not None:
            try:
                modifications = [ScenarioModification.model_validate(m) for m in custom_modifications]
            except ValidationError as exc:
                raise InputValidationError(
                    "Invalid scenario modification", {"errors": [e["msg"] for e in exc.errors()]}
                ) from exc
            return WhatIfScenario(
                id=scenario_id or f"CUSTOM-{int(now.timestamp() * 1000)}",
                name="Custom Scenario",
                description="Custom what-if scenario",
                modifications=modifications,
            )
        if not scenario_id:
            raise InputValidationError("Either scenario_id or custom_modifications is required")
        scenario = self.simulation_engine.get_scenario(scenario_id)
        if scenario is None:
            raise ScenarioNotFoundError(scenario_id)
        return scenario

    def run_what_if_simulation(
        self,
        scenario_id: Optional[str] = None,
        custom_modifications: Optional[list[Union[ScenarioModification, dict[str, Any]]]] = None,
        run_input: Optional[OrchestratorRunInput] = None,
    ) -> SimulationResult:
        """
        Run a preset scenario by id, or an ad-hoc one from custom_modifications.

        Neither plan is published.
        """
        start = time.perf_counter()
        now = self.clock()
        try:
            scenario = self._resolve_scenario(scenario_id, custom_modifications, now)
            base_input = self._planning_input(run_input, now)
            result = self.simulation_engine.run_simulation(
                scenario, base_input, now, data_provider=self.data_provider
            )
        except Exception as exc:
            elapsed = _elapsed_ms(start)
            logger.exception("what-if simulation failed after %.1fms", elapsed)
            self.audit_log.log_performance("what_if_simulation", elapsed, False, str(exc))
            raise

        self.audit_log.log_performance(
            "what_if_simulation", _elapsed_ms(start), True,
            f"Completed simulation for scenario {scenario.id}",
        )
        return result

    # -------------------------------------------------------------------------
    # Status & audit
    # -------------------------------------------------------------------------

    def get_fleet_status(self, run_input: Optional[OrchestratorRunInput] = None) -> FleetStatus:
        return compute_fleet_status(run_input if run_input is not None else self.snapshot_source.load(self.clock()))

    def get_agent_health(self) -> list[AgentHealth]:
        return [h.model_copy() for h in self._last_agent_health]

    def get_system_health(self) -> SystemHealthReport:
        """Overall status from the last run's agent health and the last 24h of audit entries."""
        now = self.clock()
        since = now - HEALTH_WINDOW
        summary = self.audit_log.summary(since=since, until=now)
        agents = self.get_agent_health()

        if any(a.status == HealthStatus.CRITICAL for a in agents):
            overall = "critical"
        elif any(a.status == HealthStatus.WARN for a in agents) or summary.data_quality_issues > DATA_QUALITY_WARNING_ISSUES:
            overall = "warning"
        else:
            overall = "healthy"

        errors = summary.by_severity.get(AuditSeverity.ERROR.value, 0)
        last_error = next(
            (e.details for e in summary.recent_critical_events if e.severity == AuditSeverity.ERROR), None
        )
        quality_entries = self.audit_log.entries(category="data_quality", since=since, until=now, limit=10)

        return SystemHealthReport(
            overall=overall,
            agents=agents,
            data_quality_score=max(0.0, 1 - summary.data_quality_issues / 20),
            data_quality_issues=[e.details for e in quality_entries],
            avg_plan_generation_ms=summary.avg_plan_generation_ms,
            success_rate=max(0.0, 1 - errors / summary.total) if summary.total else 1.0,
            last_error=last_error,
        )

    def get_audit_logs(
        self,
        plan_id: Optional[str] = None,
        category: Optional[str] = None,
        severity: Optional[AuditSeverity] = None,
        user: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[AuditLogEntry]:
        return self.audit_log.entries(
            plan_id=plan_id, category=category, severity=severity,
            user=user, since=since, until=until, limit=limit,
        )

    def export_audit_logs(self, format: str = "json") -> str:
        return self.audit_log.export(format)
