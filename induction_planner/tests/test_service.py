"""
Tests for the InductionService facade.

Tests verify:
- Plan generation publishes, audits and reports agent health
- Failed generation is audited and leaves the store unchanged
- Job cards from the data provider reach the agents
- Supervisor workflow delegates to the store with the service clock
- Preset and custom what-if runs, unknown scenarios
- Fleet status and system health
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from induction_planner.agents import ScoringAgent, default_agents
from induction_planner.audit import AuditSeverity
from induction_planner.data_provider import MaintenanceJobCard, StaticDataProvider
from induction_planner.errors import AgentContractError, InputValidationError, ScenarioNotFoundError
from induction_planner.models import (
    ApprovalStatus,
    DataQualityMetrics,
    GlobalConstraints,
    HealthStatus,
    OrchestratorRunInput,
    Role,
    Subsystem,
    TrainsetSnapshot,
    WorkOrderType,
)
from induction_planner.service import InductionService, compute_fleet_status
from induction_planner.world import DemoSnapshotSource, build_demo_input

START = datetime(2026, 3, 10, 21, 0, tzinfo=timezone.utc)


class TickingClock:
    """Advances one second per call so every plan gets a distinct id."""

    def __init__(self, start=START):
        self.current = start - timedelta(seconds=1)

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


class SingleTrainsetSource:
    def load(self, now):
        return OrchestratorRunInput(
            fleet=[TrainsetSnapshot(id="TS-1", km=50_000, fitness_valid_until=now + timedelta(days=30))],
            constraints=GlobalConstraints(min_standby=0, max_service=1, cleaning_bay_capacity=1),
        )


class ExplodingAgent(ScoringAgent):
    name = "exploding"

    def run(self, ctx):
        raise RuntimeError("sensor gateway unreachable")


@pytest.fixture
def service():
    return InductionService(DemoSnapshotSource(), clock=TickingClock())


class TestGeneratePlan:
    """Test plan generation through the service."""

    def test_publishes_current_plan(self, service):
        result = service.generate_induction_plan(user="planner.ravi")

        assert service.get_current_plan().id == result.plan.id
        assert service.get_plan(result.plan.id) == result.plan
        assert [p.id for p in service.get_plan_history()] == [result.plan.id]
        assert result.execution_time_ms >= 0

    def test_audited(self, service):
        result = service.generate_induction_plan(user="planner.ravi")

        (generation,) = service.get_audit_logs(category="plan_generation")
        assert generation.plan_id == result.plan.id
        assert generation.user == "planner.ravi"
        (performance,) = service.get_audit_logs(category="performance")
        assert performance.success

    def test_agent_health(self, service):
        result = service.generate_induction_plan()

        health = {h.agent: h.status for h in result.agent_health}
        assert health["constraint-enforcement"] == HealthStatus.CRITICAL
        assert health["cleaning-stabling"] == HealthStatus.WARN
        assert health["optimization"] == HealthStatus.OK
        assert service.get_agent_health() == result.agent_health

    def test_new_plan_supersedes(self, service):
        first = service.generate_induction_plan()
        second = service.generate_induction_plan()

        assert first.plan.id != second.plan.id
        assert service.get_current_plan().id == second.plan.id
        assert [p.id for p in service.get_plan_history()] == [second.plan.id, first.plan.id]

    def test_regenerate_at_same_instant(self):
        service = InductionService(DemoSnapshotSource(), clock=lambda: START)
        first = service.generate_induction_plan()
        second = service.generate_induction_plan()

        assert second.plan.id == f"{first.plan.id}-2"
        assert service.get_current_plan().id == second.plan.id
        assert [p.id for p in service.get_plan_history()] == [second.plan.id, first.plan.id]
        assert {e.plan_id for e in service.get_audit_logs(category="plan_generation")} == {
            first.plan.id, second.plan.id,
        }
        assert all(e.success for e in service.get_audit_logs(category="performance"))

    def test_feedback_sees_prior_plans(self, service):
        service.generate_induction_plan()
        result = service.generate_induction_plan()

        feedback = next(o for o in result.agent_outputs if o.agent == "feedback")
        assert any(f.title == "Prior plans reviewed" for f in feedback.findings)

    def test_failure_audited_and_not_published(self):
        service = InductionService(DemoSnapshotSource(), clock=TickingClock(), agents=[ExplodingAgent()])

        with pytest.raises(AgentContractError):
            service.generate_induction_plan()

        assert service.get_current_plan() is None
        (failure,) = service.get_audit_logs(category="performance")
        assert not failure.success
        assert failure.severity == AuditSeverity.ERROR

    def test_snapshot_loaded_at_planning_time(self):
        source = MagicMock()
        source.load.side_effect = build_demo_input
        service = InductionService(source, clock=TickingClock())

        result = service.generate_induction_plan()

        source.load.assert_called_once_with(START)
        assert result.plan.generated_at == START

    def test_explicit_run_input(self, service):
        run_input = build_demo_input(START)
        run_input = run_input.model_copy(update={"fleet": run_input.fleet[:2]})

        result = service.generate_induction_plan(run_input=run_input)
        assert sorted(a.trainset_id for a in result.plan.assignments) == ["TS-101", "TS-205"]

    def test_job_cards_applied(self):
        card = MaintenanceJobCard(
            work_order_id="JC-9001", trainset_id="TS-317", type=WorkOrderType.CRITICAL,
            system=Subsystem.BRAKES, priority=9, due_date=START,
        )
        service = InductionService(
            DemoSnapshotSource(), clock=TickingClock(), data_provider=StaticDataProvider(job_cards=[card]),
        )
        plan = service.generate_induction_plan().plan

        ts_317 = plan.assignment_for("TS-317")
        assert "critical_maintenance_pending" in ts_317.constraint_tags
        assert ts_317.role != Role.SERVICE

    def test_data_quality_findings_audited(self):
        provider = StaticDataProvider(quality=DataQualityMetrics(freshness=45))
        service = InductionService(DemoSnapshotSource(), clock=TickingClock(), data_provider=provider)
        service.generate_induction_plan()

        (issue,) = service.get_audit_logs(category="data_quality")
        assert "Stale Data Warning" in issue.details
        assert issue.severity == AuditSeverity.WARN

    def test_parallel_agents(self):
        service = InductionService(DemoSnapshotSource(), clock=TickingClock(), parallel=True)
        result = service.generate_induction_plan()
        assert [o.agent for o in result.agent_outputs] == [a.name for a in default_agents()]


class TestWorkflow:
    """Test override/approve/reject through the service."""

    def test_override_then_approve(self, service):
        plan = service.generate_induction_plan().plan

        modified = service.apply_supervisor_override(plan.id, "TS-101", "standby", "Crew shortage", "sup.menon")
        assert modified.approval_status == ApprovalStatus.MODIFIED
        assert [o.trainset_id for o in service.get_overrides(plan.id)] == ["TS-101"]

        approved = service.approve_plan(plan.id, "depot.manager")
        assert approved.approval_status == ApprovalStatus.APPROVED
        assert approved.approved_at > plan.generated_at

        categories = [e.category for e in service.get_audit_logs(plan_id=plan.id)]
        assert "supervisor_override" in categories
        assert "system_event" in categories

    def test_reject(self, service):
        plan = service.generate_induction_plan().plan
        rejected = service.reject_plan(plan.id, "depot.manager", "Insufficient standby")
        assert rejected.approval_status == ApprovalStatus.REJECTED


class TestWhatIf:
    """Test simulations through the service."""

    def test_available_scenarios(self, service):
        assert len(service.get_available_scenarios()) == 5

    def test_preset(self, service):
        result = service.run_what_if_simulation(scenario_id="SCENARIO-001")

        assert result.scenario_id == "SCENARIO-001"
        assert result.modified_plan.assignment_for("TS-101") is None
        # simulations never publish
        assert service.get_current_plan() is None

    def test_custom_modifications(self, service):
        result = service.run_what_if_simulation(custom_modifications=[
            {"type": "constraint_change", "target": "constraints", "value": {"max_service": 1}},
        ])

        assert result.scenario_id.startswith("CUSTOM-")
        assert result.modified_plan.role_counts()[Role.SERVICE] == 1

    def test_invalid_custom_modification(self, service):
        with pytest.raises(InputValidationError):
            service.run_what_if_simulation(custom_modifications=[{"type": "cleaning_outage", "target": "x", "value": -1}])

    def test_unknown_scenario(self, service):
        with pytest.raises(ScenarioNotFoundError):
            service.run_what_if_simulation(scenario_id="SCENARIO-404")
        (failure,) = service.get_audit_logs(category="performance")
        assert not failure.success

    def test_nothing_to_run(self, service):
        with pytest.raises(InputValidationError):
            service.run_what_if_simulation()


class TestStatusAndHealth:
    """Test fleet status and system health reporting."""

    def test_fleet_status(self, service):
        status = service.get_fleet_status()

        assert status.total == 4
        assert status.available == 4
        assert status.in_maintenance == 0
        assert status.cleaning_required == 2
        assert status.critical_issues == 0
        assert status.average_mileage == 101925

    def test_fleet_status_empty(self):
        run_input = OrchestratorRunInput(
            constraints=GlobalConstraints(min_standby=1, max_service=1, cleaning_bay_capacity=1),
        )
        assert compute_fleet_status(run_input).average_mileage == 0

    def test_health_critical_from_agents(self, service):
        service.generate_induction_plan()
        report = service.get_system_health()

        assert report.overall == "critical"
        assert report.success_rate == 1.0
        assert report.last_error is None

    def test_health_healthy(self):
        service = InductionService(SingleTrainsetSource(), clock=TickingClock())
        service.generate_induction_plan()
        report = service.get_system_health()

        assert report.overall == "healthy"
        assert report.data_quality_score == 1.0

    def test_health_records_last_error(self):
        service = InductionService(DemoSnapshotSource(), clock=TickingClock(), agents=[ExplodingAgent()])
        with pytest.raises(AgentContractError):
            service.generate_induction_plan()

        report = service.get_system_health()
        assert report.success_rate == 0.0
        assert "generate_induction_plan: FAILURE" in report.last_error

    def test_export(self, service):
        service.generate_induction_plan()
        csv_text = service.export_audit_logs("csv")
        assert csv_text.splitlines()[0] == "id,timestamp,action,user,details,severity,category,plan_id"
