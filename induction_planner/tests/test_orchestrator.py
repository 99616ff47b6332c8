"""
Tests for the orchestrator.

Tests verify:
- The four-trainset demo depot end to end (roles, tags, cleaning, stabling)
- Forced maintenance for expired fitness / critical system failures
- Service cap and standby only after service is exhausted
- Trainsets no agent recommended stay out of the plan
- Determinism (same input + same now -> same plan), parallel == sequential
- Empty fleet produces an empty plan and a critical ingestion finding
- Reason formatting, risk factors, stable tie-break, first-fit bays
- Input validation and agent contract violations
"""

from datetime import datetime, timedelta, timezone

import pytest

from induction_planner.agents import (
    TAG_CRITICAL_SYSTEM,
    TAG_FITNESS_EXPIRED,
    AgentContext,
    ScoringAgent,
    default_agents,
)
from induction_planner.errors import AgentContractError, InputValidationError
from induction_planner.models import (
    AgentOutput,
    AgentRecommendation,
    ApprovalStatus,
    BayGeometry,
    BayType,
    DepotBay,
    GlobalConstraints,
    HealthStatus,
    OrchestratorRunInput,
    PlanGeneratedEntry,
    RecommendationAction,
    Role,
    Severity,
    Subsystem,
    SystemHealth,
    TrainsetSnapshot,
)
from induction_planner.orchestrator import (
    FORCED_MAINTENANCE_TAGS,
    aggregate_recommendations,
    build_run_input,
    run_orchestrator,
)
from induction_planner.world import build_demo_input

NOW = datetime(2026, 3, 10, 21, 0, tzinfo=timezone.utc)


class FixedAgent(ScoringAgent):
    """Agent that returns a fixed list of recommendations."""

    def __init__(self, name, recommendations):
        self.name = name
        self.recommendations = recommendations

    def run(self, ctx: AgentContext) -> AgentOutput:
        return AgentOutput(agent=self.name, recommendations=self.recommendations)


class ExplodingAgent(ScoringAgent):
    name = "exploding"

    def run(self, ctx):
        raise RuntimeError("sensor gateway unreachable")


class WrongReturnAgent(ScoringAgent):
    name = "wrong-return"

    def run(self, ctx):
        return {"agent": self.name, "findings": []}


def rec(ts_id, weight, confidence=1.0, action=RecommendationAction.SERVICE, tags=None, rationale="test"):
    return AgentRecommendation(
        trainset_id=ts_id, action=action, weight=weight, confidence=confidence,
        rationale=rationale, constraints=tags or [],
    )


def make_trainset(ts_id: str, **overrides) -> TrainsetSnapshot:
    fields = dict(id=ts_id, km=100_000, fitness_valid_until=NOW + timedelta(days=30))
    fields.update(overrides)
    return TrainsetSnapshot(**fields)


def boost(fleet, weight=10):
    """Agent that scores every trainset in the fleet equally, in fleet order."""
    return FixedAgent("boost", [rec(ts.id, weight) for ts in fleet])


def make_input(fleet, max_service=2, min_standby=1, cleaning_bay_capacity=1, depot_bays=None):
    return OrchestratorRunInput(
        fleet=fleet,
        constraints=GlobalConstraints(
            min_standby=min_standby, max_service=max_service, cleaning_bay_capacity=cleaning_bay_capacity,
        ),
        depot_bays=depot_bays or [],
    )


@pytest.fixture
def demo_result():
    return run_orchestrator(build_demo_input(NOW), NOW)


class TestDemoDepotEndToEnd:
    """Test the four-trainset demo depot."""

    def test_roles(self, demo_result):
        roles = {a.trainset_id: a.role for a in demo_result.plan.assignments}
        assert roles == {
            "TS-317": Role.SERVICE,
            "TS-101": Role.SERVICE,
            "TS-442": Role.STANDBY,
            "TS-205": Role.MAINTENANCE,
        }

    def test_ranked_order(self, demo_result):
        assert [a.trainset_id for a in demo_result.plan.assignments] == ["TS-317", "TS-101", "TS-442", "TS-205"]

    def test_high_mileage_trainset_still_in_service(self, demo_result):
        ts_101 = demo_result.plan.assignment_for("TS-101")
        assert ts_101.score == pytest.approx(-15 * 0.85)
        assert ts_101.reasons == ["optimization: High mileage (+20k km above average) (standby -15, conf: 0.85)"]
        assert ts_101.risk_factors == []

    def test_expired_trainset_forced_to_maintenance(self, demo_result):
        ts_205 = demo_result.plan.assignment_for("TS-205")
        assert TAG_FITNESS_EXPIRED in ts_205.constraint_tags
        assert ts_205.role == Role.MAINTENANCE
        assert ts_205.risk_factors == ["constraint-enforcement: Fitness certificate expired"]

    def test_expiring_trainset_penalised(self, demo_result):
        ts_442 = demo_result.plan.assignment_for("TS-442")
        assert "fitness_certificate_expiring" in ts_442.constraint_tags
        assert any("standby -20" in r for r in ts_442.reasons)
        assert any(r.startswith("optimization: High mileage") for r in ts_442.reasons)
        assert ts_442.score == pytest.approx(-18 - 25 * 0.95)

    def test_single_cleaning_slot(self, demo_result):
        plan = demo_result.plan
        assert plan.assignment_for("TS-205").cleaning_scheduled
        assert not plan.assignment_for("TS-442").cleaning_scheduled

        cleaning = next(o for o in demo_result.agent_outputs if o.agent == "cleaning-stabling")
        deferred = [f for f in cleaning.findings if f.title == "Cleaning deferred: TS-442"]
        assert len(deferred) == 1
        assert deferred[0].severity == Severity.WARN
        assert "deferred, no capacity" in deferred[0].message

    def test_readiness(self, demo_result):
        plan = demo_result.plan
        assert plan.assignment_for("TS-205").estimated_readiness == NOW + timedelta(hours=8)
        assert plan.assignment_for("TS-317").estimated_readiness == NOW + timedelta(hours=2)
        assert plan.assignment_for("TS-442").estimated_readiness == NOW + timedelta(hours=2)

    def test_first_fit_bays_track_occupancy(self, demo_result):
        plan = demo_result.plan
        # SB-01 is full, so both service trainsets land in SB-02
        assert plan.assignment_for("TS-317").assigned_bay == "SB-02"
        assert plan.assignment_for("TS-101").assigned_bay == "SB-02"
        assert plan.assignment_for("TS-205").assigned_bay == "MB-01"
        assert plan.assignment_for("TS-442").assigned_bay is None

    def test_kpis(self, demo_result):
        kpis = demo_result.plan.kpi_projections
        assert kpis.punctuality_rate == pytest.approx(0.99)
        assert kpis.branding_fulfillment == pytest.approx(28 / 32)
        assert kpis.maintenance_compliance == 1.0
        assert kpis.mileage_balance == 0.0
        # two stabling moves: TS-205 to the cleaning bay, TS-442 out of the deep storage bay
        assert kpis.energy_efficiency == pytest.approx(0.80 + 0.18 / 3)

    def test_plan_metadata(self, demo_result):
        plan = demo_result.plan
        assert plan.approval_status == ApprovalStatus.PENDING
        assert plan.generated_at == NOW
        assert plan.id.startswith(f"PLAN-{int(NOW.timestamp() * 1000)}-")
        assert len(plan.audit_trail) == 1
        entry = plan.audit_trail[0]
        assert isinstance(entry, PlanGeneratedEntry)
        assert entry.details == "Generated induction plan for 4 trainsets with 4 assignments"
        assert "Service: 2/2, Standby: 1/1" in plan.objective_notes

    def test_agent_outputs_in_sequence(self, demo_result):
        assert [o.agent for o in demo_result.agent_outputs] == [a.name for a in default_agents()]


class TestAllocationRules:
    """Test the greedy allocator's invariants."""

    def test_forced_tag_set(self):
        assert FORCED_MAINTENANCE_TAGS == {"fitness_certificate_expired", "critical_system_failure"}

    def test_forced_maintenance_count_matches_conditions(self):
        fleet = [
            make_trainset("EXP-1", fitness_valid_until=NOW - timedelta(days=2)),
            make_trainset("EXP-2", fitness_valid_until=NOW - timedelta(minutes=1)),
            make_trainset("SYS-1", system_health=SystemHealth(statuses={Subsystem.TRACTION: HealthStatus.CRITICAL})),
            make_trainset("OK-1"),
            make_trainset("OK-2"),
        ]
        plan = run_orchestrator(make_input(fleet, max_service=10, min_standby=5), NOW).plan

        forced = [
            a for a in plan.assignments
            if FORCED_MAINTENANCE_TAGS.intersection(a.constraint_tags)
        ]
        assert {a.trainset_id for a in forced} == {"EXP-1", "EXP-2", "SYS-1"}
        assert all(a.role == Role.MAINTENANCE for a in forced)

    def test_forced_even_with_high_score(self):
        agent = FixedAgent("boost", [
            rec("TS-1", 500),
            rec("TS-1", -1, tags=[TAG_CRITICAL_SYSTEM]),
        ])
        plan = run_orchestrator(make_input([make_trainset("TS-1")]), NOW, agents=[agent]).plan
        assert plan.assignments[0].role == Role.MAINTENANCE

    def test_service_cap(self):
        fleet = [make_trainset(f"TS-{i}") for i in range(6)]
        plan = run_orchestrator(make_input(fleet, max_service=2, min_standby=3), NOW, agents=[boost(fleet)]).plan

        counts = plan.role_counts()
        assert counts[Role.SERVICE] == 2
        assert counts[Role.STANDBY] == 3
        assert counts[Role.MAINTENANCE] == 1

    def test_standby_only_after_service_exhausted(self):
        fleet = [make_trainset(f"TS-{i}") for i in range(4)]
        plan = run_orchestrator(make_input(fleet, max_service=3, min_standby=2), NOW, agents=[boost(fleet)]).plan

        roles = [a.role for a in plan.assignments]
        assert roles == [Role.SERVICE, Role.SERVICE, Role.SERVICE, Role.STANDBY]

    def test_low_score_skips_service(self):
        agent = FixedAgent("penalty", [rec("GOOD", 5), rec("BAD", -25)])
        run_input = make_input([make_trainset("GOOD"), make_trainset("BAD")], max_service=5)
        plan = run_orchestrator(run_input, NOW, agents=[agent]).plan

        assert plan.assignment_for("GOOD").role == Role.SERVICE
        assert plan.assignment_for("BAD").role == Role.STANDBY

    def test_standby_floor_of_one(self):
        fleet = [make_trainset(f"TS-{i}") for i in range(3)]
        plan = run_orchestrator(make_input(fleet, max_service=1, min_standby=0), NOW, agents=[boost(fleet)]).plan

        assert [a.role for a in plan.assignments] == [Role.SERVICE, Role.STANDBY, Role.MAINTENANCE]

    def test_recommended_trainsets_assigned_once(self):
        fleet = [make_trainset(f"TS-{i}") for i in range(5)]
        plan = run_orchestrator(make_input(fleet), NOW, agents=[boost(fleet[:3])]).plan
        assert [a.trainset_id for a in plan.assignments] == ["TS-0", "TS-1", "TS-2"]

    def test_unrecommended_trainset_left_out(self):
        plan = run_orchestrator(make_input([make_trainset("TS-1")]), NOW).plan
        assert plan.assignments == []

    def test_unrecommended_trainset_takes_no_service_slot(self):
        fleet = [
            make_trainset("TS-A"),
            make_trainset("TS-B", fitness_valid_until=NOW + timedelta(days=2)),
        ]
        plan = run_orchestrator(make_input(fleet, max_service=1), NOW).plan

        assert [(a.trainset_id, a.role) for a in plan.assignments] == [("TS-B", Role.SERVICE)]
        assert plan.assignments[0].score == pytest.approx(-20 * 0.9)


class TestAggregation:
    """Test score aggregation and reasons."""

    def test_weight_times_confidence(self):
        output = AgentOutput(agent="a", recommendations=[rec("TS-1", 10, 0.5), rec("TS-1", -4, 0.25)])
        scores = aggregate_recommendations([output])
        assert scores["TS-1"].score == pytest.approx(4.0)

    def test_reason_format(self):
        output = AgentOutput(agent="optimization", recommendations=[
            rec("TS-1", 15, 0.85, rationale="Low mileage"),
            rec("TS-1", -20, 0.9, action=RecommendationAction.STANDBY, rationale="Expiring"),
        ])
        reasons = aggregate_recommendations([output])["TS-1"].reasons
        assert reasons == [
            "optimization: Low mileage (service +15, conf: 0.85)",
            "optimization: Expiring (standby -20, conf: 0.9)",
        ]

    def test_risk_factor_threshold(self):
        output = AgentOutput(agent="a", recommendations=[
            rec("TS-1", -30, rationale="at threshold"),
            rec("TS-1", -31, rationale="beyond threshold"),
        ])
        assert aggregate_recommendations([output])["TS-1"].risk_factors == ["a: beyond threshold"]

    def test_tags_unioned_without_duplicates(self):
        output = AgentOutput(agent="a", recommendations=[
            rec("TS-1", 1, tags=["x", "y"]),
            rec("TS-1", 1, tags=["y", "z"]),
        ])
        assert aggregate_recommendations([output])["TS-1"].constraint_tags == ["x", "y", "z"]

    def test_fleet_wide_recommendations_ignored(self):
        output = AgentOutput(agent="a", recommendations=[rec(None, 50)])
        assert aggregate_recommendations([output]) == {}

    def test_ties_keep_discovery_order(self):
        first = FixedAgent("first", [rec("TS-B", 5)])
        second = FixedAgent("second", [rec("TS-A", 5)])
        run_input = make_input([make_trainset("TS-A"), make_trainset("TS-B")], max_service=1)
        plan = run_orchestrator(run_input, NOW, agents=[first, second]).plan

        assert [a.trainset_id for a in plan.assignments] == ["TS-B", "TS-A"]
        assert plan.assignment_for("TS-B").role == Role.SERVICE


class TestDeterminism:
    """Test that plans are a function of their inputs."""

    def test_idempotent(self):
        first = run_orchestrator(build_demo_input(NOW), NOW).plan
        second = run_orchestrator(build_demo_input(NOW), NOW).plan

        assert first.id == second.id
        assert [(a.trainset_id, a.role, a.score) for a in first.assignments] == \
            [(a.trainset_id, a.role, a.score) for a in second.assignments]

    def test_parallel_matches_sequential(self):
        sequential = run_orchestrator(build_demo_input(NOW), NOW)
        parallel = run_orchestrator(build_demo_input(NOW), NOW, parallel=True)

        assert [o.agent for o in parallel.agent_outputs] == [o.agent for o in sequential.agent_outputs]
        assert parallel.plan.assignments == sequential.plan.assignments

    def test_plan_id_changes_with_input(self):
        base = build_demo_input(NOW)
        changed = base.model_copy(update={"constraints": base.constraints.model_copy(update={"max_service": 3})})
        assert run_orchestrator(base, NOW).plan.id != run_orchestrator(changed, NOW).plan.id

    def test_input_not_mutated(self):
        run_input = build_demo_input(NOW)
        before = run_input.model_dump()
        run_orchestrator(run_input, NOW)
        assert run_input.model_dump() == before


class TestEmptyFleet:
    """Test the empty-fleet boundary."""

    def test_empty_plan_with_critical_finding(self):
        result = run_orchestrator(make_input([]), NOW)

        assert result.plan.assignments == []
        ingestion = result.agent_outputs[0]
        assert ingestion.agent == "data-ingestion"
        assert any(f.severity == Severity.CRITICAL and f.title == "Fleet Empty" for f in ingestion.findings)


class TestBayAssignment:
    """Test first-fit bay assignment."""

    def test_skips_full_and_wrong_type_bays(self):
        bays = [
            DepotBay(id="MB-1", type=BayType.MAINTENANCE, capacity=1,
                     geometry=BayGeometry(track_number=1, position=0, access_difficulty=1)),
            DepotBay(id="SB-FULL", type=BayType.SERVICE, capacity=1, current_occupancy=1,
                     geometry=BayGeometry(track_number=2, position=0, access_difficulty=1)),
            DepotBay(id="SB-OPEN", type=BayType.SERVICE, capacity=1,
                     geometry=BayGeometry(track_number=3, position=0, access_difficulty=1)),
        ]
        fleet = [make_trainset("TS-1"), make_trainset("TS-2")]
        plan = run_orchestrator(make_input(fleet, max_service=2, depot_bays=bays), NOW, agents=[boost(fleet)]).plan

        assert plan.assignment_for("TS-1").assigned_bay == "SB-OPEN"
        assert plan.assignment_for("TS-2").assigned_bay is None


class TestValidation:
    """Test input validation and agent contract enforcement."""

    def test_duplicate_trainsets_rejected_before_agents(self):
        agent = ExplodingAgent()
        with pytest.raises(InputValidationError, match="Duplicate trainset IDs"):
            run_orchestrator(make_input([make_trainset("TS-1"), make_trainset("TS-1")]), NOW, agents=[agent])

    def test_mixed_timezones_rejected(self):
        naive = make_trainset("TS-1", fitness_valid_until=datetime(2026, 4, 1))
        with pytest.raises(InputValidationError):
            run_orchestrator(make_input([naive]), NOW)

    def test_build_run_input_wraps_schema_errors(self):
        with pytest.raises(InputValidationError) as exc_info:
            build_run_input(
                fleet=[{"id": "TS-1", "km": -5, "fitness_valid_until": NOW.isoformat()}],
                constraints={"min_standby": 1, "max_service": 2, "cleaning_bay_capacity": 1},
            )
        assert exc_info.value.code == "INPUT_INVALID"
        assert any("fleet.0.km" in e for e in exc_info.value.details["errors"])

    def test_build_run_input_missing_constraints(self):
        with pytest.raises(InputValidationError):
            build_run_input(fleet=[], constraints={"min_standby": 1})

    def test_build_run_input_from_dicts(self):
        run_input = build_run_input(
            fleet=[{"id": "TS-1", "km": 5, "fitness_valid_until": NOW.isoformat()}],
            constraints={"min_standby": 1, "max_service": 2, "cleaning_bay_capacity": 1},
        )
        assert run_input.fleet[0].id == "TS-1"
        assert run_input.depot_bays == []

    def test_agent_exception_wrapped(self):
        with pytest.raises(AgentContractError) as exc_info:
            run_orchestrator(make_input([make_trainset("TS-1")]), NOW, agents=[ExplodingAgent()])
        assert exc_info.value.agent == "exploding"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_agent_exception_wrapped_in_parallel(self):
        agents = [FixedAgent("ok", []), ExplodingAgent()]
        with pytest.raises(AgentContractError):
            run_orchestrator(make_input([make_trainset("TS-1")]), NOW, agents=agents, parallel=True)

    def test_non_agent_output_rejected(self):
        with pytest.raises(AgentContractError, match="expected AgentOutput"):
            run_orchestrator(make_input([make_trainset("TS-1")]), NOW, agents=[WrongReturnAgent()])
