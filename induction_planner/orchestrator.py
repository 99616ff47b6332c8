"""
Orchestrator module - runs the scoring agents and turns their recommendations
into an induction plan.

Pipeline:
1. Validate the run input (before any agent runs)
2. Execute agents in the fixed sequence (optionally on a thread pool, joined
   and kept in sequence order)
3. Aggregate: score += weight x confidence per trainset, collect reasons,
   constraint tags and risk factors
4. Stable sort by score (ties keep discovery order)
5. Greedy role assignment under capacity constraints, forced maintenance first
6. Cleaning flag, readiness estimate, first-fit bay
7. KPI projections
8. Emit a pending InductionPlan with a one-entry audit trail

The orchestrator is pure: it reads its inputs, never persists anything, and
the same inputs with the same `now` give the same plan.
"""

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import ValidationError

from .agents import (
    TAG_CLEANING_SCHEDULED,
    TAG_CRITICAL_SYSTEM,
    TAG_FITNESS_EXPIRED,
    AgentContext,
    ScoringAgent,
    default_agents,
)
from .config import RISK_WEIGHT_THRESHOLD, SERVICE_SCORE_FLOOR
from .data_provider import DataProvider, NullDataProvider
from .errors import AgentContractError, InputValidationError
from .metrics import compute_kpi_projections
from .models import (
    AgentOutput,
    DepotBay,
    GlobalConstraints,
    InductionAssignment,
    InductionPlan,
    OrchestratorRunInput,
    PlanGeneratedEntry,
    Role,
    StablingPlan,
)

logger = logging.getLogger(__name__)

# Tags that force maintenance regardless of score or remaining capacity
FORCED_MAINTENANCE_TAGS = frozenset({TAG_FITNESS_EXPIRED, TAG_CRITICAL_SYSTEM})

MAINTENANCE_READINESS = timedelta(hours=8)
DEFAULT_READINESS = timedelta(hours=2)


@dataclass
class OrchestratorResult:
    agent_outputs: list[AgentOutput]
    plan: InductionPlan


@dataclass
class TrainsetScore:
    """Running aggregate for one trainset."""
    trainset_id: str
    score: float = 0.0
    reasons: list[str] = field(default_factory=list)
    constraint_tags: list[str] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def _format_validation_errors(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


def build_run_input(
    fleet: list[Any],
    constraints: Any,
    depot_bays: Optional[list[Any]] = None,
) -> OrchestratorRunInput:
    """
    Build and validate an OrchestratorRunInput from models or plain dicts.

    Raises:
        InputValidationError: on any schema violation or duplicate ID
    """
    try:
        run_input = OrchestratorRunInput.model_validate(
            {"fleet": fleet, "constraints": constraints, "depot_bays": depot_bays or []}
        )
    except ValidationError as exc:
        errors = _format_validation_errors(exc)
        raise InputValidationError(
            f"Invalid planning input: {len(errors)} error(s)", {"errors": errors}
        ) from exc
    validate_run_input(run_input)
    return run_input


def validate_run_input(run_input: OrchestratorRunInput, now: Optional[datetime] = None) -> None:
    """
    Cross-entity checks that field validators cannot express.

    Raises:
        InputValidationError: duplicate IDs, or timestamps mixing naive and aware values
    """
    try:
        run_input.validate_unique_ids()
    except ValueError as exc:
        raise InputValidationError(str(exc)) from exc

    if now is None:
        return
    aware = now.tzinfo is not None
    for ts in run_input.fleet:
        stamps = [ts.fitness_valid_until, ts.last_cleaning_date]
        for stamp in stamps:
            if stamp is not None and (stamp.tzinfo is not None) != aware:
                raise InputValidationError(
                    f"Trainset {ts.id} mixes timezone-aware and naive timestamps with the planning time",
                    {"trainset_id": ts.id},
                )


# =============================================================================
# AGENT EXECUTION
# =============================================================================

def _run_agent(agent: ScoringAgent, ctx: AgentContext) -> AgentOutput:
    name = getattr(agent, "name", type(agent).__name__)
    try:
        output = agent.run(ctx)
    except Exception as exc:
        raise AgentContractError(name, f"raised {type(exc).__name__}: {exc}") from exc
    if not isinstance(output, AgentOutput):
        raise AgentContractError(name, f"returned {type(output).__name__}, expected AgentOutput")
    logger.debug(
        "agent %s: %d findings, %d recommendations in %.2fms",
        name, len(output.findings), len(output.recommendations), output.execution_time_ms,
    )
    return output


def run_agents(agents: list[ScoringAgent], ctx: AgentContext, parallel: bool = False) -> list[AgentOutput]:
    """
    Run every agent against the same context and return outputs in agent order.

    With parallel=True the agents run on a thread pool; the join collects
    results in submission order so findings and reasons stay reproducible.
    """
    if not parallel or len(agents) < 2:
        return [_run_agent(agent, ctx) for agent in agents]
    with ThreadPoolExecutor(max_workers=len(agents)) as pool:
        futures = [pool.submit(_run_agent, agent, ctx) for agent in agents]
        return [f.result() for f in futures]


# =============================================================================
# AGGREGATION & ASSIGNMENT
# =============================================================================

def _format_weight(weight: float) -> str:
    return f"{'+' if weight > 0 else ''}{weight:g}"


def aggregate_recommendations(agent_outputs: list[AgentOutput]) -> dict[str, TrainsetScore]:
    """
    Fold trainset-level recommendations into per-trainset scores.

    Fleet-wide recommendations (no trainset_id) are ignored. The returned dict
    keeps discovery order: the first agent to mention a trainset places it.
    Trainsets no agent mentioned get no entry and stay out of the plan.
    """
    scores: dict[str, TrainsetScore] = {}
    for output in agent_outputs:
        for rec in output.recommendations:
            if not rec.trainset_id:
                continue
            entry = scores.setdefault(rec.trainset_id, TrainsetScore(trainset_id=rec.trainset_id))
            entry.score += rec.weight * rec.confidence
            entry.reasons.append(
                f"{output.agent}: {rec.rationale} "
                f"({rec.action.value} {_format_weight(rec.weight)}, conf: {rec.confidence:g})"
            )
            for tag in rec.constraints:
                if tag not in entry.constraint_tags:
                    entry.constraint_tags.append(tag)
            if rec.weight < RISK_WEIGHT_THRESHOLD:
                entry.risk_factors.append(f"{output.agent}: {rec.rationale}")
    return scores


def rank_trainsets(scores: dict[str, TrainsetScore]) -> list[TrainsetScore]:
    """Highest score first; Python's sort is stable so ties keep discovery order."""
    return sorted(scores.values(), key=lambda s: -s.score)


def assign_roles(
    ranked: list[TrainsetScore],
    constraints: GlobalConstraints,
    depot_bays: list[DepotBay],
    now: datetime,
) -> list[InductionAssignment]:
    """
    Greedy single-pass allocator.

    In ranked order:
    - forced tags (expired fitness, critical system failure) -> maintenance
    - else service while service slots remain and score > SERVICE_SCORE_FLOOR
    - else standby while fewer than max(1, min_standby) are on standby
    - else maintenance

    Bays are first-fit by matching type, tracking occupancy within the plan.
    """
    service_count = 0
    standby_count = 0
    standby_slots = max(1, constraints.min_standby)
    free = {b.id: b.capacity - b.current_occupancy for b in depot_bays}

    assignments: list[InductionAssignment] = []
    for entry in ranked:
        if FORCED_MAINTENANCE_TAGS.intersection(entry.constraint_tags):
            role = Role.MAINTENANCE
        elif service_count < constraints.max_service and entry.score > SERVICE_SCORE_FLOOR:
            role = Role.SERVICE
            service_count += 1
        elif standby_count < standby_slots:
            role = Role.STANDBY
            standby_count += 1
        else:
            role = Role.MAINTENANCE

        assigned_bay = None
        for bay in depot_bays:
            if bay.type.value == role.value and free[bay.id] > 0:
                assigned_bay = bay.id
                free[bay.id] -= 1
                break

        readiness = now + (MAINTENANCE_READINESS if role == Role.MAINTENANCE else DEFAULT_READINESS)

        assignments.append(InductionAssignment(
            trainset_id=entry.trainset_id,
            role=role,
            score=entry.score,
            reasons=list(entry.reasons),
            assigned_bay=assigned_bay,
            cleaning_scheduled=TAG_CLEANING_SCHEDULED in entry.constraint_tags,
            estimated_readiness=readiness,
            risk_factors=list(entry.risk_factors),
            constraint_tags=list(entry.constraint_tags),
        ))
    return assignments


def plan_id_for(run_input: OrchestratorRunInput, now: datetime) -> str:
    """Deterministic plan ID: planning time in epoch ms plus a digest of the inputs."""
    digest = hashlib.sha1(run_input.model_dump_json().encode("utf-8")).hexdigest()[:8]
    return f"PLAN-{int(now.timestamp() * 1000)}-{digest}"


def _stabling_plan(agent_outputs: list[AgentOutput]) -> Optional[StablingPlan]:
    return next((o.stabling_plan for o in agent_outputs if o.stabling_plan is not None), None)


# =============================================================================
# ENTRYPOINT
# =============================================================================

def run_orchestrator(
    run_input: OrchestratorRunInput,
    now: datetime,
    data_provider: Optional[DataProvider] = None,
    agents: Optional[list[ScoringAgent]] = None,
    parallel: bool = False,
    prior_plans: Optional[list[InductionPlan]] = None,
) -> OrchestratorResult:
    """
    Generate an induction plan.

    Args:
        run_input: fleet, constraints and depot bays (not mutated)
        now: planning time; every timestamp in the plan derives from it
        data_provider: external data (job cards, sensors, operator messages); none by default
        agents: agent instances in execution order; the default sequence if omitted
        parallel: run agents on a thread pool
        prior_plans: earlier plans for the feedback agent

    Returns:
        OrchestratorResult with agent outputs (in agent order) and the pending plan

    Raises:
        InputValidationError: if the input fails cross-entity validation
        AgentContractError: if an agent raises or returns a non-AgentOutput
    """
    validate_run_input(run_input, now)

    ctx = AgentContext(
        fleet=run_input.fleet,
        constraints=run_input.constraints,
        depot_bays=run_input.depot_bays,
        now=now,
        data_provider=data_provider or NullDataProvider(),
        prior_plans=list(prior_plans or []),
    )
    agent_outputs = run_agents(agents if agents is not None else default_agents(), ctx, parallel)

    scores = aggregate_recommendations(agent_outputs)
    ranked = rank_trainsets(scores)
    assignments = assign_roles(ranked, run_input.constraints, run_input.depot_bays, now)

    stabling = _stabling_plan(agent_outputs)
    shunting_moves = stabling.total_moves if stabling else 0
    kpi_projections = compute_kpi_projections(assignments, run_input.fleet, run_input.constraints, shunting_moves)

    service_count = sum(1 for a in assignments if a.role == Role.SERVICE)
    standby_count = sum(1 for a in assignments if a.role == Role.STANDBY)
    constraints = run_input.constraints

    plan = InductionPlan(
        id=plan_id_for(run_input, now),
        generated_at=now,
        assignments=assignments,
        objective_notes=[
            "Multi-objective optimization balancing punctuality, mileage, branding SLA, and energy efficiency.",
            f"Service: {service_count}/{constraints.max_service}, "
            f"Standby: {standby_count}/{max(1, constraints.min_standby)}",
            f"Cleaning scheduled: {sum(1 for a in assignments if a.cleaning_scheduled)} trainsets",
            f"Risk factors identified: {sum(len(a.risk_factors) for a in assignments)} total",
            f"Shunting moves planned: {shunting_moves}/{constraints.max_shunting_moves}",
        ],
        kpi_projections=kpi_projections,
        constraints=constraints.model_copy(),
        audit_trail=[
            PlanGeneratedEntry(
                timestamp=now,
                user="system",
                details=(
                    f"Generated induction plan for {len(run_input.fleet)} trainsets "
                    f"with {len(assignments)} assignments"
                ),
                assignment_count=len(assignments),
            )
        ],
    )

    logger.info(
        "plan %s: %d assignments (service=%d standby=%d maintenance=%d) for %d trainsets",
        plan.id, len(assignments), service_count, standby_count,
        len(assignments) - service_count - standby_count, len(run_input.fleet),
    )

    return OrchestratorResult(agent_outputs=agent_outputs, plan=plan)
