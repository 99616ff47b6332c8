"""
Scoring Agents

Each agent inspects the same read-only fleet snapshot and emits findings plus
weighted recommendations. Agents share no mutable state, so they can run in
any order or in parallel; the orchestrator fixes the order for reproducible
reason strings.

1. DataIngestionAgent: snapshot completeness/freshness, operator priority messages
2. ConstraintEnforcementAgent: fitness certificates, critical work orders, system health
3. OptimizationAgent: mileage balance, branding hours, component wear, depot access
4. CleaningStablingAgent: cleaning slot allocation and the stabling plan
5. SimulationReadinessAgent: status only
6. FeedbackAgent: status only, reviews prior plans when given

All agents are total over valid input: they never raise for a well-formed
AgentContext.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from .config import CONSISTENCY_FLOOR, FITNESS_EXPIRY_WARNING_DAYS, STALE_DATA_MINUTES
from .data_provider import DataProvider, NullDataProvider
from .models import (
    AgentFinding,
    AgentOutput,
    AgentRecommendation,
    DataQualityMetrics,
    DepotBay,
    GlobalConstraints,
    InductionPlan,
    OverrideAppliedEntry,
    RecommendationAction,
    Severity,
    TrainsetSnapshot,
)
from .stabling import HARD_ACCESS_THRESHOLD, plan_stabling

logger = logging.getLogger(__name__)

# Constraint tags shared with the orchestrator
TAG_FITNESS_EXPIRED = "fitness_certificate_expired"
TAG_FITNESS_EXPIRING = "fitness_certificate_expiring"
TAG_CRITICAL_MAINTENANCE = "critical_maintenance_pending"
TAG_CRITICAL_SYSTEM = "critical_system_failure"
TAG_CLEANING_SCHEDULED = "cleaning_scheduled"
TAG_OPERATOR_PRIORITY = "operator_priority"

# Actions that pull a trainset away from revenue service
_NON_SERVICE_ACTIONS = {
    RecommendationAction.EXCLUDE,
    RecommendationAction.STANDBY,
    RecommendationAction.MAINTENANCE,
    RecommendationAction.CLEANING,
}


@dataclass(frozen=True)
class AgentContext:
    """Read-only input shared by every agent in one planning run."""
    fleet: list[TrainsetSnapshot]
    constraints: GlobalConstraints
    depot_bays: list[DepotBay]
    now: datetime
    data_provider: DataProvider = field(default_factory=NullDataProvider)
    prior_plans: list[InductionPlan] = field(default_factory=list)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


def _finding(
    ctx: AgentContext,
    source: str,
    title: str,
    message: str,
    severity: Severity,
    trainset_id: Optional[str] = None,
) -> AgentFinding:
    return AgentFinding(
        title=title,
        message=message,
        severity=severity,
        timestamp=ctx.now,
        source=source,
        trainset_id=trainset_id,
    )


def fleet_completeness(fleet: list[TrainsetSnapshot]) -> float:
    """Share of trainsets carrying both subsystem health and an inspected wear record."""
    if not fleet:
        return 0.0
    complete = [
        ts for ts in fleet
        if ts.system_health.statuses and ts.component_wear.last_inspection is not None
    ]
    return len(complete) / len(fleet)


def snapshot_quality(ctx: AgentContext) -> DataQualityMetrics:
    """Provider-reported quality, with completeness capped by what the fleet actually carries."""
    quality = ctx.data_provider.data_quality()
    return quality.model_copy(
        update={"completeness": min(quality.completeness, fleet_completeness(ctx.fleet))}
    )


class ScoringAgent:
    """Base class. Subclasses set `name` and implement run()."""

    name = "agent"

    def run(self, ctx: AgentContext) -> AgentOutput:
        raise NotImplementedError


class DataIngestionAgent(ScoringAgent):
    """
    Validates the snapshot and surfaces operator-submitted priority messages.

    - critical finding when the fleet is empty
    - warn when data is staler than STALE_DATA_MINUTES
    - warn when cross-source consistency is below CONSISTENCY_FLOOR
    - warn per abnormal sensor reading and per reference to an unknown trainset
    - one recommendation per operator message on a known trainset
    """

    name = "data-ingestion"

    def run(self, ctx: AgentContext) -> AgentOutput:
        start = time.perf_counter()
        findings: list[AgentFinding] = []
        recommendations: list[AgentRecommendation] = []
        quality = snapshot_quality(ctx)
        fleet_ids = {ts.id for ts in ctx.fleet}

        if not ctx.fleet:
            findings.append(_finding(
                ctx, self.name, "Fleet Empty", "No trainsets available in snapshot.", Severity.CRITICAL
            ))
        else:
            findings.append(_finding(
                ctx, self.name, "Fleet Data Loaded",
                f"{len(ctx.fleet)} trainsets available with {quality.completeness * 100:.0f}% data completeness.",
                Severity.INFO,
            ))

        if quality.freshness > STALE_DATA_MINUTES:
            findings.append(_finding(
                ctx, self.name, "Stale Data Warning",
                f"Data is {quality.freshness:.0f} minutes old. Consider refreshing data sources.",
                Severity.WARN,
            ))

        if quality.consistency < CONSISTENCY_FLOOR:
            findings.append(_finding(
                ctx, self.name, "Data Consistency Issues",
                f"Data consistency score: {quality.consistency:.2f}. Cross-reference validation needed.",
                Severity.WARN,
            ))

        for reading in ctx.data_provider.sensor_readings():
            if reading.trainset_id not in fleet_ids:
                findings.append(_finding(
                    ctx, self.name, "Unknown trainset reference",
                    f"Sensor reading {reading.sensor_type} names trainset {reading.trainset_id}, not in snapshot",
                    Severity.WARN, reading.trainset_id,
                ))
            elif reading.status != "normal":
                findings.append(_finding(
                    ctx, self.name, f"Sensor anomaly: {reading.trainset_id}",
                    f"{reading.sensor_type} at {reading.location or 'unknown location'} reads "
                    f"{reading.value} {reading.unit} ({reading.status})",
                    Severity.WARN, reading.trainset_id,
                ))

        for card in ctx.data_provider.job_cards():
            if card.trainset_id not in fleet_ids:
                findings.append(_finding(
                    ctx, self.name, "Unknown trainset reference",
                    f"Job card {card.work_order_id} names trainset {card.trainset_id}, not in snapshot",
                    Severity.WARN, card.trainset_id,
                ))

        for msg in ctx.data_provider.operator_messages():
            if msg.trainset_id not in fleet_ids:
                findings.append(_finding(
                    ctx, self.name, "Unknown trainset reference",
                    f"Operator message {msg.message_id} names trainset {msg.trainset_id}, not in snapshot",
                    Severity.WARN, msg.trainset_id,
                ))
                continue
            sign = -1 if msg.action in _NON_SERVICE_ACTIONS else 1
            recommendations.append(AgentRecommendation(
                trainset_id=msg.trainset_id,
                action=msg.action,
                weight=sign * float(msg.priority),
                rationale=f"Operator update from {msg.author}: {msg.details}",
                confidence=msg.priority / 10,
                constraints=[TAG_OPERATOR_PRIORITY],
            ))

        return AgentOutput(
            agent=self.name,
            findings=findings,
            recommendations=recommendations,
            execution_time_ms=_elapsed_ms(start),
            data_quality=quality,
        )


class ConstraintEnforcementAgent(ScoringAgent):
    """Hard operating rules: fitness certificates, critical work orders, system health, cleaning capacity."""

    name = "constraint-enforcement"

    def run(self, ctx: AgentContext) -> AgentOutput:
        start = time.perf_counter()
        findings: list[AgentFinding] = []
        recommendations: list[AgentRecommendation] = []
        warning_window = timedelta(days=FITNESS_EXPIRY_WARNING_DAYS)

        for ts in ctx.fleet:
            expires_in = ts.fitness_valid_until - ctx.now
            if expires_in < timedelta(0):
                recommendations.append(AgentRecommendation(
                    trainset_id=ts.id,
                    action=RecommendationAction.EXCLUDE,
                    weight=-100,
                    rationale="Fitness certificate expired",
                    confidence=1.0,
                    constraints=[TAG_FITNESS_EXPIRED],
                ))
                findings.append(_finding(
                    ctx, self.name, f"Expired fitness: {ts.id}",
                    f"Trainset {ts.id} has expired fitness certificate", Severity.CRITICAL, ts.id,
                ))
            elif expires_in <= warning_window:
                recommendations.append(AgentRecommendation(
                    trainset_id=ts.id,
                    action=RecommendationAction.STANDBY,
                    weight=-20,
                    rationale=f"Fitness expiring soon (<{FITNESS_EXPIRY_WARNING_DAYS}d)",
                    confidence=0.9,
                    constraints=[TAG_FITNESS_EXPIRING],
                ))
                findings.append(_finding(
                    ctx, self.name, f"Expiring fitness: {ts.id}",
                    f"Trainset {ts.id} fitness expiring in <= {FITNESS_EXPIRY_WARNING_DAYS} days",
                    Severity.WARN, ts.id,
                ))

            critical_orders = ts.critical_work_orders()
            if critical_orders:
                recommendations.append(AgentRecommendation(
                    trainset_id=ts.id,
                    action=RecommendationAction.MAINTENANCE,
                    weight=-50 * len(critical_orders),
                    rationale=f"{len(critical_orders)} critical work order(s) must be completed",
                    confidence=1.0,
                    constraints=[TAG_CRITICAL_MAINTENANCE],
                ))
                findings.append(_finding(
                    ctx, self.name, f"Critical maintenance: {ts.id}",
                    f"{len(critical_orders)} critical work orders pending", Severity.CRITICAL, ts.id,
                ))

            critical_systems = ts.critical_systems()
            if critical_systems:
                names = ", ".join(s.value for s in critical_systems)
                recommendations.append(AgentRecommendation(
                    trainset_id=ts.id,
                    action=RecommendationAction.EXCLUDE,
                    weight=-80,
                    rationale=f"Critical system failures: {names}",
                    confidence=1.0,
                    constraints=[TAG_CRITICAL_SYSTEM],
                ))
                findings.append(_finding(
                    ctx, self.name, f"System failure: {ts.id}",
                    f"Critical failures in: {names}", Severity.CRITICAL, ts.id,
                ))

        needing_cleaning = [ts for ts in ctx.fleet if ts.cleaning_required]
        if len(needing_cleaning) > ctx.constraints.cleaning_bay_capacity:
            findings.append(_finding(
                ctx, self.name, "Cleaning capacity constraint",
                f"{len(needing_cleaning)} trainsets need cleaning, but only "
                f"{ctx.constraints.cleaning_bay_capacity} bays available",
                Severity.WARN,
            ))

        return AgentOutput(
            agent=self.name,
            findings=findings,
            recommendations=recommendations,
            execution_time_ms=_elapsed_ms(start),
            data_quality=snapshot_quality(ctx),
        )


class OptimizationAgent(ScoringAgent):
    """
    Multi-objective scorer.

    Per trainset, sums:
    - mileage balance: +/-15 when |km - fleet average| exceeds the threshold
      (below average pushes toward service, above toward standby)
    - branding: +25 when more than 20 committed hours remain
    - component wear: -20 when the four-component average exceeds 80%
    - depot access: -10 when the current bay is rated harder than 7

    Emits a recommendation only for a non-zero total.
    """

    name = "optimization"

    def run(self, ctx: AgentContext) -> AgentOutput:
        start = time.perf_counter()
        recommendations: list[AgentRecommendation] = []
        bays = {b.id: b for b in ctx.depot_bays}
        avg_km = sum(ts.km for ts in ctx.fleet) / max(1, len(ctx.fleet))

        for ts in ctx.fleet:
            total = 0.0
            reasons: list[str] = []

            delta = ts.km - avg_km
            if abs(delta) > ctx.constraints.mileage_balance_threshold:
                if delta > 0:
                    total -= 15
                    reasons.append(f"High mileage (+{round(delta / 1000)}k km above average)")
                else:
                    total += 15
                    reasons.append(f"Low mileage ({round(-delta / 1000)}k km below average)")

            branding_hours = ts.branding_hours_remaining()
            if branding_hours > 20:
                total += 25
                reasons.append(f"High branding commitment ({branding_hours:g}h remaining)")

            avg_wear = ts.average_wear()
            if avg_wear > 80:
                total -= 20
                reasons.append(f"High component wear ({avg_wear:.1f}% average)")

            bay = bays.get(ts.current_location) if ts.current_location else None
            if bay is not None and bay.geometry.access_difficulty > HARD_ACCESS_THRESHOLD:
                total -= 10
                reasons.append(f"Difficult depot access (complexity: {bay.geometry.access_difficulty})")

            if total != 0:
                recommendations.append(AgentRecommendation(
                    trainset_id=ts.id,
                    action=RecommendationAction.SERVICE if total > 0 else RecommendationAction.STANDBY,
                    weight=total,
                    rationale="; ".join(reasons),
                    confidence=min(0.95, 0.7 + abs(total) / 100),
                    constraints=[],
                ))

        findings = [_finding(
            ctx, self.name, "Multi-objective optimization completed",
            f"Analyzed {len(ctx.fleet)} trainsets across mileage, branding, wear, and efficiency objectives",
            Severity.INFO,
        )]

        logger.debug("OptimizationAgent: %d recommendations, fleet avg %.0f km", len(recommendations), avg_km)

        return AgentOutput(
            agent=self.name,
            findings=findings,
            recommendations=recommendations,
            execution_time_ms=_elapsed_ms(start),
            data_quality=snapshot_quality(ctx),
        )


def days_since_clean(ts: TrainsetSnapshot, now: datetime) -> int:
    """Whole days since the last cleaning; 0 when unknown or in the future."""
    if ts.last_cleaning_date is None:
        return 0
    return max(0, (now - ts.last_cleaning_date) // timedelta(days=1))


class CleaningStablingAgent(ScoringAgent):
    """
    Allocates cleaning slots and proposes the night's stabling plan.

    Cleaning priority is 2 x days since last clean + remaining branding hours,
    highest first (ties keep fleet order). Slots are limited by
    cleaning_bay_capacity; everything beyond gets a deferral finding only.
    """

    name = "cleaning-stabling"

    def run(self, ctx: AgentContext) -> AgentOutput:
        start = time.perf_counter()
        findings: list[AgentFinding] = []
        recommendations: list[AgentRecommendation] = []

        ranked = sorted(
            (ts for ts in ctx.fleet if ts.cleaning_required),
            key=lambda ts: -(2 * days_since_clean(ts, ctx.now) + ts.branding_hours_remaining()),
        )

        scheduled: set[str] = set()
        for ts in ranked:
            days = days_since_clean(ts, ctx.now)
            if len(scheduled) < ctx.constraints.cleaning_bay_capacity:
                recommendations.append(AgentRecommendation(
                    trainset_id=ts.id,
                    action=RecommendationAction.CLEANING,
                    weight=-20 - days,
                    rationale=f"Scheduled for cleaning ({days} days since last clean)",
                    confidence=0.95,
                    constraints=[TAG_CLEANING_SCHEDULED],
                ))
                scheduled.add(ts.id)
            else:
                findings.append(_finding(
                    ctx, self.name, f"Cleaning deferred: {ts.id}",
                    "Cleaning needed but deferred, no capacity available",
                    Severity.WARN, ts.id,
                ))

        stabling = plan_stabling(ctx.fleet, ctx.depot_bays, scheduled, ctx.constraints.max_shunting_moves)
        findings.append(_finding(
            ctx, self.name, "Stabling optimization completed",
            f"Optimized bay assignments for {len(ctx.fleet)} trainsets with "
            f"{stabling.total_moves} shunting moves ({len(stabling.deferred)} deferred)",
            Severity.INFO,
        ))

        return AgentOutput(
            agent=self.name,
            findings=findings,
            recommendations=recommendations,
            execution_time_ms=_elapsed_ms(start),
            data_quality=snapshot_quality(ctx),
            stabling_plan=stabling,
        )


class SimulationReadinessAgent(ScoringAgent):
    name = "simulation"

    def run(self, ctx: AgentContext) -> AgentOutput:
        start = time.perf_counter()
        findings = [_finding(
            ctx, self.name, "Simulation capability ready",
            "What-if simulation engine initialized and ready for scenario testing",
            Severity.INFO,
        )]
        return AgentOutput(
            agent=self.name,
            findings=findings,
            execution_time_ms=_elapsed_ms(start),
            data_quality=snapshot_quality(ctx),
        )


class FeedbackAgent(ScoringAgent):
    """Extension point for learning from supervisor overrides. Never affects scores."""

    name = "feedback"

    def run(self, ctx: AgentContext) -> AgentOutput:
        start = time.perf_counter()
        findings = [_finding(
            ctx, self.name, "Feedback system active",
            "Monitoring supervisor overrides and plan effectiveness for continuous improvement",
            Severity.INFO,
        )]
        if ctx.prior_plans:
            overrides = sum(
                1 for plan in ctx.prior_plans
                for entry in plan.audit_trail
                if isinstance(entry, OverrideAppliedEntry)
            )
            findings.append(_finding(
                ctx, self.name, "Prior plans reviewed",
                f"{len(ctx.prior_plans)} prior plans reviewed, {overrides} supervisor overrides recorded",
                Severity.INFO,
            ))
        return AgentOutput(
            agent=self.name,
            findings=findings,
            execution_time_ms=_elapsed_ms(start),
            data_quality=snapshot_quality(ctx),
        )


DEFAULT_AGENT_SEQUENCE: tuple[type[ScoringAgent], ...] = (
    DataIngestionAgent,
    ConstraintEnforcementAgent,
    OptimizationAgent,
    CleaningStablingAgent,
    SimulationReadinessAgent,
    FeedbackAgent,
)


def default_agents() -> list[ScoringAgent]:
    return [agent_cls() for agent_cls in DEFAULT_AGENT_SEQUENCE]
