"""
Audit Log Module

Append-only, bounded, in-memory audit sink. Entries form a closed tagged
union on `category`:

- plan_generation: role counts, KPI projections, per-agent performance
- supervisor_override: override id, trainset, previous/new role, reason
- data_quality: issue reported by an ingestion source
- system_event: free-form named event
- performance: operation timing and success flag

The log is the compliance record. Entries are never edited; when the bound
is reached the oldest entries are dropped.
"""

import csv
import io
import json
import logging
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from itertools import count
from threading import Lock
from typing import Annotated, Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, Field

from .config import AUDIT_LOG_LIMIT
from .errors import InputValidationError
from .models import (
    AgentOutput,
    DataQualityMetrics,
    InductionPlan,
    KPIProjections,
    Role,
    SupervisorOverride,
)

logger = logging.getLogger(__name__)

RECENT_EVENTS_LIMIT = 10
CSV_COLUMNS = ("id", "timestamp", "action", "user", "details", "severity", "category", "plan_id")


class AuditSeverity(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    CRITICAL = "critical"


class AgentPerformance(BaseModel):
    agent: str
    execution_time_ms: float
    findings_count: int
    recommendations_count: int
    data_quality: DataQualityMetrics


class _AuditLogBase(BaseModel):
    id: str
    timestamp: datetime
    action: str
    user: str = "system"
    details: str
    severity: AuditSeverity = AuditSeverity.INFO
    plan_id: Optional[str] = None


class PlanGenerationLog(_AuditLogBase):
    category: Literal["plan_generation"] = "plan_generation"
    execution_time_ms: float
    service_assignments: int
    standby_assignments: int
    maintenance_assignments: int
    cleaning_scheduled: int
    total_risk_factors: int
    kpi_projections: KPIProjections
    agent_performance: list[AgentPerformance] = Field(default_factory=list)


class SupervisorOverrideLog(_AuditLogBase):
    category: Literal["supervisor_override"] = "supervisor_override"
    override_id: str
    trainset_id: str
    previous_role: Role
    new_role: Role
    reason: str
    approved: bool = True


class DataQualityLog(_AuditLogBase):
    category: Literal["data_quality"] = "data_quality"
    source: str
    trainset_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SystemEventLog(_AuditLogBase):
    category: Literal["system_event"] = "system_event"
    metadata: dict[str, Any] = Field(default_factory=dict)


class PerformanceLog(_AuditLogBase):
    category: Literal["performance"] = "performance"
    operation: str
    execution_time_ms: float
    success: bool
    metadata: dict[str, Any] = Field(default_factory=dict)


AuditLogEntry = Annotated[
    Union[PlanGenerationLog, SupervisorOverrideLog, DataQualityLog, SystemEventLog, PerformanceLog],
    Field(discriminator="category"),
]

AuditCategory = Literal["plan_generation", "supervisor_override", "data_quality", "system_event", "performance"]


class AuditSummary(BaseModel):
    total: int
    by_category: dict[str, int]
    by_severity: dict[str, int]
    by_user: dict[str, int]
    recent_critical_events: list[AuditLogEntry]
    avg_plan_generation_ms: float
    plan_generation_count: int
    override_rate: float
    data_quality_issues: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLog:
    """
    Thread-safe bounded audit sink.

    Args:
        max_entries: retention bound; oldest entries drop first
        clock: timestamp source, injectable for deterministic tests
    """

    def __init__(self, max_entries: int = AUDIT_LOG_LIMIT, clock: Callable[[], datetime] = _utcnow):
        self._entries: deque = deque(maxlen=max_entries)
        self._clock = clock
        self._ids = count(1)
        self._lock = Lock()

    def _append(self, entry_cls: type, **fields: Any) -> _AuditLogBase:
        with self._lock:
            entry = entry_cls(id=f"AUDIT-{next(self._ids):06d}", timestamp=self._clock(), **fields)
            self._entries.append(entry)
        logger.debug("audit %s [%s] %s", entry.id, entry.category, entry.details)
        return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -------------------------------------------------------------------------
    # Writers
    # -------------------------------------------------------------------------

    def log_plan_generation(
        self,
        plan: InductionPlan,
        agent_outputs: list[AgentOutput],
        execution_time_ms: float,
        user: str = "system",
    ) -> PlanGenerationLog:
        counts = plan.role_counts()
        return self._append(
            PlanGenerationLog,
            action="plan_generated",
            user=user,
            plan_id=plan.id,
            details=f"Generated induction plan with {len(plan.assignments)} assignments",
            execution_time_ms=execution_time_ms,
            service_assignments=counts[Role.SERVICE],
            standby_assignments=counts[Role.STANDBY],
            maintenance_assignments=counts[Role.MAINTENANCE],
            cleaning_scheduled=sum(1 for a in plan.assignments if a.cleaning_scheduled),
            total_risk_factors=sum(len(a.risk_factors) for a in plan.assignments),
            kpi_projections=plan.kpi_projections,
            agent_performance=[
                AgentPerformance(
                    agent=o.agent,
                    execution_time_ms=o.execution_time_ms,
                    findings_count=len(o.findings),
                    recommendations_count=len(o.recommendations),
                    data_quality=o.data_quality,
                )
                for o in agent_outputs
            ],
        )

    def log_supervisor_override(self, override: SupervisorOverride) -> SupervisorOverrideLog:
        previous = override.original_assignment.role
        new = override.override_assignment.role
        return self._append(
            SupervisorOverrideLog,
            action="supervisor_override",
            user=override.supervisor,
            plan_id=override.plan_id,
            severity=AuditSeverity.WARN,
            details=f"Override for {override.trainset_id}: {previous.value} -> {new.value}",
            override_id=override.id,
            trainset_id=override.trainset_id,
            previous_role=previous,
            new_role=new,
            reason=override.reason,
            approved=override.approved,
        )

    def log_data_quality_issue(
        self,
        source: str,
        issue: str,
        severity: AuditSeverity = AuditSeverity.WARN,
        trainset_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> DataQualityLog:
        return self._append(
            DataQualityLog,
            action="data_quality_issue",
            severity=severity,
            details=f"Data quality issue from {source}: {issue}",
            source=source,
            trainset_id=trainset_id,
            metadata=dict(metadata or {}),
        )

    def log_system_event(
        self,
        event: str,
        details: str,
        severity: AuditSeverity = AuditSeverity.INFO,
        plan_id: Optional[str] = None,
        user: str = "system",
        metadata: Optional[dict[str, Any]] = None,
    ) -> SystemEventLog:
        return self._append(
            SystemEventLog,
            action=event,
            user=user,
            plan_id=plan_id,
            severity=severity,
            details=details,
            metadata=dict(metadata or {}),
        )

    def log_performance(
        self,
        operation: str,
        execution_time_ms: float,
        success: bool,
        details: str = "",
        metadata: Optional[dict[str, Any]] = None,
    ) -> PerformanceLog:
        outcome = "SUCCESS" if success else "FAILURE"
        suffix = f" - {details}" if details else ""
        return self._append(
            PerformanceLog,
            action="performance_metric",
            severity=AuditSeverity.INFO if success else AuditSeverity.ERROR,
            details=f"{operation}: {outcome} ({execution_time_ms:.2f}ms){suffix}",
            operation=operation,
            execution_time_ms=execution_time_ms,
            success=success,
            metadata=dict(metadata or {}),
        )

    # -------------------------------------------------------------------------
    # Readers
    # -------------------------------------------------------------------------

    def entries(
        self,
        plan_id: Optional[str] = None,
        category: Optional[str] = None,
        severity: Optional[AuditSeverity] = None,
        user: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[AuditLogEntry]:
        """Filtered entries, newest first (ties keep newest-appended first)."""
        with self._lock:
            snapshot = list(self._entries)

        selected = [
            e for e in reversed(snapshot)
            if (plan_id is None or e.plan_id == plan_id)
            and (category is None or e.category == category)
            and (severity is None or e.severity == severity)
            and (user is None or e.user == user)
            and (since is None or e.timestamp >= since)
            and (until is None or e.timestamp <= until)
        ]
        selected.sort(key=lambda e: e.timestamp, reverse=True)
        if limit is not None:
            selected = selected[:limit]
        return [e.model_copy(deep=True) for e in selected]

    def summary(self, since: Optional[datetime] = None, until: Optional[datetime] = None) -> AuditSummary:
        logs = self.entries(since=since, until=until)

        by_category: dict[str, int] = {}
        by_severity: dict[str, int] = {}
        by_user: dict[str, int] = {}
        for e in logs:
            by_category[e.category] = by_category.get(e.category, 0) + 1
            by_severity[e.severity.value] = by_severity.get(e.severity.value, 0) + 1
            by_user[e.user] = by_user.get(e.user, 0) + 1

        generations = [e for e in logs if isinstance(e, PlanGenerationLog)]
        overrides = [e for e in logs if isinstance(e, SupervisorOverrideLog)]
        avg_generation = (
            sum(e.execution_time_ms for e in generations) / len(generations) if generations else 0.0
        )

        return AuditSummary(
            total=len(logs),
            by_category=by_category,
            by_severity=by_severity,
            by_user=by_user,
            recent_critical_events=[
                e for e in logs if e.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL)
            ][:RECENT_EVENTS_LIMIT],
            avg_plan_generation_ms=avg_generation,
            plan_generation_count=len(generations),
            override_rate=len(overrides) / len(generations) if generations else 0.0,
            data_quality_issues=by_category.get("data_quality", 0),
        )

    def export(
        self,
        format: str = "json",
        plan_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> str:
        """
        Export entries for compliance reporting.

        json: full entries as a JSON array. csv: the common columns only.

        Raises:
            InputValidationError: unsupported format
        """
        logs = self.entries(plan_id=plan_id, since=since, until=until)

        if format == "json":
            return json.dumps([e.model_dump(mode="json") for e in logs], indent=2)
        if format == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(CSV_COLUMNS)
            for e in logs:
                writer.writerow([
                    e.id,
                    e.timestamp.isoformat(),
                    e.action,
                    e.user,
                    e.details,
                    e.severity.value,
                    e.category,
                    e.plan_id or "",
                ])
            return buffer.getvalue()
        raise InputValidationError(f"Unsupported export format: {format!r}", {"format": format})

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("audit log cleared")
