"""
Plan Store

Holds the current plan, a bounded history of published plans and the
supervisor overrides applied to them. Every mutation builds a new plan object
and swaps it in under one lock, so readers never see a partial write and a
failed operation leaves the store untouched.

Approval workflow:
    pending  -> modified   (override, repeatable)
    pending  -> approved
    modified -> approved
    pending  -> rejected
    modified -> rejected
Nothing leaves approved or rejected.
"""

import logging
from datetime import datetime
from threading import Lock
from typing import Optional, Union

from .audit import AuditLog, AuditSeverity
from .config import PLAN_HISTORY_LIMIT
from .errors import (
    InputValidationError,
    InvalidTransitionError,
    PlanNotFoundError,
    TrainsetNotFoundError,
)
from .models import (
    ApprovalStatus,
    InductionPlan,
    OverrideAppliedEntry,
    PlanApprovedEntry,
    PlanRejectedEntry,
    Role,
    SupervisorOverride,
)

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (ApprovalStatus.PENDING, ApprovalStatus.MODIFIED)


class PlanStore:
    """
    In-memory plan store.

    Args:
        history_limit: number of published plans kept (oldest dropped first)
        audit_log: optional sink for overrides and approval events
    """

    def __init__(self, history_limit: int = PLAN_HISTORY_LIMIT, audit_log: Optional[AuditLog] = None):
        if history_limit < 1:
            raise ValueError("history_limit must be >= 1")
        self.history_limit = history_limit
        self.audit_log = audit_log
        self._current: Optional[InductionPlan] = None
        self._history: list[InductionPlan] = []
        self._overrides: list[SupervisorOverride] = []
        self._lock = Lock()

    # -------------------------------------------------------------------------
    # Internal helpers (call with the lock held)
    # -------------------------------------------------------------------------

    def _find_locked(self, plan_id: str) -> InductionPlan:
        if self._current is not None and self._current.id == plan_id:
            return self._current
        for plan in self._history:
            if plan.id == plan_id:
                return plan
        raise PlanNotFoundError(plan_id)

    def _tracked_locked(self, plan_id: str) -> bool:
        if self._current is not None and self._current.id == plan_id:
            return True
        return any(p.id == plan_id for p in self._history)

    def _replace_locked(self, updated: InductionPlan) -> None:
        if self._current is not None and self._current.id == updated.id:
            self._current = updated
        self._history = [updated if p.id == updated.id else p for p in self._history]

    def _require_open(self, plan: InductionPlan, attempted: str) -> None:
        if plan.approval_status not in _OPEN_STATUSES:
            raise InvalidTransitionError(plan.id, plan.approval_status.value, attempted)

    # -------------------------------------------------------------------------
    # Publishing & reads
    # -------------------------------------------------------------------------

    def publish(self, plan: InductionPlan) -> InductionPlan:
        """
        Make plan the current plan and append it to history.

        A plan whose id is already tracked (same inputs, same planning time)
        is published under the next free `<id>-<n>` id and supersedes the
        earlier one like any other new plan. Returns the plan as stored.
        """
        with self._lock:
            plan_id = plan.id
            seq = 1
            while self._tracked_locked(plan_id):
                seq += 1
                plan_id = f"{plan.id}-{seq}"
            stored = plan.model_copy(update={"id": plan_id}, deep=True)
            self._current = stored
            self._history = (self._history + [stored])[-self.history_limit:]
        if plan_id != plan.id:
            logger.info("plan id %s already tracked, publishing as %s", plan.id, plan_id)
        logger.info("published plan %s (%d assignments)", plan_id, len(plan.assignments))
        return stored.model_copy(deep=True)

    def current_plan(self) -> Optional[InductionPlan]:
        with self._lock:
            current = self._current
        return current.model_copy(deep=True) if current is not None else None

    def get_plan(self, plan_id: str) -> InductionPlan:
        with self._lock:
            plan = self._find_locked(plan_id)
        return plan.model_copy(deep=True)

    def history(self, limit: Optional[int] = None) -> list[InductionPlan]:
        """Published plans, newest first."""
        with self._lock:
            plans = list(reversed(self._history))
        if limit is not None:
            plans = plans[:limit]
        return [p.model_copy(deep=True) for p in plans]

    def overrides(self, plan_id: Optional[str] = None) -> list[SupervisorOverride]:
        with self._lock:
            records = [o for o in self._overrides if plan_id is None or o.plan_id == plan_id]
        return [o.model_copy(deep=True) for o in records]

    # -------------------------------------------------------------------------
    # Workflow
    # -------------------------------------------------------------------------

    def apply_override(
        self,
        plan_id: str,
        trainset_id: str,
        new_role: Union[Role, str],
        reason: str,
        supervisor: str,
        now: datetime,
    ) -> InductionPlan:
        """
        Replace one assignment's role on a pending or modified plan.

        Returns:
            The updated plan (status modified, one new audit trail entry)

        Raises:
            InputValidationError: new_role is not a valid role
            PlanNotFoundError: plan_id is neither current nor in history
            TrainsetNotFoundError: trainset has no assignment in the plan
            InvalidTransitionError: plan is approved or rejected
        """
        try:
            role = Role(new_role)
        except ValueError as exc:
            raise InputValidationError(
                f"Invalid role {new_role!r}", {"allowed": [r.value for r in Role]}
            ) from exc

        with self._lock:
            plan = self._find_locked(plan_id)
            self._require_open(plan, "apply override")
            original = plan.assignment_for(trainset_id)
            if original is None:
                raise TrainsetNotFoundError(plan_id, trainset_id)

            replacement = original.model_copy(
                update={"role": role, "reasons": [*original.reasons, f"Supervisor override: {reason}"]},
                deep=True,
            )
            sequence = sum(1 for o in self._overrides if o.plan_id == plan_id) + 1
            override = SupervisorOverride(
                id=f"OVERRIDE-{plan_id}-{sequence}",
                plan_id=plan_id,
                trainset_id=trainset_id,
                original_assignment=original,
                override_assignment=replacement,
                reason=reason,
                supervisor=supervisor,
                timestamp=now,
            )
            updated = plan.model_copy(
                update={
                    "assignments": [replacement if a.trainset_id == trainset_id else a for a in plan.assignments],
                    "approval_status": ApprovalStatus.MODIFIED,
                    "audit_trail": [
                        *plan.audit_trail,
                        OverrideAppliedEntry(
                            timestamp=now,
                            user=supervisor,
                            details=f"Override applied for {trainset_id}: {original.role.value} -> {role.value}",
                            trainset_id=trainset_id,
                            previous_value=original,
                            new_value=replacement,
                        ),
                    ],
                },
                deep=True,
            )
            self._replace_locked(updated)
            self._overrides.append(override)

        logger.info(
            "override %s on plan %s: %s %s -> %s by %s",
            override.id, plan_id, trainset_id, original.role.value, role.value, supervisor,
        )
        if self.audit_log is not None:
            self.audit_log.log_supervisor_override(override)
        return updated.model_copy(deep=True)

    def approve(self, plan_id: str, approver: str, now: datetime) -> InductionPlan:
        """
        Approve a pending or modified plan.

        Raises:
            PlanNotFoundError: unknown plan_id
            InvalidTransitionError: plan already approved or rejected
        """
        with self._lock:
            plan = self._find_locked(plan_id)
            self._require_open(plan, "approve")
            previous = plan.approval_status
            updated = plan.model_copy(
                update={
                    "approval_status": ApprovalStatus.APPROVED,
                    "approved_by": approver,
                    "approved_at": now,
                    "audit_trail": [
                        *plan.audit_trail,
                        PlanApprovedEntry(
                            timestamp=now,
                            user=approver,
                            details=f"Plan approved by {approver}",
                            previous_status=previous,
                        ),
                    ],
                },
                deep=True,
            )
            self._replace_locked(updated)

        logger.info("plan %s approved by %s (was %s)", plan_id, approver, previous.value)
        if self.audit_log is not None:
            self.audit_log.log_system_event(
                "plan_approved", f"Plan {plan_id} approved by {approver}", plan_id=plan_id, user=approver,
            )
        return updated.model_copy(deep=True)

    def reject(self, plan_id: str, supervisor: str, reason: str, now: datetime) -> InductionPlan:
        """
        Reject a pending or modified plan.

        Raises:
            PlanNotFoundError: unknown plan_id
            InvalidTransitionError: plan already approved or rejected
        """
        with self._lock:
            plan = self._find_locked(plan_id)
            self._require_open(plan, "reject")
            previous = plan.approval_status
            updated = plan.model_copy(
                update={
                    "approval_status": ApprovalStatus.REJECTED,
                    "audit_trail": [
                        *plan.audit_trail,
                        PlanRejectedEntry(
                            timestamp=now,
                            user=supervisor,
                            details=f"Plan rejected by {supervisor}: {reason}",
                            previous_status=previous,
                            reason=reason,
                        ),
                    ],
                },
                deep=True,
            )
            self._replace_locked(updated)

        logger.info("plan %s rejected by %s: %s", plan_id, supervisor, reason)
        if self.audit_log is not None:
            self.audit_log.log_system_event(
                "plan_rejected", f"Plan {plan_id} rejected by {supervisor}: {reason}",
                severity=AuditSeverity.WARN, plan_id=plan_id, user=supervisor,
            )
        return updated.model_copy(deep=True)
