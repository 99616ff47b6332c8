"""
Error taxonomy for the induction planner.

Every error raised across the library boundary derives from InductionError
and carries:
- code: stable error category (e.g. 'PLAN_NOT_FOUND')
- message: human-readable description
- details: dict with the ids needed to render a useful message
"""

from typing import Any


class InductionError(Exception):
    """Base class for all planner errors."""

    code = "INDUCTION_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InputValidationError(InductionError, ValueError):
    """Fleet, bay or constraint input is malformed. Raised before any agent runs."""

    code = "INPUT_INVALID"


class PlanNotFoundError(InductionError, LookupError):
    code = "PLAN_NOT_FOUND"

    def __init__(self, plan_id: str):
        super().__init__(f"Plan {plan_id} not found", {"plan_id": plan_id})
        self.plan_id = plan_id


class TrainsetNotFoundError(InductionError, LookupError):
    code = "TRAINSET_NOT_FOUND"

    def __init__(self, plan_id: str, trainset_id: str):
        super().__init__(
            f"Assignment for trainset {trainset_id} not found in plan {plan_id}",
            {"plan_id": plan_id, "trainset_id": trainset_id},
        )
        self.plan_id = plan_id
        self.trainset_id = trainset_id


class ScenarioNotFoundError(InductionError, LookupError):
    code = "SCENARIO_NOT_FOUND"

    def __init__(self, scenario_id: str):
        super().__init__(f"Scenario {scenario_id} not found", {"scenario_id": scenario_id})
        self.scenario_id = scenario_id


class InvalidTransitionError(InductionError):
    """A plan approval-status transition that the workflow does not allow."""

    code = "INVALID_TRANSITION"

    def __init__(self, plan_id: str, current_status: str, attempted: str):
        super().__init__(
            f"Plan {plan_id} is {current_status}; cannot {attempted}",
            {"plan_id": plan_id, "current_status": current_status, "attempted": attempted},
        )


class NoCurrentPlanError(InductionError, LookupError):
    code = "NO_CURRENT_PLAN"

    def __init__(self):
        super().__init__("No plan has been generated yet")


class AgentContractError(InductionError):
    """An agent raised or returned something other than an AgentOutput. Fatal to the run."""

    code = "AGENT_CONTRACT_VIOLATION"

    def __init__(self, agent: str, message: str):
        super().__init__(f"Agent '{agent}' violated its contract: {message}", {"agent": agent})
        self.agent = agent
