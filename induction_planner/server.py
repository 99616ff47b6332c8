"""
FastAPI HTTP server for the induction planner.

Exposes the InductionService over JSON:
- POST /api/plans                         generate and publish a plan
- GET  /api/plans/current                 current plan
- GET  /api/plans                         plan history (newest first)
- GET  /api/plans/{plan_id}               one plan
- POST /api/plans/{plan_id}/overrides     supervisor override
- POST /api/plans/{plan_id}/approve       approve
- POST /api/plans/{plan_id}/reject        reject
- GET  /api/scenarios                     preset what-if scenarios
- POST /api/simulations                   run a what-if scenario
- GET  /api/fleet/status                  fleet summary
- GET  /api/audit                         audit entries
- GET  /api/audit/export                  audit export (json or csv)
- GET  /api/health                        system health

Errors are returned as {"error": {"code", "message", "details"}}.
"""

import logging
import sys
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from .audit import AuditSeverity
from .config import get_cors_origins
from .errors import AgentContractError, InductionError, InputValidationError, NoCurrentPlanError
from .models import Role
from .service import InductionService
from .world import DemoSnapshotSource

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    stream=sys.stdout,
    force=True
)

logger = logging.getLogger(__name__)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class GeneratePlanRequest(BaseModel):
    user: str = Field(default="system", description="Who requested the plan")


class OverrideRequest(BaseModel):
    trainset_id: str
    new_role: Role
    reason: str = Field(..., min_length=1)
    supervisor: str = Field(..., min_length=1)


class ApproveRequest(BaseModel):
    approver: str = Field(..., min_length=1)


class RejectRequest(BaseModel):
    supervisor: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)


class SimulationRequest(BaseModel):
    """Either a preset scenario_id or a list of custom modifications."""
    scenario_id: Optional[str] = None
    modifications: Optional[list[dict[str, Any]]] = None


def _status_for(exc: InductionError) -> int:
    if isinstance(exc, LookupError):
        return 404
    if isinstance(exc, InputValidationError):
        return 422
    if isinstance(exc, AgentContractError):
        return 500
    return 409


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(service: InductionService) -> FastAPI:
    app = FastAPI(
        title="Induction Planner API",
        description="Nightly trainset induction planning with what-if analysis",
        version="1.0.0",
    )

    allow_origins = get_cors_origins()
    logger.info("CORS allow_origins = %r", allow_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InductionError)
    async def induction_error_handler(request: Request, exc: InductionError) -> JSONResponse:
        status = _status_for(exc)
        logger.warning("%s %s -> %d %s: %s", request.method, request.url.path, status, exc.code, exc.message)
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    @app.post("/api/plans")
    def generate_plan(req: Optional[GeneratePlanRequest] = None) -> dict:
        result = service.generate_induction_plan(user=req.user if req else "system")
        return {
            "plan": result.plan.model_dump(mode="json"),
            "agent_outputs": [o.model_dump(mode="json") for o in result.agent_outputs],
            "execution_time_ms": result.execution_time_ms,
            "agent_health": [h.model_dump(mode="json") for h in result.agent_health],
        }

    @app.get("/api/plans/current")
    def current_plan() -> dict:
        plan = service.get_current_plan()
        if plan is None:
            raise NoCurrentPlanError()
        return plan.model_dump(mode="json")

    @app.get("/api/plans")
    def plan_history(limit: int = 10) -> list[dict]:
        return [p.model_dump(mode="json") for p in service.get_plan_history(limit=limit)]

    @app.get("/api/plans/{plan_id}")
    def get_plan(plan_id: str) -> dict:
        return service.get_plan(plan_id).model_dump(mode="json")

    @app.post("/api/plans/{plan_id}/overrides")
    def apply_override(plan_id: str, req: OverrideRequest) -> dict:
        plan = service.apply_supervisor_override(plan_id, req.trainset_id, req.new_role, req.reason, req.supervisor)
        return plan.model_dump(mode="json")

    @app.post("/api/plans/{plan_id}/approve")
    def approve_plan(plan_id: str, req: ApproveRequest) -> dict:
        return service.approve_plan(plan_id, req.approver).model_dump(mode="json")

    @app.post("/api/plans/{plan_id}/reject")
    def reject_plan(plan_id: str, req: RejectRequest) -> dict:
        return service.reject_plan(plan_id, req.supervisor, req.reason).model_dump(mode="json")

    @app.get("/api/scenarios")
    def scenarios() -> list[dict]:
        return [s.model_dump(mode="json") for s in service.get_available_scenarios()]

    @app.post("/api/simulations")
    def run_simulation(req: SimulationRequest) -> dict:
        result = service.run_what_if_simulation(scenario_id=req.scenario_id, custom_modifications=req.modifications)
        return result.model_dump(mode="json")

    @app.get("/api/fleet/status")
    def fleet_status() -> dict:
        return service.get_fleet_status().model_dump(mode="json")

    @app.get("/api/audit")
    def audit_logs(
        plan_id: Optional[str] = None,
        category: Optional[str] = None,
        severity: Optional[AuditSeverity] = None,
        user: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        entries = service.get_audit_logs(
            plan_id=plan_id, category=category, severity=severity, user=user, limit=limit,
        )
        return [e.model_dump(mode="json") for e in entries]

    @app.get("/api/audit/export")
    def export_audit(format: str = "json") -> PlainTextResponse:
        body = service.export_audit_logs(format)
        media_type = "text/csv" if format == "csv" else "application/json"
        return PlainTextResponse(body, media_type=media_type)

    @app.get("/api/health")
    def health() -> dict:
        return service.get_system_health().model_dump(mode="json")

    return app


app = create_app(InductionService(DemoSnapshotSource()))
