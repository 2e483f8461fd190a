"""Endpoints for procurement planning."""
from fastapi import APIRouter, Depends, Header, HTTPException, Request

from backend.src.errors import (
    InvalidInputError,
    MalformedPlanError,
    NoStructuredOutputError,
    TransportError,
)
from backend.src.models import PlanOutcome, PlanRequest, PolicyTableResponse
from backend.src.procurement_planning.orchestrator import (
    PlanOrchestrator,
    build_default_orchestrator,
)

router = APIRouter(tags=["plan"])


def get_orchestrator(request: Request) -> PlanOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        orchestrator = build_default_orchestrator()
        request.app.state.orchestrator = orchestrator
    return orchestrator


def get_caller_id(x_caller_id: str | None = Header(default=None)) -> str:
    """Caller identity is established upstream and forwarded as an opaque id."""
    if not x_caller_id or not x_caller_id.strip():
        raise HTTPException(status_code=401, detail="Missing caller identity (X-Caller-Id).")
    return x_caller_id.strip()


@router.post("/plan", response_model=PlanOutcome)
def produce_plan(
    payload: PlanRequest,
    caller_id: str = Depends(get_caller_id),
    orchestrator: PlanOrchestrator = Depends(get_orchestrator),
) -> PlanOutcome:
    """Return a procurement plan (or a refusal) for the given inventory snapshot."""
    try:
        return orchestrator.produce_plan(
            caller_id=caller_id,
            inventory_text=payload.inventory_text,
            instruction_text=payload.instruction_text,
            horizon_days=payload.horizon_days,
        )
    except InvalidInputError as e:
        raise HTTPException(status_code=422, detail={"error": "InvalidInputError", "message": str(e)})
    except MalformedPlanError as e:
        raise HTTPException(
            status_code=502,
            detail={"error": type(e).__name__, "check": e.check, "message": e.message},
        )
    except (TransportError, NoStructuredOutputError) as e:
        raise HTTPException(status_code=502, detail={"error": type(e).__name__, "message": str(e)})


@router.get("/policies", response_model=PolicyTableResponse)
def list_policies(
    orchestrator: PlanOrchestrator = Depends(get_orchestrator),
) -> PolicyTableResponse:
    """The policy table the planner is bound by."""
    return orchestrator.envelope_builder.table.describe()
