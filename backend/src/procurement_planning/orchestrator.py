"""Plan orchestration: one pass through the planning state graph per request."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, TypedDict
from zoneinfo import ZoneInfo

from langgraph.graph import END, StateGraph

from backend.src.config import (
    AVAILABLE_MODELS,
    PLAN_CACHE_DIR,
    PLAN_CACHE_ENABLED,
    PLAN_CACHE_LOCK_TIMEOUT,
    PLAN_CACHE_SCOPE,
    PLAN_COST_TOLERANCE,
    PLANNER_MODEL,
    PLANNER_TIMEZONE,
)
from backend.src.models import (
    CachedInputs,
    CachedPlan,
    CanonicalRequest,
    PlanOutcome,
    ProcurementPlan,
)
from backend.src.procurement_planning.cache import PlanCache, StoreOutcome
from backend.src.procurement_planning.canonical import canonicalize, check_horizon
from backend.src.procurement_planning.context import derive_calendar_context
from backend.src.procurement_planning.gateway import ReasoningGateway
from backend.src.procurement_planning.policy import (
    DEFAULT_POLICY_TABLE,
    PLAN_TOOL_NAME,
    CALENDAR_TOOL_NAME,
    PolicyEnvelope,
    PolicyEnvelopeBuilder,
)
from backend.src.procurement_planning.validator import ResponseValidator

logger = logging.getLogger(__name__)

GLOBAL_NAMESPACE = "__global__"


# --- Shared State ---


class PlanningState(TypedDict, total=False):
    """The state passed between stations for a single planning run."""

    # Inputs
    caller_id: str
    inventory_text: str
    instruction_text: str
    horizon_days: int
    now: datetime

    # Derived along the way
    request: CanonicalRequest
    fingerprint: str
    cached: Optional[CachedPlan]
    envelope: PolicyEnvelope
    payload: Dict[str, Any]
    plan: ProcurementPlan
    store_outcome: StoreOutcome

    # Agent runtime log shown to the user
    runtime_log: List[str]


class PlanOrchestrator:
    """Drives canonicalize -> cache -> envelope -> engine -> validate -> cache write."""

    def __init__(
        self,
        cache: PlanCache,
        gateway: ReasoningGateway,
        envelope_builder: Optional[PolicyEnvelopeBuilder] = None,
        validator: Optional[ResponseValidator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        cache_scope: str = "caller",
    ) -> None:
        if cache_scope not in ("caller", "global"):
            raise ValueError(f"cache_scope must be 'caller' or 'global', got {cache_scope!r}")
        self.cache = cache
        self.gateway = gateway
        self.envelope_builder = envelope_builder or PolicyEnvelopeBuilder()
        self.validator = validator or ResponseValidator(self.envelope_builder.table)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.cache_scope = cache_scope
        self.graph = self._build_graph()

    def namespace_for(self, caller_id: str) -> str:
        return GLOBAL_NAMESPACE if self.cache_scope == "global" else caller_id

    # --- Stations ---

    def validate_input_node(self, state: PlanningState):
        """Derive the calendar context once and canonicalize the request."""
        logger.info("--- Station: VALIDATE_INPUT ---")
        check_horizon(state["horizon_days"])
        context = derive_calendar_context(state["now"], state["horizon_days"])
        request, fingerprint = canonicalize(
            state["inventory_text"],
            state["instruction_text"],
            context,
            state["horizon_days"],
        )
        return {
            "request": request,
            "fingerprint": fingerprint,
            "runtime_log": state["runtime_log"] + [
                f"Init: Checking '{CALENDAR_TOOL_NAME}'...",
                f"Input: {len(request.lines)} inventory rows, horizon {request.horizon_days} days.",
            ],
        }

    def cache_check_node(self, state: PlanningState):
        logger.info("--- Station: CACHE_CHECK ---")
        namespace = self.namespace_for(state["caller_id"])
        cached = self.cache.lookup(namespace, state["fingerprint"])
        if cached is not None:
            return {
                "cached": cached,
                "plan": cached.response,
                "runtime_log": state["runtime_log"] + ["Cache: Hit found. Retrieving stored plan..."],
            }
        return {"cached": None, "runtime_log": state["runtime_log"] + ["Cache: Miss."]}

    def build_envelope_node(self, state: PlanningState):
        logger.info("--- Station: BUILD_ENVELOPE ---")
        envelope = self.envelope_builder.build(state["request"].context)
        return {
            "envelope": envelope,
            "runtime_log": state["runtime_log"] + [f"Policy: Loaded {envelope.active_policy.value} protocols."],
        }

    def request_plan_node(self, state: PlanningState):
        logger.info("--- Station: REQUEST_PLAN ---")
        payload = self.gateway.submit(state["request"], state["envelope"])
        return {
            "payload": payload,
            "runtime_log": state["runtime_log"] + [
                "Agent: Reasoning on inventory + policy...",
                f"Agent: Executing '{PLAN_TOOL_NAME}'...",
            ],
        }

    def validate_response_node(self, state: PlanningState):
        logger.info("--- Station: VALIDATE_RESPONSE ---")
        plan = self.validator.validate(state["payload"], state["request"])
        log = state["runtime_log"] + [f"Validator: {plan.status} plan accepted."]
        return {"plan": plan, "runtime_log": log}

    def cache_write_node(self, state: PlanningState):
        logger.info("--- Station: CACHE_WRITE ---")
        request = state["request"]
        record = CachedPlan(
            fingerprint=state["fingerprint"],
            response=state["plan"],
            created_at=datetime.now(timezone.utc),
            inputs=CachedInputs(
                instruction_text=request.instruction_text, context=request.context
            ),
        )
        outcome = self.cache.store(
            self.namespace_for(state["caller_id"]), state["fingerprint"], record
        )
        log = state["runtime_log"] + [f"Cache: Write {outcome.value}."]
        return {"store_outcome": outcome, "runtime_log": log}

    # --- Routers ---

    def route_after_cache_check(self, state: PlanningState) -> Literal["cache_hit", "cache_miss"]:
        if state.get("cached") is not None:
            logger.info("--> Decision: Cache hit. Skipping the planning engine.")
            return "cache_hit"
        logger.info("--> Decision: Cache miss. Requesting a fresh plan.")
        return "cache_miss"

    # --- Graph ---

    def _build_graph(self):
        workflow = StateGraph(PlanningState)

        workflow.add_node("VALIDATE_INPUT", self.validate_input_node)
        workflow.add_node("CACHE_CHECK", self.cache_check_node)
        workflow.add_node("BUILD_ENVELOPE", self.build_envelope_node)
        workflow.add_node("REQUEST_PLAN", self.request_plan_node)
        workflow.add_node("VALIDATE_RESPONSE", self.validate_response_node)
        workflow.add_node("CACHE_WRITE", self.cache_write_node)

        workflow.set_entry_point("VALIDATE_INPUT")
        workflow.add_edge("VALIDATE_INPUT", "CACHE_CHECK")
        workflow.add_conditional_edges(
            "CACHE_CHECK",
            self.route_after_cache_check,
            {
                "cache_hit": END,
                "cache_miss": "BUILD_ENVELOPE",
            },
        )
        workflow.add_edge("BUILD_ENVELOPE", "REQUEST_PLAN")
        workflow.add_edge("REQUEST_PLAN", "VALIDATE_RESPONSE")
        workflow.add_edge("VALIDATE_RESPONSE", "CACHE_WRITE")
        workflow.add_edge("CACHE_WRITE", END)

        return workflow.compile()

    # --- Public API ---

    def produce_plan(
        self,
        caller_id: str,
        inventory_text: str,
        instruction_text: str,
        horizon_days: int,
    ) -> PlanOutcome:
        """Return a validated plan for the request, from cache or from the engine.

        Raises any ``PlanningError`` subclass; none is turned into a partial plan.
        """
        initial: PlanningState = {
            "caller_id": caller_id,
            "inventory_text": inventory_text,
            "instruction_text": instruction_text or "",
            "horizon_days": horizon_days,
            "now": self.clock(),
            "runtime_log": [],
        }
        final = self.graph.invoke(initial)

        origin = "cache" if final.get("cached") is not None else "fresh"
        return PlanOutcome(
            origin=origin,
            fingerprint=final["fingerprint"],
            plan=final["plan"],
            runtime_log=final.get("runtime_log", []),
        )


def build_default_orchestrator() -> PlanOrchestrator:
    """Wire the orchestrator from environment configuration."""
    if PLANNER_MODEL not in AVAILABLE_MODELS:
        raise ValueError(
            f"Unknown PLANNER_MODEL {PLANNER_MODEL!r}; choose one of {sorted(AVAILABLE_MODELS)}"
        )
    tz = ZoneInfo(PLANNER_TIMEZONE)
    builder = PolicyEnvelopeBuilder(DEFAULT_POLICY_TABLE)
    return PlanOrchestrator(
        cache=PlanCache(PLAN_CACHE_DIR, lock_timeout=PLAN_CACHE_LOCK_TIMEOUT, enabled=PLAN_CACHE_ENABLED),
        gateway=ReasoningGateway(AVAILABLE_MODELS[PLANNER_MODEL]),
        envelope_builder=builder,
        validator=ResponseValidator(builder.table, cost_tolerance=PLAN_COST_TOLERANCE),
        clock=lambda: datetime.now(tz),
        cache_scope=PLAN_CACHE_SCOPE,
    )
