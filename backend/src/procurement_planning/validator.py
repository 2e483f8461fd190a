"""Acceptance checks for plans submitted by the planning LLM.

The engine's tool arguments arrive as an untyped dict. ``ResponseValidator``
turns them into a typed ``SuccessPlan`` or ``RefusedPlan`` or raises
``MalformedPlanError`` naming the first check that failed. Checks run in a
fixed order: required fields, status, schema, refusal protocol, policy ids
and calendar consistency, cost arithmetic, low-stock risk flags.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, List

from pydantic import TypeAdapter, ValidationError

from backend.src.config import PLAN_COST_TOLERANCE
from backend.src.errors import MalformedPlanError, PolicyInconsistencyError
from backend.src.models import (
    CanonicalRequest,
    PlanItem,
    PolicyId,
    ProcurementPlan,
    RefusedPlan,
    SuccessPlan,
)
from backend.src.procurement_planning.policy import (
    DEFAULT_POLICY_TABLE,
    PolicyTable,
    permitted_policies,
)

logger = logging.getLogger(__name__)

_PLAN_ADAPTER: TypeAdapter = TypeAdapter(ProcurementPlan)

_PLAN_FIELDS = ("plan_summary", "status")
_SUCCESS_FIELDS = ("total_estimated_cost", "items")
_ITEM_FIELDS = tuple(PlanItem.model_fields)
_STATUSES = ("SUCCESS", "REFUSED")
_KNOWN_POLICIES = {p.value for p in PolicyId}
_FLAGGED_RISKS = ("High", "Medium")


def _format_errors(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(x) for x in err["loc"])
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


class ResponseValidator:
    """Checks a raw plan payload against the schema and the policy invariants."""

    def __init__(
        self,
        table: PolicyTable = DEFAULT_POLICY_TABLE,
        cost_tolerance: float = PLAN_COST_TOLERANCE,
    ) -> None:
        self.table = table
        self.cost_tolerance = cost_tolerance

    def validate(self, payload: Any, request: CanonicalRequest) -> ProcurementPlan:
        self._check_required_fields(payload)
        self._check_status(payload)
        plan = self._parse(payload)
        self._check_refusal(plan, request)
        if isinstance(plan, SuccessPlan):
            self._check_policies(plan, request)
            self._check_costs(plan)
            self._check_low_stock(plan, request)
        logger.debug(f"Accepted {plan.status} plan with {len(plan.items)} items")
        return plan

    # --- checks ---------------------------------------------------------------

    def _check_required_fields(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise MalformedPlanError(
                "required_fields", f"plan payload must be an object, got {type(payload).__name__}"
            )
        missing: List[str] = [f for f in _PLAN_FIELDS if f not in payload]
        if payload.get("status") == "SUCCESS":
            missing += [f for f in _SUCCESS_FIELDS if f not in payload]
        if missing:
            raise MalformedPlanError("required_fields", f"missing {', '.join(missing)}")

        items = payload.get("items")
        if items is None:
            return
        if not isinstance(items, list):
            raise MalformedPlanError("required_fields", "'items' must be a list")
        for idx, item in enumerate(items):
            if not isinstance(item, dict):
                raise MalformedPlanError("required_fields", f"items[{idx}] must be an object")
            missing = [f for f in _ITEM_FIELDS if f not in item]
            if missing:
                raise MalformedPlanError(
                    "required_fields", f"items[{idx}] is missing {', '.join(missing)}"
                )

    def _check_status(self, payload: Dict[str, Any]) -> None:
        if payload["status"] not in _STATUSES:
            raise MalformedPlanError(
                "status", f"status must be one of {_STATUSES}, got {payload['status']!r}"
            )

    def _parse(self, payload: Dict[str, Any]) -> ProcurementPlan:
        try:
            return _PLAN_ADAPTER.validate_python(payload)
        except ValidationError as e:
            raise MalformedPlanError("schema", _format_errors(e)) from e

    def _check_refusal(self, plan: ProcurementPlan, request: CanonicalRequest) -> None:
        must_refuse = self.table.requires_refusal(request.horizon_days)
        limit = self.table.refusal_horizon_days
        if isinstance(plan, RefusedPlan):
            if not must_refuse:
                raise PolicyInconsistencyError(
                    "refusal_horizon",
                    f"plan was refused for a {request.horizon_days}-day horizon, "
                    f"which is within the {limit}-day limit",
                )
            if plan.items:
                raise MalformedPlanError("refusal_items", "a refused plan must not carry items")
        elif must_refuse:
            raise PolicyInconsistencyError(
                "refusal_required",
                f"horizon of {request.horizon_days} days exceeds {limit}; the plan must be REFUSED",
            )

    def _check_policies(self, plan: SuccessPlan, request: CanonicalRequest) -> None:
        allowed = permitted_policies(request.context)
        for item in plan.items:
            if item.applied_policy not in _KNOWN_POLICIES:
                raise MalformedPlanError(
                    "applied_policy",
                    f"{item.item_name}: unknown policy {item.applied_policy!r}",
                )
            if PolicyId(item.applied_policy) not in allowed:
                raise PolicyInconsistencyError(
                    "policy_context",
                    f"{item.item_name}: {item.applied_policy} does not apply on "
                    f"{request.context.date_label} (events: {sorted(request.context.detected_events)})",
                )

    def _check_costs(self, plan: SuccessPlan) -> None:
        tol = self.cost_tolerance
        for item in plan.items:
            expected = item.recommended_order * item.market_price_per_unit
            if not math.isclose(item.estimated_cost, expected, rel_tol=0.0, abs_tol=tol):
                raise MalformedPlanError(
                    "item_cost",
                    f"{item.item_name}: estimated_cost {item.estimated_cost} != "
                    f"{item.recommended_order} x {item.market_price_per_unit} = {expected:.2f}",
                )
        total = math.fsum(item.estimated_cost for item in plan.items)
        if not math.isclose(plan.total_estimated_cost, total, rel_tol=0.0, abs_tol=tol):
            raise MalformedPlanError(
                "total_cost",
                f"total_estimated_cost {plan.total_estimated_cost} != sum of items {total:.2f}",
            )

    def _check_low_stock(self, plan: SuccessPlan, request: CanonicalRequest) -> None:
        ratio = self.table.low_stock_ratio
        for item in plan.items:
            if item.risk_level in _FLAGGED_RISKS:
                continue
            if item.applied_policy == PolicyId.LOW_STOCK_CRITICAL.value:
                raise MalformedPlanError(
                    "low_stock_risk",
                    f"{item.item_name}: LOW_STOCK_CRITICAL items must be High or Medium risk",
                )
            line = request.line_for(item.item_name)
            if line is not None and line.is_critical(ratio):
                raise MalformedPlanError(
                    "low_stock_risk",
                    f"{item.item_name}: stock {line.current_stock} < {ratio} x "
                    f"{line.avg_daily_usage} daily usage but risk is {item.risk_level}",
                )
