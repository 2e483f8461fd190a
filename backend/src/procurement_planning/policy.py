"""Policy table and the instruction envelope that bounds the planner."""
from __future__ import annotations

import json
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from backend.src.models import (
    CalendarContext,
    PolicyId,
    PolicyRule,
    PolicyTableResponse,
    WEEKEND_RUSH_TAG,
)

PLAN_TOOL_NAME = "submit_procurement_plan"
CALENDAR_TOOL_NAME = "cultural_calendar_tool"


class PolicyTable(BaseModel):
    """Immutable planning policy constants. Swap in another instance to test alternate rules."""

    model_config = ConfigDict(frozen=True)

    standard_multiplier: tuple[float, float] = (1.1, 1.1)
    weekend_multiplier: tuple[float, float] = (1.3, 1.5)
    event_multiplier: tuple[float, float] = (1.8, 2.5)
    low_stock_ratio: float = 0.2
    refusal_horizon_days: int = 14

    def requires_refusal(self, horizon_days: int) -> bool:
        return horizon_days > self.refusal_horizon_days

    def rules(self) -> List[PolicyRule]:
        return [
            PolicyRule(
                policy_id=PolicyId.STANDARD_OP,
                trigger="Regular weekday, no detected event",
                multiplier_range=self.standard_multiplier,
                directive=f"maintain {_fmt_range(self.standard_multiplier)} usage buffer.",
            ),
            PolicyRule(
                policy_id=PolicyId.WEEKEND_RUSH,
                trigger="Friday to Sunday",
                multiplier_range=self.weekend_multiplier,
                directive=f"increase to {_fmt_range(self.weekend_multiplier)} usage buffer.",
            ),
            PolicyRule(
                policy_id=PolicyId.HIGH_IMPACT_EVENT,
                trigger="Detected high-impact calendar event (festival, holiday)",
                multiplier_range=self.event_multiplier,
                directive=f"usage must be {_fmt_range(self.event_multiplier)}.",
            ),
            PolicyRule(
                policy_id=PolicyId.LOW_STOCK_CRITICAL,
                trigger=f"current_stock < {self.low_stock_ratio} * avg_daily_usage",
                directive="flagging is MANDATORY: risk_level must be 'High' or 'Medium', never 'Low'.",
            ),
            PolicyRule(
                policy_id=PolicyId.REFUSAL_PROTOCOL,
                trigger=f"horizon_days > {self.refusal_horizon_days}",
                directive=(
                    f"you MUST refuse to plan. The algorithm is not reliable beyond "
                    f"{self.refusal_horizon_days} days. Call the tool with status='REFUSED', "
                    f"no items, and explain why."
                ),
            ),
        ]

    def describe(self) -> PolicyTableResponse:
        return PolicyTableResponse(
            refusal_horizon_days=self.refusal_horizon_days,
            low_stock_ratio=self.low_stock_ratio,
            rules=self.rules(),
        )


DEFAULT_POLICY_TABLE = PolicyTable()


def _fmt_range(bounds: tuple[float, float]) -> str:
    low, high = bounds
    if low == high:
        return f"{low:g}x"
    return f"{low:g}x - {high:g}x"


def permitted_policies(context: CalendarContext) -> frozenset[PolicyId]:
    """Policies a SUCCESS plan item may cite under the given calendar context."""
    permitted = {PolicyId.STANDARD_OP, PolicyId.LOW_STOCK_CRITICAL}
    has_event = bool(context.high_impact_events)
    if context.is_weekend or WEEKEND_RUSH_TAG in context.detected_events or has_event:
        permitted.add(PolicyId.WEEKEND_RUSH)
    if has_event:
        permitted.add(PolicyId.HIGH_IMPACT_EVENT)
    return frozenset(permitted)


class PolicyEnvelope(BaseModel):
    """Everything the reasoning engine is told about the rules of the game."""

    model_config = ConfigDict(frozen=True)

    rules: tuple[PolicyRule, ...]
    active_policy: PolicyId
    permitted_policies: frozenset[PolicyId]
    refusal_horizon_days: int
    instructions: str = Field(description="System instructions for the planner.")
    context_annex: str = Field(description="Calendar tool output injected as context.")


class PolicyEnvelopeBuilder:
    """Renders the policy table and calendar context into planner instructions."""

    def __init__(self, table: PolicyTable = DEFAULT_POLICY_TABLE) -> None:
        self.table = table

    def active_policy(self, context: CalendarContext) -> PolicyId:
        if self.table.requires_refusal(context.horizon_days):
            return PolicyId.REFUSAL_PROTOCOL
        if context.high_impact_events:
            return PolicyId.HIGH_IMPACT_EVENT
        if PolicyId.WEEKEND_RUSH in permitted_policies(context):
            return PolicyId.WEEKEND_RUSH
        return PolicyId.STANDARD_OP

    def render_instructions(self) -> str:
        rules = self.table.rules()
        policy_lines = "\n".join(
            f"{i}. {rule.policy_id.value}: {rule.trigger} -> {rule.directive}"
            for i, rule in enumerate(rules, start=1)
        )
        refusal_days = self.table.refusal_horizon_days
        return f"""You are an advanced Procurement Agent for a restaurant kitchen.

ACTIVE POLICIES (hard constraints, strict adherence required):
{policy_lines}

Only these policy IDs are valid values for 'applied_policy': {", ".join(p.value for p in PolicyId)}.

YOUR TOOLKIT:
1. {CALENDAR_TOOL_NAME} (already executed - see its output in the context annex).
2. {PLAN_TOOL_NAME} (you MUST call this to finalize).

OUTPUT CONTRACT:
- Free-form conversational replies are NOT accepted.
- The ONLY acceptable completion is exactly ONE call to '{PLAN_TOOL_NAME}'.

WORKFLOW:
1. Check 'horizon_days' in the calendar context. If > {refusal_days}, TRIGGER REFUSAL PROTOCOL immediately.
2. Else, review the {CALENDAR_TOOL_NAME} output to identify the active policy.
3. Analyze the inventory CSV. If data is nonsensical (e.g., negative stock), flag it as 'High' risk.
4. Calculate needs as Policy Multiplier * Avg Daily Usage * horizon_days, minus current stock (never below 0).
5. For every item set market_price_per_unit from the CSV, estimated_cost = recommended_order * market_price_per_unit,
   and total_estimated_cost = the sum of all estimated_cost values (INR).
6. Call '{PLAN_TOOL_NAME}' with the 'applied_policy' field filled for every item."""

    def render_context_annex(self, context: CalendarContext) -> str:
        payload = json.dumps(context.model_dump(mode="json"), sort_keys=True)
        return f"TOOL_OUTPUT [{CALENDAR_TOOL_NAME}]: {payload}"

    def build(self, context: CalendarContext) -> PolicyEnvelope:
        return PolicyEnvelope(
            rules=tuple(self.table.rules()),
            active_policy=self.active_policy(context),
            permitted_policies=permitted_policies(context),
            refusal_horizon_days=self.table.refusal_horizon_days,
            instructions=self.render_instructions(),
            context_annex=self.render_context_annex(context),
        )
