"""Shared, cross-feature Pydantic models."""
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class PolicyId(str, Enum):
    """Identifiers of the procurement policies the planner may apply."""

    STANDARD_OP = "STANDARD_OP"
    WEEKEND_RUSH = "WEEKEND_RUSH"
    HIGH_IMPACT_EVENT = "HIGH_IMPACT_EVENT"
    LOW_STOCK_CRITICAL = "LOW_STOCK_CRITICAL"
    REFUSAL_PROTOCOL = "REFUSAL_PROTOCOL"


WEEKEND_RUSH_TAG = "Weekend Rush"
STANDARD_WEEKDAY_TAG = "Standard Weekday"
BASELINE_EVENT_TAGS = frozenset({WEEKEND_RUSH_TAG, STANDARD_WEEKDAY_TAG})


# --- Request side --------------------------------------------------------------


class InventoryLine(BaseModel):
    """One row of the kitchen inventory snapshot."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Item name as written in the inventory CSV.")
    current_stock: float = Field(ge=0, description="Quantity currently on hand.")
    unit: str = Field(description="Unit of measure, e.g. 'kg' or 'liters'.")
    avg_daily_usage: float = Field(ge=0, description="Average consumption per day.")
    market_price: float = Field(ge=0, description="Current market price per unit (INR).")

    def is_critical(self, ratio: float) -> bool:
        return self.current_stock < ratio * self.avg_daily_usage


class CalendarContext(BaseModel):
    """Output of the cultural calendar lookup for one planning request."""

    model_config = ConfigDict(frozen=True)

    date_label: str = Field(description="Human-readable date the plan is made on.")
    is_weekend: bool = Field(description="True on Saturday and Sunday.")
    detected_events: frozenset[str] = Field(
        description="Calendar tags such as 'Weekend Rush' or festival names."
    )
    horizon_days: int = Field(description="Number of days the plan must cover.")

    @field_serializer("detected_events")
    def _sorted_events(self, events: frozenset[str]) -> List[str]:
        return sorted(events)

    @property
    def high_impact_events(self) -> frozenset[str]:
        return self.detected_events - BASELINE_EVENT_TAGS


class CanonicalRequest(BaseModel):
    """Normalized planning request; built per invocation and discarded after use."""

    model_config = ConfigDict(frozen=True)

    inventory_text: str
    instruction_text: str
    horizon_days: int
    context: CalendarContext
    lines: tuple[InventoryLine, ...]

    def line_for(self, item_name: str) -> Optional[InventoryLine]:
        key = item_name.strip().lower()
        for line in self.lines:
            if line.name.strip().lower() == key:
                return line
        return None


# --- Plan side -----------------------------------------------------------------


class PlanItem(BaseModel):
    """A single purchase recommendation inside a procurement plan."""

    item_name: str = Field(min_length=1)
    current_stock: float
    recommended_order: float = Field(ge=0)
    unit: str
    market_price_per_unit: float = Field(ge=0)
    estimated_cost: float = Field(ge=0)
    risk_level: Literal["High", "Medium", "Low"]
    applied_policy: str = Field(description="Policy ID applied, e.g. 'WEEKEND_RUSH'.")
    reasoning: str = Field(min_length=1, description="Why this quantity.")


class SuccessPlan(BaseModel):
    status: Literal["SUCCESS"] = "SUCCESS"
    plan_summary: str
    total_estimated_cost: float = Field(ge=0, description="Total cost in INR.")
    items: List[PlanItem] = Field(min_length=1)


class RefusedPlan(BaseModel):
    status: Literal["REFUSED"] = "REFUSED"
    plan_summary: str = Field(min_length=1, description="Refusal reason.")
    total_estimated_cost: Optional[float] = None
    items: List[PlanItem] = Field(default_factory=list)


ProcurementPlan = Annotated[Union[SuccessPlan, RefusedPlan], Field(discriminator="status")]


class CachedInputs(BaseModel):
    instruction_text: str
    context: CalendarContext


class CachedPlan(BaseModel):
    """Cache document; written once per (caller namespace, fingerprint)."""

    fingerprint: str
    response: ProcurementPlan
    created_at: datetime
    inputs: CachedInputs


class PlanOutcome(BaseModel):
    """Terminal result of a successful planning run."""

    origin: Literal["cache", "fresh"]
    fingerprint: str
    plan: ProcurementPlan
    runtime_log: List[str] = Field(default_factory=list)


# --- API models (backend -> frontend) -------------------------------------------


class PlanRequest(BaseModel):
    """Request payload for the planning endpoint."""

    inventory_text: str = Field(description="Inventory snapshot as CSV text.")
    instruction_text: str = Field(default="", description="Free-text planning instruction.")
    horizon_days: int = Field(default=3, ge=1, le=30, description="Planning horizon in days.")


class PolicyRule(BaseModel):
    """One row of the policy table."""

    model_config = ConfigDict(frozen=True)

    policy_id: PolicyId
    trigger: str
    multiplier_range: Optional[tuple[float, float]] = None
    directive: str


class PolicyTableResponse(BaseModel):
    refusal_horizon_days: int
    low_stock_ratio: float
    rules: List[PolicyRule]
