"""Single structured call to the planning LLM through a declared DSPy tool."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import dspy
from dspy.utils.exceptions import AdapterParseError

from backend.src.errors import NoStructuredOutputError, TransportError
from backend.src.models import CanonicalRequest, PolicyId
from backend.src.procurement_planning.policy import PLAN_TOOL_NAME, PolicyEnvelope

logger = logging.getLogger(__name__)


PLAN_ITEM_SCHEMA = {
    "type": "object",
    "properties": {
        "item_name": {"type": "string"},
        "current_stock": {"type": "number"},
        "recommended_order": {"type": "number"},
        "unit": {"type": "string"},
        "market_price_per_unit": {"type": "number"},
        "estimated_cost": {"type": "number"},
        "risk_level": {"type": "string", "enum": ["High", "Medium", "Low"]},
        "applied_policy": {
            "type": "string",
            "enum": [p.value for p in PolicyId],
            "description": "The specific Policy ID applied (e.g., 'WEEKEND_RUSH').",
        },
        "reasoning": {
            "type": "string",
            "description": "Why this quantity? Cite calendar events if relevant.",
        },
    },
    "required": [
        "item_name",
        "current_stock",
        "recommended_order",
        "unit",
        "market_price_per_unit",
        "estimated_cost",
        "risk_level",
        "applied_policy",
        "reasoning",
    ],
}

PLAN_TOOL_ARGS = {
    "plan_summary": {"type": "string", "description": "Executive summary or refusal reason."},
    "status": {
        "type": "string",
        "enum": ["SUCCESS", "REFUSED"],
        "description": "Outcome of the planning request.",
    },
    "total_estimated_cost": {"type": "number", "description": "Total cost in INR."},
    "items": {"type": "array", "items": PLAN_ITEM_SCHEMA},
}


def submit_procurement_plan(
    plan_summary: str, status: str, total_estimated_cost: float, items: list
) -> Dict[str, Any]:
    """Finalize and submit the calculated procurement plan based on analysis."""
    return {
        "plan_summary": plan_summary,
        "status": status,
        "total_estimated_cost": total_estimated_cost,
        "items": items,
    }


PLAN_SUBMISSION_TOOL = dspy.Tool(
    submit_procurement_plan,
    name=PLAN_TOOL_NAME,
    desc="Finalize and submit the calculated procurement plan based on analysis.",
    args=PLAN_TOOL_ARGS,
)


class ProcurementPlanSubmission(dspy.Signature):
    """Plan restaurant procurement under the active policies and submit it through the plan tool."""

    user_instruction: str = dspy.InputField(
        desc="Free-text instruction from the kitchen manager, e.g. 'Expecting a huge crowd on Sunday'."
    )
    inventory_csv: str = dspy.InputField(
        desc="Inventory CSV: Item, Current Stock, Unit, Avg Daily Usage, Market Price (INR)."
    )
    context_annex: str = dspy.InputField(
        desc="Output of the cultural calendar tool, including horizon_days."
    )
    tools: List[dspy.Tool] = dspy.InputField(desc="The only tool you may call.")
    outputs: dspy.ToolCalls = dspy.OutputField(
        desc=f"Exactly one call to {PLAN_TOOL_NAME}."
    )


class ReasoningGateway:
    """Invokes the planner once per uncached request and returns the raw tool arguments."""

    def __init__(self, lm: dspy.LM, adapter: Optional[dspy.Adapter] = None) -> None:
        self.lm = lm
        # Native tool calling keeps the JSON adapter on a single LM call.
        self.adapter = adapter or dspy.JSONAdapter(use_native_function_calling=True)

    def _build_predictor(self, envelope: PolicyEnvelope) -> dspy.Module:
        signature = ProcurementPlanSubmission.with_instructions(envelope.instructions)
        return dspy.Predict(signature)

    def submit(self, request: CanonicalRequest, envelope: PolicyEnvelope) -> Dict[str, Any]:
        """Run the planner and return the arguments of its single plan submission.

        Raises:
            TransportError: the engine could not be reached or failed.
            NoStructuredOutputError: the reply was not exactly one plan tool call.
        """
        predictor = self._build_predictor(envelope)
        try:
            with dspy.context(lm=self.lm, adapter=self.adapter):
                prediction = predictor(
                    user_instruction=request.instruction_text,
                    inventory_csv=request.inventory_text,
                    context_annex=envelope.context_annex,
                    tools=[PLAN_SUBMISSION_TOOL],
                )
        except AdapterParseError as e:
            raise NoStructuredOutputError(
                f"Agent reply could not be parsed as a tool call: {e}"
            ) from e
        except Exception as e:
            raise TransportError(f"Planning engine call failed: {e}") from e

        return self._extract_submission(prediction)

    @staticmethod
    def _extract_submission(prediction: Any) -> Dict[str, Any]:
        tool_calls = getattr(getattr(prediction, "outputs", None), "tool_calls", None)
        if not tool_calls:
            raise NoStructuredOutputError(
                "Agent refused to generate plan: no structured submission was returned."
            )
        if len(tool_calls) != 1:
            raise NoStructuredOutputError(
                f"Expected exactly one '{PLAN_TOOL_NAME}' call, got {len(tool_calls)}."
            )

        call = tool_calls[0]
        if call.name != PLAN_TOOL_NAME:
            raise NoStructuredOutputError(
                f"Expected a '{PLAN_TOOL_NAME}' call, got '{call.name}'."
            )
        if not isinstance(call.args, dict):
            raise NoStructuredOutputError(f"'{PLAN_TOOL_NAME}' arguments are not an object.")

        logger.info(f"Agent: Executing '{PLAN_TOOL_NAME}'...")
        return dict(call.args)
