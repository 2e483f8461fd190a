"""Failure kinds for a single planning run.

Every error here ends the run it was raised in. A refusal from the planner is
not an error: it is returned as a ``RefusedPlan``.
"""
from __future__ import annotations


class PlanningError(Exception):
    """Base class for all planning failures."""


class InvalidInputError(PlanningError):
    """The inventory snapshot or horizon is malformed; no engine call was made."""


class TransportError(PlanningError):
    """The reasoning engine was unreachable, timed out, or answered with an error."""


class NoStructuredOutputError(PlanningError):
    """The engine replied without exactly one ``submit_procurement_plan`` call."""


class MalformedPlanError(PlanningError):
    """The submitted plan failed a schema or invariant check."""

    def __init__(self, check: str, message: str) -> None:
        super().__init__(f"[{check}] {message}")
        self.check = check
        self.message = message


class PolicyInconsistencyError(MalformedPlanError):
    """The plan contradicts the refusal protocol or the calendar context."""
