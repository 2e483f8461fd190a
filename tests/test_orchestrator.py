import glob
import os

import pytest
from conftest import BEFORE_CHRISTMAS, FRIDAY

from backend.src.errors import (
    InvalidInputError,
    MalformedPlanError,
    NoStructuredOutputError,
    PolicyInconsistencyError,
    TransportError,
)
from backend.src.models import PolicyId, RefusedPlan, SuccessPlan
from backend.src.procurement_planning.orchestrator import GLOBAL_NAMESPACE, PlanOrchestrator


def test_fresh_plan_then_cache_hit(make_orchestrator, weekday_payload, sample_inventory):
    orchestrator, gateway = make_orchestrator(weekday_payload)

    first = orchestrator.produce_plan("user-1", sample_inventory, "Kal weekend hai", 3)
    second = orchestrator.produce_plan("user-1", sample_inventory, "Kal weekend hai", 3)

    assert len(gateway.calls) == 1
    assert first.origin == "fresh"
    assert second.origin == "cache"
    assert second.plan == first.plan
    assert second.fingerprint == first.fingerprint
    assert isinstance(first.plan, SuccessPlan)


def test_runtime_log_traces_stations(make_orchestrator, weekday_payload, sample_inventory):
    orchestrator, _ = make_orchestrator(weekday_payload)

    fresh = orchestrator.produce_plan("user-1", sample_inventory, "", 3)
    cached = orchestrator.produce_plan("user-1", sample_inventory, "", 3)

    assert fresh.runtime_log[0] == "Init: Checking 'cultural_calendar_tool'..."
    assert "Cache: Miss." in fresh.runtime_log
    assert "Policy: Loaded STANDARD_OP protocols." in fresh.runtime_log
    assert "Agent: Executing 'submit_procurement_plan'..." in fresh.runtime_log
    assert fresh.runtime_log[-1] == "Cache: Write stored."
    assert cached.runtime_log[-1] == "Cache: Hit found. Retrieving stored plan..."


def test_changed_instruction_misses_cache(make_orchestrator, weekday_payload, sample_inventory):
    orchestrator, gateway = make_orchestrator(weekday_payload)

    a = orchestrator.produce_plan("user-1", sample_inventory, "Normal week", 3)
    b = orchestrator.produce_plan("user-1", sample_inventory, "Expecting a huge crowd", 3)

    assert len(gateway.calls) == 2
    assert a.fingerprint != b.fingerprint
    assert b.origin == "fresh"


def test_cache_is_scoped_per_caller(make_orchestrator, weekday_payload, sample_inventory):
    orchestrator, gateway = make_orchestrator(weekday_payload)

    orchestrator.produce_plan("user-1", sample_inventory, "", 3)
    other = orchestrator.produce_plan("user-2", sample_inventory, "", 3)

    assert len(gateway.calls) == 2
    assert other.origin == "fresh"


def test_global_cache_is_shared(make_orchestrator, weekday_payload, sample_inventory):
    orchestrator, gateway = make_orchestrator(weekday_payload, cache_scope="global")

    orchestrator.produce_plan("user-1", sample_inventory, "", 3)
    other = orchestrator.produce_plan("user-2", sample_inventory, "", 3)

    assert len(gateway.calls) == 1
    assert other.origin == "cache"
    assert orchestrator.namespace_for("user-2") == GLOBAL_NAMESPACE


def test_invalid_cache_scope(plan_cache):
    with pytest.raises(ValueError):
        PlanOrchestrator(cache=plan_cache, gateway=None, cache_scope="team")


@pytest.mark.parametrize("inventory", ["", "no separators in here at all"])
def test_invalid_inventory_never_reaches_engine(make_orchestrator, weekday_payload, inventory):
    orchestrator, gateway = make_orchestrator(weekday_payload)

    with pytest.raises(InvalidInputError):
        orchestrator.produce_plan("user-1", inventory, "", 3)

    assert gateway.calls == []


def test_long_horizon_is_refused_and_cached(
    make_orchestrator, refusal_payload, sample_inventory, plan_cache
):
    orchestrator, gateway = make_orchestrator(refusal_payload)

    outcome = orchestrator.produce_plan("user-1", sample_inventory, "", 20)

    assert isinstance(outcome.plan, RefusedPlan)
    assert outcome.plan.items == []
    envelope = gateway.calls[0][1]
    assert envelope.active_policy is PolicyId.REFUSAL_PROTOCOL
    assert plan_cache.lookup("user-1", outcome.fingerprint) is not None


def test_success_beyond_horizon_is_rejected_and_not_cached(
    make_orchestrator, weekday_payload, sample_inventory, plan_cache
):
    orchestrator, _ = make_orchestrator(weekday_payload)

    with pytest.raises(PolicyInconsistencyError) as exc_info:
        orchestrator.produce_plan("user-1", sample_inventory, "", 20)

    assert exc_info.value.check == "refusal_required"
    assert glob.glob(os.path.join(plan_cache.path, "*", "*.json")) == []


def test_rejected_plan_is_retried_on_next_request(
    make_orchestrator, make_item, make_plan, weekday_payload, sample_inventory
):
    bad = make_plan([make_item("Onions", 4, 9.2, "kg", 40, policy="HIGH_IMPACT_EVENT")])
    responses = iter([bad, weekday_payload])
    orchestrator, gateway = make_orchestrator(lambda request, envelope: next(responses))

    with pytest.raises(PolicyInconsistencyError):
        orchestrator.produce_plan("user-1", sample_inventory, "", 3)
    outcome = orchestrator.produce_plan("user-1", sample_inventory, "", 3)

    assert len(gateway.calls) == 2
    assert outcome.origin == "fresh"


def test_critical_item_flagged_high_is_accepted(
    make_orchestrator, make_item, make_plan, critical_inventory
):
    payload = make_plan(
        [make_item("Oil", 0.5, 16, "liters", 150, risk="High", policy="LOW_STOCK_CRITICAL")]
    )
    orchestrator, _ = make_orchestrator(payload)

    outcome = orchestrator.produce_plan("user-1", critical_inventory, "", 3)

    assert outcome.plan.items[0].risk_level == "High"


def test_critical_item_marked_low_is_rejected(
    make_orchestrator, make_item, make_plan, critical_inventory
):
    payload = make_plan([make_item("Oil", 0.5, 16, "liters", 150, risk="Low")])
    orchestrator, _ = make_orchestrator(payload)

    with pytest.raises(MalformedPlanError) as exc_info:
        orchestrator.produce_plan("user-1", critical_inventory, "", 3)

    assert exc_info.value.check == "low_stock_risk"


def test_clock_drives_calendar_context(make_orchestrator, make_item, make_plan, sample_inventory):
    payload = make_plan([make_item("Onions", 4, 14, "kg", 40, policy="WEEKEND_RUSH")])
    orchestrator, gateway = make_orchestrator(payload, now=FRIDAY)

    orchestrator.produce_plan("user-1", sample_inventory, "", 3)

    request, envelope = gateway.calls[0]
    assert envelope.active_policy is PolicyId.WEEKEND_RUSH
    assert request.context.date_label == "Friday, 16 October 2026"


def test_event_window_reaches_engine(make_orchestrator, make_item, make_plan, sample_inventory):
    payload = make_plan([make_item("Paneer", 2, 16, "kg", 380, policy="HIGH_IMPACT_EVENT")])
    orchestrator, gateway = make_orchestrator(payload, now=BEFORE_CHRISTMAS)

    orchestrator.produce_plan("user-1", sample_inventory, "", 3)

    envelope = gateway.calls[0][1]
    assert "Christmas" in envelope.context_annex
    assert envelope.active_policy is PolicyId.HIGH_IMPACT_EVENT


@pytest.mark.parametrize(
    "error, expected",
    [
        (TransportError("timed out"), TransportError),
        (NoStructuredOutputError("no tool call"), NoStructuredOutputError),
    ],
)
def test_engine_failures_propagate_and_are_not_cached(
    make_orchestrator, sample_inventory, plan_cache, error, expected
):
    orchestrator, gateway = make_orchestrator(error)

    with pytest.raises(expected):
        orchestrator.produce_plan("user-1", sample_inventory, "", 3)

    gateway.response = {"status": "SUCCESS"}
    with pytest.raises(MalformedPlanError):
        orchestrator.produce_plan("user-1", sample_inventory, "", 3)
    assert len(gateway.calls) == 2


@pytest.mark.parametrize("horizon", [2.5, "3", None])
def test_non_integer_horizon_is_invalid_input(
    make_orchestrator, weekday_payload, sample_inventory, horizon
):
    orchestrator, gateway = make_orchestrator(weekday_payload)

    with pytest.raises(InvalidInputError):
        orchestrator.produce_plan("user-1", sample_inventory, "", horizon)

    assert gateway.calls == []


def test_lone_surrogate_is_invalid_input(make_orchestrator, weekday_payload, sample_inventory):
    orchestrator, gateway = make_orchestrator(weekday_payload)

    with pytest.raises(InvalidInputError):
        orchestrator.produce_plan("user-1", sample_inventory, "extra \ud800 paneer", 3)

    assert gateway.calls == []
