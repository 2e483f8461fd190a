import copy
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from backend.src.procurement_planning.cache import PlanCache
from backend.src.procurement_planning.orchestrator import PlanOrchestrator

IST = ZoneInfo("Asia/Kolkata")

# 2026-10-14 is a Wednesday, 2026-10-16 a Friday, 2026-10-17 a Saturday.
WEDNESDAY = datetime(2026, 10, 14, 9, 30, tzinfo=IST)
FRIDAY = datetime(2026, 10, 16, 9, 30, tzinfo=IST)
SATURDAY = datetime(2026, 10, 17, 9, 30, tzinfo=IST)
BEFORE_CHRISTMAS = datetime(2026, 12, 23, 9, 30, tzinfo=IST)

SAMPLE_INVENTORY = """Item,Current Stock,Unit,Avg Daily Usage,Market Price (INR)
Basmati Rice,15,kg,5,120
Chicken (Whole),8,kg,12,220
Cooking Oil,5,liters,3,150
Onions,4,kg,4,40
Paneer,2,kg,3,380
Spices Mix,0.5,kg,0.1,800
Tomatoes,2,kg,6,60"""

CRITICAL_INVENTORY = SAMPLE_INVENTORY + "\nOil,0.5,liters,5,150"


class StubGateway:
    """Stands in for the reasoning gateway; records every call it receives."""

    def __init__(self, response):
        self.response = response
        self.calls = []

    def submit(self, request, envelope):
        self.calls.append((request, envelope))
        if isinstance(self.response, Exception):
            raise self.response
        if callable(self.response):
            return self.response(request, envelope)
        return copy.deepcopy(self.response)


@pytest.fixture
def sample_inventory():
    return SAMPLE_INVENTORY


@pytest.fixture
def critical_inventory():
    return CRITICAL_INVENTORY


@pytest.fixture
def make_item():
    def _make(
        name,
        stock,
        order,
        unit,
        price,
        risk="Low",
        policy="STANDARD_OP",
        reasoning="Covers projected usage over the horizon.",
    ):
        return {
            "item_name": name,
            "current_stock": stock,
            "recommended_order": order,
            "unit": unit,
            "market_price_per_unit": price,
            "estimated_cost": round(order * price, 2),
            "risk_level": risk,
            "applied_policy": policy,
            "reasoning": reasoning,
        }

    return _make


@pytest.fixture
def make_plan():
    def _make(items, status="SUCCESS", summary="Restock for the coming days."):
        payload = {"plan_summary": summary, "status": status, "items": items}
        payload["total_estimated_cost"] = round(sum(i["estimated_cost"] for i in items), 2)
        return payload

    return _make


@pytest.fixture
def refusal_payload():
    return {
        "plan_summary": "Horizon exceeds 14 days; forecasts beyond that are not reliable.",
        "status": "REFUSED",
        "total_estimated_cost": 0,
        "items": [],
    }


@pytest.fixture
def weekday_payload(make_item, make_plan):
    return make_plan(
        [
            make_item("Onions", 4, 9.2, "kg", 40),
            make_item("Tomatoes", 2, 17.8, "kg", 60, risk="Medium"),
        ]
    )


@pytest.fixture
def plan_cache(tmp_path):
    return PlanCache(str(tmp_path / "plan_cache"))


@pytest.fixture
def make_orchestrator(plan_cache):
    def _make(response, now=WEDNESDAY, cache_scope="caller", cache=None):
        gateway = StubGateway(response)
        orchestrator = PlanOrchestrator(
            cache=cache or plan_cache,
            gateway=gateway,
            clock=lambda: now,
            cache_scope=cache_scope,
        )
        return orchestrator, gateway

    return _make
