"""Application configuration and shared settings."""

import json
import os
import re
from dotenv import load_dotenv

import dspy

load_dotenv(override=True)

# --- Gemini access ---
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
PLANNER_MODEL = os.getenv("PLANNER_MODEL", "gemini-2.5-flash")
# Bounded wait for a single planning call; exceeding it surfaces as a transport failure.
PLANNER_TIMEOUT_SECONDS = float(os.getenv("PLANNER_TIMEOUT_SECONDS", "60"))
PLANNER_TIMEZONE = os.getenv("PLANNER_TIMEZONE", "Asia/Kolkata")

# --- Plan cache ---
PLAN_CACHE_DIR = os.getenv("PLAN_CACHE_DIR", "~/.restroprocure/plan_cache")
PLAN_CACHE_ENABLED = os.getenv("PLAN_CACHE_ENABLED", "true").lower() == "true"
# "caller" keeps one namespace per caller id, "global" shares plans across callers.
PLAN_CACHE_SCOPE = os.getenv("PLAN_CACHE_SCOPE", "caller").lower()
PLAN_CACHE_LOCK_TIMEOUT = int(os.getenv("PLAN_CACHE_LOCK_TIMEOUT", "10"))

# --- Validation ---
PLAN_COST_TOLERANCE = float(os.getenv("PLAN_COST_TOLERANCE", "0.01"))
MIN_INVENTORY_CHARS = int(os.getenv("MIN_INVENTORY_CHARS", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
    ).split(",")
    if origin.strip()
]

# --- Cultural calendar ---
# Fixed-date high-impact events keyed by MM-DD. Movable festivals are supplied
# through HIGH_IMPACT_EVENTS as a JSON object with the same shape.
DEFAULT_HIGH_IMPACT_EVENTS = {
    "01-01": "New Year's Day",
    "01-26": "Republic Day",
    "08-15": "Independence Day",
    "10-02": "Gandhi Jayanti",
    "12-25": "Christmas",
    "12-31": "New Year's Eve",
}

_EVENT_DATE = re.compile(r"^(0[1-9]|1[0-2])-(0[1-9]|[12][0-9]|3[01])$")


def load_event_calendar(raw: str | None) -> dict:
    """Parse a HIGH_IMPACT_EVENTS override; unset or empty means the defaults."""
    if not raw or not raw.strip():
        return dict(DEFAULT_HIGH_IMPACT_EVENTS)
    try:
        events = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"HIGH_IMPACT_EVENTS is not valid JSON: {e}") from e
    if not isinstance(events, dict):
        raise ValueError("HIGH_IMPACT_EVENTS must be a JSON object mapping 'MM-DD' to an event name.")
    for day, name in events.items():
        if not _EVENT_DATE.match(day):
            raise ValueError(f"HIGH_IMPACT_EVENTS key {day!r} is not an 'MM-DD' date.")
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"HIGH_IMPACT_EVENTS entry {day!r} needs a non-empty event name.")
    return events


HIGH_IMPACT_EVENTS = load_event_calendar(os.getenv("HIGH_IMPACT_EVENTS"))

# --- Gemini model handles ---
# Our own plan cache governs reuse, and retries are left to the caller.
PLANNER_LM_ARGS = {
    "api_key": GEMINI_API_KEY,
    "temperature": 0.0,
    "max_tokens": 4000,
    "cache": False,
    "num_retries": 0,
    "timeout": PLANNER_TIMEOUT_SECONDS,
    "tool_choice": "required",
}

GEMINI_2_5_FLASH = dspy.LM("gemini/gemini-2.5-flash", **PLANNER_LM_ARGS)
GEMINI_2_5_FLASH_LITE = dspy.LM("gemini/gemini-2.5-flash-lite", **PLANNER_LM_ARGS)
GEMINI_2_5_PRO = dspy.LM("gemini/gemini-2.5-pro", **PLANNER_LM_ARGS)

AVAILABLE_MODELS = {
    "gemini-2.5-flash": GEMINI_2_5_FLASH,
    "gemini-2.5-flash-lite": GEMINI_2_5_FLASH_LITE,
    "gemini-2.5-pro": GEMINI_2_5_PRO,
}
