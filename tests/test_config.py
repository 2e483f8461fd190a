import pytest

from backend.src.config import DEFAULT_HIGH_IMPACT_EVENTS, load_event_calendar


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_unset_event_override_uses_defaults(raw):
    assert load_event_calendar(raw) == DEFAULT_HIGH_IMPACT_EVENTS


def test_event_override_replaces_defaults():
    events = load_event_calendar('{"11-08": "Diwali", "03-14": "Holi"}')

    assert events == {"11-08": "Diwali", "03-14": "Holi"}


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        '["12-25", "Christmas"]',
        '{"25-12": "Christmas"}',
        '{"2026-11-08": "Diwali"}',
        '{"11-08": ""}',
        '{"11-08": 7}',
    ],
)
def test_malformed_event_override_is_a_clear_error(raw):
    with pytest.raises(ValueError, match="HIGH_IMPACT_EVENTS"):
        load_event_calendar(raw)
