import pytest

from userkb.chat.filters import (
    MODE_CLEAR,
    MODE_MERGE,
    MODE_NEW,
    MODE_REPLACE,
    apply_filter_mode,
    build_publishers_url,
    describe_filters,
    detect_filter_mode,
    normalize_filters,
    validate_filters,
)
from userkb.chat.tools import PublisherFilterTool, ToolContext, ToolRegistry, default_tool_registry
from userkb.errors import ToolExecutionError


def test_normalize_keeps_known_fields_and_coerces():
    raw = {
        "daMin": "30",
        "priceMax": "$1,000",
        "niche": " Tech ",
        "country": "INDIA",
        "availability": "true",
        "language": "",
        "unknown": "ignored",
        "drMax": None,
    }

    assert normalize_filters(raw) == {
        "daMin": 30,
        "priceMax": 1000,
        "niche": "tech",
        "country": "india",
        "availability": True,
    }


@pytest.mark.parametrize("raw", [["daMin"], "daMin=3", {"daMin": "lots"}, {"daMin": True}, {"availability": "maybe"}])
def test_normalize_rejects_bad_values(raw):
    with pytest.raises(ValueError):
        normalize_filters(raw)


def test_normalize_none_is_empty():
    assert normalize_filters(None) == {}


@pytest.mark.parametrize(
    "filters,fragment",
    [
        ({"daMin": 120}, "daMin must be between 0 and 100"),
        ({"spamMax": -1}, "spamMax must be between 0 and 100"),
        ({"priceMin": -5}, "priceMin cannot be negative"),
        ({"trafficMin": -10}, "trafficMin cannot be negative"),
        ({"drMin": 60, "drMax": 40}, "drMin cannot be greater than drMax"),
    ],
)
def test_validate_reports_problems(filters, fragment):
    assert fragment in validate_filters(filters)


def test_validate_accepts_sane_state():
    assert validate_filters({"daMin": 0, "daMax": 100, "priceMin": 10, "priceMax": 10}) == []


@pytest.mark.parametrize(
    "message,mode",
    [
        ("Clear all filters please", MODE_CLEAR),
        ("reset the filters", MODE_CLEAR),
        ("let's start over", MODE_CLEAR),
        ("Actually, make it health sites", MODE_REPLACE),
        ("Show me finance instead", MODE_REPLACE),
        ("change to DA above 50", MODE_REPLACE),
        ("Also only sites from India", MODE_MERGE),
        ("and under $200", MODE_MERGE),
        ("Show me tech sites with DA over 40", MODE_NEW),
    ],
)
def test_detect_filter_mode(message, mode):
    assert detect_filter_mode(message) == mode


def test_clear_takes_precedence_over_replace():
    assert detect_filter_mode("actually just clear the filters") == MODE_CLEAR


def test_apply_modes():
    current = {"niche": "tech", "daMin": 30, "daMax": 60}

    assert apply_filter_mode(MODE_CLEAR, current, {"niche": "health"}) == {}
    assert apply_filter_mode(MODE_NEW, current, {"niche": "health"}) == {"niche": "health"}
    assert apply_filter_mode(MODE_MERGE, current, {"country": "india"}) == {
        "niche": "tech",
        "daMin": 30,
        "daMax": 60,
        "country": "india",
    }
    # Replacing daMin drops the whole DA range but keeps the niche.
    assert apply_filter_mode(MODE_REPLACE, current, {"daMin": 50}) == {"niche": "tech", "daMin": 50}


def test_apply_does_not_mutate_current():
    current = {"niche": "tech"}
    apply_filter_mode(MODE_MERGE, current, {"daMin": 10})
    assert current == {"niche": "tech"}


def test_publishers_url_uses_field_order():
    url = build_publishers_url({"niche": "tech", "daMin": 30, "availability": False, "priceMax": 500})
    assert url == "/publishers?daMin=30&priceMax=500&niche=tech&availability=false"


def test_describe_filters():
    assert describe_filters({}) == "No filters currently applied"
    assert describe_filters({"niche": "tech", "daMin": 30}) == "Current filters: daMin=30, niche=tech"


# ==================== PublisherFilterTool ====================

def run_tool(parameters, message="Show me tech sites", state=None):
    context = ToolContext(user_id="u1", user_message=message, filter_state=state or {})
    return PublisherFilterTool().execute(parameters, context)


def test_tool_returns_navigation_result():
    result = run_tool({"niche": "tech", "daMin": "40"})

    assert result == {
        "action": "filter_applied",
        "mode": MODE_NEW,
        "filters": {"daMin": 40, "niche": "tech"},
        "message": "Applied filters and navigating to publisher page",
        "url": "/publishers?daMin=40&niche=tech",
        "success": True,
    }


def test_tool_merges_with_current_state():
    result = run_tool({"country": "India"}, message="Also only from India", state={"niche": "tech"})
    assert result["filters"] == {"niche": "tech", "country": "india"}
    assert result["mode"] == MODE_MERGE


def test_tool_clear_reports_cleared():
    result = run_tool({}, message="clear all filters", state={"niche": "tech"})
    assert result["filters"] == {}
    assert result["message"] == "Cleared all filters"
    assert result["url"] == "/publishers?"


def test_tool_rejects_invalid_ranges():
    with pytest.raises(ToolExecutionError, match="Invalid filters"):
        run_tool({"daMin": 70, "daMax": 20})


def test_tool_rejects_uncoercible_parameters():
    with pytest.raises(ToolExecutionError):
        run_tool({"priceMax": "cheap"})


def test_registry_lookup():
    registry = default_tool_registry()
    assert registry.names() == ["applyFilters"]
    assert isinstance(registry.get("applyFilters"), PublisherFilterTool)
    with pytest.raises(ToolExecutionError, match="Unknown tool 'bookFlight'"):
        registry.get("bookFlight")


def test_registry_requires_named_tools():
    class Nameless(PublisherFilterTool):
        name = ""

    with pytest.raises(ValueError):
        ToolRegistry([Nameless()])
