"""Tests for guard and effect evaluation."""

import pytest

from recipe_replay.recipes.models import Effect, Guard, RecipeStep
from recipe_replay.recipes.validation import (
    evaluate_effect,
    evaluate_guard,
    matches_url,
    parse_min_items,
    validate_effects,
    validate_guards,
)
from recipe_replay.result import Err, Ok


def test_matches_url_exact_and_prefix():
    assert matches_url("https://a.example/x", "https://a.example/x")
    assert not matches_url("https://a.example/x", "https://a.example/x?y=1")
    assert matches_url("https://a.example/*", "https://a.example/deep/path")
    assert not matches_url("https://a.example/*", "https://b.example/")


@pytest.mark.parametrize(
    "value,expected",
    [
        ("li.row|3", ("li.row", 3)),
        ("li.row|0", ("li.row", 0)),
        ("li.row", None),
        ("|3", None),
        ("li.row|", None),
        ("li.row|many", None),
        ("li.row|-1", None),
        (None, None),
    ],
)
def test_parse_min_items(value, expected):
    assert parse_min_items(value) == expected


class TestGuards:
    @pytest.mark.asyncio
    async def test_url_guards_pass_when_url_unknown(self):
        assert await evaluate_guard(Guard(type="url_is", value="https://x"), None)
        assert await evaluate_guard(Guard(type="url_not", value="https://x"), None)

    @pytest.mark.asyncio
    async def test_url_not(self):
        guard = Guard(type="url_not", value="https://x/login*")
        assert not await evaluate_guard(guard, "https://x/login?next=/")
        assert await evaluate_guard(guard, "https://x/home")

    @pytest.mark.asyncio
    async def test_text_visible_without_page_passes(self):
        assert await evaluate_guard(Guard(type="text_visible", value="Welcome"), "https://x")

    @pytest.mark.asyncio
    async def test_text_visible_on_page(self, page):
        page.texts.add("Welcome")
        assert await evaluate_guard(Guard(type="text_visible", value="Welcome"), "https://x", page)
        assert not await evaluate_guard(Guard(type="text_visible", value="Goodbye"), "https://x", page)

    @pytest.mark.asyncio
    async def test_first_failing_guard_is_reported(self):
        step = RecipeStep(
            id="s1",
            title="t",
            mode="pw",
            action="click",
            guards=[Guard(type="url_not", value="https://x/other"), Guard(type="url_is", value="https://x/home")],
        )
        result = await validate_guards(step, current_url="https://x/login")
        assert isinstance(result, Err)
        assert result.error.kind == "guard_failed"
        assert result.error.guard == Guard(type="url_is", value="https://x/home")
        assert result.error.message == "Guard failed: url_is=https://x/home (step=s1)"


class TestEffects:
    @pytest.mark.asyncio
    async def test_url_changed_without_value(self):
        effect = Effect(type="url_changed")
        assert await evaluate_effect(effect, "https://x/a", "https://x/b")
        assert not await evaluate_effect(effect, "https://x/a", "https://x/a")

    @pytest.mark.asyncio
    async def test_url_changed_with_value_requires_exact_match(self):
        effect = Effect(type="url_changed", value="https://x/b")
        assert await evaluate_effect(effect, "https://x/b", "https://x/b")
        assert not await evaluate_effect(effect, "https://x/a", "https://x/c")

    @pytest.mark.asyncio
    async def test_url_changed_passes_when_url_unknown(self):
        assert await evaluate_effect(Effect(type="url_changed"), "https://x/a", None)

    @pytest.mark.asyncio
    async def test_min_items(self, page):
        page.elements["li.row"] = 3
        assert await evaluate_effect(Effect(type="min_items", value="li.row|3"), None, "https://x", page)
        assert not await evaluate_effect(Effect(type="min_items", value="li.row|4"), None, "https://x", page)

    @pytest.mark.asyncio
    async def test_malformed_min_items_is_skipped(self, page):
        assert await evaluate_effect(Effect(type="min_items", value="li.row"), None, "https://x", page)

    @pytest.mark.asyncio
    async def test_min_items_with_broken_selector_fails(self, page):
        page.broken_selectors.add("li[")
        assert not await evaluate_effect(Effect(type="min_items", value="li[|1"), None, "https://x", page)

    @pytest.mark.asyncio
    async def test_validate_effects_reports_effect(self):
        step = RecipeStep(id="s2", title="t", mode="pw", action="click", effects=[Effect(type="url_changed")])
        result = await validate_effects(step, before_url="https://x/a", current_url="https://x/a")
        assert isinstance(result, Err)
        assert result.error.kind == "effect_failed"
        assert result.error.effect == Effect(type="url_changed")

        ok = await validate_effects(step, before_url="https://x/a", current_url="https://x/b")
        assert ok == Ok(None)
