"""Tests for versioned YAML recipe storage."""

import pytest
import yaml

from recipe_replay.recipes.models import Recipe, RecipeStep
from recipe_replay.recipes.plan import build_execution_plan
from recipe_replay.recipes.store import RecipeStore, parse_recipe, recipe_slug
from recipe_replay.result import Err, Ok


def make_recipe(name: str = "Monthly Report", **kwargs) -> Recipe:
    return Recipe(
        id=kwargs.pop("id", "monthly-report"),
        name=name,
        steps=kwargs.pop(
            "steps",
            [
                RecipeStep(id="s1", title="Open", mode="pw", action="goto", url="https://app.example/"),
                RecipeStep(id="s2", title="Export", mode="http", action="fetch", url="https://api.example/{{tenant}}/export"),
            ],
        ),
        **kwargs,
    )


def test_recipe_slug():
    assert recipe_slug("  Monthly Report (Q1) ") == "monthly-report-q1"
    assert recipe_slug("***") == "recipe"


class TestRecipeStore:
    def test_save_and_load(self, tmp_path):
        store = RecipeStore(directory=tmp_path)
        path = store.save(make_recipe())

        assert path == tmp_path / "monthly-report.yaml"
        loaded = store.load("Monthly Report")
        assert isinstance(loaded, Ok)
        assert loaded.value.name == "monthly-report"
        assert [s.id for s in loaded.value.steps] == ["s1", "s2"]

    def test_name_collision_gets_suffix_unless_overwriting(self, tmp_path):
        store = RecipeStore(directory=tmp_path)
        store.save(make_recipe())
        assert store.save(make_recipe()).name == "monthly-report-2.yaml"

        healed = make_recipe(name="monthly-report", version=2)
        assert store.save(healed, overwrite=True) == tmp_path / "monthly-report.yaml"
        assert store.load("monthly-report").value.version == 2

    def test_overwriting_with_newer_version_archives_previous(self, tmp_path):
        store = RecipeStore(directory=tmp_path)
        store.save(make_recipe())
        store.save(make_recipe(name="monthly-report", version=2, source="healed"), overwrite=True)
        store.save(make_recipe(name="monthly-report", version=3, source="healed"), overwrite=True)

        assert store.history("monthly-report") == [1, 2]
        assert store.load_version("monthly-report", 1).value.source == "compiled"
        assert store.load_version("monthly-report", 3).value.version == 3
        missing = store.load_version("monthly-report", 7)
        assert isinstance(missing, Err)
        assert missing.error.kind == "recipe_not_found"

    def test_rewriting_same_version_does_not_archive(self, tmp_path):
        store = RecipeStore(directory=tmp_path)
        store.save(make_recipe())
        store.save(make_recipe(name="monthly-report"), overwrite=True)
        assert store.history("monthly-report") == []

    def test_missing_and_invalid_files(self, tmp_path):
        store = RecipeStore(directory=tmp_path)
        missing = store.load("nope")
        assert isinstance(missing, Err)
        assert missing.error.message == "Recipe not found: nope"

        (tmp_path / "broken.yaml").write_text("name: [unclosed", encoding="utf-8")
        assert store.load("broken").error.kind == "recipe_parse_failed"

        bad = make_recipe(name="bad").to_dict()
        bad["steps"][0]["mode"] = "http"
        bad["steps"][0]["action"] = "click"
        (tmp_path / "bad.yaml").write_text(yaml.safe_dump(bad), encoding="utf-8")
        result = store.load("bad")
        assert result.error.kind == "recipe_parse_failed"
        assert "s1" in result.error.message

    def test_rejects_non_http_fetch_url(self, tmp_path):
        store = RecipeStore(directory=tmp_path)
        recipe = make_recipe(steps=[RecipeStep(id="s1", title="t", mode="http", action="fetch", url="file:///etc/passwd")])
        with pytest.raises(ValueError, match="http"):
            store.save(recipe)
        assert not (tmp_path / "monthly-report.yaml").exists()

    def test_rejects_unknown_method(self, tmp_path):
        store = RecipeStore(directory=tmp_path)
        recipe = make_recipe(steps=[RecipeStep(id="s1", title="t", mode="http", action="fetch", url="https://x", method="BREW")])
        with pytest.raises(ValueError, match="method"):
            store.save(recipe)

    def test_list_sorted_by_update(self, tmp_path):
        store = RecipeStore(directory=tmp_path)
        older = make_recipe(name="b")
        newer = make_recipe(name="a")
        older.updated_at = older.updated_at.replace(year=2020)
        store.save(older)
        store.save(newer)
        (tmp_path / "junk.yaml").write_text("- not a mapping\n", encoding="utf-8")

        assert [r.name for r in store.list_all()] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_async_wrappers(self, tmp_path):
        store = RecipeStore(directory=str(tmp_path))
        await store.save_async(make_recipe())
        loaded = await store.load_async("monthly-report")
        assert isinstance(loaded, Ok)
        assert [r.name for r in await store.list_all_async()] == ["monthly-report"]


def test_parse_recipe_requires_mapping():
    assert parse_recipe("").error.kind == "recipe_parse_failed"
    assert parse_recipe("- a\n- b\n").error.kind == "recipe_parse_failed"
    assert parse_recipe("name: solo\n").value.id == "solo"


@pytest.mark.asyncio
async def test_numeric_body_parses_and_plans():
    text = (
        "name: numeric\n"
        "steps:\n"
        "  - {id: s1, title: Post, mode: http, action: fetch, url: 'https://api.example/x', method: POST, body: 123}\n"
    )
    recipe = parse_recipe(text).value
    plan = await build_execution_plan(recipe)
    assert isinstance(plan, Ok)
    assert plan.value.steps[0].body == "123"


def test_mapping_body_is_a_parse_failure():
    text = "name: bad\nsteps:\n  - {id: s1, title: Post, mode: http, action: fetch, url: 'https://a.example/', body: {q: 1}}\n"
    result = parse_recipe(text)
    assert isinstance(result, Err)
    assert result.error.kind == "recipe_parse_failed"
