"""Tests for template resolution and --var parsing."""

from datetime import datetime, timezone

import pytest

from recipe_replay.recipes.models import Effect, Guard, RecipeStep
from recipe_replay.recipes.templates import (
    TemplateContext,
    collect_step_template_tokens,
    format_instant,
    is_builtin_token,
    parse_cli_variables,
    resolve_step_templates,
    resolve_template,
)
from recipe_replay.result import Err, Ok

NOW = datetime(2026, 2, 26, 8, 0, 0, tzinfo=timezone.utc)


def ctx(**vars: str) -> TemplateContext:
    return TemplateContext(vars=vars, now=NOW)


class TestResolveTemplate:
    def test_substitutes_supplied_variables(self):
        assert resolve_template("/t/{{tenant}}/q?d={{ day }}", ctx(tenant="acme", day="x")) == Ok("/t/acme/q?d=x")

    def test_supplied_variable_shadows_builtin(self):
        assert resolve_template("{{now}}", ctx(now="custom")) == Ok("custom")

    def test_now_is_utc_with_milliseconds(self):
        assert resolve_template("{{now}}", ctx()) == Ok("2026-02-26T08:00:00.000Z")

    @pytest.mark.parametrize(
        "token,expected",
        [
            ("today", "2026-02-26"),
            ("today+1d", "2026-02-27"),
            ("today-26d", "2026-01-31"),
            ("today+3d", "2026-03-01"),
        ],
    )
    def test_today_offsets(self, token, expected):
        assert resolve_template(f"{{{{{token}}}}}", ctx()) == Ok(expected)

    def test_unknown_token_is_an_error(self):
        result = resolve_template("hello {{missing}}", ctx())
        assert isinstance(result, Err)
        assert result.error.kind == "unknown_template_variable"
        assert result.error.message == "Unknown template variable: missing"

    def test_out_of_range_offset_is_invalid(self):
        result = resolve_template("{{today+99999999d}}", ctx())
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_day_offset"
        assert result.error.message.startswith("Invalid day offset")

    def test_text_without_placeholders_is_unchanged(self):
        assert resolve_template("plain { text }", ctx()) == Ok("plain { text }")


def test_format_instant_converts_to_utc():
    from datetime import timedelta

    aware = datetime(2026, 2, 26, 17, 30, 0, 123000, tzinfo=timezone(timedelta(hours=9)))
    assert format_instant(aware) == "2026-02-26T08:30:00.123Z"


class TestResolveStepTemplates:
    def test_every_templated_field_is_substituted(self):
        step = RecipeStep(
            id="s1",
            title="Search",
            mode="http",
            action="fetch",
            url="https://{{host}}/api",
            headers={"X-Tenant": "{{tenant}}"},
            body='{"q": "{{q}}"}',
            guards=[Guard(type="url_not", value="https://{{host}}/login")],
            effects=[Effect(type="url_changed", value="https://{{host}}/api")],
        )
        resolved = resolve_step_templates(step, ctx(host="example.com", tenant="acme", q="notebook"))
        assert isinstance(resolved, Ok)
        out = resolved.value
        assert out.url == "https://example.com/api"
        assert out.headers == {"X-Tenant": "acme"}
        assert out.body == '{"q": "notebook"}'
        assert out.guards[0].value == "https://example.com/login"
        assert out.effects[0].value == "https://example.com/api"
        # original untouched
        assert step.url == "https://{{host}}/api"

    def test_error_names_the_field(self):
        step = RecipeStep(id="s1", title="Fill", mode="pw", action="fill", selector_variants=["#a", "#{{nope}}"], value="x")
        resolved = resolve_step_templates(step, ctx())
        assert isinstance(resolved, Err)
        assert resolved.error.message == "Unknown template variable: nope (in selector_variants[1])"

    def test_resolving_twice_is_stable(self):
        step = RecipeStep(
            id="s1",
            title="Report",
            mode="http",
            action="fetch",
            url="https://{{host}}/report?from={{today}}&to={{today+7d}}",
            headers={"X-Stamp": "{{now}}"},
            body='{"tenant": "{{tenant}}"}',
            guards=[Guard(type="url_not", value="https://{{host}}/login")],
        )
        context = ctx(host="example.com", tenant="acme")
        once = resolve_step_templates(step, context).value
        twice = resolve_step_templates(once, context).value

        assert twice == once
        assert "{{" not in str(twice.to_dict())
        assert once.url == "https://example.com/report?from=2026-02-26&to=2026-03-05"

    def test_effect_without_value_stays_none(self):
        step = RecipeStep(id="s1", title="Go", mode="pw", action="goto", url="https://a", effects=[Effect(type="url_changed")])
        resolved = resolve_step_templates(step, ctx())
        assert resolved.value.effects[0].value is None


def test_collect_tokens_and_builtins():
    steps = [
        RecipeStep(id="a", title="a", mode="pw", action="goto", url="https://x/{{tenant}}?d={{today+1d}}"),
        RecipeStep(id="b", title="b", mode="pw", action="fill", selector_variants=["#q"], value="{{ keyword }}"),
    ]
    tokens = collect_step_template_tokens(steps)
    assert tokens == {"tenant", "today+1d", "keyword"}
    assert is_builtin_token("today+1d")
    assert is_builtin_token("now")
    assert not is_builtin_token("tenant")


class TestParseCliVariables:
    def test_parses_pairs_and_keeps_equals_in_value(self):
        assert parse_cli_variables(["tenant=acme", "q=a=b"]) == Ok({"tenant": "acme", "q": "a=b"})

    def test_key_is_trimmed(self):
        assert parse_cli_variables([" tenant =acme"]) == Ok({"tenant": "acme"})

    @pytest.mark.parametrize("raw", ["tenant", "=acme", "tenant="])
    def test_format_errors(self, raw):
        result = parse_cli_variables([raw])
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_cli_var_format"
        assert result.error.message == f"Invalid --var format: {raw}. Use --var key=value"

    def test_blank_key_is_rejected(self):
        result = parse_cli_variables(["  =acme"])
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_cli_var_key"
