"""Template placeholder resolution for recipe steps.

Placeholders use the ``{{ name }}`` syntax. A token resolves, in order, to a
supplied variable, the builtin ``now`` (current UTC instant, ISO-8601 with
milliseconds), or ``today`` / ``today+Nd`` / ``today-Nd`` (local calendar
date of ``now`` shifted by N days). Anything else is an error.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from ..result import Err, Ok, Result
from .failures import CliVarError, TemplateError
from .models import Effect, Guard, RecipeStep

TEMPLATE_PATTERN = re.compile(r"{{\s*([^{}]+?)\s*}}")
TODAY_PATTERN = re.compile(r"^today([+-]\d+d)?$")


@dataclass(frozen=True)
class TemplateContext:
    vars: Mapping[str, str] = field(default_factory=dict)
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def format_instant(now: datetime) -> str:
    """Format an instant as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    if now.tzinfo is None:
        now = now.astimezone()
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _resolve_today(token: str, offset: str | None, now: datetime) -> Result[str, TemplateError]:
    base = (now if now.tzinfo is None else now.astimezone()).date()
    if not offset:
        return Ok(base.isoformat())

    try:
        days = int(offset[:-1])
        shifted = base + timedelta(days=days)
    except (ValueError, OverflowError):
        return Err(TemplateError(kind="invalid_day_offset", token=token))
    return Ok(shifted.isoformat())


def _resolve_token(token: str, context: TemplateContext) -> Result[str, TemplateError]:
    if token in context.vars:
        return Ok(context.vars[token])
    if token == "now":
        return Ok(format_instant(context.now))

    match = TODAY_PATTERN.match(token)
    if match:
        return _resolve_today(token, match.group(1), context.now)

    return Err(TemplateError(kind="unknown_template_variable", token=token))


def resolve_template(value: str, context: TemplateContext) -> Result[str, TemplateError]:
    """Substitute every placeholder in ``value``; the first failure aborts."""
    parts: list[str] = []
    last = 0
    for match in TEMPLATE_PATTERN.finditer(value):
        resolved = _resolve_token(match.group(1), context)
        if isinstance(resolved, Err):
            return resolved
        parts.append(value[last : match.start()])
        parts.append(resolved.value)
        last = match.end()
    parts.append(value[last:])
    return Ok("".join(parts))


def _resolve_field(value: str | None, field_name: str, context: TemplateContext) -> Result[str | None, TemplateError]:
    if value is None:
        return Ok(None)
    resolved = resolve_template(value, context)
    if isinstance(resolved, Err):
        err = resolved.error
        return Err(TemplateError(kind=err.kind, token=err.token, field=field_name))
    return resolved


def resolve_step_templates(step: RecipeStep, context: TemplateContext) -> Result[RecipeStep, TemplateError]:
    """Return a copy of ``step`` with every templated field substituted.

    Covered fields: url, value, each selector variant, each guard and effect
    value, the HTTP body and header values. The error names the field.
    """
    url = _resolve_field(step.url, "url", context)
    if isinstance(url, Err):
        return url
    value = _resolve_field(step.value, "value", context)
    if isinstance(value, Err):
        return value

    selectors: list[str] = []
    for index, selector in enumerate(step.selector_variants):
        resolved = _resolve_field(selector, f"selector_variants[{index}]", context)
        if isinstance(resolved, Err):
            return resolved
        selectors.append(resolved.value)

    guards: list[Guard] = []
    for index, guard in enumerate(step.guards):
        resolved = _resolve_field(guard.value, f"guards[{index}]", context)
        if isinstance(resolved, Err):
            return resolved
        guards.append(Guard(type=guard.type, value=resolved.value))

    effects: list[Effect] = []
    for index, effect in enumerate(step.effects):
        resolved = _resolve_field(effect.value, f"effects[{index}]", context)
        if isinstance(resolved, Err):
            return resolved
        effects.append(Effect(type=effect.type, value=resolved.value))

    body = _resolve_field(step.body, "body", context)
    if isinstance(body, Err):
        return body

    headers: dict[str, str] = {}
    for name, header_value in step.headers.items():
        resolved = _resolve_field(header_value, f"headers[{name}]", context)
        if isinstance(resolved, Err):
            return resolved
        headers[name] = resolved.value

    return Ok(
        step.copy(
            url=url.value,
            value=value.value,
            selector_variants=selectors,
            guards=guards,
            effects=effects,
            body=body.value,
            headers=headers,
        )
    )


def list_template_tokens(value: str | None) -> list[str]:
    if not value:
        return []
    return [match.group(1) for match in TEMPLATE_PATTERN.finditer(value)]


def collect_step_template_tokens(steps: Iterable[RecipeStep]) -> set[str]:
    """Every placeholder token referenced anywhere in ``steps``."""
    tokens: set[str] = set()
    for step in steps:
        fields: list[str | None] = [step.url, step.value, step.body]
        fields.extend(step.selector_variants)
        fields.extend(g.value for g in step.guards)
        fields.extend(e.value for e in step.effects)
        fields.extend(step.headers.values())
        for value in fields:
            tokens.update(list_template_tokens(value))
    return tokens


def is_builtin_token(token: str) -> bool:
    return token == "now" or TODAY_PATTERN.match(token) is not None


def parse_cli_variables(raw_vars: Iterable[str]) -> Result[dict[str, str], CliVarError]:
    """Parse ``key=value`` pairs; the value may contain ``=`` but must not be empty."""
    parsed: dict[str, str] = {}
    for raw in raw_vars:
        index = raw.find("=")
        if index <= 0 or index == len(raw) - 1:
            return Err(CliVarError(kind="invalid_cli_var_format", raw=raw))
        key = raw[:index].strip()
        if not key:
            return Err(CliVarError(kind="invalid_cli_var_key", raw=raw))
        parsed[key] = raw[index + 1 :]
    return Ok(parsed)
