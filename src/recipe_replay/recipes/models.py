"""Data models for replayable recipes.

A recipe is a versioned, ordered list of steps captured from a user session.
Each step runs on one of two surfaces: a direct HTTP call (``http``) or the
driven browser page (``pw``). Guards are checked before a step runs and
effects after it; both are simple ``{type, value}`` predicates.

Recipes are persisted as YAML through ``RecipeStore`` and are treated as
immutable during a run: healing produces a new, version-incremented copy.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

RECIPE_SCHEMA_VERSION = 1

StepMode = Literal["http", "pw"]
StepAction = Literal["goto", "click", "fill", "press", "fetch", "extract", "ensure_login"]
RecipeSource = Literal["compiled", "repaired", "healed"]
GuardType = Literal["url_is", "url_not", "text_visible"]
EffectType = Literal["url_changed", "text_visible", "min_items"]
ResolverKind = Literal["cli", "builtin", "prompted", "secret"]

STEP_MODES = frozenset({"http", "pw"})
STEP_ACTIONS = frozenset({"goto", "click", "fill", "press", "fetch", "extract", "ensure_login"})
GUARD_TYPES = frozenset({"url_is", "url_not", "text_visible"})
EFFECT_TYPES = frozenset({"url_changed", "text_visible", "min_items"})
RESOLVER_KINDS = frozenset({"cli", "builtin", "prompted", "secret"})

# Actions that only make sense against a live page
BROWSER_ONLY_ACTIONS = frozenset({"goto", "click", "fill", "press"})


@dataclass
class Guard:
    """Pre-condition checked before a step runs."""

    type: GuardType
    value: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Guard":
        guard_type = data["type"]
        if guard_type not in GUARD_TYPES:
            raise ValueError(f"Unknown guard type: {guard_type!r}")
        return cls(type=guard_type, value=str(data.get("value", "")))


@dataclass
class Effect:
    """Post-condition checked after a step runs.

    ``min_items`` encodes its value as ``selector|count``.
    ``url_changed`` accepts an optional exact URL the page must end up on.
    """

    type: EffectType
    value: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type}
        if self.value is not None:
            result["value"] = self.value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Effect":
        effect_type = data["type"]
        if effect_type not in EFFECT_TYPES:
            raise ValueError(f"Unknown effect type: {effect_type!r}")
        value = data.get("value")
        return cls(type=effect_type, value=str(value) if value is not None else None)


@dataclass
class RecipeStep:
    """A single replayable action."""

    id: str
    title: str
    mode: StepMode
    action: StepAction
    url: str | None = None
    selector_variants: list[str] = field(default_factory=list)
    value: str | None = None
    key: str | None = None
    method: str | None = None  # HTTP steps only
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    download: bool = False  # Save the response body to the download directory
    guards: list[Guard] = field(default_factory=list)
    effects: list[Effect] = field(default_factory=list)

    def copy(self, **changes: Any) -> "RecipeStep":
        """Return a deep-enough copy with optional field overrides."""
        base = replace(
            self,
            selector_variants=list(self.selector_variants),
            headers=dict(self.headers),
            guards=[Guard(g.type, g.value) for g in self.guards],
            effects=[Effect(e.type, e.value) for e in self.effects],
        )
        return replace(base, **changes) if changes else base

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "mode": self.mode,
            "action": self.action,
        }
        if self.url is not None:
            result["url"] = self.url
        if self.selector_variants:
            result["selector_variants"] = list(self.selector_variants)
        if self.value is not None:
            result["value"] = self.value
        if self.key is not None:
            result["key"] = self.key
        if self.method is not None:
            result["method"] = self.method
        if self.headers:
            result["headers"] = dict(self.headers)
        if self.body is not None:
            result["body"] = self.body
        if self.download:
            result["download"] = True
        if self.guards:
            result["guards"] = [g.to_dict() for g in self.guards]
        if self.effects:
            result["effects"] = [e.to_dict() for e in self.effects]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecipeStep":
        mode = data["mode"]
        if mode not in STEP_MODES:
            raise ValueError(f"Unknown step mode: {mode!r}")
        action = data["action"]
        if action not in STEP_ACTIONS:
            raise ValueError(f"Unknown step action: {action!r}")

        headers = data.get("headers") or {}
        if not isinstance(headers, dict):
            raise ValueError("RecipeStep.headers must be a mapping")

        return cls(
            id=str(data["id"]),
            title=str(data.get("title", data["id"])),
            mode=mode,
            action=action,
            url=_optional_str(data.get("url")),
            selector_variants=[str(s) for s in data.get("selector_variants", [])],
            value=_optional_str(data.get("value")),
            key=_optional_str(data.get("key")),
            method=_optional_str(data.get("method")),
            headers={str(k): str(v) for k, v in headers.items()},
            body=_optional_str(data.get("body")),
            download=bool(data.get("download", False)),
            guards=[Guard.from_dict(g) for g in data.get("guards", [])],
            effects=[Effect.from_dict(e) for e in data.get("effects", [])],
        )


@dataclass
class VariableResolver:
    """How a variable obtains its value when the caller does not supply it."""

    kind: ResolverKind
    key: str | None = None  # cli: alternative name looked up in caller values
    expr: str | None = None  # builtin: template expression such as "today+1d"
    prompt_template: str | None = None  # prompted: rendered against already-resolved variables

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind}
        if self.key is not None:
            result["key"] = self.key
        if self.expr is not None:
            result["expr"] = self.expr
        if self.prompt_template is not None:
            result["prompt_template"] = self.prompt_template
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VariableResolver":
        kind = data["kind"]
        if kind not in RESOLVER_KINDS:
            raise ValueError(f"Unknown variable resolver: {kind!r}")
        if kind == "builtin" and not data.get("expr"):
            raise ValueError("builtin resolver requires 'expr'")
        if kind == "prompted" and not data.get("prompt_template"):
            raise ValueError("prompted resolver requires 'prompt_template'")
        return cls(kind=kind, key=data.get("key"), expr=data.get("expr"), prompt_template=data.get("prompt_template"))


@dataclass
class RecipeVariable:
    """A named input the recipe steps reference through ``{{name}}``."""

    name: str
    resolver: VariableResolver = field(default_factory=lambda: VariableResolver(kind="cli"))
    type: Literal["string", "date"] | None = None
    pattern: str | None = None
    default_value: str | None = None
    required: bool = False
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "resolver": self.resolver.to_dict()}
        if self.type is not None:
            result["type"] = self.type
        if self.pattern is not None:
            result["pattern"] = self.pattern
        if self.default_value is not None:
            result["default_value"] = self.default_value
        result["required"] = self.required
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecipeVariable":
        var_type = data.get("type")
        if var_type not in (None, "string", "date"):
            raise ValueError(f"Unknown variable type: {var_type!r}")
        default = data.get("default_value")
        return cls(
            name=str(data["name"]),
            resolver=VariableResolver.from_dict(data.get("resolver") or {"kind": "cli"}),
            type=var_type,
            pattern=data.get("pattern"),
            default_value=None if default is None else str(default),
            required=bool(data.get("required", False)),
            description=data.get("description", ""),
        )


@dataclass
class FallbackPlan:
    """Recipe-level repair policy."""

    selector_re_search: bool = True
    selector_variants: list[str] = field(default_factory=list)
    allow_repair: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "selector_re_search": self.selector_re_search,
            "selector_variants": list(self.selector_variants),
            "allow_repair": self.allow_repair,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FallbackPlan":
        return cls(
            selector_re_search=bool(data.get("selector_re_search", True)),
            selector_variants=[str(s) for s in data.get("selector_variants", [])],
            allow_repair=bool(data.get("allow_repair", True)),
        )


@dataclass
class Recipe:
    """A versioned, replayable sequence of steps."""

    id: str
    name: str
    steps: list[RecipeStep] = field(default_factory=list)
    variables: list[RecipeVariable] = field(default_factory=list)
    version: int = 1
    source: RecipeSource = "compiled"
    fallback: FallbackPlan = field(default_factory=FallbackPlan)
    notes: str | None = None
    download_dir: str | None = None
    schema_version: int = RECIPE_SCHEMA_VERSION
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert recipe to dictionary for serialization."""
        result: dict[str, Any] = {
            "schema_version": self.schema_version,
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "source": self.source,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "variables": [v.to_dict() for v in self.variables],
            "steps": [s.to_dict() for s in self.steps],
            "fallback": self.fallback.to_dict(),
        }
        if self.notes is not None:
            result["notes"] = self.notes
        if self.download_dir is not None:
            result["download_dir"] = self.download_dir
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recipe":
        """Create recipe from dictionary."""
        source = data.get("source", "compiled")
        if source not in ("compiled", "repaired", "healed"):
            raise ValueError(f"Unknown recipe source: {source!r}")

        created_at = _parse_datetime(data.get("created_at"))
        updated_at = _parse_datetime(data.get("updated_at")) or created_at

        recipe = cls(
            id=str(data.get("id") or data["name"]),
            name=str(data["name"]),
            steps=[RecipeStep.from_dict(s) for s in data.get("steps", [])],
            variables=[RecipeVariable.from_dict(v) for v in data.get("variables", [])],
            version=int(data.get("version", 1)),
            source=source,
            fallback=FallbackPlan.from_dict(data.get("fallback") or {}),
            notes=data.get("notes"),
            download_dir=data.get("download_dir"),
            schema_version=int(data.get("schema_version", RECIPE_SCHEMA_VERSION)),
        )
        if created_at is not None:
            recipe.created_at = created_at
        if updated_at is not None:
            recipe.updated_at = updated_at
        return recipe


def _optional_str(value: Any) -> str | None:
    """Scalar YAML values as text; mappings and lists are rejected."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    raise ValueError(f"Expected a string, got {type(value).__name__}")


def _parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def find_step_mode_violations(steps: list[RecipeStep]) -> list[str]:
    """Return ids of HTTP steps that carry browser-only actions."""
    return [step.id for step in steps if step.mode == "http" and step.action in BROWSER_ONLY_ACTIONS]


def validate_recipe_steps(recipe: Recipe) -> None:
    """Raise ValueError when the recipe's steps break surface invariants."""
    if not recipe.steps:
        return

    violations = find_step_mode_violations(recipe.steps)
    if violations:
        raise ValueError(f"HTTP steps cannot perform browser actions: {', '.join(violations)}")

    seen: set[str] = set()
    for step in recipe.steps:
        if step.id in seen:
            raise ValueError(f"Duplicate step id: {step.id}")
        seen.add(step.id)
