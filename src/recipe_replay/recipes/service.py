"""Recipe services: planning, running and listing recipes.

These functions are the boundary between the engine (which returns
``Ok``/``Err`` values) and presentation layers such as the CLI. Expected
problems come back as a ``ServiceError`` or as a failed ``RunReport``.
"""

import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from ..config import settings
from ..exceptions import InvalidRecipeError, RecipeNotFoundError, RecipeReplayError, SecretStoreError
from ..llm import PromptRunner, run_local_llm
from ..observability.logging import bind_run_context, clear_run_context, get_run_logger
from ..observability.progress import Progress, ProgressReporter
from ..result import Err, Ok, Result
from ..vault import FileSecretVault, SecretVault
from .capture import EventCapture
from .classifier import events_to_steps
from .failures import StepFailure
from .healer import SelectorHealer
from .healing import EventClassifier, OperatorGate, SelfHealingEngine
from .models import Recipe
from .patcher import apply_healing
from .plan import ExecutionPlan, build_execution_plan
from .runner import StepRunner
from .store import RecipeStore
from .surfaces import BrowserHandle, BrowserLauncher, SurfaceManager, playwright_launcher
from .templates import parse_cli_variables

logger = logging.getLogger(__name__)

SECRET_MASK = "***"


@dataclass(frozen=True, slots=True)
class ServiceError:
    code: str
    message: str
    recipe: str = ""

    def to_exception(self) -> RecipeReplayError:
        """Exception raised for this error at the CLI boundary."""
        if self.code == "recipe_not_found":
            return RecipeNotFoundError(self.recipe)
        if self.code == "invalid_recipe":
            return InvalidRecipeError(self.message)
        if self.code == "secret_store":
            return SecretStoreError(self.message)
        return RecipeReplayError(self.message)


@dataclass
class PlannedRecipe:
    recipe: Recipe
    plan: ExecutionPlan


@dataclass
class RunReport:
    """Final record of a plan or run."""

    name: str
    version: int
    ok: bool
    phase: str  # "plan" | "execute"
    resolved_vars: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    unresolved_vars: list[str] = field(default_factory=list)
    error: str | None = None
    downloads: list[str] = field(default_factory=list)
    healed: dict[str, Any] | None = None
    saved_version: int | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "version": self.version,
            "ok": self.ok,
            "phase": self.phase,
            "resolvedVars": dict(self.resolved_vars),
            "warnings": list(self.warnings),
        }
        if self.unresolved_vars:
            result["unresolvedVars"] = list(self.unresolved_vars)
        if self.error is not None:
            result["error"] = self.error
        if self.downloads:
            result["downloads"] = list(self.downloads)
        if self.healed is not None:
            result["healed"] = self.healed
        if self.saved_version is not None:
            result["savedVersion"] = self.saved_version
        return result


def mask_secret_values(recipe: Recipe, resolved_vars: Mapping[str, str]) -> dict[str, str]:
    secret_names = {v.name for v in recipe.variables if v.resolver.kind == "secret"}
    return {k: (SECRET_MASK if k in secret_names else v) for k, v in resolved_vars.items()}


def _default_store() -> RecipeStore:
    return RecipeStore(settings.get_recipes_dir())


def _default_vault() -> SecretVault:
    return FileSecretVault(settings.get_secrets_dir())


async def _load_recipe(store: RecipeStore, name: str) -> Result[Recipe, ServiceError]:
    loaded = await store.load_async(name)
    if isinstance(loaded, Err):
        code = "recipe_not_found" if loaded.error.kind == "recipe_not_found" else "invalid_recipe"
        return Err(ServiceError(code=code, message=loaded.error.message, recipe=name))
    return loaded


async def plan_recipe(
    name: str,
    *,
    raw_vars: Sequence[str] = (),
    store: RecipeStore | None = None,
    vault: SecretVault | None = None,
    prompt_runner: PromptRunner | None = None,
    llm_command: str | None = None,
    now: datetime | None = None,
) -> Result[PlannedRecipe, ServiceError]:
    """Load ``name`` and build its execution plan."""
    loaded = await _load_recipe(store or _default_store(), name)
    if isinstance(loaded, Err):
        return loaded
    recipe = loaded.value

    cli_vars = parse_cli_variables(raw_vars)
    if isinstance(cli_vars, Err):
        return Err(ServiceError(code=cli_vars.error.kind, message=cli_vars.error.message, recipe=name))

    plan = await build_execution_plan(
        recipe,
        cli_vars=cli_vars.value,
        now=now,
        vault=vault if vault is not None else _default_vault(),
        prompt_runner=prompt_runner or run_local_llm,
        llm_command=llm_command,
    )
    if isinstance(plan, Err):
        return Err(ServiceError(code=plan.error.kind, message=plan.error.message, recipe=name))
    return Ok(PlannedRecipe(recipe=recipe, plan=plan.value))


def _plan_report(planned: PlannedRecipe, *, ok: bool, error: str | None = None) -> RunReport:
    plan = planned.plan
    return RunReport(
        name=planned.recipe.name,
        version=planned.recipe.version,
        ok=ok,
        phase="plan",
        resolved_vars=mask_secret_values(planned.recipe, plan.resolved_vars),
        warnings=list(plan.warnings),
        unresolved_vars=list(plan.unresolved_vars),
        error=error,
    )


async def run_recipe(
    name: str,
    *,
    raw_vars: Sequence[str] = (),
    heal: bool = False,
    plan_only: bool = False,
    llm_command: str | None = None,
    store: RecipeStore | None = None,
    vault: SecretVault | None = None,
    prompt_runner: PromptRunner | None = None,
    reporter: ProgressReporter | None = None,
    browser_launcher: BrowserLauncher | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
    operator_gate: OperatorGate | None = None,
    classify: EventClassifier | None = None,
    download_dir: Path | None = None,
    now: datetime | None = None,
) -> Result[RunReport, ServiceError]:
    """Plan and (unless ``plan_only``) execute a recipe.

    Args:
        name: Recipe name in the store
        raw_vars: ``key=value`` strings supplied by the caller
        heal: Enable guard relaxation and Phase 1/Phase 2 healing
        plan_only: Stop after planning
        llm_command: Local LLM command for prompted variables and selector healing

    Returns:
        Ok(RunReport) describing how far the run got, or Err(ServiceError)
        when the recipe cannot be loaded or planned at all.
    """
    store = store or _default_store()
    vault = vault if vault is not None else _default_vault()
    prompt_runner = prompt_runner or run_local_llm
    progress = Progress(reporter)

    planned_result = await plan_recipe(
        name,
        raw_vars=raw_vars,
        store=store,
        vault=vault,
        prompt_runner=prompt_runner,
        llm_command=llm_command,
        now=now,
    )
    if isinstance(planned_result, Err):
        return planned_result
    planned = planned_result.value
    recipe, plan = planned.recipe, planned.plan

    if not plan.runnable:
        return Ok(_plan_report(planned, ok=False, error=f"Unresolved variables: {', '.join(plan.unresolved_vars)}"))
    if plan_only:
        return Ok(_plan_report(planned, ok=True))

    run_id = uuid.uuid4().hex[:12]
    bind_run_context(run_id=run_id, recipe_id=recipe.id)
    run_logger = get_run_logger()
    run_logger.info("run_started", version=recipe.version, steps=len(plan.steps), heal=heal)
    try:
        report = await _execute(
            planned,
            heal=heal,
            llm_command=llm_command,
            store=store,
            vault=vault,
            prompt_runner=prompt_runner,
            progress=progress,
            browser_launcher=browser_launcher,
            http_transport=http_transport,
            operator_gate=operator_gate,
            classify=classify,
            download_dir=download_dir,
        )
        run_logger.info("run_finished", ok=report.ok, downloads=len(report.downloads), saved_version=report.saved_version)
        return Ok(report)
    finally:
        clear_run_context()


async def _execute(
    planned: PlannedRecipe,
    *,
    heal: bool,
    llm_command: str | None,
    store: RecipeStore,
    vault: SecretVault,
    prompt_runner: PromptRunner,
    progress: Progress,
    browser_launcher: BrowserLauncher | None,
    http_transport: httpx.AsyncBaseTransport | None,
    operator_gate: OperatorGate | None,
    classify: EventClassifier | None,
    download_dir: Path | None,
) -> RunReport:
    recipe, plan = planned.recipe, planned.plan
    warnings = list(plan.warnings)
    if heal and not recipe.fallback.allow_repair:
        warnings.append("Healing disabled: recipe does not allow repair")
        heal = False
    target_dir = Path(download_dir or recipe.download_dir or settings.get_downloads_dir()).expanduser()
    launcher = browser_launcher or playwright_launcher(
        headless=settings.browser.heal_headless if heal else settings.browser.headless
    )
    capture = EventCapture() if heal else None
    engine: SelfHealingEngine | None = None

    async with SurfaceManager(launch_browser=launcher, http_transport=http_transport) as surfaces:
        runner = StepRunner(surfaces, download_dir=target_dir, progress=progress)

        async def on_browser_open(handle: BrowserHandle) -> None:
            await runner.on_browser_open(handle)
            if capture is not None:
                await capture.install(handle.context, handle.page)

        surfaces.on_browser_open = on_browser_open

        if heal:
            healer = None
            if recipe.fallback.selector_re_search:
                healer = SelectorHealer(prompt_runner=prompt_runner, llm_command=llm_command, on_llm_query=progress.phase1_asking_llm)
            engine = SelfHealingEngine(
                runner,
                healer=healer,
                capture=capture,
                classify=classify or events_to_steps,
                operator_gate=operator_gate,
                variables=plan.resolved_vars,
                progress=progress,
            )
            outcome = await engine.run(plan.steps)
        else:
            outcome = await runner.run(plan.steps)

    report = RunReport(
        name=recipe.name,
        version=recipe.version,
        ok=isinstance(outcome, Ok),
        phase="execute",
        resolved_vars=mask_secret_values(recipe, plan.resolved_vars),
        warnings=warnings,
        downloads=[str(p) for p in runner.state.downloads],
    )
    if isinstance(outcome, Err):
        report.error = _describe_failure(outcome.error)

    if engine is not None:
        report.healed = engine.describe()
        if engine.stats.healed and report.ok:
            report.saved_version = await _save_healed(recipe, engine, store, vault, progress, report)
    return report


def _describe_failure(failure: StepFailure) -> str:
    return failure.describe()


async def _save_healed(
    recipe: Recipe,
    engine: SelfHealingEngine,
    store: RecipeStore,
    vault: SecretVault,
    progress: Progress,
    report: RunReport,
) -> int | None:
    healed = apply_healing(
        recipe,
        selector_patches=engine.selector_patches,
        replacement=engine.replacement,
        stats=engine.stats,
        now=datetime.now(timezone.utc),
    )
    try:
        await store.save_async(healed, overwrite=True)
    except (OSError, ValueError) as e:
        message = f"Recipe write failed ({recipe.id}): {e}"
        logger.error(message)
        report.warnings.append(message)
        return None
    progress.recipe_saved(healed.name, healed.version)
    progress.heal_summary(engine.stats.phase1_healed, engine.stats.phase2_recaptured)

    for secret_name, value in engine.captured_secrets.items():
        saved = await vault.save(recipe.id, secret_name, value)
        if isinstance(saved, Err):
            logger.warning(saved.error.message)
            report.warnings.append(saved.error.message)
    return healed.version


async def list_recipes(store: RecipeStore | None = None) -> list[dict[str, Any]]:
    store = store or _default_store()
    recipes = await store.list_all_async()
    return [
        {
            "name": r.name,
            "version": r.version,
            "source": r.source,
            "updated_at": r.updated_at.isoformat(),
            "steps": len(r.steps),
        }
        for r in recipes
    ]


async def recipe_history(name: str, store: RecipeStore | None = None) -> Result[dict[str, Any], ServiceError]:
    """Current and archived versions of ``name``."""
    store = store or _default_store()
    loaded = await _load_recipe(store, name)
    if isinstance(loaded, Err):
        return loaded
    recipe = loaded.value
    return Ok(
        {
            "name": recipe.name,
            "current": recipe.version,
            "source": recipe.source,
            "archived": store.history(recipe.name),
            "notes": recipe.notes,
        }
    )
