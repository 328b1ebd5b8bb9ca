"""Guard and effect evaluation for recipe steps."""

import logging
from typing import Any

from playwright.async_api import Error as PlaywrightError

from ..config import settings
from ..result import Err, Ok, Result
from .failures import StepFailure
from .models import Effect, Guard, RecipeStep

logger = logging.getLogger(__name__)


def matches_url(pattern: str, current_url: str) -> bool:
    """Exact match, or prefix match when ``pattern`` ends with ``*``."""
    if pattern.endswith("*"):
        return current_url.startswith(pattern[:-1])
    return current_url == pattern


def parse_min_items(value: str | None) -> tuple[str, int] | None:
    """Parse a ``selector|count`` encoding; None when malformed."""
    if not value:
        return None
    parts = value.split("|")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    try:
        count = int(parts[1])
    except ValueError:
        return None
    if count < 0:
        return None
    return parts[0], count


async def text_becomes_visible(page: Any, text: str, timeout_ms: int) -> bool:
    try:
        await page.get_by_text(text).first.wait_for(state="visible", timeout=timeout_ms)
    except PlaywrightError:
        return False
    return True


async def evaluate_guard(guard: Guard, current_url: str | None, page: Any = None) -> bool:
    if guard.type == "url_is":
        return matches_url(guard.value, current_url) if current_url else True
    if guard.type == "url_not":
        return not matches_url(guard.value, current_url) if current_url else True
    if guard.type == "text_visible":
        if page is None:
            return True
        return await text_becomes_visible(page, guard.value, settings.runner.guard_text_timeout_ms)
    return True


async def evaluate_effect(effect: Effect, before_url: str | None, current_url: str | None, page: Any = None) -> bool:
    if effect.type == "url_changed":
        if not current_url:
            return True
        if effect.value:
            return current_url == effect.value
        return before_url != current_url

    if effect.type == "text_visible":
        if page is None:
            return True
        return await text_becomes_visible(page, effect.value or "", settings.runner.effect_text_timeout_ms)

    if effect.type == "min_items":
        if page is None:
            return True
        parsed = parse_min_items(effect.value)
        if parsed is None:
            return True
        selector, threshold = parsed
        try:
            count = await page.locator(selector).count()
        except PlaywrightError as e:
            logger.debug(f"min_items count failed for {selector!r}: {e}")
            return False
        return count >= threshold

    return True


async def validate_guards(
    step: RecipeStep, *, current_url: str | None, page: Any = None
) -> Result[None, StepFailure]:
    for guard in step.guards:
        if not await evaluate_guard(guard, current_url, page):
            return Err(
                StepFailure(
                    kind="guard_failed",
                    step_id=step.id,
                    message=f"Guard failed: {guard.type}={guard.value} (step={step.id})",
                    guard=guard,
                )
            )
    return Ok(None)


async def validate_effects(
    step: RecipeStep, *, before_url: str | None, current_url: str | None, page: Any = None
) -> Result[None, StepFailure]:
    for effect in step.effects:
        if not await evaluate_effect(effect, before_url, current_url, page):
            return Err(
                StepFailure(
                    kind="effect_failed",
                    step_id=step.id,
                    message=f"Effect failed: {effect.type}={effect.value} (step={step.id})",
                    effect=effect,
                )
            )
    return Ok(None)
