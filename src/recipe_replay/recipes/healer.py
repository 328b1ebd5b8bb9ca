"""Selector rediscovery for click/fill steps whose selectors no longer match.

Hints (id, name, placeholder, role, visible text) are parsed out of the
step's original selector candidates. Cheap heuristic selectors built from
those hints are tried first; if none match, the page markup is sent to the
local LLM and its suggestions are tried in order.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import Error as PlaywrightError

from ..config import settings
from ..llm import PromptRunner, run_local_llm
from .models import RecipeStep

logger = logging.getLogger(__name__)

_PLACEHOLDER_HINT = re.compile(r'placeholder="([^"]+)"')
_NAME_HINT = re.compile(r'\[name="([^"]+)"\]')
_ID_HINT = re.compile(r"#([\w:-]+)")
_ROLE_HINT = re.compile(r'role="([^"]+)"')
_TEXT_HINT = re.compile(r'has-text\("([^"]+)"\)')

_LIST_PREFIX = re.compile(r"^(?:\d+[.)]\s*|-\s+|\*\s+)")
_BACKTICKED = re.compile(r"`([^`]+)`")
_SELECTOR_START = re.compile(r"^[a-zA-Z#.\[:\w]")

MAX_SUGGESTION_LENGTH = 200


@dataclass
class SelectorHints:
    id: str | None = None
    name: str | None = None
    placeholder: str | None = None
    role: str | None = None
    text: str | None = None

    def describe(self) -> str:
        parts = [f'{key}: "{value}"' for key, value in vars(self).items() if value]
        return ", ".join(parts)


@dataclass
class HealResult:
    healed: bool
    new_selectors: list[str] = field(default_factory=list)
    strategy: str = ""


def extract_hints(selector: str) -> SelectorHints:
    hints = SelectorHints()
    for attr, pattern in (
        ("placeholder", _PLACEHOLDER_HINT),
        ("name", _NAME_HINT),
        ("id", _ID_HINT),
        ("role", _ROLE_HINT),
        ("text", _TEXT_HINT),
    ):
        match = pattern.search(selector)
        if match:
            setattr(hints, attr, match.group(1))
    return hints


def collect_hints(selectors: list[str]) -> SelectorHints:
    """Merge hints across candidates; the first candidate carrying a hint wins."""
    merged = SelectorHints()
    for selector in selectors:
        found = extract_hints(selector)
        for attr, value in vars(found).items():
            if value and getattr(merged, attr) is None:
                setattr(merged, attr, value)
    return merged


def _escape_css_value(value: str) -> str:
    return re.sub(r'(["\\])', r"\\\1", value)


def heuristic_candidates(step: RecipeStep, hints: SelectorHints) -> list[tuple[str, str]]:
    """Ordered ``(selector, strategy)`` pairs built from hints."""
    candidates: list[tuple[str, str]] = []
    if hints.id:
        candidates.append((f"#{hints.id}", "id"))
    if hints.placeholder:
        candidates.append((f'[placeholder="{_escape_css_value(hints.placeholder)}"]', "placeholder-exact"))
        first_word = hints.placeholder.split(" ")[0]
        if len(first_word) >= 3:
            candidates.append((f'[placeholder*="{_escape_css_value(first_word)}"]', "placeholder-partial"))
    if hints.name:
        candidates.append((f'[name="{_escape_css_value(hints.name)}"]', "name-attr"))
    if hints.text and step.action == "click":
        candidates.append((f'text="{hints.text}"', "text-content"))
    return candidates


def parse_llm_selectors(response: str) -> list[str]:
    """Pull selector suggestions out of a free-text LLM response.

    One suggestion per line: numbering and bullets are stripped, a backticked
    token wins, otherwise a bare selector-looking token without spaces.
    """
    selectors: list[str] = []
    for line in response.split("\n"):
        trimmed = _LIST_PREFIX.sub("", line).strip()
        if not trimmed:
            continue

        backticked = _BACKTICKED.search(trimmed)
        if backticked:
            selectors.append(backticked.group(1))
            continue

        if _SELECTOR_START.match(trimmed) and " " not in trimmed and len(trimmed) < MAX_SUGGESTION_LENGTH:
            selectors.append(trimmed)
    return selectors


def truncate_html(html: str, max_length: int) -> str:
    if len(html) <= max_length:
        return html
    return f"{html[:max_length]}\n<!-- ... truncated ... -->"


def build_heal_prompt(step: RecipeStep, hints: SelectorHints, html: str, max_length: int) -> str:
    lines = [
        "You are a browser automation expert. A Playwright selector failed to find an element on this page.",
        "",
        f"Action: {step.action}",
        f"Step title: {step.title}",
        f"Original selectors (all failed): {', '.join(step.selector_variants)}",
    ]
    described = hints.describe()
    if described:
        lines.append(f"Known attributes: {described}")
    lines.extend(
        [
            "",
            "Here is the page HTML:",
            "```html",
            truncate_html(html, max_length),
            "```",
            "",
            "Find the target element and suggest up to 3 CSS selectors that would match it.",
            "Output ONLY the selectors, one per line, wrapped in backticks. No explanation.",
        ]
    )
    return "\n".join(lines)


async def is_locatable(page: Any, selector: str) -> bool:
    try:
        return await page.locator(selector).count() > 0
    except PlaywrightError:
        return False


class SelectorHealer:
    """Finds a replacement selector for a step on the live page."""

    def __init__(
        self,
        prompt_runner: PromptRunner | None = None,
        llm_command: str | None = None,
        max_html_chars: int | None = None,
        on_llm_query: Callable[[], None] | None = None,
    ):
        self.prompt_runner = prompt_runner or run_local_llm
        self.llm_command = llm_command
        self.max_html_chars = max_html_chars or settings.llm.max_html_chars
        self.on_llm_query = on_llm_query

    async def heal(self, page: Any, step: RecipeStep) -> HealResult:
        hints = collect_hints(step.selector_variants)

        for selector, strategy in heuristic_candidates(step, hints):
            if await is_locatable(page, selector):
                logger.info(f"Healed selector for step {step.id} via {strategy}: {selector}")
                return HealResult(healed=True, new_selectors=[selector], strategy=strategy)

        return await self._heal_with_llm(page, step, hints)

    async def _heal_with_llm(self, page: Any, step: RecipeStep, hints: SelectorHints) -> HealResult:
        try:
            html = await page.content()
        except PlaywrightError as e:
            logger.warning(f"Could not read page content for step {step.id}: {e}")
            return HealResult(healed=False)

        if self.on_llm_query:
            self.on_llm_query()
        prompt = build_heal_prompt(step, hints, html, self.max_html_chars)
        response = await self.prompt_runner(prompt, self.llm_command)
        if not response:
            return HealResult(healed=False)

        for selector in parse_llm_selectors(response):
            if await is_locatable(page, selector):
                logger.info(f"Healed selector for step {step.id} via llm: {selector}")
                return HealResult(healed=True, new_selectors=[selector], strategy="llm")

        logger.info(f"LLM suggestions did not match any element for step {step.id}")
        return HealResult(healed=False)
