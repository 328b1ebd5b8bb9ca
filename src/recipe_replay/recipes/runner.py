"""Step runner for resolved recipe steps.

Executes steps strictly in order on two surfaces:

- ``pw`` steps drive the browser page (goto, click, fill, press)
- ``http`` steps issue direct requests through an httpx client

The runner tracks the last URL seen on each surface so guards and effects
are evaluated against the right state, and saves downloads produced by
either surface. Every failure is returned as a ``StepFailure`` naming the
step; nothing is raised for expected problems.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from playwright.async_api import Error as PlaywrightError

from ..config import settings
from ..exceptions import BrowserLaunchError
from ..observability.progress import Progress
from ..result import Err, Ok, Result
from .downloads import is_attachment, looks_like_document, reserve_unique, resolve_download_filename, sanitize_filename, write_unique
from .failures import StepFailure
from .models import RecipeStep
from .surfaces import BrowserHandle, Surface, SurfaceManager
from .validation import validate_effects, validate_guards

logger = logging.getLogger(__name__)

MUTATING_ACTIONS = frozenset({"click", "fill", "press"})
BODYLESS_METHODS = frozenset({"GET", "HEAD"})


@dataclass
class RunState:
    """URL and download state carried across steps of one run."""

    page_url: str | None = None
    http_url: str | None = None
    last_url: str | None = None
    surface: Surface = Surface.NONE
    downloads: list[Path] = field(default_factory=list)
    completed_steps: list[str] = field(default_factory=list)


class StepRunner:
    """Executes resolved steps against the browser and HTTP surfaces."""

    def __init__(
        self,
        surfaces: SurfaceManager,
        *,
        download_dir: Path,
        progress: Progress | None = None,
    ):
        self.surfaces = surfaces
        self.download_dir = Path(download_dir).expanduser()
        self.progress = progress or Progress()
        self.state = RunState()

    # --- public API ---

    async def run(self, steps: list[RecipeStep] | tuple[RecipeStep, ...]) -> Result[RunState, StepFailure]:
        """Run ``steps`` in order, stopping at the first failure."""
        for step in steps:
            self.progress.step_start(step.id, step.title)
            outcome = await self.execute(step)
            if isinstance(outcome, Err):
                self.progress.step_failed(step.id, outcome.error.message)
                return outcome
            self.progress.step_ok(step.id)
        return Ok(self.state)

    async def execute(self, step: RecipeStep, *, check_guards: bool = True) -> Result[None, StepFailure]:
        """Execute one step; guards are skipped when ``check_guards`` is false."""
        if step.mode == "http":
            outcome = await self._execute_http(step, check_guards)
        else:
            outcome = await self._execute_browser(step, check_guards)
        if isinstance(outcome, Ok):
            self.state.completed_steps.append(step.id)
        return outcome

    @property
    def page(self) -> Any:
        return self.surfaces.page

    def current_url(self, step: RecipeStep) -> str | None:
        """URL guards of ``step`` are evaluated against."""
        if step.mode == "http":
            return self.state.last_url
        page = self.page
        return self.state.page_url or (page.url if page is not None else None)

    async def on_browser_open(self, handle: BrowserHandle) -> None:
        """Surface hook: save browser-initiated downloads."""
        handle.page.on("download", self._save_browser_download)

    # --- browser surface ---

    async def _enter(self, surface: Surface, step: RecipeStep) -> Result[None, StepFailure]:
        try:
            await self.surfaces.enter(surface)
        except (BrowserLaunchError, PlaywrightError) as e:
            return Err(StepFailure(kind="action_failed", step_id=step.id, message=f"Could not open {surface.value} surface: {e}"))
        self.state.surface = surface
        return Ok(None)

    async def _execute_browser(self, step: RecipeStep, check_guards: bool) -> Result[None, StepFailure]:
        entered = await self._enter(Surface.BROWSER, step)
        if isinstance(entered, Err):
            return entered
        page = self.page

        before_url = self.current_url(step)
        if check_guards:
            guarded = await validate_guards(step, current_url=before_url, page=page)
            if isinstance(guarded, Err):
                return guarded

        if step.action == "goto":
            acted = await self._goto(page, step)
        elif step.action == "click":
            acted = await self._try_selectors(page, step, "click")
        elif step.action == "fill":
            acted = await self._try_selectors(page, step, "fill")
        elif step.action == "press":
            acted = await self._press(page, step)
        else:
            # extract / ensure_login / fetch have no browser-side action
            acted = Ok(None)
        if isinstance(acted, Err):
            return acted

        if step.action in MUTATING_ACTIONS:
            await self._settle(page)

        new_url = page.url
        self.state.page_url = new_url
        self.state.last_url = new_url
        return await validate_effects(step, before_url=before_url, current_url=new_url, page=page)

    async def _goto(self, page: Any, step: RecipeStep) -> Result[None, StepFailure]:
        if not step.url:
            return Err(StepFailure(kind="action_failed", step_id=step.id, message=f"goto step has no url: {step.id}"))
        try:
            await page.goto(step.url, wait_until="domcontentloaded")
        except PlaywrightError as e:
            return Err(StepFailure(kind="action_failed", step_id=step.id, message=f"Navigation to {step.url} failed: {e}"))
        return Ok(None)

    async def _try_selectors(self, page: Any, step: RecipeStep, action: str) -> Result[None, StepFailure]:
        """Try each selector variant in order; the first that acts wins."""
        selectors = list(step.selector_variants)
        if not selectors:
            return Err(
                StepFailure(kind="selector_not_found", step_id=step.id, message=f"No selector_variants for {action} step: {step.id}")
            )
        if action == "fill" and step.value is None:
            return Err(StepFailure(kind="action_failed", step_id=step.id, message=f"fill step has no value: {step.id}"))

        timeout = settings.runner.selector_timeout_ms
        for selector in selectors:
            locator = page.locator(selector).first
            try:
                if action == "click":
                    await locator.click(timeout=timeout)
                else:
                    await locator.fill(step.value, timeout=timeout)
            except PlaywrightError as e:
                logger.debug(f"Selector {selector!r} failed for step {step.id}: {e}")
                continue
            return Ok(None)

        return Err(
            StepFailure(
                kind="selector_not_found",
                step_id=step.id,
                message=f"{action.capitalize()} failed for selectors: {', '.join(selectors)}",
                selectors=tuple(selectors),
            )
        )

    async def _press(self, page: Any, step: RecipeStep) -> Result[None, StepFailure]:
        if not step.key:
            return Err(StepFailure(kind="action_failed", step_id=step.id, message=f"press step has no key: {step.id}"))
        try:
            await page.keyboard.press(step.key)
        except PlaywrightError as e:
            return Err(StepFailure(kind="action_failed", step_id=step.id, message=f"Key press {step.key} failed: {e}"))
        return Ok(None)

    async def _settle(self, page: Any) -> None:
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=settings.runner.settle_timeout_ms)
        except PlaywrightError as e:
            logger.debug(f"Page did not settle: {e}")

    async def _save_browser_download(self, download: Any) -> None:
        filename = sanitize_filename(download.suggested_filename or "download")
        reserved = reserve_unique(self.download_dir, filename, settings.runner.download_max_attempts)
        if isinstance(reserved, Err):
            logger.error(reserved.error)
            return
        try:
            await download.save_as(reserved.value)
        except PlaywrightError as e:
            logger.error(f"Saving browser download {filename} failed: {e}")
            return
        self.state.downloads.append(reserved.value)
        self.progress.info(f"  Downloaded: {reserved.value}")

    # --- HTTP surface ---

    async def _execute_http(self, step: RecipeStep, check_guards: bool) -> Result[None, StepFailure]:
        entered = await self._enter(Surface.HTTP, step)
        if isinstance(entered, Err):
            return entered
        client = self.surfaces.http
        assert client is not None

        before_url = self.current_url(step)
        if check_guards:
            guarded = await validate_guards(step, current_url=before_url)
            if isinstance(guarded, Err):
                return guarded

        if step.action != "fetch" or not step.url:
            return await validate_effects(step, before_url=before_url, current_url=before_url)

        method = (step.method or "GET").strip().upper() or "GET"
        content = step.body if method not in BODYLESS_METHODS else None
        try:
            response = await client.request(method, step.url, headers=step.headers or None, content=content)
        except httpx.HTTPError as e:
            return Err(StepFailure(kind="http_failed", step_id=step.id, message=f"{method} {step.url} failed: {e}"))

        if response.is_error:
            return Err(
                StepFailure(
                    kind="http_failed",
                    step_id=step.id,
                    message=f"{method} {step.url} returned HTTP {response.status_code}",
                )
            )

        final_url = str(response.url)
        disposition = response.headers.get("content-disposition")
        if step.download or is_attachment(disposition) or looks_like_document(step.url):
            saved = self._save_response(step, response)
            if isinstance(saved, Err):
                return saved

        self.state.http_url = final_url
        self.state.last_url = final_url
        return await validate_effects(step, before_url=before_url, current_url=final_url)

    def _save_response(self, step: RecipeStep, response: httpx.Response) -> Result[Path, StepFailure]:
        filename = resolve_download_filename(
            step.id, response.headers.get("content-disposition"), response.headers.get("content-type")
        )
        written = write_unique(self.download_dir, filename, response.content, settings.runner.download_max_attempts)
        if isinstance(written, Err):
            return Err(StepFailure(kind="download_failed", step_id=step.id, message=written.error))
        self.state.downloads.append(written.value)
        self.progress.info(f"  Downloaded: {written.value}")
        return written
