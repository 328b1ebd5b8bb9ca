"""Execution surfaces for replay: the driven browser page and an HTTP client.

Exactly one browser surface (opened lazily, kept for the whole run) and at
most one HTTP client exist at a time. Moving between surfaces follows the
explicit ``_TRANSITIONS`` table; each switch is the only point where cookies
are handed from one surface to the other. Cookie hand-off is best-effort and
never aborts a run.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from ..config import settings
from ..exceptions import BrowserLaunchError

logger = logging.getLogger(__name__)


class Surface(str, Enum):
    NONE = "none"
    HTTP = "http"
    BROWSER = "pw"


@dataclass
class BrowserHandle:
    """A live browser context and its single page."""

    context: Any
    page: Any
    close: Callable[[], Awaitable[None]]


BrowserLauncher = Callable[[], Awaitable[BrowserHandle]]
BrowserOpenHook = Callable[[BrowserHandle], Awaitable[None]]

# (from, to) -> actions performed in order when switching
_TRANSITIONS: dict[tuple[Surface, Surface], tuple[str, ...]] = {
    (Surface.NONE, Surface.BROWSER): ("open_browser",),
    (Surface.BROWSER, Surface.BROWSER): (),
    (Surface.HTTP, Surface.BROWSER): ("open_browser", "push_cookies_to_browser", "close_http"),
    (Surface.NONE, Surface.HTTP): ("open_http",),
    (Surface.BROWSER, Surface.HTTP): ("open_http",),
    (Surface.HTTP, Surface.HTTP): ("open_http",),
}


def playwright_launcher(headless: bool | None = None, channel: str | None = None) -> BrowserLauncher:
    """Build a launcher that starts Chromium through Playwright."""

    async def launch() -> BrowserHandle:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import async_playwright

        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=settings.browser.headless if headless is None else headless,
                channel=channel or settings.browser.channel,
            )
            context = await browser.new_context(accept_downloads=True)
            page = await context.new_page()
        except PlaywrightError as e:
            await playwright.stop()
            raise BrowserLaunchError(f"Failed to launch browser: {e}") from e

        async def close() -> None:
            try:
                await browser.close()
            finally:
                await playwright.stop()

        return BrowserHandle(context=context, page=page, close=close)

    return launch


def _cookie_domain(domain: str) -> str:
    return domain.lstrip(".") if domain else domain


class SurfaceManager:
    """Owns surface handles and performs transitions between them.

    Use as an async context manager so every handle is released on all exit
    paths.
    """

    def __init__(
        self,
        *,
        launch_browser: BrowserLauncher | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        http_timeout: float | None = None,
        on_browser_open: BrowserOpenHook | None = None,
    ):
        self.launch_browser = launch_browser or playwright_launcher()
        self.http_transport = http_transport
        self.http_timeout = http_timeout if http_timeout is not None else settings.runner.http_timeout
        self.on_browser_open = on_browser_open
        self.current = Surface.NONE
        self.browser: BrowserHandle | None = None
        self.http: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "SurfaceManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def page(self) -> Any:
        return self.browser.page if self.browser else None

    async def enter(self, target: Surface) -> None:
        """Switch to ``target``, running the transition actions in order."""
        actions = _TRANSITIONS[(self.current, target)]
        for action in actions:
            await getattr(self, f"_{action}")()
        if self.current != target:
            logger.debug(f"Surface switch: {self.current.value} -> {target.value}")
        self.current = target

    async def _open_browser(self) -> None:
        if self.browser is not None:
            return
        self.browser = await self.launch_browser()
        if self.on_browser_open:
            await self.on_browser_open(self.browser)

    async def _open_http(self) -> None:
        if self.http is not None:
            return
        client_kwargs: dict[str, Any] = {"timeout": self.http_timeout, "follow_redirects": True}
        if self.http_transport is not None:
            client_kwargs["transport"] = self.http_transport
        self.http = httpx.AsyncClient(**client_kwargs)
        if self.browser is not None:
            await self._pull_cookies_from_browser()

    async def _close_http(self) -> None:
        if self.http is None:
            return
        client, self.http = self.http, None
        await client.aclose()

    async def _pull_cookies_from_browser(self) -> None:
        assert self.http is not None and self.browser is not None
        try:
            cookies = await self.browser.context.cookies()
            for cookie in cookies:
                self.http.cookies.set(
                    cookie["name"],
                    cookie["value"],
                    domain=_cookie_domain(cookie.get("domain", "")),
                    path=cookie.get("path", "/"),
                )
        except Exception as e:
            logger.warning(f"Cookie sync browser -> http failed: {e}")
            return
        logger.debug(f"Seeded HTTP client with {len(cookies)} browser cookie(s)")

    async def _push_cookies_to_browser(self) -> None:
        if self.http is None or self.browser is None:
            return
        payload: list[dict[str, Any]] = []
        for cookie in self.http.cookies.jar:
            if not cookie.domain:
                continue
            entry: dict[str, Any] = {
                "name": cookie.name,
                "value": cookie.value or "",
                "domain": cookie.domain,
                "path": cookie.path or "/",
                "secure": bool(cookie.secure),
            }
            if cookie.expires:
                entry["expires"] = float(cookie.expires)
            payload.append(entry)
        if not payload:
            return
        try:
            await self.browser.context.add_cookies(payload)
        except Exception as e:
            logger.warning(f"Cookie sync http -> browser failed: {e}")
            return
        logger.debug(f"Pushed {len(payload)} HTTP cookie(s) into the browser")

    async def close(self) -> None:
        try:
            await self._close_http()
        finally:
            browser, self.browser = self.browser, None
            self.current = Surface.NONE
            if browser is not None:
                await browser.close()
