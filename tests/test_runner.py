"""Tests for the step runner on both surfaces."""

import httpx
import pytest

from fakes import FakeBrowser
from recipe_replay.exceptions import BrowserLaunchError
from recipe_replay.observability.progress import Progress
from recipe_replay.recipes.models import Effect, Guard, RecipeStep
from recipe_replay.recipes.runner import StepRunner
from recipe_replay.recipes.surfaces import Surface, SurfaceManager
from recipe_replay.result import Err, Ok


def pw(step_id: str, action: str, **kwargs) -> RecipeStep:
    return RecipeStep(id=step_id, title=kwargs.pop("title", step_id), mode="pw", action=action, **kwargs)


def http(step_id: str, url: str, **kwargs) -> RecipeStep:
    return RecipeStep(id=step_id, title=step_id, mode="http", action="fetch", url=url, **kwargs)


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)


@pytest.fixture
def recorder():
    return Recorder()


def make_runner(surfaces, tmp_path, recorder=None) -> StepRunner:
    return StepRunner(surfaces, download_dir=tmp_path, progress=Progress(recorder))


class TestBrowserSteps:
    @pytest.mark.asyncio
    async def test_goto_click_fill_press(self, browser, page, tmp_path, recorder):
        page.elements.update({"#q": 1, "button.go": 1})
        page.click_navigates["button.go"] = "https://shop.example/results"
        steps = [
            pw("s1", "goto", url="https://shop.example/", effects=[Effect(type="url_changed")]),
            pw("s2", "fill", selector_variants=["#q"], value="notebook", guards=[Guard(type="url_is", value="https://shop.example/")]),
            pw("s3", "press", key="Tab"),
            pw("s4", "click", selector_variants=["button.go"], effects=[Effect(type="url_changed", value="https://shop.example/results")]),
        ]
        async with SurfaceManager(launch_browser=browser.launch) as surfaces:
            runner = make_runner(surfaces, tmp_path, recorder)
            result = await runner.run(steps)

        assert isinstance(result, Ok)
        assert page.actions == [
            ("goto", "https://shop.example/"),
            ("fill", "#q", "notebook"),
            ("press", "Tab"),
            ("click", "button.go"),
        ]
        assert result.value.completed_steps == ["s1", "s2", "s3", "s4"]
        assert result.value.page_url == "https://shop.example/results"
        assert [e.type for e in recorder.events][:2] == ["step_start", "step_ok"]

    @pytest.mark.asyncio
    async def test_selector_variants_tried_in_order(self, browser, page, tmp_path):
        page.elements["[data-test=go]"] = 1
        step = pw("s1", "click", selector_variants=["#gone", "[data-test=go]", "#never-tried"])
        async with SurfaceManager(launch_browser=browser.launch) as surfaces:
            result = await make_runner(surfaces, tmp_path).execute(step)
        assert result == Ok(None)
        assert page.actions == [("click", "[data-test=go]")]

    @pytest.mark.asyncio
    async def test_all_selectors_failing(self, browser, tmp_path, recorder):
        step = pw("s2", "click", selector_variants=["#a", "#b"])
        async with SurfaceManager(launch_browser=browser.launch) as surfaces:
            result = await make_runner(surfaces, tmp_path, recorder).run([step])
        assert isinstance(result, Err)
        failure = result.error
        assert failure.kind == "selector_not_found"
        assert failure.selectors == ("#a", "#b")
        assert failure.describe() == "s2: Click failed for selectors: #a, #b"
        assert recorder.events[-1].type == "step_failed"

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, browser, page, tmp_path):
        steps = [
            pw("s1", "goto", url="https://x/"),
            pw("s2", "click", selector_variants=["#missing"]),
            pw("s3", "goto", url="https://x/never"),
        ]
        async with SurfaceManager(launch_browser=browser.launch) as surfaces:
            runner = make_runner(surfaces, tmp_path)
            result = await runner.run(steps)
        assert result.error.step_id == "s2"
        assert ("goto", "https://x/never") not in page.actions
        assert runner.state.completed_steps == ["s1"]

    @pytest.mark.asyncio
    async def test_guard_failure_prevents_action(self, browser, page, tmp_path):
        page.elements["#q"] = 1
        steps = [
            pw("s1", "goto", url="https://x/login"),
            pw("s2", "fill", selector_variants=["#q"], value="v", guards=[Guard(type="url_is", value="https://x/home")]),
        ]
        async with SurfaceManager(launch_browser=browser.launch) as surfaces:
            result = await make_runner(surfaces, tmp_path).run(steps)
        assert result.error.kind == "guard_failed"
        assert ("fill", "#q", "v") not in page.actions

    @pytest.mark.asyncio
    async def test_skipping_guards(self, browser, page, tmp_path):
        page.elements["#q"] = 1
        step = pw("s1", "fill", selector_variants=["#q"], value="v", guards=[Guard(type="url_is", value="https://other/")])
        async with SurfaceManager(launch_browser=browser.launch) as surfaces:
            result = await make_runner(surfaces, tmp_path).execute(step, check_guards=False)
        assert result == Ok(None)

    @pytest.mark.asyncio
    async def test_navigation_error(self, browser, page, tmp_path):
        page.failing_urls.add("https://down.example/")
        async with SurfaceManager(launch_browser=browser.launch) as surfaces:
            result = await make_runner(surfaces, tmp_path).execute(pw("s1", "goto", url="https://down.example/"))
        assert result.error.kind == "action_failed"

    @pytest.mark.asyncio
    async def test_fill_without_value(self, browser, page, tmp_path):
        page.elements["#q"] = 1
        async with SurfaceManager(launch_browser=browser.launch) as surfaces:
            result = await make_runner(surfaces, tmp_path).execute(pw("s1", "fill", selector_variants=["#q"]))
        assert result.error.kind == "action_failed"

    @pytest.mark.asyncio
    async def test_browser_launch_failure_becomes_step_failure(self, tmp_path):
        async def launch():
            raise BrowserLaunchError("Failed to launch browser: no chromium")

        async with SurfaceManager(launch_browser=launch) as surfaces:
            result = await make_runner(surfaces, tmp_path).execute(pw("s1", "goto", url="https://x/"))
        assert result.error.kind == "action_failed"
        assert "no chromium" in result.error.message

    @pytest.mark.asyncio
    async def test_browser_download_saved(self, browser, page, tmp_path):
        class FakeDownload:
            suggested_filename = "invoice.pdf"

            async def save_as(self, path):
                path.write_bytes(b"%PDF")

        async with SurfaceManager(launch_browser=browser.launch) as surfaces:
            runner = make_runner(surfaces, tmp_path)
            surfaces.on_browser_open = runner.on_browser_open
            await runner.execute(pw("s1", "goto", url="https://x/"))
            for handler in page.handlers["download"]:
                await handler(FakeDownload())
        assert runner.state.downloads == [tmp_path / "invoice.pdf"]
        assert (tmp_path / "invoice.pdf").read_bytes() == b"%PDF"


class TestHttpSteps:
    @pytest.mark.asyncio
    async def test_fetch_sends_method_headers_and_body(self, tmp_path):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["auth"] = request.headers.get("x-tenant")
            seen["body"] = request.content
            return httpx.Response(200, json={"ok": True})

        step = http("s1", "https://api.example/orders", method="post", headers={"X-Tenant": "acme"}, body='{"q":1}')
        async with SurfaceManager(http_transport=httpx.MockTransport(handler)) as surfaces:
            runner = make_runner(surfaces, tmp_path)
            result = await runner.execute(step)
        assert result == Ok(None)
        assert seen == {"method": "POST", "auth": "acme", "body": b'{"q":1}'}
        assert runner.state.last_url == "https://api.example/orders"
        assert runner.state.surface is Surface.HTTP
        assert runner.state.downloads == []

    @pytest.mark.asyncio
    async def test_get_never_sends_body(self, tmp_path):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content
            return httpx.Response(200)

        async with SurfaceManager(http_transport=httpx.MockTransport(handler)) as surfaces:
            await make_runner(surfaces, tmp_path).execute(http("s1", "https://api.example/x", body="ignored"))
        assert seen["body"] == b""

    @pytest.mark.asyncio
    async def test_error_status_is_http_failure(self, tmp_path):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with SurfaceManager(http_transport=transport) as surfaces:
            result = await make_runner(surfaces, tmp_path).execute(http("s1", "https://api.example/x"))
        assert result.error.kind == "http_failed"
        assert "503" in result.error.message

    @pytest.mark.asyncio
    async def test_transport_error_is_http_failure(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with SurfaceManager(http_transport=httpx.MockTransport(handler)) as surfaces:
            result = await make_runner(surfaces, tmp_path).execute(http("s1", "https://api.example/x"))
        assert result.error.kind == "http_failed"

    @pytest.mark.asyncio
    async def test_attachment_saved_with_header_filename(self, tmp_path):
        def handler(request):
            return httpx.Response(
                200,
                content=b"a,b\n1,2\n",
                headers={"content-disposition": "attachment; filename*=UTF-8''report%20Q1.csv", "content-type": "text/csv"},
            )

        async with SurfaceManager(http_transport=httpx.MockTransport(handler)) as surfaces:
            runner = make_runner(surfaces, tmp_path)
            await runner.execute(http("s1", "https://api.example/export"))
            await runner.execute(http("s2", "https://api.example/export"))
        assert runner.state.downloads == [tmp_path / "report Q1.csv", tmp_path / "report Q1-1.csv"]

    @pytest.mark.asyncio
    async def test_document_url_saved_under_step_id(self, tmp_path):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, content=b"%PDF", headers={"content-type": "application/pdf"}))
        async with SurfaceManager(http_transport=transport) as surfaces:
            runner = make_runner(surfaces, tmp_path)
            await runner.execute(http("dl", "https://files.example/q1.pdf"))
        assert runner.state.downloads == [tmp_path / "dl.pdf"]

    @pytest.mark.asyncio
    async def test_unwritable_download_dir_is_download_failure(self, tmp_path):
        blocker = tmp_path / "downloads"
        blocker.write_text("not a directory", encoding="utf-8")
        transport = httpx.MockTransport(lambda r: httpx.Response(200, content=b"%PDF", headers={"content-type": "application/pdf"}))
        async with SurfaceManager(http_transport=transport) as surfaces:
            runner = StepRunner(surfaces, download_dir=blocker, progress=Progress())
            result = await runner.run([http("s1", "https://f.example/a.pdf")])
        assert isinstance(result, Err)
        assert result.error.kind == "download_failed"
        assert result.error.step_id == "s1"
        assert runner.state.downloads == []

    @pytest.mark.asyncio
    async def test_redirect_followed_and_effect_checked_on_final_url(self, tmp_path):
        def handler(request):
            if request.url.path == "/start":
                return httpx.Response(302, headers={"location": "https://api.example/done"})
            return httpx.Response(200)

        step = http("s1", "https://api.example/start", effects=[Effect(type="url_changed", value="https://api.example/done")])
        async with SurfaceManager(http_transport=httpx.MockTransport(handler)) as surfaces:
            runner = make_runner(surfaces, tmp_path)
            result = await runner.execute(step)
        assert result == Ok(None)
        assert runner.state.http_url == "https://api.example/done"

    @pytest.mark.asyncio
    async def test_http_guard_uses_last_url(self, browser, page, tmp_path):
        transport = httpx.MockTransport(lambda r: httpx.Response(200))
        steps = [
            pw("s1", "goto", url="https://app.example/dashboard"),
            http("s2", "https://api.example/x", guards=[Guard(type="url_is", value="https://app.example/dashboard")]),
        ]
        async with SurfaceManager(launch_browser=browser.launch, http_transport=transport) as surfaces:
            result = await make_runner(surfaces, tmp_path).run(steps)
        assert isinstance(result, Ok)
