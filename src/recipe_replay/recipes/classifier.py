"""Default event-to-step classifier.

Turns captured browser events into replayable steps: navigations become
``goto``, clicks ``click``, inputs ``fill`` and Enter key presses ``press``.
Network requests become HTTP ``fetch`` steps when they are document
downloads or look like API calls; static assets and monitoring beacons are
dropped.
"""

import re
from urllib.parse import urlparse

from .capture import RecordedEvent
from .downloads import looks_like_document
from .models import Effect, Guard, RecipeStep

STATIC_ASSET_PATTERN = re.compile(
    r"\.(?:css|js|woff2?|ttf|eot|otf|png|jpe?g|gif|svg|ico|webp|avif|mp4|webm)(?:\?|$)", re.IGNORECASE
)
STATIC_HOST_PATTERN = re.compile(
    r"^https?://(?:fonts\.googleapis\.com|fonts\.gstatic\.com|cdnjs\.cloudflare\.com|cdn\.jsdelivr\.net)/"
)
MONITORING_HOSTS = frozenset(
    {
        "rum.browser-intake-datadoghq.com",
        "google-analytics.com",
        "doubleclick.net",
        "hotjar.com",
        "mixpanel.com",
        "sentry.io",
    }
)

# Key presses that move focus or submit; everything else is typing noise.
FOCUS_CHANGING_KEYS = frozenset({"Tab", "Enter", "Escape"})
REPLAYED_KEYS = frozenset({"Enter"})

DEFAULT_HTTP_METHOD = "GET"
SECRET_MASK = "***"


def is_static_asset(url: str) -> bool:
    return bool(STATIC_ASSET_PATTERN.search(url) or STATIC_HOST_PATTERN.match(url))


def is_monitoring_request(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return False
    if host.startswith("mpc2-prod-"):
        return True
    return any(host == m or host.endswith(f".{m}") for m in MONITORING_HOSTS)


def is_api_candidate(event: RecordedEvent, response: RecordedEvent | None) -> bool:
    url = event.request_url
    if not url:
        return False
    if is_static_asset(url) or looks_like_document(url) or is_monitoring_request(url):
        return False
    if response is not None and response.status and response.status >= 400:
        return False

    path = urlparse(url).path.lower()
    method = (event.method or DEFAULT_HTTP_METHOD).upper()
    accept = event.headers.get("accept", "")
    content_type = (response.headers.get("content-type", "") if response else "").lower()

    score = 0
    if "/api/" in path or path.startswith("/api"):
        score += 2
    if re.match(r"^https?://api\.", url, re.IGNORECASE):
        score += 2
    if method != "GET":
        score += 1
    if "application/json" in accept:
        score += 1
    if any(t in content_type for t in ("application/json", "application/xml", "text/csv")):
        score += 2
    if "text/html" in content_type:
        score -= 2
    if any(t in path for t in ("analytics", "tracking", "pixel")):
        score -= 2
    return score >= 2


def normalize_http_method(method: str | None) -> str:
    normalized = (method or "").strip().upper()
    return normalized or DEFAULT_HTTP_METHOD


def pick_replay_headers(headers: dict[str, str]) -> dict[str, str]:
    lowered = {k.lower(): v for k, v in headers.items()}
    return {name: lowered[name] for name in ("content-type", "accept") if lowered.get(name)}


def _selector_key(event: RecordedEvent) -> str | None:
    if event.anchors and event.anchors.selector_variants:
        return event.anchors.selector_variants[0]
    return None


def _is_transparent(event: RecordedEvent) -> bool:
    if event.type == "console":
        return True
    return event.type == "keypress" and (event.key or "") not in FOCUS_CHANGING_KEYS


def aggregate_input_events(events: list[RecordedEvent]) -> list[RecordedEvent]:
    """Collapse consecutive inputs into the same field into the final one."""
    result: list[RecordedEvent] = []
    i = 0
    while i < len(events):
        event = events[i]
        if event.type != "input" or event.anchors is None:
            result.append(event)
            i += 1
            continue
        key = _selector_key(event)
        last = event
        j = i + 1
        while j < len(events):
            if _is_transparent(events[j]):
                j += 1
                continue
            if events[j].type == "input" and _selector_key(events[j]) == key:
                last = events[j]
                j += 1
                continue
            break
        result.append(last)
        i = j
    return result


def deduplicate_clicks(events: list[RecordedEvent]) -> list[RecordedEvent]:
    """Drop immediately repeated clicks on the same element."""
    result: list[RecordedEvent] = []
    for event in events:
        if (
            event.type == "click"
            and result
            and result[-1].type == "click"
            and _selector_key(event) is not None
            and _selector_key(event) == _selector_key(result[-1])
        ):
            continue
        result.append(event)
    return result


def _fetch_step(step_id: str, title: str, event: RecordedEvent, *, download: bool = False, guard: bool = False) -> RecipeStep:
    method = normalize_http_method(event.method)
    return RecipeStep(
        id=step_id,
        title=title,
        mode="http",
        action="fetch",
        url=event.request_url,
        method=method,
        headers=pick_replay_headers(event.headers),
        body=None if method in ("GET", "HEAD") else event.post_data,
        download=download,
        guards=[Guard(type="url_is", value=event.url)] if guard else [],
    )


def events_to_steps(events: list[RecordedEvent]) -> list[RecipeStep]:
    """Classify captured events into replayable steps."""
    prepared = deduplicate_clicks(aggregate_input_events(events))
    navigation_urls = {e.url for e in prepared if e.type == "navigation"}
    responses = {e.response_url: e for e in prepared if e.type == "response" and e.response_url}
    seen_requests: set[str] = set()

    steps: list[RecipeStep] = []
    for index, event in enumerate(prepared):
        step_id = f"step-{index + 1}"

        if event.type == "navigation":
            steps.append(
                RecipeStep(
                    id=step_id,
                    title="Navigate",
                    mode="pw",
                    action="goto",
                    url=event.url,
                    effects=[Effect(type="url_changed", value=event.url)],
                )
            )
        elif event.type == "click" and event.anchors and event.anchors.selector_variants:
            steps.append(
                RecipeStep(
                    id=step_id,
                    title=event.intent or "Click target",
                    mode="pw",
                    action="click",
                    selector_variants=list(event.anchors.selector_variants),
                    guards=[Guard(type="url_is", value=event.url)],
                )
            )
        elif event.type == "input" and event.anchors and event.anchors.selector_variants:
            value = event.value
            if event.secret and value == SECRET_MASK and event.secret_field_name:
                value = f"{{{{{event.secret_field_name}}}}}"
            steps.append(
                RecipeStep(
                    id=step_id,
                    title=event.intent or "Fill input",
                    mode="pw",
                    action="fill",
                    selector_variants=list(event.anchors.selector_variants),
                    value=value or "",
                    guards=[Guard(type="url_is", value=event.url)],
                )
            )
        elif event.type == "keypress" and event.key in REPLAYED_KEYS:
            steps.append(RecipeStep(id=step_id, title=f"Press {event.key}", mode="pw", action="press", key=event.key))
        elif event.type == "request" and event.request_url and event.request_url.startswith("http"):
            url = event.request_url
            if url in navigation_urls or url in seen_requests:
                continue
            if looks_like_document(url):
                seen_requests.add(url)
                steps.append(_fetch_step(step_id, "Download document", event, download=True))
            elif is_api_candidate(event, responses.get(url)):
                seen_requests.add(url)
                steps.append(_fetch_step(step_id, "Fetch API", event, guard=True))

    return steps
