"""Low-level browser event capture used for manual re-capture during healing.

An init script installed on the browser context reports clicks, inputs and
key presses through an exposed binding; navigations come from the page's
``framenavigated`` event. Events are buffered only while the capture is
armed, so normal replay traffic is never recorded.

Inputs into credential fields are masked as ``***``; their real values are
kept in memory in ``EventCapture.secrets`` keyed by an inferred field name.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

logger = logging.getLogger(__name__)

RecordedEventType = Literal["navigation", "click", "input", "keypress", "request", "response", "console"]

USER_EVENT_TYPES = frozenset({"click", "input", "navigation", "keypress"})

PUSH_BINDING = "__recipeReplayPush"
SECRET_BINDING = "__recipeReplaySecret"

INIT_SCRIPT = """
(function() {
  if (window.__recipeReplayInstalled) return;
  window.__recipeReplayInstalled = true;

  var toCssPath = function(el) {
    var parts = [];
    var current = el;
    while (current && current.tagName && parts.length < 5) {
      var tag = current.tagName.toLowerCase();
      var id = current.id ? "#" + current.id : "";
      var cls = current.className && typeof current.className === "string"
        ? "." + current.className.trim().split(/\\s+/).slice(0, 2).join(".")
        : "";
      parts.unshift(tag + id + (cls === "." ? "" : cls));
      current = current.parentElement;
    }
    return parts.join(" > ");
  };

  var nearbyText = function(el) {
    var out = [];
    var label = el.closest("label");
    if (label && label.textContent && label.textContent.trim()) out.push(label.textContent.trim());
    var prev = el.previousElementSibling;
    if (prev && prev.textContent && prev.textContent.trim()) out.push(prev.textContent.trim());
    var parent = el.parentElement;
    if (parent && parent.textContent && parent.textContent.trim()) out.push(parent.textContent.trim().slice(0, 80));
    return out.slice(0, 3);
  };

  var anchorsFor = function(el) {
    var role = el.getAttribute("role") || null;
    var name = el.getAttribute("name") || el.getAttribute("aria-label")
      || (el.textContent ? el.textContent.trim().slice(0, 60) : null) || null;
    var placeholder = el.placeholder || null;
    var labelEl = el.id ? document.querySelector('label[for="' + el.id + '"]') : null;
    var label = labelEl && labelEl.textContent ? labelEl.textContent.trim() : null;
    var css = toCssPath(el);
    var variants = [
      el.id ? "#" + el.id : null,
      role && name ? '[role="' + role + '"][name="' + name + '"]' : null,
      label ? 'label:has-text("' + label + '")' : null,
      placeholder ? 'input[placeholder="' + placeholder + '"]' : null,
      css
    ].filter(Boolean);
    return {
      role: role, name: name, label: label, placeholder: placeholder,
      nearby_text: nearbyText(el), css: css, selector_variants: variants
    };
  };

  var isCredentialField = function(el) {
    if (!(el instanceof HTMLInputElement)) return false;
    if (el.type === "password") return true;
    var form = el.closest("form");
    if (!form || !form.querySelector('input[type="password"]')) return false;
    var type = (el.type || "").toLowerCase();
    var autocomplete = (el.getAttribute("autocomplete") || "").toLowerCase();
    var name = (el.getAttribute("name") || "").toLowerCase();
    if (type === "email" || type === "tel") return true;
    if (autocomplete === "username" || autocomplete === "email") return true;
    return ["user", "email", "login", "account"].some(function(k) { return name.indexOf(k) >= 0; });
  };

  var fieldNameFor = function(el) {
    var ac = el.getAttribute("autocomplete");
    if (ac && ac !== "off" && ac !== "on") return ac.replace("current-", "").replace("new-", "");
    var name = el.getAttribute("name");
    if (name) {
      var match = name.match(/\\[([^\\]]+)\\]$/);
      return match ? match[1] : name.replace(/[^a-zA-Z0-9_]/g, "_");
    }
    if (el.type === "password" || el.type === "email") return el.type;
    if (el.id) return el.id.replace(/[^a-zA-Z0-9_]/g, "_");
    return "credential";
  };

  var push = function(payload) {
    try {
      if (typeof window.__recipeReplayPush === "function") window.__recipeReplayPush(payload);
    } catch (err) {}
  };

  document.addEventListener("click", function(ev) {
    if (!(ev.target instanceof Element)) return;
    push({ type: "click", anchors: anchorsFor(ev.target) });
  }, { capture: true });

  document.addEventListener("input", function(ev) {
    var target = ev.target;
    if (!(target instanceof HTMLInputElement || target instanceof HTMLTextAreaElement)) return;
    var secret = isCredentialField(target);
    var fieldName = secret ? fieldNameFor(target) : null;
    push({
      type: "input",
      anchors: anchorsFor(target),
      value: secret ? "***" : target.value,
      secret: secret,
      secret_field_name: fieldName
    });
    if (secret && typeof window.__recipeReplaySecret === "function") {
      try { window.__recipeReplaySecret({ field_name: fieldName, value: target.value }); } catch (err) {}
    }
  }, { capture: true });

  document.addEventListener("keydown", function(ev) {
    push({ type: "keypress", key: ev.key });
  }, { capture: true });
})();
"""


@dataclass
class DomAnchors:
    selector_variants: list[str] = field(default_factory=list)
    role: str | None = None
    name: str | None = None
    label: str | None = None
    placeholder: str | None = None
    css: str | None = None
    nearby_text: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "DomAnchors":
        return cls(
            selector_variants=[str(s) for s in data.get("selector_variants") or []],
            role=data.get("role"),
            name=data.get("name"),
            label=data.get("label"),
            placeholder=data.get("placeholder"),
            css=data.get("css"),
            nearby_text=[str(s) for s in data.get("nearby_text") or []],
        )


@dataclass
class RecordedEvent:
    type: RecordedEventType
    url: str
    ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    anchors: DomAnchors | None = None
    value: str | None = None
    key: str | None = None
    secret: bool = False
    secret_field_name: str | None = None
    intent: str | None = None
    # request/response events
    method: str | None = None
    status: int | None = None
    request_url: str | None = None
    response_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    post_data: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any], url: str) -> "RecordedEvent":
        anchors = payload.get("anchors")
        return cls(
            type=payload["type"],
            url=url,
            anchors=DomAnchors.from_payload(anchors) if isinstance(anchors, dict) else None,
            value=payload.get("value"),
            key=payload.get("key"),
            secret=bool(payload.get("secret")),
            secret_field_name=payload.get("secret_field_name"),
        )


class EventCapture:
    """Records user interactions on the browser surface while armed."""

    def __init__(self) -> None:
        self.armed = False
        self.events: list[RecordedEvent] = []
        self.secrets: dict[str, str] = {}
        self._installed_on: Any = None

    async def install(self, context: Any, page: Any) -> None:
        """Expose bindings and the init script on ``context``; idempotent per context."""
        if self._installed_on is context:
            return
        await context.expose_binding(PUSH_BINDING, self._on_push)
        await context.expose_binding(SECRET_BINDING, self._on_secret)
        await context.add_init_script(script=INIT_SCRIPT)
        page.on("framenavigated", self._on_frame_navigated)
        self._installed_on = context
        logger.debug("Event capture installed on browser context")

    def arm(self) -> None:
        self.events = []
        self.secrets = {}
        self.armed = True

    def disarm(self) -> list[RecordedEvent]:
        """Stop recording and return everything captured since ``arm``."""
        self.armed = False
        events, self.events = self.events, []
        return events

    def record(self, event: RecordedEvent) -> None:
        if self.armed:
            self.events.append(event)

    def _on_push(self, source: dict[str, Any], payload: Any) -> None:
        if not self.armed or not isinstance(payload, dict) or "type" not in payload:
            return
        page = source.get("page")
        url = page.url if page is not None else ""
        try:
            self.record(RecordedEvent.from_payload(payload, url))
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Ignoring malformed capture payload: {e}")

    def _on_secret(self, source: dict[str, Any], payload: Any) -> None:
        if not self.armed or not isinstance(payload, dict):
            return
        name = payload.get("field_name")
        value = payload.get("value")
        if name and isinstance(value, str):
            self.secrets[str(name)] = value

    def _on_frame_navigated(self, frame: Any) -> None:
        if frame.parent_frame is not None:
            return
        self.record(RecordedEvent(type="navigation", url=frame.url))
