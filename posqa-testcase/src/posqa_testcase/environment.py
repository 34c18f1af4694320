"""Client environment snapshot.

Test modules never probe a live browser. Instead they inspect a snapshot of
the client environment: which APIs the client exposes (service worker, Cache
API, IndexedDB, local storage, background sync, storage quota, touch and
pointer events, media queries), the browser and device profiles to check,
the viewports to lay out, and optionally the page markup to audit.

Example YAML (``client`` section of the run configuration):
    client:
      capabilities:
        service_worker: true
        background_sync: false
        storage_quota_mb: 512
      browsers:
        - name: Chrome
          features: [serviceworker, indexeddb, websockets, webrtc]
          css: [flexbox, grid]
      html_path: "build/index.html"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

MOBILE_MAX_WIDTH = 768
TABLET_MAX_WIDTH = 1024

BREAKPOINT_QUERIES = (
    "(max-width: 767px)",
    "(min-width: 768px) and (max-width: 1023px)",
    "(min-width: 1024px)",
)

DEFAULT_MEDIA_QUERIES = frozenset(
    {
        "(max-width: 767px)",
        "(min-width: 768px) and (max-width: 1023px)",
        "(min-width: 1024px)",
        "(orientation: portrait)",
        "(orientation: landscape)",
        "(pointer: coarse)",
        "(hover: hover)",
        "(prefers-reduced-motion: reduce)",
    }
)

DEFAULT_CACHED_URLS = (
    "/",
    "/index.html",
    "/offline.html",
    "/css/style.css",
    "/js/pos-app.js",
    "/manifest.json",
)


def classify_width(width: int) -> str:
    """Return the layout class ("mobile", "tablet" or "desktop") of a width."""
    if width < MOBILE_MAX_WIDTH:
        return "mobile"
    if width < TABLET_MAX_WIDTH:
        return "tablet"
    return "desktop"


@dataclass(frozen=True)
class Viewport:
    """A viewport size to lay the application out in."""

    name: str
    width: int
    height: int

    @property
    def layout(self) -> str:
        """Return the layout class of this viewport's width."""
        return classify_width(self.width)

    @property
    def short_side(self) -> int:
        """Return the shorter dimension."""
        return min(self.width, self.height)


@dataclass(frozen=True)
class LayoutMetrics:
    """Rendering observations of the application in one viewport.

    Attributes:
        scroll_width: Document scroll width in pixels.
        min_font_px: Smallest text font size in pixels.
        nav_width: Width of the navigation bar, if present.
    """

    scroll_width: int
    min_font_px: float = 16.0
    nav_width: int | None = None

    @classmethod
    def fitting(cls, viewport: Viewport) -> LayoutMetrics:
        """Return metrics of a layout that fits the viewport exactly."""
        return cls(scroll_width=viewport.width, min_font_px=16.0, nav_width=viewport.width)


@dataclass(frozen=True)
class BrowserProfile:
    """A desktop browser to check compatibility against.

    Attributes:
        name: Browser name.
        user_agent: User agent string.
        features: Web platform features the browser supports.
        css: CSS features the browser supports.
    """

    name: str
    user_agent: str = ""
    features: frozenset[str] = frozenset()
    css: frozenset[str] = frozenset()


@dataclass(frozen=True)
class DeviceProfile:
    """A mobile or tablet device to emulate.

    Attributes:
        name: Device name.
        kind: "mobile" or "tablet".
        user_agent: User agent string.
        viewport: Screen size in CSS pixels.
        pixel_ratio: Device pixel ratio.
        touch: Whether the device has a touch screen.
    """

    name: str
    kind: str
    user_agent: str
    viewport: Viewport
    pixel_ratio: float = 1.0
    touch: bool = True


@dataclass(frozen=True)
class ClientCapabilities:
    """Browser APIs exposed by the client.

    Attributes:
        service_worker: navigator.serviceWorker is available.
        service_worker_state: State of the registered worker.
        service_worker_scope: Scope of the registered worker.
        cache_api: The Cache API is available.
        indexed_db: IndexedDB is available.
        local_storage: localStorage is available.
        background_sync: The Background Sync API is available.
        storage_quota: Storage quota in bytes.
        storage_usage: Storage in use, in bytes.
        touch_events: Touch events are supported.
        pointer_events: Pointer events are supported.
        media_queries: Media queries that match or are supported.
        cached_urls: URLs present in the application cache.
    """

    service_worker: bool = True
    service_worker_state: str = "activated"
    service_worker_scope: str = "/"
    cache_api: bool = True
    indexed_db: bool = True
    local_storage: bool = True
    background_sync: bool = True
    storage_quota: int = 512 * 1024 * 1024
    storage_usage: int = 4 * 1024 * 1024
    touch_events: bool = True
    pointer_events: bool = True
    media_queries: frozenset[str] = DEFAULT_MEDIA_QUERIES
    cached_urls: tuple[str, ...] = DEFAULT_CACHED_URLS

    @property
    def storage_available(self) -> int:
        """Return the free storage in bytes."""
        return max(0, self.storage_quota - self.storage_usage)

    @property
    def storage_usage_ratio(self) -> float:
        """Return used storage as a fraction of the quota."""
        if self.storage_quota <= 0:
            return 1.0
        return self.storage_usage / self.storage_quota


DEFAULT_BROWSERS = (
    BrowserProfile(
        name="Chrome",
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        features=frozenset({"webgl", "serviceworker", "indexeddb", "websockets", "webrtc"}),
        css=frozenset({"flexbox", "grid", "transforms", "transitions", "animations"}),
    ),
    BrowserProfile(
        name="Firefox",
        user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:120.0) Gecko/20100101 Firefox/120.0",
        features=frozenset({"webgl", "serviceworker", "indexeddb", "websockets", "webrtc"}),
        css=frozenset({"flexbox", "grid", "transforms", "transitions", "animations"}),
    ),
    BrowserProfile(
        name="Safari",
        user_agent=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/17.0 Safari/605.1.15"
        ),
        features=frozenset({"webgl", "serviceworker", "indexeddb", "websockets"}),
        css=frozenset({"flexbox", "grid", "transforms", "transitions", "animations"}),
    ),
    BrowserProfile(
        name="Edge",
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0"
        ),
        features=frozenset({"webgl", "serviceworker", "indexeddb", "websockets", "webrtc"}),
        css=frozenset({"flexbox", "grid", "transforms", "transitions", "animations"}),
    ),
)

DEFAULT_DEVICES = (
    DeviceProfile(
        name="Android",
        kind="mobile",
        user_agent=(
            "Mozilla/5.0 (Linux; Android 13; SM-S911B) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/112.0.0.0 Mobile Safari/537.36"
        ),
        viewport=Viewport("Android", 360, 780),
        pixel_ratio=3,
    ),
    DeviceProfile(
        name="iOS",
        kind="mobile",
        user_agent=(
            "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
        ),
        viewport=Viewport("iOS", 390, 844),
        pixel_ratio=3,
    ),
    DeviceProfile(
        name="iPad",
        kind="tablet",
        user_agent=(
            "Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
        ),
        viewport=Viewport("iPad", 1024, 1366),
        pixel_ratio=2,
    ),
    DeviceProfile(
        name="Android Tablet",
        kind="tablet",
        user_agent=(
            "Mozilla/5.0 (Linux; Android 13; SM-X900) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/112.0.0.0 Safari/537.36"
        ),
        viewport=Viewport("Android Tablet", 800, 1280),
        pixel_ratio=2,
    ),
)

DEFAULT_VIEWPORTS = (
    Viewport("Mobile Small", 320, 568),
    Viewport("Mobile Medium", 375, 667),
    Viewport("Mobile Large", 414, 896),
    Viewport("Tablet Portrait", 768, 1024),
    Viewport("Tablet Landscape", 1024, 768),
    Viewport("Desktop Small", 1366, 768),
    Viewport("Desktop Medium", 1920, 1080),
    Viewport("Desktop Large", 2560, 1440),
)


@dataclass(frozen=True)
class ClientEnvironment:
    """Snapshot of the client environment the application runs in.

    Attributes:
        capabilities: Browser APIs exposed by the client.
        browsers: Desktop browsers to check.
        devices: Devices to emulate.
        viewports: Viewport sizes to lay out.
        layouts: Observed layout metrics by viewport name. Viewports
            without an entry are assumed to fit.
        html: Page markup to audit for accessibility, if available.
    """

    capabilities: ClientCapabilities = field(default_factory=ClientCapabilities)
    browsers: tuple[BrowserProfile, ...] = DEFAULT_BROWSERS
    devices: tuple[DeviceProfile, ...] = DEFAULT_DEVICES
    viewports: tuple[Viewport, ...] = DEFAULT_VIEWPORTS
    layouts: Mapping[str, LayoutMetrics] = field(default_factory=dict)
    html: str | None = None

    def layout_for(self, viewport: Viewport) -> LayoutMetrics:
        """Return the observed layout of a viewport."""
        return self.layouts.get(viewport.name) or LayoutMetrics.fitting(viewport)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base_dir: Path | None = None) -> ClientEnvironment:
        """Create a snapshot from the ``client`` configuration section.

        Args:
            data: The parsed mapping.
            base_dir: Directory relative ``html_path`` values resolve against.

        Returns:
            Parsed ClientEnvironment. Omitted sections keep their defaults.

        Raises:
            ValueError: If a section has the wrong shape.
            FileNotFoundError: If ``html_path`` does not exist.
        """
        caps_data = data.get("capabilities", {}) or {}
        if not isinstance(caps_data, dict):
            raise ValueError("client.capabilities must be a mapping")
        capabilities = _parse_capabilities(caps_data)

        browsers = DEFAULT_BROWSERS
        if "browsers" in data:
            browsers = tuple(_parse_browser(b) for b in _as_list(data["browsers"], "client.browsers"))

        devices = DEFAULT_DEVICES
        if "devices" in data:
            devices = tuple(_parse_device(d) for d in _as_list(data["devices"], "client.devices"))

        viewports = DEFAULT_VIEWPORTS
        if "viewports" in data:
            viewports = tuple(
                _parse_viewport(v) for v in _as_list(data["viewports"], "client.viewports")
            )

        layouts_data = data.get("layouts", {}) or {}
        if not isinstance(layouts_data, dict):
            raise ValueError("client.layouts must be a mapping")
        layouts = {
            name: LayoutMetrics(
                scroll_width=int(entry["scroll_width"]),
                min_font_px=float(entry.get("min_font_px", 16.0)),
                nav_width=entry.get("nav_width"),
            )
            for name, entry in layouts_data.items()
        }

        html = data.get("html")
        html_path = data.get("html_path")
        if html is None and html_path:
            path = Path(html_path)
            if not path.is_absolute() and base_dir is not None:
                path = base_dir / path
            if not path.exists():
                raise FileNotFoundError(f"Page markup not found: {path}")
            html = path.read_text(encoding="utf-8")

        return cls(
            capabilities=capabilities,
            browsers=browsers,
            devices=devices,
            viewports=viewports,
            layouts=layouts,
            html=html,
        )


def _as_list(value: Any, name: str) -> list[Any]:
    if not isinstance(value, list):
        raise ValueError(f"{name} must be a list")
    for item in value:
        if not isinstance(item, dict):
            raise ValueError(f"Each entry of {name} must be a mapping")
    return value


def _parse_capabilities(data: Mapping[str, Any]) -> ClientCapabilities:
    defaults = ClientCapabilities()
    quota_mb = data.get("storage_quota_mb")
    usage_mb = data.get("storage_usage_mb")
    return ClientCapabilities(
        service_worker=bool(data.get("service_worker", defaults.service_worker)),
        service_worker_state=str(data.get("service_worker_state", defaults.service_worker_state)),
        service_worker_scope=str(data.get("service_worker_scope", defaults.service_worker_scope)),
        cache_api=bool(data.get("cache_api", defaults.cache_api)),
        indexed_db=bool(data.get("indexed_db", defaults.indexed_db)),
        local_storage=bool(data.get("local_storage", defaults.local_storage)),
        background_sync=bool(data.get("background_sync", defaults.background_sync)),
        storage_quota=(
            int(float(quota_mb) * 1024 * 1024) if quota_mb is not None else defaults.storage_quota
        ),
        storage_usage=(
            int(float(usage_mb) * 1024 * 1024) if usage_mb is not None else defaults.storage_usage
        ),
        touch_events=bool(data.get("touch_events", defaults.touch_events)),
        pointer_events=bool(data.get("pointer_events", defaults.pointer_events)),
        media_queries=frozenset(data.get("media_queries", defaults.media_queries)),
        cached_urls=tuple(data.get("cached_urls", defaults.cached_urls)),
    )


def _parse_browser(data: Mapping[str, Any]) -> BrowserProfile:
    name = data.get("name")
    if not name:
        raise ValueError("Browser missing required field: name")
    return BrowserProfile(
        name=name,
        user_agent=data.get("user_agent", ""),
        features=frozenset(data.get("features", [])),
        css=frozenset(data.get("css", [])),
    )


def _parse_viewport(data: Mapping[str, Any]) -> Viewport:
    try:
        return Viewport(name=data["name"], width=int(data["width"]), height=int(data["height"]))
    except KeyError as exc:
        raise ValueError(f"Viewport missing required field: {exc.args[0]}") from exc


def _parse_device(data: Mapping[str, Any]) -> DeviceProfile:
    name = data.get("name")
    if not name:
        raise ValueError("Device missing required field: name")
    viewport_data = data.get("viewport")
    if not isinstance(viewport_data, dict):
        raise ValueError(f"Device {name} missing required field: viewport")
    return DeviceProfile(
        name=name,
        kind=data.get("kind", "mobile"),
        user_agent=data.get("user_agent", ""),
        viewport=_parse_viewport({"name": name, **viewport_data}),
        pixel_ratio=float(data.get("pixel_ratio", 1.0)),
        touch=bool(data.get("touch", True)),
    )
