"""Browser session management on top of the Playwright async API.

The session owns the Playwright driver, one Chromium browser, one context and
one page. Every driver call is funnelled through :meth:`BrowserSession._guard`
so Playwright exceptions surface as categorized control-surface or timeout
errors that the retry framework understands.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, List, Optional, Tuple, TypeVar

from playwright.async_api import (
    Browser,
    BrowserContext,
    CDPSession,
    ConsoleMessage,
    Error as PlaywrightError,
    Keyboard,
    Mouse,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from . import scripts
from .config import BrowserConfig
from .errors import ControlSurfaceError, OperationTimeoutError, PersistenceError

Logger = logging.Logger
T = TypeVar("T")


@dataclass(slots=True)
class ConsoleEntry:
    """Single console message emitted by the page."""

    level: str
    text: str
    timestamp: str


@dataclass(slots=True)
class ObstacleReport:
    """Result of the ad removal and cookie consent pass."""

    ads_removed: int = 0
    consent_accepted: bool = False
    consent_match: Optional[str] = None


def build_launch_args(config: BrowserConfig) -> List[str]:
    """Chromium flags for a probing session."""

    args = [
        "--disable-blink-features=AutomationControlled",
        "--no-sandbox",
        "--disable-dev-shm-usage",
        "--autoplay-policy=no-user-gesture-required",
    ]
    if config.block_ad_hosts and config.blocked_hosts:
        rules = []
        for host in config.blocked_hosts:
            rules.append(f"MAP {host} 127.0.0.1")
            rules.append(f"MAP *.{host} 127.0.0.1")
        args.append("--host-rules=" + ", ".join(rules))
    return args


class BrowserSession:
    """A single browser page driven through Playwright."""

    def __init__(self, config: BrowserConfig, logger: Optional[Logger] = None) -> None:
        self._config = config
        self._logger = logger or logging.getLogger(__name__)
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self.console_logs: List[ConsoleEntry] = []

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def config(self) -> BrowserConfig:
        return self._config

    @property
    def page(self) -> Page:
        if self._page is None:
            raise ControlSurfaceError("browser session has not been started", retryable=False)
        return self._page

    @property
    def mouse(self) -> Mouse:
        return self.page.mouse

    @property
    def keyboard(self) -> Keyboard:
        return self.page.keyboard

    async def start(self) -> None:
        """Launch Chromium and open the probing page.

        Raises:
            ControlSurfaceError: If the browser cannot be launched.
        """
        if self._page is not None:
            return

        self._logger.info(
            "Launching Chromium (headless=%s, viewport=%dx%d)",
            self._config.headless,
            self._config.viewport_width,
            self._config.viewport_height,
        )
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._guard(
                "launch browser",
                self._playwright.chromium.launch(
                    headless=self._config.headless,
                    args=build_launch_args(self._config),
                ),
            )
            context_kwargs: dict[str, Any] = {
                "viewport": {
                    "width": self._config.viewport_width,
                    "height": self._config.viewport_height,
                },
                "device_scale_factor": 1,
            }
            if self._config.user_agent:
                context_kwargs["user_agent"] = self._config.user_agent
            self._context = await self._guard("create context", self._browser.new_context(**context_kwargs))
            self._page = await self._guard("open page", self._context.new_page())
        except ControlSurfaceError:
            await self.close()
            raise

        self._page.on("console", self._on_console)

    async def close(self) -> None:
        """Close page, browser and driver; safe to call more than once."""

        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as exc:
                self._logger.warning("Error closing browser: %s", exc)
        if self._playwright is not None:
            await self._playwright.stop()
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

    async def navigate(self, url: str) -> None:
        """Navigate to ``url`` and wait for the configured readiness state.

        Raises:
            OperationTimeoutError: If the page does not become ready in time.
            ControlSurfaceError: On any other navigation failure.
        """
        self._logger.info("Navigating to %s (timeout %.0fs)", url, self._config.load_timeout_s)
        await self._guard(
            f"navigate to {url}",
            self.page.goto(
                url,
                wait_until=self._config.navigation_wait,  # type: ignore[arg-type]
                timeout=self._config.load_timeout_s * 1000,
            ),
        )
        await self._guard("wait for body", self.page.wait_for_selector("body", state="attached"))

    async def screenshot(self) -> bytes:
        """Capture the viewport as PNG bytes."""

        return await self._guard("screenshot", self.page.screenshot(type="png"))

    async def query(self, selector: str) -> bool:
        """Return whether ``selector`` matches at least one element."""

        element = await self._guard(f"query {selector}", self.page.query_selector(selector))
        return element is not None

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Evaluate a function expression in the page and return its result."""

        if arg is None:
            return await self._guard("evaluate script", self.page.evaluate(script))
        return await self._guard("evaluate script", self.page.evaluate(script, arg))

    async def viewport_size(self) -> Tuple[int, int]:
        """Return the live ``innerWidth``/``innerHeight``."""

        size = await self.evaluate(scripts.VIEWPORT_SIZE)
        return int(size["width"]), int(size["height"])

    async def remove_obstacles(self) -> ObstacleReport:
        """Strip ad containers and accept cookie consent dialogs."""

        result = await self.evaluate(scripts.REMOVE_OBSTACLES) or {}
        report = ObstacleReport(
            ads_removed=int(result.get("adsRemoved", 0)),
            consent_accepted=bool(result.get("consentAccepted", False)),
            consent_match=result.get("consentMatch"),
        )
        self._logger.info(
            "Obstacle pass removed %d ad element(s); consent accepted=%s",
            report.ads_removed,
            report.consent_accepted,
        )
        return report

    async def click_start_control(self) -> bool:
        """Click a start/play control found by its text, falling back to the canvas."""

        result = await self.evaluate(scripts.CLICK_START_CONTROL) or {}
        clicked = bool(result.get("clicked"))
        if clicked:
            self._logger.info("Start control clicked via %s (%s)", result.get("method"), result.get("text"))
        return clicked

    async def click_by_text(self, text: str) -> bool:
        """Click the smallest visible element containing ``text``."""

        result = await self.evaluate(scripts.FIND_TEXT_ELEMENT, {"text": text, "click": True}) or {}
        if not result.get("found"):
            self._logger.info("No element with text %r (%s)", text, result.get("reason"))
            return False
        self._logger.info("Clicked <%s> with text %r", result.get("tag"), result.get("text"))
        return True

    async def locate_text(self, text: str) -> Optional[Tuple[float, float]]:
        """Return the viewport-space center of the element labelled ``text``."""

        result = await self.evaluate(scripts.FIND_TEXT_ELEMENT, {"text": text, "click": False}) or {}
        if not result.get("found"):
            return None
        return float(result["x"]), float(result["y"])

    async def wait_for_surface_ready(self, timeout_s: float) -> bool:
        """Poll the rendering surface until it has drawn something."""

        ready = await self.evaluate(scripts.WAIT_FOR_SURFACE_READY, int(timeout_s * 1000))
        return bool(ready)

    async def new_cdp_session(self) -> CDPSession:
        """Open a raw DevTools protocol session bound to the page."""

        if self._context is None:
            raise ControlSurfaceError("browser session has not been started", retryable=False)
        return await self._guard("open CDP session", self._context.new_cdp_session(self.page))

    def export_console(self, path: Path) -> Path:
        """Write captured console messages as JSON.

        Raises:
            PersistenceError: If the file cannot be written.
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump([asdict(entry) for entry in self.console_logs], handle, indent=2)
        except OSError as exc:
            raise PersistenceError(f"could not write console log to {path}", cause=exc) from exc
        return path

    def _on_console(self, message: ConsoleMessage) -> None:
        self.console_logs.append(
            ConsoleEntry(level=message.type, text=message.text, timestamp=datetime.now().isoformat())
        )

    async def _guard(self, description: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except PlaywrightTimeoutError as exc:
            raise OperationTimeoutError(description, cause=exc) from exc
        except PlaywrightError as exc:
            raise ControlSurfaceError(description, cause=exc) from exc


__all__ = [
    "BrowserSession",
    "ConsoleEntry",
    "ObstacleReport",
    "build_launch_args",
]
