"""Synthetic input delivery for the probed page.

Two mutually exclusive delivery strategies exist:

* **Surface mode** sends pointer and key events through Playwright's native
  input channel into a focused ``<canvas>``, where the game's own event loop
  interprets them.
* **Global mode** builds ``KeyboardEvent``/``PointerEvent`` objects in page
  script and dispatches them on ``window``, ``document`` and ``document.body``,
  for games rendered with ordinary DOM elements.

The mode is decided by the first dispatch and stored on the
:class:`~playprobe_runtime.context.SessionContext`. The launcher clears it once
the page is prepared, since a start click may create the canvas; after that it
holds for the rest of the session and is not re-checked per action.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Dict, List, Optional, Sequence, Tuple, TypeVar

from playwright.async_api import Error as PlaywrightError

from . import scripts
from .config import InputConfig
from .context import RenderMode, SessionContext
from .errors import ControlSurfaceError

if TYPE_CHECKING:  # pragma: no cover - import typing aid only
    from .browser import BrowserSession

Logger = logging.Logger
Point = Tuple[float, float]
T = TypeVar("T")


class SurfaceNotFoundError(ControlSurfaceError):
    """Raised when no focusable rendering surface exists on the page."""


class UnknownKeyError(ControlSurfaceError):
    """Raised for key names outside the supported mapping table."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown key identifier {name!r}", retryable=False)
        self.name = name


@dataclass(frozen=True, slots=True)
class KeySpec:
    """Complete keyboard event metadata for one key."""

    key: str  # KeyboardEvent.key
    code: str  # KeyboardEvent.code (physical key)
    key_code: int  # legacy numeric keyCode/which

    @property
    def driver_name(self) -> str:
        """Name understood by Playwright's keyboard API."""

        return self.key if len(self.key) == 1 and self.key != " " else self.code


_ARROW_UP = KeySpec("ArrowUp", "ArrowUp", 38)
_ARROW_DOWN = KeySpec("ArrowDown", "ArrowDown", 40)
_ARROW_LEFT = KeySpec("ArrowLeft", "ArrowLeft", 37)
_ARROW_RIGHT = KeySpec("ArrowRight", "ArrowRight", 39)
_SPACE = KeySpec(" ", "Space", 32)
_ENTER = KeySpec("Enter", "Enter", 13)
_ESCAPE = KeySpec("Escape", "Escape", 27)

KEY_TABLE: Dict[str, KeySpec] = {
    "ArrowUp": _ARROW_UP,
    "Up": _ARROW_UP,
    "ArrowDown": _ARROW_DOWN,
    "Down": _ARROW_DOWN,
    "ArrowLeft": _ARROW_LEFT,
    "Left": _ARROW_LEFT,
    "ArrowRight": _ARROW_RIGHT,
    "Right": _ARROW_RIGHT,
    "Space": _SPACE,
    " ": _SPACE,
    "Enter": _ENTER,
    "Return": _ENTER,
    "Escape": _ESCAPE,
    "Esc": _ESCAPE,
    "Tab": KeySpec("Tab", "Tab", 9),
    "Backspace": KeySpec("Backspace", "Backspace", 8),
    "Delete": KeySpec("Delete", "Delete", 46),
}

_KEY_TABLE_FOLDED = {name.lower(): spec for name, spec in KEY_TABLE.items() if len(name) > 1}


def resolve_key(name: str) -> KeySpec:
    """Map a key name or single ASCII character to its event metadata.

    Raises:
        UnknownKeyError: For anything outside the table and printable ASCII.
    """
    if name in KEY_TABLE:
        return KEY_TABLE[name]
    if len(name) > 1 and name.lower() in _KEY_TABLE_FOLDED:
        return _KEY_TABLE_FOLDED[name.lower()]
    if len(name) == 1 and 33 <= ord(name) <= 126:
        upper = name.upper()
        if name.isalpha():
            code = f"Key{upper}"
        elif name.isdigit():
            code = f"Digit{name}"
        else:
            code = ""
        return KeySpec(key=name, code=code, key_code=ord(upper))
    raise UnknownKeyError(name)


class ActuationKind(str, Enum):
    CLICK = "click"
    DRAG = "drag"
    KEY = "key"
    WAIT = "wait"


class KeyAction(str, Enum):
    PRESS = "press"
    HOLD = "hold"  # keydown, then wait without releasing
    RELEASE = "release"
    SEQUENCE = "sequence"


class CoordinateSpace(str, Enum):
    FRAME = "frame"  # screenshot pixels, scaled before dispatch
    VIEWPORT = "viewport"  # CSS pixels as reported by the page


def clamp_power(power: Optional[float], default: float) -> float:
    value = default if power is None else float(power)
    return max(0.0, min(1.0, value))


def interpolate_drag(start: Point, end: Point, steps: int) -> List[Point]:
    """Evenly spaced move targets from ``start`` toward ``end``.

    Returns ``steps`` points at ``t = i/steps`` for ``i = 1..steps``; the last
    point is exactly ``end``.
    """
    steps = max(1, int(steps))
    (sx, sy), (ex, ey) = start, end
    points = [(sx + (ex - sx) * i / steps, sy + (ey - sy) * i / steps) for i in range(1, steps)]
    points.append((ex, ey))
    return points


@dataclass(frozen=True, slots=True)
class ActuationPlan:
    """Fully resolved input instruction, consumed once by the dispatcher."""

    kind: ActuationKind
    points: Tuple[Point, ...] = ()  # drag: start followed by every move target
    space: CoordinateSpace = CoordinateSpace.FRAME
    frame_size: Optional[Tuple[int, int]] = None
    keys: Tuple[str, ...] = ()
    key_action: KeyAction = KeyAction.PRESS
    press_pause_s: float = 0.0
    step_delay_s: float = 0.0
    hold_s: float = 0.0
    key_gap_s: float = 0.05
    sequence_gap_s: float = 0.05
    wait_s: float = 0.0
    description: str = ""

    @classmethod
    def click(
        cls,
        x: float,
        y: float,
        config: InputConfig,
        *,
        space: CoordinateSpace = CoordinateSpace.FRAME,
        frame_size: Optional[Tuple[int, int]] = None,
        description: str = "",
    ) -> "ActuationPlan":
        return cls(
            kind=ActuationKind.CLICK,
            points=((x, y),),
            space=space,
            frame_size=frame_size,
            key_gap_s=config.key_press_gap_ms / 1000.0,
            description=description or f"click ({x:.0f}, {y:.0f})",
        )

    @classmethod
    def drag(
        cls,
        start: Point,
        end: Point,
        config: InputConfig,
        *,
        power: Optional[float] = None,
        steps: Optional[int] = None,
        space: CoordinateSpace = CoordinateSpace.FRAME,
        frame_size: Optional[Tuple[int, int]] = None,
        description: str = "",
    ) -> "ActuationPlan":
        """Build a press, interpolated moves, hold, release gesture.

        Duration and hold both grow with ``power`` (clamped to [0, 1]).
        """
        strength = clamp_power(power, config.default_power)
        step_count = max(1, steps or config.drag_steps)
        duration_ms = config.drag_base_ms * (1.0 + strength * 0.5)
        hold_ms = config.hold_base_ms * (1.0 + strength)
        return cls(
            kind=ActuationKind.DRAG,
            points=(start, *interpolate_drag(start, end, step_count)),
            space=space,
            frame_size=frame_size,
            press_pause_s=config.drag_press_pause_ms / 1000.0,
            step_delay_s=duration_ms / step_count / 1000.0,
            hold_s=hold_ms / 1000.0,
            description=description
            or f"drag ({start[0]:.0f}, {start[1]:.0f}) -> ({end[0]:.0f}, {end[1]:.0f}) power {strength:.2f}",
        )

    @classmethod
    def key(
        cls,
        keys: Sequence[str],
        config: InputConfig,
        *,
        action: KeyAction = KeyAction.PRESS,
        hold_ms: Optional[int] = None,
        description: str = "",
    ) -> "ActuationPlan":
        """Build a key plan; every name is validated up front.

        Raises:
            UnknownKeyError: If any key name is not supported.
        """
        names = tuple(keys)
        if not names:
            raise UnknownKeyError("")
        for name in names:
            resolve_key(name)
        return cls(
            kind=ActuationKind.KEY,
            keys=names,
            key_action=action,
            hold_s=(hold_ms if hold_ms is not None else config.hold_base_ms) / 1000.0,
            key_gap_s=config.key_press_gap_ms / 1000.0,
            sequence_gap_s=config.key_sequence_gap_ms / 1000.0,
            description=description or f"{action.value} {'+'.join(names)}",
        )

    @classmethod
    def wait(cls, duration_ms: int, *, description: str = "") -> "ActuationPlan":
        return cls(
            kind=ActuationKind.WAIT,
            wait_s=max(0, duration_ms) / 1000.0,
            description=description or f"wait {duration_ms}ms",
        )


class InputDispatcher:
    """Delivers :class:`ActuationPlan` objects to the live page."""

    def __init__(
        self,
        session: "BrowserSession",
        config: Optional[InputConfig] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self._session = session
        self._config = config or InputConfig()
        self._logger = logger or logging.getLogger(__name__)

    async def focus_surface(self) -> Dict[str, object]:
        """Focus the page's rendering surface and verify it became active.

        Raises:
            SurfaceNotFoundError: If no canvas exists or focus did not stick.
        """
        result = await self._session.evaluate(scripts.FOCUS_SURFACE) or {}
        if not result.get("success"):
            raise SurfaceNotFoundError(
                f"no focusable surface ({result.get('reason')}, active={result.get('activeTag')})"
            )
        return result

    async def select_mode(self) -> RenderMode:
        """Probe the page once and choose the delivery strategy."""

        try:
            result = await self.focus_surface()
        except SurfaceNotFoundError as exc:
            self._logger.info("Using global input mode: %s", exc.message)
            return RenderMode.GLOBAL
        self._logger.info("Using surface input mode (canvas in iframe=%s)", result.get("inIframe"))
        return RenderMode.SURFACE

    async def ensure_mode(self, context: SessionContext) -> RenderMode:
        if context.render_mode is None:
            context.render_mode = await self.select_mode()
        return context.render_mode

    async def ensure_scale(self, context: SessionContext, frame_size: Tuple[int, int]) -> Tuple[float, float]:
        """Measure the frame-to-viewport scale once per session."""

        if context.viewport_scale is None:
            inner_width, inner_height = await self._session.viewport_size()
            frame_width, frame_height = frame_size
            context.viewport_scale = (
                inner_width / frame_width if frame_width else 1.0,
                inner_height / frame_height if frame_height else 1.0,
            )
            self._logger.debug(
                "Viewport %dx%d for frame %dx%d (scale %.3f, %.3f)",
                inner_width,
                inner_height,
                frame_width,
                frame_height,
                *context.viewport_scale,
            )
        return context.viewport_scale

    async def dispatch(self, plan: ActuationPlan, context: SessionContext) -> None:
        """Execute ``plan`` through the session's render mode.

        Raises:
            UnknownKeyError: For unsupported key names (not retryable).
            ControlSurfaceError: When the driver rejects an event.
            OperationCancelledError: If the session token fires mid-gesture.
        """
        context.token.raise_if_cancelled()
        if plan.kind is ActuationKind.WAIT:
            await context.token.sleep(plan.wait_s)
            return

        mode = await self.ensure_mode(context)
        self._logger.info("Dispatching %s [%s mode]", plan.description, mode.value)

        if plan.kind is ActuationKind.KEY:
            await self._dispatch_keys(plan, mode, context)
            return

        points = await self._viewport_points(plan, context)
        if plan.kind is ActuationKind.CLICK:
            await self._pointer(mode, "move", points[0])
            await self._pointer(mode, "down", points[0])
            await context.token.sleep(plan.key_gap_s)
            await self._pointer(mode, "up", points[0], click=True)
        elif plan.kind is ActuationKind.DRAG:
            start, moves = points[0], points[1:]
            await self._pointer(mode, "move", start)
            await self._pointer(mode, "down", start)
            await context.token.sleep(plan.press_pause_s)
            for point in moves:
                await self._pointer(mode, "move", point)
                await context.token.sleep(plan.step_delay_s)
            await context.token.sleep(plan.hold_s)
            await self._pointer(mode, "up", moves[-1] if moves else start)

    async def _viewport_points(self, plan: ActuationPlan, context: SessionContext) -> List[Tuple[int, int]]:
        if plan.space is CoordinateSpace.VIEWPORT:
            return [(int(round(x)), int(round(y))) for x, y in plan.points]
        browser_config = self._session.config
        frame_size = plan.frame_size or (browser_config.viewport_width, browser_config.viewport_height)
        await self.ensure_scale(context, frame_size)
        return [context.scale_point(x, y) for x, y in plan.points]

    async def _dispatch_keys(self, plan: ActuationPlan, mode: RenderMode, context: SessionContext) -> None:
        specs = [resolve_key(name) for name in plan.keys]
        if plan.key_action is KeyAction.SEQUENCE:
            for index, spec in enumerate(specs):
                if index:
                    await context.token.sleep(plan.sequence_gap_s)
                await self._key(mode, "keydown", spec)
                await context.token.sleep(plan.key_gap_s)
                await self._key(mode, "keyup", spec)
            return

        for spec in specs:
            if plan.key_action is KeyAction.PRESS:
                await self._key(mode, "keydown", spec)
                await context.token.sleep(plan.key_gap_s)
                await self._key(mode, "keyup", spec)
            elif plan.key_action is KeyAction.HOLD:
                await self._key(mode, "keydown", spec)
            else:
                await self._key(mode, "keyup", spec)
        if plan.key_action is KeyAction.HOLD:
            await context.token.sleep(plan.hold_s)

    async def _key(self, mode: RenderMode, event_type: str, spec: KeySpec) -> None:
        if mode is RenderMode.SURFACE:
            keyboard = self._session.keyboard
            if event_type == "keydown":
                await self._driver(f"key down {spec.code}", keyboard.down(spec.driver_name))
            else:
                await self._driver(f"key up {spec.code}", keyboard.up(spec.driver_name))
            return
        await self._session.evaluate(
            scripts.GLOBAL_KEY_EVENT,
            {"type": event_type, "key": spec.key, "code": spec.code, "keyCode": spec.key_code},
        )

    async def _pointer(self, mode: RenderMode, phase: str, point: Tuple[int, int], *, click: bool = False) -> None:
        x, y = point
        if mode is RenderMode.SURFACE:
            mouse = self._session.mouse
            if phase == "move":
                await self._driver(f"mouse move ({x}, {y})", mouse.move(x, y))
            elif phase == "down":
                await self._driver(f"mouse down ({x}, {y})", mouse.down())
            else:
                await self._driver(f"mouse up ({x}, {y})", mouse.up())
            return
        await self._session.evaluate(
            scripts.GLOBAL_POINTER_EVENT,
            {"phase": phase, "x": x, "y": y, "click": click},
        )

    async def _driver(self, description: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except PlaywrightError as exc:
            raise ControlSurfaceError(description, cause=exc) from exc


__all__ = [
    "ActuationKind",
    "ActuationPlan",
    "CoordinateSpace",
    "InputDispatcher",
    "KEY_TABLE",
    "KeyAction",
    "KeySpec",
    "SurfaceNotFoundError",
    "UnknownKeyError",
    "clamp_power",
    "interpolate_drag",
    "resolve_key",
]
