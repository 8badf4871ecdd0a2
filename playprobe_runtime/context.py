"""Per-session state passed explicitly to every component call."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional, Tuple

from .retry import CancellationToken

if TYPE_CHECKING:  # pragma: no cover - import typing aid only
    from playprobe_agent.cache import ActionCache


class RenderMode(str, Enum):
    """How synthetic input reaches the game."""

    SURFACE = "surface"  # native driver events into a focused canvas
    GLOBAL = "global"  # scripted events on window/document/body


@dataclass(slots=True)
class SessionContext:
    """Mutable state owned by one gameplay session.

    Concurrent sessions each hold their own context, so nothing here lives at
    module level.
    """

    game_id: str
    token: CancellationToken = field(default_factory=CancellationToken)
    render_mode: Optional[RenderMode] = None  # fixed by the first dispatch after launch
    viewport_scale: Optional[Tuple[float, float]] = None  # frame px -> viewport px
    cache: Optional["ActionCache"] = None
    attempts: int = 0

    def scale_point(self, x: float, y: float) -> Tuple[int, int]:
        """Convert a frame-space point to viewport pixels."""

        scale_x, scale_y = self.viewport_scale or (1.0, 1.0)
        return int(round(x * scale_x)), int(round(y * scale_y))

    def reset_input_mode(self) -> None:
        """Forget the render mode and viewport scale so the next dispatch decides them again."""

        self.render_mode = None
        self.viewport_scale = None


__all__ = ["RenderMode", "SessionContext"]
