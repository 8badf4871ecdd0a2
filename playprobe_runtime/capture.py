"""Frame capture from the live page.

A :class:`Frame` is an immutable PNG snapshot of the viewport. Annotation and
click markers derive new frames rather than editing one in place. Captured
frames can optionally be written to ``capture.output_dir`` for debugging; those
writes never fail a capture.
"""
from __future__ import annotations

import base64
import hashlib
import logging
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import numpy as np
from PIL import Image

from .config import CaptureConfig

if TYPE_CHECKING:  # pragma: no cover - import typing aid only
    from .browser import BrowserSession

Logger = logging.Logger


class FramePhase(str, Enum):
    """When in the session a frame was taken."""

    INITIAL = "initial"  # pre-interaction
    GAMEPLAY = "gameplay"  # mid-session
    FINAL = "final"  # post-interaction


@dataclass(frozen=True, slots=True)
class FrameStats:
    """Luminance statistics used to spot blank or occluded frames."""

    mean_luminance: float
    stddev_luminance: float
    blank: bool = False


@dataclass(frozen=True, slots=True)
class Frame:
    """Immutable capture of the rendered page."""

    data: bytes  # PNG
    width: int
    height: int
    captured_at: datetime = field(default_factory=datetime.now)
    phase: FramePhase = FramePhase.GAMEPLAY
    label: str = ""
    annotated: bool = False
    stats: Optional[FrameStats] = None

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    def to_image(self) -> Image.Image:
        """Decode the PNG payload; raises PIL errors for unsupported data."""

        image = Image.open(BytesIO(self.data))
        image.load()
        return image

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def digest(self) -> str:
        return hashlib.sha256(self.data).hexdigest()

    def derive(self, data: bytes, **changes: Any) -> "Frame":
        """Return a new frame carrying ``data`` and any overridden attributes."""

        return replace(self, data=data, **changes)

    @classmethod
    def from_image(cls, image: Image.Image, **kwargs: Any) -> "Frame":
        with BytesIO() as buffer:
            image.save(buffer, format="PNG")
            data = buffer.getvalue()
        return cls(data=data, width=image.width, height=image.height, **kwargs)


def compute_stats(image: Image.Image, config: CaptureConfig) -> FrameStats:
    """Compute luminance statistics and flag frames below the thresholds."""

    array = np.asarray(image.convert("RGB"), dtype=np.float32)
    luminance = 0.2126 * array[:, :, 0] + 0.7152 * array[:, :, 1] + 0.0722 * array[:, :, 2]
    mean_luma = float(luminance.mean())
    std_luma = float(luminance.std())
    validation = config.validation
    blank = mean_luma < validation.min_mean_luminance or std_luma < validation.min_luminance_stddev
    return FrameStats(mean_luminance=mean_luma, stddev_luminance=std_luma, blank=blank)


class FrameCapture:
    """Takes frames from a :class:`BrowserSession` and stores debug copies."""

    def __init__(
        self,
        session: "BrowserSession",
        config: CaptureConfig,
        logger: Optional[Logger] = None,
    ) -> None:
        self._session = session
        self._config = config
        self._logger = logger or logging.getLogger(__name__)
        self._output_dir = config.output_dir
        if config.save_frames:
            self._output_dir.mkdir(parents=True, exist_ok=True)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    async def capture(self, phase: FramePhase, label: str = "") -> Frame:
        """Screenshot the page and wrap it as a :class:`Frame`.

        Raises:
            ControlSurfaceError: If the driver refuses the screenshot.
            OperationTimeoutError: If the screenshot times out.
        """
        data = await self._session.screenshot()
        image = Image.open(BytesIO(data))
        image.load()
        stats = compute_stats(image, self._config)
        frame = Frame(
            data=data,
            width=image.width,
            height=image.height,
            phase=phase,
            label=label,
            stats=stats,
        )
        if stats.blank:
            self._logger.warning(
                "Captured %s frame looks blank (mean %.2f, std %.2f)",
                phase.value,
                stats.mean_luminance,
                stats.stddev_luminance,
            )

        if self._config.save_frames:
            stem = "_".join(part for part in (phase.value, label, _timestamp(frame.captured_at)) if part)
            self.save(frame, stem)
            self._enforce_retention()
        return frame

    def save(self, frame: Frame, stem: str) -> Optional[Path]:
        """Write ``frame`` under a sanitised, uniquely suffixed name."""

        safe_stem = re.sub(r"[^A-Za-z0-9._-]", "_", stem)
        path = self._output_dir / f"{safe_stem}_{uuid.uuid4().hex[:8]}.png"
        try:
            self._output_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(frame.data)
        except OSError as exc:
            self._logger.warning("Failed to save frame %s: %s", path, exc)
            return None
        self._logger.debug("Saved frame to %s", path)
        return path

    def _enforce_retention(self) -> None:
        max_captures = self._config.retention.max_captures
        if max_captures <= 0:
            return

        try:
            files = sorted(self._output_dir.glob("*.png"), key=lambda p: p.stat().st_mtime)
            excess = len(files) - max_captures
            for victim in files[: max(excess, 0)]:
                self._logger.debug("Deleting capture %s", victim)
                victim.unlink(missing_ok=True)
        except OSError as exc:
            self._logger.warning("Capture retention pass failed: %s", exc)


def _timestamp(moment: datetime) -> str:
    return moment.strftime("%Y%m%d-%H%M%S")


__all__ = [
    "Frame",
    "FrameCapture",
    "FramePhase",
    "FrameStats",
    "compute_stats",
]
