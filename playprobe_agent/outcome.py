"""Outcome classification for gameplay attempts.

Whether an action helped is game-specific, so the controller only depends on
the :class:`OutcomeClassifier` protocol. The default classifier claims no
knowledge at all; :class:`FrameDiffClassifier` treats visible change as
progress, which is a reasonable heuristic for games that stall on bad input.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import numpy as np
from PIL import Image, UnidentifiedImageError

from playprobe_runtime.capture import Frame
from playprobe_vision.perception import Target

Logger = logging.Logger


@dataclass(frozen=True, slots=True)
class OutcomeVerdict:
    """Classifier output for one attempt."""

    label: str
    favorable: bool = False
    score: Optional[float] = None


class OutcomeClassifier(Protocol):
    def classify(self, before: Frame, after: Frame, targets: Sequence[Target]) -> OutcomeVerdict: ...


class UnknownOutcomeClassifier:
    """Labels every attempt ``unknown`` and never favorable."""

    def classify(self, before: Frame, after: Frame, targets: Sequence[Target]) -> OutcomeVerdict:
        return OutcomeVerdict(label="unknown")


def _downscale_luma(image: Image.Image, *, width: int) -> np.ndarray:
    """Convert the frame to a small luma buffer for inexpensive diffing."""

    if image.width > width:
        ratio = width / image.width
        height = max(1, int(round(image.height * ratio)))
        image = image.resize((width, height), Image.BILINEAR)
    return np.asarray(image.convert("L"), dtype=np.float32) / 255.0


class FrameDiffClassifier:
    """Favorable when the scene changed noticeably after acting."""

    def __init__(
        self,
        change_threshold: float = 0.02,
        *,
        downscale_width: int = 256,
        logger: Optional[Logger] = None,
    ) -> None:
        self._threshold = change_threshold
        self._width = downscale_width
        self._logger = logger or logging.getLogger(__name__)

    def diff_score(self, before: Frame, after: Frame) -> float:
        """Mean absolute luma difference in [0, 1] between two frames."""

        before_image = before.to_image()
        before_luma = _downscale_luma(before_image, width=self._width)
        after_image = after.to_image()
        if after_image.size != before_image.size:
            after_image = after_image.resize(before_image.size, Image.BILINEAR)
        after_luma = _downscale_luma(after_image, width=self._width)
        return float(np.mean(np.abs(after_luma - before_luma)))

    def classify(self, before: Frame, after: Frame, targets: Sequence[Target]) -> OutcomeVerdict:
        try:
            score = self.diff_score(before, after)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            self._logger.warning("Cannot diff frames: %s", exc)
            return OutcomeVerdict(label="unknown")

        changed = score >= self._threshold
        self._logger.debug("Frame diff %.4f (threshold %.4f) after %d target(s)", score, self._threshold, len(targets))
        return OutcomeVerdict(label="changed" if changed else "static", favorable=changed, score=score)


__all__ = [
    "FrameDiffClassifier",
    "OutcomeClassifier",
    "OutcomeVerdict",
    "UnknownOutcomeClassifier",
]
