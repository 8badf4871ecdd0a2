"""End-of-session playability scoring.

Once gameplay is over, the frames collected across the session (initial,
per-attempt and final) are sent to the perception oracle in a single request,
together with a summary of the page's console output. The oracle answers with
a :class:`PlayabilityScore` that is stored on the probe report.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from playprobe_runtime.capture import Frame
from playprobe_runtime.config import EvaluationConfig
from playprobe_runtime.errors import PerceptionServiceError, PersistenceError
from playprobe_runtime.retry import CancellationToken, RetryPolicy, retry
from playprobe_vision.perception import PerceptionClient, UnparsableResponseError, extract_json_payload

from .prompts import build_evaluation_prompt

if TYPE_CHECKING:  # pragma: no cover - import typing aid only
    from playprobe_runtime.browser import ConsoleEntry

Logger = logging.Logger


class EvaluationError(PerceptionServiceError):
    """Raised when a session cannot be scored."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


def _score(value: Any, default: Optional[int] = 0) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0, min(100, int(round(number))))


def _strings(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(item) for item in value if isinstance(item, (str, int, float)) and str(item).strip()]
    return []


@dataclass(slots=True)
class PlayabilityScore:
    """Oracle verdict on a whole session. Scores are clamped to 0-100."""

    overall_score: int
    loads_correctly: bool = False
    interactivity_score: int = 0
    visual_quality: int = 0
    error_severity: int = 0  # 0 means no errors
    reasoning: str = ""
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "PlayabilityScore":
        """Build a score from decoded oracle JSON.

        Raises:
            UnparsableResponseError: If ``payload`` is not an object with a
                numeric ``overall_score``.
        """
        if not isinstance(payload, dict):
            raise UnparsableResponseError("evaluation answer is not a JSON object")
        overall = _score(payload.get("overall_score"), default=None)
        if overall is None:
            raise UnparsableResponseError("evaluation answer has no numeric overall_score")

        reasoning = payload.get("reasoning")
        return cls(
            overall_score=overall,
            loads_correctly=bool(payload.get("loads_correctly", False)),
            interactivity_score=_score(payload.get("interactivity_score")),
            visual_quality=_score(payload.get("visual_quality")),
            error_severity=_score(payload.get("error_severity")),
            reasoning=reasoning.strip() if isinstance(reasoning, str) else "",
            issues=_strings(payload.get("issues")),
            recommendations=_strings(payload.get("recommendations")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def select_evaluation_frames(frames: Sequence[Optional[Frame]], limit: int) -> List[Frame]:
    """Keep at most ``limit`` frames in order, always keeping the last one."""

    available = [frame for frame in frames if frame is not None]
    if limit < 1:
        return []
    if len(available) <= limit:
        return available
    return available[: limit - 1] + [available[-1]]


class PlayabilityEvaluator:
    """Scores a session through the perception oracle."""

    def __init__(
        self,
        perception: PerceptionClient,
        config: Optional[EvaluationConfig] = None,
        policy: Optional[RetryPolicy] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self._perception = perception
        self._config = config or EvaluationConfig()
        self._policy = policy or RetryPolicy()
        self._logger = logger or logging.getLogger(__name__)

    async def evaluate(
        self,
        frames: Sequence[Optional[Frame]],
        console_logs: Sequence["ConsoleEntry"] = (),
        *,
        token: Optional[CancellationToken] = None,
    ) -> PlayabilityScore:
        """Send the selected frames and console summary and parse the verdict.

        Raises:
            EvaluationError: If there is no frame to send.
            UnparsableResponseError: If the answer holds no usable score.
            RetryExhaustedError: If the oracle kept failing transiently.
        """
        selected = select_evaluation_frames(frames, self._config.max_images)
        if not selected:
            raise EvaluationError("no frames captured to evaluate")

        prompt = build_evaluation_prompt(selected, console_logs, sample_errors=self._config.sample_errors)
        self._logger.info("Evaluating playability from %d frame(s), %d console message(s)", len(selected), len(console_logs))
        text = await retry(
            lambda: self._perception.query_frames(
                selected,
                prompt,
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
            ),
            self._policy,
            token=token,
            logger=self._logger,
            description="playability evaluation",
        )
        score = PlayabilityScore.from_payload(extract_json_payload(text))
        self._logger.info(
            "Playability %d/100 (loads=%s, interactivity=%d, visuals=%d, error severity=%d)",
            score.overall_score,
            score.loads_correctly,
            score.interactivity_score,
            score.visual_quality,
            score.error_severity,
        )
        return score


def save_score(score: PlayabilityScore, path: Path) -> Path:
    """Write ``score`` as indented JSON.

    Raises:
        PersistenceError: If the file cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(score.to_dict(), handle, indent=2)
    except OSError as exc:
        raise PersistenceError(f"could not write playability score to {path}", cause=exc) from exc
    return path


__all__ = [
    "EvaluationError",
    "PlayabilityEvaluator",
    "PlayabilityScore",
    "save_score",
    "select_evaluation_frames",
]
