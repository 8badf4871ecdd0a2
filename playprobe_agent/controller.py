"""Gameplay loop: observe, perceive, act, evaluate, repeat."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from playprobe_runtime.capture import Frame, FrameCapture, FramePhase
from playprobe_runtime.config import ProbeConfig
from playprobe_runtime.context import SessionContext
from playprobe_runtime.errors import (
    CategorizedError,
    ErrorCategory,
    OperationCancelledError,
    RetryExhaustedError,
)
from playprobe_runtime.input_dispatcher import ActuationPlan, InputDispatcher
from playprobe_runtime.retry import AttemptResult, retry
from playprobe_vision.annotator import annotate_grid
from playprobe_vision.grid import GridSpec
from playprobe_vision.perception import (
    GridCellTarget,
    KeyTarget,
    LabelTarget,
    PerceptionClient,
    PixelTarget,
    Target,
    describe_target,
    target_to_dict,
)

from .cache import ActionCache, CachedOutcome
from .outcome import OutcomeClassifier, OutcomeVerdict, UnknownOutcomeClassifier
from .planning import resolve_plans
from .prompts import build_gameplay_prompt, build_slingshot_prompt

if TYPE_CHECKING:  # pragma: no cover - import typing aid only
    from playprobe_runtime.browser import BrowserSession

Logger = logging.Logger


class LoopState(str, Enum):
    IDLE = "idle"
    OBSERVING = "observing"
    PERCEIVING = "perceiving"
    ACTING = "acting"
    EVALUATING = "evaluating"
    ABORTED = "aborted"


@dataclass(slots=True)
class SessionReport:
    """Summary of one :meth:`GameplayLoopController.run` call."""

    game_id: str
    attempts: List[AttemptResult] = field(default_factory=list)
    perception_misses: int = 0
    aborted: bool = False
    stop_reason: str = ""
    final_state: LoopState = LoopState.IDLE
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def successful_attempts(self) -> int:
        return sum(1 for attempt in self.attempts if attempt.succeeded)

    @property
    def any_succeeded(self) -> bool:
        return self.successful_attempts > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game_id": self.game_id,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "successful_attempts": self.successful_attempts,
            "perception_misses": self.perception_misses,
            "aborted": self.aborted,
            "stop_reason": self.stop_reason,
            "final_state": self.final_state.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class GameplayLoopController:
    """Drives bounded observe-perceive-act-evaluate cycles for one session.

    A cycle that fails anywhere produces a failed :class:`AttemptResult`; only
    cancellation leaves :meth:`run_attempt` as an exception.
    """

    def __init__(
        self,
        capture: FrameCapture,
        perception: PerceptionClient,
        dispatcher: InputDispatcher,
        session: "BrowserSession",
        cache: ActionCache,
        config: ProbeConfig,
        classifier: Optional[OutcomeClassifier] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self._capture = capture
        self._perception = perception
        self._dispatcher = dispatcher
        self._session = session
        self._cache = cache
        self._config = config
        self._classifier = classifier or UnknownOutcomeClassifier()
        self._logger = logger or logging.getLogger(__name__)
        self._grid = GridSpec(config.grid.columns, config.grid.rows)
        self._state = LoopState.IDLE
        self._history: List[LoopState] = [LoopState.IDLE]
        self._cycle_counter = 0

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def history(self) -> List[LoopState]:
        return list(self._history)

    @property
    def grid(self) -> GridSpec:
        return self._grid

    def cached_outcomes(self, game_id: str) -> List[CachedOutcome]:
        return self._cache.lookup(game_id)

    async def run(
        self,
        context: SessionContext,
        mechanics: str = "",
        attempt_ceiling: Optional[int] = None,
    ) -> SessionReport:
        """Run attempts until the ceiling, the perception-miss limit or cancellation.

        Perception misses pause and retry without consuming the ceiling.

        Args:
            context: Session state; its token bounds the whole run
            mechanics: Free-text control description forwarded to the oracle
            attempt_ceiling: Overrides ``gameplay.attempt_ceiling``

        Returns:
            The session report; returned even when the run was cancelled
        """
        gameplay = self._config.gameplay
        ceiling = attempt_ceiling if attempt_ceiling is not None else gameplay.attempt_ceiling
        report = SessionReport(game_id=context.game_id)
        token = context.token

        self._logger.info("=" * 60)
        self._logger.info("Starting gameplay for %s (attempt ceiling %d)", context.game_id, ceiling)

        try:
            while len(report.attempts) < ceiling:
                result = await self.run_attempt(context, mechanics)
                if result.perception_miss:
                    report.perception_misses += 1
                    if report.perception_misses >= gameplay.max_perception_misses:
                        report.stop_reason = f"perception miss limit ({gameplay.max_perception_misses}) reached"
                        self._logger.warning("Stopping: %s", report.stop_reason)
                        break
                    self._logger.info(
                        "Perception miss %d/%d; pausing %.1fs",
                        report.perception_misses,
                        gameplay.max_perception_misses,
                        gameplay.perception_miss_pause_s,
                    )
                    await token.sleep(gameplay.perception_miss_pause_s)
                    continue

                report.attempts.append(result)
                if len(report.attempts) < ceiling:
                    await token.sleep(gameplay.inter_attempt_pause_s)
            else:
                report.stop_reason = "attempt ceiling reached"
            self._transition(LoopState.IDLE)
        except OperationCancelledError as exc:
            self._transition(LoopState.ABORTED)
            report.aborted = True
            report.stop_reason = f"cancelled: {exc.message}"
            self._logger.warning("Gameplay aborted: %s", exc.message)
        except asyncio.CancelledError:
            self._transition(LoopState.ABORTED)
            raise

        report.final_state = self._state
        report.finished_at = datetime.now()
        self._logger.info("=" * 60)
        self._logger.info(
            "Gameplay finished for %s: %d/%d attempt(s) succeeded, %d perception miss(es), %s",
            context.game_id,
            report.successful_attempts,
            len(report.attempts),
            report.perception_misses,
            report.stop_reason or "stopped",
        )
        return report

    async def run_attempt(self, context: SessionContext, mechanics: str = "") -> AttemptResult:
        """Run one observe-perceive-act-evaluate cycle.

        Returns:
            The attempt result; ``frame`` holds the latest frame observed and
            ``perception_miss`` marks cycles that never reached acting

        Raises:
            OperationCancelledError: If the session token fires.
        """
        self._cycle_counter += 1
        attempt_id = f"attempt_{self._cycle_counter:06d}"
        self._logger.info("=" * 60)
        self._logger.info("Starting %s for %s", attempt_id, context.game_id)

        attempt_log: Dict[str, Any] = {
            "attempt_id": attempt_id,
            "game_id": context.game_id,
            "timestamp": datetime.now().isoformat(),
        }
        result: Optional[AttemptResult] = None
        try:
            result = await self._cycle(context, mechanics, attempt_id, attempt_log)
            return result
        except (OperationCancelledError, asyncio.CancelledError):
            attempt_log["error"] = {"type": "cancelled"}
            raise
        finally:
            if result is not None:
                attempt_log["result"] = result.to_dict()
                if not result.perception_miss:
                    context.attempts += 1
            attempt_log["states"] = [state.value for state in self._history[-6:]]
            self._save_attempt_log(attempt_id, attempt_log)
            self._logger.info("Completed %s", attempt_id)

    async def _cycle(
        self,
        context: SessionContext,
        mechanics: str,
        attempt_id: str,
        attempt_log: Dict[str, Any],
    ) -> AttemptResult:
        token = context.token

        # Observing
        self._transition(LoopState.OBSERVING)
        try:
            before = await retry(
                lambda: self._capture.capture(FramePhase.GAMEPLAY, attempt_id),
                self._config.retry.capture,
                token=token,
                logger=self._logger,
                description="gameplay capture",
            )
        except OperationCancelledError:
            raise
        except CategorizedError as exc:
            self._logger.error("Capture failed: %s", exc)
            attempt_log["error"] = {"type": "capture", "message": str(exc)}
            self._transition(LoopState.IDLE)
            return AttemptResult.failure(exc, retries_used=_retries(exc))
        attempt_log["frame"] = {"width": before.width, "height": before.height, "digest": before.digest()}

        # Perceiving
        self._transition(LoopState.PERCEIVING)
        perceived = annotate_grid(before, self._grid, logger=self._logger) if self._config.grid.enabled else before
        prompt = self._gameplay_prompt(context, mechanics)
        try:
            targets = await retry(
                lambda: self._perception.perceive(perceived, prompt),
                self._config.retry.perception,
                token=token,
                logger=self._logger,
                description="gameplay perception",
            )
        except OperationCancelledError:
            raise
        except RetryExhaustedError as exc:
            self._logger.error("Perception unavailable: %s", exc)
            attempt_log["error"] = {"type": "perception", "message": str(exc)}
            self._transition(LoopState.IDLE)
            result = AttemptResult.failure(exc, retries_used=_retries(exc))
            result.frame = before
            return result
        except CategorizedError as exc:
            self._logger.warning("Perception miss: %s", exc)
            attempt_log["perception_miss"] = {"category": exc.category.value, "message": str(exc)}
            self._transition(LoopState.OBSERVING)
            result = AttemptResult.failure(exc)
            result.frame = before
            result.perception_miss = True
            return result
        attempt_log["targets"] = [target_to_dict(target) for target in targets]

        # Acting
        self._transition(LoopState.ACTING)
        try:
            dispatched = await self._act(context, before, targets)
        except OperationCancelledError:
            raise
        except CategorizedError as exc:
            self._logger.error("Acting failed: %s", exc)
            attempt_log["error"] = {"type": "actuation", "message": str(exc)}
            self._transition(LoopState.IDLE)
            result = AttemptResult.failure(exc, retries_used=_retries(exc))
            result.frame = before
            return result
        except Exception as exc:
            self._logger.exception("Unexpected failure while acting: %s", exc)
            attempt_log["error"] = {"type": "unknown", "message": str(exc)}
            self._transition(LoopState.IDLE)
            return AttemptResult(
                succeeded=False,
                category=ErrorCategory.UNKNOWN,
                message=f"unexpected {type(exc).__name__}: {exc}",
                frame=before,
            )
        attempt_log["plans"] = [plan.description for plan in dispatched]

        # Evaluating
        self._transition(LoopState.EVALUATING)
        await token.sleep(self._config.gameplay.outcome_settle_s)
        try:
            after = await retry(
                lambda: self._capture.capture(FramePhase.GAMEPLAY, f"{attempt_id}_after"),
                self._config.retry.capture,
                token=token,
                logger=self._logger,
                description="follow-up capture",
            )
        except OperationCancelledError:
            raise
        except CategorizedError as exc:
            self._logger.error("Follow-up capture failed: %s", exc)
            attempt_log["error"] = {"type": "capture", "message": str(exc)}
            self._transition(LoopState.IDLE)
            result = AttemptResult.failure(exc, retries_used=_retries(exc))
            result.frame = before
            return result

        verdict = self._classifier.classify(before, after, targets)
        attempt_log["outcome"] = {"label": verdict.label, "favorable": verdict.favorable, "score": verdict.score}
        self._logger.info("Outcome: %s (favorable=%s)", verdict.label, verdict.favorable)
        if verdict.favorable:
            self._record(context, targets, verdict, after)

        self._transition(LoopState.IDLE)
        return AttemptResult(
            succeeded=True,
            message=f"dispatched {len(dispatched)} plan(s)",
            value=targets,
            frame=after,
            outcome=verdict.label,
        )

    async def _act(self, context: SessionContext, frame: Frame, targets: Sequence[Target]) -> List[ActuationPlan]:
        dispatched: List[ActuationPlan] = []
        for target in targets:
            plans = await retry(
                lambda target=target: resolve_plans(
                    target,
                    grid=self._grid,
                    frame=frame,
                    session=self._session,
                    config=self._config.input,
                ),
                self._config.retry.actuation,
                token=context.token,
                logger=self._logger,
                description=f"resolve {describe_target(target)}",
            )
            for plan in plans:
                if dispatched:
                    await context.token.sleep(self._config.input.settle_delay_s)
                await retry(
                    lambda plan=plan: self._dispatcher.dispatch(plan, context),
                    self._config.retry.actuation,
                    token=context.token,
                    logger=self._logger,
                    description=plan.description or plan.kind.value,
                )
                dispatched.append(plan)
        return dispatched

    def _gameplay_prompt(self, context: SessionContext, mechanics: str) -> str:
        if self._config.gameplay.prompt_style == "slingshot":
            return build_slingshot_prompt(self._grid, mechanics)
        return build_gameplay_prompt(self._grid, mechanics, self._cache.lookup(context.game_id))

    def _record(self, context: SessionContext, targets: Sequence[Target], verdict: OutcomeVerdict, frame: Frame) -> None:
        for target in targets:
            key = self._cache_key(target, frame)
            if key is None:
                continue
            start_cell, end_cell, keys = key
            self._cache.record(context.game_id, start_cell, end_cell, verdict.label, frame, keys)

    def _cache_key(self, target: Target, frame: Frame) -> Optional[Tuple[str, Optional[str], Tuple[str, ...]]]:
        if isinstance(target, GridCellTarget):
            return str(target.cell), str(target.end_cell) if target.end_cell else None, ()
        if isinstance(target, PixelTarget):
            start = self._grid.cell_at(target.x, target.y, frame.width, frame.height)
            end = None
            if target.end is not None:
                end = str(self._grid.cell_at(target.end[0], target.end[1], frame.width, frame.height))
            return str(start), end, ()
        if isinstance(target, LabelTarget):
            return (str(target.cell) if target.cell else f"label:{target.label}"), None, ()
        if isinstance(target, KeyTarget):
            return "", None, target.keys
        return None

    def _transition(self, state: LoopState) -> None:
        if state is self._state:
            return
        self._logger.debug("Loop state %s -> %s", self._state.value, state.value)
        self._state = state
        self._history.append(state)

    def _save_attempt_log(self, attempt_id: str, log_data: Dict[str, Any]) -> None:
        logs_dir: Path = self._config.gameplay.logs_dir
        log_path = logs_dir / f"{attempt_id}.json"
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
            with log_path.open("w", encoding="utf-8") as handle:
                json.dump(log_data, handle, indent=2, default=str)
        except OSError as exc:
            self._logger.error("Failed to save attempt log: %s", exc)


def _retries(error: CategorizedError) -> int:
    if isinstance(error, RetryExhaustedError):
        return max(error.attempts - 1, 0)
    return 0


__all__ = ["GameplayLoopController", "LoopState", "SessionReport"]
