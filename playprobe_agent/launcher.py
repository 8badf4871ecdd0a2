"""Page preparation: navigate, clear obstacles and get the game running."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from playprobe_runtime.browser import ObstacleReport
from playprobe_runtime.capture import Frame, FrameCapture, FramePhase
from playprobe_runtime.config import ProbeConfig
from playprobe_runtime.context import SessionContext
from playprobe_runtime.errors import OperationCancelledError
from playprobe_runtime.input_dispatcher import ActuationPlan, InputDispatcher
from playprobe_runtime.retry import retry
from playprobe_vision.annotator import annotate_grid
from playprobe_vision.grid import GridSpec
from playprobe_vision.perception import (
    GridCellTarget,
    LabelTarget,
    NothingFoundError,
    PerceptionClient,
    PixelTarget,
    Target,
    describe_target,
)

from .planning import save_click_marker
from .prompts import build_start_control_prompt

if TYPE_CHECKING:  # pragma: no cover - import typing aid only
    from playprobe_runtime.browser import BrowserSession

Logger = logging.Logger


@dataclass(slots=True)
class LaunchReport:
    """What happened while preparing the page."""

    url: str
    navigated: bool = False
    obstacles: Optional[ObstacleReport] = None
    dom_start_clicked: bool = False
    vision_start: Optional[str] = None
    game_started: Optional[bool] = None
    start_clicks: int = 0
    surface_ready: bool = False
    initial_frame: Optional[Frame] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        obstacles = None
        if self.obstacles is not None:
            obstacles = {
                "ads_removed": self.obstacles.ads_removed,
                "consent_accepted": self.obstacles.consent_accepted,
                "consent_match": self.obstacles.consent_match,
            }
        return {
            "url": self.url,
            "navigated": self.navigated,
            "obstacles": obstacles,
            "dom_start_clicked": self.dom_start_clicked,
            "vision_start": self.vision_start,
            "game_started": self.game_started,
            "start_clicks": self.start_clicks,
            "surface_ready": self.surface_ready,
            "warnings": list(self.warnings),
        }


class GameLauncher:
    """Runs the start-up sequence for one session.

    Apart from navigation, each step is best effort: a failure is logged and
    recorded in :attr:`LaunchReport.warnings` and the next step runs anyway.
    """

    def __init__(
        self,
        session: "BrowserSession",
        capture: FrameCapture,
        perception: Optional[PerceptionClient],
        dispatcher: InputDispatcher,
        config: ProbeConfig,
        logger: Optional[Logger] = None,
    ) -> None:
        self._session = session
        self._capture = capture
        self._perception = perception
        self._dispatcher = dispatcher
        self._config = config
        self._grid = GridSpec(config.grid.columns, config.grid.rows)
        self._logger = logger or logging.getLogger(__name__)

    async def prepare(self, context: SessionContext, url: str, mechanics: str = "") -> LaunchReport:
        """Navigate to ``url`` and try to get past menus into gameplay.

        Raises:
            OperationCancelledError: If the session token fires.
        """
        report = LaunchReport(url=url)
        token = context.token
        self._logger.info("=" * 60)
        self._logger.info("Launching %s (game %s)", url, context.game_id)

        try:
            await self._session.navigate(url)
            report.navigated = True
        except OperationCancelledError:
            raise
        except Exception as exc:
            self._warn(report, "navigation", exc)
            return report

        await token.sleep(self._config.browser.page_settle_s)

        await self._step(report, "initial capture", self._capture_initial(context, report))
        await self._step(report, "obstacle removal", self._remove_obstacles(report))
        await self._step(report, "DOM start control", self._dom_start(context, report))
        await self._step(report, "vision start detection", self._vision_start(context, report, mechanics))
        await self._step(report, "surface readiness", self._wait_ready(report))

        # the page may only now show the game surface, so let gameplay pick the input mode
        if context.render_mode is not None:
            self._logger.info("Releasing %s input mode chosen during launch", context.render_mode.value)
        context.reset_input_mode()

        self._logger.info(
            "Launch finished: dom_click=%s vision=%s started=%s ready=%s warnings=%d",
            report.dom_start_clicked,
            report.vision_start,
            report.game_started,
            report.surface_ready,
            len(report.warnings),
        )
        return report

    async def _step(self, report: LaunchReport, name: str, awaitable: Any) -> None:
        try:
            await awaitable
        except OperationCancelledError:
            raise
        except Exception as exc:
            self._warn(report, name, exc)

    def _warn(self, report: LaunchReport, step: str, exc: BaseException) -> None:
        message = f"{step} failed: {exc}"
        self._logger.warning("Launch step %s", message)
        report.warnings.append(message)

    async def _capture_initial(self, context: SessionContext, report: LaunchReport) -> None:
        report.initial_frame = await retry(
            lambda: self._capture.capture(FramePhase.INITIAL, "launch"),
            self._config.retry.capture,
            token=context.token,
            logger=self._logger,
            description="initial capture",
        )

    async def _remove_obstacles(self, report: LaunchReport) -> None:
        report.obstacles = await self._session.remove_obstacles()

    async def _dom_start(self, context: SessionContext, report: LaunchReport) -> None:
        report.dom_start_clicked = await self._session.click_start_control()
        if report.dom_start_clicked:
            await context.token.sleep(self._config.browser.page_settle_s)

    async def _vision_start(self, context: SessionContext, report: LaunchReport, mechanics: str) -> None:
        if self._perception is None:
            return

        gameplay = self._config.gameplay
        attempts = gameplay.start_detection_attempts
        prompt = build_start_control_prompt(self._grid, mechanics)
        last_digest: Optional[str] = None
        last_description: Optional[str] = None
        repeated = 0

        for attempt in range(1, attempts + 1):
            self._logger.info("Start detection attempt %d/%d", attempt, attempts)
            await context.token.sleep(gameplay.start_repeat_pause_s if repeated else gameplay.start_check_pause_s)

            frame = await self._capture.capture(FramePhase.INITIAL, "start_detection")
            digest = frame.digest()
            if digest == last_digest:
                repeated += 1
                self._logger.info("Screen unchanged since the last check, skipping the oracle")
                continue
            last_digest = digest

            if self._config.grid.enabled:
                frame = annotate_grid(frame, self._grid, logger=self._logger)
            try:
                target = await retry(
                    lambda: self._perception.locate(frame, prompt),
                    self._config.retry.perception,
                    token=context.token,
                    logger=self._logger,
                    description="start control detection",
                )
            except NothingFoundError as exc:
                report.game_started = exc.target.game_started
                if exc.target.game_started:
                    self._logger.info("Game running: %s", exc.target.rationale)
                    if report.vision_start is None:
                        report.vision_start = "already started"
                    return
                self._logger.info("No start control visible yet: %s", exc.target.rationale)
                continue

            description = describe_target(target)
            if description == last_description:
                repeated += 1
                self._logger.warning("Same start target %d time(s) in a row: %s", repeated, description)
            else:
                repeated = 0
                last_description = description
            report.vision_start = description
            report.start_clicks += 1
            await self._click_start_target(context, frame, target, attempt=attempt, repeated=repeated)

        report.warnings.append(f"vision start detection: game not confirmed running after {attempts} attempt(s)")

    async def _click_start_target(
        self,
        context: SessionContext,
        frame: Frame,
        target: Target,
        *,
        attempt: int = 1,
        repeated: int = 0,
    ) -> None:
        stuck = repeated > 2
        label = getattr(target, "label", None)
        if isinstance(target, (GridCellTarget, LabelTarget)) and label and not stuck:
            if await self._session.click_by_text(label):
                self._logger.info("Clicked start control %r through the DOM", label)
                return

        if isinstance(target, PixelTarget):
            x, y = target.x, target.y
        else:
            cell = getattr(target, "cell", None)
            if cell is None:
                self._logger.info("Start target %s has no position to click", describe_target(target))
                return
            x, y = self._grid.pixel_of(cell, frame.width, frame.height)

        if stuck:
            # step through the 3x3 neighbourhood around the suggested point
            jitter = self._config.gameplay.start_click_jitter_px
            nudged = (x + (repeated % 3 - 1) * jitter, y + ((repeated // 3) % 3 - 1) * jitter)
            self._logger.info("Varying start click (%d, %d) -> (%d, %d)", x, y, *nudged)
            x, y = nudged

        save_click_marker(self._capture, frame, x, y, f"start{attempt}", logger=self._logger)
        plan = ActuationPlan.click(x, y, self._config.input, frame_size=frame.size, description=f"start control at ({x}, {y})")
        await retry(
            lambda: self._dispatcher.dispatch(plan, context),
            self._config.retry.actuation,
            token=context.token,
            logger=self._logger,
            description="start control click",
        )

    async def _wait_ready(self, report: LaunchReport) -> None:
        report.surface_ready = await self._session.wait_for_surface_ready(
            self._config.gameplay.surface_ready_timeout_s
        )
        if not report.surface_ready:
            report.warnings.append("surface readiness: timed out waiting for rendered content")


__all__ = ["GameLauncher", "LaunchReport"]
