"""End-to-end probing session: browser, launch, gameplay and artifacts."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from playprobe_runtime.browser import BrowserSession
from playprobe_runtime.capture import Frame, FrameCapture, FramePhase
from playprobe_runtime.config import ProbeConfig
from playprobe_runtime.context import SessionContext
from playprobe_runtime.errors import CategorizedError, OperationCancelledError
from playprobe_runtime.input_dispatcher import InputDispatcher
from playprobe_runtime.recorder import CdpScreencastSource, FrameRecorder
from playprobe_runtime.retry import CancellationToken
from playprobe_vision.grid import GridSpec
from playprobe_vision.perception import PerceptionClient

from .cache import ActionCache
from .controller import GameplayLoopController, SessionReport
from .evaluator import PlayabilityEvaluator, PlayabilityScore, save_score
from .launcher import GameLauncher, LaunchReport
from .outcome import OutcomeClassifier

Logger = logging.Logger


def derive_game_id(url: str) -> str:
    """Stable identifier built from the URL's host and path."""

    parsed = urlparse(url)
    raw = f"{parsed.netloc}{parsed.path}".strip("/") or url
    return re.sub(r"[^A-Za-z0-9]+", "_", raw).strip("_").lower() or "game"


@dataclass(slots=True)
class ProbeReport:
    """Everything one probing session produced."""

    url: str
    game_id: str
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    launch: Optional[LaunchReport] = None
    session: Optional[SessionReport] = None
    render_mode: Optional[str] = None
    final_frame: Optional[Frame] = None
    video_path: Optional[Path] = None
    console_log_path: Optional[Path] = None
    cache_path: Optional[Path] = None
    playability: Optional[PlayabilityScore] = None
    score_path: Optional[Path] = None
    report_path: Optional[Path] = None
    errors: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.session is not None and self.session.any_succeeded

    def to_dict(self) -> Dict[str, Any]:
        final = None
        if self.final_frame is not None:
            final = {
                "width": self.final_frame.width,
                "height": self.final_frame.height,
                "blank": self.final_frame.stats.blank if self.final_frame.stats else None,
            }
        return {
            "url": self.url,
            "game_id": self.game_id,
            "succeeded": self.succeeded,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "render_mode": self.render_mode,
            "launch": self.launch.to_dict() if self.launch else None,
            "gameplay": self.session.to_dict() if self.session else None,
            "final_frame": final,
            "video_path": str(self.video_path) if self.video_path else None,
            "console_log_path": str(self.console_log_path) if self.console_log_path else None,
            "cache_path": str(self.cache_path) if self.cache_path else None,
            "playability": self.playability.to_dict() if self.playability else None,
            "score_path": str(self.score_path) if self.score_path else None,
            "errors": list(self.errors),
        }


class ProbeRunner:
    """Wires every component together for a single URL."""

    def __init__(
        self,
        config: ProbeConfig,
        logger: Optional[Logger] = None,
        *,
        classifier: Optional[OutcomeClassifier] = None,
    ) -> None:
        self._config = config
        self._logger = logger or logging.getLogger(__name__)
        self._classifier = classifier

    async def run(
        self,
        url: str,
        game_id: Optional[str] = None,
        mechanics: str = "",
        *,
        attempt_ceiling: Optional[int] = None,
        timeout_s: Optional[float] = None,
    ) -> ProbeReport:
        """Probe ``url`` end to end.

        Never raises for session failures: they are logged and collected in
        :attr:`ProbeReport.errors`.
        """
        config = self._config
        game_id = game_id or derive_game_id(url)
        mechanics = mechanics or config.gameplay.mechanics
        report = ProbeReport(url=url, game_id=game_id)
        cache = ActionCache(max_entries=config.gameplay.cache_size, logger=self._logger)
        context = SessionContext(game_id=game_id, token=CancellationToken.with_timeout(timeout_s), cache=cache)
        session = BrowserSession(config.browser, self._logger)
        capture: Optional[FrameCapture] = None
        perception: Optional[PerceptionClient] = None
        recorder: Optional[FrameRecorder] = None

        self._logger.info("=" * 60)
        self._logger.info("Probing %s as %s", url, game_id)

        try:
            await session.start()
            capture = FrameCapture(session, config.capture, self._logger)
            dispatcher = InputDispatcher(session, config.input, self._logger)
            grid = GridSpec(config.grid.columns, config.grid.rows)
            perception = PerceptionClient(config.perception, grid, logger=self._logger)

            if config.recording.enabled:
                cdp = await session.new_cdp_session()
                recorder = FrameRecorder(
                    CdpScreencastSource(cdp, quality=config.recording.quality),
                    config.recording,
                    self._logger,
                )
                await recorder.start()

            launcher = GameLauncher(session, capture, perception, dispatcher, config, self._logger)
            report.launch = await launcher.prepare(context, url, mechanics)

            if report.launch.navigated:
                controller = GameplayLoopController(
                    capture,
                    perception,
                    dispatcher,
                    session,
                    cache,
                    config,
                    classifier=self._classifier,
                    logger=self._logger,
                )
                report.session = await controller.run(context, mechanics, attempt_ceiling)
            else:
                report.errors.append("navigation failed; gameplay skipped")
        except OperationCancelledError as exc:
            self._logger.warning("Probe cancelled: %s", exc.message)
            report.errors.append(f"cancelled: {exc.message}")
        except CategorizedError as exc:
            self._logger.error("Probe failed: %s", exc)
            report.errors.append(str(exc))
        except Exception as exc:
            self._logger.exception("Unexpected probe failure: %s", exc)
            report.errors.append(f"unexpected {type(exc).__name__}: {exc}")
        finally:
            report.render_mode = context.render_mode.value if context.render_mode else None
            await self._finish(report, session, capture, perception, recorder, cache)

        return report

    async def _finish(
        self,
        report: ProbeReport,
        session: BrowserSession,
        capture: Optional[FrameCapture],
        perception: Optional[PerceptionClient],
        recorder: Optional[FrameRecorder],
        cache: ActionCache,
    ) -> None:
        logs_dir = self._config.gameplay.logs_dir
        stamp = f"{report.started_at:%Y%m%d-%H%M%S}"

        if capture is not None:
            try:
                report.final_frame = await capture.capture(FramePhase.FINAL, "session_end")
            except CategorizedError as exc:
                self._logger.warning("Final capture failed: %s", exc)
                report.errors.append(f"final capture: {exc}")

        if perception is not None and self._config.evaluation.enabled:
            await self.score_session(report, perception, session.console_logs)
            if report.playability is not None:
                try:
                    report.score_path = save_score(
                        report.playability, logs_dir / f"score_{report.game_id}_{stamp}.json"
                    )
                except CategorizedError as exc:
                    self._logger.warning("Score export failed: %s", exc)

        if recorder is not None:
            try:
                if recorder.is_recording:
                    await recorder.stop()
                if recorder.frame_count:
                    report.video_path = await recorder.save()
                    self._logger.info("Recording saved to %s", report.video_path)
            except CategorizedError as exc:
                self._logger.warning("Recording failed: %s", exc)
                report.errors.append(f"recording: {exc}")
            except RuntimeError as exc:
                self._logger.warning("Recording unavailable: %s", exc)
                report.errors.append(f"recording: {exc}")

        try:
            report.console_log_path = session.export_console(logs_dir / f"console_{report.game_id}_{stamp}.json")
        except CategorizedError as exc:
            self._logger.warning("Console export failed: %s", exc)

        if len(cache):
            try:
                report.cache_path = cache.export(logs_dir / f"cache_{report.game_id}_{stamp}.json")
            except CategorizedError as exc:
                self._logger.warning("Cache export failed: %s", exc)

        await session.close()
        report.finished_at = datetime.now()
        self._save_report(report, logs_dir / f"probe_{report.game_id}_{stamp}.json")

    async def score_session(
        self,
        report: ProbeReport,
        perception: PerceptionClient,
        console_logs: Sequence[Any] = (),
    ) -> Optional[PlayabilityScore]:
        """Ask the oracle for a playability verdict over the report's frames.

        Failures are logged and recorded in :attr:`ProbeReport.errors`.
        """
        frames: List[Optional[Frame]] = [report.launch.initial_frame if report.launch else None]
        if report.session is not None:
            frames.extend(attempt.frame for attempt in report.session.attempts)
        frames.append(report.final_frame)

        evaluator = PlayabilityEvaluator(
            perception,
            self._config.evaluation,
            self._config.retry.perception,
            self._logger,
        )
        try:
            report.playability = await evaluator.evaluate(frames, console_logs)
        except CategorizedError as exc:
            self._logger.warning("Playability evaluation failed: %s", exc)
            report.errors.append(f"evaluation: {exc}")
        return report.playability

    def _save_report(self, report: ProbeReport, path: Path) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(report.to_dict(), handle, indent=2)
        except OSError as exc:
            self._logger.error("Failed to save probe report: %s", exc)
            return
        report.report_path = path
        self._logger.info("Probe report written to %s", path)


__all__ = ["ProbeReport", "ProbeRunner", "derive_game_id"]
