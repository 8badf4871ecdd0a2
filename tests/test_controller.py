"""Tests for the gameplay loop using in-memory fakes for every collaborator."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, List, Optional, Sequence

import pytest
from PIL import Image

from playprobe_agent.cache import ActionCache
from playprobe_agent.controller import GameplayLoopController, LoopState
from playprobe_agent.outcome import OutcomeVerdict
from playprobe_runtime.capture import Frame, FramePhase
from playprobe_runtime.config import GameplayConfig, InputConfig, ProbeConfig, RetryConfig
from playprobe_runtime.context import SessionContext
from playprobe_runtime.errors import ControlSurfaceError, ErrorCategory
from playprobe_runtime.retry import RetryPolicy
from playprobe_vision.grid import GridCell
from playprobe_vision.perception import (
    GridCellTarget,
    KeyTarget,
    LabelTarget,
    NotFound,
    NothingFoundError,
    PerceptionError,
)

CLICK_J10 = [GridCellTarget(cell=GridCell("J", 10))]


def _frame(shade: int = 0) -> Frame:
    return Frame.from_image(Image.new("RGB", (1280, 720), color=(shade, shade, shade)))


class FakeCapture:
    def __init__(self, failures: Sequence[BaseException] = ()) -> None:
        self.failures = list(failures)
        self.labels: List[str] = []

    async def capture(self, phase: FramePhase, label: str = "") -> Frame:
        self.labels.append(label)
        if self.failures:
            raise self.failures.pop(0)
        return _frame(len(self.labels) % 255)


class FakePerception:
    """Replays scripted answers; exceptions are raised, lists are returned."""

    def __init__(self, *answers: Any, on_call=None) -> None:
        self.answers = list(answers)
        self.prompts: List[str] = []
        self.on_call = on_call

    async def perceive(self, frame: Frame, prompt: str) -> List[Any]:
        self.prompts.append(prompt)
        if self.on_call is not None:
            self.on_call()
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, BaseException):
            raise answer
        return list(answer)


class FakeDispatcher:
    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.error = error
        self.plans: List[Any] = []

    async def dispatch(self, plan, context: SessionContext) -> None:
        if self.error is not None:
            raise self.error
        self.plans.append(plan)


class FakeSession:
    def __init__(self, positions: Sequence[Any] = ()) -> None:
        self.positions = list(positions)
        self.lookups: List[str] = []

    async def locate_text(self, text: str):
        self.lookups.append(text)
        answer = self.positions.pop(0) if self.positions else None
        if isinstance(answer, BaseException):
            raise answer
        return answer


class FavorableClassifier:
    def classify(self, before, after, targets) -> OutcomeVerdict:
        return OutcomeVerdict(label="changed", favorable=True, score=0.5)


def _config(tmp_path: Path, **gameplay: Any) -> ProbeConfig:
    instant = RetryPolicy(initial_delay_s=0.0, max_delay_s=0.0)
    settings = dict(
        attempt_ceiling=2,
        outcome_settle_s=0.0,
        perception_miss_pause_s=0.0,
        inter_attempt_pause_s=0.0,
        logs_dir=tmp_path / "logs",
    )
    settings.update(gameplay)
    config = ProbeConfig(
        input=InputConfig(settle_delay_s=0.0),
        retry=RetryConfig(
            perception=instant,
            actuation=RetryPolicy(
                initial_delay_s=0.0,
                max_delay_s=0.0,
                retryable=instant.retryable | {ErrorCategory.CONTROL_SURFACE},
            ),
            capture=RetryPolicy(
                initial_delay_s=0.0,
                max_delay_s=0.0,
                retryable=instant.retryable | {ErrorCategory.CONTROL_SURFACE},
            ),
        ),
        gameplay=GameplayConfig(**settings),
    )
    return config


def _controller(
    tmp_path: Path, perception, *, dispatcher=None, capture=None, classifier=None, cache=None, session=None, **gameplay
):
    return GameplayLoopController(
        capture=capture or FakeCapture(),
        perception=perception,
        dispatcher=dispatcher or FakeDispatcher(),
        session=session or FakeSession(),
        cache=cache or ActionCache(),
        config=_config(tmp_path, **gameplay),
        classifier=classifier,
    )


def test_successful_attempts_until_ceiling(tmp_path: Path) -> None:
    dispatcher = FakeDispatcher()
    controller = _controller(tmp_path, FakePerception(CLICK_J10), dispatcher=dispatcher)
    context = SessionContext(game_id="flappy")

    report = asyncio.run(controller.run(context))

    assert len(report.attempts) == 2
    assert report.successful_attempts == 2
    assert report.stop_reason == "attempt ceiling reached"
    assert report.final_state is LoopState.IDLE
    assert report.aborted is False
    assert context.attempts == 2
    assert [plan.points for plan in dispatcher.plans] == [((608, 570),), ((608, 570),)]
    assert report.attempts[0].outcome == "unknown"
    assert report.attempts[0].frame is not None
    assert controller.history[:6] == [
        LoopState.IDLE,
        LoopState.OBSERVING,
        LoopState.PERCEIVING,
        LoopState.ACTING,
        LoopState.EVALUATING,
        LoopState.IDLE,
    ]


def test_attempt_logs_are_written(tmp_path: Path) -> None:
    controller = _controller(tmp_path, FakePerception(CLICK_J10), attempt_ceiling=1)
    asyncio.run(controller.run(SessionContext(game_id="flappy")))

    log = json.loads((tmp_path / "logs" / "attempt_000001.json").read_text(encoding="utf-8"))
    assert log["game_id"] == "flappy"
    assert log["targets"][0] == {"type": "GridCellTarget", "summary": "click J10", "rationale": "", "confidence": None}
    assert log["result"]["succeeded"] is True
    assert log["plans"] == ["click J10"]


def test_perception_misses_do_not_consume_ceiling(tmp_path: Path) -> None:
    miss = NothingFoundError(NotFound(rationale="loading screen"))
    controller = _controller(tmp_path, FakePerception(miss, CLICK_J10), attempt_ceiling=1)
    context = SessionContext(game_id="g")

    report = asyncio.run(controller.run(context))

    assert report.perception_misses == 1
    assert len(report.attempts) == 1
    assert report.attempts[0].succeeded
    assert context.attempts == 1


def test_perception_miss_limit_stops_loop(tmp_path: Path) -> None:
    miss = NothingFoundError(NotFound())
    perception = FakePerception(miss)
    controller = _controller(tmp_path, perception, max_perception_misses=3)
    context = SessionContext(game_id="g")

    report = asyncio.run(controller.run(context))

    assert report.attempts == []
    assert report.perception_misses == 3
    assert "perception miss limit" in report.stop_reason
    assert len(perception.prompts) == 3
    assert context.attempts == 0


def test_exhausted_perception_is_a_failed_attempt(tmp_path: Path) -> None:
    outage = PerceptionError("status 503", retryable=True)
    controller = _controller(tmp_path, FakePerception(outage), attempt_ceiling=1)

    report = asyncio.run(controller.run(SessionContext(game_id="g")))

    (attempt,) = report.attempts
    assert attempt.succeeded is False
    assert attempt.perception_miss is False
    assert attempt.category is ErrorCategory.PERCEPTION_SERVICE
    assert attempt.retries_used == 2
    assert report.perception_misses == 0


def test_actuation_failure_after_retries(tmp_path: Path) -> None:
    dispatcher = FakeDispatcher(ControlSurfaceError("page detached"))
    controller = _controller(tmp_path, FakePerception(CLICK_J10), dispatcher=dispatcher, attempt_ceiling=1)

    (attempt,) = asyncio.run(controller.run(SessionContext(game_id="g"))).attempts

    assert attempt.succeeded is False
    assert attempt.category is ErrorCategory.CONTROL_SURFACE
    assert attempt.frame is not None


def test_label_lookup_is_retried(tmp_path: Path) -> None:
    session = FakeSession([ControlSurfaceError("execution context destroyed"), (400, 300)])
    dispatcher = FakeDispatcher()
    perception = FakePerception([LabelTarget(label="Play again")])
    controller = _controller(tmp_path, perception, dispatcher=dispatcher, session=session, attempt_ceiling=1)

    (attempt,) = asyncio.run(controller.run(SessionContext(game_id="g"))).attempts

    assert attempt.succeeded is True
    assert session.lookups == ["Play again", "Play again"]
    (plan,) = dispatcher.plans
    assert plan.points == ((400, 300),)


def test_unexpected_failure_is_unknown_category(tmp_path: Path) -> None:
    dispatcher = FakeDispatcher(RuntimeError("boom"))
    controller = _controller(tmp_path, FakePerception(CLICK_J10), dispatcher=dispatcher, attempt_ceiling=1)

    (attempt,) = asyncio.run(controller.run(SessionContext(game_id="g"))).attempts

    assert attempt.succeeded is False
    assert attempt.category is ErrorCategory.UNKNOWN


def test_capture_failure_is_a_failed_attempt(tmp_path: Path) -> None:
    capture = FakeCapture([ControlSurfaceError("no page")] * 3)
    perception = FakePerception(CLICK_J10)
    controller = _controller(tmp_path, perception, capture=capture, attempt_ceiling=1)

    (attempt,) = asyncio.run(controller.run(SessionContext(game_id="g"))).attempts

    assert attempt.succeeded is False
    assert attempt.category is ErrorCategory.CONTROL_SURFACE
    assert perception.prompts == []


def test_favorable_outcomes_are_cached_and_fed_back(tmp_path: Path) -> None:
    cache = ActionCache()
    perception = FakePerception(CLICK_J10, [KeyTarget(keys=("ArrowUp",))])
    controller = _controller(tmp_path, perception, classifier=FavorableClassifier(), cache=cache)

    report = asyncio.run(controller.run(SessionContext(game_id="g")))

    assert report.successful_attempts == 2
    assert [entry.describe() for entry in controller.cached_outcomes("g")] == [
        "click J10: changed",
        "keys ArrowUp: changed",
    ]
    assert "click J10: changed" not in perception.prompts[0]
    assert "click J10: changed" in perception.prompts[1]
    assert controller.cached_outcomes("other") == []


def test_unknown_outcomes_are_not_cached(tmp_path: Path) -> None:
    cache = ActionCache()
    controller = _controller(tmp_path, FakePerception(CLICK_J10), cache=cache)
    asyncio.run(controller.run(SessionContext(game_id="g")))
    assert len(cache) == 0


def test_cancellation_returns_report(tmp_path: Path) -> None:
    context = SessionContext(game_id="g")
    perception = FakePerception(CLICK_J10, on_call=lambda: context.token.cancel("operator stop"))
    dispatcher = FakeDispatcher()
    controller = _controller(tmp_path, perception, dispatcher=dispatcher)

    report = asyncio.run(controller.run(context))

    assert report.aborted is True
    assert report.final_state is LoopState.ABORTED
    assert report.stop_reason == "cancelled: operator stop"
    assert report.attempts == []
    assert dispatcher.plans == []
    log = json.loads((tmp_path / "logs" / "attempt_000001.json").read_text(encoding="utf-8"))
    assert log["error"] == {"type": "cancelled"}


def test_task_cancellation_propagates(tmp_path: Path) -> None:
    controller = _controller(tmp_path, FakePerception(asyncio.CancelledError()))

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(controller.run(SessionContext(game_id="g")))
    assert controller.state is LoopState.ABORTED


def test_slingshot_prompt_style(tmp_path: Path) -> None:
    perception = FakePerception(CLICK_J10)
    controller = _controller(tmp_path, perception, attempt_ceiling=1, prompt_style="slingshot")
    asyncio.run(controller.run(SessionContext(game_id="g"), mechanics="pull back to launch"))

    assert "slingshot_cell" in perception.prompts[0]
    assert "pull back to launch" in perception.prompts[0]
