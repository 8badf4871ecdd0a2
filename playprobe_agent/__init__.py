"""Agent orchestration: launching games and running the gameplay loop."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - import typing aid only
    from .cache import ActionCache
    from .controller import GameplayLoopController
    from .evaluator import PlayabilityEvaluator
    from .launcher import GameLauncher
    from .runner import ProbeRunner

__all__ = ["ActionCache", "GameLauncher", "GameplayLoopController", "PlayabilityEvaluator", "ProbeRunner"]


def __getattr__(name: str):
    if name == "ActionCache":
        from .cache import ActionCache

        return ActionCache
    if name == "GameLauncher":
        from .launcher import GameLauncher

        return GameLauncher
    if name == "GameplayLoopController":
        from .controller import GameplayLoopController

        return GameplayLoopController
    if name == "PlayabilityEvaluator":
        from .evaluator import PlayabilityEvaluator

        return PlayabilityEvaluator
    if name == "ProbeRunner":
        from .runner import ProbeRunner

        return ProbeRunner
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
