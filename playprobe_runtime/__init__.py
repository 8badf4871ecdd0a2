"""Runtime layer for PlayProbe.

This package owns the browser session, frame capture, synthetic input
delivery and screencast recording, plus the configuration, categorized error
and retry primitives every other layer builds on. It never imports the vision
or agent packages.
"""

from .browser import BrowserSession
from .capture import Frame, FrameCapture, FramePhase
from .config import ConfigError, ProbeConfig, load_config
from .context import RenderMode, SessionContext
from .errors import CategorizedError, ErrorCategory
from .input_dispatcher import ActuationPlan, InputDispatcher
from .recorder import FrameRecorder
from .retry import AttemptResult, CancellationToken, RetryPolicy, retry, run_with_retry

__all__ = [
    "ActuationPlan",
    "AttemptResult",
    "BrowserSession",
    "CancellationToken",
    "CategorizedError",
    "ConfigError",
    "ErrorCategory",
    "Frame",
    "FrameCapture",
    "FramePhase",
    "FrameRecorder",
    "InputDispatcher",
    "ProbeConfig",
    "RenderMode",
    "RetryPolicy",
    "SessionContext",
    "load_config",
    "retry",
    "run_with_retry",
]
