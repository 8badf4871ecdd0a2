"""Configuration structures shared by every PlayProbe layer.

Values originate from ``config.yaml`` (preferred) and fall back to the defaults
below. Coordinates are expressed in frame pixels, the fixed logical resolution
screenshots are taken at; conversion to viewport pixels happens in the input
dispatcher once the live ``innerWidth``/``innerHeight`` are known. Secrets never
live in the file: the perception API key is read from the environment variable
named by ``perception.api_key_env``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

import yaml

from .errors import ErrorCategory
from .retry import DEFAULT_RETRYABLE_CATEGORIES, RetryPolicy


class ConfigError(ValueError):
    """Raised when config.yaml contains values that cannot be applied."""


DEFAULT_BLOCKED_HOSTS: List[str] = [
    "doubleclick.net",
    "googlesyndication.com",
    "googleadservices.com",
    "google-analytics.com",
]

PROMPT_STYLES: FrozenSet[str] = frozenset({"actions", "slingshot"})


@dataclass(slots=True)
class BrowserConfig:
    """Browser launch and navigation parameters."""

    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720
    load_timeout_s: float = 45.0
    navigation_wait: str = "domcontentloaded"  # Playwright wait_until value
    page_settle_s: float = 2.0
    block_ad_hosts: bool = True
    blocked_hosts: List[str] = field(default_factory=lambda: list(DEFAULT_BLOCKED_HOSTS))
    user_agent: Optional[str] = None


@dataclass(slots=True)
class CaptureValidationConfig:
    """Thresholds below which a frame is flagged as blank."""

    min_mean_luminance: float = 5.0
    min_luminance_stddev: float = 1.5


@dataclass(slots=True)
class RetentionConfig:
    """Capture file retention policy."""

    max_captures: int = 200


@dataclass(slots=True)
class CaptureConfig:
    """Frame capture and debug artifact configuration."""

    output_dir: Path = Path("captures")
    save_frames: bool = True
    validation: CaptureValidationConfig = field(default_factory=CaptureValidationConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)


@dataclass(slots=True)
class GridConfig:
    """Coordinate grid laid over frames sent to the perception oracle."""

    enabled: bool = True
    columns: int = 20  # A-T
    rows: int = 12


@dataclass(slots=True)
class InputConfig:
    """Timing of synthetic input."""

    settle_delay_s: float = 0.5  # pause after each dispatched plan
    key_press_gap_ms: int = 50  # keydown -> keyup
    key_sequence_gap_ms: int = 50
    drag_steps: int = 10
    drag_base_ms: int = 300
    drag_press_pause_ms: int = 50
    hold_base_ms: int = 100
    default_power: float = 0.7


@dataclass(slots=True)
class PerceptionConfig:
    """Perception oracle endpoint and request parameters."""

    endpoint: str = "https://openrouter.ai/api/v1/chat/completions"
    api_key_env: str = "OPENROUTER_API_KEY"
    model: str = "openai/gpt-4o"
    request_timeout_s: float = 30.0
    max_tokens: int = 800
    temperature: float = 0.2
    referer: str = "https://github.com/playprobe/playprobe"
    title: str = "PlayProbe"


@dataclass(slots=True)
class RetryConfig:
    """Call-level retry policies for perception and actuation."""

    perception: RetryPolicy = field(default_factory=RetryPolicy)
    actuation: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(
            retryable=DEFAULT_RETRYABLE_CATEGORIES | {ErrorCategory.CONTROL_SURFACE}
        )
    )
    capture: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(
            retryable=DEFAULT_RETRYABLE_CATEGORIES | {ErrorCategory.CONTROL_SURFACE}
        )
    )


@dataclass(slots=True)
class GameplayConfig:
    """Gameplay loop bounds and pacing."""

    attempt_ceiling: int = 5
    outcome_settle_s: float = 3.0
    perception_miss_pause_s: float = 2.0
    inter_attempt_pause_s: float = 1.0
    max_perception_misses: int = 10
    cache_size: int = 50
    logs_dir: Path = Path("logs")
    mechanics: str = ""  # free-text control description passed to the oracle
    prompt_style: str = "actions"  # "actions" or "slingshot"
    surface_ready_timeout_s: float = 10.0
    start_detection_attempts: int = 10
    start_check_pause_s: float = 0.3
    start_repeat_pause_s: float = 0.5  # when the screen did not change
    start_click_jitter_px: int = 10


@dataclass(slots=True)
class RecordingConfig:
    """Screencast recording and video encoding."""

    enabled: bool = False
    output_dir: Path = Path("recordings")
    quality: int = 80
    default_frame_rate: int = 30
    ffmpeg_path: str = "ffmpeg"


@dataclass(slots=True)
class EvaluationConfig:
    """End-of-session playability scoring."""

    enabled: bool = True
    max_images: int = 5
    max_tokens: int = 1500
    temperature: float = 0.3
    sample_errors: int = 3


@dataclass(slots=True)
class ProbeConfig:
    """Top-level configuration blob."""

    browser: BrowserConfig = field(default_factory=BrowserConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    grid: GridConfig = field(default_factory=GridConfig)
    input: InputConfig = field(default_factory=InputConfig)
    perception: PerceptionConfig = field(default_factory=PerceptionConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    gameplay: GameplayConfig = field(default_factory=GameplayConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    evaluation: EvaluationConfig = field(default_factory=EvaluationConfig)


def load_config(path: Optional[Path] = None) -> ProbeConfig:
    """Load configuration from YAML, falling back to defaults."""

    cfg_path = path or Path("config.yaml")
    config = ProbeConfig()

    if not cfg_path.exists():
        return config

    try:
        with cfg_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"{cfg_path} is not valid YAML: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{cfg_path} must contain a mapping at the top level")

    try:
        _apply_browser_config(config.browser, raw.get("browser") or {})
        _apply_capture_config(config.capture, raw.get("capture") or {})
        _apply_grid_config(config.grid, raw.get("grid") or {})
        _apply_input_config(config.input, raw.get("input") or {})
        _apply_perception_config(config.perception, raw.get("perception") or {})
        _apply_retry_config(config.retry, raw.get("retry") or {})
        _apply_gameplay_config(config.gameplay, raw.get("gameplay") or {})
        _apply_recording_config(config.recording, raw.get("recording") or {})
        _apply_evaluation_config(config.evaluation, raw.get("evaluation") or {})
    except ConfigError:
        raise
    except (AttributeError, TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in {cfg_path}: {exc}") from exc

    return config


def _apply_browser_config(config: BrowserConfig, data: Dict) -> None:
    if not data:
        return

    if "headless" in data:
        config.headless = bool(data["headless"])

    viewport = data.get("viewport")
    if isinstance(viewport, dict):
        if "width" in viewport:
            config.viewport_width = int(viewport["width"])
        if "height" in viewport:
            config.viewport_height = int(viewport["height"])

    if "load_timeout_s" in data:
        config.load_timeout_s = float(data["load_timeout_s"])

    if "navigation_wait" in data:
        config.navigation_wait = str(data["navigation_wait"])

    if "page_settle_s" in data:
        config.page_settle_s = float(data["page_settle_s"])

    if "block_ad_hosts" in data:
        config.block_ad_hosts = bool(data["block_ad_hosts"])

    hosts = data.get("blocked_hosts")
    if isinstance(hosts, list):
        config.blocked_hosts = [str(host) for host in hosts]

    if data.get("user_agent"):
        config.user_agent = str(data["user_agent"])


def _apply_capture_config(config: CaptureConfig, data: Dict) -> None:
    if not data:
        return

    output_dir = data.get("output_dir")
    if output_dir:
        config.output_dir = Path(str(output_dir))

    if "save_frames" in data:
        config.save_frames = bool(data["save_frames"])

    validation_data = data.get("validation") or {}
    if "min_mean_luminance" in validation_data:
        config.validation.min_mean_luminance = float(validation_data["min_mean_luminance"])
    if "min_luminance_stddev" in validation_data:
        config.validation.min_luminance_stddev = float(validation_data["min_luminance_stddev"])

    retention_data = data.get("retention") or {}
    if "max_captures" in retention_data:
        config.retention.max_captures = int(retention_data["max_captures"])


def _apply_grid_config(config: GridConfig, data: Dict) -> None:
    if not data:
        return

    if "enabled" in data:
        config.enabled = bool(data["enabled"])
    if "columns" in data:
        config.columns = int(data["columns"])
    if "rows" in data:
        config.rows = int(data["rows"])

    if config.columns <= 0 or config.rows <= 0:
        raise ConfigError(f"Grid must have positive dimensions, got {config.columns}x{config.rows}")


def _apply_input_config(config: InputConfig, data: Dict) -> None:
    if not data:
        return

    for name in ("settle_delay_s", "default_power"):
        if name in data:
            setattr(config, name, float(data[name]))

    for name in (
        "key_press_gap_ms",
        "key_sequence_gap_ms",
        "drag_steps",
        "drag_base_ms",
        "drag_press_pause_ms",
        "hold_base_ms",
    ):
        if name in data:
            setattr(config, name, int(data[name]))

    if config.drag_steps < 1:
        raise ConfigError("input.drag_steps must be at least 1")


def _apply_perception_config(config: PerceptionConfig, data: Dict) -> None:
    if not data:
        return

    for name in ("endpoint", "api_key_env", "model", "referer", "title"):
        if data.get(name):
            setattr(config, name, str(data[name]))

    if "request_timeout_s" in data:
        config.request_timeout_s = float(data["request_timeout_s"])
    if "max_tokens" in data:
        config.max_tokens = int(data["max_tokens"])
    if "temperature" in data:
        config.temperature = float(data["temperature"])


def _apply_retry_config(config: RetryConfig, data: Dict) -> None:
    if not data:
        return

    for name in ("perception", "actuation", "capture"):
        section = data.get(name)
        if isinstance(section, dict):
            _apply_retry_policy(getattr(config, name), section)


def _apply_retry_policy(policy: RetryPolicy, data: Dict[str, Any]) -> None:
    if "max_attempts" in data:
        policy.max_attempts = int(data["max_attempts"])
    if "initial_delay_s" in data:
        policy.initial_delay_s = float(data["initial_delay_s"])
    if "max_delay_s" in data:
        policy.max_delay_s = float(data["max_delay_s"])
    if "backoff_factor" in data:
        policy.backoff_factor = float(data["backoff_factor"])

    retryable = data.get("retryable")
    if isinstance(retryable, list):
        policy.retryable = _parse_categories(retryable)


def _parse_categories(values: List[Any]) -> FrozenSet[ErrorCategory]:
    categories = set()
    for value in values:
        try:
            categories.add(ErrorCategory(str(value).strip().lower().replace("-", "_")))
        except ValueError as exc:
            raise ConfigError(f"Unknown error category in retry config: {value!r}") from exc
    return frozenset(categories)


def _apply_gameplay_config(config: GameplayConfig, data: Dict) -> None:
    if not data:
        return

    for name in (
        "attempt_ceiling",
        "max_perception_misses",
        "cache_size",
        "start_detection_attempts",
        "start_click_jitter_px",
    ):
        if name in data:
            setattr(config, name, int(data[name]))

    for name in (
        "outcome_settle_s",
        "perception_miss_pause_s",
        "inter_attempt_pause_s",
        "surface_ready_timeout_s",
        "start_check_pause_s",
        "start_repeat_pause_s",
    ):
        if name in data:
            setattr(config, name, float(data[name]))

    if "logs_dir" in data:
        config.logs_dir = Path(str(data["logs_dir"]))

    if "mechanics" in data:
        config.mechanics = str(data["mechanics"] or "")

    if "prompt_style" in data:
        style = str(data["prompt_style"]).lower()
        if style not in PROMPT_STYLES:
            raise ConfigError(f"gameplay.prompt_style must be one of {sorted(PROMPT_STYLES)}, got {style!r}")
        config.prompt_style = style

    if config.start_detection_attempts < 1:
        raise ConfigError("gameplay.start_detection_attempts must be at least 1")


def _apply_recording_config(config: RecordingConfig, data: Dict) -> None:
    if not data:
        return

    if "enabled" in data:
        config.enabled = bool(data["enabled"])
    if data.get("output_dir"):
        config.output_dir = Path(str(data["output_dir"]))
    if "quality" in data:
        config.quality = int(data["quality"])
    if "default_frame_rate" in data:
        config.default_frame_rate = int(data["default_frame_rate"])
    if data.get("ffmpeg_path"):
        config.ffmpeg_path = str(data["ffmpeg_path"])


def _apply_evaluation_config(config: EvaluationConfig, data: Dict) -> None:
    if not data:
        return

    if "enabled" in data:
        config.enabled = bool(data["enabled"])
    for name in ("max_images", "max_tokens", "sample_errors"):
        if name in data:
            setattr(config, name, int(data[name]))
    if "temperature" in data:
        config.temperature = float(data["temperature"])

    if config.max_images < 1:
        raise ConfigError("evaluation.max_images must be at least 1")


__all__ = [
    "BrowserConfig",
    "CaptureConfig",
    "CaptureValidationConfig",
    "ConfigError",
    "EvaluationConfig",
    "GameplayConfig",
    "GridConfig",
    "InputConfig",
    "PerceptionConfig",
    "ProbeConfig",
    "RecordingConfig",
    "RetentionConfig",
    "RetryConfig",
    "load_config",
]
