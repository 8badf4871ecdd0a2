"""Perception oracle client and response parsing.

The oracle is any OpenAI-compatible chat-completions endpoint (OpenRouter by
default) that accepts a text prompt plus an inline PNG and answers with free
text that should contain JSON. Everything the oracle says is funnelled
through :func:`parse_targets`, the single boundary that turns loosely shaped
JSON into the :data:`Target` tagged union.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import requests

from playprobe_runtime.capture import Frame
from playprobe_runtime.config import PerceptionConfig
from playprobe_runtime.errors import ErrorCategory, PerceptionServiceError

from .grid import GridCell, GridSpec, MalformedCellError

Logger = logging.Logger


class PerceptionError(PerceptionServiceError):
    """Base class for perception failures."""


class OracleUnreachableError(PerceptionError):
    """Raised when the oracle endpoint cannot be reached."""

    category = ErrorCategory.CONNECTIVITY


class OracleTimeoutError(PerceptionError):
    """Raised when the oracle does not answer within the request bound."""

    category = ErrorCategory.TIMEOUT


class UnparsableResponseError(PerceptionError):
    """Raised when the oracle answered but no usable JSON could be extracted."""

    def __init__(self, message: str, *, raw: Optional[str] = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, retryable=False, cause=cause)
        self.raw = raw


class NothingFoundError(PerceptionError):
    """Raised when the oracle explicitly reported that nothing actionable is visible."""

    def __init__(self, target: "NotFound") -> None:
        super().__init__(f"oracle reported nothing found: {target.rationale or 'no rationale'}", retryable=False)
        self.target = target


class PerceptionConfigError(PerceptionError):
    """Raised when the client is missing its API key or endpoint."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


class ActionKind(str, Enum):
    """What the oracle wants done with a target."""

    CLICK = "click"
    DRAG = "drag"
    KEY_PRESS = "key_press"
    KEY_HOLD = "key_hold"
    KEY_RELEASE = "key_release"
    KEY_SEQUENCE = "key_sequence"
    WAIT = "wait"
    NONE = "none"


KEY_ACTIONS = frozenset(
    {ActionKind.KEY_PRESS, ActionKind.KEY_HOLD, ActionKind.KEY_RELEASE, ActionKind.KEY_SEQUENCE}
)

_ACTION_ALIASES: Dict[str, ActionKind] = {
    "click": ActionKind.CLICK,
    "tap": ActionKind.CLICK,
    "drag": ActionKind.DRAG,
    "drag_slingshot": ActionKind.DRAG,
    "swipe": ActionKind.DRAG,
    "keypress": ActionKind.KEY_PRESS,
    "key_press": ActionKind.KEY_PRESS,
    "press": ActionKind.KEY_PRESS,
    "key_hold": ActionKind.KEY_HOLD,
    "hold": ActionKind.KEY_HOLD,
    "key_release": ActionKind.KEY_RELEASE,
    "release": ActionKind.KEY_RELEASE,
    "key_sequence": ActionKind.KEY_SEQUENCE,
    "sequence": ActionKind.KEY_SEQUENCE,
    "wait": ActionKind.WAIT,
    "observe": ActionKind.WAIT,
    "detect_element": ActionKind.NONE,
    "none": ActionKind.NONE,
}


@dataclass(frozen=True, slots=True)
class GridCellTarget:
    """A grid cell, optionally with a drag end cell and the visible label."""

    cell: GridCell
    end_cell: Optional[GridCell] = None
    label: Optional[str] = None
    power: Optional[float] = None
    action: ActionKind = ActionKind.CLICK
    rationale: str = ""
    confidence: Optional[float] = None


@dataclass(frozen=True, slots=True)
class LabelTarget:
    """Free-text button label to be located in the DOM."""

    label: str
    cell: Optional[GridCell] = None
    action: ActionKind = ActionKind.CLICK
    rationale: str = ""
    confidence: Optional[float] = None


@dataclass(frozen=True, slots=True)
class PixelTarget:
    """Explicit frame-pixel coordinates."""

    x: int
    y: int
    end: Optional[Tuple[int, int]] = None
    power: Optional[float] = None
    action: ActionKind = ActionKind.CLICK
    rationale: str = ""
    confidence: Optional[float] = None


@dataclass(frozen=True, slots=True)
class KeyTarget:
    """One or more key names with press/hold/release/sequence semantics."""

    keys: Tuple[str, ...]
    action: ActionKind = ActionKind.KEY_PRESS
    hold_ms: Optional[int] = None
    rationale: str = ""
    confidence: Optional[float] = None


@dataclass(frozen=True, slots=True)
class WaitTarget:
    """Pause before the next action."""

    duration_ms: int
    rationale: str = ""
    confidence: Optional[float] = None


@dataclass(frozen=True, slots=True)
class NotFound:
    """The oracle saw nothing to act on."""

    rationale: str = ""
    game_started: Optional[bool] = None
    confidence: Optional[float] = None


Target = Union[GridCellTarget, LabelTarget, PixelTarget, KeyTarget, WaitTarget, NotFound]

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?(.*?)```", re.DOTALL)


def extract_json_payload(text: Optional[str]) -> Any:
    """Find the JSON object or array inside an oracle answer.

    Tries, in order: the whole text, each fenced code block, and the span from
    the first ``{``/``[`` to the matching last ``}``/``]`` (whichever opens
    first is tried first).

    Raises:
        UnparsableResponseError: If no candidate decodes to an object or array.
    """
    if text is None or not text.strip():
        raise UnparsableResponseError("oracle returned empty content", raw=text)

    cleaned = text.strip()
    candidates: List[str] = [cleaned]
    candidates.extend(match.group(1).strip() for match in _FENCE_RE.finditer(cleaned))

    spans: List[Tuple[int, str]] = []
    for opener, closer in (("{", "}"), ("[", "]")):
        start = cleaned.find(opener)
        end = cleaned.rfind(closer)
        if start != -1 and end > start:
            spans.append((start, cleaned[start : end + 1]))
    candidates.extend(candidate for _, candidate in sorted(spans))

    for candidate in candidates:
        if not candidate:
            continue
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, (dict, list)):
            return value

    raise UnparsableResponseError("no JSON object or array found in oracle response", raw=text)


def parse_targets(text: Optional[str], grid: GridSpec) -> List[Target]:
    """Parse an oracle answer into one target per requested action.

    A JSON object yields one target; an array (or an object wrapping an
    ``actions``/``plan`` array) yields one per element. An empty plan yields a
    single :class:`NotFound`.

    Raises:
        UnparsableResponseError: If the JSON is missing or its fields are unusable.
    """
    payload = extract_json_payload(text)
    if isinstance(payload, dict):
        wrapped = payload.get("actions", payload.get("plan"))
        entries = wrapped if isinstance(wrapped, list) else [payload]
    else:
        entries = payload

    if not entries:
        return [NotFound(rationale="oracle returned an empty plan")]

    targets: List[Target] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise UnparsableResponseError(f"action {index} is not a JSON object", raw=text)
        try:
            targets.append(parse_target_entry(entry, grid))
        except UnparsableResponseError as exc:
            raise UnparsableResponseError(f"action {index}: {exc.message}", raw=text) from exc
    return targets


def parse_target_entry(entry: Dict[str, Any], grid: GridSpec) -> Target:
    """Turn one JSON object into a :data:`Target` variant."""

    rationale = _first_text(entry, "reasoning", "rationale", "description")
    confidence = _confidence(entry.get("confidence"))
    game_started = entry.get("game_started")
    game_started = bool(game_started) if game_started is not None else None

    action = _action(entry)
    if entry.get("found") is False or entry.get("action_needed") is False or action is ActionKind.NONE:
        return NotFound(rationale=rationale, game_started=game_started, confidence=confidence)

    cell = _cell(entry, grid, "grid_cell", "cell", "start_cell", "slingshot_cell")
    end_cell = _cell(entry, grid, "end_cell", "target_cell", "target_aim_cell")
    label = _first_text(entry, "button_text", "label") or None
    pixel = _point(entry.get("pixel")) or _point((entry.get("x"), entry.get("y")))
    end_pixel = _point(entry.get("end")) or _point((entry.get("end_x"), entry.get("end_y")))
    keys = _keys(entry)
    power = _float(entry.get("power", entry.get("estimated_power")))
    duration = _int(entry.get("duration_ms", entry.get("wait_ms", entry.get("hold_ms"))))

    if action in KEY_ACTIONS or (action is None and keys and not (cell or pixel or label)):
        if not keys:
            raise UnparsableResponseError("key action without key names")
        return KeyTarget(
            keys=keys,
            action=action or ActionKind.KEY_PRESS,
            hold_ms=duration,
            rationale=rationale,
            confidence=confidence,
        )

    if action is ActionKind.WAIT:
        return WaitTarget(duration_ms=duration if duration is not None else 1000, rationale=rationale, confidence=confidence)

    if cell is None and end_cell is not None and action is not ActionKind.DRAG:
        # single-cell actions often name their cell "target_cell"
        cell, end_cell = end_cell, None

    if action is ActionKind.DRAG and not (end_cell or end_pixel):
        raise UnparsableResponseError("drag action without an end point")

    if cell is not None and end_pixel is not None and end_cell is None:
        # the frame size is unknown here, so a pixel end cannot become a cell
        raise UnparsableResponseError(f"drag from grid cell {cell} has a pixel end point; name an end cell")

    if cell is not None:
        return GridCellTarget(
            cell=cell,
            end_cell=end_cell,
            label=label,
            power=power,
            action=ActionKind.DRAG if end_cell else ActionKind.CLICK,
            rationale=rationale,
            confidence=confidence,
        )
    if pixel is not None:
        return PixelTarget(
            x=pixel[0],
            y=pixel[1],
            end=end_pixel,
            power=power,
            action=ActionKind.DRAG if end_pixel else ActionKind.CLICK,
            rationale=rationale,
            confidence=confidence,
        )
    if label:
        return LabelTarget(label=label, rationale=rationale, confidence=confidence)
    return NotFound(rationale=rationale, game_started=game_started, confidence=confidence)


def _first_text(entry: Dict[str, Any], *names: str) -> str:
    for name in names:
        value = entry.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _action(entry: Dict[str, Any]) -> Optional[ActionKind]:
    raw = entry.get("action", entry.get("type"))
    if not isinstance(raw, str) or not raw.strip():
        return None
    return _ACTION_ALIASES.get(raw.strip().lower())


def _cell(entry: Dict[str, Any], grid: GridSpec, *names: str) -> Optional[GridCell]:
    text = _first_text(entry, *names)
    if not text:
        return None
    try:
        return grid.resolve(text)
    except MalformedCellError as exc:
        raise UnparsableResponseError(f"bad grid cell {text!r}: {exc}", cause=exc) from exc


def _point(value: Any) -> Optional[Tuple[int, int]]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return None
    x, y = _float(value[0]), _float(value[1])
    if x is None or y is None:
        return None
    return int(x), int(y)


def _keys(entry: Dict[str, Any]) -> Tuple[str, ...]:
    raw = entry.get("keys", entry.get("key"))
    if isinstance(raw, str) and raw:
        return (raw,)
    if isinstance(raw, list):
        return tuple(str(key) for key in raw if isinstance(key, str) and key)
    return ()


def _float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int(value: Any) -> Optional[int]:
    number = _float(value)
    return int(number) if number is not None else None


def _confidence(value: Any) -> Optional[float]:
    number = _float(value)
    if number is None:
        return None
    return max(0.0, min(1.0, number))


class PerceptionClient:
    """Sends frames and prompts to the oracle and parses its answers."""

    def __init__(
        self,
        config: PerceptionConfig,
        grid: GridSpec,
        *,
        session: Optional[requests.Session] = None,
        api_key: Optional[str] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self._config = config
        self._grid = grid
        self._http = session or requests.Session()
        self._api_key = api_key
        self._headers: Optional[Dict[str, str]] = None
        self._logger = logger or logging.getLogger(__name__)

    @property
    def grid(self) -> GridSpec:
        return self._grid

    def build_request(self, frame: Frame, prompt: str, hints: Optional[str] = None) -> Dict[str, Any]:
        """Assemble the chat-completions request body for ``frame``."""

        return self.build_multi_frame_request([frame], prompt, hints)

    def build_multi_frame_request(
        self,
        frames: Sequence[Frame],
        prompt: str,
        hints: Optional[str] = None,
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Request body carrying ``frames`` as inline PNGs after the prompt text."""

        text = prompt
        if hints:
            text = f"{prompt}\n\nHINTS:\n{hints.strip()}"
        content: List[Dict[str, Any]] = [{"type": "text", "text": text}]
        for frame in frames:
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/png;base64,{frame.to_base64()}"},
                }
            )
        return {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens if max_tokens is None else max_tokens,
            "temperature": self._config.temperature if temperature is None else temperature,
            "messages": [
                {
                    "role": "system",
                    "content": (
                        "You analyse browser game screenshots. Answer with JSON only, "
                        "following the schema given in the user message."
                    ),
                },
                {"role": "user", "content": content},
            ],
        }

    async def query(self, frame: Frame, prompt: str, hints: Optional[str] = None) -> str:
        """Send one request and return the raw answer text.

        Raises:
            PerceptionConfigError: If no API key is configured.
            OracleUnreachableError: On connection failures.
            OracleTimeoutError: When the request bound elapses.
            PerceptionError: On HTTP errors from the service.
            UnparsableResponseError: If the response envelope has no content.
        """
        return await self.query_frames([frame], prompt, hints)

    async def query_frames(
        self,
        frames: Sequence[Frame],
        prompt: str,
        hints: Optional[str] = None,
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Like :meth:`query`, for several frames in one request."""

        self._ensure_api_configured()
        body = self.build_multi_frame_request(
            frames, prompt, hints, max_tokens=max_tokens, temperature=temperature
        )
        if len(frames) == 1:
            frame = frames[0]
            self._logger.info(
                "Querying perception model %s (%dx%d frame, annotated=%s, %d bytes)",
                self._config.model,
                frame.width,
                frame.height,
                frame.annotated,
                len(frame.data),
            )
        else:
            self._logger.info(
                "Querying perception model %s with %d frames (%d bytes)",
                self._config.model,
                len(frames),
                sum(len(frame.data) for frame in frames),
            )
        self._logger.debug("Perception prompt: %s", body["messages"][1]["content"][0]["text"])
        content = await asyncio.to_thread(self._post, body)
        self._logger.debug("Perception response: %s", content[:1000])
        return content

    async def perceive(self, frame: Frame, prompt: str, hints: Optional[str] = None) -> List[Target]:
        """Query the oracle and return every actionable target it named.

        Raises:
            NothingFoundError: If the oracle reported nothing actionable.
            UnparsableResponseError: If the answer could not be parsed.
        """
        text = await self.query(frame, prompt, hints)
        targets = parse_targets(text, self._grid)
        actionable = [target for target in targets if not isinstance(target, NotFound)]
        if not actionable:
            first = targets[0]
            raise NothingFoundError(first if isinstance(first, NotFound) else NotFound())
        for target in actionable:
            self._logger.info("Perceived %s", describe_target(target))
        return actionable

    async def locate(self, frame: Frame, prompt: str, hints: Optional[str] = None) -> Target:
        """Return only the first actionable target."""

        return (await self.perceive(frame, prompt, hints))[0]

    def _post(self, body: Dict[str, Any]) -> str:
        try:
            response = self._http.post(
                self._config.endpoint,
                headers=self._headers,
                json=body,
                timeout=self._config.request_timeout_s,
            )
        except requests.Timeout as exc:
            raise OracleTimeoutError(
                f"perception request exceeded {self._config.request_timeout_s:.0f}s", cause=exc
            ) from exc
        except requests.ConnectionError as exc:
            raise OracleUnreachableError("perception endpoint unreachable", cause=exc) from exc
        except requests.RequestException as exc:
            raise PerceptionError("perception request failed", cause=exc) from exc

        status = response.status_code
        if status >= 400:
            retryable = status >= 500 or status == 429
            raise PerceptionError(
                f"perception service returned HTTP {status}: {response.text[:300]}",
                retryable=retryable,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise UnparsableResponseError("perception service returned a non-JSON envelope", cause=exc) from exc

        content = self._extract_response_content(data)
        if content is None:
            raise UnparsableResponseError("perception response had no message content", raw=json.dumps(data)[:500])
        return content

    def _ensure_api_configured(self) -> None:
        if self._headers is not None:
            return

        api_key = self._api_key or os.environ.get(self._config.api_key_env)
        if not api_key:
            raise PerceptionConfigError(f"{self._config.api_key_env} environment variable not set")

        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "HTTP-Referer": self._config.referer,
            "X-Title": self._config.title,
            "Content-Type": "application/json",
        }

    def _extract_response_content(self, response: Any) -> Optional[str]:
        if not isinstance(response, dict):
            return None
        choices = response.get("choices")
        if not isinstance(choices, list) or not choices:
            return None
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            return None
        content = message.get("content")
        if isinstance(content, list):
            # Some providers return content parts instead of a string.
            content = "".join(part.get("text", "") for part in content if isinstance(part, dict))
        if not content:
            return None
        return str(content).strip()


def describe_target(target: Target) -> str:
    """One-line human-readable summary used in logs."""

    if isinstance(target, GridCellTarget):
        if target.end_cell is not None:
            return f"drag {target.cell} -> {target.end_cell}"
        suffix = f" ({target.label})" if target.label else ""
        return f"click {target.cell}{suffix}"
    if isinstance(target, LabelTarget):
        return f"click label {target.label!r}"
    if isinstance(target, PixelTarget):
        if target.end is not None:
            return f"drag ({target.x}, {target.y}) -> {target.end}"
        return f"click ({target.x}, {target.y})"
    if isinstance(target, KeyTarget):
        return f"{target.action.value} {'+'.join(target.keys)}"
    if isinstance(target, WaitTarget):
        return f"wait {target.duration_ms}ms"
    return "nothing found"


def target_to_dict(target: Target) -> Dict[str, Any]:
    """JSON-friendly view of a target for attempt logs."""

    data: Dict[str, Any] = {"type": type(target).__name__, "summary": describe_target(target)}
    for name in ("rationale", "confidence"):
        data[name] = getattr(target, name, None)
    return data


__all__ = [
    "ActionKind",
    "GridCellTarget",
    "KeyTarget",
    "LabelTarget",
    "NotFound",
    "NothingFoundError",
    "OracleTimeoutError",
    "OracleUnreachableError",
    "PerceptionClient",
    "PerceptionConfigError",
    "PerceptionError",
    "PixelTarget",
    "Target",
    "UnparsableResponseError",
    "WaitTarget",
    "describe_target",
    "extract_json_payload",
    "parse_target_entry",
    "parse_targets",
    "target_to_dict",
]
