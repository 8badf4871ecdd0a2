"""Prompt templates sent to the perception oracle."""
from __future__ import annotations

from typing import Any, Sequence

from playprobe_runtime.capture import Frame
from playprobe_vision.grid import GridSpec

from .cache import CachedOutcome

START_CONTROL_PROMPT = """Game screenshot analysis. Grid overlay: {grid}.

Is the game already playing? If not, which control starts it?
- ONLY consider PLAY/START controls or level numbers
- IGNORE "MORE GAMES", ads and the top navigation band (rows 1-3)
{mechanics}
Respond with a single JSON object:
{{"game_started": bool, "action_needed": bool, "button_text": "text", "grid_cell": "J10", "description": "brief"}}

Examples:
- Menu: {{"game_started": false, "action_needed": true, "button_text": "PLAY", "grid_cell": "J10", "description": "main menu"}}
- Levels: {{"game_started": false, "action_needed": true, "button_text": "1", "grid_cell": "D4", "description": "level select"}}
- Playing: {{"game_started": true, "action_needed": false, "button_text": "", "grid_cell": "", "description": "gameplay active"}}"""


GAMEPLAY_PROMPT = """Plan the next actions to play this game. Grid overlay: {grid}.
{mechanics}
Return a JSON array of actions, for example:
[
  {{"type": "click", "target_cell": "J10", "description": "press the play button"}},
  {{"type": "drag_slingshot", "start_cell": "E7", "end_cell": "C5", "estimated_power": 0.7, "description": "aim at the bottom structure"}},
  {{"type": "keypress", "key": "ArrowUp", "description": "move up"}},
  {{"type": "key_hold", "key": "ArrowRight", "hold_ms": 800, "description": "run right"}},
  {{"type": "key_sequence", "keys": ["w", "w", "d"], "description": "forward twice then turn"}},
  {{"type": "wait", "wait_ms": 3000, "description": "let physics settle"}}
]

Action types:
- click: single click at target_cell
- drag_slingshot: drag from start_cell to end_cell; estimated_power 0.5 medium, 0.7 strong, 1.0 maximum
- keypress: press and release one key
- key_hold: hold a key for hold_ms milliseconds
- key_release: release a held key
- key_sequence: press keys one after another
- wait: pause for wait_ms milliseconds

Keys: "ArrowUp", "ArrowDown", "ArrowLeft", "ArrowRight", "Space", "Enter", "Escape",
"Tab", "Backspace", "Delete", or single characters such as "w".

Only use cells between A1 and {last_cell}. Use keys for keyboard games and
clicks or drags for pointer games.{history}"""


SLINGSHOT_PROMPT = """Analyze this slingshot game screenshot. Grid overlay: {grid}.
{mechanics}
Identify the loaded projectile on the slingshot and where to pull it back to.

Return JSON:
{{"slingshot_cell": "E7", "target_aim_cell": "C5", "reasoning": "pull back and down for a low shot", "estimated_power": 0.7}}

- slingshot_cell: cell of the projectile on the slingshot (usually on the left)
- target_aim_cell: where to drag TO, opposite the direction of flight
- estimated_power: 0.5 medium, 0.7 strong, 1.0 maximum"""


EVALUATION_PROMPT = """You are a QA expert judging whether a web game is playable. Use the attached
screenshots and the console summary below.

Criteria:
1. Loads correctly: did the game load without critical errors?
2. Interactivity: does the game respond to input and progress?
3. Visual quality: do visuals render correctly (no broken images or blank canvas)?
4. Errors: do console errors affect gameplay?

Screenshots:
{screenshots}

Console:
{console}
Respond with ONLY this JSON object:
{{"overall_score": 0-100, "loads_correctly": true, "interactivity_score": 0-100, "visual_quality": 0-100, "error_severity": 0-100 (0 = no errors), "reasoning": "why", "issues": ["..."], "recommendations": ["..."]}}"""


def _mechanics_section(mechanics: str) -> str:
    if not mechanics or not mechanics.strip():
        return ""
    return f"\nGAME MECHANICS:\n{mechanics.strip()}\n"


def _history_section(history: Sequence[CachedOutcome], limit: int) -> str:
    recent = list(history)[-limit:]
    if not recent:
        return ""
    lines = "\n".join(f"- {entry.describe()}" for entry in recent)
    return f"\n\nActions that worked earlier in this game:\n{lines}"


def build_start_control_prompt(grid: GridSpec, mechanics: str = "") -> str:
    return START_CONTROL_PROMPT.format(grid=grid.describe(), mechanics=_mechanics_section(mechanics))


def build_gameplay_prompt(
    grid: GridSpec,
    mechanics: str = "",
    history: Sequence[CachedOutcome] = (),
    *,
    history_limit: int = 5,
) -> str:
    """Prompt for the next move, with the most recent favorable outcomes as hints."""

    return GAMEPLAY_PROMPT.format(
        grid=grid.describe(),
        mechanics=_mechanics_section(mechanics),
        last_cell=f"{grid.last_column}{grid.rows}",
        history=_history_section(history, history_limit),
    )


def build_slingshot_prompt(grid: GridSpec, mechanics: str = "") -> str:
    return SLINGSHOT_PROMPT.format(grid=grid.describe(), mechanics=_mechanics_section(mechanics))


def _console_section(console_logs: Sequence[Any], sample_errors: int) -> str:
    if not console_logs:
        return "- No console messages captured\n"

    errors = [entry for entry in console_logs if entry.level == "error"]
    warnings = [entry for entry in console_logs if entry.level in ("warning", "warn")]
    lines = [
        f"- Total messages: {len(console_logs)}",
        f"- Errors: {len(errors)}",
        f"- Warnings: {len(warnings)}",
    ]
    if errors and sample_errors > 0:
        lines.append("Sample errors:")
        lines.extend(f"- {entry.text[:300]}" for entry in errors[:sample_errors])
    return "\n".join(lines) + "\n"


def build_evaluation_prompt(frames: Sequence[Frame], console_logs: Sequence[Any] = (), *, sample_errors: int = 3) -> str:
    """Playability prompt listing each attached frame and summarising console output.

    ``console_logs`` holds objects with ``level`` and ``text`` attributes, as
    collected by the browser session.
    """
    screenshots = "\n".join(
        f"- Image {index}: {frame.phase.value} phase (captured at {frame.captured_at:%H:%M:%S})"
        for index, frame in enumerate(frames, start=1)
    )
    return EVALUATION_PROMPT.format(
        screenshots=screenshots,
        console=_console_section(console_logs, sample_errors),
    )


__all__ = [
    "EVALUATION_PROMPT",
    "GAMEPLAY_PROMPT",
    "SLINGSHOT_PROMPT",
    "START_CONTROL_PROMPT",
    "build_evaluation_prompt",
    "build_gameplay_prompt",
    "build_slingshot_prompt",
    "build_start_control_prompt",
]
