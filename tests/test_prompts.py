import json
import unittest
from datetime import datetime

from PIL import Image

from playprobe_agent.cache import ActionCache
from playprobe_agent.prompts import (
    build_evaluation_prompt,
    build_gameplay_prompt,
    build_slingshot_prompt,
    build_start_control_prompt,
)
from playprobe_runtime.browser import ConsoleEntry
from playprobe_runtime.capture import Frame, FramePhase
from playprobe_vision.grid import GridSpec


class PromptTest(unittest.TestCase):
    def setUp(self) -> None:
        self.grid = GridSpec()

    def test_start_control_prompt_describes_grid(self) -> None:
        prompt = build_start_control_prompt(self.grid)
        self.assertIn("20x12 (columns A-T, rows 1-12)", prompt)
        self.assertIn('"grid_cell": "J10"', prompt)
        self.assertNotIn("GAME MECHANICS", prompt)

    def test_mechanics_are_included_when_given(self) -> None:
        prompt = build_start_control_prompt(self.grid, "  tap to flap  ")
        self.assertIn("GAME MECHANICS:\ntap to flap\n", prompt)
        self.assertNotIn("GAME MECHANICS", build_start_control_prompt(self.grid, "   "))

    def test_gameplay_prompt_example_is_valid_json(self) -> None:
        prompt = build_gameplay_prompt(self.grid)
        start = prompt.index("[\n")
        end = prompt.index("]\n", start) + 1
        actions = json.loads(prompt[start:end])
        self.assertEqual(
            [action["type"] for action in actions],
            ["click", "drag_slingshot", "keypress", "key_hold", "key_sequence", "wait"],
        )
        self.assertIn("between A1 and T12", prompt)

    def test_gameplay_prompt_lists_recent_history(self) -> None:
        cache = ActionCache()
        for index in range(7):
            cache.record("g", f"A{index + 1}", outcome="changed")
        prompt = build_gameplay_prompt(self.grid, history=cache.lookup("g"), history_limit=3)
        self.assertIn("Actions that worked earlier in this game:", prompt)
        self.assertIn("- click A7: changed", prompt)
        self.assertIn("- click A5: changed", prompt)
        self.assertNotIn("A4:", prompt)

    def test_gameplay_prompt_without_history(self) -> None:
        self.assertNotIn("worked earlier", build_gameplay_prompt(self.grid))

    def test_slingshot_prompt(self) -> None:
        prompt = build_slingshot_prompt(GridSpec(10, 6))
        self.assertIn("10x6", prompt)
        self.assertIn('"target_aim_cell": "C5"', prompt)

    def test_evaluation_prompt_without_console(self) -> None:
        frame = Frame.from_image(Image.new("RGB", (8, 8)), phase=FramePhase.FINAL, captured_at=datetime(2026, 3, 4, 9, 5, 7))
        prompt = build_evaluation_prompt([frame])
        self.assertIn("- Image 1: final phase (captured at 09:05:07)", prompt)
        self.assertIn("- No console messages captured", prompt)
        self.assertIn('{"overall_score": 0-100,', prompt)

    def test_evaluation_prompt_samples_errors(self) -> None:
        frame = Frame.from_image(Image.new("RGB", (8, 8)), phase=FramePhase.INITIAL)
        logs = [ConsoleEntry(level="error", text=f"error {n} " + "x" * 400, timestamp="") for n in range(5)]
        prompt = build_evaluation_prompt([frame], logs, sample_errors=2)
        self.assertIn("- Errors: 5", prompt)
        self.assertIn("- error 1 ", prompt)
        self.assertNotIn("- error 2 ", prompt)
        self.assertNotIn("x" * 300, prompt)


if __name__ == "__main__":
    unittest.main()
