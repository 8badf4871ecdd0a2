import tempfile
import unittest
from pathlib import Path

from playprobe_runtime.config import ConfigError, load_config
from playprobe_runtime.errors import ErrorCategory


class LoadConfigTest(unittest.TestCase):
    def test_defaults_when_missing_file(self) -> None:
        config = load_config(Path("nonexistent.yaml"))
        self.assertTrue(config.browser.headless)
        self.assertEqual(config.browser.viewport_width, 1280)
        self.assertEqual(config.browser.viewport_height, 720)
        self.assertEqual(config.capture.output_dir, Path("captures"))
        self.assertEqual((config.grid.columns, config.grid.rows), (20, 12))
        self.assertEqual(config.perception.request_timeout_s, 30.0)
        self.assertEqual(config.gameplay.cache_size, 50)
        self.assertEqual(config.retry.perception.max_attempts, 3)
        self.assertNotIn(ErrorCategory.CONTROL_SURFACE, config.retry.perception.retryable)
        self.assertIn(ErrorCategory.CONTROL_SURFACE, config.retry.actuation.retryable)
        self.assertFalse(config.recording.enabled)

    def test_overrides_apply(self) -> None:
        yaml_content = """
browser:
  headless: false
  viewport:
    width: 800
    height: 600
  blocked_hosts: [ads.example.com]
capture:
  output_dir: temp_captures
  save_frames: false
  validation:
    min_mean_luminance: 15
    min_luminance_stddev: 2
  retention:
    max_captures: 20
grid:
  columns: 10
  rows: 6
input:
  settle_delay_s: 0.25
  drag_steps: 4
retry:
  perception:
    max_attempts: 5
    initial_delay_s: 0.5
    retryable: [timeout, Connectivity]
gameplay:
  attempt_ceiling: 2
  logs_dir: temp_logs
  mechanics: drag the bird
recording:
  enabled: true
  quality: 60
"""
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_path = Path(tmpdir) / "config.yaml"
            cfg_path.write_text(yaml_content, encoding="utf-8")

            config = load_config(cfg_path)

        self.assertFalse(config.browser.headless)
        self.assertEqual((config.browser.viewport_width, config.browser.viewport_height), (800, 600))
        self.assertEqual(config.browser.blocked_hosts, ["ads.example.com"])
        self.assertEqual(config.capture.output_dir, Path("temp_captures"))
        self.assertFalse(config.capture.save_frames)
        self.assertEqual(config.capture.validation.min_mean_luminance, 15.0)
        self.assertEqual(config.capture.retention.max_captures, 20)
        self.assertEqual((config.grid.columns, config.grid.rows), (10, 6))
        self.assertAlmostEqual(config.input.settle_delay_s, 0.25)
        self.assertEqual(config.input.drag_steps, 4)
        self.assertEqual(config.retry.perception.max_attempts, 5)
        self.assertAlmostEqual(config.retry.perception.initial_delay_s, 0.5)
        self.assertEqual(
            config.retry.perception.retryable,
            frozenset({ErrorCategory.TIMEOUT, ErrorCategory.CONNECTIVITY}),
        )
        self.assertEqual(config.gameplay.attempt_ceiling, 2)
        self.assertEqual(config.gameplay.logs_dir, Path("temp_logs"))
        self.assertEqual(config.gameplay.mechanics, "drag the bird")
        self.assertTrue(config.recording.enabled)
        self.assertEqual(config.recording.quality, 60)

    def test_invalid_grid_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_path = Path(tmpdir) / "config.yaml"
            cfg_path.write_text("grid:\n  columns: 0\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config(cfg_path)

    def test_unknown_retry_category_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_path = Path(tmpdir) / "config.yaml"
            cfg_path.write_text("retry:\n  perception:\n    retryable: [weather]\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config(cfg_path)

    def test_prompt_style_validated(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_path = Path(tmpdir) / "config.yaml"
            cfg_path.write_text("gameplay:\n  prompt_style: Slingshot\n", encoding="utf-8")
            self.assertEqual(load_config(cfg_path).gameplay.prompt_style, "slingshot")
            cfg_path.write_text("gameplay:\n  prompt_style: puzzle\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config(cfg_path)

    def test_bad_values_become_config_errors(self) -> None:
        cases = {
            "non-numeric grid": "grid:\n  columns: twenty\n",
            "list for a number": "input:\n  drag_steps: [1, 2]\n",
            "null timeout": "perception:\n  request_timeout_s: null\n",
            "section not a mapping": "browser: [headless]\n",
            "broken yaml": "grid: {columns: 4\n",
        }
        for name, content in cases.items():
            with self.subTest(case=name), tempfile.TemporaryDirectory() as tmpdir:
                cfg_path = Path(tmpdir) / "config.yaml"
                cfg_path.write_text(content, encoding="utf-8")
                with self.assertRaises(ConfigError):
                    load_config(cfg_path)

    def test_sample_config_matches_defaults(self) -> None:
        sample = Path(__file__).resolve().parent.parent / "config.yaml"
        config = load_config(sample)
        self.assertEqual((config.grid.columns, config.grid.rows), (20, 12))
        self.assertEqual(config.gameplay.attempt_ceiling, 5)
        self.assertIn(ErrorCategory.CONTROL_SURFACE, config.retry.capture.retryable)


if __name__ == "__main__":
    unittest.main()
