import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from main import build_parser, main
from playprobe_agent.controller import SessionReport
from playprobe_agent.launcher import LaunchReport
from playprobe_agent.runner import ProbeReport, derive_game_id
from playprobe_runtime.retry import AttemptResult


class DeriveGameIdTest(unittest.TestCase):
    def test_host_and_path(self) -> None:
        cases = {
            "https://poki.com/en/g/angry-birds": "poki_com_en_g_angry_birds",
            "https://example.com/": "example_com",
            "http://localhost:8000/games/Pacman.html": "localhost_8000_games_pacman_html",
            "???": "game",
        }
        for url, expected in cases.items():
            with self.subTest(url=url):
                self.assertEqual(derive_game_id(url), expected)


class ProbeReportTest(unittest.TestCase):
    def test_succeeded_needs_a_successful_attempt(self) -> None:
        report = ProbeReport(url="https://example.com", game_id="example_com")
        self.assertFalse(report.succeeded)

        report.session = SessionReport(game_id="example_com", attempts=[AttemptResult(succeeded=False)])
        self.assertFalse(report.succeeded)

        report.session.attempts.append(AttemptResult(succeeded=True, outcome="unknown"))
        self.assertTrue(report.succeeded)

    def test_to_dict_is_json_ready(self) -> None:
        report = ProbeReport(
            url="https://example.com",
            game_id="example_com",
            started_at=datetime(2024, 1, 2, 3, 4, 5),
            launch=LaunchReport(url="https://example.com", navigated=True),
            render_mode="surface",
            errors=["final capture: boom"],
        )
        data = report.to_dict()
        self.assertEqual(data["started_at"], "2024-01-02T03:04:05")
        self.assertEqual(data["launch"]["navigated"], True)
        self.assertIsNone(data["gameplay"])
        self.assertEqual(data["render_mode"], "surface")
        self.assertEqual(data["errors"], ["final capture: boom"])
        self.assertFalse(data["succeeded"])


class ParserTest(unittest.TestCase):
    def test_defaults(self) -> None:
        args = build_parser().parse_args(["https://example.com"])
        self.assertEqual(args.classifier, "unknown")
        self.assertIsNone(args.attempts)
        self.assertIsNone(args.prompt_style)
        self.assertFalse(args.headed)

    def test_overrides(self) -> None:
        args = build_parser().parse_args(
            ["https://example.com", "--attempts", "3", "--classifier", "frame-diff", "--prompt-style", "slingshot"]
        )
        self.assertEqual(args.attempts, 3)
        self.assertEqual(args.classifier, "frame-diff")
        self.assertEqual(args.prompt_style, "slingshot")

    def test_invalid_config_value_exits_with_usage_code(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_path = Path(tmpdir) / "config.yaml"
            cfg_path.write_text("grid:\n  columns: twenty\n", encoding="utf-8")
            with self.assertLogs(level="ERROR") as logs:
                code = main(["https://example.com", "--config", str(cfg_path)])
        self.assertEqual(code, 2)
        self.assertIn("Failed to load configuration", "\n".join(logs.output))

    def test_attempts_below_one_exits_with_usage_code(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            code = main(["https://example.com", "--config", str(Path(tmpdir) / "missing.yaml"), "--attempts", "0"])
        self.assertEqual(code, 2)


if __name__ == "__main__":
    unittest.main()
