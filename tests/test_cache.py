import json
import tempfile
import unittest
from pathlib import Path

from PIL import Image

from playprobe_agent.cache import ActionCache
from playprobe_runtime.capture import Frame
from playprobe_runtime.errors import PersistenceError


class ActionCacheTest(unittest.TestCase):
    def test_fifo_eviction_keeps_newest_entries(self) -> None:
        cache = ActionCache()
        for index in range(55):
            cache.record("game", f"A{index + 1}")

        entries = cache.entries()
        self.assertEqual(len(cache), 50)
        self.assertEqual(entries[0].start_cell, "A6")
        self.assertEqual(entries[-1].start_cell, "A55")

    def test_lookup_filters_by_game_in_insertion_order(self) -> None:
        cache = ActionCache(max_entries=10)
        cache.record("birds", "E7", "C5", "changed")
        cache.record("pacman", "", keys=["ArrowUp"])
        cache.record("birds", "J10")

        birds = cache.lookup("birds")
        self.assertEqual([entry.start_cell for entry in birds], ["E7", "J10"])
        self.assertEqual(birds[0].end_cell, "C5")
        self.assertEqual(birds[0].outcome, "changed")
        self.assertEqual(cache.lookup("pacman")[0].keys, ("ArrowUp",))
        self.assertEqual(cache.lookup("unknown-game"), [])

    def test_snapshot_respects_size_limit(self) -> None:
        frame = Frame.from_image(Image.new("RGB", (8, 8)))
        small = ActionCache(snapshot_limit_bytes=len(frame.data)).record("g", "A1", frame=frame)
        large = ActionCache(snapshot_limit_bytes=len(frame.data) - 1).record("g", "A1", frame=frame)
        self.assertEqual(small.snapshot, frame.to_base64())
        self.assertIsNone(large.snapshot)

    def test_describe(self) -> None:
        cache = ActionCache()
        self.assertEqual(cache.record("g", "E7", "C5", "changed").describe(), "drag E7 -> C5: changed")
        self.assertEqual(cache.record("g", "J10").describe(), "click J10: unknown")
        self.assertEqual(cache.record("g", "", keys=("w", "d")).describe(), "keys w+d: unknown")

    def test_export_writes_json(self) -> None:
        cache = ActionCache()
        cache.record("g", "B2", outcome="changed")
        with tempfile.TemporaryDirectory() as tmpdir:
            path = cache.export(Path(tmpdir) / "nested" / "cache.json")
            payload = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(payload[0]["start_cell"], "B2")
        self.assertEqual(payload[0]["outcome"], "changed")
        self.assertEqual(payload[0]["keys"], [])

    def test_export_failure_is_persistence_error(self) -> None:
        cache = ActionCache()
        with tempfile.TemporaryDirectory() as tmpdir:
            blocker = Path(tmpdir) / "file"
            blocker.write_text("x", encoding="utf-8")
            with self.assertRaises(PersistenceError):
                cache.export(blocker / "cache.json")

    def test_bound_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            ActionCache(max_entries=0)


if __name__ == "__main__":
    unittest.main()
