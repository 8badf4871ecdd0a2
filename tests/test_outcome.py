import unittest

from PIL import Image

from playprobe_agent.outcome import FrameDiffClassifier, OutcomeVerdict, UnknownOutcomeClassifier
from playprobe_runtime.capture import Frame


def _solid(value: int, size=(320, 180)) -> Frame:
    return Frame.from_image(Image.new("RGB", size, color=(value, value, value)))


class UnknownOutcomeClassifierTest(unittest.TestCase):
    def test_always_unknown(self) -> None:
        verdict = UnknownOutcomeClassifier().classify(_solid(0), _solid(255), [])
        self.assertEqual(verdict, OutcomeVerdict(label="unknown"))
        self.assertFalse(verdict.favorable)


class FrameDiffClassifierTest(unittest.TestCase):
    def test_identical_frames_are_static(self) -> None:
        verdict = FrameDiffClassifier().classify(_solid(40), _solid(40), [])
        self.assertEqual(verdict.label, "static")
        self.assertFalse(verdict.favorable)
        self.assertEqual(verdict.score, 0.0)

    def test_large_change_is_favorable(self) -> None:
        verdict = FrameDiffClassifier().classify(_solid(0), _solid(255), [])
        self.assertEqual(verdict.label, "changed")
        self.assertTrue(verdict.favorable)
        self.assertAlmostEqual(verdict.score, 1.0, places=3)

    def test_threshold_boundary(self) -> None:
        # Luma moves by 10/255 (about 0.039).
        before, after = _solid(100), _solid(110)
        self.assertTrue(FrameDiffClassifier(change_threshold=0.03).classify(before, after, []).favorable)
        self.assertFalse(FrameDiffClassifier(change_threshold=0.05).classify(before, after, []).favorable)

    def test_mismatched_sizes_are_resized(self) -> None:
        score = FrameDiffClassifier().diff_score(_solid(50, (640, 360)), _solid(50, (320, 180)))
        self.assertAlmostEqual(score, 0.0, places=3)

    def test_undecodable_frame_is_unknown(self) -> None:
        broken = Frame(data=b"garbage", width=10, height=10)
        with self.assertLogs("playprobe_agent.outcome", level="WARNING"):
            verdict = FrameDiffClassifier().classify(broken, _solid(0), [])
        self.assertEqual(verdict.label, "unknown")
        self.assertFalse(verdict.favorable)


if __name__ == "__main__":
    unittest.main()
