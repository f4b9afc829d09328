"""
wavesched — Target Selection Tests
"""

import os
import sys
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from wavesched.targets import TargetCandidate, is_usable, pick_target, rank_targets


CANDIDATES = [
    TargetCandidate("n00dles", 1_750_000, required_level=1),
    TargetCandidate("foodnstuff", 50_000_000, required_level=1),
    TargetCandidate("sigma-cosmetics", 50_000_000, required_level=5),
    TargetCandidate("phantasy", 600_000_000, required_level=100, rooted=False),
    TargetCandidate("megacorp", 1e12, required_level=1200),
    TargetCandidate("darkweb", 0, required_level=1),
]


class TestTargets(unittest.TestCase):

    def test_usable(self):
        self.assertTrue(is_usable(CANDIDATES[0], 1))
        self.assertFalse(is_usable(CANDIDATES[3], 1000))
        self.assertFalse(is_usable(CANDIDATES[4], 100))
        self.assertFalse(is_usable(CANDIDATES[5], 100))

    def test_rank_by_value_then_name(self):
        ranked = rank_targets(CANDIDATES, skill_level=10)
        self.assertEqual(
            [c.name for c in ranked],
            ["foodnstuff", "sigma-cosmetics", "n00dles"],
        )

    def test_pick(self):
        self.assertEqual(pick_target(CANDIDATES, 2000), "megacorp")
        self.assertEqual(pick_target(CANDIDATES, 1), "foodnstuff")
        self.assertIsNone(pick_target(CANDIDATES, 0))
        self.assertIsNone(pick_target([], 100))


if __name__ == "__main__":
    unittest.main()
