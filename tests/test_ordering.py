# tests/test_ordering.py

import random
import unittest

from studyflow.models import StudyMode
from studyflow.ordering import (
    incorrect_insert_position, insert_position, max_difficulty, random_insert_position,
    sequential_insert_position, spaced_insert_position
)

class TestOrderingPolicy(unittest.TestCase):

    def test_max_difficulty_small_decks(self):
        """Test max difficulty for decks of up to three items."""
        self.assertEqual(max_difficulty(0), 0)
        self.assertEqual(max_difficulty(1), 0)
        self.assertEqual(max_difficulty(2), 1)
        self.assertEqual(max_difficulty(3), 1)

    def test_max_difficulty_is_floor_log2(self):
        """Test that max difficulty is floor(log2(active count))."""
        self.assertEqual(max_difficulty(7), 2)
        self.assertEqual(max_difficulty(8), 3)
        self.assertEqual(max_difficulty(15), 3)
        self.assertEqual(max_difficulty(16), 4)
        self.assertEqual(max_difficulty(1000), 9)

    def test_spaced_mastered_goes_last(self):
        """Test that difficulty 0 appends in spaced mode."""
        self.assertEqual(spaced_insert_position(3, 0, 7), 7)

    def test_spaced_formula(self):
        """Test the 2^(max - difficulty) spaced position."""
        # Difficulty 2 of max 3 moves back 2^(3-2) = 2 positions
        self.assertEqual(spaced_insert_position(3, 2, 7), 2)
        # Just failed: reappears right after the next item
        self.assertEqual(spaced_insert_position(3, 3, 7), 1)
        self.assertEqual(spaced_insert_position(3, 1, 7), 4)

    def test_spaced_position_capped_by_remaining_length(self):
        """Test that the spaced position never passes the end of the deck."""
        self.assertEqual(spaced_insert_position(4, 1, 3), 3)

    def test_sequential_always_appends(self):
        """Test that sequential mode always appends."""
        self.assertEqual(sequential_insert_position(0), 0)
        self.assertEqual(sequential_insert_position(12), 12)
        self.assertEqual(insert_position(StudyMode.SEQUENTIAL, 3, 3, 5), 5)

    def test_random_position_within_bounds(self):
        """Test that random positions cover the whole range."""
        rng = random.Random(42)
        positions = {random_insert_position(4, rng) for _ in range(500)}
        self.assertEqual(positions, {0, 1, 2, 3, 4})

    def test_random_position_is_reproducible_with_seed(self):
        """Test that a seeded rng gives the same positions."""
        first = [random_insert_position(10, random.Random(7)) for _ in range(3)]
        second = [random_insert_position(10, random.Random(7)) for _ in range(3)]
        self.assertEqual(first, second)

    def test_insert_position_dispatches_spaced(self):
        """Test that insert_position uses the spaced formula in spaced mode."""
        self.assertEqual(insert_position(StudyMode.SPACED, 3, 2, 7), 2)

    def test_incorrect_spaced_is_near_immediate(self):
        """Test that incorrect answers in spaced mode come back within two places."""
        for remaining in (1, 2, 7, 100):
            self.assertEqual(incorrect_insert_position(StudyMode.SPACED, 6, remaining), min(2, remaining))

    def test_incorrect_sequential_appends(self):
        """Test that incorrect answers in sequential mode append."""
        self.assertEqual(incorrect_insert_position(StudyMode.SEQUENTIAL, 3, 9), 9)
