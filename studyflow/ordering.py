# studyflow/ordering.py
import math
import random
from typing import Optional

from studyflow.models import StudyMode


def max_difficulty(active_count: int) -> int:
    """Largest n where 2^n <= active_count (0 for decks of one item or fewer)."""
    if active_count <= 1:
        return 0
    return math.floor(math.log2(active_count))


def spaced_insert_position(max_diff: int, difficulty: int, remaining_length: int) -> int:
    """
    Where a judged item goes back into the deck in spaced mode.
    Items closer to mastery (lower difficulty) move further back:
    2^(max_diff - difficulty) positions, while difficulty 0 always goes last.
    """
    if difficulty == 0:
        return remaining_length
    return min(2 ** (max_diff - difficulty), remaining_length)


def random_insert_position(remaining_length: int, rng: Optional[random.Random] = None) -> int:
    rng = rng or random
    return rng.randint(0, remaining_length)


def sequential_insert_position(remaining_length: int) -> int:
    return remaining_length


def insert_position(
    mode: StudyMode,
    max_diff: int,
    difficulty: int,
    remaining_length: int,
    rng: Optional[random.Random] = None
) -> int:
    """Dispatches to the policy of the given mode."""
    if mode == StudyMode.RANDOM:
        return random_insert_position(remaining_length, rng)
    if mode == StudyMode.SEQUENTIAL:
        return sequential_insert_position(remaining_length)
    return spaced_insert_position(max_diff, difficulty, remaining_length)


# Incorrect answers in spaced mode come back almost immediately, whatever the deck size
INCORRECT_SPACED_OFFSET = 2

def incorrect_insert_position(
    mode: StudyMode,
    max_diff: int,
    remaining_length: int,
    rng: Optional[random.Random] = None
) -> int:
    if mode == StudyMode.SPACED:
        return min(INCORRECT_SPACED_OFFSET, remaining_length)
    return insert_position(mode, max_diff, max_diff, remaining_length, rng)
