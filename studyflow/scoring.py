# studyflow/scoring.py
from typing import Hashable, Set


class AttemptTracker:
    """
    First-attempt scoring: only the first judgement of an item counts
    toward the correct/incorrect tallies. Re-presentations of the same
    item (after an incorrect or unsure answer) are recognised by id and ignored.
    """

    def __init__(self):
        self.correct_count = 0
        self.incorrect_count = 0
        self.answered_ids: Set[Hashable] = set()

    def record(self, item_id: Hashable, correct: bool) -> bool:
        """Returns True when this judgement was the item's first and was counted."""
        if item_id in self.answered_ids:
            return False
        self.answered_ids.add(item_id)
        if correct:
            self.correct_count += 1
        else:
            self.incorrect_count += 1
        return True

    def has_answered(self, item_id: Hashable) -> bool:
        return item_id in self.answered_ids

    def reset(self):
        self.correct_count = 0
        self.incorrect_count = 0
        self.answered_ids = set()
