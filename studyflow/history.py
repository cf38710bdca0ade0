# studyflow/history.py
import logging
from typing import List, Optional

from studyflow.models import ReviewItem

logger = logging.getLogger(__name__)


def copy_items(items: List[ReviewItem]) -> List[ReviewItem]:
    """Structural copy of a deck: new ReviewItem objects, payloads shared."""
    return [item.model_copy() for item in items]


class HistoryStack:
    """
    Snapshot-based undo over deck mutations.

    cursor points at the snapshot taken right before the most recent
    mutation that has not been undone yet; -1 means nothing to undo.
    """

    def __init__(self):
        self.snapshots: List[List[ReviewItem]] = []
        self.cursor = -1

    def push_snapshot(self, items: List[ReviewItem]):
        # Anything past the cursor is forward history that a new mutation invalidates
        del self.snapshots[self.cursor + 1:]
        self.snapshots.append(copy_items(items))
        self.cursor += 1

    def undo(self) -> Optional[List[ReviewItem]]:
        """Returns the items to restore, or None when there is no history."""
        if self.cursor < 0:
            return None
        restored = copy_items(self.snapshots[self.cursor])
        self.cursor -= 1
        logger.debug("Undo restored snapshot %d", self.cursor + 1)
        return restored

    @property
    def can_undo(self) -> bool:
        return self.cursor >= 0

    def clear(self):
        self.snapshots = []
        self.cursor = -1

    def __len__(self):
        return len(self.snapshots)
