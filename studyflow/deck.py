# studyflow/deck.py
import logging
import random
from typing import Any, Callable, Hashable, Iterable, List, Optional

from studyflow.history import HistoryStack
from studyflow.models import DeckStats, ItemMeta, ReviewItem, StudyMode
from studyflow.ordering import insert_position, incorrect_insert_position, max_difficulty

logger = logging.getLogger(__name__)

BANNED = -1


class _DeckExhausted:
    """Returned by scoring operations when no active item is left."""

    def __bool__(self):
        return False

    def __repr__(self):
        return "DECK_EXHAUSTED"

DECK_EXHAUSTED = _DeckExhausted()


class Deck:
    """
    An ordered rotation of ReviewItems; items[0] is the current item.

    Judgements remove the current item and splice it back in at a position
    chosen by the deck's mode. Banned items stay in the list but are never
    current. Every judgement, ban and skip is undoable through the history.
    """

    def __init__(
        self,
        payloads: Iterable[Any],
        mode: StudyMode = StudyMode.SPACED,
        key: Optional[Callable[[Any], Hashable]] = None,
        rng: Optional[random.Random] = None
    ):
        self.mode = StudyMode(mode)
        self.rng = rng or random.Random()
        self.history = HistoryStack()
        self.items: List[ReviewItem] = [
            ReviewItem(item_id=key(payload) if key else position, payload=payload)
            for position, payload in enumerate(payloads)
        ]
        # Construction order, used by sequential restarts
        self._origin = {item.item_id: position for position, item in enumerate(self.items)}
        if self.mode != StudyMode.SEQUENTIAL:
            self.rng.shuffle(self.items)

    # --- Derived state ---

    @property
    def active_count(self) -> int:
        return sum(1 for item in self.items if item.difficulty != BANNED)

    @property
    def banned_count(self) -> int:
        return sum(1 for item in self.items if item.difficulty == BANNED)

    @property
    def max_difficulty(self) -> int:
        return max_difficulty(self.active_count)

    @property
    def exhausted(self) -> bool:
        return self.active_count == 0

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo

    def current_item(self) -> Optional[ReviewItem]:
        self._skip_banned()
        if not self.items or self.items[0].difficulty == BANNED:
            return None
        return self.items[0]

    def current(self) -> Any:
        item = self.current_item()
        return item.payload if item else None

    def current_meta(self) -> Optional[ItemMeta]:
        item = self.current_item()
        if item is None:
            return None
        return ItemMeta(
            difficulty=item.difficulty,
            seen=item.seen,
            mastered_on_first_try=item.mastered_on_first_try
        )

    def banned_items(self) -> List[ReviewItem]:
        return [item for item in self.items if item.difficulty == BANNED]

    def stats(self) -> DeckStats:
        active = [item for item in self.items if item.difficulty != BANNED]
        return DeckStats(
            not_seen=sum(1 for item in active if not item.seen),
            learning=sum(1 for item in active if item.seen and item.difficulty > 0),
            mastered=sum(1 for item in active if item.seen and item.difficulty == 0),
            banned=len(self.items) - len(active),
        )

    # --- Scoring operations ---

    # max difficulty follows the active population, current item included,
    # so it is read before the current item is taken off the deck.

    def correct(self):
        max_diff = self.max_difficulty
        item = self._take_current()
        if item is None:
            return DECK_EXHAUSTED
        if not item.seen:
            item.mastered_on_first_try = True
        item.seen = True
        item.difficulty = max(0, item.difficulty - 1)
        position = insert_position(self.mode, max_diff, item.difficulty, len(self.items), self.rng)
        return self._put_back(item, position, "correct")

    def incorrect(self):
        max_diff = self.max_difficulty
        item = self._take_current()
        if item is None:
            return DECK_EXHAUSTED
        item.seen = True
        item.mastered_on_first_try = False
        item.difficulty = max_diff
        position = incorrect_insert_position(self.mode, max_diff, len(self.items), self.rng)
        return self._put_back(item, position, "incorrect")

    def unsure(self):
        max_diff = self.max_difficulty
        item = self._take_current()
        if item is None:
            return DECK_EXHAUSTED
        item.seen = True
        item.mastered_on_first_try = False
        item.difficulty = max(0, max_diff - 2)
        position = insert_position(self.mode, max_diff, item.difficulty, len(self.items), self.rng)
        return self._put_back(item, position, "unsure")

    def ban(self):
        item = self._take_current()
        if item is None:
            return DECK_EXHAUSTED
        item.difficulty = BANNED
        # A smaller active population lowers the ceiling for everyone left
        ceiling = self.max_difficulty
        for other in self.items:
            if other.difficulty > ceiling:
                other.difficulty = ceiling
        # Banned items always go last, whatever the mode
        return self._put_back(item, len(self.items), "ban")

    def skip(self):
        """Moves the current item to the end without touching its scheduling fields."""
        if self.active_count <= 1:
            return self.current() if self.active_count else DECK_EXHAUSTED
        self._skip_banned()
        self.history.push_snapshot(self.items)
        self.items.append(self.items.pop(0))
        self._skip_banned()
        return self.current()

    # --- Non-scoring operations ---

    def unban(self, index: int) -> bool:
        """Re-activates the index-th banned item (in deck order). Its position is kept."""
        banned = self.banned_items()
        if index < 0 or index >= len(banned):
            return False
        banned[index].difficulty = 0
        logger.debug("Unbanned item %r", banned[index].item_id)
        self._skip_banned()
        return True

    def undo(self) -> bool:
        restored = self.history.undo()
        if restored is None:
            return False
        self.items = restored
        self._skip_banned()
        return True

    def shuffle(self):
        self.rng.shuffle(self.items)
        self._skip_banned()

    def restart(self):
        """
        Starts a new pass: every active item goes back to unseen with difficulty 0.
        Bans survive a restart; they can only be lifted with unban().
        """
        for item in self.items:
            if item.difficulty != BANNED:
                item.difficulty = 0
            item.seen = False
            item.mastered_on_first_try = False
        if self.mode == StudyMode.SEQUENTIAL:
            self.items.sort(key=lambda item: self._origin[item.item_id])
        else:
            self.rng.shuffle(self.items)
        self.history.clear()
        self._skip_banned()
        logger.debug("Deck restarted in %s mode", self.mode.value)

    # --- Internals ---

    def _take_current(self) -> Optional[ReviewItem]:
        self._skip_banned()
        if self.active_count == 0:
            return None
        self.history.push_snapshot(self.items)
        return self.items.pop(0)

    def _put_back(self, item: ReviewItem, position: int, action: str):
        self.items.insert(position, item)
        logger.debug("%s: item %r -> difficulty %d, position %d", action, item.item_id, item.difficulty, position)
        self._skip_banned()
        if self.active_count == 0:
            logger.info("Deck exhausted (%d banned)", self.banned_count)
            return DECK_EXHAUSTED
        return self.current()

    def _skip_banned(self):
        """Rotates banned items off the head so the current item is always active."""
        for position, item in enumerate(self.items):
            if item.difficulty != BANNED:
                if position:
                    self.items = self.items[position:] + self.items[:position]
                return

    def __len__(self):
        return len(self.items)
