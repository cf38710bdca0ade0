# studyflow/coordinator.py
import logging
import random
from enum import Enum
from operator import attrgetter
from typing import Any, Callable, Hashable, Iterable, List, Optional, Set

from studyflow.deck import DECK_EXHAUSTED, Deck
from studyflow.models import DeckStats, StudyMode
from studyflow.scoring import AttemptTracker

logger = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    STUDYING_LABEL = "studying_label"
    CARD_COMPLETE = "card_complete"


class TwoLevelCoordinator:
    """
    Nested study: an outer deck of cards, each card carrying its own inner deck of labels.

    Labels are judged one at a time. Once every label of the current card
    has had its first judgement (or no active label is left) the card is
    complete, and next_card() scores the card itself: correct only when
    none of its labels was missed on the first attempt.
    """

    def __init__(
        self,
        cards: Iterable[Any],
        labels_of: Callable[[Any], Iterable[Any]] = attrgetter("labels"),
        card_key: Optional[Callable[[Any], Hashable]] = attrgetter("id"),
        label_key: Optional[Callable[[Any], Hashable]] = attrgetter("id"),
        card_mode: StudyMode = StudyMode.SPACED,
        label_mode: StudyMode = StudyMode.SEQUENTIAL,
        rng: Optional[random.Random] = None
    ):
        self.cards = list(cards)
        self.labels_of = labels_of
        self.card_key = card_key
        self.label_key = label_key
        self.label_mode = StudyMode(label_mode)
        self.rng = rng or random.Random()
        self.correct_count = 0
        self.incorrect_count = 0
        self.outer = Deck(self.cards, card_mode, key=card_key, rng=self.rng)
        self._rebuild_inner()

    # --- State ---

    @property
    def card_mode(self) -> StudyMode:
        return self.outer.mode

    @property
    def answered_inner(self) -> Set[Hashable]:
        return self.label_tracker.answered_ids

    @property
    def state(self) -> CoordinatorState:
        # An empty card, or one whose labels are all banned, is complete straight away
        if self.inner.active_count == 0:
            return CoordinatorState.CARD_COMPLETE
        pending = [
            item for item in self.inner.items
            if not item.banned and item.item_id not in self.answered_inner
        ]
        if not pending:
            return CoordinatorState.CARD_COMPLETE
        return CoordinatorState.STUDYING_LABEL

    def current_card(self) -> Any:
        return self.outer.current()

    def current_label(self) -> Any:
        if self.state == CoordinatorState.CARD_COMPLETE:
            return None
        return self.inner.current()

    def stats(self) -> DeckStats:
        stats = self.outer.stats()
        stats.correct_count = self.correct_count
        stats.incorrect_count = self.incorrect_count
        return stats

    # --- Label judgements ---

    def judge(self, correct: bool) -> CoordinatorState:
        if correct:
            return self._judge_label(self.inner.correct, True)
        return self._judge_label(self.inner.incorrect, False)

    def unsure(self) -> CoordinatorState:
        return self._judge_label(self.inner.unsure, False)

    def _judge_label(self, operation: Callable[[], Any], correct: bool) -> CoordinatorState:
        if self.state == CoordinatorState.CARD_COMPLETE:
            return CoordinatorState.CARD_COMPLETE
        self._record(self.inner.current_item().item_id, correct)
        operation()
        return self.state

    def find_label(self, label_id: Hashable) -> Any:
        """Payload of the current card's label with this id, or None."""
        item = self._label_item(label_id)
        return item.payload if item else None

    def answer_label(self, label_id: Hashable, correct: bool) -> CoordinatorState:
        """
        All-at-once study: any pending label of the current card can be answered,
        in any order. The label deck keeps its order; only the first answer
        for a label counts and later ones are ignored.
        """
        item = self._label_item(label_id)
        if item is None or item.banned or item.item_id in self.answered_inner:
            return self.state
        self._record(item.item_id, correct)
        return self.state

    def _record(self, label_id: Hashable, correct: bool):
        if self.label_tracker.record(label_id, correct):
            if correct:
                self.correct_count += 1
            else:
                self.incorrect_count += 1
                self.missed_inner.add(label_id)

    def _label_item(self, label_id: Hashable):
        return next((item for item in self.inner.items if item.item_id == label_id), None)

    def skip_label(self):
        return self.inner.skip()

    def ban_label(self):
        return self.inner.ban()

    # --- Card navigation ---

    def next_card(self):
        """Scores the completed card and moves on; no-op while labels are pending."""
        if self.state != CoordinatorState.CARD_COMPLETE:
            return None
        if self.outer.exhausted:
            return DECK_EXHAUSTED
        if self.missed_inner:
            result = self.outer.incorrect()
        else:
            result = self.outer.correct()
        self._rebuild_inner()
        return result

    def previous_card(self) -> bool:
        undone = self.outer.undo()
        self._sync_inner()
        return undone

    def skip_card(self):
        result = self.outer.skip()
        self._sync_inner()
        return result

    def ban_card(self):
        result = self.outer.ban()
        self._sync_inner()
        return result

    def unban_card(self, index: int) -> bool:
        unbanned = self.outer.unban(index)
        self._sync_inner()
        return unbanned

    def restart(self):
        self.outer.restart()
        self.correct_count = 0
        self.incorrect_count = 0
        self._rebuild_inner()

    def set_card_mode(self, mode: StudyMode):
        """A mode switch is a full restart of the card deck."""
        logger.info("Card mode -> %s", StudyMode(mode).value)
        self.outer = Deck(self.cards, mode, key=self.card_key, rng=self.rng)
        self.correct_count = 0
        self.incorrect_count = 0
        self._rebuild_inner()

    def set_label_mode(self, mode: StudyMode):
        logger.info("Label mode -> %s", StudyMode(mode).value)
        self.label_mode = StudyMode(mode)
        self._rebuild_inner()

    # --- Internals ---

    def _rebuild_inner(self):
        card = self.outer.current_item()
        labels: List[Any] = list(self.labels_of(card.payload)) if card else []
        self._inner_card_id = card.item_id if card else None
        self.inner = Deck(labels, self.label_mode, key=self.label_key, rng=self.rng)
        self.label_tracker = AttemptTracker()
        self.missed_inner: Set[Hashable] = set()

    def _sync_inner(self):
        card = self.outer.current_item()
        if (card.item_id if card else None) != self._inner_card_id:
            self._rebuild_inner()
