# studyflow/session.py
import logging
import random
import re
import uuid
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

from studyflow.deck import DECK_EXHAUSTED, Deck
from studyflow.models import DeckStats, ItemMeta, StudyMode
from studyflow.scoring import AttemptTracker

logger = logging.getLogger(__name__)

CURRENT_CHANGED = "current_changed"
SIDE_FLIPPED = "side_flipped"

IMAGE_MARKER = re.compile(r"\|\|\|IMG:([^|]+)\|\|\|")


# --- Sheet helpers ---

def parse_cell_content(value: str) -> Tuple[str, List[str]]:
    """Splits a cell into its text and the image refs embedded as |||IMG:ref|||."""
    images = IMAGE_MARKER.findall(value or "")
    text = IMAGE_MARKER.sub("", value or "").strip()
    return text, images


def split_sheet(rows: Sequence[Sequence[str]]) -> Tuple[List[str], List[List[str]]]:
    """First row is the header row, every non-blank row after it is a flashcard."""
    if not rows:
        return [], []
    headers = [(cell or "").strip() or f"Column {i + 1}" for i, cell in enumerate(rows[0])]
    cards = [list(row) for row in rows[1:] if any((cell or "").strip() for cell in row)]
    return headers, cards


class ReviewSession:
    """
    Caller-facing study session: a Deck plus first-attempt scoring.

    Listeners are called as listener(event, session) when the current item
    changes or the answer side is flipped; they never influence scheduling.
    """

    def __init__(
        self,
        payloads: Iterable[Any],
        mode: StudyMode = StudyMode.SPACED,
        key: Optional[Callable[[Any], Hashable]] = None,
        rng: Optional[random.Random] = None
    ):
        self.payloads = list(payloads)
        self.key = key
        self.rng = rng or random.Random()
        self.tracker = AttemptTracker()
        self.listeners: List[Callable[[str, "ReviewSession"], None]] = []
        self.deck = Deck(self.payloads, mode, key=key, rng=self.rng)
        self._last_current_id = self._current_id()

    @property
    def mode(self) -> StudyMode:
        return self.deck.mode

    @property
    def exhausted(self) -> bool:
        return self.deck.exhausted

    @property
    def can_undo(self) -> bool:
        return self.deck.can_undo

    def current(self) -> Any:
        return self.deck.current()

    def current_meta(self) -> Optional[ItemMeta]:
        return self.deck.current_meta()

    def stats(self) -> DeckStats:
        stats = self.deck.stats()
        stats.correct_count = self.tracker.correct_count
        stats.incorrect_count = self.tracker.incorrect_count
        return stats

    # --- Judgements ---

    def correct(self):
        return self._judge(self.deck.correct, True)

    def incorrect(self):
        return self._judge(self.deck.incorrect, False)

    def unsure(self):
        return self._judge(self.deck.unsure, False)

    def _judge(self, operation: Callable[[], Any], correct: bool):
        item = self.deck.current_item()
        if item is None:
            return DECK_EXHAUSTED
        self.tracker.record(item.item_id, correct)
        return self._after(operation())

    # --- Navigation ---

    def ban(self):
        return self._after(self.deck.ban())

    def unban(self, index: int) -> bool:
        unbanned = self.deck.unban(index)
        self._after(None)
        return unbanned

    def skip(self):
        return self._after(self.deck.skip())

    def undo(self) -> bool:
        # Tallies are owned by the tracker and stay as recorded
        undone = self.deck.undo()
        self._after(None)
        return undone

    def shuffle(self):
        self.deck.shuffle()
        self._after(None)

    def restart(self):
        self.deck.restart()
        self.tracker.reset()
        self._after(None)

    def set_mode(self, mode: StudyMode):
        """Switching modes is a full reset: fresh deck, fresh tallies."""
        mode = StudyMode(mode)
        logger.info("Switching session to %s mode", mode.value)
        self.deck = Deck(self.payloads, mode, key=self.key, rng=self.rng)
        self.tracker.reset()
        self._after(None)

    # --- Notifications ---

    def _current_id(self) -> Optional[Hashable]:
        item = self.deck.current_item()
        return item.item_id if item else None

    def _after(self, result):
        current_id = self._current_id()
        if current_id != self._last_current_id:
            self._last_current_id = current_id
            self._on_current_changed()
        return result

    def _on_current_changed(self):
        self.notify(CURRENT_CHANGED)

    def notify(self, event: str):
        for listener in self.listeners:
            listener(event, self)


class FlashcardSession(ReviewSession):
    """Study session over the rows of a sheet, with question/answer column selection."""

    def __init__(
        self,
        rows: Sequence[Sequence[str]],
        mode: StudyMode = StudyMode.SPACED,
        question_columns: Iterable[int] = (0,),
        answer_columns: Iterable[int] = (1,),
        rng: Optional[random.Random] = None
    ):
        self.headers, cards = split_sheet(rows)
        self.question_columns = sorted(set(question_columns))
        self.answer_columns = sorted(set(answer_columns))
        self.show_answer = False
        super().__init__(cards, mode, rng=rng)

    def _side_text(self, columns: List[int]) -> Optional[str]:
        card = self.current()
        if card is None:
            return None
        parts = [parse_cell_content(card[c])[0] for c in columns if 0 <= c < len(card)]
        return " / ".join(part for part in parts if part)

    def front(self) -> Optional[str]:
        return self._side_text(self.question_columns)

    def back(self) -> Optional[str]:
        return self._side_text(self.answer_columns)

    def visible_text(self) -> Optional[str]:
        return self.back() if self.show_answer else self.front()

    def flip(self) -> bool:
        self.show_answer = not self.show_answer
        self.notify(SIDE_FLIPPED)
        return self.show_answer

    def set_columns(self, question_columns: Iterable[int], answer_columns: Iterable[int]):
        self.question_columns = sorted(set(question_columns))
        self.answer_columns = sorted(set(answer_columns))
        # The visible text changes even though the card does not
        self.show_answer = False
        self.notify(CURRENT_CHANGED)

    def _after(self, result):
        # Any scoring or navigation action hides the answer again
        self.show_answer = False
        return super()._after(result)


class SessionRegistry:
    """In-memory home of live study sessions; nothing here survives a restart."""

    def __init__(self):
        self._sessions: Dict[str, Any] = {}

    def add(self, session: Any) -> str:
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = session
        logger.info("Started %s %s", type(session).__name__, session_id)
        return session_id

    def get(self, session_id: str, kind: Optional[type] = None) -> Optional[Any]:
        session = self._sessions.get(session_id)
        if session is not None and kind is not None and not isinstance(session, kind):
            return None
        return session

    def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def __len__(self):
        return len(self._sessions)
