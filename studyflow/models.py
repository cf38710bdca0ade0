# studyflow/models.py

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, NonNegativeInt, PositiveInt


class StudyMode(str, Enum):
    SPACED = "spaced"
    RANDOM = "random"
    SEQUENTIAL = "sequential"


# --- Scheduler Models ---

class ReviewItem(BaseModel):
    """
    A study item as the scheduler sees it: an opaque payload plus scheduling metadata.
    difficulty: -1 (banned), 0 (mastered for this pass) up to the deck's max difficulty.
    """
    item_id: Any
    payload: Any
    difficulty: int = 0
    seen: bool = False
    mastered_on_first_try: bool = False

    class Config:
        arbitrary_types_allowed = True

    @property
    def banned(self) -> bool:
        return self.difficulty == -1


class ItemMeta(BaseModel):
    difficulty: int
    seen: bool
    mastered_on_first_try: bool


class DeckStats(BaseModel):
    not_seen: int = 0
    learning: int = 0
    mastered: int = 0
    banned: int = 0
    correct_count: int = 0
    incorrect_count: int = 0


# --- Document Models ---

class SheetBase(BaseModel):
    title: str
    # Raw grid: the first row is the header row, the rest are flashcards
    rows: List[List[str]]

class SheetCreate(SheetBase):
    pass

class Sheet(SheetBase):
    id: int

    class Config:
        from_attributes = True


class DiagramLabel(BaseModel):
    id: str
    text: str
    # Geometry and styling are kept but never inspected by the scheduler
    shape_type: str = "point"
    x: float = 0.0
    y: float = 0.0
    width: Optional[float] = None
    height: Optional[float] = None
    polygon_points: Optional[List[float]] = None

class DiagramCard(BaseModel):
    id: str
    labels: List[DiagramLabel] = Field(default_factory=list)
    images: List[Dict[str, Any]] = Field(default_factory=list)
    shapes: List[Dict[str, Any]] = Field(default_factory=list)

class DiagramBase(BaseModel):
    title: str
    cards: List[DiagramCard]

class DiagramCreate(DiagramBase):
    pass

class Diagram(DiagramBase):
    id: int

    class Config:
        from_attributes = True


# --- Quiz Models ---

class QuestionType(str, Enum):
    MCQ = "mcq"
    TYPE = "type"

class WrongAnswerBehavior(str, Enum):
    RETRY = "retry"
    MOVE_ON = "move_on"
    SHOW_AT_END = "show_at_end"

class QuizOptions(BaseModel):
    question_type: QuestionType = QuestionType.TYPE
    mcq_option_count: PositiveInt = 4
    wrong_answer_behavior: WrongAnswerBehavior = WrongAnswerBehavior.MOVE_ON
    question_count: PositiveInt = 10
    question_column: NonNegativeInt = 0
    answer_column: NonNegativeInt = 1

class QuizQuestion(BaseModel):
    question_text: str
    correct_answer: str
    question_images: List[str] = Field(default_factory=list)
    card_index: int

class QuizAnswer(BaseModel):
    question: QuizQuestion
    user_answer: str
    is_correct: bool

class QuizResult(BaseModel):
    total: int
    correct: int
    percentage: int
    answers: List[QuizAnswer]


# --- Settings Model ---
class Settings(BaseModel):
    setting_name: str
    setting_value: str


# --- API Models ---

class StudyOptions(BaseModel):
    mode: Optional[StudyMode] = None
    question_columns: List[NonNegativeInt] = Field(default_factory=lambda: [0])
    answer_columns: List[NonNegativeInt] = Field(default_factory=lambda: [1])
    voice: bool = False

class ModeChange(BaseModel):
    mode: StudyMode

class ColumnChange(BaseModel):
    question_columns: List[NonNegativeInt]
    answer_columns: List[NonNegativeInt]

class StudyState(BaseModel):
    session_id: str
    headers: List[str]
    current: Optional[List[str]] = None
    front: Optional[str] = None
    back: Optional[str] = None
    show_answer: bool = False
    meta: Optional[ItemMeta] = None
    stats: DeckStats
    mode: StudyMode
    exhausted: bool
    can_undo: bool
    banned_cards: List[List[str]] = Field(default_factory=list)
    audio_url: Optional[str] = None

class DiagramStudyOptions(BaseModel):
    card_mode: Optional[StudyMode] = None
    label_mode: Optional[StudyMode] = None

class LabelJudgement(BaseModel):
    # Either the externally computed hit-test result or a typed answer
    correct: Optional[bool] = None
    answer: Optional[str] = None

class DiagramModeChange(BaseModel):
    card_mode: Optional[StudyMode] = None
    label_mode: Optional[StudyMode] = None

class DiagramStudyState(BaseModel):
    session_id: str
    state: str
    card: Optional[DiagramCard] = None
    label: Optional[DiagramLabel] = None
    answered_labels: List[str]
    incorrect_labels: List[str]
    cards_remaining: int
    card_mode: StudyMode
    label_mode: StudyMode
    stats: DeckStats
    banned_cards: List[DiagramCard] = Field(default_factory=list)

class QuizAnswerSubmit(BaseModel):
    answer: str

class QuizState(BaseModel):
    session_id: str
    question: Optional[QuizQuestion] = None
    options: List[str] = Field(default_factory=list)
    last_correct: Optional[bool] = None
    finished: bool
    stats: DeckStats
    result: Optional[QuizResult] = None
