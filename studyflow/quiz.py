# studyflow/quiz.py
import logging
import random
from typing import List, Optional, Sequence

from studyflow.deck import Deck
from studyflow.models import (
    DeckStats, QuestionType, QuizAnswer, QuizOptions, QuizQuestion, QuizResult, StudyMode,
    WrongAnswerBehavior
)
from studyflow.scoring import AttemptTracker
from studyflow.session import parse_cell_content, split_sheet

logger = logging.getLogger(__name__)


def answer_matches(given: str, expected: str) -> bool:
    return (given or "").strip().lower() == (expected or "").strip().lower()


def build_questions(
    cards: Sequence[Sequence[str]],
    options: QuizOptions,
    rng: random.Random
) -> List[QuizQuestion]:
    indexed = list(enumerate(cards))
    rng.shuffle(indexed)
    questions = []
    for index, card in indexed[:options.question_count]:
        question_text, images = parse_cell_content(_cell(card, options.question_column))
        answer_text, _ = parse_cell_content(_cell(card, options.answer_column))
        questions.append(QuizQuestion(
            question_text=question_text,
            correct_answer=answer_text,
            question_images=images,
            card_index=index
        ))
    return questions


def _cell(card: Sequence[str], column: int) -> str:
    return card[column] if 0 <= column < len(card) else ""


class QuizSession:
    """
    A one-pass quiz over sheet rows, scheduled sequentially and scored on first attempts.
    With the retry behaviour a wrong answer keeps the question in front of the user.
    """

    def __init__(self, rows: Sequence[Sequence[str]], options: QuizOptions, rng: Optional[random.Random] = None):
        self.options = options
        self.rng = rng or random.Random()
        self.headers, self.cards = split_sheet(rows)
        self.questions = build_questions(self.cards, options, self.rng)
        self.deck = Deck(self.questions, StudyMode.SEQUENTIAL, key=lambda q: q.card_index, rng=self.rng)
        self.tracker = AttemptTracker()
        self.answers: List[QuizAnswer] = []
        self.completed = set()
        self.last_correct: Optional[bool] = None
        self._options_for = None
        self._mcq_options: List[str] = []

    @property
    def finished(self) -> bool:
        return len(self.completed) >= len(self.questions)

    def current(self) -> Optional[QuizQuestion]:
        if self.finished:
            return None
        return self.deck.current()

    def mcq_options(self) -> List[str]:
        """Correct answer plus distinct wrong answers drawn from the sheet, shuffled once per question."""
        question = self.current()
        if question is None or self.options.question_type != QuestionType.MCQ:
            return []
        if self._options_for != question.card_index:
            others = []
            for card in self.cards:
                text, _ = parse_cell_content(_cell(card, self.options.answer_column))
                if text and text != question.correct_answer and text not in others:
                    others.append(text)
            self.rng.shuffle(others)
            choices = [question.correct_answer] + others[:max(0, self.options.mcq_option_count - 1)]
            self.rng.shuffle(choices)
            self._options_for = question.card_index
            self._mcq_options = choices
        return self._mcq_options

    def answer(self, given: str) -> Optional[bool]:
        question = self.current()
        if question is None:
            return None
        is_correct = answer_matches(given, question.correct_answer)
        self.last_correct = is_correct
        self.tracker.record(question.card_index, is_correct)

        if not is_correct and self.options.wrong_answer_behavior == WrongAnswerBehavior.RETRY:
            logger.debug("Retrying question %d", question.card_index)
            return is_correct

        self.answers.append(QuizAnswer(question=question, user_answer=given, is_correct=is_correct))
        self.completed.add(question.card_index)
        if is_correct:
            self.deck.correct()
        else:
            self.deck.incorrect()
        if self.finished:
            logger.info("Quiz finished: %d/%d", self.tracker.correct_count, len(self.questions))
        return is_correct

    def stats(self) -> DeckStats:
        stats = self.deck.stats()
        stats.correct_count = self.tracker.correct_count
        stats.incorrect_count = self.tracker.incorrect_count
        return stats

    def result(self) -> QuizResult:
        correct = sum(1 for answer in self.answers if answer.is_correct)
        total = len(self.answers)
        return QuizResult(
            total=total,
            correct=correct,
            percentage=round(correct / total * 100) if total else 0,
            answers=self.answers
        )
