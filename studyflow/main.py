from fastapi import FastAPI, Depends, Form, UploadFile, File, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.staticfiles import StaticFiles

import json
import logging
import os
import sqlite3
from typing import List, Optional

from studyflow import crud, models
from studyflow.coordinator import TwoLevelCoordinator
from studyflow.database import get_db, create_tables
from studyflow.models import StudyMode
from studyflow.quiz import QuizSession, answer_matches
from studyflow.session import CURRENT_CHANGED, FlashcardSession, SessionRegistry
from studyflow.voice import VoicePlayer

logger = logging.getLogger(__name__)

MEDIA_DIR = os.getenv("STUDYFLOW_MEDIA", "media")

# Fallbacks used when the settings table has no value
DEFAULT_SETTINGS = {
    "default_card_mode": StudyMode.SPACED.value,
    "default_label_mode": StudyMode.SEQUENTIAL.value,
    "voice_lang": "en",
}

STUDY_ACTIONS = ("correct", "incorrect", "unsure", "ban", "skip", "undo", "shuffle", "restart", "flip")

# URL action -> coordinator method
DIAGRAM_ACTIONS = {
    "unsure": "unsure",
    "skip-label": "skip_label",
    "ban-label": "ban_label",
    "next-card": "next_card",
    "previous-card": "previous_card",
    "skip-card": "skip_card",
    "ban-card": "ban_card",
    "restart": "restart",
}

# Call create_tables once at startup
create_tables()
app = FastAPI(title="studyflow")
app.mount("/media", StaticFiles(directory=MEDIA_DIR, check_dir=False), name="media")

# Live study sessions; they are never persisted
registry = SessionRegistry()

# Dependency
def get_database():
    yield from get_db()

def _setting(db: sqlite3.Connection, name: str) -> str:
    return crud.get_setting(db, name) or DEFAULT_SETTINGS[name]

def _get_sheet_or_404(db: sqlite3.Connection, sheet_id: int) -> models.Sheet:
    sheet = crud.get_sheet(db, sheet_id)
    if not sheet:
        raise HTTPException(status_code=404, detail="Sheet not found")
    return sheet

def _get_session_or_404(session_id: str, kind: type):
    session = registry.get(session_id, kind)
    if session is None:
        raise HTTPException(status_code=404, detail="Study session not found")
    return session

# --- Sheets ---

@app.get("/sheets", response_model=List[models.Sheet])
async def list_sheets(db: sqlite3.Connection = Depends(get_database)):
    return crud.get_all_sheets(db)

@app.post("/sheets", response_model=models.Sheet, status_code=201)
async def create_sheet(sheet: models.SheetCreate, db: sqlite3.Connection = Depends(get_database)):
    try:
        return crud.create_sheet(db, sheet)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=400, detail=f"A sheet with the title '{sheet.title}' already exists.")

@app.post("/sheets/import", response_model=models.Sheet, status_code=201)
async def import_sheet(
    title: str = Form(...),
    sheet_file: UploadFile = File(...),
    db: sqlite3.Connection = Depends(get_database)
):
    """Creates a sheet from an uploaded JSON file holding a list of rows (headers first)."""
    try:
        contents = await sheet_file.read()
        rows = json.loads(contents)
        if not isinstance(rows, list) or not all(isinstance(row, list) for row in rows):
            raise ValueError("JSON file must contain a list of rows.")
        return crud.create_sheet(db, models.SheetCreate(title=title, rows=[[str(cell) for cell in row] for row in rows]))
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=400, detail=f"A sheet with the title '{title}' already exists.")
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning("Rejected sheet upload %r: %s", title, e)
        raise HTTPException(status_code=400, detail=f"Invalid JSON file: {e}")

@app.get("/sheets/{sheet_id}", response_model=models.Sheet)
async def get_sheet(sheet_id: int, db: sqlite3.Connection = Depends(get_database)):
    return _get_sheet_or_404(db, sheet_id)

@app.put("/sheets/{sheet_id}", response_model=models.Sheet)
async def update_sheet(sheet_id: int, sheet: models.SheetCreate, db: sqlite3.Connection = Depends(get_database)):
    _get_sheet_or_404(db, sheet_id)
    return crud.update_sheet_rows(db, sheet_id, sheet.rows)

@app.delete("/sheets/{sheet_id}", status_code=204)
async def delete_sheet(sheet_id: int, db: sqlite3.Connection = Depends(get_database)):
    crud.delete_sheet(db, sheet_id)

# --- Diagrams ---

@app.post("/diagrams", response_model=models.Diagram, status_code=201)
async def create_diagram(diagram: models.DiagramCreate, db: sqlite3.Connection = Depends(get_database)):
    try:
        return crud.create_diagram(db, diagram)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=400, detail=f"A diagram with the title '{diagram.title}' already exists.")

@app.get("/diagrams/{diagram_id}", response_model=models.Diagram)
async def get_diagram(diagram_id: int, db: sqlite3.Connection = Depends(get_database)):
    diagram = crud.get_diagram(db, diagram_id)
    if not diagram:
        raise HTTPException(status_code=404, detail="Diagram not found")
    return diagram

@app.delete("/diagrams/{diagram_id}", status_code=204)
async def delete_diagram(diagram_id: int, db: sqlite3.Connection = Depends(get_database)):
    crud.delete_diagram(db, diagram_id)

# --- Settings ---

@app.get("/settings", response_model=List[models.Settings])
async def get_settings(db: sqlite3.Connection = Depends(get_database)):
    stored = {s.setting_name: s.setting_value for s in crud.get_all_settings(db)}
    return [
        models.Settings(setting_name=name, setting_value=stored.get(name, default))
        for name, default in DEFAULT_SETTINGS.items()
    ]

@app.post("/settings", response_model=models.Settings)
async def update_setting(setting: models.Settings, db: sqlite3.Connection = Depends(get_database)):
    if setting.setting_name not in DEFAULT_SETTINGS:
        raise HTTPException(status_code=400, detail=f"Unknown setting '{setting.setting_name}'")
    if setting.setting_name.endswith("_mode"):
        try:
            StudyMode(setting.setting_value)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown study mode '{setting.setting_value}'")
    return crud.set_setting(db, setting.setting_name, setting.setting_value)

# --- Flashcard study ---

def _voice_of(session: FlashcardSession) -> Optional[VoicePlayer]:
    return next((l for l in session.listeners if isinstance(l, VoicePlayer)), None)

async def _play(session: FlashcardSession):
    # gTTS goes over the network, so it must stay off the event loop
    voice = _voice_of(session)
    if voice:
        await run_in_threadpool(voice.flush)

def _study_state(session_id: str, session: FlashcardSession) -> models.StudyState:
    voice = _voice_of(session)
    audio_url = None
    if voice and voice.last_audio:
        audio_url = "/media/" + os.path.relpath(voice.last_audio, MEDIA_DIR).replace(os.sep, "/")
    return models.StudyState(
        session_id=session_id,
        headers=session.headers,
        current=session.current(),
        front=session.front(),
        back=session.back() if session.show_answer else None,
        show_answer=session.show_answer,
        meta=session.current_meta(),
        stats=session.stats(),
        mode=session.mode,
        exhausted=session.exhausted,
        can_undo=session.can_undo,
        banned_cards=[item.payload for item in session.deck.banned_items()],
        audio_url=audio_url
    )

@app.post("/sheets/{sheet_id}/study", response_model=models.StudyState, status_code=201)
async def start_study(
    sheet_id: int,
    options: models.StudyOptions = models.StudyOptions(),
    db: sqlite3.Connection = Depends(get_database)
):
    sheet = _get_sheet_or_404(db, sheet_id)
    mode = options.mode or StudyMode(_setting(db, "default_card_mode"))
    session = FlashcardSession(sheet.rows, mode, options.question_columns, options.answer_columns)
    if options.voice:
        voice = VoicePlayer(os.path.join(MEDIA_DIR, "voice"), lang=_setting(db, "voice_lang"))
        session.listeners.append(voice)
        voice(CURRENT_CHANGED, session)
        await _play(session)
    session_id = registry.add(session)
    return _study_state(session_id, session)

@app.get("/study/{session_id}", response_model=models.StudyState)
async def get_study_state(session_id: str):
    return _study_state(session_id, _get_session_or_404(session_id, FlashcardSession))

@app.delete("/study/{session_id}", status_code=204)
async def end_study(session_id: str):
    registry.remove(session_id)

@app.post("/study/{session_id}/mode", response_model=models.StudyState)
async def change_study_mode(session_id: str, change: models.ModeChange):
    session = _get_session_or_404(session_id, FlashcardSession)
    session.set_mode(change.mode)
    await _play(session)
    return _study_state(session_id, session)

@app.post("/study/{session_id}/columns", response_model=models.StudyState)
async def change_study_columns(session_id: str, change: models.ColumnChange):
    session = _get_session_or_404(session_id, FlashcardSession)
    session.set_columns(change.question_columns, change.answer_columns)
    await _play(session)
    return _study_state(session_id, session)

@app.post("/study/{session_id}/unban/{index}", response_model=models.StudyState)
async def unban_card(session_id: str, index: int):
    session = _get_session_or_404(session_id, FlashcardSession)
    if not session.unban(index):
        raise HTTPException(status_code=404, detail="Banned card not found")
    await _play(session)
    return _study_state(session_id, session)

@app.post("/study/{session_id}/{action}", response_model=models.StudyState)
async def study_action(session_id: str, action: str):
    session = _get_session_or_404(session_id, FlashcardSession)
    if action not in STUDY_ACTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown action '{action}'")
    getattr(session, action)()
    await _play(session)
    return _study_state(session_id, session)

# --- Diagram study ---

def _diagram_state(session_id: str, coordinator: TwoLevelCoordinator) -> models.DiagramStudyState:
    return models.DiagramStudyState(
        session_id=session_id,
        state=coordinator.state.value,
        card=coordinator.current_card(),
        label=coordinator.current_label(),
        answered_labels=sorted(coordinator.answered_inner),
        incorrect_labels=sorted(coordinator.missed_inner),
        cards_remaining=coordinator.outer.active_count,
        banned_cards=[item.payload for item in coordinator.outer.banned_items()],
        card_mode=coordinator.card_mode,
        label_mode=coordinator.label_mode,
        stats=coordinator.stats()
    )

@app.post("/diagrams/{diagram_id}/study", response_model=models.DiagramStudyState, status_code=201)
async def start_diagram_study(
    diagram_id: int,
    options: models.DiagramStudyOptions = models.DiagramStudyOptions(),
    db: sqlite3.Connection = Depends(get_database)
):
    diagram = crud.get_diagram(db, diagram_id)
    if not diagram:
        raise HTTPException(status_code=404, detail="Diagram not found")
    if not any(card.labels for card in diagram.cards):
        raise HTTPException(status_code=400, detail="This diagram has no labels to learn.")
    coordinator = TwoLevelCoordinator(
        diagram.cards,
        card_mode=options.card_mode or StudyMode(_setting(db, "default_card_mode")),
        label_mode=options.label_mode or StudyMode(_setting(db, "default_label_mode"))
    )
    session_id = registry.add(coordinator)
    return _diagram_state(session_id, coordinator)

@app.get("/diagram-study/{session_id}", response_model=models.DiagramStudyState)
async def get_diagram_state(session_id: str):
    return _diagram_state(session_id, _get_session_or_404(session_id, TwoLevelCoordinator))

def _label_correct(judgement: models.LabelJudgement, label) -> bool:
    if judgement.answer is not None:
        return answer_matches(judgement.answer, label.text)
    if judgement.correct is not None:
        return judgement.correct
    raise HTTPException(status_code=400, detail="Provide either 'correct' or 'answer'.")

@app.post("/diagram-study/{session_id}/judge", response_model=models.DiagramStudyState)
async def judge_label(session_id: str, judgement: models.LabelJudgement):
    coordinator = _get_session_or_404(session_id, TwoLevelCoordinator)
    label = coordinator.current_label()
    if label is not None:
        coordinator.judge(_label_correct(judgement, label))
    return _diagram_state(session_id, coordinator)

@app.post("/diagram-study/{session_id}/labels/{label_id}", response_model=models.DiagramStudyState)
async def answer_label(session_id: str, label_id: str, judgement: models.LabelJudgement):
    """Answers any label of the current card, in whatever order the user picks them."""
    coordinator = _get_session_or_404(session_id, TwoLevelCoordinator)
    label = coordinator.find_label(label_id)
    if label is None:
        raise HTTPException(status_code=404, detail="Label not found on the current card")
    coordinator.answer_label(label_id, _label_correct(judgement, label))
    return _diagram_state(session_id, coordinator)

@app.post("/diagram-study/{session_id}/modes", response_model=models.DiagramStudyState)
async def change_diagram_modes(session_id: str, change: models.DiagramModeChange):
    coordinator = _get_session_or_404(session_id, TwoLevelCoordinator)
    if change.card_mode is not None:
        coordinator.set_card_mode(change.card_mode)
    if change.label_mode is not None:
        coordinator.set_label_mode(change.label_mode)
    return _diagram_state(session_id, coordinator)

@app.post("/diagram-study/{session_id}/unban/{index}", response_model=models.DiagramStudyState)
async def unban_diagram_card(session_id: str, index: int):
    coordinator = _get_session_or_404(session_id, TwoLevelCoordinator)
    if not coordinator.unban_card(index):
        raise HTTPException(status_code=404, detail="Banned card not found")
    return _diagram_state(session_id, coordinator)

@app.post("/diagram-study/{session_id}/{action}", response_model=models.DiagramStudyState)
async def diagram_action(session_id: str, action: str):
    coordinator = _get_session_or_404(session_id, TwoLevelCoordinator)
    if action not in DIAGRAM_ACTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown action '{action}'")
    getattr(coordinator, DIAGRAM_ACTIONS[action])()
    return _diagram_state(session_id, coordinator)

# --- Quiz ---

def _quiz_state(session_id: str, quiz: QuizSession) -> models.QuizState:
    # show_at_end hides per-question feedback until the result
    hide_feedback = quiz.options.wrong_answer_behavior == models.WrongAnswerBehavior.SHOW_AT_END
    return models.QuizState(
        session_id=session_id,
        question=quiz.current(),
        options=quiz.mcq_options(),
        last_correct=None if hide_feedback else quiz.last_correct,
        finished=quiz.finished,
        stats=quiz.stats(),
        result=quiz.result() if quiz.finished else None
    )

@app.post("/sheets/{sheet_id}/quiz", response_model=models.QuizState, status_code=201)
async def start_quiz(
    sheet_id: int,
    options: models.QuizOptions = models.QuizOptions(),
    db: sqlite3.Connection = Depends(get_database)
):
    sheet = _get_sheet_or_404(db, sheet_id)
    quiz = QuizSession(sheet.rows, options)
    session_id = registry.add(quiz)
    return _quiz_state(session_id, quiz)

@app.get("/quiz/{session_id}", response_model=models.QuizState)
async def get_quiz_state(session_id: str):
    return _quiz_state(session_id, _get_session_or_404(session_id, QuizSession))

@app.post("/quiz/{session_id}/answer", response_model=models.QuizState)
async def answer_quiz(session_id: str, submit: models.QuizAnswerSubmit):
    quiz = _get_session_or_404(session_id, QuizSession)
    quiz.answer(submit.answer)
    return _quiz_state(session_id, quiz)
