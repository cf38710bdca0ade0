# tests/test_main.py

import asyncio
import json
import os
import sqlite3
import tempfile
import time
import unittest
from unittest.mock import patch

import httpx
from fastapi.testclient import TestClient

from studyflow import crud, main, models
from studyflow.database import create_tables
from studyflow.main import app, get_database

ROWS = [["Spanish", "English"], ["hola", "hello"], ["adios", "bye"], ["gato", "cat"]]

DIAGRAM = {
    "title": "Heart",
    "cards": [
        {"id": "front", "labels": [{"id": "a", "text": "Aorta"}, {"id": "v", "text": "Ventricle"}]},
        {"id": "back", "labels": [{"id": "p", "text": "Pulmonary vein"}]},
    ],
}

def _memory_db():
    db = sqlite3.connect(":memory:", check_same_thread=False)
    db.row_factory = sqlite3.Row
    create_tables(db)
    return db

class TestAPI(unittest.TestCase):

    def setUp(self):
        """Serve the app against an in-memory database with one sheet."""
        self.db = _memory_db()

        def override_database():
            yield self.db

        app.dependency_overrides[get_database] = override_database
        self.client = TestClient(app)
        self.sheet = self.client.post("/sheets", json={"title": "Spanish", "rows": ROWS}).json()

    def tearDown(self):
        app.dependency_overrides.clear()
        self.db.close()

    # --- Documents ---
    def test_sheet_crud(self):
        """Test creating, listing, updating and deleting a sheet."""
        self.assertEqual(self.client.get(f"/sheets/{self.sheet['id']}").json()["rows"], ROWS)
        self.assertEqual(len(self.client.get("/sheets").json()), 1)

        duplicate = self.client.post("/sheets", json={"title": "Spanish", "rows": []})
        self.assertEqual(duplicate.status_code, 400)

        updated = self.client.put(f"/sheets/{self.sheet['id']}", json={"title": "Spanish", "rows": ROWS[:2]})
        self.assertEqual(updated.json()["rows"], ROWS[:2])

        self.assertEqual(self.client.delete(f"/sheets/{self.sheet['id']}").status_code, 204)
        self.assertEqual(self.client.get(f"/sheets/{self.sheet['id']}").status_code, 404)

    def test_import_sheet(self):
        """Test importing a sheet from an uploaded JSON file."""
        response = self.client.post(
            "/sheets/import",
            data={"title": "Imported"},
            files={"sheet_file": ("rows.json", json.dumps(ROWS), "application/json")}
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["rows"], ROWS)

    def test_import_invalid_file(self):
        """Test that malformed JSON and non-row JSON uploads are rejected."""
        response = self.client.post(
            "/sheets/import",
            data={"title": "Broken"},
            files={"sheet_file": ("rows.json", "{not json", "application/json")}
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.post(
            "/sheets/import",
            data={"title": "Broken"},
            files={"sheet_file": ("rows.json", json.dumps({"rows": 1}), "application/json")}
        )
        self.assertEqual(response.status_code, 400)

    def test_settings(self):
        """Test setting defaults, validation, and their use when a session starts."""
        settings = {s["setting_name"]: s["setting_value"] for s in self.client.get("/settings").json()}
        self.assertEqual(settings["default_card_mode"], "spaced")

        bad = self.client.post("/settings", json={"setting_name": "default_card_mode", "setting_value": "alphabetical"})
        self.assertEqual(bad.status_code, 400)
        unknown = self.client.post("/settings", json={"setting_name": "colour", "setting_value": "red"})
        self.assertEqual(unknown.status_code, 400)

        ok = self.client.post("/settings", json={"setting_name": "default_card_mode", "setting_value": "sequential"})
        self.assertEqual(ok.status_code, 200)
        state = self.client.post(f"/sheets/{self.sheet['id']}/study").json()
        self.assertEqual(state["mode"], "sequential")
        self.assertEqual(state["front"], "hola")

    # --- Flashcard study ---
    def _start(self, **options):
        response = self.client.post(f"/sheets/{self.sheet['id']}/study", json={"mode": "sequential", **options})
        self.assertEqual(response.status_code, 201)
        return response.json()

    def test_study_flow(self):
        """Test flipping, scoring, undo, ban and unban through the study routes."""
        state = self._start()
        session_id = state["session_id"]
        self.assertEqual(state["headers"], ["Spanish", "English"])
        self.assertEqual(state["front"], "hola")
        self.assertIsNone(state["back"])
        self.assertEqual(state["stats"]["not_seen"], 3)

        state = self.client.post(f"/study/{session_id}/flip").json()
        self.assertTrue(state["show_answer"])
        self.assertEqual(state["back"], "hello")

        state = self.client.post(f"/study/{session_id}/correct").json()
        self.assertEqual(state["current"], ["adios", "bye"])
        self.assertFalse(state["show_answer"])
        self.assertEqual(state["stats"]["correct_count"], 1)
        self.assertTrue(state["can_undo"])

        state = self.client.post(f"/study/{session_id}/undo").json()
        self.assertEqual(state["front"], "hola")
        self.assertEqual(state["stats"]["correct_count"], 1)

        state = self.client.post(f"/study/{session_id}/ban").json()
        self.assertEqual(state["banned_cards"], [["hola", "hello"]])
        self.assertEqual(state["stats"]["banned"], 1)

        state = self.client.post(f"/study/{session_id}/unban/0").json()
        self.assertEqual(state["stats"]["banned"], 0)
        self.assertEqual(self.client.post(f"/study/{session_id}/unban/3").status_code, 404)

    def test_exhausted_session(self):
        """Test that a fully banned session reports exhaustion instead of failing."""
        session_id = self._start()["session_id"]
        for _ in range(3):
            state = self.client.post(f"/study/{session_id}/ban").json()
        self.assertTrue(state["exhausted"])
        self.assertIsNone(state["current"])
        state = self.client.post(f"/study/{session_id}/correct").json()
        self.assertTrue(state["exhausted"])

    def test_mode_change_resets(self):
        """Test that switching mode starts the session over."""
        session_id = self._start()["session_id"]
        self.client.post(f"/study/{session_id}/incorrect")
        state = self.client.post(f"/study/{session_id}/mode", json={"mode": "random"}).json()
        self.assertEqual(state["mode"], "random")
        self.assertEqual(state["stats"]["not_seen"], 3)
        self.assertEqual(state["stats"]["incorrect_count"], 0)

    def test_column_change(self):
        """Test swapping the question and answer columns of a live session."""
        session_id = self._start()["session_id"]
        self.client.post(f"/study/{session_id}/flip")
        state = self.client.post(
            f"/study/{session_id}/columns",
            json={"question_columns": [1], "answer_columns": [0]}
        ).json()
        self.assertEqual(state["front"], "hello")
        self.assertFalse(state["show_answer"])

    def test_negative_columns_rejected(self):
        """Test that column indices below zero fail validation."""
        response = self.client.post(f"/sheets/{self.sheet['id']}/study", json={"question_columns": [-1]})
        self.assertEqual(response.status_code, 422)
        session_id = self._start()["session_id"]
        response = self.client.post(
            f"/study/{session_id}/columns",
            json={"question_columns": [0], "answer_columns": [-2]}
        )
        self.assertEqual(response.status_code, 422)
        response = self.client.post(f"/sheets/{self.sheet['id']}/quiz", json={"answer_column": -1})
        self.assertEqual(response.status_code, 422)

    def test_unknown_session_and_action(self):
        """Test 404s for unknown sessions and actions, and ending a session."""
        self.assertEqual(self.client.get("/study/nope").status_code, 404)
        session_id = self._start()["session_id"]
        self.assertEqual(self.client.post(f"/study/{session_id}/dance").status_code, 404)
        self.assertEqual(self.client.delete(f"/study/{session_id}").status_code, 204)
        self.assertEqual(self.client.get(f"/study/{session_id}").status_code, 404)

    def test_study_missing_sheet(self):
        """Test that studying a missing sheet is a 404."""
        self.assertEqual(self.client.post("/sheets/999/study").status_code, 404)

    # --- Diagram study ---
    def _start_diagram(self):
        diagram = self.client.post("/diagrams", json=DIAGRAM).json()
        return self.client.post(
            f"/diagrams/{diagram['id']}/study",
            json={"card_mode": "sequential", "label_mode": "sequential"}
        ).json()

    def test_diagram_study_flow(self):
        """Test judging labels one by one, then moving between cards."""
        state = self._start_diagram()
        session_id = state["session_id"]
        self.assertEqual(state["state"], "studying_label")
        self.assertEqual(state["card"]["id"], "front")
        self.assertEqual(state["label"]["text"], "Aorta")

        state = self.client.post(f"/diagram-study/{session_id}/judge", json={"answer": " aorta "}).json()
        self.assertEqual(state["answered_labels"], ["a"])
        state = self.client.post(f"/diagram-study/{session_id}/judge", json={"correct": False}).json()
        self.assertEqual(state["state"], "card_complete")
        self.assertEqual(state["incorrect_labels"], ["v"])
        self.assertEqual(state["stats"]["correct_count"], 1)
        self.assertEqual(state["stats"]["incorrect_count"], 1)

        state = self.client.post(f"/diagram-study/{session_id}/next-card").json()
        self.assertEqual(state["card"]["id"], "back")
        self.assertEqual(state["answered_labels"], [])

        state = self.client.post(f"/diagram-study/{session_id}/previous-card").json()
        self.assertEqual(state["card"]["id"], "front")

        state = self.client.post(f"/diagram-study/{session_id}/modes", json={"label_mode": "random"}).json()
        self.assertEqual(state["label_mode"], "random")

        state = self.client.post(f"/diagram-study/{session_id}/restart").json()
        self.assertEqual(state["stats"]["correct_count"], 0)

    def test_diagram_label_actions(self):
        """Test the unsure, skip-label and ban-label actions."""
        session_id = self._start_diagram()["session_id"]

        state = self.client.post(f"/diagram-study/{session_id}/unsure").json()
        self.assertEqual(state["incorrect_labels"], ["a"])
        self.assertEqual(state["label"]["id"], "v")

        state = self.client.post(f"/diagram-study/{session_id}/skip-label").json()
        self.assertEqual(state["label"]["id"], "a")
        self.assertEqual(state["stats"]["incorrect_count"], 1)

        state = self.client.post(f"/diagram-study/{session_id}/ban-label").json()
        self.assertEqual(state["label"]["id"], "v")
        self.assertEqual(state["state"], "studying_label")

    def test_diagram_card_actions(self):
        """Test skipping, banning and unbanning diagram cards."""
        session_id = self._start_diagram()["session_id"]

        state = self.client.post(f"/diagram-study/{session_id}/skip-card").json()
        self.assertEqual(state["card"]["id"], "back")
        self.assertEqual(state["label"]["id"], "p")

        state = self.client.post(f"/diagram-study/{session_id}/ban-card").json()
        self.assertEqual(state["card"]["id"], "front")
        self.assertEqual([card["id"] for card in state["banned_cards"]], ["back"])
        self.assertEqual(state["stats"]["banned"], 1)

        state = self.client.post(f"/diagram-study/{session_id}/unban/0").json()
        self.assertEqual(state["banned_cards"], [])
        self.assertEqual(self.client.post(f"/diagram-study/{session_id}/unban/0").status_code, 404)
        self.assertEqual(self.client.post(f"/diagram-study/{session_id}/dance").status_code, 404)

    def test_diagram_labels_answered_in_any_order(self):
        """Test answering the labels of a card in the order the user picks."""
        session_id = self._start_diagram()["session_id"]

        state = self.client.post(f"/diagram-study/{session_id}/labels/v", json={"answer": "ventricle"}).json()
        self.assertEqual(state["answered_labels"], ["v"])
        self.assertEqual(state["label"]["id"], "a")

        state = self.client.post(f"/diagram-study/{session_id}/labels/v", json={"correct": False}).json()
        self.assertEqual(state["incorrect_labels"], [])
        self.assertEqual(state["stats"]["correct_count"], 1)

        state = self.client.post(f"/diagram-study/{session_id}/labels/a", json={"answer": "vein"}).json()
        self.assertEqual(state["state"], "card_complete")
        self.assertEqual(state["incorrect_labels"], ["a"])

        missing = self.client.post(f"/diagram-study/{session_id}/labels/p", json={"correct": True})
        self.assertEqual(missing.status_code, 404)

    def test_diagram_judge_requires_a_judgement(self):
        """Test that a judgement without a result or an answer is a 400."""
        diagram = self.client.post("/diagrams", json=DIAGRAM).json()
        session_id = self.client.post(f"/diagrams/{diagram['id']}/study").json()["session_id"]
        self.assertEqual(self.client.post(f"/diagram-study/{session_id}/judge", json={}).status_code, 400)

    def test_diagram_without_labels(self):
        """Test that a diagram with nothing to learn cannot be studied."""
        diagram = self.client.post("/diagrams", json={"title": "Blank", "cards": [{"id": "c"}]}).json()
        self.assertEqual(self.client.post(f"/diagrams/{diagram['id']}/study").status_code, 400)
        self.assertEqual(self.client.post("/diagrams/999/study").status_code, 404)

    # --- Quiz ---
    def test_quiz_flow(self):
        """Test answering every question correctly for a full score."""
        state = self.client.post(f"/sheets/{self.sheet['id']}/quiz", json={"question_count": 2}).json()
        session_id = state["session_id"]
        self.assertFalse(state["finished"])
        answers = {row[0]: row[1] for row in ROWS[1:]}
        while not state["finished"]:
            answer = answers[state["question"]["question_text"]]
            state = self.client.post(f"/quiz/{session_id}/answer", json={"answer": answer}).json()
        self.assertEqual(state["result"]["percentage"], 100)
        self.assertEqual(self.client.get(f"/quiz/{session_id}").json()["stats"]["correct_count"], 2)

    def test_quiz_mcq_options(self):
        """Test that a multiple choice quiz offers the requested number of options."""
        state = self.client.post(
            f"/sheets/{self.sheet['id']}/quiz",
            json={"question_type": "mcq", "mcq_option_count": 3, "question_count": 1}
        ).json()
        self.assertEqual(len(state["options"]), 3)

    def test_quiz_show_at_end_hides_feedback(self):
        """Test that show_at_end withholds per-question feedback."""
        state = self.client.post(
            f"/sheets/{self.sheet['id']}/quiz",
            json={"wrong_answer_behavior": "show_at_end", "question_count": 3}
        ).json()
        state = self.client.post(f"/quiz/{state['session_id']}/answer", json={"answer": "wrong"}).json()
        self.assertIsNone(state["last_correct"])

def _write_audio(filename):
    with open(filename, "w") as f:
        f.write("mp3")

def _slow_write_audio(filename):
    time.sleep(1)
    _write_audio(filename)

class TestVoiceSessions(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        """Serve the app with gTTS mocked and media written to a temporary directory."""
        self.db = _memory_db()
        self.sheet = crud.create_sheet(self.db, models.SheetCreate(title="Spanish", rows=ROWS))

        def override_database():
            yield self.db

        app.dependency_overrides[get_database] = override_database
        self.tmp = tempfile.TemporaryDirectory()
        media_patch = patch.object(main, "MEDIA_DIR", self.tmp.name)
        gtts_patch = patch('studyflow.voice.gTTS')
        media_patch.start()
        self.mock_gtts = gtts_patch.start()
        self.mock_gtts.return_value.save.side_effect = _write_audio
        self.addCleanup(media_patch.stop)
        self.addCleanup(gtts_patch.stop)

    def tearDown(self):
        app.dependency_overrides.clear()
        self.db.close()
        self.tmp.cleanup()

    async def test_voice_session_reports_audio(self):
        """Test that a voice session speaks the visible side and links the audio."""
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            state = (await client.post(f"/sheets/{self.sheet.id}/study", json={"mode": "sequential", "voice": True})).json()
            self.mock_gtts.assert_called_once_with(text="hola", lang="en")
            self.assertTrue(state["audio_url"].startswith("/media/voice/"))

            state = (await client.post(f"/study/{state['session_id']}/flip")).json()
            self.mock_gtts.assert_called_with(text="hello", lang="en")
            self.assertTrue(os.path.exists(os.path.join(self.tmp.name, state["audio_url"][len("/media/"):])))

    async def test_audio_generation_does_not_block_other_requests(self):
        """Test that other requests are served while audio is still being generated."""
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            started = await client.post(f"/sheets/{self.sheet.id}/study", json={"mode": "sequential", "voice": True})
            session_id = started.json()["session_id"]

            self.mock_gtts.return_value.save.side_effect = _slow_write_audio
            skip = asyncio.ensure_future(client.post(f"/study/{session_id}/skip"))
            await asyncio.sleep(0.05)

            begin = time.monotonic()
            settings = await client.get("/settings")
            elapsed = time.monotonic() - begin
            skipped = await skip

        self.assertEqual(settings.status_code, 200)
        self.assertLess(elapsed, 0.5)
        self.assertEqual(skipped.json()["front"], "adios")
        self.mock_gtts.assert_called_with(text="adios", lang="en")
