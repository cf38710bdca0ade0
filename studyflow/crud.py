# studyflow/crud.py

import json
import sqlite3
from typing import List, Optional

from studyflow.models import Diagram, DiagramCreate, Settings, Sheet, SheetCreate

# --- Helpers to parse rows into models ---
def _row_to_sheet(row: sqlite3.Row) -> Optional[Sheet]:
    if not row:
        return None
    sheet_dict = dict(row)
    sheet_dict['rows'] = json.loads(sheet_dict['rows'])
    return Sheet.model_validate(sheet_dict)

def _row_to_diagram(row: sqlite3.Row) -> Optional[Diagram]:
    if not row:
        return None
    diagram_dict = dict(row)
    diagram_dict['cards'] = json.loads(diagram_dict['cards'])
    return Diagram.model_validate(diagram_dict)

# --- Sheet CRUD ---
def create_sheet(db: sqlite3.Connection, sheet: SheetCreate) -> Sheet:
    cursor = db.cursor()
    cursor.execute(
        "INSERT INTO sheets (title, rows) VALUES (?, ?)",
        (sheet.title, json.dumps(sheet.rows))
    )
    db.commit()
    return get_sheet(db, cursor.lastrowid)

def get_sheet(db: sqlite3.Connection, sheet_id: int) -> Optional[Sheet]:
    cursor = db.cursor()
    cursor.execute("SELECT * FROM sheets WHERE id = ?", (sheet_id,))
    return _row_to_sheet(cursor.fetchone())

def get_all_sheets(db: sqlite3.Connection) -> List[Sheet]:
    cursor = db.cursor()
    cursor.execute("SELECT * FROM sheets ORDER BY id")
    return [_row_to_sheet(row) for row in cursor.fetchall()]

def update_sheet_rows(db: sqlite3.Connection, sheet_id: int, rows: List[List[str]]) -> Optional[Sheet]:
    cursor = db.cursor()
    cursor.execute("UPDATE sheets SET rows = ? WHERE id = ?", (json.dumps(rows), sheet_id))
    db.commit()
    return get_sheet(db, sheet_id)

def delete_sheet(db: sqlite3.Connection, sheet_id: int):
    cursor = db.cursor()
    cursor.execute("DELETE FROM sheets WHERE id = ?", (sheet_id,))
    db.commit()

# --- Diagram CRUD ---
def create_diagram(db: sqlite3.Connection, diagram: DiagramCreate) -> Diagram:
    cursor = db.cursor()
    cards_json = json.dumps([card.model_dump() for card in diagram.cards])
    cursor.execute(
        "INSERT INTO diagrams (title, cards) VALUES (?, ?)",
        (diagram.title, cards_json)
    )
    db.commit()
    return get_diagram(db, cursor.lastrowid)

def get_diagram(db: sqlite3.Connection, diagram_id: int) -> Optional[Diagram]:
    cursor = db.cursor()
    cursor.execute("SELECT * FROM diagrams WHERE id = ?", (diagram_id,))
    return _row_to_diagram(cursor.fetchone())

def delete_diagram(db: sqlite3.Connection, diagram_id: int):
    cursor = db.cursor()
    cursor.execute("DELETE FROM diagrams WHERE id = ?", (diagram_id,))
    db.commit()

# --- Settings CRUD ---
def get_setting(db: sqlite3.Connection, setting_name: str) -> Optional[str]:
    cursor = db.cursor()
    cursor.execute("SELECT setting_value FROM settings WHERE setting_name = ?", (setting_name,))
    row = cursor.fetchone()
    return row[0] if row else None

def set_setting(db: sqlite3.Connection, setting_name: str, setting_value: str) -> Settings:
    cursor = db.cursor()
    cursor.execute(
        "INSERT OR REPLACE INTO settings (setting_name, setting_value) VALUES (?, ?)",
        (setting_name, setting_value)
    )
    db.commit()
    return Settings(setting_name=setting_name, setting_value=setting_value)

def get_all_settings(db: sqlite3.Connection) -> List[Settings]:
    cursor = db.cursor()
    cursor.execute("SELECT setting_name, setting_value FROM settings")
    return [Settings.model_validate(dict(row)) for row in cursor.fetchall()]
