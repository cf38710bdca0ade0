# studyflow/database.py

import os
import sqlite3

DATABASE_URL = os.getenv("STUDYFLOW_DB", "studyflow.db")

SCHEMA = """
    CREATE TABLE IF NOT EXISTS sheets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL UNIQUE,
        rows TEXT NOT NULL -- JSON list of rows, the first one holds the headers
    );

    CREATE TABLE IF NOT EXISTS diagrams (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL UNIQUE,
        cards TEXT NOT NULL -- JSON list of cards with their labels
    );

    CREATE TABLE IF NOT EXISTS settings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        setting_name TEXT NOT NULL UNIQUE,
        setting_value TEXT NOT NULL
    );
"""

def get_db():
    conn = sqlite3.connect(DATABASE_URL, check_same_thread=False)
    conn.row_factory = sqlite3.Row # Allows accessing columns by name
    try:
        yield conn
    finally:
        conn.close()

def create_tables(conn: sqlite3.Connection = None):
    own_connection = conn is None
    if own_connection:
        conn = sqlite3.connect(DATABASE_URL, check_same_thread=False)
    conn.executescript(SCHEMA)
    conn.commit()
    if own_connection:
        conn.close()
