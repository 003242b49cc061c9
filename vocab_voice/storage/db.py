from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from vocab_voice.config import DB_PATH
from vocab_voice.models import TASK_PENDING, normalize_word

UTC = timezone.utc

WORD_FIELDS = (
    "word",
    "ipa_us",
    "ipa_uk",
    "ipa",
    "audio_url_us",
    "audio_url_uk",
    "audio_url",
    "ipa_source",
)
TASK_FIELDS = (
    "status",
    "total_words",
    "processed_words",
    "failed_words",
    "started_at",
    "completed_at",
    "error_message",
)


class Database:
    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path

    @contextmanager
    def connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        with self.connect() as conn:
            conn.executescript(schema_path.read_text(encoding="utf-8"))

    # words

    def select_words(self, *, search: str | None = None, limit: int = 20, offset: int = 0) -> tuple[list[dict], int]:
        clauses: list[str] = []
        params: list[object] = []
        term = str(search or "").strip()
        if term:
            clauses.append("(word LIKE ? OR normalized LIKE ?)")
            pattern = f"%{term}%"
            params.extend([pattern, pattern.lower()])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self.connect() as conn:
            count_row = conn.execute(f"SELECT COUNT(*) AS cnt FROM words {where}", tuple(params)).fetchone()
            rows = conn.execute(
                f"""
                SELECT * FROM words
                {where}
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (*params, max(1, int(limit)), max(0, int(offset))),
            ).fetchall()
        return [dict(row) for row in rows], int(count_row["cnt"] if count_row else 0)

    def get_word(self, word_id: int) -> dict | None:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM words WHERE id = ?", (word_id,)).fetchone()
        return dict(row) if row else None

    def get_word_by_normalized(self, word: str) -> dict | None:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM words WHERE normalized = ?", (normalize_word(word),)).fetchone()
        return dict(row) if row else None

    def find_words_by_ids(self, word_ids: Sequence[int]) -> list[dict]:
        if not word_ids:
            return []
        placeholders = ",".join(["?"] * len(word_ids))
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM words WHERE id IN ({placeholders})",
                tuple(int(v) for v in word_ids),
            ).fetchall()
        by_id = {int(row["id"]): dict(row) for row in rows}
        return [by_id[int(v)] for v in word_ids if int(v) in by_id]

    def insert_word(self, fields: dict) -> dict:
        word = " ".join(str(fields.get("word") or "").split()).strip()
        if not word:
            raise ValueError("word is required")
        values = _word_values(fields)
        values["word"] = word
        now = _iso_now()
        columns = ["normalized", *values.keys(), "created_at", "updated_at"]
        placeholders = ",".join(["?"] * len(columns))
        try:
            with self.connect() as conn:
                cur = conn.execute(
                    f"INSERT INTO words ({','.join(columns)}) VALUES ({placeholders})",
                    (normalize_word(word), *values.values(), now, now),
                )
                row = conn.execute("SELECT * FROM words WHERE id = ?", (cur.lastrowid,)).fetchone()
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"word already exists: {normalize_word(word)}") from exc
        return dict(row)

    def update_word(self, word_id: int, fields: dict) -> dict:
        values = _word_values(fields)
        if "word" in values:
            word = " ".join(str(values["word"] or "").split()).strip()
            if not word:
                raise ValueError("word is required")
            values["word"] = word
            values["normalized"] = normalize_word(word)

        with self.connect() as conn:
            current = conn.execute("SELECT * FROM words WHERE id = ?", (word_id,)).fetchone()
            if current is None:
                raise LookupError("word not found")
            if values:
                assignments = ", ".join(f"{key} = ?" for key in values)
                try:
                    conn.execute(
                        f"UPDATE words SET {assignments}, updated_at = ? WHERE id = ?",
                        (*values.values(), _iso_now(), word_id),
                    )
                except sqlite3.IntegrityError as exc:
                    raise ValueError(f"word already exists: {values.get('normalized')}") from exc
            row = conn.execute("SELECT * FROM words WHERE id = ?", (word_id,)).fetchone()
        return dict(row)

    def upsert_word(self, word: str, fields: dict | None = None) -> dict:
        """Insert a word or merge ``fields`` into the row with the same normalized key."""

        existing = self.get_word_by_normalized(word)
        payload = {key: value for key, value in (fields or {}).items() if key != "word"}
        if existing is None:
            return self.insert_word({**payload, "word": word})
        if not payload:
            return existing
        return self.update_word(int(existing["id"]), payload)

    def delete_word(self, word_id: int) -> dict:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM words WHERE id = ?", (word_id,)).fetchone()
            if row is None:
                raise LookupError("word not found")
            payload = dict(row)
            conn.execute("DELETE FROM words WHERE id = ?", (word_id,))
        return payload

    # batch tasks

    def insert_task(self, fields: dict) -> dict:
        task_id = str(fields.get("id") or uuid.uuid4().hex)
        values = {key: fields[key] for key in TASK_FIELDS if key in fields}
        values.setdefault("status", TASK_PENDING)
        columns = ["id", *values.keys(), "created_at"]
        placeholders = ",".join(["?"] * len(columns))
        with self.connect() as conn:
            conn.execute(
                f"INSERT INTO batch_update_tasks ({','.join(columns)}) VALUES ({placeholders})",
                (task_id, *values.values(), _iso_now()),
            )
            row = conn.execute("SELECT * FROM batch_update_tasks WHERE id = ?", (task_id,)).fetchone()
        return dict(row)

    def update_task(self, task_id: str, fields: dict) -> dict:
        values = {key: fields[key] for key in TASK_FIELDS if key in fields}
        with self.connect() as conn:
            if values:
                assignments = ", ".join(f"{key} = ?" for key in values)
                conn.execute(
                    f"UPDATE batch_update_tasks SET {assignments} WHERE id = ?",
                    (*values.values(), task_id),
                )
            row = conn.execute("SELECT * FROM batch_update_tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            raise LookupError("task not found")
        return dict(row)

    def get_task(self, task_id: str) -> dict | None:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM batch_update_tasks WHERE id = ?", (task_id,)).fetchone()
        return dict(row) if row else None

    def list_tasks(self, limit: int = 10) -> list[dict]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM batch_update_tasks ORDER BY created_at DESC LIMIT ?",
                (max(1, int(limit)),),
            ).fetchall()
        return [dict(row) for row in rows]


def _word_values(fields: dict) -> dict:
    values: dict[str, object] = {}
    for key in WORD_FIELDS:
        if key not in fields:
            continue
        value = fields[key]
        if isinstance(value, str):
            value = value.strip() or None
        values[key] = value
    return values


def _iso_now() -> str:
    return datetime.now(UTC).isoformat()
