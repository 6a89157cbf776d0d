from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .settings import DB_ENV_VAR

DOCUMENT_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    body TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (collection, id)
);
"""


def _resolve_db_path() -> Path:
    raw_path = os.getenv(DB_ENV_VAR)
    if raw_path:
        path = Path(raw_path).expanduser().resolve()
    else:
        path = (Path(__file__).resolve().parent.parent / "dropmanager.db").resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


@contextmanager
def get_connection(db_path: Path) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


class DocumentStore:
    """Narrow key-value document interface the state store persists through."""

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        raise NotImplementedError

    def list_all(self, collection: str) -> list[dict[str, Any]]:
        raise NotImplementedError


class SqliteDocumentStore(DocumentStore):
    def __init__(self, db_path: str | Path | None = None) -> None:
        self.db_path = Path(db_path).expanduser().resolve() if db_path else _resolve_db_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with get_connection(self.db_path) as conn:
            conn.executescript(DOCUMENT_SCHEMA)

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            ).fetchone()
        if row is None:
            return None
        return json.loads(row["body"])

    def set(self, collection: str, doc_id: str, doc: dict[str, Any]) -> None:
        body = json.dumps(doc, ensure_ascii=False)
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO documents(collection, id, body) VALUES (?, ?, ?)
                ON CONFLICT(collection, id) DO UPDATE SET body = excluded.body, updated_at = CURRENT_TIMESTAMP
                """,
                (collection, doc_id, body),
            )

    def list_all(self, collection: str) -> list[dict[str, Any]]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT body FROM documents WHERE collection = ? ORDER BY rowid",
                (collection,),
            ).fetchall()
        return [json.loads(row["body"]) for row in rows]
