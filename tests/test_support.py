from datetime import datetime, timezone

import pytest

from dropmanager.common import settings
from dropmanager.common.db import SqliteDocumentStore
from dropmanager.utils import completion_util
from dropmanager.utils.json_util import parse_json_payload, strip_code_fences
from dropmanager.utils.time_util import timeframe_cutoff, week_of


def test_document_store_round_trip(tmp_path):
    store = SqliteDocumentStore(tmp_path / "docs.db")
    store.set("projects", "p1", {"id": "p1", "name": "Apollo"})
    store.set("projects", "p1", {"id": "p1", "name": "Apollo 2"})
    store.set("projects", "p2", {"id": "p2", "name": "Gemini"})

    assert store.get("projects", "p1") == {"id": "p1", "name": "Apollo 2"}
    assert store.get("projects", "missing") is None
    assert [doc["id"] for doc in store.list_all("projects")] == ["p1", "p2"]
    assert store.list_all("tasks") == []


def test_db_path_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("DROPMANAGER_DB_PATH", str(tmp_path / "nested" / "env.db"))

    store = SqliteDocumentStore()

    assert store.db_path == (tmp_path / "nested" / "env.db").resolve()
    assert store.db_path.exists()


def test_json_payload_with_fences_and_preamble():
    assert strip_code_fences('```json\n[1, 2]\n```') == "[1, 2]"
    assert parse_json_payload('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_payload('Sure! Here you go: [{"title": "x"}] hope it helps') == [{"title": "x"}]


def test_json_payload_rejects_prose():
    with pytest.raises(ValueError):
        parse_json_payload("no structured data at all")


def test_week_of_and_cutoff():
    now = datetime(2024, 5, 16, 12, tzinfo=timezone.utc)

    assert week_of(now) == "2024-05-13"
    assert timeframe_cutoff("day", now) == datetime(2024, 5, 15, 12, tzinfo=timezone.utc)
    assert timeframe_cutoff("bogus", now) == timeframe_cutoff("week", now)


def test_invalid_numeric_settings_fall_back(monkeypatch):
    monkeypatch.setenv("DROPMANAGER_OPENAI_TIMEOUT", "soon")
    monkeypatch.setenv("DROPMANAGER_UPDATE_QUEUE_SIZE", "lots")

    assert settings._env_float("DROPMANAGER_OPENAI_TIMEOUT", 120.0) == 120.0
    assert settings._env_int("DROPMANAGER_UPDATE_QUEUE_SIZE", 100) == 100
    assert completion_util._DEFAULT_TIMEOUT == settings.OPENAI_TIMEOUT_SECONDS
