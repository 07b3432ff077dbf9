"""Tests for scripts/reset_knowledge.py."""

import importlib.util
from pathlib import Path

import pytest
from unittest.mock import patch

from knowledge.common.config import KnowledgeSettings
from knowledge.common.knowledge_store import KnowledgeStore
from knowledge.common.schemas import Chunk

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "reset_knowledge.py"


@pytest.fixture
def reset_script():
    spec = importlib.util.spec_from_file_location("reset_knowledge", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def db(tmp_path):
    path = tmp_path / "knowledge.db"
    with KnowledgeStore(path) as store:
        chunk = Chunk(text="fact", index=0, start=0, end=4)
        store.insert("knowledge", [chunk], [[1.0, 0.0]], provider="femb:small")
        store.insert("agent_writer", [chunk, chunk], [[1.0, 0.0], [0.0, 1.0]], provider="femb:small")
    return path


@pytest.fixture(autouse=True)
def default_settings():
    with patch("knowledge.common.config.load_config", return_value=KnowledgeSettings()):
        yield


class TestResetScript:
    def test_clears_default_collection(self, reset_script, db, capsys):
        assert reset_script.main(["--db-path", str(db)]) == 0

        assert "Cleared collection 'knowledge' (1 records)" in capsys.readouterr().out
        with KnowledgeStore(db) as store:
            assert store.list_collections() == ["agent_writer"]

    def test_clears_named_collection(self, reset_script, db):
        reset_script.main(["--db-path", str(db), "--collection", "agent_writer"])
        with KnowledgeStore(db) as store:
            assert store.list_collections() == ["knowledge"]

    def test_clear_all(self, reset_script, db, capsys):
        reset_script.main(["--db-path", str(db), "--all"])
        assert "3 records" in capsys.readouterr().out
        with KnowledgeStore(db) as store:
            assert store.count() == 0

    def test_list(self, reset_script, db, capsys):
        reset_script.main(["--db-path", str(db), "--list"])
        out = capsys.readouterr().out
        assert "agent_writer\t2 records\tfemb:small\tdim=2" in out
        assert "knowledge\t1 records" in out

    def test_all_and_list_are_exclusive(self, reset_script, db):
        with pytest.raises(SystemExit):
            reset_script.main(["--db-path", str(db), "--all", "--list"])
