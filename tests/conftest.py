import os
import sys
import tempfile

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# app.py initialises the database at import time; keep that out of the repo
os.environ["MEDVIZ_DB_PATH"] = os.path.join(tempfile.mkdtemp(prefix="medviz-tests-"), "import.db")
os.environ["MEDVIZ_ALLOW_IMAGEGEN"] = "0"
os.environ["CORS_ORIGINS"] = "http://localhost:5173"

from medviz import db  # noqa: E402


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "medviz.db")
    db.init_db()
    return db.DB_PATH


@pytest.fixture
def client(tmp_db):
    from app import app

    app.config.update(TESTING=True)
    with app.test_client() as c:
        yield c
