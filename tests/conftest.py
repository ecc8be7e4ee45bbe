import os
import sqlite3

import pytest
from dotenv import load_dotenv

from app.main import app
from app.routers import query

# Load .env once for tests
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_PATH = os.path.join(ROOT, ".env")
load_dotenv(ENV_PATH)


@pytest.fixture(autouse=True)
def disable_api_key_auth():
    """Disable X-API-Key auth for tests."""
    prev = app.dependency_overrides.get(query.require_api_key)
    app.dependency_overrides[query.require_api_key] = lambda: None
    try:
        yield
    finally:
        if prev is None:
            app.dependency_overrides.pop(query.require_api_key, None)
        else:
            app.dependency_overrides[query.require_api_key] = prev


@pytest.fixture
def items_db(tmp_path):
    """SQLite file with items(id, name, price, category) for ids 1..14."""
    db_path = tmp_path / "items.db"
    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute(
            "CREATE TABLE items(id INTEGER PRIMARY KEY, name TEXT, price REAL, category TEXT);"
        )
        conn.executemany(
            "INSERT INTO items VALUES (?, ?, ?, ?);",
            [
                (i, f"item-{i}", float(i) * 1.5, "even" if i % 2 == 0 else "odd")
                for i in range(1, 15)
            ],
        )
        conn.commit()
    finally:
        conn.close()
    return db_path
