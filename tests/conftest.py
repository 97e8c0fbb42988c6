import os
import sys

# Application modules read their configuration at import time
os.environ.setdefault("BOT_TOKEN", "123456:TEST-TOKEN")
os.environ["REDIS_URL"] = ""
os.environ.pop("REACTION_DELAY_SECONDS", None)
os.environ.pop("DUPLICATE_REACTION", None)
os.environ.pop("UNMATCHED_REACTION", None)

CURRENT_DIR = os.path.dirname(__file__)
if CURRENT_DIR not in sys.path:
    sys.path.insert(0, CURRENT_DIR)

ROOT_DIR = os.path.dirname(CURRENT_DIR)
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import pytest

import database
from factories import FakeNotifier, FakeTransport


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = str(tmp_path / "system.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    database.init_db(path)
    return path


@pytest.fixture
def conn(db_path):
    connection = database.get_db_connection(db_path)
    yield connection
    connection.close()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def notifier():
    return FakeNotifier()
