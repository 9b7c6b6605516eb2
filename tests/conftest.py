from __future__ import annotations

import pytest

from storydesk.config import build_config
from storydesk.storage import init_db


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "data" / "state.sqlite3")


@pytest.fixture
def conn(db_path):
    connection = init_db(db_path)
    yield connection
    connection.close()


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.delenv("SD_DATA_DIR", raising=False)
    return build_config(
        {
            "paths": {
                "data_dir": str(tmp_path / "data"),
                "state_db": str(tmp_path / "data" / "state.sqlite3"),
            }
        }
    )
